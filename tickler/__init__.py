"""
Tickler — a durable natural-language intent scheduler.

Public API:
    from tickler import SchedulerService, IntentStore, NaturalLanguageParser
"""

__version__ = "0.1.0"

# Core
from tickler.core.bus import EventBus
from tickler.core.config import TicklerConfig
from tickler.core.errors import ParseError, PastTimeError, TicklerError
from tickler.core.events import Event, EventType

# Scheduler
from tickler.scheduler.intent import ScheduledIntent, ScheduleKind
from tickler.scheduler.parser import NaturalLanguageParser, ResolvedSchedule
from tickler.scheduler.service import SchedulerService
from tickler.scheduler.store import IntentStore

__all__ = [
    # Core
    "EventBus",
    "TicklerConfig",
    "Event",
    "EventType",
    "TicklerError",
    "ParseError",
    "PastTimeError",
    # Scheduler
    "ScheduledIntent",
    "ScheduleKind",
    "NaturalLanguageParser",
    "ResolvedSchedule",
    "SchedulerService",
    "IntentStore",
]
