"""
Bundled executors for `tickler run`.

The executor that actually reasons about an intent belongs to the embedding
assistant and is injected into SchedulerService. These two cover running the
scheduler as a standalone process:

    LogExecutor      logs the payload (a plain reminder)
    WebhookExecutor  POSTs {task_type, payload} as JSON to a URL

Both follow the executor contract: async (task_type, payload) -> summary,
raising on failure, and safe to call twice for the same intent.
"""

from __future__ import annotations

import base64
import logging

import httpx

logger = logging.getLogger(__name__)


class LogExecutor:
    """Logs the payload at WARNING so it reaches the console handler."""

    def __init__(self, logger_name: str = "tickler.reminders") -> None:
        self._logger = logging.getLogger(logger_name)

    async def __call__(self, task_type: str, payload: bytes) -> str:
        text = payload.decode("utf-8", errors="replace")
        self._logger.warning(f"REMINDER [{task_type}]: {text}")
        return f"logged {len(payload)} bytes"


class WebhookExecutor:
    """
    Hands the intent to an HTTP endpoint.

    Body: {"task_type": ..., "payload": "<utf-8 text>"}, or for payloads
    that are not UTF-8, base64 text plus "payload_encoding": "base64".
    A non-2xx response raises httpx.HTTPStatusError, which the service
    records as a failed fire.
    """

    def __init__(self, url: str, timeout: float = 30.0) -> None:
        if not url:
            raise ValueError("WebhookExecutor needs a URL")
        self._url = url
        self._timeout = timeout

    async def __call__(self, task_type: str, payload: bytes) -> str:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(self._url, json=_body(task_type, payload))
            resp.raise_for_status()
        logger.debug(f"Webhook {self._url} accepted {task_type} intent ({resp.status_code})")
        return resp.text[:500] or f"HTTP {resp.status_code}"


def _body(task_type: str, payload: bytes) -> dict:
    """JSON body for a fire; payloads that are not UTF-8 go out as base64."""
    try:
        return {"task_type": task_type, "payload": payload.decode("utf-8")}
    except UnicodeDecodeError:
        return {
            "task_type": task_type,
            "payload": base64.b64encode(payload).decode("ascii"),
            "payload_encoding": "base64",
        }
