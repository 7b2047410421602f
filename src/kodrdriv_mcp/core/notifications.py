"""Progress delivery to the MCP host.

Two channels exist and a run uses exactly one of them:

* push: ``notifications/progress`` messages addressed by the client's
  progress token, sent through an async ``send_notification`` callable;
* callback: a plain function called with
  ``(progress, total, message, new_log_lines)``.

Every send is fire-and-forget. Coroutines are wrapped in detached tasks
whose outcome is discarded, so there is no backpressure and no ordering
guarantee between sends. A failing channel never raises into the caller.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import math
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Set

if TYPE_CHECKING:
    from kodrdriv_mcp.core.executor import ExecutionContext

logger = logging.getLogger("kodrdriv_mcp.notifications")

ProgressCallback = Callable[[int, Optional[int], str, Optional[List[str]]], Any]
SendNotification = Callable[[Dict[str, Any]], Awaitable[Any]]

PROGRESS_METHOD = "notifications/progress"

# Strong references to in-flight sends until they finish
_pending: Set["asyncio.Future[Any]"] = set()


def to_count(value: float) -> int:
    """Floor to a non-negative integer."""
    return max(0, math.floor(value))


def _discard_outcome(task: "asyncio.Future[Any]") -> None:
    _pending.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Progress notification failed: %s", exc)


def fire_and_forget(awaitable: Awaitable[Any]) -> None:
    """Schedule *awaitable* without waiting for it; its outcome is dropped."""
    try:
        task = asyncio.ensure_future(awaitable)
    except Exception as exc:  # noqa: BLE001
        logger.debug("Could not schedule progress notification: %s", exc)
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        return
    _pending.add(task)
    task.add_done_callback(_discard_outcome)


def build_progress_params(
    progress_token: Any,
    progress: float,
    total: Optional[float] = None,
    message: Optional[str] = None,
) -> Dict[str, Any]:
    """Build ``notifications/progress`` params, leaving out absent fields."""
    params: Dict[str, Any] = {
        "progressToken": progress_token,
        "progress": to_count(progress),
    }
    if total is not None:
        params["total"] = to_count(total)
    if message:
        params["message"] = message
    return params


class NotificationSink:
    """Where progress goes for one run."""

    kind = "none"

    def send(
        self,
        progress: float,
        total: Optional[float],
        message: str,
        new_logs: Optional[List[str]] = None,
    ) -> None:
        raise NotImplementedError


class PushNotificationSink(NotificationSink):
    kind = "push"

    def __init__(self, send_notification: SendNotification, progress_token: Any) -> None:
        self._send_notification = send_notification
        self.progress_token = progress_token

    def send(
        self,
        progress: float,
        total: Optional[float],
        message: str,
        new_logs: Optional[List[str]] = None,
    ) -> None:
        notification = {
            "method": PROGRESS_METHOD,
            "params": build_progress_params(self.progress_token, progress, total, message),
        }
        try:
            outcome = self._send_notification(notification)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Progress notification failed: %s", exc)
            return
        if inspect.isawaitable(outcome):
            fire_and_forget(outcome)


class CallbackNotificationSink(NotificationSink):
    """Calls the client's progress function directly.

    Receives only the log lines that appeared since the previous call, so
    the caller can stream output incrementally.
    """

    kind = "callback"

    def __init__(self, callback: ProgressCallback) -> None:
        self._callback = callback

    def send(
        self,
        progress: float,
        total: Optional[float],
        message: str,
        new_logs: Optional[List[str]] = None,
    ) -> None:
        try:
            outcome = self._callback(
                to_count(progress),
                to_count(total) if total is not None else None,
                message,
                new_logs,
            )
        except Exception as exc:  # noqa: BLE001
            logger.debug("Progress callback failed: %s", exc)
            return
        if inspect.isawaitable(outcome):
            fire_and_forget(outcome)


def select_sink(context: "ExecutionContext") -> Optional[NotificationSink]:
    """Pick the channel for a run. Push wins when both are available."""
    if context.send_notification is not None and context.progress_token is not None:
        return PushNotificationSink(context.send_notification, context.progress_token)
    if context.progress_callback is not None:
        return CallbackNotificationSink(context.progress_callback)
    return None
