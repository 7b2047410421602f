"""Generic command executor for MCP tools.

``execute_command`` wraps one long-running operation and handles the
parts every tool shares: optional package discovery, log capture,
periodic progress notifications scraped from the captured logs, the
working-directory override, and shaping the outcome into a
:class:`RunResult`.

The sequence for one run is fixed::

    discover -> install capture -> start timer -> run operation
    -> stop timer -> restore cwd -> read logs -> remove capture
    -> final notification -> return

so no timer tick can race the final notification.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from kodrdriv_mcp.core.errors import (
    ErrorDetails,
    extract_command_error_details,
    format_error_for_mcp,
)
from kodrdriv_mcp.core.log_capture import LogCapture, install_log_capture
from kodrdriv_mcp.core.logging_config import get_logger
from kodrdriv_mcp.core.notifications import (
    NotificationSink,
    ProgressCallback,
    SendNotification,
    select_sink,
    to_count,
)
from kodrdriv_mcp.core.progress import (
    DISCOVERY_LABEL,
    extract_package_progress,
    strip_indicator,
)
from kodrdriv_mcp.core.workdir import DirectoryScope, working_directory

logger = logging.getLogger("kodrdriv_mcp.executor")

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_INITIAL_MESSAGE = "Starting command..."
SUCCESS_PLACEHOLDER = "ℹ️ Command executed successfully (no logs captured)"
FAILURE_PLACEHOLDER = "ℹ️ Command started but no logs were captured before failure"

CommandFn = Callable[[Dict[str, Any]], Awaitable[Any]]
ConfigBuilder = Callable[[Dict[str, Any], Dict[str, Any]], None]
ResultBuilder = Callable[[Any, Dict[str, Any], str], Any]
InitialStatusFn = Callable[[Dict[str, Any], str], Any]


@dataclass
class ExecutionContext:
    working_directory: str
    send_notification: Optional[SendNotification] = None
    progress_token: Any = None
    progress_callback: Optional[ProgressCallback] = None
    poll_interval: float = DEFAULT_POLL_INTERVAL


@dataclass
class RunResult:
    success: bool
    logs: List[str] = field(default_factory=list)
    message: Optional[str] = None
    data: Any = None
    error: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
    recovery: Optional[List[str]] = None
    details: Optional[ErrorDetails] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success}
        if self.success:
            out["data"] = self.data
        else:
            out["error"] = self.error
            if self.context:
                out["context"] = self.context
            if self.recovery:
                out["recovery"] = self.recovery
            if self.details is not None:
                out["details"] = self.details.to_dict()
        if self.message:
            out["message"] = self.message
        out["logs"] = self.logs
        return out


class ProgressTimer:
    """Repeating callback on the running loop.

    ``cancel`` is synchronous and idempotent; once it returns the callback
    will not run again.
    """

    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        self.interval = interval
        self._callback = callback
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._handle: Optional[asyncio.TimerHandle] = None
        self._cancelled = False

    @property
    def active(self) -> bool:
        return self._handle is not None and not self._cancelled

    def start(self) -> None:
        if self._loop is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._schedule(self._loop)

    def _schedule(self, loop: asyncio.AbstractEventLoop) -> None:
        self._handle = loop.call_later(self.interval, self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return
        try:
            self._callback()
        except Exception:  # noqa: BLE001
            logger.warning("Progress tick failed", exc_info=True)
        if not self._cancelled and self._loop is not None:
            self._schedule(self._loop)

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class ProgressReporter:
    """Turns the capture buffer into deduplicated progress sends."""

    def __init__(
        self,
        sink: NotificationSink,
        capture: LogCapture,
        total: Optional[int],
        initial_message: str,
    ) -> None:
        self.sink = sink
        self.capture = capture
        self.total = total
        self.initial_message = initial_message
        self._last_progress: Optional[int] = None
        self._last_message: Optional[str] = None
        self._last_log_count = 0

    def start(self) -> None:
        self._last_progress = 0
        self._last_message = self.initial_message
        self.sink.send(0, self.total, self.initial_message, [])

    def tick(self) -> None:
        logs = self.capture.read()
        new_logs = logs[self._last_log_count:]
        self._last_log_count = len(logs)

        if logs:
            snapshot = extract_package_progress(logs, self.total)
            progress = to_count(
                snapshot.completed_count
                if snapshot.completed_count > 0
                else (snapshot.current_index or 0)
            )
            message = snapshot.message or self.initial_message
            self._dispatch(progress, message, new_logs or None)
        elif self.total is not None:
            # Heartbeat; the dedup below keeps it to a single send
            self._dispatch(0, self.initial_message, None)

    def _dispatch(self, progress: int, message: str, new_logs: Optional[List[str]]) -> None:
        if progress == self._last_progress and message == self._last_message:
            return
        self._last_progress = progress
        self._last_message = message
        self.sink.send(progress, self.total, message, new_logs)


def create_config(args: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
    """Base config handed to every operation, built inside the target directory."""
    return {
        "dry_run": bool(args.get("dry_run", False)),
        "verbose": False,
        "debug": False,
        "config_directory": os.getcwd(),
        "discovered_config_dirs": [],
        "resolved_config_dirs": [],
    }


async def _discover(
    get_initial_status: InitialStatusFn, args: Dict[str, Any], directory: str
) -> Optional[Dict[str, Any]]:
    try:
        outcome = get_initial_status(args, directory)
        if inspect.isawaitable(outcome):
            outcome = await outcome
    except Exception as exc:  # noqa: BLE001
        logger.debug("Initial status discovery failed: %s", exc)
        return None
    return outcome or None


async def execute_command(
    args: Optional[Dict[str, Any]],
    context: ExecutionContext,
    command_fn: CommandFn,
    config_builder: Optional[ConfigBuilder] = None,
    result_builder: Optional[ResultBuilder] = None,
    get_initial_status: Optional[InitialStatusFn] = None,
) -> RunResult:
    """Run *command_fn* with progress reporting and return a RunResult.

    Only a failure of the config builder, the operation or the result
    builder produces a failed result. Discovery and notification errors
    are absorbed.
    """
    args = args or {}
    original_cwd = os.getcwd()
    directory: Optional[str] = args.get("directory") or None

    total: Optional[int] = None
    initial_message = DEFAULT_INITIAL_MESSAGE
    if get_initial_status is not None:
        status = await _discover(get_initial_status, args, directory or original_cwd)
        if status:
            total = to_count(status["total"]) if status.get("total") is not None else None
            initial_message = status.get("message") or initial_message

    capture = install_log_capture()
    timer: Optional[ProgressTimer] = None
    try:
        if total:
            get_logger().info("[0/%d] %s: %s", total, DISCOVERY_LABEL, initial_message)

        sink = select_sink(context)
        reporter: Optional[ProgressReporter] = None
        if sink is not None:
            reporter = ProgressReporter(sink, capture, total, initial_message)
            reporter.start()
            timer = ProgressTimer(context.poll_interval, reporter.tick)
            timer.start()

        scope: Optional[DirectoryScope] = None
        try:
            with working_directory(directory) as scope:
                try:
                    config = create_config(args, context)
                    if config_builder is not None:
                        config_builder(config, args)
                    result = await command_fn(config)
                finally:
                    if timer is not None:
                        timer.cancel()
            data = (
                result_builder(result, args, original_cwd)
                if result_builder is not None
                else {"result": result, "directory": directory or original_cwd}
            )
        except Exception as exc:  # noqa: BLE001
            if timer is not None:
                timer.cancel()
            return _failed(exc, capture, sink, scope)

        logs = capture.read()
        capture.teardown()

        if sink is not None:
            snapshot = extract_package_progress(logs, total)
            final_message = snapshot.message or (
                strip_indicator(logs[-1]) if logs else "Command completed successfully"
            )
            final_progress = to_count(
                snapshot.completed_count
                if snapshot.completed_count > 0
                else (total if total is not None else len(logs))
            )
            final_total = total if total is not None else final_progress
            sink.send(final_progress, final_total, final_message, logs)

        return RunResult(
            success=True,
            data=data,
            message="Dry run completed" if args.get("dry_run") else "Command completed successfully",
            logs=logs or [SUCCESS_PLACEHOLDER],
        )
    finally:
        if timer is not None:
            timer.cancel()
        capture.teardown()


def _failed(
    exc: BaseException,
    capture: LogCapture,
    sink: Optional[NotificationSink],
    scope: Optional[DirectoryScope],
) -> RunResult:
    logs = capture.read()
    capture.teardown()

    if sink is not None:
        sink.send(len(logs), None, f"Error: {str(exc) or 'Command failed'}", logs or None)

    formatted = format_error_for_mcp(exc)
    details = extract_command_error_details(exc)
    context = dict(formatted.context)
    if scope is not None and scope.restore_error is not None:
        context["directoryRestoreError"] = str(scope.restore_error)
    logger.warning("Command failed: %s", formatted.message)

    return RunResult(
        success=False,
        error=formatted.message,
        context=context,
        recovery=formatted.recovery,
        details=details,
        message="Command failed",
        logs=logs or [FAILURE_PLACEHOLDER],
    )
