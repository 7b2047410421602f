"""Operation errors and their translation into MCP tool results."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple


class CommandError(RuntimeError):
    """A wrapped operation failed.

    Carries whatever the operation knew about the failure so the client
    can diagnose it without re-running.
    """

    def __init__(
        self,
        message: str,
        *,
        stdout: Optional[str] = None,
        stderr: Optional[str] = None,
        exit_code: Optional[int] = None,
        phase: Optional[str] = None,
        files: Optional[Sequence[str]] = None,
        recoverable: bool = False,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code
        self.phase = phase
        self.files = list(files) if files is not None else None
        self.recoverable = recoverable
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


@dataclass
class FormattedError:
    message: str
    context: Dict[str, Any] = field(default_factory=dict)
    recovery: List[str] = field(default_factory=list)


@dataclass
class ErrorDetails:
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    exit_code: Optional[int] = None
    phase: Optional[str] = None
    files: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exitCode": self.exit_code,
            "phase": self.phase,
            "files": self.files,
        }
        return {k: v for k, v in data.items() if v is not None}


# (patterns, suggestions); the first table whose pattern occurs in the error text wins
_RECOVERY_RULES: Tuple[Tuple[Tuple[str, ...], Tuple[str, ...]], ...] = (
    (
        ("merge conflict", "conflict", "not possible to fast-forward", "diverged"),
        (
            "Resolve the conflicting files and commit the result",
            "Run `git status` to see which files are affected",
        ),
    ),
    (
        ("nothing to commit", "no changes added", "working tree clean"),
        ("Stage changes with `git add` before committing",),
    ),
    (
        ("unauthorized", "authentication", "permission denied", "403", "401", "e401", "enoneed"),
        (
            "Check that your credentials or tokens are set and valid",
            "Verify you have permission for this repository or registry",
        ),
    ),
    (
        ("etimedout", "econnreset", "enotfound", "network", "could not resolve host"),
        ("Check your network connection and retry",),
    ),
    (
        ("npm publish", "e409", "cannot publish over", "version already exists"),
        (
            "Bump the package version before publishing again",
            "Check the registry for an already published version",
        ),
    ),
    (
        ("test failed", "tests failed", "lint", "eslint", "precommit"),
        (
            "Fix the failing checks shown in stdout/stderr",
            "Re-run precommit locally to confirm the fix",
        ),
    ),
    (
        ("command not found", "no such file or directory", "enoent"),
        ("Make sure the required command is installed and on PATH",),
    ),
)

_GENERIC_RECOVERY = (
    "Review the captured logs for the failing step",
    "Fix the reported problem and run the command again",
)


def _error_text(exc: BaseException) -> str:
    parts = [str(exc)]
    stderr = getattr(exc, "stderr", None)
    if isinstance(stderr, bytes):
        stderr = stderr.decode("utf-8", errors="replace")
    if isinstance(stderr, str):
        parts.append(stderr)
    return "\n".join(parts).lower()


def _exit_code(exc: BaseException) -> Optional[int]:
    for attr in ("exit_code", "exitCode", "returncode"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def format_error_for_mcp(exc: BaseException) -> FormattedError:
    """Turn an exception into a message, context and recovery hints."""
    message = str(exc) or type(exc).__name__
    context: Dict[str, Any] = {"errorType": type(exc).__name__}
    phase = getattr(exc, "phase", None)
    if phase:
        context["phase"] = phase
    exit_code = _exit_code(exc)
    if exit_code is not None:
        context["exitCode"] = exit_code
    if getattr(exc, "recoverable", False):
        context["recoverable"] = True
    cause = getattr(exc, "cause", None) or exc.__cause__
    if cause is not None:
        context["cause"] = str(cause)

    text = _error_text(exc)
    recovery: List[str] = []
    for patterns, suggestions in _RECOVERY_RULES:
        if any(p in text for p in patterns):
            recovery.extend(suggestions)
            break
    if not recovery:
        recovery.extend(_GENERIC_RECOVERY)
    return FormattedError(message=message, context=context, recovery=recovery)


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def extract_command_error_details(exc: BaseException) -> ErrorDetails:
    """Pull stdout/stderr/exit code/phase/files off *exc* where present.

    Works with :class:`CommandError`, ``subprocess.CalledProcessError`` and
    any exception exposing the same attribute names.
    """
    files = getattr(exc, "files", None)
    phase = getattr(exc, "phase", None)
    return ErrorDetails(
        stdout=_as_text(getattr(exc, "stdout", None) or getattr(exc, "output", None)),
        stderr=_as_text(getattr(exc, "stderr", None)),
        exit_code=_exit_code(exc),
        phase=str(phase) if phase else None,
        files=[str(f) for f in files] if files else None,
    )
