"""Infer package-level progress from free-text operation logs.

Tree operations report lines such as ``[3/13] @scope/pkg: Running build``.
The extractor looks for those markers and turns the captured buffer into
a :class:`ProgressSnapshot`.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Sequence

# Label of the line the executor logs after discovery. Skipped when
# picking the current package.
DISCOVERY_LABEL = "Discovery"

DEFAULT_MESSAGE = "Processing..."

# Optional indicator prefix, then "[index/total] label: action"
_PACKAGE_RE = re.compile(r"(?:[^\[]+\s+)?\[(\d+)/(\d+)\]\s+([^:]+):\s*(.+)")
# A success glyph or word before a bracket marker, with or without a label
_COMPLETION_RE = re.compile(r"(?:✅|✓|Success|completed|finished).*?\[(\d+)/(\d+)\]", re.IGNORECASE)
_COMPLETION_WORDS = ("completed", "success", "finished")
_COMPLETION_GLYPHS = ("✅", "✓")
_INDICATOR_RE = re.compile(r"^\S+\s")


@dataclass(frozen=True)
class ProgressSnapshot:
    current_package: Optional[str]
    current_index: Optional[int]
    completed_count: int
    message: str


def _plural(count: int) -> str:
    return "" if count == 1 else "s"


def found_packages_message(total: int) -> str:
    return f"Found {total} package{_plural(total)} to process"


def strip_indicator(line: str) -> str:
    """Drop the leading level indicator from a captured log line."""
    return _INDICATOR_RE.sub("", line, count=1).strip()


def _is_completion(action: str, line: str) -> bool:
    lowered = action.lower()
    if any(word in lowered for word in _COMPLETION_WORDS):
        return True
    return any(glyph in line for glyph in _COMPLETION_GLYPHS)


def extract_package_progress(logs: Sequence[str], total_packages: Optional[int]) -> ProgressSnapshot:
    """Summarize *logs* (oldest first) into a progress snapshot.

    The newest non-discovery marker names the current package. Every
    completion signal in the buffer raises ``completed_count`` to its index.
    """
    if not logs:
        return ProgressSnapshot(
            current_package=None,
            current_index=None,
            completed_count=0,
            message=DEFAULT_MESSAGE,
        )

    current_package: Optional[str] = None
    current_index: Optional[int] = None
    completed_count = 0
    discovery = DISCOVERY_LABEL.lower()

    for line in reversed(logs):
        match = _PACKAGE_RE.search(line)
        if match:
            index = int(match.group(1))
            package = match.group(3).strip()
            action = match.group(4).strip()
            if package.lower() != discovery:
                if current_package is None:
                    current_package = package
                    current_index = index
                if _is_completion(action, line):
                    completed_count = max(completed_count, index)

        completion = _COMPLETION_RE.search(line)
        if completion:
            completed_count = max(completed_count, int(completion.group(1)))

    if current_package and current_index is not None and total_packages is not None:
        message = f"Processing {current_package} ({current_index}/{total_packages})"
    elif current_package:
        message = f"Processing {current_package}..."
    elif total_packages is not None:
        message = found_packages_message(total_packages)
    else:
        message = strip_indicator(logs[-1]) or DEFAULT_MESSAGE

    return ProgressSnapshot(
        current_package=current_package,
        current_index=current_index,
        completed_count=completed_count,
        message=message,
    )
