"""Run kodrdriv CLI commands as async subprocesses.

Output is forwarded line by line to the shared ``kodrdriv`` logger, which
is where log capture picks it up for progress and for the tool result.
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

from kodrdriv_mcp.core.errors import CommandError
from kodrdriv_mcp.core.logging_config import get_logger

logger = logging.getLogger("kodrdriv_mcp.commands")

DEFAULT_BINARY = "kodrdriv"


def _flag(key: str) -> str:
    return "--" + key.replace("_", "-")


def config_to_argv(subcommand: str, config: Dict[str, Any], section: Optional[str] = None) -> List[str]:
    """Translate a tool config dict into CLI arguments.

    Top-level ``dry_run`` becomes ``--dry-run``; entries of
    ``config[section]`` become flags. Booleans are switches, lists are
    comma-joined, callables and ``None`` are skipped.
    """
    argv = subcommand.split()
    if config.get("dry_run"):
        argv.append("--dry-run")
    for key, value in (config.get(section or subcommand.split()[0]) or {}).items():
        if value is None or callable(value):
            continue
        if isinstance(value, bool):
            if value:
                argv.append(_flag(key))
        elif isinstance(value, (list, tuple)):
            if value:
                argv.extend([_flag(key), ",".join(str(v) for v in value)])
        else:
            argv.extend([_flag(key), str(value)])
    return argv


async def _pump(stream: Optional[asyncio.StreamReader], level: int, op_logger: logging.Logger, sink: List[str]) -> None:
    if stream is None:
        return
    while True:
        raw = await stream.readline()
        if not raw:
            break
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        sink.append(line)
        if line.strip():
            op_logger.log(level, line)


async def run_kodrdriv(
    subcommand: str,
    config: Dict[str, Any],
    *,
    section: Optional[str] = None,
    binary: Optional[str] = None,
) -> Dict[str, Any]:
    """Run ``kodrdriv <subcommand>`` in the current directory.

    Raises :class:`CommandError` carrying stdout, stderr and exit code when
    the command exits non-zero or cannot be started.
    """
    executable = binary or os.getenv("KODRDRIV_BIN", DEFAULT_BINARY)
    argv = [executable, *config_to_argv(subcommand, config, section)]
    op_logger = get_logger().getChild(subcommand.split()[0])
    logger.info("Running: %s (cwd=%s)", " ".join(argv), os.getcwd())

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise CommandError(
            f"{executable}: command not found",
            exit_code=127,
            phase=subcommand,
            cause=exc,
        ) from exc

    out_lines: List[str] = []
    err_lines: List[str] = []
    await asyncio.gather(
        _pump(process.stdout, logging.INFO, op_logger, out_lines),
        _pump(process.stderr, logging.WARNING, op_logger, err_lines),
    )
    exit_code = await process.wait()
    stdout = "\n".join(out_lines)
    stderr = "\n".join(err_lines)

    if exit_code != 0:
        raise CommandError(
            f"kodrdriv {subcommand} failed with exit code {exit_code}",
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            phase=subcommand,
        )
    return {"command": " ".join(argv), "exitCode": exit_code, "stdout": stdout}
