"""Capture entry point called by the shell hook after each command."""

import re
import subprocess
import time
from pathlib import Path
from typing import Optional

import structlog

from .db import Store
from .models import Command, Session
from .privacy import should_ignore


logger = structlog.get_logger(__name__)

MAX_OUTPUT_BYTES = 10 * 1024

# CSI sequences, OSC sequences (BEL or ST terminated) and two-byte escapes.
ANSI_ESCAPE = re.compile(
    r"\x1b\[[0-?]*[ -/]*[@-~]"
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
    r"|\x1b[@-Z\\-_]"
)


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE.sub("", text)


def clean_output(raw: bytes) -> Optional[str]:
    """Truncate to MAX_OUTPUT_BYTES, decode lossily, strip ANSI and whitespace."""
    text = raw[:MAX_OUTPUT_BYTES].decode("utf-8", errors="replace")
    text = strip_ansi(text).strip()
    return text or None


def read_output_file(path: Path) -> Optional[str]:
    try:
        with path.open("rb") as fh:
            raw = fh.read(MAX_OUTPUT_BYTES)
    except OSError:
        return None
    return clean_output(raw)


def discard_output_file(path: Optional[Path]) -> None:
    if path is not None:
        path.unlink(missing_ok=True)


def _git(cwd: str, *args: str) -> Optional[str]:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=2,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def detect_git_repo(cwd: str) -> Optional[str]:
    """Name of the repository containing ``cwd`` (top-level directory name)."""
    top = _git(cwd, "rev-parse", "--show-toplevel")
    return Path(top).name if top else None


def detect_git_branch(cwd: str) -> Optional[str]:
    branch = _git(cwd, "rev-parse", "--abbrev-ref", "HEAD")
    if branch == "HEAD":
        return None
    return branch


def now_ms() -> int:
    return int(time.time() * 1000)


def log_command(
    store: Store,
    *,
    command: str,
    session_id: str,
    ignore_patterns: list[str],
    paused: bool,
    exit_code: Optional[int] = None,
    start_ms: Optional[int] = None,
    cwd: Optional[str] = None,
    terminal: Optional[str] = None,
    output_file: Optional[Path] = None,
    now: Optional[int] = None,
) -> Optional[int]:
    """Record one finished command; return its id, or None if nothing was written.

    Ignored and paused captures are silent no-ops. The output file, if given,
    is always deleted.
    """
    try:
        if should_ignore(command, ignore_patterns):
            logger.debug("capture.ignored", session_id=session_id)
            return None
        if paused:
            logger.debug("capture.paused", session_id=session_id)
            return None

        now = now if now is not None else now_ms()
        started = start_ms if start_ms is not None else now

        git_repo = git_branch = None
        if cwd:
            git_repo, git_branch = detect_git_repo(cwd), detect_git_branch(cwd)

        output = read_output_file(output_file) if output_file is not None else None

        session = Session(
            id=session_id,
            start_time=started,
            terminal_app=terminal,
            initial_dir=cwd,
        )
        cmd = Command(
            session_id=session_id,
            command_text=command,
            timestamp=started,
            duration_ms=now - start_ms if start_ms is not None else None,
            cwd=cwd,
            git_repo=git_repo,
            git_branch=git_branch,
            exit_code=exit_code,
            output=output,
        )
        with store.transaction():
            store.put_session(session)
            command_id = store.put_command(cmd)
        logger.debug("capture.logged", session_id=session_id, command_id=command_id)
        return command_id
    finally:
        discard_output_file(output_file)
