"""Question answering and session summaries on top of the event store."""

from collections.abc import Callable
from datetime import datetime
from typing import Optional

import structlog
from pydantic import BaseModel

from . import llm
from .config import LLMConfig
from .db import Store
from .errors import LLMError
from .models import Command, Summary
from .search import SearchOptions, recent, search


logger = structlog.get_logger(__name__)

Completer = Callable[[LLMConfig, str, str], str]

MIN_KEYWORD_LEN = 3
KEYWORD_LIMIT = 10
RECENT_BACKFILL = 50
MAX_CANDIDATES = 100
MIN_COMMANDS_TO_SUMMARIZE = 3
OUTPUT_LINES_IN_PROMPT = 10

NO_MATCHES = "No matching commands found in your history."

ANSWER_PREAMBLE = (
    "You are a terminal history assistant. The user is asking about their command-line "
    "activity. Below is a list of relevant commands from their history. Answer their "
    "question based on this data. Be concise and specific. Format timestamps as "
    "human-readable.\n\nCommand history:\n"
)

SUMMARY_PREAMBLE = (
    "You are a terminal activity summarizer. Given the following sequence of shell "
    "commands from a single session, provide:\n"
    "1. A concise summary (1-2 sentences) of what the user was doing\n"
    '2. A JSON array of relevant tags (e.g. ["git", "rust", "debugging"])\n'
    '3. A one-word intent (e.g. "development", "deployment", "debugging", "configuration")\n\n'
    "Respond in exactly this format:\n"
    "SUMMARY: <your summary>\n"
    "TAGS: <json array>\n"
    "INTENT: <one word>\n\n"
    "Commands:\n"
)


def _fmt_ts(ms: int, fmt: str) -> str:
    try:
        return datetime.fromtimestamp(ms / 1000).strftime(fmt)
    except (OverflowError, OSError, ValueError):
        return "unknown"


def _exit(code: Optional[int]) -> str:
    return "?" if code is None else str(code)


def gather_candidates(store: Store, question: str) -> list[Command]:
    """Keyword hits plus recent commands, deduplicated, newest first."""
    candidates: dict[int, Command] = {}
    for word in question.split():
        if len(word) < MIN_KEYWORD_LEN:
            continue
        for result in search(store, SearchOptions(query=word, limit=KEYWORD_LIMIT)):
            candidates[result.command.id] = result.command

    for cmd in recent(store, RECENT_BACKFILL):
        candidates.setdefault(cmd.id, cmd)

    ordered = sorted(candidates.values(), key=lambda c: (c.timestamp, c.id), reverse=True)
    return ordered[:MAX_CANDIDATES]


def build_answer_context(commands: list[Command]) -> str:
    lines = [ANSWER_PREAMBLE]
    for cmd in commands:
        lines.append(
            f"- [{_fmt_ts(cmd.timestamp, '%Y-%m-%d %H:%M')}] `{cmd.command_text}` "
            f"(dir: {cmd.cwd or '?'}, repo: {cmd.git_repo or '-'}, "
            f"branch: {cmd.git_branch or '-'}, exit: {_exit(cmd.exit_code)})\n"
        )
    return "".join(lines)


def answer_question(
    config: LLMConfig,
    question: str,
    commands: list[Command],
    complete: Optional[Completer] = None,
) -> str:
    if not commands:
        return NO_MATCHES
    complete = complete or llm.complete
    return complete(config, build_answer_context(commands), question)


def build_summary_context(commands: list[Command]) -> str:
    lines = [SUMMARY_PREAMBLE]
    for cmd in commands:
        lines.append(
            f"  [{_fmt_ts(cmd.timestamp, '%H:%M:%S')}] {cmd.command_text} "
            f"(exit: {_exit(cmd.exit_code)})\n"
        )
        if cmd.output:
            head = "\n".join(cmd.output.splitlines()[:OUTPUT_LINES_IN_PROMPT])
            lines.append(f"    output: {head}\n")
    return "".join(lines)


def parse_summary(response: str) -> tuple[str, str, str]:
    """Pull SUMMARY/TAGS/INTENT lines out of a model reply."""
    summary, tags, intent = "", "[]", "unknown"
    for line in response.splitlines():
        line = line.strip()
        if line.startswith("SUMMARY:"):
            summary = line.removeprefix("SUMMARY:").strip()
        elif line.startswith("TAGS:"):
            tags = line.removeprefix("TAGS:").strip()
        elif line.startswith("INTENT:"):
            intent = line.removeprefix("INTENT:").strip()

    if not summary:
        lines = response.splitlines()
        summary = lines[0] if lines else "Session activity"
    return summary, tags, intent


def summarize_session(
    config: LLMConfig,
    commands: list[Command],
    complete: Optional[Completer] = None,
) -> tuple[str, str, str]:
    """Return (summary_text, tags_json, intent) for a session's commands."""
    if not commands:
        return "Empty session", "[]", "unknown"
    complete = complete or llm.complete
    response = complete(config, build_summary_context(commands), "Summarize this session.")
    return parse_summary(response)


class SummaryOutcome(BaseModel):
    session_id: str
    summary: Optional[Summary] = None
    error: Optional[str] = None


def summarize_pending(
    store: Store,
    config: LLMConfig,
    complete: Optional[Completer] = None,
    now_ms: Optional[Callable[[], int]] = None,
) -> list[SummaryOutcome]:
    """Summarize every session that has enough commands and no summary yet.

    An LLM failure is recorded on that session's outcome and the batch goes on;
    store failures propagate.
    """
    clock = now_ms or (lambda: int(datetime.now().timestamp() * 1000))
    outcomes = []
    for session_id in store.unsummarized_sessions(MIN_COMMANDS_TO_SUMMARIZE):
        commands = store.commands_in_session(session_id)
        try:
            text, tags, intent = summarize_session(config, commands, complete)
        except LLMError as exc:
            logger.warning("summarize.failed", session_id=session_id, error=str(exc))
            outcomes.append(SummaryOutcome(session_id=session_id, error=str(exc)))
            continue

        summary = Summary(
            session_id=session_id,
            summary_text=text,
            tags=tags,
            intent=intent,
            created_at=clock(),
        )
        summary.id = store.put_summary(summary)
        outcomes.append(SummaryOutcome(session_id=session_id, summary=summary))
    return outcomes
