"""Parse agent session logs into exchanges and transcripts."""

import getpass
import json
import logging
import os
import re
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .models import Exchange

logger = logging.getLogger(__name__)

MAX_AGENT_MSG_CHARS = 2000
MAX_THINKING_MSG_CHARS = 1500

# Raw log roles mapped to exchange roles
ROLES = {"user": "user", "assistant": "agent", "agent": "agent"}


def iter_exchanges(session_path: Path) -> Iterator[Exchange]:
    """Yield the user/agent exchanges of a session log in file order.

    Only ``message`` records are considered. Text and thinking blocks of one
    record are each joined with newlines; records with neither are skipped.
    Malformed lines are skipped, and an unreadable file yields nothing.

    Args:
        session_path: Path to the .jsonl session file.
    """
    try:
        with open(session_path, "r", encoding="utf-8", errors="replace") as f:
            for lineno, line in enumerate(f, 1):
                if not line.strip():
                    continue

                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("Skipping malformed line %d in %s", lineno, session_path)
                    continue

                exchange = _exchange_from_entry(entry)
                if exchange:
                    yield exchange
    except OSError as e:
        logger.warning("Could not read session %s: %s", session_path, e)


def extract_exchanges(session_path: Path) -> list:
    """Read all exchanges of a session log into a list."""
    return list(iter_exchanges(session_path))


def _exchange_from_entry(entry) -> Optional[Exchange]:
    """Build an exchange from one log record, or None if it has no content."""
    if not isinstance(entry, dict) or entry.get("type") != "message":
        return None

    message = entry.get("message")
    if not isinstance(message, dict):
        return None

    role = ROLES.get(message.get("role"))
    content = message.get("content")
    if not role or not isinstance(content, list):
        return None

    text_parts = []
    thinking_parts = []

    for block in content:
        if not isinstance(block, dict):
            continue

        if block.get("type") == "text":
            text = _stripped(block.get("text"))
            if text:
                text_parts.append(text)
        elif block.get("type") == "thinking":
            thinking = _stripped(block.get("thinking"))
            if thinking:
                thinking_parts.append(thinking)

    if not text_parts and not thinking_parts:
        return None

    return Exchange(
        role=role,
        text="\n".join(text_parts) or None,
        thinking="\n".join(thinking_parts) or None,
    )


def _stripped(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def truncate_text(text: Optional[str], limit: int) -> Optional[str]:
    """Cut text to ``limit`` characters, noting how many were dropped."""
    if not text or len(text) <= limit:
        return text
    return f"{text[:limit]}\n[...truncated, {len(text) - limit} chars omitted]"


def format_session_transcript(exchanges: Iterable[Exchange], session_label: str, project: str) -> str:
    """Format exchanges as a labeled markdown block.

    Agent reasoning and agent text are truncated independently.
    """
    lines = [f"### Session: {project} [{session_label}]", ""]

    for ex in exchanges:
        if ex.role == "user":
            # User records carrying only reasoning have nothing to show
            if ex.text:
                lines.append(f"**USER:** {ex.text}")
                lines.append("")
            continue

        if ex.thinking:
            lines.append(f"**THINKING:** {truncate_text(ex.thinking, MAX_THINKING_MSG_CHARS)}")
            lines.append("")
        if ex.text:
            lines.append(f"**AGENT:** {truncate_text(ex.text, MAX_AGENT_MSG_CHARS)}")
            lines.append("")

    return "\n".join(lines)


def project_name_from_dir(dirname: str, user: Optional[str] = None) -> str:
    """Turn a session directory name back into a readable project path.

    Session directories encode the working directory, e.g.
    ``--Users-alice-code--reflect--`` becomes ``code/reflect``.
    """
    user = user or os.environ.get("USER") or _current_user()
    name = dirname
    for prefix in (f"--Users-{user}-", f"--home-{user}-"):
        if name.startswith(prefix):
            name = name[len(prefix):]
    name = re.sub(r"^[-/]+|[-/]+$", "", name.replace("--", "/"))
    return name or "workspace"


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "user"
