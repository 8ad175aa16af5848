"""Gather evidence for reflection from session logs, commands and other sources."""

import logging
import re
import subprocess
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Optional

import httpx

from .filters import SESSION_SUFFIX, file_date, in_date_window, is_noise_dir, is_substantive, within_lookback
from .models import SESSION_SEPARATOR, ContextSource, EvidenceBundle, SessionRecord
from .parser import extract_exchanges, format_session_transcript, project_name_from_dir

logger = logging.getLogger(__name__)

COMMAND_TIMEOUT = 60
CONTEXT_COMMAND_TIMEOUT = 30
URL_TIMEOUT = 15.0

TRUNCATION_NOTE = "\n\n[...truncated to fit context budget]"

_SESSION_HEADER_RE = re.compile(r"^### Session:", re.MULTILINE)
_SOURCE_HEADER_RE = re.compile(r"^###\s", re.MULTILINE)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def lookback_dates(lookback_days: int, today: Optional[date] = None) -> list:
    """The dates covered by a lookback window, most recent first.

    The window ends yesterday: ``lookback_days=1`` is just yesterday.
    """
    today = today or utc_today()
    return [today - timedelta(days=i) for i in range(1, lookback_days + 1)]


def session_dirs(sessions_dir: Path) -> list:
    """List session group directories, skipping noise directories."""
    try:
        entries = sorted(sessions_dir.iterdir())
    except OSError as e:
        logger.info("Session directory unavailable %s: %s", sessions_dir, e)
        return []
    return [d for d in entries if d.is_dir() and not is_noise_dir(d.name)]


def scan_sessions(sessions_dir: Path, target_dates: Iterable[date]) -> tuple:
    """Extract every session log dated inside the target dates.

    Returns:
        Tuple of (substantive SessionRecords, number of files scanned).
    """
    target_dates = list(target_dates)
    sessions = []
    scanned = 0

    for group_dir in session_dirs(sessions_dir):
        project = project_name_from_dir(group_dir.name)
        try:
            files = sorted(f for f in group_dir.iterdir() if f.name.endswith(SESSION_SUFFIX))
        except OSError as e:
            logger.warning("Could not list %s: %s", group_dir, e)
            continue

        for session_file in files:
            if not in_date_window(session_file.name, target_dates):
                continue

            scanned += 1
            exchanges = extract_exchanges(session_file)
            user_turns = sum(1 for ex in exchanges if ex.role == "user")
            if not is_substantive(user_turns, len(exchanges)):
                continue

            time_label = session_file.name[:19].replace("T", " ")
            sessions.append(SessionRecord(
                user_turns=user_turns,
                total_turns=len(exchanges),
                transcript=format_session_transcript(exchanges, time_label, project),
                project=project,
                time_label=time_label,
            ))

    return sessions, scanned


def pack_sessions(sessions: list, scanned: int, max_bytes: int) -> EvidenceBundle:
    """Pack sessions into a byte budget, highest priority first.

    Sessions that would overflow the budget are skipped; smaller ones after
    them may still fit.
    """
    if not sessions:
        return EvidenceBundle(sessions_scanned=scanned)

    ranked = sorted(sessions, key=lambda s: s.priority, reverse=True)

    parts = []
    included = []
    current_size = 0
    for session in ranked:
        entry = session.transcript + SESSION_SEPARATOR
        if current_size + len(entry) > max_bytes:
            continue
        parts.append(entry)
        included.append(session)
        current_size += len(entry)

    header = (
        "# Session Transcripts\n"
        f"# Sessions scanned: {scanned}, {len(sessions)} with substantive conversation, "
        f"{len(included)} included\n"
        f"# Total user messages: {sum(s.user_turns for s in sessions)}\n\n"
    )

    return EvidenceBundle(
        text=header + "".join(parts),
        sessions_scanned=scanned,
        sessions_included=len(included),
        sessions=included,
    )


def collect_for_dates(target_dates: Iterable[date], max_bytes: int, sessions_dir: Path) -> EvidenceBundle:
    sessions, scanned = scan_sessions(Path(sessions_dir), target_dates)
    return pack_sessions(sessions, scanned, max_bytes)


def collect_transcripts(
    lookback_days: int,
    max_bytes: int,
    sessions_dir: Path,
    today: Optional[date] = None,
) -> EvidenceBundle:
    """Collect session evidence for the last ``lookback_days`` days.

    Args:
        lookback_days: Number of days before today to cover.
        max_bytes: Budget for the packed transcripts.
        sessions_dir: Root directory holding one subdirectory per project.
        today: Reference date, defaults to the current UTC date.

    Returns:
        EvidenceBundle with the formatted transcripts and counters.
    """
    return collect_for_dates(lookback_dates(lookback_days, today), max_bytes, sessions_dir)


def collect_for_date(target_date: date, max_bytes: int, sessions_dir: Path) -> EvidenceBundle:
    """Collect session evidence for a single day."""
    return collect_for_dates([target_date], max_bytes, sessions_dir)


def available_session_dates(sessions_dir: Path) -> list:
    """Sorted ISO dates that have at least one session log."""
    dates = set()
    for group_dir in session_dirs(Path(sessions_dir)):
        try:
            names = [f.name for f in group_dir.iterdir()]
        except OSError as e:
            logger.warning("Could not list %s: %s", group_dir, e)
            continue
        for name in names:
            if name.endswith(SESSION_SUFFIX) and file_date(name):
                dates.add(name[:10])
    return sorted(dates)


def interpolate(template: str, lookback_days: int) -> str:
    return template.replace("{lookbackDays}", str(lookback_days))


def clip(text: str, max_bytes: int) -> str:
    if len(text) > max_bytes:
        return text[:max_bytes] + TRUNCATION_NOTE
    return text


def collect_from_command(command: str, lookback_days: int, max_bytes: int) -> EvidenceBundle:
    """Use a shell command's stdout as evidence.

    The session count is estimated from ``### Session:`` headers.
    """
    try:
        result = subprocess.run(
            interpolate(command, lookback_days),
            shell=True,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=COMMAND_TIMEOUT,
            check=True,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning("Evidence command failed: %s", e)
        return EvidenceBundle()

    output = clip(result.stdout, max_bytes)
    count = len(_SESSION_HEADER_RE.findall(output)) or 1
    return EvidenceBundle(text=output, sessions_scanned=count, sessions_included=count)


def collect_from_sources(sources: list, lookback_days: int, today: Optional[date] = None) -> EvidenceBundle:
    """Use a list of context sources as evidence."""
    text = collect_context(sources, lookback_days, today)
    count = len(_SOURCE_HEADER_RE.findall(text)) or 1
    return EvidenceBundle(text=text, sessions_scanned=count, sessions_included=count)


def collect_context(sources: list, lookback_days: int, today: Optional[date] = None) -> str:
    """Read auxiliary context sources into one labeled text block.

    Each source is capped at its own ``max_bytes``. Failing sources are
    logged and left out.
    """
    cutoff = (today or utc_today()) - timedelta(days=lookback_days)
    parts = []

    for source in sources:
        label = source.label or source.type
        try:
            content = _read_source(source, lookback_days, cutoff)
        except (OSError, subprocess.SubprocessError, httpx.HTTPError) as e:
            logger.warning("Context source %r failed: %s", label, e)
            continue

        if content:
            parts.append(f"## {label}\n{clip(content, source.max_bytes)}")

    return "\n\n---\n\n".join(parts)


def _read_source(source: ContextSource, lookback_days: int, cutoff: date) -> str:
    if source.type == "files" and source.paths:
        return _read_files(source.paths, lookback_days, cutoff, source.max_bytes)

    if source.type == "command" and source.command:
        result = subprocess.run(
            interpolate(source.command, lookback_days),
            shell=True,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=CONTEXT_COMMAND_TIMEOUT,
            check=True,
        )
        return result.stdout

    if source.type == "url" and source.url:
        response = httpx.get(interpolate(source.url, lookback_days), timeout=URL_TIMEOUT)
        return response.text if response.is_success else ""

    logger.warning("Ignoring context source with nothing to read: %r", source)
    return ""


def _read_files(patterns: list, lookback_days: int, cutoff: date, max_bytes: int) -> str:
    """Read files named by paths or ``*`` globs, newest name first."""
    file_parts = []
    total = 0

    for pattern in patterns:
        expanded = Path(interpolate(pattern, lookback_days)).expanduser()
        if "*" in expanded.name:
            candidates = list(expanded.parent.glob(expanded.name))
        elif expanded.exists():
            candidates = [expanded]
        else:
            candidates = []

        candidates = sorted(
            (c for c in candidates if within_lookback(c.name, cutoff)),
            key=lambda c: c.name,
            reverse=True,
        )

        for candidate in candidates:
            if not candidate.is_file():
                continue
            try:
                content = candidate.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Could not read context file %s: %s", candidate, e)
                continue
            if total + len(content) > max_bytes:
                break
            file_parts.append(f"### {candidate.name}\n{content}")
            total += len(content)

    return "\n\n".join(file_parts)
