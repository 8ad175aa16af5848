"""Reflection targets, run history and where they live on disk."""

import dataclasses
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .models import ContextSource, EditRecord, ReflectionRun, ReflectTarget, TranscriptSource

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100


@dataclass(frozen=True)
class ReflectPaths:
    """Files and directories used by one reflection invocation."""
    config_file: Path
    history_file: Path
    sessions_dir: Path
    backup_dir: Path

    @classmethod
    def from_root(cls, root: Path) -> "ReflectPaths":
        root = Path(root).expanduser()
        return cls(
            config_file=root / "reflect.json",
            history_file=root / "reflect-history.json",
            sessions_dir=root / "sessions",
            backup_dir=root / "reflect-backups",
        )

    @classmethod
    def default(cls) -> "ReflectPaths":
        return cls.from_root(Path.home() / ".pi" / "agent")


def resolve_path(path: str) -> Path:
    """Expand ``~`` and resolve relative paths against the working directory."""
    return Path(path).expanduser().resolve()


def format_timestamp(now: Optional[datetime] = None) -> str:
    """Compact UTC timestamp for backup names, e.g. ``20260212_030405``."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y%m%d_%H%M%S")


def target_from_dict(raw: dict, paths: ReflectPaths) -> ReflectTarget:
    """Merge a stored target over the defaults.

    Accepts both snake_case and the camelCase keys written by older tools.
    """
    aliases = {
        "lookbackDays": "lookback_days",
        "maxSessionBytes": "max_session_bytes",
        "backupDir": "backup_dir",
        "transcriptSource": "transcript_source",
    }
    known = {f.name for f in dataclasses.fields(ReflectTarget)}
    values = {}
    for key, value in raw.items():
        key = aliases.get(key, key)
        if key in known and value is not None:
            values[key] = value

    target = ReflectTarget(**values)
    if not target.backup_dir:
        target.backup_dir = str(paths.backup_dir)
    if isinstance(target.transcript_source, dict):
        target.transcript_source = TranscriptSource(
            type=target.transcript_source.get("type", "pi-sessions"),
            command=target.transcript_source.get("command"),
        )
    target.transcripts = _context_sources(target.transcripts)
    target.context = _context_sources(target.context)
    return target


def _context_sources(raw) -> Optional[list]:
    if not raw:
        return None
    sources = []
    for item in raw:
        if isinstance(item, ContextSource):
            sources.append(item)
        elif isinstance(item, dict) and item.get("type"):
            sources.append(ContextSource(
                type=item["type"],
                label=item.get("label"),
                paths=item.get("paths"),
                command=item.get("command"),
                url=item.get("url"),
                max_bytes=item.get("max_bytes") or item.get("maxBytes") or 100 * 1024,
            ))
    return sources


def default_target(path: str, paths: ReflectPaths) -> ReflectTarget:
    return target_from_dict({"path": path}, paths)


def load_config(paths: ReflectPaths) -> list:
    """Load configured targets; a missing or malformed file means none."""
    try:
        raw = json.loads(paths.config_file.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return []
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable config %s: %s", paths.config_file, e)
        return []

    targets = raw.get("targets", []) if isinstance(raw, dict) else []
    return [target_from_dict(t, paths) for t in targets if isinstance(t, dict)]


def save_config(paths: ReflectPaths, targets: list) -> None:
    paths.config_file.parent.mkdir(parents=True, exist_ok=True)
    data = {"targets": [_drop_none(dataclasses.asdict(t)) for t in targets]}
    paths.config_file.write_text(json.dumps(data, indent=2), encoding="utf-8")


def _drop_none(value):
    if isinstance(value, dict):
        return {k: _drop_none(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_drop_none(v) for v in value]
    return value


def find_target(targets: list, path: str) -> Optional[ReflectTarget]:
    wanted = resolve_path(path)
    for target in targets:
        if resolve_path(target.path) == wanted:
            return target
    return None


def run_from_dict(raw: dict) -> ReflectionRun:
    known = {f.name for f in dataclasses.fields(ReflectionRun)}
    values = {k: v for k, v in raw.items() if k in known}
    values["edits"] = [
        EditRecord(kind=e.get("kind", "insert"), section=e.get("section", ""), reason=e.get("reason", ""))
        for e in values.get("edits") or []
        if isinstance(e, dict)
    ]
    return ReflectionRun(**values)


def load_history(paths: ReflectPaths) -> list:
    """Load past runs, oldest first. Unreadable history loads as empty."""
    try:
        raw = json.loads(paths.history_file.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return []
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable history %s: %s", paths.history_file, e)
        return []

    if not isinstance(raw, list):
        return []

    runs = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            runs.append(run_from_dict(item))
        except TypeError as e:
            logger.debug("Skipping history entry: %s", e)
    return runs


def save_history(paths: ReflectPaths, runs: list) -> None:
    """Persist the newest ``HISTORY_LIMIT`` runs."""
    paths.history_file.parent.mkdir(parents=True, exist_ok=True)
    data = [dataclasses.asdict(r) for r in runs[-HISTORY_LIMIT:]]
    paths.history_file.write_text(json.dumps(data, indent=2), encoding="utf-8")


def append_history(paths: ReflectPaths, run: ReflectionRun) -> None:
    runs = load_history(paths)
    runs.append(run)
    save_history(paths, runs)
