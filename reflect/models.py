"""Data models for reflection runs."""

from dataclasses import dataclass, field
from typing import Optional


# Appended to every session entry when evidence is packed or batched
SESSION_SEPARATOR = "\n---\n\n"

REPLACE = "replace"
INSERT = "insert"

# Wire names used by the analysis response, mapped to edit kinds
EDIT_KIND_ALIASES = {
    "strengthen": REPLACE,
    "replace": REPLACE,
    "add": INSERT,
    "insert": INSERT,
}


def _text_or_none(value) -> Optional[str]:
    return value if isinstance(value, str) else None


@dataclass(frozen=True)
class Exchange:
    """One turn in a session log."""
    role: str  # "user" or "agent"
    text: Optional[str] = None
    thinking: Optional[str] = None


@dataclass(frozen=True)
class SessionRecord:
    """A session's formatted transcript plus the metrics used to rank it."""
    user_turns: int
    total_turns: int
    transcript: str
    project: str
    time_label: str

    @property
    def size(self) -> int:
        return len(self.transcript)

    @property
    def priority(self) -> tuple:
        """Sort key: share of user turns, then raw user turns."""
        return (self.user_turns / max(self.total_turns, 1), self.user_turns)


@dataclass
class EvidenceBundle:
    """Formatted evidence handed to the orchestrator."""
    text: str = ""
    sessions_scanned: int = 0
    sessions_included: int = 0
    sessions: Optional[list] = None

    @property
    def size(self) -> int:
        return len(self.text)


@dataclass
class ProposedEdit:
    """An anchored edit proposed by the analysis step.

    ``replace`` edits locate ``anchor_text`` and substitute ``new_text``;
    ``insert`` edits place ``new_text`` on a new line after ``insert_after_text``.
    """
    kind: Optional[str]
    new_text: Optional[str] = None
    anchor_text: Optional[str] = None
    insert_after_text: Optional[str] = None
    section: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def from_dict(cls, raw) -> "ProposedEdit":
        if not isinstance(raw, dict):
            return cls(kind=None)
        wire_type = _text_or_none(raw.get("type"))
        kind = EDIT_KIND_ALIASES.get(wire_type, wire_type)
        # Non-string fields become None so the edit is rejected as invalid
        return cls(
            kind=kind,
            new_text=_text_or_none(raw.get("new_text")),
            anchor_text=_text_or_none(raw.get("old_text")),
            insert_after_text=_text_or_none(raw.get("after_text")),
            section=_text_or_none(raw.get("section")),
            reason=_text_or_none(raw.get("reason")),
        )

    def describe(self) -> str:
        return repr({
            "kind": self.kind,
            "anchor_text": self.anchor_text,
            "insert_after_text": self.insert_after_text,
            "new_text": self.new_text,
        })


@dataclass
class EditOutcome:
    """Result of applying a list of edits to one document text."""
    final_text: str
    applied_count: int = 0
    rejections: list = field(default_factory=list)


@dataclass
class EditRecord:
    """Per-edit detail kept in history for recidivism tracking."""
    kind: str
    section: str
    reason: str


@dataclass
class AnalysisResult:
    """Structured response from the analysis collaborator."""
    corrections_found: int = 0
    sessions_with_corrections: int = 0
    edits: list = field(default_factory=list)
    patterns_not_added: list = field(default_factory=list)
    summary: Optional[str] = None


@dataclass
class ReflectionRun:
    """Persisted record of one reflection pass."""
    timestamp: str
    target_path: str
    sessions_analyzed: int
    corrections_found: int
    edits_applied: int
    summary: str
    diff_lines: int
    sessions_scanned: int = 0
    correction_rate: float = 0.0
    edits: list = field(default_factory=list)
    source_date: Optional[str] = None


@dataclass
class ContextSource:
    """An auxiliary text source: files, a shell command, or an HTTP GET."""
    type: str  # "files", "command" or "url"
    label: Optional[str] = None
    paths: Optional[list] = None
    command: Optional[str] = None
    url: Optional[str] = None
    max_bytes: int = 100 * 1024


@dataclass
class TranscriptSource:
    """Where session evidence comes from when no source list is configured."""
    type: str = "pi-sessions"  # or "command"
    command: Optional[str] = None


@dataclass
class ReflectTarget:
    """A document kept up to date by reflection."""
    path: str = ""
    schedule: str = "daily"  # "daily" or "manual"
    model: str = "anthropic/claude-sonnet-4-5"
    lookback_days: int = 1
    max_session_bytes: int = 600 * 1024
    backup_dir: Optional[str] = None
    transcript_source: TranscriptSource = field(default_factory=TranscriptSource)
    transcripts: Optional[list] = None
    prompt: Optional[str] = None
    context: Optional[list] = None
