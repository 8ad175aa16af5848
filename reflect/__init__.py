"""Reflect - Keep an agent's behavioral file in step with its sessions.

Reflect reads recent agent session logs, asks an LLM where the user had to
correct the agent, and applies small anchored edits to a markdown file of
rules (AGENTS.md, SOUL.md, ...) so the same friction does not recur.

Basic usage:
    from reflect import Reflector, ReflectPaths, default_target

    paths = ReflectPaths.default()
    reflector = Reflector(paths, notify=lambda msg, level: print(msg))
    run = reflector.run(default_target("~/AGENTS.md", paths))  # Requires ANTHROPIC_API_KEY

Applying edits directly:
    from reflect import ProposedEdit, apply_edits

    outcome = apply_edits(text, [ProposedEdit(kind="insert", insert_after_text="- Rule A.", new_text="- Rule B.")])
"""

__version__ = "0.3.0"

from .models import (
    Exchange,
    SessionRecord,
    EvidenceBundle,
    ProposedEdit,
    EditOutcome,
    EditRecord,
    AnalysisResult,
    ReflectionRun,
    ReflectTarget,
    ContextSource,
    TranscriptSource,
)
from .parser import iter_exchanges, format_session_transcript
from .collector import collect_transcripts, collect_for_date, collect_from_command, collect_context
from .batches import build_transcript_batches
from .edits import apply_edits
from .analyzer import AnthropicAnalyzer, build_prompt_for_target, parse_analysis
from .config import ReflectPaths, default_target, load_config, load_history
from .reflection import Reflector, ReflectionOptions
from .cli import main

__all__ = [
    # Models
    "Exchange",
    "SessionRecord",
    "EvidenceBundle",
    "ProposedEdit",
    "EditOutcome",
    "EditRecord",
    "AnalysisResult",
    "ReflectionRun",
    "ReflectTarget",
    "ContextSource",
    "TranscriptSource",
    # Evidence
    "iter_exchanges",
    "format_session_transcript",
    "collect_transcripts",
    "collect_for_date",
    "collect_from_command",
    "collect_context",
    "build_transcript_batches",
    # Editing
    "apply_edits",
    # Analysis
    "AnthropicAnalyzer",
    "build_prompt_for_target",
    "parse_analysis",
    # Orchestration
    "ReflectPaths",
    "default_target",
    "load_config",
    "load_history",
    "Reflector",
    "ReflectionOptions",
    # CLI
    "main",
]
