"""Run a reflection pass: gather evidence, analyze it, and edit the target document."""

import logging
import shutil
import subprocess
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

from .analyzer import AnthropicAnalyzer, EnvModelRegistry, build_prompt_for_target, parse_analysis, split_model_name
from .batches import batch_budget, build_transcript_batches, render_batch
from .collector import collect_context, collect_from_command, collect_from_sources, collect_transcripts, utc_today
from .config import ReflectPaths, format_timestamp, resolve_path
from .edits import apply_edits, count_changed_lines
from .errors import (
    AllEditsRejected,
    AnalysisParseError,
    AnalysisTransportError,
    ModelUnavailable,
    NoEvidence,
    ReflectError,
    ResultTooSmall,
    TargetNotFound,
    TargetTooSmall,
)
from .models import EditRecord, EvidenceBundle, ReflectionRun, ReflectTarget

logger = logging.getLogger(__name__)

NotifyFn = Callable[[str, str], None]

MIN_DOCUMENT_BYTES = 100
# Results smaller than this share of the original are never written
MIN_RESULT_RATIO = 0.5
GIT_TIMEOUT = 5


@dataclass
class ReflectionOptions:
    """Per-run overrides."""
    source_date: Optional[str] = None
    evidence: Optional[EvidenceBundle] = None
    dry_run: bool = False


@dataclass
class _RunTotals:
    batches_succeeded: int = 0
    corrections: int = 0
    proposed: int = 0
    applied: int = 0
    rejections: list = field(default_factory=list)
    summaries: list = field(default_factory=list)
    records: list = field(default_factory=list)
    failures: list = field(default_factory=list)
    backup_path: Optional[Path] = None


def git_commit_hook(target_path: Path, message: str) -> bool:
    """Commit the target's directory if it is a git checkout.

    Best effort: failures are logged and reported as False.
    """
    repo_dir = target_path.resolve().parent
    if not (repo_dir / ".git").exists():
        return False
    try:
        for args in (["git", "add", "-A"], ["git", "commit", "-m", message, "--no-verify"]):
            subprocess.run(args, cwd=repo_dir, capture_output=True, timeout=GIT_TIMEOUT, check=True)
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("Skipping commit in %s: %s", repo_dir, e)
        return False
    return True


def _default_analyzer(model, api_key):
    return AnthropicAnalyzer(model.model_id, api_key)


class Reflector:
    """Drives reflection runs against target documents.

    Collaborators are injected so each can be replaced:

        analyzer: object with ``analyze(prompt) -> AnalysisReply``. When not
            given, one is built from ``registry`` and ``analyzer_factory``.
        registry: object with ``find_model(provider, model_id)`` and
            ``get_api_key(model)``.
        collect: ``(lookback_days, max_bytes) -> EvidenceBundle`` for session logs.
        collect_command: ``(command, lookback_days, max_bytes) -> EvidenceBundle``.
        post_write: ``(target_path, message) -> bool`` called after a write.
    """

    def __init__(
        self,
        paths: ReflectPaths,
        notify: NotifyFn,
        analyzer=None,
        registry=None,
        analyzer_factory=None,
        collect: Optional[Callable] = None,
        collect_command: Optional[Callable] = None,
        post_write: Optional[Callable] = git_commit_hook,
        today: Optional[date] = None,
    ):
        self.paths = paths
        self.notify = notify
        self.analyzer = analyzer
        self.registry = registry or EnvModelRegistry()
        self.analyzer_factory = analyzer_factory or _default_analyzer
        self.today = today
        self.collect = collect or self._collect_sessions
        self.collect_command = collect_command or collect_from_command
        self.post_write = post_write
        self.abort_reason = None

    def run(self, target: ReflectTarget, options: Optional[ReflectionOptions] = None) -> Optional[ReflectionRun]:
        """Reflect on recent evidence and edit the target document.

        Returns:
            The ReflectionRun record, or None if the run was aborted. The
            reason is notified and kept in ``abort_reason``.
        """
        self.abort_reason = None
        try:
            return self._run(target, options or ReflectionOptions())
        except ReflectError as e:
            self.abort_reason = str(e)
            self.notify(str(e), e.level)
            return None

    def _collect_sessions(self, lookback_days: int, max_bytes: int) -> EvidenceBundle:
        return collect_transcripts(lookback_days, max_bytes, self.paths.sessions_dir, self.today)

    def _run(self, target: ReflectTarget, options: ReflectionOptions) -> ReflectionRun:
        target_path = resolve_path(target.path)
        original = self._load_document(target_path)

        evidence = options.evidence or self._gather_evidence(target)
        if not evidence.text or evidence.sessions_included == 0:
            raise NoEvidence(
                f"No substantive sessions found ({evidence.sessions_scanned} scanned). Nothing to reflect on."
            )
        self.notify(
            f"Extracted {evidence.sessions_included} sessions "
            f"({evidence.sessions_scanned} scanned, {evidence.size / 1024:.0f}KB)",
            "info",
        )

        analyzer = self._resolve_analyzer(target)

        context = ""
        if target.context:
            self.notify(f"Collecting context from {len(target.context)} source(s)...", "info")
            context = collect_context(target.context, target.lookback_days, self.today)
            if context:
                self.notify(f"Collected {len(context) / 1024:.0f}KB of additional context", "info")

        batches = self._plan_batches(target, evidence, original, context)
        totals = _RunTotals()
        for index, evidence_text in enumerate(batches, 1):
            self._run_batch(target, target_path, original, analyzer, evidence_text, context,
                            index, len(batches), totals, options.dry_run)

        return self._finish(target, target_path, original, evidence, options, totals, len(batches))

    def _load_document(self, target_path: Path) -> str:
        if not target_path.is_file():
            raise TargetNotFound(f"Target file not found: {target_path}")
        content = target_path.read_text(encoding="utf-8")
        if len(content) < MIN_DOCUMENT_BYTES:
            raise TargetTooSmall(f"Target file too small ({len(content)} bytes): {target_path}")
        return content

    def _gather_evidence(self, target: ReflectTarget) -> EvidenceBundle:
        days = target.lookback_days
        if target.transcripts:
            self.notify(
                f"Extracting transcripts from {len(target.transcripts)} source(s) (last {days} day(s))...",
                "info",
            )
            return collect_from_sources(target.transcripts, days, self.today)

        self.notify(f"Extracting transcripts (last {days} day(s))...", "info")
        source = target.transcript_source
        if source and source.type == "command" and source.command:
            return self.collect_command(source.command, days, target.max_session_bytes)
        return self.collect(days, target.max_session_bytes)

    def _resolve_analyzer(self, target: ReflectTarget):
        if self.analyzer is not None:
            return self.analyzer

        provider, model_id = split_model_name(target.model)
        model = self.registry.find_model(provider, model_id)
        if not model:
            raise ModelUnavailable(f"Model not found: {target.model}")

        api_key = self.registry.get_api_key(model)
        if not api_key:
            raise ModelUnavailable(f"No API key for model: {target.model}")

        return self.analyzer_factory(model, api_key)

    def _plan_batches(self, target: ReflectTarget, evidence: EvidenceBundle, document: str, context: str) -> list:
        """Evidence text for each analysis call, in order."""
        budget = batch_budget(target.max_session_bytes, document, context)
        if not evidence.sessions or evidence.size <= budget:
            return [evidence.text]

        batches = build_transcript_batches(evidence.sessions, budget)
        self.notify(
            f"Evidence is {evidence.size / 1024:.0f}KB (budget {budget / 1024:.0f}KB), "
            f"splitting into {len(batches)} batches",
            "info",
        )
        return [render_batch(entries, i, len(batches)) for i, entries in enumerate(batches, 1)]

    def _run_batch(self, target, target_path, original, analyzer, evidence_text, context,
                   index, total, totals, dry_run) -> None:
        multi = total > 1
        label = f"Batch {index}/{total}: " if multi else ""
        self.notify(f"{label}Analyzing with {target.model}...", "info")

        # Later batches see what earlier batches wrote
        current = target_path.read_text(encoding="utf-8")
        prompt = build_prompt_for_target(target.prompt, str(target_path), current, evidence_text, context)
        reply = analyzer.analyze(prompt)

        try:
            if reply.error:
                raise AnalysisTransportError(f"{label}Analysis failed: {reply.error}")
            analysis = parse_analysis(reply)
        except (AnalysisTransportError, AnalysisParseError) as e:
            if not multi:
                raise
            totals.failures.append(str(e))
            self.notify(f"{e} (skipping batch)", "warning")
            return

        totals.batches_succeeded += 1
        totals.corrections += analysis.corrections_found
        totals.proposed += len(analysis.edits)
        totals.records.extend(
            EditRecord(kind=e.kind or "insert", section=e.section, reason=e.reason)
            for e in analysis.edits
            if e.section and e.reason
        )
        if analysis.summary:
            totals.summaries.append(analysis.summary)

        if not analysis.edits or dry_run:
            return

        outcome = apply_edits(current, analysis.edits)
        totals.rejections.extend(outcome.rejections)
        if outcome.applied_count == 0:
            if multi:
                self.notify(f"{label}All {len(analysis.edits)} edits failed to apply", "warning")
            return

        if len(outcome.final_text) < len(original) * MIN_RESULT_RATIO:
            message = (
                f"Result is suspiciously small ({len(outcome.final_text)} vs {len(original)} bytes). Aborting."
            )
            if totals.backup_path:
                message += f" Earlier batches were written; backup: {totals.backup_path}"
            raise ResultTooSmall(message)

        if totals.backup_path is None:
            totals.backup_path = self._backup(target_path, target.backup_dir)
        target_path.write_text(outcome.final_text, encoding="utf-8")
        totals.applied += outcome.applied_count

        skipped = len(outcome.rejections)
        if skipped:
            self.notify(
                f"{label}Applied {outcome.applied_count}/{len(analysis.edits)} edits ({skipped} skipped). "
                f"Backup: {totals.backup_path}",
                "warning",
            )
        else:
            self.notify(f"{label}Applied {outcome.applied_count} edit(s). Backup: {totals.backup_path}", "info")

    def _backup(self, target_path: Path, backup_dir: Optional[str]) -> Path:
        directory = resolve_path(backup_dir) if backup_dir else self.paths.backup_dir
        directory.mkdir(parents=True, exist_ok=True)
        backup_path = directory / f"{target_path.stem}_{format_timestamp()}{target_path.suffix}"
        shutil.copyfile(target_path, backup_path)
        return backup_path

    def _discard_backup(self, totals: _RunTotals) -> None:
        if totals.backup_path:
            totals.backup_path.unlink(missing_ok=True)
            totals.backup_path = None

    def _finish(self, target, target_path, original, evidence, options, totals, batch_count) -> ReflectionRun:
        if totals.batches_succeeded == 0:
            raise AnalysisTransportError(
                f"All {batch_count} batches failed: {'; '.join(totals.failures)}"
            )

        run = ReflectionRun(
            timestamp=datetime.now(timezone.utc).isoformat(),
            target_path=str(target_path),
            sessions_analyzed=evidence.sessions_included,
            sessions_scanned=evidence.sessions_scanned,
            corrections_found=totals.corrections,
            edits_applied=0,
            summary=" ".join(totals.summaries),
            diff_lines=0,
            correction_rate=totals.corrections / evidence.sessions_included,
            edits=totals.records,
            source_date=options.source_date or self._source_date(target),
        )

        if options.dry_run:
            run.summary = run.summary or f"{totals.proposed} edits proposed (dry run)."
            self.notify(f"[dry run] {run.summary}", "info")
            return run

        if totals.proposed == 0:
            self.notify(f"No edits needed. {run.summary}".rstrip(), "info")
            run.summary = run.summary or "No edits needed."
            return run

        if totals.applied == 0:
            self._discard_backup(totals)
            raise AllEditsRejected(
                f"All {totals.proposed} edits failed to apply. Skipped: {'; '.join(totals.rejections)}"
            )

        final = target_path.read_text(encoding="utf-8")
        run.edits_applied = totals.applied
        run.diff_lines = count_changed_lines(original, final)
        run.summary = run.summary or f"{totals.applied} edits applied from {evidence.sessions_included} sessions."
        self.notify(run.summary, "info")

        if self.post_write:
            message = (
                f"reflect: {target_path.name} - {totals.applied} edits from "
                f"{evidence.sessions_included} sessions"
            )
            if self.post_write(target_path, message):
                self.notify(f"Committed to {target_path.resolve().parent.name}", "info")

        return run

    def _source_date(self, target: ReflectTarget) -> str:
        today = self.today or utc_today()
        return (today - timedelta(days=target.lookback_days)).isoformat()
