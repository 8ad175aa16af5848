"""Render reflection targets and run history as text."""

from collections import Counter
from pathlib import Path


def render_targets(targets: list, config_file: Path) -> str:
    """List configured targets with their schedule and model."""
    if not targets:
        return "No targets configured. Use 'reflect run <path>' to reflect on a file."

    lines = ["Reflection targets:"]
    for i, t in enumerate(targets, 1):
        lines.append(f"{i}. {Path(t.path).name} - {t.schedule}, {t.model}, {t.lookback_days}d lookback")
        lines.append(f"   {t.path}")
    lines.append("")
    lines.append(f"Edit: {config_file}")
    return "\n".join(lines)


def render_history(runs: list, limit: int = 10) -> str:
    """Render the most recent runs, newest first.

    Example:
        - 2026-02-12 03:00 AGENTS.md: 2 edits, 5 corrections (4 sessions)
          Strengthened the DRY rule.
    """
    if not runs:
        return "No reflection runs yet. Use 'reflect run' to run one."

    lines = []
    for run in reversed(runs[-limit:]):
        when = run.timestamp[:16].replace("T", " ")
        lines.append(
            f"- {when} {Path(run.target_path).name}: {run.edits_applied} edits, "
            f"{run.corrections_found} corrections ({run.sessions_analyzed} sessions)"
        )
        if run.summary:
            lines.append(f"  {run.summary}")
    return "\n".join(lines)


def find_recidivism(runs: list) -> list:
    """Find document sections edited in more than one run.

    A section that keeps getting edited is a rule the agent keeps breaking.

    Returns:
        List of (document name, section, run count), most frequent first.
    """
    counts = Counter()
    for run in runs:
        sections = {edit.section for edit in run.edits if edit.section}
        for section in sections:
            counts[(Path(run.target_path).name, section)] += 1

    repeated = [(doc, section, n) for (doc, section), n in counts.items() if n > 1]
    repeated.sort(key=lambda item: (-item[2], item[0], item[1]))
    return repeated


def render_recidivism(runs: list) -> str:
    repeated = find_recidivism(runs)
    if not repeated:
        return "No section has been edited in more than one run."

    lines = ["Sections edited across multiple runs:"]
    for doc, section, n in repeated:
        lines.append(f"- {doc} / {section}: {n} runs")
    return "\n".join(lines)


def render_dates(dates: list) -> str:
    if not dates:
        return "No session logs found."
    return "Session dates:\n" + "\n".join(f"  {d}" for d in dates)
