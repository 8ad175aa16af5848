"""Split evidence that is too large for one analysis call into batches."""

from .models import SESSION_SEPARATOR

# Room left in the analysis budget for instructions and the response
PROMPT_OVERHEAD = 20_000
MIN_BATCH_BYTES = 100_000


def batch_budget(max_session_bytes: int, document: str, context: str = "") -> int:
    """Evidence bytes one analysis call may carry alongside the document."""
    overhead = len(document) + len(context) + PROMPT_OVERHEAD
    return max(max_session_bytes - overhead, MIN_BATCH_BYTES)


def build_transcript_batches(sessions: list, max_bytes: int) -> list:
    """Group sessions into ordered batches that each fit ``max_bytes``.

    Each entry is the session transcript plus the separator. A session that
    alone exceeds the budget still gets a batch of its own.

    Args:
        sessions: SessionRecords in the order they should be analyzed.
        max_bytes: Budget per batch.

    Returns:
        List of batches, each a list of formatted entries.
    """
    batches = []
    current = []
    current_size = 0

    for session in sessions:
        entry = session.transcript + SESSION_SEPARATOR
        if current and current_size + len(entry) > max_bytes:
            batches.append(current)
            current = []
            current_size = 0
        current.append(entry)
        current_size += len(entry)

    if current:
        batches.append(current)

    return batches


def render_batch(entries: list, index: int, total: int) -> str:
    """Evidence text for one batch."""
    header = f"# Session Transcripts (batch {index}/{total}, {len(entries)} sessions)\n\n"
    return header + "".join(entries)
