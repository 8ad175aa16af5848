"""Apply anchored edits to a document.

Edits are applied in order and each one sees the result of the ones before
it. An edit is rejected, and the next one tried, when:

- it is malformed (unknown kind, empty anchor or new text)
- its anchor does not occur in the document
- its anchor occurs more than once
- a long replace anchor shows up repeatedly in the replacement text
- an insert's text is already in the document
"""

from typing import Optional

from .models import INSERT, REPLACE, EditOutcome

# Replace anchors longer than this are checked for echoed duplication
DUPLICATION_CHECK_CHARS = 50
SNIPPET_CHARS = 80


def apply_edits(document: str, edits: list) -> EditOutcome:
    """Apply edits sequentially, collecting a reason for each rejection.

    Args:
        document: Current document text.
        edits: ProposedEdits in the order they should be applied.

    Returns:
        EditOutcome with the final text, applied count and rejections.
    """
    outcome = EditOutcome(final_text=document)

    for edit in edits:
        if edit.kind == REPLACE and _is_text(edit.anchor_text) and _is_text(edit.new_text):
            rejection = _check_replace(outcome.final_text, edit)
            if rejection is None:
                outcome.final_text = outcome.final_text.replace(edit.anchor_text, edit.new_text, 1)
        elif edit.kind == INSERT and _is_text(edit.insert_after_text) and _is_text(edit.new_text):
            rejection = _check_insert(outcome.final_text, edit)
            if rejection is None:
                anchor = edit.insert_after_text
                outcome.final_text = outcome.final_text.replace(anchor, f"{anchor}\n{edit.new_text}", 1)
        else:
            rejection = f"Invalid edit: {edit.describe()[:100]}"

        if rejection is None:
            outcome.applied_count += 1
        else:
            outcome.rejections.append(rejection)

    return outcome


def _is_text(value) -> bool:
    return isinstance(value, str) and bool(value)


def _snippet(text: str) -> str:
    return f'"{text[:SNIPPET_CHARS]}..."'


def _occurrences(document: str, anchor: str) -> int:
    """0, 1, or 2 (meaning two or more)."""
    first = document.find(anchor)
    if first == -1:
        return 0
    return 1 if document.find(anchor, first + 1) == -1 else 2


def _check_replace(document: str, edit) -> Optional[str]:
    anchor = edit.anchor_text
    found = _occurrences(document, anchor)
    if found == 0:
        return f"Could not find text to replace: {_snippet(anchor)}"
    if found > 1:
        return f"Ambiguous match (appears multiple times): {_snippet(anchor)}"

    if len(anchor) > DUPLICATION_CHECK_CHARS:
        head = anchor[:DUPLICATION_CHECK_CHARS]
        if edit.new_text.count(head) > 1:
            return f"Duplication detected in replacement text: {_snippet(anchor)}"

    return None


def _check_insert(document: str, edit) -> Optional[str]:
    anchor = edit.insert_after_text
    found = _occurrences(document, anchor)
    if found == 0:
        return f"Could not find insertion point: {_snippet(anchor)}"
    if found > 1:
        return f"Ambiguous insertion point (appears multiple times): {_snippet(anchor)}"

    new_text = edit.new_text.strip()
    if new_text in document:
        return f"Text already exists in file: {_snippet(new_text)}"

    return None


def count_changed_lines(original: str, updated: str) -> int:
    """Count line positions whose content differs (not a true diff)."""
    original_lines = original.split("\n")
    updated_lines = updated.split("\n")
    changed = 0
    for i in range(max(len(original_lines), len(updated_lines))):
        before = original_lines[i] if i < len(original_lines) else None
        after = updated_lines[i] if i < len(updated_lines) else None
        if before != after:
            changed += 1
    return changed
