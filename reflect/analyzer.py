"""Ask an LLM which edits the evidence calls for."""

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import AnalysisParseError
from .models import AnalysisResult, ProposedEdit

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 16384

SYSTEM_PROMPT = (
    "You are a behavioral analysis tool. You analyze agent session transcripts and output "
    "ONLY valid JSON. Never output markdown, explanations, or any text outside the JSON object."
)

# Reflection prompt template
REFLECTION_PROMPT = '''You are reviewing recent agent session transcripts to improve {file_name}.

## Input

### Target file: {file_name}
<target_file>
{target_content}
</target_file>

### Session transcripts
<transcripts>
{transcripts}
</transcripts>

## Step 1: Identify Correction Patterns

Read through all the transcripts carefully. Look for:
- User redirecting the agent ("no", "not that", "I said...", "wrong", "actually...")
- User expressing frustration ("bro", "wtf", "seriously", "come on", "sigh")
- User having to repeat themselves or re-explain
- User asking the agent to undo or revert something
- User telling the agent to simplify or stop over-engineering
- User correcting the agent's approach or understanding
- Agent thinking that reveals a misunderstanding that the user then corrects

For each real correction, note: what the agent did wrong, what the user wanted, and which rule in {file_name} (if any) already covers this.

Ignore normal conversation flow. "no" in "no worries" or "actually, that looks good" are NOT corrections. Focus on genuine friction where the agent's behavior wasted the user's time.

## Step 2: Propose Edits

Based on the patterns you found:
- Only propose edits that address ACTUAL patterns in the transcripts. Don't invent hypothetical rules.
- If an existing rule already covers the pattern but the agent still violated it, STRENGTHEN the wording (make it more prominent, add emphasis, add a concrete example).
- If a correction pattern has no matching rule, propose a new bullet in the most appropriate existing section.
- Do NOT reorganize, rewrite, or restructure the file. Propose minimal, targeted edits.
- Do NOT remove any existing rules.
- Do NOT add rules for one-off situations. Only add rules for patterns (2+ occurrences across different sessions).
- Keep the same tone and style as the existing file.

## Step 3: Output

IMPORTANT: Your ENTIRE response must be a single JSON object. No markdown, no explanation, no preamble. Start with {{ and end with }}.

For "strengthen" edits: old_text must be a COMPLETE bullet point or rule from the file, copied character-for-character. new_text is the full replacement. Do NOT use partial strings; always include the complete line/bullet from "- **" to the end of the bullet point.
For "add" edits: after_text must be a COMPLETE bullet point or line from the file, copied exactly. new_text is inserted on a new line after it. The new_text should be a complete new bullet point.
CRITICAL: Never duplicate content. new_text should EXTEND or REPLACE old_text, not repeat it.

{{
  "corrections_found": <number>,
  "sessions_with_corrections": <number>,
  "edits": [
    {{
      "type": "strengthen" | "add",
      "section": "which section of the file",
      "old_text": "exact text to find (for strengthen) or null (for add)",
      "new_text": "replacement text (for strengthen) or new text to insert (for add)",
      "after_text": "text after which to insert (for add) or null (for strengthen)",
      "reason": "why this edit is needed, with session evidence"
    }}
  ],
  "patterns_not_added": [
    {{
      "pattern": "description",
      "reason": "why it wasn't added (one-off, already covered, etc.)"
    }}
  ],
  "summary": "2-3 sentence summary of what was found and changed"
}}'''

# Placeholders available to custom prompt templates
PLACEHOLDERS = ("{fileName}", "{targetContent}", "{transcripts}", "{context}")

ANALYSIS_TOOL = {
    "name": "submit_analysis",
    "description": "Submit the correction analysis and proposed edits for the target file.",
    "input_schema": {
        "type": "object",
        "properties": {
            "corrections_found": {"type": "integer"},
            "sessions_with_corrections": {"type": "integer"},
            "edits": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "type": {"type": "string", "enum": ["strengthen", "add"]},
                        "section": {"type": "string"},
                        "old_text": {"type": ["string", "null"]},
                        "new_text": {"type": "string"},
                        "after_text": {"type": ["string", "null"]},
                        "reason": {"type": "string"},
                    },
                    "required": ["type", "new_text"],
                },
            },
            "patterns_not_added": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "pattern": {"type": "string"},
                        "reason": {"type": "string"},
                    },
                },
            },
            "summary": {"type": "string"},
        },
        "required": ["corrections_found", "edits", "summary"],
    },
}


def build_reflection_prompt(target_path: str, target_content: str, transcripts: str) -> str:
    """Build the default reflection prompt for a document."""
    return REFLECTION_PROMPT.format(
        file_name=Path(target_path).name,
        target_content=target_content,
        transcripts=transcripts,
    )


def build_prompt_for_target(
    template: Optional[str],
    target_path: str,
    target_content: str,
    transcripts: str,
    context: str = "",
) -> str:
    """Build the prompt for a target, honoring a custom template if set.

    Custom templates get literal substitution of ``{fileName}``,
    ``{targetContent}``, ``{transcripts}`` and ``{context}``.
    """
    if not template:
        return build_reflection_prompt(target_path, target_content, transcripts)

    values = {
        "{fileName}": Path(target_path).name,
        "{targetContent}": target_content,
        "{transcripts}": transcripts,
        "{context}": context or "",
    }
    pattern = re.compile("|".join(re.escape(p) for p in PLACEHOLDERS))
    return pattern.sub(lambda m: values[m.group()], template)


@dataclass(frozen=True)
class ModelRef:
    provider: str
    model_id: str


@dataclass
class AnalysisReply:
    """Raw reply from the analysis collaborator.

    ``error`` is set when the provider failed; otherwise ``tool_input`` holds
    a structured tool invocation if there was one, and ``text`` any text.
    """
    text: str = ""
    tool_input: Optional[dict] = None
    error: Optional[str] = None


class EnvModelRegistry:
    """Resolves ``provider/model`` names and API keys from the environment."""

    KEY_VARS = {
        "anthropic": ("ANTHROPIC_API_KEY", "CLAUDE_API_KEY"),
    }

    def find_model(self, provider: str, model_id: str) -> Optional[ModelRef]:
        if provider in self.KEY_VARS and model_id:
            return ModelRef(provider, model_id)
        return None

    def get_api_key(self, model: ModelRef) -> Optional[str]:
        for var in self.KEY_VARS.get(model.provider, ()):
            if os.environ.get(var):
                return os.environ[var]
        return None


def split_model_name(name: str) -> tuple:
    """Split ``provider/model`` into its parts."""
    provider, _, model_id = name.partition("/")
    return provider, model_id


class AnthropicAnalyzer:
    """Analysis collaborator backed by the Anthropic messages API."""

    def __init__(self, model_id: str, api_key: str, max_tokens: int = DEFAULT_MAX_TOKENS):
        import anthropic

        self.model_id = model_id
        self.max_tokens = max_tokens
        self._client = anthropic.Anthropic(api_key=api_key)

    def analyze(self, prompt: str) -> AnalysisReply:
        """Send one prompt and collect the reply.

        Provider failures come back as a reply with ``error`` set.
        """
        import anthropic

        try:
            response = self._client.messages.create(
                model=self.model_id,
                max_tokens=self.max_tokens,
                system=SYSTEM_PROMPT,
                tools=[ANALYSIS_TOOL],
                tool_choice={"type": "tool", "name": ANALYSIS_TOOL["name"]},
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            logger.debug("Anthropic request failed", exc_info=True)
            return AnalysisReply(error=str(e))

        return reply_from_response(response)


def reply_from_response(response) -> AnalysisReply:
    """Collect text and the analysis tool call from an API response."""
    text_parts = []
    tool_input = None

    for block in response.content:
        if block.type == "text":
            text_parts.append(block.text)
        elif block.type == "tool_use" and block.name == ANALYSIS_TOOL["name"] and tool_input is None:
            tool_input = block.input

    text = "".join(text_parts).strip()
    if tool_input is None and not text and response.stop_reason not in ("end_turn", "tool_use"):
        return AnalysisReply(error=f"Empty response (stop reason: {response.stop_reason})")

    return AnalysisReply(text=text, tool_input=tool_input)


_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*\n?", re.MULTILINE)
_FENCE_CLOSE_RE = re.compile(r"\n?```\s*$", re.MULTILINE)


def strip_code_fence(text: str) -> str:
    """Remove a surrounding ```json fence, if any."""
    return _FENCE_CLOSE_RE.sub("", _FENCE_OPEN_RE.sub("", text, count=1), count=1)


def parse_analysis(reply: AnalysisReply) -> AnalysisResult:
    """Turn a reply into an AnalysisResult.

    A structured tool invocation wins over free text.

    Raises:
        AnalysisParseError: If no JSON object can be read from the reply.
    """
    if isinstance(reply.tool_input, dict):
        raw = reply.tool_input
    else:
        try:
            raw = json.loads(strip_code_fence(reply.text.strip()))
        except json.JSONDecodeError:
            raw = None

    if not isinstance(raw, dict):
        raise AnalysisParseError(
            f"Failed to parse LLM response as JSON. Raw response:\n{reply.text[:500]}"
        )

    edits = raw.get("edits") or []
    if not isinstance(edits, list):
        edits = []

    summary = raw.get("summary")
    patterns = raw.get("patterns_not_added")

    return AnalysisResult(
        corrections_found=_as_int(raw.get("corrections_found")),
        sessions_with_corrections=_as_int(raw.get("sessions_with_corrections")),
        edits=[ProposedEdit.from_dict(e) for e in edits],
        patterns_not_added=patterns if isinstance(patterns, list) else [],
        summary=summary if isinstance(summary, str) else None,
    )


def _as_int(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0
