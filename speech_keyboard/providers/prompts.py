"""Rewrite prompts for text-rewriter providers.

The system message sent to the rewrite model has two parts: optional
caller style guidance, followed by a fixed set of editing rules that
apply regardless of the guidance.  The model must answer with a JSON
object holding a single ``corrected`` field.

Prompt versions are tracked so that changes can be correlated with
rewrite quality over time.
"""

from __future__ import annotations

PROMPT_VERSION = "1.1.0"

DEFAULT_PROMPT = (
    "You are a writing assistant. When given a raw transcript, correct any "
    "grammatical errors, punctuation, and make the phrasing clear and "
    "professional without altering the original meaning. Maintain the "
    "speaker's tone and intent. Only return the corrected text, no "
    "additional commentary."
)
"""Reported as ``prompt_used`` when the caller supplies no guidance."""

EDITING_RULES = """\
The above prompt is optional user guidance to help set the tone, style, or context.

Now, follow these core instructions regardless of the prompt:
You are a helpful writing assistant. Your task is to:
1. Correct grammar and spelling mistakes in the given text.
2. Improve readability by restructuring the text:
   - Break into multiple paragraphs where it makes sense.
   - Use bullet points for lists or sequences.
3. Preserve the speaker's tone and meaning.
4. Do not add or remove information -- only clean up and organize what's there.
5. Return ONLY the cleaned-up and formatted transcript in JSON format as: \
{"corrected": "..."}
"""

CORRECTED_FIELD = "corrected"

JSON_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        CORRECTED_FIELD: {"type": "string"},
    },
    "required": [CORRECTED_FIELD],
    "additionalProperties": False,
}
"""JSON schema for the expected rewrite response structure."""


def build_rewrite_instructions(style_guidance: str | None = None) -> str:
    """Combine optional style guidance with the fixed editing rules."""
    return f"{style_guidance or ''}\n\n{EDITING_RULES}"
