"""Prompt construction and marker-based extraction of model replies."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from translation_errors import EmptyInputError, MalformedResponseError


MARKER_START = "<<<TRANSLATION>>>"
MARKER_END = "<<<END_TRANSLATION>>>"
PARAGRAPH_SEPARATOR = "%%"

EXCERPT_LIMIT = 400

_PARAGRAPH_BREAK = re.compile(r"(\r?\n(?:[ \t\r]*\n)+)")
_LEADING_BLANK_LINES = re.compile(r"\A(?:[ \t\r]*\n)+")
_SEPARATOR_LINE = re.compile(r"\r?\n(?:[ \t\r]*\n)*[ \t]*%%[ \t\r]*\n(?:[ \t\r]*\n)*")

SYSTEM_TEMPLATE = """You are a professional {to} native translator who needs to fluently translate text into {to}.

## Translation Rules
1. Output only the translated content, wrapped by the required markers and nothing else
2. The returned translation must maintain exactly the same number of paragraphs and format as the original text
3. If the text contains HTML tags, consider where the tags should be placed in the translation while maintaining fluency
4. For content that should not be translated (such as proper nouns, code, etc.), keep the original text.
5. If input contains {sep}, use {sep} in your output, if input has no {sep}, don't use {sep} in your output

## OUTPUT FORMAT:
- **Single paragraph input** -> Output translation directly (no separators, no extra text)
- **Multi-paragraph input** -> Use {sep} as paragraph separator between translations

## Marking Requirement
Wrap the final translation between {start} and {end}. Output nothing outside the markers.

## Examples
### Multi-paragraph Input:
Paragraph A
{sep}
Paragraph B
{sep}
Paragraph C

### Multi-paragraph Output:
{start}
Translation A
{sep}
Translation B
{sep}
Translation C
{end}

### Single paragraph Input:
Single paragraph content

### Single paragraph Output:
{start}Direct translation without separators{end}
"""


@dataclass(frozen=True)
class EncodedPrompt:
    system_instruction: str
    user_content: str
    paragraph_separators: tuple[str, ...] = ()

    @property
    def multi_paragraph(self) -> bool:
        return bool(self.paragraph_separators)


def _trim_outer_blank_lines(text: str) -> str:
    return _LEADING_BLANK_LINES.sub("", text).rstrip()


def split_paragraphs(text: str) -> tuple[list[str], list[str]]:
    """Split ``text`` on blank-line runs, keeping both halves verbatim.

    Returns the paragraphs and the separators found between them, so
    ``paragraphs[0] + separators[0] + paragraphs[1] + ...`` rebuilds the
    text with only its outer blank lines removed.
    """

    parts = _PARAGRAPH_BREAK.split(_trim_outer_blank_lines(text))
    return parts[0::2], parts[1::2]


def encode(source_text: str, target_language: str) -> EncodedPrompt:
    """Build the system and user messages for a translation request.

    Multi-paragraph input is re-joined with ``%%`` separator lines so the
    model can keep the paragraph count stable. The original blank-line
    runs are kept on the prompt for :func:`restore_paragraphs`.
    """

    if not source_text or not source_text.strip():
        raise EmptyInputError("Cannot translate empty text")

    system_instruction = SYSTEM_TEMPLATE.format(
        to=target_language,
        sep=PARAGRAPH_SEPARATOR,
        start=MARKER_START,
        end=MARKER_END,
    )

    paragraphs, separators = split_paragraphs(source_text)
    user_content = f"\n{PARAGRAPH_SEPARATOR}\n".join(paragraphs)
    return EncodedPrompt(system_instruction, user_content, tuple(separators))


def decode(raw_response: str) -> str:
    """Return the text between the translation markers, stripped.

    An empty payload is a valid translation. A reply without both markers
    in order raises :class:`MalformedResponseError` with a bounded excerpt.
    """

    raw_response = raw_response or ""
    start = raw_response.find(MARKER_START)
    if start < 0:
        raise MalformedResponseError(
            "Missing translation start marker in response",
            excerpt=preview(raw_response, EXCERPT_LIMIT),
        )
    start += len(MARKER_START)
    end = raw_response.find(MARKER_END, start)
    if end < 0:
        raise MalformedResponseError(
            "Missing translation end marker in response",
            excerpt=preview(raw_response, EXCERPT_LIMIT),
        )
    return raw_response[start:end].strip()


def restore_paragraphs(text: str, separators: Sequence[str] = ()) -> str:
    """Turn ``%%`` separator lines back into paragraph breaks.

    The n-th separator line becomes ``separators[n]``. When the reply has
    more separators than were recorded, the extra ones become a single
    blank line.
    """

    recorded = iter(separators)
    return _SEPARATOR_LINE.sub(lambda _match: next(recorded, "\n\n"), text)


def preview(text: str, limit: int) -> str:
    """Flatten newlines and cut ``text`` to ``limit`` characters for logging."""

    cleaned = text.replace("\r", " ").replace("\n", " ")
    if len(cleaned) <= limit:
        return cleaned
    return cleaned[:limit] + "..."
