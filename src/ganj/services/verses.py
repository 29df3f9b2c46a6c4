"""Verse extraction from heterogeneous poem payloads.

Poem payloads carry their text in one of several shapes: a structured
``verses`` list, or a markup/plain-text field. Each shape has a decoder
returning a ``VerseDecodeResult``; ``decode_verses`` tries the structured
decoder first and then the text fields in ``FALLBACK_FIELDS`` order, taking
the first that yields at least one line.

Every successful result is normalized: lines trimmed, empty lines dropped.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from bs4 import BeautifulSoup

FALLBACK_FIELDS: tuple[str, ...] = ("htmlText", "plainText", "text", "content")

LINE_BREAK_TAGS = ("div", "p")


@dataclass(frozen=True)
class VerseDecodeResult:
    """Outcome of one decoder. ``source`` names the field that was used."""

    ok: bool
    verses: list[str] = field(default_factory=list)
    source: str | None = None

    @classmethod
    def failed(cls) -> "VerseDecodeResult":
        return cls(ok=False)


def normalize_lines(lines: Iterable[str]) -> list[str]:
    """Trim each line and drop empty ones. Idempotent."""
    return [line.strip() for line in lines if line and line.strip()]


def html_to_lines(markup: str) -> list[str]:
    """Convert verse markup to lines.

    ``<br>`` and block tags (``<div>``, ``<p>``) become line breaks, any
    other tag is dropped, and entities are decoded.
    """
    if not markup:
        return []

    soup = BeautifulSoup(markup, "html.parser")
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(LINE_BREAK_TAGS):
        tag.insert_before("\n")
        tag.insert_after("\n")

    return normalize_lines(soup.get_text().splitlines())


def decode_structured(payload: dict[str, Any]) -> VerseDecodeResult:
    """Decode a ``verses`` list of ``{"text": ...}`` objects or strings."""
    raw = payload.get("verses")
    if not isinstance(raw, list):
        return VerseDecodeResult.failed()

    texts: list[str] = []
    for verse in raw:
        if isinstance(verse, str):
            texts.append(verse)
        elif isinstance(verse, dict) and isinstance(verse.get("text"), str):
            texts.append(verse["text"])

    lines = normalize_lines(texts)
    if not lines:
        return VerseDecodeResult.failed()
    return VerseDecodeResult(ok=True, verses=lines, source="verses")


def decode_text_field(payload: dict[str, Any], name: str) -> VerseDecodeResult:
    """Decode a markup or plain-text field named ``name``."""
    value = payload.get(name)
    if not isinstance(value, str):
        return VerseDecodeResult.failed()

    lines = html_to_lines(value)
    if not lines:
        return VerseDecodeResult.failed()
    return VerseDecodeResult(ok=True, verses=lines, source=name)


def decode_verses(payload: dict[str, Any]) -> VerseDecodeResult:
    """Run the decoders in priority order and return the first success."""
    result = decode_structured(payload)
    if result.ok:
        return result

    for name in FALLBACK_FIELDS:
        result = decode_text_field(payload, name)
        if result.ok:
            return result

    return VerseDecodeResult.failed()


def extract_verses(payload: dict[str, Any]) -> list[str]:
    """Verses of ``payload``, or an empty list when no decoder succeeds."""
    return decode_verses(payload).verses
