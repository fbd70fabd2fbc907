"""Text extraction and meta-leak removal for provider answers."""

import re
from collections.abc import Mapping

UNREADABLE_RESPONSE = "[unlesbare Antwort]"
LEAK_FALLBACK_TEXT = (
    "Ich konnte dazu gerade keine saubere Antwort formulieren. "
    "Bitte stelle die Frage noch einmal etwas konkreter."
)
PLACEHOLDER_TEXTS = frozenset({UNREADABLE_RESPONSE, LEAK_FALLBACK_TEXT})

# A leak block starts at the beginning of a line (optionally behind markdown
# heading/bold/quote markers) and runs to the next blank line or end of text.
# Line endings are normalized to "\n" first; "[^\S\n]" is any other whitespace.
_BLOCK_PREFIX = r"^[^\S\n]*(?:[#>*_\-]+[^\S\n]*)?"
_BLOCK_BODY = r".*?(?:\n[^\S\n]*\n|\Z)"

LEAK_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        _BLOCK_PREFIX
        + r"(?:step[- ]by[- ]step|schritt[- ]f(?:ü|ue)r[- ]schritt)\b"
        + _BLOCK_BODY,
        re.IGNORECASE | re.MULTILINE | re.DOTALL,
    ),
    re.compile(
        _BLOCK_PREFIX
        + r"(?:reasoning|chain[- ]of[- ]thought|gedankengang|denkprozess|"
        r"interne (?:überlegung|ueberlegung)(?:en)?)[ \t*_]*:"
        + _BLOCK_BODY,
        re.IGNORECASE | re.MULTILINE | re.DOTALL,
    ),
    re.compile(
        _BLOCK_PREFIX
        + r"(?:system[- ]?prompt|prompt|policy|richtlinien?|internal rules|interne regeln|"
        r"developer message|entwickler(?:nachricht|anweisung))[ \t*_]*:"
        + _BLOCK_BODY,
        re.IGNORECASE | re.MULTILINE | re.DOTALL,
    ),
)


def _text_from(value: object) -> str | None:
    if isinstance(value, str):
        return value.strip()
    if callable(value):
        try:
            result = value()
        except Exception:
            return None
        return result.strip() if isinstance(result, str) else None
    return None


def extract_text(response: object) -> str:
    """Return the answer text of *response* or ``UNREADABLE_RESPONSE``.

    Never raises: an unknown shape yields the placeholder.
    """
    message = getattr(response, "message", response)
    if isinstance(message, str):
        return message
    if isinstance(message, Mapping):
        for key in ("content", "text"):
            text = _text_from(message.get(key))
            if text is not None:
                return text
        return UNREADABLE_RESPONSE
    for attr in ("content", "text", "get_content"):
        try:
            value = getattr(message, attr, None)
        except Exception:
            continue
        text = _text_from(value)
        if text is not None:
            return text
    return UNREADABLE_RESPONSE


def strip_leaks(text: str) -> str:
    """Remove leaked reasoning and prompt/policy blocks.

    Blank input stays blank; if stripping removes everything from a non-blank
    input the fixed ``LEAK_FALLBACK_TEXT`` is returned instead.  Removal is
    repeated until the text is stable, so ``strip_leaks`` is idempotent.
    """
    cleaned = text.replace("\r\n", "\n").replace("\r", "\n").strip()
    if not cleaned:
        return ""
    while True:
        previous = cleaned
        for pattern in LEAK_PATTERNS:
            cleaned = pattern.sub("", cleaned)
        cleaned = cleaned.strip()
        if cleaned == previous:
            break
    return cleaned or LEAK_FALLBACK_TEXT


def is_placeholder(text: str) -> bool:
    return not text.strip() or text.strip() in PLACEHOLDER_TEXTS
