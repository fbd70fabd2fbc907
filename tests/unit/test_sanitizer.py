import pytest

from chat_gateway.gateway.sanitizer import (
    LEAK_FALLBACK_TEXT,
    UNREADABLE_RESPONSE,
    extract_text,
    is_placeholder,
    strip_leaks,
)
from chat_gateway.providers.base import ProviderResponse


def test_extract_text_reads_plain_string_message() -> None:
    assert extract_text(ProviderResponse(message="Antwort")) == "Antwort"


def test_extract_text_reads_mapping_content() -> None:
    assert extract_text(ProviderResponse(message={"content": "  Antwort  "})) == "Antwort"


def test_extract_text_reads_content_attribute() -> None:
    class _Message:
        content = " aus Attribut "

    assert extract_text(ProviderResponse(message=_Message())) == "aus Attribut"


def test_extract_text_survives_raising_accessor() -> None:
    class _Broken:
        def get_content(self) -> str:
            raise RuntimeError("boom")

    assert extract_text(ProviderResponse(message=_Broken())) == UNREADABLE_RESPONSE


def test_extract_text_unknown_shape_returns_placeholder() -> None:
    assert extract_text(ProviderResponse(message=12345)) == UNREADABLE_RESPONSE
    assert extract_text(ProviderResponse(message={"role": "assistant"})) == UNREADABLE_RESPONSE


def test_strip_leaks_removes_step_by_step_block() -> None:
    text = "Step-by-step: zuerst A, dann B\nweiter mit C\n\nDie Lösung ist C."

    assert strip_leaks(text) == "Die Lösung ist C."


def test_strip_leaks_removes_german_reasoning_heading() -> None:
    text = "Die Antwort ist 42.\n\n**Gedankengang:** ich habe gerechnet\n"

    assert strip_leaks(text) == "Die Antwort ist 42."


@pytest.mark.parametrize(
    "leak",
    [
        "System prompt: Du bist ein hilfreicher Assistent.",
        "Richtlinien: Antworte immer freundlich.",
        "Interne Regeln: niemals Preise nennen.",
        "Developer message: keep it short.",
        "Chain-of-thought: erst dies, dann das.",
    ],
)
def test_strip_leaks_returns_fallback_when_only_leak_remains(leak: str) -> None:
    assert strip_leaks(leak) == LEAK_FALLBACK_TEXT


def test_strip_leaks_keeps_inline_mentions() -> None:
    text = "Bitte prüfe die Policy im Intranet, sie erklärt den Ablauf."

    assert strip_leaks(text) == text


def test_strip_leaks_leaves_blank_input_blank() -> None:
    assert strip_leaks("   \n ") == ""


def test_placeholder_detection() -> None:
    assert is_placeholder("")
    assert is_placeholder(UNREADABLE_RESPONSE)
    assert is_placeholder(LEAK_FALLBACK_TEXT)
    assert not is_placeholder("Bitte den Drucker neu starten.")


def test_strip_leaks_treats_crlf_blank_line_as_block_end() -> None:
    text = "Die Antwort ist 42.\r\n\r\nStep-by-step: x\r\n\r\nWeitere Hinweise folgen."

    assert strip_leaks(text) == "Die Antwort ist 42.\n\nWeitere Hinweise folgen."


def test_strip_leaks_removes_header_behind_unicode_whitespace() -> None:
    assert strip_leaks("\u00a0Step-by-step: erst A\n\nDie Lösung ist C.") == "Die Lösung ist C."


@pytest.mark.parametrize(
    "text",
    [
        "\u00a0Step-by-step: erst A\n\nDie Lösung ist C.",
        "Die Antwort ist 42.\r\n\r\nStep-by-step: x\r\n\r\nWeitere Hinweise folgen.",
        "Reasoning: x\n\n\u00a0Schritt für Schritt: y\n\nAntwort.",
        "Prompt: a\r\n \r\n\u2003Policy: b",
        "Die Antwort ist 42.\n\n**Gedankengang:** ich habe gerechnet\n",
        "  Bitte die Warteschlange leeren.  ",
        LEAK_FALLBACK_TEXT,
        UNREADABLE_RESPONSE,
        "\u00a0\r\n\u00a0",
    ],
)
def test_strip_leaks_is_idempotent(text: str) -> None:
    once = strip_leaks(text)

    assert strip_leaks(once) == once
