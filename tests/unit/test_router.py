import pytest

from chat_gateway.gateway.router import (
    ProviderRole,
    ProviderRouter,
    RoutingContext,
    RoutingRule,
    is_newsletter_query,
    is_technical_query,
)


def _router() -> ProviderRouter:
    return ProviderRouter(precise_provider=" OpenAI ", creative_provider="Gemini")


@pytest.mark.parametrize(
    "message",
    [
        "Die Warteschlange hängt seit heute früh",
        "Der Drucker im Büro druckt nicht",
        "Kasse 3 startet nicht",
        "Login am Terminal schlägt fehl",
        "Ich habe mein Passwort vergessen",
        "Wie starte ich eine Fernwartung mit TeamViewer?",
        "VPN verbindet nicht",
        "print queue is stuck",
    ],
)
def test_technical_questions_route_to_precise(message: str) -> None:
    router = _router()
    context = RoutingContext(user_message=message)

    assert is_technical_query(context)
    assert router.pick(context) == "openai"


@pytest.mark.parametrize(
    "message",
    [
        "Was stand im Newsletter?",
        "Zusammenfassung KW 12 bitte",
        "Was hat sich seit 01.03.2024 geändert?",
        "What changed since 1.3.2024?",
    ],
)
def test_newsletter_questions_route_to_creative(message: str) -> None:
    router = _router()
    context = RoutingContext(user_message=message)

    assert is_newsletter_query(context)
    assert router.pick(context) == "gemini"


def test_newsletter_mode_hint_counts_as_newsletter_query() -> None:
    context = RoutingContext(mode_hint=" Newsletter ", user_message="Was ist neu?")

    assert is_newsletter_query(context)
    assert _router().decide(context).rule == "newsletter"


def test_sop_match_takes_precedence() -> None:
    context = RoutingContext(
        kb_matches=({"type": "sop"},), user_message="Was stand im Newsletter KW 12?"
    )

    decision = _router().decide(context)

    assert decision.provider == "openai"
    assert decision.rule == "sop_match"


def test_technical_rule_beats_newsletter_rule() -> None:
    context = RoutingContext(user_message="Newsletter: neues Kassensystem")

    assert _router().decide(context).rule == "technical"


def test_non_sop_matches_do_not_force_precise() -> None:
    context = RoutingContext(
        kb_matches=({"type": "faq"}, {"title": "ohne typ"}),
        user_message="Newsletter bitte",
    )

    assert _router().pick(context) == "gemini"


def test_unmatched_question_falls_through_to_precise_default() -> None:
    decision = _router().decide(RoutingContext(user_message="Wer hat heute Dienst?"))

    assert decision.provider == "openai"
    assert decision.rule == "default"


def test_provider_names_are_normalized() -> None:
    router = _router()

    assert router.precise_provider == "openai"
    assert router.creative_provider == "gemini"


def test_custom_rules_are_evaluated_in_order() -> None:
    router = ProviderRouter(
        precise_provider="openai",
        creative_provider="gemini",
        rules=(
            RoutingRule(
                name="poem",
                target=ProviderRole.CREATIVE,
                matches=lambda ctx: "gedicht" in ctx.normalized_message,
            ),
        ),
    )

    assert router.pick(RoutingContext(user_message="Schreib ein Gedicht")) == "gemini"
    assert router.pick(RoutingContext(user_message="Drucker kaputt")) == "openai"
