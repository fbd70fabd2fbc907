"""Rule-table provider routing for calls that do not pin a provider.

Technical and support questions are graded for correctness and go to the
precise provider, which is less prone to leaking its reasoning.  Newsletter and
document questions tolerate the more permissive creative provider.  Rules are
evaluated in order and the first match wins; anything unmatched falls through to
the precise provider.
"""

import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class ProviderRole(StrEnum):
    PRECISE = "precise"
    CREATIVE = "creative"


@dataclass(frozen=True)
class RoutingContext:
    mode_hint: str = ""
    kb_matches: tuple[Mapping[str, Any], ...] = ()
    user_message: str = ""

    @property
    def normalized_message(self) -> str:
        return self.user_message.lower()


@dataclass(frozen=True)
class RoutingRule:
    name: str
    target: ProviderRole
    matches: Callable[[RoutingContext], bool] = field(compare=False)


@dataclass(frozen=True)
class RoutingDecision:
    provider: str
    rule: str


TECHNICAL_PATTERN = re.compile(
    r"warteschlange|queue|drucker|printer|druckauftrag|kasse|kassensystem|cash[ -]?register"
    r"|\bpos\b|log-?in|anmeld|passwort|password|kennwort|terminal|kartenterminal"
    r"|ec-?ger[äa]t|fernwartung|fernzugriff|remote|teamviewer|anydesk|vpn",
)
NEWSLETTER_PATTERN = re.compile(
    r"newsletter|\bkw\s*\d{0,2}\b|\b(?:seit|since)\s+\d{1,2}\.\d{1,2}\.\d{4}\b",
)


def has_sop_match(context: RoutingContext) -> bool:
    return any(
        str(match.get("type", "")).strip().upper() == "SOP" for match in context.kb_matches
    )


def is_technical_query(context: RoutingContext) -> bool:
    return bool(TECHNICAL_PATTERN.search(context.normalized_message))


def is_newsletter_query(context: RoutingContext) -> bool:
    if context.mode_hint.strip().lower() == "newsletter":
        return True
    return bool(NEWSLETTER_PATTERN.search(context.normalized_message))


DEFAULT_RULES: tuple[RoutingRule, ...] = (
    RoutingRule(name="sop_match", target=ProviderRole.PRECISE, matches=has_sop_match),
    RoutingRule(name="technical", target=ProviderRole.PRECISE, matches=is_technical_query),
    RoutingRule(name="newsletter", target=ProviderRole.CREATIVE, matches=is_newsletter_query),
)


class ProviderRouter:
    def __init__(
        self,
        precise_provider: str,
        creative_provider: str,
        rules: Sequence[RoutingRule] = DEFAULT_RULES,
    ) -> None:
        self._providers = {
            ProviderRole.PRECISE: precise_provider.strip().lower(),
            ProviderRole.CREATIVE: creative_provider.strip().lower(),
        }
        self._rules = tuple(rules)

    @property
    def precise_provider(self) -> str:
        return self._providers[ProviderRole.PRECISE]

    @property
    def creative_provider(self) -> str:
        return self._providers[ProviderRole.CREATIVE]

    def match(self, context: RoutingContext) -> RoutingRule | None:
        for rule in self._rules:
            if rule.matches(context):
                return rule
        return None

    def decide(self, context: RoutingContext) -> RoutingDecision:
        rule = self.match(context)
        if rule is None:
            return RoutingDecision(provider=self.precise_provider, rule="default")
        return RoutingDecision(provider=self._providers[rule.target], rule=rule.name)

    def pick(self, context: RoutingContext) -> str:
        return self.decide(context).provider
