"""Best-effort token usage extraction from provider responses.

Providers report usage in different shapes:

* OpenAI style: ``prompt_tokens`` / ``completion_tokens`` / ``total_tokens``
* generic: ``input_tokens`` / ``output_tokens`` / ``total_tokens``
* Gemini style: ``promptTokenCount`` / ``candidatesTokenCount`` / ``totalTokenCount``

The extractor checks the response's ``usage`` first, then its ``raw`` payload
and finally any public attributes, recursing into nested mappings. It never
raises; when nothing is found every field is ``None``.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

_INPUT_KEYS = (
    "prompt_tokens",
    "input_tokens",
    "prompttokencount",
    "inputtokencount",
    "prompt_tokens_count",
    "input_token_count",
)
_OUTPUT_KEYS = (
    "completion_tokens",
    "output_tokens",
    "candidatestokencount",
    "outputtokencount",
    "candidates_tokens",
    "output_token_count",
)
_TOTAL_KEYS = (
    "total_tokens",
    "totaltokencount",
    "totaltokens",
    "total_tokens_count",
    "total_token_count",
)
_MAX_DEPTH = 6


@dataclass(frozen=True)
class UsageStats:
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None

    def has_any(self) -> bool:
        return (
            self.input_tokens is not None
            or self.output_tokens is not None
            or self.total_tokens is not None
        )

    def with_fallback_total(self) -> "UsageStats":
        """Fill in missing fields from the ones that are known.

        A missing total is the sum of the parts; a total without parts is
        attributed entirely to input; a single known part leaves the other at 0.
        """
        in_tokens, out_tokens, total = self.input_tokens, self.output_tokens, self.total_tokens
        if total is None and (in_tokens is not None or out_tokens is not None):
            total = (in_tokens or 0) + (out_tokens or 0)
        if total is not None and in_tokens is None and out_tokens is None:
            in_tokens, out_tokens = total, 0
        if total is not None and in_tokens is not None and out_tokens is None:
            out_tokens = 0
        if total is not None and in_tokens is None and out_tokens is not None:
            in_tokens = 0
        return UsageStats(in_tokens, out_tokens, total)


EMPTY_USAGE = UsageStats()


class UsageExtractor:
    def extract(self, response: object) -> UsageStats:
        for candidate in (
            getattr(response, "usage", None),
            getattr(response, "raw", None),
            getattr(response, "message", None),
            response,
        ):
            if candidate is None:
                continue
            usage = self._from_any(candidate, depth=0)
            if usage.has_any():
                return usage
        return EMPTY_USAGE

    def _from_any(self, value: object, depth: int) -> UsageStats:
        if depth > _MAX_DEPTH or value is None:
            return EMPTY_USAGE
        if isinstance(value, UsageStats):
            return value.with_fallback_total()
        if isinstance(value, Mapping):
            return self._from_mapping(value, depth)
        if isinstance(value, str | bytes | int | float | bool):
            return EMPTY_USAGE
        if isinstance(value, Sequence):
            for item in value:
                usage = self._from_any(item, depth + 1)
                if usage.has_any():
                    return usage
            return EMPTY_USAGE
        nested = getattr(value, "usage", None)
        if nested is not None and nested is not value:
            usage = self._from_any(nested, depth + 1)
            if usage.has_any():
                return usage
        public = getattr(value, "__dict__", None)
        if isinstance(public, dict):
            return self._from_mapping(
                {k: v for k, v in public.items() if not k.startswith("_")}, depth
            )
        return EMPTY_USAGE

    def _from_mapping(self, payload: Mapping[Any, Any], depth: int) -> UsageStats:
        direct = self._from_flat(payload)
        if direct.has_any():
            return direct
        for value in payload.values():
            if isinstance(value, str | bytes | int | float | bool) or value is None:
                continue
            usage = self._from_any(value, depth + 1)
            if usage.has_any():
                return usage
        return EMPTY_USAGE

    @classmethod
    def _from_flat(cls, payload: Mapping[Any, Any]) -> UsageStats:
        keys = {key.lower(): value for key, value in payload.items() if isinstance(key, str)}
        usage = UsageStats(
            input_tokens=cls._pick_int(keys, _INPUT_KEYS),
            output_tokens=cls._pick_int(keys, _OUTPUT_KEYS),
            total_tokens=cls._pick_int(keys, _TOTAL_KEYS),
        )
        return usage.with_fallback_total()

    @staticmethod
    def _pick_int(keys: Mapping[str, Any], candidates: tuple[str, ...]) -> int | None:
        for candidate in candidates:
            if candidate not in keys:
                continue
            value = keys[candidate]
            if isinstance(value, bool):
                continue
            if isinstance(value, int):
                return value
            if isinstance(value, float):
                return int(round(value))
            if isinstance(value, str) and value.isascii() and value.isdigit():
                return int(value)
        return None
