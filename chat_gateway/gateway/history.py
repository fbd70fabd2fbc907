from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from chat_gateway.models.chat import Message, Role


@dataclass(frozen=True)
class HistoryBuild:
    messages: tuple[Message, ...]
    count_before_limit: int
    max_messages: int

    @property
    def truncated(self) -> bool:
        return self.count_before_limit > len(self.messages)


def normalize_history(raw_history: Iterable[object]) -> tuple[Message, ...]:
    """Canonicalize caller-supplied history entries.

    Non-mapping entries and entries whose trimmed content is empty are dropped;
    unknown roles are coerced to ``user`` rather than dropped.
    """
    messages: list[Message] = []
    for entry in raw_history:
        if not isinstance(entry, Mapping):
            continue
        content_raw = entry.get("content")
        if content_raw is None:
            continue
        content = str(content_raw).strip()
        if not content:
            continue
        messages.append(Message(role=Role.coerce(entry.get("role")), content=content))
    return tuple(messages)


def cap_history(messages: tuple[Message, ...], max_messages: int) -> tuple[Message, ...]:
    """Keep the newest ``max_messages`` entries in their original order."""
    if max_messages <= 0:
        return ()
    if len(messages) <= max_messages:
        return messages
    return messages[-max_messages:]


def build_history(
    raw_history: Iterable[object],
    kb_context: str,
    max_messages: int,
) -> HistoryBuild:
    entries: list[object] = list(raw_history)
    if kb_context:
        entries.append({"role": Role.SYSTEM.value, "content": kb_context})
    normalized = normalize_history(entries)
    return HistoryBuild(
        messages=cap_history(normalized, max_messages),
        count_before_limit=len(normalized),
        max_messages=max_messages,
    )


def last_user_message(messages: Iterable[Message]) -> str:
    content = ""
    for message in messages:
        if message.role is Role.USER:
            content = message.content
    return content
