from collections.abc import Iterable

from chat_gateway.models.chat import ChatRequest, Message


def assemble_request(
    messages: Iterable[Message],
    provider: str,
    model: str | None = None,
) -> ChatRequest:
    """Wrap normalized messages into an immutable provider request.

    Messages that are empty after a final trim are skipped.  Tool, criteria and
    metadata slots are left at their empty defaults.
    """
    final_messages = tuple(
        Message(role=message.role, content=message.content.strip())
        for message in messages
        if message.content.strip()
    )
    return ChatRequest(messages=final_messages, provider=provider, model=model)
