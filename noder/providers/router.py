"""Decide which provider serves a model id."""

from enum import StrEnum


class ProviderKind(StrEnum):
    CHAT = "chat"  # synchronous chat-completion (OpenRouter)
    POLL = "poll"  # create-then-poll predictions (Replicate)


DEFAULT_CHAT_OWNERS = frozenset(
    {
        "openai",
        "anthropic",
        "google",
        "meta-llama",
        "mistralai",
        "deepseek",
        "qwen",
        "cohere",
        "perplexity",
        "openrouter",
    }
)


def owner_of(model_id: str) -> str:
    """Owner segment of ``owner/name[:version]``, lower-cased."""
    return model_id.split("/", 1)[0].strip().lower()


def route(model_id: str, chat_owners: frozenset[str] | set[str] | None = None) -> ProviderKind:
    """
    Route a model id to the chat or poll provider.

    Owners on the chat allowlist go to the chat provider; everything else,
    including bare version ids without an owner, is a polled prediction.
    """
    owners = DEFAULT_CHAT_OWNERS if chat_owners is None else chat_owners
    if owner_of(model_id) in owners:
        return ProviderKind.CHAT
    return ProviderKind.POLL
