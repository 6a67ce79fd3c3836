"""Tests for provider routing."""

import pytest

from noder.providers.router import DEFAULT_CHAT_OWNERS, ProviderKind, owner_of, route


@pytest.mark.parametrize(
    "model_id",
    [
        "openai/gpt-4o",
        "anthropic/claude-sonnet-4",
        "google/gemini-2.5-flash",
        "meta-llama/llama-3.1-70b-instruct",
        "mistralai/mistral-large",
        "deepseek/deepseek-chat",
        "qwen/qwen-2.5-72b-instruct",
        "cohere/command-r",
        "perplexity/sonar",
        "openrouter/auto",
    ],
)
def test_chat_owners_route_to_chat(model_id):
    assert route(model_id) == ProviderKind.CHAT


@pytest.mark.parametrize(
    "model_id",
    [
        "black-forest-labs/flux-schnell",
        "stability-ai/sdxl",
        "meta/meta-llama-3-70b-instruct",
        "nightmareai/real-esrgan",
        "minimax/video-01",
        "some-new-owner/model",
    ],
)
def test_other_owners_route_to_poll(model_id):
    assert route(model_id) == ProviderKind.POLL


def test_owner_is_case_insensitive():
    assert route("OpenAI/gpt-4o") == ProviderKind.CHAT
    assert owner_of("OpenAI/gpt-4o") == "openai"


def test_owner_split_on_first_slash_only():
    assert owner_of("openai/gpt-4o/extra") == "openai"
    assert route("openai/gpt-4o/extra") == ProviderKind.CHAT


def test_version_suffix_does_not_change_owner():
    assert route("stability-ai/sdxl:39ed52f2a78e") == ProviderKind.POLL


def test_bare_version_id_routes_to_poll():
    assert route("39ed52f2a78e934b3ba6e2a89f5b1c712de7dfea535525255b1aa35c5565e08b") == (
        ProviderKind.POLL
    )


def test_custom_allowlist():
    assert route("stability-ai/sdxl", chat_owners={"stability-ai"}) == ProviderKind.CHAT
    assert route("openai/gpt-4o", chat_owners=frozenset()) == ProviderKind.POLL


def test_default_allowlist_is_lowercase():
    assert all(owner == owner.lower() for owner in DEFAULT_CHAT_OWNERS)
