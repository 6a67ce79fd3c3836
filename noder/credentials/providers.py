"""
Generation provider credentials.
"""

from .base import CredentialSpec

PROVIDER_CREDENTIALS = {
    "openrouter": CredentialSpec(
        env_var="OPENROUTER_API_KEY",
        help_url="https://openrouter.ai/keys",
        description="API key for chat-completion models routed through OpenRouter",
    ),
    "replicate": CredentialSpec(
        env_var="REPLICATE_API_TOKEN",
        help_url="https://replicate.com/account/api-tokens",
        description="API token for Replicate predictions (image, video, audio, text)",
    ),
    "openai": CredentialSpec(
        env_var="OPENAI_API_KEY",
        help_url="https://platform.openai.com/api-keys",
        description="API key for OpenAI models",
    ),
    "anthropic": CredentialSpec(
        env_var="ANTHROPIC_API_KEY",
        help_url="https://console.anthropic.com/settings/keys",
        description="API key for Anthropic Claude models",
    ),
    "gemini": CredentialSpec(
        env_var="GEMINI_API_KEY",
        help_url="https://aistudio.google.com/app/apikey",
        description="API key for Google Gemini models",
    ),
}
