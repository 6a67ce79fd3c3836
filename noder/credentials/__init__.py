"""
Credentials for generation providers.

Usage:
    from noder.credentials import CredentialManager

    creds = CredentialManager()
    api_key = creds.get("openrouter")
"""

from .base import CredentialManager, CredentialSpec
from .providers import PROVIDER_CREDENTIALS

CREDENTIAL_SPECS = {
    **PROVIDER_CREDENTIALS,
}

__all__ = [
    "CredentialSpec",
    "CredentialManager",
    "CREDENTIAL_SPECS",
    "PROVIDER_CREDENTIALS",
]
