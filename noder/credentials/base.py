"""
Provider key lookup for the generation invoker.

Each provider name (``openrouter``, ``replicate``, ...) maps to a
CredentialSpec naming its environment variable. Lookups walk three
sources in order:

    test overrides → os.environ (primary name, then aliases) → .env file

Nothing is cached, so a key exported or written to ``.env`` while the
process runs is used by the next node invocation.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import dotenv_values

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialSpec:
    """Where a provider's API key is read from."""

    env_var: str
    """Primary environment variable, e.g. ``REPLICATE_API_TOKEN``"""

    help_url: str = ""
    """Page where a key can be created"""

    description: str = ""

    aliases: tuple[str, ...] = field(default_factory=tuple)
    """Alternative variable names accepted for the same key"""

    @property
    def env_vars(self) -> tuple[str, ...]:
        return (self.env_var, *self.aliases)


class CredentialManager:
    """
    Resolves provider keys by name.

        creds = CredentialManager()
        if creds.is_available("openrouter"):
            client = OpenRouterClient(creds.get("openrouter"))

    Tests pin values with ``CredentialManager.for_testing({...})``.
    """

    def __init__(
        self,
        specs: Mapping[str, CredentialSpec] | None = None,
        _overrides: Mapping[str, str] | None = None,
        dotenv_path: Path | None = None,
    ):
        if specs is None:
            from . import CREDENTIAL_SPECS

            specs = CREDENTIAL_SPECS
        self._specs = dict(specs)
        self._overrides = dict(_overrides or {})
        self._dotenv_path = dotenv_path

    @classmethod
    def for_testing(
        cls,
        overrides: Mapping[str, str],
        specs: Mapping[str, CredentialSpec] | None = None,
        dotenv_path: Path | None = None,
    ) -> CredentialManager:
        """
        Manager whose ``overrides`` win over every other source.

        Providers absent from ``overrides`` still resolve from the
        environment; point ``dotenv_path`` at a missing file to keep a real
        ``.env`` out of the picture.
        """
        return cls(specs=specs, _overrides=overrides, dotenv_path=dotenv_path)

    # === LOOKUP ===

    def _spec_for(self, name: str) -> CredentialSpec:
        try:
            return self._specs[name]
        except KeyError:
            raise KeyError(
                f"Unknown credential '{name}'. Available: {sorted(self._specs)}"
            ) from None

    def _dotenv(self) -> dict[str, str | None]:
        path = self._dotenv_path or Path.cwd() / ".env"
        if not path.is_file():
            return {}
        # Parsed without exporting into os.environ
        return dotenv_values(path)

    def _candidates(self, name: str, spec: CredentialSpec) -> Iterator[tuple[str, str | None]]:
        if name in self._overrides:
            yield "override", self._overrides[name]
        for env_var in spec.env_vars:
            yield f"env:{env_var}", os.environ.get(env_var)
        file_values = self._dotenv()
        for env_var in spec.env_vars:
            yield f"dotenv:{env_var}", file_values.get(env_var)

    def get(self, name: str) -> str | None:
        """
        API key for provider ``name``, or None when no source has one.

        An explicit override is returned as-is, even when empty.

        Raises:
            KeyError: ``name`` has no CredentialSpec
        """
        spec = self._spec_for(name)
        for source, value in self._candidates(name, spec):
            if source == "override" or value:
                logger.debug(f"Credential '{name}' resolved from {source}")
                return value
        return None

    def get_spec(self, name: str) -> CredentialSpec:
        return self._spec_for(name)

    def is_available(self, name: str) -> bool:
        return bool(self.get(name))

    def missing(self) -> list[str]:
        """Names of all known providers without a usable key."""
        return [name for name in self._specs if not self.is_available(name)]

    def missing_message(self, name: str) -> str:
        """Actionable message for a missing credential."""
        spec = self.get_spec(name)
        message = f"{name} API key is not configured. Set {spec.env_var}."
        if spec.help_url:
            message += f" Get a key at: {spec.help_url}"
        return message
