"""Tests for CredentialManager."""

import pytest

from noder.credentials import CREDENTIAL_SPECS, CredentialManager, CredentialSpec


@pytest.fixture(autouse=True)
def _no_dotenv(tmp_path, monkeypatch):
    """Isolate tests from the project .env file.

    CredentialManager falls back to Path.cwd()/.env when a key is missing
    from os.environ; running from a temp dir keeps that lookup empty.
    """
    monkeypatch.chdir(tmp_path)


class TestCredentialManager:
    def test_get_returns_env_value(self, monkeypatch):
        """get() returns the environment variable value."""
        monkeypatch.setenv("REPLICATE_API_TOKEN", "r8-env")

        assert CredentialManager().get("replicate") == "r8-env"

    def test_get_returns_none_when_not_set(self, monkeypatch):
        """get() returns None when the env var is not set."""
        monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)

        assert CredentialManager().get("openrouter") is None

    def test_get_raises_for_unknown_credential(self):
        """get() raises KeyError for unknown credential names."""
        with pytest.raises(KeyError) as exc_info:
            CredentialManager().get("unknown_credential")

        assert "unknown_credential" in str(exc_info.value)
        assert "Available" in str(exc_info.value)

    def test_reads_dotenv_file(self, monkeypatch, tmp_path):
        """Keys missing from the environment are read from .env."""
        monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
        (tmp_path / ".env").write_text("OPENROUTER_API_KEY=sk-or-dotenv\n")

        assert CredentialManager().get("openrouter") == "sk-or-dotenv"

    def test_environment_wins_over_dotenv(self, monkeypatch, tmp_path):
        monkeypatch.setenv("OPENROUTER_API_KEY", "sk-or-env")
        (tmp_path / ".env").write_text("OPENROUTER_API_KEY=sk-or-dotenv\n")

        assert CredentialManager().get("openrouter") == "sk-or-env"

    def test_values_read_fresh_on_every_get(self, monkeypatch):
        """Keys set after construction are picked up."""
        monkeypatch.delenv("REPLICATE_API_TOKEN", raising=False)
        creds = CredentialManager()
        assert creds.get("replicate") is None

        monkeypatch.setenv("REPLICATE_API_TOKEN", "r8-later")

        assert creds.get("replicate") == "r8-later"

    def test_for_testing_overrides(self, monkeypatch):
        monkeypatch.setenv("REPLICATE_API_TOKEN", "r8-env")

        creds = CredentialManager.for_testing({"replicate": "r8-test"})

        assert creds.get("replicate") == "r8-test"

    @pytest.mark.parametrize("value, expected", [("key", True), ("", False), (None, False)])
    def test_is_available(self, monkeypatch, value, expected):
        if value is None:
            monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
        else:
            monkeypatch.setenv("OPENROUTER_API_KEY", value)

        assert CredentialManager().is_available("openrouter") is expected

    def test_missing_message_names_env_var_and_help_url(self):
        message = CredentialManager().missing_message("replicate")

        assert "REPLICATE_API_TOKEN" in message
        assert "https://replicate.com/account/api-tokens" in message

    def test_custom_specs(self, monkeypatch):
        monkeypatch.setenv("MY_PROVIDER_KEY", "abc")
        specs = {"mine": CredentialSpec(env_var="MY_PROVIDER_KEY")}

        creds = CredentialManager(specs=specs)

        assert creds.get("mine") == "abc"
        assert creds.get_spec("mine").env_var == "MY_PROVIDER_KEY"

    def test_alias_env_var(self, monkeypatch):
        monkeypatch.delenv("MY_PROVIDER_KEY", raising=False)
        monkeypatch.setenv("MY_PROVIDER_TOKEN", "from-alias")
        specs = {"mine": CredentialSpec(env_var="MY_PROVIDER_KEY", aliases=("MY_PROVIDER_TOKEN",))}

        assert CredentialManager(specs=specs).get("mine") == "from-alias"

    def test_missing_lists_unconfigured_providers(self, monkeypatch):
        monkeypatch.setenv("KEY_A", "a")
        monkeypatch.delenv("KEY_B", raising=False)
        specs = {"a": CredentialSpec(env_var="KEY_A"), "b": CredentialSpec(env_var="KEY_B")}

        assert CredentialManager(specs=specs).missing() == ["b"]


class TestCredentialSpecs:
    def test_generation_providers_registered(self):
        assert CREDENTIAL_SPECS["openrouter"].env_var == "OPENROUTER_API_KEY"
        assert CREDENTIAL_SPECS["replicate"].env_var == "REPLICATE_API_TOKEN"

    def test_every_spec_has_help_url(self):
        for name, spec in CREDENTIAL_SPECS.items():
            assert spec.help_url.startswith("https://"), name
