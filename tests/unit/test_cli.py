"""Test CLI commands."""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from diagnosis_gateway.cli import cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def patched_registry(fake_registry):
    with patch("diagnosis_gateway.cli.build_registry", return_value=fake_registry):
        yield fake_registry


class TestCLICommands:
    """Test CLI commands"""

    def test_version_command(self, runner):
        with patch("diagnosis_gateway.cli.get_version", return_value="1.0.0"):
            result = runner.invoke(cli, ["version"])

            assert result.exit_code == 0
            assert "1.0.0" in result.output

    def test_version_json_format(self, runner):
        with patch("diagnosis_gateway.cli.get_version", return_value="1.0.0"):
            result = runner.invoke(cli, ["version", "--format", "json"])

            assert result.exit_code == 0
            output = json.loads(result.output)
            assert output["version"] == "1.0.0"

    def test_help_command(self, runner):
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "Usage:" in result.output
        for command in ("generate", "embed", "providers", "version"):
            assert command in result.output

    def test_providers_command(self, runner, patched_registry):
        result = runner.invoke(cli, ["providers"])

        assert result.exit_code == 0
        assert "alpha (configured)" in result.output
        assert "llm.primary: alpha:alpha-chat" in result.output
        assert "embedding.fallback: beta:beta-embed" in result.output

    def test_generate_command(self, runner, patched_registry):
        result = runner.invoke(cli, ["generate", "Fever and rash?"])

        assert result.exit_code == 0
        assert "reply from alpha" in result.output

    def test_generate_with_model_override(self, runner, patched_registry):
        result = runner.invoke(
            cli, ["generate", "Fever and rash?", "--provider", "beta", "--model", "beta-large"]
        )

        assert result.exit_code == 0
        assert "reply from beta" in result.output

    def test_generate_provider_without_model_uses_its_default(
        self, runner, patched_registry, fake_providers
    ):
        fake_providers["beta"].default_model = lambda kind="chat": f"beta-default-{kind}"

        result = runner.invoke(cli, ["generate", "Fever?", "--provider", "beta"])

        assert result.exit_code == 0
        assert fake_providers["beta"].calls == [("generate", "beta-default-chat", 0)]

    def test_generate_provider_without_default_model(self, runner, patched_registry):
        result = runner.invoke(cli, ["generate", "Fever?", "--provider", "beta"])

        assert result.exit_code == 2
        assert "has no default model, pass --model" in result.output

    def test_generate_model_without_provider(self, runner, patched_registry, fake_providers):
        result = runner.invoke(cli, ["generate", "Fever?", "--model", "beta-large"])

        assert result.exit_code == 2
        assert "--model requires --provider" in result.output
        assert fake_providers["alpha"].calls == []

    def test_generate_failure_without_fallback(
        self, runner, patched_registry, fake_providers, make_status_error
    ):
        fake_providers["alpha"].error = make_status_error(503, "overloaded")

        result = runner.invoke(cli, ["generate", "Fever?", "--no-fallback"])

        assert result.exit_code == 1
        assert "Provider error (alpha, status 503): overloaded" in result.output
        assert fake_providers["beta"].calls == []

    def test_embed_command(self, runner, patched_registry):
        result = runner.invoke(cli, ["embed", "fever", "rash"])

        assert result.exit_code == 0
        payload = json.loads(result.output.strip().splitlines()[-1])
        assert payload["provider"] == "alpha"
        assert payload["embeddings"] == [[0.0, 1.0], [1.0, 1.0]]
