"""
Tests for the CLI interface.
"""
import os
import shutil
import tempfile
from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from image_meter.cli.main import (
    EXIT_CODE_ERROR,
    EXIT_CODE_OK,
    EXIT_CODE_PAYMENT,
    EXIT_CODE_PROVIDER,
    _format_cents,
    app,
)
from image_meter.core.errors import ProviderFailure
from image_meter.provider.openai_provider import GenerationProvider
from image_meter.storage.models import Artifact

runner = CliRunner()


class FakeProvider(GenerationProvider):
    """Provider returning deterministic bytes."""

    def __init__(self):
        self.calls = 0

    def generate(self, request):
        self.calls += 1
        return [Artifact(f"{request.prompt}-{i}".encode()) for i in range(request.count)]


class BrokenProvider(GenerationProvider):
    """Provider that always fails upstream."""

    def generate(self, request):
        raise ProviderFailure(503, "upstream overloaded")


@pytest.fixture
def workspace():
    """Temporary directory holding a config file and database path."""
    temp_dir = tempfile.mkdtemp()
    config_path = os.path.join(temp_dir, "config.yaml")
    with open(config_path, 'w', encoding='utf-8') as f:
        yaml.dump({
            "storage": {"db_path": os.path.join(temp_dir, "meter.db")},
            "billing": {"payment_link": "https://pay.example.com"},
        }, f)
    yield temp_dir, config_path
    shutil.rmtree(temp_dir, ignore_errors=True)


def _invoke(config_path, *args):
    return runner.invoke(app, ["--config", config_path, *args])


def _create_account(config_path, balance):
    result = _invoke(config_path, "account", "create", "alice", "--balance", str(balance))
    assert result.exit_code == EXIT_CODE_OK
    for line in result.output.splitlines():
        if line.startswith("Access token: "):
            return line[len("Access token: "):].strip()
    raise AssertionError(f"no token in output: {result.output}")


class TestCLI:
    """Test CLI commands."""

    def test_init_creates_database(self, workspace):
        """Test init command."""
        temp_dir, config_path = workspace
        result = _invoke(config_path, "init")

        assert result.exit_code == EXIT_CODE_OK
        assert "Database initialized" in result.output
        assert os.path.exists(os.path.join(temp_dir, "meter.db"))

    def test_bad_config_exits_with_error(self, workspace):
        """Test that configuration errors are reported."""
        temp_dir, _ = workspace
        bad_path = os.path.join(temp_dir, "bad.yaml")
        with open(bad_path, 'w') as f:
            yaml.dump({"provider": {"timeout_seconds": -1}}, f)

        result = runner.invoke(app, ["--config", bad_path, "status"])

        assert result.exit_code == EXIT_CODE_ERROR
        assert "Configuration error" in result.output

    def test_missing_config_exits_with_error(self):
        """Test that a missing config file is reported."""
        result = runner.invoke(app, ["--config", "does-not-exist.yaml", "status"])
        assert result.exit_code == EXIT_CODE_ERROR
        assert "Configuration error" in result.output

    def test_status(self, workspace):
        """Test status command."""
        _, config_path = workspace
        result = _invoke(config_path, "status")

        assert result.exit_code == EXIT_CODE_OK
        assert "gpt-image-1" in result.output

    def test_account_lifecycle(self, workspace):
        """Test account create, topup and show."""
        _, config_path = workspace
        _invoke(config_path, "init")
        token = _create_account(config_path, 50)

        result = _invoke(config_path, "account", "topup", token, "25")
        assert result.exit_code == EXIT_CODE_OK
        assert "New balance: $0.75" in result.output

        result = _invoke(config_path, "account", "show", token)
        assert result.exit_code == EXIT_CODE_OK
        assert "alice" in result.output
        assert "$0.75" in result.output
        assert "No charges yet" in result.output

    def test_account_commands_require_database(self, workspace):
        """Test that account commands refuse to run before init."""
        _, config_path = workspace
        result = _invoke(config_path, "account", "create", "alice")

        assert result.exit_code == EXIT_CODE_ERROR
        assert "No database found" in result.output

    def test_topup_unknown_account(self, workspace):
        """Test topup against a token that does not exist."""
        _, config_path = workspace
        _invoke(config_path, "init")
        result = _invoke(config_path, "account", "topup", "nope", "10")

        assert result.exit_code == EXIT_CODE_ERROR
        assert "Unknown account" in result.output

    def test_quote_without_token(self, workspace):
        """Test quote for an anonymous caller."""
        _, config_path = workspace
        result = _invoke(config_path, "quote", "cat")

        assert result.exit_code == EXIT_CODE_OK
        assert "Image Generation Cost Estimate" in result.output
        assert "$0.02" in result.output
        assert "Cache key: /image/cat/1024x1024/low" in result.output
        assert "https://pay.example.com" in result.output

    def test_quote_with_token(self, workspace):
        """Test quote shows affordability for a registered caller."""
        _, config_path = workspace
        _invoke(config_path, "init")
        token = _create_account(config_path, 1)

        result = _invoke(config_path, "quote", "cat", "--token", token)

        assert result.exit_code == EXIT_CODE_OK
        assert "Current balance: $0.01" in result.output
        assert "Can afford: No" in result.output

    def test_quote_invalid_quality(self, workspace):
        """Test that invalid requests are rejected before pricing."""
        _, config_path = workspace
        result = _invoke(config_path, "quote", "cat", "--quality", "ultra")

        assert result.exit_code == EXIT_CODE_ERROR
        assert "Invalid quality" in result.output

    def test_generate_then_cache_hit(self, workspace):
        """Test that a repeat request is served from cache without charge."""
        temp_dir, config_path = workspace
        out_dir = os.path.join(temp_dir, "out")
        _invoke(config_path, "init")
        token = _create_account(config_path, 100)
        provider = FakeProvider()

        with patch('image_meter.app.OpenAIImageProvider', return_value=provider):
            first = _invoke(config_path, "generate", "cat", "--token", token, "--output", out_dir)
            second = _invoke(config_path, "generate", "cat", "--token", token, "--output", out_dir)

        assert first.exit_code == EXIT_CODE_OK
        assert "Generated and charged $0.02" in first.output
        assert second.exit_code == EXIT_CODE_OK
        assert "Served from cache (no charge)" in second.output
        assert provider.calls == 1

        files = os.listdir(out_dir)
        assert len(files) == 1
        with open(os.path.join(out_dir, files[0]), 'rb') as f:
            assert f.read() == b"cat-0"

        shown = _invoke(config_path, "account", "show", token)
        assert "$0.98" in shown.output

    def test_generate_multiple_images(self, workspace):
        """Test that each image is written to its own file."""
        temp_dir, config_path = workspace
        out_dir = os.path.join(temp_dir, "out")
        _invoke(config_path, "init")
        token = _create_account(config_path, 100)

        with patch('image_meter.app.OpenAIImageProvider', return_value=FakeProvider()):
            result = _invoke(config_path, "generate", "cat", "-n", "3", "-t", token, "-o", out_dir)

        assert result.exit_code == EXIT_CODE_OK
        assert len(os.listdir(out_dir)) == 3

    def test_generate_with_empty_balance(self, workspace):
        """Test that an empty account gets the payment exit code."""
        _, config_path = workspace
        _invoke(config_path, "init")
        token = _create_account(config_path, 0)

        with patch('image_meter.app.OpenAIImageProvider', return_value=FakeProvider()):
            result = _invoke(config_path, "generate", "cat", "--token", token)

        assert result.exit_code == EXIT_CODE_PAYMENT
        assert "Payment required" in result.output
        assert "https://pay.example.com" in result.output

    def test_generate_without_token(self, workspace):
        """Test that anonymous generation is refused."""
        _, config_path = workspace
        _invoke(config_path, "init")

        with patch('image_meter.app.OpenAIImageProvider', return_value=FakeProvider()):
            result = _invoke(config_path, "generate", "cat")

        assert result.exit_code == EXIT_CODE_PAYMENT

    def test_generate_insufficient_balance(self, workspace):
        """Test that a declined charge gets the payment exit code."""
        _, config_path = workspace
        _invoke(config_path, "init")
        token = _create_account(config_path, 1)

        with patch('image_meter.app.OpenAIImageProvider', return_value=FakeProvider()):
            result = _invoke(config_path, "generate", "cat", "--token", token)

        assert result.exit_code == EXIT_CODE_PAYMENT
        assert "Payment failed: Insufficient balance" in result.output

    def test_generate_provider_failure(self, workspace):
        """Test that upstream failures keep the charge and exit distinctly."""
        _, config_path = workspace
        _invoke(config_path, "init")
        token = _create_account(config_path, 100)

        with patch('image_meter.app.OpenAIImageProvider', return_value=BrokenProvider()):
            result = _invoke(config_path, "generate", "cat", "--token", token)

        assert result.exit_code == EXIT_CODE_PROVIDER
        assert "not been refunded" in result.output

        shown = _invoke(config_path, "account", "show", token)
        assert "$0.98" in shown.output

    def test_generate_requires_database(self, workspace):
        """Test generate before init."""
        _, config_path = workspace
        result = _invoke(config_path, "generate", "cat", "--token", "anything")

        assert result.exit_code == EXIT_CODE_ERROR
        assert "No database found" in result.output


class TestFormatting:
    """Test money formatting helpers."""

    def test_format_cents(self):
        assert _format_cents(2) == "$0.02"
        assert _format_cents(123456) == "$1,234.56"
        assert _format_cents(-5) == "-$0.05"
