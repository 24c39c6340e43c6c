"""Tests for the TOML configuration loader."""

from __future__ import annotations

import pytest

from crucible.config_loader import default_config_path, load_config
from crucible.schemas.config import InputFormat


class TestLoadConfig:
    def test_bundled_defaults(self):
        config = load_config()
        assert default_config_path().name == "defaults.toml"
        assert config.loop.max_rounds == 3
        assert config.loop.critique_retries == 1
        assert config.critique.command[0] == "codex"
        assert config.remediation.command[0] == "claude"
        assert config.remediation.input_format == InputFormat.TEXT
        assert config.persist_history is True

    def test_partial_file_keeps_defaults(self, tmp_path):
        path = tmp_path / "crucible.toml"
        path.write_text('[loop]\nmax_rounds = 5\n\n[critique]\ncommand = ["my-reviewer"]\n')
        config = load_config(path)
        assert config.loop.max_rounds == 5
        assert config.loop.remediation_timeout == 900.0
        assert config.critique.command == ["my-reviewer"]
        assert config.remediation.command[0] == "claude"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.toml")

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("[loop\nmax_rounds = ")
        with pytest.raises(ValueError, match="Invalid TOML"):
            load_config(path)

    def test_section_must_be_table(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text('loop = "fast"\n')
        with pytest.raises(ValueError, match="must be a table"):
            load_config(path)

    def test_validation_error(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("[loop]\nmax_rounds = 0\n")
        with pytest.raises(ValueError, match="Invalid configuration"):
            load_config(path)

    def test_empty_command_rejected(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("[critique]\ncommand = []\n")
        with pytest.raises(ValueError):
            load_config(path)
