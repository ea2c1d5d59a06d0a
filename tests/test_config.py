"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from tickfsm.config import CompilerConfig, load_config
from tickfsm.config.settings import ENV_LOG_LEVEL, ENV_OUTPUT_DIR


class TestCompilerConfig:
    def test_defaults(self) -> None:
        config = CompilerConfig()
        assert config.output.directory == Path("generated")
        assert config.output.class_suffix == "StateMachine"
        assert config.validation.warnings_as_errors is False
        assert config.logging.level == "warning"
        assert config.validate().is_ok()

    def test_from_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "tickfsm.yaml"
        path.write_text(
            "output:\n"
            "  directory: build/machines\n"
            "  class_suffix: Command\n"
            "validation:\n"
            "  warnings_as_errors: true\n"
            "logging:\n"
            "  level: debug\n"
            "  format: json\n",
            encoding="utf-8",
        )
        config = CompilerConfig.from_yaml(path).unwrap()
        assert config.output.directory == tmp_path / "build" / "machines"
        assert config.output.class_suffix == "Command"
        assert config.validation.warnings_as_errors is True
        assert config.logging.format == "json"
        assert config.config_file == path

    def test_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "tickfsm.yaml"
        path.write_text("", encoding="utf-8")
        config = CompilerConfig.from_yaml(path).unwrap()
        assert config.output.class_suffix == "StateMachine"

    def test_missing_file(self, tmp_path: Path) -> None:
        error = CompilerConfig.from_yaml(tmp_path / "absent.yaml").unwrap_err()
        assert error.field == "path"

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "tickfsm.yaml"
        path.write_text("output: [\n", encoding="utf-8")
        assert CompilerConfig.from_yaml(path).unwrap_err().field == "yaml"

    @pytest.mark.parametrize(
        ("data", "field"),
        [
            ({"output": []}, "output"),
            ({"output": {"directory": None}}, "output.directory"),
            ({"output": {"directory": ""}}, "output.directory"),
            ({"output": {"class_suffix": None}}, "output.class_suffix"),
            ({"output": {"class_suffix": "State Machine"}}, "output.class_suffix"),
            ({"output": {"module_suffix": "-machine"}}, "output.module_suffix"),
            ({"validation": {"warn_dead_ends": "no"}}, "validation.warn_dead_ends"),
            ({"logging": {"level": "loud"}}, "logging.level"),
            ({"logging": {"format": "xml"}}, "logging.format"),
        ],
    )
    def test_invalid_values(self, data: dict, field: str) -> None:
        assert CompilerConfig.from_dict(data).unwrap_err().field == field

    def test_with_output_dir_copies(self) -> None:
        config = CompilerConfig()
        other = config.with_output_dir(Path("/tmp/out"))
        assert other.output.directory == Path("/tmp/out")
        assert config.output.directory == Path("generated")

    def test_env_overrides(self) -> None:
        config = CompilerConfig().apply_env({ENV_OUTPUT_DIR: "/srv/gen", ENV_LOG_LEVEL: "debug"})
        assert config.output.directory == Path("/srv/gen")
        assert config.logging.level == "debug"


class TestLoadConfig:
    def test_defaults_without_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        config = load_config(environ={}).unwrap()
        assert config.config_file is None

    def test_finds_default_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / "tickfsm.yaml").write_text("output:\n  class_suffix: Fsm\n", encoding="utf-8")
        monkeypatch.chdir(tmp_path)
        config = load_config(environ={}).unwrap()
        assert config.output.class_suffix == "Fsm"

    def test_explicit_path_must_exist(self, tmp_path: Path) -> None:
        assert load_config(tmp_path / "nope.yaml", environ={}).is_err()

    def test_env_applied_last(self, tmp_path: Path) -> None:
        path = tmp_path / "custom.yaml"
        path.write_text("logging:\n  level: error\n", encoding="utf-8")
        config = load_config(path, environ={ENV_LOG_LEVEL: "info"}).unwrap()
        assert config.logging.level == "info"

    def test_invalid_env_value(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        error = load_config(environ={ENV_LOG_LEVEL: "verbose"}).unwrap_err()
        assert error.field == "logging.level"
