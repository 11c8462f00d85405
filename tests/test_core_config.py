"""Tests for configuration loading."""

from pathlib import Path

import pytest

from chat_strata.config import DATA_ROOT_ENV_VAR, Config, expand_env_var, load_config


@pytest.fixture(autouse=True)
def clear_data_root_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the data root override out of every test unless set explicitly."""
    monkeypatch.delenv(DATA_ROOT_ENV_VAR, raising=False)


class TestLoadConfig:
    """Tests for load_config function."""

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        config = load_config(tmp_path / "nope.yaml")
        defaults = Config()
        assert config.data_root == defaults.data_root
        assert config.importer.retain_package is False
        assert config.importer.hash_workers == 4
        assert config.logging.level == "INFO"

    def test_reads_yaml(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            f"""
data_root: {tmp_path / "data"}
logging:
  dir: {tmp_path / "logs"}
  level: debug
importer:
  retain_package: true
  lock_timeout_seconds: 2.5
  hash_workers: 8
"""
        )
        config = load_config(config_file)
        assert config.data_root == tmp_path / "data"
        assert config.logging.dir == tmp_path / "logs"
        assert config.logging.level == "DEBUG"
        assert config.importer.retain_package is True
        assert config.importer.lock_timeout_seconds == 2.5
        assert config.importer.hash_workers == 8

    def test_hash_workers_at_least_one(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("importer:\n  hash_workers: 0\n")
        assert load_config(config_file).importer.hash_workers == 1

    def test_empty_file(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("")
        assert load_config(config_file).importer.lock_timeout_seconds == 0.0

    def test_env_overrides_data_root(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text(f"data_root: {tmp_path / 'from-file'}\n")
        monkeypatch.setenv(DATA_ROOT_ENV_VAR, str(tmp_path / "from-env"))
        assert load_config(config_file).data_root == tmp_path / "from-env"

    def test_expands_env_var_reference(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("STRATA_TEST_ROOT", str(tmp_path / "expanded"))
        config_file = tmp_path / "config.yaml"
        config_file.write_text("data_root: ${STRATA_TEST_ROOT}\n")
        assert load_config(config_file).data_root == tmp_path / "expanded"


class TestExpandEnvVar:
    """Tests for expand_env_var function."""

    def test_unset_variable_left_alone(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("STRATA_UNSET_VAR", raising=False)
        assert expand_env_var("${STRATA_UNSET_VAR}") == "${STRATA_UNSET_VAR}"

    def test_plain_value(self) -> None:
        assert expand_env_var("plain") == "plain"
