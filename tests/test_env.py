"""Tests for environment references in configuration and .env loading."""

import os

import pytest

from querybench.lib.env import expand_config, expand_env_vars, load_env_file
from querybench.lib.errors import ConfigurationError


def test_expand_braced_and_bare(monkeypatch):
    monkeypatch.setenv("STORAGE_ACCOUNT", "logsacct")

    assert expand_env_vars(
        "https://${STORAGE_ACCOUNT}.blob.core.windows.net", field="source"
    ) == ("https://logsacct.blob.core.windows.net")
    assert expand_env_vars("$STORAGE_ACCOUNT/raw", field="source") == "logsacct/raw"


def test_unset_variable_is_a_configuration_error(monkeypatch):
    monkeypatch.delenv("MISSING_VAR", raising=False)

    with pytest.raises(ConfigurationError) as exc_info:
        expand_env_vars("https://${MISSING_VAR}.blob.core.windows.net", field="source")

    assert "MISSING_VAR" in exc_info.value.message
    assert exc_info.value.field == "source"


def test_expand_config_values(monkeypatch):
    monkeypatch.setenv("DB", "logs")
    data = {
        "database": "${DB}",
        "max_parallel_scans": 4,
        "queries": [{"source": "${DB}/x", "parameters": {"value": "${DB}"}}],
    }

    expanded = expand_config(data)

    assert expanded["database"] == "logs"
    assert expanded["max_parallel_scans"] == 4
    assert expanded["queries"][0]["source"] == "logs/x"
    assert expanded["queries"][0]["parameters"]["value"] == "logs"
    assert data["database"] == "${DB}"


def test_unset_variable_names_its_path(monkeypatch):
    monkeypatch.delenv("MISSING_VAR", raising=False)
    data = {"queries": [{"source": "a"}, {"parameters": {"value": "$MISSING_VAR"}}]}

    with pytest.raises(ConfigurationError) as exc_info:
        expand_config(data)

    assert exc_info.value.field == "queries[1].parameters.value"


def test_load_env_file(tmp_path, monkeypatch):
    monkeypatch.setenv("QB_TEST_VALUE", "placeholder")
    env_file = tmp_path / ".env"
    env_file.write_text("QB_TEST_VALUE=from-file\n", encoding="utf-8")

    assert load_env_file(env_file, override=True)
    assert os.environ["QB_TEST_VALUE"] == "from-file"


def test_load_env_file_keeps_existing_values(tmp_path, monkeypatch):
    monkeypatch.setenv("QB_TEST_VALUE", "from-shell")
    env_file = tmp_path / ".env"
    env_file.write_text("QB_TEST_VALUE=from-file\n", encoding="utf-8")

    load_env_file(env_file)

    assert os.environ["QB_TEST_VALUE"] == "from-shell"
