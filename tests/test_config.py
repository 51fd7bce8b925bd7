from unittest.mock import patch

import pytest

from enrichment_harness.config import Configuration, ConfigurationError, ensure_configuration
from enrichment_harness.prompts import MAIN_PROMPT


@pytest.fixture(autouse=True)
def _no_dotenv(monkeypatch):
    for name in ("ENRICHMENT_MODEL", "ENRICHMENT_MAX_LOOPS", "ENRICHMENT_MAX_SEARCH_RESULTS"):
        monkeypatch.delenv(name, raising=False)
    with patch("enrichment_harness.config.load_dotenv"):
        yield


def test_defaults():
    config = ensure_configuration()

    assert config == Configuration()
    assert config.max_loops == 6
    assert config.prompt == MAIN_PROMPT


def test_environment_is_read(monkeypatch):
    monkeypatch.setenv("ENRICHMENT_MAX_LOOPS", "9")
    monkeypatch.setenv("ENRICHMENT_MODEL", "openai/gpt-4o")

    config = ensure_configuration()

    assert config.max_loops == 9
    assert config.model == "openai/gpt-4o"


def test_overrides_win_over_environment(monkeypatch):
    monkeypatch.setenv("ENRICHMENT_MAX_LOOPS", "9")

    assert ensure_configuration({"max_loops": 2}).max_loops == 2


def test_invalid_values_rejected():
    with pytest.raises(ConfigurationError):
        ensure_configuration({"max_loops": 0})


def test_unknown_keys_rejected():
    with pytest.raises(ConfigurationError):
        ensure_configuration({"max_info_tool_calls": 3})


def test_configuration_is_read_only():
    config = ensure_configuration()
    with pytest.raises(Exception):
        config.max_loops = 10
