import pytest

from billing_copilot.config import AppConfig, AssistantConfig, load_config, normalize_provider
from billing_copilot.core.types import ProviderName

CONFIG_YAML = """
data_dir: ./var
assistant:
  provider: ${COPILOT_PROVIDER}
  max_tool_iterations: 3
  currency_rates:
    EUR: 3.35
openai:
  api_key: ${TEST_OPENAI_KEY}
gemini:
  api_key: ${TEST_GEMINI_KEY}
storage:
  db_path: ${data_dir}/copilot.db
"""


def _write(tmp_path, text=CONFIG_YAML):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_config_interpolates_env_and_data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("COPILOT_PROVIDER", "google")
    monkeypatch.setenv("TEST_GEMINI_KEY", "g-key")
    monkeypatch.delenv("TEST_OPENAI_KEY", raising=False)

    config = load_config(_write(tmp_path), tmp_path / "missing.env")

    assert config.assistant.provider == ProviderName.GEMINI
    assert config.assistant.fallback_provider == ProviderName.OPENAI
    assert config.assistant.max_tool_iterations == 3
    assert config.assistant.currency_rates == {"EUR": 3.35}
    assert config.gemini.api_key == "g-key"
    assert config.openai.api_key == ""
    assert config.storage.db_path == "./var/copilot.db"
    assert config.provider_configured(ProviderName.GEMINI)
    assert not config.provider_configured(ProviderName.OPENAI)


def test_env_file_is_loaded(tmp_path, monkeypatch):
    # Registers the variable with monkeypatch so teardown removes what load_dotenv sets.
    monkeypatch.setenv("TEST_OPENAI_KEY", "")
    monkeypatch.delenv("TEST_OPENAI_KEY")
    monkeypatch.delenv("COPILOT_PROVIDER", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("TEST_OPENAI_KEY=o-key\n", encoding="utf-8")

    config = load_config(_write(tmp_path), env_file)

    assert config.openai.api_key == "o-key"
    assert config.assistant.provider == ProviderName.OPENAI


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.yaml", tmp_path / ".env")


@pytest.mark.parametrize(
    "value,expected",
    [
        ("gemini", ProviderName.GEMINI),
        ("Google AI", ProviderName.GEMINI),
        ("google_ai", ProviderName.GEMINI),
        ("anthropic", ProviderName.ANTHROPIC),
        ("claude", ProviderName.ANTHROPIC),
        ("openai", ProviderName.OPENAI),
        ("mistral", ProviderName.OPENAI),
        ("", ProviderName.OPENAI),
        (None, ProviderName.OPENAI),
    ],
)
def test_normalize_provider(value, expected):
    assert normalize_provider(value) == expected


def test_fallback_equal_to_primary_is_dropped():
    settings = AssistantConfig(provider="openai", fallback_provider="openai")

    assert settings.fallback_provider is None


def test_defaults():
    config = AppConfig()

    assert config.assistant.provider == ProviderName.OPENAI
    assert config.assistant.fallback_provider is None
    assert config.assistant.max_tool_iterations == 4
    assert config.assistant.dedup_window == 12
    assert config.assistant.pending_ttl_minutes == 30
    assert config.assistant.default_timezone == "Africa/Tunis"
    assert config.assistant.monthly_message_limit == 250
