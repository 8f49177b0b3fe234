"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from billing_copilot.core.types import ProviderName

DEFAULT_SYSTEM_PROMPT = " ".join(
    [
        "Tu es Assistant AI, copilote spécialisé en facturation, CRM et messagerie.",
        "Tu aides exclusivement pour les modules de l'application (clients, produits, devis, factures, paiements, messagerie, tableau de bord, paramètres, site web).",
        "Utilise systématiquement les outils de recherche pour identifier précisément les entités avant d'agir.",
        "Ne devine jamais un identifiant, un montant ou une adresse : si une information manque, pose une question de clarification.",
        "Demande une confirmation explicite avant toute action qui modifie des données ou envoie un e-mail.",
        "Rédige des réponses structurées en français, en Markdown simple (listes avec « - »), sans LaTeX ni blocs de code.",
        "Quand une demande implique plusieurs actions (nouveau client + produit + devis/facture), enchaîne-les dans l'ordre, reprends automatiquement après chaque confirmation et termine en confirmant le résultat final.",
    ]
)

_GEMINI_ALIASES = frozenset({"gemini", "google", "googleai", "google-ai", "google_ai"})


def normalize_provider(value: str | None) -> ProviderName:
    """Map free-form provider names onto a known provider; unknown values mean OpenAI."""
    normalized = (value or "").strip().lower()
    if not normalized:
        return ProviderName.OPENAI
    compact = re.sub(r"[\s_-]+", "", normalized)
    if normalized in _GEMINI_ALIASES or compact in _GEMINI_ALIASES:
        return ProviderName.GEMINI
    if normalized in ("anthropic", "claude"):
        return ProviderName.ANTHROPIC
    return ProviderName.OPENAI


class OpenAIConfig(BaseModel):
    api_key: str = ""
    model: str = "gpt-4o-mini"
    base_url: Optional[str] = None
    temperature: float = 0.2
    max_retries: int = 0


class GeminiConfig(BaseModel):
    api_key: str = ""
    model: str = "gemini-2.5-flash"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    temperature: float = 0.2


class AnthropicConfig(BaseModel):
    api_key: str = ""
    model: str = "claude-sonnet-4-20250514"
    base_url: Optional[str] = None
    max_tokens: int = 4096
    temperature: float = 0.2
    max_retries: int = 0


class AssistantConfig(BaseModel):
    provider: ProviderName = ProviderName.OPENAI
    fallback_provider: Optional[ProviderName] = None
    max_tool_iterations: int = Field(default=4, ge=1)
    monthly_message_limit: int = Field(default=250, ge=0)
    dedup_window: int = Field(default=12, ge=1)
    pending_ttl_minutes: int = Field(default=30, ge=1)
    provider_timeout_seconds: float = Field(default=60.0, gt=0)
    default_timezone: str = "Africa/Tunis"
    default_currency: str = "TND"
    currency_rates: dict[str, float] = Field(default_factory=dict)
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    @field_validator("provider", mode="before")
    @classmethod
    def _coerce_provider(cls, value: object) -> ProviderName:
        return normalize_provider(value if isinstance(value, str) else None)

    @field_validator("fallback_provider", mode="before")
    @classmethod
    def _coerce_fallback(cls, value: object) -> ProviderName | None:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return normalize_provider(value if isinstance(value, str) else None)

    @model_validator(mode="after")
    def _default_fallback(self) -> AssistantConfig:
        if self.fallback_provider is None and self.provider == ProviderName.GEMINI:
            self.fallback_provider = ProviderName.OPENAI
        if self.fallback_provider == self.provider:
            self.fallback_provider = None
        return self


class StorageConfig(BaseModel):
    db_path: str = "./data/billing_copilot.db"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    data_dir: str = "./data"
    user_id: str = "local-user"
    assistant: AssistantConfig = Field(default_factory=AssistantConfig)
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    anthropic: AnthropicConfig = Field(default_factory=AnthropicConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    def provider_configured(self, provider: ProviderName) -> bool:
        """A provider counts as configured once it has an API key."""
        match provider:
            case ProviderName.OPENAI:
                return bool(self.openai.api_key.strip())
            case ProviderName.GEMINI:
                return bool(self.gemini.api_key.strip())
            case ProviderName.ANTHROPIC:
                return bool(self.anthropic.api_key.strip())
        return False


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def _strip_unresolved(data: object) -> object:
    """Turn values that still hold an unresolved ${VAR} into empty strings."""
    if isinstance(data, dict):
        return {key: _strip_unresolved(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_strip_unresolved(value) for value in data]
    if isinstance(data, str) and _ENV_VAR_PATTERN.fullmatch(data.strip()):
        return ""
    return data


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**_strip_unresolved(data))
