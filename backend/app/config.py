"""Smart Topics configuration — settings, model tiers, engine limits."""

from typing import Literal

from pydantic_settings import BaseSettings

ModelTier = Literal["opus", "sonnet", "haiku"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Keys
    anthropic_api_key: str = ""
    # Comma-separated "token:owner_id" pairs. Empty = dev mode (X-Owner-Id header)
    owner_tokens: str = ""

    # Database
    database_url: str = "sqlite:///data/knowledge.db"

    # CORS (comma-separated origins)
    cors_origins: str = "http://localhost:3000"

    # LLM defaults
    default_max_tokens: int = 4096
    default_max_retries: int = 2
    default_temperature: float = 0.0
    model_opus: str = "claude-opus-4-6"
    model_sonnet: str = "claude-sonnet-4-6"
    model_haiku: str = "claude-haiku-4-5-20251001"

    # Structured generation collaborator
    extraction_model_tier: ModelTier = "haiku"
    naming_model_tier: ModelTier = "sonnet"
    extraction_timeout_seconds: float = 60.0
    extraction_max_chars: int = 10_000
    naming_temperature: float = 0.3

    # Topic engine limits
    topic_list_limit: int = 80
    member_list_limit: int = 800
    event_list_limit: int = 400
    report_member_limit: int = 120
    report_representatives: int = 8
    report_snippet_chars: int = 800
    graph_rebuild_note_limit: int = 10

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()


def get_model_map() -> dict[str, str]:
    """Resolve model map from settings (env-overridable)."""
    return {
        "opus": settings.model_opus,
        "sonnet": settings.model_sonnet,
        "haiku": settings.model_haiku,
    }


MODEL_MAP: dict[str, str] = get_model_map()


def parse_owner_tokens(raw: str) -> dict[str, str]:
    """Parse "token:owner,token2:owner2" into a token → owner map."""
    tokens: dict[str, str] = {}
    for pair in raw.split(","):
        token, sep, owner = pair.strip().partition(":")
        if sep and token.strip() and owner.strip():
            tokens[token.strip()] = owner.strip()
    return tokens
