"""Application configuration using pydantic-settings."""
from functools import lru_cache
from pathlib import Path
from urllib.parse import urlparse

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[3] / ".env"),
        case_sensitive=False,
        extra="ignore",
    )

    # OpenAI-compatible market analyst
    openai_api_key: str = ""
    openai_base_url: str | None = None
    llm_model: str = "gpt-4o"
    llm_temperature: float = 0.2
    llm_timeout_seconds: float = 20.0

    # Application
    log_level: str = "INFO"
    log_json: bool = False
    auth_enabled: bool = False
    # `token:dispatcher_id` comma-separated pairs
    dispatcher_tokens: str = ""

    # Rate optimization
    auto_negotiate_threshold: float = 0.7
    simulation_seed: int | None = None

    # Load/driver recommendation cycle
    recommendation_scheduler_enabled: bool = True
    recommendation_interval_seconds: float = 120.0
    recommendation_warmup_seconds: float = 3.0
    recommendation_min_load_score: int = 50
    recommendation_min_ai_score: int = 60
    recommendation_top_n: int = 5
    recommendation_batch_size: int = 100

    def resolved_openai_api_key(self) -> str | None:
        """
        Resolve API key for OpenAI-compatible clients.

        Local endpoints (e.g. Ollama) often do not require a real key, but the
        OpenAI SDK still expects a non-empty value.
        """
        key = (self.openai_api_key or "").strip()
        if key and key != "sk-your-key-here":
            return key
        if self._is_local_base_url():
            return "local-dev"
        return None

    def _is_local_base_url(self) -> bool:
        if not self.openai_base_url:
            return False
        try:
            host = (urlparse(self.openai_base_url).hostname or "").lower()
        except ValueError:
            return False
        return host in {"localhost", "127.0.0.1", "::1"} or host.endswith(".local")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
