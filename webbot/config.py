"""Application configuration using pydantic-settings."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "WebBot"
    environment: str = "development"
    log_level: str = "info"
    debug: bool = False
    port: int = 8787

    # Google AI
    google_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    agent_temperature: float = 0.2

    # Agent loop
    agent_max_steps: int = 200
    workspace_root: Path = Path.cwd()

    # USD per million tokens, used to price the usage frame
    prompt_token_price: float = 0.0
    completion_token_price: float = 0.0

    # Streaming
    stream_chunk_size: int = 24

    # CORS
    frontend_url: str = "http://localhost:5173"

    # Client
    api_url: str = "http://localhost:8787/api/chat/stream"
    health_url: str = "http://localhost:8787/api/health"
    health_timeout: float = 5.0
    health_interval: float = 30.0
    max_context_messages: int = 50
    min_request_interval: float = 1.0
    store_path: Path = Path.home() / ".webbot" / "state.json"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


settings = Settings()


def get_settings() -> Settings:
    """FastAPI dependency for injecting settings."""
    return settings
