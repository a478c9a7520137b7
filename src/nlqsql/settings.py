from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    model: str = "gpt-4o-mini"
    temperature: float = 0.0
    openai_api_key: str | None = None
    openai_base_url: str | None = "https://api.openai.com/v1"
    llm_request_timeout_seconds: float = 60.0

    cors_origins: str = "*"

    db_sqlite_path: Path = Path("data/nlqsql.db")
    db_read_only: bool = True
    query_timeout_seconds: float = 30.0

    history_target_count: int = 4
    retry_error_chars: int = 50

    # Directory holding RelevantSchema.txt, NLQtoSQL.txt and RetryPrompt.txt.
    # Packaged templates are used when unset.
    prompts_dir: Path | None = None

    summarize_history_system_prompt: str = (
        "You condense conversations between a user and a database assistant. "
        "Summarize the conversation below in a few sentences, keeping the "
        "questions asked, the tables and columns involved, filters applied "
        "and any figures reported in the answers. Return plain text only."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="allow",
    )


def get_settings() -> Settings:
    """Return the application settings singleton (loaded from env / .env)."""
    global _SETTINGS
    try:
        return _SETTINGS
    except NameError:
        _SETTINGS = Settings()
        return _SETTINGS
