"""
docflow Configuration.

Centralized configuration management using Pydantic Settings.
Loads configuration from environment variables.
"""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def get_xdg_cache_dir() -> str:
    """
    Get XDG-compliant cache directory for docflow.

    - Uses $XDG_CACHE_HOME/docflow if XDG_CACHE_HOME is set
    - Falls back to $HOME/.cache/docflow if not set
    - Returns relative path .docflow_cache if HOME not available (dev/testing)
    """
    xdg_cache_home = os.getenv("XDG_CACHE_HOME")
    if xdg_cache_home:
        return str(Path(xdg_cache_home) / "docflow")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".cache" / "docflow")

    return ".docflow_cache"


def get_xdg_state_dir() -> str:
    """
    Get XDG-compliant state directory for docflow logs.

    - Uses $XDG_STATE_HOME/docflow/logs if XDG_STATE_HOME is set
    - Falls back to $HOME/.local/state/docflow/logs if not set
    - Returns relative path ./logs if HOME not available (dev/testing)
    """
    xdg_state_home = os.getenv("XDG_STATE_HOME")
    if xdg_state_home:
        return str(Path(xdg_state_home) / "docflow" / "logs")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "state" / "docflow" / "logs")

    return "./logs"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    postgres_db: str = "docflow"
    postgres_user: str = "docflow"
    postgres_password: str = "docflow_dev_password"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    database_url_override: str = ""  # e.g. sqlite:///docflow.db for local runs

    @property
    def database_url(self) -> str:
        """Construct database URL from components."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # LLM providers
    llm_provider: str = "openai"  # openai or anthropic
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-5-20250514"
    llm_timeout_seconds: float = 120.0
    llm_max_tokens: int = 8192

    # LLM cache
    llm_cache_enabled: bool = True
    llm_cache_dir: str = f"{get_xdg_cache_dir()}/llm"

    # Pipeline
    instance_id: str = "default"
    batch_max_size: int = 30  # Messages per pipeline run
    context_window_hours: int = 24  # Earlier messages shown to the classifier
    context_max_messages: int = 100
    pipeline_max_workers: int = 4  # Concurrent LLM/RAG calls within one stage
    domain_config_path: str = ""  # JSON file; built-in defaults when empty
    pipeline_config_path: str = ""  # JSON file; built-in defaults when empty
    ruleset_path: str = ""  # Markdown ruleset; tenant_rulesets table when empty
    test_stream_id: str = "pipeline-test"  # Excluded from unfiltered runs
    prompts_dir: str = ""  # Prompt template overrides; built-in templates when empty
    docs_dir: str = ""  # Documentation tree indexed for retrieval
    embedding_model: str = "text-embedding-3-small"

    # Git hosting
    github_token: str = ""
    github_api_url: str = "https://api.github.com"
    github_timeout_seconds: float = 30.0
    project_name: str = "docflow"
    project_short_name: str = "docflow"
    project_url: str = ""

    # Scheduler
    scheduler_enabled: bool = False
    scheduler_interval_seconds: int = 3600

    # Application
    environment: str = "development"

    # Logging
    log_level: str = "INFO"
    log_dir: str = ""  # XDG-compliant log directory (defaults to XDG state dir if empty)
    log_console_enabled: bool = True
    log_file_enabled: bool = True
    log_max_bytes: int = 10_485_760  # 10MB per log file
    log_backup_count: int = 5

    # LLM Logging
    llm_logging_enabled: bool = False  # Enable detailed LLM interaction logging
    llm_log_requests: bool = True
    llm_log_responses: bool = True

    @property
    def log_directory(self) -> Path:
        """Get the log directory path, using XDG default if not specified."""
        if self.log_dir:
            return Path(self.log_dir).expanduser()
        return Path(get_xdg_state_dir())


# Global settings instance
settings = Settings()
