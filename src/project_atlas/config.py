"""Configuration loading from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: Path.home() / ".project_atlas" / "atlas.db")
    project_index: Path | None = None
    llm_provider: str = "openai"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com/v1"
    advisor_timeout: float = 15.0
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if db := os.environ.get("ATLAS_DB_PATH"):
            config.db_path = Path(db)

        if index := os.environ.get("ATLAS_PROJECT_INDEX"):
            config.project_index = Path(index)

        if provider := os.environ.get("LLM_PROVIDER"):
            config.llm_provider = provider.lower()

        config.openai_api_key = os.environ.get("OPENAI_API_KEY")

        if model := os.environ.get("ATLAS_OPENAI_MODEL"):
            config.openai_model = model

        if base_url := os.environ.get("ATLAS_OPENAI_BASE_URL"):
            config.openai_base_url = base_url.rstrip("/")

        if timeout := os.environ.get("ATLAS_ADVISOR_TIMEOUT"):
            config.advisor_timeout = float(timeout)

        if level := os.environ.get("ATLAS_LOG_LEVEL"):
            config.log_level = level.upper()

        return config


def get_config() -> Config:
    return Config.from_env()
