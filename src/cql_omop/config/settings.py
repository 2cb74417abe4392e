import os
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

# src/cql_omop/config/settings.py -> project root
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent


class Settings(BaseSettings):
    # LLM Configuration
    llm_provider: str = "openai"

    # OpenAI
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4-turbo"

    # Azure OpenAI
    azure_openai_api_key: Optional[str] = None
    azure_openai_endpoint: Optional[str] = None
    azure_openai_model: str = "gpt-4"
    azure_openai_api_version: str = "2024-02-15-preview"

    # Anthropic
    anthropic_api_key: Optional[str] = None
    anthropic_model: str = "claude-3-opus-20240229"

    # VSAC Configuration
    vsac_username: Optional[str] = None
    vsac_password: Optional[str] = None
    vsac_base_url: str = "https://vsac.nlm.nih.gov/vsac/svs/"
    vsac_timeout: float = 30.0
    vsac_batch_concurrency: int = 3

    # Database Configuration
    database_user: str = "postgres"
    database_endpoint: str = "localhost"
    database_name: str = "omop"
    database_password: Optional[str] = None
    database_port: int = 5432
    omop_database_schema: str = "cdm"

    # Server Configuration
    log_level: str = "INFO"
    config_path: str = "config.yaml"

    # Find .env relative to project root, not current working directory
    model_config = SettingsConfigDict(
        env_file=os.path.join(PROJECT_ROOT, ".env"),
        case_sensitive=False,
        extra="ignore"
    )

    def get_env_file_status(self) -> dict:
        """Get information about the .env file location and status."""
        env_file_path = self.model_config["env_file"]
        return {
            "env_file_path": env_file_path,
            "env_file_exists": os.path.exists(env_file_path),
            "current_working_directory": os.getcwd(),
            "project_root": str(PROJECT_ROOT)
        }


# Create settings instance
settings = Settings()
