from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "sqlite+aiosqlite:///./timekeeper.db"
  auto_create_schema: bool = True
  fernet_key: str = "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA="
  app_version: str = "v2025-07-16"
  build_sha: str = "dev"
  log_level: str = "INFO"

  user_agent: str = "Timekeeper/1.0"
  http_timeout_seconds: float = 20

  github_api_url: str = "https://api.github.com"
  github_max_pages: int = 10

  azure_devops_api_version: str = "7.0"
  azure_devops_batch_size: int = 200

  sync_max_age_minutes: int = 60
  sync_concurrency: int = 3
  sync_selection_concurrency: int = 2
  sync_timeout_seconds: float = 300
  auto_sync_enabled: bool = False
  auto_sync_interval_seconds: int = 300


settings = Settings()
