from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://taskmanager:taskmanager@db:5432/taskmanager"
  app_version: str = "v2026-10-19"

  jwt_secret: str = "change_me"
  jwt_algorithm: str = "HS256"
  access_token_expire_minutes: int = 30
  bcrypt_rounds: int = 12

  bootstrap_admin_email: str = "admin@local"
  default_role_name: str = "user"

  login_max_failures_per_ip: int = 30
  login_max_failures_per_email: int = 5
  login_failure_window_seconds: int = 300
  redis_url: str | None = None

  cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

  log_level: str = "INFO"
  migrate_on_start: bool = False

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

  def is_test_db(self) -> bool:
    db_name = self.database_url.rsplit("/", 1)[-1]
    return "test" in db_name


settings = Settings()
