from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# BACKUP_KEEP_MAX values below this are raised to it.
BACKUP_KEEP_MAX_FLOOR = 10


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Mentoring Portal"
    environment: str = Field(default="development")  # development | production

    database_path: Path = Field(default=Path("data/db.sqlite"))

    # Snapshots. An unset backup_dir means "<dir of database_path>/backups".
    backup_dir: Path | None = Field(default=None)
    backup_keep_max: int = Field(default=200)
    backup_interval_minutes: float = Field(default=30, gt=0)
    backup_list_limit: int = Field(default=200, ge=1)
    backup_upload_max_bytes: int = Field(default=50 * 1024 * 1024)
    backup_signal_handlers: bool = Field(default=True)

    cors_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["http://localhost:5173"],
        validation_alias="CORS_ORIGINS",
    )

    jwt_secret: str = Field(default="dev-secret-change-me")
    jwt_algorithm: str = Field(default="HS256")
    jwt_expires_minutes: int = Field(default=60 * 24 * 7)  # 7 days
    jwt_cookie_name: str = Field(default="portal_session")

    # Seeded only when the users table is empty.
    bootstrap_admin_username: str = Field(default="admin")
    bootstrap_admin_password: str = Field(default="admin1234")

    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)

    @field_validator("database_path", mode="after")
    @classmethod
    def _absolute_database_path(cls, v: Path) -> Path:
        return v.expanduser().resolve()

    @field_validator("backup_dir", mode="after")
    @classmethod
    def _absolute_backup_dir(cls, v: Path | None) -> Path | None:
        if v is None:
            return v
        return v.expanduser().resolve()

    @field_validator("backup_keep_max", mode="after")
    @classmethod
    def _enforce_keep_max_floor(cls, v: int) -> int:
        return max(BACKUP_KEEP_MAX_FLOOR, v)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):  # noqa: ANN001
        """
        Accept: string, comma-separated, or JSON list.
        """
        if v is None:
            return v
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return []
            if s.startswith("["):
                try:
                    parsed = json.loads(s)
                except ValueError:
                    parsed = None
                if isinstance(parsed, list):
                    return [str(x).strip() for x in parsed if str(x).strip()]
            return [p.strip() for p in s.split(",") if p.strip()]
        if isinstance(v, (list, tuple, set)):
            return [str(x).strip() for x in v if str(x).strip()]
        return v

    @property
    def resolved_backup_dir(self) -> Path:
        return self.backup_dir or self.database_path.parent / "backups"

    @property
    def backup_interval_seconds(self) -> float:
        return self.backup_interval_minutes * 60


settings = Settings()
