import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from loguru import logger


def _default_sqlite_params() -> dict[str, Any]:
    return {"journal_mode": "WAL", "synchronous": "NORMAL"}


@dataclass
class Config:
    host: str = "127.0.0.1"
    port: int = 7788
    sqlite_dir: Path = Path("./db")
    sqlite_db_name: str = "restlite.db"
    sqlite_params: dict[str, Any] = field(default_factory=_default_sqlite_params)
    migrations_dir: Optional[Path] = None
    transactional_migrations: bool = True
    stop_on_migration_failure: bool = False
    rest_prefix: str = "/rest/v1"
    default_limit: int = 100
    max_limit: int = 1000
    strict_single: bool = True
    verbose: bool = False

    def __post_init__(self):
        self.sqlite_dir = Path(self.sqlite_dir)
        if self.migrations_dir is not None:
            self.migrations_dir = Path(self.migrations_dir)

        if not self.rest_prefix.startswith("/"):
            raise ValueError(f"'rest_prefix' must start with '/': {self.rest_prefix}")
        self.rest_prefix = self.rest_prefix.rstrip("/")

        if self.default_limit <= 0:
            raise ValueError("'default_limit' must be positive")
        if self.max_limit < self.default_limit:
            raise ValueError("'max_limit' must not be smaller than 'default_limit'")
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}")

    @property
    def db_path(self) -> Path:
        return self.sqlite_dir / self.sqlite_db_name

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        field_names = {f.name for f in dataclasses.fields(cls)}
        unknown = set(data) - field_names
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {sorted(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in field_names})

    @classmethod
    def from_file(cls, path: str | Path) -> "Config":
        path = Path(path)
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")

        # Relative directories are resolved against the config file
        for key in ("sqlite_dir", "migrations_dir"):
            if data.get(key) is not None and not Path(data[key]).is_absolute():
                data[key] = path.parent / data[key]

        return cls.from_dict(data)
