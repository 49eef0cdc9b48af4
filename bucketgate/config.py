import logging
import os
from dataclasses import dataclass

DEFAULT_DATABASE_URL = "sqlite:///./bucketgate.db"


def _env(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip()


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    jwt_secret: str = ""
    admin_group: str = ""
    default_region: str = "us-east-1"
    log_level: str = "INFO"
    jwt_algorithms: tuple = ("HS256",)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=_env("DATABASE_URL", DEFAULT_DATABASE_URL),
            jwt_secret=_env("JWT_SECRET"),
            admin_group=_env("ADMIN_GROUP"),
            default_region=_env("DEFAULT_REGION", "us-east-1"),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
