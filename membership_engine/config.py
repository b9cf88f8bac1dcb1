"""Operator configuration using pydantic-settings.

Each target environment has its own env file (``.env.local`` for dev,
``.env.production`` for production). Values from the selected file win
over process environment variables so an exported ``DATABASE_URL`` can
never silently redirect a run to the wrong database.
"""

from pathlib import Path

from dotenv import dotenv_values
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from membership_engine.errors import ConfigurationError

DEV_ENV_FILE = ".env.local"
PRODUCTION_ENV_FILE = ".env.production"


class Settings(BaseSettings):
    """Settings for one target environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = "development"  # development, production

    # Database (PostgreSQL)
    database_url: str | None = None
    sql_echo: bool = False

    # Batch runs
    batch_size: int = 50
    sample_size: int = 20

    log_level: str = "INFO"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # env file first: the file selected by --production/--dev is authoritative
        return init_settings, dotenv_settings, env_settings, file_secret_settings

    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses an async driver."""
        url = self.database_url or ""
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url


def env_file_for(production: bool, env_dir: Path | str = ".") -> Path:
    """Return the env file path for the requested environment."""
    name = PRODUCTION_ENV_FILE if production else DEV_ENV_FILE
    return Path(env_dir).resolve() / name


def load_settings(env_file: Path, environment: str) -> Settings:
    """Load settings from ``env_file``, failing if the file or URL is missing."""
    if not env_file.is_file():
        raise ConfigurationError(f"{env_file.name} not found at {env_file}")

    if not _read_database_url(env_file):
        raise ConfigurationError(f"DATABASE_URL not found in {env_file.name}")
    return Settings(_env_file=env_file, environment=environment)


def connection_target(database_url: str) -> tuple[str | None, int | None, str | None, str | None]:
    """Reduce a database URL to the parts that identify a server/database.

    Driver and password are ignored, so ``postgresql://`` and
    ``postgresql+asyncpg://`` URLs for the same database compare equal.
    """
    try:
        url = make_url(database_url)
    except ArgumentError as exc:
        raise ConfigurationError(f"Invalid DATABASE_URL: {exc}") from exc
    host = url.host.lower() if url.host else None
    return host, url.port, url.database, url.username


def _read_database_url(env_file: Path) -> str | None:
    """Read DATABASE_URL from a single env file, ignoring process variables."""
    for key, value in dotenv_values(env_file).items():
        if key.upper() == "DATABASE_URL" and value:
            return value
    return None


def resolve_target_settings(production: bool, env_dir: Path | str = ".") -> Settings:
    """Load settings for the selected environment and guard against mix-ups.

    The other environment's file is read too (when it exists) and the run is
    refused if both point at the same database.
    """
    selected_file = env_file_for(production, env_dir)
    other_file = env_file_for(not production, env_dir)

    settings = load_settings(selected_file, "production" if production else "development")

    if other_file.is_file():
        other_url = _read_database_url(other_file)
        if other_url and connection_target(other_url) == connection_target(settings.database_url):
            raise ConfigurationError(
                f"{DEV_ENV_FILE} and {PRODUCTION_ENV_FILE} resolve to the same database; "
                "refusing to run"
            )

    return settings
