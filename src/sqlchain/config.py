import os
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import quote_plus

import structlog
from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .engine.exceptions import ConfigurationError
from .engine.runner.catalog import read_document
from .utils import SQLCHAIN_HOME, resolve_path

logger = structlog.get_logger(__name__)

SETTINGS_FILENAMES = ("appsettings.json", "appsettings.yaml", "appsettings.yml")
CONNECTION_ENV_VAR = "SQLCHAIN_CONNECTION_STRING"
DEFAULT_CONNECTION_NAME = "DefaultConnection"
DEFAULT_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"

# ADO.NET-style keys -> ODBC keys understood by the SQL Server ODBC driver.
_ODBC_KEY_MAP = {
    "server": "Server",
    "data source": "Server",
    "address": "Server",
    "addr": "Server",
    "database": "Database",
    "initial catalog": "Database",
    "user id": "UID",
    "uid": "UID",
    "user": "UID",
    "password": "PWD",
    "pwd": "PWD",
    "trustservercertificate": "TrustServerCertificate",
    "encrypt": "Encrypt",
    "driver": "Driver",
}


class AppSettings(BaseModel):
    """The application settings file (appsettings.json or .yaml)."""

    model_config = ConfigDict(populate_by_name=True)

    connection_strings: Dict[str, str] = Field(
        default_factory=dict, alias="ConnectionStrings"
    )
    commands_file: str = Field("commands.json", alias="CommandsFile")


def to_sqlalchemy_url(connection_string: str) -> str:
    """
    Accepts either a SQLAlchemy URL (returned unchanged) or a SQL Server
    style `Key=Value;...` connection string, which is wrapped into an
    `mssql+aioodbc` URL through `odbc_connect`.
    """
    connection_string = connection_string.strip()
    if "://" in connection_string:
        return connection_string

    parts: Dict[str, str] = {}
    for pair in connection_string.split(";"):
        if not pair.strip() or "=" not in pair:
            continue
        key, value = pair.split("=", 1)
        normalized = key.strip().lower()
        if normalized == "integrated security" and value.strip().lower() in (
            "true",
            "sspi",
            "yes",
        ):
            parts["Trusted_Connection"] = "yes"
            continue
        parts[_ODBC_KEY_MAP.get(normalized, key.strip())] = value.strip()

    if "Server" not in parts:
        raise ConfigurationError(
            "Connection string is neither a SQLAlchemy URL nor a 'Server=...;' connection string."
        )
    parts.setdefault("Driver", DEFAULT_ODBC_DRIVER)
    parts.setdefault("TrustServerCertificate", "yes")

    odbc = ";".join(
        f"{k}={{{v}}}" if k == "Driver" and not v.startswith("{") else f"{k}={v}"
        for k, v in parts.items()
    )
    return f"mssql+aioodbc:///?odbc_connect={quote_plus(odbc)}"


class SettingsResolver:
    """
    Locates application settings and resolves the database connection string
    and command catalog path, relative to a home directory.
    """

    def __init__(self, home_path: Optional[Path] = None):
        self.home = Path(home_path or SQLCHAIN_HOME)
        logger.debug("SettingsResolver initialized.", home=str(self.home))

    def load_settings(self) -> AppSettings:
        for filename in SETTINGS_FILENAMES:
            path = self.home / filename
            if path.is_file():
                try:
                    settings = AppSettings.model_validate(read_document(path) or {})
                except ValidationError as e:
                    raise ConfigurationError(f"Invalid schema in '{filename}': {e}") from e
                logger.info("settings.loaded", path=str(path))
                return settings
        logger.debug("settings.not_found", home=str(self.home))
        return AppSettings()

    def resolve_connection_string(
        self,
        override: Optional[str] = None,
        name: str = DEFAULT_CONNECTION_NAME,
    ) -> str:
        """
        Resolves the connection string in priority order: explicit override,
        environment variable, `.env` file in the home directory, then the
        named entry under `ConnectionStrings` in the settings file.

        Raises:
            ConfigurationError: If no source provides a connection string.
        """
        if override:
            logger.debug("connection.resolved", source="override")
            return to_sqlalchemy_url(override)

        from_env = os.getenv(CONNECTION_ENV_VAR)
        if from_env:
            logger.debug("connection.resolved", source="environment")
            return to_sqlalchemy_url(from_env)

        dotenv_file = self.home / ".env"
        if dotenv_file.is_file():
            from_dotenv = dotenv_values(dotenv_path=dotenv_file).get(CONNECTION_ENV_VAR)
            if from_dotenv:
                logger.debug("connection.resolved", source=".env")
                return to_sqlalchemy_url(from_dotenv)

        settings = self.load_settings()
        from_settings = settings.connection_strings.get(name)
        if from_settings:
            logger.debug("connection.resolved", source="appsettings", name=name)
            return to_sqlalchemy_url(from_settings)

        raise ConfigurationError(
            f"Connection string '{name}' not found. Set {CONNECTION_ENV_VAR}, add it to "
            f"{dotenv_file}, or define ConnectionStrings.{name} in appsettings.json."
        )

    def resolve_commands_path(self, override: Optional[str] = None) -> Path:
        if override:
            return resolve_path(override, self.home)
        return resolve_path(self.load_settings().commands_file, self.home)
