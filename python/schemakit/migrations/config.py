"""Configuration parsing (schemakit.ini)."""

from __future__ import annotations

import configparser
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from schemakit.dialects import Dialect

CONFIG_FILENAME = "schemakit.ini"
SECTION = "schemakit"
URL_ENV_VAR = "SCHEMAKIT_DATABASE_URL"


@dataclass
class SchemaKitConfig:
    """Parse and represent schemakit.ini configuration.

    Example schemakit.ini:
        [schemakit]
        sqlalchemy.url = postgresql+asyncpg://localhost/mydb
        dialect = postgresql
        schema_module = app.schema
        log_level = INFO
    """

    sqlalchemy_url: str | None = None
    """Async database URL (can be overridden)."""

    dialect: Dialect | None = None
    """Target dialect; inferred from the connection when unset."""

    schema_module: str | None = None
    """Python module holding the TableFragment definitions."""

    db_schema: str | None = None
    """Database schema/catalog to inspect (default schema when unset)."""

    log_level: str = "INFO"
    """Logging level used by the CLI."""

    extra: dict[str, Any] = field(default_factory=dict)
    """Additional configuration options."""

    _config_path: Path | None = None
    """Path to the config file (internal)."""

    @classmethod
    def from_ini(cls, path: Path | str) -> SchemaKitConfig:
        """Load configuration from a schemakit.ini file.

        Args:
            path: Path to schemakit.ini

        Returns:
            Parsed SchemaKitConfig

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If the section is missing or a value is invalid
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        config = configparser.ConfigParser()
        config.read(path)

        if SECTION not in config:
            raise ValueError(f"No [{SECTION}] section in {path}")

        section = config[SECTION]

        dialect = section.get("dialect")
        log_level = section.get("log_level", "INFO").upper()
        if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log_level {log_level!r} in {path}")

        known_keys = {"sqlalchemy.url", "dialect", "schema_module", "db_schema", "log_level"}
        extra = {k: v for k, v in section.items() if k not in known_keys}

        return cls(
            sqlalchemy_url=section.get("sqlalchemy.url"),
            dialect=Dialect.parse(dialect) if dialect else None,
            schema_module=section.get("schema_module"),
            db_schema=section.get("db_schema"),
            log_level=log_level,
            extra=extra,
            _config_path=path,
        )

    @classmethod
    def auto_detect(cls, start_path: Path | str | None = None) -> SchemaKitConfig | None:
        """Auto-detect schemakit.ini by searching up from start_path.

        Args:
            start_path: Directory to start searching from (default: cwd)

        Returns:
            SchemaKitConfig if found, None otherwise
        """
        start_path = Path.cwd() if start_path is None else Path(start_path)

        current = start_path
        while current != current.parent:
            ini_path = current / CONFIG_FILENAME
            if ini_path.exists():
                return cls.from_ini(ini_path)
            current = current.parent

        return None

    def get_url(self, override: str | None = None) -> str:
        """Get database URL.

        Precedence: ``override``, then the ``SCHEMAKIT_DATABASE_URL``
        environment variable, then the configured value.

        Raises:
            ValueError: If no URL available
        """
        url = override or os.environ.get(URL_ENV_VAR) or self.sqlalchemy_url
        if not url:
            raise ValueError("No database URL configured")
        return url


def create_default_config(directory: Path, url: str | None = None) -> Path:
    """Create a default schemakit.ini.

    Args:
        directory: Directory to write the file into
        url: Optional database URL

    Returns:
        Path to the created schemakit.ini

    Raises:
        FileExistsError: If the directory already has a schemakit.ini
    """
    ini_path = directory / CONFIG_FILENAME
    if ini_path.exists():
        raise FileExistsError(f"Config file already exists: {ini_path}")

    directory.mkdir(parents=True, exist_ok=True)

    url_line = f"sqlalchemy.url = {url}" if url else "# sqlalchemy.url = sqlite+aiosqlite:///app.db"
    ini_content = f"""# SchemaKit configuration

[{SECTION}]
{url_line}

# Target dialect: postgresql, mysql, sqlite or mssql (inferred from the URL if unset)
# dialect =

# Module holding TableFragment definitions, e.g. app.schema
# schema_module =

# Database schema to inspect (default schema if unset)
# db_schema =

log_level = INFO
"""
    ini_path.write_text(ini_content)
    return ini_path
