"""Tests for schemakit.ini configuration."""

from __future__ import annotations

from pathlib import Path
from textwrap import dedent

import pytest

from schemakit import Dialect, UnsupportedDialectError
from schemakit.migrations.config import URL_ENV_VAR, SchemaKitConfig, create_default_config


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write a complete schemakit.ini."""
    ini_content = dedent("""
        [schemakit]
        sqlalchemy.url = postgresql+asyncpg://localhost/consent
        dialect = postgres
        schema_module = app.schema
        db_schema = public
        log_level = debug
        plugins = audit
    """).strip()
    path = tmp_path / "schemakit.ini"
    path.write_text(ini_content)
    return path


class TestSchemaKitConfig:
    """Test loading configuration."""

    def test_from_ini(self, config_file: Path) -> None:
        config = SchemaKitConfig.from_ini(config_file)
        assert config.sqlalchemy_url == "postgresql+asyncpg://localhost/consent"
        assert config.dialect is Dialect.POSTGRESQL
        assert config.schema_module == "app.schema"
        assert config.db_schema == "public"
        assert config.log_level == "DEBUG"
        assert config.extra == {"plugins": "audit"}

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            SchemaKitConfig.from_ini(tmp_path / "nope.ini")

    def test_missing_section(self, tmp_path: Path) -> None:
        path = tmp_path / "schemakit.ini"
        path.write_text("[alembic]\nscript_location = alembic\n")
        with pytest.raises(ValueError, match=r"\[schemakit\]"):
            SchemaKitConfig.from_ini(path)

    def test_invalid_log_level(self, tmp_path: Path) -> None:
        path = tmp_path / "schemakit.ini"
        path.write_text("[schemakit]\nlog_level = LOUD\n")
        with pytest.raises(ValueError, match="LOUD"):
            SchemaKitConfig.from_ini(path)

    def test_unsupported_dialect(self, tmp_path: Path) -> None:
        path = tmp_path / "schemakit.ini"
        path.write_text("[schemakit]\ndialect = oracle\n")
        with pytest.raises(UnsupportedDialectError):
            SchemaKitConfig.from_ini(path)

    def test_auto_detect(self, config_file: Path, tmp_path: Path) -> None:
        nested = tmp_path / "app" / "schema"
        nested.mkdir(parents=True)
        config = SchemaKitConfig.auto_detect(nested)
        assert config is not None
        assert config.schema_module == "app.schema"

    def test_url_precedence(self, config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config = SchemaKitConfig.from_ini(config_file)
        monkeypatch.delenv(URL_ENV_VAR, raising=False)
        assert config.get_url() == "postgresql+asyncpg://localhost/consent"

        monkeypatch.setenv(URL_ENV_VAR, "sqlite+aiosqlite:///env.db")
        assert config.get_url() == "sqlite+aiosqlite:///env.db"
        assert config.get_url("sqlite+aiosqlite:///cli.db") == "sqlite+aiosqlite:///cli.db"

    def test_no_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(URL_ENV_VAR, raising=False)
        with pytest.raises(ValueError, match="No database URL"):
            SchemaKitConfig().get_url()


class TestCreateDefaultConfig:
    """Test writing a starter schemakit.ini."""

    def test_creates_loadable_file(self, tmp_path: Path) -> None:
        path = create_default_config(tmp_path, "sqlite+aiosqlite:///app.db")
        config = SchemaKitConfig.from_ini(path)
        assert config.sqlalchemy_url == "sqlite+aiosqlite:///app.db"
        assert config.dialect is None
        assert config.log_level == "INFO"

    def test_without_url(self, tmp_path: Path) -> None:
        config = SchemaKitConfig.from_ini(create_default_config(tmp_path))
        assert config.sqlalchemy_url is None

    def test_refuses_to_overwrite(self, config_file: Path, tmp_path: Path) -> None:
        with pytest.raises(FileExistsError):
            create_default_config(tmp_path)
        assert "consent" in config_file.read_text()
