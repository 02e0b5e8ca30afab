# NG-HEADER: Nombre de archivo: env.py
# NG-HEADER: Ubicación: db/migrations/env.py
# NG-HEADER: Descripción: Script de entorno Alembic: carga .env, prepara logging y ejecuta migraciones
# NG-HEADER: Lineamientos: Ver AGENTS.md
import logging
import os
from logging.config import fileConfig
from pathlib import Path
from urllib.parse import urlsplit

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import String, engine_from_config
from sqlalchemy.pool import NullPool

logger = logging.getLogger("alembic.env")

config = context.config

# Logging (si alembic.ini tiene secciones de logging)
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Cargar .env explícitamente desde la raíz del repo (dos niveles hacia arriba)
REPO_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(REPO_ROOT / ".env")

from core.config import settings  # noqa: E402
from db.base import Base  # noqa: E402
import db.models  # noqa: F401,E402

target_metadata = Base.metadata


def _sync_url(url: str) -> str:
    """Alembic corre con engine sincrónico: se quita el driver async de SQLite."""
    return url.replace("sqlite+aiosqlite", "sqlite")


db_url = _sync_url(settings.db_url)
try:
    parts = urlsplit(db_url)
    netloc = parts.netloc
    if "@" in netloc and ":" in netloc.split("@")[0]:
        user = netloc.split("@")[0].split(":")[0]
        netloc = f"{user}:***@{netloc.split('@')[1]}"
    logger.info("DB_URL: %s", parts._replace(netloc=netloc).geturl())
except ValueError:
    logger.info("DB_URL: (formato no imprimible)")


def run_migrations_offline() -> None:
    context.configure(
        url=db_url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        version_table_column_type=String(255),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = db_url
    if os.getenv("ALEMBIC_LOG_SQL", "0") == "1":
        section["sqlalchemy.echo"] = "true"
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=NullPool, future=True)
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=connection.dialect.name == "sqlite",
            version_table_column_type=String(255),
        )
        with context.begin_transaction():
            context.run_migrations()
        logger.info("Migraciones aplicadas con éxito")


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
