import sys
import importlib
import logging
from pathlib import Path
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

# --- project root on path ---
here = Path(__file__).resolve().parent
repo_root = here.parent.parent.parent  # src/db/migrations -> repo root
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

# import settings and Base
try:
    from src.app.config import settings
    from src.db.base import Base
except Exception:
    logging.exception("Failed to import src.app.config or src.db.base. Check PYTHONPATH.")
    raise

# import model modules explicitly so Base.metadata is fully populated
model_modules = [
    "src.models.gallery",
    "src.models.photo",
    "src.models.photo_analysis",
    "src.models.person_cluster",
    "src.models.person_face",
]

for mod in model_modules:
    try:
        importlib.import_module(mod)
    except Exception:
        logging.exception("Failed to import model module '%s'.", mod)
        raise

# Alembic config
config = context.config

# override DB URL from settings
config.set_main_option("sqlalchemy.url", settings.DATABASE_URL)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            compare_server_default=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
