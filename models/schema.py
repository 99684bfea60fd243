"""
Table creation and default config seeding.

Safe to call from every process on every start: create_all skips existing
tables and the config defaults are inserted with ON CONFLICT DO NOTHING, so a
worker that starts before the API (or alongside ten other workers) is fine.

Takes a Connection so the async API can run it through `conn.run_sync(init_db)`.
"""

from sqlalchemy.engine import Connection

from config.runtime import default_entries, upsert_statement
from models.base import Base

# Imported for their side effect of registering tables on Base.metadata
from models import config_entry, job, worker  # noqa: F401


def init_db(conn: Connection) -> None:
    Base.metadata.create_all(conn)
    for key, value in default_entries().items():
        conn.execute(upsert_statement(conn.dialect.name, key, value, overwrite=False))
