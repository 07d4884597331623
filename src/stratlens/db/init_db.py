from __future__ import annotations

from sqlalchemy.engine import Engine

from stratlens.db.schema import Base


def _commit_raw(conn) -> None:
    # DuckDB needs the DBAPI-level commit after DDL on a plain connection
    raw = conn.connection
    if hasattr(raw, "commit"):
        raw.commit()


def init_db(engine: Engine) -> None:
    """
    Reset the schema: drop every table, then create it again.

    DuckDB + SQLAlchemy can behave oddly with transactional DDL when dropping/creating
    tables and implicit indexes in a single managed transaction, so this runs on a
    plain connection and commits through the DBAPI connection.
    """
    conn = engine.connect()
    try:
        Base.metadata.drop_all(bind=conn)
        Base.metadata.create_all(bind=conn)
        _commit_raw(conn)
    finally:
        conn.close()


def ensure_db(engine: Engine) -> None:
    """Create missing tables without touching existing data."""
    conn = engine.connect()
    try:
        Base.metadata.create_all(bind=conn, checkfirst=True)
        _commit_raw(conn)
    finally:
        conn.close()
