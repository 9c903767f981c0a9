from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from taskmanager.config import settings

engine = create_async_engine(settings.database_url, echo=False)

SessionLocal = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


if engine.dialect.name == "sqlite":

  @event.listens_for(engine.sync_engine, "connect")
  def _sqlite_foreign_keys(dbapi_connection, _record) -> None:
    # SQLite ships with FK enforcement off.
    cur = dbapi_connection.cursor()
    cur.execute("PRAGMA foreign_keys=ON")
    cur.close()
