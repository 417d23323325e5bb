"""SQLModel tables and engine helpers backing the local and remote stores."""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, SQLModel, create_engine

from .config import CONNECTION_TEST_COLLECTION, REMOTE_COLLECTION
from .models import DATA_VERSION, utcnow


# ---------------------------------------------------------------------------
# Local key-value table
# ---------------------------------------------------------------------------
class LocalEntry(SQLModel, table=True):
    __tablename__ = "local_entry"

    key: str = Field(primary_key=True)
    value: str
    updated_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Remote document tables
# ---------------------------------------------------------------------------
class FamilyDocument(SQLModel, table=True):
    __tablename__ = REMOTE_COLLECTION

    family_id: str = Field(primary_key=True)
    payload: str
    data_version: int = DATA_VERSION
    updated_at: datetime = Field(default_factory=utcnow)


class ConnectionProbe(SQLModel, table=True):
    __tablename__ = CONNECTION_TEST_COLLECTION

    id: str = Field(primary_key=True)
    timestamp: Optional[datetime] = None


LOCAL_TABLES = (LocalEntry.__table__,)
REMOTE_TABLES = (FamilyDocument.__table__, ConnectionProbe.__table__)


def _is_memory_sqlite(url: str) -> bool:
    return url in {"sqlite://", "sqlite:///:memory:"}


def create_local_engine(path: str | Path) -> Engine:
    return create_engine(
        f"sqlite:///{path}",
        echo=False,
        connect_args={"check_same_thread": False},
    )


def create_remote_engine(url: str) -> Engine:
    if _is_memory_sqlite(url):
        return create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, echo=False, connect_args={"check_same_thread": False})
    return create_engine(url, echo=False, pool_pre_ping=True)


def create_local_tables(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine, tables=list(LOCAL_TABLES))


def create_remote_tables(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine, tables=list(REMOTE_TABLES))


__all__ = [
    "ConnectionProbe",
    "FamilyDocument",
    "LocalEntry",
    "LOCAL_TABLES",
    "REMOTE_TABLES",
    "create_local_engine",
    "create_local_tables",
    "create_remote_engine",
    "create_remote_tables",
]
