"""Storage for registered overlay maps."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Iterator

from sqlmodel import Session, SQLModel, create_engine

from .models import OverlayMap

DATA_DIR = Path(__file__).resolve().parent / "data"
DATABASE_URL_ENV = "OVERLAY_DATABASE_URL"


def _database_url() -> str:
    """Return the configured database URL, defaulting to a sqlite file in ``DATA_DIR``."""

    override = os.getenv(DATABASE_URL_ENV, "").strip()
    if override:
        return override
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{DATA_DIR / 'overlay_maps.db'}"


def _connect_args(url: str) -> Dict[str, Any]:
    # FastAPI serves sync endpoints from a thread pool.
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


DATABASE_URL = _database_url()
engine = create_engine(DATABASE_URL, connect_args=_connect_args(DATABASE_URL))


def init_db() -> None:
    SQLModel.metadata.create_all(engine, tables=[OverlayMap.__table__])


def get_session() -> Iterator[Session]:
    """Request-scoped session for overlay map lookups."""

    with Session(engine) as session:
        yield session
