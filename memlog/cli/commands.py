from __future__ import annotations

from pathlib import Path
from typing import TextIO

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from memlog.db.models import User
from memlog.db.session import create_schema, get_engine
from memlog.errors import NotFound
from memlog.services.log_actions import export_filename
from memlog.services.report import classify
from memlog.storage.event_log import EventLogStore


def show_logs(store: EventLogStore, out: TextIO, *, limit: int | None = None) -> int:
    records = store.read_all()
    start = 0 if limit is None else max(len(records) - limit, 0)

    out.write(f"Total Entries: {len(records)}\n")
    for index in range(start, len(records)):
        record = records[index]
        flag = {"high": "!!", "medium": "! "}.get(classify(record.memory_percent), "  ")
        out.write(
            f"{flag} {index:>5}  {record.timestamp}  {record.memory_percent:>7.2f}%  "
            f"{record.peak_memory_mb:>9.2f} MB  {record.user}  {record.uri}  plugins={len(record.active_plugins)}\n"
        )
    return len(records)


def export_logs(store: EventLogStore, out_dir: str | Path) -> Path:
    """Copy the raw log into ``out_dir`` under a timestamped export name."""

    if not store.exists():
        raise NotFound()
    destination = Path(out_dir) / export_filename()
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_bytes(store.read_bytes())
    return destination


def promote_user(email: str, *, admin: bool = True) -> bool:
    create_schema()
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    with SessionLocal() as db:
        user = db.execute(select(User).where(User.email == email.strip().lower())).scalar_one_or_none()
        if user is None:
            return False
        user.is_admin = admin
        db.add(user)
        db.commit()
    return True
