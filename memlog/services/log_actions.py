from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy.orm import Session

from memlog.db.models import User
from memlog.errors import NotFound, Unauthorized, WriteFailed
from memlog.models.schemas import ExportPayload
from memlog.services import nonce_service
from memlog.storage.event_log import EventLogStore

logger = structlog.get_logger("log_actions")


def export_filename(now: datetime | None = None) -> str:
    return f"debug-memory-{(now or datetime.now()).strftime('%Y%m%d_%H%M%S')}.json"


class LogActions:
    """Export and clear for the memory log, with their authorization checks."""

    def __init__(self, store: EventLogStore) -> None:
        self.store = store

    def export(self, user: User | None, *, now: datetime | None = None) -> ExportPayload:
        """Streams the raw JSON-lines content of the log, not a JSON array."""

        if user is None or not user.is_admin:
            raise Unauthorized()
        try:
            chunks = self.store.open_stream()
        except FileNotFoundError as exc:
            raise NotFound() from exc

        logger.info("memory_logs.exported", path=str(self.store.path))
        return ExportPayload(filename=export_filename(now), chunks=chunks)

    def clear(self, db: Session, user: User | None, token: str | None) -> None:
        if user is None or not user.is_admin:
            raise Unauthorized()
        if not nonce_service.consume(db, user, nonce_service.CLEAR_LOGS_ACTION, token):
            raise Unauthorized()

        if not self.store.clear():
            raise WriteFailed(f"could not truncate {self.store.path}")
        logger.info("memory_logs.cleared")

    def issue_clear_token(self, db: Session, user: User) -> str:
        return nonce_service.issue(db, user, nonce_service.CLEAR_LOGS_ACTION)
