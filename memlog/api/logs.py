from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse, StreamingResponse
from sqlalchemy.orm import Session

from memlog.db.models import User
from memlog.db.session import get_db
from memlog.errors import NotFound, Unauthorized, WriteFailed
from memlog.services.auth_dependencies import require_admin
from memlog.services.log_actions import LogActions
from memlog.services.report import render
from memlog.storage.event_log import EventLogStore, get_event_log
from memlog.templating import templates

router = APIRouter(tags=["memory-logs"])

LOGS_PAGE = "/tools/memory-logs"


def get_log_actions(store: EventLogStore = Depends(get_event_log)) -> LogActions:
    return LogActions(store)


@router.get(LOGS_PAGE, response_class=HTMLResponse)
def logs_page(
    request: Request,
    logs_cleared: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    actions: LogActions = Depends(get_log_actions),
) -> HTMLResponse:
    report = render(actions.store.read_all())
    return templates.TemplateResponse(
        request,
        "logs.html",
        {
            "report": report,
            "clear_token": actions.issue_clear_token(db, user),
            "logs_cleared": logs_cleared,
            "user_email": user.email,
        },
    )


@router.get(f"{LOGS_PAGE}/export")
def export_logs(
    user: User = Depends(require_admin),
    actions: LogActions = Depends(get_log_actions),
) -> StreamingResponse:
    try:
        payload = actions.export(user)
    except Unauthorized as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return StreamingResponse(
        payload.chunks,
        media_type=payload.media_type,
        headers={"Content-Disposition": f'attachment; filename="{payload.filename}"'},
    )


@router.get(f"{LOGS_PAGE}/clear")
def clear_logs(
    token: str | None = Query(default=None, alias="_token"),
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    actions: LogActions = Depends(get_log_actions),
) -> RedirectResponse:
    try:
        actions.clear(db, user, token)
    except Unauthorized as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except WriteFailed as exc:
        raise HTTPException(status_code=500, detail="Could not clear logs") from exc

    return RedirectResponse(url=f"{LOGS_PAGE}?logs_cleared=1", status_code=303)


@router.get("/api/memory-logs")
def logs_json(
    user: User = Depends(require_admin),
    actions: LogActions = Depends(get_log_actions),
) -> dict[str, Any]:
    _ = user  # admin gate
    report = render(actions.store.read_all())
    return {
        "total": report.total,
        "rows": [asdict(row) for row in report.rows],
        "details": report.details,
    }
