from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from memlog.api.auth import router as auth_router
from memlog.api.logs import LOGS_PAGE
from memlog.api.logs import router as logs_router
from memlog.api.metrics import router as metrics_router
from memlog.config import get_settings
from memlog.db.session import create_schema
from memlog.observability import configure_logging
from memlog.observability.middleware import MemoryCaptureMiddleware, RequestContextMiddleware
from memlog.templating import templates


app = FastAPI(title="Request Memory Logger", version="0.1.0")
app.include_router(auth_router)
app.include_router(logs_router)
app.include_router(metrics_router)

# Last added runs outermost, so capture logs carry the request id.
app.add_middleware(MemoryCaptureMiddleware)
app.add_middleware(RequestContextMiddleware)


@app.on_event("startup")
def _startup() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    settings.log_path.parent.mkdir(parents=True, exist_ok=True)
    create_schema()


@app.get("/", include_in_schema=False)
async def index() -> RedirectResponse:
    return RedirectResponse(url=LOGS_PAGE, status_code=302)


@app.get("/login", response_class=HTMLResponse)
async def login_page(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "login.html", {})


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
