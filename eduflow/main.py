from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from starlette.responses import JSONResponse

from eduflow.auth.deps import SESSION_COOKIE, get_current_user
from eduflow.core.config import settings
from eduflow.core.rbac import is_member
from eduflow.core.redis import get_redis, group_channel
from eduflow.core.security import verify_session
from eduflow.db.session import SessionLocal

# Import models to populate SQLAlchemy metadata
import eduflow.db.models  # noqa: F401

from eduflow.db.models.user import User

from eduflow.auth.router import router as auth_router
from eduflow.modules.groups.router import router as groups_router
from eduflow.modules.classes.router import router as classes_router
from eduflow.modules.students.router import router as students_router
from eduflow.modules.forms.router import router as forms_router
from eduflow.modules.instances.router import router as instances_router
from eduflow.modules.reports.router import router as reports_router
from eduflow.modules.notifications.router import router as notifications_router
from eduflow.modules.invitations.router import router as invitations_router


logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("eduflow")

WS_POLL_SECONDS = 0.5


@asynccontextmanager
async def lifespan(app: FastAPI):
    # DB migrations are handled by scripts/migrate.py.
    logger.info("%s starting (env=%s)", settings.APP_NAME, settings.ENV)
    yield


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins(),
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
)
app.add_middleware(GZipMiddleware, minimum_size=800)


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start = time.perf_counter()
    resp = await call_next(request)
    resp.headers["X-Process-Time-ms"] = f"{(time.perf_counter() - start) * 1000:.2f}"
    return resp


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    resp = await call_next(request)
    resp.headers["X-Content-Type-Options"] = "nosniff"
    resp.headers["Referrer-Policy"] = "same-origin"
    return resp


@app.exception_handler(HTTPException)
async def http_exc_handler(request: Request, exc: HTTPException):
    resp = JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)
    if exc.status_code == 401:
        resp.headers["X-Session-Expired"] = "1"
        resp.delete_cookie(SESSION_COOKIE)
    return resp


@app.exception_handler(RequestValidationError)
async def validation_exc_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=422, content={"detail": "입력값이 올바르지 않습니다.", "errors": jsonable_encoder(exc.errors())})


@app.exception_handler(Exception)
async def unhandled_exc_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


app.include_router(auth_router)
app.include_router(groups_router)
app.include_router(classes_router)
app.include_router(students_router)
app.include_router(forms_router)
app.include_router(instances_router)
app.include_router(reports_router)
app.include_router(notifications_router)
app.include_router(invitations_router)


@app.get("/health", response_class=JSONResponse)
def health():
    return {"status": "ok", "app": settings.APP_NAME}


@app.get("/health/auth", response_class=JSONResponse)
def health_auth(user=Depends(get_current_user)):
    return {"status": "ok", "authenticated": True, "user_id": user.id}


def _ws_user_allowed(token: str | None, group_id: int) -> bool:
    payload = verify_session(token) if token else None
    user_id = payload.get("user_id") if payload else None
    if not user_id:
        return False
    db = SessionLocal()
    try:
        user = db.get(User, user_id)
        return bool(user and user.is_active and is_member(db, group_id, user))
    finally:
        db.close()


@app.websocket("/ws/groups/{group_id}")
async def ws_group(websocket: WebSocket, group_id: int):
    """Relay `group:<id>` change events; clients refetch on each message."""
    await websocket.accept()
    if not _ws_user_allowed(websocket.cookies.get(SESSION_COOKIE), group_id):
        await websocket.send_json({"type": "error", "reason": "unauthorized"})
        await websocket.close(code=4401)
        return

    r = get_redis()
    if r is None:
        await websocket.send_json({"type": "error", "reason": "realtime_unavailable"})
        await websocket.close(code=1011)
        return

    pubsub = r.pubsub(ignore_subscribe_messages=True)
    pubsub.subscribe(group_channel(group_id))
    await websocket.send_json({"type": "ready", "group_id": group_id})
    try:
        while True:
            message = pubsub.get_message(timeout=0)
            if message and message.get("type") == "message":
                await websocket.send_text(message["data"])
                continue
            await asyncio.sleep(WS_POLL_SECONDS)
    except WebSocketDisconnect:
        return
    except Exception:
        logger.exception("Group websocket error (group=%s)", group_id)
        try:
            await websocket.close(code=1011)
        except RuntimeError:
            pass
    finally:
        pubsub.close()
