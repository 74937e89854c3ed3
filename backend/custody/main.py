from fastapi import FastAPI, WebSocket, Response, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
import logging
import time
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from . import config, models, pubsub, rbac
from .auth import decode_access_token
from .database import SessionLocal
from .errors import CustodyError
from .metrics import REQUEST_COUNT, REQUEST_LATENCY
from .ratelimit import limiter
from .routes import (
    auth,
    users,
    children,
    guardians,
    classrooms,
    custody,
    authorizations,
    notifications,
    audit,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

if config.SENTRY_DSN:
    sentry_sdk.init(dsn=config.SENTRY_DSN, integrations=[FastApiIntegration()])

app = FastAPI(title="Child Custody API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, lambda r, e: Response("Too Many Requests", status_code=429))
if not config.is_testing():
    app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(CustodyError)
async def custody_error_handler(request: Request, exc: CustodyError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    route = request.scope.get("route")
    # templated path keeps label cardinality bounded
    endpoint = getattr(route, "path", request.url.path)
    REQUEST_COUNT.labels(request.method, endpoint).inc()
    REQUEST_LATENCY.labels(endpoint).observe(time.time() - start)
    return response

@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(children.router)
app.include_router(guardians.router)
app.include_router(classrooms.router)
app.include_router(custody.router)
app.include_router(authorizations.router)
app.include_router(notifications.router)
app.include_router(audit.router)


def _depends_on(dependant, target) -> bool:
    for dep in dependant.dependencies:
        if dep.call is target or _depends_on(dep, target):
            return True
    return False


def audit_routes():
    from fastapi.routing import APIRoute
    from .auth import get_current_user

    public_paths = {
        "/api/auth/login",
        "/api/auth/register",
        "/metrics",
    }
    for route in app.routes:
        if isinstance(route, APIRoute) and route.path.startswith("/api") and route.path not in public_paths:
            if not _depends_on(route.dependant, get_current_user):
                raise RuntimeError(f"Route {route.path} missing authentication")


audit_routes()


def _websocket_user(token: str | None):
    payload = decode_access_token(token) if token else None
    if payload is None:
        return None
    db = SessionLocal()
    try:
        user = db.query(models.User).filter(models.User.email == payload.get("sub")).first()
        if user is None or not user.is_active or not rbac.has_role(user, rbac.STAFF_ROLES):
            return None
        return user.id
    finally:
        db.close()


@app.websocket("/ws/classrooms/{classroom}")
async def classroom_events(websocket: WebSocket, classroom: str, token: str | None = None):
    if _websocket_user(token) is None:
        await websocket.close(code=1008)
        return
    await websocket.accept()
    async for data in pubsub.iter_classroom_events(classroom):
        await websocket.send_text(data)
