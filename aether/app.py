# aether/app.py
import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple

# Load .env BEFORE any aether imports (they read env vars at import time)
from dotenv import load_dotenv
load_dotenv(override=True)

from fastapi import Depends, FastAPI, Header, Path, Request, WebSocket
from fastapi.responses import JSONResponse, Response, PlainTextResponse
from starlette.concurrency import run_in_threadpool

from aether.orchestrator import SupportOrchestrator
from aether import monitoring
from aether import auth as authmod
from aether import db as dbmod
from aether.echoes import require_mood
from aether.errors import (
    AetherError, AlreadyMatchedError, UnauthorizedError,
    E_INTERNAL, E_RATE_LIMIT, E_SUSPENDED,
)
from aether.feed import Subscription
from aether.schemas import (
    CrisisChoiceBody, Identity, JournalBody, LoginBody, MessageBody,
    ProfileBody, RegisterBody, SpeakBody, SuspensionStatus,
)

app = FastAPI(title="Aether Support API")

# Initialize DB tables on startup
dbmod.init_db()

# instantiate orchestrator once
orchestrator = SupportOrchestrator()

CLIENT_ID_HEADER = "x-client-id"
WRITE_METHODS = ("POST", "PUT", "PATCH", "DELETE")
# reachable while suspended: sign-in and the suspension check itself
SUSPENSION_EXEMPT = ("/api/admin", "/api/auth", "/api/suspension")

# websocket close codes (4000 + the matching HTTP status)
WS_UNAUTHORIZED = 4401
WS_FORBIDDEN = 4403
WS_NOT_FOUND = 4404
WS_SUSPENDED = 4423


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def _client_keys(request: Request, user: Optional[Identity] = None) -> List[str]:
    """Suspension keys for a caller: its installation id, then its account."""
    keys = []
    client_id = request.headers.get(CLIENT_ID_HEADER)
    if client_id:
        keys.append(client_id)
    if user is None:
        user = orchestrator.auth.resolve(_bearer_token(request))
    if user is not None:
        keys.append(f"uid:{user.uid}")
    return keys


def _suspension_for(request: Request) -> Optional[SuspensionStatus]:
    return orchestrator.moderation.first_suspension(_client_keys(request))


def _client_id(request: Request, user: Identity) -> str:
    return request.headers.get(CLIENT_ID_HEADER) or f"uid:{user.uid}"


def _error_body(error_code: str, message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "request_id": None,
        "status": "error",
        "error_code": error_code,
        "message": message,
        "details": details or {},
    }


# ---------------------------------------------------------------------------
# Suspension gate + rate-limit middleware (runs first on /api/* paths)
# ---------------------------------------------------------------------------
@app.middleware("http")
async def suspension_and_rate_limit_middleware(request: Request, call_next):
    path = request.url.path
    if not path.startswith("/api/") or path.startswith("/api/admin"):
        return await call_next(request)

    if not path.startswith(SUSPENSION_EXEMPT):
        status = await run_in_threadpool(_suspension_for, request)
        if status is not None:
            return JSONResponse(
                status_code=403,
                content=_error_body(E_SUSPENDED, "Access suspended after a safety violation",
                                    {"suspension": status.model_dump()}),
            )

    if request.method in WRITE_METHODS:
        rate_key = (_bearer_token(request) or request.headers.get(CLIENT_ID_HEADER)
                    or (request.client.host if request.client else "anonymous"))
        allowed, _ = authmod.check_rate_limit(rate_key)
        if not allowed:
            resp = JSONResponse(status_code=429, content=_error_body(E_RATE_LIMIT, "Rate limit exceeded"))
            resp.headers["Retry-After"] = "60"
            return resp

    return await call_next(request)


# ---------------------------------------------------------------------------
# Metrics middleware
# ---------------------------------------------------------------------------
@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start = time.time()
    endpoint = request.url.path
    method = request.method
    status = "500"
    try:
        response = await call_next(request)
        status = str(response.status_code)
        return response
    except Exception:
        monitoring.logger.exception("Unhandled exception in request", extra={"path": endpoint})
        raise
    finally:
        monitoring.observe_request(start, endpoint, method, status)


@app.exception_handler(AetherError)
async def aether_error_handler(request: Request, exc: AetherError):
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    monitoring.logger.exception("Unexpected error", extra={"path": request.url.path})
    return JSONResponse(status_code=500, content=_error_body(E_INTERNAL, "Internal server error",
                                                             {"exception": str(exc)}))


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
def current_user(request: Request) -> Identity:
    user = orchestrator.auth.resolve(_bearer_token(request))
    if user is None:
        raise UnauthorizedError("Sign in required")
    return user


def require_admin(x_admin_key: Optional[str] = Header(None)):
    if not authmod.is_admin_key_allowed(x_admin_key):
        raise UnauthorizedError("Missing or invalid admin key")


def _dump(items) -> List[Dict[str, Any]]:
    return [i.model_dump(mode="json") for i in items]


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------
@app.post("/api/auth/register")
def register(body: RegisterBody):
    user, token = orchestrator.auth.create_with_credential(body.handle, body.password, body.display_name)
    return {"status": "success", "user": user.model_dump(), "token": token}


@app.post("/api/auth/login")
def login(body: LoginBody):
    user, token = orchestrator.auth.sign_in_with_credential(body.handle, body.password)
    return {"status": "success", "user": user.model_dump(), "token": token}


@app.post("/api/auth/logout")
def logout(request: Request, user: Identity = Depends(current_user)):
    orchestrator.auth.sign_out(_bearer_token(request))
    return {"status": "success"}


@app.patch("/api/auth/profile")
def update_profile(body: ProfileBody, user: Identity = Depends(current_user)):
    updated = orchestrator.auth.update_display_name(user.uid, body.display_name)
    return {"status": "success", "user": updated.model_dump()}


@app.get("/api/suspension")
def suspension_status(request: Request):
    """
    GET /api/suspension
    Startup check: expired suspensions are cleared and reported as lifted.
    """
    status = orchestrator.moderation.first_suspension(_client_keys(request))
    if status is None:
        return {"suspended": False, "expires_at": None, "remaining_ms": 0, "remaining": None}
    return status.model_dump()


# ---------------------------------------------------------------------------
# Speak / listen
# ---------------------------------------------------------------------------
@app.post("/api/speak")
async def speak(body: SpeakBody, request: Request, user: Identity = Depends(current_user)):
    """
    POST /api/speak
    Body: { "text": "..." }
    Returns success with the request id, or a blocked verdict (privacy / crisis).
    """
    monitoring.logger.info("Received /api/speak request", extra={"uid": user.uid})
    resp = await orchestrator.speak(user, _client_id(request, user), body.text)
    return JSONResponse(status_code=200, content=resp)


@app.post("/api/crisis/choice")
def crisis_choice(body: CrisisChoiceBody, user: Identity = Depends(current_user)):
    return {"status": "success", "next": orchestrator.moderation.resolve_crisis_choice(body.choice)}


@app.get("/api/requests/pending")
def pending_requests(user: Identity = Depends(current_user)):
    return {"status": "success", "requests": _dump(orchestrator.ledger.list_pending())}


@app.get("/api/requests/pending/count")
def pending_count():
    return {"status": "success", "count": orchestrator.ledger.count_pending()}


@app.get("/api/requests/accepted")
def own_accepted_requests(user: Identity = Depends(current_user)):
    return {"status": "success", "requests": _dump(orchestrator.ledger.list_accepted_for(user.uid))}


@app.post("/api/requests/{request_id}/accept")
def accept_request(request_id: str = Path(..., description="Pending request to accept"),
                   user: Identity = Depends(current_user)):
    """
    POST /api/requests/{request_id}/accept
    First acceptance wins; later ones get 409 E_ALREADY_MATCHED with the fresh pending list.
    """
    try:
        return orchestrator.accept(user, request_id)
    except AlreadyMatchedError as e:
        body = e.to_dict()
        body["details"]["pending"] = _dump(orchestrator.ledger.list_pending())
        return JSONResponse(status_code=e.http_status, content=body)


# ---------------------------------------------------------------------------
# Rooms
# ---------------------------------------------------------------------------
@app.get("/api/rooms/{room_id}/messages")
def room_messages(room_id: str, user: Identity = Depends(current_user)):
    orchestrator.chats.require_participant(room_id, user.uid)
    return {"status": "success", "messages": _dump(orchestrator.chats.messages(room_id))}


@app.post("/api/rooms/{room_id}/messages")
def post_room_message(room_id: str, body: MessageBody, request: Request,
                      user: Identity = Depends(current_user)):
    return orchestrator.send_message(user, _client_id(request, user), room_id, body.content)


@app.post("/api/rooms/{room_id}/report")
def report_participant(room_id: str, user: Identity = Depends(current_user)):
    return orchestrator.report(user, room_id)


# ---------------------------------------------------------------------------
# Journal
# ---------------------------------------------------------------------------
@app.post("/api/journal")
async def write_journal(body: JournalBody, user: Identity = Depends(current_user)):
    resp = await orchestrator.write_journal(user, body.content)
    return JSONResponse(status_code=200, content=resp)


@app.get("/api/journal")
def list_journal(user: Identity = Depends(current_user)):
    return {"status": "success", "entries": _dump(orchestrator.journal.list_for(user.uid))}


@app.get("/api/journal/insights")
def journal_insights(user: Identity = Depends(current_user)):
    return {"status": "success", **orchestrator.journal.insights(user.uid)}


# ---------------------------------------------------------------------------
# Community echoes
# ---------------------------------------------------------------------------
@app.get("/api/echoes")
def list_moods():
    return {"status": "success", "moods": _dump(orchestrator.echoes.moods())}


@app.get("/api/echoes/{mood_id}")
def list_echoes(mood_id: str):
    return {"status": "success", "echoes": _dump(orchestrator.echoes.list(mood_id))}


@app.post("/api/echoes/{mood_id}")
def post_echo(mood_id: str, body: MessageBody, request: Request, user: Identity = Depends(current_user)):
    require_mood(mood_id)
    return orchestrator.post_echo(user, _client_id(request, user), mood_id, body.content)


# ---------------------------------------------------------------------------
# Admin console
# ---------------------------------------------------------------------------
@app.get("/api/admin/overview", dependencies=[Depends(require_admin)])
def admin_overview():
    overview = orchestrator.admin.overview()
    return {"status": "success", **{name: _dump(items) for name, items in overview.items()}}


@app.get("/api/admin/rooms/{room_id}/messages", dependencies=[Depends(require_admin)])
def admin_room_messages(room_id: str):
    return {"status": "success", "messages": _dump(orchestrator.admin.room_messages(room_id))}


@app.delete("/api/admin/{collection}/{item_id}", dependencies=[Depends(require_admin)])
def admin_delete_item(collection: str, item_id: str):
    orchestrator.admin.delete_item(collection, item_id)
    return {"status": "success"}


@app.delete("/api/admin/{collection}", dependencies=[Depends(require_admin)])
def admin_wipe_collection(collection: str):
    return {"status": "success", "deleted": orchestrator.admin.wipe(collection)}


# ---------------------------------------------------------------------------
# Live feeds
# ---------------------------------------------------------------------------
async def _stream(websocket: WebSocket, subscription: Subscription):
    """Forward snapshots until either side goes away; always unsubscribes."""

    async def pump():
        async for snapshot in subscription:
            await websocket.send_json(_dump(snapshot))

    async def drain():
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return

    sender = asyncio.create_task(pump())
    receiver = asyncio.create_task(drain())
    try:
        done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                monitoring.logger.info("Live feed ended", extra={"reason": str(task.exception())})
    finally:
        subscription.unsubscribe()
        sender.cancel()
        receiver.cancel()


async def _ws_admit(websocket: WebSocket, require_user: bool = True) -> Tuple[bool, Optional[Identity]]:
    """
    Resolve ?token= and refuse suspended clients before the handshake completes.
    The client id comes from the x-client-id header or the ?client_id= parameter.
    """
    user = await run_in_threadpool(orchestrator.auth.resolve, websocket.query_params.get("token"))
    if user is None and require_user:
        await websocket.close(code=WS_UNAUTHORIZED)
        return False, None
    keys = []
    client_id = websocket.headers.get(CLIENT_ID_HEADER) or websocket.query_params.get("client_id")
    if client_id:
        keys.append(client_id)
    if user is not None:
        keys.append(f"uid:{user.uid}")
    status = await run_in_threadpool(orchestrator.moderation.first_suspension, keys)
    if status is not None:
        await websocket.close(code=WS_SUSPENDED, reason=E_SUSPENDED)
        return False, user
    return True, user


@app.websocket("/ws/requests/pending")
async def ws_pending(websocket: WebSocket):
    admitted, _ = await _ws_admit(websocket, require_user=False)
    if not admitted:
        return
    subscription = await run_in_threadpool(orchestrator.ledger.watch_pending)
    await websocket.accept()
    await _stream(websocket, subscription)


@app.websocket("/ws/requests/accepted")
async def ws_own_accepted(websocket: WebSocket):
    admitted, user = await _ws_admit(websocket)
    if not admitted:
        return
    subscription = await run_in_threadpool(orchestrator.ledger.watch_own_accepted, user.uid)
    await websocket.accept()
    await _stream(websocket, subscription)


@app.websocket("/ws/rooms/{room_id}")
async def ws_room(websocket: WebSocket, room_id: str):
    admitted, user = await _ws_admit(websocket)
    if not admitted:
        return
    try:
        await run_in_threadpool(orchestrator.chats.require_participant, room_id, user.uid)
    except AetherError:
        await websocket.close(code=WS_FORBIDDEN)
        return
    subscription = await run_in_threadpool(orchestrator.chats.watch, room_id)
    await websocket.accept()
    await _stream(websocket, subscription)


@app.websocket("/ws/echoes/{mood_id}")
async def ws_echoes(websocket: WebSocket, mood_id: str):
    admitted, _ = await _ws_admit(websocket, require_user=False)
    if not admitted:
        return
    try:
        subscription = await run_in_threadpool(orchestrator.echoes.watch, mood_id)
    except AetherError:
        await websocket.close(code=WS_NOT_FOUND)
        return
    await websocket.accept()
    await _stream(websocket, subscription)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/metrics")
async def metrics():
    if not monitoring.PROMETHEUS_ENABLED:
        return PlainTextResponse("Prometheus disabled", status_code=404)
    payload, content_type = monitoring.prometheus_metrics_response()
    return Response(content=payload, media_type=content_type)
