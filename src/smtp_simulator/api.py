"""FastAPI application factory and HTTP schemas for the simulator.

This module exposes a :class:`~smtp_simulator.core.SimulatorCore` over HTTP:

- Pydantic models defining request/response schemas
- A factory function to create and configure the FastAPI application
- Authentication via API token in the X-API-Token header
- Endpoints to run sessions, toggle the recipient, inspect the queue, read
  the log, download the report and scrape Prometheus metrics

Example:
    Creating and running the API application::

        from smtp_simulator.core import SimulatorCore
        from smtp_simulator.api import create_app

        core = SimulatorCore()
        app = create_app(core, api_token="secret-token")

        # Run with uvicorn
        uvicorn.run(app, host="127.0.0.1", port=8000)
"""

from typing import Optional, Dict, Any, List, Callable, AsyncContextManager
import logging

from fastapi import FastAPI, HTTPException, APIRouter, Depends, status, Request
from fastapi.responses import Response, JSONResponse, PlainTextResponse
from fastapi.security import APIKeyHeader
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field, ConfigDict

from .core import SimulatorCore
from .report import report_filename

logger = logging.getLogger(__name__)

app = FastAPI(title="SMTP Session Simulator")
service: SimulatorCore | None = None
API_TOKEN_HEADER_NAME = "X-API-Token"
api_key_scheme = APIKeyHeader(name=API_TOKEN_HEADER_NAME, auto_error=False)
app.state.api_token = None


async def require_token(api_token: str | None = Depends(api_key_scheme)) -> None:
    """Validate the API token carried in the ``X-API-Token`` header.

    If a token has been configured through :func:`create_app` and a request
    provides either a missing or different value, a ``401`` error is raised.
    When no token is configured the dependency is effectively bypassed.
    """
    expected = getattr(app.state, "api_token", None)
    if expected is None:
        return
    if not api_token or api_token != expected:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid or missing API token")

auth_dependency = Depends(require_token)


class CommandStatus(BaseModel):
    """Base schema shared by most responses produced by the service."""
    ok: bool
    error: Optional[str] = None


class BasicOkResponse(CommandStatus):
    pass


class SendPayload(BaseModel):
    """Message accepted by ``/commands/send``. Omitted fields take the defaults."""
    model_config = ConfigDict(extra="forbid")
    sender: Optional[str] = None
    recipient: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    attachment: Optional[str] = None
    server_delay: Optional[float] = Field(default=None, ge=0)
    network_delay: Optional[float] = Field(default=None, ge=0)
    packet_loss: Optional[float] = Field(default=None, ge=0, le=100)
    wait: bool = True


class StatsInfo(BaseModel):
    total_packets: int
    lost_packets: int
    retransmissions: int


class SendResponse(CommandStatus):
    """Outcome of a session, or acknowledgement when ``wait`` is false."""
    scheduled: Optional[bool] = None
    status: Optional[str] = None
    progress: Optional[float] = None
    label: Optional[str] = None
    commands: Optional[List[str]] = None
    stats: Optional[StatsInfo] = None
    message_id: Optional[str] = None


class RecipientPayload(BaseModel):
    available: bool


class RecipientResponse(CommandStatus):
    available: bool
    flushing: bool = False


class StatusResponse(CommandStatus):
    running: bool
    recipient_available: bool
    queue_length: int
    step: int
    progress: float
    label: str
    stats: StatsInfo
    last_result: Optional[Dict[str, Any]] = None


class QueuedMessageInfo(BaseModel):
    id: str
    queued_at: float
    sender: str
    recipient: str
    subject: str


class QueueResponse(CommandStatus):
    messages: List[QueuedMessageInfo]


class LogEntryInfo(BaseModel):
    timestamp: str
    message: str
    category: str


class LogResponse(CommandStatus):
    entries: List[LogEntryInfo]


def create_app(
    svc: SimulatorCore,
    api_token: str | None = None,
    lifespan: Callable[[FastAPI], AsyncContextManager] | None = None
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    svc:
        Instance of :class:`smtp_simulator.core.SimulatorCore` that
        implements each command.
    api_token:
        Optional secret used to protect every endpoint. When provided, the
        ``X-API-Token`` header must match this value on every request.
    lifespan:
        Optional lifespan context manager for startup/shutdown events.

    Returns
    -------
    FastAPI
        A configured application ready to be served by Uvicorn.
    """
    global service
    service = svc

    if lifespan is not None:
        api = FastAPI(title="SMTP Session Simulator", lifespan=lifespan)
    else:
        api = app

    api.state.api_token = api_token
    app.state.api_token = api_token
    router = APIRouter(prefix="/commands", tags=["commands"], dependencies=[auth_dependency])

    @api.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Log validation errors with full details."""
        logger.error(f"Validation error on {request.method} {request.url.path}: {exc.errors()}")
        return JSONResponse(
            status_code=422,
            content={"detail": exc.errors()}
        )

    @api.get("/health")
    async def health():
        """Health check endpoint (no authentication required)."""
        return {"status": "ok"}

    @api.get("/status", response_model=StatusResponse, response_model_exclude_none=True, dependencies=[auth_dependency])
    async def get_status():
        """Return recipient availability, queue length and last session counters."""
        if not service:
            raise HTTPException(500, "Service not initialized")
        result = await service.handle_command("status", {})
        return StatusResponse.model_validate(result)

    @router.post("/send", response_model=SendResponse, response_model_exclude_none=True)
    async def send(payload: SendPayload = SendPayload()):
        """Run one protocol session with the given message."""
        if not service:
            raise HTTPException(500, "Service not initialized")
        result = await service.handle_command("send", payload.model_dump(exclude_none=True))
        if not result.get("ok"):
            raise HTTPException(status_code=400, detail=result.get("error"))
        return SendResponse.model_validate(result)

    @router.post("/toggle-recipient", response_model=RecipientResponse, response_model_exclude_none=True)
    async def toggle_recipient():
        """Flip recipient availability; going online flushes the queue in the background."""
        if not service:
            raise HTTPException(500, "Service not initialized")
        result = await service.handle_command("toggleRecipient", {})
        return RecipientResponse.model_validate(result)

    @router.post("/set-recipient", response_model=RecipientResponse, response_model_exclude_none=True)
    async def set_recipient(payload: RecipientPayload):
        """Force recipient availability."""
        if not service:
            raise HTTPException(500, "Service not initialized")
        result = await service.handle_command("setRecipient", payload.model_dump())
        return RecipientResponse.model_validate(result)

    @api.get("/queue", response_model=QueueResponse, response_model_exclude_none=True, dependencies=[auth_dependency])
    async def list_queue():
        """List messages waiting for the recipient, oldest first."""
        if not service:
            raise HTTPException(500, "Service not initialized")
        result = await service.handle_command("listQueue", {})
        return QueueResponse.model_validate(result)

    @api.get("/log", response_model=LogResponse, response_model_exclude_none=True, dependencies=[auth_dependency])
    async def get_log():
        """Return the recorded log of the current simulation."""
        if not service:
            raise HTTPException(500, "Service not initialized")
        result = await service.handle_command("log", {})
        return LogResponse.model_validate(result)

    @api.get("/report", dependencies=[auth_dependency])
    async def get_report():
        """Download the plain-text transmission report."""
        if not service:
            raise HTTPException(500, "Service not initialized")
        result = await service.handle_command("report", {})
        return PlainTextResponse(
            result["report"],
            headers={"Content-Disposition": f'attachment; filename="{report_filename()}"'},
        )

    @api.get("/metrics", dependencies=[auth_dependency])
    async def metrics():
        """Expose Prometheus metrics collected by the simulator."""
        if not service:
            raise HTTPException(500, "Service not initialized")
        return Response(content=service.metrics.generate_latest(), media_type="text/plain; version=0.0.4")

    api.include_router(router)
    return api
