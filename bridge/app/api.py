"""REST control surface and realtime WebSocket for the session bridge."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import json
import logging
import secrets
from typing import Any, AsyncIterator, Mapping, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import Settings
from .errors import AuthorizationError, BridgeError
from .fanout import SubscriberChannel
from .session_manager import SessionBridge

logger = logging.getLogger(__name__)


class SendRequest(BaseModel):
    to: Optional[str] = None
    body: Optional[str] = None


def _token_matches(expected: Optional[str], headers: Mapping[str, str], query: Mapping[str, str]) -> bool:
    if not expected:
        return True
    supplied = headers.get("x-admin-token") or query.get("token") or ""
    return secrets.compare_digest(supplied.encode(), expected.encode())


def create_app(bridge: SessionBridge, settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application around an already constructed bridge."""
    settings = settings or bridge.settings

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        try:
            await bridge.start()
            logger.info("Application started successfully")
        except Exception as e:
            logger.exception(f"Failed to start session bridge: {e}")
            logger.error("Application startup failed - running in degraded mode")
        yield
        try:
            await bridge.stop()
            logger.info("Application shutdown complete")
        except Exception as e:
            logger.exception(f"Error during shutdown: {e}")

    app = FastAPI(title="wa-session-bridge", version="0.1.0", lifespan=lifespan)
    app.state.bridge = bridge

    @app.exception_handler(BridgeError)
    async def bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
        logger.warning(f"{type(exc).__name__} in {request.url.path}: {exc}")
        return JSONResponse({"ok": False, "error": str(exc)}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Malformed request bodies are caller errors, same as missing fields."""
        logger.warning(f"Validation error in {request.url.path}: {exc}")
        return JSONResponse(
            {"ok": False, "error": "invalid request body"},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all exception handler to prevent application crashes."""
        logger.exception(f"Unhandled exception in {request.url.path}: {exc}")
        return JSONResponse(
            {"ok": False, "error": f"Internal server error: {exc}"},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=settings.allowed_origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    async def require_token(request: Request) -> None:
        if not _token_matches(settings.admin_token, request.headers, request.query_params):
            raise AuthorizationError("unauthorized")

    api = APIRouter(prefix="/api", dependencies=[Depends(require_token)])

    @api.post("/send")
    async def send_message(payload: SendRequest) -> dict[str, Any]:
        message_id = await bridge.send(payload.to, payload.body)
        return {"ok": True, "id": message_id}

    @api.get("/profile")
    async def get_profile() -> dict[str, Any]:
        return {"ok": True, "info": bridge.get_profile()}

    @api.get("/contacts")
    async def get_contacts() -> dict[str, Any]:
        contacts = await bridge.get_contacts()
        return {"ok": True, "contacts": [contact.to_wire() for contact in contacts]}

    @api.get("/chats")
    async def get_chats() -> dict[str, Any]:
        chats = await bridge.get_chats()
        return {"ok": True, "chats": [chat.to_wire() for chat in chats]}

    @api.post("/logout")
    async def logout() -> dict[str, Any]:
        await bridge.logout()
        return {"ok": True}

    app.include_router(api)

    @app.get("/healthz")
    async def healthcheck() -> JSONResponse:
        return JSONResponse({"status": "ok", "phase": bridge.phase.value})

    @app.websocket("/ws")
    async def realtime_socket(ws: WebSocket) -> None:
        if not _token_matches(settings.admin_token, ws.headers, ws.query_params):
            await ws.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        await ws.accept()
        channel = bridge.connect_subscriber()
        writer = asyncio.create_task(_pump_events(ws, channel), name="ws-writer")
        reader = asyncio.create_task(_read_requests(ws, bridge, channel), name="ws-reader")
        try:
            done, _ = await asyncio.wait({writer, reader}, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    exc = task.exception()
                    if not isinstance(exc, WebSocketDisconnect):
                        logger.error(f"Unexpected error in realtime websocket: {exc}")
        finally:
            bridge.disconnect_subscriber(channel)
            for task in (writer, reader):
                task.cancel()
            await asyncio.gather(writer, reader, return_exceptions=True)
            try:
                await ws.close()
            except Exception:
                pass

    return app


async def _pump_events(ws: WebSocket, channel: SubscriberChannel) -> None:
    while True:
        event = await channel.get()
        try:
            await ws.send_json(event.to_wire())
        except Exception as e:
            # WebSocket closed, stop pumping
            logger.debug(f"WebSocket send failed (client disconnected): {e}")
            return


async def _read_requests(ws: WebSocket, bridge: SessionBridge, channel: SubscriberChannel) -> None:
    while True:
        text = await ws.receive_text()
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON from subscriber: %s", text[:200])
            continue
        kind = message.get("type") if isinstance(message, dict) else message
        if kind == "request-data":
            bridge.schedule_snapshot_refresh(channel)
        else:
            logger.debug("Ignoring subscriber message %r", kind)


__all__ = ["create_app", "SendRequest"]
