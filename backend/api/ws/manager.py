"""
WebSocket connection manager for live match views.

Each connection drives its own PollController: the client subscribes to one
match at a time and receives a fresh snapshot every poll tick, at the cadence
the match's lifecycle calls for. Subscribing to another match switches the
view; results still in flight for the old match are discarded.
"""
from __future__ import annotations

import asyncio
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from shared.models.domain import LiveSnapshot, WSClientMessage, WSEnvelope
from shared.models.enums import PollState, WSClientOp, WSServerMsgType
from shared.utils.logging import get_logger
from shared.utils.metrics import WS_CONNECTIONS

from api.container import ServiceContainer
from resolver.scope import RequestScope
from resolver.service import MatchRequest
from scheduler.controller import PollController, PollSession

logger = get_logger(__name__)


@dataclass
class WSConnection:
    """Represents a single WebSocket client connection."""

    ws: WebSocket
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    created_at: float = field(default_factory=time.monotonic)
    remote_addr: str = ""
    controller: Optional[PollController[MatchRequest, LiveSnapshot]] = None

    @property
    def alive_seconds(self) -> float:
        return time.monotonic() - self.created_at


class WebSocketManager:
    """Tracks live connections for this API instance and their poll controllers."""

    def __init__(self, container: ServiceContainer) -> None:
        self._container = container
        self._connections: dict[str, WSConnection] = {}
        self._shutdown = asyncio.Event()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def stop(self) -> None:
        """Stop every controller and close every connection."""
        self._shutdown.set()
        for conn in list(self._connections.values()):
            await self._close_connection(conn, code=1001, reason="server_shutdown")
        logger.info("ws_manager_stopped")

    async def handle_connection(self, ws: WebSocket) -> None:
        """
        Handle a WebSocket connection lifecycle.

        Accepts the connection, processes messages, and cleans up on disconnect.
        """
        await ws.accept()

        conn = WSConnection(
            ws=ws,
            remote_addr=f"{ws.client.host}:{ws.client.port}" if ws.client else "unknown",
        )
        conn.controller = self._make_controller(conn)
        self._connections[conn.connection_id] = conn
        WS_CONNECTIONS.inc()
        logger.info("ws_connected", connection_id=conn.connection_id, remote_addr=conn.remote_addr)

        heartbeat = self._container.settings.ws_heartbeat_interval_s
        try:
            while not self._shutdown.is_set():
                try:
                    raw = await asyncio.wait_for(ws.receive_text(), timeout=heartbeat)
                except asyncio.TimeoutError:
                    continue
                await self._handle_message(conn, raw)
        except WebSocketDisconnect:
            pass
        finally:
            await self._cleanup_connection(conn)

    def _make_controller(self, conn: WSConnection) -> PollController[MatchRequest, LiveSnapshot]:
        async def tick(view: MatchRequest) -> Optional[LiveSnapshot]:
            return await self._container.live.build(view, RequestScope())

        async def on_result(session: PollSession[MatchRequest], snapshot: Optional[LiveSnapshot]) -> None:
            if snapshot is None:
                await self._send(conn, WSServerMsgType.NOT_FOUND, session.generation, {"match": session.view.describe()})
                return
            await self._send(conn, WSServerMsgType.SNAPSHOT, session.generation, snapshot.model_dump(mode="json"))

        async def on_error(session: PollSession[MatchRequest], exc: Exception) -> None:
            await self._send(
                conn,
                WSServerMsgType.ERROR,
                session.generation,
                {"code": "tick_failed", "message": "Live data temporarily unavailable"},
            )

        async def on_stopped(session: PollSession[MatchRequest], reason: str) -> None:
            await self._send(conn, WSServerMsgType.STOPPED, session.generation, {"reason": reason})

        return PollController(
            tick_fn=tick,
            on_result=on_result,
            engine=self._container.polling,
            on_error=on_error,
            on_stopped=on_stopped,
        )

    async def _handle_message(self, conn: WSConnection, raw: str) -> None:
        """Parse and dispatch a client message."""
        try:
            msg = WSClientMessage.model_validate(json.loads(raw))
        except json.JSONDecodeError:
            await self._send_error(conn, "invalid_json", "Message must be valid JSON")
            return
        except ValidationError:
            await self._send_error(conn, "invalid_message", "Message must include a known 'op'")
            return

        if msg.op == WSClientOp.SUBSCRIBE:
            await self._handle_subscribe(conn, msg)
        elif msg.op == WSClientOp.UNSUBSCRIBE:
            await self._handle_unsubscribe(conn)
        elif msg.op == WSClientOp.PING:
            await self._send(conn, WSServerMsgType.PONG, self._generation(conn))

    async def _handle_subscribe(self, conn: WSConnection, msg: WSClientMessage) -> None:
        """
        Expected message, either form:

            {"op": "subscribe", "cms_id": "..."}
            {"op": "subscribe", "league_id": "...", "match_id": "..."}
        """
        if msg.cms_id:
            view = MatchRequest.for_cms(msg.cms_id)
        elif msg.league_id and msg.match_id:
            view = MatchRequest.for_pair(msg.league_id, msg.match_id)
        else:
            await self._send_error(conn, "missing_match", "subscribe requires cms_id or league_id and match_id")
            return

        controller = conn.controller
        assert controller is not None
        if controller.state == PollState.POLLING:
            controller.switch(view)
        else:
            controller.start(view)
        logger.info("ws_subscribed", connection_id=conn.connection_id, match=view.describe())

    async def _handle_unsubscribe(self, conn: WSConnection) -> None:
        controller = conn.controller
        assert controller is not None
        await controller.stop()
        await self._send(conn, WSServerMsgType.STOPPED, controller.generation, {"reason": "unsubscribed"})

    @staticmethod
    def _generation(conn: WSConnection) -> int:
        return conn.controller.generation if conn.controller is not None else 0

    async def _send(self, conn: WSConnection, msg_type: WSServerMsgType, generation: int, data: Any = None) -> None:
        """Send a server envelope to a WebSocket connection."""
        envelope = WSEnvelope(type=msg_type, generation=generation, data=data)
        try:
            if conn.ws.client_state == WebSocketState.CONNECTED:
                await conn.ws.send_text(envelope.model_dump_json())
        except (RuntimeError, WebSocketDisconnect) as exc:
            logger.debug("ws_send_error", connection_id=conn.connection_id, error=str(exc))

    async def _send_error(self, conn: WSConnection, code: str, message: str) -> None:
        await self._send(conn, WSServerMsgType.ERROR, self._generation(conn), {"code": code, "message": message})

    async def _close_connection(self, conn: WSConnection, code: int = 1000, reason: str = "") -> None:
        try:
            if conn.ws.client_state == WebSocketState.CONNECTED:
                await conn.ws.close(code=code, reason=reason)
        except RuntimeError as exc:
            logger.debug("ws_close_error", connection_id=conn.connection_id, error=str(exc))
        await self._cleanup_connection(conn)

    async def _cleanup_connection(self, conn: WSConnection) -> None:
        """Stop the connection's controller and forget it."""
        if self._connections.pop(conn.connection_id, None) is None:
            return
        WS_CONNECTIONS.dec()
        if conn.controller is not None:
            await conn.controller.stop()
        logger.info(
            "ws_disconnected",
            connection_id=conn.connection_id,
            alive_seconds=round(conn.alive_seconds, 1),
        )
