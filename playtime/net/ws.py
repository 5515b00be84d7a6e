"""WebSocket link to the game host: presence in, rewards out."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from aiohttp import WSMsgType, web

from playtime.net import protocol
from playtime.net.rate_limit import PresenceQuota, presence_cost

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    conn_id: str
    ws: web.WebSocketResponse
    created_at: float

    host_version: str | None
    presence_quota: PresenceQuota
    players: set[str] = field(default_factory=set)


class HostHub:
    """Accepts host connections and acts as Notifier + CommandRunner."""

    def __init__(self, svc):
        self.svc = svc
        self._conns: dict[str, Connection] = {}
        self._pending: set[asyncio.Task] = set()

    @property
    def connection_count(self) -> int:
        return len(self._conns)

    def _origin_allowed(self, origin: str | None) -> bool:
        cfg = self.svc.config
        if cfg.cors_allow_all:
            return True
        if not origin:
            return False
        return origin in cfg.cors_allowed_origins

    async def handle(self, request: web.Request) -> web.StreamResponse:
        if not self._origin_allowed(request.headers.get("Origin")):
            raise web.HTTPForbidden(text="origin not allowed")

        ws = web.WebSocketResponse(heartbeat=10.0, max_msg_size=1_000_000)
        await ws.prepare(request)

        cfg = self.svc.config
        conn = Connection(
            conn_id=uuid.uuid4().hex,
            ws=ws,
            created_at=time.time(),
            host_version=None,
            presence_quota=PresenceQuota(rate_per_sec=cfg.presence_rate_per_sec, burst=cfg.presence_burst),
        )
        self._conns[conn.conn_id] = conn
        logger.info("host connected: %s", conn.conn_id)

        await ws.send_str(protocol.dumps("info", {"server": self.svc.version_payload()}))

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self._on_text(conn, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    break
        finally:
            await self._disconnect(conn)
        return ws

    async def _on_text(self, conn: Connection, text: str) -> None:
        try:
            msg_type, data = protocol.loads(text)
            if msg_type not in protocol.VALID_C2S:
                raise protocol.ProtocolError("invalid type")
            if msg_type in protocol.PRESENCE and not conn.presence_quota.take(presence_cost(msg_type, data)):
                raise protocol.ProtocolError("rate limited")
            await self._dispatch(conn, msg_type, data)
        except protocol.ProtocolError as e:
            await conn.ws.send_str(protocol.dumps("error", {"message": str(e)}))

    async def _dispatch(self, conn: Connection, msg_type: str, data: dict[str, Any]) -> None:
        if msg_type == "hello":
            h = protocol.Hello.parse(data)
            conn.host_version = h.hostVersion
            await conn.ws.send_str(protocol.dumps("version", {"ok": True, **self.svc.version_payload()}))
            return

        if msg_type == "join":
            j = protocol.Join.parse(data)
            self._claim(conn, j.playerId)
            self.svc.on_join(j.playerId, j.name)
            await conn.ws.send_str(protocol.dumps("welcome", {"playerId": j.playerId, "name": j.name}))
            return

        if msg_type == "leave":
            lv = protocol.Leave.parse(data)
            conn.players.discard(lv.playerId)
            duration_ms = self.svc.on_leave(lv.playerId)
            await conn.ws.send_str(protocol.dumps("bye", {"playerId": lv.playerId, "durationMs": duration_ms}))
            return

        if msg_type == "roster":
            r = protocol.Roster.parse(data)
            seeded = []
            for j in r.players:
                self._claim(conn, j.playerId)
                if self.svc.discover(j.playerId, j.name):
                    seeded.append(j.playerId)
            await conn.ws.send_str(protocol.dumps("roster", {"seeded": seeded, "active": len(self.svc.roster)}))
            return

        if msg_type == "ping":
            p = protocol.Ping.parse(data)
            await conn.ws.send_str(protocol.dumps("pong", {"t": p.t, "serverTime": time.time()}))
            return

    def _claim(self, conn: Connection, player_id: str) -> None:
        # A player belongs to the last host that announced it.
        for other in self._conns.values():
            if other is not conn:
                other.players.discard(player_id)
        conn.players.add(player_id)

    async def _disconnect(self, conn: Connection) -> None:
        # Idempotent.
        if conn.conn_id not in self._conns:
            return
        self._conns.pop(conn.conn_id, None)
        for player_id in list(conn.players):
            self.svc.on_leave(player_id)
        conn.players.clear()
        logger.info("host disconnected: %s", conn.conn_id)
        try:
            await conn.ws.close()
        except Exception:
            pass

    async def close_all(self) -> None:
        for c in list(self._conns.values()):
            await self._disconnect(c)
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    # Notifier / CommandRunner.

    def send(self, actor_id: str, text: str) -> None:
        targets = [c for c in self._conns.values() if actor_id in c.players] or list(self._conns.values())
        self._post(targets, protocol.dumps("notify", {"playerId": actor_id, "text": text}))

    def run(self, command: str) -> None:
        self._post(list(self._conns.values()), protocol.dumps("command", {"command": command}))

    def _post(self, targets: list[Connection], payload: str) -> None:
        if not targets:
            logger.warning("no host connected, dropping %s", payload)
            return
        for conn in targets:
            task = asyncio.get_running_loop().create_task(conn.ws.send_str(payload))
            self._pending.add(task)
            task.add_done_callback(self._sent)

    def _sent(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("host delivery failed: %s", task.exception())
