"""HTTP + WebSocket entrypoint for session time tracking.

The game host connects over `/ws` and reports presence; everything else is
read-only queries over HTTP.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Callable

from aiohttp import web

from playtime.net.ws import HostHub
from playtime.session.clock import MonotonicClock
from playtime.session.config import ConfigError, ConfigSource, ServerConfig
from playtime.session.durations import Breakdown
from playtime.session.leaderboard import LeaderboardCache
from playtime.session.milestones import Grant, MilestoneTracker, Rewarder
from playtime.session.ports import Clock, CommandRunner, Notifier
from playtime.session.registry import SessionRegistry
from playtime.session.ticker import Ticker
from playtime.storage.memory import MemoryRoster

logger = logging.getLogger(__name__)


def apply_log_level(debug: bool) -> None:
    logging.getLogger("playtime").setLevel(logging.DEBUG if debug else logging.INFO)


class SessionService:
    def __init__(
        self,
        source: ConfigSource,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
        runner: CommandRunner | None = None,
    ):
        self.source = source
        try:
            self.config = source.load()
        except ConfigError as e:
            logger.warning("%s. Using defaults.", e)
            self.config = ServerConfig.from_env(source.env)
        self.server_id = str(uuid.uuid4())
        self.start_time = time.time()

        self.clock = clock or MonotonicClock()
        self.roster = MemoryRoster()
        self.registry = SessionRegistry()
        self.leaderboard = LeaderboardCache(self.registry, self.roster, ttl_ms=self.config.cache_ttl_ms)

        self.hub = HostHub(self)
        self.rewarder = Rewarder(
            self.roster,
            notifier or self.hub,
            runner or self.hub,
            dispatch=self._dispatch,
        )
        self.tracker = MilestoneTracker(self.registry, self.roster, reward=self.rewarder, milestones=self.config.milestones)

        self._loop: asyncio.AbstractEventLoop | None = None
        self._ticker: Ticker | None = None

    @property
    def scan_running(self) -> bool:
        return self._ticker is not None and self._ticker.running

    def now(self) -> int:
        return self.clock.now()

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        apply_log_level(self.config.debug)
        self._schedule_scan()

    async def stop(self) -> None:
        if self._ticker:
            await self._ticker.stop()
            self._ticker = None
        await self.hub.close_all()
        self.tracker.clear()
        self.registry.clear()
        self.roster.clear()

    def _dispatch(self, fn: Callable[[], None]) -> None:
        # Reward effects run on the loop's queue, never inline with a scan.
        if self._loop is None or self._loop.is_closed():
            fn()
            return
        self._loop.call_soon_threadsafe(fn)

    def _schedule_scan(self) -> None:
        if not self.config.scan_scheduled:
            logger.info("milestone checks not scheduled (enabled=%s, milestones=%s)",
                        self.config.milestones_enabled, len(self.config.milestones))
            return
        self._ticker = Ticker(self.config.check_interval_sec, self.scan, name="milestone-check")
        self._ticker.start()

    # Presence.

    def on_join(self, player_id: str, name: str) -> None:
        self.roster.add(player_id, name)
        self.registry.start(player_id, self.now())

    def on_leave(self, player_id: str) -> int:
        self.roster.remove(player_id)
        return self.registry.end(player_id, self.now())

    def discover(self, player_id: str, name: str) -> bool:
        """Seed a player that was already online before we started tracking."""
        if not self.roster.contains(player_id):
            self.roster.add(player_id, name)
        return self.registry.discover(player_id, self.now())

    def scan(self) -> list[Grant]:
        grants = self.tracker.scan(self.now())
        if grants:
            logger.info("granted %s milestone(s)", len(grants))
        return grants

    def reload(self) -> bool:
        try:
            cfg = self.source.load(strict=True)
        except ConfigError as e:
            logger.warning("reload failed, keeping current config: %s", e)
            return False

        if self._ticker:
            self._ticker.cancel()
            self._ticker = None

        self.config = cfg
        apply_log_level(cfg.debug)
        self.leaderboard.set_ttl(cfg.cache_ttl_ms)
        self.tracker.load(cfg.milestones)
        if self._loop is not None:
            self._schedule_scan()
        logger.info("Loaded %s milestones", len(cfg.milestones))
        return True

    # Queries.

    def session_info(self, player_id: str, fmt: str | None = None) -> dict[str, Any]:
        now = self.now()
        b = self.registry.breakdown(player_id, now)
        return {
            "playerId": player_id,
            "name": self.roster.name_of(player_id),
            "active": self.registry.has_active(player_id),
            "durationMs": b.total_ms,
            "totalSeconds": b.total_seconds,
            "totalMinutes": b.total_minutes,
            "totalHours": b.total_hours,
            "days": b.days,
            "hours": b.hours,
            "minutes": b.minutes,
            "seconds": b.seconds,
            "formatted": b.render(self.config.time_format(fmt)),
            "rank": self.leaderboard.rank(player_id, now),
            "milestones": sorted(self.tracker.achieved(player_id)),
        }

    def leaderboard_payload(self, limit: int) -> list[dict[str, Any]]:
        now = self.now()
        fmt = self.config.time_format()
        rows = self.leaderboard.top(limit, now)
        for row in rows:
            row["formatted"] = self.registry.formatted(row["playerId"], now, fmt)
        return rows

    def position_payload(self, position: int) -> dict[str, Any]:
        now = self.now()
        duration_ms = self.leaderboard.duration_at(position, now)
        name = self.leaderboard.name_at(position, now)
        return {
            "position": position,
            "name": name,
            "durationMs": duration_ms,
            "formatted": Breakdown.of(duration_ms).render(self.config.time_format()) if name else "",
        }

    def version_payload(self) -> dict[str, Any]:
        return {
            "serverId": self.server_id,
            "serverVersion": self.config.server_version,
            "protocolVersion": self.config.protocol_version,
        }


def _cors_headers(config: ServerConfig, origin: str | None) -> dict[str, str]:
    if not origin:
        return {}
    if config.cors_allow_all:
        return {"Access-Control-Allow-Origin": origin, "Vary": "Origin"}
    if origin in config.cors_allowed_origins:
        return {"Access-Control-Allow-Origin": origin, "Vary": "Origin"}
    return {}


@web.middleware
async def cors_middleware(request: web.Request, handler):
    config = request.app["svc"].config
    if request.method == "OPTIONS":
        headers = {
            **_cors_headers(config, request.headers.get("Origin")),
            "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
            "Access-Control-Max-Age": "86400",
        }
        return web.Response(status=204, headers=headers)

    resp = await handler(request)

    # aiohttp finalizes WS headers during `prepare()`.
    if isinstance(resp, web.WebSocketResponse):
        return resp

    for k, v in _cors_headers(config, request.headers.get("Origin")).items():
        resp.headers[k] = v
    return resp


def _int_arg(raw: str | None, default: int) -> int:
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise web.HTTPBadRequest(text=f"not an integer: {raw}")


def create_app(source: ConfigSource | None = None, clock: Clock | None = None) -> web.Application:
    svc = SessionService(source or ConfigSource(), clock=clock)
    app = web.Application(middlewares=[cors_middleware])
    app["svc"] = svc

    async def on_startup(_: web.Application):
        await svc.start()

    async def on_cleanup(_: web.Application):
        await svc.stop()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    async def health(_: web.Request):
        return web.json_response(
            {
                "ok": True,
                "uptimeSec": time.time() - svc.start_time,
                "hosts": svc.hub.connection_count,
                "players": len(svc.registry),
                "milestoneChecks": svc.scan_running,
                **svc.version_payload(),
            }
        )

    async def root(_: web.Request):
        return web.json_response(
            {
                "ok": True,
                "service": "playtime-server",
                **svc.version_payload(),
                "endpoints": {
                    "health": "/health",
                    "version": "/version",
                    "leaderboard": "/leaderboard",
                    "position": "/leaderboard/{position}",
                    "session": "/sessions/{playerId}",
                    "milestones": "/milestones",
                    "reload": "/reload",
                    "ws": "/ws",
                },
            }
        )

    async def version(_: web.Request):
        return web.json_response(svc.version_payload())

    async def leaderboard(request: web.Request):
        limit = _int_arg(request.query.get("limit"), svc.config.leaderboard_limit)
        return web.json_response({"leaderboard": svc.leaderboard_payload(limit)})

    async def position(request: web.Request):
        pos = _int_arg(request.match_info["position"], 0)
        return web.json_response(svc.position_payload(pos))

    async def session(request: web.Request):
        return web.json_response(svc.session_info(request.match_info["player_id"], request.query.get("format")))

    async def milestones(_: web.Request):
        return web.json_response(
            {
                "enabled": svc.config.milestones_enabled,
                "checkIntervalSec": svc.config.check_interval_sec,
                "milestones": [m.public_info() for m in svc.tracker.milestones],
            }
        )

    async def reload(_: web.Request):
        ok = svc.reload()
        return web.json_response({"ok": ok, "milestones": len(svc.tracker.milestones)}, status=200 if ok else 422)

    async def ws_handler(request: web.Request):
        return await svc.hub.handle(request)

    app.router.add_get("/", root)
    app.router.add_get("/health", health)
    app.router.add_get("/version", version)
    app.router.add_get("/leaderboard", leaderboard)
    app.router.add_get("/leaderboard/{position}", position)
    app.router.add_get("/sessions/{player_id}", session)
    app.router.add_get("/milestones", milestones)
    app.router.add_post("/reload", reload)
    app.router.add_get("/ws", ws_handler)
    app.router.add_route("OPTIONS", "/{tail:.*}", lambda r: web.Response(status=204))

    return app


def main() -> None:
    source = ConfigSource()
    config = ServerConfig.from_env()
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(source)
    svc_config = app["svc"].config
    web.run_app(app, host=svc_config.host, port=svc_config.port)


if __name__ == "__main__":
    main()
