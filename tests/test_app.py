from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import pytest
from aiohttp import test_utils
from conftest import milestone_config

from playtime.app import create_app
from playtime.session.config import ConfigSource


@asynccontextmanager
async def serve(path, clock):
    app = create_app(ConfigSource(path=str(path), env={}), clock=clock)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        yield client, app["svc"]


async def _connect(client):
    ws = await client.ws_connect("/ws")
    info = await ws.receive_json()
    assert info["type"] == "info"
    return ws


async def _send(ws, msg_type, **data):
    await ws.send_json({"type": msg_type, "data": data})
    return await ws.receive_json()


@pytest.mark.asyncio
async def test_health_root_and_version(tmp_path, clock):
    async with serve(tmp_path / "missing.json", clock) as (client, svc):
        resp = await client.get("/health")
        assert resp.status == 200
        body = await resp.json()
        assert body["ok"] is True
        assert body["players"] == 0
        assert body["milestoneChecks"] is False

        root = await (await client.get("/")).json()
        assert root["endpoints"]["leaderboard"] == "/leaderboard"

        version = await (await client.get("/version")).json()
        assert version["serverId"] == svc.server_id


@pytest.mark.asyncio
async def test_join_query_leave(tmp_path, clock):
    async with serve(tmp_path / "missing.json", clock) as (client, svc):
        ws = await _connect(client)

        welcome = await _send(ws, "join", playerId="u1", name="Alice")
        assert welcome == {"type": "welcome", "data": {"playerId": "u1", "name": "Alice"}}
        clock.advance(65_000)

        info = await (await client.get("/sessions/u1")).json()
        assert info["active"] is True
        assert info["name"] == "Alice"
        assert info["totalSeconds"] == 65
        assert info["minutes"] == 1
        assert info["seconds"] == 5
        assert info["rank"] == 1
        assert info["formatted"] == "0d 0h 1m 5s"

        short = await (await client.get("/sessions/u1", params={"format": "short"})).json()
        assert short["formatted"] == "0h 1m"

        await _send(ws, "join", playerId="u2", name="Bob")
        clock.advance(1_000)

        board = (await (await client.get("/leaderboard")).json())["leaderboard"]
        assert [row["playerId"] for row in board] == ["u1", "u2"]
        assert board[1]["durationMs"] == 1_000
        assert board[1]["formatted"] == "0d 0h 0m 1s"

        second = await (await client.get("/leaderboard/2")).json()
        assert second["name"] == "Bob"
        assert second["durationMs"] == 1_000

        missing = await (await client.get("/leaderboard/3")).json()
        assert missing == {"position": 3, "name": "", "durationMs": 0, "formatted": ""}

        bye = await _send(ws, "leave", playerId="u1")
        assert bye["data"] == {"playerId": "u1", "durationMs": 66_000}

        gone = await (await client.get("/sessions/u1")).json()
        assert gone["active"] is False
        assert gone["durationMs"] == 0
        assert gone["rank"] == 0

        board = (await (await client.get("/leaderboard", params={"limit": "5"})).json())["leaderboard"]
        assert [row["playerId"] for row in board] == ["u2"]
        await ws.close()


@pytest.mark.asyncio
async def test_milestone_rewards_reach_host(write_config, clock):
    path = write_config(milestone_config(interval=3600, a=60, b=600))
    async with serve(path, clock) as (client, svc):
        assert svc.scan_running is True
        ws = await _connect(client)
        await _send(ws, "join", playerId="u1", name="Alice")

        clock.advance(61_000)
        grants = svc.scan()
        assert [g.milestone.milestoneId for g in grants] == ["a"]

        notify = await ws.receive_json()
        assert notify == {"type": "notify", "data": {"playerId": "u1", "text": "Alice reached 1m 0s"}}
        command = await ws.receive_json()
        assert command == {"type": "command", "data": {"command": "reward Alice u1"}}

        assert svc.scan() == []
        info = await (await client.get("/sessions/u1")).json()
        assert info["milestones"] == ["a"]

        listed = await (await client.get("/milestones")).json()
        assert listed["enabled"] is True
        assert [m["milestoneId"] for m in listed["milestones"]] == ["a", "b"]
        assert listed["milestones"][1]["time"] == "10m 0s"
        await ws.close()


@pytest.mark.asyncio
async def test_roster_discovery_does_not_reset_sessions(tmp_path, clock):
    async with serve(tmp_path / "missing.json", clock) as (client, svc):
        ws = await _connect(client)
        players = [{"playerId": "u1", "name": "Alice"}, {"playerId": "u2", "name": "Bob"}]

        first = await _send(ws, "roster", players=players)
        assert first["data"] == {"seeded": ["u1", "u2"], "active": 2}

        clock.advance(5_000)
        again = await _send(ws, "roster", players=players)
        assert again["data"]["seeded"] == []
        assert svc.registry.duration("u1", clock.now()) == 5_000
        await ws.close()


@pytest.mark.asyncio
async def test_host_disconnect_ends_its_sessions(tmp_path, clock):
    async with serve(tmp_path / "missing.json", clock) as (client, svc):
        ws = await _connect(client)
        await _send(ws, "join", playerId="u1", name="Alice")
        assert svc.registry.has_active("u1")

        await ws.close()
        for _ in range(100):
            if not svc.registry.has_active("u1"):
                break
            await asyncio.sleep(0.01)
        assert svc.registry.has_active("u1") is False
        assert len(svc.roster) == 0


@pytest.mark.asyncio
async def test_protocol_errors(tmp_path, clock):
    async with serve(tmp_path / "missing.json", clock) as (client, _):
        ws = await _connect(client)

        await ws.send_str("not json")
        err = await ws.receive_json()
        assert err["type"] == "error"
        assert err["data"]["message"].startswith("invalid json")

        err = await _send(ws, "teleport")
        assert err["data"]["message"] == "invalid type"

        err = await _send(ws, "join", name="nobody")
        assert err["data"]["message"] == "join.playerId required"

        version = await _send(ws, "hello", hostVersion="1.20.4")
        assert version["type"] == "version"
        pong = await _send(ws, "ping", t=12.5)
        assert pong["data"]["t"] == 12.5
        await ws.close()


@pytest.mark.asyncio
async def test_presence_rate_limit(tmp_path, clock):
    async with serve(tmp_path / "missing.json", clock) as (client, svc):
        svc.config.presence_rate_per_sec = 0.0
        svc.config.presence_burst = 2.0
        ws = await _connect(client)

        assert (await _send(ws, "join", playerId="a"))["type"] == "welcome"
        assert (await _send(ws, "join", playerId="b"))["type"] == "welcome"
        limited = await _send(ws, "join", playerId="c")
        assert limited == {"type": "error", "data": {"message": "rate limited"}}
        assert svc.registry.has_active("c") is False
        # Pings are not presence and stay unthrottled.
        assert (await _send(ws, "ping", t=1))["type"] == "pong"
        await ws.close()


@pytest.mark.asyncio
async def test_reload_keeps_state_on_bad_file(write_config, clock):
    path = write_config(milestone_config(a=60))
    async with serve(path, clock) as (client, svc):
        assert svc.scan_running is True

        write_config("{broken")
        resp = await client.post("/reload")
        assert resp.status == 422
        assert [m.milestoneId for m in svc.tracker.milestones] == ["a"]
        assert svc.scan_running is True

        path.unlink()
        resp = await client.post("/reload")
        assert resp.status == 422
        assert [m.milestoneId for m in svc.tracker.milestones] == ["a"]
        assert svc.config.milestones_enabled is True
        assert svc.scan_running is True

        write_config(milestone_config(a=30, b=90))
        resp = await client.post("/reload")
        assert resp.status == 200
        assert (await resp.json())["milestones"] == 2
        assert svc.scan_running is True

        write_config(milestone_config(enabled=False, a=30))
        resp = await client.post("/reload")
        assert resp.status == 200
        assert svc.tracker.milestones == ()
        assert svc.scan_running is False


@pytest.mark.asyncio
async def test_bad_query_and_cors(tmp_path, clock):
    async with serve(tmp_path / "missing.json", clock) as (client, _):
        resp = await client.get("/leaderboard", params={"limit": "lots"})
        assert resp.status == 400

        resp = await client.get("/health", headers={"Origin": "https://panel.example"})
        assert resp.headers["Access-Control-Allow-Origin"] == "https://panel.example"

        resp = await client.options("/leaderboard", headers={"Origin": "https://panel.example"})
        assert resp.status == 204
        assert "GET" in resp.headers["Access-Control-Allow-Methods"]


@pytest.mark.asyncio
async def test_debug_flag_from_file_sets_log_level(write_config, clock):
    package_logger = logging.getLogger("playtime")
    try:
        path = write_config({"debug": True})
        async with serve(path, clock) as (client, svc):
            assert svc.config.debug is True
            assert package_logger.level == logging.DEBUG

            write_config({"debug": False})
            resp = await client.post("/reload")
            assert resp.status == 200
            assert package_logger.level == logging.INFO
    finally:
        package_logger.setLevel(logging.NOTSET)
