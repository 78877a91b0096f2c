"""Tests for the nudge daemon HTTP surface."""

from __future__ import annotations

import time
from unittest.mock import AsyncMock

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from tandem_nudge.daemon import NudgeDaemon

LESSON = "https://example.com/lesson/4"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_daemon(reply: str = "Check your denominator.", **config) -> NudgeDaemon:
    return NudgeDaemon(config=config, generate=AsyncMock(return_value=reply))


def _capture(diff: str) -> dict:
    return {"diff": diff, "fullText": diff, "url": LESSON}


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def test_sessions_created_on_first_use():
    """Sessions are created once per id."""
    daemon = _make_daemon()
    first = daemon.get_or_create_session("a")
    assert daemon.get_or_create_session("a") is first
    assert daemon.get_or_create_session("b") is not first
    assert len(daemon.sessions) == 2


# ---------------------------------------------------------------------------
# HTTP routes
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_health():
    """The health route reports the daemon state."""
    daemon = _make_daemon()
    async with TestClient(TestServer(daemon.build_app())) as client:
        resp = await client.get("/health")
        assert resp.status == 200
        assert await resp.json() == {"status": "ok", "running": False, "sessions": 0}


@pytest.mark.asyncio
async def test_post_captures_single_and_list():
    """Captures are accepted one at a time or as a list."""
    daemon = _make_daemon()
    async with TestClient(TestServer(daemon.build_app())) as client:
        resp = await client.post("/sessions/u1/captures", json=_capture("hello"))
        assert await resp.json() == {"success": True, "accepted": 1}

        resp = await client.post(
            "/sessions/u1/captures",
            json=[_capture("more"), _capture("   "), _capture("text")],
        )
        assert await resp.json() == {"success": True, "accepted": 2}

    assert len(daemon.sessions["u1"].buffer) == 3


@pytest.mark.asyncio
async def test_post_captures_rejects_bad_bodies():
    """Malformed or non-UTF-8 bodies answer 400."""
    daemon = _make_daemon()
    async with TestClient(TestServer(daemon.build_app())) as client:
        resp = await client.post("/sessions/u1/captures", data=b"{not json")
        assert resp.status == 400

        resp = await client.post("/sessions/u1/captures", data=b'{"diff": "\xff"}')
        assert resp.status == 400

        resp = await client.post("/sessions/u1/captures", json=["just a string"])
        assert resp.status == 400
        assert (await resp.json())["success"] is False


@pytest.mark.asyncio
async def test_trigger_without_data():
    """A manual trigger with nothing buffered answers 409."""
    daemon = _make_daemon()
    async with TestClient(TestServer(daemon.build_app())) as client:
        resp = await client.post("/sessions/u1/trigger")
        assert resp.status == 409
        body = await resp.json()
        assert body["success"] is False
        assert body["error"].startswith("No data to analyze")


@pytest.mark.asyncio
async def test_trigger_returns_and_stores_nudge():
    """A manual nudge is returned and stored in the outbox."""
    daemon = _make_daemon()
    async with TestClient(TestServer(daemon.build_app())) as client:
        await client.post("/sessions/u1/captures", json=_capture("working on it"))

        resp = await client.post("/sessions/u1/trigger")
        assert resp.status == 200
        assert await resp.json() == {
            "success": True,
            "nudgeGenerated": True,
            "message": "Check your denominator.",
        }

        resp = await client.get("/sessions/u1/nudges")
        body = await resp.json()
        assert body["sessionId"] == "u1"
        assert len(body["nudges"]) == 1
        assert body["nudges"][0]["message"] == "Check your denominator."
        assert body["nudges"][0]["manualTrigger"] is True

        resp = await client.get("/sessions/u1/status")
        status = await resp.json()
        assert status["sessionId"] == "u1"
        assert status["interferenceLevel"] == 1
        assert status["nudgeCount"] == 1


@pytest.mark.asyncio
async def test_status_unknown_session():
    """Status for an unknown session answers 404."""
    daemon = _make_daemon()
    async with TestClient(TestServer(daemon.build_app())) as client:
        resp = await client.get("/sessions/ghost/status")
        assert resp.status == 404


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_nudges_pushed_to_response_url():
    """Nudges are POSTed to the configured response URL."""
    received: list[dict] = []

    async def receiver(request: web.Request) -> web.Response:
        received.append(await request.json())
        return web.json_response({"ok": True})

    sink_app = web.Application()
    sink_app.router.add_post("/nudges", receiver)

    async with TestServer(sink_app) as sink_server:
        daemon = _make_daemon(delivery={"response_url": str(sink_server.make_url("/nudges"))})
        session = daemon.get_or_create_session("u1")
        session.ingest(_capture("stuck again"))
        try:
            await session.trigger_now()
        finally:
            await daemon.stop()

    assert len(received) == 1
    assert received[0]["sessionId"] == "u1"
    assert received[0]["type"] == "TANDEM_NUDGE"
    assert received[0]["data"]["message"] == "Check your denominator."


@pytest.mark.asyncio
async def test_delivery_failure_keeps_outbox():
    """Unreachable delivery targets still leave the outbox filled."""
    daemon = _make_daemon(delivery={"response_url": "http://127.0.0.1:1/nudges"})
    session = daemon.get_or_create_session("u1")
    session.ingest(_capture("stuck again"))
    try:
        nudge = await session.trigger_now()
    finally:
        await daemon.stop()

    assert daemon.outbox("u1") == [nudge.to_event()]


@pytest.mark.asyncio
async def test_outbox_is_bounded():
    """The outbox keeps only the newest events."""
    daemon = _make_daemon(delivery={"outbox_size": 2})
    for n in range(3):
        await daemon._deliver("u1", {"message": f"m{n}"})
    assert [e["message"] for e in daemon.outbox("u1")] == ["m1", "m2"]
    assert daemon.outbox("nobody") == []


# ---------------------------------------------------------------------------
# Session cleanup
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_idle_sessions_are_stopped_and_dropped():
    """Sessions idle past the timeout lose their tasks and their outbox."""
    daemon = _make_daemon(server={"session_idle_timeout": 60})
    idle = daemon.get_or_create_session("idle")
    active = daemon.get_or_create_session("active")
    await idle.start()
    await active.start()
    await daemon._deliver("idle", {"message": "old"})

    now = time.time() + 120
    active.last_seen = now - 5
    try:
        assert await daemon.evict_idle(now=now) == ["idle"]
        assert not idle.is_running
        assert active.is_running
        assert set(daemon.sessions) == {"active"}
        assert daemon.outbox("idle") == []
    finally:
        await daemon.stop()

    assert not active.is_running


@pytest.mark.asyncio
async def test_delete_session_route():
    """DELETE stops the session; a second DELETE finds nothing."""
    daemon = _make_daemon()
    async with TestClient(TestServer(daemon.build_app())) as client:
        await client.post("/sessions/u1/captures", json=_capture("hello"))
        session = daemon.sessions["u1"]
        await session.start()

        resp = await client.delete("/sessions/u1")
        assert resp.status == 200
        assert await resp.json() == {"success": True}
        assert not session.is_running
        assert "u1" not in daemon.sessions

        resp = await client.delete("/sessions/u1")
        assert resp.status == 404


def test_requests_refresh_last_seen():
    """Ingest marks the session as recently used."""
    daemon = _make_daemon()
    session = daemon.get_or_create_session("u1")
    session.last_seen = 0.0
    session.ingest(_capture("hello"))
    assert session.last_seen > 0.0
