"""Nudge service daemon: HTTP ingress, per-user sessions, nudge delivery."""

from __future__ import annotations

import json
import logging
import time
from collections import deque
from typing import Any

import aiohttp
from aiohttp import web

from .config import DEFAULT_CONFIG_PATH, NudgeSettings, load_config
from .dispatcher import Generate
from .errors import TriggerError
from .llm import MessagesClient
from .session import NudgeSession
from .timers import PeriodicTask

logger = logging.getLogger(__name__)


class NudgeDaemon:
    """Top-level service owning one ``NudgeSession`` per user session id.

    Routes:
        POST /sessions/{session_id}/captures   one capture entry or a list
        POST /sessions/{session_id}/trigger    manual nudge request
        GET  /sessions/{session_id}/status
        GET  /sessions/{session_id}/nudges
        DELETE /sessions/{session_id}
        GET  /health
    """

    def __init__(
        self,
        config_path: str = DEFAULT_CONFIG_PATH,
        config: dict[str, Any] | None = None,
        *,
        generate: Generate | None = None,
    ) -> None:
        self._config: dict[str, Any] = (
            config if config is not None else load_config(config_path)
        )
        self.settings = NudgeSettings.from_dict(self._config)
        self._client: MessagesClient | None = None
        if generate is None:
            self._client = MessagesClient(self.settings.model)
            generate = self._client.generate
        self._generate = generate
        self.sessions: dict[str, NudgeSession] = {}
        self._outboxes: dict[str, deque[dict[str, Any]]] = {}
        self._runner: web.AppRunner | None = None
        self._http_session: aiohttp.ClientSession | None = None
        self._running = False
        self._sweep_task = PeriodicTask(
            "sessions:sweep", self.settings.server.sweep_interval, self.evict_idle
        )

    # ---- sessions ----

    def get_or_create_session(self, session_id: str) -> NudgeSession:
        session = self.sessions.get(session_id)
        if session is not None:
            return session

        async def _sink(event: dict[str, Any]) -> None:
            await self._deliver(session_id, event)

        session = NudgeSession(
            session_id,
            self._generate,
            settings=self.settings,
            sink=_sink,
        )
        self.sessions[session_id] = session
        self._outboxes[session_id] = deque(maxlen=self.settings.delivery.outbox_size)
        logger.info("Created nudge session '%s'", session_id)
        return session

    async def session(self, session_id: str) -> NudgeSession:
        """Return the session, starting its timers if the daemon is running."""
        session = self.get_or_create_session(session_id)
        session.touch()
        if self._running and not session.is_running:
            await session.start()
        return session

    async def close_session(self, session_id: str) -> bool:
        """Stop a session's tasks and forget it and its outbox."""
        session = self.sessions.pop(session_id, None)
        self._outboxes.pop(session_id, None)
        if session is None:
            return False
        await session.stop()
        logger.info("Closed nudge session '%s'", session_id)
        return True

    async def evict_idle(self, now: float | None = None) -> list[str]:
        """Close sessions that have seen no request for the idle timeout."""
        now = time.time() if now is None else now
        timeout = self.settings.server.session_idle_timeout
        idle = [
            sid for sid, session in self.sessions.items() if now - session.last_seen > timeout
        ]
        for sid in idle:
            await self.close_session(sid)
        if idle:
            logger.info("Evicted %d idle session(s)", len(idle))
        return idle

    def outbox(self, session_id: str) -> list[dict[str, Any]]:
        return list(self._outboxes.get(session_id, ()))

    # ---- delivery ----

    async def _deliver(self, session_id: str, event: dict[str, Any]) -> None:
        """Keep the event for polling clients and push it to the response URL."""
        self._outboxes.setdefault(
            session_id, deque(maxlen=self.settings.delivery.outbox_size)
        ).append(event)

        url = self.settings.delivery.response_url
        if not url:
            return
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession()
        payload = {"sessionId": session_id, "type": "TANDEM_NUDGE", "data": event}
        try:
            async with self._http_session.post(url, json=payload) as resp:
                if resp.status >= 400:
                    logger.warning(
                        "Nudge delivery for '%s' rejected with HTTP %d", session_id, resp.status
                    )
        except aiohttp.ClientError:
            logger.exception("Failed to deliver nudge for '%s'", session_id)

    # ---- http ----

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/sessions/{session_id}/captures", self._handle_captures)
        app.router.add_post("/sessions/{session_id}/trigger", self._handle_trigger)
        app.router.add_get("/sessions/{session_id}/status", self._handle_status)
        app.router.add_get("/sessions/{session_id}/nudges", self._handle_nudges)
        app.router.add_delete("/sessions/{session_id}", self._handle_delete)
        app.router.add_get("/health", self._handle_health)
        return app

    async def _handle_captures(self, request: web.Request) -> web.Response:
        session = await self.session(request.match_info["session_id"])
        try:
            data = json.loads(await request.read())
        except ValueError:
            # also covers bodies that are not valid UTF-8
            return web.json_response({"success": False, "error": "invalid JSON"}, status=400)

        entries = data if isinstance(data, list) else [data]
        if not all(isinstance(e, dict) for e in entries):
            return web.json_response(
                {"success": False, "error": "expected an object or a list of objects"},
                status=400,
            )
        accepted = sum(1 for e in entries if session.ingest(e) is not None)
        return web.json_response({"success": True, "accepted": accepted})

    async def _handle_trigger(self, request: web.Request) -> web.Response:
        session = await self.session(request.match_info["session_id"])
        try:
            nudge = await session.trigger_now()
        except TriggerError as exc:
            logger.warning("Manual trigger failed for '%s': %s", session.session_id, exc.reason)
            return web.json_response({"success": False, "error": exc.reason}, status=409)
        return web.json_response(
            {"success": True, "nudgeGenerated": True, "message": nudge.text}
        )

    async def _handle_status(self, request: web.Request) -> web.Response:
        session = self.sessions.get(request.match_info["session_id"])
        if session is None:
            return web.json_response({"error": "unknown session"}, status=404)
        return web.json_response(session.status())

    async def _handle_nudges(self, request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        return web.json_response({"sessionId": session_id, "nudges": self.outbox(session_id)})

    async def _handle_delete(self, request: web.Request) -> web.Response:
        if not await self.close_session(request.match_info["session_id"]):
            return web.json_response({"error": "unknown session"}, status=404)
        return web.json_response({"success": True})

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response(
            {"status": "ok", "running": self._running, "sessions": len(self.sessions)}
        )

    # ---- lifecycle ----

    async def start(self) -> None:
        logger.info("Starting NudgeDaemon")
        self._running = True
        for session in self.sessions.values():
            await session.start()
        await self._sweep_task.start()

        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        host, port = self.settings.server.host, self.settings.server.port
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        logger.info("NudgeDaemon listening on %s:%s", host, port)

    async def stop(self) -> None:
        logger.info("Stopping NudgeDaemon")
        self._running = False
        await self._sweep_task.stop()
        for session in self.sessions.values():
            await session.stop()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        if self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        if self._client is not None:
            await self._client.close()
        logger.info("NudgeDaemon stopped")
