"""Local HTTP receiver for agent hook events.

The agent's hook dispatcher POSTs one JSON event per request. Every route
answers `{}` immediately except `/hook/permission`, which holds the
connection open until the human approves or denies (or the wait times out)
and answers with the agent's permission decision schema.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from claudio.constants import (
    HOOK_SERVER_HOST,
    HOOK_SERVER_PORT,
    HOOK_SERVER_START_TIMEOUT_S,
    HOOK_SERVER_STOP_TIMEOUT_S,
    PERMISSION_WAIT_TIMEOUT_S,
)
from claudio.core.events import HOOK_ROUTES, HookRoute
from claudio.core.models import AgentEvent, PermissionDecision
from claudio.core.subscriptions import Handler, Subscribers, Subscription

logger = logging.getLogger(__name__)

DENY_BY_USER = "Denied by user"
DENY_TIMED_OUT = "Permission request timed out"
DENY_SERVER_STOPPED = "Server stopped"


@dataclass(frozen=True)
class HookDelivery:
    """An accepted event; `approval_id` is set only for permission requests."""

    event: AgentEvent
    approval_id: Optional[str] = None


@dataclass
class PendingApproval:
    approval_id: str
    future: asyncio.Future[PermissionDecision]
    deadline: float
    timer: Optional[asyncio.TimerHandle] = None


class EventServer:
    """Hook receiver with a table of blocked permission requests.

    All approval-table mutation happens on the event loop, so resolution by
    the human, by the timeout and by `stop()` are serialized and each
    approval resolves exactly once.
    """

    def __init__(
        self,
        host: str = HOOK_SERVER_HOST,
        port: int = HOOK_SERVER_PORT,
        permission_timeout: float = PERMISSION_WAIT_TIMEOUT_S,
    ) -> None:
        self.host = host
        self.port = port
        self.permission_timeout = permission_timeout
        self._events: Subscribers[HookDelivery] = Subscribers("hook event")
        self._pending: dict[str, PendingApproval] = {}
        self._ids = itertools.count()
        self.app = self._build_app()
        self.server: uvicorn.Server | None = None
        self.server_task: asyncio.Task[None] | None = None

    # ==================== Subscription ====================

    def subscribe(self, handler: Handler[HookDelivery]) -> Subscription:
        """Register a handler for accepted events (permission handlers see the approval id)."""
        return self._events.subscribe(handler)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def pending_ids(self) -> list[str]:
        return list(self._pending)

    # ==================== HTTP app ====================

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="Claudio hook receiver", docs_url=None, redoc_url=None, openapi_url=None)
        for route in HOOK_ROUTES:
            app.add_api_route(
                route.path,
                self._make_endpoint(route),
                methods=["POST"],
                response_model=None,
            )
        return app

    def _make_endpoint(self, route: HookRoute) -> Callable[[Request], Awaitable[JSONResponse]]:
        async def endpoint(request: Request) -> JSONResponse:
            event = await self._read_event(request, route)
            if event is None:
                return JSONResponse({})
            if route.blocking:
                decision = await self._handle_permission(event)
                return JSONResponse(decision.to_hook_response())
            await self._events.emit(HookDelivery(event))
            return JSONResponse({})

        endpoint.__name__ = f"hook_{route.event.value}"
        return endpoint

    async def _read_event(self, request: Request, route: HookRoute) -> Optional[AgentEvent]:
        body = await request.body()
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Malformed hook body on %s (%d bytes): %s", route.path, len(body), e)
            return None
        try:
            return AgentEvent.from_payload(payload, default_name=route.event)
        except ValueError as e:
            logger.warning("Rejected hook payload on %s: %s", route.path, e)
            return None

    # ==================== Permission protocol ====================

    async def _handle_permission(self, event: AgentEvent) -> PermissionDecision:
        approval = self._register()
        logger.info(
            "Permission request %s: tool=%s cwd=%s", approval.approval_id, event.tool_name, event.working_dir
        )
        try:
            # Notify before waiting so the chat sees buttons while the connection is held.
            await self._events.emit(HookDelivery(event, approval.approval_id))
            return await approval.future
        finally:
            self._discard(approval.approval_id)

    def _register(self) -> PendingApproval:
        loop = asyncio.get_running_loop()
        approval_id = f"perm_{next(self._ids)}"
        approval = PendingApproval(
            approval_id=approval_id,
            future=loop.create_future(),
            deadline=loop.time() + self.permission_timeout,
        )
        approval.timer = loop.call_later(self.permission_timeout, self._expire, approval_id)
        self._pending[approval_id] = approval
        return approval

    def _settle(self, approval_id: str, decision: PermissionDecision) -> bool:
        approval = self._pending.pop(approval_id, None)
        if approval is None:
            return False
        if approval.timer:
            approval.timer.cancel()
        if approval.future.done():
            return False
        approval.future.set_result(decision)
        return True

    def _discard(self, approval_id: str) -> None:
        """Drop an approval whose HTTP request went away without a decision."""
        approval = self._pending.pop(approval_id, None)
        if approval and approval.timer:
            approval.timer.cancel()

    def _expire(self, approval_id: str) -> None:
        if self._settle(approval_id, PermissionDecision.deny(DENY_TIMED_OUT)):
            logger.info("Permission request %s timed out; denied", approval_id)

    def resolve(self, approval_id: str, allow: bool) -> bool:
        """Resolve a pending permission request.

        Returns False (and does nothing) when the id is unknown, already
        resolved or expired, so duplicate button taps are harmless.
        """
        decision = PermissionDecision.allow() if allow else PermissionDecision.deny(DENY_BY_USER)
        settled = self._settle(approval_id, decision)
        if settled:
            logger.info("Permission request %s resolved: %s", approval_id, decision.behavior)
        else:
            logger.debug("Permission request %s already settled; ignoring", approval_id)
        return settled

    def deny_all(self, message: str) -> int:
        count = 0
        for approval_id in list(self._pending):
            if self._settle(approval_id, PermissionDecision.deny(message)):
                count += 1
        return count

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Start uvicorn in a background task and wait until it is listening."""
        if self.server_task and not self.server_task.done():
            logger.warning("Hook server already running; skipping start")
            return

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
            lifespan="off",
        )
        self.server = uvicorn.Server(config)
        server = self.server

        # Avoid uvicorn's signal handling to keep the daemon in control.
        serve_coro = server._serve() if hasattr(server, "_serve") else server.serve()
        self.server_task = asyncio.create_task(serve_coro)

        max_retries = int(HOOK_SERVER_START_TIMEOUT_S / 0.1)
        for _ in range(max_retries):
            if server.started:
                break
            if self.server_task.done():
                exc = self.server_task.exception()
                raise RuntimeError(f"Hook server exited during startup on port {self.port}") from exc
            await asyncio.sleep(0.1)
        if not server.started:
            raise TimeoutError("Hook server failed to start within timeout")

        logger.info("Hook server listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Deny every pending request, then shut the listener and its connections down."""
        denied = self.deny_all(DENY_SERVER_STOPPED)
        if denied:
            logger.info("Denied %d pending permission request(s) on shutdown", denied)

        server = self.server
        if server:
            if server.started:
                server.should_exit = True
            elif self.server_task:
                self.server_task.cancel()

        if self.server_task:
            try:
                await asyncio.wait_for(self.server_task, timeout=HOOK_SERVER_STOP_TIMEOUT_S)
            except asyncio.TimeoutError:
                logger.warning("Timed out stopping hook server; cancelling task")
                self.server_task.cancel()
                try:
                    await self.server_task
                except asyncio.CancelledError:
                    pass
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug("Error during hook server shutdown: %s", e)

        self.server = None
        self.server_task = None
        logger.info("Hook server stopped")
