"""FastAPI-based web adapter for HUD clients and external callers.

This module exposes the agent router over HTTP and WebSocket:

- ``POST /action``: apply an action to an agent (request/response)
- ``WS /ws``: snapshot on connect, then every agent update; HUDs may also
  send ``agent_action`` messages over the same connection
- ``/health``, ``/ready``, ``/live``: probes

Every request and every new connection must present the shared secret in
the configured header before the registry is touched.
"""

import random
import secrets
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import orjson
from fastapi import Depends, FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agent_router import __version__
from agent_router.adapters.web.health import create_health_router
from agent_router.adapters.web.hub import BroadcastHub, WebSocketSubscriber
from agent_router.config import Config
from agent_router.core.gateway import ActionGateway
from agent_router.core.registry import AgentRegistry
from agent_router.core.simulator import AgentSimulator
from agent_router.schemas.messages import (
    ActionResultMessage,
    ErrorMessage,
    WireMessage,
    encode_message,
)
from agent_router.utils.errors import AuthError, RequestValidationError
from agent_router.utils.telemetry import get_logger

INVALID_TOKEN_CLOSE_CODE = 4001


class WebAdapter:
    """FastAPI application wiring the registry, gateway and broadcast hub."""

    def __init__(
        self,
        config: Config | None = None,
        registry: AgentRegistry | None = None,
        simulator: AgentSimulator | None = None,
    ):
        """Initialize web adapter.

        Args:
            config: Router configuration (defaults if omitted)
            registry: Registry instance (a fresh one if omitted)
            simulator: Simulator to run for the app's lifetime; built from
                ``config.simulator`` when omitted and enabled there
        """
        self.config = config or Config()
        self.registry = registry or AgentRegistry()
        self.gateway = ActionGateway(self.registry)
        self.hub = BroadcastHub(
            self.registry,
            max_queue_depth=self.config.hub.max_queue_depth,
            send_timeout=self.config.hub.send_timeout_seconds,
        )
        self.hub.attach()

        sim_config = self.config.simulator
        if simulator is None and sim_config.enabled:
            simulator = AgentSimulator(
                self.registry,
                initial_delay=sim_config.initial_delay_seconds,
                min_interval=sim_config.min_interval_seconds,
                max_interval=sim_config.max_interval_seconds,
                rng=random.Random(sim_config.seed),
            )
        self.simulator = simulator
        self.logger = get_logger("agent_router.web_adapter")

        @asynccontextmanager
        async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
            if self.simulator is not None:
                self.simulator.start()
            self.logger.info(
                "Web adapter started", simulator=self.simulator is not None
            )
            yield
            await self.shutdown()
            self.logger.info("Web adapter stopped")

        self.app = FastAPI(
            title="AgentHUD Router",
            description="Real-time agent state fan-out for heads-up displays",
            version=__version__,
            lifespan=lifespan,
        )

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.server.allowed_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self.app.add_exception_handler(AuthError, self._auth_error_handler)
        self.app.include_router(
            create_health_router(self.registry, self.hub, self.config.health)
        )
        self._setup_routes()

    def check_token(self, token: str | None) -> bool:
        """Compare a presented token with the shared secret in constant time."""
        if not token:
            return False
        return secrets.compare_digest(
            token.encode("utf-8"), self.config.server.token.encode("utf-8")
        )

    async def _auth_error_handler(self, request: Request, exc: Exception) -> JSONResponse:
        self.logger.warning(
            "Rejected unauthenticated request",
            path=request.url.path,
            client=request.client.host if request.client else None,
        )
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"success": False, "error": AuthError.code},
        )

    def _setup_routes(self) -> None:
        """Set up API routes."""
        header_name = self.config.server.token_header

        async def require_token(request: Request) -> None:
            if not self.check_token(request.headers.get(header_name)):
                raise AuthError()

        @self.app.post("/action")
        async def submit_action(
            request: Request, _: None = Depends(require_token)
        ) -> JSONResponse:
            """Apply an action to an agent."""
            try:
                body: Any = await request.json()
            except ValueError:
                body = None

            try:
                response = self.gateway.respond(body)
            except Exception as e:
                self.logger.error(
                    "Action handling failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return JSONResponse(
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                    content={"success": False, "error": "INTERNAL_ERROR"},
                )

            status_code = (
                status.HTTP_400_BAD_REQUEST
                if response.error == RequestValidationError.code
                else status.HTTP_200_OK
            )
            return JSONResponse(status_code=status_code, content=response.to_wire())

        @self.app.websocket("/ws")
        async def websocket_stream(websocket: WebSocket) -> None:
            """Stream the snapshot and every agent update to one HUD."""
            token = websocket.headers.get(header_name) or websocket.query_params.get(
                "token"
            )
            await websocket.accept()
            # Closing before accept is rejected as HTTP 403 by ASGI servers, so
            # the handshake completes and the close frame carries the code.
            if not self.check_token(token):
                self.logger.warning(
                    "Rejected unauthenticated WebSocket",
                    client=websocket.client.host if websocket.client else None,
                )
                await websocket.close(
                    code=INVALID_TOKEN_CLOSE_CODE, reason=AuthError.code
                )
                return

            subscriber = WebSocketSubscriber(websocket)
            await self.hub.on_connect(subscriber)

            try:
                while True:
                    text = await websocket.receive_text()
                    reply = self.handle_client_message(text)
                    if reply is not None:
                        self.hub.send_to(subscriber, encode_message(reply))
            except WebSocketDisconnect as e:
                self.logger.info(
                    "WebSocket disconnected", subscriber=repr(subscriber), code=e.code
                )
            except RuntimeError as e:
                # Raised by Starlette when the hub already closed the socket.
                self.logger.debug(
                    "WebSocket receive after close", subscriber=repr(subscriber), error=str(e)
                )
            finally:
                await self.hub.on_disconnect(subscriber)

    def handle_client_message(self, text: str) -> WireMessage | None:
        """Turn one inbound message from a HUD into the reply to send back.

        Args:
            text: Raw message text

        Returns:
            Reply message, or None if nothing should be sent
        """
        try:
            data = orjson.loads(text)
        except orjson.JSONDecodeError:
            return ErrorMessage(error="INVALID_JSON")

        if not isinstance(data, dict):
            return ErrorMessage(error="INVALID_MESSAGE")

        message_type = data.get("type")
        if message_type == "agent_action":
            response = self.gateway.respond(data)
            return ActionResultMessage(**response.model_dump())

        self.logger.info("Ignoring unknown client message", message_type=message_type)
        return ErrorMessage(error="UNKNOWN_MESSAGE_TYPE")

    async def shutdown(self) -> None:
        """Stop the simulator and close every subscriber connection."""
        if self.simulator is not None:
            await self.simulator.stop()

        await self.hub.close()
        self.hub.detach()
        self.logger.info("Web adapter shutdown complete")


def create_web_adapter(
    config: Config | None = None,
    registry: AgentRegistry | None = None,
    simulator: AgentSimulator | None = None,
) -> WebAdapter:
    """Create a Web adapter instance.

    Args:
        config: Router configuration
        registry: Registry instance
        simulator: Optional simulator bound to the app's lifetime

    Returns:
        WebAdapter instance
    """
    return WebAdapter(config=config, registry=registry, simulator=simulator)
