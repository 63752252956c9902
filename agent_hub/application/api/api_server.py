from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from datetime import datetime, timezone
import structlog

from agent_hub.application.session import ChatSession
from agent_hub.application.websocket.connection_manager import ConnectionManager
from agent_hub.errors import HttpError, RateLimitedError, RequestError
from agent_hub.infrastructure.config.settings import Settings
from agent_hub.infrastructure.observability.logging import metrics, setup_logging

logger = structlog.get_logger(__name__)


class MessageRequest(BaseModel):
    """Body of POST /messages"""
    content: str
    temperature: Optional[float] = Field(None, ge=0.0, le=1.0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class LoginRequest(BaseModel):
    """Body of POST /auth/login"""
    username: str
    password: str


def create_app(session: Optional[ChatSession] = None) -> FastAPI:
    """Build the HTTP/WebSocket surface around a chat session"""

    session = session or ChatSession()
    connection_manager = ConnectionManager()
    session.events.subscribe(connection_manager.publish)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await session.initialize()
        logger.info("Agent hub server started")
        yield
        for connection_id in list(connection_manager.active_connections):
            await connection_manager.disconnect(connection_id)
        await session.close()
        logger.info("Agent hub server shutdown")

    app = FastAPI(title="Agent Hub", lifespan=lifespan)
    app.state.session = session
    app.state.connection_manager = connection_manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RateLimitedError)
    async def rate_limited_handler(request: Request, exc: RateLimitedError):
        return JSONResponse(
            status_code=429,
            content={"error": str(exc), "retryAfter": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)}
        )

    @app.exception_handler(HttpError)
    async def http_error_handler(request: Request, exc: HttpError):
        # Client errors pass through; upstream server errors become 502
        status_code = exc.status_code if 400 <= exc.status_code < 500 else 502
        return JSONResponse(
            status_code=status_code,
            content={"error": exc.message, "upstreamStatus": exc.status_code}
        )

    @app.exception_handler(RequestError)
    async def request_error_handler(request: Request, exc: RequestError):
        return JSONResponse(status_code=502, content={"error": str(exc)})

    def _require_agent(agent_id: str):
        agent = session.manager.get_agent(agent_id)
        if agent is None:
            raise HTTPException(status_code=404, detail=f"Unknown agent '{agent_id}'")
        return agent

    @app.get("/health")
    async def health_check():
        """Health of this server plus the upstream chat service"""
        upstream = await session.check_health()
        return {
            "status": "healthy",
            "upstream": upstream.model_dump(by_alias=True) if upstream else None,
            "activeConnections": connection_manager.connection_count(),
            "activeAgents": session.manager.active_agent_ids,
            "metrics": metrics.get_metrics_summary(),
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    @app.get("/agents")
    async def list_agents():
        return {
            "agents": session.manager.get_all_states(),
            "active": session.manager.active_agent_ids
        }

    @app.post("/agents/{agent_id}/activate")
    async def activate_agent(agent_id: str):
        _require_agent(agent_id)
        session.manager.activate_agent(agent_id)
        return session.manager.get_agent(agent_id).get_state()

    @app.post("/agents/{agent_id}/deactivate")
    async def deactivate_agent(agent_id: str):
        _require_agent(agent_id)
        session.manager.deactivate_agent(agent_id)
        return session.manager.get_agent(agent_id).get_state()

    @app.post("/messages")
    async def send_message(request: MessageRequest):
        try:
            outcomes = await session.send(
                request.content,
                temperature=request.temperature,
                metadata=request.metadata
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"outcomes": [o.model_dump(mode="json", by_alias=True) for o in outcomes]}

    @app.post("/conversation/save")
    async def save_conversation():
        snapshot = await session.manager.save_conversation()
        return snapshot.model_dump(mode="json", by_alias=True)

    @app.post("/conversation/load")
    async def load_conversation():
        snapshot = await session.manager.load_conversation()
        return {
            "restored": snapshot is not None,
            "active": session.manager.active_agent_ids,
            "entries": len(session.manager.current_conversation)
        }

    @app.delete("/conversation")
    async def clear_conversation():
        await session.clear()
        return {"cleared": True}

    @app.get("/conversation/export")
    async def export_conversation():
        return await session.export()

    @app.post("/auth/login")
    async def login(request: LoginRequest):
        result = await session.login(request.username, request.password)
        if not result.success:
            raise HTTPException(status_code=401, detail=result.error or "Login failed")
        return {"success": True, "expiresIn": result.expires_in}

    @app.post("/auth/logout")
    async def logout():
        await session.logout()
        return {"success": True}

    @app.websocket("/ws/events")
    async def events_websocket(websocket: WebSocket):
        """Read-only stream of agent events"""

        connection_id = await connection_manager.connect(websocket)
        try:
            while True:
                # Observers do not send commands; reading detects disconnects
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info("Client disconnected", connection_id=connection_id)
        finally:
            await connection_manager.disconnect(connection_id)

    return app


def main():
    """Run the server with uvicorn using environment configuration"""
    import uvicorn

    settings = Settings.from_env()
    setup_logging(settings.log_level, settings.log_format)
    app = create_app(ChatSession(settings))
    uvicorn.run(app, host=settings.server_host, port=settings.server_port)


if __name__ == "__main__":
    main()
