"""Shared FastAPI dependencies."""

from fastapi import Header, HTTPException, Request

from arena.orchestrator.engine import ArenaEngine


def get_engine(request: Request) -> ArenaEngine:
    """The engine created by the application lifespan."""
    return request.app.state.engine


async def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity, asserted by the authenticating proxy in front of us."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id
