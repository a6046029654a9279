"""Room endpoints: lobby, motion, submissions and cancellation."""

from fastapi import APIRouter, Depends, status

from arena.api.deps import get_engine, get_user_id
from arena.lib.models import (
    Argument,
    CreateRoomRequest,
    JoinRoomRequest,
    Motion,
    ProposeMotionRequest,
    Rebuttal,
    Room,
    RoomDetailResponse,
    SubmitArgumentRequest,
    SubmitRebuttalRequest,
)
from arena.orchestrator.engine import ArenaEngine

router = APIRouter()


@router.post("/rooms", response_model=Room, status_code=status.HTTP_201_CREATED)
async def create_room(
    request: CreateRoomRequest,
    user_id: str = Depends(get_user_id),
    engine: ArenaEngine = Depends(get_engine),
) -> Room:
    """Create a room; the creator argues side A."""
    return await engine.rooms.create_room(user_id, request)


@router.post("/rooms/join", response_model=Room)
async def join_room(
    request: JoinRoomRequest,
    user_id: str = Depends(get_user_id),
    engine: ArenaEngine = Depends(get_engine),
) -> Room:
    """Join a room by its code as side B."""
    return await engine.rooms.join_room(user_id, request.code)


@router.get("/rooms/{room_id}", response_model=RoomDetailResponse)
async def get_room(
    room_id: str,
    engine: ArenaEngine = Depends(get_engine),
) -> RoomDetailResponse:
    """Room with its motion, submissions, rounds, jury and verdict."""
    return await engine.rooms.detail(room_id)


@router.post("/rooms/{room_id}/motion", response_model=Motion)
async def propose_motion(
    room_id: str,
    request: ProposeMotionRequest,
    user_id: str = Depends(get_user_id),
    engine: ArenaEngine = Depends(get_engine),
) -> Motion:
    return await engine.rooms.propose_motion(room_id, user_id, request)


@router.post("/rooms/{room_id}/motion/agree", response_model=Room)
async def agree_motion(
    room_id: str,
    user_id: str = Depends(get_user_id),
    engine: ArenaEngine = Depends(get_engine),
) -> Room:
    return await engine.rooms.agree_motion(room_id, user_id)


@router.post(
    "/rooms/{room_id}/arguments",
    response_model=Argument,
    status_code=status.HTTP_201_CREATED,
)
async def submit_argument(
    room_id: str,
    request: SubmitArgumentRequest,
    user_id: str = Depends(get_user_id),
    engine: ArenaEngine = Depends(get_engine),
) -> Argument:
    """Submit the caller's opening argument; the second one starts round 1."""
    return await engine.rooms.submit_argument(room_id, user_id, request)


@router.post(
    "/rooms/{room_id}/rebuttals",
    response_model=Rebuttal,
    status_code=status.HTTP_201_CREATED,
)
async def submit_rebuttal(
    room_id: str,
    request: SubmitRebuttalRequest,
    user_id: str = Depends(get_user_id),
    engine: ArenaEngine = Depends(get_engine),
) -> Rebuttal:
    """Submit the caller's rebuttal; the second one starts the next round."""
    return await engine.rooms.submit_rebuttal(room_id, user_id, request)


@router.post("/rooms/{room_id}/cancel", response_model=Room)
async def cancel_room(
    room_id: str,
    user_id: str = Depends(get_user_id),
    engine: ArenaEngine = Depends(get_engine),
) -> Room:
    return await engine.rooms.cancel_room(room_id, user_id)
