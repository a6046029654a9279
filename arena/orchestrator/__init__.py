"""Orchestrator package - room lifecycle, job queue and debate pipeline."""

from arena.orchestrator.aggregation import consensus_level, tally_votes
from arena.orchestrator.dispatcher import JobDispatcher, Worker
from arena.orchestrator.engine import ArenaEngine, create_engine
from arena.orchestrator.pipeline import (
    DebateHandler,
    FollowUp,
    HandlerResult,
    JudgeHandler,
    JuryHandler,
    build_debate_context,
    build_handlers,
)
from arena.orchestrator.queue import JobQueue, validate_payload
from arena.orchestrator.reconcile import Reconciler
from arena.orchestrator.rooms import RoomService
from arena.orchestrator.state_machine import (
    TRANSITIONS,
    RoomStateMachine,
    allowed_events,
    next_status,
)

__all__ = [
    # Engine
    "ArenaEngine",
    "create_engine",
    # Lifecycle
    "RoomStateMachine",
    "RoomService",
    "TRANSITIONS",
    "allowed_events",
    "next_status",
    # Queue
    "JobQueue",
    "validate_payload",
    # Pipeline
    "DebateHandler",
    "JuryHandler",
    "JudgeHandler",
    "FollowUp",
    "HandlerResult",
    "build_debate_context",
    "build_handlers",
    # Dispatch
    "JobDispatcher",
    "Reconciler",
    "Worker",
    # Aggregation
    "consensus_level",
    "tally_votes",
]
