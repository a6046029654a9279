"""Arena engine.

Wires the store, queue, state machine, pipeline handlers, dispatcher and
worker together. One engine is built per process (or per test) and shared
by the API routes and the worker loop.
"""

import logging

from arena.config import Settings, get_settings
from arena.lib.database import Database
from arena.lib.generative import GenerativeClient
from arena.lib.llm import LLMClient
from arena.lib.repositories import Store
from arena.orchestrator.dispatcher import JobDispatcher, Worker
from arena.orchestrator.pipeline import build_handlers
from arena.orchestrator.queue import JobQueue
from arena.orchestrator.reconcile import Reconciler
from arena.orchestrator.rooms import RoomService
from arena.orchestrator.state_machine import RoomStateMachine

logger = logging.getLogger(__name__)


class ArenaEngine:
    """
    Container for the orchestration components.

    Attributes:
        store: Repositories over the database
        queue: Job queue
        state_machine: Room lifecycle
        rooms: Human-facing room actions
        dispatcher: Drain cycle
        worker: Background drain loop
    """

    def __init__(
        self,
        db: Database,
        generative: GenerativeClient,
        settings: Settings | None = None,
        reconcile_grace_seconds: float = 30.0,
    ):
        self.settings = settings or get_settings()
        self.db = db
        self.store = Store(db)
        self.queue = JobQueue(self.store, self.settings)
        self.state_machine = RoomStateMachine(self.store, self.settings)
        self.rooms = RoomService(self.store, self.state_machine, self.queue, self.settings)
        self.reconciler = Reconciler(
            self.store,
            self.queue,
            self.state_machine,
            self.settings,
            grace_seconds=reconcile_grace_seconds,
        )
        self.dispatcher = JobDispatcher(
            self.store,
            self.queue,
            self.state_machine,
            build_handlers(self.store, generative, self.queue, self.settings),
            reconciler=self.reconciler,
            settings=self.settings,
        )
        self.worker = Worker(self.dispatcher, self.settings)

    async def start(self, run_worker: bool | None = None) -> None:
        """Create the schema and, if enabled, start the worker loop."""
        await self.db.create_all()
        if self.settings.worker_enabled if run_worker is None else run_worker:
            self.worker.start()

    async def stop(self) -> None:
        await self.worker.stop()
        await self.db.dispose()


def create_engine(
    db: Database | None = None,
    generative: GenerativeClient | None = None,
    settings: Settings | None = None,
) -> ArenaEngine:
    """
    Create an ArenaEngine.

    Args:
        db: Database (built from settings if omitted)
        generative: Generative client (backed by a fresh LLMClient if omitted)
        settings: Settings (cached settings if omitted)

    Returns:
        Configured ArenaEngine
    """
    settings = settings or get_settings()
    db = db or Database(settings=settings)
    generative = generative or GenerativeClient(LLMClient(settings), settings)
    return ArenaEngine(db, generative, settings)
