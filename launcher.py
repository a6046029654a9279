"""
Debate Arena Launcher - start the API, run a standalone worker, or drain once.

    python launcher.py serve [--host 127.0.0.1] [--port 8001]
    python launcher.py worker
    python launcher.py drain
"""

import argparse
import asyncio
import logging
import sys

from arena.config import get_settings
from arena.lib.generative import GenerativeClient
from arena.lib.llm import close_llm_client, get_llm_client
from arena.orchestrator.engine import ArenaEngine, create_engine

BACKEND_PORT = 8001

logger = logging.getLogger("arena.launcher")


async def build_engine() -> ArenaEngine:
    settings = get_settings()
    llm_client = await get_llm_client()
    return create_engine(
        generative=GenerativeClient(llm_client, settings), settings=settings
    )


async def run_worker() -> None:
    """Run the drain loop until interrupted."""
    engine = await build_engine()
    await engine.start(run_worker=True)
    logger.info("Worker started, press Ctrl+C to stop")
    try:
        await asyncio.Event().wait()
    finally:
        await engine.stop()
        await close_llm_client()


async def run_drain() -> None:
    """Run a single drain cycle and print its report."""
    engine = await build_engine()
    await engine.start(run_worker=False)
    try:
        report = await engine.dispatcher.drain()
        print(report.model_dump_json(indent=2))
    finally:
        await engine.stop()
        await close_llm_client()


def serve(host: str, port: int) -> None:
    import uvicorn

    uvicorn.run("arena.main:app", host=host, port=port)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Debate Arena launcher")
    commands = parser.add_subparsers(dest="command", required=True)

    serve_parser = commands.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=BACKEND_PORT)

    commands.add_parser("worker", help="Run a standalone worker loop")
    commands.add_parser("drain", help="Run one drain cycle and exit")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command == "serve":
        serve(args.host, args.port)
    elif args.command == "worker":
        try:
            asyncio.run(run_worker())
        except KeyboardInterrupt:
            print("Worker stopped")
    elif args.command == "drain":
        asyncio.run(run_drain())
    return 0


if __name__ == "__main__":
    sys.exit(main())
