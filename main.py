import argparse
import asyncio
import signal
import sys
from typing import List, Optional

from config import parse_block_pos, settings
from logging_config import logger

from agents.pearl_agent import PearlAgent
from src.errors import ConnectionLostError

APP_NAME = "PearlRetrievalAgent"

EXITCODE_OK = 0
EXITCODE_OTHER = 1
EXITCODE_CONFLICTING_CLI_OPTS = 2
# Non-zero so wrapper scripts that relaunch on failure can tell an operator stop apart.
EXITCODE_USER_REQUESTED_STOP = 20


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Pearl retrieval agent: tracks thrown ender pearls and fetches them once landed")
    ap.add_argument("server_address", nargs="?", default=f"{settings.minecraft_host}:{settings.minecraft_port}",
                    help="Server (and port) to connect to")
    ap.add_argument("-u", "--username", dest="usernames", action="append", default=[],
                    help="Identity to run an agent for (repeat for several agents in this process)")
    ap.add_argument("-M", "--no-mining", action="store_true",
                    help="Forbid the pathfinder from mining blocks to reach a pearl")
    ap.add_argument("--pearls-min-pos", type=parse_block_pos, default=None,
                    help="Ignore pearls spawning below this block position (X,Y,Z)")
    ap.add_argument("--pearls-max-pos", type=parse_block_pos, default=None,
                    help="Ignore pearls spawning above this block position (X,Y,Z)")
    return ap


def _create_world():
    # Imported lazily: loading the bridge starts the Node.js side of JSPyBridge.
    from tools.mineflayer_bridge_tools import MineflayerBridge
    return MineflayerBridge()


async def run_agents(identities: List[str], server_address: str, world_factory=_create_world) -> int:
    """
    Runs one PearlAgent per identity until all of them end. A lost connection
    ends only the agent it belongs to. Returns the process exit code.
    """
    ingest_config = settings.ingest_config()
    tracker_config = settings.tracker_config()
    retrieval_config = settings.retrieval_config()

    agents = [
        PearlAgent(identity, world_factory(), server_address, ingest_config, tracker_config, retrieval_config)
        for identity in identities
    ]
    results = await asyncio.gather(*(agent.run() for agent in agents), return_exceptions=True)

    exit_code = EXITCODE_OK
    for agent, result in zip(agents, results):
        if isinstance(result, ConnectionLostError):
            logger.error(f"[{agent.identity}] Agent ended: {result}")
            exit_code = EXITCODE_OTHER
        elif isinstance(result, BaseException):
            logger.error(f"[{agent.identity}] Agent crashed: {result!r}", exc_info=result)
            exit_code = EXITCODE_OTHER
    return exit_code


async def _run_until_stopped(identities: List[str], server_address: str, world_factory=_create_world) -> int:
    loop = asyncio.get_running_loop()
    current = asyncio.current_task()
    # The launcher stops its children with SIGTERM; unwind the agents the same way as Ctrl-C.
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, current.cancel)
        except (NotImplementedError, RuntimeError):
            pass
    return await run_agents(identities, server_address, world_factory=world_factory)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.no_mining:
        settings.allow_mining = False
    if args.pearls_min_pos is not None:
        settings.pearls_min_pos = args.pearls_min_pos
    if args.pearls_max_pos is not None:
        settings.pearls_max_pos = args.pearls_max_pos

    identities = args.usernames or [settings.minecraft_bot_username]
    if len(set(identities)) != len(identities):
        logger.error(f"Duplicate identities given: {identities}")
        return EXITCODE_CONFLICTING_CLI_OPTS

    logger.info(f"--- Starting '{APP_NAME}' with {len(identities)} identities against {args.server_address} ---")
    try:
        return asyncio.run(_run_until_stopped(identities, args.server_address, _create_world))
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Run interrupted by user.")
        return EXITCODE_USER_REQUESTED_STOP
    except Exception as e:
        logger.critical(f"Unhandled exception in main execution: {e}", exc_info=True)
        return EXITCODE_OTHER
    finally:
        logger.info(f"--- '{APP_NAME}' Run Finished ---")


if __name__ == "__main__":
    sys.exit(main())
