"""
Launch many agent identities against one server.

    python spawn_n.py [--batch-size 50] PREFIX N COMMAND [ARGS...]

Identities PREFIX1 .. PREFIXN are split into batches of at most
--batch-size. Each batch becomes one process running COMMAND ARGS followed by
`-u <identity>` for every identity in the batch. All batches run at the same
time; the harness waits for every child and exits 0 only if all of them did.
There is no retry or restart. SIGINT/SIGTERM terminates the children that
are still running before the harness exits.
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional, Sequence

from config import settings
from logging_config import logger

EXITCODE_OK = 0
EXITCODE_FAILURE = 1


def identity_names(prefix: str, count: int) -> List[str]:
    return [f"{prefix}{num}" for num in range(1, count + 1)]


def partition(names: Sequence[str], batch_size: int) -> List[List[str]]:
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    return [list(names[i:i + batch_size]) for i in range(0, len(names), batch_size)]


def batch_command(command: Sequence[str], batch: Sequence[str], identity_flag: str = "-u") -> List[str]:
    args = list(command)
    for name in batch:
        args.extend([identity_flag, name])
    return args


class BatchSupervisor:
    """Starts one process per command and waits for all of them."""

    def __init__(self, commands: List[List[str]], terminate_grace: float = 5.0):
        self.commands = commands
        self.terminate_grace = terminate_grace
        self.processes: List[asyncio.subprocess.Process] = []
        self.launch_failures = 0

    async def _launch(self, index: int, command: List[str]) -> Optional[asyncio.subprocess.Process]:
        try:
            process = await asyncio.create_subprocess_exec(*command)
        except OSError as e:
            logger.error(f"Failed to launch batch {index + 1}/{len(self.commands)} ({command[0]}): {e}")
            self.launch_failures += 1
            return None
        self.processes.append(process)
        logger.info(f"Launched batch {index + 1}/{len(self.commands)} as pid {process.pid}")
        return process

    async def _run_one(self, index: int, command: List[str]) -> int:
        process = await self._launch(index, command)
        if process is None:
            return EXITCODE_FAILURE
        returncode = await process.wait()
        if returncode == 0:
            logger.info(f"Batch {index + 1}/{len(self.commands)} (pid {process.pid}) exited cleanly")
        else:
            logger.warning(f"Batch {index + 1}/{len(self.commands)} (pid {process.pid}) exited with code {returncode}")
        return returncode

    async def run(self) -> int:
        tasks = [asyncio.create_task(self._run_one(i, cmd)) for i, cmd in enumerate(self.commands)]
        try:
            returncodes = await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logger.warning("Supervisor interrupted, terminating running batches...")
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.terminate_all()
            raise
        failed = sum(1 for code in returncodes if code != 0)
        if failed:
            logger.warning(f"{failed} of {len(self.commands)} batches failed")
            return EXITCODE_FAILURE
        return EXITCODE_OK

    async def terminate_all(self) -> None:
        running = [p for p in self.processes if p.returncode is None]
        for process in running:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
        for process in running:
            try:
                await asyncio.wait_for(process.wait(), timeout=self.terminate_grace)
            except asyncio.TimeoutError:
                logger.warning(f"pid {process.pid} ignored SIGTERM, killing it")
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()


async def _supervise(supervisor: BatchSupervisor) -> int:
    loop = asyncio.get_running_loop()
    current = asyncio.current_task()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, current.cancel)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform; asyncio.run still turns SIGINT into a cancellation.
            pass
    return await supervisor.run()


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Spawn N agent identities in concurrent batches and wait for all of them")
    ap.add_argument("--batch-size", type=int, default=settings.spawn_batch_size,
                    help="Maximum identities per launched process")
    ap.add_argument("--identity-flag", default="-u",
                    help="Flag placed before every identity on the command line")
    ap.add_argument("prefix", help="Identity name prefix")
    ap.add_argument("count", type=int, help="Number of identities to spawn")
    ap.add_argument("command", nargs=argparse.REMAINDER, help="Agent command and its arguments")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    ap = build_parser()
    positional = [a for a in argv if not a.startswith("--")]
    if len(positional) < 2:
        print(f"Usage: {ap.prog} <Prefix> <N> [...]", file=sys.stderr)
        return EXITCODE_FAILURE
    args = ap.parse_args(argv)
    if not args.command:
        print(f"Usage: {ap.prog} <Prefix> <N> <command> [...]", file=sys.stderr)
        return EXITCODE_FAILURE
    if args.count < 0 or args.batch_size < 1:
        print("N must be >= 0 and --batch-size >= 1", file=sys.stderr)
        return EXITCODE_FAILURE

    batches = partition(identity_names(args.prefix, args.count), args.batch_size)
    if not batches:
        logger.warning("No identities to spawn.")
        return EXITCODE_OK
    commands = [batch_command(args.command, batch, args.identity_flag) for batch in batches]
    logger.info(f"Spawning {args.count} identities in {len(commands)} batches of up to {args.batch_size}")

    supervisor = BatchSupervisor(commands, terminate_grace=settings.terminate_grace)
    try:
        return asyncio.run(_supervise(supervisor))
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Interrupted; all batches terminated.")
        return EXITCODE_FAILURE


if __name__ == "__main__":
    sys.exit(main())
