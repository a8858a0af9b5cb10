"""Tests for the multi-instance launcher."""

import asyncio
import sys

import pytest

import spawn_n
from spawn_n import BatchSupervisor, batch_command, identity_names, partition


def _python(code: str) -> list:
    return [sys.executable, "-c", code]


class TestBatching:
    def test_120_identities_make_three_batches(self):
        names = identity_names("bot", 120)
        assert names[0] == "bot1" and names[-1] == "bot120"

        batches = partition(names, 50)
        assert [len(b) for b in batches] == [50, 50, 20]
        assert batches[1][0] == "bot51"
        assert sum(batches, []) == names

    def test_exact_multiple_has_no_empty_batch(self):
        assert [len(b) for b in partition(identity_names("bot", 100), 50)] == [50, 50]

    def test_no_identities(self):
        assert partition(identity_names("bot", 0), 50) == []

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            partition(["bot1"], 0)

    def test_batch_command_repeats_identity_flag(self):
        assert batch_command(["agent", "mc.example.net"], ["bot1", "bot2"]) == [
            "agent", "mc.example.net", "-u", "bot1", "-u", "bot2",
        ]
        assert batch_command(["agent"], ["bot1"], identity_flag="--username") == ["agent", "--username", "bot1"]


class TestBatchSupervisor:
    def test_all_batches_succeed(self):
        supervisor = BatchSupervisor([_python("pass"), _python("pass")])
        assert asyncio.run(supervisor.run()) == spawn_n.EXITCODE_OK
        assert len(supervisor.processes) == 2

    def test_one_failed_batch_fails_harness(self):
        supervisor = BatchSupervisor([_python("pass"), _python("import sys; sys.exit(3)")])
        assert asyncio.run(supervisor.run()) == spawn_n.EXITCODE_FAILURE

    def test_launch_failure_counts_as_failure(self):
        supervisor = BatchSupervisor([["/nonexistent/pearl-agent-binary"], _python("pass")])
        assert asyncio.run(supervisor.run()) == spawn_n.EXITCODE_FAILURE
        assert supervisor.launch_failures == 1
        assert len(supervisor.processes) == 1

    def test_cancellation_terminates_children(self):
        """Interrupting the harness terminates every still-running batch."""

        async def scenario():
            supervisor = BatchSupervisor([_python("import time; time.sleep(30)")] * 2, terminate_grace=5.0)
            runner = asyncio.create_task(supervisor.run())
            while len(supervisor.processes) < 2:
                await asyncio.sleep(0.01)
            runner.cancel()
            with pytest.raises(asyncio.CancelledError):
                await runner
            return supervisor

        supervisor = asyncio.run(scenario())
        assert all(p.returncode is not None for p in supervisor.processes)


class TestMain:
    def test_missing_arguments_print_usage(self, capsys):
        assert spawn_n.main([]) == spawn_n.EXITCODE_FAILURE
        assert spawn_n.main(["bot"]) == spawn_n.EXITCODE_FAILURE
        assert "Usage" in capsys.readouterr().err

    def test_missing_command(self, capsys):
        assert spawn_n.main(["bot", "3"]) == spawn_n.EXITCODE_FAILURE
        assert "Usage" in capsys.readouterr().err

    def test_invalid_batch_size(self):
        assert spawn_n.main(["--batch-size", "0", "bot", "3", "agent"]) == spawn_n.EXITCODE_FAILURE

    def test_zero_identities_exit_cleanly(self):
        assert spawn_n.main(["bot", "0", "agent"]) == spawn_n.EXITCODE_OK

    def test_children_receive_their_batch(self):
        # Each child fails if it was handed more than two identities (argv: -c plus two "-u name" pairs).
        check = "import sys; sys.exit(len(sys.argv) > 5)"
        assert spawn_n.main(["--batch-size", "2", "bot", "3", sys.executable, "-c", check]) == spawn_n.EXITCODE_OK
        assert spawn_n.main(["--batch-size", "3", "bot", "3", sys.executable, "-c", check]) == spawn_n.EXITCODE_FAILURE
