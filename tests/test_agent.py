"""Tests for the per-identity pearl agent and the multi-identity entry point."""

import asyncio
import os
import signal
import time

import pytest

import main
from agents.pearl_agent import PearlAgent
from fakes import FakeWorld
from src.errors import ConnectionLostError
from src.models.config import IngestConfig, RetrievalConfig, TrackerConfig
from src.models.mineflayer_bridge.entities import Vec3
from src.models.tracking import AgentMode, RetrievalOutcome, TrajectoryStatus

REST = Vec3(x=4.5, y=64.0, z=-2.5)


def _make_agent(world: FakeWorld, identity: str = "Pearl1", **tracker) -> PearlAgent:
    return PearlAgent(
        identity,
        world,
        "localhost:25565",
        IngestConfig(),
        TrackerConfig(**tracker),
        RetrievalConfig(poll_interval=0.01, sample_interval=0.01, collect_timeout=1.0),
    )


def _spawn(entity_id: int, pos: Vec3) -> dict:
    return {"type": "entity_spawn", "entity_id": entity_id, "entity_kind": "ender_pearl",
            "position": pos.model_dump(), "world": "overworld"}


def _move(entity_id: int, pos: Vec3) -> dict:
    return {"type": "entity_moved", "entity_id": entity_id, "position": pos.model_dump()}


def _land(agent: PearlAgent, entity_id: int, pos: Vec3 = REST) -> None:
    agent.handle_event(_spawn(entity_id, pos), now=0.0)
    for i in range(1, 4):
        agent.handle_event(_move(entity_id, pos), now=i * 0.25)


async def _wait_for(predicate, timeout: float = 3.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class TestHandleEvent:
    def test_pearl_events_reach_tracker(self):
        agent = _make_agent(FakeWorld())
        agent.handle_event(_spawn(7, REST), now=0.0)
        for i in range(1, 4):
            agent.handle_event(_move(7, REST), now=i * 0.25)
        record = agent.tracker.get(7)
        assert record.status == TrajectoryStatus.LANDED
        assert record.world == "overworld"
        assert [p.entity_id for p in agent.tracker.landed_unclaimed()] == [7]

        agent.handle_event({"type": "entity_gone", "entity_id": 7})
        assert agent.tracker.get(7) is None

    def test_other_entities_never_tracked(self):
        agent = _make_agent(FakeWorld())
        agent.handle_event({**_spawn(7, REST), "entity_kind": "arrow"}, now=0.0)
        agent.handle_event(_move(7, REST), now=0.5)
        assert len(agent.tracker) == 0

    def test_malformed_event_dropped(self):
        agent = _make_agent(FakeWorld())
        agent.handle_event({"type": "entity_spawn", "entity_id": {"nested": True}})
        assert len(agent.tracker) == 0

    def test_disconnect_raises(self):
        agent = _make_agent(FakeWorld())
        with pytest.raises(ConnectionLostError) as excinfo:
            agent.handle_event({"type": "disconnect", "reason": "kicked"})
        assert excinfo.value.identity == "Pearl1"
        assert excinfo.value.reason == "kicked"

    def test_login_resets_tracking(self):
        agent = _make_agent(FakeWorld())
        agent.handle_event(_spawn(7, REST), now=0.0)
        agent.handle_event({"type": "login", "entity_id": 77})
        assert len(agent.tracker) == 0
        assert not agent.ingest.is_tracked(7)
        assert agent.ingest.self_entity_id == 77

    def test_respawn_resets_tracking(self):
        agent = _make_agent(FakeWorld())
        agent.handle_event(_spawn(7, REST), now=0.0)
        agent.handle_event({"type": "respawn"})
        assert len(agent.tracker) == 0

    def test_reused_id_replaces_current_target(self):
        """A new pearl spawning under the target's id ends the retrieval and is tracked from scratch."""

        async def scenario():
            world = FakeWorld(hold=True)
            agent = _make_agent(world)
            _land(agent, 7)
            step = asyncio.create_task(agent.coordinator.step())
            await _wait_for(lambda: world.nav_calls)
            agent.handle_event(_spawn(7, Vec3(x=100, y=90, z=100)), now=2.0)
            return await step, world, agent

        outcome, world, agent = asyncio.run(scenario())
        assert outcome == RetrievalOutcome.VANISHED
        assert world.stopped == 1
        record = agent.tracker.get(7)
        assert record.status == TrajectoryStatus.IN_FLIGHT
        assert not record.claimed
        assert len(record.observations) == 1


class TestRun:
    def test_retrieves_resting_pearl_then_stops_on_disconnect(self):
        """A pearl reported once and then only sampled at rest is landed, fetched and collected."""

        async def scenario():
            world = FakeWorld(position=Vec3(x=0, y=64, z=0))
            world.entity_positions[7] = REST
            agent = _make_agent(world, settle_samples=2, settle_duration=0.0)

            def arrive(pos):
                world.queue.put_nowait({"type": "entity_gone", "entity_id": 7})
                del world.entity_positions[7]

            world.on_arrive = arrive
            runner = asyncio.create_task(agent.run())
            await _wait_for(lambda: world.queue is not None)
            world.queue.put_nowait(_spawn(7, REST))
            await _wait_for(lambda: world.nav_calls and agent.tracker.get(7) is None)
            await _wait_for(lambda: agent.coordinator.state.target is None)
            world.queue.put_nowait({"type": "disconnect", "reason": "server closed"})
            with pytest.raises(ConnectionLostError):
                await asyncio.wait_for(runner, timeout=2.0)
            return world

        world = asyncio.run(scenario())
        assert world.identity == "Pearl1"
        assert world.nav_calls == [REST]
        assert world.disconnected

    def test_stop_ends_run_cleanly(self):
        async def scenario():
            world = FakeWorld()
            agent = _make_agent(world)
            runner = asyncio.create_task(agent.run())
            await _wait_for(lambda: world.queue is not None)
            agent.stop()
            await asyncio.wait_for(runner, timeout=2.0)
            return world

        assert asyncio.run(scenario()).disconnected

    def test_cancel_while_travelling_stops_navigation_and_disconnects(self):
        async def scenario():
            world = FakeWorld(hold=True)
            agent = _make_agent(world)
            _land(agent, 7)
            runner = asyncio.create_task(agent.run())
            await _wait_for(lambda: world.nav_calls)
            runner.cancel()
            with pytest.raises(asyncio.CancelledError):
                await runner
            return world, agent

        world, agent = asyncio.run(scenario())
        assert world.nav_calls == [REST]
        assert world.stopped == 1
        assert world.disconnected
        assert agent.coordinator.state.mode == AgentMode.IDLE


class TestRunAgents:
    def test_lost_connection_fails_process(self):
        worlds = []

        def factory():
            world = FakeWorld()
            world.initial_events.append({"type": "disconnect", "reason": "kicked"})
            worlds.append(world)
            return world

        exit_code = asyncio.run(main.run_agents(["Pearl1", "Pearl2"], "localhost:25565", world_factory=factory))
        assert exit_code == main.EXITCODE_OTHER
        assert sorted(w.identity for w in worlds) == ["Pearl1", "Pearl2"]
        assert all(w.disconnected for w in worlds)

    def test_duplicate_identities_rejected(self):
        assert main.main(["-u", "Pearl1", "-u", "Pearl1"]) == main.EXITCODE_CONFLICTING_CLI_OPTS

    def test_sigterm_unwinds_agents(self, monkeypatch):
        """SIGTERM from the launcher stops the walk, disconnects and exits as a user stop."""
        worlds = []

        def factory():
            world = FakeWorld(hold=True)
            base = time.monotonic()
            world.initial_events.append({**_spawn(7, REST), "received_at": base - 2.0})
            for i in range(1, 4):
                world.initial_events.append({**_move(7, REST), "received_at": base - 2.0 + i * 0.5})
            asyncio.get_running_loop().call_later(0.3, os.kill, os.getpid(), signal.SIGTERM)
            worlds.append(world)
            return world

        monkeypatch.setattr(main, "_create_world", factory)
        assert main.main(["-u", "Pearl1"]) == main.EXITCODE_USER_REQUESTED_STOP
        [world] = worlds
        assert world.nav_calls == [REST]
        assert world.stopped == 1
        assert world.disconnected
