import asyncio
from typing import Iterable, Optional, Set

from logging_config import logger
from src.errors import ConnectionLostError
from src.interfaces import WorldConnection
from src.models.config import RetrievalConfig
from src.models.mineflayer_bridge.entities import Vec3
from src.models.tracking import (
    AgentMode,
    AgentState,
    LandedPearl,
    NavigationOutcome,
    RetrievalOutcome,
)
from src.tracking.trajectory import TrajectoryTracker


class RetrievalCoordinator:
    """
    Decides which landed pearl to fetch and walks the agent through
    Idle -> Travelling -> Collecting -> Idle.

    A pearl is claimed in the tracker before any movement starts, and the
    whole cycle runs under one lock, so a single agent never has two
    retrievals (or two navigations) in progress. Targets whose navigation
    failed are remembered and never selected again; their claim is not
    given back.
    """

    def __init__(
        self,
        tracker: TrajectoryTracker,
        world: WorldConnection,
        config: RetrievalConfig,
        identity: str,
    ):
        self.tracker = tracker
        self.world = world
        self.config = config
        self.state = AgentState(identity=identity)
        self._lock = asyncio.Lock()
        self._abandoned: Set[int] = set()
        self._target_gone = asyncio.Event()
        self._picked_up = False

    @property
    def identity(self) -> str:
        return self.state.identity

    def select_target(self, candidates: Iterable[LandedPearl], origin: Optional[Vec3]) -> Optional[LandedPearl]:
        """Nearest eligible pearl by straight-line distance, oldest first if our position is unknown."""
        eligible = [c for c in candidates if c.entity_id not in self._abandoned]
        if not eligible:
            return None
        if origin is None:
            return min(eligible, key=lambda c: c.landed_at)
        return min(eligible, key=lambda c: origin.distance_to(c.position))

    def on_despawn(self, entity_id: int) -> None:
        target = self.state.target
        if target is not None and target.entity_id == entity_id:
            self._target_gone.set()
        # A despawned id may be handed out again by the server for a new pearl.
        self._abandoned.discard(entity_id)

    def on_pickup(self, entity_id: Optional[int]) -> None:
        target = self.state.target
        if target is None:
            return
        # An anonymous inventory gain is only attributed to the target once we stand at it.
        if entity_id == target.entity_id or (entity_id is None and self.state.mode == AgentMode.COLLECTING):
            self._picked_up = True
            self._target_gone.set()

    async def step(self) -> Optional[RetrievalOutcome]:
        """One Idle poll. Runs a full retrieval cycle if a pearl could be claimed."""
        async with self._lock:
            if self.state.mode != AgentMode.IDLE:
                return None
            self.state.position = self.world.current_position()
            candidate = self.select_target(self.tracker.landed_unclaimed(), self.state.position)
            if candidate is None:
                return None
            target = self.tracker.claim(candidate.entity_id)
            if target is None:
                return None
            return await self._retrieve(target)

    async def run(self, stop: asyncio.Event) -> None:
        logger.info(f"[{self.identity}] Retrieval coordinator started.")
        while not stop.is_set():
            await self.step()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.config.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info(f"[{self.identity}] Retrieval coordinator stopped.")

    async def _retrieve(self, target: LandedPearl) -> RetrievalOutcome:
        self._target_gone.clear()
        self._picked_up = False
        self.state.target = target
        self.state.mode = AgentMode.TRAVELLING
        logger.info(f"[{self.identity}] Travelling to pearl {target.entity_id} at {target.position}")

        try:
            outcome = await self._travel(target)
            if outcome is None:
                self.state.mode = AgentMode.COLLECTING
                logger.info(f"[{self.identity}] Arrived at pearl {target.entity_id}, collecting")
                outcome = await self._collect()
        finally:
            self.state.mode = AgentMode.IDLE
            self.state.target = None

        if outcome in (RetrievalOutcome.UNREACHABLE, RetrievalOutcome.ABORTED):
            self._abandoned.add(target.entity_id)
            logger.warning(f"[{self.identity}] Abandoning pearl {target.entity_id}: navigation {outcome.value}")
        elif outcome == RetrievalOutcome.TIMED_OUT:
            logger.warning(f"[{self.identity}] No pickup of pearl {target.entity_id} within {self.config.collect_timeout}s")
        else:
            logger.info(f"[{self.identity}] Retrieval of pearl {target.entity_id} finished: {outcome.value}")
        return outcome

    async def _travel(self, target: LandedPearl) -> Optional[RetrievalOutcome]:
        """Returns None on arrival, otherwise the outcome that ends the cycle early."""
        navigation = asyncio.create_task(self.world.navigate_to(target.position))
        gone = asyncio.create_task(self._target_gone.wait())
        try:
            done, _ = await asyncio.wait({navigation, gone}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await self._cancel_navigation(navigation)
            raise
        finally:
            gone.cancel()

        if navigation not in done:
            await self._cancel_navigation(navigation)
            if self._picked_up:
                return RetrievalOutcome.COLLECTED
            logger.info(f"[{self.identity}] Pearl {target.entity_id} vanished while travelling")
            return RetrievalOutcome.VANISHED

        try:
            nav_outcome = navigation.result()
        except ConnectionLostError:
            raise
        except Exception as e:
            logger.error(f"[{self.identity}] Navigation to {target.position} failed: {e}", exc_info=True)
            return RetrievalOutcome.ABORTED

        if nav_outcome == NavigationOutcome.ARRIVED:
            return None
        if nav_outcome == NavigationOutcome.UNREACHABLE:
            return RetrievalOutcome.UNREACHABLE
        return RetrievalOutcome.ABORTED

    async def _collect(self) -> RetrievalOutcome:
        if self._target_gone.is_set():
            return RetrievalOutcome.COLLECTED
        try:
            await asyncio.wait_for(self._target_gone.wait(), timeout=self.config.collect_timeout)
        except asyncio.TimeoutError:
            return RetrievalOutcome.TIMED_OUT
        return RetrievalOutcome.COLLECTED

    async def _cancel_navigation(self, navigation: asyncio.Task) -> None:
        if navigation.done():
            return
        await self.world.stop_navigation()
        navigation.cancel()
        await asyncio.gather(navigation, return_exceptions=True)
