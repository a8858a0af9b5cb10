import asyncio
import time
from typing import Optional, Union

from pydantic import ValidationError as PydanticValidationError

from agents.coordinator_agent import RetrievalCoordinator
from logging_config import logger
from src.errors import ConnectionLostError
from src.interfaces import WorldConnection
from src.models.config import IngestConfig, RetrievalConfig, TrackerConfig
from src.models.mineflayer_bridge.events import WorldEvent, WorldEventType
from src.models.tracking import Despawn, PickedUp, ProjectileObservation
from src.tracking.ingest import EventIngest
from src.tracking.trajectory import TrajectoryTracker


class PearlAgent:
    """
    One pearl retrieval agent bound to one identity and one world connection.

    Three tasks share the event loop:
      - the event processor drains the connection's queue into ingest,
        tracker and coordinator
      - the sampler polls positions of in-flight pearls (mineflayer only
        reports moves, so a resting pearl would otherwise go silent) and
        expires stale trajectories
      - the retrieval coordinator polls for landed pearls and fetches them

    A disconnect event ends the agent with ConnectionLostError.
    """

    def __init__(
        self,
        identity: str,
        world: WorldConnection,
        server_address: str,
        ingest_config: IngestConfig,
        tracker_config: TrackerConfig,
        retrieval_config: RetrievalConfig,
    ):
        self.identity = identity
        self.world = world
        self.server_address = server_address
        self.retrieval_config = retrieval_config
        self.ingest = EventIngest(ingest_config, identity=identity)
        self.tracker = TrajectoryTracker(tracker_config, identity=identity)
        self.coordinator = RetrievalCoordinator(self.tracker, world, retrieval_config, identity)
        self._stop = asyncio.Event()
        self._queue: Optional[asyncio.Queue] = None

    def handle_event(self, event: Union[WorldEvent, dict], now: Optional[float] = None) -> None:
        if not isinstance(event, WorldEvent):
            try:
                event = WorldEvent.model_validate(event)
            except PydanticValidationError as ve:
                logger.warning(f"[{self.identity}] Dropping malformed world event: {ve}")
                return

        if event.type == WorldEventType.DISCONNECT:
            raise ConnectionLostError(self.identity, event.reason or "disconnected")
        if event.type in (WorldEventType.LOGIN, WorldEventType.RESPAWN):
            if event.type == WorldEventType.LOGIN:
                self.ingest.self_entity_id = event.entity_id
            logger.info(f"[{self.identity}] {event.type.value} event, clearing tracking state")
            self.ingest.reset()
            self.tracker.reset()
            return

        message = self.ingest.on_event(event, now=now)
        if isinstance(message, ProjectileObservation):
            if message.spawned and self.tracker.get(message.entity_id) is not None:
                # Removal of the previous entity with this id was never seen.
                self._despawn(message.entity_id)
            self.tracker.observe(message)
        elif isinstance(message, Despawn):
            self._despawn(message.entity_id)
        elif isinstance(message, PickedUp):
            self.coordinator.on_pickup(message.entity_id)

    def _despawn(self, entity_id: int) -> None:
        self.tracker.despawn(entity_id)
        self.coordinator.on_despawn(entity_id)

    async def process_events(self, queue: asyncio.Queue) -> None:
        """Consumes world events until a None stop signal arrives or the connection drops."""
        logger.info(f"[{self.identity}] World event processor task started.")
        while True:
            event = await queue.get()
            try:
                if event is None:
                    logger.info(f"[{self.identity}] World event processor received stop signal.")
                    break
                self.handle_event(event)
            except ConnectionLostError:
                raise
            except Exception as e:
                logger.error(f"[{self.identity}] Error processing world event {event}: {e}", exc_info=True)
            finally:
                queue.task_done()

    async def sample_in_flight(self) -> None:
        interval = self.retrieval_config.sample_interval
        while not self._stop.is_set():
            for entity_id in self.tracker.in_flight_ids():
                record = self.tracker.get(entity_id)
                position = await self.world.entity_position(entity_id)
                if record is None or position is None:
                    continue
                self.handle_event(
                    WorldEvent(
                        type=WorldEventType.ENTITY_MOVED,
                        entity_id=entity_id,
                        position=position,
                        world=record.world,
                        received_at=time.monotonic(),
                    )
                )
            self.tracker.expire(time.monotonic())
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        self._stop.set()
        if self._queue is not None:
            self._queue.put_nowait(None)

    async def run(self) -> None:
        logger.info(f"[{self.identity}] Connecting to {self.server_address}...")
        await self.world.connect(self.identity, self.server_address)
        self._queue = self.world.subscribe()

        tasks = [
            asyncio.create_task(self.process_events(self._queue)),
            asyncio.create_task(self.sample_in_flight()),
            asyncio.create_task(self.coordinator.run(self._stop)),
        ]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    raise task.exception()
        finally:
            self._stop.set()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            try:
                await self.world.disconnect()
            except Exception as e:
                logger.error(f"[{self.identity}] Error while disconnecting: {e}")
            logger.info(f"[{self.identity}] Agent stopped.")
