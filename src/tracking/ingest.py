"""
Event ingest: turns the raw world-event stream of one connection into the
few typed messages the trajectory tracker and retrieval coordinator care about.

Everything that is not about the tracked pearl kind is discarded here. Bad
input (failed validation, non-finite coordinates) is dropped with a warning
and never raised, so a single broken packet cannot stop the tracking loop.
"""

import time
from typing import Dict, Optional, Set, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from logging_config import logger
from src.models.config import IngestConfig
from src.models.mineflayer_bridge.entities import Vec3
from src.models.mineflayer_bridge.events import WorldEvent, WorldEventType
from src.models.tracking import Despawn, PickedUp, ProjectileObservation

IngestMessage = Union[ProjectileObservation, Despawn, PickedUp]

_POSITION_EVENTS = (
    WorldEventType.ENTITY_SPAWN,
    WorldEventType.ENTITY_MOVED,
    WorldEventType.ENTITY_UPDATE,
)


class EventIngest:
    def __init__(self, config: IngestConfig, self_entity_id: Optional[int] = None, identity: str = "agent"):
        self.config = config
        self.identity = identity
        self.self_entity_id = self_entity_id
        # entity_id -> (timestamp, position) of the last raw sample, used for velocity differencing
        self._last_raw: Dict[int, Tuple[float, Vec3]] = {}
        self._owners: Dict[int, Optional[int]] = {}
        self._ignored: Set[int] = set()

    def reset(self) -> None:
        self._last_raw.clear()
        self._owners.clear()
        self._ignored.clear()

    def is_tracked(self, entity_id: int) -> bool:
        return entity_id in self._last_raw

    def on_event(self, event: Union[WorldEvent, dict], now: Optional[float] = None) -> Optional[IngestMessage]:
        if not isinstance(event, WorldEvent):
            try:
                event = WorldEvent.model_validate(event)
            except PydanticValidationError as ve:
                logger.warning(f"[{self.identity}] Dropping malformed world event: {ve}")
                return None

        if now is not None:
            timestamp = now
        elif event.received_at is not None:
            timestamp = event.received_at
        else:
            timestamp = time.monotonic()

        if event.type in _POSITION_EVENTS:
            return self._on_position_event(event, timestamp)
        if event.type == WorldEventType.ENTITY_GONE:
            return self._on_entity_gone(event)
        if event.type == WorldEventType.ITEM_COLLECTED:
            return self._on_item_collected(event)
        if event.type == WorldEventType.INVENTORY_CHANGED:
            if event.item_name == self.config.pearl_item_name and (event.delta or 0) > 0:
                return PickedUp(entity_id=None)
        return None

    def _on_position_event(self, event: WorldEvent, timestamp: float) -> Optional[ProjectileObservation]:
        entity_id = event.entity_id
        if entity_id is None or entity_id in self._ignored:
            return None

        if event.type == WorldEventType.ENTITY_SPAWN:
            if event.entity_kind != self.config.pearl_entity_name:
                return None
            if self._last_raw.pop(entity_id, None) is not None:
                logger.debug(f"[{self.identity}] Entity id {entity_id} respawned as a pearl without a removal, starting fresh")
        elif not self.is_tracked(entity_id):
            # Moves and metadata of pearls we never saw spawn still count if the kind is given.
            if event.entity_kind != self.config.pearl_entity_name:
                return None

        if event.position is None:
            # Metadata-only updates carry nothing the tracker can use.
            return None
        if not event.position.is_finite():
            logger.warning(f"[{self.identity}] Dropping pearl event for {entity_id} with non-finite position {event.position}")
            return None

        if event.type == WorldEventType.ENTITY_SPAWN and not self._within_bounds(event.position):
            logger.info(
                f"[{self.identity}] Ignoring pearl {entity_id} at {event.position} as it is outside "
                f"the configured pearl region ({self.config.pearls_min_pos} .. {self.config.pearls_max_pos})"
            )
            self._ignored.add(entity_id)
            return None

        velocity = event.velocity if event.velocity is not None and event.velocity.is_finite() else None
        previous = self._last_raw.get(entity_id)
        if velocity is None and previous is not None:
            prev_time, prev_pos = previous
            dt = timestamp - prev_time
            if dt > 0:
                velocity = Vec3(
                    x=(event.position.x - prev_pos.x) / dt,
                    y=(event.position.y - prev_pos.y) / dt,
                    z=(event.position.z - prev_pos.z) / dt,
                )

        if previous is None or timestamp > previous[0]:
            self._last_raw[entity_id] = (timestamp, event.position)
        if event.type == WorldEventType.ENTITY_SPAWN:
            self._owners[entity_id] = event.owner_id

        return ProjectileObservation(
            entity_id=entity_id,
            timestamp=timestamp,
            position=event.position,
            velocity=velocity,
            world=event.world,
            owner_id=self._owners.get(entity_id),
            spawned=event.type == WorldEventType.ENTITY_SPAWN,
        )

    def _on_entity_gone(self, event: WorldEvent) -> Optional[Despawn]:
        entity_id = event.entity_id
        if entity_id is None:
            return None
        self._ignored.discard(entity_id)
        self._owners.pop(entity_id, None)
        if self._last_raw.pop(entity_id, None) is None and event.entity_kind != self.config.pearl_entity_name:
            return None
        return Despawn(entity_id=entity_id)

    def _on_item_collected(self, event: WorldEvent) -> Optional[PickedUp]:
        if self.self_entity_id is None or event.collector_id != self.self_entity_id:
            return None
        return PickedUp(entity_id=event.entity_id)

    def _within_bounds(self, position: Vec3) -> bool:
        block = position.to_block_location()
        low = self.config.pearls_min_pos
        high = self.config.pearls_max_pos
        if low is not None and (block.x < low[0] or block.y < low[1] or block.z < low[2]):
            return False
        if high is not None and (block.x > high[0] or block.y > high[1] or block.z > high[2]):
            return False
        return True
