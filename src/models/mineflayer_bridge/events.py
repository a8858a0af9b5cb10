from enum import Enum
from typing import Optional

from pydantic import BaseModel

from .entities import Vec3


class WorldEventType(str, Enum):
    ENTITY_SPAWN = "entity_spawn"
    ENTITY_MOVED = "entity_moved"
    ENTITY_GONE = "entity_gone"
    ENTITY_UPDATE = "entity_update"
    ITEM_COLLECTED = "item_collected"
    INVENTORY_CHANGED = "inventory_changed"
    LOGIN = "login"
    RESPAWN = "respawn"
    DISCONNECT = "disconnect"


class WorldEvent(BaseModel):
    """
    A single event pushed by the Mineflayer bridge into an agent's event queue.

    Entity events carry `entity_id` and, where mineflayer knows it, the entity
    kind (`entity_kind`, e.g. "ender_pearl"). Velocities are in blocks per
    second. `collector_id` is only set for `item_collected`, `item_name` and
    `delta` only for `inventory_changed`, and `reason` for `disconnect`.
    `received_at` is the `time.monotonic()` at which the bridge queued the event.
    """
    type: WorldEventType
    entity_id: Optional[int] = None
    entity_kind: Optional[str] = None
    position: Optional[Vec3] = None
    velocity: Optional[Vec3] = None
    world: Optional[str] = None
    owner_id: Optional[int] = None
    collector_id: Optional[int] = None
    item_name: Optional[str] = None
    delta: Optional[int] = None
    reason: Optional[str] = None
    received_at: Optional[float] = None
