import asyncio
import time
from typing import Any, Dict, Optional, Tuple

from javascript import require, On
from javascript.proxy import Proxy

from config import settings
from logging_config import logger
from src.errors import ConnectionLostError, NavigationBusyError
from src.models.mineflayer_bridge.entities import Vec3
from src.models.mineflayer_bridge.events import WorldEventType
from src.models.mineflayer_bridge.responses import BotInitializationResponse, NavigationResponse
from src.models.tracking import NavigationOutcome

mineflayer = require('mineflayer')
pathfinder = require('mineflayer-pathfinder')

# Mineflayer reports entity velocities in blocks per tick.
TICKS_PER_SECOND = 20.0

# mineflayer-pathfinder error names that mean "there is no way there".
_UNREACHABLE_ERRORS = ("NoPath", "No path", "Timeout", "Took to long")


def _vec3_from_proxy(proxy: Optional[Proxy], scale: float = 1.0) -> Optional[Vec3]:
    """
    Helper to convert a JavaScript Vec3 proxy to a Vec3 model.
    Returns None if the proxy is missing or does not look like a vector.
    """
    if proxy is None:
        return None
    try:
        return Vec3(x=float(proxy.x) * scale, y=float(proxy.y) * scale, z=float(proxy.z) * scale)
    except Exception as e:
        logger.debug(f"Could not read vector from JS proxy: {e}")
        return None


def split_server_address(server_address: str) -> Tuple[str, int]:
    host, _, port = server_address.rpartition(":")
    if not host:
        return server_address, settings.minecraft_port
    return host, int(port)


def classify_navigation_error(message: str) -> NavigationOutcome:
    if any(name in message for name in _UNREACHABLE_ERRORS):
        return NavigationOutcome.UNREACHABLE
    return NavigationOutcome.ABORTED


class MineflayerBridge:
    """
    World connection backed by a mineflayer bot with the pathfinder plugin,
    driven through JSPyBridge.

    JS event handlers run on the bridge's thread; they only build plain dicts
    and hand them to the asyncio loop with call_soon_threadsafe. Blocking JS
    calls (pathfinding, entity lookups, quitting) run in worker threads so the
    event loop keeps processing world events.
    """

    def __init__(self):
        self.bot: Optional[Any] = None
        self.identity: Optional[str] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._navigating = False
        self._spawned_once = False

    async def connect(self, identity: str, server_address: str) -> None:
        self.identity = identity
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        spawned = self._loop.create_future()

        host, port = split_server_address(server_address)
        bot_options = {
            "host": host,
            "port": port,
            "username": identity,
            "auth": settings.minecraft_auth,
            "version": settings.minecraft_version,
        }
        logger.info(f"[{identity}] Initializing Mineflayer bot with options: {bot_options}")

        try:
            self.bot = await asyncio.to_thread(mineflayer.createBot, bot_options)
            self.bot.loadPlugin(pathfinder.pathfinder)
        except Exception as e:
            logger.error(f"[{identity}] Error creating Mineflayer bot: {e}")
            raise ConnectionLostError(identity, f"could not create bot: {e}") from e

        self._register_handlers(spawned)

        try:
            await asyncio.wait_for(spawned, timeout=settings.connect_timeout)
        except asyncio.TimeoutError:
            raise ConnectionLostError(identity, f"no spawn within {settings.connect_timeout}s")

        movements = pathfinder.Movements(self.bot)
        movements.canDig = settings.allow_mining
        self.bot.pathfinder.setMovements(movements)

        init_result = BotInitializationResponse(
            status="success", username=identity, position=self.current_position()
        )
        logger.info(f"[{identity}] Mineflayer bot initialization reported: {init_result.model_dump(exclude_none=True)}")

    def subscribe(self) -> asyncio.Queue:
        assert self._queue is not None, "Mineflayer bridge not connected."
        return self._queue

    def _emit(self, event: Dict[str, Any]) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        event["received_at"] = time.monotonic()
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    def _entity_event(self, event_type: WorldEventType, entity: Proxy) -> Optional[Dict[str, Any]]:
        if entity is None or entity.name != settings.pearl_entity_name:
            return None
        position = _vec3_from_proxy(entity.position)
        velocity = _vec3_from_proxy(entity.velocity, scale=TICKS_PER_SECOND)
        event = {
            "type": event_type.value,
            "entity_id": int(entity.id),
            "entity_kind": entity.name,
            "position": position.model_dump() if position else None,
            "velocity": velocity.model_dump() if velocity else None,
            "world": self._dimension(),
        }
        owner = entity.objectData
        if isinstance(owner, (int, float)):
            event["owner_id"] = int(owner)
        return event

    def _dimension(self) -> Optional[str]:
        try:
            return str(self.bot.game.dimension)
        except Exception:
            return None

    def _register_handlers(self, spawned: asyncio.Future) -> None:
        bot = self.bot
        loop = self._loop
        identity = self.identity

        def resolve_spawn():
            if not spawned.done():
                spawned.set_result(True)

        def fail_spawn(reason: str):
            if not spawned.done():
                spawned.set_exception(ConnectionLostError(identity, reason))

        @On(bot, 'spawn')
        def on_spawn(this):
            event_type = WorldEventType.RESPAWN if self._spawned_once else WorldEventType.LOGIN
            self._spawned_once = True
            self._emit({"type": event_type.value, "entity_id": int(bot.entity.id)})
            loop.call_soon_threadsafe(resolve_spawn)

        @On(bot, 'respawn')
        def on_respawn(this):
            self._emit({"type": WorldEventType.RESPAWN.value})

        @On(bot, 'entitySpawn')
        def on_entity_spawn(this, entity):
            event = self._entity_event(WorldEventType.ENTITY_SPAWN, entity)
            if event:
                self._emit(event)

        @On(bot, 'entityMoved')
        def on_entity_moved(this, entity):
            event = self._entity_event(WorldEventType.ENTITY_MOVED, entity)
            if event:
                self._emit(event)

        @On(bot, 'entityUpdate')
        def on_entity_update(this, entity):
            event = self._entity_event(WorldEventType.ENTITY_UPDATE, entity)
            if event:
                self._emit(event)

        @On(bot, 'entityGone')
        def on_entity_gone(this, entity):
            if entity is None or entity.name != settings.pearl_entity_name:
                return
            self._emit({
                "type": WorldEventType.ENTITY_GONE.value,
                "entity_id": int(entity.id),
                "entity_kind": entity.name,
            })

        @On(bot, 'playerCollect')
        def on_player_collect(this, collector, collected):
            if collector is None or collected is None:
                return
            self._emit({
                "type": WorldEventType.ITEM_COLLECTED.value,
                "entity_id": int(collected.id),
                "collector_id": int(collector.id),
            })

        @On(bot.inventory, 'updateSlot')
        def on_update_slot(this, slot, old_item, new_item):
            if new_item is None or new_item.name != settings.pearl_item_name:
                return
            old_count = old_item.count if old_item is not None and old_item.name == new_item.name else 0
            self._emit({
                "type": WorldEventType.INVENTORY_CHANGED.value,
                "item_name": new_item.name,
                "delta": int(new_item.count) - int(old_count),
            })

        @On(bot, 'kicked')
        def on_kicked(this, reason, logged_in):
            logger.warning(f"[{identity}] Kicked from server: {reason}")
            loop.call_soon_threadsafe(fail_spawn, f"kicked: {reason}")

        @On(bot, 'error')
        def on_error(this, err):
            logger.error(f"[{identity}] Mineflayer error: {err}")
            loop.call_soon_threadsafe(fail_spawn, f"error: {err}")

        @On(bot, 'end')
        def on_end(this, reason):
            logger.warning(f"[{identity}] Connection ended: {reason}")
            self._emit({"type": WorldEventType.DISCONNECT.value, "reason": str(reason)})
            loop.call_soon_threadsafe(fail_spawn, f"connection ended: {reason}")

    async def navigate_to(self, position: Vec3) -> NavigationOutcome:
        assert self.bot is not None, "Mineflayer bridge not connected."
        if self._navigating:
            raise NavigationBusyError(f"{self.identity} is already navigating")
        self._navigating = True
        try:
            return await asyncio.to_thread(self._goto_blocking, position)
        finally:
            self._navigating = False

    def _goto_blocking(self, position: Vec3) -> NavigationOutcome:
        goal = pathfinder.goals.GoalNear(position.x, position.y, position.z, settings.navigation_range)
        logger.info(f"[{self.identity}] Calling JS pathfinder.goto with bridge timeout {settings.navigation_timeout_ms}ms to {position}")
        try:
            self.bot.pathfinder.goto(goal, timeout=settings.navigation_timeout_ms)
        except Exception as e:
            response = NavigationResponse(status="error", message=str(e), target=position)
            outcome = classify_navigation_error(response.message)
            logger.info(f"[{self.identity}] Navigation ended without arrival ({outcome.value}): {response.message}")
            return outcome
        response = NavigationResponse(status="success", target=position)
        logger.debug(f"[{self.identity}] Navigation finished: {response.model_dump(exclude_none=True)}")
        return NavigationOutcome.ARRIVED

    async def stop_navigation(self) -> None:
        if self.bot is None:
            return
        try:
            await asyncio.to_thread(self.bot.pathfinder.stop)
        except Exception as e:
            logger.error(f"[{self.identity}] Error stopping pathfinder: {e}")

    def current_position(self) -> Optional[Vec3]:
        if self.bot is None or self.bot.entity is None:
            return None
        return _vec3_from_proxy(self.bot.entity.position)

    async def entity_position(self, entity_id: int) -> Optional[Vec3]:
        return await asyncio.to_thread(self._entity_position_blocking, entity_id)

    def _entity_position_blocking(self, entity_id: int) -> Optional[Vec3]:
        entity = self.bot.entities[entity_id]
        if entity is None:
            return None
        return _vec3_from_proxy(entity.position)

    async def disconnect(self) -> None:
        if self.bot is None:
            return
        logger.info(f"[{self.identity}] Quitting Mineflayer bot.")
        try:
            await asyncio.to_thread(self.bot.quit)
        finally:
            self.bot = None


__all__ = [
    "MineflayerBridge",
    "classify_navigation_error",
    "split_server_address",
]
