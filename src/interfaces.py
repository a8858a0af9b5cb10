import asyncio
from typing import Optional, Protocol

from src.models.mineflayer_bridge.entities import Vec3
from src.models.tracking import NavigationOutcome


class WorldConnection(Protocol):
    """
    What an agent needs from its game connection. The production
    implementation is tools.mineflayer_bridge_tools.MineflayerBridge;
    tests use in-memory fakes.
    """

    async def connect(self, identity: str, server_address: str) -> None: ...

    def subscribe(self) -> asyncio.Queue: ...

    async def navigate_to(self, position: Vec3) -> NavigationOutcome: ...

    async def stop_navigation(self) -> None: ...

    def current_position(self) -> Optional[Vec3]: ...

    async def entity_position(self, entity_id: int) -> Optional[Vec3]: ...

    async def disconnect(self) -> None: ...
