from typing import Optional

from pydantic import BaseModel

from .entities import Vec3


class BaseResponse(BaseModel):
    """Base response model for Mineflayer bridge actions."""
    status: str
    message: Optional[str] = None


class BotInitializationResponse(BaseResponse):
    """Response model for bot initialization."""
    username: Optional[str] = None
    position: Optional[Vec3] = None


class NavigationResponse(BaseResponse):
    """Response model for navigation actions."""
    target: Optional[Vec3] = None
