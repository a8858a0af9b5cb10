import math

from pydantic import BaseModel


class Vec3(BaseModel):
    """Represents an X, Y, Z position or velocity in the Minecraft world (double precision)."""
    x: float
    y: float
    z: float

    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in (self.x, self.y, self.z))

    def distance_to(self, other: "Vec3") -> float:
        return math.sqrt((self.x - other.x) ** 2 + (self.y - other.y) ** 2 + (self.z - other.z) ** 2)

    def horizontal_distance_to(self, other: "Vec3") -> float:
        return math.hypot(self.x - other.x, self.z - other.z)

    def to_block_location(self) -> "BlockLocation":
        return BlockLocation(x=math.floor(self.x), y=math.floor(self.y), z=math.floor(self.z))

    def __str__(self) -> str:
        return f"({self.x:.2f}, {self.y:.2f}, {self.z:.2f})"


class BlockLocation(BaseModel):
    """Represents the X, Y, Z coordinates of a block in the Minecraft world."""
    x: int
    y: int
    z: int
