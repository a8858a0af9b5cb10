from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from pydantic import field_validator
from typing import Annotated, Optional, Tuple, Any
import ast

from src.models.config import IngestConfig, RetrievalConfig, TrackerConfig


class Settings(BaseSettings):
    minecraft_host: str = "localhost"
    minecraft_port: int = 25565
    minecraft_bot_username: str = "PearlRetriever"
    minecraft_auth: str = "offline"
    minecraft_version: str = "1.21"
    allow_mining: bool = True

    pearl_entity_name: str = "ender_pearl"
    pearl_item_name: str = "ender_pearl"
    pearls_min_pos: Annotated[Optional[Tuple[int, int, int]], NoDecode] = None
    pearls_max_pos: Annotated[Optional[Tuple[int, int, int]], NoDecode] = None

    gravity: float = 12.0
    ground_level: float = 0.0
    ground_tolerance: float = 0.1
    tracking_timeout: float = 5.0
    observation_window: int = 8
    min_prediction_samples: int = 2
    settle_samples: int = 3
    settle_duration: float = 0.5
    settle_vertical_epsilon: float = 0.01
    settle_horizontal_epsilon: float = 0.05

    sample_interval: float = 0.25
    poll_interval: float = 0.5
    collect_timeout: float = 5.0
    navigation_range: float = 1.0
    navigation_timeout_ms: int = 600000
    connect_timeout: float = 30.0

    spawn_batch_size: int = 50
    terminate_grace: float = 5.0
    log_level: str = "INFO"

    @field_validator("pearls_min_pos", "pearls_max_pos", mode="before")
    @classmethod
    def parse_block_pos(cls, value: Any) -> Optional[Tuple[int, int, int]]:
        return parse_block_pos(value)

    def ingest_config(self) -> IngestConfig:
        return IngestConfig(
            pearl_entity_name=self.pearl_entity_name,
            pearl_item_name=self.pearl_item_name,
            pearls_min_pos=self.pearls_min_pos,
            pearls_max_pos=self.pearls_max_pos,
        )

    def tracker_config(self) -> TrackerConfig:
        return TrackerConfig(
            gravity=self.gravity,
            ground_level=self.ground_level,
            ground_tolerance=self.ground_tolerance,
            tracking_timeout=self.tracking_timeout,
            observation_window=self.observation_window,
            min_prediction_samples=self.min_prediction_samples,
            settle_samples=self.settle_samples,
            settle_duration=self.settle_duration,
            settle_vertical_epsilon=self.settle_vertical_epsilon,
            settle_horizontal_epsilon=self.settle_horizontal_epsilon,
        )

    def retrieval_config(self) -> RetrievalConfig:
        return RetrievalConfig(
            poll_interval=self.poll_interval,
            collect_timeout=self.collect_timeout,
            sample_interval=self.sample_interval,
        )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


def parse_block_pos(value: Any) -> Optional[Tuple[int, int, int]]:
    """Accepts '(x, y, z)', 'x,y,z' or a 3-tuple of ints. Empty strings mean unset."""
    if isinstance(value, str):
        if not value.strip():
            return None
        text = value.strip()
        if not text.startswith("("):
            text = f"({text})"
        try:
            parsed_value = ast.literal_eval(text)
            if isinstance(parsed_value, tuple) and len(parsed_value) == 3 and all(isinstance(i, int) for i in parsed_value):
                return parsed_value
            else:
                raise ValueError("String must be a tuple of three integers e.g., '(10, 20, 30)'")
        except (SyntaxError, ValueError) as e:
            raise ValueError(f"Invalid block position: {value}. Expected format like '(x, y, z)'. Error: {e}")
    if isinstance(value, list):
        return tuple(value)
    return value


settings = Settings()
