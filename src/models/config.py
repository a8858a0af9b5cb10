from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class IngestConfig(BaseModel):
    """Immutable settings for the event ingest filter."""
    model_config = ConfigDict(frozen=True)

    pearl_entity_name: str = "ender_pearl"
    pearl_item_name: str = "ender_pearl"
    pearls_min_pos: Optional[Tuple[int, int, int]] = None
    pearls_max_pos: Optional[Tuple[int, int, int]] = None


class TrackerConfig(BaseModel):
    """Immutable physics and settle parameters for the trajectory tracker (blocks, seconds)."""
    model_config = ConfigDict(frozen=True)

    gravity: float = Field(default=12.0, ge=0.0)
    ground_level: float = 0.0
    ground_tolerance: float = Field(default=0.1, ge=0.0)
    tracking_timeout: float = Field(default=5.0, gt=0.0)
    observation_window: int = Field(default=8, ge=2)
    min_prediction_samples: int = Field(default=2, ge=1)
    settle_samples: int = Field(default=3, ge=2)
    settle_duration: float = Field(default=0.5, ge=0.0)
    settle_vertical_epsilon: float = Field(default=0.01, ge=0.0)
    settle_horizontal_epsilon: float = Field(default=0.05, ge=0.0)

    @model_validator(mode="after")
    def check_window(self) -> "TrackerConfig":
        if self.settle_samples > self.observation_window:
            raise ValueError(
                f"settle_samples ({self.settle_samples}) cannot exceed observation_window ({self.observation_window})"
            )
        if self.min_prediction_samples > self.observation_window:
            raise ValueError(
                f"min_prediction_samples ({self.min_prediction_samples}) cannot exceed observation_window ({self.observation_window})"
            )
        return self


class RetrievalConfig(BaseModel):
    """Immutable timing parameters for the retrieval coordinator (seconds)."""
    model_config = ConfigDict(frozen=True)

    poll_interval: float = Field(default=0.5, gt=0.0)
    collect_timeout: float = Field(default=5.0, gt=0.0)
    sample_interval: float = Field(default=0.25, gt=0.0)
