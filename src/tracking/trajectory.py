"""
Trajectory tracking for thrown pearls.

Each pearl entity gets one TrajectoryRecord holding a bounded window of its
most recent observations. While in flight the tracker extrapolates the ground
contact point under constant gravity (drag neglected). Once the last few
samples show the pearl at rest, the record is Landed and its landing position
is frozen to the observed rest position.

Records leave the tracker in three ways:
  - despawn of the entity (Lost if it never landed, purged either way)
  - in flight longer than the tracking timeout, or silent for that long (Lost)
  - reset on login/respawn/disconnect

Landed records stay until the entity despawns. Claiming only hides them from
the claimable set, so the despawn that follows a pickup still finds them.
Ids that timed out are ignored until the entity despawns or spawns again.
"""

import math
from typing import Dict, List, Optional, Set

from logging_config import logger
from src.models.config import TrackerConfig
from src.models.mineflayer_bridge.entities import Vec3
from src.models.tracking import (
    LandedPearl,
    ProjectileObservation,
    TrajectoryRecord,
    TrajectoryStatus,
)


def predict_ground_contact(
    position: Vec3, velocity: Vec3, gravity: float, ground_level: float
) -> Optional[Vec3]:
    """
    Solve y0 + vy*t - g*t^2/2 = ground for the positive root and advance x/z
    linearly over that time. Returns None if the pearl never reaches the ground
    (no gravity and not descending).
    """
    height = position.y - ground_level
    if height <= 0.0:
        return Vec3(x=position.x, y=ground_level, z=position.z)

    if gravity > 0.0:
        discriminant = velocity.y * velocity.y + 2.0 * gravity * height
        t = (velocity.y + math.sqrt(discriminant)) / gravity
    elif velocity.y < 0.0:
        t = height / -velocity.y
    else:
        return None

    return Vec3(
        x=position.x + velocity.x * t,
        y=ground_level,
        z=position.z + velocity.z * t,
    )


class TrajectoryTracker:
    def __init__(self, config: TrackerConfig, identity: str = "agent"):
        self.config = config
        self.identity = identity
        self._records: Dict[int, TrajectoryRecord] = {}
        self._lost: Set[int] = set()

    def __len__(self) -> int:
        return len(self._records)

    def get(self, entity_id: int) -> Optional[TrajectoryRecord]:
        return self._records.get(entity_id)

    def in_flight_ids(self) -> List[int]:
        return [r.entity_id for r in self._records.values() if r.status == TrajectoryStatus.IN_FLIGHT]

    def reset(self) -> None:
        if self._records:
            logger.info(f"[{self.identity}] Clearing {len(self._records)} tracked pearl(s)")
        self._records.clear()
        self._lost.clear()

    def observe(self, obs: ProjectileObservation) -> Optional[TrajectoryRecord]:
        if not math.isfinite(obs.timestamp) or not obs.position.is_finite():
            logger.warning(f"[{self.identity}] Rejecting non-finite observation for pearl {obs.entity_id}: {obs.position} @ {obs.timestamp}")
            return None
        if obs.velocity is not None and not obs.velocity.is_finite():
            obs = obs.model_copy(update={"velocity": None})

        if obs.spawned:
            self._lost.discard(obs.entity_id)
        elif obs.entity_id in self._lost:
            logger.debug(f"[{self.identity}] Ignoring observation of timed out pearl {obs.entity_id}")
            return None

        record = self._records.get(obs.entity_id)
        if record is not None and obs.spawned:
            logger.info(f"[{self.identity}] Pearl id {obs.entity_id} spawned again without a removal, starting a new trajectory")
            record = None
        if record is not None and record.world is not None and obs.world is not None and record.world != obs.world:
            logger.info(f"[{self.identity}] Pearl {obs.entity_id} changed world ({record.world} -> {obs.world}), starting a new trajectory")
            record = None

        if record is None:
            record = TrajectoryRecord(
                entity_id=obs.entity_id, world=obs.world, owner_id=obs.owner_id, flight_started=obs.timestamp
            )
            record.observations.append(obs)
            self._records[obs.entity_id] = record
            record.predicted_landing = self._predict(record)
            logger.debug(f"[{self.identity}] Tracking new pearl {obs.entity_id} at {obs.position}")
            return record

        if obs.timestamp <= record.last_seen:
            logger.warning(
                f"[{self.identity}] Rejecting out-of-order observation for pearl {obs.entity_id} "
                f"({obs.timestamp:.3f} <= {record.last_seen:.3f})"
            )
            return None

        record.observations.append(obs)
        if len(record.observations) > self.config.observation_window:
            del record.observations[: len(record.observations) - self.config.observation_window]
        if record.owner_id is None:
            record.owner_id = obs.owner_id

        if record.status == TrajectoryStatus.LANDED:
            if self._has_left_rest(record, obs.position) and not record.claimed:
                logger.info(f"[{self.identity}] Landed pearl {obs.entity_id} moved again, back in flight")
                record.status = TrajectoryStatus.IN_FLIGHT
                record.landed_at = None
                record.flight_started = obs.timestamp
            else:
                return record

        record.predicted_landing = self._predict(record)
        if self._has_settled(record):
            record.status = TrajectoryStatus.LANDED
            record.landed_at = obs.timestamp
            record.predicted_landing = obs.position
            logger.info(
                f"[{self.identity}] Pearl {obs.entity_id} landed at {obs.position}"
                f"{f' (thrown by entity {record.owner_id})' if record.owner_id is not None else ''}"
            )
        return record

    def despawn(self, entity_id: int) -> Optional[TrajectoryStatus]:
        self._lost.discard(entity_id)
        record = self._records.pop(entity_id, None)
        if record is None:
            return None
        if record.status == TrajectoryStatus.IN_FLIGHT:
            record.status = TrajectoryStatus.LOST
            logger.info(f"[{self.identity}] Pearl {entity_id} despawned before landing, lost")
        else:
            logger.info(f"[{self.identity}] Landed pearl {entity_id} despawned{' (claimed)' if record.claimed else ''}")
        return record.status

    def expire(self, now: float) -> List[int]:
        timeout = self.config.tracking_timeout
        expired = []
        for record in list(self._records.values()):
            if record.status != TrajectoryStatus.IN_FLIGHT:
                continue
            if now - record.last_seen > timeout:
                reason = f"not seen for {now - record.last_seen:.1f}s"
            elif now - record.flight_started > timeout:
                reason = f"still not at rest after {now - record.flight_started:.1f}s"
            else:
                continue
            del self._records[record.entity_id]
            record.status = TrajectoryStatus.LOST
            self._lost.add(record.entity_id)
            expired.append(record.entity_id)
            logger.info(f"[{self.identity}] Pearl {record.entity_id} {reason}, lost")
        return expired

    def landed_unclaimed(self) -> List[LandedPearl]:
        return [
            r.as_landed()
            for r in self._records.values()
            if r.status == TrajectoryStatus.LANDED and not r.claimed
        ]

    def claim(self, entity_id: int) -> Optional[LandedPearl]:
        record = self._records.get(entity_id)
        if record is None or record.status != TrajectoryStatus.LANDED:
            logger.warning(f"[{self.identity}] Cannot claim pearl {entity_id}: not a landed pearl")
            return None
        if record.claimed:
            logger.warning(f"[{self.identity}] Pearl {entity_id} is already claimed")
            return None
        record.claimed = True
        return record.as_landed()

    def _predict(self, record: TrajectoryRecord) -> Optional[Vec3]:
        samples = record.observations
        if len(samples) < self.config.min_prediction_samples:
            return None

        last = samples[-1]
        if len(samples) >= 2:
            prev = samples[-2]
            dt = last.timestamp - prev.timestamp
            if (
                prev.position == last.position
                and abs(last.position.y - self.config.ground_level) <= self.config.ground_tolerance
            ):
                # Unchanged at ground height: already resting there.
                return last.position
            # Differencing gives the mid-interval velocity; shift it to the latest sample.
            velocity = Vec3(
                x=(last.position.x - prev.position.x) / dt,
                y=(last.position.y - prev.position.y) / dt - self.config.gravity * dt / 2.0,
                z=(last.position.z - prev.position.z) / dt,
            )
        elif last.velocity is not None:
            velocity = last.velocity
        else:
            return None

        return predict_ground_contact(last.position, velocity, self.config.gravity, self.config.ground_level)

    def _has_settled(self, record: TrajectoryRecord) -> bool:
        m = self.config.settle_samples
        if len(record.observations) < m:
            return False
        window = record.observations[-m:]
        if window[-1].timestamp - window[0].timestamp < self.config.settle_duration:
            return False
        for a, b in zip(window, window[1:]):
            if abs(b.position.y - a.position.y) > self.config.settle_vertical_epsilon:
                return False
        return window[0].position.horizontal_distance_to(window[-1].position) <= self.config.settle_horizontal_epsilon

    def _has_left_rest(self, record: TrajectoryRecord, position: Vec3) -> bool:
        rest = record.predicted_landing
        return (
            rest.horizontal_distance_to(position) > self.config.settle_horizontal_epsilon
            or abs(rest.y - position.y) > self.config.settle_vertical_epsilon
        )
