"""
Wind state tracking FSM.

Implements hysteresis: a run of matching observations is needed before the
tracker reaches HIGH, and a run of non-matching ones before it resets to
LOW. CANDIDATE and COOLDOWN are the transient states that count those runs.
"""
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Dict

from telewind.wind.parser import Observation


class WindStateKind(str, Enum):
    LOW = "low"
    CANDIDATE = "candidate"
    HIGH = "high"
    COOLDOWN = "cooldown"


@dataclass(frozen=True)
class WindState:
    kind: WindStateKind
    steps: int = 0

    def __str__(self) -> str:
        if self.kind in (WindStateKind.CANDIDATE, WindStateKind.COOLDOWN):
            return f"{self.kind.value.capitalize()}({self.steps})"
        return self.kind.value.capitalize()


LOW = WindState(WindStateKind.LOW)
HIGH = WindState(WindStateKind.HIGH)


def candidate(steps: int) -> WindState:
    return WindState(WindStateKind.CANDIDATE, steps)


def cooldown(steps: int) -> WindState:
    return WindState(WindStateKind.COOLDOWN, steps)


@dataclass(frozen=True)
class Sector:
    """
    Circle sector between two angles given in clockwise order.

    ``Sector(270, 90)`` is the upper half circle, ``Sector(90, 270)`` the lower.
    """

    start: int
    end: int

    PRESETS: ClassVar[Dict[str, "Sector"]] = {}

    def contains(self, angle: int) -> bool:
        angle = angle % 360
        if self.start <= self.end:
            return self.start <= angle <= self.end
        return angle >= self.start or angle <= self.end

    @classmethod
    def named(cls, name: str) -> "Sector":
        try:
            return cls.PRESETS[name.upper()]
        except KeyError:
            raise ValueError(f"unknown wind sector {name!r}; expected one of {sorted(cls.PRESETS)}") from None


Sector.NORTH_180 = Sector(270, 90)
Sector.SOUTH_180 = Sector(90, 270)
Sector.EAST_180 = Sector(0, 180)
Sector.WEST_180 = Sector(180, 0)
Sector.NORTH_90 = Sector(315, 45)
Sector.EAST_90 = Sector(45, 135)
Sector.SOUTH_90 = Sector(135, 225)
Sector.WEST_90 = Sector(225, 315)

Sector.PRESETS.update(
    {
        name: getattr(Sector, name)
        for name in (
            "NORTH_180", "SOUTH_180", "EAST_180", "WEST_180",
            "NORTH_90", "EAST_90", "SOUTH_90", "WEST_90",
        )
    }
)


class WindTracker:
    def __init__(
        self,
        sector: Sector,
        candidate_steps: int,
        cooldown_steps: int,
        speed_threshold: float,
        state: WindState = LOW,
    ):
        self.sector = sector
        # Steps required to reach HIGH from LOW
        self.candidate_steps = candidate_steps
        # Steps required to reset from HIGH to LOW
        self.cooldown_steps = cooldown_steps
        self.speed_threshold = speed_threshold
        self.state = state

    def step(self, observation: Observation) -> bool:
        """Advance the FSM. Returns True when the wind just reached HIGH."""
        before = self.state
        direction_match = self.sector.contains(observation.direction)
        speed_match = observation.avg_speed >= self.speed_threshold

        kind = before.kind
        if speed_match and direction_match:
            if kind == WindStateKind.HIGH:
                new_state = HIGH
            elif kind == WindStateKind.LOW:
                new_state = HIGH if self.candidate_steps == 0 else candidate(1)
            elif kind == WindStateKind.CANDIDATE:
                if before.steps >= self.candidate_steps:
                    new_state = HIGH
                else:
                    new_state = candidate(before.steps + 1)
            else:
                new_state = HIGH
        else:
            if kind in (WindStateKind.LOW, WindStateKind.CANDIDATE):
                new_state = LOW
            elif kind == WindStateKind.HIGH:
                new_state = LOW if self.cooldown_steps == 0 else cooldown(1)
            elif before.steps >= self.cooldown_steps:
                new_state = LOW
            else:
                new_state = cooldown(before.steps + 1)

        self.state = new_state
        return new_state.kind == WindStateKind.HIGH and kind in (
            WindStateKind.LOW,
            WindStateKind.CANDIDATE,
        )
