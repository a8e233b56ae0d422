"""
Patient State: the mutable physiology of one simulated patient.

Owns the current parameter values, health points (HP), the append-only
history used by the charts, and the treatment effects still in progress.
One PatientState belongs to exactly one running session.
"""

import logging
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from constants import SIMULATION_CONSTANTS, ParameterStatus, TrendDirection
from models import (
    ActiveEffect,
    HistoryPoint,
    InvalidCaseData,
    ParameterRegistry,
    SessionStateConflict,
    UnknownParameter,
    frozen_values,
)

logger = logging.getLogger("vetbalance-engine")


def clamp_hp(value: float) -> float:
    return max(SIMULATION_CONSTANTS.HP_MIN, min(value, SIMULATION_CONSTANTS.HP_MAX))


class PatientState:

    def __init__(self, registry: ParameterRegistry, values: Dict[int, float], hp: float,
                 on_hp_depleted: Optional[Callable[[], None]] = None):
        self.registry = registry
        self._values: Dict[int, float] = dict(values)
        self._hp = clamp_hp(hp)
        self.min_hp = self._hp
        self.last_hp_change = 0.0
        self._history: List[HistoryPoint] = []
        self.active_effects: List[ActiveEffect] = []
        self.on_hp_depleted = on_hp_depleted
        self._frozen = False

    @classmethod
    def initialize(cls, registry: ParameterRegistry, initial_values: Dict[int, float],
                   initial_hp: float = SIMULATION_CONSTANTS.HP_MAX,
                   on_hp_depleted: Optional[Callable[[], None]] = None) -> "PatientState":
        unknown = [pid for pid in initial_values if pid not in registry]
        if unknown:
            raise InvalidCaseData(f"Initial values reference unknown parameters: {sorted(unknown)}")
        if not (SIMULATION_CONSTANTS.HP_MIN <= initial_hp <= SIMULATION_CONSTANTS.HP_MAX):
            raise InvalidCaseData(f"Invalid initial HP: {initial_hp}")
        for pid, value in initial_values.items():
            if not isinstance(value, (int, float)):
                raise InvalidCaseData(f"Initial value for parameter {pid} must be numeric, got {type(value)}")
        return cls(registry, {pid: float(v) for pid, v in initial_values.items()},
                   initial_hp, on_hp_depleted)

    # --- Read access ---

    @property
    def values(self) -> Mapping[int, float]:
        return frozen_values(self._values)

    @property
    def hp(self) -> float:
        return self._hp

    @property
    def history(self) -> Tuple[HistoryPoint, ...]:
        return tuple(self._history)

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def value(self, parameter_id: int) -> float:
        if parameter_id not in self._values:
            raise UnknownParameter(f"Parameter {parameter_id} has no value in this patient")
        return self._values[parameter_id]

    def snapshot(self) -> Mapping[int, float]:
        return frozen_values(self._values)

    # --- Mutation (all-or-nothing) ---

    def _ensure_mutable(self):
        if self._frozen:
            raise SessionStateConflict("Patient state is frozen: the session has ended")

    def apply_delta(self, parameter_id: int, delta: float) -> float:
        self._ensure_mutable()
        if parameter_id not in self._values:
            raise UnknownParameter(f"Parameter {parameter_id} is not tracked for this patient")
        self._values[parameter_id] += delta
        return self._values[parameter_id]

    def apply_hp_delta(self, delta: float) -> float:
        self._ensure_mutable()
        before = self._hp
        self._hp = clamp_hp(self._hp + delta)
        self.last_hp_change = self._hp - before
        self.min_hp = min(self.min_hp, self._hp)
        if self._hp <= SIMULATION_CONSTANTS.HP_MIN:
            logger.info(f"Patient HP depleted (delta {delta:.2f} from {before:.2f})")
            if self.on_hp_depleted is not None:
                self.on_hp_depleted()
        return self._hp

    def record(self, tick: int, timestamp_seconds: float) -> HistoryPoint:
        self._ensure_mutable()
        point = HistoryPoint(tick=tick, timestamp_seconds=timestamp_seconds,
                             values=self.snapshot(), hp=self._hp)
        self._history.append(point)
        return point

    def freeze(self):
        self._frozen = True

    # --- Clinical interpretation ---

    def classify(self, parameter_id: int) -> ParameterStatus:
        parameter = self.registry.get(parameter_id)
        value = self.value(parameter_id)
        n_min, n_max = parameter.normal_range
        c_min, c_max = parameter.critical_range
        if n_min <= value <= n_max:
            return ParameterStatus.NORMAL
        if c_min <= value <= c_max:
            return ParameterStatus.WARNING
        return ParameterStatus.CRITICAL

    def classify_all(self) -> Dict[int, ParameterStatus]:
        return {pid: self.classify(pid) for pid in self._values}

    def trend(self, parameter_id: int) -> TrendDirection:
        """Direction of travel since the previous history point."""
        current = self.value(parameter_id)
        if not self._history:
            return TrendDirection.STABLE
        latest = self._history[-1].values.get(parameter_id, current)
        if latest != current:
            # Changed since the last snapshot (e.g. a treatment between ticks)
            previous = latest
        elif len(self._history) >= 2:
            previous = self._history[-2].values.get(parameter_id, current)
        else:
            return TrendDirection.STABLE
        if current - previous > SIMULATION_CONSTANTS.TREND_EPSILON:
            return TrendDirection.UP
        if previous - current > SIMULATION_CONSTANTS.TREND_EPSILON:
            return TrendDirection.DOWN
        return TrendDirection.STABLE

    def effects_on(self, parameter_id: int) -> List[ActiveEffect]:
        return [a for a in self.active_effects if a.parameter_id == parameter_id]
