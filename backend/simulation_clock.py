# simulation_clock.py
"""
The tick engine. One tick = one fixed interval of simulated time:

  1. Disease drift pulls each parameter toward its case-defined target.
  2. Active treatment effects add their per-tick delta (summed with drift).
  3. Parameters outside their critical range cost HP.
  4. A snapshot is appended to the history.

The clock reports terminal signals (HP depletion); the SessionStateMachine
decides the final status.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List

from constants import ParameterStatus, SimulationConfig
from models import DriftRule, HistoryPoint
from patient_state import PatientState

logger = logging.getLogger("vetbalance-engine")


@dataclass
class TickResult:
    point: HistoryPoint
    hp_depleted: bool
    critical_parameters: List[int] = field(default_factory=list)
    expired_effects: int = 0


class SimulationClock:

    def __init__(self, patient: PatientState, drift_rules: List[DriftRule],
                 config: SimulationConfig = None):
        self.patient = patient
        self.drift_rules = list(drift_rules)
        self.config = config or SimulationConfig()

    def _drift_deltas(self) -> Dict[int, float]:
        deltas: Dict[int, float] = {}
        for rule in self.drift_rules:
            effects = self.patient.effects_on(rule.parameter_id)
            if any(a.effect.suppresses_drift for a in effects):
                continue
            gap = rule.target - self.patient.value(rule.parameter_id)
            # Approach the target without overshooting it
            step = max(-rule.rate_per_tick, min(gap, rule.rate_per_tick))
            if step:
                deltas[rule.parameter_id] = deltas.get(rule.parameter_id, 0.0) + step
        return deltas

    def _effect_deltas(self):
        deltas: Dict[int, float] = {}
        hp_delta = 0.0
        for active in self.patient.active_effects:
            if active.remaining_ticks <= 0:
                continue
            effect = active.effect
            deltas[effect.parameter_id] = deltas.get(effect.parameter_id, 0.0) + effect.delta_per_tick
            hp_delta += effect.hp_delta / effect.duration_ticks
        return deltas, hp_delta

    def tick(self, tick_number: int) -> TickResult:
        # 1. Calculate everything from the CURRENT state before mutating
        drift = self._drift_deltas()
        treatment, effect_hp = self._effect_deltas()

        # 2. Sum drift and treatment per parameter
        combined = dict(drift)
        for pid, delta in treatment.items():
            combined[pid] = combined.get(pid, 0.0) + delta
        for pid, delta in combined.items():
            self.patient.apply_delta(pid, delta)

        # 3. Age the active effects
        still_active = []
        expired = 0
        for active in self.patient.active_effects:
            active.remaining_ticks -= 1
            if active.remaining_ticks > 0:
                still_active.append(active)
            else:
                expired += 1
        self.patient.active_effects = still_active

        # 4. Deterioration from critical parameters
        critical = [pid for pid, status in self.patient.classify_all().items()
                    if status == ParameterStatus.CRITICAL]
        hp_change = effect_hp - len(critical) * self.config.hp_loss_per_critical
        if hp_change:
            self.patient.apply_hp_delta(hp_change)

        point = self.patient.record(tick_number, tick_number * self.config.tick_period_seconds)

        logger.debug(f"Tick {tick_number}: HP={self.patient.hp:.1f}, "
                     f"critical={critical}, active_effects={len(still_active)}")

        return TickResult(
            point=point,
            hp_depleted=self.patient.hp <= 0,
            critical_parameters=critical,
            expired_effects=expired,
        )


async def run_periodic(step: Callable[[], object], is_active: Callable[[], bool],
                       should_continue: Callable[[], bool], period_seconds: float) -> int:
    """
    Fixed-interval driver. Paused sessions (is_active False) are skipped
    without losing state; the loop ends once should_continue is False.
    Returns the number of ticks issued.
    """
    ticks = 0
    while should_continue():
        await asyncio.sleep(period_seconds)
        if not should_continue():
            break
        if is_active():
            step()
            ticks += 1
    return ticks
