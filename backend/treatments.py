# treatments.py
import logging
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from constants import SIMULATION_CONSTANTS, SessionStatus
from advisor import AdequacyAdvisor
from models import (
    ActiveEffect,
    CaseDefinition,
    ParameterChange,
    Treatment,
    TreatmentEffect,
    TreatmentFeedback,
    TreatmentNotApplicableNow,
)
from patient_state import PatientState

logger = logging.getLogger("vetbalance-engine")


class TreatmentResolver:
    """
    Turns a treatment choice into parameter deltas and reports them.
    Immediate portions land now; gradual portions become ActiveEffects
    that the SimulationClock applies tick by tick.
    """

    def __init__(self, advisor: Optional[AdequacyAdvisor] = None,
                 inadequate_efficacy: float = SIMULATION_CONSTANTS.INADEQUATE_EFFICACY):
        self.advisor = advisor
        self.inadequate_efficacy = inadequate_efficacy

    def efficacy(self, treatment: Treatment, case: CaseDefinition) -> Tuple[float, Optional[str]]:
        """Case-authored rule times the advisor's opinion (fail-open to 1.0)."""
        if treatment.adequate:
            multiplier = SIMULATION_CONSTANTS.ADEQUATE_EFFICACY
        else:
            multiplier = self.inadequate_efficacy
        rationale = treatment.rationale

        if self.advisor is None:
            return multiplier, rationale

        try:
            verdict = self.advisor.assess(treatment, case)
        except Exception as e:
            # Advisor is advisory only. Never abort the simulation over it.
            logger.warning(f"Adequacy advisor failed for treatment {treatment.id}: {e}")
            return multiplier, rationale

        if verdict is None:
            return multiplier, rationale

        advised = max(0.0, min(verdict.multiplier, 1.0))
        return multiplier * advised, verdict.rationale or rationale

    @staticmethod
    def scale_effect(effect: TreatmentEffect, multiplier: float) -> TreatmentEffect:
        # Harm (negative HP) is not softened by low efficacy
        hp = effect.hp_delta * multiplier if effect.hp_delta > 0 else effect.hp_delta
        return replace(effect,
                       immediate_delta=effect.immediate_delta * multiplier,
                       delta_per_tick=effect.delta_per_tick * multiplier,
                       hp_delta=hp)

    def resolve(self, treatment_id: int, patient: PatientState,
                case: CaseDefinition, status: SessionStatus) -> TreatmentFeedback:
        treatment = case.treatment(treatment_id)
        if status != SessionStatus.RUNNING:
            raise TreatmentNotApplicableNow(
                f"Cannot apply '{treatment.name}' while session is {status.value}"
            )

        # Validate every target before touching anything
        for effect in treatment.effects:
            patient.value(effect.parameter_id)

        multiplier, rationale = self.efficacy(treatment, case)
        scaled = [self.scale_effect(e, multiplier) for e in treatment.effects]

        before = patient.snapshot()
        hp_before = patient.hp

        # 1. Immediate portion
        for effect in scaled:
            if effect.immediate_delta:
                patient.apply_delta(effect.parameter_id, effect.immediate_delta)

        # 2. Gradual portion: same treatment on same parameter replaces, others stack
        gradual = [e for e in scaled if e.is_gradual]
        replaced_keys = {(treatment.id, e.parameter_id) for e in gradual}
        patient.active_effects = [
            a for a in patient.active_effects
            if (a.treatment_id, a.parameter_id) not in replaced_keys
        ]
        for effect in gradual:
            patient.active_effects.append(
                ActiveEffect(treatment_id=treatment.id, effect=effect,
                             remaining_ticks=effect.duration_ticks)
            )

        after = patient.snapshot()
        changes = self._report_changes(patient, scaled, before, after)

        # 3. Instantaneous HP last, so a fatal dose still reports its deltas
        instant_hp = sum(e.hp_delta for e in scaled if not e.is_gradual)
        if instant_hp:
            patient.apply_hp_delta(instant_hp)

        logger.info(f"Applied treatment '{treatment.name}' (x{multiplier:.2f}), "
                    f"{len(gradual)} gradual effect(s), HP {hp_before:.1f} -> {patient.hp:.1f}")

        return TreatmentFeedback(
            treatment_id=treatment.id,
            treatment_name=treatment.name,
            adequate=treatment.adequate,
            multiplier=multiplier,
            changes=changes,
            hp_before=hp_before,
            hp_after=patient.hp,
            rationale=rationale,
        )

    @staticmethod
    def _report_changes(patient: PatientState, scaled: List[TreatmentEffect],
                        before, after) -> List[ParameterChange]:
        first_tick: Dict[int, float] = {}
        order: List[int] = []
        for effect in scaled:
            if effect.parameter_id not in first_tick:
                first_tick[effect.parameter_id] = 0.0
                order.append(effect.parameter_id)
            if effect.is_gradual:
                first_tick[effect.parameter_id] += effect.delta_per_tick

        gradual_ids = {e.parameter_id for e in scaled if e.is_gradual}
        changes = []
        for pid in order:
            parameter = patient.registry.get(pid)
            changes.append(ParameterChange(
                parameter_id=pid,
                name=parameter.name,
                before=before[pid],
                after=after[pid] + first_tick[pid],
                unit=parameter.unit,
                gradual=pid in gradual_ids,
            ))
        return changes
