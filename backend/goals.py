# goals.py
from typing import Iterable, List, Set

from constants import ParameterStatus
from models import Goal
from patient_state import PatientState


class GoalSupervisor:
    """
    Learning-goal checks used by the Session State Machine.
    Goals are monotonic: once achieved they stay achieved for the session.
    """

    @staticmethod
    def is_satisfied(goal: Goal, patient: PatientState, elapsed_ticks: int) -> bool:
        if goal.time_limit_ticks is not None and elapsed_ticks > goal.time_limit_ticks:
            return False
        value = patient.value(goal.parameter_id)
        return abs(value - goal.target_value) <= goal.tolerance

    @staticmethod
    def newly_achieved(goals: Iterable[Goal], already: Set[str],
                       patient: PatientState, elapsed_ticks: int) -> List[Goal]:
        return [
            g for g in goals
            if g.id not in already and GoalSupervisor.is_satisfied(g, patient, elapsed_ticks)
        ]

    @staticmethod
    def progress(goal: Goal, patient: PatientState) -> float:
        """0-100 closeness to target. 3x the tolerance away reads as 0%."""
        distance = abs(patient.value(goal.parameter_id) - goal.target_value)
        max_distance = goal.tolerance * 3
        return max(0.0, min(100.0, ((max_distance - distance) / max_distance) * 100))

    @staticmethod
    def all_parameters_normal(patient: PatientState) -> bool:
        return all(s == ParameterStatus.NORMAL for s in patient.classify_all().values())
