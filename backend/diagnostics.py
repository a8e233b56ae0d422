# diagnostics.py
import logging
from typing import List, Optional

from models import (
    ChallengeAlreadyResolved,
    DiagnosticChallenge,
    DiagnosticOption,
    DiagnosticResult,
    ParameterRegistry,
    UnknownDiagnosticOption,
)
from patient_state import PatientState

logger = logging.getLogger("vetbalance-engine")


class DiagnosticEvaluator:
    """Scores a differential-diagnosis attempt. One attempt per challenge."""

    @staticmethod
    def build_challenge(correct_condition_id: str,
                        options: List[DiagnosticOption]) -> DiagnosticChallenge:
        return DiagnosticChallenge(correct_condition_id=correct_condition_id,
                                   candidate_options=list(options))

    @staticmethod
    def evaluate(challenge: DiagnosticChallenge, selected_option_id: str) -> DiagnosticResult:
        if challenge.resolved:
            raise ChallengeAlreadyResolved(
                f"Challenge already answered with '{challenge.selected_option_id}'"
            )
        known = {o.id: o for o in challenge.candidate_options}
        if selected_option_id not in known:
            raise UnknownDiagnosticOption(f"'{selected_option_id}' is not one of the candidates")

        # Strict equality, no partial credit
        correct = selected_option_id == challenge.correct_condition_id
        challenge.resolved = True
        challenge.selected_option_id = selected_option_id
        challenge.correct = correct

        logger.info(f"Diagnosis '{selected_option_id}' -> {'correct' if correct else 'incorrect'}")
        return DiagnosticResult(
            correct=correct,
            correct_option=known[challenge.correct_condition_id],
            selected_option_id=selected_option_id,
        )

    @staticmethod
    def findings(patient: PatientState, registry: Optional[ParameterRegistry] = None) -> List[str]:
        """Current values as the learner sees them next to the candidates."""
        registry = registry or patient.registry
        lines = []
        for pid, value in patient.values.items():
            p = registry.get(pid)
            unit = f" {p.unit}" if p.unit else ""
            lines.append(f"{p.name}: {value:.2f}{unit} ({patient.classify(pid).value})")
        return lines
