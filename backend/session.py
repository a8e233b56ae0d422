"""
Session State Machine
=====================
Orchestrates one learner working one case:

    idle -> running <-> paused
    running -> won | lost        (terminal: only reset() leaves them)
    any -> idle                  (reset)

Every tick, treatment and diagnosis is followed by goal checks and a
terminal evaluation. On won/lost a SessionOutcome is emitted to the
registered handlers (persistence, achievements).
"""

import logging
from typing import Callable, List, Optional

from constants import (
    TERMINAL_STATUSES,
    SessionStatus,
    SimulationConfig,
    SimulationMode,
    TerminalReason,
)
from diagnostics import DiagnosticEvaluator
from goals import GoalSupervisor
from models import (
    CaseDefinition,
    DiagnosticChallenge,
    DiagnosticResult,
    Goal,
    SessionOutcome,
    SessionState,
    SessionStateConflict,
    TreatmentFeedback,
    TreatmentRecord,
)
from patient_state import PatientState
from simulation_clock import SimulationClock, TickResult
from treatments import TreatmentResolver

logger = logging.getLogger("vetbalance-engine")

OutcomeHandler = Callable[[SessionOutcome], None]


class SessionStateMachine:

    def __init__(self, case: CaseDefinition, session_id: str, user_id: str,
                 config: Optional[SimulationConfig] = None,
                 resolver: Optional[TreatmentResolver] = None):
        self.case = case
        self.config = config or SimulationConfig()
        self.resolver = resolver or TreatmentResolver(
            inadequate_efficacy=self.config.inadequate_efficacy
        )
        self.state = SessionState(session_id=session_id, case_id=case.id, user_id=user_id)
        self.patient: Optional[PatientState] = None
        self.clock: Optional[SimulationClock] = None
        self.challenge: Optional[DiagnosticChallenge] = None
        self.outcome: Optional[SessionOutcome] = None
        self._outcome_handlers: List[OutcomeHandler] = []
        self._hp_depleted = False

    # --- Wiring ---

    def on_outcome(self, handler: OutcomeHandler):
        self._outcome_handlers.append(handler)

    @property
    def status(self) -> SessionStatus:
        return self.state.status

    @property
    def is_terminal(self) -> bool:
        return self.state.status in TERMINAL_STATUSES

    @property
    def elapsed_seconds(self) -> float:
        return self.state.elapsed_ticks * self.config.tick_period_seconds

    def _require(self, *allowed: SessionStatus, action: str):
        if self.state.status not in allowed:
            raise SessionStateConflict(
                f"Cannot {action} while session is {self.state.status.value}"
            )

    def _flag_hp_depleted(self):
        self._hp_depleted = True

    # --- Transitions ---

    def start(self, mode: SimulationMode = SimulationMode.PRACTICE) -> PatientState:
        self._require(SessionStatus.IDLE, action="start")

        patient = PatientState.initialize(
            self.case.registry, self.case.initial_values, self.case.initial_hp,
            on_hp_depleted=self._flag_hp_depleted,
        )
        challenge = None
        if self.case.diagnostic_options:
            challenge = DiagnosticEvaluator.build_challenge(
                self.case.condition.id, self.case.diagnostic_options
            )

        self.patient = patient
        self.clock = SimulationClock(patient, self.case.drift_rules, self.config)
        self.challenge = challenge
        self.outcome = None
        self._hp_depleted = False
        self.state = SessionState(
            session_id=self.state.session_id,
            case_id=self.case.id,
            user_id=self.state.user_id,
            mode=mode,
            status=SessionStatus.RUNNING,
            goals_total=len(self.case.goals),
            min_hp_observed=patient.hp,
        )
        patient.record(0, 0.0)

        logger.info(f"Session {self.state.session_id} started: case={self.case.id}, mode={mode.value}")
        return patient

    def toggle(self) -> SessionStatus:
        if self.state.status == SessionStatus.RUNNING:
            self.state.status = SessionStatus.PAUSED
        elif self.state.status == SessionStatus.PAUSED:
            self.state.status = SessionStatus.RUNNING
        else:
            raise SessionStateConflict(f"Cannot pause/resume a {self.state.status.value} session")
        return self.state.status

    def reset(self):
        """Back to idle from anywhere. Discards patient, history and challenge."""
        logger.info(f"Session {self.state.session_id} reset from {self.state.status.value}")
        self.patient = None
        self.clock = None
        self.challenge = None
        self.outcome = None
        self._hp_depleted = False
        self.state = SessionState(session_id=self.state.session_id,
                                  case_id=self.case.id, user_id=self.state.user_id)

    # --- Actions ---

    def tick(self) -> TickResult:
        self._require(SessionStatus.RUNNING, action="advance the clock")
        self.state.elapsed_ticks += 1
        result = self.clock.tick(self.state.elapsed_ticks)
        self._after_mutation()
        return result

    def run_ticks(self, count: int) -> int:
        """Fast-forward up to `count` ticks; stops early on a terminal status."""
        done = 0
        while done < count and self.state.status == SessionStatus.RUNNING:
            self.tick()
            done += 1
        return done

    def record_treatment(self, treatment_id: int) -> TreatmentFeedback:
        feedback = self.resolver.resolve(treatment_id, self.patient, self.case, self.state.status)
        self.state.treatment_log.append(
            TreatmentRecord(tick=self.state.elapsed_ticks, treatment_id=treatment_id,
                            multiplier=feedback.multiplier)
        )
        self._after_mutation()
        return feedback

    def record_hint_used(self):
        self._require(SessionStatus.RUNNING, SessionStatus.PAUSED, action="use a hint")
        if self.state.mode == SimulationMode.EVALUATION:
            logger.warning(f"Hint recorded in evaluation mode for session {self.state.session_id}")
        self.state.hints_used = True

    def submit_diagnosis(self, option_id: str) -> DiagnosticResult:
        self._require(SessionStatus.RUNNING, action="submit a diagnosis")
        if self.challenge is None:
            raise SessionStateConflict(f"Case {self.case.id} has no diagnostic challenge")
        result = DiagnosticEvaluator.evaluate(self.challenge, option_id)
        self.state.diagnosis_correct = result.correct
        self._evaluate_terminal()
        return result

    def check_goals(self) -> List[Goal]:
        if self.patient is None:
            return []
        achieved = set(self.state.achieved_goal_ids)
        new_goals = GoalSupervisor.newly_achieved(
            self.case.goals, achieved, self.patient, self.state.elapsed_ticks
        )
        for goal in new_goals:
            self.state.achieved_goal_ids.append(goal.id)
            self.state.points += goal.points
            logger.info(f"Goal '{goal.title}' achieved (+{goal.points} pts)")
        self.state.goals_achieved = len(self.state.achieved_goal_ids)
        return new_goals

    # --- Terminal evaluation ---

    def _after_mutation(self):
        self.state.min_hp_observed = min(self.state.min_hp_observed, self.patient.min_hp)
        if self.state.status == SessionStatus.RUNNING and not self._hp_depleted:
            self.check_goals()
        self._evaluate_terminal()

    def _goals_complete(self) -> bool:
        if self.case.goals:
            complete = self.state.goals_achieved == self.state.goals_total
        else:
            complete = GoalSupervisor.all_parameters_normal(self.patient)
        if self.case.requires_diagnosis:
            complete = complete and self.state.diagnosis_correct is True
        return complete

    def _evaluate_terminal(self):
        if self.state.status != SessionStatus.RUNNING:
            return
        if self._hp_depleted or self.patient.hp <= 0:
            self._finish(SessionStatus.LOST, TerminalReason.HP_ZERO)
        elif self._goals_complete():
            self._finish(SessionStatus.WON, TerminalReason.GOALS_MET)
        elif (self.state.mode == SimulationMode.EVALUATION
              and self.state.elapsed_ticks >= self.config.evaluation_tick_limit):
            self._finish(SessionStatus.LOST, TerminalReason.TIMEOUT)

    def _finish(self, status: SessionStatus, reason: TerminalReason):
        self.state.status = status
        self.state.terminal_reason = reason
        self.patient.freeze()

        self.outcome = SessionOutcome(
            session_id=self.state.session_id,
            user_id=self.state.user_id,
            case_id=self.case.id,
            status=status,
            terminal_reason=reason,
            duration_ticks=self.state.elapsed_ticks,
            min_hp_observed=self.state.min_hp_observed,
            hints_used=self.state.hints_used,
            goals_achieved=self.state.goals_achieved,
            goals_total=self.state.goals_total,
            points=self.state.points,
        )
        logger.info(f"Session {self.state.session_id} ended: {status.value} ({reason.value}) "
                    f"after {self.state.elapsed_ticks} ticks")
        for handler in self._outcome_handlers:
            handler(self.outcome)
