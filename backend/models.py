"""
VetBalance: Data Dictionary & Variable Definitions
==================================================
This module defines the state space of the clinical training simulator.
It includes the Case content (what the author wrote), the dynamic Patient
and Session state (what the engine mutates) and the Outputs (what the
learner and the persistence layer receive).

Validation lives in __post_init__; simulation logic lives elsewhere.
"""

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from constants import (
    SIMULATION_CONSTANTS,
    CriterionType,
    SessionStatus,
    SimulationMode,
    TerminalReason,
    THRESHOLD_CRITERIA,
)

# --- 0. ERROR TAXONOMY ---

class SimulationError(Exception):
    """Base class. `kind` is the stable name surfaced to collaborators."""
    kind = "simulation_error"


class UnknownParameter(SimulationError):
    kind = "unknown_parameter"


class UnknownTreatment(SimulationError):
    kind = "unknown_treatment"


class TreatmentNotApplicableNow(SimulationError):
    kind = "treatment_not_applicable_now"


class CaseNotFound(SimulationError):
    kind = "case_not_found"


class ChallengeAlreadyResolved(SimulationError):
    kind = "challenge_already_resolved"


class UnknownDiagnosticOption(SimulationError):
    kind = "unknown_diagnostic_option"


class InvalidCaseData(SimulationError):
    kind = "invalid_case_data"


class SessionStateConflict(SimulationError):
    """Raised on an invalid transition, e.g. start() while already running."""
    kind = "session_state_conflict"

# --- 1. CASE CONTENT (What the Author Wrote) ---

@dataclass(frozen=True)
class Parameter:
    """A physiological measurement shown on the monitor."""
    id: int
    name: str                             # e.g. "pH", "pCO2", "HCO3-"
    normal_range: Tuple[float, float]
    critical_range: Tuple[float, float]   # Must strictly contain normal_range
    unit: Optional[str] = None
    description: Optional[str] = None

    def __post_init__(self):
        n_min, n_max = self.normal_range
        c_min, c_max = self.critical_range
        if n_min > n_max or c_min > c_max:
            raise InvalidCaseData(f"Parameter '{self.name}': range min exceeds max")
        if not (c_min < n_min and n_max < c_max):
            raise InvalidCaseData(
                f"Parameter '{self.name}': critical range {self.critical_range} "
                f"must strictly contain normal range {self.normal_range}"
            )


class ParameterRegistry:
    """Catalog of the parameters monitored in one case."""

    def __init__(self, parameters: List[Parameter]):
        self._by_id: Dict[int, Parameter] = {}
        self._by_name: Dict[str, Parameter] = {}
        for p in parameters:
            if p.id in self._by_id:
                raise InvalidCaseData(f"Duplicate parameter id: {p.id}")
            if p.name in self._by_name:
                raise InvalidCaseData(f"Duplicate parameter name: {p.name}")
            self._by_id[p.id] = p
            self._by_name[p.name] = p

    def __contains__(self, parameter_id: int) -> bool:
        return parameter_id in self._by_id

    def __iter__(self):
        return iter(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)

    def get(self, parameter_id: int) -> Parameter:
        try:
            return self._by_id[parameter_id]
        except KeyError:
            raise UnknownParameter(f"Parameter {parameter_id} is not registered") from None

    def by_name(self, name: str) -> Parameter:
        try:
            return self._by_name[name]
        except KeyError:
            raise UnknownParameter(f"Parameter '{name}' is not registered") from None


@dataclass(frozen=True)
class TreatmentEffect:
    """How one treatment perturbs one parameter."""
    parameter_id: int
    delta_per_tick: float = 0.0
    immediate_delta: float = 0.0
    duration_ticks: int = 0           # 0 = instantaneous
    hp_delta: float = 0.0             # Whole-course HP change (spread over duration)
    suppresses_drift: bool = False    # True: disease drift halts while active

    def __post_init__(self):
        if self.duration_ticks < 0:
            raise InvalidCaseData(f"Negative duration for parameter {self.parameter_id}")
        if self.duration_ticks == 0 and self.delta_per_tick != 0.0:
            raise InvalidCaseData(
                f"Effect on parameter {self.parameter_id} has delta_per_tick but no duration"
            )

    @property
    def is_gradual(self) -> bool:
        return self.duration_ticks > 0


@dataclass(frozen=True)
class Treatment:
    id: int
    name: str
    effects: Tuple[TreatmentEffect, ...] = ()
    adequate: bool = True             # Case-authored: appropriate for this condition?
    priority: Optional[int] = None    # 1 = high, 2 = medium, 3 = low
    rationale: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class DriftRule:
    """Untreated disease progression: parameter slides toward `target`."""
    parameter_id: int
    target: float
    rate_per_tick: float

    def __post_init__(self):
        if self.rate_per_tick < 0:
            raise InvalidCaseData(f"Negative drift rate for parameter {self.parameter_id}")


@dataclass(frozen=True)
class Goal:
    """A learning goal: bring a parameter within tolerance of a target value."""
    id: str
    title: str
    parameter_id: int
    target_value: float
    tolerance: float = SIMULATION_CONSTANTS.DEFAULT_GOAL_TOLERANCE
    points: int = 0
    time_limit_ticks: Optional[int] = None  # None = no limit
    description: Optional[str] = None

    def __post_init__(self):
        if self.tolerance <= 0:
            raise InvalidCaseData(f"Goal '{self.id}' needs a positive tolerance")


@dataclass(frozen=True)
class DiagnosticOption:
    id: str
    label: str
    reasoning: Optional[str] = None


@dataclass(frozen=True)
class Condition:
    id: str
    name: str
    description: Optional[str] = None


@dataclass
class CaseDefinition:
    """Everything the Case Content Provider supplies for one case."""
    id: int
    name: str
    species: str
    condition: Condition
    registry: ParameterRegistry
    initial_values: Dict[int, float]
    treatments: List[Treatment]
    initial_hp: float = SIMULATION_CONSTANTS.HP_MAX
    drift_rules: List[DriftRule] = field(default_factory=list)
    goals: List[Goal] = field(default_factory=list)
    diagnostic_options: List[DiagnosticOption] = field(default_factory=list)
    requires_diagnosis: bool = False
    description: Optional[str] = None

    def __post_init__(self):
        # Every reference must resolve to a monitored parameter with a starting value
        for drift in self.drift_rules:
            if drift.parameter_id not in self.initial_values:
                raise InvalidCaseData(f"Drift rule targets unmonitored parameter {drift.parameter_id}")
        for goal in self.goals:
            if goal.parameter_id not in self.initial_values:
                raise InvalidCaseData(f"Goal '{goal.id}' targets unmonitored parameter {goal.parameter_id}")
        seen_treatments = set()
        for treatment in self.treatments:
            if treatment.id in seen_treatments:
                raise InvalidCaseData(f"Duplicate treatment id: {treatment.id}")
            seen_treatments.add(treatment.id)
            for effect in treatment.effects:
                if effect.parameter_id not in self.initial_values:
                    raise InvalidCaseData(
                        f"Treatment '{treatment.name}' targets unmonitored parameter {effect.parameter_id}"
                    )
        if self.requires_diagnosis and not self.diagnostic_options:
            raise InvalidCaseData("Case requires a diagnosis but has no diagnostic options")

    def treatment(self, treatment_id: int) -> Treatment:
        for t in self.treatments:
            if t.id == treatment_id:
                return t
        raise UnknownTreatment(f"Treatment {treatment_id} is not available for case {self.id}")

# --- 2. DYNAMIC STATE (The Simulation Variables) ---

@dataclass(frozen=True)
class HistoryPoint:
    tick: int
    timestamp_seconds: float
    values: Mapping[int, float]   # Read-only snapshot
    hp: float

    def as_dict(self) -> dict:
        return {
            "tick": self.tick,
            "timestamp": self.timestamp_seconds,
            "values": dict(self.values),
            "hp": self.hp,
        }


@dataclass
class ActiveEffect:
    treatment_id: int
    effect: TreatmentEffect       # Already scaled by efficacy
    remaining_ticks: int

    @property
    def parameter_id(self) -> int:
        return self.effect.parameter_id


@dataclass
class DiagnosticChallenge:
    correct_condition_id: str
    candidate_options: List[DiagnosticOption]
    resolved: bool = False
    selected_option_id: Optional[str] = None
    correct: Optional[bool] = None

    def __post_init__(self):
        matches = [o for o in self.candidate_options if o.id == self.correct_condition_id]
        if len(matches) != 1:
            raise InvalidCaseData(
                f"Challenge needs exactly one correct option, found {len(matches)}"
            )
        ids = [o.id for o in self.candidate_options]
        if len(ids) != len(set(ids)):
            raise InvalidCaseData("Duplicate diagnostic option ids")


@dataclass
class TreatmentRecord:
    tick: int
    treatment_id: int
    multiplier: float


@dataclass
class SessionState:
    session_id: str
    case_id: int
    user_id: str
    mode: SimulationMode = SimulationMode.PRACTICE
    status: SessionStatus = SessionStatus.IDLE
    elapsed_ticks: int = 0
    goals_total: int = 0
    goals_achieved: int = 0
    achieved_goal_ids: List[str] = field(default_factory=list)
    points: int = 0
    hints_used: bool = False
    min_hp_observed: float = SIMULATION_CONSTANTS.HP_MAX
    terminal_reason: Optional[TerminalReason] = None
    diagnosis_correct: Optional[bool] = None
    treatment_log: List[TreatmentRecord] = field(default_factory=list)

# --- 3. OUTPUT LAYER (The Actionable Results) ---

@dataclass(frozen=True)
class ParameterChange:
    """Before/after pair shown in the treatment feedback panel."""
    parameter_id: int
    name: str
    before: float
    after: float
    unit: Optional[str] = None
    gradual: bool = False   # True: `after` is the first tick, change continues

    @property
    def change(self) -> float:
        return self.after - self.before


@dataclass
class TreatmentFeedback:
    treatment_id: int
    treatment_name: str
    adequate: bool
    multiplier: float
    changes: List[ParameterChange] = field(default_factory=list)
    hp_before: float = 0.0
    hp_after: float = 0.0
    rationale: Optional[str] = None

    @property
    def notes(self) -> List[str]:
        return [
            f"{c.name} will keep changing gradually" for c in self.changes if c.gradual
        ]


@dataclass(frozen=True)
class DiagnosticResult:
    correct: bool
    correct_option: DiagnosticOption
    selected_option_id: str


@dataclass(frozen=True)
class SessionOutcome:
    """Sole handoff from a finished session to persistence and achievements."""
    session_id: str
    user_id: str
    case_id: int
    status: SessionStatus
    terminal_reason: TerminalReason
    duration_ticks: int
    min_hp_observed: float
    hints_used: bool
    goals_achieved: int
    goals_total: int
    points: int = 0

    @property
    def won(self) -> bool:
        return self.status == SessionStatus.WON

# --- 4. ACHIEVEMENTS ---

@dataclass(frozen=True)
class BadgeCriterion:
    kind: CriterionType
    threshold: Optional[float] = None

    def __post_init__(self):
        if self.kind in THRESHOLD_CRITERIA and self.threshold is None:
            raise ValueError(f"Criterion '{self.kind.value}' requires a threshold")


@dataclass(frozen=True)
class Badge:
    id: str
    name: str
    criterion: BadgeCriterion
    description: Optional[str] = None


@dataclass(frozen=True)
class UserBadgeAward:
    user_id: str
    badge_id: str
    session_id: str
    awarded_at: str = field(default_factory=lambda: datetime.now().isoformat())


@dataclass(frozen=True)
class UserSessionStats:
    """Aggregates supplied by persistence; they include the session just finished."""
    total_sessions: int = 0
    victory_sessions: int = 0
    unique_cases_played: int = 0


@dataclass(frozen=True)
class AdvisorVerdict:
    multiplier: float
    rationale: Optional[str] = None


def frozen_values(values: Dict[int, float]) -> Mapping[int, float]:
    return MappingProxyType(dict(values))
