from enum import Enum
from dataclasses import dataclass
VERSION = "1.0.0"

class SimulationMode(Enum):
    PRACTICE = "practice"      # Hints allowed, no time limit
    EVALUATION = "evaluation"  # No hints, tick limit enforced

class SessionStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    WON = "won"
    LOST = "lost"

class TerminalReason(Enum):
    GOALS_MET = "goals_met"
    HP_ZERO = "hp_zero"
    TIMEOUT = "timeout"

class ParameterStatus(Enum):
    NORMAL = "normal"
    WARNING = "warning"    # Outside normal range, still inside critical range
    CRITICAL = "critical"  # Outside critical range

class TrendDirection(Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"

class CriterionType(Enum):
    """Closed set of badge rules. Each member has exactly one evaluator in achievements.py."""
    FIRST_VICTORY = "first_victory"
    NO_HINTS = "no_hints"
    SPEED_RECORD = "speed_record"      # threshold = max duration in ticks
    ALL_GOALS = "all_goals"
    SESSION_COUNT = "session_count"    # threshold = min total sessions
    HIGH_HP = "high_hp"                # threshold = min HP observed
    DISTINCT_CASES = "distinct_cases"  # threshold = min unique cases

# Criteria that cannot be evaluated without a numeric threshold
THRESHOLD_CRITERIA = {
    CriterionType.SPEED_RECORD,
    CriterionType.SESSION_COUNT,
    CriterionType.HIGH_HP,
    CriterionType.DISTINCT_CASES,
}

TERMINAL_STATUSES = {SessionStatus.WON, SessionStatus.LOST}

class SIMULATION_CONSTANTS:
    TICK_PERIOD_SECONDS = 2.0
    # 10 minutes of evaluation at one tick every 2 seconds
    EVALUATION_TICK_LIMIT = 300

    HP_MIN = 0.0
    HP_MAX = 100.0

    # Inappropriate treatments still act, at partial efficacy
    INADEQUATE_EFFICACY = 0.5
    ADEQUATE_EFFICACY = 1.0

    # HP lost per tick for every parameter outside its critical range
    HP_LOSS_PER_CRITICAL = 1.0

    # Smaller moves than this render as "stable" on the monitor
    TREND_EPSILON = 1e-6

    DEFAULT_GOAL_TOLERANCE = 0.5

class ADVISOR_CONSTANTS:
    DEFAULT_TIMEOUT_SECONDS = 5.0
    URL_ENV = "VETBALANCE_ADVISOR_URL"
    TIMEOUT_ENV = "VETBALANCE_ADVISOR_TIMEOUT"

class API_CONSTANTS:
    # Sessions untouched for this long are dropped from the live registry.
    # Finished ones are already archived through the persistence sink.
    SESSION_TTL_SECONDS = 3600.0

@dataclass
class SimulationConfig:
    """Per-session tuning. Defaults come from SIMULATION_CONSTANTS."""
    tick_period_seconds: float = SIMULATION_CONSTANTS.TICK_PERIOD_SECONDS
    evaluation_tick_limit: int = SIMULATION_CONSTANTS.EVALUATION_TICK_LIMIT
    hp_loss_per_critical: float = SIMULATION_CONSTANTS.HP_LOSS_PER_CRITICAL
    inadequate_efficacy: float = SIMULATION_CONSTANTS.INADEQUATE_EFFICACY

    def __post_init__(self):
        if self.tick_period_seconds <= 0:
            raise ValueError("tick_period_seconds must be positive")
        if self.evaluation_tick_limit <= 0:
            raise ValueError("evaluation_tick_limit must be positive")
        if self.hp_loss_per_critical < 0:
            raise ValueError("hp_loss_per_critical cannot be negative")
        if not (0.0 <= self.inadequate_efficacy <= 1.0):
            raise ValueError(f"Invalid inadequate_efficacy: {self.inadequate_efficacy}")
