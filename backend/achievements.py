# achievements.py
"""
Achievement Engine: post-session badge rules.

Each CriterionType has exactly one evaluator in CRITERION_EVALUATORS.
Adding a badge type = one enum member + one evaluator. All predicates see
the same inputs; awards are applied only after every badge was evaluated.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional

from constants import CriterionType
from models import (
    Badge,
    BadgeCriterion,
    SessionOutcome,
    UserBadgeAward,
    UserSessionStats,
)

logger = logging.getLogger("vetbalance-engine")

Evaluator = Callable[[BadgeCriterion, SessionOutcome, UserSessionStats], bool]


def _first_victory(criterion, outcome, stats) -> bool:
    return outcome.won and stats.victory_sessions == 1

def _no_hints(criterion, outcome, stats) -> bool:
    return outcome.won and not outcome.hints_used

def _speed_record(criterion, outcome, stats) -> bool:
    return outcome.won and outcome.duration_ticks <= criterion.threshold

def _all_goals(criterion, outcome, stats) -> bool:
    return outcome.won and outcome.goals_total > 0 and outcome.goals_achieved == outcome.goals_total

def _session_count(criterion, outcome, stats) -> bool:
    return stats.total_sessions >= criterion.threshold

def _high_hp(criterion, outcome, stats) -> bool:
    return outcome.won and outcome.min_hp_observed >= criterion.threshold

def _distinct_cases(criterion, outcome, stats) -> bool:
    return stats.unique_cases_played >= criterion.threshold


CRITERION_EVALUATORS: Dict[CriterionType, Evaluator] = {
    CriterionType.FIRST_VICTORY: _first_victory,
    CriterionType.NO_HINTS: _no_hints,
    CriterionType.SPEED_RECORD: _speed_record,
    CriterionType.ALL_GOALS: _all_goals,
    CriterionType.SESSION_COUNT: _session_count,
    CriterionType.HIGH_HP: _high_hp,
    CriterionType.DISTINCT_CASES: _distinct_cases,
}


def criterion_met(criterion: BadgeCriterion, outcome: SessionOutcome,
                  stats: UserSessionStats) -> bool:
    return CRITERION_EVALUATORS[criterion.kind](criterion, outcome, stats)


class AchievementEngine:

    def __init__(self, catalog: Iterable[Badge], sink):
        self.catalog: List[Badge] = list(catalog)
        self.sink = sink
        ids = [b.id for b in self.catalog]
        if len(ids) != len(set(ids)):
            raise ValueError("Badge catalog contains duplicate ids")

    def eligible(self, user_id: str, outcome: SessionOutcome,
                 stats: UserSessionStats) -> List[Badge]:
        """Pure part: badges not yet held whose rule is satisfied."""
        held = self.sink.awarded_badge_ids(user_id)
        return [
            badge for badge in self.catalog
            if badge.id not in held and criterion_met(badge.criterion, outcome, stats)
        ]

    def evaluate(self, user_id: str, outcome: SessionOutcome,
                 stats: Optional[UserSessionStats] = None) -> List[Badge]:
        """Award newly satisfied badges. Returns only the ones granted now."""
        if stats is None:
            stats = self.sink.user_stats(user_id)

        awarded = []
        for badge in self.eligible(user_id, outcome, stats):
            award = UserBadgeAward(user_id=user_id, badge_id=badge.id,
                                   session_id=outcome.session_id)
            # The sink enforces (user, badge) uniqueness; a duplicate is a no-op
            if self.sink.award(award):
                awarded.append(badge)
                logger.info(f"Badge '{badge.name}' awarded to {user_id}")
        return awarded
