# collaborators.py
"""
Boundary collaborators of the simulator core, with in-memory versions.
Durable storage is somebody else's job; these keep the same contracts.
"""

import threading
from typing import Dict, List, Set

from constants import SessionStatus
from models import (
    CaseDefinition,
    CaseNotFound,
    SessionOutcome,
    UserBadgeAward,
    UserSessionStats,
)


class CaseContentProvider:
    def get_case(self, case_id: int) -> CaseDefinition:
        raise NotImplementedError


class InMemoryCaseProvider(CaseContentProvider):

    def __init__(self, cases: List[CaseDefinition] = None):
        self._cases: Dict[int, CaseDefinition] = {}
        for case in cases or []:
            self.add(case)

    def add(self, case: CaseDefinition):
        self._cases[case.id] = case

    def get_case(self, case_id: int) -> CaseDefinition:
        try:
            return self._cases[case_id]
        except KeyError:
            raise CaseNotFound(f"Case {case_id} not found") from None

    def case_ids(self) -> List[int]:
        return sorted(self._cases)


class PersistenceSink:
    def record_outcome(self, outcome: SessionOutcome):
        raise NotImplementedError

    def user_stats(self, user_id: str) -> UserSessionStats:
        raise NotImplementedError

    def awarded_badge_ids(self, user_id: str) -> Set[str]:
        raise NotImplementedError

    def award(self, award: UserBadgeAward) -> bool:
        """Insert unless (user_id, badge_id) exists. Returns True if inserted."""
        raise NotImplementedError


class InMemoryPersistenceSink(PersistenceSink):
    """
    Lock-guarded check-and-insert stands in for a UNIQUE(user_id, badge_id)
    constraint, so concurrent completions still award at most once.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.outcomes: List[SessionOutcome] = []
        self._awards: Dict[tuple, UserBadgeAward] = {}

    def record_outcome(self, outcome: SessionOutcome):
        with self._lock:
            self.outcomes.append(outcome)

    def user_stats(self, user_id: str) -> UserSessionStats:
        with self._lock:
            mine = [o for o in self.outcomes if o.user_id == user_id]
        return UserSessionStats(
            total_sessions=len(mine),
            victory_sessions=sum(1 for o in mine if o.status == SessionStatus.WON),
            unique_cases_played=len({o.case_id for o in mine}),
        )

    def awarded_badge_ids(self, user_id: str) -> Set[str]:
        with self._lock:
            return {badge_id for (uid, badge_id) in self._awards if uid == user_id}

    def award(self, award: UserBadgeAward) -> bool:
        key = (award.user_id, award.badge_id)
        with self._lock:
            if key in self._awards:
                return False
            self._awards[key] = award
            return True

    def awards_for(self, user_id: str) -> List[UserBadgeAward]:
        with self._lock:
            return [a for (uid, _), a in self._awards.items() if uid == user_id]
