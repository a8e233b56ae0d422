# advisor.py
"""
Adequacy Advisor: optional external opinion on how appropriate a treatment
is for the case's condition. Returns an efficacy multiplier in [0, 1].

The simulator never depends on it: a missing or failing advisor means 1.0.
"""

import logging
import os
from typing import Optional

import requests
from dotenv import load_dotenv

from constants import ADVISOR_CONSTANTS
from models import AdvisorVerdict, CaseDefinition, Treatment

load_dotenv()

logger = logging.getLogger("vetbalance-engine")


class AdequacyAdvisor:
    """Interface. Implementations may raise; callers recover locally."""

    def assess(self, treatment: Treatment, case: CaseDefinition) -> Optional[AdvisorVerdict]:
        raise NotImplementedError


class HttpAdequacyAdvisor(AdequacyAdvisor):
    """Posts the treatment and case context to an evaluation service.

    Expected response JSON: {"multiplier": 0.0-1.0, "rationale": "..."}
    """

    def __init__(self, url: str, timeout: float = ADVISOR_CONSTANTS.DEFAULT_TIMEOUT_SECONDS,
                 api_key: Optional[str] = None):
        self.url = url
        self.timeout = timeout
        self.api_key = api_key

    @classmethod
    def from_env(cls) -> Optional["HttpAdequacyAdvisor"]:
        url = os.getenv(ADVISOR_CONSTANTS.URL_ENV)
        if not url:
            return None
        timeout = float(os.getenv(ADVISOR_CONSTANTS.TIMEOUT_ENV,
                                  str(ADVISOR_CONSTANTS.DEFAULT_TIMEOUT_SECONDS)))
        return cls(url, timeout=timeout, api_key=os.getenv("VETBALANCE_ADVISOR_KEY"))

    def _payload(self, treatment: Treatment, case: CaseDefinition) -> dict:
        return {
            "case_id": case.id,
            "case_name": case.name,
            "species": case.species,
            "condition": case.condition.name,
            "treatment": {
                "id": treatment.id,
                "name": treatment.name,
                "description": treatment.description,
            },
        }

    def assess(self, treatment: Treatment, case: CaseDefinition) -> Optional[AdvisorVerdict]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        response = requests.post(self.url, headers=headers,
                                 json=self._payload(treatment, case), timeout=self.timeout)
        response.raise_for_status()
        body = response.json()

        multiplier = body.get("multiplier")
        if not isinstance(multiplier, (int, float)):
            raise ValueError(f"Advisor returned non-numeric multiplier: {multiplier!r}")
        return AdvisorVerdict(multiplier=float(multiplier), rationale=body.get("rationale"))
