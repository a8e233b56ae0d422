# case_library.py
"""
Built-in teaching content: the acid-base parameter set, one demonstration
case and the default badge catalog. Real deployments load cases from the
content provider; this library seeds the in-memory one.
"""

from constants import CriterionType
from models import (
    Badge,
    BadgeCriterion,
    CaseDefinition,
    Condition,
    DiagnosticOption,
    DriftRule,
    Goal,
    Parameter,
    ParameterRegistry,
    Treatment,
    TreatmentEffect,
)


class PARAMETER_LIBRARY:
    """Canine reference ranges for the blood-gas panel."""
    PH = Parameter(id=1, name="pH", unit=None, description="Blood acidity",
                   normal_range=(7.35, 7.45), critical_range=(7.20, 7.60))
    PCO2 = Parameter(id=2, name="pCO2", unit="mmHg", description="Respiratory component",
                     normal_range=(35.0, 45.0), critical_range=(25.0, 60.0))
    HCO3 = Parameter(id=3, name="HCO3-", unit="mEq/L", description="Metabolic buffer",
                     normal_range=(18.0, 24.0), critical_range=(10.0, 30.0))
    LACTATE = Parameter(id=4, name="Lactate", unit="mmol/L", description="Tissue perfusion marker",
                        normal_range=(0.5, 2.5), critical_range=(0.0, 6.0))

    ALL = [PH, PCO2, HCO3, LACTATE]


def build_ketoacidosis_case() -> CaseDefinition:
    P = PARAMETER_LIBRARY
    return CaseDefinition(
        id=1,
        name="Diabetic ketoacidosis",
        species="dog",
        description="9-year-old Poodle, polyuria and vomiting for 3 days, Kussmaul breathing.",
        condition=Condition(id="metabolic_acidosis", name="Metabolic acidosis"),
        registry=ParameterRegistry(P.ALL),
        initial_values={P.PH.id: 7.25, P.PCO2.id: 30.0, P.HCO3.id: 12.5, P.LACTATE.id: 4.0},
        initial_hp=100.0,
        drift_rules=[
            # Untreated ketoacidosis keeps consuming buffer
            DriftRule(parameter_id=P.PH.id, target=7.10, rate_per_tick=0.002),
            DriftRule(parameter_id=P.HCO3.id, target=8.0, rate_per_tick=0.05),
            DriftRule(parameter_id=P.LACTATE.id, target=8.0, rate_per_tick=0.01),
        ],
        treatments=[
            Treatment(
                id=1, name="Sodium bicarbonate IV", adequate=True, priority=2,
                rationale="Buffers severe acidaemia while the cause is corrected.",
                effects=(
                    TreatmentEffect(parameter_id=P.PH.id, immediate_delta=0.02,
                                    delta_per_tick=0.01, duration_ticks=10, hp_delta=10.0),
                    TreatmentEffect(parameter_id=P.HCO3.id, immediate_delta=2.0,
                                    delta_per_tick=0.4, duration_ticks=10, suppresses_drift=True),
                ),
            ),
            Treatment(
                id=2, name="Lactated Ringer's fluid therapy", adequate=True, priority=1,
                rationale="Restores perfusion and clears lactate.",
                effects=(
                    TreatmentEffect(parameter_id=P.LACTATE.id, delta_per_tick=-0.15,
                                    duration_ticks=20, hp_delta=15.0, suppresses_drift=True),
                    TreatmentEffect(parameter_id=P.PH.id, delta_per_tick=0.003, duration_ticks=20),
                ),
            ),
            Treatment(
                id=3, name="Regular insulin CRI", adequate=True, priority=1,
                rationale="Stops ketone production at the source.",
                effects=(
                    TreatmentEffect(parameter_id=P.PH.id, delta_per_tick=0.004,
                                    duration_ticks=30, hp_delta=10.0, suppresses_drift=True),
                ),
            ),
            Treatment(
                id=4, name="Furosemide", adequate=False,
                rationale="Worsens dehydration in a volume-depleted patient.",
                effects=(
                    TreatmentEffect(parameter_id=P.LACTATE.id, immediate_delta=0.5, hp_delta=-10.0),
                ),
            ),
            Treatment(
                id=5, name="Oxygen by mask", adequate=False,
                rationale="Hypoxaemia is not the problem here.",
                effects=(
                    TreatmentEffect(parameter_id=P.PCO2.id, delta_per_tick=-0.5, duration_ticks=5),
                ),
            ),
        ],
        goals=[
            Goal(id="ph", title="Normalize pH", parameter_id=P.PH.id,
                 target_value=7.40, tolerance=0.05, points=50),
            Goal(id="hco3", title="Restore bicarbonate", parameter_id=P.HCO3.id,
                 target_value=21.0, tolerance=3.0, points=30),
            Goal(id="lactate", title="Clear lactate", parameter_id=P.LACTATE.id,
                 target_value=1.5, tolerance=1.0, points=20),
        ],
        diagnostic_options=[
            DiagnosticOption(id="metabolic_acidosis", label="Metabolic acidosis",
                             reasoning="Low pH with low HCO3- and compensatory low pCO2."),
            DiagnosticOption(id="respiratory_acidosis", label="Respiratory acidosis",
                             reasoning="Would require a raised pCO2."),
            DiagnosticOption(id="metabolic_alkalosis", label="Metabolic alkalosis",
                             reasoning="Would require a raised pH and HCO3-."),
            DiagnosticOption(id="respiratory_alkalosis", label="Respiratory alkalosis",
                             reasoning="Would require a raised pH."),
        ],
        requires_diagnosis=False,
    )


BADGE_CATALOG = [
    Badge(id="first_victory", name="First Victory",
          criterion=BadgeCriterion(CriterionType.FIRST_VICTORY),
          description="Stabilize your first patient."),
    Badge(id="no_hints", name="Independent Clinician",
          criterion=BadgeCriterion(CriterionType.NO_HINTS),
          description="Win a case without using hints."),
    Badge(id="speed_record", name="Fast Responder",
          criterion=BadgeCriterion(CriterionType.SPEED_RECORD, threshold=150),
          description="Win in under 5 minutes of simulated time."),
    Badge(id="all_goals", name="Perfectionist",
          criterion=BadgeCriterion(CriterionType.ALL_GOALS),
          description="Achieve every learning goal of a case."),
    Badge(id="ten_sessions", name="Dedicated Student",
          criterion=BadgeCriterion(CriterionType.SESSION_COUNT, threshold=10),
          description="Complete 10 sessions."),
    Badge(id="high_hp", name="Guardian Angel",
          criterion=BadgeCriterion(CriterionType.HIGH_HP, threshold=80),
          description="Win without HP ever dropping below 80."),
    Badge(id="explorer", name="Explorer",
          criterion=BadgeCriterion(CriterionType.DISTINCT_CASES, threshold=3),
          description="Play 3 different cases."),
]


def default_cases():
    return [build_ketoacidosis_case()]
