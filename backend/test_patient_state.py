import unittest
from constants import ParameterStatus, TrendDirection
from models import (
    InvalidCaseData, Parameter, ParameterRegistry, SessionStateConflict, UnknownParameter
)
from patient_state import PatientState

PH = Parameter(id=1, name="pH", normal_range=(7.35, 7.45), critical_range=(7.20, 7.60))
PCO2 = Parameter(id=2, name="pCO2", unit="mmHg",
                 normal_range=(35.0, 45.0), critical_range=(25.0, 60.0))


class TestPatientState(unittest.TestCase):

    def setUp(self):
        self.registry = ParameterRegistry([PH, PCO2])
        self.patient = PatientState.initialize(self.registry, {1: 7.30, 2: 40.0}, 100.0)

    def test_01_initialize_rejects_unknown_parameter(self):
        with self.assertRaises(InvalidCaseData):
            PatientState.initialize(self.registry, {1: 7.30, 99: 1.0}, 100.0)

    def test_02_initialize_rejects_out_of_range_hp(self):
        with self.assertRaises(InvalidCaseData):
            PatientState.initialize(self.registry, {1: 7.30}, 150.0)

    def test_03_critical_range_must_contain_normal(self):
        with self.assertRaises(InvalidCaseData):
            Parameter(id=3, name="Bad", normal_range=(7.0, 8.0), critical_range=(7.2, 7.9))
        with self.assertRaises(InvalidCaseData):
            # Touching bounds is not strict containment
            Parameter(id=3, name="Edge", normal_range=(7.0, 8.0), critical_range=(7.0, 9.0))

    def test_04_duplicate_names_rejected(self):
        with self.assertRaises(InvalidCaseData):
            ParameterRegistry([PH, Parameter(id=9, name="pH", normal_range=(1, 2),
                                             critical_range=(0, 3))])

    def test_04b_registry_lookup(self):
        self.assertEqual(self.registry.by_name("pCO2").id, 2)
        with self.assertRaises(UnknownParameter):
            self.registry.get(7)

    def test_05_apply_delta_unknown_parameter_changes_nothing(self):
        before = dict(self.patient.values)
        with self.assertRaises(UnknownParameter):
            self.patient.apply_delta(42, 1.0)
        self.assertEqual(dict(self.patient.values), before)

    def test_06_apply_delta(self):
        self.patient.apply_delta(1, 0.05)
        self.assertAlmostEqual(self.patient.value(1), 7.35)

    def test_07_hp_is_always_clamped(self):
        """HP stays in [0, 100] for any delta sequence, however large."""
        for delta in [1e9, -5, 250, -1e9, 33.3, -0.1, 1e-9, -100, 100]:
            self.patient.apply_hp_delta(delta)
            self.assertGreaterEqual(self.patient.hp, 0.0)
            self.assertLessEqual(self.patient.hp, 100.0)
        self.assertEqual(self.patient.min_hp, 0.0)

    def test_08_hp_depletion_fires_callback(self):
        calls = []
        patient = PatientState.initialize(self.registry, {1: 7.30}, 30.0,
                                          on_hp_depleted=lambda: calls.append(True))
        patient.apply_hp_delta(-10)
        self.assertEqual(calls, [])
        patient.apply_hp_delta(-40)
        self.assertEqual(patient.hp, 0.0)
        self.assertEqual(calls, [True])
        self.assertEqual(patient.last_hp_change, -20.0)

    def test_09_snapshot_is_immutable_copy(self):
        snap = self.patient.snapshot()
        with self.assertRaises(TypeError):
            snap[1] = 0.0
        self.patient.apply_delta(1, 0.1)
        self.assertAlmostEqual(snap[1], 7.30)

    def test_10_classify_boundaries(self):
        cases = [
            (7.40, ParameterStatus.NORMAL),
            (7.35, ParameterStatus.NORMAL),
            (7.45, ParameterStatus.NORMAL),
            (7.30, ParameterStatus.WARNING),
            (7.20, ParameterStatus.WARNING),
            (7.55, ParameterStatus.WARNING),
            (7.19, ParameterStatus.CRITICAL),
            (7.61, ParameterStatus.CRITICAL),
        ]
        for value, expected in cases:
            patient = PatientState.initialize(self.registry, {1: value}, 100.0)
            self.assertEqual(patient.classify(1), expected, f"pH {value}")

    def test_11_classify_is_total(self):
        for value in [-1e6, 0.0, 7.0, 7.35, 7.5, 1e6]:
            patient = PatientState.initialize(self.registry, {1: value}, 100.0)
            self.assertIn(patient.classify(1), set(ParameterStatus))

    def test_12_history_is_read_only_and_freezable(self):
        self.patient.record(0, 0.0)
        self.patient.record(1, 2.0)
        history = self.patient.history
        self.assertIsInstance(history, tuple)
        self.assertEqual([p.tick for p in history], [0, 1])

        self.patient.freeze()
        with self.assertRaises(SessionStateConflict):
            self.patient.record(2, 4.0)
        with self.assertRaises(SessionStateConflict):
            self.patient.apply_delta(1, 0.1)
        self.assertEqual(len(self.patient.history), 2)

    def test_13_trend(self):
        self.assertEqual(self.patient.trend(1), TrendDirection.STABLE)
        self.patient.record(0, 0.0)
        self.patient.apply_delta(1, 0.02)
        self.assertEqual(self.patient.trend(1), TrendDirection.UP)
        self.patient.record(1, 2.0)
        self.assertEqual(self.patient.trend(1), TrendDirection.UP)
        self.patient.record(2, 4.0)
        self.assertEqual(self.patient.trend(1), TrendDirection.STABLE)
        self.patient.apply_delta(2, -3.0)
        self.assertEqual(self.patient.trend(2), TrendDirection.DOWN)


if __name__ == '__main__':
    unittest.main()
