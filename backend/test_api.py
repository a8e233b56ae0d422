import threading
import time
import unittest

from fastapi.testclient import TestClient

import main
from constants import API_CONSTANTS
from main import app
from models import (
    CaseDefinition,
    Condition,
    Goal,
    Parameter,
    ParameterRegistry,
    Treatment,
    TreatmentEffect,
)

QUICK_CASE = CaseDefinition(
    id=99, name="Mild acidosis", species="cat",
    condition=Condition(id="metabolic_acidosis", name="Metabolic acidosis"),
    registry=ParameterRegistry([
        Parameter(id=1, name="pH", normal_range=(7.35, 7.45), critical_range=(7.20, 7.60)),
    ]),
    initial_values={1: 7.30},
    treatments=[
        Treatment(id=1, name="Bolus", effects=(TreatmentEffect(parameter_id=1, immediate_delta=0.1),)),
    ],
    goals=[Goal(id="ph", title="Normalize pH", parameter_id=1, target_value=7.40,
                tolerance=0.02, points=50)],
)

# No drift and a far goal: stays running however long the clock runs
SLOW_CASE = CaseDefinition(
    id=98, name="Stable acidosis", species="dog",
    condition=Condition(id="metabolic_acidosis", name="Metabolic acidosis"),
    registry=ParameterRegistry([
        Parameter(id=1, name="pH", normal_range=(7.35, 7.45), critical_range=(7.20, 7.60)),
    ]),
    initial_values={1: 7.30},
    treatments=[
        Treatment(id=1, name="Slow buffer", effects=(
            TreatmentEffect(parameter_id=1, delta_per_tick=0.00001, duration_ticks=100000),)),
    ],
    goals=[Goal(id="ph", title="Normalize pH", parameter_id=1, target_value=7.40,
                tolerance=0.02)],
)


class TestSimulatorAPI(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        main.case_provider.add(QUICK_CASE)

    def setUp(self):
        self.client = TestClient(app)

    def start(self, case_id=1, user_id="student-1", **extra):
        response = self.client.post("/sessions", json={"case_id": case_id, "user_id": user_id, **extra})
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def test_01_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "active")

    def test_02_case_lookup(self):
        listing = self.client.get("/cases").json()
        self.assertIn(1, [c["id"] for c in listing])

        response = self.client.get("/cases/1")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()["treatments"]), 5)
        self.assertEqual(response.json()["parameters"][0]["description"], "Blood acidity")

        missing = self.client.get("/cases/12345")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["error"], "case_not_found")

    def test_03_start_and_tick(self):
        print("\nTEST 3: Start the demo case and advance the clock")
        session = self.start()
        self.assertEqual(session["status"], "running")
        self.assertEqual(len(session["parameters"]), 4)
        self.assertEqual(session["hp"], 100.0)

        response = self.client.post(f"/sessions/{session['session_id']}/tick", json={"ticks": 3})
        body = response.json()
        print(f"   Elapsed {body['elapsed_seconds']}s, HP={body['hp']}")
        self.assertEqual(body["elapsed_ticks"], 3)
        self.assertEqual(body["elapsed_seconds"], 6.0)

        history = self.client.get(f"/sessions/{session['session_id']}/history").json()["history"]
        self.assertEqual(len(history), 4)

    def test_04_treatment_feedback(self):
        session = self.start()
        response = self.client.post(f"/sessions/{session['session_id']}/treatments",
                                    json={"treatment_id": 1})
        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertTrue(body["adequate"])
        ph = next(c for c in body["changes"] if c["name"] == "pH")
        self.assertTrue(ph["gradual"])
        self.assertIn("pH will keep changing gradually", body["notes"])

        log = self.client.get(f"/sessions/{session['session_id']}/history").json()["treatments"]
        self.assertEqual(log, [{"tick": 0, "treatment_id": 1, "multiplier": 1.0}])

    def test_05_error_mapping(self):
        session = self.start()
        sid = session["session_id"]

        response = self.client.post(f"/sessions/{sid}/treatments", json={"treatment_id": 999})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"], "unknown_treatment")

        self.client.post(f"/sessions/{sid}/toggle")
        response = self.client.post(f"/sessions/{sid}/treatments", json={"treatment_id": 1})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"], "treatment_not_applicable_now")

        response = self.client.post(f"/sessions/{sid}/tick", json={"ticks": 1})
        self.assertEqual(response.status_code, 409)

        self.assertEqual(self.client.get("/sessions/nope").status_code, 404)

    def test_06_evaluation_timeout_and_no_hints(self):
        session = self.start(mode="evaluation", evaluation_tick_limit=5)
        sid = session["session_id"]
        self.assertEqual(self.client.post(f"/sessions/{sid}/hints").status_code, 403)

        body = self.client.post(f"/sessions/{sid}/tick", json={"ticks": 10}).json()
        self.assertEqual(body["status"], "lost")
        self.assertEqual(body["terminal_reason"], "timeout")
        self.assertEqual(body["elapsed_ticks"], 5)

    def test_07_diagnosis(self):
        sid = self.start()["session_id"]
        challenge = self.client.get(f"/sessions/{sid}/diagnosis").json()
        self.assertEqual(len(challenge["options"]), 4)
        self.assertTrue(any(line.startswith("pH: 7.25") for line in challenge["findings"]))

        bad = self.client.post(f"/sessions/{sid}/diagnosis", json={"option_id": "lupus"})
        self.assertEqual(bad.status_code, 422)

        result = self.client.post(f"/sessions/{sid}/diagnosis",
                                  json={"option_id": "metabolic_acidosis"}).json()
        self.assertTrue(result["correct"])
        again = self.client.post(f"/sessions/{sid}/diagnosis",
                                 json={"option_id": "metabolic_acidosis"})
        self.assertEqual(again.status_code, 409)

    def test_08_victory_awards_badges(self):
        print("\nTEST 8: Win a quick case and collect badges")
        session = self.start(case_id=99, user_id="badge-hunter")
        body = self.client.post(f"/sessions/{session['session_id']}/treatments",
                                json={"treatment_id": 1}).json()
        print(f"   Status: {body['session']['status']}, badges: {body['session']['new_badges']}")
        self.assertEqual(body["session"]["status"], "won")
        self.assertEqual(body["session"]["points"], 50)
        self.assertIn("First Victory", body["session"]["new_badges"])

        badges = self.client.get("/users/badge-hunter/badges").json()
        ids = {b["badge_id"] for b in badges["badges"]}
        self.assertEqual(ids, {"first_victory", "no_hints", "speed_record", "all_goals", "high_hp"})
        self.assertEqual(badges["stats"]["victory_sessions"], 1)

    def test_09_reset_and_restart(self):
        sid = self.start(case_id=99, user_id="restarter")["session_id"]
        self.client.post(f"/sessions/{sid}/treatments", json={"treatment_id": 1})

        body = self.client.post(f"/sessions/{sid}/reset").json()
        self.assertEqual(body["status"], "idle")
        self.assertIsNone(body["hp"])
        self.assertEqual(body["new_badges"], [])

        body = self.client.post(f"/sessions/{sid}/start", json={"mode": "practice"}).json()
        self.assertEqual(body["status"], "running")
        self.assertEqual(body["parameters"][0]["value"], 7.3)

        conflict = self.client.post(f"/sessions/{sid}/start", json={})
        self.assertEqual(conflict.status_code, 409)

    def test_10_rejects_bad_input(self):
        response = self.client.post("/sessions", json={"case_id": 0, "user_id": "x"})
        self.assertEqual(response.status_code, 422)

    def test_11_inactive_sessions_are_evicted(self):
        old = self.start(case_id=99, user_id="idle-student")["session_id"]
        main.sessions[old].last_active -= API_CONSTANTS.SESSION_TTL_SECONDS + 1

        fresh = self.start(case_id=99, user_id="idle-student")["session_id"]
        self.assertNotIn(old, main.sessions)
        self.assertIn(fresh, main.sessions)
        self.assertEqual(self.client.get(f"/sessions/{old}").status_code, 404)

    def test_12_reading_a_session_keeps_it_alive(self):
        sid = self.start(case_id=99, user_id="busy-student")["session_id"]
        main.sessions[sid].last_active -= API_CONSTANTS.SESSION_TTL_SECONDS - 5
        self.client.get(f"/sessions/{sid}")
        self.assertEqual(main._evict_stale(), [])
        self.assertIn(sid, main.sessions)


class TestAutoTickClock(unittest.TestCase):
    """Sessions driven by the background clock task on the server loop."""

    PERIOD = 0.01

    @classmethod
    def setUpClass(cls):
        main.case_provider.add(SLOW_CASE)

    def setUp(self):
        # A persistent client keeps one event loop alive between requests
        self.client = TestClient(app)
        self.client.__enter__()
        self.addCleanup(self.client.__exit__, None, None, None)

    def start(self, **extra):
        body = {"case_id": SLOW_CASE.id, "user_id": "auto-student",
                "tick_period_seconds": self.PERIOD, **extra}
        response = self.client.post("/sessions", json=body)
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()["session_id"]

    def wait_until(self, condition, timeout=5.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if condition():
                return
            time.sleep(self.PERIOD)
        self.fail("Condition not reached before timeout")

    def elapsed(self, sid):
        return self.client.get(f"/sessions/{sid}").json()["elapsed_ticks"]

    def test_01_clock_ticks_pauses_and_stops_on_reset(self):
        print("\nTEST 1: Background clock lifecycle")
        sid = self.start(auto_tick=True)
        handle = main.sessions[sid]
        task = handle.clock_task
        self.assertIsNotNone(task)

        self.wait_until(lambda: self.elapsed(sid) >= 3)

        paused = self.client.post(f"/sessions/{sid}/toggle").json()
        self.assertEqual(paused["status"], "paused")
        time.sleep(self.PERIOD * 10)
        self.assertEqual(self.elapsed(sid), paused["elapsed_ticks"])
        self.assertFalse(task.done())

        self.client.post(f"/sessions/{sid}/toggle")
        self.wait_until(lambda: self.elapsed(sid) > paused["elapsed_ticks"])

        reset = self.client.post(f"/sessions/{sid}/reset").json()
        self.assertEqual(reset["status"], "idle")
        self.assertIsNone(handle.clock_task)
        self.wait_until(task.done)
        self.assertTrue(task.cancelled())
        time.sleep(self.PERIOD * 5)
        print(f"   Ticks after reset: {self.elapsed(sid)}")
        self.assertEqual(self.elapsed(sid), 0)

    def test_02_treatment_during_auto_tick_is_serialized(self):
        print("\nTEST 2: Treatment while the clock is running")
        sid = self.start()
        machine = main.sessions[sid].machine
        self.client.post(f"/sessions/{sid}/reset")

        threads = set()
        tick, record_treatment = machine.tick, machine.record_treatment

        def tracked_tick():
            threads.add(threading.get_ident())
            return tick()

        def tracked_treatment(treatment_id):
            threads.add(threading.get_ident())
            return record_treatment(treatment_id)

        machine.tick = tracked_tick
        machine.record_treatment = tracked_treatment

        self.client.post(f"/sessions/{sid}/start", json={"auto_tick": True})
        self.wait_until(lambda: self.elapsed(sid) >= 2)
        response = self.client.post(f"/sessions/{sid}/treatments", json={"treatment_id": 1})
        self.assertEqual(response.status_code, 200, response.text)
        at_treatment = response.json()["session"]["elapsed_ticks"]
        self.wait_until(lambda: self.elapsed(sid) >= at_treatment + 2)

        print(f"   Threads that touched the session: {len(threads)}")
        self.assertEqual(len(threads), 1)
        active = [a.treatment_id for a in machine.patient.active_effects]
        self.assertIn(1, active)
        self.client.post(f"/sessions/{sid}/reset")


if __name__ == '__main__':
    unittest.main()
