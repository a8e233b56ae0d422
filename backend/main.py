# main.py

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from datetime import datetime
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from constants import API_CONSTANTS, VERSION, SessionStatus, SimulationConfig, SimulationMode
from models import (
    CaseNotFound,
    ChallengeAlreadyResolved,
    InvalidCaseData,
    SessionOutcome,
    SessionStateConflict,
    SimulationError,
    TreatmentNotApplicableNow,
    UnknownDiagnosticOption,
    UnknownParameter,
    UnknownTreatment,
)
from achievements import AchievementEngine
from advisor import HttpAdequacyAdvisor
from case_library import BADGE_CATALOG, default_cases
from collaborators import InMemoryCaseProvider, InMemoryPersistenceSink
from diagnostics import DiagnosticEvaluator
from goals import GoalSupervisor
from session import SessionStateMachine
from simulation_clock import run_periodic
from treatments import TreatmentResolver

# --- 1. CONFIGURATION & LOGGING ---
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("vetbalance-api")

app = FastAPI(
    title="VetBalance Simulator API",
    version=VERSION,
    description="Clinical training simulator: manage a virtual patient's acid-base "
                "balance, apply treatments and earn badges.\n\n"
                "**Educational use only.**",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

case_provider = InMemoryCaseProvider(default_cases())
persistence = InMemoryPersistenceSink()
achievement_engine = AchievementEngine(BADGE_CATALOG, persistence)
advisor = HttpAdequacyAdvisor.from_env()


@dataclass
class SessionHandle:
    machine: SessionStateMachine
    new_badges: List[str] = field(default_factory=list)
    clock_task: Optional[asyncio.Task] = None
    last_active: float = field(default_factory=time.monotonic)


# Session endpoints are `async def`: they run on the same event loop as the
# clock tasks, one step at a time.
sessions: Dict[str, SessionHandle] = {}

# --- 2. ERROR SURFACING (Taxonomy -> HTTP) ---
ERROR_STATUS = {
    CaseNotFound: 404,
    UnknownTreatment: 404,
    UnknownParameter: 404,
    UnknownDiagnosticOption: 422,
    InvalidCaseData: 422,
    TreatmentNotApplicableNow: 409,
    SessionStateConflict: 409,
    ChallengeAlreadyResolved: 409,
}


@app.exception_handler(SimulationError)
async def simulation_error_handler(request: Request, exc: SimulationError):
    status_code = ERROR_STATUS.get(type(exc), 400)
    logger.warning(f"{request.url.path}: {exc.kind}: {exc}")
    return JSONResponse(status_code=status_code, content={"error": exc.kind, "detail": str(exc)})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(f"Simulation failure on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500,
                        content={"error": "internal_error", "detail": "Simulation engine failure"})

# --- 3. STRICT INPUT SCHEMA (The Guardrails) ---
class StartSessionRequest(BaseModel):
    case_id: int = Field(..., ge=1, description="Case to play")
    user_id: str = Field(..., min_length=1, max_length=128)
    mode: SimulationMode = Field(default=SimulationMode.PRACTICE)
    auto_tick: bool = Field(False, description="Advance the clock in the background")
    evaluation_tick_limit: Optional[int] = Field(None, ge=1, le=10000)
    tick_period_seconds: Optional[float] = Field(None, gt=0, le=60,
                                                 description="Wall-clock seconds per auto tick")

    class Config:
        json_schema_extra = {
            "example": {"case_id": 1, "user_id": "student-42", "mode": "evaluation"}
        }

class RestartRequest(BaseModel):
    mode: SimulationMode = Field(default=SimulationMode.PRACTICE)
    auto_tick: bool = False

class TickRequest(BaseModel):
    ticks: int = Field(1, ge=1, le=1000)

class TreatmentRequest(BaseModel):
    treatment_id: int

class DiagnosisRequest(BaseModel):
    option_id: str = Field(..., min_length=1)

# --- 4. EXPLICIT RESPONSE SCHEMA (The Contract) ---
class ParameterReading(BaseModel):
    id: int
    name: str
    unit: Optional[str]
    value: float
    status: str
    trend: str

class GoalView(BaseModel):
    id: str
    title: str
    points: int
    achieved: bool
    progress: float

class SessionView(BaseModel):
    session_id: str
    case_id: int
    user_id: str
    mode: SimulationMode
    status: SessionStatus
    terminal_reason: Optional[str]
    elapsed_ticks: int
    elapsed_seconds: float
    hp: Optional[float]
    last_hp_change: float
    min_hp_observed: float
    hints_used: bool
    points: int
    goals_achieved: int
    goals_total: int
    goals: List[GoalView]
    parameters: List[ParameterReading]
    diagnosis_correct: Optional[bool]
    new_badges: List[str]
    generated_at: datetime = Field(default_factory=datetime.now)

class ParameterChangeView(BaseModel):
    parameter_id: int
    name: str
    before: float
    after: float
    unit: Optional[str]
    gradual: bool

class TreatmentResponse(BaseModel):
    treatment_name: str
    adequate: bool
    multiplier: float
    rationale: Optional[str]
    hp_before: float
    hp_after: float
    changes: List[ParameterChangeView]
    notes: List[str]
    session: SessionView

# --- 5. HELPERS ---
def _get_handle(session_id: str) -> SessionHandle:
    handle = sessions.get(session_id)
    if handle is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    handle.last_active = time.monotonic()
    return handle


def _evict_stale(now: Optional[float] = None) -> List[str]:
    """Drop sessions idle past the TTL. Outcomes are already persisted."""
    now = time.monotonic() if now is None else now
    stale = [sid for sid, h in sessions.items()
             if now - h.last_active > API_CONSTANTS.SESSION_TTL_SECONDS]
    for sid in stale:
        _cancel_clock(sessions.pop(sid))
        logger.info(f"Evicted inactive session {sid}")
    return stale


def _view(handle: SessionHandle) -> SessionView:
    machine = handle.machine
    state = machine.state
    patient = machine.patient

    readings = []
    goals = []
    if patient is not None:
        for pid, value in patient.values.items():
            p = machine.case.registry.get(pid)
            readings.append(ParameterReading(
                id=pid, name=p.name, unit=p.unit, value=round(value, 3),
                status=patient.classify(pid).value, trend=patient.trend(pid).value,
            ))
        for goal in machine.case.goals:
            achieved = goal.id in state.achieved_goal_ids
            goals.append(GoalView(
                id=goal.id, title=goal.title, points=goal.points, achieved=achieved,
                progress=100.0 if achieved else round(GoalSupervisor.progress(goal, patient), 1),
            ))

    return SessionView(
        session_id=state.session_id,
        case_id=state.case_id,
        user_id=state.user_id,
        mode=state.mode,
        status=state.status,
        terminal_reason=state.terminal_reason.value if state.terminal_reason else None,
        elapsed_ticks=state.elapsed_ticks,
        elapsed_seconds=machine.elapsed_seconds,
        hp=patient.hp if patient else None,
        last_hp_change=patient.last_hp_change if patient else 0.0,
        min_hp_observed=state.min_hp_observed,
        hints_used=state.hints_used,
        points=state.points,
        goals_achieved=state.goals_achieved,
        goals_total=state.goals_total,
        goals=goals,
        parameters=readings,
        diagnosis_correct=state.diagnosis_correct,
        new_badges=handle.new_badges,
    )


def _outcome_handler(handle: SessionHandle):
    def handle_outcome(outcome: SessionOutcome):
        # Persist first: achievement stats must include this session
        persistence.record_outcome(outcome)
        awarded = achievement_engine.evaluate(outcome.user_id, outcome)
        handle.new_badges = [b.name for b in awarded]
    return handle_outcome


def _cancel_clock(handle: SessionHandle):
    if handle.clock_task is not None and not handle.clock_task.done():
        handle.clock_task.cancel()
    handle.clock_task = None


def _clock_finished(task: asyncio.Task):
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Session clock stopped with an error: {exc}", exc_info=exc)


def _start_clock(handle: SessionHandle):
    _cancel_clock(handle)
    machine = handle.machine
    handle.clock_task = asyncio.create_task(run_periodic(
        step=machine.tick,
        is_active=lambda: machine.status == SessionStatus.RUNNING,
        should_continue=lambda: machine.status in (SessionStatus.RUNNING, SessionStatus.PAUSED),
        period_seconds=machine.config.tick_period_seconds,
    ))
    handle.clock_task.add_done_callback(_clock_finished)

# --- 6. ENDPOINTS ---

@app.get("/")
def read_root():
    return {"status": "active", "message": "VetBalance Simulator API is running"}

@app.get("/health")
def health_check():
    return {"status": "active", "version": VERSION, "module": "vetbalance-simulation-core"}

@app.get("/cases")
def list_cases():
    cases = [case_provider.get_case(cid) for cid in case_provider.case_ids()]
    return [{"id": c.id, "name": c.name, "species": c.species} for c in cases]

@app.get("/cases/{case_id}")
def get_case(case_id: int):
    case = case_provider.get_case(case_id)
    return {
        "id": case.id,
        "name": case.name,
        "species": case.species,
        "description": case.description,
        "parameters": [
            {"id": p.id, "name": p.name, "unit": p.unit, "description": p.description,
             "normal_range": list(p.normal_range), "critical_range": list(p.critical_range)}
            for p in case.registry
        ],
        "treatments": [
            {"id": t.id, "name": t.name, "adequate": t.adequate,
             "priority": t.priority, "rationale": t.rationale}
            for t in case.treatments
        ],
        "goals": [{"id": g.id, "title": g.title, "points": g.points} for g in case.goals],
        "diagnostic_options": [{"id": o.id, "label": o.label} for o in case.diagnostic_options],
    }

@app.post("/sessions", response_model=SessionView)
async def start_session(request: StartSessionRequest):
    _evict_stale()
    case = case_provider.get_case(request.case_id)
    overrides = {}
    if request.evaluation_tick_limit is not None:
        overrides["evaluation_tick_limit"] = request.evaluation_tick_limit
    if request.tick_period_seconds is not None:
        overrides["tick_period_seconds"] = request.tick_period_seconds
    try:
        config = SimulationConfig(**overrides)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Invalid configuration: {e}")

    session_id = str(uuid.uuid4())
    machine = SessionStateMachine(
        case, session_id, request.user_id, config=config,
        resolver=TreatmentResolver(advisor=advisor, inadequate_efficacy=config.inadequate_efficacy),
    )
    handle = SessionHandle(machine=machine)
    machine.on_outcome(_outcome_handler(handle))
    machine.start(request.mode)
    sessions[session_id] = handle

    if request.auto_tick:
        _start_clock(handle)

    logger.info(f"Started session {session_id} for {request.user_id} on case {case.id}")
    return _view(handle)

@app.get("/sessions/{session_id}", response_model=SessionView)
async def get_session(session_id: str):
    return _view(_get_handle(session_id))

@app.get("/sessions/{session_id}/history")
async def get_history(session_id: str):
    machine = _get_handle(session_id).machine
    treatments = [
        {"tick": r.tick, "treatment_id": r.treatment_id, "multiplier": r.multiplier}
        for r in machine.state.treatment_log
    ]
    if machine.patient is None:
        return {"session_id": session_id, "history": [], "treatments": treatments}
    return {
        "session_id": session_id,
        "history": [point.as_dict() for point in machine.patient.history],
        "treatments": treatments,
    }

@app.post("/sessions/{session_id}/toggle", response_model=SessionView)
async def toggle_session(session_id: str):
    handle = _get_handle(session_id)
    handle.machine.toggle()
    return _view(handle)

@app.post("/sessions/{session_id}/reset", response_model=SessionView)
async def reset_session(session_id: str):
    handle = _get_handle(session_id)
    _cancel_clock(handle)
    handle.machine.reset()
    handle.new_badges = []
    return _view(handle)

@app.post("/sessions/{session_id}/start", response_model=SessionView)
async def restart_session(session_id: str, request: RestartRequest):
    handle = _get_handle(session_id)
    handle.machine.start(request.mode)
    if request.auto_tick:
        _start_clock(handle)
    return _view(handle)

@app.post("/sessions/{session_id}/tick", response_model=SessionView)
async def advance_session(session_id: str, request: TickRequest):
    handle = _get_handle(session_id)
    if handle.machine.status != SessionStatus.RUNNING:
        raise SessionStateConflict(f"Cannot advance a {handle.machine.status.value} session")
    handle.machine.run_ticks(request.ticks)
    return _view(handle)

@app.post("/sessions/{session_id}/treatments", response_model=TreatmentResponse)
async def apply_treatment(session_id: str, request: TreatmentRequest):
    handle = _get_handle(session_id)
    feedback = handle.machine.record_treatment(request.treatment_id)
    return TreatmentResponse(
        treatment_name=feedback.treatment_name,
        adequate=feedback.adequate,
        multiplier=feedback.multiplier,
        rationale=feedback.rationale,
        hp_before=feedback.hp_before,
        hp_after=feedback.hp_after,
        changes=[ParameterChangeView(parameter_id=c.parameter_id, name=c.name, before=c.before,
                                     after=c.after, unit=c.unit, gradual=c.gradual)
                 for c in feedback.changes],
        notes=feedback.notes,
        session=_view(handle),
    )

@app.post("/sessions/{session_id}/hints", response_model=SessionView)
async def use_hint(session_id: str):
    handle = _get_handle(session_id)
    if handle.machine.state.mode == SimulationMode.EVALUATION:
        raise HTTPException(status_code=403, detail="Hints are unavailable in evaluation mode")
    handle.machine.record_hint_used()
    return _view(handle)

@app.get("/sessions/{session_id}/diagnosis")
async def get_diagnostic_challenge(session_id: str):
    machine = _get_handle(session_id).machine
    challenge = machine.challenge
    if challenge is None:
        raise HTTPException(status_code=404, detail="No diagnostic challenge for this session")
    return {
        "options": [{"id": o.id, "label": o.label} for o in challenge.candidate_options],
        "findings": DiagnosticEvaluator.findings(machine.patient),
        "resolved": challenge.resolved,
        "correct": challenge.correct,
    }

@app.post("/sessions/{session_id}/diagnosis")
async def submit_diagnosis(session_id: str, request: DiagnosisRequest):
    handle = _get_handle(session_id)
    result = handle.machine.submit_diagnosis(request.option_id)
    return {
        "correct": result.correct,
        "correct_option": {"id": result.correct_option.id, "label": result.correct_option.label},
        "selected_option_id": result.selected_option_id,
        "session": _view(handle),
    }

@app.get("/users/{user_id}/badges")
def list_badges(user_id: str):
    names = {b.id: b.name for b in BADGE_CATALOG}
    stats = persistence.user_stats(user_id)
    return {
        "user_id": user_id,
        "stats": {
            "total_sessions": stats.total_sessions,
            "victory_sessions": stats.victory_sessions,
            "unique_cases_played": stats.unique_cases_played,
        },
        "badges": [
            {"badge_id": a.badge_id, "name": names.get(a.badge_id, a.badge_id),
             "session_id": a.session_id, "awarded_at": a.awarded_at}
            for a in persistence.awards_for(user_id)
        ],
    }
