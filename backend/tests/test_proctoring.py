import asyncio

import models
from constants import CONTAINER
from proctoring import log_violation, save_session_summary, severity_for, summarize


def _event(violation, severity=None, session_id="sess-1"):
    return models.ProctoringEventRequest(session_id=session_id, assessment_id="a1", type=violation, severity=severity)


def test_default_severities():
    assert severity_for(models.ViolationType.TAB_SWITCH) == models.Severity.HIGH
    assert severity_for(models.ViolationType.WINDOW_BLUR) == models.Severity.MEDIUM
    assert severity_for(models.ViolationType.RIGHT_CLICK) == models.Severity.LOW
    assert severity_for(models.ViolationType.MONITORING_START) == models.Severity.INFO
    assert severity_for(models.ViolationType.RIGHT_CLICK, models.Severity.HIGH) == models.Severity.HIGH


def test_log_violation_appends_event(db):
    event = asyncio.run(log_violation(db, "u1", _event("fullscreen_exit")))

    stored = db.storage[CONTAINER["PROCTORING_EVENTS"]][event.id]
    assert stored["user_id"] == "u1"
    assert stored["session_id"] == "sess-1"
    assert stored["type"] == "fullscreen_exit"
    assert stored["severity"] == "high"


def test_session_summary_counts_violations(db):
    async def scenario():
        for violation in ("monitoring_start", "tab_switch", "tab_switch", "window_blur", "right_click"):
            await log_violation(db, "u1", _event(violation))
        await log_violation(db, "u1", _event("alt_tab", session_id="other"))
        return await save_session_summary(db, "u1", "sess-1", "a1", {"reason": "completed"})

    summary = asyncio.run(scenario())
    stored = db.storage[CONTAINER["PROCTORING_SESSIONS"]][summary.id]

    assert stored["type"] == "session_summary"
    assert stored["severity"] == "info"
    meta = stored["metadata"]
    assert meta["totalViolations"] == 4
    assert sorted(meta["violationTypes"]) == ["right_click", "tab_switch", "window_blur"]
    assert meta["highSeverityViolations"] == 2
    assert meta["mediumSeverityViolations"] == 1
    assert meta["lowSeverityViolations"] == 1
    assert meta["reason"] == "completed"


def test_summarize_empty_session():
    assert summarize([])["totalViolations"] == 0
