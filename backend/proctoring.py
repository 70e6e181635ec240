"""Proctoring violation log and per-session summaries."""
import logging
from typing import Any, Dict, List, Optional

from constants import CONTAINER
from datetime_utils import now_utc
from models import ProctoringEvent, ProctoringEventRequest, Severity, ViolationType

logger = logging.getLogger(__name__)

DEFAULT_SEVERITY = {
    ViolationType.TAB_SWITCH: Severity.HIGH,
    ViolationType.ALT_TAB: Severity.HIGH,
    ViolationType.FULLSCREEN_EXIT: Severity.HIGH,
    ViolationType.WINDOW_BLUR: Severity.MEDIUM,
    ViolationType.KEYBOARD_SHORTCUT: Severity.MEDIUM,
    ViolationType.MOUSE_LEAVE: Severity.MEDIUM,
    ViolationType.RIGHT_CLICK: Severity.LOW,
    ViolationType.MONITORING_START: Severity.INFO,
    ViolationType.MONITORING_STOP: Severity.INFO,
}


def severity_for(violation_type: ViolationType, severity: Optional[Severity] = None) -> Severity:
    return severity or DEFAULT_SEVERITY.get(violation_type, Severity.MEDIUM)


async def log_violation(db, user_id: str, request: ProctoringEventRequest) -> ProctoringEvent:
    event = ProctoringEvent(
        user_id=user_id,
        session_id=request.session_id,
        assessment_id=request.assessment_id,
        type=request.type.value,
        description=request.description,
        severity=severity_for(request.type, request.severity),
        metadata=request.metadata,
    )
    await db.auto_create_item(CONTAINER["PROCTORING_EVENTS"], event.to_document())
    if event.severity == Severity.HIGH:
        logger.warning(f"High severity proctoring event '{event.type}' for user {user_id} (session {event.session_id})")
    return event


def summarize(events: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Violation counts for one session; info events (monitoring start/stop) are not violations."""
    violations = [e for e in events if e.get("severity") != Severity.INFO.value]
    types = []
    for event in violations:
        if event.get("type") not in types:
            types.append(event.get("type"))
    return {
        "totalViolations": len(violations),
        "violationTypes": types,
        "highSeverityViolations": sum(1 for e in violations if e.get("severity") == Severity.HIGH.value),
        "mediumSeverityViolations": sum(1 for e in violations if e.get("severity") == Severity.MEDIUM.value),
        "lowSeverityViolations": sum(1 for e in violations if e.get("severity") == Severity.LOW.value),
    }


async def save_session_summary(
    db,
    user_id: str,
    session_id: str,
    assessment_id: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> ProctoringEvent:
    events = await db.find_many_ordered_with_fallback(
        CONTAINER["PROCTORING_EVENTS"], "timestamp", {"session_id": session_id}, descending=False
    )
    events = [e for e in events if e.get("user_id") == user_id]
    metadata = summarize(events)
    metadata.update(extra or {})

    summary = ProctoringEvent(
        user_id=user_id,
        session_id=session_id,
        assessment_id=assessment_id,
        type="session_summary",
        description="Assessment session completed - proctoring summary",
        severity=Severity.INFO,
        metadata=metadata,
        timestamp=now_utc(),
    )
    await db.auto_create_item(CONTAINER["PROCTORING_SESSIONS"], summary.to_document())
    logger.info(f"Proctoring summary for session {session_id}: {metadata['totalViolations']} violations")
    return summary


async def list_events(db, user_id: Optional[str] = None, assessment_id: Optional[str] = None) -> List[Dict[str, Any]]:
    filters = {}
    if user_id:
        filters["user_id"] = user_id
    if assessment_id:
        filters["assessment_id"] = assessment_id
    return await db.find_many_ordered_with_fallback(CONTAINER["PROCTORING_EVENTS"], "timestamp", filters or None)
