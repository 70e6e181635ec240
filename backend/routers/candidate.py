from fastapi import APIRouter, HTTPException, Depends
from fastapi.responses import PlainTextResponse
from typing import Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field
import logging

from auth import create_access_token, verify_student_token
from catalog import load_assessment, load_user
from constants import CONTAINER
from dashboard import build_dashboard, build_leaderboard
from database import CosmosDBService
from dependencies import get_cosmosdb, get_session_registry
from error_utils import AssessmentError, NotFoundError, raise_for_domain_error, safe_raise_http
from grading import mask_hidden
from models import (
    CodeRunRequest,
    LoginRequest,
    ProctoringEventRequest,
    SessionSummaryRequest,
    TokenResponse,
    UserRole,
)
from proctoring import log_violation, save_session_summary
from review import ReviewBuilder
from session import SessionRegistry
from submissions import SubmissionPersister

router = APIRouter()
logger = logging.getLogger(__name__)


class SaveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: Optional[str] = Field(None, description="Current editor contents")


# ===========================
# AUTH / DASHBOARD
# ===========================

@router.post("/login", response_model=TokenResponse, response_model_by_alias=True)
async def candidate_login(request: LoginRequest, db: CosmosDBService = Depends(get_cosmosdb)):
    """Exchange an admin-issued login code for a student token"""
    login_code = request.login_code.strip().upper()
    user = await db.find_one(CONTAINER["USERS"], {"login_code": login_code})
    if not user or user.get("role") != UserRole.STUDENT.value:
        logger.warning("Student login failed for unknown login code")
        raise HTTPException(status_code=401, detail="Invalid login code")

    token = create_access_token({"sub": user["id"], "role": UserRole.STUDENT.value, "name": user.get("name")})
    logger.info(f"Student {user['id']} logged in")
    return TokenResponse(token=token, user_id=user["id"], name=user.get("name"), role=UserRole.STUDENT)


@router.get("/dashboard")
async def get_dashboard(
    student: dict = Depends(verify_student_token),
    db: CosmosDBService = Depends(get_cosmosdb),
):
    try:
        user = await load_user(db, student["user_id"])
        enrolled = user.get("enrolled_courses") or []
        assessments = [
            a for a in await db.find_many(CONTAINER["ASSESSMENTS"], {"is_active": True})
            if not a.get("course_id") or a.get("course_id") in enrolled
        ]
        submissions = await SubmissionPersister(db).list_for_user(student["user_id"])
        return build_dashboard(assessments, user, submissions)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        safe_raise_http("Failed to load dashboard", e)


# ===========================
# ASSESSMENT SESSION
# ===========================

@router.post("/assessments/{assessment_id}/start")
async def start_assessment(
    assessment_id: str,
    student: dict = Depends(verify_student_token),
    db: CosmosDBService = Depends(get_cosmosdb),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Open (or resume) the timed session for an assessment"""
    try:
        session, remaining = await registry.start(db, student["user_id"], assessment_id)
        return {
            "assessmentId": assessment_id,
            "title": session.assessment.title,
            "timeLimit": session.assessment.time_limit,
            "questionIds": [q.id for q in session.questions],
            "firstQuestionId": session.questions[0].id,
            "currentQuestionId": session.current_question_id,
            "chancesRemaining": remaining,
            "timeRemaining": session.time_remaining,
        }
    except AssessmentError as e:
        raise_for_domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        safe_raise_http("Failed to start assessment", e)


@router.get("/assessments/{assessment_id}/questions/{question_id}")
async def enter_question(
    assessment_id: str,
    question_id: str,
    student: dict = Depends(verify_student_token),
    registry: SessionRegistry = Depends(get_session_registry),
):
    try:
        session = registry.require(assessment_id, student["user_id"])
        attempt = await session.enter_question(question_id)
        return session.view(attempt)
    except AssessmentError as e:
        raise_for_domain_error(e)


@router.post("/assessments/{assessment_id}/questions/{question_id}/run")
async def run_code(
    assessment_id: str,
    question_id: str,
    request: CodeRunRequest,
    student: dict = Depends(verify_student_token),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Run the code against every test case of the question"""
    try:
        session = registry.require(assessment_id, student["user_id"])
        result = await session.run(question_id, request.code)
        return mask_hidden(result).model_dump(by_alias=True)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        safe_raise_http("Failed to run code", e)


@router.post("/assessments/{assessment_id}/questions/{question_id}/reset")
async def reset_question(
    assessment_id: str,
    question_id: str,
    student: dict = Depends(verify_student_token),
    registry: SessionRegistry = Depends(get_session_registry),
):
    try:
        session = registry.require(assessment_id, student["user_id"])
        return session.view(await session.reset(question_id))
    except AssessmentError as e:
        raise_for_domain_error(e)


@router.post("/assessments/{assessment_id}/questions/{question_id}/restart")
async def restart_session(
    assessment_id: str,
    question_id: str,
    student: dict = Depends(verify_student_token),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Clear the cached work for the question and reset the timer"""
    try:
        session = registry.require(assessment_id, student["user_id"])
        return session.view(await session.restart(question_id))
    except AssessmentError as e:
        raise_for_domain_error(e)


@router.post("/assessments/{assessment_id}/questions/{question_id}/save")
async def save_progress(
    assessment_id: str,
    question_id: str,
    request: SaveRequest,
    student: dict = Depends(verify_student_token),
    registry: SessionRegistry = Depends(get_session_registry),
):
    try:
        session = registry.require(assessment_id, student["user_id"])
        attempt = await session.save(question_id, request.code)
        return {"saved": True, "questionId": question_id, "timeRemaining": session.time_remaining,
                "state": attempt.state.value}
    except AssessmentError as e:
        raise_for_domain_error(e)


@router.post("/assessments/{assessment_id}/questions/{question_id}/submit")
async def submit_question(
    assessment_id: str,
    question_id: str,
    student: dict = Depends(verify_student_token),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Persist the last run of the question and move on; the last question completes the assessment"""
    try:
        session = registry.require(assessment_id, student["user_id"])
        return await session.submit(question_id)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        safe_raise_http("Failed to submit question", e)


@router.get("/assessments/{assessment_id}/timer")
async def get_timer(
    assessment_id: str,
    student: dict = Depends(verify_student_token),
    registry: SessionRegistry = Depends(get_session_registry),
):
    try:
        session = registry.require(assessment_id, student["user_id"])
        return {
            "timeRemaining": session.time_remaining,
            "expired": session.expired,
            "currentQuestionId": session.current_question_id,
        }
    except AssessmentError as e:
        raise_for_domain_error(e)


# ===========================
# REVIEW
# ===========================

async def _load_review(db: CosmosDBService, user_id: str, assessment_id: str):
    review = await ReviewBuilder(db).load(user_id, assessment_id)
    if review is None:
        raise NotFoundError("Review not found")
    return review


@router.get("/assessments/{assessment_id}/review")
async def get_review(
    assessment_id: str,
    student: dict = Depends(verify_student_token),
    db: CosmosDBService = Depends(get_cosmosdb),
):
    try:
        review = await _load_review(db, student["user_id"], assessment_id)
        return review.to_api()
    except AssessmentError as e:
        raise_for_domain_error(e)


@router.get("/assessments/{assessment_id}/review/export", response_class=PlainTextResponse)
async def export_review(
    assessment_id: str,
    student: dict = Depends(verify_student_token),
    db: CosmosDBService = Depends(get_cosmosdb),
):
    try:
        review = await _load_review(db, student["user_id"], assessment_id)
    except AssessmentError as e:
        raise_for_domain_error(e)
    return PlainTextResponse(
        ReviewBuilder.export_csv(review),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="review_{assessment_id}.csv"'},
    )


# ===========================
# PROCTORING / LEADERBOARD
# ===========================

@router.post("/proctoring/events")
async def record_proctoring_event(
    request: ProctoringEventRequest,
    student: dict = Depends(verify_student_token),
    db: CosmosDBService = Depends(get_cosmosdb),
):
    try:
        event = await log_violation(db, student["user_id"], request)
        return event.to_api()
    except Exception as e:
        safe_raise_http("Failed to record proctoring event", e)


@router.post("/proctoring/sessions/{session_id}/summary")
async def record_session_summary(
    session_id: str,
    request: SessionSummaryRequest,
    student: dict = Depends(verify_student_token),
    db: CosmosDBService = Depends(get_cosmosdb),
):
    try:
        summary = await save_session_summary(
            db, student["user_id"], session_id, request.assessment_id, request.metadata
        )
        return summary.to_api()
    except Exception as e:
        safe_raise_http("Failed to save proctoring summary", e)


@router.get("/leaderboard/{assessment_id}")
async def get_leaderboard(
    assessment_id: str,
    student: dict = Depends(verify_student_token),
    db: CosmosDBService = Depends(get_cosmosdb),
) -> Dict[str, Any]:
    try:
        assessment = await load_assessment(db, assessment_id)
        users = await db.find_many(CONTAINER["USERS"], {"role": UserRole.STUDENT.value})
        rows = build_leaderboard(users, assessment_id)
        me = next((r for r in rows if r["userId"] == student["user_id"]), None)
        return {
            "assessmentId": assessment_id,
            "title": assessment.title,
            "entries": rows,
            "currentUserRank": me["rank"] if me else None,
        }
    except AssessmentError as e:
        raise_for_domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        safe_raise_http("Failed to load leaderboard", e)
