"""
Submission persistence and attempt accounting.

A Submission is written every time a student submits a question. There is
no natural composite key, so resubmitting the same question adds another
row rather than replacing the previous one; readers take the latest row per
question.
"""
import logging
from typing import Any, Dict, List, Optional

from constants import CONTAINER
from catalog import ensure_enrolled
from error_utils import AlreadyCompletedError, ChancesExhaustedError
from models import Assessment, Question, RunResult, Submission
from review import is_completed

logger = logging.getLogger(__name__)


def chances_remaining(chances: int, used: int) -> int:
    return max(0, (chances or 1) - used)


def ensure_can_start(assessment: Assessment, user_doc: Dict[str, Any], used: int, resuming: bool = False) -> None:
    """Reject a new attempt: inactive, not enrolled, already finished or out of chances.

    Resuming an unfinished attempt does not spend a chance, so the chances
    check is skipped for it.
    """
    ensure_enrolled(assessment, user_doc)
    if is_completed(user_doc, assessment.id):
        raise AlreadyCompletedError("Assessment already completed")
    if not resuming and chances_remaining(assessment.chances, used) <= 0:
        raise ChancesExhaustedError("No chances remaining for this assessment")


class SubmissionPersister:
    def __init__(self, db):
        self.db = db

    async def persist(
        self,
        user_id: str,
        assessment: Assessment,
        question: Question,
        code: str,
        run_result: RunResult,
        time_spent: int,
    ) -> Submission:
        submission = Submission(
            user_id=user_id,
            assessment_id=assessment.id,
            question_id=question.id,
            code=code,
            language=question.language,
            status=run_result.status,
            score=run_result.score,
            test_case_results=run_result.test_cases,
            passed_tests=run_result.passed_tests,
            total_tests=run_result.total_tests,
            time_spent=max(0, int(time_spent)),
        )
        await self.db.auto_create_item(CONTAINER["SUBMISSIONS"], submission.to_document())
        logger.info(
            f"Submission {submission.id} stored for user {user_id}, question {question.id}: "
            f"{run_result.passed_tests}/{run_result.total_tests} ({run_result.score}%)"
        )
        return submission

    async def list_for_user_assessment(self, user_id: str, assessment_id: str) -> List[Dict[str, Any]]:
        return await self.db.find_many(
            CONTAINER["SUBMISSIONS"], {"user_id": user_id, "assessment_id": assessment_id}
        )

    async def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        return await self.db.find_many_ordered_with_fallback(
            CONTAINER["SUBMISSIONS"], "submitted_at", {"user_id": user_id}
        )

    async def count_for_user_assessment(self, user_id: str, assessment_id: str) -> int:
        return await self.db.count_items(
            CONTAINER["SUBMISSIONS"], {"user_id": user_id, "assessment_id": assessment_id}
        )

    async def latest_by_question(self, user_id: str, assessment_id: str) -> Dict[str, Submission]:
        latest: Dict[str, Submission] = {}
        for doc in await self.list_for_user_assessment(user_id, assessment_id):
            submission = Submission.model_validate(doc)
            current = latest.get(submission.question_id)
            if current is None or submission.submitted_at >= current.submitted_at:
                latest[submission.question_id] = submission
        return latest

    async def list_ordered(self, user_id: Optional[str] = None, assessment_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Admin listing, newest first."""
        filters = {}
        if user_id:
            filters["user_id"] = user_id
        if assessment_id:
            filters["assessment_id"] = assessment_id
        return await self.db.find_many_ordered_with_fallback(CONTAINER["SUBMISSIONS"], "submitted_at", filters or None)
