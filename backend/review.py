"""
Review builder.

At the end of an assessment every question is scored all-or-nothing: a
question earns ``round(100 / N)`` points only when its latest submission is
accepted. Partial test-case credit inside a question never reaches the
assessment score.

Finalization writes the compact completion entry on the user first and only
then purges the raw submission rows, so an interruption between the two steps
leaves the completion authoritative and some purgeable rows behind.
"""
import csv
import io
import logging
from typing import Any, Dict, List, Optional

from constants import CONTAINER, SUBMISSION_DELETE_BATCH_SIZE
from datetime_utils import now_utc
from grading import round_half_up
from models import (
    Assessment,
    AssessmentReview,
    CompletionEntry,
    Question,
    ReviewItem,
    ReviewItemStatus,
    RunStatus,
    Submission,
)

logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    "questionId", "title", "status", "passedTests", "totalTests", "earnedPoints", "executionTimeMs",
]


def review_id(user_id: str, assessment_id: str) -> str:
    return f"{user_id}_{assessment_id}"


def is_completed(user_doc: Optional[Dict[str, Any]], assessment_id: str) -> bool:
    entry = ((user_doc or {}).get("assessments_completed") or {}).get(assessment_id)
    if not isinstance(entry, dict):
        return False
    score = entry.get("score")
    return isinstance(score, (int, float)) and not isinstance(score, bool)


def _execution_time_ms(submission: Submission) -> int:
    return sum(r.execution_time for r in submission.test_case_results)


class ReviewBuilder:
    def __init__(self, db):
        self.db = db

    @staticmethod
    def build(
        user_id: str,
        assessment: Assessment,
        questions: List[Question],
        latest_submissions: Dict[str, Submission],
    ) -> AssessmentReview:
        total_questions = len(questions)
        points_per_question = round_half_up(100 / total_questions) if total_questions else 0

        items = []
        exec_times = []
        for question in questions:
            submission = latest_submissions.get(question.id)
            if submission is None:
                items.append(ReviewItem(
                    question_id=question.id,
                    title=question.title,
                    status=ReviewItemStatus.NOT_ATTEMPTED,
                    total_tests=len(question.test_cases),
                ))
                continue

            accepted = submission.status == RunStatus.ACCEPTED
            exec_ms = _execution_time_ms(submission)
            exec_times.append(exec_ms)
            items.append(ReviewItem(
                question_id=question.id,
                title=question.title,
                status=ReviewItemStatus(submission.status.value),
                passed_tests=submission.passed_tests,
                total_tests=submission.total_tests,
                earned_points=points_per_question if accepted else 0,
                execution_time_ms=exec_ms,
                code=submission.code,
            ))

        avg_exec_ms = round_half_up(sum(exec_times) / len(exec_times)) if exec_times else 0
        return AssessmentReview(
            id=review_id(user_id, assessment.id),
            user_id=user_id,
            assessment_id=assessment.id,
            assessment_title=assessment.title,
            items=items,
            points_per_question=points_per_question,
            total_score=sum(i.earned_points for i in items),
            completed_count=sum(1 for i in items if i.status == ReviewItemStatus.ACCEPTED),
            attempted_count=len(exec_times),
            avg_exec_ms=avg_exec_ms,
        )

    async def save(self, review: AssessmentReview) -> AssessmentReview:
        await self.db.upsert_item(CONTAINER["ASSESSMENT_REVIEWS"], review.to_document(), partition_key=review.user_id)
        logger.info(f"Saved review {review.id}: score {review.total_score}")
        return review

    async def load(self, user_id: str, assessment_id: str) -> Optional[AssessmentReview]:
        doc = await self.db.read_item(
            CONTAINER["ASSESSMENT_REVIEWS"], review_id(user_id, assessment_id), partition_key=user_id
        )
        return AssessmentReview.model_validate(doc) if doc else None

    async def finalize(self, review: AssessmentReview) -> CompletionEntry:
        """Record the completion on the user, then purge that user's raw submissions."""
        entry = CompletionEntry(score=review.total_score, avg_exec_ms=review.avg_exec_ms, completed_at=now_utc())

        user_doc = await self.db.read_item(CONTAINER["USERS"], review.user_id, partition_key=review.user_id)
        if user_doc is None:
            logger.warning(f"Finalizing review for unknown user {review.user_id}")
            user_doc = {"id": review.user_id}
        completed = dict(user_doc.get("assessments_completed") or {})
        completed[review.assessment_id] = entry.model_dump(mode="json")
        user_doc["assessments_completed"] = completed
        await self.db.upsert_item(CONTAINER["USERS"], user_doc, partition_key=review.user_id)

        rows = await self.db.find_many(
            CONTAINER["SUBMISSIONS"], {"user_id": review.user_id, "assessment_id": review.assessment_id}
        )
        purged = await self.db.delete_items_batched(
            CONTAINER["SUBMISSIONS"],
            [row["id"] for row in rows],
            partition_key=review.assessment_id,
            batch_size=SUBMISSION_DELETE_BATCH_SIZE,
        )
        logger.info(
            f"Finalized assessment {review.assessment_id} for user {review.user_id}: "
            f"score {entry.score}, purged {purged} submissions"
        )
        return entry

    @staticmethod
    def export_csv(review: AssessmentReview) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(["assessment", review.assessment_title])
        writer.writerow(["totalScore", review.total_score])
        writer.writerow(["completedCount", review.completed_count])
        writer.writerow(["attemptedCount", review.attempted_count])
        writer.writerow(["avgExecMs", review.avg_exec_ms])
        writer.writerow([])
        writer.writerow(CSV_COLUMNS)
        for item in review.items:
            writer.writerow([
                item.question_id,
                item.title,
                item.status.value,
                item.passed_tests,
                item.total_tests,
                item.earned_points,
                item.execution_time_ms,
            ])
        return buffer.getvalue()
