"""Read-side helpers for assessments and their questions."""
import logging
from typing import Any, Dict, List, Optional

from constants import CONTAINER
from error_utils import AccessDeniedError, NotFoundError
from models import Assessment, Question

logger = logging.getLogger(__name__)

DEFAULT_CODE = {
    "python": 'print("Hello World")',
    "java": 'public class Main {\n    public static void main(String[] args) {\n        System.out.println("Hello World");\n    }\n}',
    "sql": 'SELECT "Hello World" AS message;',
}


def starter_code_for(question: Question) -> str:
    return question.starter_code or DEFAULT_CODE.get(question.language.value, "")


async def load_assessment(db, assessment_id: str) -> Assessment:
    doc = await db.read_item(CONTAINER["ASSESSMENTS"], assessment_id, partition_key=assessment_id)
    if not doc:
        raise NotFoundError("Assessment not found")
    return Assessment.model_validate(doc)


async def load_questions(db, assessment: Assessment) -> List[Question]:
    """Questions in assessment order; ids that no longer resolve are skipped."""
    questions = []
    for question_id in assessment.questions:
        doc = await db.read_item(CONTAINER["QUESTIONS"], question_id, partition_key=question_id)
        if doc:
            questions.append(Question.model_validate(doc))
        else:
            logger.warning(f"Assessment {assessment.id} references missing question {question_id}")
    return questions


async def load_user(db, user_id: str) -> Dict[str, Any]:
    doc = await db.read_item(CONTAINER["USERS"], user_id, partition_key=user_id)
    if not doc:
        raise NotFoundError("User not found")
    return doc


def ensure_enrolled(assessment: Assessment, user_doc: Dict[str, Any]) -> None:
    if not assessment.is_active:
        raise AccessDeniedError("Assessment is not active")
    if assessment.course_id and assessment.course_id not in (user_doc.get("enrolled_courses") or []):
        raise AccessDeniedError("You are not enrolled in this course")


def question_view(question: Question, starter: Optional[str] = None) -> Dict[str, Any]:
    """Student-facing question: no reference solution, hidden test cases blanked."""
    data = question.to_api()
    data.pop("solutionCode", None)
    data["testCases"] = [
        {"input": "", "expectedOutput": "", "isHidden": True, "marks": tc.marks} if tc.is_hidden
        else tc.model_dump(by_alias=True)
        for tc in question.test_cases
    ]
    if starter is not None:
        data["starterCode"] = starter
    return data
