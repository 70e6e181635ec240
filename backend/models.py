from datetime import datetime
from enum import Enum
from typing import List, Optional, Any, Dict
from pydantic import BaseModel, Field, ConfigDict, model_validator
import uuid

from datetime_utils import now_utc


# ===========================
# COSMOS DB SPECIFIC MODELS
# ===========================

class CosmosDocument(BaseModel):
    """Base class for all Cosmos DB documents.

    Documents are stored with snake_case field names (``model_dump()``) and
    exchanged with clients using the camelCase aliases (``model_dump(by_alias=True)``).
    """
    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore"
    )

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Document ID")

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ===========================
# ENUMS AND BASE TYPES
# ===========================

class UserRole(str, Enum):
    ADMIN = "admin"
    STUDENT = "student"


class ProgrammingLanguage(str, Enum):
    JAVA = "java"
    PYTHON = "python"
    SQL = "sql"


class RunStatus(str, Enum):
    ACCEPTED = "accepted"
    WRONG_ANSWER = "wrong_answer"


class ReviewItemStatus(str, Enum):
    ACCEPTED = "accepted"
    WRONG_ANSWER = "wrong_answer"
    NOT_ATTEMPTED = "not_attempted"


class QuestionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    RESULTED = "resulted"
    SUBMITTED = "submitted"


class ViolationType(str, Enum):
    TAB_SWITCH = "tab_switch"
    WINDOW_BLUR = "window_blur"
    RIGHT_CLICK = "right_click"
    KEYBOARD_SHORTCUT = "keyboard_shortcut"
    ALT_TAB = "alt_tab"
    FULLSCREEN_EXIT = "fullscreen_exit"
    MOUSE_LEAVE = "mouse_leave"
    MONITORING_START = "monitoring_start"
    MONITORING_STOP = "monitoring_stop"


class Severity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


# ===========================
# COURSES / QUESTIONS / ASSESSMENTS
# ===========================

class Course(CosmosDocument):
    """Course grouping assessments; students are enrolled per course"""
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="")
    created_at: datetime = Field(default_factory=now_utc, alias="createdAt")


class TestCase(BaseModel):
    """Test case for coding questions.

    For SQL questions ``input`` holds the setup statements and
    ``expected_output`` the minified JSON array of result rows.
    """
    model_config = ConfigDict(populate_by_name=True)

    input: str = Field(default="", description="Standard input, or setup SQL")
    expected_output: str = Field(..., alias="expectedOutput", description="Expected output")
    is_hidden: bool = Field(default=False, alias="isHidden")
    marks: int = Field(default=0, ge=0)


class Question(CosmosDocument):
    """Coding question authored by an admin"""
    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        json_schema_extra={
            "example": {
                "id": "question-uuid-1",
                "title": "Hello World",
                "description": "Print Hello World",
                "language": "python",
                "difficulty": "easy",
                "marks": 10,
                "starterCode": "",
                "testCases": [{"input": "", "expectedOutput": "Hello World", "isHidden": False, "marks": 10}]
            }
        }
    )

    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="")
    language: ProgrammingLanguage = Field(..., description="java, python or sql")
    difficulty: str = Field(default="medium")
    marks: int = Field(default=10, ge=0)
    sample_input: str = Field(default="", alias="sampleInput")
    sample_output: str = Field(default="", alias="sampleOutput")
    constraints: str = Field(default="")
    hints: List[str] = Field(default_factory=list)
    starter_code: str = Field(default="", alias="starterCode")
    solution_code: str = Field(default="", alias="solutionCode", description="Admin-only reference solution")
    test_cases: List[TestCase] = Field(default_factory=list, alias="testCases")
    created_at: datetime = Field(default_factory=now_utc, alias="createdAt")


class Assessment(CosmosDocument):
    """Timed, ordered set of coding questions"""
    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        json_schema_extra={
            "example": {
                "id": "assessment-uuid-1",
                "title": "Python Basics",
                "description": "Warm-up problems",
                "courseId": "course-uuid-1",
                "difficulty": "easy",
                "timeLimit": 60,
                "maxMarks": 100,
                "chances": 1,
                "questions": ["question-uuid-1"],
                "isActive": True
            }
        }
    )

    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="")
    course_id: Optional[str] = Field(None, alias="courseId")
    difficulty: str = Field(default="medium")
    time_limit: int = Field(..., gt=0, le=480, alias="timeLimit", description="Minutes")
    max_marks: int = Field(default=100, ge=0, alias="maxMarks")
    chances: int = Field(default=1, ge=1, description="Maximum graded attempts")
    questions: List[str] = Field(default_factory=list, description="Ordered question ids")
    is_active: bool = Field(default=True, alias="isActive")
    created_at: datetime = Field(default_factory=now_utc, alias="createdAt")


# ===========================
# USERS
# ===========================

class CompletionEntry(BaseModel):
    """Compact, authoritative record of a finished assessment"""
    model_config = ConfigDict(populate_by_name=True)

    score: float
    avg_exec_ms: int = Field(default=0, alias="avgExecMs")
    completed_at: datetime = Field(default_factory=now_utc, alias="completedAt")


class User(CosmosDocument):
    """Student or admin account"""
    name: str = Field(..., min_length=1)
    email: str = Field(...)
    role: UserRole = Field(default=UserRole.STUDENT)
    login_code: Optional[str] = Field(None, alias="loginCode")
    enrolled_courses: List[str] = Field(default_factory=list, alias="enrolledCourses")
    assessments_completed: Dict[str, CompletionEntry] = Field(default_factory=dict, alias="assessmentsCompleted")
    created_at: datetime = Field(default_factory=now_utc, alias="createdAt")


# ===========================
# EXECUTION AND GRADING
# ===========================

class TestCaseResult(BaseModel):
    """Outcome of one test case execution"""
    model_config = ConfigDict(populate_by_name=True)

    input: str = ""
    expected: str = ""
    actual: str = ""
    passed: bool = False
    execution_time: int = Field(default=0, alias="executionTime", description="Milliseconds")
    error: Optional[str] = None
    is_hidden: bool = Field(default=False, alias="isHidden")


class RunResult(BaseModel):
    """Aggregated result of running code against every test case of a question"""
    model_config = ConfigDict(populate_by_name=True)

    test_cases: List[TestCaseResult] = Field(default_factory=list, alias="testCases")
    score: int = Field(default=0, ge=0, le=100)
    total_tests: int = Field(default=0, ge=0, alias="totalTests")
    passed_tests: int = Field(default=0, ge=0, alias="passedTests")
    status: RunStatus = RunStatus.WRONG_ANSWER

    @model_validator(mode="after")
    def _passed_not_above_total(self):
        if self.passed_tests > self.total_tests:
            raise ValueError("passedTests cannot exceed totalTests")
        return self

    @property
    def execution_time_ms(self) -> int:
        return sum(tc.execution_time for tc in self.test_cases)


class Submission(CosmosDocument):
    """Graded attempt at one question, persisted on submit"""
    user_id: str = Field(..., alias="userId")
    assessment_id: str = Field(..., alias="assessmentId")
    question_id: str = Field(..., alias="questionId")
    code: str
    language: ProgrammingLanguage
    status: RunStatus
    score: int = Field(..., ge=0, le=100)
    max_score: int = Field(default=100, alias="maxScore")
    test_case_results: List[TestCaseResult] = Field(default_factory=list, alias="testCasesResults")
    passed_tests: int = Field(..., ge=0, alias="passedTests")
    total_tests: int = Field(..., ge=0, alias="totalTests")
    time_spent: int = Field(default=0, ge=0, alias="timeSpent", description="Seconds since session start")
    submitted_at: datetime = Field(default_factory=now_utc, alias="submittedAt")

    @model_validator(mode="after")
    def _passed_not_above_total(self):
        if self.passed_tests > self.total_tests:
            raise ValueError("passedTests cannot exceed totalTests")
        return self


# ===========================
# REVIEWS
# ===========================

class ReviewItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question_id: str = Field(..., alias="questionId")
    title: str = ""
    status: ReviewItemStatus
    passed_tests: int = Field(default=0, alias="passedTests")
    total_tests: int = Field(default=0, alias="totalTests")
    earned_points: int = Field(default=0, alias="earnedPoints")
    execution_time_ms: int = Field(default=0, alias="executionTimeMs")
    code: str = ""


class AssessmentReview(CosmosDocument):
    """Post-completion report across every question of an assessment"""
    user_id: str = Field(..., alias="userId")
    assessment_id: str = Field(..., alias="assessmentId")
    assessment_title: str = Field(default="", alias="assessmentTitle")
    items: List[ReviewItem] = Field(default_factory=list)
    points_per_question: int = Field(default=0, alias="pointsPerQuestion")
    total_score: int = Field(default=0, alias="totalScore")
    completed_count: int = Field(default=0, alias="completedCount")
    attempted_count: int = Field(default=0, alias="attemptedCount")
    avg_exec_ms: int = Field(default=0, alias="avgExecMs")
    created_at: datetime = Field(default_factory=now_utc, alias="createdAt")


# ===========================
# SESSION CACHE
# ===========================

class SessionSnapshot(BaseModel):
    """Locally cached in-progress work for one question"""
    model_config = ConfigDict(populate_by_name=True)

    code: str = ""
    time_remaining: int = Field(default=0, ge=0, alias="timeRemaining")
    session_start_time: int = Field(..., alias="sessionStartTime", description="Epoch ms")
    question_id: str = Field(..., alias="questionId")
    last_saved: int = Field(default=0, alias="lastSaved", description="Epoch ms")
    test_results: Optional[RunResult] = Field(None, alias="testResults")


# ===========================
# PROCTORING
# ===========================

class ProctoringEvent(CosmosDocument):
    """Append-only proctoring violation record"""
    user_id: str = Field(..., alias="userId")
    session_id: str = Field(..., alias="sessionId")
    assessment_id: Optional[str] = Field(None, alias="assessmentId")
    type: str
    description: str = ""
    severity: Severity = Severity.MEDIUM
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=now_utc)


class ProctoringEventRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    assessment_id: Optional[str] = Field(None, alias="assessmentId")
    type: ViolationType
    description: str = ""
    severity: Optional[Severity] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SessionSummaryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    assessment_id: Optional[str] = Field(None, alias="assessmentId")
    metadata: Dict[str, Any] = Field(default_factory=dict)


# ===========================
# API REQUEST/RESPONSE MODELS
# ===========================

class LoginRequest(BaseModel):
    """Request model for student login"""
    model_config = ConfigDict(populate_by_name=True)

    login_code: str = Field(..., alias="loginCode", description="Login code issued by an admin")


class AdminLoginRequest(BaseModel):
    """Request model for admin login"""
    email: str = Field(..., description="Admin email")
    password: str = Field(..., description="Admin password")


class TokenResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    token: str
    user_id: str = Field(..., alias="userId")
    name: Optional[str] = None
    role: UserRole


class CodeRunRequest(BaseModel):
    """Run the current question's test cases against this code"""
    code: str = Field(..., description="Source code or SQL query")


class CodeExecutionRequest(BaseModel):
    """Stateless execution of code against ad-hoc test cases"""
    model_config = ConfigDict(populate_by_name=True)

    language: ProgrammingLanguage
    code: str
    test_cases: List[TestCase] = Field(..., min_length=1, alias="testCases")


class CreateUserRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    email: str
    role: UserRole = UserRole.STUDENT
    enrolled_courses: List[str] = Field(default_factory=list, alias="enrolledCourses")
