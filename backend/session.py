"""
Assessment session state.

One AssessmentSession exists per (assessment, user) while the student is
working. It owns a single countdown for the whole assessment and one
QuestionAttempt per opened question, each moving through
``idle -> running -> resulted -> submitted``. In-progress work is mirrored
to the session cache so a reload or a server restart can pick it up again.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from catalog import load_assessment, load_questions, load_user, question_view, starter_code_for
from constants import SESSION_CACHE_MAX_AGE_SECONDS
from countdown import Countdown
from datetime_utils import now_ms
from error_utils import (
    InvalidSessionStateError,
    NotFoundError,
    SessionExpiredError,
    ValidationFailedError,
)
from execution import ExecutionAdapter
from grading import aggregate, mask_hidden
from models import Assessment, Question, QuestionState, RunResult, SessionSnapshot, Submission
from review import ReviewBuilder
from session_cache import InMemorySessionStore, SessionCache, SessionKey
from submissions import SubmissionPersister, chances_remaining, ensure_can_start

logger = logging.getLogger(__name__)


class QuestionAttempt:
    def __init__(self, question: Question, code: str):
        self.question = question
        self.code = code
        self.state = QuestionState.IDLE
        self.results: Optional[RunResult] = None
        self.from_cache = False


class AssessmentSession:
    def __init__(
        self,
        db,
        user_id: str,
        assessment: Assessment,
        questions: List[Question],
        cache: SessionCache,
        executor: ExecutionAdapter,
        on_close=None,
    ):
        self.db = db
        self.user_id = user_id
        self.assessment = assessment
        self.questions = questions
        self.cache = cache
        self.executor = executor
        self.on_close = on_close

        self.attempts: Dict[str, QuestionAttempt] = {}
        self.current_question_id: Optional[str] = None
        self.session_start_time = now_ms()
        self.timer_started = False
        self.expired = False
        self.completed = False
        self.countdown = Countdown(self.full_time, on_save=self._save_current, on_expire=self._expire)

    @property
    def full_time(self) -> int:
        return self.assessment.time_limit * 60

    @property
    def time_remaining(self) -> int:
        return self.countdown.remaining

    def key(self, question_id: str) -> SessionKey:
        return SessionKey(self.assessment.id, question_id, self.user_id)

    def _question(self, question_id: str) -> Question:
        for question in self.questions:
            if question.id == question_id:
                return question
        raise NotFoundError("Question not found in this assessment")

    def _ensure_active(self) -> None:
        if self.expired:
            raise SessionExpiredError("Time is up. The assessment has ended.")
        if self.completed:
            raise InvalidSessionStateError("Assessment already submitted")

    def _attempt(self, question_id: str) -> QuestionAttempt:
        self._ensure_active()
        self._question(question_id)
        attempt = self.attempts.get(question_id)
        if attempt is None:
            raise InvalidSessionStateError("Open the question before acting on it")
        return attempt

    def _snapshot(self, attempt: QuestionAttempt) -> SessionSnapshot:
        return SessionSnapshot(
            code=attempt.code,
            time_remaining=self.countdown.remaining,
            session_start_time=self.session_start_time,
            question_id=attempt.question.id,
            test_results=attempt.results,
        )

    async def _write_cache(self, attempt: QuestionAttempt) -> None:
        await self.cache.save(self.key(attempt.question.id), self._snapshot(attempt))

    def _start_timer(self) -> None:
        if not self.timer_started:
            self.countdown.reset(self.full_time)
            self.timer_started = True
        self.countdown.start()

    def view(self, attempt: QuestionAttempt) -> Dict[str, Any]:
        return {
            "assessmentId": self.assessment.id,
            "question": question_view(attempt.question),
            "code": attempt.code,
            "state": attempt.state.value,
            "timeRemaining": self.countdown.remaining,
            "sessionStartTime": self.session_start_time,
            "testResults": mask_hidden(attempt.results).model_dump(by_alias=True) if attempt.results else None,
            "fromCache": attempt.from_cache,
            "questionIds": [q.id for q in self.questions],
        }

    def restore_submitted(self, latest: Dict[str, Submission]) -> None:
        """Rebuild attempts for questions submitted before the session was lost."""
        for question in self.questions:
            submission = latest.get(question.id)
            if submission is None:
                continue
            attempt = QuestionAttempt(question, submission.code)
            attempt.results = RunResult(
                test_cases=submission.test_case_results,
                score=submission.score,
                total_tests=submission.total_tests,
                passed_tests=submission.passed_tests,
                status=submission.status,
            )
            attempt.state = QuestionState.SUBMITTED
            self.attempts[question.id] = attempt
        pending = [q.id for q in self.questions if q.id not in self.attempts]
        self.current_question_id = pending[0] if pending else None

    # ===========================
    # ACTIONS
    # ===========================

    async def enter_question(self, question_id: str) -> QuestionAttempt:
        self._ensure_active()
        question = self._question(question_id)

        existing = self.attempts.get(question_id)
        if existing is not None and existing.state == QuestionState.SUBMITTED:
            self.current_question_id = question_id
            return existing

        snapshot = await self.cache.load(self.key(question_id))
        if snapshot is not None and snapshot.question_id == question_id:
            attempt = QuestionAttempt(question, snapshot.code)
            attempt.results = snapshot.test_results
            attempt.state = QuestionState.RESULTED if snapshot.test_results else QuestionState.IDLE
            attempt.from_cache = True
            self.session_start_time = snapshot.session_start_time
            self.countdown.reset(snapshot.time_remaining)
            self.timer_started = True
            logger.info(f"Restored cached session for {self.key(question_id)} ({snapshot.time_remaining}s left)")
            if snapshot.time_remaining <= 0:
                await self._expire()
                raise SessionExpiredError("Time is up. The assessment has ended.")
        else:
            attempt = QuestionAttempt(question, starter_code_for(question))

        self.attempts[question_id] = attempt
        self.current_question_id = question_id
        self._start_timer()
        return attempt

    async def run(self, question_id: str, code: str) -> RunResult:
        attempt = self._attempt(question_id)
        if attempt.state == QuestionState.RUNNING:
            raise InvalidSessionStateError("Code is already running")
        if attempt.state == QuestionState.SUBMITTED:
            raise InvalidSessionStateError("Question already submitted")
        if not (code or "").strip():
            raise ValidationFailedError("Please write some code first")
        if not attempt.question.test_cases:
            raise ValidationFailedError("No test cases available for this question")

        previous = attempt.state
        attempt.state = QuestionState.RUNNING
        attempt.code = code
        try:
            results = await self.executor.execute(code, attempt.question.language, attempt.question.test_cases)
        except Exception:
            attempt.state = previous
            raise

        if self.expired:
            raise SessionExpiredError("Time is up. The assessment has ended.")
        if self.completed:
            raise InvalidSessionStateError("Assessment already submitted")

        attempt.results = aggregate(results)
        attempt.state = QuestionState.RESULTED
        await self._write_cache(attempt)
        logger.info(
            f"Run for {self.key(question_id)}: {attempt.results.passed_tests}/{attempt.results.total_tests} passed"
        )
        return attempt.results

    async def reset(self, question_id: str) -> QuestionAttempt:
        attempt = self._attempt(question_id)
        if attempt.state in (QuestionState.RUNNING, QuestionState.SUBMITTED):
            raise InvalidSessionStateError(f"Cannot reset while {attempt.state.value}")
        attempt.code = starter_code_for(attempt.question)
        attempt.results = None
        attempt.state = QuestionState.IDLE
        await self._write_cache(attempt)
        return attempt

    async def restart(self, question_id: str) -> QuestionAttempt:
        attempt = self._attempt(question_id)
        if attempt.state in (QuestionState.RUNNING, QuestionState.SUBMITTED):
            raise InvalidSessionStateError(f"Cannot restart while {attempt.state.value}")
        await self.cache.clear(self.key(question_id))
        attempt.code = starter_code_for(attempt.question)
        attempt.results = None
        attempt.state = QuestionState.IDLE
        attempt.from_cache = False
        self.countdown.reset(self.full_time)
        self.session_start_time = now_ms()
        self.countdown.start()
        logger.info(f"Restarted session for {self.key(question_id)}")
        return attempt

    async def save(self, question_id: str, code: Optional[str] = None) -> QuestionAttempt:
        attempt = self._attempt(question_id)
        if code is not None and attempt.state != QuestionState.RUNNING:
            attempt.code = code
        await self._write_cache(attempt)
        return attempt

    async def submit(self, question_id: str) -> Dict[str, Any]:
        attempt = self._attempt(question_id)
        if attempt.state != QuestionState.RESULTED or attempt.results is None:
            raise InvalidSessionStateError("Please run your code before submitting")

        time_spent = (now_ms() - self.session_start_time) // 1000
        submission = await SubmissionPersister(self.db).persist(
            self.user_id, self.assessment, attempt.question, attempt.code, attempt.results, time_spent
        )
        await self.cache.clear(self.key(question_id))
        attempt.state = QuestionState.SUBMITTED

        next_id = self._next_question_id(question_id)
        if next_id is not None:
            self.current_question_id = next_id
            return {
                "submission": submission.to_api(),
                "completed": False,
                "nextQuestionId": next_id,
            }

        review = await self.complete()
        return {
            "submission": submission.to_api(),
            "completed": True,
            "nextQuestionId": None,
            "review": review.to_api(),
        }

    def _next_question_id(self, question_id: str) -> Optional[str]:
        ids = [q.id for q in self.questions]
        index = ids.index(question_id)
        return ids[index + 1] if index + 1 < len(ids) else None

    async def complete(self):
        """Build, save and finalize the review, then close the session."""
        for question in self.questions:
            await self.cache.clear(self.key(question.id))

        persister = SubmissionPersister(self.db)
        latest = await persister.latest_by_question(self.user_id, self.assessment.id)
        builder = ReviewBuilder(self.db)
        review = builder.build(self.user_id, self.assessment, self.questions, latest)
        await builder.save(review)
        await builder.finalize(review)

        self.completed = True
        self.countdown.cancel()
        self._close()
        return review

    # ===========================
    # TIMER CALLBACKS
    # ===========================

    async def _save_current(self) -> None:
        attempt = self.attempts.get(self.current_question_id) if self.current_question_id else None
        if attempt is not None and attempt.state != QuestionState.SUBMITTED:
            await self._write_cache(attempt)

    async def _expire(self) -> None:
        for question in self.questions:
            await self.cache.clear(self.key(question.id))
        self.expired = True
        self.countdown.cancel()
        logger.info(f"Assessment {self.assessment.id} timed out for user {self.user_id}")
        self._close()

    def _close(self) -> None:
        if self.on_close is not None:
            self.on_close(self)


class SessionRegistry:
    """Active sessions keyed by (assessment id, user id)."""

    def __init__(
        self,
        cache: Optional[SessionCache] = None,
        executor: Optional[ExecutionAdapter] = None,
        expired_ttl_seconds: int = SESSION_CACHE_MAX_AGE_SECONDS,
    ):
        self.cache = cache or SessionCache(InMemorySessionStore())
        self.executor = executor or ExecutionAdapter()
        self.expired_ttl_ms = expired_ttl_seconds * 1000
        self._sessions: Dict[Tuple[str, str], AssessmentSession] = {}
        # (assessment id, user id) -> epoch ms the session timed out
        self._expired: Dict[Tuple[str, str], int] = {}

    def configure(self, cache: Optional[SessionCache] = None, executor: Optional[ExecutionAdapter] = None) -> None:
        if cache is not None:
            self.cache = cache
        if executor is not None:
            self.executor = executor

    async def _has_cached_work(self, assessment_id: str, user_id: str, questions: List[Question]) -> bool:
        for question in questions:
            snapshot = await self.cache.load(SessionKey(assessment_id, question.id, user_id))
            if snapshot is not None and snapshot.time_remaining > 0:
                return True
        return False

    async def start(self, db, user_id: str, assessment_id: str) -> Tuple[AssessmentSession, int]:
        """Open (or resume) a session; returns it with the chances left.

        A session lost with the process (restart, another worker) is resumed
        when cached work exists for it: the chances gate is skipped and the
        questions already submitted come back as submitted.
        """
        existing = self._sessions.get((assessment_id, user_id))
        persister = SubmissionPersister(db)
        if existing is not None and not existing.expired:
            used = await persister.count_for_user_assessment(user_id, assessment_id)
            return existing, chances_remaining(existing.assessment.chances, used)

        assessment = await load_assessment(db, assessment_id)
        user_doc = await load_user(db, user_id)
        used = await persister.count_for_user_assessment(user_id, assessment_id)
        questions = await load_questions(db, assessment)
        resuming = await self._has_cached_work(assessment_id, user_id, questions)
        ensure_can_start(assessment, user_doc, used, resuming=resuming)

        if not questions:
            raise NotFoundError("No questions found in this assessment")

        session = AssessmentSession(
            db, user_id, assessment, questions, self.cache, self.executor, on_close=self._remove
        )
        if resuming:
            session.restore_submitted(await persister.latest_by_question(user_id, assessment_id))
            logger.info(f"Resuming assessment {assessment_id} for user {user_id} from cached work")
        self._sessions[(assessment_id, user_id)] = session
        self._expired.pop((assessment_id, user_id), None)
        logger.info(f"Started assessment {assessment_id} for user {user_id}")
        return session, chances_remaining(assessment.chances, used)

    def _prune_expired(self) -> None:
        cutoff = now_ms() - self.expired_ttl_ms
        for key in [k for k, at in self._expired.items() if at < cutoff]:
            del self._expired[key]

    def require(self, assessment_id: str, user_id: str) -> AssessmentSession:
        session = self._sessions.get((assessment_id, user_id))
        if session is not None:
            return session
        self._prune_expired()
        if (assessment_id, user_id) in self._expired:
            raise SessionExpiredError("Time is up. The assessment has ended.")
        raise InvalidSessionStateError("Assessment not started")

    def get(self, assessment_id: str, user_id: str) -> Optional[AssessmentSession]:
        return self._sessions.get((assessment_id, user_id))

    def _remove(self, session: AssessmentSession) -> None:
        key = (session.assessment.id, session.user_id)
        if self._sessions.get(key) is session:
            del self._sessions[key]
        if session.expired:
            self._prune_expired()
            self._expired[key] = now_ms()

    def close_all(self) -> None:
        for session in list(self._sessions.values()):
            session.countdown.cancel()
        self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)


session_registry = SessionRegistry()
