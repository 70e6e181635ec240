"""
Comparator and score aggregation for coding questions.

Equality is strict: outputs are compared after trimming surrounding
whitespace, with no numeric tolerance and no semantic diffing. SQL results
arrive here already serialized as minified JSON strings, so the same
comparison applies.
"""
import math
from typing import Iterable, List, Optional

from models import RunResult, RunStatus, TestCaseResult


def round_half_up(value: float) -> int:
    """Round a non-negative number half away from zero (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


def outputs_match(actual: Optional[str], expected: Optional[str]) -> bool:
    return (actual or "").strip() == (expected or "").strip()


def mismatch_message(actual: Optional[str], expected: Optional[str]) -> str:
    return f'Expected: "{(expected or "").strip()}", Got: "{(actual or "").strip()}"'


def score_for(passed_tests: int, total_tests: int) -> int:
    if total_tests <= 0:
        return 0
    return round_half_up(100 * passed_tests / total_tests)


def aggregate(results: Iterable[TestCaseResult]) -> RunResult:
    """Fold per-test-case results into the question-level score and status."""
    test_cases: List[TestCaseResult] = list(results)
    total = len(test_cases)
    passed = sum(1 for r in test_cases if r.passed)
    status = RunStatus.ACCEPTED if passed == total else RunStatus.WRONG_ANSWER
    return RunResult(
        test_cases=test_cases,
        score=score_for(passed, total),
        total_tests=total,
        passed_tests=passed,
        status=status,
    )


def mask_hidden(run_result: RunResult) -> RunResult:
    """Copy of a run result safe to show a student: hidden cases keep only pass/fail and timing."""
    masked = []
    for tc in run_result.test_cases:
        if tc.is_hidden:
            masked.append(TestCaseResult(
                passed=tc.passed,
                execution_time=tc.execution_time,
                is_hidden=True,
            ))
        else:
            masked.append(tc)
    return run_result.model_copy(update={"test_cases": masked})
