import asyncio
import csv
import io

import models
from constants import CONTAINER
from conftest import seed_catalog
from review import ReviewBuilder, is_completed


def _submission(question_id, status, passed, total, times=(10,), code="code"):
    return models.Submission(
        user_id="u1",
        assessment_id="a1",
        question_id=question_id,
        code=code,
        language="python",
        status=status,
        score=round(100 * passed / total),
        test_case_results=[models.TestCaseResult(passed=True, execution_time=t) for t in times],
        passed_tests=passed,
        total_tests=total,
    )


def test_three_questions_two_accepted(db):
    assessment, questions, _ = seed_catalog(db)
    latest = {
        "q1": _submission("q1", "accepted", 2, 2, times=(10, 20)),
        "q2": _submission("q2", "wrong_answer", 3, 5, times=(40,)),
        "q3": _submission("q3", "accepted", 1, 1, times=(6,)),
    }

    review = ReviewBuilder.build("u1", assessment, questions, latest)

    assert review.id == "u1_a1"
    assert review.points_per_question == 33
    assert review.total_score == 33 * 2
    assert [i.earned_points for i in review.items] == [33, 0, 33]
    assert review.completed_count == 2
    assert review.attempted_count == 3
    # (30 + 40 + 6) / 3 over every attempted question, accepted or not
    assert review.avg_exec_ms == 25


def test_unattempted_questions_earn_nothing(db):
    assessment, questions, _ = seed_catalog(db)
    review = ReviewBuilder.build("u1", assessment, questions, {"q2": _submission("q2", "accepted", 1, 1, times=(8,))})

    statuses = [i.status for i in review.items]
    assert statuses == [models.ReviewItemStatus.NOT_ATTEMPTED, models.ReviewItemStatus.ACCEPTED,
                        models.ReviewItemStatus.NOT_ATTEMPTED]
    assert review.total_score == 33
    assert review.attempted_count == 1
    assert review.avg_exec_ms == 8
    assert review.items[0].total_tests == 2


def test_single_and_empty_assessments():
    assessment = models.Assessment(id="a2", title="Solo", time_limit=10, questions=["x"])
    question = models.Question(id="x", title="X", language="python")
    sub = models.Submission(user_id="u1", assessment_id="a2", question_id="x", code="c", language="python",
                            status="accepted", score=100, passed_tests=1, total_tests=1)
    review = ReviewBuilder.build("u1", assessment, [question], {"x": sub})
    assert review.total_score == 100

    empty = ReviewBuilder.build("u1", assessment, [], {})
    assert empty.points_per_question == 0
    assert empty.total_score == 0
    assert empty.avg_exec_ms == 0


def test_finalize_records_completion_before_purging(db):
    assessment, questions, _ = seed_catalog(db)
    for i in range(3):
        db.storage[CONTAINER["SUBMISSIONS"]][f"s{i}"] = {"id": f"s{i}", "user_id": "u1", "assessment_id": "a1"}
    db.storage[CONTAINER["SUBMISSIONS"]]["other"] = {"id": "other", "user_id": "u2", "assessment_id": "a1"}

    builder = ReviewBuilder(db)
    review = ReviewBuilder.build("u1", assessment, questions, {"q1": _submission("q1", "accepted", 2, 2)})

    async def scenario():
        await builder.save(review)
        return await builder.finalize(review)

    entry = asyncio.run(scenario())

    user = db.storage[CONTAINER["USERS"]]["u1"]
    assert is_completed(user, "a1")
    assert user["assessments_completed"]["a1"]["score"] == review.total_score == entry.score
    assert user["assessments_completed"]["a1"]["avg_exec_ms"] == 10
    assert set(db.storage[CONTAINER["SUBMISSIONS"]]) == {"other"}
    assert db.batches == [(CONTAINER["SUBMISSIONS"], "a1", ["s0", "s1", "s2"])]

    kinds = [(op, container) for op, container, _ in db.operations]
    assert kinds.index(("upsert", CONTAINER["USERS"])) < kinds.index(("batch_delete", CONTAINER["SUBMISSIONS"]))


def test_finalize_is_repeatable(db):
    assessment, questions, _ = seed_catalog(db)
    builder = ReviewBuilder(db)
    review = ReviewBuilder.build("u1", assessment, questions, {})

    async def scenario():
        await builder.finalize(review)
        await builder.finalize(review)

    asyncio.run(scenario())
    assert list(db.storage[CONTAINER["USERS"]]["u1"]["assessments_completed"]) == ["a1"]


def test_save_is_an_upsert(db):
    assessment, questions, _ = seed_catalog(db)
    builder = ReviewBuilder(db)
    first = ReviewBuilder.build("u1", assessment, questions, {})
    second = ReviewBuilder.build("u1", assessment, questions, {"q1": _submission("q1", "accepted", 2, 2)})

    async def scenario():
        await builder.save(first)
        await builder.save(second)
        return await builder.load("u1", "a1")

    loaded = asyncio.run(scenario())
    assert len(db.storage[CONTAINER["ASSESSMENT_REVIEWS"]]) == 1
    assert loaded.total_score == 33


def test_is_completed_requires_numeric_score():
    assert is_completed({"assessments_completed": {"a1": {"score": 0}}}, "a1")
    assert not is_completed({"assessments_completed": {"a1": {"score": "90"}}}, "a1")
    assert not is_completed({"assessments_completed": {}}, "a1")
    assert not is_completed(None, "a1")


def test_export_csv(db):
    assessment, questions, _ = seed_catalog(db)
    review = ReviewBuilder.build("u1", assessment, questions, {"q1": _submission("q1", "accepted", 2, 2)})

    rows = list(csv.reader(io.StringIO(ReviewBuilder.export_csv(review))))
    assert rows[0] == ["assessment", "Basics"]
    assert rows[1] == ["totalScore", "33"]
    header = rows.index(["questionId", "title", "status", "passedTests", "totalTests", "earnedPoints",
                         "executionTimeMs"])
    assert rows[header + 1] == ["q1", "Echo", "accepted", "2", "2", "33", "10"]
    assert rows[header + 2][2] == "not_attempted"
