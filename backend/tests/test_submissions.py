import asyncio
from datetime import datetime, timedelta, timezone

import pytest

import models
from constants import CONTAINER
from conftest import seed_catalog
from grading import aggregate
from submissions import SubmissionPersister, chances_remaining


def _run(passed_flags):
    return aggregate([
        models.TestCaseResult(input="", expected="x", actual="x" if p else "", passed=p, execution_time=2)
        for p in passed_flags
    ])


@pytest.mark.parametrize("chances,used,remaining", [(1, 0, 1), (1, 1, 0), (3, 1, 2), (2, 5, 0), (0, 0, 1)])
def test_chances_remaining(chances, used, remaining):
    assert chances_remaining(chances, used) == remaining


def test_persist_writes_submission_document(db):
    assessment, questions, _ = seed_catalog(db)
    persister = SubmissionPersister(db)

    submission = asyncio.run(persister.persist("u1", assessment, questions[0], "print(input())", _run([True, False]), 42))

    doc = db.storage[CONTAINER["SUBMISSIONS"]][submission.id]
    assert doc["assessment_id"] == "a1"
    assert doc["question_id"] == "q1"
    assert doc["status"] == "wrong_answer"
    assert doc["score"] == 50
    assert doc["passed_tests"] == 1
    assert doc["total_tests"] == 2
    assert doc["time_spent"] == 42
    assert len(doc["test_case_results"]) == 2


def test_each_submit_adds_a_row(db):
    assessment, questions, _ = seed_catalog(db)
    persister = SubmissionPersister(db)

    async def scenario():
        await persister.persist("u1", assessment, questions[0], "a", _run([False]), 1)
        await persister.persist("u1", assessment, questions[0], "b", _run([True]), 2)
        return await persister.count_for_user_assessment("u1", "a1")

    assert asyncio.run(scenario()) == 2


def test_latest_by_question_prefers_newest(db):
    assessment, questions, _ = seed_catalog(db)
    persister = SubmissionPersister(db)

    async def scenario():
        older = await persister.persist("u1", assessment, questions[0], "old", _run([False]), 1)
        newer = await persister.persist("u1", assessment, questions[0], "new", _run([True]), 2)
        stamp = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
        db.storage[CONTAINER["SUBMISSIONS"]][older.id]["submitted_at"] = stamp
        return newer, await persister.latest_by_question("u1", "a1")

    newer, latest = asyncio.run(scenario())
    assert set(latest) == {"q1"}
    assert latest["q1"].id == newer.id
    assert latest["q1"].code == "new"


def test_list_ordered_newest_first(db):
    for i, stamp in enumerate(["2026-01-01T10:00:00+00:00", "2026-03-01T10:00:00+00:00", None]):
        db.storage[CONTAINER["SUBMISSIONS"]][f"s{i}"] = {"id": f"s{i}", "submitted_at": stamp}

    rows = asyncio.run(SubmissionPersister(db).list_ordered())
    assert [r["id"] for r in rows] == ["s1", "s0", "s2"]
