import copy
import json
from collections import defaultdict

import httpx
import pytest

from constants import CONTAINER
from database import sort_items
from execution import ExecutionAdapter
import models


class MockDB:
    """In-memory stand-in for CosmosDBService."""

    def __init__(self):
        self.storage = defaultdict(dict)
        self.operations = []
        self.batches = []

    async def create_item(self, container_name, item, partition_key=None):
        if item["id"] in self.storage[container_name]:
            raise ValueError(f"duplicate id {item['id']}")
        self.storage[container_name][item["id"]] = copy.deepcopy(item)
        self.operations.append(("create", container_name, item["id"]))
        return copy.deepcopy(item)

    async def auto_create_item(self, container_name, item):
        return await self.create_item(container_name, item)

    async def read_item(self, container_name, item_id, partition_key=None):
        doc = self.storage[container_name].get(item_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def upsert_item(self, container_name, item, partition_key=None):
        self.storage[container_name][item["id"]] = copy.deepcopy(item)
        self.operations.append(("upsert", container_name, item["id"]))
        return copy.deepcopy(item)

    async def update_item(self, container_name, item_id, update_data, partition_key=None):
        existing = self.storage[container_name].get(item_id)
        if existing is None:
            return None
        merged = {**existing, **copy.deepcopy(update_data)}
        return await self.upsert_item(container_name, merged, partition_key)

    async def delete_item(self, container_name, item_id, partition_key=None):
        self.operations.append(("delete", container_name, item_id))
        return self.storage[container_name].pop(item_id, None) is not None

    async def delete_items_batched(self, container_name, item_ids, partition_key, batch_size=100):
        for i in range(0, len(item_ids), batch_size):
            chunk = list(item_ids[i:i + batch_size])
            self.batches.append((container_name, partition_key, chunk))
            self.operations.append(("batch_delete", container_name, len(chunk)))
            for item_id in chunk:
                self.storage[container_name].pop(item_id, None)
        return len(item_ids)

    def _matching(self, container_name, filter_dict):
        return [
            copy.deepcopy(doc) for doc in self.storage[container_name].values()
            if all(doc.get(k) == v for k, v in (filter_dict or {}).items())
        ]

    async def find_one(self, container_name, filter_dict):
        matches = self._matching(container_name, filter_dict)
        return matches[0] if matches else None

    async def find_many(self, container_name, filter_dict=None, limit=None, order_by=None, descending=True):
        items = self._matching(container_name, filter_dict)
        if order_by:
            items = sort_items(items, order_by, descending)
        return items[:limit] if limit else items

    async def find_many_ordered_with_fallback(self, container_name, order_by, filter_dict=None, descending=True):
        return sort_items(self._matching(container_name, filter_dict), order_by, descending)

    async def count_items(self, container_name, filter_dict=None):
        return len(self._matching(container_name, filter_dict))


def piston_handler(request: httpx.Request) -> httpx.Response:
    """Fake execution service understanding a handful of tiny programs."""
    payload = json.loads(request.content)
    code = payload["files"][0]["content"]
    stdin = payload["stdin"]

    if "COMPILE_ERROR" in code:
        return httpx.Response(200, json={"compile": {"stderr": "Main.java:1: error"}, "run": {}})
    if "raise" in code:
        return httpx.Response(200, json={"run": {"stdout": "", "stderr": "Traceback: boom", "code": 1}})
    if "print(input())" in code:
        stdout = stdin + "\n"
    elif "Hello World" in code:
        stdout = "Hello World\n"
    else:
        stdout = ""
    return httpx.Response(200, json={"run": {"stdout": stdout, "stderr": "", "code": 0}})


@pytest.fixture
def executor():
    client = httpx.AsyncClient(transport=httpx.MockTransport(piston_handler))
    return ExecutionAdapter(client=client, api_url="http://piston.test/api/v2/execute")


@pytest.fixture
def db():
    return MockDB()


def seed_catalog(db, chances=2, time_limit=30):
    """One course, one three-question assessment and one enrolled student."""
    course = models.Course(id="c1", title="Intro to Programming")
    q1 = models.Question(
        id="q1",
        title="Echo",
        language="python",
        starter_code="# read a line and print it\n",
        solution_code="print(input())",
        test_cases=[
            models.TestCase(input="1", expected_output="1"),
            models.TestCase(input="2", expected_output="2", is_hidden=True),
        ],
    )
    q2 = models.Question(
        id="q2",
        title="Hello",
        language="python",
        test_cases=[models.TestCase(input="", expected_output="Hello World")],
    )
    q3 = models.Question(
        id="q3",
        title="Sum",
        language="sql",
        test_cases=[models.TestCase(
            input="CREATE TABLE t(x INT); INSERT INTO t VALUES (1);",
            expected_output='[{"sum":2}]',
        )],
    )
    assessment = models.Assessment(
        id="a1",
        title="Basics",
        course_id="c1",
        time_limit=time_limit,
        chances=chances,
        questions=["q1", "q2", "q3"],
    )
    student = models.User(
        id="u1",
        name="Sam Student",
        email="sam@example.com",
        login_code="ABCD1234",
        enrolled_courses=["c1"],
    )

    db.storage[CONTAINER["COURSES"]][course.id] = course.to_document()
    for q in (q1, q2, q3):
        db.storage[CONTAINER["QUESTIONS"]][q.id] = q.to_document()
    db.storage[CONTAINER["ASSESSMENTS"]][assessment.id] = assessment.to_document()
    db.storage[CONTAINER["USERS"]][student.id] = student.to_document()
    return assessment, [q1, q2, q3], student


@pytest.fixture
def seeded_db(db):
    seed_catalog(db)
    return db
