import asyncio
import json

import httpx
import pytest

import models
from error_utils import UnsupportedLanguageError
from execution import ExecutionAdapter, created_tables, normalize_setup_sql, run_sql


def _case(stdin="", expected="", hidden=False):
    return models.TestCase(input=stdin, expected_output=expected, is_hidden=hidden)


def test_python_hello_world_passes(executor):
    results = asyncio.run(executor.execute('print("Hello World")', "python", [_case("", "Hello World")]))

    assert len(results) == 1
    assert results[0].passed is True
    assert results[0].actual == "Hello World"
    assert results[0].error is None


def test_each_case_is_sent_with_its_stdin():
    seen = []

    def handler(request):
        payload = json.loads(request.content)
        seen.append(payload)
        return httpx.Response(200, json={"run": {"stdout": payload["stdin"], "stderr": "", "code": 0}})

    adapter = ExecutionAdapter(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), api_url="http://x/run")
    cases = [_case("1", "1"), _case("2", "3"), _case("3", "3")]
    results = asyncio.run(adapter.execute("print(input())", "python", cases))

    assert [r.passed for r in results] == [True, False, True]
    assert results[1].error == 'Expected: "3", Got: "2"'
    assert [p["stdin"] for p in seen] == ["1", "2", "3"]
    assert seen[0]["language"] == "python"
    assert seen[0]["version"] == "3.10.0"
    assert seen[0]["files"] == [{"name": "main.py", "content": "print(input())"}]


def test_java_payload_uses_main_java():
    adapter = ExecutionAdapter()
    payload = adapter.build_payload("class Main {}", "java", "")
    assert payload["files"][0]["name"] == "Main.java"
    assert payload["version"] == "15.0.2"


def test_runtime_and_compile_errors_are_recorded(executor):
    runtime = asyncio.run(executor.execute("raise ValueError()", "python", [_case("", "x")]))[0]
    compiled = asyncio.run(executor.execute("COMPILE_ERROR", "java", [_case("", "x")]))[0]

    assert runtime.passed is False
    assert runtime.error == "Runtime Error: Traceback: boom"
    assert compiled.passed is False
    assert compiled.error.startswith("Compilation Error: ")


def test_api_failure_does_not_abort_other_cases():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ConnectError("connection refused", request=request)
        if calls["n"] == 2:
            return httpx.Response(502, json={})
        return httpx.Response(200, json={"run": {"stdout": "ok", "stderr": "", "code": 0}})

    adapter = ExecutionAdapter(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), api_url="http://x/run")
    results = asyncio.run(adapter.execute("print('ok')", "python", [_case("", "ok")] * 3))

    assert results[0].passed is False and results[0].error.startswith("API Error: ")
    assert results[1].passed is False and results[1].error.startswith("API Error: ")
    assert results[2].passed is True
    assert calls["n"] == 3


def test_missing_exit_code_counts_as_failure():
    result = ExecutionAdapter.parse_response({"run": {"stdout": "1"}}, _case("", "1"), 3)
    assert result.passed is False
    assert result.error.startswith("Runtime Error")
    assert result.execution_time == 3


def test_unsupported_language_raises():
    with pytest.raises(UnsupportedLanguageError):
        asyncio.run(ExecutionAdapter().execute("x", "cobol", [_case()]))


# ===========================
# SQL
# ===========================

def test_sql_example_produces_minified_json():
    setup = "CREATE TABLE t(x INT); INSERT INTO t VALUES (1);"
    assert run_sql(setup, "SELECT 1+1 AS sum;") == '[{"sum":2}]'

    results = asyncio.run(ExecutionAdapter().execute("SELECT 1+1 AS sum;", "sql", [_case(setup, '[{"sum":2}]')]))
    assert results[0].passed is True
    assert results[0].actual == '[{"sum":2}]'


def test_sql_integer_primary_keys_autoincrement():
    setup = (
        "CREATE TABLE emp(id INT PRIMARY KEY, name TEXT);"
        "INSERT INTO emp(name) VALUES ('Ada');"
        "INSERT INTO emp(name) VALUES ('Linus');"
    )
    assert "INTEGER PRIMARY KEY AUTOINCREMENT" in normalize_setup_sql(setup)
    assert run_sql(setup, "SELECT id, name FROM emp ORDER BY id") == '[{"id":1,"name":"Ada"},{"id":2,"name":"Linus"}]'


def test_sql_empty_result_and_unicode():
    setup = "CREATE TABLE city(name TEXT); INSERT INTO city VALUES ('Zürich');"
    assert run_sql(setup, "SELECT name FROM city WHERE name = 'Paris'") == "[]"
    assert run_sql(setup, "SELECT name FROM city") == '[{"name":"Zürich"}]'


def test_sql_whole_number_floats_render_like_integers():
    setup = "CREATE TABLE t(x INT, price REAL); INSERT INTO t VALUES (1, 4.0); INSERT INTO t VALUES (3, 2.5);"
    assert run_sql(setup, "SELECT AVG(x) AS a FROM t") == '[{"a":2}]'
    assert run_sql(setup, "SELECT price FROM t ORDER BY x") == '[{"price":4},{"price":2.5}]'
    assert run_sql(setup, "SELECT x / 2.0 AS half FROM t ORDER BY x") == '[{"half":0.5},{"half":1.5}]'

    results = asyncio.run(ExecutionAdapter().execute("SELECT AVG(x) AS a FROM t", "sql", [_case(setup, '[{"a":2}]')]))
    assert results[0].passed is True


def test_created_tables_detects_names():
    assert created_tables("CREATE TABLE a(x INT); create table if not exists `b` (y INT);") == ["a", "b"]


def test_sql_errors_are_per_case():
    good = _case("CREATE TABLE t(x INT); INSERT INTO t VALUES (4);", '[{"x":4}]')
    broken = _case("CREATE TABLE t(x INT", '[{"x":4}]')
    results = asyncio.run(ExecutionAdapter().execute("SELECT x FROM t", "sql", [broken, good]))

    assert results[0].passed is False
    assert results[0].error.startswith("SQL Error: ")
    assert results[1].passed is True


def test_sql_runs_are_isolated():
    setup = "CREATE TABLE t(x INT); INSERT INTO t VALUES (1);"
    first = run_sql(setup, "INSERT INTO t VALUES (2); SELECT COUNT(*) AS n FROM t")
    second = run_sql(setup, "SELECT COUNT(*) AS n FROM t")
    assert first == '[{"n":2}]'
    assert second == '[{"n":1}]'


def test_same_code_twice_yields_same_flags(executor):
    cases = [_case("7", "7"), _case("8", "9")]
    first = asyncio.run(executor.execute("print(input())", "python", cases))
    second = asyncio.run(executor.execute("print(input())", "python", cases))
    assert [r.passed for r in first] == [r.passed for r in second] == [True, False]
