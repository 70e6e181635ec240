"""
Execution adapter: runs submitted code against a question's test cases.

Java and Python are sent to a Piston-compatible execution service, one
request per test case. SQL runs in a fresh in-memory SQLite database per
test case. Test cases are evaluated sequentially and independently: a
failure in one never aborts the others.
"""
import json
import logging
import re
import sqlite3
import time
from typing import Any, Dict, List, Optional, Sequence

import httpx

from constants import (
    COMPILE_TIMEOUT_MS,
    EXECUTION_TIMEOUT,
    LANGUAGE_VERSIONS,
    PISTON_API_URL,
    RUN_TIMEOUT_MS,
)
from error_utils import UnsupportedLanguageError
from grading import mismatch_message, outputs_match
from models import ProgrammingLanguage, TestCase, TestCaseResult

logger = logging.getLogger(__name__)

SOURCE_FILE_NAMES = {
    "python": "main.py",
    "java": "Main.java",
}

_PRIMARY_KEY_RE = re.compile(r"\bINT(?:EGER)?\s+PRIMARY\s+KEY\b(?!\s+AUTOINCREMENT)", re.IGNORECASE)
_CREATE_TABLE_RE = re.compile(r"CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?[`\"']?(\w+)[`\"']?", re.IGNORECASE)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _failed(test_case: TestCase, error: str) -> TestCaseResult:
    return TestCaseResult(
        input=test_case.input or "",
        expected=test_case.expected_output,
        actual="",
        passed=False,
        execution_time=0,
        error=error,
        is_hidden=test_case.is_hidden,
    )


# ===========================
# SQL
# ===========================

def normalize_setup_sql(sql: str) -> str:
    """Give integer primary keys auto-increment so setup inserts may omit ids."""
    if not sql:
        return ""
    return _PRIMARY_KEY_RE.sub("INTEGER PRIMARY KEY AUTOINCREMENT", sql)


def created_tables(sql: str) -> List[str]:
    return _CREATE_TABLE_RE.findall(sql or "")


def split_statements(sql: str) -> List[str]:
    return [s.strip() for s in (sql or "").split(";") if s.strip()]


def _json_number(value: Any) -> Any:
    # expected outputs are authored with JavaScript number rendering: 2.0 is written as 2
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def rows_to_json(cursor: sqlite3.Cursor, rows: Sequence[Sequence[Any]]) -> str:
    """Serialize result rows as a minified JSON array of column->value objects."""
    if not rows or cursor.description is None:
        return "[]"
    columns = [d[0] for d in cursor.description]
    records = [{c: _json_number(v) for c, v in zip(columns, row)} for row in rows]
    return json.dumps(records, separators=(",", ":"), ensure_ascii=False)


def run_sql(setup_sql: str, query: str) -> str:
    """Run setup statements then the query in a throwaway database; return the JSON result."""
    conn = sqlite3.connect(":memory:")
    try:
        setup = normalize_setup_sql((setup_sql or "").strip())
        for table in created_tables(setup):
            conn.execute(f'DROP TABLE IF EXISTS "{table}"')
        for statement in split_statements(setup):
            conn.execute(statement)

        output = "[]"
        for statement in split_statements(query):
            cursor = conn.execute(statement)
            if cursor.description is not None:
                output = rows_to_json(cursor, cursor.fetchall())
        return output
    finally:
        conn.close()


# ===========================
# ADAPTER
# ===========================

class ExecutionAdapter:
    """Dispatches code to the per-language execution backend."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        api_url: str = PISTON_API_URL,
        timeout: float = EXECUTION_TIMEOUT,
    ):
        self._client = client
        self.api_url = api_url
        self.timeout = timeout

    async def execute(self, code: str, language: str, test_cases: Sequence[TestCase]) -> List[TestCaseResult]:
        language = (language.value if isinstance(language, ProgrammingLanguage) else str(language)).lower()
        logger.info(f"Executing {language} code with {len(test_cases)} test cases")

        if language == "sql":
            return [self._execute_sql_case(code, tc, i) for i, tc in enumerate(test_cases)]

        if language not in SOURCE_FILE_NAMES:
            raise UnsupportedLanguageError(f"Unsupported language: {language}")

        results = []
        if self._client is not None:
            for i, tc in enumerate(test_cases):
                results.append(await self._execute_remote_case(self._client, code, language, tc, i))
            return results

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for i, tc in enumerate(test_cases):
                results.append(await self._execute_remote_case(client, code, language, tc, i))
        return results

    def build_payload(self, code: str, language: str, stdin: str) -> Dict[str, Any]:
        return {
            "language": language,
            "version": LANGUAGE_VERSIONS[language],
            "files": [{"name": SOURCE_FILE_NAMES[language], "content": code}],
            "stdin": stdin or "",
            "compile_timeout": COMPILE_TIMEOUT_MS,
            "run_timeout": RUN_TIMEOUT_MS,
        }

    async def _execute_remote_case(
        self,
        client: httpx.AsyncClient,
        code: str,
        language: str,
        test_case: TestCase,
        index: int,
    ) -> TestCaseResult:
        try:
            start = time.perf_counter()
            response = await client.post(
                self.api_url,
                json=self.build_payload(code, language, test_case.input),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json() or {}
            execution_time = _elapsed_ms(start)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"{language} test case {index + 1} failed to execute: {e}")
            return _failed(test_case, f"API Error: {e}")

        return self.parse_response(data, test_case, execution_time)

    @staticmethod
    def parse_response(data: Dict[str, Any], test_case: TestCase, execution_time: int) -> TestCaseResult:
        """Interpret an execution-service response for one test case."""
        run_data = data.get("run") or {}
        compile_data = data.get("compile") or {}

        stdout = run_data.get("stdout") or ""
        stderr = run_data.get("stderr") or ""
        compile_stderr = compile_data.get("stderr") or ""
        exit_code = run_data.get("code")
        if exit_code is None:
            exit_code = 1

        result = TestCaseResult(
            input=test_case.input or "",
            expected=test_case.expected_output,
            actual=stdout.strip(),
            passed=False,
            execution_time=execution_time,
            error=None,
            is_hidden=test_case.is_hidden,
        )

        if compile_stderr:
            result.error = f"Compilation Error: {compile_stderr}"
        elif exit_code == 0:
            result.passed = outputs_match(stdout, test_case.expected_output)
            if not result.passed:
                result.error = mismatch_message(stdout, test_case.expected_output)
        else:
            result.error = f"Runtime Error: {stderr or 'Unknown error'}"

        return result

    def _execute_sql_case(self, query: str, test_case: TestCase, index: int) -> TestCaseResult:
        try:
            start = time.perf_counter()
            actual = run_sql(test_case.input, query)
            execution_time = _elapsed_ms(start)
        except (sqlite3.Error, sqlite3.Warning, TypeError, ValueError) as e:
            logger.warning(f"sql test case {index + 1} failed: {e}")
            return _failed(test_case, f"SQL Error: {e}")

        passed = outputs_match(actual, test_case.expected_output)
        return TestCaseResult(
            input=test_case.input or "",
            expected=test_case.expected_output,
            actual=actual,
            passed=passed,
            execution_time=execution_time,
            error=None if passed else mismatch_message(actual, test_case.expected_output),
            is_hidden=test_case.is_hidden,
        )
