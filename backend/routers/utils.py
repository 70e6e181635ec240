from fastapi import APIRouter, HTTPException
import logging

from error_utils import AssessmentError, raise_for_domain_error, safe_raise_http
from execution import ExecutionAdapter
from grading import aggregate
from models import CodeExecutionRequest

router = APIRouter()
logger = logging.getLogger(__name__)

# replaced in tests with an adapter bound to a mock transport
executor = ExecutionAdapter()


@router.post("/run-code")
async def run_code(request: CodeExecutionRequest):
    """Run code against ad-hoc test cases; nothing is persisted"""
    if not request.code.strip():
        raise HTTPException(status_code=400, detail="Code cannot be empty")
    try:
        results = await executor.execute(request.code, request.language, request.test_cases)
        return aggregate(results).model_dump(by_alias=True)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Code execution failed", e)
