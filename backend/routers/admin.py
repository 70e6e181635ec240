from fastapi import APIRouter, HTTPException, Depends, Query
from typing import List, Optional, Dict, Any, Sequence, Type
from pydantic import ValidationError
import logging
import secrets

from auth import create_access_token, generate_login_code, verify_admin_token
from constants import ADMIN_EMAIL, ADMIN_PASSWORD, CONTAINER
from database import CosmosDBService
from dependencies import get_cosmosdb
from error_utils import safe_raise_http
from models import (
    AdminLoginRequest,
    Assessment,
    CosmosDocument,
    Course,
    CreateUserRequest,
    ProctoringEvent,
    Question,
    Submission,
    TokenResponse,
    User,
    UserRole,
)
from proctoring import list_events
from review import ReviewBuilder
from submissions import SubmissionPersister

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_LOGIN_CODE_ATTEMPTS = 5


@router.post("/login", response_model=TokenResponse, response_model_by_alias=True)
async def admin_login(request: AdminLoginRequest):
    """Authenticate the configured admin account"""
    logger.info(f"Admin login attempt with email: {request.email}")
    if not request.email or not request.password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    email_ok = secrets.compare_digest(request.email.strip().lower(), ADMIN_EMAIL.lower())
    password_ok = secrets.compare_digest(request.password, ADMIN_PASSWORD)
    if not (email_ok and password_ok):
        logger.warning(f"Invalid login attempt for email: {request.email}")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    admin_id = f"admin-{ADMIN_EMAIL.split('@')[0]}"
    token = create_access_token({"sub": admin_id, "role": UserRole.ADMIN.value, "name": "Administrator"})
    return TokenResponse(token=token, user_id=admin_id, name="Administrator", role=UserRole.ADMIN)


# ---------------- Generic document helpers ---------------- #

READ_ONLY_FIELDS = ("id", "createdAt")


def _api_payload(model: Type[CosmosDocument], payload: Dict[str, Any],
                 read_only: Sequence[str] = READ_ONLY_FIELDS) -> Dict[str, Any]:
    """Payload keyed by camelCase aliases; snake_case field names are accepted and converted."""
    aliases = {name: field.alias for name, field in model.model_fields.items() if field.alias}
    converted = {aliases.get(k, k): v for k, v in payload.items()}
    return {k: v for k, v in converted.items() if k not in read_only}


async def _get_document(db: CosmosDBService, container: str, model: Type[CosmosDocument], item_id: str):
    doc = await db.read_item(container, item_id, partition_key=item_id)
    if not doc:
        raise HTTPException(status_code=404, detail=f"{model.__name__} not found")
    return model.model_validate(doc)


async def _create_document(db: CosmosDBService, container: str, model: Type[CosmosDocument], payload: Dict[str, Any]):
    try:
        item = model.model_validate(_api_payload(model, payload))
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    await db.auto_create_item(container, item.to_document())
    logger.info(f"Created {model.__name__} {item.id}")
    return item


async def _update_document(db: CosmosDBService, container: str, model: Type[CosmosDocument], item_id: str,
                           payload: Dict[str, Any], read_only: Sequence[str] = READ_ONLY_FIELDS):
    existing = await _get_document(db, container, model, item_id)
    merged = existing.to_api()
    merged.update(_api_payload(model, payload, read_only))
    try:
        item = model.model_validate(merged)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    await db.upsert_item(container, item.to_document(), partition_key=item_id)
    logger.info(f"Updated {model.__name__} {item_id}")
    return item


async def _delete_document(db: CosmosDBService, container: str, model: Type[CosmosDocument], item_id: str):
    if not await db.delete_item(container, item_id, partition_key=item_id):
        raise HTTPException(status_code=404, detail=f"{model.__name__} not found")
    logger.info(f"Deleted {model.__name__} {item_id}")
    return {"deleted": True, "id": item_id}


async def _list_documents(db: CosmosDBService, container: str, model: Type[CosmosDocument],
                          filter_dict: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    docs = await db.find_many_ordered_with_fallback(container, "created_at", filter_dict)
    return [model.model_validate(d).to_api() for d in docs]


# ---------------- Courses ---------------- #

@router.get("/courses")
async def list_courses(admin: dict = Depends(verify_admin_token), db: CosmosDBService = Depends(get_cosmosdb)):
    return await _list_documents(db, CONTAINER["COURSES"], Course)


@router.post("/courses", status_code=201)
async def create_course(payload: Dict[str, Any], admin: dict = Depends(verify_admin_token),
                        db: CosmosDBService = Depends(get_cosmosdb)):
    return (await _create_document(db, CONTAINER["COURSES"], Course, payload)).to_api()


@router.get("/courses/{course_id}")
async def get_course(course_id: str, admin: dict = Depends(verify_admin_token),
                     db: CosmosDBService = Depends(get_cosmosdb)):
    return (await _get_document(db, CONTAINER["COURSES"], Course, course_id)).to_api()


@router.put("/courses/{course_id}")
async def update_course(course_id: str, payload: Dict[str, Any], admin: dict = Depends(verify_admin_token),
                        db: CosmosDBService = Depends(get_cosmosdb)):
    return (await _update_document(db, CONTAINER["COURSES"], Course, course_id, payload)).to_api()


@router.delete("/courses/{course_id}")
async def delete_course(course_id: str, admin: dict = Depends(verify_admin_token),
                        db: CosmosDBService = Depends(get_cosmosdb)):
    return await _delete_document(db, CONTAINER["COURSES"], Course, course_id)


# ---------------- Assessments ---------------- #

@router.get("/assessments")
async def list_assessments(
    course_id: Optional[str] = Query(None, alias="courseId"),
    admin: dict = Depends(verify_admin_token),
    db: CosmosDBService = Depends(get_cosmosdb),
):
    return await _list_documents(db, CONTAINER["ASSESSMENTS"], Assessment, {"course_id": course_id} if course_id else None)


@router.post("/assessments", status_code=201)
async def create_assessment(payload: Dict[str, Any], admin: dict = Depends(verify_admin_token),
                            db: CosmosDBService = Depends(get_cosmosdb)):
    return (await _create_document(db, CONTAINER["ASSESSMENTS"], Assessment, payload)).to_api()


@router.get("/assessments/{assessment_id}")
async def get_assessment(assessment_id: str, admin: dict = Depends(verify_admin_token),
                         db: CosmosDBService = Depends(get_cosmosdb)):
    return (await _get_document(db, CONTAINER["ASSESSMENTS"], Assessment, assessment_id)).to_api()


@router.put("/assessments/{assessment_id}")
async def update_assessment(assessment_id: str, payload: Dict[str, Any], admin: dict = Depends(verify_admin_token),
                            db: CosmosDBService = Depends(get_cosmosdb)):
    return (await _update_document(db, CONTAINER["ASSESSMENTS"], Assessment, assessment_id, payload)).to_api()


@router.delete("/assessments/{assessment_id}")
async def delete_assessment(assessment_id: str, admin: dict = Depends(verify_admin_token),
                            db: CosmosDBService = Depends(get_cosmosdb)):
    return await _delete_document(db, CONTAINER["ASSESSMENTS"], Assessment, assessment_id)


# ---------------- Questions ---------------- #

@router.get("/questions")
async def list_questions(
    language: Optional[str] = None,
    admin: dict = Depends(verify_admin_token),
    db: CosmosDBService = Depends(get_cosmosdb),
):
    return await _list_documents(db, CONTAINER["QUESTIONS"], Question, {"language": language} if language else None)


@router.post("/questions", status_code=201)
async def create_question(
    payload: Dict[str, Any],
    assessment_id: Optional[str] = Query(None, alias="assessmentId"),
    admin: dict = Depends(verify_admin_token),
    db: CosmosDBService = Depends(get_cosmosdb),
):
    """Create a question, optionally appending it to an assessment"""
    question = await _create_document(db, CONTAINER["QUESTIONS"], Question, payload)
    if assessment_id:
        assessment = await _get_document(db, CONTAINER["ASSESSMENTS"], Assessment, assessment_id)
        await db.update_item(CONTAINER["ASSESSMENTS"], assessment_id,
                             {"questions": assessment.questions + [question.id]}, partition_key=assessment_id)
    return question.to_api()


@router.get("/questions/{question_id}")
async def get_question(question_id: str, admin: dict = Depends(verify_admin_token),
                       db: CosmosDBService = Depends(get_cosmosdb)):
    return (await _get_document(db, CONTAINER["QUESTIONS"], Question, question_id)).to_api()


@router.put("/questions/{question_id}")
async def update_question(question_id: str, payload: Dict[str, Any], admin: dict = Depends(verify_admin_token),
                          db: CosmosDBService = Depends(get_cosmosdb)):
    return (await _update_document(db, CONTAINER["QUESTIONS"], Question, question_id, payload)).to_api()


@router.delete("/questions/{question_id}")
async def delete_question(question_id: str, admin: dict = Depends(verify_admin_token),
                          db: CosmosDBService = Depends(get_cosmosdb)):
    result = await _delete_document(db, CONTAINER["QUESTIONS"], Question, question_id)
    # detach from every assessment that still lists it
    for doc in await db.find_many(CONTAINER["ASSESSMENTS"]):
        if question_id in (doc.get("questions") or []):
            doc["questions"] = [q for q in doc["questions"] if q != question_id]
            await db.upsert_item(CONTAINER["ASSESSMENTS"], doc, partition_key=doc["id"])
    return result


@router.post("/questions/{question_id}/duplicate", status_code=201)
async def duplicate_question(question_id: str, admin: dict = Depends(verify_admin_token),
                             db: CosmosDBService = Depends(get_cosmosdb)):
    """Copy a question under a new id; the copy is not attached to any assessment"""
    source = await _get_document(db, CONTAINER["QUESTIONS"], Question, question_id)
    payload = source.to_api()
    payload["title"] = f"{source.title} (Copy)"[:200]
    return (await _create_document(db, CONTAINER["QUESTIONS"], Question, payload)).to_api()


# ---------------- Users ---------------- #

@router.post("/users", status_code=201)
async def create_user(request: CreateUserRequest, admin: dict = Depends(verify_admin_token),
                      db: CosmosDBService = Depends(get_cosmosdb)):
    """Create a user; students get a fresh login code"""
    try:
        if await db.find_one(CONTAINER["USERS"], {"email": request.email}):
            raise HTTPException(status_code=409, detail="A user with this email already exists")

        login_code = None
        if request.role == UserRole.STUDENT:
            for _ in range(MAX_LOGIN_CODE_ATTEMPTS):
                candidate = generate_login_code()
                if not await db.find_one(CONTAINER["USERS"], {"login_code": candidate}):
                    login_code = candidate
                    break
            else:
                raise HTTPException(status_code=500, detail="Could not allocate a unique login code")

        user = User(
            name=request.name,
            email=request.email,
            role=request.role,
            login_code=login_code,
            enrolled_courses=request.enrolled_courses,
        )
        await db.auto_create_item(CONTAINER["USERS"], user.to_document())
        logger.info(f"Created {user.role.value} user {user.id}")
        return user.to_api()
    except HTTPException:
        raise
    except Exception as e:
        safe_raise_http("Failed to create user", e)


@router.get("/users")
async def list_users(
    role: Optional[UserRole] = None,
    admin: dict = Depends(verify_admin_token),
    db: CosmosDBService = Depends(get_cosmosdb),
):
    return await _list_documents(db, CONTAINER["USERS"], User, {"role": role.value} if role else None)


@router.get("/users/{user_id}")
async def get_user(user_id: str, admin: dict = Depends(verify_admin_token),
                   db: CosmosDBService = Depends(get_cosmosdb)):
    return (await _get_document(db, CONTAINER["USERS"], User, user_id)).to_api()


@router.put("/users/{user_id}")
async def update_user(user_id: str, payload: Dict[str, Any], admin: dict = Depends(verify_admin_token),
                      db: CosmosDBService = Depends(get_cosmosdb)):
    """Edit name, email, role or enrolled courses; login codes and completions are kept"""
    email = payload.get("email")
    if email:
        owner = await db.find_one(CONTAINER["USERS"], {"email": email})
        if owner and owner["id"] != user_id:
            raise HTTPException(status_code=409, detail="A user with this email already exists")
    user = await _update_document(
        db, CONTAINER["USERS"], User, user_id, payload,
        read_only=READ_ONLY_FIELDS + ("loginCode", "assessmentsCompleted"),
    )
    return user.to_api()


@router.delete("/users/{user_id}")
async def delete_user(user_id: str, admin: dict = Depends(verify_admin_token),
                      db: CosmosDBService = Depends(get_cosmosdb)):
    return await _delete_document(db, CONTAINER["USERS"], User, user_id)


# ---------------- Submissions / reviews / proctoring ---------------- #

@router.get("/submissions")
async def list_submissions(
    user_id: Optional[str] = Query(None, alias="userId"),
    assessment_id: Optional[str] = Query(None, alias="assessmentId"),
    admin: dict = Depends(verify_admin_token),
    db: CosmosDBService = Depends(get_cosmosdb),
):
    """Submissions newest first"""
    try:
        docs = await SubmissionPersister(db).list_ordered(user_id, assessment_id)
        return [Submission.model_validate(d).to_api() for d in docs]
    except Exception as e:
        safe_raise_http("Failed to load submissions", e)


@router.get("/reviews/{user_id}/{assessment_id}")
async def get_review(user_id: str, assessment_id: str, admin: dict = Depends(verify_admin_token),
                     db: CosmosDBService = Depends(get_cosmosdb)):
    review = await ReviewBuilder(db).load(user_id, assessment_id)
    if review is None:
        raise HTTPException(status_code=404, detail="Review not found")
    return review.to_api()


@router.get("/proctoring/events")
async def get_proctoring_events(
    user_id: Optional[str] = Query(None, alias="userId"),
    assessment_id: Optional[str] = Query(None, alias="assessmentId"),
    admin: dict = Depends(verify_admin_token),
    db: CosmosDBService = Depends(get_cosmosdb),
):
    try:
        return [ProctoringEvent.model_validate(d).to_api() for d in await list_events(db, user_id, assessment_id)]
    except Exception as e:
        safe_raise_http("Failed to load proctoring events", e)
