import json
import logging

from fastapi import FastAPI, Depends, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import CORS_ORIGINS, LOG_LEVEL, TASKS_DEFAULT_LIMIT
from database import Base, engine, get_db
from errors import ApiError, NotFoundError, StoreError, ValidationError
from integrity import ReferenceIntegrityEngine
from queries import (
    ListQuery, TASK_FIELDS, USER_FIELDS,
    build_criteria, build_order, parse_list_query, parse_select, project,
)
from schemas import TaskPayload, UserPayload
from store import EntityStore, TaskStore, UserStore

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s",
)
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(title="Task Assignment API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


def respond(message: str, data=None, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"message": message, "data": jsonable_encoder(data)},
    )


@app.exception_handler(ApiError)
async def _api_error(request: Request, exc: ApiError):
    return respond(exc.message, exc.detail, exc.status_code)


@app.exception_handler(RequestValidationError)
async def _request_invalid(request: Request, exc: RequestValidationError):
    return respond("Bad Request", _first_error(exc.errors()), status.HTTP_400_BAD_REQUEST)


# Convert any uncaught exception into the usual envelope, without internals
@app.exception_handler(Exception)
async def _unhandled(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return respond("Internal Server Error", "Something went wrong", status.HTTP_500_INTERNAL_SERVER_ERROR)


def _first_error(errors) -> str:
    if not errors:
        return "Invalid request"
    err = errors[0]
    location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
    return f"{location}: {err.get('msg')}" if location else str(err.get("msg"))


def get_integrity(db: Session = Depends(get_db)) -> ReferenceIntegrityEngine:
    return ReferenceIntegrityEngine(db)


async def read_body(request: Request) -> dict:
    """JSON or form-encoded request body as a plain dict."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        data = {key: form.get(key) for key in form.keys()}
        # repeated fields (pendingTasks=a&pendingTasks=b) become a list
        for key in ("pendingTasks", "pendingTasks[]"):
            if key in form:
                data["pendingTasks"] = list(form.getlist(key))
        data.pop("pendingTasks[]", None)
        return data

    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        raise ValidationError("Invalid JSON body")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def parse_payload(model, data: dict):
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(_first_error(exc.errors()))


def saved_document(write, *args) -> dict:
    """Run an engine write and serialize its result, off the event loop."""
    return write(*args).to_document()


def run_list_query(store: EntityStore, fields: dict, query: ListQuery, entity: str) -> JSONResponse:
    criteria = build_criteria(query.where, fields)
    order_by = build_order(query.sort, fields)
    try:
        if query.count:
            return respond(f"{entity}s count retrieved successfully", store.count_matching(criteria))
        docs = store.find_many(criteria, order_by, query.skip, query.limit)
    except SQLAlchemyError:
        logger.exception("Listing %ss failed", entity.lower())
        raise StoreError(f"Failed to retrieve {entity.lower()}s")

    # a where on _id that matches nothing is a miss, not an empty page
    if query.targets_id and not docs:
        raise NotFoundError(entity)
    return respond(
        f"{entity}s retrieved successfully",
        [project(doc.to_document(), query.select) for doc in docs],
    )


def read_one(store: EntityStore, id: str, request: Request, entity: str) -> JSONResponse:
    select = parse_select(request.query_params)
    doc = store.find_by_id(id)
    if doc is None:
        raise NotFoundError(entity)
    return respond(f"{entity} retrieved successfully", project(doc.to_document(), select))


@app.get("/api")
@app.get("/api/")
def home():
    return respond("OK", "Task assignment API: see /api/users and /api/tasks")


# ---- users ----

@app.get("/api/users")
def list_users(request: Request, db: Session = Depends(get_db)):
    query = parse_list_query(request.query_params)
    return run_list_query(UserStore(db), USER_FIELDS, query, "User")


@app.post("/api/users")
async def create_user(request: Request, integrity: ReferenceIntegrityEngine = Depends(get_integrity)):
    payload = parse_payload(UserPayload, await read_body(request))
    doc = await run_in_threadpool(saved_document, integrity.create_user, payload)
    return respond("User created successfully", doc, status.HTTP_201_CREATED)


@app.get("/api/users/{user_id}")
def get_user(user_id: str, request: Request, db: Session = Depends(get_db)):
    return read_one(UserStore(db), user_id, request, "User")


@app.put("/api/users/{user_id}")
async def update_user(user_id: str, request: Request, integrity: ReferenceIntegrityEngine = Depends(get_integrity)):
    payload = parse_payload(UserPayload, await read_body(request))
    doc = await run_in_threadpool(saved_document, integrity.update_user, user_id, payload)
    return respond("User updated successfully", doc)


@app.delete("/api/users/{user_id}")
def delete_user(user_id: str, integrity: ReferenceIntegrityEngine = Depends(get_integrity)):
    integrity.delete_user(user_id)
    return respond("User deleted successfully", "User deleted and their pending tasks were unassigned")


# ---- tasks ----

@app.get("/api/tasks")
def list_tasks(request: Request, db: Session = Depends(get_db)):
    query = parse_list_query(request.query_params, default_limit=TASKS_DEFAULT_LIMIT)
    return run_list_query(TaskStore(db), TASK_FIELDS, query, "Task")


@app.post("/api/tasks")
async def create_task(request: Request, integrity: ReferenceIntegrityEngine = Depends(get_integrity)):
    payload = parse_payload(TaskPayload, await read_body(request))
    doc = await run_in_threadpool(saved_document, integrity.create_task, payload)
    return respond("Task created successfully", doc, status.HTTP_201_CREATED)


@app.get("/api/tasks/{task_id}")
def get_task(task_id: str, request: Request, db: Session = Depends(get_db)):
    return read_one(TaskStore(db), task_id, request, "Task")


@app.put("/api/tasks/{task_id}")
async def update_task(task_id: str, request: Request, integrity: ReferenceIntegrityEngine = Depends(get_integrity)):
    payload = parse_payload(TaskPayload, await read_body(request))
    doc = await run_in_threadpool(saved_document, integrity.update_task, task_id, payload)
    return respond("Task updated successfully", doc)


@app.delete("/api/tasks/{task_id}")
def delete_task(task_id: str, integrity: ReferenceIntegrityEngine = Depends(get_integrity)):
    integrity.delete_task(task_id)
    return respond("Task deleted successfully", "Task was deleted and unassigned from any user")
