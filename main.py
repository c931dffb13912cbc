import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
import services
from config import CORS_ORIGINS, PORT, ensure_secure_config_on_startup
from database import get_db
from errors import PortalError
from logging_config import (
    generate_request_id, get_logger, log_with_context, request_id_var, setup_logging,
)
from schemas import (
    AttendanceUpdate, AuthResponse, HomeworkCreate, LoginRequest, MessageCreate,
    PasswordUpdate, ProfileUpdate, RegisterRequest, StudentCreate,
)
from security import Action, Identity, Resource, get_current_user, require_permission

setup_logging()
logger = get_logger("http")


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_secure_config_on_startup()
    database.init_db()
    yield
    database.close_db()


app = FastAPI(title="Parent Portal API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    req_id = generate_request_id()
    request_id_var.set(req_id)
    start_time = time.time()
    log_with_context(logger, "INFO", f"{request.method} {request.url.path} started",
                     extra_data={"ip": request.client.host if request.client else "unknown"})

    try:
        response = await call_next(request)
    except Exception as exc:
        log_with_context(logger, "ERROR", "Unhandled exception",
                         extra_data={"path": request.url.path}, exc_info=exc)
        response = _error(500, "Server error")

    duration_ms = (time.time() - start_time) * 1000
    response.headers["X-Request-ID"] = req_id
    log_with_context(logger, "INFO",
                     f"{request.method} {request.url.path} -> {response.status_code}",
                     extra_data={
                         "duration_ms": round(duration_ms, 2),
                         "status_code": response.status_code,
                         "ip": request.client.host if request.client else "unknown",
                     })
    return response


# ----------------------- Error handlers -----------------------

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    if exc.status_code >= 500:
        log_with_context(logger, "ERROR", exc.message, extra_data={"path": request.url.path})
    return _error(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail))


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    if first.get("type") == "json_invalid":
        return "Invalid JSON body"
    field = ".".join(str(p) for p in first.get("loc", ())
                     if not isinstance(p, int) and p not in ("body", "query", "path"))
    if first.get("type") == "missing":
        return f"{field} is required" if field else "Request body is required"
    message = first.get("msg", "Invalid value")
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return f"{field}: {message}" if field else message


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return _error(400, _validation_message(exc))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log_with_context(logger, "ERROR", "Unhandled exception",
                     extra_data={"path": request.url.path}, exc_info=exc)
    return _error(500, "Server error")


# ----------------------- Health -----------------------

@app.get("/")
def read_root():
    return {"message": "Parent Portal API running"}


@app.get("/api")
def api_status():
    return {
        "status": "success",
        "message": "Parent Portal API is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/health")
def health():
    return {"ok": True, "time": datetime.now(timezone.utc).isoformat()}


# ----------------------- Auth -----------------------

@app.post("/api/auth/register", response_model=AuthResponse, status_code=201)
def register(req: RegisterRequest, db: Database = Depends(get_db)):
    return services.register_user(db, req.name, req.email, req.password, req.phone)


@app.post("/api/auth/login", response_model=AuthResponse)
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    return services.authenticate_user(db, payload.email, payload.password)


# ----------------------- Students -----------------------

@app.get("/api/students")
def list_students(
    class_name: Optional[str] = Query(None, alias="class"),
    section: Optional[str] = None,
    parent_id: Optional[str] = None,
    current: Identity = Depends(require_permission(Resource.STUDENTS, Action.LIST)),
    db: Database = Depends(get_db),
):
    return {"items": services.list_students(db, current, class_name, section, parent_id)}


@app.get("/api/students/{student_id}")
def get_student(student_id: str,
                current: Identity = Depends(require_permission(Resource.STUDENTS, Action.READ)),
                db: Database = Depends(get_db)):
    return services.get_student(db, student_id, current)


@app.post("/api/students", status_code=201)
def create_student(student: StudentCreate,
                   current: Identity = Depends(require_permission(Resource.STUDENTS, Action.CREATE)),
                   db: Database = Depends(get_db)):
    return services.create_student(db, student)


@app.put("/api/students/{student_id}/attendance")
def update_attendance(student_id: str, payload: AttendanceUpdate,
                      current: Identity = Depends(require_permission(Resource.STUDENTS, Action.UPDATE_ATTENDANCE)),
                      db: Database = Depends(get_db)):
    return services.update_attendance(db, student_id, payload.present, payload.absent)


# ----------------------- Homework -----------------------

@app.get("/api/homework")
def list_homework(
    class_name: Optional[str] = Query(None, alias="class"),
    section: Optional[str] = None,
    current: Identity = Depends(require_permission(Resource.HOMEWORK, Action.LIST)),
    db: Database = Depends(get_db),
):
    return {"items": services.list_homework(db, class_name, section)}


@app.post("/api/homework", status_code=201)
def create_homework(payload: HomeworkCreate,
                    current: Identity = Depends(require_permission(Resource.HOMEWORK, Action.CREATE)),
                    db: Database = Depends(get_db)):
    return services.create_homework(db, payload, current)


# ----------------------- Messages -----------------------

@app.get("/api/messages")
def list_messages(current: Identity = Depends(require_permission(Resource.MESSAGES, Action.LIST)),
                  db: Database = Depends(get_db)):
    return {"items": services.list_messages_for_user(db, current.user_id)}


@app.get("/api/messages/conversations")
def list_conversations(current: Identity = Depends(require_permission(Resource.MESSAGES, Action.LIST)),
                       db: Database = Depends(get_db)):
    return {"items": services.list_conversation_summaries(db, current.user_id)}


@app.get("/api/messages/conversation/{other_user_id}")
def get_conversation(other_user_id: str,
                     current: Identity = Depends(require_permission(Resource.MESSAGES, Action.READ)),
                     db: Database = Depends(get_db)):
    return {"items": services.list_conversation(db, current.user_id, other_user_id)}


@app.post("/api/messages", status_code=201)
def send_message(payload: MessageCreate,
                 current: Identity = Depends(require_permission(Resource.MESSAGES, Action.SEND)),
                 db: Database = Depends(get_db)):
    return services.send_message(db, current.user_id, payload.receiver_id, payload.content)


@app.put("/api/messages/{message_id}/read")
def mark_read(message_id: str,
              current: Identity = Depends(require_permission(Resource.MESSAGES, Action.MARK_READ)),
              db: Database = Depends(get_db)):
    return services.mark_message_read(db, message_id, current.user_id)


# ----------------------- Users -----------------------
# /profile and /password are declared before /{user_id} so they are not
# captured as ids.

@app.get("/api/users/available")
def available_users(current: Identity = Depends(require_permission(Resource.USERS, Action.LIST)),
                    db: Database = Depends(get_db)):
    return {"items": services.list_available_users(db, current.user_id)}


@app.put("/api/users/profile")
def update_own_profile(payload: ProfileUpdate,
                       current: Identity = Depends(require_permission(Resource.USERS, Action.UPDATE)),
                       db: Database = Depends(get_db)):
    return services.update_profile(db, current.user_id, payload.model_dump(), current)


@app.put("/api/users/password")
def update_own_password(payload: PasswordUpdate,
                        current: Identity = Depends(require_permission(Resource.USERS, Action.UPDATE)),
                        db: Database = Depends(get_db)):
    return services.update_password(db, current.user_id, payload.current_password,
                                    payload.new_password, current)


@app.get("/api/users/{user_id}")
def get_user(user_id: str,
             current: Identity = Depends(require_permission(Resource.USERS, Action.READ)),
             db: Database = Depends(get_db)):
    return services.get_user(db, user_id)


@app.put("/api/users/{user_id}")
def update_user(user_id: str, payload: ProfileUpdate,
                current: Identity = Depends(require_permission(Resource.USERS, Action.UPDATE)),
                db: Database = Depends(get_db)):
    return services.update_profile(db, user_id, payload.model_dump(), current)


@app.put("/api/users/{user_id}/password")
def update_user_password(user_id: str, payload: PasswordUpdate,
                         current: Identity = Depends(require_permission(Resource.USERS, Action.UPDATE)),
                         db: Database = Depends(get_db)):
    return services.update_password(db, user_id, payload.current_password,
                                    payload.new_password, current)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
