from fastapi import FastAPI, Depends, Query, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

import database
from database import get_db, Base
import models
import schemas
from config import DEFAULT_ADMIN_PASSWORD, load_settings
from errors import ServiceError
from auth.routes import router as auth_router
from auth.dependencies import get_current_actor
from auth.permissions import Actor
from auth.security import TokenService, hash_password
from services import tasks as task_service
from services import task_items as task_item_service
from services import status_logs as status_log_service
from services import users as user_service

# Fatal if JWT_SECRET_KEY is missing or any setting is invalid
settings = load_settings()

# Configure logging
logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)

engine = database.init_engine(settings.database_url)

app = FastAPI(
    title="Errando API",
    description="Task-assignment tracker: clients post tasks, runners claim and report on them",
    version="1.0.0"
)

app.state.settings = settings
app.state.token_service = TokenService(settings)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register authentication router
app.include_router(auth_router)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    """Translate service outcomes into HTTP responses."""
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies and parameters are validation failures (400)."""
    logger.info(f"Request validation failed on {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


# ============== Startup: Schema and Admin User ==============

@app.on_event("startup")
async def prepare_database():
    """
    Create missing tables and make sure an admin account exists.

    Table creation is skipped when CREATE_TABLES is false (schema managed
    elsewhere); seeding is skipped when SEED_ADMIN is false.
    """
    if settings.create_tables:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables ensured")

    if not settings.seed_admin:
        return

    db = database.SessionLocal()
    try:
        admin = db.query(models.User).filter(models.User.role == models.UserRole.admin).first()
        if admin:
            logger.info(f"Admin user already exists (username: {admin.username})")
            return

        admin = models.User(
            username=settings.admin_username,
            email=settings.admin_email,
            password_hash=hash_password(settings.admin_password),
            role=models.UserRole.admin,
        )
        db.add(admin)
        db.commit()

        if settings.admin_password == DEFAULT_ADMIN_PASSWORD:
            logger.warning(
                "⚠️  Admin user created with DEFAULT password 'admin123'. "
                "Set ADMIN_PASSWORD to use a custom password."
            )
        else:
            logger.info(f"✅ Admin user created: {settings.admin_username}")
    finally:
        db.close()


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy"}


# ============== Users ==============

@app.get("/api/users", response_model=List[schemas.User])
def list_users(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """List users (admin: all users; others: only themselves)."""
    return user_service.list_users(db, actor)


@app.post("/api/users", response_model=schemas.User, status_code=status.HTTP_201_CREATED)
def create_user(
    user_data: schemas.UserCreate,
    response: Response,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Create a new user with any role (admin only)."""
    user = user_service.create_user(db, actor, user_data)
    response.headers["Location"] = f"/api/users/{user.id}"
    return user


@app.get("/api/users/{user_id}", response_model=schemas.User)
def get_user(
    user_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Get user by ID (admin or self)."""
    return user_service.get_user(db, actor, user_id)


@app.put("/api/users/{user_id}", response_model=schemas.User)
def update_user(
    user_id: int,
    user_update: schemas.UserUpdate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Update user (admin or self). Only admins can change roles."""
    return user_service.update_user(db, actor, user_id, user_update)


@app.delete("/api/users/{user_id}", response_model=schemas.Message)
def delete_user(
    user_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Delete user (admin only). Fails with 409 while the user owns tasks."""
    user_service.delete_user(db, actor, user_id)
    return {"message": "User deleted"}


# ============== Tasks ==============

@app.get("/api/tasks", response_model=List[schemas.Task])
def list_tasks(
    status_filter: Optional[str] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """List tasks visible to the caller, ordered by scheduled time."""
    return task_service.list_tasks(db, actor, status=status_filter, skip=skip, limit=limit)


@app.post("/api/tasks", response_model=schemas.Task, status_code=status.HTTP_201_CREATED)
def create_task(
    task: schemas.TaskCreate,
    response: Response,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Create a new task (clients own what they create; admins name the client)."""
    db_task = task_service.create_task(db, actor, task)
    response.headers["Location"] = f"/api/tasks/{db_task.id}"
    return db_task


@app.get("/api/tasks/{task_id}", response_model=schemas.Task)
def get_task(
    task_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Get task by ID."""
    return task_service.get_task(db, actor, task_id)


@app.put("/api/tasks/{task_id}", response_model=schemas.Task)
def update_task(
    task_id: int,
    task_update: schemas.TaskUpdate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Update task (admin or owning client)."""
    return task_service.update_task(db, actor, task_id, task_update)


@app.delete("/api/tasks/{task_id}", response_model=schemas.Message)
def delete_task(
    task_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Delete task with its items and status logs (admin or owning client)."""
    task_service.delete_task(db, actor, task_id)
    return {"message": "Task deleted"}


@app.post("/api/tasks/{task_id}/assign", response_model=schemas.Task)
def assign_task(
    task_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Claim an unassigned task (runners only)."""
    return task_service.assign_task(db, actor, task_id)


@app.post("/api/tasks/{task_id}/unassign", response_model=schemas.Task)
def unassign_task(
    task_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Release a task (its runner, or an admin)."""
    return task_service.unassign_task(db, actor, task_id)


# ============== Task Items ==============

@app.get("/api/task-items", response_model=List[schemas.TaskItem])
def list_task_items(
    task_id: Optional[int] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """List task items visible to the caller, optionally for one task."""
    return task_item_service.list_task_items(db, actor, task_id=task_id, skip=skip, limit=limit)


@app.post("/api/task-items", response_model=schemas.TaskItem, status_code=status.HTTP_201_CREATED)
def create_task_item(
    item: schemas.TaskItemCreate,
    response: Response,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Add an item to a task (admin or owning client)."""
    db_item = task_item_service.create_task_item(db, actor, item)
    response.headers["Location"] = f"/api/task-items/{db_item.id}"
    return db_item


@app.get("/api/task-items/{item_id}", response_model=schemas.TaskItem)
def get_task_item(
    item_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return task_item_service.get_task_item(db, actor, item_id)


@app.put("/api/task-items/{item_id}", response_model=schemas.TaskItem)
def update_task_item(
    item_id: int,
    item_update: schemas.TaskItemUpdate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return task_item_service.update_task_item(db, actor, item_id, item_update)


@app.post("/api/task-items/{item_id}/complete", response_model=schemas.TaskItem)
def complete_task_item(
    item_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Mark a task item completed."""
    return task_item_service.complete_task_item(db, actor, item_id)


@app.post("/api/task-items/{item_id}/reopen", response_model=schemas.TaskItem)
def reopen_task_item(
    item_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Mark a task item pending again."""
    return task_item_service.reopen_task_item(db, actor, item_id)


@app.delete("/api/task-items/{item_id}", response_model=schemas.Message)
def delete_task_item(
    item_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    task_item_service.delete_task_item(db, actor, item_id)
    return {"message": "Task item deleted"}


# ============== Status Logs ==============

@app.get("/api/status-logs", response_model=List[schemas.StatusLog])
def list_status_logs(
    task_item_id: Optional[int] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """List status logs visible to the caller, newest first."""
    return status_log_service.list_status_logs(db, actor, task_item_id=task_item_id, skip=skip, limit=limit)


@app.post("/api/status-logs", response_model=schemas.StatusLog, status_code=status.HTTP_201_CREATED)
def create_status_log(
    log: schemas.StatusLogCreate,
    response: Response,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Record a status update on a task item (its assigned runner, or an admin)."""
    db_log = status_log_service.create_status_log(db, actor, log)
    response.headers["Location"] = f"/api/status-logs/{db_log.id}"
    return db_log


@app.get("/api/status-logs/{log_id}", response_model=schemas.StatusLog)
def get_status_log(
    log_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return status_log_service.get_status_log(db, actor, log_id)


@app.put("/api/status-logs/{log_id}", response_model=schemas.StatusLog)
def update_status_log(
    log_id: int,
    log_update: schemas.StatusLogUpdate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return status_log_service.update_status_log(db, actor, log_id, log_update)


@app.delete("/api/status-logs/{log_id}", response_model=schemas.Message)
def delete_status_log(
    log_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    status_log_service.delete_status_log(db, actor, log_id)
    return {"message": "Status log deleted"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000)
