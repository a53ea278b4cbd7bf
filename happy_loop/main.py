import logging
import os
import random
from datetime import date, datetime
from typing import Optional

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select
from starlette.middleware.sessions import SessionMiddleware

from .auth import (
    get_own_kid,
    hash_password,
    login_parent,
    logout_parent,
    require_parent,
    verify_password,
)
from .config import (
    SAMPLE_DAYS,
    SESSION_COOKIE,
    SESSION_SECRET,
    STATIC_DIR,
    TEMPLATES_DIR,
    UPLOADS_DIR,
    configure_logging,
)
from .db import get_session, init_db
from .errors import CatalogUnavailableError, EvidenceError, ParentNotFoundError, SeedingError
from .history import compute_kid_totals, kid_history, progress_series, refresh_kid_streak
from .models import (
    Badge,
    Kid,
    KidTask,
    MediaType,
    MediaUpload,
    Parent,
    Reward,
    Task,
    TaskLog,
    VerificationType,
)
from .schemas import (
    DESCRIPTIVE_TASK_FIELDS,
    EmailRequest,
    KidCreate,
    ParentCreate,
    RedeemRequest,
    RewardCreate,
    SampleDataRequest,
    TaskCreate,
    TaskUpdate,
)
from .seeding import (
    cleanup_duplicate_kids,
    delete_kids,
    find_parent_by_email,
    get_family_config,
    get_parent_kids,
    populate_sample_data,
    seed_dev_data,
    setup_sample_tasks,
)
from .storage import discard_evidence, media_type_for, store_evidence_upload

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    init_db()
    yield


app = FastAPI(title="Happy Loop", lifespan=lifespan)
app.add_middleware(
    SessionMiddleware,
    secret_key=SESSION_SECRET,
    session_cookie=SESSION_COOKIE,
)

os.makedirs(UPLOADS_DIR, exist_ok=True)
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")
templates = Jinja2Templates(directory=TEMPLATES_DIR)

REQUIRED_EVIDENCE = {
    VerificationType.photo: MediaType.image,
    VerificationType.video: MediaType.video,
}


@app.exception_handler(ParentNotFoundError)
async def parent_not_found_handler(request: Request, exc: ParentNotFoundError):
    return JSONResponse({"detail": "Parent not found"}, status_code=404)


@app.exception_handler(CatalogUnavailableError)
@app.exception_handler(SeedingError)
async def seeding_error_handler(request: Request, exc: Exception):
    logger.error("Seeding failed: %s", exc)
    return JSONResponse({"detail": str(exc)}, status_code=500)


@app.exception_handler(EvidenceError)
async def evidence_error_handler(request: Request, exc: EvidenceError):
    return JSONResponse({"detail": str(exc)}, status_code=400)


def require_email(email: Optional[str]) -> str:
    if not email:
        raise HTTPException(status_code=400, detail="Email is required")
    return email


def get_task(session: Session, task_id: int) -> Task:
    task = session.get(Task, task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


def get_task_log(session: Session, parent: Parent, log_id: int) -> TaskLog:
    log = session.exec(
        select(TaskLog)
        .join(Kid, Kid.id == TaskLog.kid_id)
        .where(TaskLog.id == log_id, Kid.parent_id == parent.id)
    ).first()
    if not log:
        raise HTTPException(status_code=404, detail="Completion not found")
    return log


def get_reward(session: Session, reward_id: int) -> Reward:
    reward = session.get(Reward, reward_id)
    if not reward:
        raise HTTPException(status_code=404, detail="Reward not found")
    return reward


def task_has_history(session: Session, task_id: int) -> bool:
    return session.exec(select(TaskLog.id).where(TaskLog.task_id == task_id).limit(1)).first() is not None


def media_by_log(session: Session, log_ids: list[int]) -> dict[int, MediaUpload]:
    if not log_ids:
        return {}
    uploads = session.exec(select(MediaUpload).where(MediaUpload.task_log_id.in_(log_ids))).all()
    return {media.task_log_id: media for media in uploads}


def serialize_media(media: Optional[MediaUpload]) -> Optional[dict]:
    if media is None:
        return None
    return {
        "id": media.id,
        "task_log_id": media.task_log_id,
        "storage_path": media.storage_path,
        "type": media.type.value,
        "thumbnail_path": media.thumbnail_path,
    }


def serialize_log(log: TaskLog, media: Optional[MediaUpload] = None, task: Optional[Task] = None) -> dict:
    data = {
        "id": log.id,
        "kid_id": log.kid_id,
        "task_id": log.task_id,
        "date": log.log_date.isoformat(),
        "ai_validated": log.ai_validated,
        "parent_approved": log.parent_approved,
        "points_awarded": log.points_awarded,
        "media_id": log.media_id,
        "created_at": log.created_at.isoformat(),
        "media": serialize_media(media),
    }
    if task is not None:
        data["task_name"] = task.name
    return data


def leaderboard_for(session: Session, parent: Parent) -> list[Kid]:
    kids = get_parent_kids(session, parent.id)
    return sorted(kids, key=lambda kid: (-kid.points, -kid.streak, kid.name))


def sample_rng(seed: Optional[int]) -> random.Random:
    return random.Random(seed) if seed is not None else random.Random()


@app.post("/api/auth/create-parent")
def create_parent(payload: ParentCreate, session: Session = Depends(get_session)):
    if not payload.email or not payload.name:
        raise HTTPException(status_code=400, detail="Missing required fields")
    existing = session.exec(select(Parent).where(Parent.email == payload.email)).first()
    if existing:
        raise HTTPException(status_code=409, detail="Parent already exists")
    parent = Parent(
        id=payload.user_id,
        email=payload.email,
        name=payload.name,
        hashed_password=hash_password(payload.password) if payload.password else None,
    )
    session.add(parent)
    session.commit()
    session.refresh(parent)
    logger.info("Created parent %s", parent.id)
    return {"success": True, "data": {"id": parent.id, "email": parent.email, "name": parent.name}}


@app.post("/login")
async def login(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    session: Session = Depends(get_session),
):
    parent = session.exec(select(Parent).where(Parent.email == email)).first()
    if not parent or not parent.hashed_password or not verify_password(password, parent.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    login_parent(request, parent)
    return {"success": True, "parent_id": parent.id}


@app.post("/logout")
def logout(request: Request):
    logout_parent(request)
    return {"success": True}


@app.post("/api/dashboard/add-child")
def add_child(payload: KidCreate, session: Session = Depends(get_session)):
    if not payload.parent_id or not payload.name or not payload.age or not payload.avatar:
        logger.error("Missing required fields for add-child")
        raise HTTPException(status_code=400, detail="Missing required fields")
    parent = session.get(Parent, payload.parent_id)
    if not parent:
        logger.info("Parent %s does not exist, creating it first", payload.parent_id)
        parent = Parent(
            id=payload.parent_id,
            email=payload.email or "parent@example.com",
            name=payload.parent_name or "Parent User",
        )
        session.add(parent)
        session.commit()
    kid = Kid(
        parent_id=payload.parent_id,
        name=payload.name,
        age=payload.age,
        avatar=payload.avatar,
        points=payload.points or 0,
        streak=payload.streak or 0,
    )
    session.add(kid)
    session.commit()
    session.refresh(kid)
    logger.info("Created kid %s for parent %s", kid.id, kid.parent_id)
    return {"success": True, "data": [kid]}


@app.get("/api/dashboard/verify-kids")
def verify_kids(email: Optional[str] = Query(None), session: Session = Depends(get_session)):
    parent = find_parent_by_email(session, require_email(email))
    kids = get_parent_kids(session, parent.id)
    return {
        "parent": {"id": parent.id, "email": parent.email, "name": parent.name},
        "kids": kids,
        "timestamp": datetime.utcnow().isoformat(),
    }


@app.delete("/api/dashboard/delete-kids")
def delete_parent_kids(email: Optional[str] = Query(None), session: Session = Depends(get_session)):
    email = require_email(email)
    parent = find_parent_by_email(session, email)
    count = delete_kids(session, parent)
    return {"message": f"Successfully deleted {count} kids for user {email}", "deleted_count": count}


@app.post("/api/dashboard/cleanup-duplicate-kids")
def cleanup_duplicates(payload: EmailRequest, session: Session = Depends(get_session)):
    email = require_email(payload.email)
    parent = find_parent_by_email(session, email)
    deleted_kids, deleted_logs = cleanup_duplicate_kids(session, parent)
    return {
        "message": f"Duplicate cleanup complete for {email}.",
        "deleted_kids": deleted_kids,
        "deleted_logs": deleted_logs,
    }


@app.post("/api/dashboard/populate-sample-data")
def populate_sample(payload: SampleDataRequest, session: Session = Depends(get_session)):
    email = require_email(payload.email)
    result = populate_sample_data(session, email, rng=sample_rng(payload.seed), days=SAMPLE_DAYS)
    return {
        "message": (
            f"Successfully added {len(result['kids'])} children, generated "
            f"{result['logs_generated']} logs and {result['media_generated']} media placeholders."
        ),
        "kids_added": result["kids"],
        "logs_generated": result["logs_generated"],
        "media_generated": result["media_generated"],
    }


@app.post("/api/dev/seed-data")
def seed_data(payload: SampleDataRequest, session: Session = Depends(get_session)):
    email = require_email(payload.email)
    result = seed_dev_data(session, email, rng=sample_rng(payload.seed), days=SAMPLE_DAYS)
    return {"message": f"Data seeding complete for {email}.", **result}


@app.get("/api/tasks/setup-sample-tasks")
def setup_tasks(session: Session = Depends(get_session)):
    created, count = setup_sample_tasks(session)
    message = "Sample tasks added successfully" if created else "Tasks already exist"
    return {"success": True, "message": message, "tasks_count": count}


@app.get("/api/tasks")
def list_tasks(session: Session = Depends(get_session), parent: Parent = Depends(require_parent)):
    return session.exec(select(Task).order_by(Task.name)).all()


@app.post("/api/tasks")
def create_task(
    payload: TaskCreate,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    if payload.points <= 0:
        raise HTTPException(status_code=400, detail="Task points must be positive")
    task = Task(**payload.model_dump())
    session.add(task)
    session.commit()
    session.refresh(task)
    return task


@app.patch("/api/tasks/{task_id}")
def update_task(
    task_id: int,
    payload: TaskUpdate,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    task = get_task(session, task_id)
    changes = payload.model_dump(exclude_unset=True)
    if "points" in changes and (changes["points"] is None or changes["points"] <= 0):
        raise HTTPException(status_code=400, detail="Task points must be positive")
    locked = set(changes) - DESCRIPTIVE_TASK_FIELDS
    if locked and task_has_history(session, task.id):
        raise HTTPException(
            status_code=409, detail=f"Task has completion history; cannot change {', '.join(sorted(locked))}"
        )
    for key, value in changes.items():
        setattr(task, key, value)
    session.add(task)
    session.commit()
    session.refresh(task)
    return task


@app.delete("/api/tasks/{task_id}")
def delete_task(
    task_id: int,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    task = get_task(session, task_id)
    if task_has_history(session, task.id):
        raise HTTPException(status_code=409, detail="Task has completion history")
    for assignment in session.exec(select(KidTask).where(KidTask.task_id == task.id)).all():
        session.delete(assignment)
    session.flush()
    session.delete(task)
    session.commit()
    return {"success": True}


@app.get("/api/kids/{kid_id}/tasks")
def list_kid_tasks(
    kid_id: int,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    kid = get_own_kid(session, parent, kid_id)
    return session.exec(
        select(Task).join(KidTask, KidTask.task_id == Task.id).where(KidTask.kid_id == kid.id).order_by(Task.name)
    ).all()


@app.post("/api/kids/{kid_id}/tasks/{task_id}")
def assign_task(
    kid_id: int,
    task_id: int,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    kid = get_own_kid(session, parent, kid_id)
    task = get_task(session, task_id)
    existing = session.exec(
        select(KidTask).where(KidTask.kid_id == kid.id, KidTask.task_id == task.id)
    ).first()
    if not existing:
        session.add(KidTask(kid_id=kid.id, task_id=task.id))
        session.commit()
    return {"success": True}


@app.delete("/api/kids/{kid_id}/tasks/{task_id}")
def unassign_task(
    kid_id: int,
    task_id: int,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    kid = get_own_kid(session, parent, kid_id)
    assignment = session.exec(
        select(KidTask).where(KidTask.kid_id == kid.id, KidTask.task_id == task_id)
    ).first()
    if assignment:
        session.delete(assignment)
        session.commit()
    return {"success": True}


@app.post("/api/kids/{kid_id}/completions")
async def record_completion(
    kid_id: int,
    task_id: int = Form(...),
    log_date: Optional[date] = Form(None, alias="date"),
    ai_validated: bool = Form(False),
    evidence: Optional[UploadFile] = File(None),
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    kid = get_own_kid(session, parent, kid_id)
    task = get_task(session, task_id)
    log_date = log_date or date.today()
    if log_date > date.today():
        raise HTTPException(status_code=400, detail="Completion date cannot be in the future")
    required = REQUIRED_EVIDENCE.get(task.verification_type)
    has_file = evidence is not None and bool(evidence.filename)
    if required and not has_file:
        raise HTTPException(status_code=400, detail=f"{task.verification_type.value} evidence is required")
    media_kind = media_type_for(evidence.filename) if has_file else None
    if has_file and required and media_kind != required:
        raise HTTPException(status_code=400, detail=f"{task.verification_type.value} evidence is required")
    duplicate = session.exec(
        select(TaskLog).where(
            TaskLog.kid_id == kid.id, TaskLog.task_id == task.id, TaskLog.log_date == log_date
        )
    ).first()
    if duplicate:
        raise HTTPException(status_code=409, detail="Task already completed on this date")

    log = TaskLog(
        kid_id=kid.id,
        task_id=task.id,
        log_date=log_date,
        ai_validated=ai_validated,
        parent_approved=None,
        points_awarded=0,
    )
    session.add(log)
    session.flush()

    stored = await store_evidence_upload(evidence) if has_file else None
    media = None
    try:
        if stored:
            url, media_type = stored
            media = MediaUpload(task_log_id=log.id, storage_path=url, type=media_type)
            session.add(media)
            session.flush()
            log.media_id = media.id
            session.add(log)
        refresh_kid_streak(session, kid)
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        if stored:
            discard_evidence(stored[0])
        logger.exception("Recording completion for kid %s task %s failed", kid.id, task.id)
        raise
    session.refresh(log)
    logger.info("Recorded completion %s for kid %s task %s on %s", log.id, kid.id, task.id, log_date)
    return serialize_log(log, media, task)


@app.get("/api/kids/{kid_id}/completions")
def list_completions(
    kid_id: int,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    kid = get_own_kid(session, parent, kid_id)
    logs = list(reversed(kid_history(session, kid.id, start, end)))
    media = media_by_log(session, [log.id for log in logs])
    return [serialize_log(log, media.get(log.id)) for log in logs]


@app.post("/api/completions/{log_id}/action")
async def review_completion(
    log_id: int,
    action: str = Form(...),
    points: Optional[int] = Form(None),
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    log = get_task_log(session, parent, log_id)
    if log.parent_approved is not None:
        raise HTTPException(status_code=409, detail="Completion already reviewed")
    kid = session.get(Kid, log.kid_id)
    task = session.get(Task, log.task_id)
    if action == "approve":
        award = points if points is not None else task.points
        if award < 0:
            raise HTTPException(status_code=400, detail="Points cannot be negative")
        log.parent_approved = True
        log.points_awarded = award
        kid.points += award
    elif action == "reject":
        log.parent_approved = False
        log.points_awarded = 0
    else:
        raise HTTPException(status_code=400, detail="Invalid action")
    session.add(log)
    refresh_kid_streak(session, kid)
    session.commit()
    session.refresh(log)
    session.refresh(kid)
    logger.info("Completion %s %sd, kid %s now has %s points", log.id, action, kid.id, kid.points)
    return {"log": serialize_log(log, task=task), "kid": kid}


@app.get("/api/review/pending")
def pending_review(session: Session = Depends(get_session), parent: Parent = Depends(require_parent)):
    rows = session.exec(
        select(TaskLog, Task)
        .join(Kid, Kid.id == TaskLog.kid_id)
        .join(Task, Task.id == TaskLog.task_id)
        .where(
            Kid.parent_id == parent.id,
            TaskLog.ai_validated == True,  # noqa: E712
            TaskLog.parent_approved == None,  # noqa: E711
        )
        .order_by(TaskLog.log_date.desc(), TaskLog.id.desc())
    ).all()
    media = media_by_log(session, [log.id for log, _ in rows])
    return [serialize_log(log, media.get(log.id), task) for log, task in rows]


@app.get("/api/rewards")
def list_rewards(session: Session = Depends(get_session)):
    return session.exec(
        select(Reward).where(Reward.available == True).order_by(Reward.point_cost)  # noqa: E712
    ).all()


@app.post("/api/rewards")
def create_reward(
    payload: RewardCreate,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    if payload.point_cost <= 0:
        raise HTTPException(status_code=400, detail="Point cost must be positive")
    reward = Reward(**payload.model_dump())
    session.add(reward)
    session.commit()
    session.refresh(reward)
    return reward


@app.post("/api/rewards/{reward_id}/redeem")
def redeem_reward(
    reward_id: int,
    payload: RedeemRequest,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    reward = get_reward(session, reward_id)
    kid = get_own_kid(session, parent, payload.kid_id)
    if not reward.available:
        raise HTTPException(status_code=400, detail="Reward is not available")
    if kid.points < reward.point_cost:
        raise HTTPException(status_code=400, detail="Not enough points")
    # redemption is a preview only; balances are not changed
    return {
        "success": True,
        "reward_id": reward.id,
        "kid_id": kid.id,
        "remaining_points": kid.points - reward.point_cost,
    }


@app.get("/api/kids/{kid_id}/progress")
def kid_progress(
    kid_id: int,
    days: int = Query(30, ge=1, le=366),
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    kid = get_own_kid(session, parent, kid_id)
    history_points, streak = compute_kid_totals(session, kid.id)
    return {
        "kid_id": kid.id,
        "points": kid.points,
        "history_points": history_points,
        "streak": streak,
        "days": progress_series(session, kid.id, days),
    }


@app.get("/api/kids/{kid_id}/badges")
def kid_badges(kid_id: int, session: Session = Depends(get_session), parent: Parent = Depends(require_parent)):
    kid = get_own_kid(session, parent, kid_id)
    return session.exec(
        select(Badge).where(Badge.kid_id == kid.id).order_by(Badge.date_earned.desc(), Badge.id.desc())
    ).all()


@app.get("/api/leaderboard")
def leaderboard(session: Session = Depends(get_session), parent: Parent = Depends(require_parent)):
    return [
        {"rank": rank, "id": kid.id, "name": kid.name, "avatar": kid.avatar, "points": kid.points, "streak": kid.streak}
        for rank, kid in enumerate(leaderboard_for(session, parent), start=1)
    ]


@app.get("/api/family-config")
def family_config(session: Session = Depends(get_session), parent: Parent = Depends(require_parent)):
    return get_family_config(session, parent.id)


@app.get("/dashboard", response_class=HTMLResponse)
def dashboard(
    request: Request,
    session: Session = Depends(get_session),
    parent: Parent = Depends(require_parent),
):
    config = get_family_config(session, parent.id)
    kids = leaderboard_for(session, parent)
    return templates.TemplateResponse(
        request,
        "dashboard.html",
        {
            "parent": parent,
            "kids": kids,
            "show_leaderboard": config.show_leaderboard,
        },
    )


@app.get("/health")
def health():
    return {"status": "ok"}
