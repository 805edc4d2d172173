"""FastAPI application for the education admin backend."""

import csv
import logging
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from io import StringIO
from typing import Any, Dict, List, Optional, Sequence, Type

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from eduadmin.audit import AuditLog, to_csv, to_json
from eduadmin.auth import (
    AuthError,
    ROLE_PERMISSIONS,
    Session,
    authenticate,
    decode_token,
    ensure_default_admin,
    has_permission,
    hash_password,
    issue_token,
    resolve_session,
)
from eduadmin.config import Settings, configure_logging, get_settings
from eduadmin.models import (
    FinalResult,
    GraduationEvaluation,
    ImportResponse,
    LoginPayload,
    PromotionResult,
    SchoolClass,
    Student,
    Subject,
    Teacher,
    TeacherEvaluation,
    TokenResponse,
    TTSRequest,
    User,
    UserCreate,
    UserOut,
    UserRole,
    UserUpdate,
)
from eduadmin.parsers import GRADUATION, TEACHER, parse_evaluations
from eduadmin.promotion import compute_promotion_results, sort_results, summarize_results
from eduadmin.store import EvaluationStore, RecordNotFound, paginate, search
from eduadmin.tts import VOICE_OPTIONS, TTSClient, validate_text

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

async def get_session(request: Request) -> Session:
    """
    Decode the bearer token into the caller's Session.

    The account must still exist; its current role replaces the one in the token.
    """
    auth = request.headers.get("authorization")
    if not auth or not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    token = auth.split(" ", 1)[1]
    try:
        session = decode_token(token, request.app.state.settings)
        return resolve_session(request.app.state.store, session)
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))


def require_permission(permission: str):
    async def _dep(session: Session = Depends(get_session)) -> Session:
        if not has_permission(session, permission):
            raise HTTPException(status_code=403, detail=f"Missing permission '{permission}'")
        return session
    return _dep


def request_info(request: Request) -> Dict[str, Optional[str]]:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


def _page(items: Sequence[BaseModel], total: int, page: int, page_size: int) -> Dict[str, Any]:
    return {
        "items": [i.model_dump(mode="json") for i in items],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


def _user_out(user: User) -> UserOut:
    return UserOut(id=user.id, username=user.username, name=user.name, email=user.email,
                   role=user.role, created_at=user.created_at)


def _display_name(record: BaseModel, name_field: str) -> str:
    return str(getattr(record, name_field, "") or getattr(record, "student_id", "") or record.id)


# ---------------------------------------------------------------------------
# Generic CRUD routes for store collections
# ---------------------------------------------------------------------------

def register_crud(
    app: FastAPI,
    path: str,
    collection_name: str,
    model: Type[BaseModel],
    resource_type: str,
    name_field: str,
    search_fields: Sequence[str],
    view_permission: str,
    create_permission: str,
    update_permission: str,
    delete_permission: str,
) -> None:
    """List/get/create/update/delete routes with audit entries for every mutation."""

    def collection(request: Request):
        return getattr(request.app.state.store, collection_name)

    @app.get(path, name=f"list_{collection_name}")
    async def list_records(
        request: Request,
        q: Optional[str] = None,
        page: int = Query(1, ge=1),
        page_size: int = Query(50, ge=1, le=500),
        session: Session = Depends(require_permission(view_permission)),
    ):
        records = search(collection(request).newest_first(), q, search_fields)
        items, total = paginate(records, page, page_size)
        return _page(items, total, page, page_size)

    @app.get(path + "/{record_id}", name=f"get_{collection_name}")
    async def get_record(
        record_id: str,
        request: Request,
        session: Session = Depends(require_permission(view_permission)),
    ):
        return collection(request).get(record_id).model_dump(mode="json")

    @app.post(path, status_code=201, name=f"create_{collection_name}")
    async def create_record(
        payload: model,
        request: Request,
        session: Session = Depends(require_permission(create_permission)),
    ):
        stored = collection(request).insert(payload)
        request.app.state.audit.log_create(
            session, resource_type, stored.id, _display_name(stored, name_field),
            stored.model_dump(mode="json"), **request_info(request),
        )
        return stored.model_dump(mode="json")

    @app.put(path + "/{record_id}", name=f"update_{collection_name}")
    async def update_record(
        record_id: str,
        payload: model,
        request: Request,
        session: Session = Depends(require_permission(update_permission)),
    ):
        records = collection(request)
        old = records.get(record_id)
        stored = records.update(record_id, payload)
        request.app.state.audit.log_update(
            session, resource_type, record_id, _display_name(stored, name_field),
            old.model_dump(mode="json"), stored.model_dump(mode="json"), **request_info(request),
        )
        return stored.model_dump(mode="json")

    @app.delete(path + "/{record_id}", name=f"delete_{collection_name}")
    async def delete_record(
        record_id: str,
        request: Request,
        session: Session = Depends(require_permission(delete_permission)),
    ):
        removed = collection(request).delete(record_id)
        request.app.state.audit.log_delete(
            session, resource_type, record_id, _display_name(removed, name_field),
            removed.model_dump(mode="json"), **request_info(request),
        )
        return {"deleted": record_id}


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Optional[Settings] = None,
    store: Optional[EvaluationStore] = None,
    tts_client: Optional[TTSClient] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        app.state.tts.close()

    app = FastAPI(title="Education Admin Backend", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store or EvaluationStore()
    app.state.audit = AuditLog()
    app.state.tts = tts_client or TTSClient(
        settings.tts_api_url, settings.tts_api_key, settings.tts_timeout_seconds
    )
    ensure_default_admin(app.state.store, settings)

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Override default exception handlers to return JSON
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler_json(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler_json(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=422, content={"detail": exc.errors()})

    @app.exception_handler(RecordNotFound)
    async def not_found_handler(request: Request, exc: RecordNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle all unhandled exceptions and return JSON."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        error_detail = str(exc)
        if settings.debug:
            error_detail = f"{str(exc)}\n\n{traceback.format_exc()}"
        return JSONResponse(
            status_code=500,
            content={"detail": f"Internal server error: {error_detail}", "type": type(exc).__name__},
        )

    # -------------------- Meta -------------------- #

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "message": "Server is running"}

    # -------------------- Auth -------------------- #

    @app.post("/auth/login", response_model=TokenResponse)
    async def login(payload: LoginPayload, request: Request):
        store: EvaluationStore = request.app.state.store
        try:
            session = authenticate(store, payload.username, payload.password)
        except AuthError as e:
            request.app.state.audit.record(
                None, "LOGIN", f"Failed login for {payload.username}", resource_type="user",
                resource_name=payload.username, status="failed", error_message=str(e),
                **request_info(request),
            )
            raise HTTPException(status_code=401, detail=str(e))
        request.app.state.audit.log_login(session, **request_info(request))
        user = store.users.get(session.user_id)
        return TokenResponse(access_token=issue_token(session, settings), user=_user_out(user))

    @app.post("/auth/logout")
    async def logout(request: Request, session: Session = Depends(get_session)):
        request.app.state.audit.log_logout(session, **request_info(request))
        return {"success": True}

    @app.get("/auth/me")
    async def me(session: Session = Depends(get_session)):
        if session.role == UserRole.ADMIN:
            permissions = sorted(set().union(*ROLE_PERMISSIONS.values()))
        else:
            permissions = sorted(ROLE_PERMISSIONS.get(session.role, ()))
        return {
            "user_id": session.user_id,
            "username": session.username,
            "name": session.name,
            "role": session.role.value,
            "permissions": permissions,
        }

    # -------------------- Directory records & evaluations -------------------- #

    register_crud(app, "/students", "students", Student, "student", "name",
                  ("name", "email", "major", "phone"),
                  "view_students", "add_student", "edit_student", "manage_students")
    register_crud(app, "/teachers", "teachers", Teacher, "teacher", "name",
                  ("name", "email", "department", "specialization"),
                  "view_teachers", "manage_teachers", "manage_teachers", "manage_teachers")
    register_crud(app, "/classes", "classes", SchoolClass, "class", "class_name",
                  ("class_name", "class_code", "major", "teacher_name"),
                  "view_classes", "manage_classes", "manage_classes", "manage_classes")
    register_crud(app, "/subjects", "subjects", Subject, "subject", "name",
                  ("code", "name", "teacher_name"),
                  "view_subjects", "manage_subjects", "manage_subjects", "manage_subjects")
    register_crud(app, "/evaluations/teacher", "teacher_evaluations", TeacherEvaluation, "evaluation",
                  "student_name", ("student_id", "student_name", "teacher_name", "class_code"),
                  "view_evaluations", "add_evaluation", "edit_evaluation", "manage_evaluations")
    register_crud(app, "/evaluations/graduation", "graduation_evaluations", GraduationEvaluation, "evaluation",
                  "student_name", ("student_id", "student_name", "status"),
                  "view_evaluations", "add_evaluation", "edit_evaluation", "manage_evaluations")

    @app.post("/evaluations/{kind}/import", response_model=ImportResponse)
    async def import_evaluations(
        kind: str,
        request: Request,
        file: UploadFile = File(...),
        session: Session = Depends(require_permission("add_evaluation")),
    ):
        """Bulk import teacher or graduation evaluations from a spreadsheet."""
        if kind not in (TEACHER, GRADUATION):
            raise HTTPException(status_code=404, detail=f"Unknown evaluation kind '{kind}'")

        file_bytes = await file.read()
        if len(file_bytes) > settings.max_upload_size:
            raise HTTPException(
                status_code=413,
                detail=f"File too large. Maximum size: {settings.max_upload_size_mb}MB",
            )

        try:
            records, skipped = parse_evaluations(file_bytes, file.filename or "", kind)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            logger.exception("Failed to read uploaded file %s", file.filename)
            raise HTTPException(status_code=400, detail=f"Error loading file: {str(e)}")

        store: EvaluationStore = request.app.state.store
        collection = store.teacher_evaluations if kind == TEACHER else store.graduation_evaluations
        stored = store.insert_many(collection, records)
        request.app.state.audit.record(
            session, "IMPORT", f"Imported {len(stored)} {kind} evaluations from {file.filename}",
            resource_type="evaluation",
            metadata={"filename": file.filename, "imported": len(stored), "skipped": skipped},
            **request_info(request),
        )
        return ImportResponse(
            success=True,
            message=f"Successfully imported {len(stored)} {kind} evaluations",
            imported=len(stored),
            skipped=skipped,
        )

    # -------------------- Users -------------------- #

    @app.get("/users")
    async def list_users(
        request: Request,
        q: Optional[str] = None,
        page: int = Query(1, ge=1),
        page_size: int = Query(50, ge=1, le=500),
        session: Session = Depends(require_permission("manage_users")),
    ):
        users = search(request.app.state.store.users.newest_first(), q, ("username", "name", "email", "role"))
        items, total = paginate(users, page, page_size)
        return _page([_user_out(u) for u in items], total, page, page_size)

    @app.post("/users", status_code=201, response_model=UserOut)
    async def create_user(
        payload: UserCreate,
        request: Request,
        session: Session = Depends(require_permission("manage_users")),
    ):
        store: EvaluationStore = request.app.state.store
        if store.users.find(username=payload.username):
            raise HTTPException(status_code=400, detail="Username already exists")
        user = store.users.insert(User(
            username=payload.username,
            password_hash=hash_password(payload.password),
            name=payload.name,
            email=payload.email,
            role=payload.role,
        ))
        out = _user_out(user)
        request.app.state.audit.log_create(session, "user", user.id, user.username,
                                           out.model_dump(mode="json"), **request_info(request))
        return out

    @app.put("/users/{user_id}", response_model=UserOut)
    async def update_user(
        user_id: str,
        payload: UserUpdate,
        request: Request,
        session: Session = Depends(require_permission("manage_users")),
    ):
        store: EvaluationStore = request.app.state.store
        old = store.users.get(user_id)
        clash = [u for u in store.users.find(username=payload.username) if u.id != user_id]
        if clash:
            raise HTTPException(status_code=400, detail="Username already exists")
        password_hash = hash_password(payload.password) if payload.password else old.password_hash
        user = store.users.update(user_id, User(
            username=payload.username,
            password_hash=password_hash,
            name=payload.name,
            email=payload.email,
            role=payload.role,
        ))
        out = _user_out(user)
        request.app.state.audit.log_update(session, "user", user_id, user.username,
                                           _user_out(old).model_dump(mode="json"), out.model_dump(mode="json"),
                                           **request_info(request))
        return out

    @app.delete("/users/{user_id}")
    async def delete_user(
        user_id: str,
        request: Request,
        session: Session = Depends(require_permission("manage_users")),
    ):
        if user_id == session.user_id:
            raise HTTPException(status_code=400, detail="You cannot delete your own account")
        removed = request.app.state.store.users.delete(user_id)
        request.app.state.audit.log_delete(session, "user", user_id, removed.username,
                                           _user_out(removed).model_dump(mode="json"), **request_info(request))
        return {"deleted": user_id}

    # -------------------- Promotion -------------------- #

    def current_results(request: Request) -> List[PromotionResult]:
        store: EvaluationStore = request.app.state.store
        return compute_promotion_results(store.teacher_evaluations.all(), store.graduation_evaluations.all())

    @app.get("/promotion/results")
    async def promotion_results(
        request: Request,
        sort: Optional[str] = None,
        descending: bool = False,
        final_result: Optional[FinalResult] = None,
        session: Session = Depends(require_permission("view_results")),
    ):
        results = current_results(request)
        summary = summarize_results(results)
        if final_result is not None:
            results = [r for r in results if r.final_result == final_result]
        if sort:
            try:
                results = sort_results(results, sort, descending)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
        return {
            "results": [r.model_dump(mode="json") for r in results],
            "summary": summary.model_dump(),
        }

    @app.get("/promotion/summary")
    async def promotion_summary(
        request: Request,
        session: Session = Depends(require_permission("view_results")),
    ):
        return summarize_results(current_results(request)).model_dump()

    @app.get("/promotion/results.csv")
    async def download_promotion_csv(
        request: Request,
        session: Session = Depends(require_permission("view_results")),
    ):
        """Download promotion results as CSV, sorted by student name."""
        results = sort_results(current_results(request), "name")

        output = StringIO()
        writer = csv.writer(output)
        writer.writerow([
            "Student ID",
            "Student Name",
            "Teacher Score",
            "Attitude",
            "Participation",
            "GPA",
            "Credits",
            "Graduation Status",
            "Final Result",
            "Reason",
            "Evaluation Date",
        ])
        for r in results:
            writer.writerow([
                r.student_id,
                r.student_name,
                f"{r.teacher_score:g}",
                f"{r.teacher_attitude:g}",
                f"{r.teacher_participation:g}",
                f"{r.graduation_gpa:.2f}",
                r.graduation_credits,
                r.graduation_status,
                r.final_result.value,
                r.reason,
                r.evaluation_date,
            ])
        output.seek(0)

        request.app.state.audit.log_export(session, "promotion results", len(results), "csv",
                                           **request_info(request))
        stamp = datetime.now(timezone.utc).date().isoformat()
        return StreamingResponse(
            iter([output.getvalue()]),
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename=promotion_results_{stamp}.csv"},
        )

    # -------------------- Audit logs -------------------- #

    @app.get("/audit/logs")
    async def audit_logs(
        request: Request,
        user_id: Optional[str] = None,
        action_type: Optional[str] = None,
        resource_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        search_text: Optional[str] = Query(None, alias="search"),
        limit: int = Query(50, ge=1, le=1000),
        offset: int = Query(0, ge=0),
        session: Session = Depends(require_permission("view_admin_panel")),
    ):
        logs, total = request.app.state.audit.query(
            user_id=user_id, action_type=action_type, resource_type=resource_type,
            start=start, end=end, search=search_text, limit=limit, offset=offset,
        )
        return {"items": [log.model_dump(mode="json") for log in logs], "total": total,
                "limit": limit, "offset": offset}

    @app.get("/audit/stats")
    async def audit_stats(request: Request, session: Session = Depends(require_permission("view_admin_panel"))):
        return request.app.state.audit.stats().model_dump()

    @app.get("/audit/users/{user_id}/summary")
    async def audit_user_summary(
        user_id: str,
        request: Request,
        session: Session = Depends(require_permission("view_admin_panel")),
    ):
        return request.app.state.audit.user_summary(user_id)

    def _export_logs(request: Request, action_type: Optional[str], resource_type: Optional[str],
                     start: Optional[datetime], end: Optional[datetime]):
        audit: AuditLog = request.app.state.audit
        logs, _ = audit.query(action_type=action_type, resource_type=resource_type,
                              start=start, end=end, limit=max(len(audit), 1))
        return logs

    @app.get("/audit/logs.csv")
    async def export_audit_csv(
        request: Request,
        action_type: Optional[str] = None,
        resource_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        session: Session = Depends(require_permission("view_admin_panel")),
    ):
        logs = _export_logs(request, action_type, resource_type, start, end)
        request.app.state.audit.log_export(session, "activity logs", len(logs), "csv", **request_info(request))
        stamp = datetime.now(timezone.utc).date().isoformat()
        return Response(
            content=to_csv(logs),
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f"attachment; filename=audit-logs-{stamp}.csv"},
        )

    @app.get("/audit/logs.json")
    async def export_audit_json(
        request: Request,
        action_type: Optional[str] = None,
        resource_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        session: Session = Depends(require_permission("view_admin_panel")),
    ):
        logs = _export_logs(request, action_type, resource_type, start, end)
        request.app.state.audit.log_export(session, "activity logs", len(logs), "json", **request_info(request))
        stamp = datetime.now(timezone.utc).date().isoformat()
        return Response(
            content=to_json(logs),
            media_type="application/json",
            headers={"Content-Disposition": f"attachment; filename=audit-logs-{stamp}.json"},
        )

    @app.delete("/audit/logs")
    async def purge_audit_logs(
        request: Request,
        days: Optional[int] = Query(None, ge=0),
        session: Session = Depends(require_permission("manage_users")),
    ):
        retention = settings.audit_retention_days if days is None else days
        deleted = request.app.state.audit.delete_older_than(retention)
        return {"deleted": deleted, "days": retention}

    # -------------------- Text to speech -------------------- #

    @app.get("/tts/voices")
    async def tts_voices(session: Session = Depends(get_session)):
        return [{"id": voice_id, "label": option["label"]} for voice_id, option in VOICE_OPTIONS.items()]

    @app.post("/tts")
    def text_to_speech(payload: TTSRequest, request: Request, session: Session = Depends(get_session)):
        """Synthesize speech and return the audio bytes."""
        invalid = validate_text(payload.text)
        if invalid:
            raise HTTPException(status_code=400, detail=invalid)
        client: TTSClient = request.app.state.tts
        if not client.enabled:
            raise HTTPException(status_code=503, detail="Text-to-speech is not configured")
        result = client.synthesize(payload.text, payload.voice, payload.speed)
        if result.error:
            raise HTTPException(status_code=502, detail=result.error)
        return Response(content=result.audio, media_type="audio/mpeg")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
