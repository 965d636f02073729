from __future__ import annotations

import os
import sqlite3
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from tinywords.api.schemas import (
    PlanItemPatchRequest,
    ProfilePatchRequest,
    ReviewSubmitRequest,
    SpeechAttemptRequest,
    SpeechScoreRequest,
)
from tinywords.config import configure_logging, ensure_dirs
from tinywords.context import RequestContext, build_context
from tinywords.errors import ErrorKind, HTTP_STATUS, TinyWordsError
from tinywords.scheduler.day_plan import StepUpdate
from tinywords.services.day_plans import DayPlanService
from tinywords.services.history import HistoryService
from tinywords.services.idempotency import IdempotencyStore
from tinywords.services.reviews import ReviewService
from tinywords.services.speech import SpeechService
from tinywords.services.users import UserService
from tinywords.services.word_supplier import WordSupplier
from tinywords.storage.db import Database

UTC = timezone.utc
API_PREFIX = "/api/v1"


@dataclass
class Services:
    day_plans: DayPlanService
    reviews: ReviewService
    users: UserService
    history: HistoryService
    speech: SpeechService
    idempotency: IdempotencyStore


def build_services(store: Database, supplier: WordSupplier) -> Services:
    idempotency = IdempotencyStore(store)
    return Services(
        day_plans=DayPlanService(store, supplier, idempotency),
        reviews=ReviewService(store, idempotency),
        users=UserService(store),
        history=HistoryService(store),
        speech=SpeechService(store),
        idempotency=idempotency,
    )


router = APIRouter()


def get_context(request: Request) -> RequestContext:
    ctx = build_context(
        request_id=request.headers.get("X-Request-Id"),
        user_id=request.headers.get("X-User-Id"),
        timezone_name=request.headers.get("X-Client-Timezone"),
    )
    request.state.context = ctx
    return ctx


def get_services(request: Request) -> Services:
    return request.app.state.services


def _meta(request_id: str, **extra) -> dict:
    meta = {"request_id": request_id, "timestamp": datetime.now(UTC).isoformat()}
    meta.update({key: value for key, value in extra.items() if value is not None})
    return meta


def _ok(ctx: RequestContext, data: object, **meta) -> dict:
    return {"data": data, "meta": _meta(ctx.request_id, **meta)}


def _error_response(request: Request, status_code: int, error: dict) -> JSONResponse:
    ctx = getattr(request.state, "context", None)
    request_id = ctx.request_id if ctx else (request.headers.get("X-Request-Id") or "")
    return JSONResponse(status_code=status_code, content={"error": error, "meta": _meta(request_id)})


async def tinywords_error_handler(request: Request, exc: TinyWordsError) -> JSONResponse:
    if exc.kind in {ErrorKind.INTERNAL, ErrorKind.UPSTREAM}:
        logger.error("{} {} failed: {}", request.method, request.url.path, exc.message)
    else:
        logger.info("{} {} rejected ({}): {}", request.method, request.url.path, exc.kind.value, exc.message)
    return _error_response(request, exc.status_code, exc.to_payload())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"), "reason": err.get("type", "invalid")}
        for err in exc.errors()
    ]
    error = {"code": ErrorKind.VALIDATION.value, "message": "request validation failed", "details": details}
    return _error_response(request, HTTP_STATUS[ErrorKind.VALIDATION], error)


async def storage_error_handler(request: Request, exc: sqlite3.Error) -> JSONResponse:
    logger.exception("storage failure on {} {}", request.method, request.url.path)
    error = {"code": ErrorKind.INTERNAL.value, "message": "storage failure"}
    return _error_response(request, HTTP_STATUS[ErrorKind.INTERNAL], error)


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get(f"{API_PREFIX}/day-plans/today")
def today_plan(
    create_if_missing: bool = Query(default=True),
    ctx: RequestContext = Depends(get_context),
    services: Services = Depends(get_services),
) -> dict:
    result = services.day_plans.get_or_create_today(ctx, create_if_missing=create_if_missing)
    return _ok(ctx, result.data, word_source=result.word_source)


@router.patch(f"{API_PREFIX}/day-plans/{{plan_id}}/items/{{plan_item_id}}")
def patch_plan_item(
    plan_id: str,
    plan_item_id: str,
    payload: PlanItemPatchRequest,
    ctx: RequestContext = Depends(get_context),
    services: Services = Depends(get_services),
) -> dict:
    update = StepUpdate(
        recall_status=payload.recall_status,
        sentence_status=payload.sentence_status,
        speech_status=payload.speech_status,
    )
    item = services.day_plans.patch_item(ctx, plan_id, plan_item_id, update, user_sentence=payload.user_sentence)
    return _ok(ctx, item)


@router.post(f"{API_PREFIX}/day-plans/{{plan_id}}/complete")
def complete_plan(
    plan_id: str,
    ctx: RequestContext = Depends(get_context),
    services: Services = Depends(get_services),
) -> dict:
    return _ok(ctx, services.day_plans.complete(ctx, plan_id))


@router.get(f"{API_PREFIX}/reviews/queue")
def review_queue(
    ctx: RequestContext = Depends(get_context),
    services: Services = Depends(get_services),
) -> dict:
    return _ok(ctx, services.reviews.queue(ctx))


@router.post(f"{API_PREFIX}/reviews/{{review_id}}/submit")
def submit_review(
    review_id: str,
    payload: ReviewSubmitRequest,
    ctx: RequestContext = Depends(get_context),
    services: Services = Depends(get_services),
) -> dict:
    return _ok(ctx, services.reviews.submit(ctx, review_id, payload.result))


@router.get(f"{API_PREFIX}/users/me/profile")
def get_profile(
    ctx: RequestContext = Depends(get_context),
    services: Services = Depends(get_services),
) -> dict:
    return _ok(ctx, services.users.get_profile(ctx))


@router.patch(f"{API_PREFIX}/users/me/profile")
def patch_profile(
    payload: ProfilePatchRequest,
    ctx: RequestContext = Depends(get_context),
    services: Services = Depends(get_services),
) -> dict:
    return _ok(ctx, services.users.patch_profile(ctx, payload.model_dump(exclude_none=True)))


@router.post(f"{API_PREFIX}/users/me/reset")
def reset_user(
    ctx: RequestContext = Depends(get_context),
    services: Services = Depends(get_services),
) -> dict:
    return _ok(ctx, services.users.reset_data(ctx))


@router.get(f"{API_PREFIX}/history")
def history(
    ctx: RequestContext = Depends(get_context),
    services: Services = Depends(get_services),
) -> dict:
    return _ok(ctx, services.history.history(ctx))


@router.post(f"{API_PREFIX}/speech-attempts")
def create_speech_attempt(
    payload: SpeechAttemptRequest,
    ctx: RequestContext = Depends(get_context),
    services: Services = Depends(get_services),
) -> dict:
    attempt = services.speech.create_attempt(
        ctx,
        plan_item_id=payload.plan_item_id,
        audio_uri=payload.audio_uri,
        duration_ms=payload.duration_ms,
    )
    return _ok(ctx, attempt)


@router.patch(f"{API_PREFIX}/speech/{{speech_id}}/score")
def update_speech_score(
    speech_id: str,
    payload: SpeechScoreRequest,
    ctx: RequestContext = Depends(get_context),
    services: Services = Depends(get_services),
) -> dict:
    attempt = services.speech.update_score(
        ctx,
        speech_id,
        score=payload.pronunciation_score,
        scoring_version=payload.scoring_version,
    )
    return _ok(ctx, attempt)


def create_app(store: Database | None = None, supplier: WordSupplier | None = None) -> FastAPI:
    """Build the API around one store and word supplier, created here unless given."""
    store = store or Database()
    supplier = supplier or WordSupplier()

    @asynccontextmanager
    async def lifespan(app_: FastAPI):
        configure_logging()
        ensure_dirs()
        store.initialize()
        services = build_services(store, supplier)
        services.idempotency.purge_expired(datetime.now(UTC).isoformat())
        app_.state.services = services
        logger.info("tinywords api ready (db={})", store.db_path)
        yield

    app = FastAPI(title="TinyWords", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(TinyWordsError, tinywords_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(sqlite3.Error, storage_error_handler)
    app.include_router(router)
    return app


def run() -> None:
    uvicorn.run(
        "tinywords.app:create_app",
        factory=True,
        host=os.getenv("TINYWORDS_HOST", "127.0.0.1"),
        port=int(os.getenv("TINYWORDS_PORT", "8000")),
    )
