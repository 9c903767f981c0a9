from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from taskmanager.config import settings
from taskmanager.logging_setup import setup_logging
from taskmanager.migrate import upgrade_to_head
from taskmanager.routers.audit import router as audit_router
from taskmanager.routers.auth import router as auth_router
from taskmanager.routers.events import router as events_router
from taskmanager.routers.refs import router as refs_router
from taskmanager.routers.tasks import router as tasks_router

setup_logging(settings.log_level)
log = logging.getLogger(__name__)

app = FastAPI(title="Task Manager API", version="0.1.0")


def _validation_message(exc: RequestValidationError) -> str:
  errors = exc.errors()
  if not errors:
    return "Invalid request"
  first = errors[0]
  loc = [str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path")]
  msg = first.get("msg") or "invalid value"
  return f"{'.'.join(loc)}: {msg}" if loc else msg


@app.exception_handler(StarletteHTTPException)
async def _http_error_handler(_: Request, exc: StarletteHTTPException) -> JSONResponse:
  return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
  return JSONResponse(status_code=400, content={"error": _validation_message(exc)})


@app.exception_handler(IntegrityError)
async def _integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
  log.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
  return JSONResponse(status_code=409, content={"error": "Conflict"})


@app.exception_handler(Exception)
async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
  log.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
  return JSONResponse(status_code=500, content={"error": "Server error"})


app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origin_list(),
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(refs_router)
app.include_router(tasks_router)
app.include_router(audit_router)
app.include_router(events_router)


@app.get("/health")
async def health() -> dict:
  return {"ok": True}


@app.get("/version")
async def version() -> dict:
  return {"version": settings.app_version}


@app.on_event("startup")
async def _startup() -> None:
  if settings.is_test_db():
    return
  if not settings.jwt_secret or settings.jwt_secret.strip().lower() in {"change_me", "replace_with_strong_random_secret"}:
    raise RuntimeError("JWT_SECRET is required and must not be a placeholder")
  if settings.migrate_on_start:
    await asyncio.to_thread(upgrade_to_head)
  log.info("Task Manager API %s started", settings.app_version)
