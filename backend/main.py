import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

import psycopg
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from db import create_pool
from errors import DbError, InternalError
from models import EventBatchIn
from repo_events import EventRepo
from schema import App, load_schema
from service_events import EventService
from settings import settings

logger = logging.getLogger(__name__)


def bootstrap(schema_path: Optional[str] = None, db_url: Optional[str] = None):
    """Load the schema, open the pool and create tables.

    Returns `(service, pool)`. Any `ConfigError` or `DbError` is fatal:
    the caller must not start serving.
    """

    schema = load_schema(schema_path or settings.schema_path)
    try:
        pool = create_pool(db_url)
    except psycopg.Error as e:
        raise DbError(f"failed to create connection pool: {e}") from e
    try:
        repo = EventRepo(pool)
        repo.create_tables(schema)
    except DbError:
        pool.close()
        raise
    return EventService(schema, repo), pool


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Services injected by cli.py or tests are used as is.
    if getattr(app.state, "service", None) is not None:
        yield
        return
    service, pool = bootstrap()
    app.state.service = service
    try:
        yield
    finally:
        pool.close()


def cors_headers(app: App, origin: Optional[str]) -> Dict[str, str]:
    """CORS response headers for a request from `origin`.

    Requests without an Origin header are not cross-origin and get no
    headers. A configured origin of `*` allows any origin.

    Raises HTTPException(403) if the origin is not allowed.
    """

    if origin is None:
        return {}
    if app.allowed_origin != "*" and origin != app.allowed_origin:
        raise HTTPException(status_code=403, detail=f"Origin {origin} is not allowed")
    return {"Access-Control-Allow-Origin": origin, "Vary": "Origin"}


def is_json(content_type: Optional[str]) -> bool:
    if content_type is None:
        return False
    return content_type.split(";", 1)[0].strip().lower() == "application/json"


async def read_body(request: Request, limit: int) -> Optional[bytes]:
    """Read the request body, or return None once it exceeds `limit` bytes.

    A declared Content-Length over the limit is rejected without reading;
    otherwise the stream is consumed only until the running size passes
    the limit.
    """

    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit:
        return None

    chunks = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            return None
        chunks.append(chunk)
    return b"".join(chunks)


def create_app(service: Optional[EventService] = None) -> FastAPI:
    app = FastAPI(title="EventSink", lifespan=lifespan)
    app.state.service = service

    def get_app_or_404(request: Request, app_id: str) -> App:
        found = request.app.state.service.schema.apps.get(app_id)
        if found is None:
            raise HTTPException(status_code=404, detail=f"Unknown app: {app_id}")
        return found

    @app.get("/health")
    def health(request: Request):
        try:
            request.app.state.service.health_check()
            return {"ok": True}
        except DbError as e:
            raise HTTPException(status_code=500, detail=f"DB health check failed: {e}")

    @app.options("/apps/{app_id}/events")
    def events_options(app_id: str, request: Request):
        target = get_app_or_404(request, app_id)
        headers = cors_headers(target, request.headers.get("origin"))
        requested = request.headers.get("access-control-request-method")
        if requested is not None and requested.upper() != "POST":
            raise HTTPException(status_code=403, detail=f"Method {requested} is not allowed")
        if headers:
            headers["Access-Control-Allow-Methods"] = "POST"
            requested_headers = request.headers.get("access-control-request-headers")
            if requested_headers:
                headers["Access-Control-Allow-Headers"] = requested_headers
        return Response(status_code=200, headers=headers)

    @app.post("/apps/{app_id}/events")
    async def events_post(app_id: str, request: Request):
        svc: EventService = request.app.state.service
        target = get_app_or_404(request, app_id)
        headers = cors_headers(target, request.headers.get("origin"))

        if not is_json(request.headers.get("content-type")):
            raise HTTPException(status_code=415, detail="Expected application/json", headers=headers)
        body = await read_body(request, settings.max_body_bytes)
        if body is None:
            raise HTTPException(status_code=413, detail="Request body too large", headers=headers)
        try:
            batch = EventBatchIn.model_validate_json(body)
        except ValidationError as e:
            raise RequestValidationError(e.errors())

        try:
            await run_in_threadpool(svc.ingest, app_id, batch.secret_key, request.headers, batch.events)
        except PermissionError as e:
            logger.info("Rejected batch for app %s: %s", app_id, e)
            raise HTTPException(status_code=403, detail=str(e), headers=headers)
        except LookupError as e:
            logger.info("Rejected batch for app %s: %s", app_id, e)
            raise HTTPException(status_code=404, detail=str(e), headers=headers)
        except ValueError as e:
            logger.info("Rejected batch for app %s: %s", app_id, e)
            raise HTTPException(status_code=400, detail=str(e), headers=headers)
        except (DbError, InternalError) as e:
            logger.exception("Error inserting events for app %s", app_id)
            raise HTTPException(status_code=500, detail=f"Insert failed: {e}", headers=headers)

        return Response(status_code=200, headers=headers)

    return app


app = create_app()
