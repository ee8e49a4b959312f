"""FastAPI application exposing the file lifecycle over HTTP"""

import time
from typing import Any, Dict, Optional
from urllib.parse import quote

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse
from pydantic import BaseModel
from starlette.background import BackgroundTask

from tempcloud import __version__
from tempcloud.config import settings
from tempcloud.errors import InvalidRequestError, TempCloudError
from tempcloud.services.blob_store import LocalBlobStore, create_blob_store
from tempcloud.services.cleanup_service import CleanupService
from tempcloud.services.deletion_queue import DeletionQueue
from tempcloud.services.lifecycle_engine import LifecycleEngine
from tempcloud.services.metadata_store import InMemoryMetadataStore, RedisMetadataStore
from tempcloud.services.password_verifier import PasswordVerifier
from tempcloud.utils.logger import get_logger, log_storage_config

logger = get_logger(__name__)


class UploadInitRequest(BaseModel):
    filename: Optional[str] = None
    size: Optional[int] = None
    mime: Optional[str] = None
    expires_in: Optional[int] = None  # seconds, default from settings
    max_downloads: Optional[int] = None  # None/0 = unlimited
    password: Optional[str] = None


class UploadFinalizeRequest(BaseModel):
    file_uuid: Optional[str] = None


def build_engine(config) -> LifecycleEngine:
    """Wire the lifecycle engine and its stores from settings"""
    if config.disable_redis:
        logger.warning("Redis disabled, metadata is kept in memory and lost on restart")
        metadata_store = InMemoryMetadataStore()
    else:
        metadata_store = RedisMetadataStore(
            host=config.redis_host,
            port=config.redis_port,
            password=config.redis_password,
            db=config.redis_db,
            timeout=config.redis_timeout,
        )

    blob_store = create_blob_store(config)

    return LifecycleEngine(
        metadata_store=metadata_store,
        blob_store=blob_store,
        password_verifier=PasswordVerifier(iterations=config.password_hash_iterations),
        deletion_queue=DeletionQueue(blob_store),
        max_file_size=config.max_file_size,
        default_ttl=config.default_file_ttl,
        pending_ttl=config.pending_upload_ttl,
        strict_download_limit=config.strict_download_limit,
        cas_max_attempts=config.cas_max_attempts,
    )


app = FastAPI(
    title="tempcloud",
    description="Expiring, download-limited file sharing",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.cors_origin],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-File-Password"],
    max_age=86400,
)


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup"""
    log_storage_config(logger, settings)

    if getattr(app.state, "engine", None) is None:
        app.state.engine = build_engine(settings)
    engine: LifecycleEngine = app.state.engine

    await engine.deletion_queue.start()

    app.state.cleanup_service = None
    if settings.orphan_cleanup_enabled and isinstance(engine.blob_store, LocalBlobStore):
        cleanup_service = CleanupService(
            engine.blob_store,
            engine.metadata_store,
            interval_minutes=settings.orphan_cleanup_interval_minutes,
            grace_seconds=settings.orphan_grace_seconds,
        )
        try:
            await cleanup_service.start()
            app.state.cleanup_service = cleanup_service
        except Exception as e:
            logger.error(f"Failed to start cleanup service: {e}")

    logger.info(f"tempcloud v{__version__} started")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop background workers and close store clients"""
    cleanup_service = getattr(app.state, "cleanup_service", None)
    if cleanup_service:
        await cleanup_service.stop()

    engine: Optional[LifecycleEngine] = getattr(app.state, "engine", None)
    if engine:
        await engine.deletion_queue.stop()
        await engine.metadata_store.close()
        await engine.blob_store.close()

    logger.info("tempcloud stopped")


def get_engine(request: Request) -> LifecycleEngine:
    return request.app.state.engine


def error_response(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, "code": code})


@app.exception_handler(TempCloudError)
async def tempcloud_error_handler(request: Request, exc: TempCloudError):
    return error_response(exc.status_code, exc.message, exc.code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return error_response(400, "Malformed request body", InvalidRequestError.code)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error: {exc}", exc_info=True)
    return error_response(500, "Internal server error", "INTERNAL_ERROR")


@app.get("/")
async def root():
    """Root endpoint"""
    return {"status": "ok", "service": "tempcloud"}


@app.get("/health")
async def health_check(engine: LifecycleEngine = Depends(get_engine)):
    """Health check endpoint"""
    checks: Dict[str, Any] = {"status": "ok", "timestamp": time.time()}

    try:
        checks["metadata_store"] = await engine.metadata_store.ping()
    except Exception as e:
        logger.error(f"Metadata store health check failed: {e}")
        checks["metadata_store"] = False

    try:
        checks["blob_store"] = await engine.blob_store.ping()
    except Exception as e:
        logger.error(f"Blob store health check failed: {e}")
        checks["blob_store"] = False

    checks["deletion_queue"] = engine.deletion_queue.running
    checks["pending_deletions"] = engine.deletion_queue.pending()

    if not checks["metadata_store"] or not checks["blob_store"]:
        checks["status"] = "error"
        logger.warning("Health check failed", checks=checks)
        return JSONResponse(status_code=503, content=checks)

    logger.debug("Health check passed")
    return checks


@app.post("/api/v1/upload/init")
async def upload_init(body: UploadInitRequest, engine: LifecycleEngine = Depends(get_engine)):
    """Start an upload session and hand out the upload link"""
    if not body.filename or not body.size:
        raise InvalidRequestError()

    session = await engine.begin_upload(
        filename=body.filename,
        declared_size=body.size,
        content_type=body.mime,
        ttl_seconds=body.expires_in,
        max_downloads=body.max_downloads,
        password=body.password,
    )

    link_expires = engine.now() + settings.presigned_url_ttl
    upload_url = f"{settings.base_url}/api/v1/upload/put/{session.id}?expires={link_expires}"

    return {
        "upload_url": upload_url,
        "file_uuid": session.id,
        "expires_at": session.expires_at,
    }


@app.put("/api/v1/upload/put/{uuid}")
async def upload_put(
    uuid: str,
    request: Request,
    expires: Optional[int] = None,
    engine: LifecycleEngine = Depends(get_engine),
):
    """Stream the request body into blob storage"""
    if expires is not None and engine.now() > expires:
        return error_response(410, "Upload URL expired", "UPLOAD_EXPIRED")

    if request.headers.get("content-length") == "0":
        return error_response(400, "No file body provided", "EMPTY_BODY")

    size = await engine.receive_upload(uuid, request.stream())
    return {"status": "uploaded", "file_uuid": uuid, "size": size}


@app.post("/api/v1/upload/finalize")
async def upload_finalize(body: UploadFinalizeRequest, engine: LifecycleEngine = Depends(get_engine)):
    """Confirm the upload landed and activate the file"""
    if not body.file_uuid:
        raise InvalidRequestError("Missing required field: file_uuid")

    expires_at = await engine.complete_upload(body.file_uuid)

    return {
        "download_link": f"{settings.base_url}/d/{body.file_uuid}",
        "status": "active",
        "expires_at": expires_at,
    }


@app.get("/api/v1/file/{uuid}/info")
async def file_info(uuid: str, engine: LifecycleEngine = Depends(get_engine)):
    summary = await engine.get_summary(uuid)
    return {
        "filename": summary.filename,
        "size": summary.size,
        "mime": summary.content_type,
        "uploaded_at": summary.created_at,
        "expires_at": summary.expires_at,
        "downloads_left": summary.downloads_remaining,
        "has_password": summary.has_password,
    }


@app.get("/api/v1/file/{uuid}/download")
async def file_download(
    uuid: str,
    password: Optional[str] = None,
    x_file_password: Optional[str] = Header(default=None),
    engine: LifecycleEngine = Depends(get_engine),
):
    """Stream the file back, counting one download"""
    download = await engine.consume(uuid, password or x_file_password or None)

    headers = {
        "Content-Disposition": f'attachment; filename="{quote(download.filename)}"',
        "Content-Length": str(download.size),
        "Cache-Control": "no-store",
    }

    return StreamingResponse(
        download.iter_body(),
        media_type=download.content_type,
        headers=headers,
        background=BackgroundTask(download.close),
    )


@app.get("/d/{uuid}")
async def short_link(uuid: str, request: Request):
    """Redirect a share link to the download endpoint"""
    redirect_url = f"{settings.base_url}/api/v1/file/{uuid}/download"
    if request.url.query:
        redirect_url = f"{redirect_url}?{request.url.query}"
    return RedirectResponse(redirect_url, status_code=302)


@app.delete("/api/v1/file/{uuid}")
async def file_delete(uuid: str, engine: LifecycleEngine = Depends(get_engine)):
    if not await engine.revoke(uuid):
        return error_response(404, "File not found", "NOT_FOUND")
    return {"status": "deleted"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("tempcloud.main:app", host=settings.host, port=settings.port)
