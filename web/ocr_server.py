"""
HTTP surface for screenshot transcription.

Endpoints:
- POST /api/ocr, /api/ocr/azure-clean: one multipart image
- POST /api/ocr/azure: several multipart images, processed with bounded concurrency
- POST /api/ocr/azure-base64: one base64 image in a JSON body
- GET  /api/health
"""
import argparse
import asyncio
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from models.config import AppConfig
from models.data_models import MAPPING_RIGHT, BatchItemResult, SpeakerMapping
from models.errors import ConfigurationError, ErrorKind, OCRPipelineError
from services.config_manager import ConfigManager
from services.image_preprocessor import decode_base64_image
from services.logging_manager import LoggingManager
from services.ocr_pipeline import ImageInput, OCRPipeline, new_request_id


logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.INVALID_IMAGE: 400,
    ErrorKind.UNSUPPORTED_FORMAT: 415,
    ErrorKind.PROVIDER_AUTH_ERROR: 502,
    ErrorKind.PROVIDER_PROCESSING_FAILED: 422,
    ErrorKind.PROVIDER_REQUEST_ERROR: 502,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.CANCELLED: 499,
    ErrorKind.CONFIGURATION_ERROR: 500,
}

DEFAULT_ME_NAME = "You"
DEFAULT_THEM_NAME = "Other Person"
DISCONNECT_POLL_SECONDS = 0.5


class Base64OCRRequest(BaseModel):
    """JSON body of the base64 endpoint."""
    image: str
    messageSide: Optional[str] = MAPPING_RIGHT
    myName: str
    theirName: str


class RequestRejected(Exception):
    """Malformed request detected before the pipeline runs."""

    def __init__(self, status_code: int, error: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.message = message


def error_body(error: str, message: str) -> Dict[str, Any]:
    return {"success": False, "error": error, "message": message}


def error_item(exc: Exception) -> Dict[str, Any]:
    if isinstance(exc, OCRPipelineError):
        return error_body(exc.kind.value, exc.message)
    if isinstance(exc, RequestRejected):
        return error_body(exc.error, exc.message)
    return error_body("InternalError", "Unexpected error while processing image")


def _mapping(message_side: Optional[str], me_name: Optional[str], them_name: Optional[str]) -> SpeakerMapping:
    try:
        return SpeakerMapping.from_form(message_side, me_name, them_name)
    except ValueError as e:
        raise RequestRejected(400, "BadRequest", str(e))


async def _read_upload(upload: Optional[UploadFile], limit: int) -> bytes:
    if upload is None:
        raise RequestRejected(400, "BadRequest", "No image file provided")
    data = await upload.read(limit + 1)
    if len(data) > limit:
        raise RequestRejected(413, "PayloadTooLarge", f"Image exceeds the {limit} byte upload limit")
    return data


async def _watch_disconnect(request: Request, cancel: threading.Event) -> None:
    while not cancel.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected; cancelling OCR request")
            cancel.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


async def run_cancellable(request: Request, func: Callable, *args, **kwargs):
    """
    Run blocking pipeline work in the threadpool while watching for disconnect.

    ``func`` must accept a ``cancel_event`` keyword; it is set when the client
    goes away so the OCR poll loop stops early.
    """
    cancel = threading.Event()
    watcher = asyncio.ensure_future(_watch_disconnect(request, cancel))
    try:
        return await run_in_threadpool(func, *args, cancel_event=cancel, **kwargs)
    finally:
        watcher.cancel()


def create_app(config: Optional[AppConfig] = None, pipeline: Optional[OCRPipeline] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Raises:
        ConfigurationError: If no pipeline is injected and the OCR provider
            credentials are missing
    """
    cfg = config or ConfigManager().load_config()
    if pipeline is None:
        ConfigManager().require_credentials(cfg)
        pipeline = OCRPipeline.from_config(cfg)

    app = FastAPI(
        title="Chat Screenshot OCR API",
        description="Extracts speaker-attributed transcripts from chat screenshots",
        version="1.0.0",
    )
    app.state.config = cfg
    app.state.pipeline = pipeline
    max_upload = cfg.server.max_upload_bytes

    @app.exception_handler(OCRPipelineError)
    async def pipeline_error_handler(request: Request, exc: OCRPipelineError):
        status = STATUS_BY_KIND.get(exc.kind, 500)
        if exc.kind is ErrorKind.PROVIDER_AUTH_ERROR:
            logger.error(f"OCR provider rejected our credentials: {exc}")
        elif status >= 500:
            logger.warning(f"OCR request failed: {exc}")
        else:
            logger.info(f"OCR request rejected: {exc}")
        return JSONResponse(status_code=status, content=error_body(exc.kind.value, exc.message))

    @app.exception_handler(RequestRejected)
    async def rejected_handler(request: Request, exc: RequestRejected):
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.error, exc.message))

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError):
        missing = [".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()]
        return JSONResponse(status_code=400, content=error_body("BadRequest", f"Invalid or missing fields: {', '.join(missing)}"))

    async def _single(request: Request, image: Optional[UploadFile], message_side, my_name, their_name):
        mapping = _mapping(message_side, my_name, their_name)
        data = await _read_upload(image, max_upload)
        result = await run_cancellable(
            request,
            pipeline.process,
            data,
            mapping,
            image.content_type,
            request_id=new_request_id(),
        )
        return {"success": True, "results": [result.to_dict()]}

    @app.post("/api/ocr")
    async def ocr(
        request: Request,
        image: Optional[UploadFile] = File(None),
        message_side: Optional[str] = Form(MAPPING_RIGHT, alias="messageSide"),
        my_name: Optional[str] = Form(None, alias="myName"),
        their_name: Optional[str] = Form(None, alias="theirName"),
    ):
        return await _single(request, image, message_side, my_name, their_name)

    @app.post("/api/ocr/azure-clean")
    async def ocr_azure_clean(
        request: Request,
        image: Optional[UploadFile] = File(None),
        message_side: Optional[str] = Form(MAPPING_RIGHT, alias="messageSide"),
        my_name: Optional[str] = Form(None, alias="myName"),
        their_name: Optional[str] = Form(None, alias="theirName"),
    ):
        return await _single(request, image, message_side, my_name, their_name)

    @app.post("/api/ocr/azure")
    async def ocr_batch(
        request: Request,
        images: Optional[List[UploadFile]] = File(None),
        message_side: Optional[str] = Form(MAPPING_RIGHT, alias="messageSide"),
        me_name: Optional[str] = Form(DEFAULT_ME_NAME, alias="meName"),
        them_name: Optional[str] = Form(DEFAULT_THEM_NAME, alias="themName"),
    ):
        if not images:
            raise RequestRejected(400, "BadRequest", "No image files provided")
        if len(images) > cfg.server.max_files:
            raise RequestRejected(400, "BadRequest", f"At most {cfg.server.max_files} images per request")
        mapping = _mapping(message_side, me_name or DEFAULT_ME_NAME, them_name or DEFAULT_THEM_NAME)

        # An oversized file fails in its own slot; the rest of the batch still runs
        slots: List[Optional[BatchItemResult]] = []
        items = []
        for upload in images:
            try:
                data = await _read_upload(upload, max_upload)
            except RequestRejected as e:
                logger.info(f"Rejected batch image {upload.filename}: {e.message}")
                slots.append(BatchItemResult(index=len(slots), filename=upload.filename, error=e))
                continue
            items.append(ImageInput(data=data, content_type=upload.content_type, filename=upload.filename))
            slots.append(None)

        processed = iter([])
        if items:
            processed = iter(await run_cancellable(request, pipeline.process_batch, items, mapping))
        slots = [slot if slot is not None else next(processed) for slot in slots]

        results = []
        for slot in slots:
            entry: Dict[str, Any] = {"filename": slot.filename}
            if slot.ok:
                entry.update(success=True, **slot.result.to_dict())
            else:
                entry.update(error_item(slot.error))
            results.append(entry)

        return {
            "success": True,
            "results": results,
            "totalImages": len(slots),
            "successfulExtractions": sum(1 for s in slots if s.ok),
        }

    @app.post("/api/ocr/azure-base64")
    async def ocr_base64(request: Request, body: Base64OCRRequest):
        mapping = _mapping(body.messageSide, body.myName, body.theirName)
        data = decode_base64_image(body.image)
        if len(data) > max_upload:
            raise RequestRejected(413, "PayloadTooLarge", f"Image exceeds the {max_upload} byte upload limit")
        result = await run_cancellable(request, pipeline.process, data, mapping, request_id=new_request_id())
        return {"success": True, "results": [result.to_dict()]}

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "maxConcurrency": cfg.pipeline.max_concurrency}

    return app


def main() -> int:
    parser = argparse.ArgumentParser(description="Chat screenshot OCR server")
    parser.add_argument("--config", default=None, help="Path to YAML/JSON config")
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    args = parser.parse_args()

    cfg = ConfigManager(args.config).load_config()
    LoggingManager().setup(cfg)

    host = args.host or cfg.server.host
    port = int(args.port or cfg.server.port)
    try:
        app = create_app(cfg)
    except ConfigurationError as e:
        logger.error(str(e))
        return 2

    logger.info(f"Serving OCR API on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_config=None)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
