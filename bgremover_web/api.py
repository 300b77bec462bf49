"""
FastAPI layer serving the browser UI and the background-removal API.

Endpoints:
 - GET /
 - GET /health
 - GET /api/config
 - PATCH /api/config
 - GET /api/model/status
 - POST /api/model/load
 - POST /api/model/reset
 - POST /remove-bg
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse, Response
from fastapi.staticfiles import StaticFiles

from . import config
from .model_loader import ModelManager, get_model_manager
from .pipeline import InferenceFailed, process_image
from .preprocessing import UploadRejected, validate_upload
from .schemas import ConfigResponse, ConfigUpdate, ModelStatus, ProcessedResult, RemovalConfig

settings = config.get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).resolve().parent / "static"

LOAD_FAILED_MESSAGE = "AI model failed to load, please reload the page and retry"
RELOAD_FAILED_MESSAGE = "AI model failed to load, check the configuration or reload the page"
NOT_READY_MESSAGE = "AI model is still loading, please try again shortly"


def _model_status(manager: ModelManager, removal_config: Optional[RemovalConfig] = None) -> ModelStatus:
    key = manager.loaded_key
    return ModelStatus(
        ready=manager.is_ready(removal_config),
        loading=manager.loading,
        model=key.model if key else None,
        device=key.device if key else None,
        debug=key.debug if key else None,
        last_error=manager.last_error,
    )


def _content_disposition(filename: str) -> str:
    fallback = filename.encode("ascii", "replace").decode("ascii").replace("?", "_").replace('"', "_")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


async def _initial_preload(manager: ModelManager, removal_config: RemovalConfig) -> None:
    try:
        await manager.load(removal_config)
    except Exception as exc:  # noqa: BLE001
        # Surfaced through /api/model/status; the page offers a retry.
        logger.error("Initial model preload failed: %s", exc)


def create_app(
    app_settings: Optional[config.Settings] = None,
    manager: Optional[ModelManager] = None,
) -> FastAPI:
    app_settings = app_settings or settings
    manager = manager or get_model_manager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = None
        if app_settings.preload_on_startup:
            task = asyncio.create_task(_initial_preload(manager, app.state.config))
        yield
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    app = FastAPI(title="Background Removal Studio", version="0.1.0", lifespan=lifespan)
    app.state.settings = app_settings
    app.state.manager = manager
    app.state.config = config.default_removal_config(app_settings)
    app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

    @app.get("/", include_in_schema=False)
    def index():
        return FileResponse(STATIC_DIR / "index.html")

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/api/config", response_model=ConfigResponse)
    def get_config(request: Request):
        return ConfigResponse(
            config=request.app.state.config,
            status=_model_status(manager, request.app.state.config),
            max_upload_bytes=app_settings.max_upload_bytes,
        )

    @app.patch("/api/config", response_model=ConfigResponse)
    async def update_config(body: ConfigUpdate, request: Request):
        current: RemovalConfig = request.app.state.config
        new_config = current.apply_update(body)
        request.app.state.config = new_config

        if new_config.model_key() != current.model_key():
            logger.info("Model configuration changed to %s, reloading", new_config.model_key())
            manager.reset()
            try:
                await manager.load(new_config)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Model reload failed: %s", exc)
                raise HTTPException(status_code=503, detail=RELOAD_FAILED_MESSAGE) from exc

        return ConfigResponse(
            config=new_config,
            status=_model_status(manager, new_config),
            max_upload_bytes=app_settings.max_upload_bytes,
        )

    @app.get("/api/model/status", response_model=ModelStatus)
    def model_status(request: Request):
        return _model_status(manager, request.app.state.config)

    @app.post("/api/model/load", response_model=ModelStatus)
    async def load_model(request: Request):
        try:
            await manager.load(request.app.state.config)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Model load failed: %s", exc)
            raise HTTPException(status_code=503, detail=LOAD_FAILED_MESSAGE) from exc
        return _model_status(manager, request.app.state.config)

    @app.post("/api/model/reset", response_model=ModelStatus)
    def reset_model(request: Request):
        manager.reset()
        return _model_status(manager, request.app.state.config)

    @app.post("/remove-bg")
    async def remove_bg(request: Request, file: UploadFile = File(...)):
        removal_config: RemovalConfig = request.app.state.config
        # Reads at most one byte past the limit.
        image_bytes = await file.read(app_settings.max_upload_bytes + 1)

        try:
            validate_upload(file.content_type, len(image_bytes), app_settings.max_upload_bytes)
        except UploadRejected as rejected:
            raise HTTPException(status_code=rejected.status_code, detail=rejected.message) from rejected

        if app_settings.require_preload and not manager.is_ready(removal_config):
            raise HTTPException(status_code=409, detail=NOT_READY_MESSAGE)

        try:
            blob = await process_image(image_bytes, removal_config, manager=manager)
        except InferenceFailed as failed:
            status_code = 400 if failed.kind == "invalid_image" else 500
            raise HTTPException(status_code=status_code, detail=failed.message) from failed
        except Exception as exc:  # noqa: BLE001
            logger.exception("Model load during removal failed: %s", exc)
            raise HTTPException(status_code=503, detail=LOAD_FAILED_MESSAGE) from exc

        result = ProcessedResult(
            original_filename=file.filename or "image",
            result=blob,
            output_type=removal_config.output.type,
            output_format=removal_config.output.format,
        )
        return Response(
            content=result.result.data,
            media_type=result.result.media_type,
            headers={
                "Content-Disposition": _content_disposition(result.download_name),
                "X-Output-Type": result.output_type.value,
            },
        )

    return app


app = create_app()
