"""
Model lifecycle for the rembg segmentation sessions.

The manager:
 - remembers which configuration the current session was loaded for,
 - loads a session lazily or on explicit preload, at most once per configuration,
 - picks ONNX Runtime execution providers for the requested device,
 - exposes `get_model_manager()` for the API and pipeline callers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional, Sequence

from fastapi.concurrency import run_in_threadpool
import onnxruntime as ort
from rembg import new_session

from . import config
from .schemas import Device, ModelKey, RemovalConfig

logger = logging.getLogger(__name__)

CPU_PROVIDER = "CPUExecutionProvider"
# Preference order when the GPU device is requested.
GPU_PROVIDERS = (
    "CUDAExecutionProvider",
    "ROCMExecutionProvider",
    "DmlExecutionProvider",
    "CoreMLExecutionProvider",
)

SessionFactory = Callable[..., object]
ProviderProbe = Callable[[], Sequence[str]]


def resolve_providers(device: Device, available: Sequence[str]) -> List[str]:
    """Return the execution providers for `device`, falling back to CPU."""
    if device == Device.GPU:
        for provider in GPU_PROVIDERS:
            if provider in available:
                return [provider, CPU_PROVIDER]
        logger.warning(
            "GPU requested but no GPU execution provider is available (%s); falling back to CPU",
            ", ".join(available) or "none",
        )
    return [CPU_PROVIDER]


class ModelManager:
    """Owns the loaded session and the configuration it was loaded for."""

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        provider_probe: Optional[ProviderProbe] = None,
        settings: Optional[config.Settings] = None,
    ):
        self._session_factory = session_factory or new_session
        self._provider_probe = provider_probe or ort.get_available_providers
        self._settings = settings
        self._session: Optional[object] = None
        self._loaded_key: Optional[ModelKey] = None
        self._lock = asyncio.Lock()
        self._loading = False
        self.last_error: Optional[str] = None

    @property
    def loaded_key(self) -> Optional[ModelKey]:
        return self._loaded_key

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def session(self) -> object:
        if self._session is None:
            raise RuntimeError("Model not loaded")
        return self._session

    def is_ready(self, removal_config: Optional[RemovalConfig] = None) -> bool:
        if self._loaded_key is None:
            return False
        if removal_config is None:
            return True
        return self._loaded_key == removal_config.model_key()

    def reset(self) -> None:
        if self._loaded_key is not None:
            logger.info("Releasing model session loaded for %s", self._loaded_key)
        self._loaded_key = None
        self._session = None

    async def load(self, removal_config: RemovalConfig) -> None:
        """
        Make sure a session for `removal_config` is loaded.

        A no-op when the matching session is already loaded. Failures are
        logged and re-raised unchanged; the manager stays not-ready.
        """
        if self.is_ready(removal_config):
            return

        async with self._lock:
            if self.is_ready(removal_config):
                return
            # A session for another configuration must never answer for this one.
            self.reset()

            key = removal_config.model_key()
            settings = self._settings or config.get_settings()
            model_name = config.session_model_name(key.model, settings=settings)
            available = list(self._provider_probe())
            logger.log(
                logging.INFO if key.debug else logging.DEBUG,
                "Available execution providers: %s",
                available,
            )
            providers = resolve_providers(key.device, available)
            logger.info("Loading model %s (%s) with providers %s", key.model.value, model_name, providers)

            self._loading = True
            try:
                session = await run_in_threadpool(self._session_factory, model_name, providers=providers)
            except Exception as exc:
                logger.exception("Failed to preload model %s: %s", model_name, exc)
                self.last_error = str(exc) or exc.__class__.__name__
                raise
            finally:
                self._loading = False

            self._session = session
            self._loaded_key = key
            self.last_error = None
            logger.info("Model %s ready on %s", model_name, providers[0])


_MANAGER: Optional[ModelManager] = None


def get_model_manager() -> ModelManager:
    """Return the process-wide model manager, creating it on first access."""
    global _MANAGER
    if _MANAGER is None:
        _MANAGER = ModelManager()
    return _MANAGER
