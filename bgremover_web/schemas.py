"""
Request/response models and value objects shared by the service.

`RemovalConfig` is the configuration the settings panel edits; `ModelKey`
is the part of it that decides which model session has to be loaded.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import re
from typing import Optional

from pydantic import BaseModel, Field


class Device(str, Enum):
    CPU = "cpu"
    GPU = "gpu"


class ModelVariant(str, Enum):
    ISNET = "isnet"
    ISNET_FP16 = "isnet_fp16"
    ISNET_QUINT8 = "isnet_quint8"


class OutputFormat(str, Enum):
    PNG = "image/png"
    JPEG = "image/jpeg"
    WEBP = "image/webp"

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self]


class OutputType(str, Enum):
    FOREGROUND = "foreground"
    BACKGROUND = "background"
    MASK = "mask"

    @property
    def download_prefix(self) -> str:
        return _DOWNLOAD_PREFIXES[self]


_EXTENSIONS = {
    OutputFormat.PNG: "png",
    OutputFormat.JPEG: "jpg",
    OutputFormat.WEBP: "webp",
}

_DOWNLOAD_PREFIXES = {
    OutputType.FOREGROUND: "no-bg",
    OutputType.BACKGROUND: "bg-only",
    OutputType.MASK: "mask",
}


@dataclass(frozen=True)
class ModelKey:
    """Identity of a loaded model session."""

    model: ModelVariant
    device: Device
    debug: bool


class OutputConfig(BaseModel):
    format: OutputFormat = OutputFormat.PNG
    quality: float = Field(0.8, ge=0.0, le=1.0)  # lossy encoders only
    type: OutputType = OutputType.FOREGROUND


class RemovalConfig(BaseModel):
    debug: bool = False
    device: Device = Device.CPU
    model: ModelVariant = ModelVariant.ISNET_FP16
    output: OutputConfig = Field(default_factory=OutputConfig)

    def model_key(self) -> ModelKey:
        return ModelKey(model=self.model, device=self.device, debug=self.debug)

    def apply_update(self, update: "ConfigUpdate") -> "RemovalConfig":
        """
        Return a new configuration with `update` merged in.

        Top-level fields are replaced, `output` is merged field by field so a
        panel control only has to send the value it owns.
        """
        data = self.model_dump()
        changes = update.model_dump(exclude_unset=True, exclude_none=True)
        output_changes = changes.pop("output", None) or {}
        data.update(changes)
        data["output"].update(output_changes)
        return RemovalConfig.model_validate(data)


class OutputConfigUpdate(BaseModel):
    format: Optional[OutputFormat] = None
    quality: Optional[float] = Field(None, ge=0.0, le=1.0)
    type: Optional[OutputType] = None


class ConfigUpdate(BaseModel):
    debug: Optional[bool] = None
    device: Optional[Device] = None
    model: Optional[ModelVariant] = None
    output: Optional[OutputConfigUpdate] = None


class ModelStatus(BaseModel):
    ready: bool
    loading: bool
    model: Optional[ModelVariant] = None
    device: Optional[Device] = None
    debug: Optional[bool] = None
    last_error: Optional[str] = None


class ConfigResponse(BaseModel):
    config: RemovalConfig
    status: ModelStatus
    max_upload_bytes: int


@dataclass
class ResultBlob:
    data: bytes
    media_type: str


_EXTENSION_RE = re.compile(r"\.[^/.]+$")


def download_filename(original_filename: str, output_type: OutputType, output_format: OutputFormat) -> str:
    """Name a download after the original file, e.g. `no-bg-cat.png`."""
    stem = _EXTENSION_RE.sub("", original_filename or "") or "image"
    return f"{output_type.download_prefix}-{stem}.{output_format.extension}"


@dataclass
class ProcessedResult:
    """A finished removal as handed back to the page."""

    original_filename: str
    result: ResultBlob
    output_type: OutputType
    output_format: OutputFormat

    @property
    def download_name(self) -> str:
        return download_filename(self.original_filename, self.output_type, self.output_format)
