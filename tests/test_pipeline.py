"""
process_image tests: lazy loading, output composition and error translation.
"""

import asyncio
from io import BytesIO
import logging

import pytest
from PIL import Image

from bgremover_web.pipeline import INFERENCE_FAILED_MESSAGE, InferenceFailed, process_image
from bgremover_web.preprocessing import INVALID_FILE_MESSAGE
from bgremover_web.schemas import Device, ModelVariant, OutputConfig, OutputFormat, OutputType, RemovalConfig


def _config(**output) -> RemovalConfig:
    return RemovalConfig(
        device=Device.CPU,
        model=ModelVariant.ISNET_FP16,
        output=OutputConfig(**output),
    )


class TestProcessImage:
    @pytest.mark.unit
    def test_png_foreground_scenario(self, manager, fake_remove, png_bytes) -> None:
        cfg = _config(format=OutputFormat.PNG, quality=0.8, type=OutputType.FOREGROUND)
        asyncio.run(manager.load(cfg))

        blob = asyncio.run(process_image(png_bytes, cfg, manager=manager))

        assert blob.media_type == "image/png"
        result = Image.open(BytesIO(blob.data))
        assert result.format == "PNG"
        assert result.mode == "RGBA"
        assert result.size == (40, 30)
        assert result.getpixel((5, 5)) == (200, 30, 30, 255)
        assert result.getpixel((35, 5))[3] == 0

    @pytest.mark.unit
    def test_loads_once_before_inference(self, manager, session_factory, fake_remove, events, png_bytes) -> None:
        asyncio.run(process_image(png_bytes, _config(), manager=manager))

        assert events == ["load", "remove"]
        assert len(session_factory.calls) == 1
        assert manager.is_ready() is True

    @pytest.mark.unit
    def test_skips_load_when_ready(self, manager, session_factory, fake_remove, events, png_bytes) -> None:
        cfg = _config()
        asyncio.run(manager.load(cfg))
        asyncio.run(process_image(png_bytes, cfg, manager=manager))
        asyncio.run(process_image(png_bytes, cfg, manager=manager))

        assert events == ["load", "remove", "remove"]

    @pytest.mark.unit
    def test_passes_loaded_session_and_mask_only(self, manager, fake_remove, png_bytes) -> None:
        asyncio.run(process_image(png_bytes, _config(), manager=manager))

        call = fake_remove.calls[0]
        assert call["session"] is manager.session
        assert call["only_mask"] is True

    @pytest.mark.unit
    def test_background_output(self, manager, fake_remove, png_bytes) -> None:
        blob = asyncio.run(process_image(png_bytes, _config(type=OutputType.BACKGROUND), manager=manager))

        result = Image.open(BytesIO(blob.data))
        assert result.getpixel((5, 5))[3] == 0
        assert result.getpixel((35, 5)) == (200, 30, 30, 255)

    @pytest.mark.unit
    def test_mask_output(self, manager, fake_remove, png_bytes) -> None:
        blob = asyncio.run(process_image(png_bytes, _config(type=OutputType.MASK), manager=manager))

        result = Image.open(BytesIO(blob.data))
        assert result.mode == "L"
        assert result.getpixel((5, 5)) == 255
        assert result.getpixel((35, 5)) == 0

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "output_format,pil_format",
        [(OutputFormat.JPEG, "JPEG"), (OutputFormat.WEBP, "WEBP")],
    )
    def test_lossy_formats(self, manager, fake_remove, png_bytes, output_format, pil_format) -> None:
        blob = asyncio.run(process_image(png_bytes, _config(format=output_format, quality=0.5), manager=manager))

        assert blob.media_type == output_format.value
        assert Image.open(BytesIO(blob.data)).format == pil_format

    @pytest.mark.unit
    @pytest.mark.parametrize("debug,logged", [(True, True), (False, False)])
    def test_debug_raises_diagnostics_to_info(
        self, manager, fake_remove, png_bytes, caplog: pytest.LogCaptureFixture, debug, logged
    ) -> None:
        cfg = RemovalConfig(debug=debug)

        with caplog.at_level(logging.INFO):
            asyncio.run(process_image(png_bytes, cfg, manager=manager))

        assert ("rembg mask for 40x30 image" in caplog.text) is logged
        assert ("Available execution providers" in caplog.text) is logged


class TestErrors:
    @pytest.mark.unit
    def test_inference_failure_is_generic(
        self, manager, fake_remove, png_bytes, caplog: pytest.LogCaptureFixture
    ) -> None:
        original = RuntimeError("onnxruntime out of memory")
        fake_remove.error = original

        with caplog.at_level(logging.ERROR):
            with pytest.raises(InferenceFailed) as excinfo:
                asyncio.run(process_image(png_bytes, _config(), manager=manager))

        assert str(excinfo.value) == INFERENCE_FAILED_MESSAGE
        assert excinfo.value.kind == "inference_failed"
        assert "out of memory" not in excinfo.value.message
        assert excinfo.value.__cause__ is original
        assert "onnxruntime out of memory" in caplog.text

    @pytest.mark.unit
    def test_undecodable_upload(self, manager, fake_remove) -> None:
        with pytest.raises(InferenceFailed) as excinfo:
            asyncio.run(process_image(b"definitely not an image", _config(), manager=manager))

        assert excinfo.value.kind == "invalid_image"
        assert excinfo.value.message == INVALID_FILE_MESSAGE
        assert isinstance(excinfo.value.__cause__, ValueError)
        assert fake_remove.calls == []

    @pytest.mark.unit
    def test_load_failure_propagates_unchanged(self, manager, session_factory, fake_remove, png_bytes) -> None:
        error = ConnectionError("could not fetch weights")
        session_factory.error = error

        with pytest.raises(ConnectionError) as excinfo:
            asyncio.run(process_image(png_bytes, _config(), manager=manager))

        assert excinfo.value is error
        assert manager.is_ready() is False
        assert fake_remove.calls == []
