"""
Pytest configuration and shared fixtures.

rembg is never exercised for real: the model manager gets a fake session
factory and `bgremover_web.pipeline.remove` is replaced by a fake that
returns a fixed mask.
"""

from io import BytesIO
from typing import List, Optional

import pytest
from PIL import Image, ImageDraw

from bgremover_web import pipeline
from bgremover_web.config import Settings
from bgremover_web.model_loader import ModelManager


class FakeSession:
    def __init__(self, model_name: str, providers: List[str]):
        self.model_name = model_name
        self.providers = providers


class FakeSessionFactory:
    """Stands in for `rembg.new_session`, recording every preload."""

    def __init__(self, events: List[str]):
        self.calls: List[tuple] = []
        self.error: Optional[BaseException] = None
        self._events = events

    def __call__(self, model_name: str, providers=None):
        self._events.append("load")
        self.calls.append((model_name, list(providers or [])))
        if self.error is not None:
            raise self.error
        return FakeSession(model_name, list(providers or []))


class FakeRemove:
    """Stands in for `rembg.remove(..., only_mask=True)`: left half is subject."""

    def __init__(self, events: List[str]):
        self.calls: List[dict] = []
        self.error: Optional[BaseException] = None
        self._events = events

    def __call__(self, image, session=None, only_mask=False, **kwargs):
        self._events.append("remove")
        self.calls.append({"size": image.size, "session": session, "only_mask": only_mask})
        if self.error is not None:
            raise self.error
        mask = Image.new("L", image.size, 0)
        ImageDraw.Draw(mask).rectangle([(0, 0), (image.width // 2 - 1, image.height - 1)], fill=255)
        return mask


@pytest.fixture
def events() -> List[str]:
    return []


@pytest.fixture
def test_settings() -> Settings:
    return Settings(_env_file=None, preload_on_startup=False)


@pytest.fixture
def session_factory(events: List[str]) -> FakeSessionFactory:
    return FakeSessionFactory(events)


@pytest.fixture
def available_providers() -> List[str]:
    return ["CPUExecutionProvider"]


@pytest.fixture
def manager(
    session_factory: FakeSessionFactory,
    available_providers: List[str],
    test_settings: Settings,
) -> ModelManager:
    return ModelManager(
        session_factory=session_factory,
        provider_probe=lambda: available_providers,
        settings=test_settings,
    )


@pytest.fixture
def fake_remove(monkeypatch: pytest.MonkeyPatch, events: List[str]) -> FakeRemove:
    fake = FakeRemove(events)
    monkeypatch.setattr(pipeline, "remove", fake)
    return fake


@pytest.fixture
def rgb_image() -> Image.Image:
    """A 40x30 red frame with a blue square in the middle."""
    img = Image.new("RGB", (40, 30), color=(200, 30, 30))
    ImageDraw.Draw(img).rectangle([(10, 8), (29, 21)], fill=(20, 40, 220))
    return img


@pytest.fixture
def png_bytes(rgb_image: Image.Image) -> bytes:
    buf = BytesIO()
    rgb_image.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's environment out of Settings()."""
    for name in Settings.model_fields:
        monkeypatch.delenv(name.upper(), raising=False)
