"""Shared fixtures: in-memory images, an instrumented encoder and a scripted backend."""

from __future__ import annotations

import asyncio
import io

import numpy as np
import pytest
from PIL import Image

from pneumoscan.ml.preprocessing import TensorEncoder
from pneumoscan.ml.types import ImageSource, Tensor


def encode_image(image: Image.Image, fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def make_source(
    size: tuple[int, int] = (64, 48),
    mode: str = "RGB",
    color: int | tuple[int, ...] = (120, 60, 200),
    fmt: str = "PNG",
    media_type: str = "image/png",
) -> ImageSource:
    data = encode_image(Image.new(mode, size, color), fmt)
    return ImageSource(data=data, media_type=media_type, filename=f"xray.{fmt.lower()}")


class RecordingEncoder(TensorEncoder):
    """TensorEncoder that keeps every tensor it hands out."""

    def __init__(self) -> None:
        super().__init__()
        self.tensors: list[Tensor] = []

    def encode(self, source: ImageSource) -> Tensor:
        tensor = super().encode(source)
        self.tensors.append(tensor)
        return tensor


@pytest.fixture()
def png_source() -> ImageSource:
    return make_source()


@pytest.fixture()
def gradient_source() -> ImageSource:
    ramp = np.tile(np.arange(256, dtype=np.uint8), (128, 1))
    data = encode_image(Image.fromarray(ramp))
    return ImageSource(data=data, media_type="image/png", filename="gradient.png")


@pytest.fixture()
def recording_encoder() -> RecordingEncoder:
    return RecordingEncoder()


class FakeBackend:
    """Scripted backend; optionally blocks in ``predict`` until ``gate`` is set."""

    def __init__(
        self,
        score: float = 0.9,
        error: BaseException | None = None,
        ready: bool = True,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.score = score
        self.error = error
        self.ready = ready
        self.gate = gate
        self.calls = 0
        self.live_tensor_seen: list[bool] = []

    @property
    def is_ready(self) -> bool:
        return self.ready

    async def load(self) -> None:
        return None

    async def check_health(self) -> bool:
        return self.ready

    async def predict(self, tensor: Tensor, source: ImageSource) -> float:
        self.calls += 1
        self.live_tensor_seen.append(not tensor.released)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.score

    async def close(self) -> None:
        return None
