"""Image preprocessing: decode, reduce to luminance, resize and normalize.

The classifier consumes a single-channel ``[1, H, W, 1]`` float32 tensor with
values in ``[0, 1]``. Resampling is always bilinear; nearest-neighbour input
produces different scores for the same pixels, so the policy is fixed here
rather than left to the decoder.
"""

from __future__ import annotations

import io
import logging
from contextlib import ExitStack
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from pneumoscan.errors import EncodingFailure
from pneumoscan.ml.types import Tensor

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from pneumoscan.ml.types import ImageSource

logger = logging.getLogger(__name__)

DEFAULT_TARGET_SIZE: tuple[int, int] = (256, 256)
RESAMPLING = Image.Resampling.BILINEAR

_DECODE_ERRORS = (UnidentifiedImageError, OSError, ValueError, SyntaxError, Image.DecompressionBombError)


class TensorEncoder:
    """Turns image bytes into the classifier's input tensor.

    Args:
        target_size: ``(height, width)`` of the encoded tensor.
        max_image_pixels: Decoded images above this pixel count are rejected.
    """

    def __init__(
        self,
        target_size: tuple[int, int] = DEFAULT_TARGET_SIZE,
        max_image_pixels: int | None = None,
    ) -> None:
        self._height, self._width = target_size
        self._max_image_pixels = max_image_pixels

    @property
    def target_size(self) -> tuple[int, int]:
        return self._height, self._width

    def encode(self, source: ImageSource) -> Tensor:
        """Decode ``source`` into a ``[1, H, W, 1]`` tensor.

        Raises:
            EncodingFailure: If the bytes cannot be decoded or the image is too large.
        """
        try:
            pixels = self._decode_luminance(source.data)
        except EncodingFailure:
            raise
        except _DECODE_ERRORS as exc:
            logger.info("Could not decode %s: %s", source.filename, exc)
            raise EncodingFailure() from exc

        array = (pixels / np.float32(255.0))[np.newaxis, :, :, np.newaxis]
        return Tensor(np.ascontiguousarray(array, dtype=np.float32))

    def _decode_luminance(self, data: bytes) -> NDArray[np.float32]:
        with ExitStack() as stack:
            image = stack.enter_context(Image.open(io.BytesIO(data)))
            stack.callback(image.close)
            self._check_pixel_count(image)
            image.load()

            oriented = ImageOps.exif_transpose(image)
            stack.callback(oriented.close)

            gray = _to_luminance(oriented)
            stack.callback(gray.close)

            resized = gray.resize((self._width, self._height), resample=RESAMPLING)
            stack.callback(resized.close)

            return np.asarray(resized, dtype=np.float32)

    def _check_pixel_count(self, image: Image.Image) -> None:
        if self._max_image_pixels is None:
            return
        pixels = image.width * image.height
        if pixels > self._max_image_pixels:
            raise EncodingFailure(
                f"Image is too large to analyze ({image.width}x{image.height} pixels)."
            )


def _to_luminance(image: Image.Image) -> Image.Image:
    """Reduce to 8-bit single channel using Pillow's ITU-R 601-2 luma weights."""
    if image.mode.startswith("I;16"):
        # 16-bit grayscale (common for radiographs): keep the high byte.
        wide = np.asarray(image, dtype=np.uint16)
        return Image.fromarray((wide >> 8).astype(np.uint8))
    if image.mode in ("I", "F"):
        return Image.fromarray(_wide_to_bytes(np.asarray(image, dtype=np.float64), image.mode))
    # Alpha is dropped, not composited.
    return image.convert("L")


def _wide_to_bytes(values: NDArray[np.float64], mode: str) -> NDArray[np.uint8]:
    """Map 32-bit integer or float samples onto 0..255.

    Float samples within ``[0, 1]`` are treated as normalized intensities.
    Otherwise samples above 255 are treated as 16-bit data and keep their high
    byte, matching ``I;16``. Anything outside ``[0, 65535]`` is rejected.
    """
    if not np.isfinite(values).all():
        raise EncodingFailure("Image contains non-numeric pixel values.")
    low, high = float(values.min()), float(values.max())
    if low < 0 or high > 65535:
        raise EncodingFailure(f"Unsupported pixel range {low:g} to {high:g}.")

    if mode == "F" and high <= 1.0:
        scaled = values * 255.0
    elif high > 255:
        scaled = values / 256.0
    else:
        scaled = values
    return np.clip(scaled, 0, 255).astype(np.uint8)
