"""Inference backends: turn an encoded image into a pneumonia probability.

Two interchangeable implementations of :class:`InferenceBackend`:

* :class:`LocalModelBackend` runs the ONNX classifier in-process on the
  inference thread pool and consumes the encoded tensor.
* :class:`RemoteServiceBackend` posts the original image bytes to a PneumoScan
  service (``POST /upload``), which encodes and classifies server-side.

Callers always pass both the tensor and its source; each backend uses the one
it needs.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Protocol

import httpx
import numpy as np
import pydantic

from pneumoscan.api.schemas import HealthResponse, UploadResponse
from pneumoscan.errors import InferenceFailure, NetworkFailure, NotReady, ServiceFailure

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from pneumoscan.ml.inference import InferencePool
    from pneumoscan.ml.model_manager import ModelManager
    from pneumoscan.ml.types import ImageSource, Tensor

logger = logging.getLogger(__name__)


class InferenceBackend(Protocol):
    """Capability shared by every backend."""

    @property
    def is_ready(self) -> bool:
        """Whether ``predict`` may be called."""
        ...

    async def load(self) -> None:
        """Prepare the backend; a no-op where nothing needs loading."""
        ...

    async def check_health(self) -> bool:
        """Refresh and return readiness."""
        ...

    async def predict(self, tensor: Tensor, source: ImageSource) -> float:
        """Return the probability of pneumonia in ``[0, 1]``.

        Raises:
            InferenceFailure: If no valid score could be produced.
        """
        ...

    async def close(self) -> None:
        """Release backend resources."""
        ...


def validate_score(value: float, error: type[InferenceFailure] = InferenceFailure) -> float:
    """Reject non-finite or out-of-range scores before they reach interpretation."""
    if not math.isfinite(value) or not 0.0 <= value <= 1.0:
        raise error(f"Classifier returned an invalid score: {value!r}")
    return value


# ---------------------------------------------------------------------------
# In-process ONNX backend
# ---------------------------------------------------------------------------


class LocalModelBackend:
    """Runs the classifier session managed by ``manager`` on ``pool``."""

    def __init__(self, manager: ModelManager, pool: InferencePool) -> None:
        self._manager = manager
        self._pool = pool

    @property
    def is_ready(self) -> bool:
        return self._manager.is_loaded

    async def load(self) -> None:
        await self._pool.run(self._manager.get_session)
        logger.info("Local classifier ready")

    async def check_health(self) -> bool:
        return self.is_ready

    async def predict(self, tensor: Tensor, source: ImageSource) -> float:
        if not self.is_ready:
            raise NotReady()

        session = self._manager.get_session()
        try:
            outputs = await self._pool.run(_run_session, session, tensor.array)
        except TimeoutError as exc:
            raise InferenceFailure("The classifier is busy. Please try again.") from exc
        except Exception as exc:  # onnxruntime raises bare pybind11 exception types
            logger.exception("Classifier session failed for %s", source.filename)
            raise InferenceFailure() from exc

        scores = np.asarray(outputs, dtype=np.float64).ravel()
        if scores.size == 0:
            raise InferenceFailure("Classifier returned no output")
        return validate_score(float(scores[0]))

    async def close(self) -> None:
        self._manager.shutdown()
        self._pool.shutdown()


def _run_session(session: InferenceSession, batch: NDArray[np.float32]) -> NDArray[np.float32]:
    input_name = session.get_inputs()[0].name
    outputs = session.run(None, {input_name: batch})
    return np.asarray(outputs[0])


# ---------------------------------------------------------------------------
# Remote HTTP backend
# ---------------------------------------------------------------------------


class RemoteServiceBackend:
    """Client for a PneumoScan inference service.

    Args:
        base_url: Service root, e.g. ``http://127.0.0.1:8080``.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (used by tests).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)
        self._model_loaded: bool | None = None

    @property
    def is_ready(self) -> bool:
        # Unknown readiness is not a reason to block; the service answers 503.
        return self._model_loaded is not False

    async def load(self) -> None:
        return None

    async def check_health(self) -> bool:
        try:
            response = await self._client.get("/health")
            response.raise_for_status()
            health = HealthResponse.model_validate(response.json())
        except (httpx.HTTPError, ValueError, pydantic.ValidationError) as exc:
            logger.warning("Health check against %s failed: %s", self._client.base_url, exc)
            self._model_loaded = None
            return False

        self._model_loaded = health.model_loaded
        return health.model_loaded

    async def predict(self, tensor: Tensor, source: ImageSource) -> float:
        files = {"file": (source.filename, source.data, source.media_type or "application/octet-stream")}
        try:
            response = await self._client.post("/upload", files=files)
        except httpx.TransportError as exc:
            logger.warning("Upload to %s failed: %s", self._client.base_url, exc)
            raise NetworkFailure() from exc

        payload = self._parse(response)
        if not response.is_success or not payload.success:
            raise ServiceFailure(payload.error)
        if payload.result is None:
            raise ServiceFailure("Service response is missing the prediction result")

        try:
            percent = float(payload.result.probabilities.pneumonia)
        except ValueError as exc:
            raise ServiceFailure("Service returned a malformed probability") from exc
        return validate_score(percent / 100.0, ServiceFailure)

    async def close(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _parse(response: httpx.Response) -> UploadResponse:
        try:
            return UploadResponse.model_validate(response.json())
        except (ValueError, pydantic.ValidationError) as exc:
            logger.warning("Malformed response from service (HTTP %s)", response.status_code)
            if not response.is_success:
                raise ServiceFailure(f"Service responded with HTTP {response.status_code}") from exc
            raise ServiceFailure("Service returned a malformed response") from exc
