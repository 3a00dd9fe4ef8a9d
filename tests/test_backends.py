"""Tests for the local ONNX and remote HTTP inference backends."""

from __future__ import annotations

import asyncio
import json
import threading
from typing import TYPE_CHECKING
from unittest.mock import MagicMock, patch

import httpx
import numpy as np
import pytest

from pneumoscan.config import Settings
from pneumoscan.errors import InferenceFailure, NetworkFailure, NotReady, ServiceFailure
from pneumoscan.ml.backends import LocalModelBackend, RemoteServiceBackend, validate_score
from pneumoscan.ml.inference import InferencePool
from pneumoscan.ml.types import ImageSource, Tensor

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

SOURCE = ImageSource(data=b"\x89PNG fake", media_type="image/png", filename="xray.png")


def _tensor() -> Tensor:
    return Tensor(np.zeros((1, 256, 256, 1), dtype=np.float32))


# ---------------------------------------------------------------------------
# Local backend
# ---------------------------------------------------------------------------


def _make_manager(output: object = None, loaded: bool = True, error: Exception | None = None) -> MagicMock:
    session = MagicMock()
    session.get_inputs.return_value = [MagicMock()]
    session.get_inputs.return_value[0].name = "input_1"
    if error is not None:
        session.run.side_effect = error
    else:
        session.run.return_value = [np.asarray(output, dtype=np.float32)]

    manager = MagicMock()
    manager.is_loaded = loaded
    manager.get_session.return_value = session
    return manager


@pytest.fixture()
async def pool() -> AsyncIterator[InferencePool]:
    inference_pool = InferencePool(Settings(max_concurrent=1))
    yield inference_pool
    inference_pool.shutdown()


class TestInferencePool:
    async def test_runs_on_pool_thread(self, pool: InferencePool) -> None:
        name = await pool.run(lambda: threading.current_thread().name)
        assert name.startswith("pneumoscan-inference")

    async def test_busy_pool_times_out(self, pool: InferencePool) -> None:
        release = threading.Event()
        first = asyncio.create_task(pool.run(release.wait, 5))
        await asyncio.sleep(0.05)

        with patch("pneumoscan.ml.inference.SEMAPHORE_TIMEOUT_SECONDS", 0.05), pytest.raises(TimeoutError):
            await pool.run(lambda: None)

        release.set()
        assert await first is True
        assert await pool.run(lambda: 7) == 7


class TestLocalModelBackend:
    async def test_predict_returns_first_score(self, pool: InferencePool) -> None:
        manager = _make_manager([[0.9]])
        backend = LocalModelBackend(manager, pool)

        tensor = _tensor()
        score = await backend.predict(tensor, SOURCE)

        assert score == pytest.approx(0.9)
        session = manager.get_session.return_value
        feed = session.run.call_args.args[1]
        assert feed["input_1"].shape == (1, 256, 256, 1)

    async def test_not_ready_before_load(self, pool: InferencePool) -> None:
        backend = LocalModelBackend(_make_manager([[0.9]], loaded=False), pool)
        assert backend.is_ready is False
        with pytest.raises(NotReady):
            await backend.predict(_tensor(), SOURCE)

    async def test_load_creates_session(self, pool: InferencePool) -> None:
        manager = _make_manager([[0.1]], loaded=False)
        backend = LocalModelBackend(manager, pool)
        await backend.load()
        manager.get_session.assert_called_once_with()

    @pytest.mark.parametrize("output", [[[1.5]], [[-0.1]], [[float("nan")]], [[float("inf")]]])
    async def test_out_of_range_score_rejected(self, pool: InferencePool, output: object) -> None:
        backend = LocalModelBackend(_make_manager(output), pool)
        with pytest.raises(InferenceFailure, match="invalid score"):
            await backend.predict(_tensor(), SOURCE)

    async def test_empty_output_rejected(self, pool: InferencePool) -> None:
        backend = LocalModelBackend(_make_manager(np.zeros((1, 0))), pool)
        with pytest.raises(InferenceFailure, match="no output"):
            await backend.predict(_tensor(), SOURCE)

    async def test_session_error_wrapped(self, pool: InferencePool) -> None:
        backend = LocalModelBackend(_make_manager(error=RuntimeError("bad input")), pool)
        with pytest.raises(InferenceFailure) as excinfo:
            await backend.predict(_tensor(), SOURCE)
        assert not isinstance(excinfo.value, NotReady)
        assert isinstance(excinfo.value.__cause__, RuntimeError)

    async def test_health_reflects_manager(self, pool: InferencePool) -> None:
        assert await LocalModelBackend(_make_manager([[0.5]]), pool).check_health() is True


# ---------------------------------------------------------------------------
# Remote backend
# ---------------------------------------------------------------------------


def _ok_payload(pneumonia: str = "90.00") -> dict[str, object]:
    return {
        "success": True,
        "result": {
            "has_pneumonia": True,
            "confidence": 90,
            "probabilities": {"normal": "10.00", "pneumonia": pneumonia},
        },
    }


def _remote(handler: Callable[[httpx.Request], httpx.Response]) -> RemoteServiceBackend:
    return RemoteServiceBackend("http://service.test", transport=httpx.MockTransport(handler))


class TestRemoteServiceBackendPredict:
    async def test_posts_original_bytes(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_ok_payload())

        backend = _remote(handler)
        score = await backend.predict(_tensor(), SOURCE)
        await backend.close()

        assert score == pytest.approx(0.9)
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/upload"
        assert request.headers["content-type"].startswith("multipart/form-data")
        body = request.read()
        assert b'name="file"' in body
        assert b'filename="xray.png"' in body
        assert SOURCE.data in body

    async def test_success_false_uses_service_error(self) -> None:
        backend = _remote(lambda _: httpx.Response(200, json={"success": False, "error": "Bad image"}))
        with pytest.raises(ServiceFailure, match="Bad image"):
            await backend.predict(_tensor(), SOURCE)

    async def test_error_status_with_json_body(self) -> None:
        backend = _remote(lambda _: httpx.Response(503, json={"success": False, "error": "Model not loaded"}))
        with pytest.raises(ServiceFailure, match="Model not loaded"):
            await backend.predict(_tensor(), SOURCE)

    async def test_error_status_with_html_body(self) -> None:
        backend = _remote(lambda _: httpx.Response(502, text="<html>Bad Gateway</html>"))
        with pytest.raises(ServiceFailure, match="HTTP 502"):
            await backend.predict(_tensor(), SOURCE)

    async def test_error_status_without_message_uses_default(self) -> None:
        backend = _remote(lambda _: httpx.Response(500, json={"success": False}))
        with pytest.raises(ServiceFailure, match="Please try again"):
            await backend.predict(_tensor(), SOURCE)

    async def test_malformed_json(self) -> None:
        backend = _remote(lambda _: httpx.Response(200, content=b"{not json"))
        with pytest.raises(ServiceFailure, match="malformed"):
            await backend.predict(_tensor(), SOURCE)

    async def test_schema_mismatch(self) -> None:
        backend = _remote(lambda _: httpx.Response(200, json={"prediction": "PNEUMONIA"}))
        with pytest.raises(ServiceFailure):
            await backend.predict(_tensor(), SOURCE)

    async def test_missing_result(self) -> None:
        backend = _remote(lambda _: httpx.Response(200, json={"success": True}))
        with pytest.raises(ServiceFailure, match="missing"):
            await backend.predict(_tensor(), SOURCE)

    @pytest.mark.parametrize("pneumonia", ["abc", "150.00", "-3", "nan"])
    async def test_bad_probability(self, pneumonia: str) -> None:
        backend = _remote(lambda _: httpx.Response(200, json=_ok_payload(pneumonia)))
        with pytest.raises(ServiceFailure):
            await backend.predict(_tensor(), SOURCE)

    async def test_connection_error_is_network_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        backend = _remote(handler)
        with pytest.raises(NetworkFailure, match="Network error"):
            await backend.predict(_tensor(), SOURCE)

    async def test_timeout_is_network_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        backend = _remote(handler)
        with pytest.raises(NetworkFailure):
            await backend.predict(_tensor(), SOURCE)


class TestRemoteServiceBackendHealth:
    async def test_ready_until_service_says_otherwise(self) -> None:
        backend = _remote(lambda _: httpx.Response(200, json={"status": "ok", "model_loaded": False}))
        assert backend.is_ready is True
        assert await backend.check_health() is False
        assert backend.is_ready is False

    async def test_model_loaded(self) -> None:
        backend = _remote(lambda _: httpx.Response(200, json={"model_loaded": True}))
        assert await backend.check_health() is True
        assert backend.is_ready is True

    async def test_unreachable_service_leaves_readiness_unknown(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        backend = _remote(handler)
        assert await backend.check_health() is False
        assert backend.is_ready is True

    async def test_non_json_health(self) -> None:
        backend = _remote(lambda _: httpx.Response(200, content=json.dumps("up").encode()))
        assert await backend.check_health() is False


class TestValidateScore:
    def test_accepts_bounds(self) -> None:
        assert validate_score(0.0) == 0.0
        assert validate_score(1.0) == 1.0

    def test_custom_error_type(self) -> None:
        with pytest.raises(ServiceFailure):
            validate_score(2.0, ServiceFailure)
