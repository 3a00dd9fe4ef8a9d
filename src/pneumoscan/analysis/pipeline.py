"""One analysis run: encode, predict, interpret, in that order."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from pneumoscan.ml.interpretation import ResultInterpreter

if TYPE_CHECKING:
    from pneumoscan.ml.backends import InferenceBackend
    from pneumoscan.ml.preprocessing import TensorEncoder
    from pneumoscan.ml.types import AnalysisResult, ImageSource, Tensor

logger = logging.getLogger(__name__)


class AnalysisPipeline:
    """Stateless composition of encoder, backend and interpreter.

    The tensor produced for a run is owned by that run and released when the
    ``with`` block exits, whether the backend succeeded or raised.

    Args:
        offload_encoding: Decode on the loop's default executor instead of the
            calling thread. The service sets this so a large upload does not
            stall other requests while Pillow decodes it.
    """

    def __init__(
        self,
        encoder: TensorEncoder,
        backend: InferenceBackend,
        interpreter: ResultInterpreter | None = None,
        offload_encoding: bool = False,
    ) -> None:
        self._encoder = encoder
        self._backend = backend
        self._interpreter = interpreter or ResultInterpreter()
        self._offload_encoding = offload_encoding

    @property
    def backend(self) -> InferenceBackend:
        return self._backend

    @property
    def is_ready(self) -> bool:
        return self._backend.is_ready

    async def run(self, source: ImageSource) -> AnalysisResult:
        """Analyze ``source``.

        Raises:
            EncodingFailure: If the image cannot be decoded.
            InferenceFailure: If the backend fails.
        """
        tensor = await self._encode(source)
        with tensor:
            score = await self._backend.predict(tensor, source)

        result = self._interpreter.interpret(score)
        logger.info(
            "Analyzed %s: %s (confidence=%d%%, score=%.4f)",
            source.filename,
            result.decision,
            result.confidence,
            score,
        )
        return result

    async def _encode(self, source: ImageSource) -> Tensor:
        if not self._offload_encoding:
            return self._encoder.encode(source)

        future = asyncio.get_running_loop().run_in_executor(None, self._encoder.encode, source)
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            # The decode keeps running; release whatever it produces.
            future.add_done_callback(_release_abandoned)
            raise


def _release_abandoned(future: asyncio.Future[Tensor]) -> None:
    if not future.cancelled() and future.exception() is None:
        future.result().release()
