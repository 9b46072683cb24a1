from __future__ import annotations

import asyncio
import enum
import logging
import time
from pathlib import Path
from typing import Callable, List, Optional, Union

import torch
from PIL import Image

from sketch2pix.checkpoint import CheckpointLoader, WeightSet
from sketch2pix.config import Settings, configure_torch_threads
from sketch2pix.errors import (
    InferenceInProgressError,
    LoadError,
    ModelNotReadyError,
    Sketch2PixError,
)
from sketch2pix.generator import Pix2PixGenerator
from sketch2pix.image_codec import ImageLike, image_to_tensor, tensor_to_image
from sketch2pix.scope import ActivationScope

logger = logging.getLogger(__name__)


class ModelState(str, enum.Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class ModelHandle:
    """A pix2pix model: loads its checkpoint once, then serves one `transfer` at a time.

    State goes UNLOADED -> LOADING -> READY or FAILED and never back.
    """

    def __init__(
        self,
        path_or_id: Optional[Union[str, Path]] = None,
        loader: Optional[CheckpointLoader] = None,
        device: Optional[Union[str, torch.device]] = None,
        settings: Optional[Settings] = None,
        encoder_bias: bool = False,
    ):
        self.settings = settings or Settings.from_env()
        self.loader = loader or CheckpointLoader(path_or_id, self.settings)
        self.device = torch.device(device or self.settings.device)
        self.encoder_bias = encoder_bias
        self.state = ModelState.UNLOADED
        self.error: Optional[Sketch2PixError] = None
        self.generator: Optional[Pix2PixGenerator] = None
        self.last_scope: Optional[ActivationScope] = None
        self._task: Optional["asyncio.Task[ModelHandle]"] = None
        self._callbacks: List[Callable[["ModelHandle"], None]] = []
        self._busy = False

    def __repr__(self) -> str:
        return f"ModelHandle(state={self.state.value}, device={self.device})"

    @property
    def ready(self) -> bool:
        return self.state is ModelState.READY

    @classmethod
    def from_weights(
        cls,
        weights: WeightSet,
        device: Union[str, torch.device] = "cpu",
        encoder_bias: bool = False,
    ) -> "ModelHandle":
        """Build a ready handle from weights already in memory."""
        handle = cls(device=device, encoder_bias=encoder_bias)
        handle.generator = Pix2PixGenerator(weights, device=handle.device, encoder_bias=encoder_bias)
        handle.state = ModelState.READY
        return handle

    def _build(self) -> Pix2PixGenerator:
        configure_torch_threads(self.settings.num_threads, self.settings.interop_threads)
        t0 = time.time()
        weights = self.loader.load()
        generator = Pix2PixGenerator(weights, device=self.device, encoder_bias=self.encoder_bias)
        logger.info("Model ready in %.2fs", time.time() - t0)
        return generator

    async def _load(self) -> "ModelHandle":
        loop = asyncio.get_running_loop()
        try:
            self.generator = await loop.run_in_executor(None, self._build)
        except asyncio.CancelledError:
            logger.warning("Model loading was cancelled")
            self._fail(LoadError("Model loading was cancelled"))
            raise
        except Sketch2PixError as e:
            logger.exception("Model loading failed: %s", e)
            self._fail(e)
            raise
        except Exception as e:
            logger.exception("Model loading failed: %s", e)
            err = LoadError(f"Loading failed: {e}")
            self._fail(err)
            raise err from e

        self.state = ModelState.READY
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            self._notify(callback)
        return self

    def _notify(self, callback: Callable[["ModelHandle"], None]) -> None:
        try:
            callback(self)
        except Exception:
            logger.exception("Load callback %r raised", callback)

    def _fail(self, error: Sketch2PixError) -> None:
        self.state = ModelState.FAILED
        self.error = error
        self._callbacks.clear()

    def _on_task_done(self, task: "asyncio.Task[ModelHandle]") -> None:
        if task.cancelled():
            # Cancelled before the coroutine ever ran.
            if self.state is ModelState.LOADING:
                logger.warning("Model loading was cancelled")
                self._fail(LoadError("Model loading was cancelled"))
            return
        # Errors are re-raised from wait_ready(); mark them retrieved here.
        task.exception()

    def start(self, callback: Optional[Callable[["ModelHandle"], None]] = None) -> None:
        """Schedule loading on the running event loop. Calling it again reuses the same task.

        `callback(handle)` runs once the model is ready; it is dropped if loading fails.
        """
        if callback is not None:
            if self.ready:
                self._notify(callback)
            elif self.state is not ModelState.FAILED:
                self._callbacks.append(callback)
        if self._task is None and self.state is ModelState.UNLOADED:
            self.state = ModelState.LOADING
            self._task = asyncio.get_running_loop().create_task(self._load())
            self._task.add_done_callback(self._on_task_done)

    async def load(self) -> "ModelHandle":
        if not self.ready:
            self.start()
        return await self.wait_ready()

    async def wait_ready(self) -> "ModelHandle":
        """Block until loaded; re-raise the load error if loading failed."""
        if self.state is ModelState.READY:
            return self
        if self.state is ModelState.FAILED:
            assert self.error is not None
            raise self.error
        if self._task is None:
            raise ModelNotReadyError("Model loading was never started; call start() or load() first")
        try:
            return await self._task
        except asyncio.CancelledError:
            if self._task.cancelled() and self.error is not None:
                raise self.error from None
            raise

    async def transfer(
        self,
        image: ImageLike,
        callback: Optional[Callable[[Image.Image], None]] = None,
    ) -> Image.Image:
        """Translate one RGB image; returns an RGBA image of the same size."""
        await self.wait_ready()
        if self._busy:
            raise InferenceInProgressError("A transfer is already running on this model")
        assert self.generator is not None

        self._busy = True
        try:
            t0 = time.time()
            x = image_to_tensor(image, device=self.generator.device)
            scope = ActivationScope()
            self.last_scope = scope
            result = self.generator.generate(x, scope=scope)
            # Let the event loop run once before reading the result back.
            await asyncio.sleep(0)
            out = tensor_to_image(result)
            logger.info(
                "Transfer %dx%d done in %.2fs (%d activations)",
                out.width,
                out.height,
                time.time() - t0,
                scope.peak,
            )
        finally:
            self._busy = False

        if callback is not None:
            callback(out)
        return out


def create_model(
    path_or_id: Optional[Union[str, Path]] = None,
    callback: Optional[Callable[[ModelHandle], None]] = None,
    loader: Optional[CheckpointLoader] = None,
    device: Optional[Union[str, torch.device]] = None,
) -> ModelHandle:
    """Create a handle and start loading it. Must be called with a running event loop."""
    handle = ModelHandle(path_or_id, loader=loader, device=device)
    handle.start(callback)
    return handle


async def load_model(
    path_or_id: Optional[Union[str, Path]] = None,
    device: Optional[Union[str, torch.device]] = None,
) -> ModelHandle:
    return await create_model(path_or_id, device=device).wait_ready()
