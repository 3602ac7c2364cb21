"""Merging and gating of frames from several capture sources."""

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

from .config import MERGED_QUEUE_SIZE
from .exceptions import ConfigurationError
from .logging_utils import get_logger
from .models import AudioFrame, AudioSource
from .vad import VoiceActivityDetector

logger = get_logger(__name__)

FrameStreamFactory = Callable[[], AsyncIterator[AudioFrame]]

_END_OF_STREAM = object()


class SourceCoordinator:
    """Exposes one merged frame stream fed by independently toggled sources.

    Each enabled source runs a forwarding task. With a single source enabled
    every frame passes through; with several enabled only frames whose own
    VAD decision is speech are forwarded. The merged stream lives until
    ``close()``, independent of enabling and disabling sources.
    """

    def __init__(
        self,
        max_queue_size: int | None = None,
        close_when_exhausted: bool = False,
        vad_factory: Callable[[], VoiceActivityDetector] | None = None,
    ) -> None:
        """
        Initialize the source coordinator.

        Args:
            max_queue_size: Frames buffered before the oldest is dropped
            close_when_exhausted: End the merged stream once every enabled
                source has run out of frames
            vad_factory: Creates the per-source detector for untagged frames

        Raises:
            ConfigurationError: If the queue size is not positive
        """
        self.max_queue_size = MERGED_QUEUE_SIZE if max_queue_size is None else max_queue_size
        self._close_when_exhausted = close_when_exhausted
        self._vad_factory = vad_factory or VoiceActivityDetector

        if self.max_queue_size < 1:
            raise ConfigurationError(
                f"max_queue_size must be at least 1, got {self.max_queue_size}"
            )

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._factories: dict[AudioSource, FrameStreamFactory] = {}
        self._tasks: dict[AudioSource, asyncio.Task] = {}
        self._vads: dict[AudioSource, VoiceActivityDetector] = {}
        self._closed = False

        self._forwarded_frames = 0
        self._gated_frames = 0
        self._dropped_frames = 0

    def register_source(self, source: AudioSource, stream_factory: FrameStreamFactory) -> None:
        """
        Register a capture source.

        Args:
            source: Source tag
            stream_factory: Returns a fresh async iterator of frames when enabled
        """
        self._factories[source] = stream_factory
        self._vads.setdefault(source, self._vad_factory())
        logger.debug(f"Registered audio source: {source.value}")

    @property
    def enabled_sources(self) -> list[AudioSource]:
        return [source for source, task in self._tasks.items() if not task.done()]

    @property
    def is_closed(self) -> bool:
        return self._closed

    def is_enabled(self, source: AudioSource) -> bool:
        task = self._tasks.get(source)
        return task is not None and not task.done()

    def enable(self, source: AudioSource) -> bool:
        """
        Start forwarding frames from a source.

        Args:
            source: Registered source to enable

        Returns:
            True if the source was started, False if it was already enabled

        Raises:
            ConfigurationError: If the source was never registered
        """
        if source not in self._factories:
            raise ConfigurationError(f"Audio source not registered: {source.value}")
        if self._closed:
            logger.warning(f"Cannot enable {source.value}: coordinator is closed")
            return False
        if self.is_enabled(source):
            logger.debug(f"Audio source {source.value} already enabled")
            return False

        self._vads[source].reset()
        self._tasks[source] = asyncio.create_task(self._forward(source))
        logger.info(f"🎙️ Enabled audio source: {source.value}")
        return True

    def disable(self, source: AudioSource) -> bool:
        """
        Stop forwarding frames from a source.

        Returns:
            True if the source was stopped, False if it was not enabled
        """
        task = self._tasks.pop(source, None)
        if task is None or task.done():
            logger.debug(f"Audio source {source.value} already disabled")
            return False

        task.cancel()
        logger.info(f"🔇 Disabled audio source: {source.value}")
        return True

    def toggle(self, source: AudioSource) -> bool:
        """
        Flip a source on or off.

        Returns:
            Whether the source is enabled afterwards
        """
        if self.is_enabled(source):
            self.disable(source)
            return False
        self.enable(source)
        return self.is_enabled(source)

    def should_forward(self, frame: AudioFrame) -> bool:
        """Single source forwards everything; several forward only speech frames."""
        if len(self.enabled_sources) <= 1:
            return True
        return frame.vad is not None and frame.vad.is_speech

    async def frames(self) -> AsyncIterator[AudioFrame]:
        """Yield merged frames until the coordinator is closed."""
        while True:
            if self._closed and self._queue.empty():
                return
            item = await self._queue.get()
            if item is _END_OF_STREAM:
                return
            yield item

    async def close(self) -> None:
        """Stop every source and end the merged stream."""
        if self._closed:
            return

        tasks = list(self._tasks.values())
        for source in list(self._tasks):
            self.disable(source)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._closed = True
        self._put(_END_OF_STREAM)
        logger.debug("Source coordinator closed")

    def get_stats(self) -> dict[str, Any]:
        return {
            "enabled_sources": [source.value for source in self.enabled_sources],
            "forwarded_frames": self._forwarded_frames,
            "gated_frames": self._gated_frames,
            "dropped_frames": self._dropped_frames,
            "queued_frames": self._queue.qsize(),
        }

    async def _forward(self, source: AudioSource) -> None:
        vad = self._vads[source]
        try:
            async for frame in self._factories[source]():
                if frame.vad is None:
                    frame = vad.tag(frame)
                if self.should_forward(frame):
                    self._put(frame)
                    self._forwarded_frames += 1
                else:
                    self._gated_frames += 1
                    logger.trace(f"Gated silent frame {frame.sequence} from {source.value}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"❌ Audio source {source.value} failed: {e}")

        logger.debug(f"Audio source {source.value} exhausted")
        if self._tasks.get(source) is asyncio.current_task():
            del self._tasks[source]
        if self._close_when_exhausted and not self.enabled_sources and not self._closed:
            self._closed = True
            self._put(_END_OF_STREAM)

    def _put(self, item: Any) -> None:
        if self._queue.full():
            # Drop the oldest frame so a slow consumer never blocks capture
            self._queue.get_nowait()
            self._dropped_frames += 1
            logger.warning("⚠️ Merged frame queue full, dropped oldest frame")
        self._queue.put_nowait(item)
