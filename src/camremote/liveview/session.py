"""
Liveview Streaming Session

Starts liveview on the camera, reads the stream over one long-lived HTTP
connection and hands (image, frame info) pairs to the consumer in arrival
order. The stream is reopened after reconnecting when the link drops. On
every exit path the camera is told to stop streaming.
"""

import asyncio
import contextlib
import logging
import threading
import time
from typing import Callable, Iterator, Optional, Tuple

from ..protocols.errors import IllegalArgument, TransportFailure
from .packet import LiveviewDecoder, LiveviewFrameInfo, LiveviewImage

logger = logging.getLogger(__name__)

Frame = Tuple[LiveviewImage, Optional[LiveviewFrameInfo]]
Consumer = Callable[[LiveviewImage, Optional[LiveviewFrameInfo]], None]


class LiveviewSession:
    """
    One liveview streaming session.

    Iterate ``frames()`` to pull pairs on the current thread, or call
    ``start(consumer)`` to stream on a dedicated thread. Streaming ends when
    ``duration`` elapses, when ``stop()`` is called, or when the stream ends.

    Args:
        camera: CameraRemote session
        size: Liveview size; the camera default when None
        duration: Seconds until streaming stops by itself
        frame_info: Ask the camera for frame information
        chunk_size: HTTP read size in bytes
        require_frame_info: Skip images until the first frame info arrives,
            when the camera accepted frame information. By default such
            images are delivered with no frame info.
    """

    def __init__(self, camera, size: Optional[str] = None, duration: Optional[float] = None,
                 frame_info: bool = True, chunk_size: int = 8192, require_frame_info: bool = False):
        self.camera = camera
        self.size = size
        self.duration = duration
        self.frame_info = frame_info
        self.chunk_size = chunk_size
        self.require_frame_info = require_frame_info
        self.decoder: Optional[LiveviewDecoder] = None
        self.frame_count = 0
        self.thread: Optional[threading.Thread] = None
        self.error: Optional[BaseException] = None
        self._stop = threading.Event()
        self._frames: Optional[Iterator[Frame]] = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def resync_count(self) -> int:
        return self.decoder.resync_count if self.decoder else 0

    def stop(self):
        """Ask the streaming loop to finish after the current packet."""
        self._stop.set()

    def close(self, timeout: Optional[float] = None):
        """Stop streaming and wait for the streaming thread, if any."""
        self.stop()
        if self.thread is not None:
            self.thread.join(timeout)
            if self.thread.is_alive():
                return
        if self._frames is not None:
            # Runs the generator's cleanup when it was abandoned mid-stream
            self._frames.close()
            self._frames = None

    def _start_liveview(self) -> Tuple[str, bool]:
        frame_info_enabled = False
        if self.frame_info:
            frame_info_enabled = self.camera.call_tolerant('setLiveviewFrameInfo', [{'frameInfo': True}]) is not None

        if self.size:
            # Liveview has to be stopped before its size can change
            self.camera.call_tolerant('stopLiveview')
            current, available = self.camera.call('getAvailableLiveviewSize')[:2]
            if self.size not in available:
                raise IllegalArgument(
                    3, f"The value '{self.size}' is not available for parameter 'LiveviewSize'. "
                       f"current: {current}, available: {available}")
            url = self.camera.call('startLiveviewWithSize', [self.size])[0]
        else:
            url = self.camera.call('startLiveview')[0]
        logger.debug("liveview URL: %s", url)
        return url, frame_info_enabled

    def _expired(self, start: float) -> bool:
        return self.duration is not None and time.monotonic() - start > self.duration

    def _finish(self, start: float):
        logger.info('Stopping liveview...')
        self.camera.call_best_effort('stopLiveview')
        if self.decoder is not None:
            self.decoder.buffer = bytearray()
        total = time.monotonic() - start
        logger.info('Liveview finished.')
        logger.debug("  total time: %d sec", total)
        logger.debug("  count: %d frames", self.frame_count)
        if total > 0:
            logger.debug("  rate: %.2f fps", self.frame_count / total)

    def _open_stream(self, url: str):
        # A reopened stream starts at a packet boundary
        self.decoder.buffer.clear()
        return self.camera.invoker.stream(url, chunk_size=self.chunk_size)

    def frames(self) -> Iterator[Frame]:
        """
        Lazily stream (image, frame info) pairs.

        Each call starts a new stream; an interrupted stream is not resumed.
        Leaving the session context closes an abandoned iterator.
        """
        self._stop.clear()
        return self._iterate()

    def _iterate(self) -> Iterator[Frame]:
        self._frames = self._generate()
        return self._frames

    def _generate(self) -> Iterator[Frame]:
        start = time.monotonic()
        self.frame_count = 0
        url, frame_info_enabled = self._start_liveview()
        self.decoder = LiveviewDecoder(require_frame_info=self.require_frame_info and frame_info_enabled)
        try:
            chunks = self.camera.retrying.iterate(lambda: self._open_stream(url), cancel_event=self._stop)
            for chunk in chunks:
                for image, info in self.decoder.push(chunk):
                    self.frame_count += 1
                    yield image, info
                    if self._stop.is_set() or self._expired(start):
                        return
                if self._stop.is_set() or self._expired(start):
                    return
        except TransportFailure:
            if not self._stop.is_set():
                raise
        finally:
            self._finish(start)

    def run(self, consumer: Consumer):
        """Stream on the current thread, calling ``consumer(image, frame_info)`` for each image."""
        self._stop.clear()
        self._consume(consumer)

    def _consume(self, consumer: Consumer):
        with contextlib.closing(self._iterate()) as frames:
            for image, info in frames:
                consumer(image, info)

    def _run_thread(self, consumer: Consumer):
        try:
            self._consume(consumer)
        except Exception as e:
            self.error = e
            logger.exception("Liveview thread failed")

    def start(self, consumer: Consumer) -> threading.Thread:
        """
        Stream on a dedicated thread.

        Returns:
            The started thread; join it or call ``close()``
        """
        self._stop.clear()
        self.thread = threading.Thread(target=self._run_thread, args=(consumer,), name='liveview', daemon=True)
        self.thread.start()
        return self.thread

    async def frames_async(self):
        """Async version of frames, reading the stream with aiohttp."""
        loop = asyncio.get_running_loop()
        self._stop.clear()
        start = time.monotonic()
        self.frame_count = 0
        url, frame_info_enabled = await loop.run_in_executor(None, self._start_liveview)
        self.decoder = LiveviewDecoder(require_frame_info=self.require_frame_info and frame_info_enabled)

        def open_stream():
            self.decoder.buffer.clear()
            return self.camera.invoker.stream_async(url, chunk_size=self.chunk_size)

        try:
            async for chunk in self.camera.retrying.iterate_async(open_stream):
                for image, info in self.decoder.push(chunk):
                    self.frame_count += 1
                    yield image, info
                    if self._stop.is_set() or self._expired(start):
                        return
                if self._stop.is_set() or self._expired(start):
                    return
        finally:
            await loop.run_in_executor(None, self._finish, start)
