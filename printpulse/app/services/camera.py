"""Camera feed health tracking.

The overlay shows the printer's MJPEG stream directly; this module only
decides whether the stream is up and when to try it again. States:

    idle        no camera configured
    connecting  first attempt pending
    live        last check succeeded
    retrying    last check failed, next attempt scheduled after a backoff
    failed      gave up after too many consecutive failures
"""

import asyncio
import logging
from enum import Enum

import httpx

logger = logging.getLogger(__name__)


class CameraState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    LIVE = "live"
    RETRYING = "retrying"
    FAILED = "failed"


def camera_transform(flip_x: bool, flip_y: bool) -> str:
    """CSS transform mirroring the feed, e.g. ``scaleX(-1) scaleY(-1)``."""
    flips = []
    if flip_x:
        flips.append("scaleX(-1)")
    if flip_y:
        flips.append("scaleY(-1)")
    return " ".join(flips)


class CameraFeed:
    """Retry state machine for one camera stream."""

    def __init__(
        self,
        url: str,
        base_delay: float = 2.0,
        max_delay: float = 60.0,
        max_attempts: int = 10,
        timeout: float = 5.0,
    ):
        self.url = url
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.attempts = 0  # Consecutive failures
        self.state = CameraState.CONNECTING if url else CameraState.IDLE

    @property
    def retry_delay(self) -> float | None:
        """Seconds until the next attempt, or None when nothing is scheduled."""
        if self.state == CameraState.RETRYING:
            return min(self.base_delay * 2 ** (self.attempts - 1), self.max_delay)
        return None

    def on_load(self):
        if self.state == CameraState.IDLE:
            return
        if self.state != CameraState.LIVE:
            logger.info(f"Camera feed is live: {self.url}")
        self.attempts = 0
        self.state = CameraState.LIVE

    def on_error(self, reason: str = ""):
        if self.state in (CameraState.IDLE, CameraState.FAILED):
            return
        self.attempts += 1
        if self.attempts >= self.max_attempts:
            self.state = CameraState.FAILED
            logger.warning(f"Camera feed failed {self.attempts} times, giving up: {self.url} {reason}".rstrip())
            return
        self.state = CameraState.RETRYING
        logger.warning(
            f"Camera feed failed (attempt {self.attempts}/{self.max_attempts}), "
            f"retrying in {self.retry_delay:.0f}s: {reason}"
        )

    async def check(self, transport: httpx.AsyncBaseTransport | None = None) -> CameraState:
        """Open the stream, read the first chunk and update the state."""
        if self.state in (CameraState.IDLE, CameraState.FAILED):
            return self.state
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=transport) as client:
                async with client.stream("GET", self.url) as response:
                    if response.status_code != 200:
                        self.on_error(f"HTTP {response.status_code}")
                        return self.state
                    async for chunk in response.aiter_bytes():
                        if chunk:
                            break
            self.on_load()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            self.on_error(str(e) or type(e).__name__)
        return self.state

    async def watch(self, live_interval: float = 30.0):
        """Keep checking the stream until it is given up on or cancelled."""
        while True:
            state = await self.check()
            if state in (CameraState.IDLE, CameraState.FAILED):
                return
            await asyncio.sleep(self.retry_delay or live_interval)
