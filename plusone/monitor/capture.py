"""Capture sources for the screen monitor."""

import asyncio
import io
import logging
from pathlib import Path
from typing import Optional, Protocol

import numpy as np
from PIL import Image
from playwright.async_api import BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from plusone.config import settings

logger = logging.getLogger(__name__)


class CaptureUnavailableError(Exception):
    """The capture source could not be acquired (permission denied, no display...)."""


class CaptureSource(Protocol):
    """
    A live frame stream owned by one monitoring episode.

    `ended` is set when the stream stops on its own (e.g. the operator closes
    the shared window).
    """

    ended: asyncio.Event

    async def open(self) -> None:
        ...

    async def grab(self) -> Optional[np.ndarray]:
        """Current frame as an RGB array, or None if no frame is available."""
        ...

    async def close(self) -> None:
        ...


def encode_png(frame: np.ndarray) -> bytes:
    """Encode an RGB frame as PNG for the extraction model."""
    buffer = io.BytesIO()
    Image.fromarray(frame.astype(np.uint8)).save(buffer, format="PNG")
    return buffer.getvalue()


def decode_image(data: bytes) -> np.ndarray:
    """Decode image bytes into an RGB array."""
    with Image.open(io.BytesIO(data)) as image:
        return np.asarray(image.convert("RGB"))


class PlaywrightPageSource:
    """
    Captures a chat web page in a browser window.

    A persistent browser profile keeps the operator logged in between
    sessions. Closing the page or the browser ends the stream.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        profile_dir: Optional[str | Path] = None,
        headless: bool = False,
    ):
        self.url = url or settings.capture_url
        self.width = width or settings.capture_width
        self.height = height or settings.capture_height
        self.profile_dir = Path(profile_dir or Path(settings.data_dir) / "browser-profile")
        self.headless = headless
        self.ended = asyncio.Event()
        self._playwright: Optional[Playwright] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    async def open(self) -> None:
        """
        Launch the browser and load the chat page.

        Raises:
            CaptureUnavailableError: If the browser cannot be started
        """
        self.ended.clear()
        try:
            self._playwright = await async_playwright().start()
            self._context = await self._playwright.chromium.launch_persistent_context(
                str(self.profile_dir),
                headless=self.headless,
                viewport={"width": self.width, "height": self.height},
            )
            self._page = self._context.pages[0] if self._context.pages else await self._context.new_page()
            await self._page.goto(self.url, wait_until="domcontentloaded")
        except PlaywrightError as e:
            await self.close()
            raise CaptureUnavailableError(f"Cannot open capture page: {e}") from e

        self._page.on("close", lambda _: self.ended.set())
        self._context.on("close", lambda _: self.ended.set())
        logger.info(f"Capturing {self.url} ({self.width}x{self.height})")

    async def grab(self) -> Optional[np.ndarray]:
        if self._page is None or self._page.is_closed():
            self.ended.set()
            return None
        try:
            data = await self._page.screenshot(type="png")
        except PlaywrightError as e:
            logger.warning(f"Screenshot failed: {e}")
            return None
        return decode_image(data)

    async def close(self) -> None:
        context, self._context = self._context, None
        playwright, self._playwright = self._playwright, None
        self._page = None
        if context is not None:
            try:
                await context.close()
            except PlaywrightError as e:
                logger.debug(f"Browser context already closed: {e}")
        if playwright is not None:
            await playwright.stop()
