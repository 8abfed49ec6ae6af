"""Thumbnail loading for the printing file."""

import logging

from printpulse.app.services.moonraker import MoonrakerClient
from printpulse.app.utils.filenames import normalize_filename
from printpulse.app.utils.gcode_header import extract_thumbnail

logger = logging.getLogger(__name__)

# Thumbnails sit right after the slicer header; 100 KB covers the usual 300x300 PNG
THUMBNAIL_FETCH_BYTES = 100_000

# Anything shorter than this cannot be a real PNG
MIN_THUMBNAIL_LENGTH = 100


class ThumbnailLoader:
    """Fetches the embedded thumbnail once per file, retrying until one loads."""

    def __init__(self, client: MoonrakerClient):
        self.client = client
        self.loaded_for: str | None = None
        self.data: str | None = None

    async def ensure(self, filename: str | None) -> str | None:
        """Base64 PNG for filename; fetched only when the file changes."""
        path = normalize_filename(filename)
        if not path:
            self.hide()
            return None
        if path == self.loaded_for:
            return self.data

        self.loaded_for = path
        self.data = None
        try:
            text = await self.client.fetch_file_head(path, THUMBNAIL_FETCH_BYTES)
            b64 = extract_thumbnail(text)
        except Exception as e:
            logger.warning(f"Thumbnail load for {path} failed: {e}")
            b64 = None

        if b64 and len(b64) > MIN_THUMBNAIL_LENGTH:
            self.data = b64
            logger.debug("Loaded %d-character thumbnail for %s", len(b64), path)
        else:
            # Try again on the next poll
            self.loaded_for = None
            logger.debug("No usable thumbnail in %s", path)
        return self.data

    def hide(self):
        self.loaded_for = None
        self.data = None
