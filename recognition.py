"""Client for the external flower-recognition service used by image search."""
import logging

import requests

from errors import Internal

logger = logging.getLogger(__name__)


class ImageRecognizer:
    def __init__(self, endpoint: str, timeout: float = 30, http=None):
        self.endpoint = endpoint
        self.timeout = timeout
        self.http = http or requests.Session()

    def identify(self, content: bytes, filename: str, content_type: str) -> str:
        """Upload the image and return the flower name the service predicts."""
        logger.info("Recognizing image %s (%d bytes)", filename, len(content))
        try:
            response = self.http.post(
                self.endpoint,
                files={"file": (filename, content, content_type)},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as exc:
            logger.error("Recognition request failed for %s: %s", filename, exc)
            raise Internal("Failed to recognize image")

        name = payload.get("name") if isinstance(payload, dict) else None
        if not isinstance(name, str) or not name.strip():
            logger.warning("Recognition service returned no usable name: %r", payload)
            raise Internal(f"Invalid flower name: {name}")
        return name.strip()
