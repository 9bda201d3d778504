"""
Captioners turn a photo into a short item name and a description.
"""

from abc import ABC, abstractmethod
import hashlib
import json
from typing import Dict, Optional, Tuple

import ollama

from ..core.errors import CaptioningError
from ..util.logging import logger

SYSTEM_PROMPT = "You are a helpful item identifier and describer. You always respond in valid JSON."

USER_PROMPT = (
    "Please give a short name for this object. "
    "Please give a full description of what you see in this image. "
    "Do not mention the background or any human hands."
)

ITEM_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "description": "The name of the object."},
        "description": {"type": "string", "description": "A brief description of what the object is."},
    },
    "required": ["name", "description"],
}


class ICaptioner(ABC):
    """Abstract interface for photo captioners."""

    @abstractmethod
    def describe(self, image: bytes) -> Tuple[str, str]:
        """Return (name, description) for a photo. Raises CaptioningError."""
        pass


class OllamaCaptioner(ICaptioner):
    """
    Captioner backed by a local Ollama vision model.

    The model is asked for JSON matching ITEM_SCHEMA; anything else is
    treated as a malformed response.
    """

    def __init__(self, model_name: str = "llava:13b", host: Optional[str] = None):
        self.model_name = model_name
        self.client = ollama.Client(host=host) if host else ollama

    def describe(self, image: bytes) -> Tuple[str, str]:
        try:
            response = self.client.chat(
                model=self.model_name,
                messages=[
                    {'role': 'system', 'content': SYSTEM_PROMPT},
                    {'role': 'user', 'content': USER_PROMPT, 'images': [image]},
                ],
                format=ITEM_SCHEMA,
                options={'temperature': 0},
            )
        except ollama.ResponseError as e:
            raise CaptioningError(f"Ollama model error: {e}") from e
        except Exception as e:
            raise CaptioningError(f"Captioning request failed: {e}") from e

        content = response['message']['content']
        return parse_caption(content)

    def check_health(self) -> bool:
        """Check if Ollama is reachable."""
        try:
            self.client.list()
            return True
        except Exception as e:
            logger.debug(f"Ollama health check failed: {e}")
            return False


def parse_caption(content: str) -> Tuple[str, str]:
    """Parse the model's JSON answer into (name, description)."""
    try:
        data = json.loads(content or "")
    except json.JSONDecodeError as e:
        raise CaptioningError(f"Malformed caption response: {e}") from e

    if not isinstance(data, dict):
        raise CaptioningError("Malformed caption response: expected a JSON object")

    name = data.get("name")
    description = data.get("description")
    if not isinstance(name, str) or not name.strip():
        raise CaptioningError("Malformed caption response: missing name")
    if not isinstance(description, str):
        raise CaptioningError("Malformed caption response: missing description")
    return name.strip(), description.strip()


class MockCaptioner(ICaptioner):
    """Captioner for development and tests.

    Known photos (by SHA-256 of their bytes) get their registered caption;
    anything else gets a stable placeholder derived from the hash.
    """

    def __init__(self, captions: Optional[Dict[bytes, Tuple[str, str]]] = None):
        self._captions = {}
        for image, caption in (captions or {}).items():
            self.register(image, *caption)

    def register(self, image: bytes, name: str, description: str) -> None:
        self._captions[hashlib.sha256(image).hexdigest()] = (name, description)

    def describe(self, image: bytes) -> Tuple[str, str]:
        if not image:
            raise CaptioningError("Empty image")
        digest = hashlib.sha256(image).hexdigest()
        if digest in self._captions:
            return self._captions[digest]
        return f"item {digest[:8]}", "an unidentified household item"
