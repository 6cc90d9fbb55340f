"""
Image generation provider adapters.

Calls the upstream generation API and normalizes whatever it returns,
inline base64 or a remote URL, into in-memory artifacts.
"""

import base64
import binascii
import logging
import re
from abc import ABC, abstractmethod
from typing import List, Optional

import httpx
import openai
from openai import OpenAI

from ..core.errors import ProviderFailure
from ..core.request import GenerationRequest
from ..storage.models import DEFAULT_CONTENT_TYPE, Artifact

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-image-1"
DEFAULT_TIMEOUT_SECONDS = 120.0
USER_AGENT = "image-meter/0.1"

_DATA_URL_PREFIX = re.compile(r"^data:image/[a-z]+;base64,")


class GenerationProvider(ABC):
    """Abstract base class for generation backends."""

    @abstractmethod
    def generate(self, request: GenerationRequest) -> List[Artifact]:
        """Generate ``request.count`` artifacts.

        Raises:
            ProviderFailure: If the upstream does not return usable artifacts
        """
        pass


def decode_base64_image(payload: str) -> bytes:
    """Decode a base64 image, tolerating a ``data:image/...;base64,`` prefix."""
    try:
        return base64.b64decode(_DATA_URL_PREFIX.sub("", payload), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ProviderFailure(502, f"Invalid base64 image data: {e}")


class OpenAIImageProvider(GenerationProvider):
    """Provider backed by the OpenAI images API.

    The API key is read from ``OPENAI_API_KEY`` by the SDK unless a client
    is injected.
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[OpenAI] = None,
        http_client: Optional[httpx.Client] = None
    ):
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        self.model = model
        self.timeout_seconds = timeout_seconds
        self.client = client or OpenAI(timeout=timeout_seconds)
        self.http_client = http_client

    def generate(self, request: GenerationRequest) -> List[Artifact]:
        try:
            response = self.client.images.generate(
                model=self.model,
                prompt=request.prompt,
                n=request.count,
                size=request.size,
                quality=request.quality,
            )
        except openai.APIStatusError as e:
            raise ProviderFailure(e.status_code, e.message)
        except openai.APIConnectionError as e:
            raise ProviderFailure(502, f"Could not reach provider: {e}")

        images = getattr(response, "data", None) or []
        if not images:
            raise ProviderFailure(502, "No image data found in response")
        if len(images) != request.count:
            raise ProviderFailure(502, f"Expected {request.count} images, got {len(images)}")

        return [self._to_artifact(image) for image in images]

    def _to_artifact(self, image) -> Artifact:
        if getattr(image, "b64_json", None):
            return Artifact(data=decode_base64_image(image.b64_json))
        if getattr(image, "url", None):
            return self._fetch(image.url)
        raise ProviderFailure(502, "No image data found in response")

    def _fetch(self, url: str) -> Artifact:
        logger.debug("Fetching generated image from %s", url)
        try:
            if self.http_client is not None:
                response = self.http_client.get(url)
            else:
                with httpx.Client(timeout=self.timeout_seconds, headers={"User-Agent": USER_AGENT}) as client:
                    response = client.get(url)
        except httpx.RequestError as e:
            raise ProviderFailure(502, f"Failed to fetch image: {e}")

        if response.status_code != 200:
            raise ProviderFailure(response.status_code, f"Failed to fetch image: {response.status_code}")

        content_type = response.headers.get("content-type", DEFAULT_CONTENT_TYPE).split(";")[0].strip()
        return Artifact(data=response.content, content_type=content_type or DEFAULT_CONTENT_TYPE)
