"""
Cache key derivation.

The key is the canonical retrieval path of a request, so the same string is
used to look up a stored artifact and to serve it externally.
"""

from typing import List
from urllib.parse import quote

from .request import GenerationRequest

PATH_PREFIX = "/image"


def cache_key(request: GenerationRequest) -> str:
    """Canonical path for a request.

    ``/image/<encoded prompt>/<size>/<quality>``, with a trailing count
    segment only when more than one image was requested.
    """
    key = f"{PATH_PREFIX}/{quote(request.prompt, safe='')}/{request.size}/{request.quality}"
    if request.count > 1:
        key += f"/{request.count}"
    return key


def artifact_keys(request: GenerationRequest) -> List[str]:
    """Storage locations for every artifact of a request, in order."""
    key = cache_key(request)
    if request.count == 1:
        return [key]
    return [f"{key}/{index}" for index in range(request.count)]
