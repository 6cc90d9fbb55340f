"""
Generation providers.

Adapters that turn a GenerationRequest into artifact bytes.
"""

from .openai_provider import GenerationProvider, OpenAIImageProvider

__all__ = ["GenerationProvider", "OpenAIImageProvider"]
