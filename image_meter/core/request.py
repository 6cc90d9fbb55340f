"""
Generation request model.

A request is validated on construction, so an instance that exists is
always safe to price and generate.
"""

from dataclasses import dataclass

from .errors import ValidationError

SUPPORTED_SIZES = ("1024x1024", "1024x1536", "1536x1024")
SUPPORTED_QUALITIES = ("low", "medium", "high", "auto")
DEFAULT_SIZE = "1024x1024"
DEFAULT_QUALITY = "low"
MAX_COUNT = 4


@dataclass(frozen=True)
class GenerationRequest:
    """Immutable description of the artifact a caller asked for.

    ``input_image_tokens`` and ``cached_input_tokens`` only affect pricing;
    they do not change what is generated and are not part of the cache key.
    """
    prompt: str
    size: str = DEFAULT_SIZE
    quality: str = DEFAULT_QUALITY
    count: int = 1
    input_image_tokens: int = 0
    cached_input_tokens: int = 0

    def __post_init__(self):
        """Validate and normalize every field."""
        if not isinstance(self.prompt, str) or not self.prompt.strip():
            raise ValidationError("prompt is required and cannot be empty")

        if not isinstance(self.size, str) or self.size not in SUPPORTED_SIZES:
            raise ValidationError(
                f"Invalid size: {self.size!r}. Must be one of: {', '.join(SUPPORTED_SIZES)}"
            )

        quality = self.quality.lower() if isinstance(self.quality, str) else self.quality
        if quality not in SUPPORTED_QUALITIES:
            raise ValidationError(
                f"Invalid quality: {self.quality!r}. Must be one of: {', '.join(SUPPORTED_QUALITIES)}"
            )
        object.__setattr__(self, "quality", quality)

        if isinstance(self.count, bool) or not isinstance(self.count, int) \
                or not 1 <= self.count <= MAX_COUNT:
            raise ValidationError(f"Invalid count: {self.count!r}. Must be between 1 and {MAX_COUNT}")

        for name in ("input_image_tokens", "cached_input_tokens"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValidationError(f"{name} must be a non-negative integer")
