"""
image-meter: a metered, cache-aside proxy for paid image generation.
"""

__version__ = "0.1.0"
