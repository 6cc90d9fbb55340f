"""
Core modules for image-meter.

This package contains request validation, pricing, cache key derivation
and the charge-gated generation pipeline.
"""
