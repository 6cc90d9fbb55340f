"""
Pipeline wiring.

Builds a GenerationPipeline from configuration using the SQLite billing
gate and cache store and the OpenAI image provider.
"""

from typing import Optional

from .billing.sqlite_gate import SQLiteBillingGate
from .config.loader import AppConfig
from .core.persistence import BackgroundPersister
from .core.pipeline import GenerationPipeline
from .provider.openai_provider import GenerationProvider, OpenAIImageProvider
from .storage.cache import SQLiteCacheStore


def build_pipeline(config: AppConfig, provider: Optional[GenerationProvider] = None) -> GenerationPipeline:
    """Create a pipeline for the configured database and provider.

    The schema must already exist (see ``image-meter init``).
    """
    cache = SQLiteCacheStore(config.db_path)
    return GenerationPipeline(
        billing=SQLiteBillingGate(config.db_path),
        cache=cache,
        provider=provider or OpenAIImageProvider(
            model=config.provider.model,
            timeout_seconds=config.provider.timeout_seconds
        ),
        pricing=config.pricing,
        persister=BackgroundPersister(cache, max_workers=config.persistence.max_workers),
        payment_link=config.billing.payment_link,
        store_cache_control=config.cache.store_cache_control,
        serve_cache_control=config.cache.serve_cache_control,
    )
