"""
Charge-gated, cache-aside generation pipeline.

Enforcement Order:
1. Authorization - unregistered or empty accounts never touch the cache
2. Cache lookup - a stored artifact is returned free of charge
3. Cost estimate and charge - the charge is one-shot and never retried
4. Provider call - a failure here does NOT refund the charge
5. Write-back - detached, best-effort, invisible to the caller
"""

import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

from ..billing.gate import BillingGate, Caller
from ..provider.openai_provider import GenerationProvider
from ..storage.cache import CacheStore
from ..storage.models import Artifact
from .cache_key import artifact_keys, cache_key
from .errors import ChargeDeclined, ImageMeterError, InternalFailure, PaymentRequired, ProviderFailure
from .persistence import BackgroundPersister
from .pricing import DEFAULT_PRICING, CostBreakdown, PricingTable, estimate_cost
from .request import GenerationRequest

logger = logging.getLogger(__name__)

STORE_CACHE_CONTROL = "public, max-age=31536000"
SERVE_CACHE_CONTROL = "public, max-age=3600"


@dataclass(frozen=True)
class GenerationResult:
    """Artifacts handed back to the caller for one request."""
    key: str
    artifacts: List[Artifact]
    cache_hit: bool
    charged_cents: int
    cost: Optional[CostBreakdown]
    cache_control: str


@dataclass(frozen=True)
class Quote:
    """Read-only price advertisement for a request."""
    request: GenerationRequest
    key: str
    cost: CostBreakdown
    registered: bool
    balance_cents: int
    payment_link: Optional[str] = None

    @property
    def can_afford(self) -> bool:
        return self.registered and self.balance_cents >= self.cost.total_charge_cents

    @property
    def balance_after_cents(self) -> int:
        return self.balance_cents - self.cost.total_charge_cents


class GenerationPipeline:
    """Orchestrates billing, cache and provider for each request.

    Holds no per-request state; concurrent calls to :meth:`handle` share
    only the external stores. Two concurrent misses for the same key are
    both charged and both generated.
    """

    def __init__(
        self,
        billing: BillingGate,
        cache: CacheStore,
        provider: GenerationProvider,
        pricing: PricingTable = DEFAULT_PRICING,
        persister: Optional[BackgroundPersister] = None,
        payment_link: Optional[str] = None,
        store_cache_control: str = STORE_CACHE_CONTROL,
        serve_cache_control: str = SERVE_CACHE_CONTROL
    ):
        self.billing = billing
        self.cache = cache
        self.provider = provider
        self.pricing = pricing
        self.persister = persister or BackgroundPersister(cache)
        self.payment_link = payment_link
        self.store_cache_control = store_cache_control
        self.serve_cache_control = serve_cache_control

    def handle(self, request: GenerationRequest, caller: Caller) -> GenerationResult:
        """Serve a request from cache, or charge and generate it.

        Args:
            request: Validated generation request
            caller: Identity presented by the inbound request

        Returns:
            GenerationResult with the artifacts in request order

        Raises:
            PaymentRequired: Caller unregistered or balance <= 0
            ChargeDeclined: Billing gate refused the charge
            ProviderFailure: Upstream failed after the charge was committed
            InternalFailure: Any other unexpected fault
        """
        try:
            return self._run(request, caller)
        except ImageMeterError:
            raise
        except Exception as e:
            logger.exception("Unexpected failure handling %s", cache_key(request))
            raise InternalFailure("Internal server error") from e

    def _run(self, request: GenerationRequest, caller: Caller) -> GenerationResult:
        authorization = self.billing.authorize(caller)
        if not authorization.registered or authorization.balance_cents <= 0:
            raise PaymentRequired("Payment required", payment_link=self.payment_link)

        key = cache_key(request)
        cached = self._lookup(request)
        if cached is not None:
            logger.info("Cache hit for %s", key)
            return GenerationResult(
                key=key,
                artifacts=cached,
                cache_hit=True,
                charged_cents=0,
                cost=None,
                cache_control=self.serve_cache_control
            )

        cost = estimate_cost(request, self.pricing)
        outcome = self.billing.charge(
            caller,
            cost.total_charge_cents,
            allow_negative=False,
            idempotency_key=uuid.uuid4().hex
        )
        if not outcome.charged:
            raise ChargeDeclined(f"Payment failed: {outcome.message}")
        logger.info("Charged %d cents for %s", cost.total_charge_cents, key)

        try:
            artifacts = self.provider.generate(request)
            if len(artifacts) != request.count:
                raise ProviderFailure(
                    502, f"Expected {request.count} images, provider returned {len(artifacts)}"
                )
        except Exception as e:
            logger.warning(
                "Provider failed for %s after charging %d cents, charge stands: %s",
                key, cost.total_charge_cents, e
            )
            raise

        for location, artifact in zip(artifact_keys(request), artifacts):
            self.persister.submit(location, artifact, self.store_cache_control)

        return GenerationResult(
            key=key,
            artifacts=artifacts,
            cache_hit=False,
            charged_cents=cost.total_charge_cents,
            cost=cost,
            cache_control=self.serve_cache_control
        )

    def _lookup(self, request: GenerationRequest) -> Optional[List[Artifact]]:
        artifacts = []
        for location in artifact_keys(request):
            entry = self.cache.get(location)
            if entry is None:
                return None
            artifacts.append(entry.to_artifact())
        return artifacts

    def quote(self, request: GenerationRequest, caller: Optional[Caller] = None) -> Quote:
        """Price a request without charging, generating or touching the cache."""
        authorization = self.billing.authorize(caller or Caller())
        return Quote(
            request=request,
            key=cache_key(request),
            cost=estimate_cost(request, self.pricing),
            registered=authorization.registered,
            balance_cents=authorization.balance_cents,
            payment_link=None if authorization.registered else self.payment_link
        )

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for detached write-backs to finish."""
        return self.persister.drain(timeout)

    def close(self) -> None:
        self.persister.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
