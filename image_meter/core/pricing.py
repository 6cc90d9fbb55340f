"""
Pricing calculations and rate management.

Computes the charge for an image generation request from a fixed pricing
table, without contacting the provider.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_UP
from typing import Dict

from .request import GenerationRequest
from .token_counter import estimate_text_tokens

logger = logging.getLogger(__name__)

ONE_MILLION = Decimal("1000000")
CENTS_PER_DOLLAR = Decimal("100")


@dataclass(frozen=True)
class PricingTable:
    """Rates and per-image output prices.

    ``output_costs`` maps quality tier -> size -> dollars per image.
    ``quality_aliases`` lets a tier borrow another tier's prices.
    """
    text_input_per_1m: Decimal
    text_input_cached_per_1m: Decimal
    image_input_per_1m: Decimal
    fee_multiplier: Decimal
    output_costs: Dict[str, Dict[str, Decimal]]
    quality_aliases: Dict[str, str] = field(default_factory=dict)

    def get_output_cost(self, quality: str, size: str) -> Decimal:
        """Price of one output image, or zero if the pair is not priced."""
        tier = self.quality_aliases.get(quality, quality)
        return self.output_costs.get(tier, {}).get(size, Decimal("0"))

    def has_output_cost(self, quality: str, size: str) -> bool:
        tier = self.quality_aliases.get(quality, quality)
        return size in self.output_costs.get(tier, {})


@dataclass(frozen=True)
class CostBreakdown:
    """Itemized cost of one request. Derived, never stored."""
    text_input_tokens: int
    text_input_cost: Decimal
    image_input_tokens: int
    image_input_cost: Decimal
    image_output_cost: Decimal
    fee_multiplier: Decimal
    total_cost: Decimal
    total_charge_cents: int
    output_price_known: bool = True

    @property
    def subtotal(self) -> Decimal:
        """Provider cost before the fee multiplier."""
        return self.text_input_cost + self.image_input_cost + self.image_output_cost


def _output_prices(square: str, portrait: str, landscape: str) -> Dict[str, Decimal]:
    return {
        "1024x1024": Decimal(square),
        "1024x1536": Decimal(portrait),
        "1536x1024": Decimal(landscape),
    }


# Default table for gpt-image-1
DEFAULT_PRICING = PricingTable(
    text_input_per_1m=Decimal("5.00"),
    text_input_cached_per_1m=Decimal("1.25"),
    image_input_per_1m=Decimal("10.00"),
    fee_multiplier=Decimal("1.2"),
    output_costs={
        "low": _output_prices("0.011", "0.016", "0.016"),
        "medium": _output_prices("0.042", "0.063", "0.063"),
        "high": _output_prices("0.167", "0.25", "0.25"),
    },
    quality_aliases={"auto": "high"},
)


def estimate_cost(request: GenerationRequest, pricing: PricingTable = DEFAULT_PRICING) -> CostBreakdown:
    """Calculate the cost of a request with conservative rounding.

    Text input is priced per estimated prompt token, or per cached token
    when a cached count is supplied. Image input is priced only when the
    request declares input image tokens. Output is priced per image from
    the (quality, size) table; a missing pair prices at zero.

    Args:
        request: Validated generation request
        pricing: Pricing table to apply

    Returns:
        CostBreakdown whose total charge is rounded UP to the cent
    """
    text_tokens = estimate_text_tokens(request.prompt)
    if request.cached_input_tokens > 0:
        text_cost = (Decimal(request.cached_input_tokens) / ONE_MILLION) * pricing.text_input_cached_per_1m
    else:
        text_cost = (Decimal(text_tokens) / ONE_MILLION) * pricing.text_input_per_1m

    image_tokens = request.input_image_tokens
    image_input_cost = Decimal("0")
    if image_tokens > 0:
        image_input_cost = (Decimal(image_tokens) / ONE_MILLION) * pricing.image_input_per_1m

    price_known = pricing.has_output_cost(request.quality, request.size)
    if not price_known:
        logger.warning(
            "No output price for quality=%s size=%s, pricing output at zero",
            request.quality, request.size
        )
    image_output_cost = pricing.get_output_cost(request.quality, request.size) * request.count

    total_cost = (text_cost + image_input_cost + image_output_cost) * pricing.fee_multiplier
    total_cents = (total_cost * CENTS_PER_DOLLAR).quantize(Decimal("1"), rounding=ROUND_UP)

    return CostBreakdown(
        text_input_tokens=text_tokens,
        text_input_cost=text_cost,
        image_input_tokens=image_tokens,
        image_input_cost=image_input_cost,
        image_output_cost=image_output_cost,
        fee_multiplier=pricing.fee_multiplier,
        total_cost=total_cost,
        total_charge_cents=int(total_cents),
        output_price_known=price_known,
    )
