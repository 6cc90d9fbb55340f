"""
Configuration management and loading.

Handles pricing, billing, cache, provider and storage settings.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..core.pricing import DEFAULT_PRICING, PricingTable
from ..core.pipeline import SERVE_CACHE_CONTROL, STORE_CACHE_CONTROL
from ..provider.openai_provider import DEFAULT_MODEL, DEFAULT_TIMEOUT_SECONDS
from ..storage.db import DEFAULT_DB_PATH


@dataclass(frozen=True)
class BillingConfig:
    """Where unpaid callers are sent."""
    payment_link: Optional[str] = None


@dataclass(frozen=True)
class CacheConfig:
    """Cache-control policies for stored and served artifacts."""
    store_cache_control: str = STORE_CACHE_CONTROL
    serve_cache_control: str = SERVE_CACHE_CONTROL


@dataclass(frozen=True)
class ProviderConfig:
    """Upstream generation settings."""
    model: str = DEFAULT_MODEL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    def __post_init__(self):
        """Validate provider values."""
        if not self.model or not self.model.strip():
            raise ValueError("provider.model cannot be empty")
        if self.timeout_seconds <= 0:
            raise ValueError("provider.timeout_seconds must be > 0")


@dataclass(frozen=True)
class PersistenceConfig:
    """Background write-back settings."""
    max_workers: int = 2

    def __post_init__(self):
        """Validate worker count."""
        if self.max_workers < 1:
            raise ValueError("persistence.max_workers must be >= 1")


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    pricing: PricingTable = DEFAULT_PRICING
    billing: BillingConfig = field(default_factory=BillingConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    db_path: str = DEFAULT_DB_PATH
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load and validate configuration from a YAML file.

    Strict validation ensures no silent misconfigurations that could lead
    to mispriced requests. Every section is optional; omitted values fall
    back to defaults. With no path, defaults are returned.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return AppConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return AppConfig()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_top_keys = {'pricing', 'billing', 'cache', 'provider', 'storage', 'persistence'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    pricing = DEFAULT_PRICING
    if 'pricing' in raw_config:
        pricing = _parse_pricing(_section(raw_config, 'pricing'))

    billing_data = _section(raw_config, 'billing', {'payment_link'})
    cache_data = _section(raw_config, 'cache', {'store_cache_control', 'serve_cache_control'})
    provider_data = _section(raw_config, 'provider', {'model', 'timeout_seconds'})
    storage_data = _section(raw_config, 'storage', {'db_path'})
    persistence_data = _section(raw_config, 'persistence', {'max_workers'})

    return AppConfig(
        pricing=pricing,
        billing=BillingConfig(
            payment_link=_optional_str(billing_data, 'payment_link', 'billing')
        ),
        cache=CacheConfig(
            store_cache_control=_optional_str(cache_data, 'store_cache_control', 'cache') or STORE_CACHE_CONTROL,
            serve_cache_control=_optional_str(cache_data, 'serve_cache_control', 'cache') or SERVE_CACHE_CONTROL,
        ),
        provider=ProviderConfig(
            model=_optional_str(provider_data, 'model', 'provider') or DEFAULT_MODEL,
            timeout_seconds=_number(provider_data.get('timeout_seconds', DEFAULT_TIMEOUT_SECONDS),
                                    'provider.timeout_seconds'),
        ),
        db_path=_optional_str(storage_data, 'db_path', 'storage') or DEFAULT_DB_PATH,
        persistence=PersistenceConfig(
            max_workers=_integer(persistence_data.get('max_workers', 2), 'persistence.max_workers')
        ),
    )


def _section(raw_config: Dict, name: str, allowed_keys: Optional[set] = None) -> Dict:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    if allowed_keys is not None:
        unknown_keys = set(data.keys()) - allowed_keys
        if unknown_keys:
            raise ValueError(f"Unknown keys in {name}: {unknown_keys}")
    return data


def _optional_str(data: Dict, key: str, path: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{key}' in {path} must be a non-empty string")
    return value.strip()


def _number(value: Any, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{path}' must be a number")
    return float(value)


def _integer(value: Any, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{path}' must be an integer")
    return value


def _rate(value: Any, path: str) -> Decimal:
    """Convert a YAML number to Decimal via its string form."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"'{path}' must be a number")
    try:
        rate = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"'{path}' must be a number")
    if not rate.is_finite() or rate < 0:
        raise ValueError(f"'{path}' must be >= 0")
    return rate


def _parse_pricing(data: Dict) -> PricingTable:
    """Parse and validate a pricing table, defaulting omitted fields.

    Args:
        data: Pricing configuration data

    Returns:
        Validated PricingTable

    Raises:
        ValueError: If configuration is invalid
    """
    allowed_keys = {
        'text_input_per_1m', 'text_input_cached_per_1m', 'image_input_per_1m',
        'fee_multiplier', 'output_costs', 'quality_aliases'
    }
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in pricing: {unknown_keys}")

    rates = {}
    for key in ('text_input_per_1m', 'text_input_cached_per_1m', 'image_input_per_1m', 'fee_multiplier'):
        rates[key] = _rate(data[key], f"pricing.{key}") if key in data else getattr(DEFAULT_PRICING, key)

    if rates['fee_multiplier'] < 1:
        raise ValueError("'pricing.fee_multiplier' must be >= 1")

    output_costs = DEFAULT_PRICING.output_costs
    if 'output_costs' in data:
        raw_costs = data['output_costs']
        if not isinstance(raw_costs, dict) or not raw_costs:
            raise ValueError("'pricing.output_costs' must be a non-empty dictionary")
        output_costs = {}
        for quality, sizes in raw_costs.items():
            if not isinstance(sizes, dict):
                raise ValueError(f"'pricing.output_costs.{quality}' must be a dictionary")
            output_costs[str(quality).lower()] = {
                str(size): _rate(price, f"pricing.output_costs.{quality}.{size}")
                for size, price in sizes.items()
            }

    quality_aliases = DEFAULT_PRICING.quality_aliases
    if 'quality_aliases' in data:
        raw_aliases = data['quality_aliases'] or {}
        if not isinstance(raw_aliases, dict):
            raise ValueError("'pricing.quality_aliases' must be a dictionary")
        quality_aliases = {}
        for alias, target in raw_aliases.items():
            target = str(target).lower()
            if target not in output_costs:
                raise ValueError(f"'pricing.quality_aliases.{alias}' points to unknown tier: {target}")
            quality_aliases[str(alias).lower()] = target

    return PricingTable(
        output_costs=output_costs,
        quality_aliases=quality_aliases,
        **rates
    )
