"""
Pricing table and cost formulas.

    units    = service-specific estimate (tokens, seconds, MB, or 1)
    subtotal = clamp(base_price + units * price_per_unit, min_charge, max_charge)
    total    = subtotal * priority multiplier

The same formula prices the admission estimate and the settlement, so a job's
reserved cost always equals ``estimate_cost(...)`` for the same inputs.
"""

import math
from collections.abc import Mapping
from typing import Any

from ..models.compute import (
    ComputeService,
    ComputeUsage,
    CostBreakdown,
    CostEstimate,
    Priority,
    ServicePricing,
)

# Money is rounded to 8 decimals to keep float noise out of balances
MONEY_PRECISION = 8

CHARS_PER_TOKEN = 4
DEFAULT_CODE_TIMEOUT_MS = 30_000

PRICING: dict[ComputeService, ServicePricing] = {
    ComputeService.LLM: ServicePricing(
        service=ComputeService.LLM,
        base_price=0.0,
        unit="token",
        price_per_unit=0.000003,  # ~$3 per 1M tokens
        min_charge=0.001,
        max_charge=10.0,
    ),
    ComputeService.CODE: ServicePricing(
        service=ComputeService.CODE,
        base_price=0.01,
        unit="second",
        price_per_unit=0.001,
        min_charge=0.01,
        max_charge=1.0,
    ),
    ComputeService.WEB: ServicePricing(
        service=ComputeService.WEB,
        base_price=0.005,
        unit="request",
        price_per_unit=0.005,
        min_charge=0.005,
        max_charge=0.1,
    ),
    ComputeService.TRADE: ServicePricing(
        service=ComputeService.TRADE,
        base_price=0.01,
        unit="call",
        price_per_unit=0.01,
        min_charge=0.01,
        max_charge=0.5,
    ),
    ComputeService.DATA: ServicePricing(
        service=ComputeService.DATA,
        base_price=0.001,
        unit="request",
        price_per_unit=0.001,
        min_charge=0.001,
        max_charge=0.1,
    ),
    ComputeService.STORAGE: ServicePricing(
        service=ComputeService.STORAGE,
        base_price=0.0,
        unit="mb",
        price_per_unit=0.0001,
        min_charge=0.001,
        max_charge=1.0,
    ),
    ComputeService.GPU: ServicePricing(
        service=ComputeService.GPU,
        base_price=0.0,
        unit="second",
        price_per_unit=0.01,
        min_charge=0.1,
        max_charge=100.0,
    ),
    ComputeService.ML: ServicePricing(
        service=ComputeService.ML,
        base_price=0.01,
        unit="request",
        price_per_unit=0.01,
        min_charge=0.01,
        max_charge=1.0,
    ),
}

# Monotonically increasing with priority
PRIORITY_MULTIPLIERS: dict[Priority, float] = {
    Priority.LOW: 0.8,
    Priority.NORMAL: 1.0,
    Priority.HIGH: 1.5,
    Priority.URGENT: 2.5,
}


def round_money(amount: float) -> float:
    """Round a USD amount to ledger precision."""
    return round(amount, MONEY_PRECISION)


def _llm_units(payload: Any) -> int:
    messages = payload.get("messages") if isinstance(payload, dict) else None
    total_chars = 0
    for message in messages or []:
        content = message.get("content") if isinstance(message, dict) else None
        if isinstance(content, str):
            total_chars += len(content)
    return math.ceil(total_chars / CHARS_PER_TOKEN)


def _storage_units(payload: Any) -> int:
    content = payload.get("content") if isinstance(payload, dict) else None
    length = len(content) if isinstance(content, str | bytes) else 0
    return max(1, math.ceil(length / 1024 / 1024))


def calculate_units(service: ComputeService, payload: Any) -> int:
    """
    Estimate billable units for a request payload.

    - llm: ceil(total message characters / 4) tokens
    - code: requested timeout (ms, default 30000) in whole seconds
    - storage: content size in MB, at least 1
    - everything else: 1
    """
    if service == ComputeService.LLM:
        return _llm_units(payload)
    if service == ComputeService.CODE:
        timeout_ms = DEFAULT_CODE_TIMEOUT_MS
        if isinstance(payload, dict) and isinstance(payload.get("timeout"), int | float):
            timeout_ms = payload["timeout"]
        return math.ceil(timeout_ms / 1000)
    if service == ComputeService.STORAGE:
        return _storage_units(payload)
    return 1


def calculate_cost(
    price: ServicePricing,
    units: int,
    priority: Priority = Priority.NORMAL,
) -> CostBreakdown:
    """Apply the clamp and priority multiplier to a unit count."""
    multiplier = PRIORITY_MULTIPLIERS[priority]
    usage_cost = units * price.price_per_unit
    subtotal = min(
        max(price.base_price + usage_cost, price.min_charge),
        price.max_charge,
    )
    return CostBreakdown(
        base=price.base_price,
        usage=round_money(usage_cost),
        subtotal=round_money(subtotal),
        priority_multiplier=multiplier,
        total=round_money(subtotal * multiplier),
    )


def estimate_cost(
    service: ComputeService,
    payload: Any,
    priority: Priority = Priority.NORMAL,
    pricing: Mapping[ComputeService, ServicePricing] = PRICING,
) -> CostEstimate:
    """
    Quote the cost of a request before it runs.

    Raises:
        KeyError: If the service has no configured pricing
    """
    price = pricing[service]
    units = calculate_units(service, payload)
    breakdown = calculate_cost(price, units, priority)

    return CostEstimate(
        service=service,
        estimated_cost=breakdown.total,
        breakdown=breakdown,
        units=units,
        unit_type=price.unit,
        min_charge=price.min_charge,
        max_charge=price.max_charge,
        priority=priority,
    )


def _reported_tokens(result: Any) -> int | None:
    """Token count reported by an LLM handler result, if any."""
    usage = result.get("usage") if isinstance(result, dict) else None
    if not isinstance(usage, dict):
        return None
    input_tokens = usage.get("input_tokens")
    output_tokens = usage.get("output_tokens")
    if not isinstance(input_tokens, int) or not isinstance(output_tokens, int):
        return None
    return input_tokens + output_tokens


def calculate_usage(
    service: ComputeService,
    payload: Any,
    duration_ms: int,
    priority: Priority = Priority.NORMAL,
    result: Any = None,
    pricing: Mapping[ComputeService, ServicePricing] = PRICING,
) -> ComputeUsage:
    """
    Price what a completed job actually consumed.

    LLM jobs use the handler's reported token usage when present and fall back
    to the character estimate. Code jobs bill wall-clock seconds.
    """
    price = pricing[service]

    if service == ComputeService.LLM:
        tokens = _reported_tokens(result)
        units = tokens if tokens is not None else _llm_units(payload)
    elif service == ComputeService.CODE:
        units = math.ceil(duration_ms / 1000)
    else:
        units = calculate_units(service, payload)

    return ComputeUsage(
        units=units,
        unit_type=price.unit,
        duration_ms=duration_ms,
        breakdown=calculate_cost(price, units, priority),
    )


def get_pricing(
    service: ComputeService | None = None,
    pricing: Mapping[ComputeService, ServicePricing] = PRICING,
) -> list[ServicePricing]:
    """Pricing for one service, or the full table ordered by service name."""
    if service is not None:
        return [pricing[service]]
    return [pricing[s] for s in sorted(pricing, key=lambda s: s.value)]
