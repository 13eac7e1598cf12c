"""
Pricing calculations.

Handles cost computations from per-million-token model prices.
"""

from decimal import Decimal

from tier_router.config.loader import ModelConfig

from .token_counter import TokenUsage

ONE_MILLION = Decimal("1000000")


def calculate_cost(model: ModelConfig, usage: TokenUsage) -> float:
    """Calculate total cost for model usage.

    The result is not rounded: ledger totals accumulate raw values and
    rounding happens only when figures are displayed.

    Args:
        model: Model pricing configuration
        usage: Token usage data

    Returns:
        Total cost in USD
    """
    # Decimal(str(x)) keeps the configured price exactly as written
    input_price = Decimal(str(model.input_cost_per_mtok))
    output_price = Decimal(str(model.output_cost_per_mtok))

    input_cost = (Decimal(usage.input_tokens) / ONE_MILLION) * input_price
    output_cost = (Decimal(usage.output_tokens) / ONE_MILLION) * output_price

    return float(input_cost + output_cost)
