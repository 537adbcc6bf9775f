"""
Token-based pricing for AI feature usage.

Rates are credits per million tokens (BILLING_TOKEN_PRICING_INPUT/OUTPUT).
Costs are integers: rounded up, with a minimum of one credit for any
non-zero usage.
"""

from __future__ import annotations

from django.conf import settings

TOKENS_PER_RATE_UNIT = 1_000_000

# Features that consume credits
FEATURES = (
    "generate_test",
    "generate_options",
    "grade_response",
    "bulk_grade",
    "suggest_feedback",
)


def credits_for_tokens(
    tokens_input: int,
    tokens_output: int,
    input_rate: int | None = None,
    output_rate: int | None = None,
) -> int:
    """
    Convert token counts into credits.

    Args:
        tokens_input: Prompt tokens
        tokens_output: Completion tokens
        input_rate: Credits per 1M input tokens (defaults to settings)
        output_rate: Credits per 1M output tokens (defaults to settings)

    Returns:
        Integer credits; 0 only when both counts are 0

    Raises:
        ValueError: On negative token counts
    """
    if tokens_input < 0 or tokens_output < 0:
        raise ValueError("Token counts cannot be negative")
    if tokens_input == 0 and tokens_output == 0:
        return 0

    if input_rate is None:
        input_rate = settings.BILLING_TOKEN_PRICING_INPUT
    if output_rate is None:
        output_rate = settings.BILLING_TOKEN_PRICING_OUTPUT

    weighted = tokens_input * input_rate + tokens_output * output_rate
    # Ceiling division in integers
    cost = -(-weighted // TOKENS_PER_RATE_UNIT)
    return max(cost, 1)


def estimate_credits(expected_input: int, max_output: int) -> int:
    """Upper-bound estimate used when reserving before a model call."""
    return credits_for_tokens(expected_input, max_output)
