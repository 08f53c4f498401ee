"""
Viotraix plans and pricing configuration.

Plans are sold through Lemon Squeezy. Each purchasable tier maps to a
Lemon Squeezy *variant*; the variant ids live in the environment so the
same build can point at test-mode and live-mode stores.

Example usage:
    # Audits allowed per billing period
    limit = plan_limit(Plan.PRO)

    # Which plan did this webhook's variant buy?
    plan = plan_from_variant(attributes["variant_id"])
"""

import os
from typing import Any, Dict, Optional

from core.models import Plan

# Default number of days a subscription period lasts when the provider has
# not told us the renewal date yet.
DEFAULT_PERIOD_DAYS = 30

PLANS: Dict[str, Dict[str, Any]] = {
    "single": {
        "audits_per_period": None,
        "pdf_export": False,
        "batch_upload": False,
        "variant_env": "LEMONSQUEEZY_VARIANT_ID_SINGLE",
    },
    "basic": {
        "audits_per_period": 50,
        "pdf_export": False,
        "batch_upload": False,
        "variant_env": "LEMONSQUEEZY_VARIANT_ID_BASIC",
    },
    "pro": {
        "audits_per_period": 200,
        "pdf_export": True,
        "batch_upload": True,
        "variant_env": "LEMONSQUEEZY_VARIANT_ID_PRO",
    },
}


def get_plan(plan_name: str) -> Optional[Dict[str, Any]]:
    """
    Get plan configuration by name.

    Args:
        plan_name: Plan identifier (single, basic, pro)

    Returns:
        Plan configuration dictionary or None if not found

    Example:
        >>> get_plan('pro')['audits_per_period']
        200
    """
    return PLANS.get(plan_name)


def is_valid_tier(tier: Any) -> bool:
    """True when ``tier`` names something that can be bought at checkout."""
    return isinstance(tier, str) and tier in PLANS


def plan_limit(plan: Plan) -> int:
    """
    Audits allowed per billing period for a subscription plan.

    Anything that is not ``pro`` gets the basic allowance, which is also
    what a webhook falls back to when it cannot tell the tier apart.

    Example:
        >>> plan_limit(Plan.PRO)
        200
        >>> plan_limit(Plan.BASIC)
        50
    """
    key = "pro" if plan == Plan.PRO else "basic"
    return PLANS[key]["audits_per_period"]


def variant_for_tier(tier: str) -> Optional[str]:
    """Lemon Squeezy variant id configured for ``tier``, or None if unset."""
    plan = get_plan(tier)
    if not plan:
        return None
    return os.environ.get(plan["variant_env"]) or None


def plan_from_variant(variant_id: Any) -> Optional[Plan]:
    """
    Map a Lemon Squeezy variant id back onto a subscription plan.

    Returns None when the variant is not one of the configured subscription
    variants.
    """
    if variant_id is None:
        return None
    variant = str(variant_id)
    for key in ("pro", "basic"):
        configured = os.environ.get(PLANS[key]["variant_env"])
        if configured and configured == variant:
            return Plan(key)
    return None


def supports_pdf_export(plan: Plan) -> bool:
    config = PLANS.get(plan.value)
    return bool(config and config["pdf_export"])


def supports_batch_upload(plan: Plan) -> bool:
    config = PLANS.get(plan.value)
    return bool(config and config["batch_upload"])
