"""
auth/plans.py -- Default entitlement sets per billing plan.

A user's effective entitlements are their explicit override row when one
exists, otherwise the set attached to their plan here. Billing itself
(subscriptions, prices, webhooks) lives outside this package.
"""

from __future__ import annotations

DEFAULT_PLAN_ID = "free"

PLAN_ENTITLEMENTS: dict[str, tuple[str, ...]] = {
    "free": ("dashboard.basic",),
    "pro": ("dashboard.basic", "billing.paid", "reports.export", "leads.routing"),
    "enterprise": (
        "dashboard.basic",
        "billing.paid",
        "reports.export",
        "leads.routing",
        "analytics.enterprise",
        "support.priority",
    ),
}


def plan_entitlements(plan_id: str) -> list[str] | None:
    """Return the plan's entitlements, or None for an unknown plan."""
    features = PLAN_ENTITLEMENTS.get(plan_id)
    return list(features) if features is not None else None
