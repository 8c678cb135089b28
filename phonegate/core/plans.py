from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    requests_limit: int  # per month


PLAN_CATALOG: dict[str, Plan] = {
    "free": Plan("free", "Free", 7),
    "standard": Plan("standard", "Standard", 1000),
    "pro": Plan("pro", "Pro", 10000),
}

DEFAULT_PAID_PLAN = "standard"
FREE_PLAN = "free"


def get_plan(plan_id: str | None) -> Plan | None:
    if not plan_id:
        return None
    return PLAN_CATALOG.get(str(plan_id).strip().lower())


def resolve_plan(hint: str | None, default: str = DEFAULT_PAID_PLAN) -> Plan:
    """Return the catalog entry for ``hint``, else the ``default`` plan.

    Unknown hints are not an error: the order was paid, so a credential is
    issued on the default plan.
    """
    return get_plan(hint) or PLAN_CATALOG[default]
