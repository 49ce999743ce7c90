"""
pawfect/features/entitlements/service.py

Entitlement resolution.

Handles:
- Pure plan -> entitlements derivation (cache-safe, no I/O)
- Plan assignment lookup with an explicit fallback policy
- Per-user entitlements (plan bundle + consumable balances)

The resolver only reads: plan assignments are written by the billing side
and consumables by the consumable ledger.
"""

import logging
from typing import Mapping, Optional

from pawfect.core.config import settings
from pawfect.core.errors import PlanNotFoundError, StoreUnavailableError
from pawfect.core.store import KeyValueStore
from pawfect.features.plans.service import PlanCatalog, get_plan_catalog
from pawfect.features.usage.consumables import ConsumableLedger
from pawfect.models.entitlement import Entitlements, PlanResolution, PlanResolutionSource
from pawfect.models.plan import Plan


logger = logging.getLogger(__name__)


def entitlements_key(user_id: str) -> str:
    return f"entitlements:{user_id}"


def resolve(plan: Plan, *, user_id: Optional[str] = None, consumables: Optional[Mapping[str, int]] = None) -> Entitlements:
    """Derive entitlements from a plan. Same plan, same result."""
    return Entitlements(
        user_id=user_id,
        plan_id=plan.plan_id,
        tier=plan.tier,
        features=plan.features,
        swipe_daily_cap=plan.swipe_daily_cap,
        super_likes_per_day=plan.super_likes_per_day,
        boosts_per_week=plan.boosts_per_week,
        adoption_listing_limit=plan.adoption_listing_limit,
        consumables=dict(consumables or {}),
    )


class EntitlementResolver:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        catalog: Optional[PlanCatalog] = None,
        consumables: Optional[ConsumableLedger] = None,
        default_plan_id: Optional[str] = None,
    ):
        self._store = store
        self._catalog = catalog or get_plan_catalog()
        self._consumables = consumables
        self._default_plan_id = default_plan_id or settings.DEFAULT_PLAN_ID

    @property
    def catalog(self) -> PlanCatalog:
        return self._catalog

    def _default_plan(self) -> Plan:
        if self._catalog.has_plan(self._default_plan_id):
            return self._catalog.get_plan(self._default_plan_id)
        return self._catalog.get_default_plan()

    async def get_user_plan(self, user_id: str) -> PlanResolution:
        """Look up the user's plan; never raises.

        A missing assignment is DEFAULTED, a failed or unusable lookup is
        FALLBACK; both land on the default (most restrictive) plan.
        """
        try:
            data = await self._store.get(entitlements_key(user_id))
        except StoreUnavailableError as exc:
            return self._fallback(user_id, f"store unavailable: {exc}")
        except Exception as exc:
            # Third-party stores may raise their own errors; lookup still never raises
            return self._fallback(user_id, f"store error: {type(exc).__name__}: {exc}")

        if not data:
            return PlanResolution(plan=self._default_plan(), source=PlanResolutionSource.DEFAULTED)

        plan_id = data.get("plan") if isinstance(data, dict) else None
        if not plan_id:
            return self._fallback(user_id, "malformed plan assignment")
        try:
            plan = self._catalog.get_plan(plan_id)
        except PlanNotFoundError as exc:
            return self._fallback(user_id, exc.message)
        return PlanResolution(plan=plan, source=PlanResolutionSource.RESOLVED)

    def _fallback(self, user_id: str, error: str) -> PlanResolution:
        plan = self._default_plan()
        logger.warning(
            "[entitlements] plan lookup fell back to default",
            extra={"user_id": user_id, "plan_id": plan.plan_id, "error": error},
        )
        return PlanResolution(plan=plan, source=PlanResolutionSource.FALLBACK, error=error)

    async def get_user_entitlements(self, user_id: str) -> Entitlements:
        resolution = await self.get_user_plan(user_id)
        balances = {}
        if self._consumables is not None:
            try:
                balances = await self._consumables.balances(user_id)
            except Exception as exc:
                logger.warning(
                    "[entitlements] consumables unavailable",
                    extra={"user_id": user_id, "error": str(exc)},
                )
        return resolve(resolution.plan, user_id=user_id, consumables=balances)
