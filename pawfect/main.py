"""
pawfect/main.py

Wires the entitlement core around one key-value store.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from pawfect.core.clock import Clock, SystemClock
from pawfect.core.config import Settings, settings, validate_config
from pawfect.core.logging import configure_logging
from pawfect.core.locks import KeyedLock
from pawfect.core.store import KeyValueStore, build_store
from pawfect.features.audit.service import AuditLog
from pawfect.features.billing.memory_provider import InMemoryBillingApi
from pawfect.features.billing.provider import BillingApi
from pawfect.features.entitlements.service import EntitlementResolver
from pawfect.features.gate.listings import StoredListingDirectory
from pawfect.features.gate.service import ActionGate
from pawfect.features.plans.service import PlanCatalog, get_plan_catalog
from pawfect.features.subscriptions.service import SubscriptionService
from pawfect.features.usage.consumables import ConsumableLedger
from pawfect.features.usage.service import UsageCounterStore
from pawfect.models.subscription import SubscriptionEvent

logger = logging.getLogger(__name__)


@dataclass
class EntitlementCore:
    store: KeyValueStore
    catalog: PlanCatalog
    consumables: ConsumableLedger
    resolver: EntitlementResolver
    usage: UsageCounterStore
    gate: ActionGate
    audit_log: AuditLog
    billing: BillingApi
    subscriptions: SubscriptionService


def build_core(
    *,
    settings_obj: Optional[Settings] = None,
    store: Optional[KeyValueStore] = None,
    clock: Optional[Clock] = None,
    billing: Optional[BillingApi] = None,
    catalog: Optional[PlanCatalog] = None,
    event_sink: Optional[Callable[[SubscriptionEvent], None]] = None,
) -> EntitlementCore:
    cfg = settings_obj or settings
    clock = clock or SystemClock()
    store = store or build_store(cfg, clock=clock)
    catalog = catalog or get_plan_catalog()

    consumables = ConsumableLedger(store, locks=KeyedLock())
    resolver = EntitlementResolver(store, catalog=catalog, consumables=consumables, default_plan_id=cfg.DEFAULT_PLAN_ID)
    usage = UsageCounterStore(
        store,
        resolver,
        clock=clock,
        consumables=consumables,
        idempotency_ttl_seconds=cfg.USAGE_IDEMPOTENCY_TTL_SECONDS,
    )
    gate = ActionGate(resolver, usage, listings=StoredListingDirectory(store))
    audit_log = AuditLog(store, enabled=cfg.AUDIT_ENABLED)
    billing = billing or InMemoryBillingApi(
        store,
        clock=clock,
        catalog=catalog,
        consumables=consumables,
        audit_log=audit_log,
    )
    subscriptions = SubscriptionService(
        billing,
        audit_log=audit_log,
        catalog=catalog,
        clock=clock,
        event_sink=event_sink,
    )
    return EntitlementCore(
        store=store,
        catalog=catalog,
        consumables=consumables,
        resolver=resolver,
        usage=usage,
        gate=gate,
        audit_log=audit_log,
        billing=billing,
        subscriptions=subscriptions,
    )


def startup(settings_obj: Optional[Settings] = None) -> EntitlementCore:
    """Process entry point: configure logging, validate config, build the core."""
    cfg = settings_obj or settings
    configure_logging(cfg.ENV)
    validate_config(settings_obj=cfg)
    core = build_core(settings_obj=cfg)
    logger.info("entitlement core ready", extra={"kv_backend": cfg.KV_BACKEND, "env": cfg.ENV})
    return core
