# pawfect/conftest.py
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add repo root to PYTHONPATH
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from pawfect.core.clock import FixedClock
from pawfect.core.config import Settings
from pawfect.core.store import InMemoryKeyValueStore
from pawfect.features.plans.service import PlanCatalog
from pawfect.main import build_core
from pawfect.models.plan import Plan, PlanTier


# Wednesday of 2024-W02
WEDNESDAY = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return FixedClock(WEDNESDAY)


@pytest.fixture
def store(clock):
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def test_settings():
    return Settings(_env_file=None, KV_BACKEND="memory", REDIS_URL=None, AUDIT_ENABLED=True)


@pytest.fixture
def events():
    return []


@pytest.fixture
def core(store, clock, test_settings, events):
    """Fully wired core over the default plan catalog."""
    return build_core(settings_obj=test_settings, store=store, clock=clock, event_sink=events.append)


@pytest.fixture
def tight_catalog():
    """Catalog with small round caps for boundary tests."""
    return PlanCatalog(
        plans=[
            Plan(
                plan_id="free",
                tier=PlanTier.FREE,
                name="Free",
                is_default=True,
                swipe_daily_cap=10,
                super_likes_per_day=1,
                boosts_per_week=1,
                adoption_listing_limit=1,
            ),
            Plan(
                plan_id="premium",
                tier=PlanTier.PREMIUM,
                name="Premium",
                swipe_daily_cap="unlimited",
                super_likes_per_day=2,
                boosts_per_week=3,
                adoption_listing_limit=3,
            ),
        ],
        aliases={},
    )


@pytest.fixture
def tight_core(store, clock, test_settings, tight_catalog, events):
    return build_core(
        settings_obj=test_settings,
        store=store,
        clock=clock,
        catalog=tight_catalog,
        event_sink=events.append,
    )
