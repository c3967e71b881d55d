import json

import pytest

from app.cache import Cache
from app.domain.billing.paypal_service import PRO_PLAN_NAME
from app.domain.billing.plan_provisioner import PLAN_CACHE_KEY, SHARED_PLAN_TTL_SECONDS, PlanProvisioner


class DictRedis:
    """Minimal redis client double backed by a dict"""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    def delete(self, key):
        self.store.pop(key, None)
        self.ttls.pop(key, None)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_warm_instance_creates_plan_once(fake_paypal):
    provisioner = PlanProvisioner(fake_paypal)

    first = await provisioner.get_or_create_plan_id()
    second = await provisioner.get_or_create_plan_id()

    assert first == second == "P-1"
    assert fake_paypal.calls["create_product"] == 1
    assert fake_paypal.calls["create_plan"] == 1
    assert fake_paypal.calls["list_plans"] == 1


@pytest.mark.asyncio
async def test_reset_reuses_existing_remote_plan(fake_paypal):
    provisioner = PlanProvisioner(fake_paypal)
    created = await provisioner.get_or_create_plan_id()

    provisioner.reset()
    assert provisioner.plan_id is None

    assert await provisioner.get_or_create_plan_id() == created
    assert fake_paypal.calls["create_plan"] == 1
    assert fake_paypal.calls["list_plans"] == 2


@pytest.mark.asyncio
async def test_only_exact_name_matches(fake_paypal):
    fake_paypal.plans = [
        {"id": "P-OLD", "name": "BookingGen Pro Monthly (legacy)"},
        {"id": "P-OTHER", "name": "Something else"},
    ]
    plan_id = await PlanProvisioner(fake_paypal).get_or_create_plan_id()

    assert plan_id not in {"P-OLD", "P-OTHER"}
    assert fake_paypal.calls["create_plan"] == 1


@pytest.mark.asyncio
async def test_existing_plan_found_by_name(fake_paypal):
    fake_paypal.plans = [{"id": "P-EXISTING", "name": PRO_PLAN_NAME}]

    assert await PlanProvisioner(fake_paypal).get_or_create_plan_id() == "P-EXISTING"
    assert fake_paypal.calls["create_product"] == 0
    assert fake_paypal.calls["create_plan"] == 0


@pytest.mark.asyncio
async def test_failed_listing_falls_through_to_create(fake_paypal):
    fake_paypal.fail_list = True

    assert await PlanProvisioner(fake_paypal).get_or_create_plan_id() == "P-1"
    assert fake_paypal.calls["create_plan"] == 1


@pytest.mark.asyncio
async def test_ttl_expiry_resolves_again(fake_paypal):
    clock = FakeClock()
    provisioner = PlanProvisioner(fake_paypal, ttl_seconds=60, clock=clock)

    await provisioner.get_or_create_plan_id()
    clock.now += 30
    await provisioner.get_or_create_plan_id()
    assert fake_paypal.calls["list_plans"] == 1

    clock.now += 31
    assert await provisioner.get_or_create_plan_id() == "P-1"
    assert fake_paypal.calls["list_plans"] == 2
    assert fake_paypal.calls["create_plan"] == 1


@pytest.mark.asyncio
async def test_shared_cache_is_written_and_adopted(fake_paypal):
    redis_client = DictRedis()
    shared = Cache(client=redis_client)

    first = PlanProvisioner(fake_paypal, cache=shared, ttl_seconds=300)
    plan_id = await first.get_or_create_plan_id()
    assert json.loads(redis_client.store[PLAN_CACHE_KEY]) == plan_id
    assert redis_client.ttls[PLAN_CACHE_KEY] == 300

    # Another instance (a second worker) picks the id up without touching PayPal
    second = PlanProvisioner(fake_paypal, cache=shared)
    tokens_before = fake_paypal.calls["get_access_token"]
    assert await second.get_or_create_plan_id() == plan_id
    assert fake_paypal.calls["get_access_token"] == tokens_before


@pytest.mark.asyncio
async def test_auth_failure_propagates(fake_paypal):
    from app.domain.billing.exceptions import AuthError

    fake_paypal.fail_token = True
    with pytest.raises(AuthError):
        await PlanProvisioner(fake_paypal).get_or_create_plan_id()


@pytest.mark.asyncio
async def test_shared_cache_entry_expires_without_instance_ttl(fake_paypal):
    redis_client = DictRedis()
    fake_paypal.plans = [{"id": "P-OLD", "name": PRO_PLAN_NAME}]

    await PlanProvisioner(fake_paypal, cache=Cache(client=redis_client)).get_or_create_plan_id()

    assert redis_client.ttls[PLAN_CACHE_KEY] == SHARED_PLAN_TTL_SECONDS

    # Redis drops the key once the TTL runs out; a new worker searches PayPal again
    fake_paypal.plans = [{"id": "P-NEW", "name": PRO_PLAN_NAME}]
    redis_client.delete(PLAN_CACHE_KEY)

    restarted = PlanProvisioner(fake_paypal, cache=Cache(client=redis_client))
    assert await restarted.get_or_create_plan_id() == "P-NEW"
    assert fake_paypal.calls["list_plans"] == 2


@pytest.mark.asyncio
async def test_reset_clears_shared_cache(fake_paypal):
    redis_client = DictRedis()
    shared = Cache(client=redis_client)
    fake_paypal.plans = [{"id": "P-OLD", "name": PRO_PLAN_NAME}]

    provisioner = PlanProvisioner(fake_paypal, cache=shared)
    assert await provisioner.get_or_create_plan_id() == "P-OLD"

    fake_paypal.plans = [{"id": "P-NEW", "name": PRO_PLAN_NAME}]
    provisioner.reset()
    assert PLAN_CACHE_KEY not in redis_client.store

    restarted = PlanProvisioner(fake_paypal, cache=shared)
    assert await restarted.get_or_create_plan_id() == "P-NEW"
