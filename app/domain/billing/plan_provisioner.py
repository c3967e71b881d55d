"""Pro plan provisioning - find-or-create of the single recurring PayPal plan"""

import logging
import time
from typing import Callable, Optional

from ...cache import Cache, cache
from ...config import PAYPAL_PLAN_CACHE_TTL_SECONDS
from .exceptions import PayPalAPIError
from .paypal_service import PRO_PLAN_NAME, PayPalService, paypal_service

logger = logging.getLogger(__name__)

PLAN_CACHE_KEY = "paypal:pro_plan_id"
# Shared entries always expire
SHARED_PLAN_TTL_SECONDS = 3600


class PlanProvisioner:
    """
    Resolves the id of the "BookingGen Pro Monthly" plan.

    Lookup order: instance state, shared cache, remote search by exact
    name, then product + plan creation. Searching before creating keeps
    cold starts from minting a new plan each time.
    """

    def __init__(
        self,
        paypal: PayPalService,
        cache: Optional[Cache] = None,
        ttl_seconds: int = 0,
        plan_name: str = PRO_PLAN_NAME,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.paypal = paypal
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.plan_name = plan_name
        self._clock = clock
        self._plan_id: Optional[str] = None
        self._cached_at: float = 0.0

    @property
    def plan_id(self) -> Optional[str]:
        if self._plan_id and self.ttl_seconds and self._clock() - self._cached_at > self.ttl_seconds:
            logger.info(f"Cached PayPal plan id {self._plan_id} expired, resolving again")
            self._plan_id = None
        return self._plan_id

    def _remember(self, plan_id: str) -> str:
        self._plan_id = plan_id
        self._cached_at = self._clock()
        if self.cache is not None:
            self.cache.set(PLAN_CACHE_KEY, plan_id, ttl=self.ttl_seconds or SHARED_PLAN_TTL_SECONDS)
        return plan_id

    def reset(self) -> None:
        """Forget the resolved id (next call searches PayPal again)"""
        self._plan_id = None
        self._cached_at = 0.0
        if self.cache is not None:
            self.cache.delete(PLAN_CACHE_KEY)

    async def _find_existing_plan(self, access_token: str) -> Optional[str]:
        try:
            plans = await self.paypal.list_plans(access_token)
        except PayPalAPIError as e:
            logger.error(f"Error searching for existing plans: {e}")
            return None

        for plan in plans:
            if plan.get("name") == self.plan_name:
                logger.info(f"Found existing PayPal plan: {plan.get('id')}")
                return plan.get("id")
        return None

    async def get_or_create_plan_id(self) -> str:
        cached = self.plan_id
        if cached:
            return cached

        if self.cache is not None:
            shared = self.cache.get(PLAN_CACHE_KEY)
            if shared:
                logger.info(f"Using PayPal Pro plan from shared cache: {shared}")
                self._plan_id = shared
                self._cached_at = self._clock()
                return shared

        access_token = await self.paypal.get_access_token()

        existing_plan_id = await self._find_existing_plan(access_token)
        if existing_plan_id:
            logger.info(f"Using existing PayPal Pro plan: {existing_plan_id}")
            return self._remember(existing_plan_id)

        logger.info("No existing plan found, creating new PayPal Pro plan...")
        product_id = await self.paypal.create_product(access_token)
        plan_id = await self.paypal.create_plan(access_token, product_id)
        logger.info(f"✅ PayPal Pro plan created successfully: {plan_id}")
        return self._remember(plan_id)


def build_plan_provisioner(paypal: PayPalService) -> PlanProvisioner:
    return PlanProvisioner(paypal, cache=cache, ttl_seconds=PAYPAL_PLAN_CACHE_TTL_SECONDS)


# Singleton instance
plan_provisioner = build_plan_provisioner(paypal_service)
