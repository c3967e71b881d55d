"""
Polling fallback for subscription activation

After the buyer returns from the PayPal approval page the webhook may not
have arrived yet. The poller asks the check-activate endpoint a bounded
number of times and stops at the first confirmed status.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx

logger = logging.getLogger(__name__)

CONFIRMED_STATUSES = {"authenticated", "active"}
GAVE_UP_MESSAGE = "Payment received. Your Pro membership may take up to 5 minutes to activate."

# Strong references to detached polls, dropped when they finish
_background_tasks: set = set()


class PollState(str, enum.Enum):
    WAITING = "waiting"
    RETRY = "retry"
    CONFIRMED = "confirmed"
    GAVE_UP = "gave_up"


@dataclass
class PollResult:
    state: PollState
    attempts: int
    status: Optional[str] = None
    message: Optional[str] = None


class SubscriptionStatusPoller:
    """
    Bounded status poll: wait initial_delay, then check; on a non-terminal
    answer wait interval and check again, up to max_attempts checks.

    `check` is any coroutine function returning the current status string.
    Errors raised by it are logged and count as an attempt.
    """

    def __init__(
        self,
        check: Callable[[], Awaitable[Optional[str]]],
        initial_delay: float = 5.0,
        interval: float = 3.0,
        max_attempts: int = 8,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_state: Optional[Callable[[PollState, int], None]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.check = check
        self.initial_delay = initial_delay
        self.interval = interval
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._on_state = on_state
        self.state = PollState.WAITING
        self.attempts = 0

    def _transition(self, state: PollState) -> None:
        self.state = state
        if self._on_state is not None:
            self._on_state(state, self.attempts)

    async def run(self) -> PollResult:
        status: Optional[str] = None
        self._transition(PollState.WAITING)
        await self._sleep(self.initial_delay)

        while True:
            self.attempts += 1
            try:
                status = await self.check()
            except Exception as e:
                logger.warning(f"Status check {self.attempts}/{self.max_attempts} failed: {e}")
                status = None

            if status and status.lower() in CONFIRMED_STATUSES:
                logger.info(f"Subscription confirmed after {self.attempts} check(s) (status={status})")
                self._transition(PollState.CONFIRMED)
                return PollResult(state=PollState.CONFIRMED, attempts=self.attempts, status=status)

            if self.attempts >= self.max_attempts:
                logger.info(f"Giving up on status polling after {self.attempts} checks")
                self._transition(PollState.GAVE_UP)
                return PollResult(
                    state=PollState.GAVE_UP,
                    attempts=self.attempts,
                    status=status,
                    message=GAVE_UP_MESSAGE,
                )

            self._transition(PollState.RETRY)
            await self._sleep(self.interval)


def start_background_poll(poller: SubscriptionStatusPoller) -> asyncio.Task:
    """Run a poll detached from the caller; cancelling the caller leaves it running"""
    task = asyncio.create_task(poller.run())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


class ActivationClient:
    """Calls POST /subscriptions/check-activate on behalf of a signed-in user"""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout
        self._transport = transport

    async def check_status(self, subscription_id: str) -> str:
        """Map a check-activate response onto a status string"""
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        ) as client:
            response = await client.post(
                "/subscriptions/check-activate",
                headers={"Authorization": f"Bearer {self.access_token}"},
                json={"subscriptionId": subscription_id},
            )
        response.raise_for_status()

        data = response.json()
        if data.get("success"):
            return "active"
        return (data.get("status") or "pending").lower()

    def poller_for(self, subscription_id: str, **kwargs) -> SubscriptionStatusPoller:
        async def check() -> str:
            return await self.check_status(subscription_id)

        return SubscriptionStatusPoller(check, **kwargs)
