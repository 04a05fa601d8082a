"""Cooldown, daily spend cap and manual confirmation gating.

Each configuration owns one safety state (last trade time, spend today)
behind its own lock. :meth:`SafetyController.authorize` checks and
updates that state in one critical section and never suspends, so two
concurrent matches cannot both pass the cap before either records its
spend.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal

from token_sniper.detector.models import SniperConfig, TokenMatch

logger = logging.getLogger(__name__)

DEFAULT_CONFIRMATION_TIMEOUT_SECONDS = 120.0
DEFAULT_MAX_PENDING = 50

REASON_COOLDOWN = "cooldown"
REASON_DAILY_CAP = "daily cap"
REASON_PENDING_LIMIT = "pending limit"
REASON_CONFIRMATION_REJECTED = "confirmation rejected"
REASON_CONFIRMATION_TIMEOUT = "confirmation timeout"


@dataclass(frozen=True)
class SafetyRejection:
    """A withheld trade. Not an error."""

    config_id: str
    reason: str
    detail: str = ""

    def __str__(self) -> str:
        return f"{self.reason}: {self.detail}" if self.detail else self.reason


@dataclass(frozen=True)
class Reservation:
    """Spend and cooldown recorded for one authorization.

    ``previous_trade_timestamp`` lets a refund restore the cooldown when no
    later authorization has moved it.
    """

    config_id: str
    amount: Decimal
    timestamp: datetime
    previous_trade_timestamp: datetime | None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class PendingConfirmation:
    """An authorized match waiting for an external approve/reject."""

    id: str
    match: TokenMatch
    reservation: Reservation
    created_at: datetime
    future: asyncio.Future[bool] = field(repr=False)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "match": self.match.to_dict(),
            "amount": str(self.reservation.amount),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class _ConfigState:
    lock: threading.Lock
    day: date
    spend_today: Decimal
    last_trade_timestamp: datetime | None


@dataclass(frozen=True)
class SafetySnapshot:
    config_id: str
    spend_today: Decimal
    last_trade_timestamp: datetime | None


class SafetyController:
    """Authorize trades per configuration.

    Checks, in order:

    - cooldown: ``now - last_trade_timestamp >= cooldown_period``
    - daily cap: ``spend_today + buy_amount <= max_daily_spend``

    On success the spend and trade time are recorded immediately and a
    :class:`Reservation` is returned. One authorization covers every wallet
    of the config.

    Configs with ``require_confirmation`` go through
    :meth:`request_confirmation` / :meth:`wait_for_confirmation`. A rejected
    or expired confirmation refunds its reservation.

    Example:
        ```python
        decision = safety.authorize(match.config)
        if isinstance(decision, SafetyRejection):
            return
        if match.config.require_confirmation:
            pending = safety.request_confirmation(match, decision)
            if not await safety.wait_for_confirmation(pending):
                return
        ```
    """

    def __init__(
        self,
        *,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT_SECONDS,
        max_pending: int = DEFAULT_MAX_PENDING,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._confirmation_timeout = confirmation_timeout
        self._max_pending = max_pending
        self._clock = clock or (lambda: datetime.now(UTC))
        self._states: dict[str, _ConfigState] = {}
        self._states_lock = threading.Lock()
        self._pending: dict[str, PendingConfirmation] = {}

    def _state(self, config: SniperConfig, today: date) -> _ConfigState:
        with self._states_lock:
            state = self._states.get(config.id)
            if state is None:
                seeded_spend = (
                    config.cumulative_spend_today if config.last_updated.date() == today else Decimal("0")
                )
                state = _ConfigState(
                    lock=threading.Lock(),
                    day=today,
                    spend_today=seeded_spend,
                    last_trade_timestamp=config.last_trade_timestamp,
                )
                self._states[config.id] = state
            return state

    def snapshot(self, config_id: str) -> SafetySnapshot | None:
        state = self._states.get(config_id)
        if state is None:
            return None
        with state.lock:
            return SafetySnapshot(
                config_id=config_id,
                spend_today=state.spend_today,
                last_trade_timestamp=state.last_trade_timestamp,
            )

    def forget(self, config_id: str) -> None:
        """Drop the state of a deleted configuration."""
        with self._states_lock:
            self._states.pop(config_id, None)

    def authorize(self, config: SniperConfig, *, now: datetime | None = None) -> Reservation | SafetyRejection:
        now = now or self._clock()
        state = self._state(config, now.date())
        with state.lock:
            if state.day != now.date():
                state.day = now.date()
                state.spend_today = Decimal("0")

            if state.last_trade_timestamp is not None:
                elapsed = (now - state.last_trade_timestamp).total_seconds()
                if elapsed < config.cooldown_period:
                    return SafetyRejection(
                        config.id,
                        REASON_COOLDOWN,
                        f"{elapsed:.0f}s since last trade, cooldown {config.cooldown_period}s",
                    )

            projected = state.spend_today + config.buy_amount
            if projected > config.max_daily_spend:
                return SafetyRejection(
                    config.id,
                    REASON_DAILY_CAP,
                    f"spent {state.spend_today} + {config.buy_amount} exceeds {config.max_daily_spend}",
                )

            reservation = Reservation(
                config_id=config.id,
                amount=config.buy_amount,
                timestamp=now,
                previous_trade_timestamp=state.last_trade_timestamp,
            )
            state.spend_today = projected
            state.last_trade_timestamp = now

        logger.info(
            "Authorized %s SOL for config %s (spent today %s / %s)",
            config.buy_amount,
            config.name,
            projected,
            config.max_daily_spend,
        )
        return reservation

    def refund(self, reservation: Reservation) -> None:
        """Return a reservation's spend and, if unchanged since, its cooldown."""
        state = self._states.get(reservation.config_id)
        if state is None:
            return
        with state.lock:
            if state.day == reservation.timestamp.date():
                state.spend_today = max(Decimal("0"), state.spend_today - reservation.amount)
            if state.last_trade_timestamp == reservation.timestamp:
                state.last_trade_timestamp = reservation.previous_trade_timestamp
        logger.info("Refunded %s SOL for config %s", reservation.amount, reservation.config_id)

    # Confirmation workflow

    def pending_confirmations(self) -> list[PendingConfirmation]:
        return list(self._pending.values())

    def request_confirmation(
        self, match: TokenMatch, reservation: Reservation
    ) -> PendingConfirmation | SafetyRejection:
        """Park an authorized match until :meth:`approve` or :meth:`reject`.

        Must be called from the running event loop.
        """
        if len(self._pending) >= self._max_pending:
            self.refund(reservation)
            return SafetyRejection(match.config_id, REASON_PENDING_LIMIT, f"{self._max_pending} pending")
        pending = PendingConfirmation(
            id=uuid.uuid4().hex,
            match=match,
            reservation=reservation,
            created_at=self._clock(),
            future=asyncio.get_running_loop().create_future(),
        )
        self._pending[pending.id] = pending
        logger.info("Match %s on %s awaits confirmation (%s)", match.pair.symbol, match.config.name, pending.id)
        return pending

    def approve(self, confirmation_id: str) -> bool:
        return self._resolve(confirmation_id, True)

    def reject(self, confirmation_id: str) -> bool:
        return self._resolve(confirmation_id, False)

    def _resolve(self, confirmation_id: str, approved: bool) -> bool:
        pending = self._pending.get(confirmation_id)
        if pending is None or pending.future.done():
            return False
        pending.future.set_result(approved)
        return True

    async def wait_for_confirmation(
        self, pending: PendingConfirmation, *, timeout: float | None = None
    ) -> bool | SafetyRejection:
        """Wait for the decision on ``pending``.

        Returns:
            True when approved; a SafetyRejection when rejected or expired,
            after refunding the reservation.
        """
        timeout = self._confirmation_timeout if timeout is None else timeout
        try:
            approved = await asyncio.wait_for(asyncio.shield(pending.future), timeout=timeout)
        except TimeoutError:
            approved = None
        except asyncio.CancelledError:
            self.refund(pending.reservation)
            raise
        finally:
            self._pending.pop(pending.id, None)
            if not pending.future.done():
                pending.future.cancel()

        if approved:
            logger.info("Confirmation %s approved", pending.id)
            return True
        self.refund(pending.reservation)
        reason = REASON_CONFIRMATION_TIMEOUT if approved is None else REASON_CONFIRMATION_REJECTED
        logger.info("Confirmation %s withdrawn: %s", pending.id, reason)
        return SafetyRejection(pending.match.config_id, reason)
