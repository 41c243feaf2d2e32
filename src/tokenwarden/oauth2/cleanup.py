# Cleanup sweeper for dead codes, tokens and old webhook deliveries.
# Created: 2026-03-02
#
# Each delete is conditioned on the row being logically dead at `now`
# (used, expired, revoked, or a finished delivery past retention), so runs
# may overlap with each other and with live traffic.

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from tokenwarden.oauth2.models import utcnow
from tokenwarden.oauth2.protocol import OAuthStoreProtocol

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    codes: int = 0
    access_tokens: int = 0
    refresh_tokens: int = 0
    deliveries: int = 0

    @property
    def total(self) -> int:
        return self.codes + self.access_tokens + self.refresh_tokens + self.deliveries

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class CleanupSweeper:
    def __init__(
        self,
        store: OAuthStoreProtocol,
        delivery_retention: timedelta | None = timedelta(days=30),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.delivery_retention = delivery_retention
        self._clock = clock

    def sweep(self, now: datetime | None = None) -> CleanupResult:
        now = now or self._clock()
        result = CleanupResult(
            codes=self.store.delete_dead_codes(now),
            access_tokens=self.store.delete_dead_access_tokens(now),
            refresh_tokens=self.store.delete_dead_refresh_tokens(now),
        )
        if self.delivery_retention is not None:
            result.deliveries = self.store.delete_deliveries_before(now - self.delivery_retention)

        if result.total:
            logger.info(
                "Cleanup removed %d codes, %d access tokens, %d refresh tokens, %d deliveries",
                result.codes,
                result.access_tokens,
                result.refresh_tokens,
                result.deliveries,
            )
        return result
