"""Sync aggregator: one member, one provider, three categories at once.

Workflow for ``sync_recent``:
1. Load the member's Integration; anything but ACTIVE short-circuits to
   ``connected=False`` without touching the provider.
2. Refresh an expiring bearer token and persist the new credential.
3. Fan out sleep / activity / readiness fetches concurrently, each bounded
   by ``fetch_timeout_seconds``.  ``RateLimited`` is retried a bounded number
   of times; other errors are final for that category.
4. Fan in: failed categories are ``None`` and listed in ``unavailable``.
5. Record the outcome on the Integration (ERROR on auth failure, otherwise
   last_sync_at / last_sync_status).  The write is guarded on the
   connection read in step 1, so a disconnect or reconnect that lands while
   the fetches are in flight is never overwritten.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Awaitable, Callable, Mapping
from uuid import UUID

from src.integrations.adapters.oura import OuraClient, OuraHandshakeManager
from src.integrations.base import (
    Credential,
    DataCategory,
    Integration,
    IntegrationSource,
    IntegrationStatus,
    MemberRef,
    SyncStatus,
    utc_now,
)
from src.integrations.config_loader import SyncPolicy, get_integrations_config
from src.integrations.errors import (
    AuthExpired,
    IntegrationError,
    ProviderUnavailable,
    RateLimited,
)
from src.integrations.store import ConnectionStore
from src.integrations.sync.normalize import MetricRow, normalize
from src.integrations.sync.summary import SyncSummary, summarize
from src.models.oura import OuraRecord

logger = logging.getLogger("rebate.integrations.sync")

CATEGORIES: tuple[DataCategory, ...] = (
    DataCategory.SLEEP,
    DataCategory.ACTIVITY,
    DataCategory.READINESS,
)


@dataclass
class CategoryOutcome:
    """Result of fetching one category."""

    category: DataCategory
    records: list[OuraRecord] | None = None
    error: IntegrationError | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SyncResult:
    connected: bool
    source: IntegrationSource
    start_date: date | None = None
    end_date: date | None = None
    sleep: list[OuraRecord] | None = None
    activity: list[OuraRecord] | None = None
    readiness: list[OuraRecord] | None = None
    unavailable: dict[str, str] = field(default_factory=dict)
    summary: SyncSummary | None = None
    metrics: list[MetricRow] = field(default_factory=list)
    last_sync_at: datetime | None = None
    last_sync_status: SyncStatus | None = None

    def records(self, category: DataCategory) -> list[OuraRecord] | None:
        return getattr(self, category.value)

    @property
    def succeeded(self) -> bool:
        """Connected and at least one category delivered data."""
        return self.connected and len(self.unavailable) < len(CATEGORIES)


class SyncAggregator:
    """Concurrent category fetch with partial-failure tolerance."""

    def __init__(
        self,
        store: ConnectionStore,
        clients: Mapping[IntegrationSource, OuraClient],
        refreshers: Mapping[IntegrationSource, OuraHandshakeManager] | None = None,
        policy: SyncPolicy | None = None,
        today: Callable[[], date] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the aggregator.

        Args:
            store:      Connection store holding Integration records.
            clients:    Data client per provider.
            refreshers: Token refresher per provider (bearer providers only).
            policy:     Window, timeout and retry settings (defaults to config).
            today:      Returns the current UTC date (injectable for tests).
            sleep:      Awaitable delay used between rate-limit retries.
        """
        self._store = store
        self._clients = dict(clients)
        self._refreshers = dict(refreshers or {})
        self._policy = policy or get_integrations_config().sync
        self._today = today or (lambda: utc_now().date())
        self._sleep = sleep

    def supports(self, source: IntegrationSource) -> bool:
        return source in self._clients

    async def sync_recent(
        self,
        member_id: UUID,
        window_days: int | None = None,
        source: IntegrationSource = IntegrationSource.OURA,
    ) -> SyncResult:
        """Fetch the last ``window_days`` of data for a member.

        Raises:
            ValueError: Unsupported source or window outside
                        ``[0, max_window_days]``.
        """
        if not self.supports(source):
            raise ValueError(f"No data client configured for source '{source.value}'")
        if window_days is None:
            window_days = self._policy.default_window_days
        if not 0 <= window_days <= self._policy.max_window_days:
            raise ValueError(
                f"window_days must be between 0 and {self._policy.max_window_days}"
            )

        integration = await self._store.find_integration(member_id, source)
        if integration is None or not integration.is_active or integration.credential is None:
            logger.debug("No active %s integration for member %s", source.value, member_id)
            return SyncResult(
                connected=False,
                source=source,
                last_sync_at=integration.last_sync_at if integration else None,
                last_sync_status=integration.last_sync_status if integration else None,
            )

        end_date = self._today()
        start_date = end_date - timedelta(days=window_days)

        try:
            credential = await self._ensure_fresh(integration)
        except AuthExpired:
            await self._store.mark_status(
                integration.id,
                IntegrationStatus.ERROR,
                expected_connected_at=integration.connected_at,
            )
            logger.warning(
                "%s refresh rejected for member %s; re-authorization required",
                source.value,
                member_id,
            )
            return SyncResult(
                connected=False,
                source=source,
                last_sync_at=integration.last_sync_at,
                last_sync_status=integration.last_sync_status,
            )
        except IntegrationError as exc:
            outcomes = [CategoryOutcome(c, error=exc) for c in CATEGORIES]
        else:
            if credential is None:
                return SyncResult(connected=False, source=source)
            ref = MemberRef(member_id=member_id, access_token=credential.access_token)
            outcomes = await self._fan_out(self._clients[source], ref, start_date, end_date)

        return await self._record(integration, outcomes, start_date, end_date)

    async def sync_all(
        self, member_id: UUID, window_days: int | None = None
    ) -> list[SyncResult]:
        """Sync every supported provider the member has an active connection to.

        Providers run concurrently.  Providers without a data client (Garmin)
        and providers the member is not connected to are left out.
        """
        results = await asyncio.gather(
            *(self.sync_recent(member_id, window_days, source) for source in self._clients)
        )
        return [r for r in results if r.connected]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_fresh(self, integration: Integration) -> Credential | None:
        """Return a usable credential, or None if the record changed under us."""
        credential = integration.credential
        refresher = self._refreshers.get(integration.source)
        if refresher is None or not credential.is_expired(
            self._policy.token_refresh_buffer_seconds
        ):
            return credential

        logger.info(
            "Refreshing %s token for member %s", integration.source.value, integration.member_id
        )
        refreshed = await refresher.refresh(credential)
        stored = await self._store.update_credential(
            integration.id, refreshed, expected_connected_at=integration.connected_at
        )
        if not stored:
            logger.info(
                "%s integration for member %s changed during refresh; sync abandoned",
                integration.source.value,
                integration.member_id,
            )
            return None
        return refreshed

    async def _fan_out(
        self, client: OuraClient, ref: MemberRef, start_date: date, end_date: date
    ) -> list[CategoryOutcome]:
        tasks = [
            self._fetch_with_retry(client, ref, category, start_date, end_date)
            for category in CATEGORIES
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        outcomes: list[CategoryOutcome] = []
        for category, result in zip(CATEGORIES, results):
            if isinstance(result, CategoryOutcome):
                outcomes.append(result)
            else:
                logger.error(
                    "Unexpected error fetching %s for member %s: %r",
                    category.value,
                    ref.member_id,
                    result,
                )
                outcomes.append(
                    CategoryOutcome(category, error=ProviderUnavailable(str(result)), attempts=1)
                )
        return outcomes

    async def _fetch_with_retry(
        self,
        client: OuraClient,
        ref: MemberRef,
        category: DataCategory,
        start_date: date,
        end_date: date,
    ) -> CategoryOutcome:
        policy = self._policy
        attempts = 0
        while True:
            attempts += 1
            try:
                records = await asyncio.wait_for(
                    client.fetch_category(ref, category, start_date, end_date),
                    timeout=policy.fetch_timeout_seconds,
                )
            except RateLimited as exc:
                if attempts > policy.rate_limit_retries:
                    return CategoryOutcome(category, error=exc, attempts=attempts)
                delay = min(
                    exc.retry_after if exc.retry_after is not None else 1.0,
                    policy.max_retry_delay_seconds,
                )
                logger.info("%s rate limited; retrying in %.1fs", category.value, delay)
                await self._sleep(delay)
            except asyncio.TimeoutError:
                return CategoryOutcome(
                    category,
                    error=ProviderUnavailable(
                        f"{category.value} fetch exceeded {policy.fetch_timeout_seconds}s"
                    ),
                    attempts=attempts,
                )
            except IntegrationError as exc:
                return CategoryOutcome(category, error=exc, attempts=attempts)
            else:
                return CategoryOutcome(category, records=records, attempts=attempts)

    async def _record(
        self,
        integration: Integration,
        outcomes: list[CategoryOutcome],
        start_date: date,
        end_date: date,
    ) -> SyncResult:
        result = SyncResult(
            connected=True,
            source=integration.source,
            start_date=start_date,
            end_date=end_date,
            last_sync_at=integration.last_sync_at,
        )
        for outcome in outcomes:
            if outcome.ok:
                setattr(result, outcome.category.value, outcome.records)
            else:
                result.unavailable[outcome.category.value] = outcome.error.code

        succeeded = sum(1 for o in outcomes if o.ok)
        if succeeded == len(outcomes):
            sync_status = SyncStatus.SUCCESS
        elif succeeded:
            sync_status = SyncStatus.PARTIAL
        else:
            sync_status = SyncStatus.FAILED

        auth_failed = any(isinstance(o.error, AuthExpired) for o in outcomes)
        now = utc_now() if succeeded else None
        recorded = await self._store.mark_status(
            integration.id,
            IntegrationStatus.ERROR if auth_failed else IntegrationStatus.ACTIVE,
            last_sync_at=now,
            last_sync_status=sync_status,
            expected_connected_at=integration.connected_at,
        )

        if recorded:
            if now is not None:
                result.last_sync_at = now
            result.last_sync_status = sync_status
        else:
            logger.info(
                "%s integration for member %s was revoked or reconnected mid-sync; "
                "outcome not recorded",
                integration.source.value,
                integration.member_id,
            )
        result.summary = summarize(result.sleep, result.activity, result.readiness)
        result.metrics = normalize(
            integration.member_id,
            result.sleep,
            result.activity,
            result.readiness,
            integration.source,
        )

        if result.unavailable:
            logger.warning(
                "%s sync for member %s: %s (unavailable: %s)",
                integration.source.value,
                integration.member_id,
                sync_status.value,
                result.unavailable,
            )
        else:
            logger.info(
                "%s sync for member %s: %s",
                integration.source.value,
                integration.member_id,
                sync_status.value,
            )
        return result
