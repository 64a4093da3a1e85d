"""
Pull recently modified HubSpot records for every account of the managed domain.

Per account, in order:
1. Refresh the access token (best effort; failure is logged)
2. Process contacts, companies, meetings (each isolated; a failure is logged
   and the next entity still runs)
3. Drain the event queue
4. Save the domain

Accounts run one after another. A failing account never stops the loop.
"""

import asyncio
import logging
from functools import partial
from typing import Any, Awaitable, Callable, Optional

from config import settings, utcnow
from connectors.hubspot import HubSpotClient
from connectors.models import DomainRecord, HubSpotAccount
from connectors.processors import build_processors
from connectors.search import RetryingSearchClient
from connectors.tokens import TokenManager, TokenState
from services.domain_store import DomainStore
from services.event_queue import EventBatchQueue, EventSink
from services.sink import HttpAnalyticsSink

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Optional[str]], HubSpotClient]


class SyncOrchestrator:
    """Runs the full HubSpot pull for the managed domain."""

    def __init__(
        self,
        store: Optional[DomainStore] = None,
        sink: Optional[EventSink] = None,
        client_factory: Optional[ClientFactory] = None,
        persistence_enabled: Optional[bool] = None,
        batch_size: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], Any] = utcnow,
    ) -> None:
        self.store = store or DomainStore()
        self.sink = sink or HttpAnalyticsSink()
        self._client_factory: ClientFactory = client_factory or (
            lambda access_token: HubSpotClient(access_token=access_token)
        )
        self.persistence_enabled: bool = (
            settings.SYNC_PERSISTENCE_ENABLED if persistence_enabled is None else persistence_enabled
        )
        self.batch_size = batch_size
        self._sleep = sleep
        self._clock = clock

    async def run(self) -> dict[str, dict[str, Any]]:
        """
        Sync every account of the managed domain.

        Returns:
            Per hub id: ``{"counts": {entity: pushed}, "batches": delivered,
            "failed": [operation, ...]}``
        """
        logger.info("Start pulling data from HubSpot")

        domain = await self.store.load_domain()
        if domain is None:
            logger.warning("No domain found, nothing to sync")
            return {}

        summary: dict[str, dict[str, Any]] = {}
        for account in domain.hubspot_accounts:
            summary[account.hub_id] = await self.sync_account(domain, account)

        logger.info("Finished pulling data from HubSpot", extra={"accounts": len(summary)})
        return summary

    async def sync_account(self, domain: DomainRecord, account: HubSpotAccount) -> dict[str, Any]:
        """Run token refresh, all entity processors and the queue drain for one account."""
        log_context: dict[str, Any] = {"api_key": domain.api_key, "hub_id": account.hub_id}
        logger.info("Start processing account", extra=log_context)

        counts: dict[str, int] = {}
        failed: list[str] = []
        batches: int = 0

        async with self._client_factory(account.access_token) as client:
            token_manager = TokenManager(
                client,
                TokenState(),
                save_tokens=partial(self.store.save_account_tokens, domain),
                clock=self._clock,
            )

            try:
                await token_manager.ensure_fresh_token(account)
            except Exception as e:
                logger.warning(
                    "Token refresh failed, continuing with stored token: %s", e,
                    extra={**log_context, "operation": "refresh_access_token"},
                )

            search_client = RetryingSearchClient(client, token_manager, account, sleep=self._sleep)
            queue = EventBatchQueue(self.sink, batch_size=self.batch_size, context=log_context)
            processors = build_processors(
                client,
                search_client,
                queue,
                save_domain=partial(self.save_domain, domain),
                clock=self._clock,
            )

            for processor in processors:
                operation = f"process_{processor.kind}"
                try:
                    counts[processor.kind] = await processor.process(account)
                except Exception as e:
                    logger.exception(
                        "HubSpot %s sync failed: %s", processor.kind, e,
                        extra={**log_context, "operation": operation},
                    )
                    failed.append(operation)

            try:
                await queue.drain()
            except Exception as e:
                logger.exception(
                    "Queue drain failed: %s", e,
                    extra={**log_context, "operation": "drain_queue"},
                )
                failed.append("drain_queue")

            batches = queue.flushed_batches

        try:
            await self.save_domain(domain)
        except Exception as e:
            logger.exception(
                "Saving domain failed: %s", e,
                extra={**log_context, "operation": "save_domain"},
            )
            failed.append("save_domain")

        logger.info(
            "Finish processing account",
            extra={**log_context, "counts": counts, "batches": batches, "failed": failed},
        )
        return {"counts": counts, "batches": batches, "failed": failed}

    async def save_domain(self, domain: DomainRecord) -> None:
        """Persist sync progress, unless persistence is switched off."""
        if not self.persistence_enabled:
            logger.debug("Domain persistence disabled, skipping save", extra={"domain_id": str(domain.id)})
            return
        await self.store.save_domain(domain)


async def pull_data_from_hubspot(orchestrator: Optional[SyncOrchestrator] = None) -> dict[str, dict[str, Any]]:
    """Entry point used by the scheduled worker task."""
    return await (orchestrator or SyncOrchestrator()).run()
