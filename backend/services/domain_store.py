"""
Load and persist the managed domain and its HubSpot accounts.

The sync engine works on ``DomainRecord`` (pydantic) copies and writes back
through this store. Token rotations are written per account so they do not
clobber sync progress; ``save_domain`` writes every account document.
"""

import logging
from typing import AsyncContextManager, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified

from connectors.models import DomainRecord, HubSpotAccount
from models.database import get_session
from models.domain import Domain

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


class DomainStore:
    """SQLAlchemy-backed store for the ``domains`` table."""

    def __init__(self, session_factory: SessionFactory = get_session) -> None:
        self._session_factory = session_factory

    async def load_domain(self) -> Optional[DomainRecord]:
        """Load the single managed domain (oldest row), or None when there is none."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Domain).order_by(Domain.created_at).limit(1)
            )
            row = result.scalar_one_or_none()

        if row is None:
            return None

        return DomainRecord(
            id=row.id,
            api_key=row.api_key,
            hubspot_accounts=[
                HubSpotAccount.model_validate(doc) for doc in row.hubspot_accounts or []
            ],
        )

    async def save_domain(self, domain: DomainRecord) -> None:
        """Write every account document of ``domain``."""
        async with self._session_factory() as session:
            row = await session.get(Domain, domain.id)
            if row is None:
                logger.warning("Domain %s no longer exists, not saving", domain.id)
                return
            row.hubspot_accounts = [account.to_document() for account in domain.hubspot_accounts]
            # JSON columns need explicit flag for SQLAlchemy to detect changes
            flag_modified(row, "hubspot_accounts")
            await session.commit()

    async def save_account_tokens(self, domain: DomainRecord, account: HubSpotAccount) -> None:
        """Write only ``account``'s access and refresh tokens."""
        async with self._session_factory() as session:
            row = await session.get(Domain, domain.id)
            if row is None:
                logger.warning("Domain %s no longer exists, not saving tokens", domain.id)
                return

            documents = [dict(doc) for doc in row.hubspot_accounts or []]
            for doc in documents:
                if str(doc.get("hubId")) == account.hub_id:
                    doc["accessToken"] = account.access_token
                    doc["refreshToken"] = account.refresh_token
                    break
            else:
                logger.warning(
                    "Account not found on domain, not saving tokens",
                    extra={"hub_id": account.hub_id, "domain_id": str(domain.id)},
                )
                return

            row.hubspot_accounts = documents
            flag_modified(row, "hubspot_accounts")
            await session.commit()
