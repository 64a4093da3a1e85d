"""
Entity processors: contacts, companies and meetings.

Each processor sweeps its entity kind with ``WindowPaginator``, resolves the
page's associations in one batch, turns every record into a
``NormalizedEvent`` and pushes it onto the event queue. Once the sweep is
complete the account's ``last_pulled_dates`` for that kind is set to the
instant the sweep started.

A record is "Created" when it was created after the pre-sweep
``last_pulled_date`` (or when the kind has never been pulled), otherwise
"Updated". Created events are dated by ``createdAt``, updated ones by
``updatedAt``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Mapping, Optional

from config import utcnow
from connectors.associations import AssociationResolver
from connectors.hubspot import HubSpotClient
from connectors.models import ContactRef, HubSpotAccount, NormalizedEvent, RawRecord
from connectors.pagination import WindowPaginator
from connectors.search import RetryingSearchClient
from services.event_queue import EventBatchQueue

logger = logging.getLogger(__name__)

# Company action dates are shifted back by two seconds. The reason is not
# known (clock skew? ordering against contact events?); keep it scoped to
# companies until someone confirms what it is for.
COMPANY_ACTION_DATE_OFFSET: timedelta = timedelta(milliseconds=2000)

Transform = Callable[[RawRecord, Mapping[str, Any], Optional[datetime]], Optional[NormalizedEvent]]
ResolveAssociations = Callable[[AssociationResolver, list[str]], Awaitable[Mapping[str, Any]]]


def filter_null_values(values: Mapping[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is None."""
    return {key: value for key, value in values.items() if value is not None}


def is_created(record: RawRecord, last_pulled_date: Optional[datetime]) -> bool:
    return last_pulled_date is None or record.created_at > last_pulled_date


def classify(
    record: RawRecord,
    last_pulled_date: Optional[datetime],
    created_label: str,
    updated_label: str,
) -> tuple[str, datetime]:
    """Return the lifecycle label and action date for a record."""
    if is_created(record, last_pulled_date):
        return created_label, record.created_at
    return updated_label, record.updated_at


def _parse_score(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


# ---------------------------------------------------------------------------
# Transforms
# ---------------------------------------------------------------------------


def transform_contact(
    record: RawRecord,
    company_ids: Mapping[str, str],
    last_pulled_date: Optional[datetime],
) -> Optional[NormalizedEvent]:
    """Contact -> "Contact Created"/"Contact Updated"; skipped without an email."""
    email = record.prop("email")
    if not email:
        return None

    action_name, action_date = classify(
        record, last_pulled_date, "Contact Created", "Contact Updated"
    )
    first_name = record.prop("firstname") or ""
    last_name = record.prop("lastname") or ""

    user_properties = {
        "company_id": company_ids.get(record.id),
        "contact_name": f"{first_name} {last_name}".strip(),
        "contact_title": record.prop("jobtitle"),
        "contact_source": record.prop("hs_analytics_source"),
        "contact_status": record.prop("hs_lead_status"),
        "contact_score": _parse_score(record.prop("hubspotscore")),
    }

    return NormalizedEvent(
        action_name=action_name,
        action_date=action_date,
        identity=email,
        properties_key="userProperties",
        properties=filter_null_values(user_properties),
    )


def transform_company(
    record: RawRecord,
    _associations: Mapping[str, Any],
    last_pulled_date: Optional[datetime],
) -> Optional[NormalizedEvent]:
    """Company -> "Company Created"/"Company Updated"."""
    if not record.properties:
        return None

    action_name, action_date = classify(
        record, last_pulled_date, "Company Created", "Company Updated"
    )

    company_properties = {
        "company_id": record.id,
        "company_domain": record.prop("domain"),
        "company_industry": record.prop("industry"),
    }

    return NormalizedEvent(
        action_name=action_name,
        action_date=action_date - COMPANY_ACTION_DATE_OFFSET,
        properties_key="companyProperties",
        properties=filter_null_values(company_properties),
    )


def transform_meeting(
    record: RawRecord,
    contacts: Mapping[str, ContactRef],
    last_pulled_date: Optional[datetime],
) -> Optional[NormalizedEvent]:
    """Meeting -> "Meeting Created"/"Meeting Updated"; skipped without a title."""
    title = record.prop("hs_meeting_title")
    if not title:
        return None

    action_name, action_date = classify(
        record, last_pulled_date, "Meeting Created", "Meeting Updated"
    )
    contact = contacts.get(record.id)

    meeting_properties = {
        "contact_id": contact.id if contact else None,
        "contact_email": contact.email if contact else None,
        "meeting_title": title,
        "meeting_timestamp": record.prop("hs_timestamp"),
    }

    return NormalizedEvent(
        action_name=action_name,
        action_date=action_date,
        identity=record.id,
        properties_key="meetingProperties",
        properties=filter_null_values(meeting_properties),
    )


# ---------------------------------------------------------------------------
# Association wiring
# ---------------------------------------------------------------------------


async def _resolve_contact_companies(
    resolver: AssociationResolver, ids: list[str]
) -> Mapping[str, str]:
    return await resolver.resolve_associations("contacts", "companies", ids)


async def _no_associations(resolver: AssociationResolver, ids: list[str]) -> Mapping[str, Any]:
    return {}


async def _resolve_meeting_contacts(
    resolver: AssociationResolver, ids: list[str]
) -> Mapping[str, ContactRef]:
    return await resolver.resolve_meeting_contacts(ids)


@dataclass(frozen=True)
class EntityConfig:
    """What to request for an entity kind and how to turn it into events."""

    kind: str
    properties: tuple[str, ...]
    sort_property: str
    transform: Transform
    resolve_associations: ResolveAssociations


CONTACTS = EntityConfig(
    kind="contacts",
    properties=(
        "firstname",
        "lastname",
        "jobtitle",
        "email",
        "hubspotscore",
        "hs_lead_status",
        "hs_analytics_source",
        "hs_latest_source",
    ),
    # Contacts expose their modification time under a different name
    sort_property="lastmodifieddate",
    transform=transform_contact,
    resolve_associations=_resolve_contact_companies,
)

COMPANIES = EntityConfig(
    kind="companies",
    properties=(
        "name",
        "domain",
        "country",
        "industry",
        "description",
        "annualrevenue",
        "numberofemployees",
        "hs_lead_status",
    ),
    sort_property="hs_lastmodifieddate",
    transform=transform_company,
    resolve_associations=_no_associations,
)

MEETINGS = EntityConfig(
    kind="meetings",
    properties=(
        "hs_meeting_title",
        "hs_timestamp",
    ),
    sort_property="hs_lastmodifieddate",
    transform=transform_meeting,
    resolve_associations=_resolve_meeting_contacts,
)

ENTITY_CONFIGS: tuple[EntityConfig, ...] = (CONTACTS, COMPANIES, MEETINGS)


class EntityProcessor:
    """Runs one entity kind's incremental sweep for an account."""

    def __init__(
        self,
        config: EntityConfig,
        client: HubSpotClient,
        search_client: RetryingSearchClient,
        queue: EventBatchQueue,
        save_domain: Callable[[], Awaitable[None]],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.client = client
        self.search_client = search_client
        self.paginator = WindowPaginator(search_client)
        self.queue = queue
        self._save_domain = save_domain
        self._clock = clock

    @property
    def kind(self) -> str:
        return self.config.kind

    async def process(self, account: HubSpotAccount) -> int:
        """
        Sweep everything modified since the last pull and queue its events.

        Returns:
            Number of events pushed onto the queue
        """
        last_pulled_date: Optional[datetime] = account.last_pulled_dates.get(self.kind)
        run_started_at: datetime = self._clock()
        resolver = AssociationResolver(self.client, self.search_client)

        pushed: int = 0
        skipped: int = 0
        pages = self.paginator.paginate(
            self.kind,
            last_pulled_date,
            run_started_at,
            self.config.properties,
            self.config.sort_property,
        )
        async for page in pages:
            associations = await self.config.resolve_associations(
                resolver, [record.id for record in page.results]
            )
            for record in page.results:
                event = self.config.transform(record, associations, last_pulled_date)
                if event is None:
                    skipped += 1
                    continue
                self.queue.push(event)
                pushed += 1

        account.last_pulled_dates.set(self.kind, run_started_at)
        await self._save_domain()

        logger.info(
            "Processed %s",
            self.kind,
            extra={"hub_id": account.hub_id, "pushed": pushed, "skipped": skipped},
        )
        return pushed


def build_processors(
    client: HubSpotClient,
    search_client: RetryingSearchClient,
    queue: EventBatchQueue,
    save_domain: Callable[[], Awaitable[None]],
    clock: Callable[[], datetime] = utcnow,
) -> list[EntityProcessor]:
    """Processors in run order: contacts, companies, meetings."""
    return [
        EntityProcessor(config, client, search_client, queue, save_domain, clock=clock)
        for config in ENTITY_CONFIGS
    ]
