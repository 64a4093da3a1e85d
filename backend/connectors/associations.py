"""
Batch association resolution between CRM object kinds.

One association read is issued per page of records, never per record. When a
record is associated with several targets only the first target HubSpot
returns is kept; records without any target are left out of the map.
"""

import logging
from typing import Iterable

from connectors.hubspot import HubSpotClient
from connectors.models import ContactRef
from connectors.search import RetryingSearchClient

logger = logging.getLogger(__name__)


class AssociationResolver:
    """Resolves associations for one entity sweep.

    Holds a contact id -> email cache so meetings pointing at the same
    contacts across pages only look each contact up once per run.
    """

    def __init__(self, client: HubSpotClient, search_client: RetryingSearchClient) -> None:
        self.client = client
        self.search_client = search_client
        self._contact_emails: dict[str, str | None] = {}

    async def resolve_associations(
        self,
        source_kind: str,
        target_kind: str,
        ids: Iterable[str],
    ) -> dict[str, str]:
        """Map each source id to its first associated target id."""
        id_list: list[str] = list(ids)
        if not id_list:
            return {}

        results = await self.client.batch_read_associations(source_kind, target_kind, id_list)

        mapping: dict[str, str] = {}
        for result in results:
            if not result.from_ or not result.from_.id:
                continue
            targets = [t.id for t in result.to if t.id]
            if targets:
                mapping[result.from_.id] = targets[0]
        return mapping

    async def resolve_meeting_contacts(self, meeting_ids: Iterable[str]) -> dict[str, ContactRef]:
        """Map each meeting id to its first contact, with the contact's email."""
        meeting_contacts = await self.resolve_associations("meetings", "contacts", meeting_ids)

        missing: list[str] = list(dict.fromkeys(
            contact_id for contact_id in meeting_contacts.values()
            if contact_id not in self._contact_emails
        ))
        if missing:
            await self._load_contact_emails(missing)

        return {
            meeting_id: ContactRef(id=contact_id, email=self._contact_emails.get(contact_id))
            for meeting_id, contact_id in meeting_contacts.items()
        }

    async def _load_contact_emails(self, contact_ids: list[str]) -> None:
        query = {
            "filterGroups": [{
                "filters": [{
                    "propertyName": "hs_object_id",
                    "operator": "IN",
                    "values": contact_ids,
                }],
            }],
            "properties": ["email"],
            "limit": 100,
        }
        page = await self.search_client.search("contacts", query)
        for contact in page.results:
            self._contact_emails[contact.id] = contact.prop("email")

        logger.debug(
            "Loaded contact emails for meeting associations",
            extra={"requested": len(contact_ids), "found": len(page.results)},
        )
