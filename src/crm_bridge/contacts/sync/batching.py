"""Cohort construction for outbound sync.

A Cohort is an immutable working set of at most MAX_BATCH_SIZE contacts.
chunked() partitions a backlog snapshot into cohort-sized slices by index, so
each slice is consumed exactly once and the snapshot itself is never mutated.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence

from src.crm_bridge.contacts.schemas import ContactRead
from src.crm_bridge.core.errors import CohortSizeError

# HubSpot batch endpoints accept at most 100 inputs per call
MAX_BATCH_SIZE = 100


def chunked(
    contacts: Sequence[ContactRead], size: int = MAX_BATCH_SIZE
) -> Iterator[tuple[ContactRead, ...]]:
    """Yield consecutive slices of ``contacts`` in order, each at most ``size`` long."""
    if size < 1:
        raise ValueError(f"chunk size must be positive, got {size}")
    for start in range(0, len(contacts), size):
        yield tuple(contacts[start:start + size])


def email_key(email: str) -> str:
    """Comparison key for an email. HubSpot stores and matches emails lowercased."""
    return email.lower()


class Cohort:
    """A bounded group of local contacts reconciled together.

    The email index maps each email key (see email_key) to a local contact
    id, so emails differing only in case count as one. When two members
    share an email the later one wins, while the email keeps the position of
    its first appearance.

    Args:
        contacts: Members of the cohort, at most MAX_BATCH_SIZE.

    Raises:
        CohortSizeError: If more than MAX_BATCH_SIZE contacts are supplied.
    """

    def __init__(self, contacts: Iterable[ContactRead]) -> None:
        self.contacts: tuple[ContactRead, ...] = tuple(contacts)
        if len(self.contacts) > MAX_BATCH_SIZE:
            raise CohortSizeError(len(self.contacts), MAX_BATCH_SIZE)

        self.email_index: dict[str, int | None] = {}
        self._by_id: dict[int | None, ContactRead] = {}
        for contact in self.contacts:
            self._by_id[contact.id] = contact
            if contact.email:
                self.email_index[email_key(contact.email)] = contact.id

    def __len__(self) -> int:
        return len(self.contacts)

    @property
    def emails(self) -> list[str]:
        """Emails to look up remotely, in cohort order, one per email key."""
        return list(self.email_index)

    def net_new(self, known_emails: Iterable[str | None]) -> dict[str, int | None]:
        """Return the email index minus every email HubSpot already knows, ignoring case."""
        known = {email_key(email) for email in known_emails if email}
        return {email: cid for email, cid in self.email_index.items() if email not in known}

    def creation_inputs(self, net_new: dict[str, int | None]) -> list[dict[str, str]]:
        """Build one HubSpot property dict per net-new email, in index order.

        Only non-empty properties are sent.
        """
        inputs: list[dict[str, str]] = []
        for contact_id in net_new.values():
            contact = self._by_id.get(contact_id)
            if contact is None:
                continue
            inputs.append(contact.hubspot_properties())
        return inputs
