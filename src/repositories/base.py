"""Record store contract shared by the DynamoDB and SQL backends."""

from abc import ABC, abstractmethod
from typing import List, Optional

from models.customer import Customer
from models.interaction import Interaction


class RecordStore(ABC):
    """Lookup by email, append customers/interactions, update customers by id."""

    @abstractmethod
    def get_customer_by_email(self, email: str) -> Optional[Customer]:
        """Return zero or one customer for an address."""

    @abstractmethod
    def create_customer(self, customer: Customer) -> Customer:
        """Persist a new customer; fails if the email is already known."""

    @abstractmethod
    def update_customer(self, customer: Customer) -> Customer:
        """Overwrite the stored customer identified by ``customer_id``."""

    @abstractmethod
    def append_interaction(self, interaction: Interaction) -> Interaction:
        """
        Persist an interaction; interactions are never rewritten.

        ``interaction.customer_id`` must come from a customer this store
        returned. Backends that can check it cheaply raise ``NotFoundError``
        for an unknown id; the DynamoDB backend, keyed by email, relies on
        the caller.
        """

    @abstractmethod
    def list_interactions(self, customer_id: str, limit: int = 20) -> List[Interaction]:
        """Most recent interactions for a customer, newest first."""
