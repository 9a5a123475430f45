"""
Client model.

WHAT: The agency's customer a proposal is addressed to.

WHY: Proposals and invoices both reference a client, and client-facing
notifications (proposal sent, invoice activated) need the client's email.
The full client directory (contacts, portal accounts) lives elsewhere; this
table holds only what the proposal lifecycle needs.
"""

from typing import Optional
from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import Mapped

from agency_portal.models.base import Base, TimestampMixin


class Client(Base, TimestampMixin):
    """
    Agency client record.

    Attributes:
        id: Primary key
        name: Contact name
        company: Company name (optional)
        email: Address for client-facing notifications
    """

    __tablename__ = "clients"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    name: Mapped[str] = Column(String(255), nullable=False, comment="Primary contact name")
    company: Mapped[Optional[str]] = Column(String(255), nullable=True, comment="Company name")
    email: Mapped[Optional[str]] = Column(
        String(255),
        nullable=True,
        index=True,
        comment="Recipient for client-facing notifications",
    )

    @property
    def display_name(self) -> str:
        """Company name when present, otherwise the contact name."""
        return self.company or self.name

    def __repr__(self) -> str:
        return f"<Client(id={self.id}, name='{self.name}')>"
