"""Database models for the notifications configuration API.

This module defines SQLAlchemy ORM models used by the application.
Tables carrying a ``deleted`` flag may be soft-deleted by other writers
(the web UI, the daemon); such rows are invisible to the API.
"""

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from .database import Base


class AvailableChannelType(Base):
    """
    Catalog entry of a channel plugin known to the daemon.

    The ``type`` doubles as the address type of contact addresses.
    """

    __tablename__ = "available_channel_type"

    type = Column(String(255), primary_key=True)
    name = Column(String(255), nullable=False)
    version = Column(String(255), nullable=False, default="0.0.0")
    author = Column(String(255), nullable=False, default="")


class Channel(Base):
    """A configured notification channel, e.g. a mail server or webhook."""

    __tablename__ = "channel"

    id = Column(Integer, primary_key=True)
    external_uuid = Column(String(36), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False, index=True)
    type = Column(
        String(255), ForeignKey("available_channel_type.type"), nullable=False
    )
    #: Type specific configuration, stored as JSON text
    config = Column(Text, nullable=True)
    deleted = Column(Boolean, default=False, nullable=False)


class Contact(Base):
    """
    SQLAlchemy model representing a notification recipient.

    A contact always has a default channel and may own addresses and
    belong to contact groups.
    """

    __tablename__ = "contact"

    id = Column(Integer, primary_key=True)
    external_uuid = Column(String(36), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False, index=True)
    username = Column(String(254), unique=True, nullable=True)
    default_channel_id = Column(Integer, ForeignKey("channel.id"), nullable=False)
    deleted = Column(Boolean, default=False, nullable=False)


class ContactAddress(Base):
    """Delivery address of a contact for one channel type."""

    __tablename__ = "contact_address"
    __table_args__ = (UniqueConstraint("contact_id", "type", name="uq_contact_type"),)

    id = Column(Integer, primary_key=True)
    contact_id = Column(
        Integer, ForeignKey("contact.id", ondelete="CASCADE"), nullable=False
    )
    type = Column(String(255), nullable=False)
    address = Column(String(255), nullable=False)
    deleted = Column(Boolean, default=False, nullable=False)


class Contactgroup(Base):
    """A named set of contacts."""

    __tablename__ = "contactgroup"

    id = Column(Integer, primary_key=True)
    external_uuid = Column(String(36), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False, index=True)
    deleted = Column(Boolean, default=False, nullable=False)


class ContactgroupMember(Base):
    """Association row: a contact belongs to a contact group."""

    __tablename__ = "contactgroup_member"

    contactgroup_id = Column(
        Integer,
        ForeignKey("contactgroup.id", ondelete="CASCADE"),
        primary_key=True,
    )
    contact_id = Column(
        Integer,
        ForeignKey("contact.id", ondelete="CASCADE"),
        primary_key=True,
    )
    deleted = Column(Boolean, default=False, nullable=False)
