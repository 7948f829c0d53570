"""Repositories for contacts, contact groups and channels.

This module contains the database interaction logic of the API,
isolated from request handling. Each repository works on one aggregate:
the owning row plus the association rows that belong to it. Dependent
rows are never patched, they are deleted and re-inserted from the
payload on every update.
"""

import json
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from . import models, schemas
from .database import transaction
from .errors import BadRequest, Conflict, NotFound, UnprocessableEntity
from .identifiers import resolve_id

logger = logging.getLogger(__name__)

MSG_PREFIX = schemas.MSG_PREFIX


class Repository:
    """
    Read access shared by all aggregates.

    Subclasses declare the mapped ``model``, the ``entity`` name used in
    messages, the columns a list may be filtered on, the base query and
    the serialization of one row. Rows flagged as deleted are excluded
    from every read through ``visible``.
    """

    model = None
    entity = ""
    soft_delete = True

    def __init__(self, db: Session):
        self.db = db

    @classmethod
    def filter_columns(cls) -> dict:
        raise NotImplementedError

    def base_query(self):
        raise NotImplementedError

    def serialize(self, row) -> dict:
        raise NotImplementedError

    def visible(self, stmt, *tables):
        """Restrict ``stmt`` to rows of ``tables`` that are not soft-deleted."""
        if not self.soft_delete:
            return stmt
        for table in tables or (self.model,):
            stmt = stmt.where(table.deleted.is_(False))
        return stmt

    def resolve(self, identifier: str) -> int | None:
        return resolve_id(self.db, self.model, identifier)

    def require(self, identifier: str) -> int:
        """Return the internal id of ``identifier`` or raise NotFound."""
        entity_id = self.resolve(identifier)
        if entity_id is None:
            raise NotFound(f"{self.entity} not found")
        return entity_id

    def get(self, identifier: str) -> dict:
        """
        Fetch one entity by its external UUID.

        Raises:
            NotFound: If no visible row carries the UUID.

        Returns:
            dict: Serialized entity.
        """
        row = self.db.execute(
            self.base_query().where(self.model.external_uuid == identifier)
        ).first()
        if row is None:
            raise NotFound(f"{self.entity} not found")
        return self.serialize(row)

    def iter_pages(self, condition, page_size: int) -> Iterator[list]:
        """
        Yield serialized rows matching ``condition`` page by page.

        Pages are fetched in id order with an increasing offset until a
        page comes back empty.
        """
        stmt = self.base_query().where(condition).order_by(self.model.id)
        offset = 0
        while True:
            rows = self.db.execute(stmt.limit(page_size).offset(offset)).all()
            if not rows:
                return
            yield [self.serialize(row) for row in rows]
            offset += page_size


class WritableRepository(Repository):
    """
    Create, replace, upsert and delete for aggregates owned by the API.

    Every write runs in one transaction. Subclasses implement how the
    owning row and its dependent rows are inserted, updated and removed.
    """

    def _insert(self, payload) -> int:
        raise NotImplementedError

    def _update(self, entity_id: int, payload) -> None:
        raise NotImplementedError

    def _remove(self, entity_id: int) -> None:
        raise NotImplementedError

    def uuid_taken(self, identifier: str) -> bool:
        """Return True if any row, deleted or not, carries ``identifier``."""
        return resolve_id(self.db, self.model, identifier, include_deleted=True) is not None

    def explain_conflict(self, payload, entity_id: int | None) -> None:
        """
        Raise the error for a secondary key that ``payload`` collides with.

        Called after a unique-constraint violation was rolled back. The
        default implementation knows no secondary keys.
        """

    @contextmanager
    def _writing(self, payload=None):
        scope = {"entity_id": None}
        try:
            with transaction(self.db):
                yield scope
        except IntegrityError:
            logger.warning("Integrity error while writing %s", self.entity, exc_info=True)
            if payload is not None:
                self.explain_conflict(payload, scope["entity_id"])
            raise UnprocessableEntity(f"{self.entity} already exists")

    def create(self, payload) -> tuple[int, str]:
        """
        Insert a new entity with the identifier chosen by the client.

        Raises:
            UnprocessableEntity: If the identifier is already in use.

        Returns:
            tuple[int, str]: Internal id and external UUID.
        """
        with self._writing(payload):
            if self.uuid_taken(payload.id):
                raise UnprocessableEntity(f"{self.entity} already exists")
            entity_id = self._insert(payload)
        logger.info("Created %s %s", self.entity, payload.id)
        return entity_id, payload.id

    def replace(self, identifier: str, payload) -> tuple[int, str]:
        """
        Replace the entity ``identifier`` by a new one with the payload id.

        Raises:
            UnprocessableEntity: If the payload id equals ``identifier`` or
                is already in use.
            NotFound: If ``identifier`` does not exist.

        Returns:
            tuple[int, str]: Internal id and external UUID of the new entity.
        """
        if payload.id == identifier:
            raise UnprocessableEntity(
                "Identifier mismatch: the payload id must be different from the URL identifier"
            )
        with self._writing(payload) as scope:
            old_id = scope["entity_id"] = self.require(identifier)
            if self.uuid_taken(payload.id):
                raise UnprocessableEntity(f"{self.entity} already exists")
            self._remove(old_id)
            entity_id = self._insert(payload)
        logger.info("Replaced %s %s by %s", self.entity, identifier, payload.id)
        return entity_id, payload.id

    def upsert(self, identifier: str, payload) -> bool:
        """
        Create ``identifier`` or fully replace its content.

        Raises:
            BadRequest: If the payload id differs from ``identifier``.
            UnprocessableEntity: If a deleted row still holds the identifier.

        Returns:
            bool: True if the entity was created, False if updated.
        """
        if payload.id != identifier:
            raise BadRequest("Identifier mismatch")
        with self._writing(payload) as scope:
            entity_id = scope["entity_id"] = self.resolve(identifier)
            if entity_id is None:
                if self.uuid_taken(identifier):
                    raise UnprocessableEntity(f"{self.entity} already exists")
                self._insert(payload)
                created = True
            else:
                self._update(entity_id, payload)
                created = False
        logger.info("%s %s %s", "Created" if created else "Updated", self.entity, identifier)
        return created

    def delete(self, identifier: str) -> None:
        """Delete the entity and its association rows, or raise NotFound."""
        with self._writing():
            self._remove(self.require(identifier))
        logger.info("Deleted %s %s", self.entity, identifier)


class ChannelRepository(Repository):
    """Read-only access to channels."""

    model = models.Channel
    entity = "Channel"

    @classmethod
    def filter_columns(cls) -> dict:
        return {
            "id": models.Channel.external_uuid,
            "name": models.Channel.name,
            "type": models.Channel.type,
        }

    def base_query(self):
        return self.visible(
            select(
                models.Channel.id.label("channel_id"),
                models.Channel.external_uuid.label("id"),
                models.Channel.name,
                models.Channel.type,
                models.Channel.config,
            )
        )

    def serialize(self, row) -> dict:
        return schemas.ChannelOut(
            id=row.id,
            name=row.name,
            type=row.type,
            config=json.loads(row.config) if row.config else None,
        ).model_dump()


class ContactRepository(WritableRepository):
    """Contacts with their addresses and group memberships."""

    model = models.Contact
    entity = "Contact"

    @classmethod
    def filter_columns(cls) -> dict:
        return {
            "id": models.Contact.external_uuid,
            "full_name": models.Contact.full_name,
            "username": models.Contact.username,
        }

    def base_query(self):
        return self.visible(
            select(
                models.Contact.id.label("contact_id"),
                models.Contact.external_uuid.label("id"),
                models.Contact.full_name,
                models.Contact.username,
                models.Channel.external_uuid.label("default_channel"),
            ).outerjoin(
                models.Channel, models.Channel.id == models.Contact.default_channel_id
            )
        )

    def serialize(self, row) -> dict:
        return schemas.ContactOut(
            id=row.id,
            full_name=row.full_name,
            username=row.username,
            default_channel=row.default_channel,
            groups=self.group_identifiers(row.contact_id),
            addresses=self.addresses(row.contact_id),
        ).model_dump()

    def group_identifiers(self, contact_id: int) -> list[str]:
        """Return the UUIDs of the visible groups the contact belongs to."""
        stmt = (
            select(models.Contactgroup.external_uuid)
            .join(
                models.ContactgroupMember,
                models.ContactgroupMember.contactgroup_id == models.Contactgroup.id,
            )
            .where(models.ContactgroupMember.contact_id == contact_id)
            .distinct()
            .order_by(models.Contactgroup.external_uuid)
        )
        stmt = self.visible(stmt, models.Contactgroup, models.ContactgroupMember)
        return list(self.db.scalars(stmt))

    def addresses(self, contact_id: int) -> dict[str, str]:
        """Return the contact's addresses keyed by type."""
        stmt = self.visible(
            select(models.ContactAddress.type, models.ContactAddress.address).where(
                models.ContactAddress.contact_id == contact_id
            ),
            models.ContactAddress,
        )
        return {row.type: row.address for row in self.db.execute(stmt)}

    def _default_channel(self, identifier: str) -> tuple[int, str]:
        channel = self.db.execute(
            self.visible(
                select(models.Channel.id, models.Channel.type).where(
                    models.Channel.external_uuid == identifier
                ),
                models.Channel,
            )
        ).first()
        if channel is None:
            raise UnprocessableEntity(
                f"Channel with identifier {identifier} does not exist"
            )
        return channel.id, channel.type

    def _assert_addresses(self, payload: schemas.ContactIn, channel_type: str) -> None:
        addresses = payload.addresses or {}
        if channel_type != "webhook" and not addresses.get(channel_type):
            raise UnprocessableEntity(
                MSG_PREFIX
                + f"an address according to default_channel type {channel_type} is required"
            )
        if not addresses:
            return
        known = set(
            self.db.scalars(
                select(models.AvailableChannelType.type).where(
                    models.AvailableChannelType.type.in_(list(addresses))
                )
            )
        )
        undefined = [address_type for address_type in addresses if address_type not in known]
        if undefined:
            raise UnprocessableEntity(
                MSG_PREFIX + f"undefined address type {', '.join(undefined)} given"
            )

    def username_taken(self, username: str, contact_id: int | None = None) -> bool:
        stmt = select(models.Contact.id).where(models.Contact.username == username)
        if contact_id is not None:
            stmt = stmt.where(models.Contact.id != contact_id)
        return self.db.execute(stmt.limit(1)).first() is not None

    def assert_unique_username(self, username: str, contact_id: int | None = None) -> None:
        """
        Ensure no other contact uses ``username``.

        Args:
            username (str): Username to check.
            contact_id (int | None): Contact to exclude when updating.

        Raises:
            Conflict: If another contact already has the username.
        """
        if self.username_taken(username, contact_id):
            raise Conflict(f"Username {username} already exists")

    def explain_conflict(self, payload: schemas.ContactIn, contact_id: int | None) -> None:
        # A concurrent writer may have claimed the username after our check.
        if payload.username and self.username_taken(payload.username, contact_id):
            raise Conflict(f"Username {payload.username} already exists")

    def _checked_values(self, payload: schemas.ContactIn, contact_id: int | None = None) -> dict:
        channel_id, channel_type = self._default_channel(payload.default_channel)
        self._assert_addresses(payload, channel_type)
        if payload.username:
            self.assert_unique_username(payload.username, contact_id)
        return {
            "full_name": payload.full_name,
            "username": payload.username,
            "default_channel_id": channel_id,
        }

    def _add_dependents(self, contact_id: int, payload: schemas.ContactIn) -> None:
        for address_type, address in (payload.addresses or {}).items():
            self.db.add(
                models.ContactAddress(
                    contact_id=contact_id, type=address_type, address=address
                )
            )
        for group in dict.fromkeys(payload.groups or []):
            group_id = resolve_id(self.db, models.Contactgroup, group)
            if group_id is None:
                raise UnprocessableEntity(
                    f"Contact Group with identifier {group} does not exist"
                )
            self.db.add(
                models.ContactgroupMember(contact_id=contact_id, contactgroup_id=group_id)
            )
        self.db.flush()

    def _clear_dependents(self, contact_id: int) -> None:
        self.db.execute(
            delete(models.ContactgroupMember).where(
                models.ContactgroupMember.contact_id == contact_id
            )
        )
        self.db.execute(
            delete(models.ContactAddress).where(
                models.ContactAddress.contact_id == contact_id
            )
        )

    def _insert(self, payload: schemas.ContactIn) -> int:
        contact = models.Contact(
            external_uuid=payload.id, **self._checked_values(payload)
        )
        self.db.add(contact)
        self.db.flush()
        self._add_dependents(contact.id, payload)
        return contact.id

    def _update(self, contact_id: int, payload: schemas.ContactIn) -> None:
        values = self._checked_values(payload, contact_id)
        self.db.execute(
            update(models.Contact).where(models.Contact.id == contact_id).values(**values)
        )
        self._clear_dependents(contact_id)
        self._add_dependents(contact_id, payload)

    def _remove(self, contact_id: int) -> None:
        self._clear_dependents(contact_id)
        self.db.execute(delete(models.Contact).where(models.Contact.id == contact_id))


class ContactgroupRepository(WritableRepository):
    """Contact groups with their member lists."""

    model = models.Contactgroup
    entity = "Contact Group"

    @classmethod
    def filter_columns(cls) -> dict:
        return {
            "id": models.Contactgroup.external_uuid,
            "name": models.Contactgroup.name,
        }

    def base_query(self):
        return self.visible(
            select(
                models.Contactgroup.id.label("contactgroup_id"),
                models.Contactgroup.external_uuid.label("id"),
                models.Contactgroup.name,
            )
        )

    def serialize(self, row) -> dict:
        return schemas.ContactgroupOut(
            id=row.id, name=row.name, users=self.user_identifiers(row.contactgroup_id)
        ).model_dump()

    def user_identifiers(self, contactgroup_id: int) -> list[str]:
        """Return the UUIDs of the visible contacts in the group."""
        stmt = (
            select(models.Contact.external_uuid)
            .join(
                models.ContactgroupMember,
                models.ContactgroupMember.contact_id == models.Contact.id,
            )
            .where(models.ContactgroupMember.contactgroup_id == contactgroup_id)
            .distinct()
            .order_by(models.Contact.external_uuid)
        )
        stmt = self.visible(stmt, models.Contact, models.ContactgroupMember)
        return list(self.db.scalars(stmt))

    def _add_users(self, contactgroup_id: int, users) -> None:
        for user in dict.fromkeys(users or []):
            contact_id = resolve_id(self.db, models.Contact, user)
            if contact_id is None:
                raise UnprocessableEntity(f"Contact with identifier {user} does not exist")
            self.db.add(
                models.ContactgroupMember(
                    contactgroup_id=contactgroup_id, contact_id=contact_id
                )
            )
        self.db.flush()

    def _clear_users(self, contactgroup_id: int) -> None:
        self.db.execute(
            delete(models.ContactgroupMember).where(
                models.ContactgroupMember.contactgroup_id == contactgroup_id
            )
        )

    def _insert(self, payload: schemas.ContactgroupIn) -> int:
        group = models.Contactgroup(external_uuid=payload.id, name=payload.name)
        self.db.add(group)
        self.db.flush()
        self._add_users(group.id, payload.users)
        return group.id

    def _update(self, contactgroup_id: int, payload: schemas.ContactgroupIn) -> None:
        self.db.execute(
            update(models.Contactgroup)
            .where(models.Contactgroup.id == contactgroup_id)
            .values(name=payload.name)
        )
        self._clear_users(contactgroup_id)
        self._add_users(contactgroup_id, payload.users)

    def _remove(self, contactgroup_id: int) -> None:
        self._clear_users(contactgroup_id)
        self.db.execute(
            delete(models.Contactgroup).where(models.Contactgroup.id == contactgroup_id)
        )


def stream_pages(
    session_factory: sessionmaker, repository_cls, condition, page_size: int
) -> Iterator[list]:
    """
    Yield pages from a repository using a session owned by the stream.

    The session is opened on the first page and closed once the stream
    is exhausted or discarded.
    """
    with session_factory() as db:
        yield from repository_cls(db).iter_pages(condition, page_size)
