from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, StringConstraints, TypeAdapter, ValidationError

from .errors import BadRequest
from .identifiers import is_valid_uuid, normalize_uuid

NonEmptyStr = Annotated[str, StringConstraints(strict=True, min_length=1)]
StrictStr = Annotated[str, StringConstraints(strict=True)]

MSG_PREFIX = "Invalid request body: "

_email_adapter = TypeAdapter(EmailStr)


class ContactIn(BaseModel):
    """Request body of contact POST and PUT requests."""

    id: NonEmptyStr
    full_name: NonEmptyStr
    default_channel: NonEmptyStr
    username: Optional[StrictStr] = None
    groups: Optional[List[StrictStr]] = None
    addresses: Optional[Dict[str, StrictStr]] = None


class ContactgroupIn(BaseModel):
    """Request body of contact group POST and PUT requests."""

    id: NonEmptyStr
    name: NonEmptyStr
    users: Optional[List[StrictStr]] = None


class ContactOut(BaseModel):
    """Contact as returned by the API."""

    id: str
    full_name: str
    username: Optional[str] = None
    default_channel: Optional[str] = None
    groups: List[str] = []
    addresses: Dict[str, str] = {}


class ContactgroupOut(BaseModel):
    """Contact group as returned by the API."""

    id: str
    name: str
    users: List[str] = []


class ChannelOut(BaseModel):
    """Channel as returned by the API, with its decoded configuration."""

    id: str
    name: str
    type: str
    config: Any = None


class SuccessOut(BaseModel):
    """Envelope of a successful create."""

    status: str = "success"
    message: str


class ErrorOut(BaseModel):
    """Error envelope of every failed request."""

    status: str = "error"
    message: str


def _join_fields(fields: List[str]) -> str:
    if len(fields) == 1:
        return f"the field {fields[0]}"
    return "the fields " + ", ".join(fields[:-1]) + " and " + fields[-1]


def _validate(model, data: dict, list_messages: dict):
    """Validate ``data`` against ``model``, turning errors into one BadRequest.

    Missing or malformed required fields are reported together. Errors of
    optional list or mapping fields use the message from ``list_messages``.
    """
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        errors = exc.errors()

    required = [
        name for name, info in model.model_fields.items() if info.is_required()
    ]
    failed = {err["loc"][0] for err in errors if err["loc"]}
    missing = [name for name in required if name in failed]
    if missing:
        raise BadRequest(
            MSG_PREFIX + _join_fields(missing) + " must be present and of type string"
        )

    loc = errors[0]["loc"] or ("body",)
    field, nested = loc[0], len(loc) > 1
    message = list_messages.get((field, nested)) or list_messages.get((field, False))
    raise BadRequest(MSG_PREFIX + (message or f"invalid value for {field}"))


def parse_contact(data: dict) -> ContactIn:
    """
    Validate a contact request body.

    Identifiers are checked for UUID form and normalized to lower case.
    Checks that need the database (existing channel, group or address
    type) are left to the repository.

    Raises:
        BadRequest: On the first request-shape problem found.

    Returns:
        ContactIn: Validated payload.
    """
    payload = _validate(
        ContactIn,
        data,
        {
            ("username", False): "expects username to be of type string",
            ("groups", False): "expects groups to be an array",
            ("groups", True): "an invalid group identifier format given",
            ("addresses", False): "expects addresses to be an object of strings",
        },
    )

    if not is_valid_uuid(payload.id):
        raise BadRequest(MSG_PREFIX + "given id is not a valid UUID")
    if not is_valid_uuid(payload.default_channel):
        raise BadRequest(MSG_PREFIX + "given default_channel is not a valid UUID")
    for group in payload.groups or []:
        if not is_valid_uuid(group):
            raise BadRequest(
                MSG_PREFIX + f"the group identifier {group} is not a valid UUID"
            )

    email = (payload.addresses or {}).get("email")
    if email:
        try:
            _email_adapter.validate_python(email)
        except ValidationError:
            raise BadRequest(MSG_PREFIX + "an invalid email address given")

    payload.id = normalize_uuid(payload.id)
    payload.default_channel = normalize_uuid(payload.default_channel)
    if payload.groups:
        payload.groups = [normalize_uuid(group) for group in payload.groups]
    if payload.username == "":
        payload.username = None
    return payload


def parse_contactgroup(data: dict) -> ContactgroupIn:
    """Validate a contact group request body, see ``parse_contact``."""
    payload = _validate(
        ContactgroupIn,
        data,
        {
            ("users", False): "expects users to be an array",
            ("users", True): "user identifiers must be valid UUIDs",
        },
    )

    if not is_valid_uuid(payload.id):
        raise BadRequest(MSG_PREFIX + "given id is not a valid UUID")
    for user in payload.users or []:
        if not is_valid_uuid(user):
            raise BadRequest(MSG_PREFIX + "user identifiers must be valid UUIDs")

    payload.id = normalize_uuid(payload.id)
    if payload.users:
        payload.users = [normalize_uuid(user) for user in payload.users]
    return payload
