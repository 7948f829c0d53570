"""Versioned REST endpoints of the notifications configuration API.

All methods on ``{API_PREFIX}/{version}/{endpoint}[/{identifier}]`` are
routed to one dispatcher. It looks the endpoint up in ``ENDPOINTS``,
validates the request envelope (headers, body, query string and
identifier) in a fixed order and hands the request to the handler for
its method.
"""

import json
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from . import schemas
from .auth import require_api_permission
from .core import get_settings
from .crud import (
    ChannelRepository,
    ContactgroupRepository,
    ContactRepository,
    Repository,
    stream_pages,
)
from .database import get_db, get_session_factory
from .errors import BadRequest, MethodNotAllowed, NotFound
from .filter_sql import translate
from .filters import parse
from .identifiers import is_valid_uuid, normalize_uuid
from .streaming import JsonStreamResponse

logger = logging.getLogger(__name__)

settings = get_settings()

ROUTED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@dataclass(frozen=True)
class Endpoint:
    """An API endpoint and the operations it supports."""

    name: str
    entity: str
    repository: type[Repository]
    methods: tuple[str, ...]
    response_model: type
    parse_payload: Optional[Callable] = None
    payload_model: Optional[type] = None
    write_errors: tuple[int, ...] = (400, 404, 422)


ENDPOINTS: dict[tuple[str, str], Endpoint] = {
    ("v1", "contacts"): Endpoint(
        name="contacts",
        entity="Contact",
        repository=ContactRepository,
        methods=("GET", "POST", "PUT", "DELETE"),
        response_model=schemas.ContactOut,
        parse_payload=schemas.parse_contact,
        payload_model=schemas.ContactIn,
        write_errors=(400, 404, 409, 422),
    ),
    ("v1", "contact-groups"): Endpoint(
        name="contact-groups",
        entity="Contact Group",
        repository=ContactgroupRepository,
        methods=("GET", "POST", "PUT", "DELETE"),
        response_model=schemas.ContactgroupOut,
        parse_payload=schemas.parse_contactgroup,
        payload_model=schemas.ContactgroupIn,
    ),
    ("v1", "channels"): Endpoint(
        name="channels",
        entity="Channel",
        repository=ChannelRepository,
        methods=("GET",),
        response_model=schemas.ChannelOut,
    ),
}


@dataclass
class ApiRequest:
    """A request that passed envelope validation."""

    endpoint: Endpoint
    identifier: Optional[str]
    query: str
    data: Optional[dict]
    db: Session
    session_factory: sessionmaker


router = APIRouter(
    prefix=settings.API_PREFIX,
    tags=["api"],
    dependencies=[Depends(require_api_permission)],
)


async def request_body(request: Request) -> bytes:
    """Dependency that reads the raw request body."""
    return await request.body()


def resource_location(endpoint: Endpoint, identifier: str) -> str:
    return f"{settings.API_PREFIX}/v1/{endpoint.name}/{identifier}"


def decode_body(request: Request, body: bytes) -> dict:
    """
    Decode the JSON object sent with a POST or PUT request.

    Raises:
        BadRequest: If the content type is not JSON or the body is empty,
            not valid JSON or not an object.
    """
    content_type = request.headers.get("content-type", "").split(";")[0].strip()
    if content_type.lower() != "application/json":
        raise BadRequest(
            "Invalid request header: Content-Type must be application/json"
        )
    if not body.strip():
        raise BadRequest("Invalid request body: given content is empty")
    try:
        data = json.loads(body)
    except ValueError:
        raise BadRequest("Invalid request body: given content is not a valid JSON")
    if not isinstance(data, dict):
        raise BadRequest("Invalid request body: given content is not a JSON object")
    return data


def handle_get(req: ApiRequest) -> Response:
    repository = req.endpoint.repository
    if req.identifier is not None:
        return JSONResponse(repository(req.db).get(req.identifier))

    try:
        condition = translate(parse(req.query), repository.filter_columns())
    except ValueError as exc:
        logger.debug("Rejected filter %r: %s", req.query, exc)
        raise BadRequest(str(exc))
    return JsonStreamResponse(
        stream_pages(req.session_factory, repository, condition, settings.PAGE_SIZE)
    )


def handle_post(req: ApiRequest) -> Response:
    payload = req.endpoint.parse_payload(req.data)
    repository = req.endpoint.repository(req.db)
    if req.identifier is None:
        _, identifier = repository.create(payload)
    else:
        _, identifier = repository.replace(req.identifier, payload)
    return JSONResponse(
        schemas.SuccessOut(
            message=f"{req.endpoint.entity} created successfully"
        ).model_dump(),
        status_code=201,
        headers={
            "Location": resource_location(req.endpoint, identifier),
            "X-Resource-Identifier": identifier,
        },
    )


def handle_put(req: ApiRequest) -> Response:
    payload = req.endpoint.parse_payload(req.data)
    created = req.endpoint.repository(req.db).upsert(req.identifier, payload)
    if created:
        return Response(
            status_code=201,
            headers={"Location": resource_location(req.endpoint, req.identifier)},
        )
    return Response(status_code=204)


def handle_delete(req: ApiRequest) -> Response:
    req.endpoint.repository(req.db).delete(req.identifier)
    return Response(status_code=204)


HANDLERS: dict[str, Callable[[ApiRequest], Response]] = {
    "GET": handle_get,
    "POST": handle_post,
    "PUT": handle_put,
    "DELETE": handle_delete,
}


def dispatch(
    request: Request,
    version: str,
    endpoint: str,
    identifier: Optional[str],
    body: bytes,
    db: Session,
    session_factory: sessionmaker,
) -> Response:
    """
    Validate an API request and delegate it to its method handler.

    Raises:
        NotFound: If the version or endpoint is unknown.
        BadRequest: If headers, body, query string or identifier are invalid.
        MethodNotAllowed: If the endpoint does not support the method.

    Returns:
        Response: The handler's response.
    """
    target = ENDPOINTS.get((version, endpoint))
    if target is None:
        raise NotFound(f"Endpoint {endpoint} not found")

    if "application/json" not in request.headers.get("accept", ""):
        raise BadRequest("No API request")

    method = request.method
    if method not in target.methods:
        raise MethodNotAllowed(
            f"Method {method} is not supported for endpoint {endpoint}",
            list(target.methods),
        )

    data = None
    if method in ("POST", "PUT"):
        data = decode_body(request, body)
    elif body:
        raise BadRequest(
            "Invalid request: Body is only allowed for POST and PUT requests"
        )

    query = request.url.query
    if query and method != "GET":
        raise BadRequest(
            "Unexpected query parameter: Filter is only allowed for GET requests"
        )
    if query and identifier is not None:
        raise BadRequest(
            "Invalid request: GET with identifier and query parameters, "
            "it's not allowed to use both together"
        )
    if identifier is None and method in ("PUT", "DELETE"):
        raise BadRequest("Invalid request: Identifier is required")
    if identifier is not None:
        if not is_valid_uuid(identifier):
            raise BadRequest("The given identifier is not a valid UUID")
        identifier = normalize_uuid(identifier)

    return HANDLERS[method](
        ApiRequest(
            endpoint=target,
            identifier=identifier,
            query=query,
            data=data,
            db=db,
            session_factory=session_factory,
        )
    )


FILTER_HELP = (
    "Rows may be filtered with the query string, e.g. "
    "`full_name=Jane*&!username` or `(name=ops|name=dev)`. Supported "
    "operators are `=`, `!=`, `<`, `<=`, `>`, `>=`, `~` and `!~`, combined "
    "with `&`, `|`, `!` and parentheses. The result is streamed as one "
    "JSON array."
)


def error_responses(*codes: int) -> dict:
    return {code: {"model": schemas.ErrorOut} for code in (401, 403) + codes}


def request_body_schema(model) -> dict:
    """OpenAPI ``requestBody`` for a payload the dispatcher decodes itself."""
    return {
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": model.model_json_schema()}},
        }
    }


def collection_route(version: str, name: str):
    def route(
        request: Request,
        body: bytes = Depends(request_body),
        db: Session = Depends(get_db),
        session_factory: sessionmaker = Depends(get_session_factory),
    ) -> Response:
        return dispatch(request, version, name, None, body, db, session_factory)

    return route


def entity_route(version: str, name: str):
    def route(
        request: Request,
        identifier: str,
        body: bytes = Depends(request_body),
        db: Session = Depends(get_db),
        session_factory: sessionmaker = Depends(get_session_factory),
    ) -> Response:
        return dispatch(request, version, name, identifier, body, db, session_factory)

    return route


def document_endpoint(version: str, target: Endpoint) -> None:
    """
    Register one route per supported method of ``target``.

    The routes only describe the endpoint in the OpenAPI schema. Every
    request still goes through ``dispatch``, so a documented route and
    the fallback routes answer identically.
    """
    path = f"/{version}/{target.name}"
    operation = f"{version}_{target.name.replace('-', '_')}"
    collection = collection_route(version, target.name)
    entity = entity_route(version, target.name)

    router.add_api_route(
        path,
        collection,
        methods=["GET"],
        name=f"list_{operation}",
        summary=f"List {target.name}",
        description=FILTER_HELP,
        response_model=List[target.response_model],
        responses=error_responses(400),
    )
    router.add_api_route(
        path + "/{identifier}",
        entity,
        methods=["GET"],
        name=f"get_{operation}",
        summary=f"Get one {target.entity}",
        response_model=target.response_model,
        responses=error_responses(400, 404),
    )
    if target.payload_model is None:
        return

    body = request_body_schema(target.payload_model)
    router.add_api_route(
        path,
        collection,
        methods=["POST"],
        name=f"create_{operation}",
        summary=f"Create a {target.entity}",
        status_code=201,
        response_model=schemas.SuccessOut,
        responses=error_responses(*target.write_errors),
        openapi_extra=body,
    )
    router.add_api_route(
        path + "/{identifier}",
        entity,
        methods=["POST"],
        name=f"replace_{operation}",
        summary=f"Replace a {target.entity} by one with a new identifier",
        status_code=201,
        response_model=schemas.SuccessOut,
        responses=error_responses(*target.write_errors),
        openapi_extra=body,
    )
    router.add_api_route(
        path + "/{identifier}",
        entity,
        methods=["PUT"],
        name=f"upsert_{operation}",
        summary=f"Create or update a {target.entity}",
        status_code=204,
        responses={201: {"description": f"{target.entity} created"}}
        | error_responses(*target.write_errors),
        openapi_extra=body,
    )
    router.add_api_route(
        path + "/{identifier}",
        entity,
        methods=["DELETE"],
        name=f"delete_{operation}",
        summary=f"Delete a {target.entity}",
        status_code=204,
        responses=error_responses(400, 404),
    )


for (_version, _name), _target in ENDPOINTS.items():
    document_endpoint(_version, _target)


# Fallbacks for unknown endpoints and unsupported methods. A method a
# documented route lacks only partially matches it and ends up here.
@router.api_route("/{version}/{endpoint}", methods=ROUTED_METHODS, include_in_schema=False)
def collection(
    request: Request,
    version: str,
    endpoint: str,
    body: bytes = Depends(request_body),
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """List or create entities of an endpoint."""
    return dispatch(request, version, endpoint, None, body, db, session_factory)


@router.api_route(
    "/{version}/{endpoint}/{identifier}", methods=ROUTED_METHODS, include_in_schema=False
)
def entity(
    request: Request,
    version: str,
    endpoint: str,
    identifier: str,
    body: bytes = Depends(request_body),
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """Fetch, replace, upsert or delete one entity of an endpoint."""
    return dispatch(request, version, endpoint, identifier, body, db, session_factory)
