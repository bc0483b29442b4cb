# ABOUTME: Endpoint descriptors for the console's API gateway
# ABOUTME: Builds the custom and CRUD endpoint entries that create_endpoint merges into a configuration

"""
Endpoint descriptors.

An endpoint exposes something through the project's API gateway under a base
path. Two kinds are supported:

- custom: forwards /{name} to a microservice (``target`` is the service name)
- crud: exposes a crud-service collection (``target`` is the collection id)
  with the fixed set of routes the crud-service implements

Both builders return plain dicts in the console's wire format, ready to be
placed under ``endpoints`` in ResourcesToCreate keyed by their basePath.
"""

from __future__ import annotations

from typing import Any, Literal

EndpointType = Literal["custom", "crud"]

# (verb, path) of every route the crud-service serves
CRUD_ROUTES = (
    ("GET", "/"),
    ("POST", "/"),
    ("GET", "/export"),
    ("GET", "/:id"),
    ("DELETE", "/:id"),
    ("DELETE", "/"),
    ("PATCH", "/:id"),
    ("PATCH", "/"),
    ("GET", "/count"),
    ("POST", "/bulk"),
    ("POST", "/upsert-one"),
    ("PATCH", "/bulk"),
    ("POST", "/:id/state"),
    ("POST", "/state"),
)

_INHERITED = {"inherited": True}


def _crud_route(verb: str, path: str) -> dict[str, Any]:
    route_id = f"{verb}{path}"
    route: dict[str, Any] = {
        "id": route_id,
        "verb": verb,
        "path": path,
        "public": dict(_INHERITED),
        "secreted": dict(_INHERITED),
        "showInDocumentation": dict(_INHERITED),
        "acl": dict(_INHERITED),
        "backofficeAcl": dict(_INHERITED),
        "rateLimit": dict(_INHERITED),
        "allowUnknownRequestContentType": dict(_INHERITED),
        "allowUnknownResponseContentType": dict(_INHERITED),
        "preDecorators": [],
        "postDecorators": [],
    }
    # Exports stream non-JSON bodies (csv, ndjson)
    if route_id == "GET/export":
        route["allowUnknownResponseContentType"] = {"inherited": False, "value": True}
    return route


def custom_endpoint(name: str, target: str) -> dict[str, Any]:
    """Endpoint /{name} forwarding to port 80 of service ``target``."""
    return {
        "basePath": f"/{name}",
        "type": "custom",
        "public": False,
        "showInDocumentation": True,
        "secreted": False,
        "acl": "true",
        "service": target,
        "port": "80",
        "pathRewrite": "/",
        "description": f"Endpoint /{name}",
        "tags": [target],
        "backofficeAcl": dict(_INHERITED),
        "allowUnknownRequestContentType": False,
        "allowUnknownResponseContentType": False,
        "forceMicroserviceGatewayProxy": False,
        "listeners": {"frontend": True},
        "useDownstreamProtocol": True,
    }


def crud_endpoint(name: str, target: str) -> dict[str, Any]:
    """Endpoint /{name} exposing crud-service collection ``target``."""
    return {
        "basePath": f"/{name}",
        "pathName": "/",
        "pathRewrite": f"/{name}",
        "type": "crud",
        "tags": ["crud"],
        "description": f"Endpoint /{target}",
        "collectionId": target,
        "public": True,
        "secreted": False,
        "showInDocumentation": True,
        "acl": "true",
        "backofficeAcl": dict(_INHERITED),
        "allowUnknownRequestContentType": False,
        "allowUnknownResponseContentType": False,
        "forceMicroserviceGatewayProxy": False,
        "routes": {f"{verb}{path}": _crud_route(verb, path) for verb, path in CRUD_ROUTES},
        "listeners": {"frontend": True},
    }


def build_endpoint(endpoint_type: EndpointType, name: str, target: str) -> dict[str, Any]:
    """
    Build an endpoint descriptor.

    Raises:
        ValueError: Unknown endpoint type
    """
    if endpoint_type == "custom":
        return custom_endpoint(name, target)
    if endpoint_type == "crud":
        return crud_endpoint(name, target)
    raise ValueError(f"Endpoint type {endpoint_type} not supported")
