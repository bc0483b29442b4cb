# ABOUTME: Configuration merge-and-save for console projects
# ABOUTME: Fetches the current configuration, merges new resources in and saves the result

"""
Configuration merge-and-save.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

A console project's configuration is one JSON document per revision (or per
environment, for environment-based projects). Among other things it holds
seven keyed collections of resources:

    services, serviceAccounts, configMaps, serviceSecrets,
    listeners, endpoints, collections

Each collection maps a resource name to its definition. Tools that "create"
something (an endpoint, a service, a CRUD collection) never write that
resource on its own: they read the whole document, add the new entries, and
save the whole document back as a new commit.

=============================================================================
THE SAVE FLOW
=============================================================================

    ConfigurationMerger.save_configuration(project, ref, resources)
        |
        |-- 1. store.get(project, ref)            -> current document
        |-- 2. services name clash?               -> ServiceAlreadyExistsError
        |                                            (only when asked, nothing saved)
        |-- 3. merged[kind] = current[kind] | resources[kind]   for each kind
        |-- 4. ConfigToSave(previousSave=current["commitId"], ...)
        |-- 5. store.save(project, ref, payload)  -> SaveResponse

New entries win over existing entries with the same name, except that the
services clash check (step 2) stops the save first when enabled. Nothing is
deleted: deletedElements is always empty.

=============================================================================
CONCURRENCY
=============================================================================

The read and the write are separate requests and nothing is locked in
between. Two saves racing on the same project and ref can lose one of the
updates. previousSave carries the commitId that the merge was based on; it is
up to the backend whether a stale previousSave is rejected.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from console_mcp.errors import ServiceAlreadyExistsError

if TYPE_CHECKING:
    from console_mcp.utils.client import ConsoleClient

logger = structlog.get_logger(__name__)

# Title given to every save made by this server, so they stand out in history
SAVE_TITLE = "[mcp] created resources"

# Keyed resource collections, in wire (camelCase) naming
RESOURCE_KINDS = (
    "services",
    "serviceAccounts",
    "configMaps",
    "serviceSecrets",
    "listeners",
    "endpoints",
    "collections",
)

ENVIRONMENT_BASED_CONFIGURATION_TOGGLE = "ENABLE_ENVIRONMENT_BASED_CONFIGURATION_MANAGEMENT"

# ResourcesToCreate attribute -> wire kind
_WIRE_NAMES = {
    "services": "services",
    "service_accounts": "serviceAccounts",
    "config_maps": "configMaps",
    "service_secrets": "serviceSecrets",
    "listeners": "listeners",
    "endpoints": "endpoints",
    "collections": "collections",
}


# =============================================================================
# DATA TYPES
# =============================================================================


@dataclass
class ResourcesToCreate:
    """
    Resources to add to a configuration.

    Every field is optional; None means "nothing of this kind". Field names
    are snake_case here and camelCase on the wire (see as_wire_items).
    """

    services: dict[str, Any] | None = None
    service_accounts: dict[str, Any] | None = None
    config_maps: dict[str, Any] | None = None
    service_secrets: dict[str, Any] | None = None
    listeners: dict[str, Any] | None = None
    endpoints: dict[str, Any] | None = None
    collections: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResourcesToCreate:
        """Build from a wire-style mapping ({"configMaps": {...}, ...})."""
        by_wire = {wire: attr for attr, wire in _WIRE_NAMES.items()}
        kwargs = {by_wire[k]: v for k, v in data.items() if k in by_wire}
        return cls(**kwargs)

    def as_wire_items(self) -> list[tuple[str, dict[str, Any] | None]]:
        """(wire kind, resources) pairs, in RESOURCE_KINDS order."""
        return [(_WIRE_NAMES[f.name], getattr(self, f.name)) for f in fields(self)]


@dataclass
class ConfigToSave:
    """Body of a configuration save request."""

    config: dict[str, Any]
    previous_save: str | None
    fast_data_config: Any = None
    microfrontend_plugins_config: Any = field(default_factory=dict)
    extensions_config: Any = field(default_factory=lambda: {"files": {}})
    title: str = SAVE_TITLE
    deleted_elements: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "previousSave": self.previous_save,
            "config": self.config,
            "fastDataConfig": self.fast_data_config,
            "microfrontendPluginsConfig": self.microfrontend_plugins_config,
            "extensionsConfig": self.extensions_config,
            "deletedElements": self.deleted_elements,
        }


@dataclass
class SaveResponse:
    """Identifier of the commit created by a save."""

    id: str
    upgraded: bool | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> SaveResponse:
        return cls(id=str(data.get("id", "")), upgraded=data.get("upgraded"))


# =============================================================================
# CONFIGURATION STORES
# =============================================================================


class ConfigurationStore(Protocol):
    """Where configurations are read from and saved to."""

    async def get(self, project_id: str, ref_id: str) -> dict[str, Any]: ...

    async def save(self, project_id: str, ref_id: str, payload: dict[str, Any]) -> dict[str, Any]: ...


class RevisionConfigurationStore:
    """Configurations addressed by revision or version name."""

    def __init__(self, client: ConsoleClient) -> None:
        self._client = client

    async def get(self, project_id: str, ref_id: str) -> dict[str, Any]:
        return await self._client.get_revision_configuration(project_id, ref_id)

    async def save(self, project_id: str, ref_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._client.save_revision_configuration(project_id, ref_id, payload)


class EnvironmentConfigurationStore:
    """Configurations addressed by environment id."""

    def __init__(self, client: ConsoleClient) -> None:
        self._client = client

    async def get(self, project_id: str, ref_id: str) -> dict[str, Any]:
        return await self._client.get_environment_configuration(project_id, ref_id)

    async def save(self, project_id: str, ref_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._client.save_environment_configuration(project_id, ref_id, payload)


async def resolve_configuration_store(
    client: ConsoleClient,
    project_id: str,
) -> ConfigurationStore:
    """
    Pick the store matching how a project manages its configuration.

    Projects with the environment-based configuration toggle keep one
    configuration per environment; all others keep one per revision.
    """
    toggles = await client.get_feature_toggles(project_id, [ENVIRONMENT_BASED_CONFIGURATION_TOGGLE])
    if toggles.get(ENVIRONMENT_BASED_CONFIGURATION_TOGGLE, False):
        return EnvironmentConfigurationStore(client)
    return RevisionConfigurationStore(client)


# =============================================================================
# MERGE
# =============================================================================


def merge_configuration(
    current: dict[str, Any],
    resources: ResourcesToCreate,
    *,
    throw_if_service_already_exists: bool = False,
) -> dict[str, Any]:
    """
    Merge new resources into a configuration document.

    Returns a new document; ``current`` and ``resources`` are left untouched.
    Fields other than the seven resource kinds are copied over as they are.

    Raises:
        ServiceAlreadyExistsError: ``throw_if_service_already_exists`` is set
            and one of the new services is already in ``current``.
    """
    if throw_if_service_already_exists:
        existing_services = current.get("services") or {}
        for service_name in resources.services or {}:
            if service_name in existing_services:
                raise ServiceAlreadyExistsError(service_name)

    merged = dict(current)
    for kind, new_resources in resources.as_wire_items():
        # Kinds without new entries pass through as they are, absent ones stay absent
        if not new_resources:
            continue
        merged[kind] = {**(current.get(kind) or {}), **new_resources}
    return merged


class ConfigurationMerger:
    """
    Reads, merges and saves project configurations through a store.

    The merger keeps no state between calls; every save starts from a fresh
    read of the stored configuration.
    """

    def __init__(self, store: ConfigurationStore) -> None:
        self._store = store

    async def get_configuration(self, project_id: str, ref_id: str) -> dict[str, Any]:
        """Current configuration, including its commitId. Store errors propagate."""
        return await self._store.get(project_id, ref_id)

    async def save_configuration(
        self,
        project_id: str,
        ref_id: str,
        resources: ResourcesToCreate,
        *,
        throw_if_service_already_exists: bool = False,
    ) -> SaveResponse:
        """
        Add ``resources`` to the stored configuration and save it.

        Args:
            project_id: Project identifier
            ref_id: Revision, version or environment identifier
            resources: Resources to add
            throw_if_service_already_exists: Refuse to save when a new service
                name is already in use

        Returns:
            SaveResponse with the id of the new commit

        Raises:
            ServiceAlreadyExistsError: Name clash in services; nothing saved
            ConsoleError: The store failed to read or save
        """
        log = logger.bind(project_id=project_id, ref_id=ref_id)

        current = await self.get_configuration(project_id, ref_id)
        merged = merge_configuration(
            current,
            resources,
            throw_if_service_already_exists=throw_if_service_already_exists,
        )

        to_save = ConfigToSave(
            config=merged,
            previous_save=current.get("commitId"),
            fast_data_config=current.get("fastDataConfig"),
            microfrontend_plugins_config=current.get("microfrontendPluginsConfig") or {},
            extensions_config=current.get("extensionsConfig") or {"files": {}},
        )

        log.info(
            "Saving merged configuration",
            previous_save=to_save.previous_save,
            kinds=[kind for kind, items in resources.as_wire_items() if items],
        )
        response = await self._store.save(project_id, ref_id, to_save.to_payload())
        return SaveResponse.from_api_response(response)
