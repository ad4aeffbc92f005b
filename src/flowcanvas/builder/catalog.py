"""
Node Catalog for the FlowCanvas builder

The catalog is the read-only registry of node types the editor can place
on a canvas. It is fetched from the node registry service as an ordered
list of categories; each category lists functions, and each function
lists node type definitions with their typed ports and parameters.

- Parsing is done with pydantic models that accept the service's
  camelCase keys (``nodeName``, ``categoryId``, ...).
- ``refresh()`` re-fetches and swaps the whole index in one assignment, so
  readers never observe a half-loaded catalog.
"""

from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from flowcanvas.builder.constants import ANY_TYPE
from flowcanvas.builder.types import TypeID
from flowcanvas.exceptions import CatalogError, TransportError, UnknownTypeError
from flowcanvas.settings import Settings, get_settings
from flowcanvas.utilities.http import decode_json, error_detail
from flowcanvas.utilities.logging import get_logger

logger = get_logger("builder.catalog")


class _CatalogModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class _NamedSpec(_CatalogModel):
    id: str
    name: str = ""

    @model_validator(mode="before")
    @classmethod
    def name_defaults_to_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("name") and data.get("id"):
            return {**data, "name": data["id"]}
        return data


class PortSpec(_NamedSpec):
    type: str = ANY_TYPE
    required: bool = False
    multi: bool = False


class ParameterOption(_CatalogModel):
    value: Any
    label: Optional[str] = None


class ParameterSpec(_NamedSpec):
    type: str = "STR"
    value: Any = None  # default value
    required: bool = False
    min: Optional[float] = None
    max: Optional[float] = None
    step: Optional[float] = None
    options: List[ParameterOption] = Field(default_factory=list)

    @field_validator("options", mode="before")
    @classmethod
    def wrap_plain_options(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [item if isinstance(item, dict) else {"value": item, "label": str(item)} for item in value]
        return value


class NodeTypeSpec(_CatalogModel):
    id: TypeID
    node_name: str = Field(default="", alias="nodeName")
    description: str = ""
    function_id: Optional[str] = Field(default=None, alias="functionId")
    inputs: List[PortSpec] = Field(default_factory=list)
    outputs: List[PortSpec] = Field(default_factory=list)
    parameters: List[ParameterSpec] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.node_name or self.id


class NodeFunctionSpec(_CatalogModel):
    function_id: str = Field(default="", alias="functionId")
    function_name: str = Field(default="", alias="functionName")
    nodes: List[NodeTypeSpec] = Field(default_factory=list)


class NodeCategorySpec(_CatalogModel):
    category_id: str = Field(default="", alias="categoryId")
    category_name: str = Field(default="", alias="categoryName")
    icon: str = ""
    functions: List[NodeFunctionSpec] = Field(default_factory=list)
    # Flat form: categories listing node types directly
    nodes: List[NodeTypeSpec] = Field(default_factory=list)

    def iter_node_types(self) -> List[NodeTypeSpec]:
        found = list(self.nodes)
        for function in self.functions:
            found.extend(function.nodes)
        return found


def parse_catalog(payload: Any) -> List[NodeCategorySpec]:
    """
    Parse a catalog payload into category specs.

    Accepts either a bare list of categories or an object wrapping it
    under ``categories``.

    Raises:
        CatalogError: If the payload does not match the catalog schema.
    """
    if isinstance(payload, dict):
        payload = payload.get("categories", payload.get("nodes"))
    if not isinstance(payload, list):
        raise CatalogError("Node catalog must be a list of categories.")
    try:
        return [NodeCategorySpec.model_validate(item) for item in payload]
    except PydanticValidationError as e:
        raise CatalogError.from_exception(e) from e


@runtime_checkable
class CatalogSource(Protocol):
    async def fetch(self, force_refresh: bool = False) -> Any:
        """Return the raw catalog payload (JSON-decoded)."""
        ...


class HttpCatalogSource:
    """
    Fetches the catalog from the node registry service.

    With ``force_refresh`` the service is first asked to rebuild its
    registry, then the fresh list is fetched.
    """

    def __init__(self, client: httpx.AsyncClient, settings: Optional[Settings] = None) -> None:
        self._client = client
        self._settings = settings or get_settings()

    async def _get(self, path: str) -> Any:
        try:
            response = await self._client.get(path)
        except httpx.HTTPError as e:
            raise TransportError.from_exception(e, details={"path": path}) from e
        if response.status_code >= 400:
            raise TransportError(
                error_detail(response.status_code, response.content),
                details={"path": path, "status_code": response.status_code},
            )
        data = decode_json(response.content)
        if data is None:
            raise CatalogError(f"Catalog endpoint '{path}' did not return JSON.")
        return data

    async def fetch(self, force_refresh: bool = False) -> Any:
        if force_refresh:
            await self._get(self._settings.catalog_refresh_path)
        return await self._get(self._settings.catalog_path)


class NodeCatalog:
    """
    Read-only index of node type definitions, keyed by type id.
    """

    def __init__(
        self,
        categories: Optional[Sequence[NodeCategorySpec]] = None,
        source: Optional[CatalogSource] = None,
    ) -> None:
        self._source = source
        self._categories: List[NodeCategorySpec] = []
        self._types: Dict[TypeID, NodeTypeSpec] = {}
        if categories:
            self.replace(categories)

    @classmethod
    def from_payload(cls, payload: Any, source: Optional[CatalogSource] = None) -> "NodeCatalog":
        return cls(parse_catalog(payload), source=source)

    def replace(self, categories: Sequence[NodeCategorySpec]) -> None:
        """Swap in a new set of categories."""
        types: Dict[TypeID, NodeTypeSpec] = {}
        for category in categories:
            for spec in category.iter_node_types():
                if spec.id in types:
                    logger.warning(
                        "Node type '%s' listed more than once; keeping the first definition", spec.id
                    )
                    continue
                types[spec.id] = spec
        self._categories, self._types = list(categories), types
        logger.info("Catalog loaded: %d categories, %d node types", len(self._categories), len(types))

    async def refresh(self, force_refresh: bool = True) -> None:
        """
        Re-fetch the catalog from its source and replace the current index.

        On any failure the current catalog is kept unchanged.
        """
        if self._source is None:
            raise CatalogError("Catalog has no source to refresh from.")
        payload = await self._source.fetch(force_refresh=force_refresh)
        self.replace(parse_catalog(payload))

    @property
    def categories(self) -> List[NodeCategorySpec]:
        return list(self._categories)

    def get(self, type_id: TypeID) -> Optional[NodeTypeSpec]:
        return self._types.get(type_id)

    def require(self, type_id: TypeID) -> NodeTypeSpec:
        spec = self._types.get(type_id)
        if spec is None:
            raise UnknownTypeError(
                f"Node type '{type_id}' is not in the catalog.",
                details={"type_id": type_id},
            )
        return spec

    def list_types(self) -> List[TypeID]:
        return list(self._types.keys())

    def __contains__(self, type_id: object) -> bool:
        return type_id in self._types

    def __len__(self) -> int:
        return len(self._types)
