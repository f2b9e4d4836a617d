import base64
import builtins
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, NamedTuple

import pydantic_core
from mcp.types import BlobResourceContents, ListResourcesResult, ReadResourceResult, Resource, TextResourceContents
from pydantic import AnyUrl, ValidationError
from typing_extensions import TypedDict, Unpack

from mcpwire.exceptions import InvalidParamsError, LifecycleError, PrimitiveError, ResourceNotFoundError
from mcpwire.registry import HandlerRegistry
from mcpwire.types import MESSAGE_ENCODING
from mcpwire.utils.mcp_func import MCPFunc

logger = logging.getLogger(__name__)

DEFAULT_TEXT_MIME_TYPE = "text/plain"
DEFAULT_BINARY_MIME_TYPE = "application/octet-stream"
JSON_MIME_TYPE = "application/json"


class ResourceProvider(ABC):
    """
    A named, addressable, read-only content item.

    Providers are owned by the application. The server keeps references to them and calls read()
    for every resources/read request addressed to the provider's uri.

    read() can be synchronous or asynchronous, and returns str for text content or bytes for binary
    content. Binary content is base64-encoded on the wire.
    """

    uri: str
    name: str
    mime_type: str | None
    description: str | None

    def __init__(self, uri: str, name: str, mime_type: str | None = None, description: str | None = None):
        self.uri = uri
        self.name = name
        self.mime_type = mime_type
        self.description = description

    @abstractmethod
    def read(self) -> str | bytes | Awaitable[str | bytes]:
        raise NotImplementedError("Subclasses must implement this method")

    def descriptor(self) -> Resource:
        return Resource(
            uri=AnyUrl(self.uri),
            name=self.name,
            mimeType=self.mime_type,
            description=self.description,
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(uri={self.uri!r})"


class TextResource(ResourceProvider):
    """A resource with fixed text content."""

    text: str

    def __init__(
        self,
        uri: str,
        name: str,
        text: str,
        mime_type: str | None = DEFAULT_TEXT_MIME_TYPE,
        description: str | None = None,
    ):
        super().__init__(uri, name, mime_type, description)
        self.text = text

    def read(self) -> str:
        return self.text


class FunctionResource(ResourceProvider):
    """
    A resource whose content is produced by a function without parameters.

    The function may return str, bytes, or any JSON serializable value which is returned as
    application/json text. Unless given explicitly, the MIME type follows the return annotation, so
    the descriptor listed by resources/list is the same before and after a read.
    """

    func: MCPFunc

    def __init__(
        self,
        func: Callable[[], Any],
        uri: str,
        name: str | None = None,
        mime_type: str | None = None,
        description: str | None = None,
    ):
        self.func = MCPFunc(func, name, role="resource")
        super().__init__(
            uri, self.func.name, mime_type or _mime_type_for(self.func.return_annotation), description or self.func.doc
        )

    async def read(self) -> str | bytes:
        result = await self.func.execute()

        if isinstance(result, (str, bytes)):
            return result
        return pydantic_core.to_json(result, fallback=str).decode(MESSAGE_ENCODING)


def _mime_type_for(annotation: Any) -> str | None:
    # Annotations may be strings under postponed evaluation
    if annotation is None:
        return None
    if annotation in (str, "str"):
        return DEFAULT_TEXT_MIME_TYPE
    if annotation in (bytes, "bytes"):
        return DEFAULT_BINARY_MIME_TYPE
    return JSON_MIME_TYPE


class ResourceDefinition(TypedDict, total=False):
    """
    Optional overrides for function-backed resources.

    Attributes:
        name: Resource name. Defaults to the function name.
        description: Description. Defaults to the function docstring.
        mime_type: MIME type of the content (e.g., "text/plain", "application/json", "image/png").
    """

    name: str | None
    description: str | None
    mime_type: str | None


class _ResourceEntry(NamedTuple):
    resource: ResourceProvider
    normalized_uri: str


class ResourceManager:
    """
    ResourceManager holds the resources exposed by a server, and implements the resources/list and
    resources/read handlers.

    Each resource is uniquely identified by its URI (RFC 3986), e.g. "file:///config.json" or
    "db://schema". Resources are kept in registration order. For more details, see:
    https://modelcontextprotocol.io/specification/2024-11-05/server/resources

    Example:
        @server.resource("math://constants/pi", mime_type="text/plain")
        def pi_value() -> str:
            return "3.14159"

        # Or programmatically:
        server.resource.add(TextResource("docs://readme", "readme", "Hello"))
    """

    _registry: HandlerRegistry
    _resources: dict[str, _ResourceEntry]

    def __init__(self, registry: HandlerRegistry):
        """
        Args:
            registry: The handler registry to hook the resources/* handlers into.
        """
        self._registry = registry
        self._resources = {}
        self._hook_registry(registry)

    def _hook_registry(self, registry: HandlerRegistry) -> None:
        registry.register("resources/list", self._list_handler)
        registry.register("resources/read", self._read_handler)

    def __call__(
        self, uri: str, **kwargs: Unpack[ResourceDefinition]
    ) -> Callable[[Callable[[], Any]], ResourceProvider]:
        """Decorator to add a function as a resource at the time of its definition.

        Example:
            @server.resource("config://app.json")
            def get_config() -> dict:
                return {"version": "1.0"}
        """

        def decorator(func: Callable[[], Any]) -> ResourceProvider:
            return self.add(func, uri, **kwargs)

        return decorator

    def add(
        self,
        resource: ResourceProvider | Callable[[], Any],
        uri: str | None = None,
        **kwargs: Unpack[ResourceDefinition],
    ) -> ResourceProvider:
        """Add a resource. Plain functions are wrapped in a FunctionResource, and need a uri.

        Returns:
            The added resource.

        Raises:
            PrimitiveError: If the uri is missing, invalid or already registered.
            LifecycleError: If the server is already connected.
            MCPFuncError: If the function cannot be used as a resource.
        """
        if self._registry.frozen:
            raise LifecycleError("Cannot add resources after the server is connected")

        if not isinstance(resource, ResourceProvider):
            if not uri:
                raise PrimitiveError("A uri is required to add a function as a resource")
            resource = FunctionResource(
                resource, uri, kwargs.get("name"), kwargs.get("mime_type"), kwargs.get("description")
            )

        try:
            normalized_uri = _normalize_uri(resource.uri)
        except ValidationError as e:
            raise PrimitiveError(f"Invalid resource uri {resource.uri}: {e}") from e

        if normalized_uri in self._resources:
            raise PrimitiveError(f"Resource {resource.uri} already registered")

        self._resources[normalized_uri] = _ResourceEntry(resource, normalized_uri)
        logger.debug("Resource %s added", resource.uri)

        return resource

    def remove(self, uri: str) -> ResourceProvider:
        """Remove a resource by uri.

        Raises:
            ResourceNotFoundError: If the resource is not found.
            LifecycleError: If the server is already connected.
        """
        if self._registry.frozen:
            raise LifecycleError("Cannot remove resources after the server is connected")

        entry = self._find(uri)
        if entry is None:
            raise ResourceNotFoundError(f"Unknown resource: {uri}", {"uri": uri})

        logger.debug("Removing resource %s", uri)
        return self._resources.pop(entry.normalized_uri).resource

    def get(self, uri: str) -> ResourceProvider | None:
        entry = self._find(uri)
        return entry.resource if entry else None

    def list(self) -> builtins.list[Resource]:
        """List the descriptors of all resources, in registration order. Contents are not read."""
        return [entry.resource.descriptor() for entry in self._resources.values()]

    async def read(self, uri: str) -> ReadResourceResult:
        """Read the contents of a resource.

        Args:
            uri: The uri of the resource.

        Returns:
            The contents as text, or base64-encoded binary, along with the MIME type.

        Raises:
            ResourceNotFoundError: If no resource is registered for the uri.
        """
        entry = self._find(uri)
        if entry is None:
            raise ResourceNotFoundError(f"Unknown resource: {uri}", {"uri": uri})

        resource = entry.resource
        content = resource.read()
        if inspect.isawaitable(content):
            content = await content

        logger.debug("Resource %s read", uri)

        if isinstance(content, bytes):
            contents: TextResourceContents | BlobResourceContents = BlobResourceContents(
                uri=AnyUrl(resource.uri),
                mimeType=resource.mime_type or DEFAULT_BINARY_MIME_TYPE,
                blob=base64.b64encode(content).decode(),
            )
        else:
            contents = TextResourceContents(
                uri=AnyUrl(resource.uri),
                mimeType=resource.mime_type or DEFAULT_TEXT_MIME_TYPE,
                text=str(content),
            )

        return ReadResourceResult(contents=[contents])

    def _find(self, uri: str) -> _ResourceEntry | None:
        try:
            return self._resources.get(_normalize_uri(uri))
        except ValidationError:
            return None

    # --- Handlers ---

    def _list_handler(self, params: dict[str, Any]) -> ListResourcesResult:
        return ListResourcesResult(resources=self.list())

    async def _read_handler(self, params: dict[str, Any]) -> ReadResourceResult:
        uri = params.get("uri")
        if not isinstance(uri, str) or not uri:
            raise InvalidParamsError("resources/read requires a uri")

        return await self.read(uri)


def _normalize_uri(uri: str) -> str:
    # Compare uris the way they are advertised, after AnyUrl normalization
    return str(AnyUrl(uri))
