import base64

import pytest
from mcp.types import BlobResourceContents, ListResourcesResult, ReadResourceResult, TextResourceContents

from mcpwire.exceptions import InvalidParamsError, LifecycleError, MCPFuncError, PrimitiveError, ResourceNotFoundError
from mcpwire.managers.resource_manager import FunctionResource, ResourceManager, ResourceProvider, TextResource
from mcpwire.registry import HandlerRegistry

pytestmark = pytest.mark.anyio


class LogoResource(ResourceProvider):
    """Binary resource with an async accessor."""

    def __init__(self):
        super().__init__("images://logo.png", "logo", "image/png", "Company logo")
        self.reads = 0

    async def read(self) -> bytes:
        self.reads += 1
        return b"\x89PNG"


class TestResourceManager:
    """Test suite for ResourceManager class."""

    @pytest.fixture
    def registry(self) -> HandlerRegistry:
        return HandlerRegistry()

    @pytest.fixture
    def resource_manager(self, registry: HandlerRegistry) -> ResourceManager:
        return ResourceManager(registry)

    def test_init_hooks_registry(self, registry: HandlerRegistry, resource_manager: ResourceManager):
        assert "resources/list" in registry
        assert "resources/read" in registry
        assert resource_manager.list() == []

    def test_add_provider(self, resource_manager: ResourceManager):
        resource = TextResource("docs://readme", "readme", "Hello")

        assert resource_manager.add(resource) is resource
        assert resource_manager.get("docs://readme") is resource

    def test_add_function_requires_uri(self, resource_manager: ResourceManager):
        def config() -> dict:
            return {}

        with pytest.raises(PrimitiveError, match="uri is required"):
            resource_manager.add(config)

    def test_add_function(self, resource_manager: ResourceManager):
        def config() -> dict:
            """Application configuration"""
            return {"debug": False}

        resource = resource_manager.add(config, "config://app.json")

        assert isinstance(resource, FunctionResource)
        assert resource.name == "config"
        assert resource.description == "Application configuration"

    def test_function_with_parameters_rejected(self, resource_manager: ResourceManager):
        def by_id(item_id: int) -> str:
            return str(item_id)

        with pytest.raises(MCPFuncError, match="must not take parameters"):
            resource_manager.add(by_id, "items://one")

    def test_decorator(self, resource_manager: ResourceManager):
        @resource_manager("math://constants/pi", mime_type="text/plain", name="pi")
        def pi_value() -> str:
            return "3.14159"

        assert isinstance(pi_value, FunctionResource)
        assert pi_value.name == "pi"
        assert pi_value.mime_type == "text/plain"

    def test_add_duplicate(self, resource_manager: ResourceManager):
        resource_manager.add(TextResource("docs://readme", "readme", "Hello"))

        with pytest.raises(PrimitiveError, match="already registered"):
            resource_manager.add(TextResource("docs://readme", "other", "Hi"))

    def test_add_invalid_uri(self, resource_manager: ResourceManager):
        with pytest.raises(PrimitiveError, match="Invalid resource uri"):
            resource_manager.add(TextResource("not a uri", "bad", "x"))

    def test_add_after_freeze(self, registry: HandlerRegistry, resource_manager: ResourceManager):
        registry.freeze()

        with pytest.raises(LifecycleError):
            resource_manager.add(TextResource("docs://readme", "readme", "Hello"))

    def test_remove(self, resource_manager: ResourceManager):
        resource = resource_manager.add(TextResource("docs://readme", "readme", "Hello"))

        assert resource_manager.remove("docs://readme") is resource
        assert resource_manager.get("docs://readme") is None

    def test_remove_unknown(self, resource_manager: ResourceManager):
        with pytest.raises(ResourceNotFoundError):
            resource_manager.remove("docs://missing")

    def test_list_descriptors_without_contents(self, resource_manager: ResourceManager):
        logo = resource_manager.add(LogoResource())
        resource_manager.add(TextResource("docs://readme", "readme", "Hello", description="Read me"))

        resources = resource_manager.list()

        assert [r.name for r in resources] == ["logo", "readme"]
        assert str(resources[0].uri) == "images://logo.png"
        assert resources[0].mimeType == "image/png"
        assert resources[0].description == "Company logo"
        assert resources[1].mimeType == "text/plain"
        assert logo.reads == 0

    async def test_read_text(self, resource_manager: ResourceManager):
        resource_manager.add(TextResource("docs://readme", "readme", "Hello"))

        result = await resource_manager.read("docs://readme")

        assert isinstance(result, ReadResourceResult)
        contents = result.contents[0]
        assert isinstance(contents, TextResourceContents)
        assert contents.text == "Hello"
        assert contents.mimeType == "text/plain"

    async def test_read_binary(self, resource_manager: ResourceManager):
        logo = resource_manager.add(LogoResource())

        result = await resource_manager.read("images://logo.png")

        contents = result.contents[0]
        assert isinstance(contents, BlobResourceContents)
        assert base64.b64decode(contents.blob) == b"\x89PNG"
        assert contents.mimeType == "image/png"
        assert logo.reads == 1

    async def test_read_function_json(self, resource_manager: ResourceManager):
        @resource_manager("config://app.json")
        def config() -> dict:
            return {"debug": False}

        result = await resource_manager.read("config://app.json")

        assert result.contents[0].text == '{"debug":false}'
        assert result.contents[0].mimeType == "application/json"

    async def test_descriptor_is_stable_across_reads(self, resource_manager: ResourceManager):
        @resource_manager("config://app")
        def cfg() -> dict:
            return {"debug": False}

        before = resource_manager.list()[0].model_dump(exclude_none=True)
        await resource_manager.read("config://app")
        after = resource_manager.list()[0].model_dump(exclude_none=True)

        assert before == after
        assert before["mimeType"] == "application/json"

    @pytest.mark.parametrize(
        ("returns", "mime_type"), [(str, "text/plain"), (bytes, "application/octet-stream"), (list, "application/json")]
    )
    def test_mime_type_from_return_annotation(self, resource_manager: ResourceManager, returns: type, mime_type: str):
        def content():
            return returns()

        content.__annotations__["return"] = returns

        assert resource_manager.add(content, "data://content").mime_type == mime_type

    async def test_explicit_mime_type_wins(self, resource_manager: ResourceManager):
        @resource_manager("data://report", mime_type="text/csv")
        def report() -> dict:
            return {"a": 1}

        result = await resource_manager.read("data://report")

        assert report.mime_type == "text/csv"
        assert result.contents[0].mimeType == "text/csv"

    async def test_unannotated_function_has_no_mime_type(self, resource_manager: ResourceManager):
        @resource_manager("data://plain")
        def plain():
            return "hello"

        result = await resource_manager.read("data://plain")

        assert plain.mime_type is None
        assert resource_manager.list()[0].mimeType is None
        assert result.contents[0].mimeType == "text/plain"

    async def test_read_async_function(self, resource_manager: ResourceManager):
        @resource_manager("status://health")
        async def health() -> str:
            return "ok"

        result = await resource_manager.read("status://health")

        assert result.contents[0].text == "ok"

    async def test_read_normalized_uri(self, resource_manager: ResourceManager):
        resource_manager.add(TextResource("https://example.com", "site", "Home"))

        result = await resource_manager.read("https://example.com/")

        assert result.contents[0].text == "Home"

    async def test_read_unknown(self, resource_manager: ResourceManager):
        with pytest.raises(ResourceNotFoundError, match="Unknown resource: docs://missing") as exc_info:
            await resource_manager.read("docs://missing")

        assert exc_info.value.data == {"uri": "docs://missing"}


class TestResourceHandlers:
    """Test suite for the resources/list and resources/read handlers."""

    @pytest.fixture
    def registry(self) -> HandlerRegistry:
        registry = HandlerRegistry()
        ResourceManager(registry).add(TextResource("docs://readme", "readme", "Hello"))
        return registry

    async def test_list_handler(self, registry: HandlerRegistry):
        result = registry.get("resources/list")({})

        assert isinstance(result, ListResourcesResult)
        assert [r.name for r in result.resources] == ["readme"]

    async def test_read_handler(self, registry: HandlerRegistry):
        result = await registry.get("resources/read")({"uri": "docs://readme"})

        assert result.contents[0].text == "Hello"

    async def test_read_handler_requires_uri(self, registry: HandlerRegistry):
        with pytest.raises(InvalidParamsError, match="requires a uri"):
            await registry.get("resources/read")({})

    async def test_read_handler_unknown(self, registry: HandlerRegistry):
        with pytest.raises(ResourceNotFoundError):
            await registry.get("resources/read")({"uri": "docs://nope"})
