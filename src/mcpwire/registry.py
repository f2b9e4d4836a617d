import logging
from collections.abc import Iterator
from typing import Final

from pydantic import BaseModel, ConfigDict, Field

from mcpwire.exceptions import LifecycleError
from mcpwire.types import Handler

logger = logging.getLogger(__name__)


class ResourcesCapability(BaseModel):
    model_config = ConfigDict(extra="forbid")

    list: bool = False
    read: bool = False


class ToolsCapability(BaseModel):
    model_config = ConfigDict(extra="forbid")

    list: bool = False
    call: bool = False


class ServerCapabilities(BaseModel):
    """
    Capability advertisement returned by initialize. Every leaf is a boolean.
    """

    model_config = ConfigDict(extra="forbid")

    resources: ResourcesCapability = Field(default_factory=ResourcesCapability)
    tools: ToolsCapability = Field(default_factory=ToolsCapability)


# Capability flag (capability, sub-feature) -> the method that must be registered to advertise it
CAPABILITY_METHODS: Final[dict[tuple[str, str], str]] = {
    ("resources", "list"): "resources/list",
    ("resources", "read"): "resources/read",
    ("tools", "list"): "tools/list",
    ("tools", "call"): "tools/call",
}


class HandlerRegistry:
    """
    Mapping from method name to a single-call handler.

    A handler receives the request params (an empty dict when absent) and returns the result,
    or an explicit HandlerError value. Handlers can be synchronous or asynchronous.

    The registry is frozen when the server connects. Any mutation after that is a programmer
    error and raises LifecycleError.
    """

    _handlers: dict[str, Handler]
    _frozen: bool

    def __init__(self) -> None:
        self._handlers = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def register(self, method: str, handler: Handler) -> None:
        """
        Register a handler for the method. An existing handler for the method is replaced.

        Raises:
            LifecycleError: If the registry is frozen.
            ValueError: If the method name is empty or the handler is not callable.
        """
        if self._frozen:
            raise LifecycleError(f"Cannot register handler for {method}, the server is already connected")

        if not method:
            raise ValueError("Method name cannot be empty")

        if not callable(handler):
            raise ValueError(f"Handler for {method} is not callable")

        if method in self._handlers:
            logger.debug("Replacing handler for %s", method)

        self._handlers[method] = handler

    def get(self, method: str) -> Handler | None:
        return self._handlers.get(method)

    def methods(self) -> list[str]:
        return list(self._handlers)

    def __contains__(self, method: object) -> bool:
        return method in self._handlers

    def __iter__(self) -> Iterator[str]:
        return iter(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)

    def capabilities(self) -> ServerCapabilities:
        """Derive the capability advertisement from the registered handlers."""
        caps = ServerCapabilities()
        for (capability, feature), method in CAPABILITY_METHODS.items():
            setattr(getattr(caps, capability), feature, method in self._handlers)
        return caps

    def unbacked_capabilities(self, caps: ServerCapabilities) -> list[str]:
        """
        Returns:
            The capability flags (as "capability.feature") set to true without a registered handler.
        """
        return [
            f"{capability}.{feature}"
            for (capability, feature), method in CAPABILITY_METHODS.items()
            if getattr(getattr(caps, capability), feature) and method not in self._handlers
        ]
