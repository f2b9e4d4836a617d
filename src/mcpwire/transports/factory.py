import logging
from typing import Any, Final

from mcpwire.exceptions import ConfigurationError
from mcpwire.transports.base import Transport
from mcpwire.transports.stdio import StdioTransport
from mcpwire.transports.streaming import StreamingTransport

logger = logging.getLogger(__name__)

TRANSPORTS: Final[dict[str, type[Transport]]] = {
    "stdio": StdioTransport,
    "streaming": StreamingTransport,
}

TRANSPORT_TAGS: Final[tuple[str, ...]] = tuple(TRANSPORTS)

DEFAULT_TRANSPORT: Final = "stdio"


def get_transport_class(tag: str) -> type[Transport]:
    """
    Resolve a transport tag without constructing the transport.

    Raises:
        ConfigurationError: If the tag is unknown.
    """
    try:
        return TRANSPORTS[tag]
    except KeyError:
        raise ConfigurationError(
            f"Unknown transport {tag!r}. Supported transports: {', '.join(TRANSPORT_TAGS)}"
        ) from None


def create_transport(tag: str, **options: Any) -> Transport:
    """
    Build a transport from its tag.

    Args:
        tag: One of TRANSPORT_TAGS.
        **options: Keyword arguments passed on to the transport constructor.

    Returns:
        The transport. No I/O is performed.

    Raises:
        ConfigurationError: If the tag is unknown or the options are not accepted by the transport.
    """
    transport_class = get_transport_class(tag)

    try:
        transport = transport_class(**options)
    except TypeError as e:
        raise ConfigurationError(f"Invalid options for {tag} transport: {e}") from e

    logger.debug("Created %s transport", tag)
    return transport
