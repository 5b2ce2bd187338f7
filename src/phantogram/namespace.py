"""Lazily built namespace proxies that batch method calls into addresses."""

import inspect
import logging
from collections.abc import Awaitable
from collections.abc import Callable
from collections.abc import Generator
from collections.abc import Mapping

from phantogram.classify import is_dunder
from phantogram.errors import InvalidPropertyError
from phantogram.errors import PhantogramProtocolError
from phantogram.tickets import HostMethodAddress

logger = logging.getLogger(__name__)

FLUSH_PROPERTY: str = "then"

RemoteMethodInvoker = Callable[[list[HostMethodAddress]], object]


class AddressBuilder:
    """Accumulate a path and the calls committed since the last flush."""

    current_path: list[str]
    address_cache: list[HostMethodAddress]

    def __init__(self) -> None:
        """Initialize an empty builder."""
        self.current_path = []
        self.address_cache = []

    def add_path(self, chunk: str) -> None:
        """Append one segment to the current path.

        :param chunk: Path segment.
        """
        self.current_path.append(chunk)

    def add_method(self, *args: object) -> None:
        """Commit the current path as a call with ``args``.

        :param args: Call arguments.
        :raises InvalidPropertyError: If no method name has been looked up yet.
        """
        if len(self.current_path) == 0:
            raise InvalidPropertyError("Cannot call a host connection proxy before naming a method")
        self.address_cache.append(
            {
                "path": self.current_path[:-1],
                "name": self.current_path[-1],
                "args": list(args),
            }
        )
        self.current_path = []

    def compile_flush(self) -> list[HostMethodAddress]:
        """Drain the committed calls and reset the builder.

        :returns: Addresses committed since the previous flush, in call order.
        """
        result: list[HostMethodAddress] = self.address_cache
        self.address_cache = []
        self.current_path = []
        return result


async def _resolved(value: object) -> object:
    return value


class NamespaceProxy:
    """Chainable node turning attribute lookups and calls into addresses.

    ``ns.service.method(x)`` records ``{"path": ["service"], "name": "method",
    "args": [x]}``. Nothing is sent until the chain is awaited (or ``then`` is
    looked up), at which point every recorded address goes out in one batch.
    """

    _invoke: RemoteMethodInvoker
    _builder: AddressBuilder
    _children: dict[str, "NamespaceProxy"]

    def __init__(self, invoke: RemoteMethodInvoker, builder: AddressBuilder) -> None:
        """Initialize a proxy node.

        :param invoke: Callback receiving each flushed address batch.
        :param builder: Builder shared by every node of the chain.
        """
        object.__setattr__(self, "_invoke", invoke)
        object.__setattr__(self, "_builder", builder)
        object.__setattr__(self, "_children", {})

    def _lookup(self, name: str) -> object:
        if name == FLUSH_PROPERTY:
            addresses: list[HostMethodAddress] = self._builder.compile_flush()
            logger.debug("Flushing %d namespace calls", len(addresses))
            return self._invoke(addresses)

        self._builder.add_path(name)
        child: NamespaceProxy | None = self._children.get(name)
        if child is None:
            child = NamespaceProxy(self._invoke, self._builder)
            self._children[name] = child
        return child

    def __getattr__(self, name: str) -> object:
        """Extend the path, or flush on ``then``.

        :param name: Attribute name.
        :returns: Child node, or the invoker's result for ``then``.
        """
        if is_dunder(name) is True:
            raise AttributeError(name)
        return self._lookup(name)

    def __getitem__(self, key: object) -> object:
        """Extend the path with a key that is not a valid identifier.

        :param key: Path segment.
        :returns: Child node, or the invoker's result for ``then``.
        :raises InvalidPropertyError: If ``key`` is not a string.
        """
        if isinstance(key, str) is False:
            raise InvalidPropertyError(f"Cannot look up a non-string key {key!r} on a host connection proxy.")
        return self._lookup(key)

    def __setattr__(self, name: str, value: object) -> None:
        raise InvalidPropertyError(f"Cannot assign {name!r} on a host connection proxy.")

    def __call__(self, *args: object) -> "NamespaceProxy":
        """Commit the current path as a method call.

        :param args: Call arguments.
        :returns: Fresh node for further chaining before the flush.
        """
        self._builder.add_method(*args)
        return make_proxy(self._invoke, self._builder)

    def __await__(self) -> Generator[object, None, object]:
        """Flush the batch and wait for the invoker's result."""
        result: object = self._lookup(FLUSH_PROPERTY)
        if inspect.isawaitable(result) is False:
            result = _resolved(result)
        return result.__await__()

    def __repr__(self) -> str:
        path: str = ".".join(self._builder.current_path)
        return f"<NamespaceProxy path={path!r} pending={len(self._builder.address_cache)}>"


def make_proxy(invoke: RemoteMethodInvoker, builder: AddressBuilder | None = None) -> NamespaceProxy:
    """Build the root node of a namespace proxy.

    :param invoke: Callback receiving each flushed address batch.
    :param builder: Builder to share; a new one is created when omitted.
    :returns: Proxy node.
    """
    if builder is None:
        builder = AddressBuilder()
    return NamespaceProxy(invoke, builder)


def pending_addresses(proxy: NamespaceProxy) -> list[HostMethodAddress]:
    """Return a copy of the addresses waiting for the next flush of ``proxy``.

    Kept off the proxy so that every attribute name stays addressable.

    :param proxy: Any node of a namespace chain.
    :returns: Committed addresses in call order.
    """
    builder: AddressBuilder = object.__getattribute__(proxy, "_builder")
    return list(builder.address_cache)


def require_host_method_address(value: object) -> HostMethodAddress:
    """Validate one inbound namespace address.

    :param value: Candidate address.
    :returns: Validated address.
    :raises PhantogramProtocolError: If a field is missing or invalid.
    """
    if isinstance(value, Mapping) is False:
        raise PhantogramProtocolError("Host method address must be a mapping")
    path: object = value.get("path")
    if isinstance(path, list) is False:
        raise PhantogramProtocolError("Host method address path must be a list")
    for segment in path:
        if isinstance(segment, str) is False:
            raise PhantogramProtocolError("Host method address path segments must be strings")
    name: object = value.get("name")
    if isinstance(name, str) is False:
        raise PhantogramProtocolError("Host method address name must be a string")
    args: object = value.get("args")
    if isinstance(args, list) is False:
        raise PhantogramProtocolError("Host method address args must be a list")
    return value


def _resolve_segment(current: object, segment: str, address: HostMethodAddress) -> object:
    if is_dunder(segment) is True:
        raise PhantogramProtocolError(f"Refusing to resolve protocol name {segment!r}")
    if isinstance(current, Mapping) is True:
        if segment not in current:
            raise PhantogramProtocolError(f"Unknown host method {_describe(address)}")
        return current[segment]
    try:
        return getattr(current, segment)
    except AttributeError as exc:
        raise PhantogramProtocolError(f"Unknown host method {_describe(address)}") from exc


def _describe(address: HostMethodAddress) -> str:
    return ".".join([*address["path"], address["name"]])


def resolve_host_method(apis: object, address: HostMethodAddress) -> Callable[..., object]:
    """Find the host callable named by ``address``.

    :param apis: Nested mapping or object tree of host APIs.
    :param address: Validated address.
    :returns: Callable to invoke.
    :raises PhantogramProtocolError: If the path does not lead to a callable.
    """
    current: object = apis
    for segment in [*address["path"], address["name"]]:
        current = _resolve_segment(current, segment, address)
    if callable(current) is False:
        raise PhantogramProtocolError(f"Host attribute {_describe(address)} is not callable")
    return current


async def dispatch_host_methods(apis: object, addresses: list[object]) -> list[object]:
    """Run a flushed batch of namespace calls against the host APIs.

    Calls run one after another in address order; awaitable results are
    awaited before the next call starts.

    :param apis: Nested mapping or object tree of host APIs.
    :param addresses: Addresses flushed by a guest-side proxy.
    :returns: One result per address.
    """
    if isinstance(addresses, list) is False:
        raise PhantogramProtocolError("Host method batch must be a list")
    validated: list[HostMethodAddress] = [require_host_method_address(address) for address in addresses]
    results: list[object] = []
    for address in validated:
        method: Callable[..., object] = resolve_host_method(apis, address)
        result: object = method(*address["args"])
        if inspect.isawaitable(result) is True:
            result = await result
        results.append(result)
    return results


def host_method_invoker(apis: object) -> Callable[[list[object]], Awaitable[list[object]]]:
    """Bind :func:`dispatch_host_methods` to one API tree.

    :param apis: Nested mapping or object tree of host APIs.
    :returns: Coroutine function taking an address batch.
    """

    async def invoke_host_methods(addresses: list[object]) -> list[object]:
        return await dispatch_host_methods(apis, addresses)

    return invoke_host_methods
