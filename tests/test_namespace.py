"""Tests for namespace proxies and host method batches."""

import asyncio

import pytest

from phantogram import InvalidPropertyError
from phantogram import PhantogramProtocolError
from phantogram import RemoteCallError
from phantogram import dispatch_host_methods
from phantogram import expose_host_methods
from phantogram import host_namespace
from phantogram import make_proxy
from phantogram import pending_addresses
from phantogram.namespace import AddressBuilder
from tests.fixtures.channels import make_realm_pair
from tests.fixtures.host_apis import Editor
from tests.fixtures.host_apis import make_host_apis


class RecordingInvoker:
    """Collect flushed batches instead of sending them anywhere."""

    batches: list[list[object]]

    def __init__(self) -> None:
        self.batches = []

    def __call__(self, addresses: list[object]) -> str:
        self.batches.append(addresses)
        return f"flushed {len(addresses)}"


def test_calls_are_batched_in_order_until_flush() -> None:
    """Nothing is sent until ``then``; the batch keeps call order."""
    invoker: RecordingInvoker = RecordingInvoker()
    ns = make_proxy(invoker)
    ns.a.b.c(1)
    ns.a.b.d(2)
    assert invoker.batches == []
    assert len(pending_addresses(ns)) == 2

    assert ns.then == "flushed 2"
    assert invoker.batches == [
        [
            {"path": ["a", "b"], "name": "c", "args": [1]},
            {"path": ["a", "b"], "name": "d", "args": [2]},
        ]
    ]
    assert pending_addresses(ns) == []


def test_any_attribute_name_is_a_path_segment() -> None:
    """Names that read like proxy internals still address the remote side."""
    invoker: RecordingInvoker = RecordingInvoker()
    ns = make_proxy(invoker)
    ns.pending_addresses.x(1)
    assert pending_addresses(ns) == [{"path": ["pending_addresses"], "name": "x", "args": [1]}]
    ns.then
    assert invoker.batches == [[{"path": ["pending_addresses"], "name": "x", "args": [1]}]]


def test_item_access_extends_the_path() -> None:
    """Keys that are not identifiers can be looked up with brackets."""
    invoker: RecordingInvoker = RecordingInvoker()
    ns = make_proxy(invoker)
    ns["my-service"].run("x", 2)
    ns["then"]
    assert invoker.batches == [[{"path": ["my-service"], "name": "run", "args": ["x", 2]}]]


def test_calls_can_be_chained_before_flushing() -> None:
    """A call returns a node that keeps recording into the same batch."""
    invoker: RecordingInvoker = RecordingInvoker()
    ns = make_proxy(invoker)
    ns.editor.set_title("a").editor.get_title().then
    assert invoker.batches == [
        [
            {"path": ["editor"], "name": "set_title", "args": ["a"]},
            {"path": ["editor"], "name": "get_title", "args": []},
        ]
    ]


def test_empty_flush_sends_empty_batch() -> None:
    """Flushing with nothing recorded still invokes the callback once."""
    invoker: RecordingInvoker = RecordingInvoker()
    ns = make_proxy(invoker)
    assert ns.then == "flushed 0"
    assert invoker.batches == [[]]


def test_non_string_key_is_rejected() -> None:
    """Only string keys name a path segment."""
    ns = make_proxy(RecordingInvoker())
    with pytest.raises(InvalidPropertyError):
        ns[1]


def test_protocol_names_are_not_path_segments() -> None:
    """Dunder lookups behave like missing attributes."""
    ns = make_proxy(RecordingInvoker())
    with pytest.raises(AttributeError):
        ns.__wrapped__
    assert hasattr(ns, "__length_hint__") is False
    assert pending_addresses(ns) == []


def test_assignment_is_rejected() -> None:
    """A proxy is read-only."""
    ns = make_proxy(RecordingInvoker())
    with pytest.raises(InvalidPropertyError):
        ns.title = "x"


def test_calling_an_unnamed_proxy_is_rejected() -> None:
    """A call needs a method name."""
    ns = make_proxy(RecordingInvoker())
    with pytest.raises(InvalidPropertyError):
        ns(1)


def test_address_builder_resets_on_flush() -> None:
    """Flushing drops both the committed calls and any dangling path."""
    builder: AddressBuilder = AddressBuilder()
    builder.add_path("editor")
    builder.add_path("save")
    builder.add_method()
    builder.add_path("dangling")
    assert builder.compile_flush() == [{"path": ["editor"], "name": "save", "args": []}]
    assert builder.current_path == []
    assert builder.address_cache == []


def test_awaiting_a_proxy_flushes() -> None:
    """``await ns`` flushes and yields the invoker's result."""

    async def invoke(addresses: list[object]) -> int:
        return len(addresses)

    async def scenario() -> None:
        ns = make_proxy(invoke)
        ns.x.y()
        assert await ns == 1

    asyncio.run(scenario())


def test_awaiting_a_proxy_with_a_plain_result() -> None:
    """Non-awaitable invoker results are delivered as they are."""

    async def scenario() -> None:
        ns = make_proxy(RecordingInvoker())
        ns.x.y()
        assert await ns == "flushed 1"

    asyncio.run(scenario())


def test_dispatch_runs_calls_in_order() -> None:
    """Each address runs after the previous one finished."""

    async def scenario() -> None:
        apis: dict[str, object] = make_host_apis()
        results: list[object] = await dispatch_host_methods(
            apis,
            [
                {"path": ["editor"], "name": "set_title", "args": ["report"]},
                {"path": ["editor"], "name": "save", "args": [0]},
                {"path": ["math", "scale"], "name": "by", "args": [3, 4]},
            ],
        )
        assert results == ["untitled", "saved report", 12]

    asyncio.run(scenario())


def test_dispatch_rejects_unknown_or_invalid_addresses() -> None:
    """Unknown paths, protocol names and malformed addresses fail loudly."""

    async def scenario() -> None:
        apis: dict[str, object] = make_host_apis()
        with pytest.raises(PhantogramProtocolError, match="math.missing"):
            await dispatch_host_methods(apis, [{"path": ["math"], "name": "missing", "args": []}])
        with pytest.raises(PhantogramProtocolError, match="editor.nope"):
            await dispatch_host_methods(apis, [{"path": ["editor"], "name": "nope", "args": []}])
        with pytest.raises(PhantogramProtocolError):
            await dispatch_host_methods(apis, [{"path": ["editor"], "name": "__class__", "args": []}])
        with pytest.raises(PhantogramProtocolError, match="not callable"):
            await dispatch_host_methods(apis, [{"path": ["editor"], "name": "title", "args": []}])
        with pytest.raises(PhantogramProtocolError):
            await dispatch_host_methods(apis, [{"path": "editor", "name": "save", "args": []}])
        with pytest.raises(PhantogramProtocolError):
            await dispatch_host_methods(apis, {"path": [], "name": "save", "args": []})

    asyncio.run(scenario())


def test_namespace_round_trip_between_realms() -> None:
    """A guest drives host services through one batched remote call."""

    async def scenario() -> None:
        host, guest, _, _ = make_realm_pair()
        apis: dict[str, object] = make_host_apis()
        editor: Editor = apis["editor"]
        ns = host_namespace(guest, expose_host_methods(host, apis))

        ns.editor.set_title("draft")
        ns.math.add(2, 3)
        ns.editor.save(0)
        assert await ns == ["untitled", 5, "saved draft"]
        assert editor.history == ["draft"]

    asyncio.run(scenario())


def test_namespace_batches_may_carry_callbacks() -> None:
    """Functions inside a batch become remote references on the host."""

    async def scenario() -> None:
        host, guest, _, _ = make_realm_pair()
        ns = host_namespace(guest, expose_host_methods(host, make_host_apis()))
        ns.callbacks.apply_twice(lambda value: value * 10, 1)
        assert await ns == [[10, 20]]

    asyncio.run(scenario())


def test_namespace_errors_arrive_as_remote_call_errors() -> None:
    """A failing host method rejects the whole flush."""

    async def scenario() -> None:
        host, guest, _, _ = make_realm_pair()
        ns = host_namespace(guest, expose_host_methods(host, make_host_apis()))
        ns.editor.fail("read only")
        with pytest.raises(RemoteCallError) as exc_info:
            await ns
        assert exc_info.value.remote_type_name == "HostApiError"

        ns.unknown.call()
        with pytest.raises(RemoteCallError) as exc_info:
            await ns
        assert exc_info.value.remote_type_name == "PhantogramProtocolError"

    asyncio.run(scenario())


def test_host_namespace_requires_a_function_ticket() -> None:
    """Plain data cannot back a namespace proxy."""
    _, guest, _, _ = make_realm_pair()
    with pytest.raises(PhantogramProtocolError):
        host_namespace(guest, {"not": "a ticket"})
