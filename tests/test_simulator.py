"""Tests for the ticket registry and distributed reference lifetime."""

import asyncio
import gc

import pytest

from phantogram import CallSender
from phantogram import DisconnectionError
from phantogram import FinalizationNotifier
from phantogram import ObjectSimulator
from phantogram import RemoteCallError
from phantogram.tickets import unwrap
from phantogram.tickets import wrap
from tests.fixtures.channels import ManualEmitter
from tests.fixtures.channels import drain
from tests.fixtures.channels import make_realm_pair
from tests.fixtures.channels import make_recording_realm_pair
from tests.fixtures.host_apis import Counter


def _named(value: int) -> int:
    """Module-level function with a stable name."""
    return value


def test_ticket_ids_use_function_name_and_counter() -> None:
    """Ticket ids are readable and unique per simulator."""
    simulator: ObjectSimulator = ObjectSimulator.create(ManualEmitter())
    first: object = simulator.make_receiver(_named)
    second: object = simulator.make_receiver(lambda: None)
    third: object = simulator.make_receiver(Counter().increment)
    assert unwrap(first) == {"fnId": "_named_1"}
    assert unwrap(second) == {"fnId": "<lambda>_2"}
    assert unwrap(third) == {"fnId": "increment_3"}
    assert simulator.receiver_count == 3


def test_receiver_tickets_are_idempotent() -> None:
    """The same function maps to the same ticket without re-registering."""
    simulator: ObjectSimulator = ObjectSimulator.create(ManualEmitter())
    first: object = simulator.make_receiver(_named)
    second: object = simulator.make_receiver(_named)
    assert unwrap(first) is unwrap(second)
    assert simulator.receiver_count == 1


def test_bound_methods_are_keyed_by_function_and_instance() -> None:
    """Fresh bound-method objects of one instance share a ticket; other instances do not."""
    simulator: ObjectSimulator = ObjectSimulator.create(ManualEmitter())
    counter: Counter = Counter()
    other: Counter = Counter()
    first: object = simulator.make_receiver(counter.increment, counter)
    again: object = simulator.make_receiver(counter.increment)
    different: object = simulator.make_receiver(other.increment, other)
    assert unwrap(first) is unwrap(again)
    assert unwrap(first) != unwrap(different)


def test_same_function_with_different_parents_gets_distinct_tickets() -> None:
    """A plain function bound to two parents is two receivers."""
    simulator: ObjectSimulator = ObjectSimulator.create(ManualEmitter())
    owner_a: Counter = Counter()
    owner_b: Counter = Counter()
    ticket_a: object = simulator.make_receiver(_named, owner_a)
    ticket_b: object = simulator.make_receiver(_named, owner_b)
    assert unwrap(ticket_a) != unwrap(ticket_b)


def test_materialized_tickets_resolve_to_the_same_sender() -> None:
    """Simulating one function twice materializes to one sender instance."""
    host, guest, _, _ = make_realm_pair()
    first: object = guest.materialize(host.simulate(_named))
    second: object = guest.materialize(host.simulate(_named))
    assert isinstance(first, CallSender) is True
    assert first is second
    assert guest.sender_count == 1


def test_out_of_scope_notification_drops_receiver() -> None:
    """A cleanup from the peer stops forwarding calls and forgets the ticket."""

    async def scenario() -> None:
        emitter: ManualEmitter = ManualEmitter()
        simulator: ObjectSimulator = ObjectSimulator.create(emitter)
        ticket: object = simulator.make_receiver(_named)
        assert simulator.receiver_count == 1

        emitter.dispatch("cleanup", {"fnId": "_named_1"})
        assert simulator.receiver_count == 0

        emitter.dispatch("call", {"fnId": "_named_1", "callId": 1, "args": [3]})
        responses: list[object] = emitter.payloads("respond")
        assert responses[-1]["status"] == "reject"

        fresh: object = simulator.make_receiver(_named)
        assert unwrap(fresh) != unwrap(ticket)

    asyncio.run(scenario())


def test_release_reports_cleanup_to_owner() -> None:
    """Releasing a stub removes the receiver in the owning realm."""

    async def scenario() -> None:
        host, guest, _, _ = make_realm_pair()
        remote: object = guest.materialize(host.simulate({"named": _named}))
        sender: CallSender = remote["named"]
        assert await sender(4) == 4
        assert host.receiver_count == 1

        sender.release()
        await drain()
        assert host.receiver_count == 0
        assert sender.is_released is True
        with pytest.raises(DisconnectionError, match="released"):
            sender(5)

    asyncio.run(scenario())


def test_released_sender_is_replaced_on_next_materialize() -> None:
    """A ticket materialized after release gets a fresh stub."""
    emitter: ManualEmitter = ManualEmitter()
    simulator: ObjectSimulator = ObjectSimulator.create(emitter)
    first: CallSender = simulator.make_sender(wrap({"fnId": "work_1"}))
    first.release()
    assert emitter.payloads("cleanup") == [{"fnId": "work_1"}]
    second: CallSender = simulator.make_sender(wrap({"fnId": "work_1"}))
    assert second is not first
    assert second.is_released is False


def test_collected_sender_reports_cleanup() -> None:
    """Dropping the last reference to a stub notifies the owning realm."""
    emitter: ManualEmitter = ManualEmitter()
    simulator: ObjectSimulator = ObjectSimulator.create(emitter)
    sender: CallSender = simulator.make_sender(wrap({"fnId": "work_1"}))
    assert simulator.sender_count == 1
    del sender
    gc.collect()
    assert emitter.payloads("cleanup") == [{"fnId": "work_1"}]
    assert simulator.sender_count == 0


def test_cleanup_is_not_sent_after_disconnect() -> None:
    """Reclaimed stubs of a disconnected subject stay silent."""
    emitter: ManualEmitter = ManualEmitter()
    simulator: ObjectSimulator = ObjectSimulator.create(emitter)
    sender: CallSender = simulator.make_sender(wrap({"fnId": "work_1"}))
    emitter.dispatch("disconnect", {"reason": "gone"})
    assert sender.is_disconnected is True
    del sender
    gc.collect()
    assert emitter.payloads("cleanup") == []


def test_disconnect_invalidates_every_receiver() -> None:
    """Bulk invalidation runs every out-of-scope cleanup."""
    emitter: ManualEmitter = ManualEmitter()
    simulator: ObjectSimulator = ObjectSimulator.create(emitter)
    simulator.simulate({"a": _named, "b": Counter()})
    assert simulator.receiver_count == 2
    simulator.disconnect("shutting down")
    assert emitter.payloads("disconnect") == [{"reason": "shutting down"}]
    assert simulator.receiver_count == 0
    assert simulator.subject.disconnect_reason == "shutting down"


def test_custom_notifier_factory_is_used() -> None:
    """The reclaim callback handed to the notifier forwards cleanup notices."""
    created: list[FinalizationNotifier] = []

    def factory(on_reclaim: object) -> FinalizationNotifier:
        notifier: FinalizationNotifier = FinalizationNotifier(on_reclaim)
        created.append(notifier)
        return notifier

    emitter: ManualEmitter = ManualEmitter()
    simulator: ObjectSimulator = ObjectSimulator.create(emitter, notifier_factory=factory)
    sender: CallSender = simulator.make_sender(wrap({"fnId": "work_1"}))
    assert len(created) == 1
    assert created[0].is_registered(sender) is True
    created[0].unregister(sender)
    del sender
    gc.collect()
    assert emitter.payloads("cleanup") == []


def test_create_rejects_invalid_exclusion_policy() -> None:
    """Configuration errors fail at construction time."""
    with pytest.raises(TypeError):
        ObjectSimulator.create(ManualEmitter(), exclusion_policy="strict")


def test_rebuilt_sender_keeps_pending_responses_apart() -> None:
    """A stub rebuilt after release continues the call ids of its ticket."""

    async def scenario() -> None:
        host, guest, _, guest_end = make_recording_realm_pair()
        gate: asyncio.Event = asyncio.Event()

        async def slow(tag: str) -> str:
            await gate.wait()
            return tag.upper()

        message: object = host.simulate(slow)
        first_sender: CallSender = guest.materialize(message)
        first: asyncio.Future = first_sender("a")
        await drain()
        first_sender.release()

        second_sender: CallSender = guest.materialize(message)
        assert second_sender is not first_sender
        second: asyncio.Future = second_sender("b")
        gate.set()
        await drain()

        assert [payload["callId"] for payload in guest_end.payloads("call")] == [1, 2]
        assert await asyncio.wait_for(first, timeout=5) == "A"
        with pytest.raises(RemoteCallError) as exc_info:
            await second
        assert exc_info.value.remote_type_name == "PhantogramProtocolError"
        assert guest.subject.pending_response_count == 0

    asyncio.run(scenario())


def test_collected_sender_drops_disconnect_handler_after_last_response() -> None:
    """A stub collected with calls in flight stops listening once they settle."""

    async def scenario() -> None:
        emitter: ManualEmitter = ManualEmitter()
        simulator: ObjectSimulator = ObjectSimulator.create(emitter)
        sender: CallSender = simulator.make_sender(wrap({"fnId": "work_1"}))
        pending: asyncio.Future = sender("x")
        assert simulator.subject.disconnect_handler_count == 1

        del sender
        gc.collect()
        assert simulator.subject.disconnect_handler_count == 1

        emitter.dispatch("respond", {"fnId": "work_1", "callId": 1, "status": "resolve", "value": "done"})
        assert await pending == "done"
        assert simulator.subject.disconnect_handler_count == 0

    asyncio.run(scenario())


def test_idle_collected_sender_drops_disconnect_handler() -> None:
    """Without pending calls the handler goes away with the stub."""
    emitter: ManualEmitter = ManualEmitter()
    simulator: ObjectSimulator = ObjectSimulator.create(emitter)
    sender: CallSender = simulator.make_sender(wrap({"fnId": "work_1"}))
    assert simulator.subject.disconnect_handler_count == 1
    del sender
    gc.collect()
    assert simulator.subject.disconnect_handler_count == 0
