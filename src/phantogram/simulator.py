"""Ticket registry tying the graph walker to a remote subject."""

import inspect
import logging
import weakref
from collections.abc import Callable

from phantogram.classify import DEFAULT_EXCLUSION_POLICY
from phantogram.classify import ExclusionPolicy
from phantogram.cleanup import CleanupNotifier
from phantogram.cleanup import FinalizationNotifier
from phantogram.emitters import DataEmitter
from phantogram.rpc import CallSender
from phantogram.rpc import make_call_sender
from phantogram.rpc import receive_calls
from phantogram.subject import RemoteSubject
from phantogram.subject import Simulator
from phantogram.tickets import DefTicket
from phantogram.tickets import require_def_ticket
from phantogram.tickets import unwrap
from phantogram.tickets import wrap
from phantogram.walker import materialize_funcs_recursive
from phantogram.walker import simulate_funcs_recursive

logger = logging.getLogger(__name__)

NotifierFactory = Callable[[Callable[[str], object]], CleanupNotifier]
_BindingKey = tuple[int, int | None]


def _binding_of(fn: Callable[..., object], parent: object | None) -> tuple[object, object | None]:
    """Return the (function, parent) pair that identifies a receiver.

    Attribute lookup mints a new bound-method object every time, so bound
    methods are identified by their underlying function and instance.

    :param fn: Local callable.
    :param parent: Object the callable was found on, if any.
    :returns: Identity pair.
    """
    if inspect.ismethod(fn) is True:
        return fn.__func__, fn.__self__
    return fn, parent


class _ReceiverEntry:
    """Keep a local function reachable while the peer may call it."""

    key: _BindingKey
    fn: Callable[..., object]
    binding: tuple[object, object | None]

    def __init__(self, key: _BindingKey, fn: Callable[..., object], binding: tuple[object, object | None]) -> None:
        self.key = key
        self.fn = fn
        self.binding = binding


class ObjectSimulator:
    """Own the function/ticket caches for one realm's side of a channel."""

    subject: RemoteSubject
    _fn_counter: int
    _receiver_tickets: dict[_BindingKey, DefTicket]
    _receiver_entries: dict[str, _ReceiverEntry]
    _sender_cache: "weakref.WeakValueDictionary[str, CallSender]"
    _cleanup_notifier: CleanupNotifier
    _exclusion_policy: ExclusionPolicy

    def __init__(
        self,
        subject: RemoteSubject,
        cleanup_notifier: CleanupNotifier,
        exclusion_policy: ExclusionPolicy = DEFAULT_EXCLUSION_POLICY,
    ) -> None:
        """Initialize a simulator.

        :param subject: Subject used to register receivers and senders.
        :param cleanup_notifier: Notifier reporting unreachable senders.
        :param exclusion_policy: Policy deciding which values are omitted.
        """
        self.subject = subject
        self._fn_counter = 0
        self._receiver_tickets = {}
        self._receiver_entries = {}
        self._sender_cache = weakref.WeakValueDictionary()
        self._cleanup_notifier = cleanup_notifier
        self._exclusion_policy = exclusion_policy

    @classmethod
    def create(
        cls,
        emitter: DataEmitter,
        notifier_factory: NotifierFactory = FinalizationNotifier,
        exclusion_policy: ExclusionPolicy | None = None,
    ) -> "ObjectSimulator":
        """Wire a simulator, its subject and its reclamation notifier.

        :param emitter: Transport collaborator.
        :param notifier_factory: Factory taking the reclaim callback.
        :param exclusion_policy: Optional exclusion policy; defaults to
            :data:`phantogram.classify.DEFAULT_EXCLUSION_POLICY`.
        :returns: Ready-to-use simulator.
        """
        if exclusion_policy is None:
            exclusion_policy = DEFAULT_EXCLUSION_POLICY
        if isinstance(exclusion_policy, ExclusionPolicy) is False:
            raise TypeError("exclusion_policy must be an ExclusionPolicy")

        simulator: ObjectSimulator | None = None

        class _SimulatorFacade:
            def simulate(self, value: object) -> object:
                return simulator.simulate(value)

            def materialize(self, value: object) -> object:
                return simulator.materialize(value)

        facade: Simulator = _SimulatorFacade()
        subject: RemoteSubject = RemoteSubject(emitter, facade)

        def on_reclaim(fn_id: str) -> None:
            subject.notify_cleanup({"fnId": fn_id})

        cleanup_notifier: CleanupNotifier = notifier_factory(on_reclaim)
        simulator = cls(subject, cleanup_notifier, exclusion_policy)
        return simulator

    @property
    def receiver_count(self) -> int:
        """Return the number of local functions the peer may call."""
        return len(self._receiver_entries)

    @property
    def sender_count(self) -> int:
        """Return the number of live stubs for remote functions."""
        return len(self._sender_cache)

    def make_receiver(self, fn: Callable[..., object], parent: object | None = None) -> dict[str, object]:
        """Return the wrapped ticket for a local function, minting it on first use.

        :param fn: Local callable.
        :param parent: Object ``fn`` was found on, if any.
        :returns: Wrapped ticket.
        """
        binding: tuple[object, object | None] = _binding_of(fn, parent)
        binding_parent: object | None = binding[1]
        key: _BindingKey = (id(binding[0]), None if binding_parent is None else id(binding_parent))
        fn_ticket: DefTicket | None = self._receiver_tickets.get(key)
        if fn_ticket is not None:
            return wrap(fn_ticket)

        self._fn_counter += 1
        fn_name: object = getattr(fn, "__name__", None)
        if isinstance(fn_name, str) is False or fn_name == "":
            fn_name = "<anonymous>"
        fn_id: str = f"{fn_name}_{self._fn_counter}"
        fn_ticket = {"fnId": fn_id}

        stop_receiving: Callable[[], None] = receive_calls(fn, fn_ticket, weakref.ref(self.subject))

        def on_out_of_scope() -> None:
            stop_receiving()
            self._forget_receiver(fn_id)

        self.subject.on_out_of_scope(fn_ticket, on_out_of_scope)
        self._receiver_tickets[key] = fn_ticket
        self._receiver_entries[fn_id] = _ReceiverEntry(key, fn, binding)
        logger.debug("Minted ticket %s", fn_id)
        return wrap(fn_ticket)

    def make_sender(self, message: dict[str, object], _parent: object | None = None) -> CallSender:
        """Return the local stub for a wrapped remote ticket.

        :param message: Wrapped ticket received from the peer.
        :returns: Cached or newly built stub.
        """
        ticket: DefTicket = require_def_ticket(unwrap(message))
        fn_id: str = ticket["fnId"]
        cached: CallSender | None = self._sender_cache.get(fn_id)
        if cached is not None and cached.is_released is False:
            return cached

        sender: CallSender = make_call_sender(ticket, weakref.ref(self.subject))
        self._cleanup_notifier.register(sender, fn_id, sender)
        sender.bind_release_hook(self._release_sender)
        self._sender_cache[fn_id] = sender
        return sender

    def simulate(self, value: object) -> object:
        """Convert a local value graph for transmission.

        :param value: Local value.
        :returns: Wire-ready value with tickets in place of callables.
        """
        return simulate_funcs_recursive(self.make_receiver, value, exclusion_policy=self._exclusion_policy)

    def materialize(self, value: object) -> object:
        """Convert a received value graph into local data and stubs.

        :param value: Simulated value.
        :returns: Plain data with :class:`CallSender` stubs in place of tickets.
        """
        return materialize_funcs_recursive(self.make_sender, value)

    def disconnect(self, reason: str) -> None:
        """Disconnect the subject, failing every pending call on both sides.

        :param reason: Human-readable reason.
        """
        self.subject.disconnect(reason)

    def _release_sender(self, sender: CallSender) -> None:
        self._cleanup_notifier.release(sender)
        if self._sender_cache.get(sender.fn_id) is sender:
            del self._sender_cache[sender.fn_id]

    def _forget_receiver(self, fn_id: str) -> None:
        entry: _ReceiverEntry | None = self._receiver_entries.pop(fn_id, None)
        if entry is None:
            return
        if self._receiver_tickets.get(entry.key, {}).get("fnId") == fn_id:
            del self._receiver_tickets[entry.key]
