"""Transport-facing subject that routes tickets between two realms."""

import logging
from collections.abc import Callable
from typing import Protocol

from phantogram.emitters import DataEmitter
from phantogram.errors import DisconnectionError
from phantogram.tickets import CallArgsTicket
from phantogram.tickets import CleanupTicket
from phantogram.tickets import DefTicket
from phantogram.tickets import ResponseTicket
from phantogram.tickets import make_reject_ticket
from phantogram.tickets import require_call_ticket
from phantogram.tickets import require_def_ticket
from phantogram.tickets import require_reason
from phantogram.tickets import require_response_ticket

logger = logging.getLogger(__name__)

EVENT_CALL: str = "call"
EVENT_RESPOND: str = "respond"
EVENT_CLEANUP: str = "cleanup"
EVENT_DISCONNECT: str = "disconnect"

CallHandler = Callable[[CallArgsTicket], object]
ResponseHandler = Callable[[ResponseTicket], object]
DisconnectHandler = Callable[[str], object]


class Simulator(Protocol):
    """Convert value graphs to and from their wire-ready form."""

    def simulate(self, value: object) -> object: ...

    def materialize(self, value: object) -> object: ...


class RemoteSubject:
    """Send tickets through a data emitter and correlate what comes back.

    Outbound tickets are simulated before they are emitted so that callables
    in call arguments and return values travel as tickets; inbound tickets are
    materialized before they reach a handler.
    """

    _emitter: DataEmitter
    _simulator: Simulator
    _call_handlers: dict[str, CallHandler]
    _response_handlers: dict[tuple[str, int], ResponseHandler]
    _call_counters: dict[str, int]
    _disconnect_handlers: dict[int, DisconnectHandler]
    _next_disconnect_handler_id: int
    _out_of_scope: dict[str, Callable[[], object]]
    _unsubscribers: list[Callable[[], object]]
    _disconnect_reason: str | None

    def __init__(self, emitter: DataEmitter, simulator: Simulator) -> None:
        """Initialize a subject and subscribe to inbound events.

        :param emitter: Transport collaborator.
        :param simulator: Simulator used to encode and decode ticket contents.
        """
        self._emitter = emitter
        self._simulator = simulator
        self._call_handlers = {}
        self._response_handlers = {}
        self._call_counters = {}
        self._disconnect_handlers = {}
        self._next_disconnect_handler_id = 1
        self._out_of_scope = {}
        self._disconnect_reason = None
        self._unsubscribers = [
            emitter.on(EVENT_CALL, self._handle_call),
            emitter.on(EVENT_RESPOND, self._handle_respond),
            emitter.on(EVENT_CLEANUP, self._handle_cleanup),
            emitter.on(EVENT_DISCONNECT, self._handle_disconnect),
        ]

    @property
    def is_disconnected(self) -> bool:
        """Report whether the channel is permanently unusable.

        :returns: ``True`` after a local or remote disconnect.
        """
        return self._disconnect_reason is not None

    @property
    def disconnect_reason(self) -> str | None:
        """Return the reason given when the subject disconnected."""
        return self._disconnect_reason

    @property
    def pending_response_count(self) -> int:
        """Return the number of calls still waiting for a response."""
        return len(self._response_handlers)

    @property
    def disconnect_handler_count(self) -> int:
        """Return the number of registered disconnect handlers."""
        return len(self._disconnect_handlers)

    def allocate_call_id(self, fn_id: str) -> int:
        """Return the next call id for ``fn_id``.

        Ids are counted per ticket rather than per stub, so every stub built
        for one ticket over the life of the subject draws from one sequence.

        :param fn_id: Identifier of the remote function.
        :returns: Call id, starting at 1.
        """
        call_id: int = self._call_counters.get(fn_id, 0) + 1
        self._call_counters[fn_id] = call_id
        return call_id

    def send(self, call_ticket: CallArgsTicket) -> None:
        """Transmit one call ticket.

        :param call_ticket: Call to send.
        :raises DisconnectionError: If the subject is disconnected.
        """
        if self._disconnect_reason is not None:
            raise DisconnectionError(self._disconnect_reason)
        logger.debug("Sending call %s#%d", call_ticket["fnId"], call_ticket["callId"])
        self._emitter.emit(EVENT_CALL, self._simulator.simulate(call_ticket))

    def respond(self, response_ticket: ResponseTicket) -> None:
        """Transmit the outcome of an inbound call.

        Responses produced after a disconnect have nowhere to go and are dropped.

        :param response_ticket: Response to send.
        """
        if self._disconnect_reason is not None:
            logger.debug("Dropping response for %s after disconnect", response_ticket.get("fnId"))
            return
        self._emitter.emit(EVENT_RESPOND, self._simulator.simulate(response_ticket))

    def on_respond(self, call_ticket: CallArgsTicket, handler: ResponseHandler) -> None:
        """Register a one-shot handler for the response to ``call_ticket``.

        :param call_ticket: Outbound call.
        :param handler: Callback receiving the materialized response ticket.
        """
        key: tuple[str, int] = (call_ticket["fnId"], call_ticket["callId"])
        self._response_handlers[key] = handler

    def forget_response(self, call_ticket: CallArgsTicket) -> None:
        """Drop the response handler of a call that never left this realm.

        :param call_ticket: Outbound call.
        """
        self._response_handlers.pop((call_ticket["fnId"], call_ticket["callId"]), None)

    def on_call(self, ticket: DefTicket, handler: CallHandler) -> Callable[[], None]:
        """Register the handler for inbound calls to a locally owned function.

        :param ticket: Ticket naming the local function.
        :param handler: Callback receiving each materialized call ticket.
        :returns: Procedure removing the handler.
        """
        fn_id: str = ticket["fnId"]
        self._call_handlers[fn_id] = handler

        def unsubscribe() -> None:
            if self._call_handlers.get(fn_id) is handler:
                del self._call_handlers[fn_id]

        return unsubscribe

    def on_disconnected(self, handler: DisconnectHandler) -> Callable[[], None]:
        """Register a handler invoked once when the channel becomes unusable.

        A handler registered after the disconnect is invoked immediately.

        :param handler: Callback receiving the disconnect reason.
        :returns: Procedure removing the handler.
        """
        if self._disconnect_reason is not None:
            handler(self._disconnect_reason)
            return lambda: None

        handler_id: int = self._next_disconnect_handler_id
        self._next_disconnect_handler_id += 1
        self._disconnect_handlers[handler_id] = handler

        def unsubscribe() -> None:
            self._disconnect_handlers.pop(handler_id, None)

        return unsubscribe

    def on_out_of_scope(self, ticket: DefTicket, cleanup: Callable[[], object]) -> None:
        """Register what to do once the peer no longer references ``ticket``.

        :param ticket: Ticket naming a local function.
        :param cleanup: Procedure releasing local resources for the ticket.
        """
        self._out_of_scope[ticket["fnId"]] = cleanup

    def notify_cleanup(self, ticket: CleanupTicket) -> None:
        """Tell the peer that a ticket it owns is no longer referenced here.

        :param ticket: Ticket that went out of scope.
        """
        if self._disconnect_reason is not None:
            return
        logger.debug("Notifying peer that %s is out of scope", ticket["fnId"])
        self._emitter.emit(EVENT_CLEANUP, {"fnId": ticket["fnId"]})

    def disconnect(self, reason: str) -> None:
        """Permanently close the channel on both sides.

        :param reason: Human-readable reason delivered to every handler.
        """
        if self._disconnect_reason is not None:
            return
        self._emitter.emit(EVENT_DISCONNECT, {"reason": reason})
        self._teardown(reason)

    def _teardown(self, reason: str) -> None:
        if self._disconnect_reason is not None:
            return
        self._disconnect_reason = reason
        logger.debug("Remote subject disconnected: %s", reason)

        handlers: list[DisconnectHandler] = list(self._disconnect_handlers.values())
        self._disconnect_handlers.clear()
        for handler in handlers:
            handler(reason)
        self._response_handlers.clear()
        self._call_counters.clear()

        cleanups: list[Callable[[], object]] = list(self._out_of_scope.values())
        self._out_of_scope.clear()
        for cleanup in cleanups:
            cleanup()
        self._call_handlers.clear()

        unsubscribers: list[Callable[[], object]] = self._unsubscribers
        self._unsubscribers = []
        for unsubscribe in unsubscribers:
            unsubscribe()

    def _handle_call(self, payload: object) -> None:
        raw_ticket: CallArgsTicket = require_call_ticket(payload)
        fn_id: str = raw_ticket["fnId"]
        handler: CallHandler | None = self._call_handlers.get(fn_id)
        if handler is None:
            logger.warning("Received call for unknown or released function %s", fn_id)
            self.respond(
                make_reject_ticket(
                    raw_ticket,
                    {
                        "error_type": "PhantogramProtocolError",
                        "error_message": f"Unknown or released function ticket: {fn_id}",
                        "stacktrace": "",
                    },
                )
            )
            return
        call_ticket: CallArgsTicket = self._simulator.materialize(raw_ticket)
        handler(call_ticket)

    def _handle_respond(self, payload: object) -> None:
        raw_ticket: ResponseTicket = require_response_ticket(payload)
        key: tuple[str, int] = (raw_ticket["fnId"], raw_ticket["callId"])
        handler: ResponseHandler | None = self._response_handlers.pop(key, None)
        if handler is None:
            logger.warning("Dropping response for unknown call %s#%d", key[0], key[1])
            return
        response_ticket: ResponseTicket = self._simulator.materialize(raw_ticket)
        handler(response_ticket)

    def _handle_cleanup(self, payload: object) -> None:
        ticket: DefTicket = require_def_ticket(payload)
        cleanup: Callable[[], object] | None = self._out_of_scope.pop(ticket["fnId"], None)
        if cleanup is None:
            logger.debug("Ignoring cleanup for unknown function %s", ticket["fnId"])
            return
        logger.debug("Peer released %s", ticket["fnId"])
        cleanup()

    def _handle_disconnect(self, payload: object) -> None:
        self._teardown(require_reason(payload))
