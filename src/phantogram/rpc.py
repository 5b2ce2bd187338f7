"""Call dispatch for remote function references."""

import asyncio
import inspect
import logging
import weakref
from collections.abc import Callable
from typing import TYPE_CHECKING

from phantogram.errors import DisconnectionError
from phantogram.tickets import CallArgsTicket
from phantogram.tickets import DefTicket
from phantogram.tickets import ResponseTicket
from phantogram.tickets import error_to_payload
from phantogram.tickets import make_call_ticket
from phantogram.tickets import make_reject_ticket
from phantogram.tickets import make_resolve_ticket
from phantogram.tickets import payload_to_error

if TYPE_CHECKING:
    from phantogram.subject import RemoteSubject

logger = logging.getLogger(__name__)

_RESPONSE_TASKS: set[asyncio.Task] = set()


class _SenderState:
    """Call bookkeeping shared by a sender stub and its disconnect handler.

    The subject keeps this state alive through its disconnect handler; the
    stub itself stays collectable so that its reclamation can be reported.
    """

    fn_id: str
    subject_ref: "weakref.ReferenceType[RemoteSubject] | None"
    rejection_pool: set[asyncio.Future]
    disconnect_reason: str | None
    is_released: bool
    is_collected: bool
    unsubscribe: Callable[[], None] | None

    def __init__(self, fn_id: str, subject_ref: "weakref.ReferenceType[RemoteSubject]") -> None:
        """Initialize sender state.

        :param fn_id: Identifier of the remote function.
        :param subject_ref: Weak reference to the owning subject.
        """
        self.fn_id = fn_id
        self.subject_ref = subject_ref
        self.rejection_pool = set()
        self.disconnect_reason = None
        self.is_released = False
        self.is_collected = False
        self.unsubscribe = None

    def send(self, args: list[object]) -> asyncio.Future:
        """Dispatch one call and return the future of its response.

        Call ids come from the subject, so a stub rebuilt for the same ticket
        never reuses the id of a call that is still pending.

        :param args: Positional call arguments.
        :returns: Future settled by the correlated response.
        :raises DisconnectionError: If the subject disconnected or the reference was released.
        """
        if self.disconnect_reason is not None:
            raise DisconnectionError(self.disconnect_reason)
        if self.is_released is True:
            raise DisconnectionError(f"reference to {self.fn_id} was released")
        subject: RemoteSubject | None = None
        if self.subject_ref is not None:
            subject = self.subject_ref()
        if subject is None:
            raise DisconnectionError("remote subject is no longer available")

        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        call_ticket: CallArgsTicket = make_call_ticket(self.fn_id, subject.allocate_call_id(self.fn_id), args)

        def settle(response_ticket: ResponseTicket) -> None:
            self.rejection_pool.discard(future)
            if future.done() is False:
                if response_ticket["status"] == "resolve":
                    future.set_result(response_ticket.get("value"))
                else:
                    future.set_exception(payload_to_error(response_ticket.get("error")))
            if self.is_collected is True:
                self.detach()

        subject.on_respond(call_ticket, settle)
        self.rejection_pool.add(future)
        try:
            subject.send(call_ticket)
        except Exception:
            self.rejection_pool.discard(future)
            subject.forget_response(call_ticket)
            raise
        return future

    def destroy(self, reason: str) -> None:
        """Fail every pending call and refuse new ones.

        :param reason: Disconnect reason reported by the subject.
        """
        self.subject_ref = None
        self.disconnect_reason = reason
        self.unsubscribe = None
        pending: list[asyncio.Future] = list(self.rejection_pool)
        self.rejection_pool.clear()
        for future in pending:
            if future.done() is False:
                future.set_exception(DisconnectionError(reason))
        if len(pending) > 0:
            logger.debug("Rejected %d pending calls to %s: %s", len(pending), self.fn_id, reason)

    def collect(self) -> None:
        """Record that the stub is gone and drop the disconnect handler when idle."""
        self.is_collected = True
        self.detach()

    def detach(self) -> None:
        """Drop the disconnect handler once nothing is pending."""
        if len(self.rejection_pool) > 0:
            return
        unsubscribe: Callable[[], None] | None = self.unsubscribe
        self.unsubscribe = None
        if unsubscribe is not None:
            unsubscribe()


class CallSender:
    """Locally invocable stub for a function owned by the other realm.

    Calling the stub returns an awaitable future; it raises
    :class:`DisconnectionError` synchronously once its subject has
    disconnected or the reference has been released.
    """

    _state: _SenderState
    _release_hook: "Callable[[CallSender], object] | None"

    def __init__(self, state: _SenderState) -> None:
        """Initialize a stub around its call state.

        :param state: Sender state.
        """
        self._state = state
        self._release_hook = None
        self.__name__ = state.fn_id
        self.__qualname__ = state.fn_id

    @property
    def fn_id(self) -> str:
        """Return the identifier of the remote function."""
        return self._state.fn_id

    @property
    def is_disconnected(self) -> bool:
        """Report whether the owning subject has disconnected."""
        return self._state.disconnect_reason is not None

    @property
    def is_released(self) -> bool:
        """Report whether :meth:`release` has been called."""
        return self._state.is_released

    @property
    def pending_call_count(self) -> int:
        """Return the number of calls waiting for a response."""
        return len(self._state.rejection_pool)

    def __call__(self, *args: object) -> asyncio.Future:
        """Call the remote function.

        :param args: Positional arguments, simulated before they are sent.
        :returns: Future resolving with the remote return value.
        """
        return self._state.send(list(args))

    def release(self) -> None:
        """Tell the owning realm right away that this reference is no longer used.

        Without an explicit release the owner is told once the stub is
        garbage collected. Calls still pending keep their responses.
        """
        if self._state.is_released is True:
            return
        self._state.is_released = True
        hook: Callable[[CallSender], object] | None = self._release_hook
        self._release_hook = None
        if hook is not None:
            hook(self)

    def bind_release_hook(self, hook: "Callable[[CallSender], object]") -> None:
        """Set the procedure run by :meth:`release`.

        :param hook: Callback receiving this stub.
        """
        self._release_hook = hook

    def __repr__(self) -> str:
        return f"<CallSender {self._state.fn_id}>"


def make_call_sender(ticket: DefTicket, subject_ref: "weakref.ReferenceType[RemoteSubject]") -> CallSender:
    """Build the outbound stub for a remote function ticket.

    :param ticket: Ticket naming the remote function.
    :param subject_ref: Weak reference to the subject the stub sends through.
    :returns: Callable stub.
    """
    state: _SenderState = _SenderState(ticket["fnId"], subject_ref)
    subject: RemoteSubject | None = subject_ref()
    if subject is None:
        state.destroy("remote subject is no longer available")
    else:
        state.unsubscribe = subject.on_disconnected(state.destroy)
    sender: CallSender = CallSender(state)
    weakref.finalize(sender, state.collect)
    return sender


async def _respond_when_done(
    subject_ref: "weakref.ReferenceType[RemoteSubject]",
    call_ticket: CallArgsTicket,
    awaitable: object,
) -> None:
    response_ticket: ResponseTicket
    try:
        value: object = await awaitable
        response_ticket = make_resolve_ticket(call_ticket, value)
    except Exception as exc:
        response_ticket = make_reject_ticket(call_ticket, error_to_payload(exc))
    subject: RemoteSubject | None = subject_ref()
    if subject is None:
        return
    subject.respond(response_ticket)


def receive_calls(
    fn: Callable[..., object],
    ticket: DefTicket,
    subject_ref: "weakref.ReferenceType[RemoteSubject]",
) -> Callable[[], None]:
    """Forward inbound calls for ``ticket`` to the local function ``fn``.

    Return values and raised exceptions become response tickets. Awaitable
    results are awaited on a task before the response is sent.

    :param fn: Local function.
    :param ticket: Ticket the peer uses to name ``fn``.
    :param subject_ref: Weak reference to the subject delivering calls.
    :returns: Procedure that stops forwarding calls.
    """

    def handle_call(call_ticket: CallArgsTicket) -> None:
        subject: RemoteSubject | None = subject_ref()
        if subject is None:
            return
        try:
            result: object = fn(*call_ticket["args"])
        except Exception as exc:
            subject.respond(make_reject_ticket(call_ticket, error_to_payload(exc)))
            return

        if inspect.isawaitable(result) is True:
            task: asyncio.Task = asyncio.ensure_future(_respond_when_done(subject_ref, call_ticket, result))
            _RESPONSE_TASKS.add(task)
            task.add_done_callback(_RESPONSE_TASKS.discard)
            return
        subject.respond(make_resolve_ticket(call_ticket, result))

    subject: RemoteSubject | None = subject_ref()
    if subject is None:
        return lambda: None
    unsubscribe: Callable[[], None] = subject.on_call(ticket, handle_call)

    def cleanup() -> None:
        logger.debug("Stopped receiving calls for %s", ticket["fnId"])
        unsubscribe()

    return cleanup
