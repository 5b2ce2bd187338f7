"""Wire shapes exchanged between realms and the tagged message wrapper."""

import traceback
from typing import Literal
from typing import TypedDict

from phantogram.errors import PhantogramProtocolError
from phantogram.errors import RemoteCallError

WIRE_WRAP_TAG: str = "__phantogram_wrapped_v1__"
ResponseStatus = Literal["resolve", "reject"]


class DefTicket(TypedDict):
    """Handle naming a function owned by one realm."""

    fnId: str


class CallArgsTicket(TypedDict):
    """One invocation of a remote function."""

    fnId: str
    callId: int
    args: list[object]


class ResponseTicket(TypedDict, total=False):
    """Terminal outcome of exactly one call."""

    fnId: str
    callId: int
    status: ResponseStatus
    value: object
    error: object


class HostMethodAddress(TypedDict):
    """Namespaced method invocation prior to dispatch."""

    path: list[str]
    name: str
    args: list[object]


class CleanupTicket(TypedDict):
    """Notification that a ticket went out of scope on the other side."""

    fnId: str


def wrap(payload: object) -> dict[str, object]:
    """Wrap a payload so it cannot be confused with application data.

    :param payload: Ticket or other reference payload.
    :returns: Tagged single-key envelope.
    """
    return {WIRE_WRAP_TAG: payload}


def is_wrapped(value: object) -> bool:
    """Report whether ``value`` is a tagged envelope produced by :func:`wrap`.

    :param value: Candidate value.
    :returns: ``True`` for a single-key dictionary carrying the wrap tag.
    """
    if isinstance(value, dict) is False:
        return False
    if len(value) != 1:
        return False
    return WIRE_WRAP_TAG in value


def unwrap(message: object) -> object:
    """Return the payload of a tagged envelope.

    :param message: Envelope produced by :func:`wrap`.
    :returns: Wrapped payload.
    :raises PhantogramProtocolError: If ``message`` is not an envelope.
    """
    if is_wrapped(message) is False:
        raise PhantogramProtocolError("Expected a wrapped message")
    return message[WIRE_WRAP_TAG]


def is_def_message(value: object) -> bool:
    """Report whether ``value`` is a wrapped function ticket.

    :param value: Candidate value.
    :returns: ``True`` when ``value`` wraps a mapping with a string ``fnId``.
    """
    if is_wrapped(value) is False:
        return False
    payload: object = unwrap(value)
    if isinstance(payload, dict) is False:
        return False
    return isinstance(payload.get("fnId"), str)


def require_def_ticket(payload: object) -> DefTicket:
    """Validate a function ticket payload.

    :param payload: Candidate ticket.
    :returns: Validated ticket.
    :raises PhantogramProtocolError: If ``fnId`` is missing or invalid.
    """
    if isinstance(payload, dict) is False:
        raise PhantogramProtocolError("Ticket must be a dict")
    fn_id: object = payload.get("fnId")
    if isinstance(fn_id, str) is False:
        raise PhantogramProtocolError("fnId must be a string")
    return payload


def require_call_ticket(payload: object) -> CallArgsTicket:
    """Validate an inbound call ticket.

    :param payload: Candidate call ticket.
    :returns: Validated call ticket.
    :raises PhantogramProtocolError: If a field is missing or invalid.
    """
    ticket: DefTicket = require_def_ticket(payload)
    call_id: object = ticket.get("callId")
    if isinstance(call_id, int) is False or isinstance(call_id, bool) is True:
        raise PhantogramProtocolError("callId must be an integer")
    args: object = ticket.get("args")
    if isinstance(args, list) is False:
        raise PhantogramProtocolError("args must be a list")
    return ticket


def require_response_ticket(payload: object) -> ResponseTicket:
    """Validate an inbound response ticket.

    :param payload: Candidate response ticket.
    :returns: Validated response ticket.
    :raises PhantogramProtocolError: If a field is missing or invalid.
    """
    if isinstance(payload, dict) is False:
        raise PhantogramProtocolError("Response must be a dict")
    fn_id: object = payload.get("fnId")
    if isinstance(fn_id, str) is False:
        raise PhantogramProtocolError("Response fnId must be a string")
    call_id: object = payload.get("callId")
    if isinstance(call_id, int) is False:
        raise PhantogramProtocolError("Response callId must be an integer")
    status: object = payload.get("status")
    if status != "resolve" and status != "reject":
        raise PhantogramProtocolError(f"Unknown response status: {status!r}")
    return payload


def require_reason(payload: object) -> str:
    """Extract the disconnect reason from an inbound disconnect event.

    :param payload: Disconnect event payload.
    :returns: Reason text, or a generic reason when none was given.
    """
    if isinstance(payload, dict) is True:
        reason: object = payload.get("reason")
        if isinstance(reason, str) is True:
            return reason
    return "remote realm disconnected"


def make_call_ticket(fn_id: str, call_id: int, args: list[object]) -> CallArgsTicket:
    """Build one call ticket."""
    return {"fnId": fn_id, "callId": call_id, "args": args}


def make_resolve_ticket(call_ticket: CallArgsTicket, value: object) -> ResponseTicket:
    """Build a successful response correlated to ``call_ticket``."""
    return {
        "fnId": call_ticket["fnId"],
        "callId": call_ticket["callId"],
        "status": "resolve",
        "value": value,
    }


def make_reject_ticket(call_ticket: CallArgsTicket, error: object) -> ResponseTicket:
    """Build a failed response correlated to ``call_ticket``."""
    return {
        "fnId": call_ticket["fnId"],
        "callId": call_ticket["callId"],
        "status": "reject",
        "error": error,
    }


def error_to_payload(exc: BaseException) -> dict[str, str]:
    """Describe a local exception as plain data for a ``reject`` response.

    :param exc: Exception raised by a local function.
    :returns: Error payload dictionary.
    """
    stacktrace: str = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
        "stacktrace": stacktrace,
    }


def payload_to_error(error: object) -> BaseException:
    """Turn the ``error`` field of a ``reject`` response into an exception.

    :param error: Error value carried by the response.
    :returns: Exception to fail the caller's future with.
    """
    if isinstance(error, BaseException) is True:
        return error
    if isinstance(error, dict) is True:
        error_type: object = error.get("error_type")
        error_message: object = error.get("error_message")
        stacktrace: object = error.get("stacktrace", "")
        if isinstance(error_type, str) is True and isinstance(error_message, str) is True:
            if isinstance(stacktrace, str) is False:
                stacktrace = ""
            return RemoteCallError(error_type, error_message, stacktrace)
    return RemoteCallError("RemoteError", str(error), "")
