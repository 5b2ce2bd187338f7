"""Transport collaborators moving events between two realms."""

import asyncio
import logging
from collections.abc import Callable
from multiprocessing.connection import Connection
from typing import Protocol

from phantogram.errors import PhantogramProtocolError

logger = logging.getLogger(__name__)

EventHandler = Callable[[object], object]


class DataEmitter(Protocol):
    """Minimal event channel consumed by :class:`phantogram.subject.RemoteSubject`."""

    def emit(self, event_name: str, payload: object) -> None: ...

    def on(self, event_name: str, handler: EventHandler) -> Callable[[], None]: ...


class EventEmitter:
    """Keep local listeners and dispatch inbound events to them.

    Subclasses add ``emit`` for their transport and so satisfy
    :class:`DataEmitter`.
    """

    _listeners: dict[str, list[EventHandler]]

    def __init__(self) -> None:
        """Initialize an emitter without listeners."""
        self._listeners = {}

    def on(self, event_name: str, handler: EventHandler) -> Callable[[], None]:
        """Subscribe to one inbound event.

        :param event_name: Event name.
        :param handler: Callback receiving the event payload.
        :returns: Procedure removing the subscription.
        """
        listeners: list[EventHandler] = self._listeners.setdefault(event_name, [])
        listeners.append(handler)

        def unsubscribe() -> None:
            current: list[EventHandler] | None = self._listeners.get(event_name)
            if current is not None and handler in current:
                current.remove(handler)

        return unsubscribe

    def dispatch(self, event_name: str, payload: object) -> None:
        """Deliver an inbound event to every local listener.

        :param event_name: Event name.
        :param payload: Event payload.
        """
        listeners: list[EventHandler] = list(self._listeners.get(event_name, []))
        if len(listeners) == 0:
            logger.debug("No listener for inbound %r event", event_name)
        for handler in listeners:
            handler(payload)


class LoopbackEmitter(EventEmitter):
    """One end of an in-process channel between two realms.

    Delivery is scheduled on the running event loop so that a send never
    re-enters the peer before the sender has finished its own bookkeeping.
    Without a running loop events are delivered immediately.
    """

    _peer: "LoopbackEmitter | None"

    def __init__(self) -> None:
        """Initialize an unconnected end."""
        super().__init__()
        self._peer = None

    @property
    def is_connected(self) -> bool:
        """Report whether this end still has a peer."""
        return self._peer is not None

    def connect(self, peer: "LoopbackEmitter") -> None:
        """Link this end with ``peer`` in both directions.

        :param peer: Other end of the channel.
        """
        self._peer = peer
        peer._peer = self

    def emit(self, event_name: str, payload: object) -> None:
        """Send one event to the peer.

        :param event_name: Event name.
        :param payload: Event payload.
        """
        peer: LoopbackEmitter | None = self._peer
        if peer is None:
            logger.debug("Dropping %r event on a closed loopback channel", event_name)
            return
        try:
            loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        except RuntimeError:
            peer.dispatch(event_name, payload)
            return
        loop.call_soon(peer.dispatch, event_name, payload)

    def close(self, reason: str = "loopback channel closed") -> None:
        """Cut the channel and report the disconnect on both ends.

        :param reason: Reason delivered with the ``disconnect`` event.
        """
        peer: LoopbackEmitter | None = self._peer
        if peer is None:
            return
        self._peer = None
        peer._peer = None
        self.dispatch("disconnect", {"reason": reason})
        peer.dispatch("disconnect", {"reason": reason})


def make_loopback_pair() -> tuple[LoopbackEmitter, LoopbackEmitter]:
    """Create two connected loopback ends.

    :returns: ``(host_end, guest_end)``.
    """
    host_end: LoopbackEmitter = LoopbackEmitter()
    guest_end: LoopbackEmitter = LoopbackEmitter()
    host_end.connect(guest_end)
    return host_end, guest_end


class ConnectionEmitter(EventEmitter):
    """Carry events over a ``multiprocessing`` connection.

    Inbound messages are read by :meth:`pump`, either called directly or from
    an event-loop reader installed by :meth:`attach`. A broken pipe is reported
    to local listeners as a ``disconnect`` event.
    """

    _connection: Connection
    _loop: asyncio.AbstractEventLoop | None
    _is_lost: bool

    def __init__(self, connection: Connection) -> None:
        """Initialize an emitter around an open connection.

        :param connection: One end of a ``multiprocessing.Pipe``.
        """
        super().__init__()
        self._connection = connection
        self._loop = None
        self._is_lost = False

    @property
    def is_lost(self) -> bool:
        """Report whether the underlying connection has failed."""
        return self._is_lost

    def emit(self, event_name: str, payload: object) -> None:
        """Send one event to the other process.

        :param event_name: Event name.
        :param payload: Picklable event payload.
        """
        if self._is_lost is True:
            logger.debug("Dropping %r event on a lost connection", event_name)
            return
        message: dict[str, object] = {
            "event": event_name,
            "payload": payload,
        }
        try:
            self._connection.send(message)
        except (BrokenPipeError, EOFError, OSError):
            self._lose_connection("Failed to send message to remote realm")

    def pump(self) -> int:
        """Dispatch every message currently readable from the connection.

        :returns: Number of dispatched messages.
        :raises PhantogramProtocolError: If a message has an invalid shape.
        """
        dispatched: int = 0
        while self._is_lost is False:
            try:
                has_message: bool = self._connection.poll()
                if has_message is False:
                    break
                incoming: object = self._connection.recv()
            except (EOFError, BrokenPipeError, OSError):
                self._lose_connection("Remote realm closed the connection")
                break

            if isinstance(incoming, dict) is False:
                raise PhantogramProtocolError("Inbound message must be a dict")
            event_name: object = incoming.get("event")
            if isinstance(event_name, str) is False:
                raise PhantogramProtocolError("Inbound event name must be a string")
            self.dispatch(event_name, incoming.get("payload"))
            dispatched += 1
        return dispatched

    def attach(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Pump inbound messages whenever the connection becomes readable.

        :param loop: Event loop to install the reader on; defaults to the running loop.
        """
        if loop is None:
            loop = asyncio.get_running_loop()
        self.detach()
        loop.add_reader(self._connection.fileno(), self.pump)
        self._loop = loop

    def detach(self) -> None:
        """Remove the event-loop reader installed by :meth:`attach`."""
        loop: asyncio.AbstractEventLoop | None = self._loop
        self._loop = None
        if loop is None or loop.is_closed() is True:
            return
        try:
            loop.remove_reader(self._connection.fileno())
        except OSError:
            return

    def close(self) -> None:
        """Close the underlying connection."""
        self.detach()
        try:
            self._connection.close()
        except OSError:
            return

    def _lose_connection(self, reason: str) -> None:
        if self._is_lost is True:
            return
        self._is_lost = True
        self.detach()
        logger.warning("Connection lost: %s", reason)
        self.dispatch("disconnect", {"reason": reason})
