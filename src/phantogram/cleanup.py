"""Best-effort reclamation notifier built on ``weakref.finalize``."""

import logging
import weakref
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)


class CleanupNotifier(Protocol):
    """Report when a locally held reference becomes unreachable."""

    def register(self, obj: object, held_value: str, token: object) -> None: ...

    def unregister(self, token: object) -> None: ...

    def release(self, token: object) -> bool: ...


class FinalizationNotifier:
    """Deliver ``held_value`` to a reclaim callback once ``obj`` is collected.

    Registrations are keyed by the identity of ``token``. Tokens are not kept
    alive by the notifier, so the usual token is the registered object itself.
    """

    _on_reclaim: Callable[[str], object]
    _finalizers: dict[int, weakref.finalize]

    def __init__(self, on_reclaim: Callable[[str], object]) -> None:
        """Initialize a notifier.

        :param on_reclaim: Callback receiving the held value of a reclaimed object.
        """
        self._on_reclaim = on_reclaim
        self._finalizers = {}

    def register(self, obj: object, held_value: str, token: object) -> weakref.finalize:
        """Arrange for ``held_value`` to be reported after ``obj`` is collected.

        :param obj: Object to watch.
        :param held_value: Value handed to the reclaim callback.
        :param token: Registration key for :meth:`unregister` and :meth:`release`.
        :returns: The underlying finalizer.
        """
        token_id: int = id(token)
        previous: weakref.finalize | None = self._finalizers.pop(token_id, None)
        if previous is not None:
            previous.detach()
        finalizer: weakref.finalize = weakref.finalize(obj, self._reclaim, token_id, held_value)
        finalizer.atexit = False
        self._finalizers[token_id] = finalizer
        return finalizer

    def unregister(self, token: object) -> None:
        """Cancel a pending registration.

        :param token: Registration key.
        """
        finalizer: weakref.finalize | None = self._finalizers.pop(id(token), None)
        if finalizer is not None:
            finalizer.detach()

    def release(self, token: object) -> bool:
        """Fire a pending registration now instead of waiting for collection.

        :param token: Registration key.
        :returns: ``True`` when a pending registration was fired.
        """
        finalizer: weakref.finalize | None = self._finalizers.get(id(token))
        if finalizer is None:
            return False
        was_alive: bool = finalizer.alive
        finalizer()
        return was_alive

    def is_registered(self, token: object) -> bool:
        """Report whether ``token`` has a pending registration."""
        finalizer: weakref.finalize | None = self._finalizers.get(id(token))
        if finalizer is None:
            return False
        return finalizer.alive

    def _reclaim(self, token_id: int, held_value: str) -> None:
        self._finalizers.pop(token_id, None)
        logger.debug("Reclaimed local reference %s", held_value)
        self._on_reclaim(held_value)
