"""User-facing API entrypoints for phantogram."""

from phantogram.classify import ExclusionPolicy
from phantogram.cleanup import FinalizationNotifier
from phantogram.emitters import DataEmitter
from phantogram.errors import PhantogramProtocolError
from phantogram.namespace import NamespaceProxy
from phantogram.namespace import host_method_invoker
from phantogram.namespace import make_proxy
from phantogram.simulator import NotifierFactory
from phantogram.simulator import ObjectSimulator


def connect(
    emitter: DataEmitter,
    exclusion_policy: ExclusionPolicy | None = None,
    notifier_factory: NotifierFactory = FinalizationNotifier,
) -> ObjectSimulator:
    """Attach one realm to a channel.

    :param emitter: Transport collaborator for this realm's end of the channel.
    :param exclusion_policy: Optional policy for values that must not be serialized.
    :param notifier_factory: Factory for the reclamation notifier.
    :returns: Simulator owning this realm's tickets.
    """
    return ObjectSimulator.create(
        emitter,
        notifier_factory=notifier_factory,
        exclusion_policy=exclusion_policy,
    )


def expose_host_methods(simulator: ObjectSimulator, apis: object) -> object:
    """Simulate an entry point that runs namespace batches against ``apis``.

    The returned ticket is what the host hands to the guest, for example as
    the return value of a handshake call.

    :param simulator: Host-side simulator.
    :param apis: Nested mapping or object tree of host APIs.
    :returns: Wrapped ticket for the batch dispatcher.
    """
    return simulator.simulate(host_method_invoker(apis))


def host_namespace(simulator: ObjectSimulator, message: object) -> NamespaceProxy:
    """Build a guest-side namespace proxy from an exposed dispatcher ticket.

    :param simulator: Guest-side simulator.
    :param message: Ticket produced by :func:`expose_host_methods` on the host.
    :returns: Namespace proxy whose flushes call the host dispatcher.
    :raises PhantogramProtocolError: If ``message`` does not materialize to a callable.
    """
    invoker: object = simulator.materialize(message)
    if callable(invoker) is False:
        raise PhantogramProtocolError("Host namespace ticket did not materialize to a callable")
    return make_proxy(invoker)
