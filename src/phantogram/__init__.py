"""Public package API for phantogram."""

from phantogram.api import connect
from phantogram.api import expose_host_methods
from phantogram.api import host_namespace
from phantogram.classify import DEFAULT_EXCLUSION_POLICY
from phantogram.classify import ExclusionPolicy
from phantogram.cleanup import FinalizationNotifier
from phantogram.emitters import ConnectionEmitter
from phantogram.emitters import LoopbackEmitter
from phantogram.emitters import make_loopback_pair
from phantogram.errors import DisconnectionError
from phantogram.errors import InvalidPropertyError
from phantogram.errors import PhantogramError
from phantogram.errors import PhantogramProtocolError
from phantogram.errors import RemoteCallError
from phantogram.namespace import NamespaceProxy
from phantogram.namespace import dispatch_host_methods
from phantogram.namespace import make_proxy
from phantogram.namespace import pending_addresses
from phantogram.rpc import CallSender
from phantogram.simulator import ObjectSimulator
from phantogram.walker import RECURSION_MARKER

__all__: list[str] = [
    "connect",
    "expose_host_methods",
    "host_namespace",
    "dispatch_host_methods",
    "make_proxy",
    "pending_addresses",
    "make_loopback_pair",
    "CallSender",
    "ConnectionEmitter",
    "DEFAULT_EXCLUSION_POLICY",
    "ExclusionPolicy",
    "FinalizationNotifier",
    "LoopbackEmitter",
    "NamespaceProxy",
    "ObjectSimulator",
    "RECURSION_MARKER",
    "DisconnectionError",
    "InvalidPropertyError",
    "PhantogramError",
    "PhantogramProtocolError",
    "RemoteCallError",
]
