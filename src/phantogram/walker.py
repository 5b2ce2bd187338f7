"""Recursive object-graph walkers that swap callables for tickets and back."""

from collections.abc import Callable
from collections.abc import Mapping

from phantogram.classify import DEFAULT_EXCLUSION_POLICY
from phantogram.classify import ExclusionPolicy
from phantogram.classify import is_dunder
from phantogram.classify import is_function
from phantogram.classify import is_iterable
from phantogram.classify import is_object_with_prototype
from phantogram.classify import is_plain_object
from phantogram.classify import is_primitive
from phantogram.tickets import is_def_message

RECURSION_MARKER: str = "[[RECURSION]]"

OnFunction = Callable[[Callable[..., object], object | None], dict[str, object]]
OnDefMessage = Callable[[dict[str, object]], Callable[..., object]]


class _Omitted:
    """Sentinel for values that produce no output."""

    def __repr__(self) -> str:
        return "<omitted>"


_OMITTED: _Omitted = _Omitted()


class VisitedSet:
    """Identity set scoped to one top-level traversal.

    Visited objects are held until the traversal ends so that an attribute
    computed on the fly cannot be collected and have its ``id`` reused.
    """

    _by_identity: dict[int, object]

    def __init__(self) -> None:
        """Initialize an empty visited set."""
        self._by_identity = {}

    def __contains__(self, value: object) -> bool:
        return id(value) in self._by_identity

    def __len__(self) -> int:
        return len(self._by_identity)

    def add(self, value: object) -> None:
        """Mark one object as visited.

        :param value: Composite value entered by the walker.
        """
        self._by_identity[id(value)] = value


def _collect_attribute_names(value: object) -> list[str]:
    """Collect attribute names from an instance and its class chain.

    Dunder names stand in for the constructor slot of other object models and
    are skipped, as is everything defined on ``object`` itself.

    :param value: Prototyped object.
    :returns: De-duplicated names in discovery order.
    """
    names: dict[str, None] = {}
    instance_dict: object = getattr(value, "__dict__", None)
    if isinstance(instance_dict, dict) is True:
        for name in instance_dict:
            if isinstance(name, str) is True and is_dunder(name) is False:
                names[name] = None

    for klass in type(value).__mro__:
        if klass is object:
            continue
        slots: object = klass.__dict__.get("__slots__", ())
        if isinstance(slots, str) is True:
            slots = (slots,)
        if isinstance(slots, (tuple, list)) is True:
            for slot_name in slots:
                if isinstance(slot_name, str) is True and is_dunder(slot_name) is False:
                    names[slot_name] = None
        for name in klass.__dict__:
            if is_dunder(name) is False:
                names[name] = None
    return list(names)


def _simulate(
    on_function: OnFunction,
    value: object,
    parent: object | None,
    refs: VisitedSet,
    exclusion_policy: ExclusionPolicy,
) -> object:
    if is_primitive(value) is True:
        return value
    if is_function(value) is True:
        return on_function(value, parent)

    if is_iterable(value) is True:
        if value in refs:
            return RECURSION_MARKER
        refs.add(value)
        out_list: list[object] = []
        for item in value:
            simulated_item: object = _simulate(on_function, item, None, refs, exclusion_policy)
            if simulated_item is _OMITTED:
                simulated_item = None
            out_list.append(simulated_item)
        return out_list

    if is_plain_object(value) is True:
        if value in refs:
            return RECURSION_MARKER
        if exclusion_policy.is_excluded(value) is True:
            return _OMITTED
        refs.add(value)
        out_dict: dict[object, object] = {}
        for key in value:
            simulated_value: object = _simulate(on_function, value[key], None, refs, exclusion_policy)
            if simulated_value is _OMITTED:
                continue
            out_dict[key] = simulated_value
        return out_dict

    if is_object_with_prototype(value) is True:
        if value in refs:
            return RECURSION_MARKER
        if exclusion_policy.is_excluded(value) is True:
            return _OMITTED
        refs.add(value)
        out_obj: dict[object, object] = {}
        for name in _collect_attribute_names(value):
            try:
                attribute: object = getattr(value, name)
            except Exception:
                continue
            simulated_attribute: object = _simulate(on_function, attribute, value, refs, exclusion_policy)
            if simulated_attribute is _OMITTED:
                continue
            out_obj[name] = simulated_attribute
        return out_obj

    return _OMITTED


def simulate_funcs_recursive(
    on_function: OnFunction,
    value: object,
    parent: object | None = None,
    refs: VisitedSet | None = None,
    exclusion_policy: ExclusionPolicy = DEFAULT_EXCLUSION_POLICY,
) -> object:
    """Convert a local value graph into a wire-ready mirror.

    Callables are replaced by whatever ``on_function`` returns for them,
    sequences become lists, mappings and objects become dictionaries. A
    composite met twice in one traversal becomes :data:`RECURSION_MARKER`.
    Excluded values are dropped from mappings, become ``None`` inside
    sequences, and ``None`` at the top level.

    :param on_function: Callback minting a wrapped ticket for ``(fn, parent)``.
    :param value: Value to simulate.
    :param parent: Object owning ``value`` when ``value`` is one of its attributes.
    :param refs: Visited set; a fresh one is created per top-level call.
    :param exclusion_policy: Policy deciding which objects are omitted.
    :returns: Simulated value.
    """
    if refs is None:
        refs = VisitedSet()
    simulated: object = _simulate(on_function, value, parent, refs, exclusion_policy)
    if simulated is _OMITTED:
        return None
    return simulated


def materialize_funcs_recursive(on_def_message: OnDefMessage, value: object) -> object:
    """Convert a received value graph, replacing tickets with local stubs.

    :param on_def_message: Callback returning a callable for a wrapped ticket.
    :param value: Simulated value.
    :returns: Plain data with callables in place of tickets.
    """
    if is_primitive(value) is True or is_function(value) is True:
        return value
    if is_def_message(value) is True:
        return on_def_message(value)
    if is_iterable(value) is True:
        return [materialize_funcs_recursive(on_def_message, item) for item in value]
    if is_plain_object(value) is True:
        out_dict: dict[object, object] = {}
        mapping: Mapping[object, object] = value
        for key in mapping:
            out_dict[key] = materialize_funcs_recursive(on_def_message, mapping[key])
        return out_dict
    return value
