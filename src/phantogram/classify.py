"""Value classification predicates used by the graph walker."""

import types
from collections.abc import Callable
from collections.abc import Mapping
from collections.abc import Sequence
from collections.abc import Set

_PRIMITIVE_TYPES: tuple[type, ...] = (type(None), bool, int, float, complex, str, bytes)
_STRING_LIKE_TYPES: tuple[type, ...] = (str, bytes, bytearray, memoryview)


def is_primitive(value: object) -> bool:
    """Report whether ``value`` is transmitted as-is.

    :param value: Candidate value.
    :returns: ``True`` for ``None``, booleans, numbers, strings and bytes.
    """
    return isinstance(value, _PRIMITIVE_TYPES)


def is_function(value: object) -> bool:
    """Report whether ``value`` is invocable and must travel as a ticket.

    :param value: Candidate value.
    :returns: ``True`` for any callable, classes and bound methods included.
    """
    return callable(value)


def is_iterable(value: object) -> bool:
    """Report whether ``value`` is a finite, restartable sequence of elements.

    One-shot iterators and generators are not iterables in this sense: walking
    them would consume the caller's data.

    :param value: Candidate value.
    :returns: ``True`` for non-string sequences and sets.
    """
    if isinstance(value, _STRING_LIKE_TYPES) is True:
        return False
    if isinstance(value, Sequence) is True:
        return True
    return isinstance(value, Set)


def is_plain_object(value: object) -> bool:
    """Report whether ``value`` is plain keyed data.

    :param value: Candidate value.
    :returns: ``True`` for mappings.
    """
    return isinstance(value, Mapping)


def is_object_with_prototype(value: object) -> bool:
    """Report whether ``value`` is an instance of a user class.

    :param value: Candidate value.
    :returns: ``True`` when ``value`` is none of the other categories.
    """
    if is_primitive(value) is True:
        return False
    if is_function(value) is True:
        return False
    if is_iterable(value) is True:
        return False
    return is_plain_object(value) is False


def is_dunder(name: str) -> bool:
    """Report whether ``name`` is a Python protocol name such as ``__init__``."""
    return len(name) > 4 and name.startswith("__") and name.endswith("__")


class ExclusionPolicy:
    """Decide which values the walker omits instead of serializing.

    The hosting environment owns the concrete list of platform objects. The
    defaults cover what every Python realm has: module and frame objects stand
    for the global scope, and a ``tagName`` of ``IFRAME`` marks an embedded
    frame element in DOM-like data.
    """

    _excluded_types: tuple[type, ...]
    _excluded_tags: frozenset[str]
    _tag_attribute: str
    _predicates: tuple[Callable[[object], bool], ...]

    def __init__(
        self,
        excluded_types: tuple[type, ...] = (types.ModuleType, types.FrameType),
        excluded_tags: frozenset[str] = frozenset({"IFRAME"}),
        tag_attribute: str = "tagName",
        predicates: tuple[Callable[[object], bool], ...] = (),
    ) -> None:
        """Initialize an exclusion policy.

        :param excluded_types: Types whose direct instances are omitted.
        :param excluded_tags: Tag values marking embedded frame elements.
        :param tag_attribute: Key or attribute name holding the tag.
        :param predicates: Extra environment-supplied predicates.
        :raises TypeError: If an argument has the wrong shape.
        """
        for excluded_type in excluded_types:
            if isinstance(excluded_type, type) is False:
                raise TypeError("excluded_types must contain only types")
        for predicate in predicates:
            if callable(predicate) is False:
                raise TypeError("predicates must contain only callables")
        if isinstance(tag_attribute, str) is False:
            raise TypeError("tag_attribute must be a string")
        self._excluded_types = tuple(excluded_types)
        self._excluded_tags = frozenset(excluded_tags)
        self._tag_attribute = tag_attribute
        self._predicates = tuple(predicates)

    def is_tagged_frame(self, value: object) -> bool:
        """Report whether ``value`` is tagged as an embedded frame element.

        :param value: Mapping or object to inspect.
        :returns: ``True`` when the tag matches an excluded tag.
        """
        tag: object
        if isinstance(value, Mapping) is True:
            tag = value.get(self._tag_attribute)
        else:
            try:
                tag = getattr(value, self._tag_attribute, None)
            except Exception:
                return False
        if isinstance(tag, str) is False:
            return False
        return tag in self._excluded_tags

    def is_excluded(self, value: object) -> bool:
        """Report whether an object must be omitted from simulated output.

        :param value: Candidate mapping or prototyped object.
        :returns: ``True`` when any exclusion rule matches.
        """
        if self.is_tagged_frame(value) is True:
            return True
        value_type: type = type(value)
        for excluded_type in self._excluded_types:
            if value_type is excluded_type:
                return True
        for predicate in self._predicates:
            if predicate(value) is True:
                return True
        return False


DEFAULT_EXCLUSION_POLICY: ExclusionPolicy = ExclusionPolicy()
