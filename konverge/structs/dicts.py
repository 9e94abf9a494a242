"""
Some basic dicts and field-in-a-dict manipulation helpers.

The attribute trees of Kubernetes objects are plain JSON-decoded dicts/lists.
All the kind-specific logic addresses the fields in them by dotted paths
(``"spec.template.spec"``) or by tuples of keys (``("metadata", "name")``).
"""
import collections.abc
import copy
import enum
from typing import Any, Callable, Iterable, Iterator, List, \
                   Mapping, MutableMapping, Optional, Tuple, TypeVar, Union

FieldPath = Tuple[str, ...]
FieldSpec = Union[None, str, FieldPath, List[str]]

_T = TypeVar('_T')


class _UNSET(enum.Enum):
    token = enum.auto()


def parse_field(
        field: FieldSpec,
) -> FieldPath:
    """
    Convert a field reference to a tuple of keys.

    ``None`` is the root of the dict; ``"a.b"``, ``("a", "b")``, and ``["a", "b"]``
    all mean the key ``"b"`` in the dict under the key ``"a"``.
    """
    if field is None:
        return ()
    elif isinstance(field, str):
        return tuple(field.split('.'))
    elif isinstance(field, (list, tuple)):
        return tuple(field)
    else:
        raise ValueError(f"Field must be either a str, or a list/tuple. Got {field!r}")


def resolve(
        d: Optional[Mapping[Any, Any]],
        field: FieldSpec,
        default: Union[_T, _UNSET] = _UNSET.token,
) -> Union[Any, _T]:
    """
    Get the value of a nested field.

    With a default, the absent keys and the non-dict values on the way
    (e.g. ``spec: null`` or a list where a dict is expected in a manifest)
    all give the default. Without it, ``KeyError`` is raised for the absent
    keys, and ``TypeError`` for the non-dict values on the way.
    """
    result = d
    for key in parse_field(field):
        if isinstance(result, collections.abc.Mapping) and key in result:
            result = result[key]
        elif not isinstance(default, _UNSET):
            return default
        elif isinstance(result, collections.abc.Mapping):
            raise KeyError(key)
        else:
            raise TypeError(f"The structure is not a dict with field {key!r}: {result!r}")
    return result


def ensure(
        d: MutableMapping[Any, Any],
        field: FieldSpec,
        value: Any,
) -> None:
    """
    Set a nested field, creating the absent or null parents as empty dicts.
    """
    path = parse_field(field)
    if not path:
        raise ValueError("Setting a root of a dict is impossible. Provide the specific fields.")
    parent = d
    for key in path[:-1]:
        if parent.get(key) is None:
            parent[key] = {}
        parent = parent[key]
    parent[path[-1]] = value


def setdefault(
        d: MutableMapping[Any, Any],
        field: FieldSpec,
        value: Any,
) -> Any:
    """
    Set a nested sub-field only if it is absent or ``None``; return the result.

    The ``None`` values are treated as absent, since the JSON/YAML serializers
    of other tools render the omitted optional fields as explicit nulls.
    """
    current = resolve(d, field, None)
    if current is None:
        ensure(d, field, value)
        return value
    return current


def remove(
        d: MutableMapping[Any, Any],
        field: FieldSpec,
) -> None:
    """
    Remove a nested field, and then the parents that became empty with it.

    The absent fields (or absent parents) are not an error: they are removed
    already. The parents that were empty before are removed too.
    """
    path = parse_field(field)
    if not path:
        raise ValueError("Removing a root of a dict is impossible. Provide a specific field.")
    head, tail = path[0], path[1:]
    if head not in d:
        return
    if not tail:
        del d[head]
        return
    child = d[head]
    if isinstance(child, collections.abc.MutableMapping):
        remove(child, tail)
        if child == {}:
            del d[head]


def discard(
        d: MutableMapping[Any, Any],
        field: FieldSpec,
) -> None:
    """
    Remove a nested sub-field if it is there, but keep the empty parents.

    Unlike :func:`remove`, this one tolerates non-dict parents (as absent),
    and leaves e.g. ``metadata: {}`` in place -- it is a valid manifest part.
    """
    path = parse_field(field)
    if not path:
        raise ValueError("Removing a root of a dict is impossible. Provide a specific field.")
    parent = resolve(d, path[:-1], None)
    if isinstance(parent, collections.abc.MutableMapping):
        parent.pop(path[-1], None)


def cherrypick(
        src: Mapping[Any, Any],
        dst: MutableMapping[Any, Any],
        fields: Optional[Iterable[FieldSpec]],
        picker: Optional[Callable[[_T], _T]] = None,
) -> None:
    """
    Copy all specified fields between dicts (from src to dst).

    The values are deep-copied by default, so that the destination can be
    modified later without affecting the source (and vice versa).
    """
    picker = picker if picker is not None else copy.deepcopy
    fields = fields if fields is not None else []
    for field in fields:
        try:
            ensure(dst, field, picker(resolve(src, field)))
        except (KeyError, TypeError):
            pass  # absent in the source, nothing to merge


def walk(
        d: Any,
        field: FieldSpec,
) -> Iterator[MutableMapping[Any, Any]]:
    """
    Iterate over all dicts in a list located at the field (if it is a list).

    Used for the per-item defaulting of lists of containers, ports, volumes::

        for container in walk(body, 'spec.template.spec.containers'):
            container.setdefault('imagePullPolicy', 'IfNotPresent')

    Non-dict items and non-list values are silently skipped.
    """
    items = resolve(d, field, None)
    if isinstance(items, collections.abc.Sequence) and not isinstance(items, (str, bytes)):
        for item in items:
            if isinstance(item, collections.abc.MutableMapping):
                yield item
