"""
Attribute trees of the Kubernetes objects: as desired and as seen live.

The objects are schema-less: nothing is known about them at import time
except a few well-known fields. All kind-specific logic addresses the fields
by paths (see :mod:`dicts`), while the well-known fields have narrow helpers
here, which tolerate the absent, ``null``, and malformed parents.
"""
from typing import Any, Dict, List, Mapping, Optional, cast

from typing_extensions import TypedDict

from konverge.structs import dicts


class RawMeta(TypedDict, total=False):
    uid: str
    name: str
    namespace: str
    labels: Dict[str, str]
    generation: int
    finalizers: List[str]
    resourceVersion: str
    annotations: Dict[str, str]
    ownerReferences: List[Dict[str, Any]]
    creationTimestamp: str
    deletionTimestamp: str
    selfLink: str


class RawBody(TypedDict, total=False):
    apiVersion: str
    kind: str
    metadata: RawMeta
    spec: Dict[str, Any]
    status: Dict[str, Any]


class RawCondition(TypedDict, total=False):
    type: str
    status: str
    reason: str
    message: str


def get_kind(body: Mapping[str, Any]) -> str:
    return cast(str, body.get('kind') or '')


def get_api_version(body: Mapping[str, Any]) -> str:
    return cast(str, body.get('apiVersion') or '')


def get_name(body: Mapping[str, Any]) -> str:
    return cast(str, dicts.resolve(body, 'metadata.name', None) or '')


def get_namespace(body: Mapping[str, Any]) -> Optional[str]:
    return dicts.resolve(body, 'metadata.namespace', None) or None


def get_uid(body: Mapping[str, Any]) -> Optional[str]:
    return dicts.resolve(body, 'metadata.uid', None) or None


def get_resource_version(body: Mapping[str, Any]) -> Optional[str]:
    return dicts.resolve(body, 'metadata.resourceVersion', None) or None


def get_labels(body: Mapping[str, Any]) -> Mapping[str, str]:
    return dicts.resolve(body, 'metadata.labels', None) or {}


def get_annotations(body: Mapping[str, Any]) -> Mapping[str, str]:
    return dicts.resolve(body, 'metadata.annotations', None) or {}


def get_owners(body: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    owners = dicts.resolve(body, 'metadata.ownerReferences', None) or []
    return [owner for owner in owners if isinstance(owner, Mapping)]


def get_conditions(body: Mapping[str, Any]) -> Optional[List[RawCondition]]:
    """
    Get the ``status.conditions`` of an object, or ``None`` if there are none.

    An empty list is returned as is: it is "no conditions reported yet",
    which is different from "the kind has no conditions at all".
    """
    conditions = dicts.resolve(body, 'status.conditions', None)
    if not isinstance(conditions, list):
        return None
    return [cast(RawCondition, c) for c in conditions if isinstance(c, Mapping)]


def describe(body: Mapping[str, Any]) -> str:
    """
    A short human-readable identifier of an object for the logs & errors.

    E.g. ``Deployment/ns/name`` or ``ClusterRole/name``.
    """
    kind = get_kind(body) or '?'
    name = get_name(body) or '?'
    namespace = get_namespace(body)
    return f'{kind}/{namespace}/{name}' if namespace else f'{kind}/{name}'


def build_object_reference(body: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Construct an object reference for the logs, as K8s API expects them.
    """
    ref = dict(
        apiVersion=get_api_version(body),
        kind=get_kind(body),
        name=get_name(body),
        uid=get_uid(body),
        namespace=get_namespace(body),
    )
    return {key: val for key, val in ref.items() if val}
