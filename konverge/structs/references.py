import dataclasses
import urllib.parse
from typing import Collection, FrozenSet, List, Mapping, Optional

from konverge.structs import bodies

# A namespace reference usable in the API calls. `None` means cluster-wide API calls.
Namespace = Optional[str]


@dataclasses.dataclass(frozen=True)
class Resource:
    """
    A resource kind as served by the cluster: where its objects live in the API.

    Only the group, the version, and the plural name identify the resource
    and make its URLs. The rest is the discovery information: it is used
    to match the manifests' kinds, to check the scope, and for logging.
    """

    group: str
    """ The API group: ``"apps"``, ``"batch"``, or ``""`` for the core API. """

    version: str
    """ The API version within the group: ``"v1"``, ``"v1beta1"``, etc. """

    plural: str
    """ The endpoint's name: ``"pods"``, ``"deployments"``, etc. """

    kind: Optional[str] = dataclasses.field(default=None, compare=False)
    """ The kind as used in the manifests: ``"Pod"``, ``"Deployment"``, etc. """

    subresources: FrozenSet[str] = dataclasses.field(default=frozenset(), compare=False)
    """ The known subresources: ``{"status", "eviction", "exec"}``, etc. """

    namespaced: Optional[bool] = dataclasses.field(default=None, compare=False)
    """ Whether the objects live in namespaces; ``None`` if not known. """

    preferred: bool = dataclasses.field(default=True, compare=False)
    """ Whether the version is the group's preferred one. """

    verbs: FrozenSet[str] = dataclasses.field(default=frozenset(), compare=False)
    """ The operations the API allows: ``{"get", "list", "create", ...}``. """

    def __repr__(self) -> str:
        return f'{self.plural}.{self.version}.{self.group}'.strip('.')

    @property
    def api_version(self) -> str:
        return f'{self.group}/{self.version}' if self.group else self.version

    def get_url(
            self,
            *,
            server: Optional[str] = None,
            namespace: Namespace = None,
            name: Optional[str] = None,
            subresource: Optional[str] = None,
            params: Optional[Mapping[str, str]] = None,
    ) -> str:
        """
        Build a URL of the list, of an object, or of an object's subresource.

        The namespace is ignored for the cluster-scoped resources; without it,
        the namespaced resources are listed cluster-wide. The URL is relative
        unless the server is given.
        """
        if subresource is not None and name is None:
            raise ValueError("Subresources can be used only with specific resources by their name.")
        if self.namespaced and namespace is None and name is not None:
            raise ValueError("Specific namespaces are required for specific namespaced resources.")

        in_namespace = bool(self.namespaced and namespace is not None)
        parts: List[Optional[str]] = [
            '/api' if self.group == '' and self.version == 'v1' else '/apis',
            self.group,
            self.version,
            'namespaces' if in_namespace else None,
            namespace if in_namespace else None,
            self.plural,
            name,
            subresource,
        ]
        url = '/'.join(part for part in parts if part)
        if params:
            url += '?' + urllib.parse.urlencode(params, encoding='utf-8')
        return url if server is None else server.rstrip('/') + url


@dataclasses.dataclass(frozen=True)
class ObjectRef:
    """
    A (kind, namespace, name) triple: a unique address of an object.

    The namespace is ``None`` for the cluster-scoped kinds.
    """
    kind: str
    namespace: Namespace
    name: str

    @classmethod
    def from_body(cls, body: Mapping[str, object]) -> "ObjectRef":
        return cls(
            kind=bodies.get_kind(body),
            namespace=bodies.get_namespace(body),
            name=bodies.get_name(body),
        )

    def __str__(self) -> str:
        if self.namespace:
            return f'{self.kind}/{self.namespace}/{self.name}'
        else:
            return f'{self.kind}/{self.name}'


def split_api_version(api_version: str) -> List[str]:
    """
    Split ``"apps/v1"`` to ``["apps", "v1"]`` and ``"v1"`` to ``["", "v1"]``.
    """
    group, _, version = api_version.rpartition('/')
    return [group, version]


def select(
        resources: Collection[Resource],
        *,
        kind: str,
        api_version: Optional[str] = None,
) -> Optional[Resource]:
    """
    Select the resource that serves the kind (and the API version, if known).

    With no API version, the kinds are looked up across all groups:
    the core group wins over the others, and the preferred versions
    win over the non-preferred ones. Otherwise, the match must be exact.
    """
    if api_version:
        group, version = split_api_version(api_version)
        for resource in resources:
            if resource.kind == kind and resource.group == group and resource.version == version:
                return resource
        return None

    candidates = [resource for resource in resources if resource.kind == kind]
    candidates.sort(key=lambda r: (r.group != '', not r.preferred, r.group, r.version))
    return candidates[0] if candidates else None
