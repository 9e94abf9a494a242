"""
Normalization of the desired manifests before comparing them to the live objects.

The cluster fills in many fields on its own: the bookkeeping fields
(UIDs, timestamps, versions), and the defaults of the omitted fields
(protocols, probes' thresholds, pods' policies, rollout strategies, etc).
If compared as is, a manifest without them would always differ from
the live object, and would be re-applied on every run for no reason.

The normalizer strips the former and injects the latter into the manifests.
The kind-specific defaults are data tables given to the normalizer at
construction; a default normalizer with the usual tables is provided.

The normalization is idempotent: normalizing a normalized manifest yields
the same manifest. It is also pure: the original manifest is never modified.
"""
import copy
from typing import Any, Mapping, MutableMapping, Optional, Tuple

from konverge.structs import bodies, configuration, dicts

# The bookkeeping fields of the server, never meaningfully supplied by the users.
SERVER_FIELDS: Tuple[str, ...] = (
    'metadata.creationTimestamp',
    'metadata.managedFields',
    'metadata.ownerReferences',
    'metadata.generation',
    'metadata.uid',
    'metadata.selfLink',
    'metadata.resourceVersion',
)

CONTAINER_DEFAULTS: Mapping[str, Any] = {
    'terminationMessagePolicy': 'File',
    'terminationMessagePath': '/dev/termination-log',
    'imagePullPolicy': 'IfNotPresent',
}

CONTAINER_PROBES: Tuple[str, ...] = ('livenessProbe', 'readinessProbe', 'startupProbe')

PROBE_DEFAULTS: Mapping[str, Any] = {
    'failureThreshold': 3,
    'periodSeconds': 10,
    'successThreshold': 1,
    'timeoutSeconds': 1,
}

POD_SPEC_DEFAULTS: Mapping[str, Any] = {
    'terminationGracePeriodSeconds': 30,
    'dnsPolicy': 'ClusterFirst',
    'restartPolicy': 'Always',
    'schedulerName': 'default-scheduler',
    'securityContext': {},
}

# The octal 0644, as the API reports it.
VOLUME_DEFAULT_MODE = 420

# Where the pod specs are in the kinds with the pod templates.
POD_TEMPLATES: Mapping[str, str] = {
    'Deployment': 'spec.template.spec',
    'DaemonSet': 'spec.template.spec',
    'StatefulSet': 'spec.template.spec',
}

KIND_DEFAULTS: Mapping[str, Mapping[str, Any]] = {
    'Deployment': {
        'spec.progressDeadlineSeconds': 600,
        'spec.revisionHistoryLimit': 10,
    },
    'DaemonSet': {
        'spec.revisionHistoryLimit': 10,
    },
    'StatefulSet': {
        'spec.revisionHistoryLimit': 10,
        'spec.podManagementPolicy': 'OrderedReady',
    },
}

# The rollout strategies: the field, its default type, and that type's defaults.
STRATEGY_DEFAULTS: Mapping[str, Tuple[str, str, Mapping[str, Any]]] = {
    'Deployment': ('spec.strategy', 'RollingUpdate', {'maxUnavailable': '25%', 'maxSurge': '25%'}),
    'DaemonSet': ('spec.updateStrategy', 'RollingUpdate', {'maxUnavailable': 1}),
    'StatefulSet': ('spec.updateStrategy', 'RollingUpdate', {'partition': 0}),
}

SUBJECT_API_GROUPS: Mapping[str, str] = {
    'ServiceAccount': '',
    'User': 'rbac.authorization.k8s.io',
    'Group': 'rbac.authorization.k8s.io',
}

BINDING_KINDS: Tuple[str, ...] = ('RoleBinding', 'ClusterRoleBinding')


class Normalizer:
    """
    A normalizer of the manifests with specific tables of defaults.

    Usage::

        normalizer = Normalizer()
        normalized = normalizer(manifest)
    """

    def __init__(
            self,
            *,
            server_fields: Tuple[str, ...] = SERVER_FIELDS,
            noisy_annotations: Tuple[str, ...] = configuration.DEFAULT_NOISY_ANNOTATIONS,
            container_defaults: Mapping[str, Any] = CONTAINER_DEFAULTS,
            probe_defaults: Mapping[str, Any] = PROBE_DEFAULTS,
            pod_spec_defaults: Mapping[str, Any] = POD_SPEC_DEFAULTS,
            pod_templates: Mapping[str, str] = POD_TEMPLATES,
            kind_defaults: Mapping[str, Mapping[str, Any]] = KIND_DEFAULTS,
            strategy_defaults: Mapping[str, Tuple[str, str, Mapping[str, Any]]] = STRATEGY_DEFAULTS,
            subject_api_groups: Mapping[str, str] = SUBJECT_API_GROUPS,
    ) -> None:
        super().__init__()
        self.server_fields = server_fields
        self.noisy_annotations = noisy_annotations
        self.container_defaults = container_defaults
        self.probe_defaults = probe_defaults
        self.pod_spec_defaults = pod_spec_defaults
        self.pod_templates = pod_templates
        self.kind_defaults = kind_defaults
        self.strategy_defaults = strategy_defaults
        self.subject_api_groups = subject_api_groups

    def __call__(self, body: Optional[Mapping[str, Any]]) -> Optional[bodies.RawBody]:
        if body is None:
            return None

        result: bodies.RawBody = copy.deepcopy(dict(body))  # type: ignore
        kind = bodies.get_kind(result)

        self.strip(result)
        for field, value in self.kind_defaults.get(kind, {}).items():
            _setdefault(result, field, value)
        if kind in self.strategy_defaults:
            self._default_strategy(result, *self.strategy_defaults[kind])
        if kind in self.pod_templates:
            pod_spec = dicts.resolve(result, self.pod_templates[kind], None)
            if isinstance(pod_spec, dict):
                self._default_pod_spec(pod_spec)
        if kind == 'Service':
            for port in dicts.walk(result, 'spec.ports'):
                _setdefault(port, 'protocol', 'TCP')
        if kind in BINDING_KINDS:
            for subject in dicts.walk(result, 'subjects'):
                if subject.get('kind') in self.subject_api_groups:
                    subject['apiGroup'] = self.subject_api_groups[subject['kind']]
        if kind == 'CustomResourceDefinition':
            self._default_crd(result)
        return result

    def strip(self, body: bodies.RawBody) -> None:
        """ Remove the bookkeeping fields and the noisy annotations, in place. """
        for field in self.server_fields:
            dicts.discard(body, field)
        annotations = dicts.resolve(body, 'metadata.annotations', None)
        if isinstance(annotations, dict):
            for annotation in self.noisy_annotations:
                annotations.pop(annotation, None)

    def _default_strategy(
            self,
            body: bodies.RawBody,
            field: str,
            default_type: str,
            defaults: Mapping[str, Any],
    ) -> None:
        strategy_type = _setdefault(body, f'{field}.type', default_type)
        if strategy_type == default_type:
            for key, value in defaults.items():
                _setdefault(body, f'{field}.rollingUpdate.{key}', value)

    def _default_pod_spec(self, pod_spec: MutableMapping[str, Any]) -> None:
        for field in ['containers', 'initContainers']:
            for container in dicts.walk(pod_spec, field):
                self._default_container(container)

        for volume in dicts.walk(pod_spec, 'volumes'):
            for source in ['configMap', 'secret']:
                if isinstance(volume.get(source), dict):
                    _setdefault(volume, f'{source}.defaultMode', VOLUME_DEFAULT_MODE)

        # The deprecated name is mirrored by the server; the new name wins if both are set.
        if pod_spec.get('serviceAccountName'):
            pod_spec['serviceAccount'] = pod_spec['serviceAccountName']
        elif pod_spec.get('serviceAccount'):
            pod_spec['serviceAccountName'] = pod_spec['serviceAccount']

        for field, value in self.pod_spec_defaults.items():
            _setdefault(pod_spec, field, value)

    def _default_container(self, container: MutableMapping[str, Any]) -> None:
        for field, value in self.container_defaults.items():
            _setdefault(container, field, value)
        for port in dicts.walk(container, 'ports'):
            _setdefault(port, 'protocol', 'TCP')
        for env in dicts.walk(container, 'env'):
            if isinstance(dicts.resolve(env, 'valueFrom.fieldRef', None), dict):
                _setdefault(env, 'valueFrom.fieldRef.apiVersion', 'v1')
        for probe_name in CONTAINER_PROBES:
            probe = container.get(probe_name)
            if isinstance(probe, dict):
                for field, value in self.probe_defaults.items():
                    _setdefault(probe, field, value)
                if isinstance(probe.get('httpGet'), dict):
                    _setdefault(probe, 'httpGet.scheme', 'HTTP')

    def _default_crd(self, body: bodies.RawBody) -> None:
        _setdefault(body, 'spec.conversion', {'strategy': 'None'})
        kind = dicts.resolve(body, 'spec.names.kind', None)
        if kind:
            _setdefault(body, 'spec.names.listKind', f'{kind}List')
        version = dicts.resolve(body, 'spec.version', None)
        if version and not dicts.resolve(body, 'spec.versions', None):
            dicts.ensure(body, 'spec.versions', [{'name': version, 'served': True, 'storage': True}])
        if bodies.get_api_version(body) == 'apiextensions.k8s.io/v1beta1':
            _setdefault(body, 'spec.preserveUnknownFields', True)


def _setdefault(d: MutableMapping[str, Any], field: str, value: Any) -> Any:
    # The defaults can be mutable ({}); every object gets its own copy.
    return dicts.setdefault(d, field, copy.deepcopy(value))


default_normalizer = Normalizer()


def normalize(body: Optional[Mapping[str, Any]]) -> Optional[bodies.RawBody]:
    """ Normalize a manifest with the default tables; see :class:`Normalizer`. """
    return default_normalizer(body)
