"""
All configuration flags, options, settings to fine-tune the reconciliation.

All settings are grouped semantically just for convenience
(instead of a flat mega-object with all the values in it).

The settings are passed explicitly to every operation as ``settings=``,
and are never stored globally: multiple clusters or multiple concurrent
reconciliations can run with different settings in the same process.

Some of the settings are flags, some are scalars, some are tables of
kind-specific rules (but all of them have reasonable defaults).
The kind-specific tables are data, not logic: they can be extended
or overridden per call without touching the code.
"""
import dataclasses
from typing import Iterable, Mapping, Optional, Tuple


@dataclasses.dataclass(frozen=True)
class CarriedFields:
    """
    The fields of one kind to be carried from the live object to the desired one.

    The ``kept`` fields are then restored from the desired object, if present
    there: e.g. to carry the whole bound spec of a claim except its requests.
    """
    fields: Tuple[str, ...]
    kept: Tuple[str, ...] = ()


# The fields assigned by the server that are carried to every updated object,
# and which are stripped from the objects re-created from scratch.
IDENTITY_FIELDS: Tuple[str, ...] = (
    'metadata.resourceVersion',
    'metadata.selfLink',
    'metadata.uid',
    'metadata.creationTimestamp',
    'metadata.generation',
)

DEFAULT_CARRIED_FIELDS: Mapping[str, CarriedFields] = {
    'Service': CarriedFields(fields=(
        'spec.clusterIP',
        'spec.clusterIPs',
        'spec.ipFamilies',
        'spec.ipFamilyPolicy',
        'spec.sessionAffinity',
    )),
    'ServiceAccount': CarriedFields(fields=('secrets',)),
    'PersistentVolumeClaim': CarriedFields(fields=('spec',), kept=('spec.resources.requests',)),
    'Secret': CarriedFields(fields=('type',)),
    'CustomResourceDefinition': CarriedFields(fields=('spec.conversion.webhook',)),
}

DEFAULT_REPLACEMENT_TRIGGERS: Mapping[str, Tuple[str, ...]] = {
    'Deployment': ('field is immutable',),
    'DaemonSet': ('field is immutable',),
    'RoleBinding': ('cannot change roleRef',),
    'ClusterRoleBinding': ('cannot change roleRef',),
}

DEFAULT_NOISY_ANNOTATIONS: Tuple[str, ...] = (
    'deprecated.daemonset.template.generation',
    'template-operator-owner-ref',
    'deployment.kubernetes.io/revision',
)


@dataclasses.dataclass
class NetworkingSettings:

    request_timeout: Optional[float] = 5 * 60  # == aiohttp.client.DEFAULT_TIMEOUT
    """
    A timeout for the whole API request, including connecting and reading.
    """

    connect_timeout: Optional[float] = None
    """
    A timeout for the TCP & SSL connection establishment only.
    """

    error_backoffs: Iterable[float] = (1, 1, 2, 3, 5, 8)
    """
    Backoffs for the retries of the API requests on the transport-level
    errors (connection refused/reset, timeouts) and the 5xx API errors.

    The number of backoffs defines the number of retries: the request is
    tried ``len(error_backoffs) + 1`` times in total. If empty, the requests
    are not retried, and the errors are escalated immediately.
    """


@dataclasses.dataclass
class ApplyingSettings:

    dry_run: bool = False
    """
    Normalize the manifests and report the intentions, but send nothing.

    In the dry-run mode, all objects are considered ready and all waits
    are finished immediately (as there is nothing to wait for).
    """

    registration_timeout: float = 3 * 60
    """
    How long to wait for a not-yet-registered resource kind to appear
    in the cluster (e.g. when a CRD is applied right before its resources).
    """

    conflict_retries: int = 3
    """
    How many times an update is retried on an optimistic-concurrency conflict
    (with the fresh ``resourceVersion``) before the conflict is escalated.
    """

    conflict_backoff: Tuple[float, float] = (0, 5)
    """
    A range of the random sleeps between the conflict retries (seconds).
    """

    sticky_annotations: Tuple[str, ...] = ()
    """
    The annotations that are never overwritten once they are set
    on the live object: their live values are carried to the desired objects.
    """

    carried_fields: Mapping[str, CarriedFields] = dataclasses.field(
        default_factory=lambda: dict(DEFAULT_CARRIED_FIELDS))
    """
    Kind-specific fields carried from the live objects to the desired ones:
    those assigned by the cluster and rejected if re-sent differently.
    """

    replacement_triggers: Mapping[str, Tuple[str, ...]] = dataclasses.field(
        default_factory=lambda: dict(DEFAULT_REPLACEMENT_TRIGGERS))
    """
    Kind-specific substrings of the update errors on which the object is
    deleted and re-created instead of being updated in place.
    """

    undiffable_kinds: Tuple[str, ...] = ('Secret', 'CustomResourceDefinition')
    """
    The kinds whose diffs are never rendered to the logs: they are either
    sensitive, or too big and noisy to be useful.
    """

    noisy_annotations: Tuple[str, ...] = DEFAULT_NOISY_ANNOTATIONS
    """
    The annotations set by the controllers, which are ignored in comparisons.
    """


@dataclasses.dataclass
class WaitingSettings:

    poll_interval: float = 1
    """
    How often the objects are re-fetched while waiting for their readiness.
    """

    registration_interval: float = 1
    """
    How often the registered resource kinds are re-scanned while waiting.
    """

    namespace_interval: float = 2
    job_interval: float = 2
    taint_interval: float = 2
    node_interval: float = 2
    pod_interval: float = 2

    command_interval: float = 5
    """
    How often a command is re-executed in a pod until it succeeds.
    """

    probe_timeout: float = 30
    """
    How long the in-pod readiness probes are allowed to succeed.
    """


@dataclasses.dataclass
class DrainingSettings:

    eviction_timeout: float = 2 * 60
    """
    How long to wait for every pod to be evicted (and gone) from the node.
    """

    eviction_backoff: float = 5
    """
    How long to wait before re-trying an eviction refused by a disruption budget.
    """

    claim_timeout: float = 2 * 60
    claim_interval: float = 1

    local_storage_marker: str = 'local'
    """
    A substring of the storage class names that are bound to the nodes.
    The claims of such classes (or with no class) are re-created on drains.
    """

    failover_label: Tuple[str, str] = ('spilo-role', 'master')
    """
    A label of the database primaries that must be failed over before eviction.
    """

    failover_container: str = 'postgres'

    failover_command: Tuple[str, ...] = (
        'curl', '-s', 'http://localhost:8008/switchover', '-XPOST',
        '-d', '{{"leader":"{pod}"}}',
    )
    """
    A command to execute in the primary's container; ``{pod}`` is its name.
    """


@dataclasses.dataclass
class Settings:
    networking: NetworkingSettings = dataclasses.field(default_factory=NetworkingSettings)
    applying: ApplyingSettings = dataclasses.field(default_factory=ApplyingSettings)
    waiting: WaitingSettings = dataclasses.field(default_factory=WaitingSettings)
    draining: DrainingSettings = dataclasses.field(default_factory=DrainingSettings)
