"""
The readiness evaluation of the live objects, dispatched by their kinds.

There is no common shape of the statuses across the kinds. Some report
the conditions, some report the replica counters, some report nothing
at all and are backed by other (owned) objects with the derived names,
some are ready only when their services respond inside the pods.

Every kind-specific rule is a predicate registered in a registry by
the kind names; the kinds with no registered predicate are evaluated
by the generic conditions-based rule. The predicates never modify
the objects or the cluster: they only read & execute probes.

Additional predicates can be registered by the users::

    @konverge.register('MyKind')
    async def my_kind_is_ready(body, *, accessor, settings, logger):
        if body.get('status', {}).get('phase') == 'Active':
            return Verdict(True)
        return Verdict(False, "waiting to become active")
"""
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

from typing_extensions import Protocol

from konverge import errors as konverge_errors
from konverge import typedefs
from konverge.clients import accessors
from konverge.reactor import commands
from konverge.structs import bodies, configuration, dicts


class Verdict(NamedTuple):
    ready: bool
    message: str = ''


READY = Verdict(True)
WAITING = Verdict(False, "waiting to become ready")


class Predicate(Protocol):
    async def __call__(
            self,
            body: bodies.RawBody,
            *,
            accessor: accessors.Accessor,
            settings: configuration.Settings,
            logger: typedefs.Logger,
    ) -> Verdict: ...


class ReadinessRegistry:
    """
    A mapping of the kinds to their readiness predicates.

    The kinds with no predicate fall back to the default one
    (the conditions-based rule, unless overridden).
    """

    def __init__(self, default: Optional[Predicate] = None) -> None:
        super().__init__()
        self._predicates: Dict[str, Predicate] = {}
        self._default = default

    def register(self, *kinds: str) -> Callable[[Predicate], Predicate]:
        def decorator(fn: Predicate) -> Predicate:
            for kind in kinds:
                self._predicates[kind] = fn
            return fn
        return decorator

    def get(self, kind: str) -> Predicate:
        return self._predicates.get(kind, self._default or conditions_ready)

    def __contains__(self, kind: str) -> bool:
        return kind in self._predicates


async def is_ready(
        body: Optional[bodies.RawBody],
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
        registry: Optional[ReadinessRegistry] = None,
) -> Verdict:
    """
    Evaluate the readiness of a live object (``None`` if it does not exist yet).
    """
    if settings.applying.dry_run:
        return READY
    if body is None:
        return Verdict(False, "waiting to be created")

    registry = registry if registry is not None else default_registry
    predicate = registry.get(bodies.get_kind(body))
    logger.debug("Checking the readiness.")
    return await predicate(body, accessor=accessor, settings=settings, logger=logger)


def check_conditions(body: bodies.RawBody) -> Verdict:
    """
    The generic rule: a Ready=True condition and no other unsatisfied conditions.

    The condition-less objects are not ready, as they are not reconciled yet
    (or the kind has no conditions at all, so nothing can be said about it).
    """
    conditions = bodies.get_conditions(body)
    if not conditions:
        return WAITING
    for condition in conditions:
        if condition.get('status') != 'True':
            type_ = condition.get('type')
            status = condition.get('status')
            message = condition.get('message', '')
            return Verdict(False, f"waiting for {type_}/{status}: {message}")
    if not any(condition.get('type') == 'Ready' for condition in conditions):
        return WAITING
    return READY


def check_replicas(body: bodies.RawBody) -> Verdict:
    """
    The workloads are ready when all of their desired replicas are ready.

    The desired count is taken from the spec (as the status can lag behind);
    if the spec has no replicas, the status' counter is used.
    """
    desired = dicts.resolve(body, 'spec.replicas', None)
    if desired is None:
        desired = dicts.resolve(body, 'status.replicas', None)
    if desired is None:
        desired = 1
    ready = dicts.resolve(body, 'status.readyReplicas', None) or 0
    if ready == desired:
        return READY
    return Verdict(False, f"waiting for replicas to become ready {ready}/{desired}")


async def conditions_ready(
        body: bodies.RawBody,
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Verdict:
    return check_conditions(body)


default_registry = ReadinessRegistry()
register = default_registry.register


@register('Deployment', 'StatefulSet', 'ReplicaSet')
async def replicas_ready(
        body: bodies.RawBody,
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Verdict:
    return check_replicas(body)


@register('DaemonSet')
async def daemon_set_ready(
        body: bodies.RawBody,
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Verdict:
    ready = dicts.resolve(body, 'status.numberReady', None) or 0
    if ready >= 1:
        return READY
    desired = dicts.resolve(body, 'status.desiredNumberScheduled', None) or 0
    return Verdict(False, f"waiting for replicas to become ready {ready}/{desired}")


@register('ConfigMap', 'Secret')
async def data_ready(
        body: bodies.RawBody,
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Verdict:
    data = body.get('data')
    if isinstance(data, dict) and data:
        return READY
    return Verdict(False, "waiting for data")


@register('Service')
async def service_ready(
        body: bodies.RawBody,
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Verdict:
    if dicts.resolve(body, 'spec.type', None) == 'LoadBalancer':
        if dicts.resolve(body, 'status.loadBalancer.ingress', None):
            return READY
        return Verdict(False, "waiting for LoadBalancerIP")

    resource = await accessor.resolve(api_version='v1', kind='Endpoints')
    endpoints = await accessor.read(
        resource,
        namespace=bodies.get_namespace(body),
        name=bodies.get_name(body),
    )
    if endpoints is None:
        return Verdict(False, "waiting for the corresponding Endpoint")
    return READY


@register('ConstraintTemplate')
async def constraint_template_ready(
        body: bodies.RawBody,
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Verdict:
    status = body.get('status')
    if not isinstance(status, dict):
        return WAITING
    if status.get('created') is True:
        return READY
    return Verdict(False, "waiting to be created")


@register('PerconaServerMongoDB')
async def mongodb_ready(
        body: bodies.RawBody,
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Verdict:
    if dicts.resolve(body, 'status.state', None) == 'ready':
        return READY
    return WAITING


@register('Kafka')
async def ready_condition_ready(
        body: bodies.RawBody,
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Verdict:
    # Other conditions (e.g. deprecation warnings) do not block the readiness.
    for condition in bodies.get_conditions(body) or []:
        if condition.get('type') == 'Ready' and condition.get('status') == 'True':
            return READY
    return WAITING


@register('Builder')
async def builder_ready(
        body: bodies.RawBody,
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Verdict:
    verdict = check_conditions(body)
    if not verdict.ready:
        return verdict
    if not dicts.resolve(body, 'status.latestImage', None):
        return WAITING
    return READY


@register('Image')
async def image_ready(
        body: bodies.RawBody,
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Verdict:
    if bodies.get_conditions(body) is None:
        return WAITING
    if not dicts.resolve(body, 'status.latestImage', None):
        return WAITING
    return READY


#
# The kinds backed by the owned workloads with the derived names.
#

async def check_owned(
        owned: List[Tuple[str, str]],
        *,
        namespace: Optional[str],
        accessor: accessors.Accessor,
) -> Verdict:
    """
    Check that all the owned workloads (kind & name pairs) exist and are ready.
    """
    messages: List[str] = []
    for kind, name in owned:
        resource = await accessor.resolve(api_version='apps/v1', kind=kind)
        body = await accessor.read(resource, namespace=namespace, name=name)
        if body is None:
            messages.append(f"waiting for {kind.lower()} {name}")
        else:
            verdict = check_replicas(body)
            if not verdict.ready:
                messages.append(verdict.message)
    if messages:
        return Verdict(False, "; ".join(messages))
    return READY


@register('Elasticsearch')
async def elasticsearch_ready(
        body: bodies.RawBody,
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Verdict:
    name = bodies.get_name(body)
    return await check_owned([('StatefulSet', f'{name}-es-default')],
                             namespace=bodies.get_namespace(body), accessor=accessor)


@register('Kibana')
async def kibana_ready(
        body: bodies.RawBody,
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Verdict:
    name = bodies.get_name(body)
    return await check_owned([('Deployment', f'{name}-kb')],
                             namespace=bodies.get_namespace(body), accessor=accessor)


@register('RedisFailover')
async def redis_failover_ready(
        body: bodies.RawBody,
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Verdict:
    name = bodies.get_name(body)
    return await check_owned([('StatefulSet', f'rfr-{name}'), ('Deployment', f'rfs-{name}')],
                             namespace=bodies.get_namespace(body), accessor=accessor)


POSTGRES_PROBE: Tuple[str, ...] = ('su', 'postgres', '-c', "psql -c 'SELECT 1;'")


async def check_postgres(
        name: str,
        *,
        namespace: Optional[str],
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Verdict:
    """
    The stateful set must be ready, and its first pod must serve the queries.
    """
    verdict = await check_owned([('StatefulSet', name)], namespace=namespace, accessor=accessor)
    if not verdict.ready:
        return verdict
    try:
        await commands.wait_for_pod_command(
            namespace=namespace or '',
            name=f'{name}-0',
            container='postgres',
            command=POSTGRES_PROBE,
            timeout=settings.waiting.probe_timeout,
            accessor=accessor,
            settings=settings,
            logger=logger,
        )
    except konverge_errors.WaitTimeoutError as e:
        return Verdict(False, f"waiting for postgres to be running: {e.last_message}")
    return READY


@register('postgresql')
async def postgresql_ready(
        body: bodies.RawBody,
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Verdict:
    return await check_postgres(bodies.get_name(body), namespace=bodies.get_namespace(body),
                                accessor=accessor, settings=settings, logger=logger)


@register('PostgresqlDB')
async def postgresql_db_ready(
        body: bodies.RawBody,
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Verdict:
    # These databases are backed by the postgresql resources with the prefixed names.
    name = f'postgres-{bodies.get_name(body)}'
    return await check_postgres(name, namespace=bodies.get_namespace(body),
                                accessor=accessor, settings=settings, logger=logger)
