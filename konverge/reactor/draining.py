"""
Draining the nodes: cordoning them, and evicting all the evictable pods.

The pods are evicted one by one, in the order they are listed, never in parallel:
concurrent evictions could violate the disruption budgets of the workloads.
The first failure aborts the whole drain, as proceeding with the other pods
on a node where e.g. a database primary could not be failed over is unsafe.

Before the eviction of every pod:

* The sole replicas of the replica sets are doubled, so that there is no gap
  in the capacity; the replica sets are scaled back after the eviction.
* The database primaries are failed over to their replicas.

After the eviction, the claims of the node-local volumes are re-created,
so that the volumes can be re-bound on other nodes when the pods are scheduled.
"""
import copy
from typing import Any, Callable, Collection, Mapping, Optional

from konverge import errors as konverge_errors
from konverge import typedefs
from konverge.clients import accessors, errors
from konverge.engines import loggers, retrying, sleeping
from konverge.reactor import applying
from konverge.structs import bodies, configuration, dicts, references

# The fields of the claims which must be cleared to re-bind them anew.
CLAIM_BINDING_FIELDS = configuration.IDENTITY_FIELDS + (
    'metadata.annotations',
    'metadata.finalizers',
    'spec.volumeName',
    'status',
)


def get_controller(body: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    for owner in bodies.get_owners(body):
        if owner.get('controller'):
            return owner
    return None


def get_skip_reason(pod: Mapping[str, Any]) -> Optional[str]:
    """ Why the pod cannot or need not be evicted; ``None`` if it can be. """
    if dicts.resolve(pod, 'status.phase', None) in ['Succeeded', 'Failed']:
        return "the pod is finished"
    if dicts.resolve(pod, 'metadata.deletionTimestamp', None):
        return "the pod is being deleted"
    controller = get_controller(pod)
    if controller is not None and controller.get('kind') == 'DaemonSet':
        return "the pod belongs to a daemon set"
    if any(owner.get('kind') == 'Node' for owner in bodies.get_owners(pod)):
        return "the pod is static"
    return None


async def modify(
        resource: references.Resource,
        *,
        namespace: references.Namespace,
        name: str,
        fn: Callable[[bodies.RawBody], None],
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> bodies.RawBody:
    """
    Read an object, modify it, and store it back; retry on the conflicts.
    """
    ref = references.ObjectRef(kind=resource.kind or resource.plural, namespace=namespace, name=name)

    async def attempt() -> bodies.RawBody:
        body = await accessor.read(resource, namespace=namespace, name=name)
        if body is None:
            raise konverge_errors.KonvergeError(f"{ref} does not exist.")
        fn(body)
        return await accessor.update(resource, body)

    return await retrying.retry(
        attempt,
        policy=retrying.RetryPolicy(
            retries=settings.applying.conflict_retries,
            backoff=settings.applying.conflict_backoff,
        ),
        retryable=applying.is_conflict,
        logger=logger,
        what=f"updating {ref}",
    )


async def cordon(
        *,
        node: str,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> None:
    """ Mark the node as unschedulable. """
    await _set_unschedulable(node, True, accessor=accessor, settings=settings, logger=logger)


async def uncordon(
        *,
        node: str,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> None:
    """ Mark the node as schedulable. """
    await _set_unschedulable(node, False, accessor=accessor, settings=settings, logger=logger)


async def _set_unschedulable(
        node: str,
        unschedulable: bool,
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> None:
    action = "Cordoning" if unschedulable else "Uncordoning"
    if settings.applying.dry_run:
        logger.info(f"[dry-run] {action} the node {node}.")
        return
    logger.info(f"{action} the node {node}.")
    resource = await accessor.resolve(api_version='v1', kind='Node')
    await modify(
        resource,
        namespace=None,
        name=node,
        fn=lambda body: dicts.ensure(body, 'spec.unschedulable', unschedulable),
        accessor=accessor,
        settings=settings,
        logger=logger,
    )


async def drain(
        *,
        node: str,
        timeout: Optional[float] = None,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> None:
    """
    Cordon the node and evict all the evictable pods from it.

    The timeout bounds the eviction of every pod (until it is gone),
    not the whole drain, as the number of pods is not known in advance.
    """
    logger.info(f"Draining the node {node}.")
    await cordon(node=node, accessor=accessor, settings=settings, logger=logger)
    await evict_node(node=node, timeout=timeout, accessor=accessor, settings=settings, logger=logger)


async def evict_node(
        *,
        node: str,
        timeout: Optional[float] = None,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> None:
    """ Evict all the evictable pods from the node, one by one, in order. """
    resource = await accessor.resolve(api_version='v1', kind='Pod')
    pods: Collection[bodies.RawBody] = await accessor.list(
        resource,
        namespace=None,
        field_selector=f'spec.nodeName={node}',
    )
    for pod in pods:
        try:
            await evict_pod(pod, timeout=timeout, accessor=accessor, settings=settings, logger=logger)
        except errors.APIError as e:
            raise konverge_errors.EvictionError(
                f"Failed to evict {bodies.describe(pod)} from {node}: {e}") from e


async def evict_pod(
        pod: bodies.RawBody,
        *,
        timeout: Optional[float] = None,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> bool:
    """
    Evict one pod (with the preparations & cleanups); return if it was evicted.
    """
    pod_logger = loggers.ObjectLogger(body=pod, logger=logger)
    reason = get_skip_reason(pod)
    if reason is not None:
        pod_logger.debug(f"Skipping the eviction: {reason}.")
        return False
    if settings.applying.dry_run:
        pod_logger.info("[dry-run] Would be evicted.")
        return False

    timeout = timeout if timeout is not None else settings.draining.eviction_timeout
    replica_set = await _get_sole_replica_set(pod, accessor=accessor)
    if replica_set is not None:
        await _scale(replica_set, 2, accessor=accessor, settings=settings, logger=pod_logger)
    try:
        await _failover(pod, accessor=accessor, settings=settings, logger=pod_logger)
        resource = await accessor.resolve(api_version='v1', kind='Pod')
        await accessor.evict(resource, pod, timeout=timeout)
        pod_logger.info("Evicted.")
        await _recreate_local_claims(pod, accessor=accessor, settings=settings, logger=pod_logger)
    finally:
        if replica_set is not None:
            try:
                await _scale(replica_set, 1, accessor=accessor, settings=settings, logger=pod_logger)
            except (errors.APIError, konverge_errors.KonvergeError) as e:
                pod_logger.warning(f"Failed to scale back {bodies.describe(replica_set)}: {e}")
    return True


async def _get_sole_replica_set(
        pod: bodies.RawBody,
        *,
        accessor: accessors.Accessor,
) -> Optional[bodies.RawBody]:
    for owner in bodies.get_owners(pod):
        if owner.get('kind') == 'ReplicaSet':
            resource = await accessor.resolve(api_version='apps/v1', kind='ReplicaSet')
            body = await accessor.read(resource, namespace=bodies.get_namespace(pod), name=owner['name'])
            if body is not None and dicts.resolve(body, 'spec.replicas', 1) == 1:
                return body
    return None


async def _scale(
        body: bodies.RawBody,
        replicas: int,
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> None:
    logger.info(f"Scaling {bodies.describe(body)} to {replicas} replicas.")
    resource = await accessor.resolve(api_version='apps/v1', kind='ReplicaSet')
    await modify(
        resource,
        namespace=bodies.get_namespace(body),
        name=bodies.get_name(body),
        fn=lambda rs: dicts.ensure(rs, 'spec.replicas', replicas),
        accessor=accessor,
        settings=settings,
        logger=logger,
    )


async def _failover(
        pod: bodies.RawBody,
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> None:
    key, value = settings.draining.failover_label
    if bodies.get_labels(pod).get(key) != value:
        return

    name = bodies.get_name(pod)
    command = [arg.format(pod=name) for arg in settings.draining.failover_command]
    logger.info("Conducting the failover of the primary.")
    try:
        stdout, stderr = await accessor.exec(
            namespace=bodies.get_namespace(pod) or '',
            name=name,
            container=settings.draining.failover_container,
            command=command,
        )
    except (konverge_errors.ExecError, errors.APIError) as e:
        raise konverge_errors.EvictionError(
            f"Failed to fail over the primary {bodies.describe(pod)}, aborting: {e}") from e
    logger.info(f"Failed over: {stdout} {stderr}".strip())


async def _recreate_local_claims(
        pod: bodies.RawBody,
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> None:
    namespace = bodies.get_namespace(pod)
    resource: Optional[references.Resource] = None
    for volume in dicts.walk(pod, 'spec.volumes'):
        claim_name = dicts.resolve(volume, 'persistentVolumeClaim.claimName', None)
        if not claim_name:
            continue

        resource = resource or await accessor.resolve(api_version='v1', kind='PersistentVolumeClaim')
        claim = await accessor.read(resource, namespace=namespace, name=claim_name)
        if claim is None:
            logger.debug(f"The claim {claim_name} is absent already.")
            continue

        storage_class = dicts.resolve(claim, 'spec.storageClassName', None)
        if storage_class is not None and settings.draining.local_storage_marker not in storage_class:
            continue

        logger.info(f"Deleting the node-local claim {claim_name}.")
        await accessor.delete(resource, namespace=namespace, name=claim_name)

        deadline = sleeping.Deadline(settings.draining.claim_timeout)
        while await accessor.read(resource, namespace=namespace, name=claim_name) is not None:
            if not await sleeping.sleep(settings.draining.claim_interval, deadline):
                raise konverge_errors.EvictionError(
                    f"Timed out waiting for the claim {namespace}/{claim_name} to be deleted.")

        fresh: bodies.RawBody = copy.deepcopy(claim)
        for field in CLAIM_BINDING_FIELDS:
            dicts.discard(fresh, field)
        created = await accessor.create(resource, fresh)
        logger.info(f"Re-created the claim {claim_name}: "
                    f"{bodies.get_uid(claim)} -> {bodies.get_uid(created)}.")
