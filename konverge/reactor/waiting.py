"""
Polling loops: waiting for the objects, kinds, namespaces, jobs to be ready.

All the loops are bounded by the deadlines computed at their entries.
On timeout, `WaitTimeoutError` is raised with the last seen object and message.

The progress is logged only when the message changes since the last iteration,
so that long waits do not flood the logs with the same "still waiting" lines.
In the dry-run mode, all waits are finished immediately.
"""
from typing import Any, Collection, Mapping, Optional

from konverge import errors as konverge_errors
from konverge import typedefs
from konverge.clients import accessors
from konverge.engines import loggers, sleeping
from konverge.reactor import readiness
from konverge.structs import bodies, configuration, dicts, references


async def wait_for_resource(
        *,
        kind: str,
        namespace: references.Namespace,
        name: str,
        timeout: float,
        api_version: Optional[str] = None,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
        registry: Optional[readiness.ReadinessRegistry] = None,
) -> Optional[bodies.RawBody]:
    """
    Wait until the object exists and is ready; return its last seen state.

    In the dry-run mode, nothing is fetched and ``None`` is returned.
    """
    if settings.applying.dry_run:
        return None

    stub = {'kind': kind, 'metadata': {'namespace': namespace, 'name': name}}
    object_logger = loggers.ObjectLogger(body=stub, logger=logger)
    resource = await accessor.resolve(api_version=api_version, kind=kind)
    deadline = sleeping.Deadline(timeout)
    last_message: Optional[str] = None
    body: Optional[bodies.RawBody] = None
    while True:
        body = await accessor.read(resource, namespace=namespace, name=name)
        verdict = await readiness.is_ready(
            body,
            accessor=accessor,
            settings=settings,
            logger=object_logger,
            registry=registry,
        )
        if verdict.ready:
            return body
        if verdict.message != last_message:
            object_logger.info(verdict.message)
            last_message = verdict.message
        if not await sleeping.sleep(settings.waiting.poll_interval, deadline):
            ref = references.ObjectRef(kind=kind, namespace=namespace, name=name)
            raise konverge_errors.WaitTimeoutError(
                f"Timed out waiting for {ref} to become ready: {last_message}",
                body=body, last_message=last_message)


async def wait_for(
        body: Mapping[str, Any],
        *,
        timeout: float,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
        registry: Optional[readiness.ReadinessRegistry] = None,
) -> Optional[bodies.RawBody]:
    """ Wait for an object identified by a manifest; see `wait_for_resource`. """
    return await wait_for_resource(
        kind=bodies.get_kind(body),
        namespace=bodies.get_namespace(body),
        name=bodies.get_name(body),
        api_version=bodies.get_api_version(body) or None,
        timeout=timeout,
        accessor=accessor,
        settings=settings,
        logger=logger,
        registry=registry,
    )


async def wait_for_resource_kind_registration(
        *,
        kind: str,
        timeout: float,
        api_version: Optional[str] = None,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> references.Resource:
    """
    Wait until the kind is served by the cluster (e.g. after its CRD is applied).

    The registered kinds are re-scanned every time. Whenever the scanned set
    changes, the accessor's cache of the kinds is invalidated, so that the
    following resolutions see the new kinds.
    """
    what = f'{kind}.{api_version}' if api_version else kind
    deadline = sleeping.Deadline(timeout)
    previous: Optional[Collection[references.Resource]] = None
    while True:
        registered = await accessor.list_registered()
        if previous is not None and set(registered) != set(previous):
            accessor.invalidate()
        previous = registered

        resource = references.select(registered, kind=kind, api_version=api_version)
        if resource is not None:
            accessor.invalidate()
            logger.debug(f"The resource kind {what} is registered as {resource!r}.")
            return resource

        logger.debug(f"Waiting for the resource kind {what} to be registered.")
        if not await sleeping.sleep(settings.waiting.registration_interval, deadline):
            raise konverge_errors.WaitTimeoutError(
                f"Timed out waiting for the resource kind {what} to be registered.",
                last_message="waiting for API resource")


async def wait_for_namespace(
        *,
        namespace: str,
        timeout: float,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> None:
    """
    Wait until all pods in the namespace are running (there must be at least one).

    The succeeded pods are considered ready too. Any pod with a false condition
    (e.g. not ready, not scheduled) keeps the namespace pending.
    """
    if settings.applying.dry_run:
        return

    object_logger = loggers.ObjectLogger(body={'kind': 'Namespace', 'metadata': {'name': namespace}},
                                         logger=logger)
    resource = await accessor.resolve(api_version='v1', kind='Pod')
    deadline = sleeping.Deadline(timeout)
    last_message: Optional[str] = None
    while True:
        pods = await accessor.list(resource, namespace=namespace)
        ready = pending = 0
        for pod in pods:
            phase = dicts.resolve(pod, 'status.phase', None)
            conditions = bodies.get_conditions(pod) or []
            if phase in ['Running', 'Succeeded'] and all(c.get('status') != 'False' for c in conditions):
                ready += 1
            else:
                pending += 1
        if ready > 0 and pending == 0:
            return

        message = f"waiting for ready={ready}, pending={pending}"
        if message != last_message:
            object_logger.info(message)
            last_message = message
        if not await sleeping.sleep(settings.waiting.namespace_interval, deadline):
            raise konverge_errors.WaitTimeoutError(
                f"Timed out waiting for the namespace {namespace}: {message}",
                last_message=message)


async def wait_for_job(
        *,
        namespace: str,
        name: str,
        timeout: float,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Optional[bodies.RawBody]:
    """ Wait until the job is complete (its ``Complete`` condition is ``True``). """
    if settings.applying.dry_run:
        return None

    resource = await accessor.resolve(api_version='batch/v1', kind='Job')
    deadline = sleeping.Deadline(timeout)
    body: Optional[bodies.RawBody] = None
    while True:
        body = await accessor.read(resource, namespace=namespace, name=name)
        for condition in (bodies.get_conditions(body) if body is not None else None) or []:
            if condition.get('type') == 'Complete' and condition.get('status') == 'True':
                return body
        if not await sleeping.sleep(settings.waiting.job_interval, deadline):
            raise konverge_errors.WaitTimeoutError(
                f"Timed out waiting for the job {namespace}/{name} to finish.",
                body=body, last_message="waiting for the job to finish")


async def wait_for_taint_removal(
        *,
        node: str,
        taint_key: str,
        timeout: float,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> None:
    """ Wait until the node has no taints with the key (or the node is gone). """
    if settings.applying.dry_run:
        return

    resource = await accessor.resolve(api_version='v1', kind='Node')
    deadline = sleeping.Deadline(timeout)
    while True:
        body = await accessor.read(resource, namespace=None, name=node)
        taints = list(dicts.walk(body, 'spec.taints')) if body is not None else []
        if not any(taint.get('key') == taint_key for taint in taints):
            return
        logger.debug(f"Waiting for the taint {taint_key} to be removed from the node {node}.")
        if not await sleeping.sleep(settings.waiting.taint_interval, deadline):
            raise konverge_errors.WaitTimeoutError(
                f"Timed out waiting for {node} to not have the taint {taint_key}.",
                body=body, last_message=f"waiting for the taint {taint_key} to be removed")


async def wait_for_node(
        *,
        node: str,
        timeout: float,
        condition: str = 'Ready',
        statuses: Collection[str] = ('True',),
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Optional[Mapping[str, str]]:
    """
    Wait until the node's condition has one of the statuses (e.g. ``Ready=True``).

    Returns the statuses of all the node's conditions by their types.
    An absent node, or a node with no such condition, keeps waiting.
    """
    if settings.applying.dry_run:
        return None

    object_logger = loggers.ObjectLogger(body={'kind': 'Node', 'metadata': {'name': node}}, logger=logger)
    resource = await accessor.resolve(api_version='v1', kind='Node')
    deadline = sleeping.Deadline(timeout)
    last_message: Optional[str] = None
    while True:
        body = await accessor.read(resource, namespace=None, name=node)
        conditions = {
            c.get('type', ''): c.get('status', '')
            for c in (bodies.get_conditions(body) if body is not None else None) or []
        }
        status = conditions.get(condition)
        if status in statuses:
            return conditions

        message = ("waiting for the node to appear" if body is None else
                   f"waiting for {condition} to be {'/'.join(statuses)}, now {status}")
        if message != last_message:
            object_logger.info(message)
            last_message = message
        if not await sleeping.sleep(settings.waiting.node_interval, deadline):
            raise konverge_errors.WaitTimeoutError(
                f"Timed out waiting for the node {node}: {message}",
                body=body, last_message=message)


async def wait_for_pod(
        *,
        namespace: str,
        name: str,
        timeout: float,
        phases: Collection[str] = ('Running',),
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Optional[bodies.RawBody]:
    """
    Wait until the pod is in one of the phases; return its last seen state.

    A failed pod is returned too: it will never get to any other phase,
    so the caller decides what to do with it.
    """
    if settings.applying.dry_run:
        return None

    stub = {'kind': 'Pod', 'metadata': {'namespace': namespace, 'name': name}}
    object_logger = loggers.ObjectLogger(body=stub, logger=logger)
    resource = await accessor.resolve(api_version='v1', kind='Pod')
    deadline = sleeping.Deadline(timeout)
    last_message: Optional[str] = None
    while True:
        body = await accessor.read(resource, namespace=namespace, name=name)
        phase = dicts.resolve(body, 'status.phase', None)
        if phase in phases:
            return body
        if phase == 'Failed':
            object_logger.warning("The pod has failed.")
            return body

        message = f"waiting for the phase {'/'.join(phases)}, now {phase}"
        if message != last_message:
            object_logger.info(message)
            last_message = message
        if not await sleeping.sleep(settings.waiting.pod_interval, deadline):
            raise konverge_errors.WaitTimeoutError(
                f"Timed out waiting for the pod {namespace}/{name}: {message}",
                body=body, last_message=message)


async def wait_for_pod_by_label(
        *,
        namespace: str,
        label_selector: str,
        timeout: float,
        phases: Optional[Collection[str]] = None,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Optional[bodies.RawBody]:
    """
    Wait until a pod matching the labels exists (in one of the phases, if given).

    The first matching pod is returned.
    """
    if settings.applying.dry_run:
        return None

    resource = await accessor.resolve(api_version='v1', kind='Pod')
    deadline = sleeping.Deadline(timeout)
    logged = False
    while True:
        pods = await accessor.list(resource, namespace=namespace, label_selector=label_selector)
        for pod in pods:
            if phases is None or dicts.resolve(pod, 'status.phase', None) in phases:
                return pod

        if not logged:
            logger.info(f"Waiting for a pod {label_selector} in {namespace}.")
            logged = True
        if not await sleeping.sleep(settings.waiting.pod_interval, deadline):
            raise konverge_errors.WaitTimeoutError(
                f"Timed out waiting for a pod {label_selector} in {namespace}.",
                body=pods[0] if pods else None,
                last_message=f"waiting for a pod, found {len(pods)}")
