from konverge import errors as konverge_errors
from konverge import typedefs
from konverge.clients import api, deleting, errors, fetching
from konverge.engines import sleeping
from konverge.structs import bodies, configuration, references


async def evict_obj(
        *,
        settings: configuration.Settings,
        resource: references.Resource,
        body: bodies.RawBody,
        timeout: float,
        logger: typedefs.Logger,
) -> None:
    """
    Evict a pod with respect to the pod disruption budgets, and wait until it is gone.

    While the eviction is refused by a disruption budget (HTTP 429), it is
    re-tried every ``settings.draining.eviction_backoff`` seconds. If the cluster
    does not serve the eviction subresource at all, the pod is deleted directly.

    The pod is considered gone when it is absent, or when a new pod with the same
    name but with another UID has appeared (e.g. for the stateful sets).
    """
    namespace = bodies.get_namespace(body)
    name = bodies.get_name(body)
    uid = bodies.get_uid(body)
    deadline = sleeping.Deadline(timeout)
    eviction = {
        'apiVersion': 'policy/v1',
        'kind': 'Eviction',
        'metadata': {'name': name, 'namespace': namespace},
    }

    while True:
        try:
            await api.post(
                url=resource.get_url(namespace=namespace, name=name, subresource='eviction'),
                payload=eviction,
                logger=logger,
                settings=settings,
            )
        except errors.APITooManyRequestsError:
            backoff = settings.draining.eviction_backoff
            logger.info(f"Eviction of {namespace}/{name} is refused by a disruption budget; "
                        f"retrying in {backoff} seconds.")
            if not await sleeping.sleep(backoff, deadline):
                raise konverge_errors.EvictionError(
                    f"Timed out evicting {namespace}/{name}: refused by a disruption budget.")
        except errors.APINotFoundError:
            # Either the pod is already gone, or the eviction subresource is not served.
            try:
                await deleting.delete_obj(
                    resource=resource,
                    namespace=namespace,
                    name=name,
                    logger=logger,
                    settings=settings,
                )
            except errors.APINotFoundError:
                return
            break
        else:
            break

    while True:
        current = await fetching.read_obj(
            resource=resource,
            namespace=namespace,
            name=name,
            logger=logger,
            settings=settings,
        )
        if current is None or bodies.get_uid(current) != uid:
            logger.debug(f"Pod {namespace}/{name} is evicted.")
            return
        if not await sleeping.sleep(settings.waiting.poll_interval, deadline):
            raise konverge_errors.EvictionError(
                f"Timed out waiting for {namespace}/{name} to be gone after eviction.")
