from konverge import typedefs
from konverge.clients import api
from konverge.structs import bodies, configuration, references


async def replace_obj(
        *,
        settings: configuration.Settings,
        resource: references.Resource,
        body: bodies.RawBody,
        logger: typedefs.Logger,
) -> bodies.RawBody:
    """
    Update an object as a whole (HTTP PUT), with an optimistic-concurrency check.

    The ``metadata.resourceVersion`` of the body must be the one that was read
    before; if the object has changed since then, the API responds with 409,
    which is raised as :class:`APIConflictError`.
    """
    namespace = bodies.get_namespace(body)
    replaced_body: bodies.RawBody = await api.put(
        url=resource.get_url(
            namespace=namespace if resource.namespaced else None,
            name=bodies.get_name(body),
        ),
        payload=body,
        logger=logger,
        settings=settings,
    )
    return replaced_body
