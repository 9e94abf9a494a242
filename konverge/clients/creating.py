from konverge import typedefs
from konverge.clients import api
from konverge.structs import bodies, configuration, references


async def create_obj(
        *,
        settings: configuration.Settings,
        resource: references.Resource,
        body: bodies.RawBody,
        logger: typedefs.Logger,
) -> bodies.RawBody:
    """
    Create an object; its namespace and name are taken from the body.
    """
    namespace = bodies.get_namespace(body)
    created_body: bodies.RawBody = await api.post(
        url=resource.get_url(namespace=namespace if resource.namespaced else None),
        payload=body,
        logger=logger,
        settings=settings,
    )
    return created_body
