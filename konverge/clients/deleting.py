from typing import Optional

from konverge import typedefs
from konverge.clients import api
from konverge.structs import configuration, references


async def delete_obj(
        *,
        settings: configuration.Settings,
        resource: references.Resource,
        namespace: references.Namespace,
        name: str,
        propagation_policy: Optional[str] = 'Background',
        logger: typedefs.Logger,
) -> None:
    """
    Delete an object. The absence of the object is escalated as `APINotFoundError`.

    The dependants are deleted in the background by default (as ``kubectl`` does).
    """
    payload = {'propagationPolicy': propagation_policy} if propagation_policy else None
    await api.delete(
        url=resource.get_url(namespace=namespace if resource.namespaced else None, name=name),
        payload=payload,
        logger=logger,
        settings=settings,
    )
