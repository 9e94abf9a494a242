from typing import Collection, Dict, List, Optional

from konverge import errors as konverge_errors
from konverge import typedefs
from konverge.clients import api, errors
from konverge.structs import bodies, configuration, references

# The message of 404 for the unserved resource kinds (as opposed to the absent objects).
UNSERVED_MESSAGE = 'the server could not find the requested resource'


async def read_obj(
        *,
        settings: configuration.Settings,
        resource: references.Resource,
        namespace: references.Namespace,
        name: str,
        logger: typedefs.Logger,
) -> Optional[bodies.RawBody]:
    """
    Read one object, or return ``None`` if it is absent.

    If the whole resource kind is not served anymore (or not yet), it is not
    "absent": `UnregisteredKindError` is raised so that the kind can be awaited.
    """
    try:
        body: bodies.RawBody = await api.get(
            url=resource.get_url(namespace=namespace if resource.namespaced else None, name=name),
            logger=logger,
            settings=settings,
        )
    except errors.APINotFoundError as e:
        if e.message and UNSERVED_MESSAGE in e.message:
            raise konverge_errors.UnregisteredKindError(
                f"The resource {resource!r} is not served by the cluster: {e}",
                api_version=resource.api_version, kind=resource.kind or resource.plural) from e
        return None
    return body


async def list_objs(
        *,
        settings: configuration.Settings,
        resource: references.Resource,
        namespace: references.Namespace,
        field_selector: Optional[str] = None,
        label_selector: Optional[str] = None,
        logger: typedefs.Logger,
) -> Collection[bodies.RawBody]:
    """
    List the objects of specific resource type, optionally filtered.

    If the namespace is ``None``, or the resource is cluster-scoped,
    the objects are listed cluster-wide.
    """
    params: Dict[str, str] = {}
    if field_selector:
        params['fieldSelector'] = field_selector
    if label_selector:
        params['labelSelector'] = label_selector

    rsp = await api.get(
        url=resource.get_url(namespace=namespace if resource.namespaced else None, params=params),
        logger=logger,
        settings=settings,
    )

    items: List[bodies.RawBody] = []
    for item in rsp.get('items') or []:
        if 'kind' in rsp:
            item.setdefault('kind', rsp['kind'][:-4] if rsp['kind'][-4:] == 'List' else rsp['kind'])
        if 'apiVersion' in rsp:
            item.setdefault('apiVersion', rsp['apiVersion'])
        items.append(item)
    return items
