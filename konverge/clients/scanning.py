"""
Discovery of the resource kinds served by the cluster.

The core API (``/api/v1``) and every version of every group (``/apis/...``)
are scanned concurrently. The result is not cached here: the accessors
cache it and drop it when the kinds are expected to change.
"""
import asyncio
from typing import Any, Collection, List, Mapping, Set, Tuple

from konverge import typedefs
from konverge.clients import api, errors
from konverge.structs import configuration, references

# The url, the group, the version, and whether the version is the preferred one.
GroupVersion = Tuple[str, str, str, bool]


async def read_version(
        *,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Mapping[str, str]:
    rsp: Mapping[str, str] = await api.get('/version', settings=settings, logger=logger)
    return rsp


async def scan_resources(
        *,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Collection[references.Resource]:
    """
    Scan all the resource kinds served by the cluster: both core & groups.
    """
    core_rsp, groups_rsp = await asyncio.gather(
        api.get('/api', settings=settings, logger=logger),
        api.get('/apis', settings=settings, logger=logger),
    )

    group_versions: List[GroupVersion] = [
        (f'/api/{version}', '', version, True)
        for version in core_rsp['versions']
    ]
    for group in groups_rsp['groups']:
        preferred = group.get('preferredVersion', {}).get('version')
        for version in group['versions']:
            group_versions.append((
                f'/apis/{group["name"]}/{version["version"]}',
                group['name'],
                version['version'],
                version['version'] == preferred,
            ))

    scanned = await asyncio.gather(*[
        _read_group_version(url, group, version, preferred, settings=settings, logger=logger)
        for url, group, version, preferred in group_versions
    ])

    resources: Set[references.Resource] = set()
    for group_resources in scanned:
        resources.update(group_resources)
    return resources


async def _read_group_version(
        url: str,
        group: str,
        version: str,
        preferred: bool,
        *,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Collection[references.Resource]:
    try:
        rsp = await api.get(url, settings=settings, logger=logger)
    except errors.APINotFoundError:
        # The group-version is gone since it was listed: e.g. its last CRD was deleted.
        return set()

    items: List[Mapping[str, Any]] = rsp['resources']
    return {
        references.Resource(
            group=group,
            version=version,
            kind=item['kind'],
            plural=item['name'],
            subresources=frozenset(
                other['name'].split('/', 1)[1]
                for other in items
                if other['name'].startswith(f'{item["name"]}/')
            ),
            namespaced=item['namespaced'],
            preferred=preferred,
            verbs=frozenset(item.get('verbs', [])),
        )
        for item in items
        if '/' not in item['name']
    }
