"""
The resource accessor: the only way the reconciliation talks to the cluster.

The reconciliation, readiness, and draining routines never call K8s API
directly: they are given an accessor that satisfies the :class:`Accessor`
protocol. :class:`APIAccessor` is the real one (over ``aiohttp``);
the tests use in-memory fakes of the same protocol.
"""
import asyncio
import logging
from typing import Collection, Optional, Sequence, Tuple

from typing_extensions import Protocol

from konverge import errors as konverge_errors
from konverge import typedefs
from konverge.clients import creating, deleting, evicting, executing, \
                             fetching, replacing, scanning
from konverge.structs import bodies, configuration, references

default_logger = logging.getLogger('konverge.clients')


class Accessor(Protocol):

    async def resolve(
            self,
            *,
            api_version: Optional[str],
            kind: str,
    ) -> references.Resource:
        """ Find the resource serving the kind, or raise `UnregisteredKindError`. """

    async def list_registered(self) -> Collection[references.Resource]:
        """ Scan the currently registered resource kinds afresh. """

    def invalidate(self) -> None:
        """ Forget the cached resource kinds (e.g. when they are known to change). """

    async def read(
            self,
            resource: references.Resource,
            *,
            namespace: references.Namespace,
            name: str,
    ) -> Optional[bodies.RawBody]:
        ...

    async def list(
            self,
            resource: references.Resource,
            *,
            namespace: references.Namespace = None,
            field_selector: Optional[str] = None,
            label_selector: Optional[str] = None,
    ) -> Collection[bodies.RawBody]:
        ...

    async def create(
            self,
            resource: references.Resource,
            body: bodies.RawBody,
    ) -> bodies.RawBody:
        ...

    async def update(
            self,
            resource: references.Resource,
            body: bodies.RawBody,
    ) -> bodies.RawBody:
        ...

    async def delete(
            self,
            resource: references.Resource,
            *,
            namespace: references.Namespace,
            name: str,
    ) -> None:
        ...

    async def evict(
            self,
            resource: references.Resource,
            body: bodies.RawBody,
            *,
            timeout: float,
    ) -> None:
        ...

    async def exec(
            self,
            *,
            namespace: str,
            name: str,
            container: Optional[str],
            command: Sequence[str],
            timeout: Optional[float] = None,
    ) -> Tuple[str, str]:
        ...


class APIAccessor:
    """
    The accessor to a real cluster via its API.

    The connection is taken from the current :func:`connected` context
    at the time of every call, so one accessor can be created in advance.
    The resource kinds are scanned once and cached until invalidated.
    """

    def __init__(
            self,
            *,
            settings: Optional[configuration.Settings] = None,
            logger: Optional[typedefs.Logger] = None,
    ) -> None:
        super().__init__()
        self.settings = settings if settings is not None else configuration.Settings()
        self.logger = logger if logger is not None else default_logger
        self._resources: Optional[Collection[references.Resource]] = None
        self._lock = asyncio.Lock()

    async def resolve(
            self,
            *,
            api_version: Optional[str],
            kind: str,
    ) -> references.Resource:
        async with self._lock:
            if self._resources is None:
                self._resources = await self.list_registered()
            resources = self._resources

        resource = references.select(resources, kind=kind, api_version=api_version)
        if resource is None:
            what = f'{kind}.{api_version}' if api_version else kind
            raise konverge_errors.UnregisteredKindError(
                f"The resource kind {what} is not registered in the cluster.",
                api_version=api_version, kind=kind)
        return resource

    async def list_registered(self) -> Collection[references.Resource]:
        return await scanning.scan_resources(settings=self.settings, logger=self.logger)

    def invalidate(self) -> None:
        self._resources = None

    async def read(
            self,
            resource: references.Resource,
            *,
            namespace: references.Namespace,
            name: str,
    ) -> Optional[bodies.RawBody]:
        return await fetching.read_obj(
            resource=resource,
            namespace=namespace,
            name=name,
            settings=self.settings,
            logger=self.logger,
        )

    async def list(
            self,
            resource: references.Resource,
            *,
            namespace: references.Namespace = None,
            field_selector: Optional[str] = None,
            label_selector: Optional[str] = None,
    ) -> Collection[bodies.RawBody]:
        return await fetching.list_objs(
            resource=resource,
            namespace=namespace,
            field_selector=field_selector,
            label_selector=label_selector,
            settings=self.settings,
            logger=self.logger,
        )

    async def create(
            self,
            resource: references.Resource,
            body: bodies.RawBody,
    ) -> bodies.RawBody:
        return await creating.create_obj(
            resource=resource,
            body=body,
            settings=self.settings,
            logger=self.logger,
        )

    async def update(
            self,
            resource: references.Resource,
            body: bodies.RawBody,
    ) -> bodies.RawBody:
        return await replacing.replace_obj(
            resource=resource,
            body=body,
            settings=self.settings,
            logger=self.logger,
        )

    async def delete(
            self,
            resource: references.Resource,
            *,
            namespace: references.Namespace,
            name: str,
    ) -> None:
        await deleting.delete_obj(
            resource=resource,
            namespace=namespace,
            name=name,
            settings=self.settings,
            logger=self.logger,
        )

    async def evict(
            self,
            resource: references.Resource,
            body: bodies.RawBody,
            *,
            timeout: float,
    ) -> None:
        await evicting.evict_obj(
            resource=resource,
            body=body,
            timeout=timeout,
            settings=self.settings,
            logger=self.logger,
        )

    async def exec(
            self,
            *,
            namespace: str,
            name: str,
            container: Optional[str],
            command: Sequence[str],
            timeout: Optional[float] = None,
    ) -> Tuple[str, str]:
        return await executing.exec_command(
            namespace=namespace,
            name=name,
            container=container,
            command=command,
            timeout=timeout,
            logger=self.logger,
        )
