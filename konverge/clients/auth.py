import base64
import contextlib
import functools
import os
import ssl
import tempfile
from contextvars import ContextVar
from typing import Any, AsyncIterator, Callable, Dict, Iterator, Mapping, Optional, TypeVar, cast

import aiohttp

from konverge.structs import credentials

# The current connection to the cluster, as used by all the client wrappers.
# Set by `connected()`, so that every task started inside of it has the same context.
context_var: ContextVar["APIContext"] = ContextVar('context_var')

# A typevar to show that we return a function with the same signature as given.
_F = TypeVar('_F', bound=Callable[..., Any])

USER_AGENT = 'konverge'


def authenticated(fn: _F) -> _F:
    """
    A decorator to inject a pre-authenticated session to a requesting routine.

    If a context is passed explicitly, it is used as is. Otherwise, the current
    context of :func:`connected` is used; it is an error to make API calls
    outside of any connection.
    """
    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        if kwargs.get('context') is None:
            try:
                kwargs['context'] = context_var.get()
            except LookupError:
                raise credentials.LoginError("No connection to the cluster: use `connected()`.")
        return await fn(*args, **kwargs)
    return cast(_F, wrapper)


@contextlib.asynccontextmanager
async def connected(
        info: credentials.ConnectionInfo,
) -> AsyncIterator["APIContext"]:
    """
    Connect to the cluster for the duration of the ``async with`` block.

    All API calls made inside (incl. the sub-tasks started inside) use
    this connection unless a context is passed to them explicitly::

        async with konverge.connected(ConnectionInfo(server=..., token=...)):
            await konverge.apply(namespace='default', manifests=[...])
    """
    context = APIContext(info)
    token = context_var.set(context)
    try:
        yield context
    finally:
        context_var.reset(token)
        await context.close()


class APIContext:
    """
    The aiohttp session of one connection, with everything needed to build URLs.

    It is created once per :func:`connected` block and shared by all the calls
    made in it. The whole connection is assumed to live in one event loop.
    """

    session: aiohttp.ClientSession
    server: str
    default_namespace: Optional[str]

    # The certificates given as data, stored to files for the ssl module.
    _tempfiles: "_TempFiles"

    def __init__(
            self,
            info: credentials.ConnectionInfo,
    ) -> None:
        super().__init__()
        tempfiles = _TempFiles()
        ca_path = _get_path(tempfiles, "CA", info.ca_path, info.ca_data)
        certificate_path = _get_path(tempfiles, "certificate",
                                     info.certificate_path, info.certificate_data)
        private_key_path = _get_path(tempfiles, "private key",
                                     info.private_key_path, info.private_key_data)

        context = ssl.create_default_context(purpose=ssl.Purpose.SERVER_AUTH, cafile=ca_path)
        if certificate_path and private_key_path:
            context.load_cert_chain(certfile=certificate_path, keyfile=private_key_path)
        if info.insecure:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE

        auth: Optional[aiohttp.BasicAuth] = None
        if info.username and info.password:
            auth = aiohttp.BasicAuth(info.username, info.password)

        self.session = aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=0, ssl=context),
            headers=_get_headers(info),
            auth=auth,
        )
        self.server = info.server
        self.default_namespace = info.default_namespace
        self._tempfiles = tempfiles

    async def close(self) -> None:
        await self.session.close()
        self._tempfiles.purge()


def _get_path(
        tempfiles: "_TempFiles",
        what: str,
        path: Optional[str],
        data: Optional[bytes],
) -> Optional[str]:
    """ Get a file path for a certificate or a key given either as a path or as data. """
    if path and data:
        raise credentials.LoginError(f"Both {what} path & data are set. Need only one.")
    elif data:
        return tempfiles[base64.b64decode(data)]
    else:
        return path or None


def _get_headers(info: credentials.ConnectionInfo) -> Dict[str, str]:
    headers: Dict[str, str] = {'User-Agent': USER_AGENT}
    if info.token:
        headers['Authorization'] = f'{info.scheme or "Bearer"} {info.token}'
    elif info.scheme:
        headers['Authorization'] = info.scheme
    return headers


class _TempFiles(Mapping[bytes, str]):
    """
    Temporary files with the given contents, one per distinct content.

    The files are deleted when the connection is closed, or, at the latest,
    when the container is garbage-collected.
    """

    def __init__(self) -> None:
        super().__init__()
        self._paths: Dict[bytes, str] = {}

    def __del__(self) -> None:
        self.purge()

    def __len__(self) -> int:
        return len(self._paths)

    def __iter__(self) -> Iterator[bytes]:
        return iter(self._paths)

    def __getitem__(self, item: bytes) -> str:
        if item not in self._paths:
            with tempfile.NamedTemporaryFile(delete=False) as f:
                f.write(item)
            self._paths[item] = f.name
        return self._paths[item]

    def purge(self) -> None:
        for path in self._paths.values():
            with contextlib.suppress(FileNotFoundError):
                os.remove(path)
        self._paths.clear()
