import asyncio
import collections.abc
import itertools
from typing import Any, Iterable, Mapping, Optional

import aiohttp

from konverge import typedefs
from konverge.clients import auth, errors
from konverge.structs import configuration

# The errors that are worth a retry: the API can be restarting or overloaded.
RETRIED_ERRORS = (aiohttp.ClientConnectionError, errors.APIServerError, asyncio.TimeoutError)


@auth.authenticated
async def request(
        method: str,
        url: str,  # relative to the server's root, or absolute
        *,
        settings: configuration.Settings,
        payload: Optional[object] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        context: Optional[auth.APIContext] = None,  # injected by the decorator
        logger: typedefs.Logger,
) -> aiohttp.ClientResponse:
    """
    Make a request, and retry it on the connectivity & server-side errors.

    The pauses between the attempts are ``settings.networking.error_backoffs``;
    when they are exhausted, the last error escalates. The client-side errors
    (4xx) escalate immediately. The response is checked, but not parsed.
    """
    if context is None:  # for type-checking!
        raise RuntimeError("API instance is not injected by the decorator.")

    if '://' not in url:
        url = context.server.rstrip('/') + '/' + url.lstrip('/')
    if timeout is None:
        timeout = aiohttp.ClientTimeout(
            total=settings.networking.request_timeout,
            sock_connect=settings.networking.connect_timeout,
        )

    what = f"{method.upper()} {url}"
    backoffs = _get_backoffs(settings.networking.error_backoffs)
    total = f"/{len(backoffs) + 1}" if isinstance(backoffs, collections.abc.Sized) else ""
    for attempt, backoff in enumerate(itertools.chain(backoffs, [None]), start=1):
        try:
            response = await context.session.request(
                method=method,
                url=url,
                json=payload,
                headers=headers,
                timeout=timeout,
            )
            await errors.check_response(response)
        except RETRIED_ERRORS as e:
            if backoff is None:
                logger.error(f"Request attempt #{attempt}{total} failed; escalating: {what} -> {e!r}")
                raise
            logger.error(f"Request attempt #{attempt}{total} failed; will retry: {what} -> {e!r}")
            await asyncio.sleep(backoff)
        else:
            if attempt > 1:
                logger.debug(f"Request attempt #{attempt}{total} succeeded: {what}")
            return response

    raise RuntimeError("Broken retryable routine.")  # unreachable, for type-checking


def _get_backoffs(backoffs: Any) -> Iterable[float]:
    return backoffs if isinstance(backoffs, collections.abc.Iterable) else [backoffs]


async def _request_json(
        method: str,
        url: str,
        *,
        settings: configuration.Settings,
        payload: Optional[object] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        logger: typedefs.Logger,
) -> Any:
    response = await request(
        method=method,
        url=url,
        payload=payload,
        headers=headers,
        timeout=timeout,
        settings=settings,
        logger=logger,
    )
    async with response:
        return await response.json()


async def get(
        url: str,
        *,
        settings: configuration.Settings,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        logger: typedefs.Logger,
) -> Any:
    return await _request_json('get', url, headers=headers, timeout=timeout,
                               settings=settings, logger=logger)


async def post(
        url: str,
        *,
        settings: configuration.Settings,
        payload: Optional[object] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        logger: typedefs.Logger,
) -> Any:
    return await _request_json('post', url, payload=payload, headers=headers, timeout=timeout,
                               settings=settings, logger=logger)


async def put(
        url: str,
        *,
        settings: configuration.Settings,
        payload: Optional[object] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        logger: typedefs.Logger,
) -> Any:
    return await _request_json('put', url, payload=payload, headers=headers, timeout=timeout,
                               settings=settings, logger=logger)


async def delete(
        url: str,
        *,
        settings: configuration.Settings,
        payload: Optional[object] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        logger: typedefs.Logger,
) -> Any:
    return await _request_json('delete', url, payload=payload, headers=headers, timeout=timeout,
                               settings=settings, logger=logger)
