"""
Errors of the Kubernetes API, as seen by the client layer.

The responses of the API are converted into our own exceptions, so that
the rest of the package never depends on the HTTP library's exception classes.
The HTTP library's error is chained as the cause for the stack traces.

The connectivity and TLS errors are not converted: they are not about
the Kubernetes API, so they escalate as they are.

Only the statuses that the package reacts to have their own classes:

* 404 on reading means the object is absent (or its kind is not served).
* 409 on updating means a stale ``resourceVersion``.
* 429 on eviction means that a disruption budget refuses it now.
* 5xx are retried by the request loop before they escalate.

All other statuses are raised as the base class; the status is in its fields.
"""
import collections.abc
import json
from typing import Collection, Mapping, Optional, Type

import aiohttp
from typing_extensions import Literal, TypedDict


class RawStatusCause(TypedDict):
    field: str
    reason: str
    message: str


class RawStatusDetails(TypedDict):
    name: str
    uid: str
    retryAfterSeconds: int
    kind: str
    group: str
    causes: Collection[RawStatusCause]


# https://kubernetes.io/docs/reference/kubernetes-api/common-definitions/status/
class RawStatus(TypedDict):
    apiVersion: str
    kind: Literal["Status"]
    code: int
    status: Literal["Success", "Failure"]
    reason: str
    message: str
    details: RawStatusDetails


class APIError(Exception):
    """ A failed request to the API, with the ``Status`` object if it was sent. """

    def __init__(
            self,
            payload: Optional[RawStatus],
            *,
            status: int,
    ) -> None:
        super().__init__(payload.get('message') if payload else None, payload)
        self.payload = payload
        self.status = status

    def __str__(self) -> str:
        return f"({self.status}) {self.message or 'no details'}"

    @property
    def code(self) -> Optional[int]:
        return None if self.payload is None else self.payload.get('code')

    @property
    def reason(self) -> Optional[str]:
        return None if self.payload is None else self.payload.get('reason')

    @property
    def message(self) -> Optional[str]:
        return None if self.payload is None else self.payload.get('message')

    @property
    def details(self) -> Optional[RawStatusDetails]:
        return None if self.payload is None else self.payload.get('details')


class APIUnauthorizedError(APIError):
    pass


class APIForbiddenError(APIError):
    pass


class APINotFoundError(APIError):
    pass


class APIConflictError(APIError):
    pass


class APITooManyRequestsError(APIError):
    pass


class APIServerError(APIError):
    pass


ERROR_CLASSES: Mapping[int, Type[APIError]] = {
    401: APIUnauthorizedError,
    403: APIForbiddenError,
    404: APINotFoundError,
    409: APIConflictError,
    429: APITooManyRequestsError,
}


def get_error_class(status: int) -> Type[APIError]:
    if status >= 500:
        return APIServerError
    return ERROR_CLASSES.get(status, APIError)


async def check_response(
        response: aiohttp.ClientResponse,
) -> None:
    """
    Raise our own error for a failed response, with the ``Status`` in it.
    """
    if response.status < 400:
        return

    # The body must be read now: raise_for_status() releases the response.
    payload: Optional[RawStatus]
    try:
        payload = await response.json()
    except (json.JSONDecodeError, aiohttp.ContentTypeError, aiohttp.ClientConnectionError):
        payload = None

    # Anything but a Status can carry the object's data, which is not for the logs.
    if not isinstance(payload, collections.abc.Mapping) or payload.get('kind') != 'Status':
        payload = None

    cls = get_error_class(response.status)
    try:
        response.raise_for_status()
    except aiohttp.ClientResponseError as e:
        raise cls(payload, status=response.status) from e
