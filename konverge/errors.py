"""
The errors of the reconciliation, readiness, and draining routines.

The K8s API errors are in :mod:`konverge.clients.errors` and are chained
as the causes of these errors where they are the root causes.
"""
from typing import Any, Mapping, Optional, Sequence


class KonvergeError(Exception):
    """ A base class for all errors raised by this library on its own. """


class UnregisteredKindError(KonvergeError):
    """ The resource kind is not served by the cluster (not registered yet). """

    def __init__(self, message: str, *, api_version: Optional[str], kind: str) -> None:
        super().__init__(message)
        self.api_version = api_version
        self.kind = kind


class ReconciliationError(KonvergeError):
    """
    A fatal failure to converge one object; the remaining ones are not touched.

    The reconciliations already committed to the cluster before the failure
    are kept in ``reconciliations`` for diagnostics; they are not rolled back.
    """

    def __init__(
            self,
            message: str,
            *,
            ref: Any,
            reconciliations: Sequence[Any] = (),
    ) -> None:
        super().__init__(message)
        self.ref = ref
        self.reconciliations = list(reconciliations)


class ReplacementError(ReconciliationError):
    """ An object could not be deleted or re-created while being replaced. """


class WaitTimeoutError(KonvergeError):
    """ A wait has exceeded its deadline; the last seen state is attached. """

    def __init__(
            self,
            message: str,
            *,
            body: Optional[Mapping[str, Any]] = None,
            last_message: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.body = body
        self.last_message = last_message


class EvictionError(KonvergeError):
    """ A pod could not be evicted from a node, so the drain is aborted. """


class ExecError(KonvergeError):
    """ A command in a pod has failed or exited with a non-zero code. """

    def __init__(
            self,
            message: str,
            *,
            stdout: str = '',
            stderr: str = '',
            status: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr
        self.status = status
