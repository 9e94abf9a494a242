"""
The main Konverge module for all the exported functions & classes.
"""
# isort: skip_file

# Unlike all other places, where we import other modules and refer
# the functions via the modules, this is the library's top-level interface,
# as it is seen by the users. So, we export the individual functions.

from konverge.clients.accessors import (
    Accessor,
    APIAccessor,
)
from konverge.clients.auth import (
    APIContext,
    connected,
)
from konverge.clients.errors import (
    APIError,
    APIUnauthorizedError,
    APIForbiddenError,
    APINotFoundError,
    APIConflictError,
    APITooManyRequestsError,
    APIServerError,
)
from konverge.engines.loggers import (
    LogFormat,
    ObjectLogger,
    configure,
)
from konverge.engines.retrying import (
    RetryPolicy,
)
from konverge.errors import (
    KonvergeError,
    UnregisteredKindError,
    ReconciliationError,
    ReplacementError,
    WaitTimeoutError,
    EvictionError,
    ExecError,
)
from konverge.reactor.applying import (
    ApplyHook,
    Outcome,
    Reconciliation,
    apply,
    delete,
    delete_by_kind,
    is_conflict,
    requires_replacement,
)
from konverge.reactor.commands import (
    wait_for_pod_command,
)
from konverge.reactor.diffing import (
    diff,
    has_changed,
)
from konverge.reactor.draining import (
    cordon,
    uncordon,
    drain,
    evict_node,
    evict_pod,
)
from konverge.reactor.normalization import (
    Normalizer,
    normalize,
)
from konverge.reactor.readiness import (
    Verdict,
    ReadinessRegistry,
    is_ready,
    register,
)
from konverge.reactor.waiting import (
    wait_for,
    wait_for_resource,
    wait_for_resource_kind_registration,
    wait_for_namespace,
    wait_for_job,
    wait_for_taint_removal,
    wait_for_node,
    wait_for_pod,
    wait_for_pod_by_label,
)
from konverge.structs.bodies import (
    RawBody,
    RawMeta,
    build_object_reference,
)
from konverge.structs.configuration import (
    Settings,
    NetworkingSettings,
    ApplyingSettings,
    WaitingSettings,
    DrainingSettings,
    CarriedFields,
)
from konverge.structs.credentials import (
    ConnectionInfo,
    LoginError,
)
from konverge.structs.references import (
    Resource,
    ObjectRef,
)
from konverge.typedefs import (
    Logger,
)

__all__ = [
    'Accessor', 'APIAccessor',
    'APIContext', 'connected',
    'APIError',
    'APIUnauthorizedError',
    'APIForbiddenError',
    'APINotFoundError',
    'APIConflictError',
    'APITooManyRequestsError',
    'APIServerError',
    'LogFormat', 'ObjectLogger', 'configure',
    'RetryPolicy',
    'KonvergeError',
    'UnregisteredKindError',
    'ReconciliationError',
    'ReplacementError',
    'WaitTimeoutError',
    'EvictionError',
    'ExecError',
    'ApplyHook', 'Outcome', 'Reconciliation',
    'apply', 'delete', 'delete_by_kind',
    'is_conflict', 'requires_replacement',
    'wait_for_pod_command',
    'diff', 'has_changed',
    'cordon', 'uncordon', 'drain', 'evict_node', 'evict_pod',
    'Normalizer', 'normalize',
    'Verdict', 'ReadinessRegistry', 'is_ready', 'register',
    'wait_for',
    'wait_for_resource',
    'wait_for_resource_kind_registration',
    'wait_for_namespace',
    'wait_for_job',
    'wait_for_taint_removal',
    'wait_for_node',
    'wait_for_pod',
    'wait_for_pod_by_label',
    'RawBody', 'RawMeta', 'build_object_reference',
    'Settings',
    'NetworkingSettings',
    'ApplyingSettings',
    'WaitingSettings',
    'DrainingSettings',
    'CarriedFields',
    'ConnectionInfo', 'LoginError',
    'Resource', 'ObjectRef',
    'Logger',
]
