"""
The reconciliation of the desired manifests with the live objects.

Every manifest is converged independently, strictly in the order given,
with no dependencies inferred between them. For each manifest, the kind is
resolved (waiting for it to be registered if needed), the manifest is normalized,
the live object is fetched, and then the object is either created, updated,
replaced (deleted & re-created), or left intact if there are no changes.

The first fatal failure aborts the whole batch: the remaining manifests
are not touched, and the already converged ones are not rolled back.
The whole batch can be re-applied safely: the converged objects are detected
as unchanged, and no writes are sent for them.

The transient failures are absorbed in their bounded retries:
the optimistic-concurrency conflicts (retried with the fresh objects)
and the not-yet-registered kinds (awaited, then resolved once again).
"""
import copy
import dataclasses
import enum
from typing import Any, Callable, Iterable, List, Mapping, Optional

from konverge import errors as konverge_errors
from konverge import typedefs
from konverge.clients import accessors, errors
from konverge.engines import loggers, retrying
from konverge.reactor import diffing, normalization, waiting
from konverge.structs import bodies, configuration, dicts, references

# A callback to inspect (and modify in place) every manifest before it is sent.
ApplyHook = Callable[[references.Namespace, bodies.RawBody], None]

CONFLICT_MESSAGE = 'apply your changes to the latest version'


class Outcome(str, enum.Enum):
    CREATED = 'created'
    UPDATED = 'updated'
    REPLACED = 'replaced'
    UNCHANGED = 'unchanged'
    SKIPPED = 'skipped'
    FAILED = 'failed'


@dataclasses.dataclass(frozen=True)
class Reconciliation:
    """ What has happened to one object, for the logs and the diagnostics. """
    ref: references.ObjectRef
    outcome: Outcome
    reason: Optional[str] = None


def is_conflict(exc: BaseException) -> bool:
    """ Is it an optimistic-concurrency conflict (a stale ``resourceVersion``)? """
    return isinstance(exc, errors.APIError) and CONFLICT_MESSAGE in (exc.message or '')


def requires_replacement(
        exc: BaseException,
        *,
        kind: str,
        triggers: Mapping[str, Iterable[str]] = configuration.DEFAULT_REPLACEMENT_TRIGGERS,
) -> bool:
    """ Is it a rejection of an in-place change that only a re-creation can apply? """
    if not isinstance(exc, errors.APIError):
        return False
    message = exc.message or ''
    return any(trigger in message for trigger in triggers.get(kind, ()))


def carry(
        live: Optional[Mapping[str, Any]],
        desired: bodies.RawBody,
        *,
        settings: configuration.Settings,
) -> bodies.RawBody:
    """
    Make a working copy of the desired object with the live fields carried over.

    These are the identity fields assigned by the server (needed for the updates),
    the kind-specific fields which cannot be changed once set, and the sticky
    annotations. The desired object itself is not modified.
    """
    working: bodies.RawBody = copy.deepcopy(desired)
    if live is None:
        return working

    dicts.cherrypick(live, working, configuration.IDENTITY_FIELDS)

    carried = settings.applying.carried_fields.get(bodies.get_kind(desired))
    if carried is not None:
        kept: bodies.RawBody = {}
        dicts.cherrypick(desired, kept, carried.kept)
        dicts.cherrypick(live, working, carried.fields)
        dicts.cherrypick(kept, working, carried.kept)

    live_annotations = bodies.get_annotations(live)
    for annotation in settings.applying.sticky_annotations:
        if annotation in live_annotations:
            dicts.ensure(working, ['metadata', 'annotations', annotation], live_annotations[annotation])

    return working


def strip_identity(body: bodies.RawBody) -> bodies.RawBody:
    """ Make a copy of an object fit for creating it from scratch. """
    result: bodies.RawBody = copy.deepcopy(body)
    for field in configuration.IDENTITY_FIELDS:
        dicts.discard(result, field)
    return result


async def apply(
        *,
        namespace: references.Namespace,
        manifests: Iterable[Optional[Mapping[str, Any]]],
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
        normalizer: Optional[normalization.Normalizer] = None,
        hook: Optional[ApplyHook] = None,
) -> List[Reconciliation]:
    """
    Converge the live objects to the desired manifests, one by one, in order.

    The namespace is used for the namespaced manifests with no namespace.
    Returns what has happened to every object. On the first fatal failure,
    `ReconciliationError` is raised with the original error as its cause.
    """
    normalizer = normalizer if normalizer is not None else normalization.default_normalizer
    reconciliations: List[Reconciliation] = []
    for manifest in manifests:
        if manifest is None:
            continue
        ref = references.ObjectRef.from_body(manifest)
        try:
            reconciliation = await reconcile(
                manifest,
                namespace=namespace,
                accessor=accessor,
                settings=settings,
                logger=logger,
                normalizer=normalizer,
                hook=hook,
            )
        except konverge_errors.ReconciliationError as e:
            failed = Reconciliation(ref=e.ref, outcome=Outcome.FAILED, reason=str(e))
            e.reconciliations = reconciliations + [failed]
            raise
        except (errors.APIError, konverge_errors.KonvergeError) as e:
            failed = Reconciliation(ref=ref, outcome=Outcome.FAILED, reason=str(e))
            raise konverge_errors.ReconciliationError(
                f"Failed to apply {ref}: {e}",
                ref=ref, reconciliations=reconciliations + [failed]) from e
        reconciliations.append(reconciliation)
    return reconciliations


async def reconcile(
        manifest: Mapping[str, Any],
        *,
        namespace: references.Namespace,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
        normalizer: normalization.Normalizer,
        hook: Optional[ApplyHook] = None,
) -> Reconciliation:
    """
    Converge one object.

    The errors after the kind is resolved are escalated as `ReconciliationError`
    with the reference of the object as it was written (i.e. in its namespace).
    The errors before that are escalated as is.
    """
    object_logger = loggers.ObjectLogger(body=manifest, logger=logger)
    try:
        resource = await resolve(manifest, accessor=accessor, settings=settings, logger=object_logger)
    except konverge_errors.UnregisteredKindError as e:
        if not settings.applying.dry_run:
            raise
        object_logger.debug(f"[dry-run] Skipping an unregistered kind: {e}")
        return Reconciliation(ref=references.ObjectRef.from_body(manifest),
                              outcome=Outcome.SKIPPED, reason=str(e))

    desired = normalizer(manifest)
    assert desired is not None  # for type-checking
    if resource.namespaced and namespace and not bodies.get_namespace(desired):
        dicts.ensure(desired, 'metadata.namespace', namespace)
    ref = references.ObjectRef.from_body(desired)
    object_logger = loggers.ObjectLogger(body=desired, logger=logger)

    if hook is not None:
        hook(namespace, desired)

    if settings.applying.dry_run:
        object_logger.info("[dry-run] Would be created or configured.")
        return Reconciliation(ref=ref, outcome=Outcome.SKIPPED, reason='dry-run')

    attempts = 0

    async def attempt() -> Reconciliation:
        nonlocal attempts
        attempts += 1
        live = await read_live(resource, ref=ref, accessor=accessor,
                               settings=settings, logger=object_logger)
        return await converge(resource, desired, live, ref=ref, fresh=attempts == 1,
                              accessor=accessor, settings=settings, logger=object_logger)

    try:
        return await retrying.retry(
            attempt,
            policy=retrying.RetryPolicy(
                retries=settings.applying.conflict_retries,
                backoff=settings.applying.conflict_backoff,
            ),
            retryable=is_conflict,
            logger=object_logger,
            what=f"updating {ref}",
        )
    except konverge_errors.ReconciliationError:
        raise
    except (errors.APIError, konverge_errors.KonvergeError) as e:
        raise konverge_errors.ReconciliationError(f"Failed to apply {ref}: {e}", ref=ref) from e


async def resolve(
        manifest: Mapping[str, Any],
        *,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> references.Resource:
    """
    Resolve the manifest's kind; if it is not registered yet, wait for it once.

    In the dry-run mode, the unregistered kinds are not awaited:
    nothing is going to register them, as nothing is applied.
    """
    api_version = bodies.get_api_version(manifest) or None
    kind = bodies.get_kind(manifest)
    try:
        return await accessor.resolve(api_version=api_version, kind=kind)
    except konverge_errors.UnregisteredKindError:
        if settings.applying.dry_run:
            raise
        await waiting.wait_for_resource_kind_registration(
            kind=kind,
            api_version=api_version,
            timeout=settings.applying.registration_timeout,
            accessor=accessor,
            settings=settings,
            logger=logger,
        )
        return await accessor.resolve(api_version=api_version, kind=kind)


async def read_live(
        resource: references.Resource,
        *,
        ref: references.ObjectRef,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Optional[bodies.RawBody]:
    """
    Fetch the live object; if its kind has just gone unregistered, wait for it.
    """
    try:
        return await accessor.read(resource, namespace=ref.namespace, name=ref.name)
    except konverge_errors.UnregisteredKindError:
        await waiting.wait_for_resource_kind_registration(
            kind=ref.kind,
            api_version=resource.api_version,
            timeout=settings.applying.registration_timeout,
            accessor=accessor,
            settings=settings,
            logger=logger,
        )
        return await accessor.read(resource, namespace=ref.namespace, name=ref.name)


async def converge(
        resource: references.Resource,
        desired: bodies.RawBody,
        live: Optional[bodies.RawBody],
        *,
        ref: references.ObjectRef,
        fresh: bool = True,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Reconciliation:
    """
    Create, update, or replace the object once, as its live state requires.

    The optimistic-concurrency conflicts are escalated: they are retried
    by the caller with the fresh live objects.
    """
    working = carry(live, desired, settings=settings)

    if live is None:
        await accessor.create(resource, working)
        logger.info("Created." if fresh else "Created (it was gone while retrying).")
        return Reconciliation(ref=ref, outcome=Outcome.CREATED)

    changed, text = diffing.has_changed(live, working,
                                        noisy_annotations=settings.applying.noisy_annotations)
    if not changed:
        logger.debug("Unchanged.")
        return Reconciliation(ref=ref, outcome=Outcome.UNCHANGED)

    if ref.kind not in settings.applying.undiffable_kinds:
        logger.debug(f"Changes to be applied:\n{text}")

    try:
        updated = await accessor.update(resource, working)
    except errors.APIError as e:
        if requires_replacement(e, kind=ref.kind, triggers=settings.applying.replacement_triggers):
            logger.info(f"Updating has failed, attempting a replacement: {e}")
            return await replace(resource, working, ref=ref, accessor=accessor, logger=logger)
        raise

    # The server does not bump the version if it sees no changes (e.g. defaults we do not know).
    if bodies.get_resource_version(updated) == bodies.get_resource_version(working):
        logger.debug("Unchanged (by the server's judgement).")
        return Reconciliation(ref=ref, outcome=Outcome.UNCHANGED)
    logger.info("Updated.")
    return Reconciliation(ref=ref, outcome=Outcome.UPDATED)


async def replace(
        resource: references.Resource,
        working: bodies.RawBody,
        *,
        ref: references.ObjectRef,
        accessor: accessors.Accessor,
        logger: typedefs.Logger,
) -> Reconciliation:
    """
    Delete the live object and create the desired one from scratch.

    If the deletion fails, the object is in an unknown state. If the creation
    fails, there is no object at all. Both are fatal and never retried.
    """
    try:
        await accessor.delete(resource, namespace=ref.namespace, name=ref.name)
    except errors.APIError as e:
        raise konverge_errors.ReplacementError(
            f"Failed to delete {ref} during replacement: {e}", ref=ref) from e

    try:
        await accessor.create(resource, strip_identity(working))
    except errors.APIError as e:
        raise konverge_errors.ReplacementError(
            f"Failed to recreate {ref} during replacement, "
            f"neither the new or old object remain: {e}", ref=ref) from e

    logger.info("Replaced.")
    return Reconciliation(ref=ref, outcome=Outcome.REPLACED)


async def delete(
        *,
        namespace: references.Namespace,
        manifests: Iterable[Optional[Mapping[str, Any]]],
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> None:
    """
    Delete the objects of the manifests, one by one, in order.

    The absent objects are escalated as errors (the caller knows better
    whether they are expected to exist). The first failure aborts the batch.
    """
    for manifest in manifests:
        if manifest is None:
            continue
        object_logger = loggers.ObjectLogger(body=manifest, logger=logger)
        resource = await accessor.resolve(
            api_version=bodies.get_api_version(manifest) or None,
            kind=bodies.get_kind(manifest),
        )
        target = (bodies.get_namespace(manifest) or namespace) if resource.namespaced else None
        if settings.applying.dry_run:
            object_logger.info("[dry-run] Would be deleted.")
            continue
        await accessor.delete(resource, namespace=target, name=bodies.get_name(manifest))
        object_logger.info("Deleted.")


async def delete_by_kind(
        *,
        kind: str,
        namespace: references.Namespace,
        name: str,
        api_version: Optional[str] = None,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> None:
    """ Delete one object by its kind & name; the absent ones are considered deleted. """
    ref = references.ObjectRef(kind=kind, namespace=namespace, name=name)
    resource = await accessor.resolve(api_version=api_version, kind=kind)
    if settings.applying.dry_run:
        logger.info(f"[dry-run] {ref} would be deleted.")
        return
    try:
        await accessor.delete(resource, namespace=namespace, name=name)
    except errors.APINotFoundError:
        logger.debug(f"{ref} is already absent.")
        return
    logger.info(f"{ref} is deleted.")
