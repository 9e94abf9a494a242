"""
Repeated execution of the commands in the pods until they succeed.

Used both by the readiness predicates (to probe the services inside
the pods beyond what the statuses report) and directly by the callers.
"""
from typing import Optional, Sequence

from konverge import errors as konverge_errors
from konverge import typedefs
from konverge.clients import accessors, errors
from konverge.engines import sleeping
from konverge.structs import configuration


async def wait_for_pod_command(
        *,
        namespace: str,
        name: str,
        container: Optional[str],
        command: Sequence[str],
        timeout: float,
        accessor: accessors.Accessor,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> str:
    """
    Execute the command in the pod every few seconds until it exits with 0.

    Returns the stdout of the successful run. If there is no success within
    the timeout, `WaitTimeoutError` is raised with the last failure's message.
    """
    if settings.applying.dry_run:
        return ''

    deadline = sleeping.Deadline(timeout)
    last_message: Optional[str] = None
    while True:
        try:
            stdout, _ = await accessor.exec(
                namespace=namespace,
                name=name,
                container=container,
                command=command,
                timeout=deadline.remaining,
            )
            return stdout
        except (konverge_errors.ExecError, errors.APIError) as e:
            if str(e) != last_message:
                logger.debug(f"Command {list(command)!r} in {namespace}/{name} has failed: {e}")
            last_message = str(e)

        if not await sleeping.sleep(settings.waiting.command_interval, deadline):
            raise konverge_errors.WaitTimeoutError(
                f"Timed out executing {list(command)!r} in {namespace}/{name}: {last_message}",
                last_message=last_message)
