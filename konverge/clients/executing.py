"""
Execution of commands in the pods' containers.

K8s API serves the executions as websockets with a simple multiplexing
protocol (``v4.channel.k8s.io``): every binary message starts with a byte
of the channel number, followed by the payload of that channel:
0 for stdin, 1 for stdout, 2 for stderr, 3 for the final status (a JSON
of kind ``Status``), 4 for the terminal resizing.
"""
import asyncio
import json
import urllib.parse
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import aiohttp

from konverge import errors as konverge_errors
from konverge import typedefs
from konverge.clients import auth
from konverge.structs import references

PROTOCOL = 'v4.channel.k8s.io'
STDOUT_CHANNEL = 1
STDERR_CHANNEL = 2
ERROR_CHANNEL = 3

PODS = references.Resource('', 'v1', 'pods', kind='Pod', namespaced=True)


@auth.authenticated
async def exec_command(
        *,
        namespace: str,
        name: str,
        container: Optional[str],
        command: Sequence[str],
        timeout: Optional[float] = None,
        context: Optional[auth.APIContext] = None,  # injected by the decorator
        logger: typedefs.Logger,
) -> Tuple[str, str]:
    """
    Execute a command in a pod's container; return its stdout & stderr.

    A non-zero exit code or any other failure reported by the cluster
    is raised as :class:`ExecError` with the collected outputs attached.
    """
    if context is None:  # for type-checking!
        raise RuntimeError("API instance is not injected by the decorator.")

    params: List[Tuple[str, str]] = [('command', arg) for arg in command]
    params += [('stdout', 'true'), ('stderr', 'true')]
    if container:
        params += [('container', container)]
    url = PODS.get_url(server=context.server, namespace=namespace, name=name, subresource='exec')
    url += '?' + urllib.parse.urlencode(params)

    stdout: List[str] = []
    stderr: List[str] = []
    statuses: List[Dict[str, Any]] = []
    logger.debug(f"Executing in {namespace}/{name}/{container or ''}: {list(command)!r}")
    try:
        await asyncio.wait_for(
            _communicate(url, stdout=stdout, stderr=stderr, statuses=statuses, context=context),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        raise konverge_errors.ExecError(
            f"Execution in {namespace}/{name} has timed out after {timeout} seconds.",
            stdout=''.join(stdout), stderr=''.join(stderr))
    except aiohttp.WSServerHandshakeError as e:
        raise konverge_errors.ExecError(
            f"Execution in {namespace}/{name} is refused: {e.status} {e.message}",
            stdout=''.join(stdout), stderr=''.join(stderr)) from e

    out, err = ''.join(stdout), ''.join(stderr)
    status = statuses[-1] if statuses else None
    if status is not None and status.get('status') != 'Success':
        raise konverge_errors.ExecError(
            f"Execution in {namespace}/{name} has failed with exit code {get_exit_code(status)}: "
            f"{status.get('message') or err.strip()}",
            stdout=out, stderr=err, status=status)
    return out, err


async def _communicate(
        url: str,
        *,
        stdout: List[str],
        stderr: List[str],
        statuses: List[Dict[str, Any]],
        context: auth.APIContext,
) -> None:
    async with context.session.ws_connect(url, protocols=(PROTOCOL,)) as ws:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.BINARY and msg.data:
                channel, data = msg.data[0], msg.data[1:].decode('utf-8', errors='replace')
                if channel == STDOUT_CHANNEL:
                    stdout.append(data)
                elif channel == STDERR_CHANNEL:
                    stderr.append(data)
                elif channel == ERROR_CHANNEL and data:
                    statuses.append(json.loads(data))
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise konverge_errors.ExecError(
                    f"Execution has failed: {ws.exception()!r}",
                    stdout=''.join(stdout), stderr=''.join(stderr))


def get_exit_code(status: Mapping[str, Any]) -> Optional[int]:
    """
    Extract the exit code from the final status of the execution, if reported.
    """
    causes = (status.get('details') or {}).get('causes') or []
    for cause in causes:
        if cause.get('reason') == 'ExitCode':
            try:
                return int(cause.get('message'))
            except (TypeError, ValueError):
                return None
    return 0 if status.get('status') == 'Success' else None
