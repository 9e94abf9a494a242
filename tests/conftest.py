import copy
import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest

from konverge.clients.errors import APIConflictError, APIError, APINotFoundError
from konverge.errors import UnregisteredKindError
from konverge.reactor import diffing
from konverge.structs import bodies, dicts
from konverge.structs.configuration import Settings
from konverge.structs.credentials import ConnectionInfo
from konverge.structs.references import Resource, select

CONFIGMAPS = Resource('', 'v1', 'configmaps', kind='ConfigMap', namespaced=True)
SECRETS = Resource('', 'v1', 'secrets', kind='Secret', namespaced=True)
SERVICES = Resource('', 'v1', 'services', kind='Service', namespaced=True)
ENDPOINTS = Resource('', 'v1', 'endpoints', kind='Endpoints', namespaced=True)
SERVICEACCOUNTS = Resource('', 'v1', 'serviceaccounts', kind='ServiceAccount', namespaced=True)
CLAIMS = Resource('', 'v1', 'persistentvolumeclaims', kind='PersistentVolumeClaim', namespaced=True)
PODS = Resource('', 'v1', 'pods', kind='Pod', namespaced=True,
                subresources=frozenset({'eviction', 'exec', 'status'}))
NODES = Resource('', 'v1', 'nodes', kind='Node', namespaced=False)
NAMESPACES = Resource('', 'v1', 'namespaces', kind='Namespace', namespaced=False)
DEPLOYMENTS = Resource('apps', 'v1', 'deployments', kind='Deployment', namespaced=True)
STATEFULSETS = Resource('apps', 'v1', 'statefulsets', kind='StatefulSet', namespaced=True)
DAEMONSETS = Resource('apps', 'v1', 'daemonsets', kind='DaemonSet', namespaced=True)
REPLICASETS = Resource('apps', 'v1', 'replicasets', kind='ReplicaSet', namespaced=True)
JOBS = Resource('batch', 'v1', 'jobs', kind='Job', namespaced=True)
ROLEBINDINGS = Resource('rbac.authorization.k8s.io', 'v1', 'rolebindings',
                        kind='RoleBinding', namespaced=True)
CRDS = Resource('apiextensions.k8s.io', 'v1', 'customresourcedefinitions',
                kind='CustomResourceDefinition', namespaced=False)
ELASTICSEARCHES = Resource('elasticsearch.k8s.elastic.co', 'v1', 'elasticsearches',
                           kind='Elasticsearch', namespaced=True)
KIBANAS = Resource('kibana.k8s.elastic.co', 'v1', 'kibanas', kind='Kibana', namespaced=True)
REDISFAILOVERS = Resource('databases.spotahome.com', 'v1', 'redisfailovers',
                          kind='RedisFailover', namespaced=True)
POSTGRESQLS = Resource('acid.zalan.do', 'v1', 'postgresqls', kind='postgresql', namespaced=True)
KAFKAS = Resource('kafka.strimzi.io', 'v1beta2', 'kafkas', kind='Kafka', namespaced=True)

BUILTIN_RESOURCES = [
    CONFIGMAPS, SECRETS, SERVICES, ENDPOINTS, SERVICEACCOUNTS, CLAIMS, PODS, NODES, NAMESPACES,
    DEPLOYMENTS, STATEFULSETS, DAEMONSETS, REPLICASETS, JOBS, ROLEBINDINGS, CRDS,
    ELASTICSEARCHES, KIBANAS, REDISFAILOVERS, POSTGRESQLS, KAFKAS,
]


def make_api_error(cls: type, message: str, status: int) -> APIError:
    payload = {'apiVersion': 'v1', 'kind': 'Status', 'code': status,
               'status': 'Failure', 'message': message}
    return cls(payload, status=status)


def make_conflict() -> APIError:
    return make_api_error(
        APIConflictError,
        'Operation cannot be fulfilled on deployments.apps "name1": the object has been modified; '
        'please apply your changes to the latest version and try again',
        409)


class FakeAccessor:
    """
    An in-memory cluster: it stores the objects and records all calls to it.

    The errors can be scripted per verb: they are raised one by one, in order,
    before the verb is executed (and before the store is touched).
    """

    def __init__(self, resources: List[Resource]) -> None:
        super().__init__()
        self.resources = list(resources)
        self.objects: Dict[Tuple[str, Optional[str], str], Dict[str, Any]] = {}
        self.calls: List[Tuple[Any, ...]] = []
        self.submitted: List[Dict[str, Any]] = []
        self.errors: Dict[str, List[BaseException]] = {}
        self.exec_results: List[Any] = []
        self.invalidations = 0
        self._version = 1000
        self._uid = 0

    @property
    def mutations(self) -> List[Tuple[Any, ...]]:
        return [call for call in self.calls if call[0] in ['create', 'update', 'delete', 'evict']]

    def calls_of(self, verb: str) -> List[Tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == verb]

    def add(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """ Put an object to the store as if it was created long ago. """
        stored = copy.deepcopy(body)
        self._version += 1
        self._uid += 1
        dicts.setdefault(stored, 'metadata.resourceVersion', str(self._version))
        dicts.setdefault(stored, 'metadata.uid', f'uid-{self._uid}')
        self.objects[self._key(stored)] = stored
        return stored

    def get(self, kind: str, namespace: Optional[str], name: str) -> Optional[Dict[str, Any]]:
        return self.objects.get((kind, namespace, name))

    def _key(self, body: Dict[str, Any]) -> Tuple[str, Optional[str], str]:
        return (bodies.get_kind(body), bodies.get_namespace(body), bodies.get_name(body))

    def _raise_scripted(self, verb: str) -> None:
        errors = self.errors.get(verb)
        if errors:
            raise errors.pop(0)

    async def resolve(self, *, api_version: Optional[str], kind: str) -> Resource:
        resource = select(self.resources, kind=kind, api_version=api_version)
        if resource is None:
            raise UnregisteredKindError(f"{kind} is not registered.", api_version=api_version, kind=kind)
        return resource

    async def list_registered(self) -> List[Resource]:
        self.calls.append(('list_registered',))
        return list(self.resources)

    def invalidate(self) -> None:
        self.invalidations += 1

    async def read(self, resource: Resource, *, namespace: Optional[str], name: str) -> Any:
        self.calls.append(('read', resource.kind, namespace, name))
        self._raise_scripted('read')
        body = self.objects.get((resource.kind, namespace, name))
        return copy.deepcopy(body) if body is not None else None

    async def list(self, resource: Resource, *, namespace: Optional[str] = None,
                   field_selector: Optional[str] = None,
                   label_selector: Optional[str] = None) -> List[Dict[str, Any]]:
        self.calls.append(('list', resource.kind, namespace, field_selector or label_selector))
        items = [body for (kind, ns, _), body in self.objects.items()
                 if kind == resource.kind and (namespace is None or ns == namespace)]
        if field_selector:
            field, value = field_selector.split('=', 1)
            items = [body for body in items if dicts.resolve(body, field, None) == value]
        if label_selector:
            for term in label_selector.split(','):
                key, value = term.split('=', 1)
                items = [body for body in items if bodies.get_labels(body).get(key) == value]
        return copy.deepcopy(items)

    async def create(self, resource: Resource, body: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(('create', resource.kind, bodies.get_namespace(body), bodies.get_name(body)))
        self.submitted.append(copy.deepcopy(body))
        self._raise_scripted('create')
        if self._key(body) in self.objects:
            raise make_api_error(APIConflictError, 'already exists', 409)
        stored = copy.deepcopy(body)
        self._version += 1
        self._uid += 1
        dicts.ensure(stored, 'metadata.resourceVersion', str(self._version))
        dicts.ensure(stored, 'metadata.uid', f'uid-{self._uid}')
        self.objects[self._key(stored)] = stored
        return copy.deepcopy(stored)

    async def update(self, resource: Resource, body: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(('update', resource.kind, bodies.get_namespace(body), bodies.get_name(body)))
        self.submitted.append(copy.deepcopy(body))
        self._raise_scripted('update')
        live = self.objects.get(self._key(body))
        if live is None:
            raise make_api_error(APINotFoundError, 'not found', 404)
        if bodies.get_resource_version(body) != bodies.get_resource_version(live):
            raise make_conflict()
        stored = copy.deepcopy(body)
        if diffing.sanitize(stored) != diffing.sanitize(live):
            self._version += 1
            dicts.ensure(stored, 'metadata.resourceVersion', str(self._version))
        self.objects[self._key(stored)] = stored
        return copy.deepcopy(stored)

    async def delete(self, resource: Resource, *, namespace: Optional[str], name: str) -> None:
        self.calls.append(('delete', resource.kind, namespace, name))
        self._raise_scripted('delete')
        if (resource.kind, namespace, name) not in self.objects:
            raise make_api_error(APINotFoundError, 'not found', 404)
        del self.objects[(resource.kind, namespace, name)]

    async def evict(self, resource: Resource, body: Dict[str, Any], *, timeout: float) -> None:
        self.calls.append(('evict', resource.kind, bodies.get_namespace(body), bodies.get_name(body)))
        self._raise_scripted('evict')
        self.objects.pop(self._key(body), None)

    async def exec(self, *, namespace: str, name: str, container: Optional[str],
                   command: List[str], timeout: Optional[float] = None) -> Tuple[str, str]:
        self.calls.append(('exec', namespace, name, container, list(command)))
        if self.exec_results:
            result = self.exec_results.pop(0)
            if isinstance(result, BaseException):
                raise result
            return result
        return '', ''


@pytest.fixture()
def accessor():
    return FakeAccessor(BUILTIN_RESOURCES)


@pytest.fixture()
def api_error_factory():
    """ Make the API errors as if they were raised by the client (with a Status). """
    return make_api_error


@pytest.fixture()
def conflict_factory():
    """ Make the optimistic-concurrency conflicts (stale resource versions). """
    return make_conflict


@pytest.fixture()
def settings():
    settings = Settings()
    settings.networking.error_backoffs = ()
    settings.applying.conflict_backoff = (0, 0)
    settings.applying.registration_timeout = 0.1
    settings.waiting.poll_interval = 0.001
    settings.waiting.registration_interval = 0.001
    settings.waiting.namespace_interval = 0.001
    settings.waiting.job_interval = 0.001
    settings.waiting.taint_interval = 0.001
    settings.waiting.node_interval = 0.001
    settings.waiting.pod_interval = 0.001
    settings.waiting.command_interval = 0.001
    settings.waiting.probe_timeout = 0.05
    settings.draining.eviction_backoff = 0.001
    settings.draining.claim_timeout = 0.1
    settings.draining.claim_interval = 0.001
    return settings


@pytest.fixture()
def logger():
    return logging.getLogger('konverge.tests')


#
# Mocks for the K8s API: a fake server with the responses registered per URL.
#

@pytest.fixture()
def hostname():
    """ A fake hostname to be used in all aiohttp/aresponses tests. """
    return 'fake-host'


@pytest.fixture()
def info(hostname):
    return ConnectionInfo(server=f'https://{hostname}')


@pytest.fixture()
def resp_mocker():
    """
    A factory of server-side callbacks for `aresponses` with mocking/spying.

    The request's payload is preserved as ``request['data']``, as it can be
    read only inside of the handler, not after the response is sent::

        def test_me(resp_mocker, aresponses, hostname):
            callback = resp_mocker(return_value=aiohttp.web.json_response({}))
            aresponses.add(hostname, '/path/', 'get', callback)
            do_something()
            assert callback.call_count == 1
    """
    def resp_maker(*args, **kwargs):
        actual_response = MagicMock(*args, **kwargs)

        async def resp_mock_effect(request):
            body = await request.text()
            request['data'] = json.loads(body) if body else None
            return actual_response(request)

        return AsyncMock(side_effect=resp_mock_effect)
    return resp_maker


@pytest.fixture()
def assert_logs(caplog):
    """
    A function to assert the logs are present (by pattern), in the order given.

    Some other log messages can also be present, but they are ignored.
    The prohibited patterns must not be present in any message.
    """
    caplog.set_level(logging.DEBUG)

    def assert_logs_fn(patterns, prohibited=()):
        __traceback_hide__ = True
        remaining_patterns = list(patterns)
        for message in caplog.messages:
            if remaining_patterns and re.search(remaining_patterns[0], message):
                remaining_patterns[:1] = []
            for pattern in prohibited:
                assert not re.search(pattern, message), \
                    f"Prohibited pattern found: {pattern!r} in {message!r}"
        assert not remaining_patterns, f"Missing patterns: {remaining_patterns!r}"
    return assert_logs_fn
