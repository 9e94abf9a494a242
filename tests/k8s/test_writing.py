import aiohttp.web
import pytest

from konverge.clients.auth import connected
from konverge.clients.creating import create_obj
from konverge.clients.deleting import delete_obj
from konverge.clients.errors import APIConflictError, APINotFoundError
from konverge.clients.replacing import replace_obj
from konverge.structs.references import Resource

CONFIGMAPS = Resource('', 'v1', 'configmaps', kind='ConfigMap', namespaced=True)
NAMESPACES = Resource('', 'v1', 'namespaces', kind='Namespace', namespaced=False)


async def test_creating_namespaced_objects(resp_mocker, aresponses, hostname, info, settings, logger):
    post_mock = resp_mocker(return_value=aiohttp.web.json_response({'created': True}))
    aresponses.add(hostname, '/api/v1/namespaces/ns1/configmaps', 'post', post_mock)

    body = {'kind': 'ConfigMap', 'metadata': {'name': 'cm', 'namespace': 'ns1'}}
    async with connected(info):
        result = await create_obj(resource=CONFIGMAPS, body=body, settings=settings, logger=logger)

    assert result == {'created': True}
    assert post_mock.call_args_list[0][0][0]['data'] == body


async def test_creating_cluster_scoped_objects(resp_mocker, aresponses, hostname, info, settings, logger):
    post_mock = resp_mocker(return_value=aiohttp.web.json_response({}))
    aresponses.add(hostname, '/api/v1/namespaces', 'post', post_mock)

    body = {'kind': 'Namespace', 'metadata': {'name': 'ns1'}}
    async with connected(info):
        await create_obj(resource=NAMESPACES, body=body, settings=settings, logger=logger)

    assert post_mock.call_count == 1


async def test_replacing_sends_the_whole_body(resp_mocker, aresponses, hostname, info, settings, logger):
    put_mock = resp_mocker(return_value=aiohttp.web.json_response({'replaced': True}))
    aresponses.add(hostname, '/api/v1/namespaces/ns1/configmaps/cm', 'put', put_mock)

    body = {'kind': 'ConfigMap', 'data': {'a': 'b'},
            'metadata': {'name': 'cm', 'namespace': 'ns1', 'resourceVersion': '123'}}
    async with connected(info):
        result = await replace_obj(resource=CONFIGMAPS, body=body, settings=settings, logger=logger)

    assert result == {'replaced': True}
    assert put_mock.call_args_list[0][0][0]['data'] == body


async def test_replacing_stale_objects_conflicts(resp_mocker, aresponses, hostname, info, settings, logger):
    payload = {'kind': 'Status', 'code': 409,
               'message': 'Operation cannot be fulfilled on configmaps "cm": the object has been '
                          'modified; please apply your changes to the latest version and try again'}
    put_mock = resp_mocker(return_value=aiohttp.web.json_response(payload, status=409))
    aresponses.add(hostname, '/api/v1/namespaces/ns1/configmaps/cm', 'put', put_mock)

    body = {'kind': 'ConfigMap', 'metadata': {'name': 'cm', 'namespace': 'ns1', 'resourceVersion': '1'}}
    async with connected(info):
        with pytest.raises(APIConflictError):
            await replace_obj(resource=CONFIGMAPS, body=body, settings=settings, logger=logger)


@pytest.mark.parametrize('policy, expected', [
    ('Background', {'propagationPolicy': 'Background'}),
    ('Foreground', {'propagationPolicy': 'Foreground'}),
    (None, None),
])
async def test_deleting_with_propagation_policies(
        resp_mocker, aresponses, hostname, info, settings, logger, policy, expected):
    delete_mock = resp_mocker(return_value=aiohttp.web.json_response({}))
    aresponses.add(hostname, '/api/v1/namespaces/ns1/configmaps/cm', 'delete', delete_mock)

    async with connected(info):
        await delete_obj(resource=CONFIGMAPS, namespace='ns1', name='cm', propagation_policy=policy,
                         settings=settings, logger=logger)

    assert delete_mock.call_args_list[0][0][0]['data'] == expected


async def test_deleting_absent_objects_fails(resp_mocker, aresponses, hostname, info, settings, logger):
    delete_mock = resp_mocker(return_value=aresponses.Response(status=404))
    aresponses.add(hostname, '/api/v1/namespaces/ns1/configmaps/cm', 'delete', delete_mock)

    async with connected(info):
        with pytest.raises(APINotFoundError):
            await delete_obj(resource=CONFIGMAPS, namespace='ns1', name='cm',
                             settings=settings, logger=logger)
