import aiohttp.web
import pytest

from konverge.clients.auth import connected
from konverge.clients.errors import APIForbiddenError
from konverge.clients.fetching import list_objs, read_obj
from konverge.errors import UnregisteredKindError
from konverge.structs.references import Resource

CONFIGMAPS = Resource('', 'v1', 'configmaps', kind='ConfigMap', namespaced=True)
PODS = Resource('', 'v1', 'pods', kind='Pod', namespaced=True)
NODES = Resource('', 'v1', 'nodes', kind='Node', namespaced=False)


async def test_reading_present_objects(resp_mocker, aresponses, hostname, info, settings, logger):
    get_mock = resp_mocker(return_value=aiohttp.web.json_response({'a': 'b'}))
    aresponses.add(hostname, '/api/v1/namespaces/ns1/configmaps/cm', 'get', get_mock)

    async with connected(info):
        body = await read_obj(resource=CONFIGMAPS, namespace='ns1', name='cm',
                              settings=settings, logger=logger)

    assert body == {'a': 'b'}
    assert get_mock.call_count == 1


async def test_reading_cluster_scoped_objects_ignores_namespaces(
        resp_mocker, aresponses, hostname, info, settings, logger):
    get_mock = resp_mocker(return_value=aiohttp.web.json_response({'a': 'b'}))
    aresponses.add(hostname, '/api/v1/nodes/n1', 'get', get_mock)

    async with connected(info):
        body = await read_obj(resource=NODES, namespace='ns1', name='n1',
                              settings=settings, logger=logger)

    assert body == {'a': 'b'}


async def test_reading_absent_objects(resp_mocker, aresponses, hostname, info, settings, logger):
    payload = {'kind': 'Status', 'code': 404, 'message': 'configmaps "cm" not found'}
    get_mock = resp_mocker(return_value=aiohttp.web.json_response(payload, status=404))
    aresponses.add(hostname, '/api/v1/namespaces/ns1/configmaps/cm', 'get', get_mock)

    async with connected(info):
        body = await read_obj(resource=CONFIGMAPS, namespace='ns1', name='cm',
                              settings=settings, logger=logger)

    assert body is None


async def test_reading_unserved_kinds(resp_mocker, aresponses, hostname, info, settings, logger):
    payload = {'kind': 'Status', 'code': 404,
               'message': 'the server could not find the requested resource'}
    get_mock = resp_mocker(return_value=aiohttp.web.json_response(payload, status=404))
    aresponses.add(hostname, '/api/v1/namespaces/ns1/configmaps/cm', 'get', get_mock)

    async with connected(info):
        with pytest.raises(UnregisteredKindError) as err:
            await read_obj(resource=CONFIGMAPS, namespace='ns1', name='cm',
                           settings=settings, logger=logger)

    assert err.value.kind == 'ConfigMap'
    assert err.value.api_version == 'v1'


async def test_reading_forbidden_objects(resp_mocker, aresponses, hostname, info, settings, logger):
    get_mock = resp_mocker(return_value=aresponses.Response(status=403))
    aresponses.add(hostname, '/api/v1/namespaces/ns1/configmaps/cm', 'get', get_mock)

    async with connected(info):
        with pytest.raises(APIForbiddenError):
            await read_obj(resource=CONFIGMAPS, namespace='ns1', name='cm',
                           settings=settings, logger=logger)


async def test_listing_fills_the_kinds_and_versions(
        resp_mocker, aresponses, hostname, info, settings, logger):
    payload = {'apiVersion': 'v1', 'kind': 'PodList',
               'items': [{'metadata': {'name': 'p1'}}, {'metadata': {'name': 'p2'}}]}
    get_mock = resp_mocker(return_value=aiohttp.web.json_response(payload))
    aresponses.add(hostname, '/api/v1/namespaces/ns1/pods', 'get', get_mock)

    async with connected(info):
        items = await list_objs(resource=PODS, namespace='ns1', settings=settings, logger=logger)

    assert items == [
        {'apiVersion': 'v1', 'kind': 'Pod', 'metadata': {'name': 'p1'}},
        {'apiVersion': 'v1', 'kind': 'Pod', 'metadata': {'name': 'p2'}},
    ]


async def test_listing_cluster_wide_with_selectors(
        resp_mocker, aresponses, hostname, info, settings, logger):
    get_mock = resp_mocker(return_value=aiohttp.web.json_response({'items': None}))
    aresponses.add(hostname, '/api/v1/pods', 'get', get_mock)

    async with connected(info):
        items = await list_objs(resource=PODS, namespace=None,
                                field_selector='spec.nodeName=n1', label_selector='app=x',
                                settings=settings, logger=logger)

    assert items == []
    request = get_mock.call_args_list[0][0][0]
    assert request.query['fieldSelector'] == 'spec.nodeName=n1'
    assert request.query['labelSelector'] == 'app=x'
