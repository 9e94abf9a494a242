import pytest

from konverge.errors import ExecError
from konverge.reactor.readiness import POSTGRES_PROBE, READY, WAITING, ReadinessRegistry, \
                                       Verdict, check_conditions, check_replicas, is_ready


def body_of(kind, name='obj', namespace='ns1', **fields):
    return dict({'kind': kind, 'metadata': {'name': name, 'namespace': namespace}}, **fields)


def workload(kind, name, replicas, ready):
    return body_of(kind, name, spec={'replicas': replicas}, status={'readyReplicas': ready})


@pytest.fixture()
def check(accessor, settings, logger):
    async def check_fn(body, registry=None):
        return await is_ready(body, accessor=accessor, settings=settings, logger=logger,
                              registry=registry)
    return check_fn


async def test_absent_objects_are_not_ready(check):
    assert await check(None) == Verdict(False, "waiting to be created")


async def test_everything_is_ready_in_dry_run(check, settings):
    settings.applying.dry_run = True
    assert await check(None) == READY
    assert await check(body_of('Deployment', status={'readyReplicas': 0})) == READY


@pytest.mark.parametrize('kind', ['Deployment', 'StatefulSet', 'ReplicaSet'])
@pytest.mark.parametrize('ready, expected', [
    (3, READY),
    (2, Verdict(False, "waiting for replicas to become ready 2/3")),
    (None, Verdict(False, "waiting for replicas to become ready 0/3")),
])
async def test_workloads_by_replicas(check, kind, ready, expected):
    assert await check(workload(kind, 'w', 3, ready)) == expected


@pytest.mark.parametrize('body, expected', [
    pytest.param({'status': {'replicas': 2, 'readyReplicas': 2}}, True, id='status-replicas'),
    pytest.param({'status': {'replicas': 2, 'readyReplicas': 1}}, False, id='status-replicas-lag'),
    pytest.param({'status': {'readyReplicas': 1}}, True, id='one-by-default'),
    pytest.param({'status': {}}, False, id='nothing-ready'),
    pytest.param({'spec': {'replicas': 0}, 'status': {}}, True, id='scaled-to-zero'),
])
def test_desired_replicas_fallbacks(body, expected):
    assert check_replicas(body).ready is expected


@pytest.mark.parametrize('status, ready', [
    ({'numberReady': 1, 'desiredNumberScheduled': 3}, True),
    ({'numberReady': 0, 'desiredNumberScheduled': 3}, False),
    ({}, False),
])
async def test_daemon_sets(check, status, ready):
    verdict = await check(body_of('DaemonSet', status=status))
    assert verdict.ready is ready


@pytest.mark.parametrize('kind', ['ConfigMap', 'Secret'])
@pytest.mark.parametrize('data, ready', [
    ({'key': 'value'}, True),
    ({}, False),
    (None, False),
])
async def test_data_holders(check, kind, data, ready):
    verdict = await check(body_of(kind, data=data))
    assert verdict.ready is ready
    if not ready:
        assert verdict.message == "waiting for data"


async def test_load_balancers_need_ingresses(check):
    body = body_of('Service', spec={'type': 'LoadBalancer'})
    assert await check(body) == Verdict(False, "waiting for LoadBalancerIP")
    body['status'] = {'loadBalancer': {'ingress': [{'ip': '1.2.3.4'}]}}
    assert await check(body) == READY


async def test_services_need_endpoints(check, accessor):
    body = body_of('Service', name='svc', spec={'type': 'ClusterIP'})
    assert await check(body) == Verdict(False, "waiting for the corresponding Endpoint")
    accessor.add(body_of('Endpoints', name='svc'))
    assert await check(body) == READY
    assert ('read', 'Endpoints', 'ns1', 'svc') in accessor.calls


@pytest.mark.parametrize('conditions, expected', [
    pytest.param(None, WAITING, id='absent'),
    pytest.param([], WAITING, id='empty'),
    pytest.param([{'type': 'Ready', 'status': 'True'}], READY, id='ready'),
    pytest.param([{'type': 'Synced', 'status': 'True'}], WAITING, id='no-ready'),
    pytest.param([{'type': 'Ready', 'status': 'True'},
                  {'type': 'Synced', 'status': 'False', 'message': 'oops'}],
                 Verdict(False, "waiting for Synced/False: oops"), id='other-false'),
    pytest.param([{'type': 'Ready', 'status': 'Unknown'}],
                 Verdict(False, "waiting for Ready/Unknown: "), id='unknown'),
])
def test_generic_conditions(conditions, expected):
    assert check_conditions({'status': {'conditions': conditions}}) == expected


async def test_unknown_kinds_use_the_conditions(check):
    body = body_of('Whatever', status={'conditions': [{'type': 'Ready', 'status': 'True'}]})
    assert await check(body) == READY
    assert await check(body_of('Whatever')) == WAITING


async def test_constraint_templates(check):
    assert await check(body_of('ConstraintTemplate')) == WAITING
    assert await check(body_of('ConstraintTemplate', status={'created': False})) == \
        Verdict(False, "waiting to be created")
    assert await check(body_of('ConstraintTemplate', status={'created': True})) == READY


async def test_mongodbs(check):
    assert await check(body_of('PerconaServerMongoDB', status={'state': 'initializing'})) == WAITING
    assert await check(body_of('PerconaServerMongoDB', status={'state': 'ready'})) == READY


async def test_kafkas_ignore_other_conditions(check):
    conditions = [{'type': 'Warning', 'status': 'True'}, {'type': 'Ready', 'status': 'True'},
                  {'type': 'Deprecated', 'status': 'False'}]
    assert await check(body_of('Kafka', status={'conditions': conditions})) == READY
    assert await check(body_of('Kafka', status={'conditions': conditions[:1]})) == WAITING


async def test_builders_need_images(check):
    conditions = [{'type': 'Ready', 'status': 'True'}]
    assert await check(body_of('Builder', status={'conditions': conditions})) == WAITING
    body = body_of('Builder', status={'conditions': conditions, 'latestImage': 'img:1'})
    assert await check(body) == READY


async def test_images(check):
    assert await check(body_of('Image', status={'latestImage': 'img:1'})) == WAITING
    assert await check(body_of('Image', status={'conditions': [], 'latestImage': 'img:1'})) == READY


async def test_elasticsearch_dispatch_with_all_replicas_ready(check, accessor):
    accessor.add(workload('StatefulSet', 'es-es-default', 3, 3))
    assert await check(body_of('Elasticsearch', name='es')) == READY
    assert ('read', 'StatefulSet', 'ns1', 'es-es-default') in accessor.calls


async def test_elasticsearch_dispatch_with_some_replicas_ready(check, accessor):
    accessor.add(workload('StatefulSet', 'es-es-default', 3, 2))
    verdict = await check(body_of('Elasticsearch', name='es'))
    assert verdict == Verdict(False, "waiting for replicas to become ready 2/3")


async def test_kibanas(check, accessor):
    assert await check(body_of('Kibana', name='kb')) == Verdict(False, "waiting for deployment kb-kb")
    accessor.add(workload('Deployment', 'kb-kb', 1, 1))
    assert await check(body_of('Kibana', name='kb')) == READY


async def test_redis_failovers_need_both_workloads(check, accessor):
    accessor.add(workload('StatefulSet', 'rfr-cache', 3, 1))
    verdict = await check(body_of('RedisFailover', name='cache'))
    assert verdict == Verdict(False, "waiting for replicas to become ready 1/3; "
                                     "waiting for deployment rfs-cache")
    accessor.add(workload('StatefulSet', 'rfr-cache', 3, 3))
    accessor.add(workload('Deployment', 'rfs-cache', 3, 3))
    assert await check(body_of('RedisFailover', name='cache')) == READY


@pytest.mark.parametrize('kind, name, statefulset', [
    ('postgresql', 'db', 'db'),
    ('PostgresqlDB', 'db', 'postgres-db'),
])
async def test_postgres_is_probed_in_the_first_pod(check, accessor, kind, name, statefulset):
    accessor.add(workload('StatefulSet', statefulset, 2, 2))
    assert await check(body_of(kind, name=name)) == READY
    assert accessor.calls_of('exec') == [
        ('exec', 'ns1', f'{statefulset}-0', 'postgres', list(POSTGRES_PROBE)),
    ]


async def test_postgres_is_not_probed_before_the_workload_is_ready(check, accessor):
    accessor.add(workload('StatefulSet', 'db', 2, 1))
    verdict = await check(body_of('postgresql', name='db'))
    assert verdict == Verdict(False, "waiting for replicas to become ready 1/2")
    assert accessor.calls_of('exec') == []


async def test_postgres_probes_are_retried(check, accessor):
    accessor.add(workload('StatefulSet', 'db', 1, 1))
    accessor.exec_results = [ExecError("not yet"), ('1', '')]
    assert await check(body_of('postgresql', name='db')) == READY
    assert len(accessor.calls_of('exec')) == 2


async def test_postgres_probes_time_out(check, accessor):
    accessor.add(workload('StatefulSet', 'db', 1, 1))
    accessor.exec_results = [ExecError("connection refused")] * 10000
    verdict = await check(body_of('postgresql', name='db'))
    assert verdict == Verdict(False, "waiting for postgres to be running: connection refused")


async def test_custom_registries(check):
    registry = ReadinessRegistry()

    @registry.register('Thing', 'OtherThing')
    async def thing_ready(body, *, accessor, settings, logger):
        return Verdict(body['status']['phase'] == 'Active', "waiting to become active")

    assert 'Thing' in registry
    assert 'Deployment' not in registry
    assert await check(body_of('Thing', status={'phase': 'Active'}), registry=registry) == \
        Verdict(True, "waiting to become active")
    assert await check(body_of('OtherThing', status={'phase': 'Pending'}), registry=registry) == \
        Verdict(False, "waiting to become active")
    # Only the registered kinds are known; others fall back to the conditions.
    assert await check(workload('Deployment', 'w', 1, 1), registry=registry) == WAITING


async def test_custom_default_predicates(check):
    async def always_ready(body, *, accessor, settings, logger):
        return READY

    registry = ReadinessRegistry(default=always_ready)
    assert await check(body_of('Whatever'), registry=registry) == READY
