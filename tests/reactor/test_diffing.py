import pytest

from konverge.reactor.diffing import diff, has_changed, sanitize

LIVE = {
    'apiVersion': 'v1',
    'kind': 'ConfigMap',
    'metadata': {
        'name': 'cm',
        'namespace': 'ns1',
        'uid': 'uid1',
        'resourceVersion': '123',
        'creationTimestamp': '2020-01-01T00:00:00Z',
        'managedFields': [{'manager': 'kubectl'}],
        'annotations': {'deployment.kubernetes.io/revision': '3'},
    },
    'data': {'key': 'value'},
    'status': {'whatever': True},
}

DESIRED = {
    'apiVersion': 'v1',
    'kind': 'ConfigMap',
    'metadata': {'name': 'cm', 'namespace': 'ns1'},
    'data': {'key': 'value'},
}


def test_noise_is_ignored():
    changed, text = has_changed(LIVE, DESIRED)
    assert not changed
    assert text == ''


def test_noise_is_ignored_symmetrically():
    changed, _ = has_changed(DESIRED, LIVE)
    assert not changed


def test_sanitizing_does_not_modify_the_original():
    sanitize(LIVE)
    assert LIVE['metadata']['uid'] == 'uid1'
    assert 'status' in LIVE


@pytest.mark.parametrize('annotations', [None, {}])
def test_absent_and_empty_annotations_are_the_same(annotations):
    desired = dict(DESIRED, metadata=dict(DESIRED['metadata'], annotations=annotations))
    assert sanitize(desired) == sanitize(DESIRED)


def test_meaningful_annotations_are_changes():
    desired = dict(DESIRED, metadata=dict(DESIRED['metadata'], annotations={'owner': 'team'}))
    changed, text = has_changed(LIVE, desired)
    assert changed
    assert '+    owner: team' in text


def test_custom_noisy_annotations():
    desired = dict(DESIRED, metadata=dict(DESIRED['metadata'], annotations={'owner': 'team'}))
    changed, _ = has_changed(DESIRED, desired, noisy_annotations=('owner',))
    assert not changed


def test_changes_are_rendered_as_unified_diffs():
    desired = dict(DESIRED, data={'key': 'other'})
    text = diff(LIVE, desired)
    assert text.startswith('--- live\n+++ desired\n')
    assert '-  key: value\n' in text
    assert '+  key: other\n' in text


def test_key_order_does_not_matter():
    desired = {'data': {'key': 'value'}, 'metadata': {'namespace': 'ns1', 'name': 'cm'},
               'kind': 'ConfigMap', 'apiVersion': 'v1'}
    assert diff(LIVE, desired) == ''


def test_absent_objects_differ_from_present_ones():
    changed, _ = has_changed(None, DESIRED)
    assert changed
    changed, _ = has_changed(None, None)
    assert not changed
