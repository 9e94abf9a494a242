"""
Detection of changes between the live objects and the desired manifests.

Both objects are stripped of the noise (the bookkeeping of the server,
the status, the annotations of the controllers) and serialized canonically
(YAML with sorted keys). The serializations are then compared as strings.

The human-readable diff is rendered for the logs only, and is never parsed.
"""
import copy
import difflib
from typing import Any, Mapping, Optional, Tuple

import yaml

from konverge.reactor import normalization
from konverge.structs import configuration, dicts

NOISE_FIELDS: Tuple[str, ...] = normalization.SERVER_FIELDS + (
    'status',
    'creationTimestamp',
    'spec.template.metadata.creationTimestamp',
)


def sanitize(
        body: Optional[Mapping[str, Any]],
        *,
        noisy_annotations: Tuple[str, ...] = configuration.DEFAULT_NOISY_ANNOTATIONS,
) -> Mapping[str, Any]:
    """
    Make a copy of the object with no noise fields, for comparison only.
    """
    result = copy.deepcopy(dict(body or {}))
    for field in NOISE_FIELDS:
        dicts.discard(result, field)

    # No annotations and empty annotations are the same; so as all noise-only ones.
    annotations = dicts.resolve(result, 'metadata.annotations', None)
    if isinstance(annotations, dict):
        for annotation in noisy_annotations:
            annotations.pop(annotation, None)
    if not annotations:
        dicts.discard(result, 'metadata.annotations')
    return result


def serialize(body: Mapping[str, Any]) -> str:
    return yaml.safe_dump(body, sort_keys=True, default_flow_style=False, allow_unicode=True)


def has_changed(
        live: Optional[Mapping[str, Any]],
        desired: Optional[Mapping[str, Any]],
        *,
        noisy_annotations: Tuple[str, ...] = configuration.DEFAULT_NOISY_ANNOTATIONS,
) -> Tuple[bool, str]:
    """
    Compare the live & desired objects; return the verdict and the diff text.

    The diff text is empty if there are no changes.
    """
    old = serialize(sanitize(live, noisy_annotations=noisy_annotations))
    new = serialize(sanitize(desired, noisy_annotations=noisy_annotations))
    if old == new:
        return False, ''
    lines = difflib.unified_diff(
        old.splitlines(keepends=True),
        new.splitlines(keepends=True),
        fromfile='live',
        tofile='desired',
    )
    return True, ''.join(lines)


def diff(
        live: Optional[Mapping[str, Any]],
        desired: Optional[Mapping[str, Any]],
        *,
        noisy_annotations: Tuple[str, ...] = configuration.DEFAULT_NOISY_ANNOTATIONS,
) -> str:
    """ Render the differences between the objects (empty if there are none). """
    _, text = has_changed(live, desired, noisy_annotations=noisy_annotations)
    return text
