"""
The merge engine combines the example resource shipped with an operator with
the configuration declared for it in an OperandConfig
"""

# Standard
from typing import Any, Dict, Union
import copy
import json

# First Party
import alog

# Local
from .exceptions import MergeError
from .utils import to_plain_dict

log = alog.use_channel("MERGE")

# Either an already decoded JSON object or its serialized form
JSON_DOCUMENT = Union[str, bytes, Dict[str, Any], None]


def merge_cr(template: JSON_DOCUMENT, override: JSON_DOCUMENT) -> Dict[str, Any]:
    """Deep merge the override document into the template document.

    Keys present in the override replace the template's value unless both
    sides hold an object, in which case the two objects are merged
    recursively. Arrays and scalars are replaced wholesale. Neither input is
    modified.

    Args:
        template:  JSON_DOCUMENT
            The default document, usually the spec of an example resource
        override:  JSON_DOCUMENT
            The user supplied configuration for the same resource kind

    Returns:
        merged:  Dict[str, Any]
            The merged document

    Raises:
        MergeError:  If either side is not valid JSON or is not a JSON object
    """
    base = _decode(template, "template")
    overrides = _decode(override, "override")
    log.debug4("Merging %s into %s", overrides, base)
    return _merge_objects(base, overrides)


## Implementation Details ######################################################


def _decode(document: JSON_DOCUMENT, label: str) -> Dict[str, Any]:
    """Parse one side of the merge into a fresh plain dict"""
    if document is None:
        return {}
    if isinstance(document, (str, bytes)):
        if not document.strip():
            return {}
        try:
            document = json.loads(document)
        except ValueError as err:
            raise MergeError(f"Malformed JSON in merge {label}: {err}") from err
        if document is None:
            return {}
    if not isinstance(document, dict):
        raise MergeError(
            f"Merge {label} must be a JSON object, got {type(document).__name__}"
        )
    return copy.deepcopy(to_plain_dict(document))


def _merge_objects(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(base.get(key), dict) and isinstance(value, dict):
            base[key] = _merge_objects(base[key], value)
        else:
            base[key] = value
    return base
