"""
Common utilities shared across components in the library
"""

# Standard
from typing import Any
import copy
import inspect

# First Party
import alog

# Local
from . import constants
from .exceptions import assert_cluster

log = alog.use_channel("ODUTL")


# Forward declaration for Session
SESSION_TYPE = "Session"

# Sentinel for missing dict values
__MISSING__ = "__MISSING__"

## Dicts #######################################################################


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict to read from
        key:  str
            Key that may contain '.' notation indicating dict nesting

    Returns:
        val:  Any
            Whatever is found at the given key or dflt if the key is not found.
            This includes missing intermediate dicts.
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.get(part, __MISSING__)
        if dct is __MISSING__ or dct is None:
            return dflt
        if not isinstance(dct, dict):
            raise TypeError(
                f"Intermediate key {constants.NESTED_DICT_DELIM.join(parts[:i + 1])} is not a dict"
            )
    return dct.get(parts[-1], dflt)


def to_plain_dict(obj: Any) -> Any:
    """Recursively convert dict subclasses (e.g. aconfig.Config) into plain
    dicts so that they can be safely serialized and compared
    """
    if isinstance(obj, dict):
        return {key: to_plain_dict(val) for key, val in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_plain_dict(val) for val in obj]
    return obj


## Finalizers ##################################################################


def add_finalizer(session: SESSION_TYPE, finalizer: str):
    """Add a finalizer to the CR of the current session

    Args:
        session:  Session
            The session for the current reconcile
        finalizer: str
            The finalizer to be added
    """
    if finalizer in session.finalizers:
        return

    log.debug("Adding finalizer: %s", finalizer)
    success, current = session.get_object_current_state(
        kind=session.kind, name=session.name, api_version=session.api_version
    )
    assert_cluster(success and current, "Failed to look up CR for self")
    current["metadata"].setdefault("finalizers", []).append(finalizer)
    success, _ = session.deploy_manager.update(current)
    assert_cluster(success, f"Failed to add finalizer {finalizer}")
    session.finalizers.append(finalizer)


def remove_finalizer(session: SESSION_TYPE, finalizer: str):
    """Remove a finalizer from the CR of the current session. Once the last
    finalizer is gone the cluster completes the deletion.

    Args:
        session:  Session
            The session for the current reconcile
        finalizer: str
            The finalizer to remove
    """
    if finalizer not in session.finalizers:
        return

    log.debug("Removing finalizer: %s", finalizer)
    success, current = session.get_object_current_state(
        kind=session.kind, name=session.name, api_version=session.api_version
    )
    assert_cluster(success, "Failed to look up CR for self")

    # If still present in the cluster, update it without the finalizer
    if current:
        finalizers = current["metadata"].get("finalizers", [])
        if finalizer in finalizers:
            finalizers.remove(finalizer)
            success, _ = session.deploy_manager.update(current)
            assert_cluster(success, f"Failed to remove finalizer {finalizer}")

    session.finalizers.remove(finalizer)


## General #####################################################################


class classproperty:  # pylint: disable=invalid-name,too-few-public-methods
    """@classmethod+@property
    CITE: https://stackoverflow.com/a/22729414
    """

    def __init__(self, func):
        self.func = classmethod(func)

    def __get__(self, *args):
        return self.func.__get__(*args)()


class abstractclassproperty:  # pylint: disable=invalid-name,too-few-public-methods
    """This decorator implements a classproperty that will raise when accessed"""

    def __init__(self, func):
        self.prop_name = func.__name__

    def __get__(self, *args):
        # Allow assignment on the class through __setattr__
        callframe = inspect.getouterframes(inspect.currentframe(), 2)[1]
        if callframe[3] == "__setattr__":
            return None
        raise NotImplementedError(
            f"Cannot access abstractclassproperty {self.prop_name}"
        )


def deep_copy(obj: Any) -> Any:
    """Deep copy that always yields plain python containers"""
    return copy.deepcopy(to_plain_dict(obj))
