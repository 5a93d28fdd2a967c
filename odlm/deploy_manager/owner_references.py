"""
Helpers to attach an owning CR to objects that should be garbage collected
with it
"""

# First Party
import alog

# Local
from ..exceptions import assert_cluster
from .base import DeployManagerBase

log = alog.use_channel("OWNRF")


def update_owner_references(
    deploy_manager: DeployManagerBase,
    owner_cr: dict,
    child_obj: dict,
):
    """Merge a reference to owner_cr into the child object's ownerReferences,
    keeping any references already present on the live copy of the child.
    Owners in a different namespace than the child are never added since the
    garbage collector does not support cross-namespace ownership.
    """
    _validate_object_struct(owner_cr)
    _validate_object_struct(child_obj)

    kind = child_obj["kind"]
    api_version = child_obj["apiVersion"]
    name = child_obj["metadata"]["name"]
    namespace = child_obj["metadata"]["namespace"]

    success, content = deploy_manager.get_object_current_state(
        kind=kind, name=name, api_version=api_version, namespace=namespace
    )
    assert_cluster(
        success, f"Failed to fetch current state of {api_version}.{kind}/{name}"
    )

    owner_refs = list(child_obj["metadata"].get("ownerReferences", []))
    if content is not None:
        known = {ref.get("uid") for ref in owner_refs}
        owner_refs.extend(
            ref
            for ref in content.get("metadata", {}).get("ownerReferences", [])
            if ref.get("uid") not in known
        )
    log.debug3("Current owner refs: %s", owner_refs)

    owner_uid = owner_cr["metadata"].get("uid")
    owner_namespace = owner_cr["metadata"]["namespace"]
    if namespace != owner_namespace:
        log.debug2("Owner %s is not in namespace %s", owner_uid, namespace)
    elif owner_uid not in [ref.get("uid") for ref in owner_refs]:
        log.debug2(
            "Adding owner reference to %s for %s.%s/%s",
            owner_cr["metadata"]["name"],
            api_version,
            kind,
            name,
        )
        owner_refs.append(_make_owner_reference(owner_cr))

    child_obj["metadata"]["ownerReferences"] = owner_refs


## Implementation Details ######################################################


def _validate_object_struct(obj: dict):
    """Ensure that kind, apiVersion, metadata.namespace and metadata.name are
    present
    """
    assert "kind" in obj, "Got object without 'kind'"
    assert "apiVersion" in obj, "Got object without 'apiVersion'"
    metadata = obj.get("metadata")
    assert isinstance(metadata, dict), "Got object with non-dict 'metadata'"
    assert "name" in metadata, "Got object without 'metadata.name'"
    assert "namespace" in metadata, "Got object without 'metadata.namespace'"


def _make_owner_reference(owner_cr: dict) -> dict:
    """Make an ownerReferences entry for the given CR instance

    Args:
        owner_cr:  dict
            The full CR manifest for the owning resource

    Returns:
        owner_reference:  dict
            The dict entry for the `metadata.ownerReferences` entry of the owned
            object
    """
    # NOTE: controller is left unset so that several owners may share a child
    metadata = owner_cr.get("metadata", {})
    return {
        "apiVersion": owner_cr.get("apiVersion"),
        "kind": owner_cr.get("kind"),
        "name": metadata.get("name"),
        "uid": metadata.get("uid"),
        "blockOwnerDeletion": True,
    }
