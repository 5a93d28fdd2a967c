"""
The DryRunDeployManager implements the DeployManager interface but does not
actually interact with the cluster and instead holds the state of the cluster in
a local map.
"""

# Standard
from datetime import datetime
from threading import RLock
from typing import Dict, Iterator, List, Optional, Tuple
import copy
import itertools
import re
import uuid

# First Party
import alog

# Local
from .base import DeployManagerBase

log = alog.use_channel("DRY-RUN")

# Lock to ensure writes are thread safe
DRY_RUN_CLUSTER_LOCK = RLock()

# Metadata fields owned by the server which never count as a change
_SERVER_FIELDS = ["resourceVersion", "uid", "creationTimestamp", "generation"]


class DryRunDeployManager(DeployManagerBase):
    """
    Deploy manager which doesn't actually deploy!
    """

    def __init__(
        self,
        resources: Optional[List[dict]] = None,
        strict_resource_version: bool = False,
    ):
        """Construct with an optional set of resources that are already present
        in the fake cluster

        Args:
            resources:  Optional[List[dict]]
                Manifests to preload into the cluster
            strict_resource_version:  bool
                If true, updates carrying a stale metadata.resourceVersion are
                rejected the same way the api server rejects them
        """
        self._cluster_content = {}
        self.strict_resource_version = strict_resource_version
        self._resource_versions = itertools.count(1)
        for resource in resources or []:
            self.create(copy.deepcopy(resource))

    ## Interface ###############################################################

    def get_object_current_state(self, kind, name, namespace=None, api_version=None):
        log.debug(
            "DRY RUN get_object_current_state of [%s/%s] in [%s]", kind, name, namespace
        )
        matches = [
            entries[name]
            for api_ver, entries in self._kind_entries(namespace, kind)
            if name in entries and (api_version is None or api_ver == api_version)
        ]
        log.debug3("Found %d matches for [%s/%s]", len(matches), kind, name)
        if len(matches) == 1:
            return True, copy.deepcopy(matches[0])
        return True, None

    def filter_objects_current_state(
        self,
        kind,
        namespace=None,
        api_version=None,
        label_selector=None,
        field_selector=None,
    ):  # pylint: disable=too-many-arguments
        log.debug(
            "DRY RUN filter_objects_current_state of [%s] in [%s]", kind, namespace
        )
        namespaces = (
            [namespace] if namespace is not None else list(self._cluster_content)
        )
        matches = []
        for nspace in namespaces:
            for api_ver, entries in self._kind_entries(nspace, kind):
                if api_version is not None and api_ver != api_version:
                    continue
                for resource in entries.values():
                    labels = resource.get("metadata", {}).get("labels") or {}
                    if label_selector and not match_selector(labels, label_selector):
                        continue
                    if field_selector and not match_selector(
                        _flatten(resource), field_selector
                    ):
                        continue
                    matches.append(copy.deepcopy(resource))
        log.debug3("Found %d matches for kind [%s]", len(matches), kind)
        return True, matches

    def create(self, resource):
        kind, api_version, name, namespace = _identifiers(resource)
        log.debug("DRY RUN create [%s/%s/%s/%s]", namespace, kind, api_version, name)
        with DRY_RUN_CLUSTER_LOCK:
            entries = (
                self._cluster_content.setdefault(namespace, {})
                .setdefault(kind, {})
                .setdefault(api_version, {})
            )
            if name in entries:
                log.debug2("[%s/%s] already exists in %s", kind, name, namespace)
                return True, False
            resource = copy.deepcopy(resource)
            metadata = resource.setdefault("metadata", {})
            metadata["uid"] = str(uuid.uuid4())
            metadata["creationTimestamp"] = datetime.now().isoformat()
            metadata["generation"] = 1
            metadata["resourceVersion"] = self._next_resource_version()
            entries[name] = resource
        return True, True

    def update(self, resource):
        kind, api_version, name, namespace = _identifiers(resource)
        log.debug("DRY RUN update [%s/%s/%s/%s]", namespace, kind, api_version, name)
        with DRY_RUN_CLUSTER_LOCK:
            entries = self._cluster_content.get(namespace, {}).get(kind, {})
            current = entries.get(api_version, {}).get(name)
            if current is None:
                log.warning("Cannot update missing [%s/%s] in %s", kind, name, namespace)
                return False, False

            resource = copy.deepcopy(resource)
            metadata = resource.setdefault("metadata", {})
            requested_version = metadata.get("resourceVersion")
            if (
                self.strict_resource_version
                and requested_version
                and requested_version != current["metadata"]["resourceVersion"]
            ):
                log.warning("Unable to update resource. resourceVersion is out of date")
                return False, False

            # Status is a sub-resource and is not written by a spec update
            if "status" in current:
                resource["status"] = current["status"]
            else:
                resource.pop("status", None)
            for field in ["uid", "creationTimestamp", "deletionTimestamp"]:
                if field in current["metadata"]:
                    metadata[field] = current["metadata"][field]
            changed = _strip_server_fields(current) != _strip_server_fields(resource)
            metadata["generation"] = current["metadata"].get("generation", 1) + (
                1 if current.get("spec") != resource.get("spec") else 0
            )
            metadata["resourceVersion"] = (
                self._next_resource_version()
                if changed
                else current["metadata"]["resourceVersion"]
            )
            entries[api_version][name] = resource

            # Finish a pending deletion once the last finalizer is removed
            if metadata.get("deletionTimestamp") and not metadata.get("finalizers"):
                log.debug2("Completing deletion of [%s/%s]", kind, name)
                self._delete_key(namespace, kind, api_version, name)
        return True, changed

    def delete_all_of(
        self,
        kind,
        namespace,
        api_version=None,
        label_selector=None,
        field_selector=None,
    ):  # pylint: disable=too-many-arguments
        log.debug("DRY RUN delete_all_of [%s] in [%s]", kind, namespace)
        _, matches = self.filter_objects_current_state(
            kind=kind,
            namespace=namespace,
            api_version=api_version,
            label_selector=label_selector,
            field_selector=field_selector,
        )
        changed = False
        with DRY_RUN_CLUSTER_LOCK:
            for match in matches:
                _, match_api_version, name, match_namespace = _identifiers(match)
                stored = self._cluster_content[match_namespace][kind][
                    match_api_version
                ][name]
                if stored["metadata"].get("finalizers"):
                    log.debug2("Marking [%s/%s] for deletion", kind, name)
                    stored["metadata"].setdefault(
                        "deletionTimestamp",
                        datetime.now().strftime("%Y-%m-%dT%H:%M:%SZ"),
                    )
                else:
                    self._delete_key(match_namespace, kind, match_api_version, name)
                changed = True
        return True, changed

    def set_status(
        self,
        kind,
        name,
        namespace,
        status,
        api_version=None,
    ):  # pylint: disable=too-many-arguments
        log.debug(
            "DRY RUN set_status of [%s.%s/%s] in %s", api_version, kind, name, namespace
        )
        log.debug4("New status: %s", status)
        with DRY_RUN_CLUSTER_LOCK:
            for api_ver, entries in self._kind_entries(namespace, kind):
                if name not in entries or api_version not in [None, api_ver]:
                    continue
                current = entries[name]
                if current.get("status") == status:
                    log.debug2("Status has not changed. No update")
                    return True, False
                current["status"] = copy.deepcopy(status)
                current["metadata"]["resourceVersion"] = self._next_resource_version()
                return True, True
        log.debug("Did not find [%s/%s] in %s", kind, name, namespace)
        return False, False

    ## Implementation Details ##################################################

    def _kind_entries(
        self, namespace: Optional[str], kind: str
    ) -> Iterator[Tuple[str, Dict[str, dict]]]:
        return iter(
            list(self._cluster_content.get(namespace, {}).get(kind, {}).items())
        )

    def _next_resource_version(self) -> str:
        return str(next(self._resource_versions))

    def _delete_key(self, namespace, kind, api_version, name):
        del self._cluster_content[namespace][kind][api_version][name]
        if not self._cluster_content[namespace][kind][api_version]:
            del self._cluster_content[namespace][kind][api_version]
        if not self._cluster_content[namespace][kind]:
            del self._cluster_content[namespace][kind]
        if not self._cluster_content[namespace]:
            del self._cluster_content[namespace]


## Selectors ###################################################################

# Individual selector requirements. Ordering matters: the set forms must be
# tried before the equality forms since values may contain '='.
_SET_REQUIREMENT = re.compile(r"^\s*([^\s!=]+)\s+(in|notin)\s+\((.*)\)\s*$")
_EQUALITY_REQUIREMENT = re.compile(r"^\s*([^\s!=]+)\s*(==|!=|=)\s*(.*?)\s*$")
_EXISTS_REQUIREMENT = re.compile(r"^\s*(!?)\s*([^\s!=]+)\s*$")


def match_selector(values: dict, selector: str) -> bool:
    """Determine whether a flat mapping of values satisfies a kubernetes label
    or field selector. Every comma-separated requirement must match.

    CITE: https://kubernetes.io/docs/concepts/overview/working-with-objects/labels/
    """
    for requirement in _split_requirements(selector):
        match = _SET_REQUIREMENT.match(requirement)
        if match:
            key, operator, options = match.groups()
            value = _as_str(values.get(key))
            found = value in [opt.strip() for opt in options.split(",")]
            if found != (operator == "in"):
                return False
            continue

        match = _EQUALITY_REQUIREMENT.match(requirement)
        if match:
            key, operator, expected = match.groups()
            if (_as_str(values.get(key)) == expected) != (operator != "!="):
                return False
            continue

        match = _EXISTS_REQUIREMENT.match(requirement)
        if match:
            negate, key = match.groups()
            if (key in values) == bool(negate):
                return False
            continue

        log.warning("Unparseable selector requirement [%s]", requirement)
        return False
    return True


def _split_requirements(selector: str) -> List[str]:
    """Split on commas that are not inside parentheses"""
    requirements, current, depth = [], "", 0
    for char in selector:
        if char == "," and not depth:
            requirements.append(current)
            current = ""
            continue
        depth += {"(": 1, ")": -1}.get(char, 0)
        current += char
    if current.strip():
        requirements.append(current)
    return requirements


def _as_str(value) -> Optional[str]:
    return None if value is None else str(value).strip()


def _flatten(dictionary: dict, prefix: str = "") -> dict:
    """Convert nested dicts to a flat dict with dotted keys so that field
    selectors like metadata.name can be evaluated
    """
    output = {}
    for key, value in dictionary.items():
        full_key = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict):
            output.update(_flatten(value, full_key))
        else:
            output[full_key] = value
    return output


def _identifiers(resource: dict) -> Tuple[str, str, str, Optional[str]]:
    metadata = resource.get("metadata", {})
    kind = resource.get("kind")
    name = metadata.get("name")
    assert kind and name, "Cannot manage a resource without kind and name"
    return kind, resource.get("apiVersion"), name, metadata.get("namespace")


def _strip_server_fields(resource: dict) -> dict:
    stripped = copy.deepcopy(resource)
    for field in _SERVER_FIELDS:
        stripped.get("metadata", {}).pop(field, None)
    stripped.pop("status", None)
    return stripped
