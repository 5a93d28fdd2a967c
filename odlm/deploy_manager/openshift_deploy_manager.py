"""
This DeployManager is responsible for delegating cluster operations to the
openshift library. It is the one that will be used when the operator is running
in the cluster or outside the cluster making live changes.
"""

# Standard
from collections import namedtuple
from typing import Callable, List, Optional, Tuple
import threading
import time

# Third Party
from openshift.dynamic import DynamicClient
from openshift.dynamic.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
)
from openshift.dynamic.resource import Resource
import kubernetes

# First Party
import alog

# Local
from .. import config
from ..exceptions import assert_cluster
from .base import DeployManagerBase

log = alog.use_channel("OSFTD")

_ResourceIdentifiers = namedtuple(
    "_ResourceIdentifiers", ["api_version", "kind", "name", "namespace"]
)

# Name used for server-side field ownership
FIELD_MANAGER = "odlm"


class OpenshiftDeployManager(DeployManagerBase):
    """This DeployManager uses the openshift DynamicClient to interact with the
    cluster
    """

    def __init__(self, client: Optional[DynamicClient] = None):
        """
        Args:
            client:  Optional[DynamicClient]
                A preconfigured client. If not given, one is created lazily on
                first use.
        """
        self._client = client

        # Keep a lock for status updates to avoid racing 409 Conflicts when
        # several threads write the same status
        self._status_lock = threading.Lock()

    @property
    def client(self) -> DynamicClient:
        """Lazy property access to the client"""
        if self._client is None:
            log.debug("Initializing openshift client")
            self._client = self._setup_client()
        return self._client

    ## Interface ###############################################################

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, None
        if not namespace:
            resources.namespaced = False

        try:
            resource = resources.get(name=name, namespace=namespace)
        except ForbiddenError:
            log.debug(
                "Fetching objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, None
        except NotFoundError:
            log.debug(
                "No object named [%s/%s] found in namespace [%s]", kind, name, namespace
            )
            return True, None
        return True, resource.to_dict()

    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, []

        try:
            list_obj = resources.get(
                label_selector=label_selector,
                field_selector=field_selector,
                namespace=namespace,
            )
        except ForbiddenError:
            log.debug(
                "Listing objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, []
        except NotFoundError:
            log.debug(
                "No objects of kind [%s] found in namespace [%s]", kind, namespace
            )
            return True, []
        return True, list_obj.to_dict().get("items", [])

    @alog.logged_function(log.debug2)
    def create(self, resource: dict) -> Tuple[bool, bool]:
        return self._guarded_operation(self._create, resource, max_retries=0)

    @alog.logged_function(log.debug2)
    def update(self, resource: dict) -> Tuple[bool, bool]:
        return self._guarded_operation(
            self._update, resource, max_retries=config.deploy_retries
        )

    @alog.logged_function(log.debug2)
    def delete_all_of(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str],
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            log.debug2("Kind [%s] is not served, nothing to delete", kind)
            return True, False
        if not namespace:
            resources.namespaced = False

        log.debug2(
            "Deleting all [%s] in %s matching [%s] [%s]",
            kind,
            namespace,
            label_selector,
            field_selector,
        )
        try:
            result = resources.delete(
                namespace=namespace,
                label_selector=label_selector,
                field_selector=field_selector,
            )
        except NotFoundError as err:
            log.debug2("Valid error caught when deleting [%s]: %s", kind, err)
            return True, False
        except Exception as err:  # pylint: disable=broad-except
            log.warning("Failed to delete [%s] in %s: %s", kind, namespace, err)
            return False, False

        items = (result.to_dict() if result is not None else {}).get("items")
        return True, items is None or bool(items)

    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        resource = {
            "kind": kind,
            "apiVersion": api_version,
            "metadata": {"name": name, "namespace": namespace},
        }
        return self._guarded_operation(
            self._set_status,
            resource,
            max_retries=config.deploy_retries,
            status=status,
        )

    ## Implementation Details ##################################################

    @staticmethod
    def _setup_client() -> DynamicClient:
        """Create a DynamicClient that will work based on where the operator is
        running
        """
        try:
            log.debug2("Running with in-cluster config")
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)
            api_client = kubernetes.client.ApiClient(kube_config)
            return DynamicClient(api_client)
        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    def _get_resource_handle(
        self, kind: str, api_version: Optional[str]
    ) -> Optional[Resource]:
        """Get the openshift resource handle for a specified kind and api_version"""
        try:
            return self.client.resources.get(kind=kind, api_version=api_version)
        except (ResourceNotFoundError, ResourceNotUniqueError):
            log.debug(
                "No objects of kind [%s] found or multiple objects matching request found",
                kind,
            )
        return None

    @staticmethod
    def _identifiers(resource: dict) -> _ResourceIdentifiers:
        metadata = resource.get("metadata", {})
        res_id = _ResourceIdentifiers(
            resource.get("apiVersion"),
            resource.get("kind"),
            metadata.get("name"),
            metadata.get("namespace"),
        )
        assert res_id.kind and res_id.name, "Cannot write resource without kind or name"
        return res_id

    def _required_handle(self, res_id: _ResourceIdentifiers) -> Resource:
        handle = self._get_resource_handle(res_id.kind, res_id.api_version)
        assert_cluster(
            handle,
            "Failed to fetch resource handle for "
            + f"{res_id.namespace}/{res_id.api_version}/{res_id.kind}",
        )
        if not res_id.namespace:
            handle.namespaced = False
        return handle

    def _guarded_operation(
        self,
        operation: Callable,
        resource: dict,
        max_retries: int,
        **kwargs,
    ) -> Tuple[bool, bool]:
        """Run a single write operation, converting unexpected errors into the
        (success, changed) convention
        """
        try:
            return True, self._run_with_retries(
                operation, max_retries, resource, **kwargs
            )
        except Exception as err:  # pylint: disable=broad-except
            log.warning(
                "Operation [%s] failed to execute: %s",
                operation.__name__,
                err,
                exc_info=True,
            )
            return False, False

    def _run_with_retries(
        self,
        operation: Callable,
        remaining_retries: int,
        resource: dict,
        **kwargs,
    ) -> bool:
        """Run the operation and, on a resourceVersion conflict, back off,
        refresh the resourceVersion and try again
        """
        try:
            return operation(resource, **kwargs)
        except ConflictError as err:
            log.debug2("Handling ConflictError: %s", err)
            if not remaining_retries:
                raise

            backoff_duration = config.retry_backoff_base_seconds * (
                config.deploy_retries - remaining_retries + 1
            )
            log.debug3("Retrying in %fs", backoff_duration)
            time.sleep(backoff_duration)

            res_id = self._identifiers(resource)
            success, content = self.get_object_current_state(
                kind=res_id.kind,
                name=res_id.name,
                namespace=res_id.namespace,
                api_version=res_id.api_version,
            )
            assert_cluster(
                success and content is not None,
                "Failed to fetch updated resourceVersion for "
                + f"{res_id.namespace}/{res_id.api_version}/{res_id.kind}/{res_id.name}",
            )
            updated_resource_version = content.get("metadata", {}).get(
                "resourceVersion"
            )
            assert_cluster(
                updated_resource_version is not None,
                "No updated resource version found!",
            )
            log.debug3(
                "Updating resourceVersion from %s -> %s",
                resource.get("metadata", {}).get("resourceVersion"),
                updated_resource_version,
            )
            resource.setdefault("metadata", {})[
                "resourceVersion"
            ] = updated_resource_version
            return self._run_with_retries(
                operation, remaining_retries - 1, resource, **kwargs
            )

    ################
    ## Operations ##
    ################

    def _create(self, resource: dict) -> bool:
        res_id = self._identifiers(resource)
        handle = self._required_handle(res_id)
        log.debug2(
            "Attempting to create [%s/%s/%s] in %s",
            res_id.api_version,
            res_id.kind,
            res_id.name,
            res_id.namespace,
        )
        try:
            handle.create(
                body=resource,
                namespace=res_id.namespace,
                field_manager=FIELD_MANAGER,
            )
        except ConflictError:
            log.debug2("[%s/%s] already exists", res_id.kind, res_id.name)
            return False
        return True

    def _update(self, resource: dict) -> bool:
        res_id = self._identifiers(resource)
        handle = self._required_handle(res_id)
        resource.get("metadata", {}).pop("managedFields", None)
        log.debug2(
            "Attempting to put [%s/%s/%s] in %s",
            res_id.api_version,
            res_id.kind,
            res_id.name,
            res_id.namespace,
        )
        previous_version = resource.get("metadata", {}).get("resourceVersion")
        result = handle.replace(
            body=resource,
            name=res_id.name,
            namespace=res_id.namespace,
            field_manager=FIELD_MANAGER,
        ).to_dict()
        return result.get("metadata", {}).get("resourceVersion") != previous_version

    def _set_status(self, resource: dict, status: dict) -> bool:
        res_id = self._identifiers(resource)
        handle = self._required_handle(res_id)
        with self._status_lock:
            current = handle.get(name=res_id.name, namespace=res_id.namespace).to_dict()
            if current.get("status") == status:
                log.debug("Status has not changed. No update")
                return False
            current["status"] = status
            handle.status.replace(body=current)
            log.debug2(
                "Successfully set the status for [%s/%s] in %s",
                res_id.kind,
                res_id.name,
                res_id.namespace,
            )
            return True
