"""
This module holds the core session state for an individual reconciliation
"""

# Standard
from typing import List, Optional, Tuple

# First Party
import aconfig
import alog

# Local
from .deploy_manager import DeployManagerBase
from .events import EventType, record_event
from .exceptions import assert_cluster
from .status import status_changed
from .utils import to_plain_dict

log = alog.use_channel("SESSION")

# Sentinel so that namespace=None can still mean cluster wide
_SESSION_NAMESPACE = "__SESSION_NAMESPACE__"


class Session:
    """A session is the core context manager for the state of an in-progress
    reconciliation
    """

    # We strictly define the set of attributes that a Session can have to
    # disallow arbitrary assignment
    __slots__ = [
        "__id",
        "__cr_manifest",
        "__deploy_manager",
        "__status",
    ]

    def __init__(
        self,
        reconciliation_id: str,
        cr_manifest: aconfig.Config,
        deploy_manager: DeployManagerBase,
    ):
        """Construct a session object to hold the state for a reconciliation

        Args:
            reconciliation_id:  str
                The unique ID for this reconciliation
            cr_manifest:  aconfig.Config
                The full value of the CR manifest that triggered this
                reconciliation
            deploy_manager:  DeployManagerBase
                The preconfigured DeployManager in charge of running the actual
                cluster operations
        """
        self.__id = reconciliation_id
        if not isinstance(cr_manifest, aconfig.Config):
            cr_manifest = aconfig.Config(cr_manifest, override_env_vars=False)
        self._validate_cr(cr_manifest)
        self.__cr_manifest = cr_manifest
        self.__deploy_manager = deploy_manager

        # The status as it was observed at the start of the reconciliation
        self.__status = self.get_status()

    ## Properties ##############################################################

    @property
    def id(self) -> str:  # pylint: disable=invalid-name
        """The unique reconciliation ID"""
        return self.__id

    @property
    def cr_manifest(self) -> aconfig.Config:
        """The full CR manifest that triggered this reconciliation"""
        return self.__cr_manifest

    @property
    def spec(self) -> aconfig.Config:
        """The spec section of the CR manifest"""
        return self.cr_manifest.get("spec", aconfig.Config({}))

    @property
    def metadata(self) -> aconfig.Config:
        """The metadata for this CR"""
        return self.cr_manifest.metadata

    @property
    def kind(self) -> str:
        """The kind of this CR"""
        return self.cr_manifest.kind

    @property
    def api_version(self) -> str:
        """The api version of this CR"""
        return self.cr_manifest.apiVersion

    @property
    def name(self) -> str:
        """The metadata.name for this CR"""
        return self.metadata.name

    @property
    def namespace(self) -> str:
        """The metadata.namespace for this CR"""
        return self.metadata.namespace

    @property
    def finalizers(self) -> List[str]:
        """The metadata.finalizers for this CR"""

        # Manually create finalizer list if it doesn't exist so its
        # editable
        if "finalizers" not in self.metadata:
            self.metadata["finalizers"] = []
        return self.metadata.get("finalizers")

    @property
    def deleting(self) -> bool:
        """Whether the CR has been marked for deletion"""
        return bool(self.metadata.get("deletionTimestamp"))

    @property
    def status(self) -> dict:
        """The CR status at the start of this reconciliation"""
        return self.__status

    @property
    def deploy_manager(self) -> DeployManagerBase:
        """Allow read access to the deploy manager"""
        return self.__deploy_manager

    ## Utilities ###############################################################

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = _SESSION_NAMESPACE,
    ) -> Tuple[bool, Optional[dict]]:
        """Get the current state of the given object, by default in the
        namespace of this session
        """
        namespace = namespace if namespace != _SESSION_NAMESPACE else self.namespace
        return self.deploy_manager.get_object_current_state(
            kind=kind,
            name=name,
            namespace=namespace,
            api_version=api_version,
        )

    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        namespace: Optional[str] = _SESSION_NAMESPACE,
    ) -> Tuple[bool, List[dict]]:
        """List objects, by default in the namespace of this session. Pass
        namespace=None to list cluster wide.
        """
        namespace = namespace if namespace != _SESSION_NAMESPACE else self.namespace
        return self.deploy_manager.filter_objects_current_state(
            kind=kind,
            namespace=namespace,
            api_version=api_version,
            label_selector=label_selector,
            field_selector=field_selector,
        )

    @alog.logged_function(log.debug2)
    def get_status(self) -> dict:
        """Get the status of the resource being managed by this session or an
        empty dict if not available
        """
        log.debug3("Getting status for %s.%s/%s", self.api_version, self.kind, self.name)
        success, content = self.get_object_current_state(
            kind=self.kind,
            name=self.name,
            api_version=self.api_version,
        )
        assert_cluster(
            success,
            f"Failed to fetch status for [{self.api_version}/{self.kind}/{self.name}]",
        )
        if content:
            return content.get("status") or {}
        return {}

    def set_status(self, new_status: dict) -> bool:
        """Write the status sub-resource if it differs meaningfully from the
        status observed at the start of this reconciliation

        Returns:
            changed:  bool
                True if a status write was issued
        """
        new_status = to_plain_dict(new_status)
        if not status_changed(self.status, new_status):
            log.debug2("Status for %s/%s unchanged", self.namespace, self.name)
            return False
        success, _ = self.deploy_manager.set_status(
            kind=self.kind,
            name=self.name,
            namespace=self.namespace,
            status=new_status,
            api_version=self.api_version,
        )
        assert_cluster(
            success, f"Failed to update status for {self.kind}/{self.name}"
        )
        self.__status = new_status
        return True

    def record_event(self, event_type: EventType, reason: str, message: str) -> bool:
        """Attach an event to the CR of this session"""
        return record_event(
            self.deploy_manager, self.cr_manifest, event_type, reason, message
        )

    ## Implementation Details ##################################################

    @staticmethod
    def _validate_cr(cr_manifest: aconfig.Config):
        """Ensure that all expected elements of the CR are present. Expected
        elements are those that are guaranteed to be present by the kube API.
        """
        assert "kind" in cr_manifest, "CR missing required section ['kind']"
        assert "apiVersion" in cr_manifest, "CR missing required section ['apiVersion']"
        assert "metadata" in cr_manifest, "CR missing required section ['metadata']"
        assert (
            "name" in cr_manifest.metadata
        ), "CR missing required section ['metadata.name']"
        assert (
            "namespace" in cr_manifest.metadata
        ), "CR missing required section ['metadata.namespace']"
