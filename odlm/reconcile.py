"""
The ReconcileManager class manages an individual reconcile of a controller.
This sets up the session, constructs the controller, and runs its reconcile
"""

# Standard
from dataclasses import dataclass, field
from typing import Optional, Type, Union
import base64
import datetime
import logging
import uuid

# First Party
import aconfig
import alog

# Local
from . import config, constants
from .deploy_manager import (
    DeployManagerBase,
    DryRunDeployManager,
    OpenshiftDeployManager,
)
from .events import EventType, record_event
from .session import Session
from .utils import add_finalizer, remove_finalizer

log = alog.use_channel("RECONCILE")


## Data models #################################################################


@dataclass
class RequeueParams:
    """RequeueParams holds parameters for requeue request"""

    requeue_after: datetime.timedelta = field(
        default_factory=lambda: datetime.timedelta(
            seconds=float(config.default_requeue_seconds)
        )
    )


@dataclass
class ReconciliationResult:
    """ReconciliationResult is the result of a reconciliation session"""

    # Flag to control requeue of current reconcile request
    requeue: bool
    # Parameters for requeue request
    requeue_params: RequeueParams = field(default_factory=RequeueParams)
    # The exception raised by the reconcile, if any
    exception: Optional[Exception] = None


# Forward declarations of Controller
CONTROLLER_TYPE = "Controller"
CONTROLLER_INFO = Union[Type[CONTROLLER_TYPE], CONTROLLER_TYPE]

## ReconcileManager ############################################################


class ReconcileManager:
    """This class manages reconciliations for the ODLM controllers. Its primary
    function is to run reconciles given a CR manifest, a Controller, and the
    current cluster state via a DeployManager.
    """

    def __init__(self, deploy_manager: Optional[DeployManagerBase] = None):
        """
        Args:
            deploy_manager:  Optional[DeployManagerBase]
                Deploy manager to use. If not given, a new DeployManager will
                be created for each reconcile.
        """
        self.deploy_manager = deploy_manager

    ## Reconciliation ##########################################################

    @alog.logged_function(log.info)
    @alog.timed_function(log.info, "Reconcile finished in: ")
    def reconcile(
        self,
        controller_info: CONTROLLER_INFO,
        resource: Union[dict, aconfig.Config],
        is_finalizer: Optional[bool] = None,
    ) -> ReconciliationResult:
        """This is the main entrypoint for reconciliations. The general
        reconcile path is as follows:

            1. Parse the raw CR manifest
            2. Setup logging based on config with overrides from CR
            3. Check if the CR is paused
            4. Construct the Controller, DeployManager and Session
            5. Run the Controller reconcile or finalizer

        Args:
            controller_info:  CONTROLLER_INFO
                A Controller class or instance
            resource:  Union[dict, aconfig.Config]
                A raw representation of the resource to be reconciled
            is_finalizer:  Optional[bool]
                Whether the resource is being deleted. If not given, this is
                derived from metadata.deletionTimestamp.

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        cr_manifest = self.parse_manifest(resource)
        reconcile_id = self.generate_id()
        self.configure_logging(cr_manifest, reconcile_id)

        # If paused, do nothing and don't requeue
        if self._is_paused(cr_manifest):
            log.info("CR is paused. Exiting reconciliation")
            return ReconciliationResult(requeue=False)

        if is_finalizer is None:
            is_finalizer = bool(cr_manifest.metadata.get("deletionTimestamp"))

        controller = self.setup_controller(controller_info)
        deploy_manager = self.setup_deploy_manager()
        session = Session(
            reconciliation_id=reconcile_id,
            cr_manifest=cr_manifest,
            deploy_manager=deploy_manager,
        )
        return self.run_controller(controller, session, is_finalizer)

    def safe_reconcile(
        self,
        controller_info: CONTROLLER_INFO,
        resource: dict,
        is_finalizer: Optional[bool] = None,
    ) -> ReconciliationResult:
        """Call reconcile but catch any errors thrown. Any failure is turned
        into a requeue with the default backoff and reported as an event on
        the resource.

        Args:
            controller_info:  CONTROLLER_INFO
                A Controller class or instance
            resource:  dict
                A raw representation of the resource to be reconciled
            is_finalizer:  Optional[bool]
                Whether the resource is being deleted

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        try:
            return self.reconcile(controller_info, resource, is_finalizer)
        except Exception as exc:  # pylint: disable=broad-except
            log.warning("Handling caught error in reconcile: %s", exc, exc_info=True)
            error = exc

        try:
            record_event(
                self.setup_deploy_manager(),
                resource,
                EventType.WARNING,
                "ReconcileFailed",
                str(error),
            )
        except Exception as exc:  # pylint: disable=broad-except
            log.error("Failed to record reconcile error: %s", exc, exc_info=True)

        log.info("Requeuing CR due to error during reconcile")
        return ReconciliationResult(
            requeue=True, requeue_params=RequeueParams(), exception=error
        )

    ## Reconciliation Stages ###################################################

    @classmethod
    def parse_manifest(cls, resource: Union[dict, aconfig.Config]) -> aconfig.Config:
        """Parse a raw resource into an aconfig Config"""
        try:
            cr_manifest = aconfig.Config(resource, override_env_vars=False)
        except (ValueError, SyntaxError, AttributeError) as exc:
            raise ValueError("Failed to parse full_cr") from exc
        return cr_manifest

    @classmethod
    def configure_logging(cls, cr_manifest: aconfig.Config, reconciliation_id: str):
        """Configure the logging for a given reconcile from the library config
        with overrides from the CR annotations

        Args:
            cr_manifest:  aconfig.Config
                The resource to get annotation overrides from
            reconciliation_id:  str
                The unique id for the reconciliation
        """
        annotations = cr_manifest.get("metadata", {}).get("annotations") or {}
        default_level = annotations.get(
            constants.LOG_DEFAULT_LEVEL_NAME, config.log_level
        )
        filters = annotations.get(constants.LOG_FILTERS_NAME, config.log_filters)
        log_json = annotations.get(constants.LOG_JSON_NAME, str(config.log_json))
        log_thread_id = annotations.get(
            constants.LOG_THREAD_ID_NAME, str(config.log_thread_id)
        )

        # Keep the existing root handler so output keeps going to the same
        # place
        handler_generator = None
        if logging.root.handlers:
            old_handler = logging.root.handlers[0]

            def handler_generator():
                return old_handler

        alog.configure(
            default_level=default_level,
            filters=filters,
            formatter="json" if (log_json or "").lower() == "true" else "pretty",
            thread_id=(log_thread_id or "").lower() == "true",
            handler_generator=handler_generator,
        )
        log.debug2("Configured logging for reconcile %s", reconciliation_id)

    @classmethod
    def generate_id(cls) -> str:
        """Generates a unique human readable id for this reconciliation

        Returns:
            id:  str
                A unique base32 encoded id
        """
        base32_str = base64.b32encode(uuid.uuid4().bytes).decode("utf-8")
        reconcile_id = base32_str[:22]
        log.debug("Generated reconcile id: %s", reconcile_id)
        return reconcile_id

    @staticmethod
    def setup_controller(controller_info: CONTROLLER_INFO) -> CONTROLLER_TYPE:
        """Construct the Controller if given a class"""
        # Local
        from .controller import (  # pylint: disable=import-outside-toplevel, cyclic-import
            Controller,
        )

        if isinstance(controller_info, Controller):
            return controller_info
        assert isinstance(controller_info, type) and issubclass(
            controller_info, Controller
        ), f"Invalid controller: {controller_info}"
        return controller_info()

    def setup_deploy_manager(self) -> DeployManagerBase:
        """Get the deploy manager for a reconcile"""
        if self.deploy_manager:
            return self.deploy_manager
        if config.dry_run:
            log.debug("Using DryRunDeployManager")
            self.deploy_manager = DryRunDeployManager()
        else:
            log.debug("Using OpenshiftDeployManager")
            self.deploy_manager = OpenshiftDeployManager()
        return self.deploy_manager

    def run_controller(
        self,
        controller: CONTROLLER_TYPE,
        session: Session,
        is_finalizer: bool,
    ) -> ReconciliationResult:
        """Run the Controller's reconciliation or finalizer with the
        constructed Session and handle finalizer bookkeeping and requeue logic
        """
        log.info(
            "%s resource %s/%s/%s",
            "Finalizing" if is_finalizer else "Reconciling",
            session.kind,
            session.namespace,
            session.name,
        )

        # Ensure the resource has the proper finalizers
        if controller.has_finalizer and not is_finalizer:
            add_finalizer(session, controller.finalizer)

        controller.run_reconcile(session, is_finalizer=is_finalizer)

        requeue, requeue_params = controller.should_requeue(session)
        if not requeue_params:
            requeue_params = RequeueParams()

        # Remove managed finalizers once finalizing is complete
        if not requeue and is_finalizer and controller.has_finalizer:
            remove_finalizer(session, controller.finalizer)

        return ReconciliationResult(requeue=requeue, requeue_params=requeue_params)

    ## Implementation Details ##################################################

    @classmethod
    def _is_paused(cls, cr_manifest: aconfig.Config) -> bool:
        """Check if a manifest has the paused annotation"""
        annotations = cr_manifest.get("metadata", {}).get("annotations") or {}
        paused = annotations.get(constants.PAUSE_ANNOTATION_NAME)
        return bool(paused) and paused.lower() == "true"
