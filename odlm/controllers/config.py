"""
The OperandConfig controller observes which of the configured operand
resources are live. It never creates, updates, or deletes them; creation is
owned by the OperandRequest controller.
"""

# First Party
import alog

# Local
from .. import constants
from ..api import OperandConfig, OperandRegistry
from ..controller import Controller
from ..events import EventType
from ..exceptions import (
    MergeError,
    MultiError,
    OdlmError,
    PreconditionError,
    assert_cluster,
)
from ..olm import get_operator_csv, matching_examples, parse_alm_examples
from ..session import Session
from ..status import ServicePhase, config_phase, operator_installed

log = alog.use_channel("CONFG")


class OperandConfigController(Controller):
    """Controller for OperandConfig"""

    group = constants.GROUP
    version = constants.VERSION
    kind = constants.KIND_OPERAND_CONFIG

    @alog.logged_function(log.debug)
    def reconcile(self, session: Session):
        operand_config = OperandConfig(session.cr_manifest)

        # The registry backing a config shares its name and namespace
        success, registry_manifest = session.get_object_current_state(
            kind=constants.KIND_OPERAND_REGISTRY,
            name=session.name,
            api_version=constants.API_VERSION,
        )
        assert_cluster(
            success,
            f"Failed to fetch OperandRegistry {session.namespace}/{session.name}",
        )
        if registry_manifest is None:
            message = (
                f"OperandRegistry {session.namespace}/{session.name} not found"
            )
            session.record_event(EventType.WARNING, "NotFound", message)
            session.set_status(
                {"phase": ServicePhase.INIT.value, "serviceStatus": {}}
            )
            raise PreconditionError(message)
        registry = OperandRegistry(registry_manifest)

        service_status = {}
        errors = []
        for operator in registry.operators:
            service = operand_config.get_service(operator.name)
            if service is None:
                continue
            if not operator_installed(registry.status, operator.name):
                log.debug2("Operator %s is not installed yet", operator.name)
                continue
            try:
                kind_status = self._observe_operand(session, operator, service)
            except OdlmError as err:
                log.warning("Failed to observe operand %s: %s", operator.name, err)
                errors.append(err)
                continue
            if kind_status:
                service_status[operator.name] = {"customResourceStatus": kind_status}

        session.set_status(
            {
                "phase": config_phase(service_status).value,
                "serviceStatus": service_status,
            }
        )

        error = MultiError.from_errors(errors)
        if error:
            raise error

    ## Implementation Details ##################################################

    @staticmethod
    def _observe_operand(session, operator, service):
        """Classify each configured kind of one operand by whether its live
        resource exists. Returns None if the operator has no resolved
        ClusterServiceVersion yet.
        """
        deploy_manager = session.deploy_manager
        _, csv = get_operator_csv(deploy_manager, operator)
        if csv is None:
            log.debug2("No ClusterServiceVersion for %s yet", operator.name)
            return None
        namespace = csv["metadata"].get("namespace")

        kind_status = {}
        try:
            examples = parse_alm_examples(csv)
        except MergeError:
            session.record_event(
                EventType.WARNING,
                "InvalidExamples",
                f"Invalid example resources for operator {operator.name}",
            )
            raise
        for example, _, _ in matching_examples(examples, service):
            name = (example.get("metadata") or {}).get("name")
            if not name:
                log.debug("Skipping unnamed %s example", example["kind"])
                continue
            success, current = deploy_manager.get_object_current_state(
                kind=example["kind"],
                name=name,
                namespace=namespace,
                api_version=example.get("apiVersion"),
            )
            if not success:
                log.warning("Failed to look up %s %s/%s", example["kind"], namespace, name)
                kind_status[example["kind"]] = ServicePhase.FAILED.value
            elif current is not None:
                kind_status[example["kind"]] = ServicePhase.RUNNING.value
        return kind_status
