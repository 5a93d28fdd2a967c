"""
The OperandRequest controller materializes the operands named by a request as
managed resources, removes them once nothing references them any more, and
publishes the install and operand phase of every requested operator.

Managed resources are built from the example resources bundled on the
operator's ClusterServiceVersion with the OperandConfig spec for the kind
merged into the example's spec.
"""

# Standard
from typing import Dict, Iterator, List, Optional, Set
import time

# First Party
import alog

# Local
from .. import config, constants
from ..api import ConfigService, OperandConfig, OperandRegistry, OperandRequest
from ..controller import Controller
from ..deploy_manager import DeployManagerBase
from ..events import EventType
from ..exceptions import (
    ConfigError,
    MultiError,
    OdlmError,
    PollTimeoutError,
    PreconditionError,
    assert_cluster,
    assert_config,
)
from ..merge import merge_cr
from ..olm import get_operator_csv, matching_examples, parse_alm_examples
from ..references import Referent, is_delete_safe
from ..session import Session
from ..status import (
    CSVPhase,
    ServicePhase,
    make_condition,
    merge_conditions,
    operand_phase,
    remove_member,
    request_phase,
    set_member,
)
from ..utils import deep_copy, to_plain_dict

log = alog.use_channel("REQST")

## Condition types #############################################################

CONDITION_NOT_FOUND = "NotFound"
CONDITION_OUT_OF_SCOPE = "OutofScope"
CONDITION_FAILED = "Failed"
CONDITION_DELETING = "Deleting"


## Catalog #####################################################################


class _Catalog:
    """Per-reconcile cache of the registries and configs a request refers to.
    Nothing is cached across reconciles.
    """

    def __init__(self, deploy_manager: DeployManagerBase):
        self.deploy_manager = deploy_manager
        self._cache = {}

    def registry(self, name: str, namespace: str) -> Optional[OperandRegistry]:
        return self._get(constants.KIND_OPERAND_REGISTRY, OperandRegistry, name, namespace)

    def config(self, name: str, namespace: str) -> Optional[OperandConfig]:
        return self._get(constants.KIND_OPERAND_CONFIG, OperandConfig, name, namespace)

    def registries_listing(self, operand: str, referent: Referent) -> Iterator[OperandRegistry]:
        """Yield registries whose published status records the referent as
        requesting the operand
        """
        success, manifests = self.deploy_manager.filter_objects_current_state(
            kind=constants.KIND_OPERAND_REGISTRY,
            namespace=None,
            api_version=constants.API_VERSION,
        )
        assert_cluster(success, "Failed to list OperandRegistries")
        for manifest in manifests:
            registry = OperandRegistry(manifest)
            entry = registry.operators_status.get(operand) or {}
            if referent.to_dict() in (entry.get("reconcileRequests") or []):
                yield registry

    def _get(self, kind, view_class, name, namespace):
        key = (kind, namespace, name)
        if key not in self._cache:
            success, manifest = self.deploy_manager.get_object_current_state(
                kind=kind,
                name=name,
                namespace=namespace,
                api_version=constants.API_VERSION,
            )
            assert_cluster(success, f"Failed to fetch {kind} {namespace}/{name}")
            self._cache[key] = view_class(manifest) if manifest else None
        return self._cache[key]


## Controller ##################################################################


class OperandRequestController(Controller):
    """Controller for OperandRequest"""

    group = constants.GROUP
    version = constants.VERSION
    kind = constants.KIND_OPERAND_REQUEST

    @alog.logged_function(log.debug)
    def reconcile(self, session: Session):
        request = OperandRequest(session.cr_manifest)
        referent = Referent(request.name, request.namespace)
        catalog = _Catalog(session.deploy_manager)
        status = deep_copy(session.status)
        errors = []
        conditions = []

        # Operands dropped from the spec since the last reconcile
        requested = {operand.name for _, operand in request.iter_operands()}
        for member in list(status.get("members") or []):
            name = member.get("name")
            if name in requested:
                continue
            log.debug("Operand %s was removed from %s", name, referent)
            try:
                self._remove_operand(session, request, catalog, name)
            except OdlmError as err:
                errors.append(err)
                conditions.append(
                    make_condition(CONDITION_DELETING, False, type(err).__name__, str(err))
                )
                set_member(
                    status,
                    name,
                    CSVPhase.parse((member.get("phase") or {}).get("operatorPhase")),
                    ServicePhase.DELETING,
                )
            else:
                remove_member(status, name)

        # Converge every requested operand
        results: Dict[str, Dict[str, ServicePhase]] = {}
        out_of_scope: Set[str] = set()
        for entry, operand in request.iter_operands():
            results.setdefault(operand.name, {})
            try:
                registry = catalog.registry(entry.registry, entry.registry_namespace)
                operator = registry.get_operator(operand.name) if registry else None
                if operator is not None and operator.is_private and (
                    request.namespace != registry.namespace
                ):
                    out_of_scope.add(operand.name)
                    message = (
                        f"Operator {operand.name} in OperandRegistry "
                        f"{registry.namespace}/{registry.name} is private"
                    )
                    session.record_event(EventType.WARNING, CONDITION_OUT_OF_SCOPE, message)
                    raise ConfigError(message)
                kind_status = self._reconcile_operand(
                    session, catalog, entry, operand.name, errors
                )
                # A kind that failed through any entry stays failed
                for kind, phase in kind_status.items():
                    if results[operand.name].get(kind) != ServicePhase.FAILED:
                        results[operand.name][kind] = phase
            except OdlmError as err:
                log.warning("Failed to reconcile operand %s: %s", operand.name, err)
                errors.append(err)
                cond_type = CONDITION_FAILED
                if isinstance(err, PreconditionError):
                    cond_type = CONDITION_NOT_FOUND
                elif operand.name in out_of_scope:
                    cond_type = CONDITION_OUT_OF_SCOPE
                if operand.name not in out_of_scope:
                    session.record_event(EventType.WARNING, cond_type, str(err))
                conditions.append(
                    make_condition(cond_type, False, type(err).__name__, str(err))
                )
                results[operand.name][""] = ServicePhase.FAILED

        # Membership is derived from the install state independently of the
        # operand results above. An operand named by several entries gets one
        # member whose operator phase comes from the first entry.
        membered: Set[str] = set()
        for entry, operand in request.iter_operands():
            if operand.name in membered:
                continue
            membered.add(operand.name)
            if operand.name in out_of_scope:
                operator_phase = CSVPhase.FAILED
            else:
                try:
                    operator_phase = self._operator_phase(
                        session.deploy_manager, catalog, entry, operand.name
                    )
                except OdlmError as err:
                    errors.append(err)
                    operator_phase = CSVPhase.UNKNOWN
            set_member(
                status, operand.name, operator_phase, operand_phase(results[operand.name])
            )

        status["phase"] = request_phase(status.get("members") or []).value
        status["conditions"] = merge_conditions(status.get("conditions") or [], conditions)
        session.set_status(status)

        error = MultiError.from_errors(errors)
        if error:
            raise error

    @alog.logged_function(log.debug)
    def finalize(self, session: Session):
        request = OperandRequest(session.cr_manifest)
        catalog = _Catalog(session.deploy_manager)
        status = deep_copy(session.status)
        status["phase"] = ServicePhase.DELETING.value
        session.set_status(status)

        names = [operand.name for _, operand in request.iter_operands()]
        names.extend(member.get("name") for member in request.members)
        errors = []
        for name in dict.fromkeys(names):
            try:
                self._remove_operand(session, request, catalog, name)
            except OdlmError as err:
                log.warning("Failed to remove operand %s: %s", name, err)
                errors.append(err)

        error = MultiError.from_errors(errors)
        if error:
            raise error

    ## Convergence #############################################################

    def _reconcile_operand(
        self,
        session: Session,
        catalog: _Catalog,
        entry,
        operand_name: str,
        errors: List[Exception],
    ) -> Dict[str, ServicePhase]:
        """Create or update the managed resources of one operand. Failures of
        individual kinds are appended to errors so that sibling kinds still
        converge.

        Returns:
            kind_status:  Dict[str, ServicePhase]
                The result for every resource kind that was attempted
        """
        operand_config = catalog.config(entry.registry, entry.registry_namespace)
        if operand_config is None:
            raise PreconditionError(
                f"OperandConfig {entry.registry_namespace}/{entry.registry} not found"
            )
        service = operand_config.get_service(operand_name)
        if service is None:
            log.debug2("No service configured for %s", operand_name)
            return {}
        registry = catalog.registry(entry.registry, entry.registry_namespace)
        if registry is None:
            raise PreconditionError(
                f"OperandRegistry {entry.registry_namespace}/{entry.registry} not found"
            )
        operator = registry.get_operator(operand_name)
        if operator is None:
            raise ConfigError(
                f"Operator {operand_name} not declared in OperandRegistry "
                f"{registry.namespace}/{registry.name}"
            )

        deploy_manager = session.deploy_manager
        _, csv = get_operator_csv(deploy_manager, operator)
        if csv is None:
            log.debug("Operator %s has no ClusterServiceVersion yet", operand_name)
            return {}
        namespace = csv["metadata"]["namespace"]

        kind_status = {}
        for example, _, spec in matching_examples(parse_alm_examples(csv), service):
            try:
                self._apply_resource(deploy_manager, example, spec, namespace, operand_name)
            except OdlmError as err:
                log.warning("Failed to apply %s for %s: %s", example["kind"], operand_name, err)
                errors.append(err)
                kind_status[example["kind"]] = ServicePhase.FAILED
            else:
                kind_status[example["kind"]] = ServicePhase.RUNNING
        return kind_status

    @staticmethod
    def _apply_resource(
        deploy_manager: DeployManagerBase,
        example: dict,
        spec: dict,
        namespace: str,
        operand_name: str,
    ):
        """Create the resource for an example, falling back to overwriting only
        the spec of the existing resource
        """
        kind = example["kind"]
        resource = deep_copy(example)
        resource["spec"] = merge_cr(example.get("spec"), to_plain_dict(spec))
        metadata = resource.setdefault("metadata", {})
        name = metadata.get("name")
        assert_config(name, f"Example {kind} for {operand_name} has no name")
        for field in ("resourceVersion", "uid", "creationTimestamp"):
            metadata.pop(field, None)
        metadata["namespace"] = namespace
        labels = _managed_labels(operand_name)
        metadata["labels"] = {**(metadata.get("labels") or {}), **labels}

        success, created = deploy_manager.create(resource)
        assert_cluster(success, f"Failed to create {kind} {namespace}/{name}")
        if created:
            log.info("Created %s %s/%s", kind, namespace, name)
            return

        success, current = deploy_manager.get_object_current_state(
            kind=kind,
            name=name,
            namespace=namespace,
            api_version=resource.get("apiVersion"),
        )
        assert_cluster(
            success and current is not None,
            f"Failed to fetch existing {kind} {namespace}/{name}",
        )
        current_labels = current["metadata"].get("labels") or {}
        if current.get("spec") == resource["spec"] and all(
            current_labels.get(key) == val for key, val in labels.items()
        ):
            log.debug2("%s %s/%s is up to date", kind, namespace, name)
            return

        current["spec"] = resource["spec"]
        current["metadata"]["labels"] = {**current_labels, **labels}
        success, _ = deploy_manager.update(current)
        assert_cluster(success, f"Failed to update {kind} {namespace}/{name}")
        log.info("Updated %s %s/%s", kind, namespace, name)

    @staticmethod
    def _operator_phase(
        deploy_manager: DeployManagerBase,
        catalog: _Catalog,
        entry,
        operand_name: str,
    ) -> CSVPhase:
        """Look up the current install phase of the operator backing an
        operand
        """
        registry = catalog.registry(entry.registry, entry.registry_namespace)
        operator = registry.get_operator(operand_name) if registry else None
        if operator is None:
            return CSVPhase.NONE
        subscription, csv = get_operator_csv(deploy_manager, operator)
        if subscription is None:
            return CSVPhase.NONE
        if csv is None:
            return CSVPhase.PENDING
        return CSVPhase.parse((csv.get("status") or {}).get("phase"))

    ## Deletion ################################################################

    def _remove_operand(
        self,
        session: Session,
        request: OperandRequest,
        catalog: _Catalog,
        operand_name: str,
    ):
        """Run the deletion path for an operand through every registry this
        request may have referenced it by
        """
        referent = Referent(request.name, request.namespace)
        registries = {}
        for entry in request.requests:
            registry = catalog.registry(entry.registry, entry.registry_namespace)
            if registry is not None:
                registries[(registry.namespace, registry.name)] = registry
        for registry in catalog.registries_listing(operand_name, referent):
            registries.setdefault((registry.namespace, registry.name), registry)

        errors = []
        for registry in registries.values():
            try:
                self._delete_operand(session, catalog, registry, operand_name, referent)
            except OdlmError as err:
                errors.append(err)
        error = MultiError.from_errors(errors)
        if error:
            raise error

    @alog.timed_function(log.debug)
    def _delete_operand(
        self,
        session: Session,
        catalog: _Catalog,
        registry: OperandRegistry,
        operand_name: str,
        referent: Referent,
    ):
        operator = registry.get_operator(operand_name)
        operand_config = catalog.config(registry.name, registry.namespace)
        service: Optional[ConfigService] = (
            operand_config.get_service(operand_name) if operand_config else None
        )
        if operator is None or service is None:
            log.debug2("Nothing to delete for %s via %s", operand_name, registry)
            return

        deploy_manager = session.deploy_manager
        _, csv = get_operator_csv(deploy_manager, operator)
        if csv is None:
            log.debug2("No ClusterServiceVersion for %s, nothing to delete", operand_name)
            return
        namespace = csv["metadata"]["namespace"]

        # Any registry may resolve to the same operator installation
        if not is_delete_safe(deploy_manager, operand_name, namespace, referent):
            log.info("Keeping %s: still requested by other OperandRequests", operand_name)
            return

        errors = []
        for example, _, _ in matching_examples(parse_alm_examples(csv), service):
            try:
                self._delete_resource(deploy_manager, example, namespace, operand_name)
            except OdlmError as err:
                log.warning("Failed to delete %s for %s: %s", example["kind"], operand_name, err)
                errors.append(err)
        if not errors:
            session.record_event(
                EventType.NORMAL, "Deleted", f"Deleted operand {operand_name}"
            )
        error = MultiError.from_errors(errors)
        if error:
            raise error

    def _delete_resource(
        self,
        deploy_manager: DeployManagerBase,
        example: dict,
        namespace: str,
        operand_name: str,
    ):
        """Delete the managed resource for one example and wait for it to be
        gone
        """
        kind = example["kind"]
        api_version = example.get("apiVersion")
        name = (example.get("metadata") or {}).get("name")
        if not name:
            return

        success, current = deploy_manager.get_object_current_state(
            kind=kind, name=name, namespace=namespace, api_version=api_version
        )
        assert_cluster(success, f"Failed to fetch {kind} {namespace}/{name}")
        if current is None:
            log.debug2("%s %s/%s already absent", kind, namespace, name)
            return
        labels = current["metadata"].get("labels") or {}
        if labels.get(constants.OPERAND_LABEL) != operand_name:
            log.info("%s %s/%s is not managed for %s", kind, namespace, name, operand_name)
            return

        success, _ = deploy_manager.delete_all_of(
            kind=kind,
            namespace=namespace,
            api_version=api_version,
            label_selector=f"{constants.OPERAND_LABEL}={operand_name}",
            field_selector=f"metadata.name={name}",
        )
        assert_cluster(success, f"Failed to delete {kind} {namespace}/{name}")
        self._wait_for_removal(
            deploy_manager, kind, api_version, name, namespace, current["metadata"].get("uid")
        )

    @staticmethod
    def _wait_for_removal(  # pylint: disable=too-many-arguments
        deploy_manager: DeployManagerBase,
        kind: str,
        api_version: str,
        name: str,
        namespace: str,
        uid: Optional[str],
    ):
        """Poll until the object is confirmed absent. An object that comes back
        under a new uid was recreated by someone else and is reported as an
        error rather than as a successful deletion.

        Raises:
            PollTimeoutError:  If the object is still present after the timeout
                or was recreated
        """
        interval = float(config.delete_poll_interval_seconds)
        deadline = time.monotonic() + float(config.delete_poll_timeout_seconds)
        while True:
            success, current = deploy_manager.get_object_current_state(
                kind=kind, name=name, namespace=namespace, api_version=api_version
            )
            assert_cluster(success, f"Failed to fetch {kind} {namespace}/{name}")
            if current is None:
                log.debug("%s %s/%s is deleted", kind, namespace, name)
                return
            if uid and current["metadata"].get("uid") != uid:
                raise PollTimeoutError(
                    f"{kind} {namespace}/{name} was recreated while being deleted"
                )
            if time.monotonic() >= deadline:
                raise PollTimeoutError(
                    f"Timed out waiting for {kind} {namespace}/{name} to be deleted"
                )
            log.debug3("Waiting %ss for %s %s/%s", interval, kind, namespace, name)
            time.sleep(interval)


## Implementation Details ######################################################


def _managed_labels(operand_name: str) -> Dict[str, str]:
    return {
        constants.OPREQ_CONTROL_LABEL: "true",
        constants.OPERAND_LABEL: operand_name,
    }
