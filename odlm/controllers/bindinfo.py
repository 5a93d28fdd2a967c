"""
The OperandBindInfo controller replicates the public Secrets and ConfigMaps of
an operand into the namespace of every OperandRequest that references it.
Each copy is owned by the target request so that it is garbage collected
together with the request.
"""

# Standard
from typing import List, Optional, Tuple

# First Party
import alog

# Local
from .. import constants
from ..api import OperandBindInfo, OperandRegistry, OperandRequest
from ..controller import Controller
from ..deploy_manager import DeployManagerBase, update_owner_references
from ..events import EventType
from ..exceptions import (
    ConfigError,
    MultiError,
    OdlmError,
    PreconditionError,
    assert_cluster,
)
from ..references import referents
from ..session import Session
from ..status import BindInfoPhase, operator_installed
from ..utils import to_plain_dict

log = alog.use_channel("BNDIF")

# The kinds that can be bound, keyed by the binding field that names them
BINDABLE_KINDS = (("secret", "Secret"), ("configmap", "ConfigMap"))

# Fields copied from the source object for each kind
COPIED_FIELDS = {
    "Secret": ("type", "data", "stringData"),
    "ConfigMap": ("data", "binaryData"),
}


class OperandBindInfoController(Controller):
    """Controller for OperandBindInfo"""

    group = constants.GROUP
    version = constants.VERSION
    kind = constants.KIND_OPERAND_BIND_INFO

    @alog.logged_function(log.debug)
    def reconcile(self, session: Session):
        bindinfo = OperandBindInfo(session.cr_manifest)
        deploy_manager = session.deploy_manager

        registry = self._get_registry(session, bindinfo)
        if not operator_installed(registry.status, bindinfo.operand):
            log.debug("Operator %s is not installed yet", bindinfo.operand)
            session.set_status(
                self._make_status(BindInfoPhase.WAITING, session.status)
            )
            return

        targets = sorted(
            referent
            for referent in referents(
                deploy_manager,
                bindinfo.operand,
                registry=bindinfo.registry,
                registry_namespace=bindinfo.registry_namespace,
            )
            if referent.namespace != bindinfo.namespace
        )
        log.debug2("Replicating %s to %s", bindinfo, targets)

        errors = []
        waiting = False
        synced = set()
        for target in targets:
            success, request_manifest = deploy_manager.get_object_current_state(
                kind=constants.KIND_OPERAND_REQUEST,
                name=target.name,
                namespace=target.namespace,
                api_version=constants.API_VERSION,
            )
            if not success or request_manifest is None:
                # The request went away between the listing and now
                log.debug("OperandRequest %s/%s not available", target.namespace, target.name)
                continue
            request = OperandRequest(request_manifest)
            target_complete = True
            for source_name, target_name, kind in self._copies(bindinfo, request):
                try:
                    copied = self._copy_resource(
                        deploy_manager, kind, source_name, bindinfo.namespace, target_name, request
                    )
                except OdlmError as err:
                    log.warning(
                        "Failed to copy %s %s to %s: %s", kind, source_name, target.namespace, err
                    )
                    errors.append(err)
                    target_complete = False
                    continue
                if not copied:
                    waiting = True
                    target_complete = False
                    session.record_event(
                        EventType.WARNING,
                        "NotFound",
                        f"{kind} {bindinfo.namespace}/{source_name} not found",
                    )
            if target_complete:
                synced.add(target.namespace)

        if errors:
            phase = BindInfoPhase.FAILED
        elif waiting:
            phase = BindInfoPhase.WAITING
        elif not targets:
            phase = BindInfoPhase.INIT
        else:
            phase = BindInfoPhase.COMPLETED
        session.set_status(
            {"phase": phase.value, "requestNamespaces": sorted(synced)}
        )

        error = MultiError.from_errors(errors)
        if error:
            raise error

    def stable_phases(self) -> Tuple[str, ...]:
        return (BindInfoPhase.INIT.value, BindInfoPhase.COMPLETED.value)

    ## Implementation Details ##################################################

    @staticmethod
    def _make_status(phase: BindInfoPhase, previous: Optional[dict]) -> dict:
        return {
            "phase": phase.value,
            "requestNamespaces": (previous or {}).get("requestNamespaces") or [],
        }

    def _get_registry(self, session: Session, bindinfo: OperandBindInfo) -> OperandRegistry:
        """Fetch the registry that declares the bound operand"""
        success, manifest = session.get_object_current_state(
            kind=constants.KIND_OPERAND_REGISTRY,
            name=bindinfo.registry,
            namespace=bindinfo.registry_namespace,
            api_version=constants.API_VERSION,
        )
        assert_cluster(
            success,
            f"Failed to fetch OperandRegistry {bindinfo.registry_namespace}/{bindinfo.registry}",
        )
        if manifest is None:
            message = (
                f"OperandRegistry {bindinfo.registry_namespace}/{bindinfo.registry} not found"
            )
            session.record_event(EventType.WARNING, "NotFound", message)
            session.set_status(self._make_status(BindInfoPhase.WAITING, session.status))
            raise PreconditionError(message)

        registry = OperandRegistry(manifest)
        if registry.get_operator(bindinfo.operand) is None:
            message = f"Operator {bindinfo.operand} not declared in {registry}"
            session.record_event(EventType.WARNING, "NotFound", message)
            session.set_status(self._make_status(BindInfoPhase.FAILED, session.status))
            raise ConfigError(message)
        return registry

    @staticmethod
    def _copies(
        bindinfo: OperandBindInfo,
        request: OperandRequest,
    ) -> List[Tuple[str, str, str]]:
        """List the (source name, target name, kind) of every object to copy
        into the request's namespace. The request may rename the copies with
        a binding under the same scope key.
        """
        found = request.find_operand(
            bindinfo.operand, bindinfo.registry, bindinfo.registry_namespace
        )
        overrides = found[1].bindings if found else {}
        copies = []
        for scope_key, binding in sorted(bindinfo.public_bindings.items()):
            override = overrides.get(scope_key) or {}
            for field, kind in BINDABLE_KINDS:
                source_name = (binding or {}).get(field)
                if source_name:
                    copies.append((source_name, override.get(field) or source_name, kind))
        return copies

    @staticmethod
    def _copy_resource(  # pylint: disable=too-many-arguments
        deploy_manager: DeployManagerBase,
        kind: str,
        source_name: str,
        source_namespace: str,
        target_name: str,
        request: OperandRequest,
    ) -> bool:
        """Create or update the copy of one Secret or ConfigMap in the
        namespace of the request

        Returns:
            copied:  bool
                False if the source object does not exist yet
        """
        success, source = deploy_manager.get_object_current_state(
            kind=kind, name=source_name, namespace=source_namespace, api_version="v1"
        )
        assert_cluster(success, f"Failed to fetch {kind} {source_namespace}/{source_name}")
        if source is None:
            return False

        copy = {
            "apiVersion": "v1",
            "kind": kind,
            "metadata": {
                "name": target_name,
                "namespace": request.namespace,
                "labels": {constants.OPREQ_CONTROL_LABEL: "true"},
            },
        }
        for field in COPIED_FIELDS[kind]:
            if field in source:
                copy[field] = to_plain_dict(source[field])
        update_owner_references(deploy_manager, to_plain_dict(request.manifest), copy)

        success, created = deploy_manager.create(copy)
        assert_cluster(success, f"Failed to create {kind} {request.namespace}/{target_name}")
        if created:
            log.info("Copied %s %s to %s/%s", kind, source_name, request.namespace, target_name)
            return True

        success, current = deploy_manager.get_object_current_state(
            kind=kind, name=target_name, namespace=request.namespace, api_version="v1"
        )
        assert_cluster(
            success and current is not None,
            f"Failed to fetch {kind} {request.namespace}/{target_name}",
        )
        updated = dict(current)
        updated["metadata"] = dict(current["metadata"])
        updated["metadata"]["ownerReferences"] = copy["metadata"]["ownerReferences"]
        updated["metadata"]["labels"] = {
            **(current["metadata"].get("labels") or {}),
            **copy["metadata"]["labels"],
        }
        for field in COPIED_FIELDS[kind]:
            if field in copy:
                updated[field] = copy[field]
            else:
                updated.pop(field, None)
        if updated == current:
            log.debug2("%s %s/%s is up to date", kind, request.namespace, target_name)
            return True
        success, _ = deploy_manager.update(updated)
        assert_cluster(success, f"Failed to update {kind} {request.namespace}/{target_name}")
        log.info("Updated %s %s/%s", kind, request.namespace, target_name)
        return True
