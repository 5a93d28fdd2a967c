"""
The OperandRegistry controller publishes the install phase of every operator
declared in a registry together with the requests that reference it.
"""

# Standard
from typing import Optional, Tuple
import datetime

# First Party
import alog

# Local
from .. import config, constants
from ..api import OperandRegistry
from ..controller import Controller
from ..exceptions import MultiError, OdlmError
from ..olm import get_operator_csv
from ..reconcile import RequeueParams
from ..references import referents
from ..session import Session
from ..status import OperatorPhase, RegistryPhase, operator_install_phase, registry_phase

log = alog.use_channel("REGST")

# Operator phases that are expected to move on without any change to the
# registry itself
_TRANSITIONAL_PHASES = {
    OperatorPhase.PENDING.value,
    OperatorPhase.INSTALLING.value,
    OperatorPhase.UPDATING.value,
    OperatorPhase.DELETING.value,
}


class OperandRegistryController(Controller):
    """Controller for OperandRegistry"""

    group = constants.GROUP
    version = constants.VERSION
    kind = constants.KIND_OPERAND_REGISTRY

    @alog.logged_function(log.debug)
    def reconcile(self, session: Session):
        registry = OperandRegistry(session.cr_manifest)
        previous = registry.operators_status
        operators_status = {}
        errors = []
        for operator in registry.operators:
            try:
                subscription, csv = get_operator_csv(session.deploy_manager, operator)
                requests = referents(
                    session.deploy_manager,
                    operator.name,
                    registry=registry.name,
                    registry_namespace=registry.namespace,
                )
            except OdlmError as err:
                log.warning("Failed to resolve operator %s: %s", operator.name, err)
                errors.append(err)

                # Keep the last published entry rather than dropping it
                if operator.name in previous:
                    operators_status[operator.name] = previous[operator.name]
                continue

            phase = operator_install_phase(subscription, csv)
            log.debug2("Operator %s is in phase %s", operator.name, phase.value)
            operators_status[operator.name] = {
                "phase": phase.value,
                "reconcileRequests": [ref.to_dict() for ref in sorted(requests)],
            }

        new_status = {
            "phase": registry_phase(operators_status).value,
            "operatorsStatus": operators_status,
        }
        session.set_status(new_status)

        error = MultiError.from_errors(errors)
        if error:
            raise error

    def should_requeue(self, session: Session) -> Tuple[bool, Optional[RequeueParams]]:
        """Keep polling while any operator is still moving between phases"""
        if session.deleting:
            return False, None
        status = session.status or {}
        transitional = [
            name
            for name, entry in (status.get("operatorsStatus") or {}).items()
            if entry.get("phase") in _TRANSITIONAL_PHASES
        ]
        if status.get("phase") != RegistryPhase.FAILED.value and not transitional:
            return False, None
        log.debug2("Requeuing registry %s for %s", session.name, transitional)
        return True, RequeueParams(
            requeue_after=datetime.timedelta(
                seconds=float(config.requeue_after_seconds)
            )
        )
