"""
This module holds the phase vocabulary shared by the ODLM kinds and the pure
functions that derive status content from observed cluster state.

Request status schema:
{
    "phase": <ServicePhase>,
    "members": [
        {
            "name": <operator name>,
            "phase": {"operatorPhase": <CSVPhase>, "operandPhase": <ServicePhase>},
        }
    ],
    "conditions": [
        {"type": ..., "status": ..., "reason": ..., "message": ..., "lastTransitionTime": ...}
    ],
}
"""

# Standard
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple
import copy

# Third Party
from deepdiff import DeepDiff

# First Party
import alog

# Local
from .utils import to_plain_dict

log = alog.use_channel("STTUS")

## Phases ######################################################################


class CSVPhase(Enum):
    """Install phases reported by a ClusterServiceVersion"""

    NONE = ""
    PENDING = "Pending"
    INSTALL_READY = "InstallReady"
    INSTALLING = "Installing"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"
    REPLACING = "Replacing"
    DELETING = "Deleting"

    @classmethod
    def parse(cls, value: Optional[str]) -> "CSVPhase":
        """Parse a raw phase string, treating unrecognized values as Unknown"""
        try:
            return cls(value or "")
        except ValueError:
            log.debug2("Unrecognized CSV phase [%s]", value)
            return cls.UNKNOWN


class OperatorPhase(Enum):
    """Per-operator install phases published on an OperandRegistry"""

    NONE = "None"
    PENDING = "Pending"
    INSTALLING = "Installing"
    READY = "Ready"
    FAILED = "Failed"
    UPDATING = "Updating"
    DELETING = "Deleting"


class RegistryPhase(Enum):
    """Overall OperandRegistry phases"""

    INITIALIZED = "Initialized"
    READY = "Ready"
    RUNNING = "Running"
    FAILED = "Failed"


class ServicePhase(Enum):
    """Phases of operands, OperandConfigs and OperandRequests"""

    INIT = "Init"
    CREATING = "Creating"
    RUNNING = "Running"
    UPDATING = "Updating"
    DELETING = "Deleting"
    FAILED = "Failed"
    PENDING = "Pending"
    NONE = "None"


class BindInfoPhase(Enum):
    """OperandBindInfo phases"""

    INIT = "Init"
    COMPLETED = "Completed"
    WAITING = "Waiting"
    FAILED = "Failed"


# Registry per-operator phases in which the operator is considered installed
INSTALLED_OPERATOR_PHASES = (OperatorPhase.READY, OperatorPhase.UPDATING)

# Mapping from install phase to the phase it contributes to a request, listed
# from highest precedence to lowest
_REQUEST_PHASE_PRECEDENCE: List[Tuple[Tuple[CSVPhase, ...], ServicePhase]] = [
    ((CSVPhase.PENDING,), ServicePhase.PENDING),
    ((CSVPhase.FAILED, CSVPhase.UNKNOWN), ServicePhase.FAILED),
    ((CSVPhase.REPLACING,), ServicePhase.UPDATING),
    ((CSVPhase.DELETING,), ServicePhase.DELETING),
    ((CSVPhase.INSTALLING, CSVPhase.INSTALL_READY), ServicePhase.CREATING),
    ((CSVPhase.NONE,), ServicePhase.NONE),
]

# Severity order used when rolling per-kind statuses up into a config phase
_CONFIG_PHASE_SEVERITY = [
    ServicePhase.FAILED,
    ServicePhase.DELETING,
    ServicePhase.UPDATING,
    ServicePhase.CREATING,
    ServicePhase.PENDING,
    ServicePhase.RUNNING,
]

# The key in the condition used for the timestamp
TIMESTAMP_KEY = "lastTransitionTime"

## Registry ####################################################################


def operator_install_phase(
    subscription: Optional[dict],
    csv: Optional[dict],
) -> OperatorPhase:
    """Determine the per-operator phase for a registry entry from its
    Subscription and the ClusterServiceVersion it resolved to

    Args:
        subscription:  Optional[dict]
            The Subscription for the operator or None if there is none
        csv:  Optional[dict]
            The installed ClusterServiceVersion or None if not resolved yet

    Returns:
        phase:  OperatorPhase
            The install phase to publish
    """
    if subscription is None:
        return OperatorPhase.NONE
    if csv is None:
        return OperatorPhase.PENDING
    csv_phase = CSVPhase.parse((csv.get("status") or {}).get("phase"))
    return {
        CSVPhase.NONE: OperatorPhase.PENDING,
        CSVPhase.PENDING: OperatorPhase.PENDING,
        CSVPhase.INSTALL_READY: OperatorPhase.INSTALLING,
        CSVPhase.INSTALLING: OperatorPhase.INSTALLING,
        CSVPhase.SUCCEEDED: OperatorPhase.READY,
        CSVPhase.FAILED: OperatorPhase.FAILED,
        CSVPhase.UNKNOWN: OperatorPhase.FAILED,
        CSVPhase.REPLACING: OperatorPhase.UPDATING,
        CSVPhase.DELETING: OperatorPhase.DELETING,
    }[csv_phase]


def registry_phase(operators_status: Dict[str, dict]) -> RegistryPhase:
    """Roll the per-operator map up into the overall registry phase"""
    if not operators_status:
        return RegistryPhase.INITIALIZED
    entries = operators_status.values()
    if any(entry.get("phase") == OperatorPhase.FAILED.value for entry in entries):
        return RegistryPhase.FAILED
    if any(entry.get("reconcileRequests") for entry in entries):
        return RegistryPhase.RUNNING
    return RegistryPhase.READY


## Config ######################################################################


def config_phase(service_status: Dict[str, dict]) -> ServicePhase:
    """Derive the OperandConfig phase from the rebuilt service status map. The
    phase is Init until some status has been recorded and otherwise reflects
    the worst observed per-kind status.
    """
    observed = {
        phase
        for operand in service_status.values()
        for phase in (operand.get("customResourceStatus") or {}).values()
    }
    if not observed:
        return ServicePhase.INIT
    for phase in _CONFIG_PHASE_SEVERITY:
        if phase.value in observed:
            return phase
    return ServicePhase.RUNNING


## Request #####################################################################


def get_member(status: dict, name: str) -> Optional[dict]:
    """Find the membership entry for the given operator name"""
    for member in status.get("members") or []:
        if member.get("name") == name:
            return member
    return None


def set_member(
    status: dict,
    name: str,
    operator_phase: CSVPhase,
    operand_phase: ServicePhase,
) -> bool:
    """Upsert a membership entry keyed by operator name. If the entry already
    holds the same phase pair, nothing is written.

    Args:
        status:  dict
            The request status to update in place
        name:  str
            The operator name keying the entry
        operator_phase:  CSVPhase
            The install phase of the backing operator
        operand_phase:  ServicePhase
            The aggregate phase of the operand resources

    Returns:
        changed:  bool
            True if the membership list was modified
    """
    new_phase = {
        "operatorPhase": operator_phase.value,
        "operandPhase": operand_phase.value,
    }
    member = get_member(status, name)
    if member is None:
        status.setdefault("members", []).append({"name": name, "phase": new_phase})
        return True
    if member.get("phase") == new_phase:
        log.debug3("Member [%s] unchanged", name)
        return False
    member["phase"] = new_phase
    return True


def remove_member(status: dict, name: str) -> bool:
    """Drop the membership entry for the given operator name"""
    members = status.get("members") or []
    remaining = [member for member in members if member.get("name") != name]
    if len(remaining) == len(members):
        return False
    status["members"] = remaining
    return True


def operand_phase(kind_statuses: Dict[str, ServicePhase]) -> ServicePhase:
    """Collapse the per-kind results of one operand into a single phase"""
    if not kind_statuses:
        return ServicePhase.NONE
    if ServicePhase.FAILED in kind_statuses.values():
        return ServicePhase.FAILED
    return ServicePhase.RUNNING


def request_phase(members: Iterable[dict]) -> ServicePhase:
    """Scan the install phases of all members in a fixed precedence order. The
    highest precedence condition observed on any member wins, and the phase
    is Running if no member matches any condition.
    """
    observed = {
        CSVPhase.parse((member.get("phase") or {}).get("operatorPhase"))
        for member in members
    }
    for csv_phases, phase in _REQUEST_PHASE_PRECEDENCE:
        if observed.intersection(csv_phases):
            return phase
    return ServicePhase.RUNNING


def make_condition(
    type_name: str,
    status: bool,
    reason: str,
    message: str,
    last_transition_time: Optional[datetime] = None,
) -> dict:
    """Build a status condition entry"""
    return {
        "type": type_name,
        "status": str(status),
        "reason": reason,
        "message": message,
        TIMESTAMP_KEY: (last_transition_time or datetime.now()).isoformat(),
    }


def merge_conditions(previous: List[dict], current: List[dict]) -> List[dict]:
    """Keep the original transition time for conditions that were already
    present so that a repeated failure does not churn the status
    """

    def _key(cond):
        return (cond.get("type"), cond.get("reason"), cond.get("message"))

    previous_times = {_key(cond): cond.get(TIMESTAMP_KEY) for cond in previous or []}
    merged = []
    for cond in current:
        cond = copy.deepcopy(cond)
        if _key(cond) in previous_times:
            cond[TIMESTAMP_KEY] = previous_times[_key(cond)]
        merged.append(cond)
    return merged


## Shared ######################################################################


def status_changed(current_status: dict, new_status: dict) -> bool:
    """Compare two status objects to determine if there is a meaningful change
    between the current status and the proposed new status. A meaningful change
    is defined as any change besides a timestamp.

    Args:
        current_status:  dict
            The raw status dict from the current CR
        new_status:  dict
            The proposed new status

    Returns:
        status_changed:  bool
            True if there is a meaningful change between the current status and
            the new status
    """
    if not isinstance(current_status, dict) or not isinstance(new_status, dict):
        return True
    return bool(
        DeepDiff(
            to_plain_dict(current_status),
            to_plain_dict(new_status),
            exclude_obj_callback=lambda _, path: path.endswith(f"{TIMESTAMP_KEY}']"),
        )
    )


def operator_installed(registry_status: Optional[dict], operator_name: str) -> bool:
    """Check whether a registry status reports the named operator as installed"""
    entry = ((registry_status or {}).get("operatorsStatus") or {}).get(operator_name)
    if not entry:
        return False
    return entry.get("phase") in [phase.value for phase in INSTALLED_OPERATOR_PHASES]
