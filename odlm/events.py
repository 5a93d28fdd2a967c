"""
Kubernetes Events attached to ODLM resources so that failures are visible
with `kubectl describe`. A repeated event is folded into the existing Event
object by bumping its count rather than posting a new one.
"""

# Standard
from datetime import datetime, timezone
from enum import Enum
import hashlib

# First Party
import alog

# Local
from . import config
from .deploy_manager import DeployManagerBase

log = alog.use_channel("EVENT")

# Component name reported as the source of every event
EVENT_SOURCE = "operand-deployment-lifecycle-manager"

# Events are truncated to the api server limit
MAX_MESSAGE_LEN = 1024

# Object names are limited to a DNS subdomain
MAX_NAME_LEN = 253

# Number of hex digits of the event digest used in the name
DIGEST_LEN = 10


class EventType(Enum):
    """The two event types supported by the api server"""

    NORMAL = "Normal"
    WARNING = "Warning"


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def event_name(owner: dict, event_type: EventType, reason: str, message: str) -> str:
    """Name an event after its owner, reason and a digest of its content so the
    same event for the same owner always lands on the same object
    """
    metadata = owner.get("metadata", {})
    digest = hashlib.sha1(
        "/".join(
            [
                str(metadata.get("uid")),
                event_type.value,
                reason,
                message,
            ]
        ).encode("utf-8")
    ).hexdigest()[:DIGEST_LEN]
    suffix = f".{reason.lower()}.{digest}"
    prefix = str(metadata.get("name"))[: MAX_NAME_LEN - len(suffix)]
    return f"{prefix}{suffix}"


def make_event(
    owner: dict,
    event_type: EventType,
    reason: str,
    message: str,
) -> dict:
    """Build a core/v1 Event manifest involving the owner object"""
    metadata = owner.get("metadata", {})
    timestamp = _timestamp()
    return {
        "apiVersion": "v1",
        "kind": "Event",
        "metadata": {
            "name": event_name(owner, event_type, reason, message),
            "namespace": metadata.get("namespace"),
        },
        "involvedObject": {
            "apiVersion": owner.get("apiVersion"),
            "kind": owner.get("kind"),
            "name": metadata.get("name"),
            "namespace": metadata.get("namespace"),
            "uid": metadata.get("uid"),
        },
        "type": event_type.value,
        "reason": reason,
        "message": message[:MAX_MESSAGE_LEN],
        "source": {"component": EVENT_SOURCE},
        "reportingComponent": EVENT_SOURCE,
        "firstTimestamp": timestamp,
        "lastTimestamp": timestamp,
        "count": 1,
    }


def _bump_event(deploy_manager: DeployManagerBase, event: dict) -> bool:
    """Increment the count of an existing event in place"""
    metadata = event["metadata"]
    success, current = deploy_manager.get_object_current_state(
        kind="Event",
        name=metadata["name"],
        namespace=metadata["namespace"],
        api_version="v1",
    )
    if not success or current is None:
        log.warning("Failed to fetch existing event %s", metadata["name"])
        return False
    current["count"] = (current.get("count") or 1) + 1
    current["lastTimestamp"] = _timestamp()
    success, _ = deploy_manager.update(current)
    if not success:
        log.warning("Failed to update event %s", metadata["name"])
    return success


def record_event(
    deploy_manager: DeployManagerBase,
    owner: dict,
    event_type: EventType,
    reason: str,
    message: str,
) -> bool:
    """Post an event for the owner object. Events are informational so a
    failure to post one is logged and never raised.

    Returns:
        posted:  bool
            True if the event was created or an existing one was bumped
    """
    log.debug2(
        "Event [%s/%s] for %s: %s",
        event_type.value,
        reason,
        owner.get("metadata", {}).get("name"),
        message,
    )
    if not config.post_events:
        return False
    event = make_event(owner, event_type, reason, message)
    try:
        success, created = deploy_manager.create(event)
        if success and not created:
            log.debug3("Event %s already exists", event["metadata"]["name"])
            return _bump_event(deploy_manager, event)
    except Exception as err:  # pylint: disable=broad-except
        log.warning("Failed to post event %s: %s", reason, err, exc_info=True)
        return False
    if not success:
        log.warning("Failed to post event %s: %s", reason, message)
    return success and created
