"""
Read-only lookups against the operator lifecycle manager: the Subscription
for a registry operator, the ClusterServiceVersion it resolved to, and the
example resources bundled in that ClusterServiceVersion.
"""

# Standard
from typing import Iterator, List, Optional, Tuple
import json

# First Party
import alog

# Local
from . import config, constants
from .api import ConfigService, Operator
from .deploy_manager import DeployManagerBase
from .exceptions import MergeError, assert_cluster

log = alog.use_channel("OLM")


def get_operator_namespace(operator: Operator) -> str:
    """Operators installed in cluster mode live in the shared operator
    namespace rather than in their declared namespace
    """
    if operator.install_mode == constants.INSTALL_MODE_CLUSTER:
        return config.cluster_operator_namespace
    return operator.namespace


def get_subscription(
    deploy_manager: DeployManagerBase,
    operator: Operator,
) -> Optional[dict]:
    """Look up the Subscription for a registry operator. The Subscription may
    be named after either the operator or its package.

    Returns:
        subscription:  Optional[dict]
            The Subscription or None if there is none
    """
    namespace = get_operator_namespace(operator)
    for name in dict.fromkeys([operator.name, operator.package_name]):
        if not name:
            continue
        success, subscription = deploy_manager.get_object_current_state(
            kind=constants.KIND_SUBSCRIPTION,
            name=name,
            namespace=namespace,
            api_version=constants.OLM_API_VERSION,
        )
        assert_cluster(
            success, f"Failed to fetch Subscription {namespace}/{name}"
        )
        if subscription is not None:
            if constants.OPREQ_CONTROL_LABEL not in (
                subscription.get("metadata", {}).get("labels") or {}
            ):
                log.debug(
                    "Subscription %s/%s isn't managed by ODLM", namespace, name
                )
            return subscription
    log.debug2(
        "No Subscription %s or %s in namespace %s",
        operator.name,
        operator.package_name,
        namespace,
    )
    return None


def get_cluster_service_version(
    deploy_manager: DeployManagerBase,
    subscription: dict,
) -> Optional[dict]:
    """Look up the ClusterServiceVersion a Subscription resolved to

    Returns:
        csv:  Optional[dict]
            The ClusterServiceVersion or None if it is not resolved or not
            present yet
    """
    sub_status = subscription.get("status") or {}
    csv_name = sub_status.get("installedCSV") or sub_status.get("currentCSV")
    namespace = subscription["metadata"].get("namespace")
    if not csv_name:
        log.debug2(
            "Subscription %s/%s has no ClusterServiceVersion yet",
            namespace,
            subscription["metadata"]["name"],
        )
        return None
    success, csv = deploy_manager.get_object_current_state(
        kind=constants.KIND_CSV,
        name=csv_name,
        namespace=namespace,
        api_version=constants.OLM_API_VERSION,
    )
    assert_cluster(
        success, f"Failed to fetch ClusterServiceVersion {namespace}/{csv_name}"
    )
    return csv


def get_operator_csv(
    deploy_manager: DeployManagerBase,
    operator: Operator,
) -> Tuple[Optional[dict], Optional[dict]]:
    """Convenience to fetch both the Subscription and its resolved
    ClusterServiceVersion for an operator
    """
    subscription = get_subscription(deploy_manager, operator)
    if subscription is None:
        return None, None
    return subscription, get_cluster_service_version(deploy_manager, subscription)


def parse_alm_examples(csv: dict) -> List[dict]:
    """Parse the JSON array of example resources bundled on a
    ClusterServiceVersion. A missing annotation yields an empty list.

    Raises:
        MergeError:  If the annotation is not a JSON array of objects
    """
    metadata = csv.get("metadata", {})
    raw = (metadata.get("annotations") or {}).get(constants.ALM_EXAMPLES_ANNOTATION)
    if not raw:
        log.warning(
            "No %s found in ClusterServiceVersion %s/%s",
            constants.ALM_EXAMPLES_ANNOTATION,
            metadata.get("namespace"),
            metadata.get("name"),
        )
        return []
    try:
        examples = json.loads(raw)
    except ValueError as err:
        raise MergeError(
            f"Malformed {constants.ALM_EXAMPLES_ANNOTATION} in "
            f"{metadata.get('namespace')}/{metadata.get('name')}: {err}"
        ) from err
    if not isinstance(examples, list) or not all(
        isinstance(example, dict) and example.get("kind") for example in examples
    ):
        raise MergeError(
            f"{constants.ALM_EXAMPLES_ANNOTATION} in "
            f"{metadata.get('namespace')}/{metadata.get('name')} "
            "must be a JSON array of resources"
        )
    return examples


def matching_examples(
    examples: List[dict],
    service: ConfigService,
) -> Iterator[Tuple[dict, str, object]]:
    """Yield (example, spec kind, spec config) for every example whose kind is
    configured on the service
    """
    for example in examples:
        match = service.match_kind(example["kind"])
        if match is None:
            log.debug3("Kind %s is not configured for %s", example["kind"], service.name)
            continue
        spec_kind, spec = match
        yield example, spec_kind, spec
