"""
The reference tracker answers which OperandRequests currently depend on an
operand. It is computed from a fresh cluster-wide list of requests on every
call so it can be exercised against any DeployManager.
"""

# Standard
from typing import Dict, Iterable, List, NamedTuple, Optional, Set, Tuple

# First Party
import alog

# Local
from . import constants
from .api import OperandRegistry, OperandRequest
from .deploy_manager import DeployManagerBase
from .exceptions import assert_cluster
from .olm import get_operator_namespace

log = alog.use_channel("REFS")


class Referent(NamedTuple):
    """A request that references an operand"""

    name: str
    namespace: str

    def to_dict(self) -> dict:
        return {"name": self.name, "namespace": self.namespace}


def list_requests(deploy_manager: DeployManagerBase) -> List[OperandRequest]:
    """List every OperandRequest in the cluster"""
    success, manifests = deploy_manager.filter_objects_current_state(
        kind=constants.KIND_OPERAND_REQUEST,
        namespace=None,
        api_version=constants.API_VERSION,
    )
    assert_cluster(success, "Failed to list OperandRequests")
    return [OperandRequest(manifest) for manifest in manifests]


def referents(
    deploy_manager: DeployManagerBase,
    operand: str,
    registry: Optional[str] = None,
    registry_namespace: Optional[str] = None,
    exclude: Iterable[Referent] = (),
) -> Set[Referent]:
    """Compute the set of requests that reference an operand

    Requests that are already being deleted do not count as referents.

    Args:
        deploy_manager:  DeployManagerBase
            The deploy manager used to list requests
        operand:  str
            The operand name to look for
        registry:  Optional[str]
            If given, only references through this registry count
        registry_namespace:  Optional[str]
            If given, only references through a registry in this namespace
            count
        exclude:  Iterable[Referent]
            Requests to leave out of the result, e.g. the one being deleted

    Returns:
        referents:  Set[Referent]
            The (name, namespace) of every referencing request
    """
    excluded = set(exclude)
    found = set()
    for request in list_requests(deploy_manager):
        referent = Referent(request.name, request.namespace)
        if referent in excluded or request.deleting:
            continue
        if request.find_operand(operand, registry, registry_namespace) is not None:
            found.add(referent)
    log.debug2(
        "Found %d referents for %s via %s/%s", len(found), operand, registry_namespace, registry
    )
    return found


def _operator_namespaces(
    deploy_manager: DeployManagerBase,
    request: OperandRequest,
    operand: str,
    registries: Dict[Tuple[str, str], Optional[OperandRegistry]],
) -> Set[str]:
    """Resolve the namespaces the operand's operator is installed into for
    every entry of the request naming it. Entries whose registry or operator
    cannot be found resolve to nothing.
    """
    namespaces = set()
    for entry, found in request.iter_operands():
        if found.name != operand:
            continue
        key = (entry.registry_namespace, entry.registry)
        if key not in registries:
            success, manifest = deploy_manager.get_object_current_state(
                kind=constants.KIND_OPERAND_REGISTRY,
                name=entry.registry,
                namespace=entry.registry_namespace,
                api_version=constants.API_VERSION,
            )
            assert_cluster(
                success,
                f"Failed to fetch OperandRegistry {entry.registry_namespace}/{entry.registry}",
            )
            registries[key] = OperandRegistry(manifest) if manifest else None
        registry = registries[key]
        operator = registry.get_operator(operand) if registry else None
        if operator is not None:
            namespaces.add(get_operator_namespace(operator))
    return namespaces


def operator_namespace_referents(
    deploy_manager: DeployManagerBase,
    operand: str,
    operator_namespace: str,
    exclude: Iterable[Referent] = (),
) -> Set[Referent]:
    """Compute the set of requests whose reference to an operand resolves to
    an operator installed in the given namespace, through any registry.
    Requests that are already being deleted do not count.
    """
    excluded = set(exclude)
    registries = {}
    found = set()
    for request in list_requests(deploy_manager):
        referent = Referent(request.name, request.namespace)
        if referent in excluded or request.deleting:
            continue
        if operator_namespace in _operator_namespaces(
            deploy_manager, request, operand, registries
        ):
            found.add(referent)
    log.debug2(
        "Found %d referents for %s in %s", len(found), operand, operator_namespace
    )
    return found


def is_delete_safe(
    deploy_manager: DeployManagerBase,
    operand: str,
    operator_namespace: str,
    triggering_request: Referent,
) -> bool:
    """A managed resource for an operand may only be removed once no request
    other than the triggering one still references the operand through any
    registry whose operator lives in the resource's namespace
    """
    remaining = operator_namespace_referents(
        deploy_manager,
        operand,
        operator_namespace,
        exclude=[triggering_request],
    )
    if remaining:
        log.debug(
            "Not deleting %s in %s: still referenced by %s",
            operand,
            operator_namespace,
            sorted(remaining),
        )
    return not remaining
