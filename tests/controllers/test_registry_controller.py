"""
Tests for the OperandRegistry controller
"""

# First Party
import alog

# Local
from odlm import constants
from odlm.controllers import OperandRegistryController
from odlm.exceptions import ClusterError
from odlm.test_helpers.helpers import (
    ETCD_EXAMPLES,
    OPERATOR_NAMESPACE,
    REGISTRY_NAME,
    REGISTRY_NAMESPACE,
    SOME_OTHER_NAMESPACE,
    TEST_NAMESPACE,
    FailForKind,
    MockDeployManager,
    installed_operator,
    run_reconcile,
    setup_registry,
    setup_request,
    setup_subscription,
)

log = alog.use_channel("TEST")

################################################################################
## Helpers #####################################################################
################################################################################


def reconcile_registry(dm):
    return run_reconcile(
        OperandRegistryController,
        dm,
        constants.KIND_OPERAND_REGISTRY,
        REGISTRY_NAME,
        REGISTRY_NAMESPACE,
    )


def get_registry_status(dm):
    return dm.get_obj(
        constants.KIND_OPERAND_REGISTRY,
        REGISTRY_NAME,
        REGISTRY_NAMESPACE,
        constants.API_VERSION,
    )["status"]


################################################################################
## Tests #######################################################################
################################################################################


def test_registry_no_operators():
    """An empty registry is Initialized"""
    dm = MockDeployManager(resources=[setup_registry(operators=[])])
    result = reconcile_registry(dm)
    assert result.exception is None
    assert get_registry_status(dm) == {"phase": "Initialized", "operatorsStatus": {}}


def test_registry_nothing_requested():
    """Installed operators with no requests leave the registry Ready"""
    dm = MockDeployManager(
        resources=[
            setup_registry(),
            *installed_operator("etcd", OPERATOR_NAMESPACE, ETCD_EXAMPLES),
        ]
    )
    result = reconcile_registry(dm)
    assert result.exception is None
    assert not result.requeue
    assert get_registry_status(dm) == {
        "phase": "Ready",
        "operatorsStatus": {
            "etcd": {"phase": "Ready", "reconcileRequests": []},
            "jenkins": {"phase": "None", "reconcileRequests": []},
        },
    }


def test_registry_reconcile_requests():
    """Requests naming this registry are published per operator, sorted by
    name and namespace
    """
    dm = MockDeployManager(
        resources=[
            setup_registry(),
            *installed_operator("etcd", OPERATOR_NAMESPACE, ETCD_EXAMPLES),
            setup_request(operands=("etcd",), name="b-request"),
            setup_request(operands=("etcd", "jenkins"), name="a-request"),
            setup_request(
                operands=("etcd",),
                name="other-registry",
                registry="some-other-registry",
            ),
            setup_request(
                operands=("etcd",),
                name="other-namespace",
                namespace=SOME_OTHER_NAMESPACE,
            ),
        ]
    )
    result = reconcile_registry(dm)
    assert result.exception is None
    assert not result.requeue

    status = get_registry_status(dm)
    assert status["phase"] == "Running"
    assert status["operatorsStatus"]["etcd"] == {
        "phase": "Ready",
        "reconcileRequests": [
            {"name": "a-request", "namespace": TEST_NAMESPACE},
            {"name": "b-request", "namespace": TEST_NAMESPACE},
            {"name": "other-namespace", "namespace": SOME_OTHER_NAMESPACE},
        ],
    }
    assert status["operatorsStatus"]["jenkins"] == {
        "phase": "None",
        "reconcileRequests": [{"name": "a-request", "namespace": TEST_NAMESPACE}],
    }


def test_registry_deleting_request_not_counted():
    """A request that is being deleted no longer references its operands"""
    deleting = setup_request(operands=("etcd",))
    deleting["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    dm = MockDeployManager(
        resources=[
            setup_registry(),
            *installed_operator("etcd", OPERATOR_NAMESPACE, ETCD_EXAMPLES),
            deleting,
        ]
    )
    reconcile_registry(dm)
    status = get_registry_status(dm)
    assert status["operatorsStatus"]["etcd"]["reconcileRequests"] == []
    assert status["phase"] == "Ready"


def test_registry_pending_operator_requeues():
    """An operator whose Subscription has not resolved is Pending and the
    registry keeps polling
    """
    dm = MockDeployManager(
        resources=[
            setup_registry(operators=None),
            setup_subscription("etcd", OPERATOR_NAMESPACE),
        ]
    )
    result = reconcile_registry(dm)
    assert result.exception is None
    assert result.requeue
    assert get_registry_status(dm)["operatorsStatus"]["etcd"]["phase"] == "Pending"


def test_registry_failed_operator():
    """A failed install fails the registry"""
    dm = MockDeployManager(
        resources=[
            setup_registry(),
            *installed_operator(
                "etcd", OPERATOR_NAMESPACE, ETCD_EXAMPLES, phase="Failed"
            ),
        ]
    )
    result = reconcile_registry(dm)
    assert result.requeue
    status = get_registry_status(dm)
    assert status["phase"] == "Failed"
    assert status["operatorsStatus"]["etcd"]["phase"] == "Failed"


def test_registry_replacing_operator():
    """An operator being upgraded is reported as Updating"""
    dm = MockDeployManager(
        resources=[
            setup_registry(),
            *installed_operator(
                "etcd", OPERATOR_NAMESPACE, ETCD_EXAMPLES, phase="Replacing"
            ),
        ]
    )
    result = reconcile_registry(dm)
    assert result.requeue
    assert get_registry_status(dm)["operatorsStatus"]["etcd"]["phase"] == "Updating"


def test_registry_lookup_failure_keeps_entry():
    """A failed lookup keeps the previously published entry and surfaces the
    error
    """
    previous = {
        "etcd": {
            "phase": "Ready",
            "reconcileRequests": [{"name": "old", "namespace": TEST_NAMESPACE}],
        }
    }
    dm = MockDeployManager(
        resources=[setup_registry(operators_status=previous)],
        get_state_fail=FailForKind(constants.KIND_SUBSCRIPTION, (False, None)),
    )
    result = reconcile_registry(dm)
    assert result.requeue
    assert result.exception is not None

    status = get_registry_status(dm)
    assert status["operatorsStatus"] == previous
    assert status["phase"] == "Running"


def test_registry_single_lookup_failure_is_cluster_error():
    """A single failed operator surfaces its own error"""
    dm = MockDeployManager(
        resources=[
            setup_registry(operators=None),
            *installed_operator("etcd", OPERATOR_NAMESPACE, ETCD_EXAMPLES),
        ],
        get_state_fail=FailForKind(constants.KIND_CSV, (False, None)),
    )
    result = reconcile_registry(dm)
    assert isinstance(result.exception, ClusterError)


def test_registry_idempotent():
    """A second reconcile without changes performs no status write"""
    dm = MockDeployManager(
        resources=[
            setup_registry(),
            *installed_operator("etcd", OPERATOR_NAMESPACE, ETCD_EXAMPLES),
            setup_request(operands=("etcd",)),
        ]
    )
    reconcile_registry(dm)
    assert dm.set_status.call_count == 1
    reconcile_registry(dm)
    assert dm.set_status.call_count == 1
