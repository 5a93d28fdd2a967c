"""
Tests for the OperandConfig controller
"""

# First Party
import alog

# Local
from odlm import constants
from odlm.controllers import OperandConfigController
from odlm.exceptions import MergeError, PreconditionError
from odlm.test_helpers.helpers import (
    ETCD_EXAMPLES,
    OPERATOR_NAMESPACE,
    REGISTRY_NAME,
    REGISTRY_NAMESPACE,
    FailForKind,
    MockDeployManager,
    common_services,
    run_reconcile,
    setup_config,
    setup_cr,
    setup_csv,
    setup_registry,
    setup_subscription,
)

log = alog.use_channel("TEST")

################################################################################
## Helpers #####################################################################
################################################################################


def etcd_cluster(name="example", namespace=OPERATOR_NAMESPACE):
    return setup_cr(
        kind="EtcdCluster",
        api_version="etcd.database.coreos.com/v1beta2",
        name=name,
        namespace=namespace,
        spec={"size": 1},
    )


def reconcile_config(dm):
    return run_reconcile(
        OperandConfigController,
        dm,
        constants.KIND_OPERAND_CONFIG,
        REGISTRY_NAME,
        REGISTRY_NAMESPACE,
    )


def get_config_status(dm):
    return dm.get_obj(
        constants.KIND_OPERAND_CONFIG,
        REGISTRY_NAME,
        REGISTRY_NAMESPACE,
        constants.API_VERSION,
    ).get("status")


def report_installed(dm, *operators):
    success, changed = dm.set_status(
        kind=constants.KIND_OPERAND_REGISTRY,
        name=REGISTRY_NAME,
        namespace=REGISTRY_NAMESPACE,
        api_version=constants.API_VERSION,
        status={
            "phase": "Ready",
            "operatorsStatus": {
                name: {"phase": "Ready", "reconcileRequests": []} for name in operators
            },
        },
    )
    assert success and changed


################################################################################
## Tests #######################################################################
################################################################################


def test_config_missing_registry():
    """A config without its registry waits in Init and reports the reason"""
    dm = MockDeployManager(resources=[setup_config()])
    result = reconcile_config(dm)
    assert result.requeue
    assert isinstance(result.exception, PreconditionError)
    assert get_config_status(dm) == {"phase": "Init", "serviceStatus": {}}
    assert dm.get_events(namespace=REGISTRY_NAMESPACE, reason="NotFound")


def test_config_no_live_resources():
    """Installed operators without live resources publish no entries"""
    dm = MockDeployManager(resources=common_services())
    result = reconcile_config(dm)
    assert result.exception is None
    assert not result.requeue
    assert get_config_status(dm) == {"phase": "Init", "serviceStatus": {}}


def test_config_live_resource_running():
    """A live resource for a configured kind is reported Running"""
    dm = MockDeployManager(resources=[*common_services(), etcd_cluster()])
    result = reconcile_config(dm)
    assert result.exception is None
    assert get_config_status(dm) == {
        "phase": "Running",
        "serviceStatus": {
            "etcd": {"customResourceStatus": {"EtcdCluster": "Running"}},
        },
    }


def test_config_waits_for_installed_operator():
    """No operand is reported Running before its registry reports the
    operator installed
    """
    dm = MockDeployManager(
        resources=[*common_services(registry_status=None), etcd_cluster()]
    )
    reconcile_config(dm)
    assert get_config_status(dm) == {"phase": "Init", "serviceStatus": {}}

    report_installed(dm, "jenkins")
    reconcile_config(dm)
    assert get_config_status(dm)["serviceStatus"] == {}

    report_installed(dm, "etcd")
    reconcile_config(dm)
    assert get_config_status(dm)["serviceStatus"] == {
        "etcd": {"customResourceStatus": {"EtcdCluster": "Running"}},
    }


def test_config_lookup_failure_marks_kind_failed():
    """A failed lookup of a live resource reports the kind Failed"""
    dm = MockDeployManager(
        resources=[*common_services(), etcd_cluster()],
        get_state_fail=FailForKind("EtcdCluster", (False, None)),
    )
    result = reconcile_config(dm)
    assert result.requeue
    assert get_config_status(dm) == {
        "phase": "Failed",
        "serviceStatus": {
            "etcd": {"customResourceStatus": {"EtcdCluster": "Failed"}},
        },
    }


def test_config_unconfigured_operator_skipped():
    """Operators without a service entry are not observed"""
    dm = MockDeployManager(
        resources=[
            setup_registry(operators_status=["etcd", "jenkins"]),
            setup_config(services=[{"name": "jenkins", "spec": {}}]),
            *common_services()[2:],
            etcd_cluster(),
        ]
    )
    reconcile_config(dm)
    assert get_config_status(dm) == {"phase": "Init", "serviceStatus": {}}


def test_config_invalid_examples():
    """Malformed examples are reported and do not stop other operands"""
    dm = MockDeployManager(
        resources=[
            setup_registry(operators_status=["etcd", "jenkins"]),
            setup_config(),
            setup_subscription("etcd", OPERATOR_NAMESPACE, "etcd.v0.0.1"),
            setup_csv("etcd.v0.0.1", OPERATOR_NAMESPACE, raw_examples="not json"),
        ]
    )
    result = reconcile_config(dm)
    assert isinstance(result.exception, MergeError)
    assert dm.get_events(namespace=REGISTRY_NAMESPACE, reason="InvalidExamples")
    assert get_config_status(dm) == {"phase": "Init", "serviceStatus": {}}


def test_config_missing_examples_annotation():
    """A CSV without examples has nothing to observe"""
    dm = MockDeployManager(
        resources=[
            setup_registry(operators_status=["etcd"]),
            setup_config(),
            setup_subscription("etcd", OPERATOR_NAMESPACE, "etcd.v0.0.1"),
            setup_csv("etcd.v0.0.1", OPERATOR_NAMESPACE),
        ]
    )
    result = reconcile_config(dm)
    assert result.exception is None
    assert get_config_status(dm) == {"phase": "Init", "serviceStatus": {}}


def test_config_never_writes_operands():
    """The config controller only observes"""
    dm = MockDeployManager(resources=common_services())
    reconcile_config(dm)
    for call in dm.create.call_args_list:
        assert call.args[0]["kind"] == "Event"
    dm.update.assert_not_called()
    dm.delete_all_of.assert_not_called()
    assert not dm.has_obj(
        "EtcdCluster", "example", OPERATOR_NAMESPACE, ETCD_EXAMPLES[0]["apiVersion"]
    )
