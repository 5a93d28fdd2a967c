"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from typing import List, Optional
from unittest import mock
import copy
import inspect
import json
import os

# First Party
import aconfig
import alog

# Local
from odlm import constants
from odlm.config import library_config as config_detail_dict
from odlm.deploy_manager.dry_run_deploy_manager import DryRunDeployManager
from odlm.reconcile import ReconcileManager

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_INSTANCE_UID = "12345678-1234-1234-1234-123456789012"
TEST_NAMESPACE = "test"
SOME_OTHER_NAMESPACE = "somewhere"

# Names shared by the common fixtures
REGISTRY_NAME = "common-service"
REGISTRY_NAMESPACE = "ibm-common-services"
OPERATOR_NAMESPACE = "etcd-operator"
JENKINS_NAMESPACE = "jenkins-operator"
CATALOG_SOURCE = "community-operators"
CATALOG_NAMESPACE = "openshift-marketplace"

JENKINS_SECRET = "jenkins-operator-credentials-example"
JENKINS_CONFIGMAP = "jenkins-operator-init-configuration-example"


## CRs #########################################################################


def setup_cr(
    kind="OperandRequest",
    api_version=constants.API_VERSION,
    name="test-instance",
    namespace=TEST_NAMESPACE,
    spec=None,
    status=None,
    **kwargs,
):
    cr_dict = copy.deepcopy(kwargs)
    cr_dict.setdefault("kind", kind)
    cr_dict.setdefault("apiVersion", api_version)
    metadata = cr_dict.setdefault("metadata", {})
    metadata.setdefault("name", name)
    metadata.setdefault("namespace", namespace)
    metadata.setdefault("uid", TEST_INSTANCE_UID)
    cr_dict["spec"] = copy.deepcopy(spec or {})
    if status is not None:
        cr_dict["status"] = copy.deepcopy(status)
    return aconfig.Config(cr_dict, override_env_vars=False)


def etcd_operator(**kwargs):
    entry = {
        "name": "etcd",
        "namespace": OPERATOR_NAMESPACE,
        "sourceName": CATALOG_SOURCE,
        "sourceNamespace": CATALOG_NAMESPACE,
        "packageName": "etcd",
        "channel": "singlenamespace-alpha",
        "scope": "public",
    }
    entry.update(kwargs)
    return entry


def jenkins_operator(**kwargs):
    entry = {
        "name": "jenkins",
        "namespace": JENKINS_NAMESPACE,
        "sourceName": CATALOG_SOURCE,
        "sourceNamespace": CATALOG_NAMESPACE,
        "packageName": "jenkins-operator",
        "channel": "alpha",
        "scope": "public",
    }
    entry.update(kwargs)
    return entry


def setup_registry(
    operators=None,
    operators_status=None,
    name=REGISTRY_NAME,
    namespace=REGISTRY_NAMESPACE,
):
    """Build an OperandRegistry. If operators_status is given as a list of
    operator names, they are reported as installed with no requests.
    """
    if operators is None:
        operators = [etcd_operator(), jenkins_operator()]
    status = None
    if isinstance(operators_status, (list, tuple)):
        status = {
            "phase": "Ready",
            "operatorsStatus": {
                op_name: {"phase": "Ready", "reconcileRequests": []}
                for op_name in operators_status
            },
        }
    elif operators_status is not None:
        status = {"phase": "Ready", "operatorsStatus": operators_status}
    return setup_cr(
        kind=constants.KIND_OPERAND_REGISTRY,
        name=name,
        namespace=namespace,
        spec={"operators": operators},
        status=status,
    )


def setup_config(
    services=None,
    name=REGISTRY_NAME,
    namespace=REGISTRY_NAMESPACE,
    etcd_size=1,
    jenkins_port=8081,
):
    if services is None:
        services = [
            {"name": "etcd", "spec": {"etcdCluster": {"size": etcd_size}}},
            {
                "name": "jenkins",
                "spec": {"jenkins": {"service": {"port": jenkins_port}}},
            },
        ]
    return setup_cr(
        kind=constants.KIND_OPERAND_CONFIG,
        name=name,
        namespace=namespace,
        spec={"services": services},
    )


def setup_request(
    operands=("etcd", "jenkins"),
    name="test-request",
    namespace=TEST_NAMESPACE,
    registry=REGISTRY_NAME,
    registry_namespace=REGISTRY_NAMESPACE,
    bindings=None,
    requests=None,
):
    """Build an OperandRequest with a single request entry unless the full
    requests list is given
    """
    if requests is None:
        operand_entries = []
        for operand in operands:
            entry = {"name": operand}
            if bindings and operand in bindings:
                entry["bindings"] = bindings[operand]
            operand_entries.append(entry)
        request_entry = {"registry": registry, "operands": operand_entries}
        if registry_namespace is not None:
            request_entry["registryNamespace"] = registry_namespace
        requests = [request_entry]
    return setup_cr(
        kind=constants.KIND_OPERAND_REQUEST,
        name=name,
        namespace=namespace,
        spec={"requests": requests},
    )


def setup_bindinfo(
    operand="jenkins",
    name="jenkins-public-bindinfo",
    namespace=JENKINS_NAMESPACE,
    registry=REGISTRY_NAME,
    registry_namespace=REGISTRY_NAMESPACE,
    bindings=None,
):
    if bindings is None:
        bindings = {
            "public": {"secret": JENKINS_SECRET, "configmap": JENKINS_CONFIGMAP},
        }
    return setup_cr(
        kind=constants.KIND_OPERAND_BIND_INFO,
        name=name,
        namespace=namespace,
        spec={
            "operand": operand,
            "registry": registry,
            "registryNamespace": registry_namespace,
            "bindings": bindings,
        },
    )


## OLM #########################################################################


ETCD_EXAMPLES = [
    {
        "apiVersion": "etcd.database.coreos.com/v1beta2",
        "kind": "EtcdCluster",
        "metadata": {"name": "example"},
        "spec": {"size": 3, "version": "3.2.13"},
    },
    {
        "apiVersion": "etcd.database.coreos.com/v1beta2",
        "kind": "EtcdBackup",
        "metadata": {"name": "example-etcd-cluster-backup"},
        "spec": {"storageType": "S3"},
    },
]

JENKINS_EXAMPLES = [
    {
        "apiVersion": "jenkins.io/v1alpha2",
        "kind": "Jenkins",
        "metadata": {"name": "example"},
        "spec": {
            "master": {"containers": [{"name": "jenkins-master"}]},
            "service": {"port": 8080, "type": "ClusterIP"},
        },
    },
]


def setup_subscription(
    name,
    namespace,
    csv_name=None,
    package_name=None,
    installed=True,
):
    status = {}
    if csv_name:
        status["currentCSV"] = csv_name
        if installed:
            status["installedCSV"] = csv_name
    return setup_cr(
        kind=constants.KIND_SUBSCRIPTION,
        api_version=constants.OLM_API_VERSION,
        name=name,
        namespace=namespace,
        spec={
            "name": package_name or name,
            "source": CATALOG_SOURCE,
            "sourceNamespace": CATALOG_NAMESPACE,
        },
        status=status,
        metadata={"labels": {constants.OPREQ_CONTROL_LABEL: "true"}},
    )


def setup_csv(name, namespace, examples=None, phase="Succeeded", raw_examples=None):
    annotations = {}
    if raw_examples is not None:
        annotations[constants.ALM_EXAMPLES_ANNOTATION] = raw_examples
    elif examples is not None:
        annotations[constants.ALM_EXAMPLES_ANNOTATION] = json.dumps(examples)
    return setup_cr(
        kind=constants.KIND_CSV,
        api_version=constants.OLM_API_VERSION,
        name=name,
        namespace=namespace,
        status={"phase": phase},
        metadata={"annotations": annotations},
    )


def installed_operator(
    name,
    namespace,
    examples,
    csv_name=None,
    phase="Succeeded",
    package_name=None,
) -> List[dict]:
    """Subscription plus ClusterServiceVersion for an installed operator"""
    csv_name = csv_name or f"{name}.v0.0.1"
    return [
        setup_subscription(name, namespace, csv_name, package_name=package_name),
        setup_csv(csv_name, namespace, examples, phase=phase),
    ]


def common_services(
    etcd_size=1,
    registry_status=("etcd", "jenkins"),
    with_operators=True,
) -> List[dict]:
    """The registry, config, and installed operators shared by most tests"""
    resources = [
        setup_registry(operators_status=registry_status),
        setup_config(etcd_size=etcd_size),
    ]
    if with_operators:
        resources.extend(
            installed_operator("etcd", OPERATOR_NAMESPACE, ETCD_EXAMPLES)
        )
        resources.extend(
            installed_operator(
                "jenkins",
                JENKINS_NAMESPACE,
                JENKINS_EXAMPLES,
                package_name="jenkins-operator",
            )
        )
    return resources


## Deploy Manager ##############################################################


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion
    """
    # Override the configs and hang onto the old values
    old_vals = {}
    for key, val in config_overrides.items():
        if key in config_detail_dict:
            old_vals[key] = config_detail_dict[key]
        config_detail_dict[key] = val

    try:
        yield
    finally:
        # Revert to the old values
        for key in config_overrides:
            if key in old_vals:
                config_detail_dict[key] = old_vals[key]
            else:
                del config_detail_dict[key]


def get_failable_method(fail_flag, method, failure_return=False):
    log.debug4(
        "Setting up failable mock of [%s] with fail flag: %s", str(method), fail_flag
    )

    def failable_method(*args, **kwargs):
        if isinstance(fail_flag, Exception) or (
            inspect.isclass(fail_flag) and issubclass(fail_flag, Exception)
        ):
            log.debug4("Raising in failable mock")
            raise fail_flag
        if callable(fail_flag):
            log.debug4("Calling callable fail flag")
            res = fail_flag(*args, **kwargs)
            if res is not None:
                return res
        elif fail_flag == "assert":
            raise AssertionError(f"You told me to fail {method}!")
        elif fail_flag:
            log.debug4("Returning %s", failure_return)
            return failure_return
        return method(*args, **kwargs)

    return failable_method


class FailOnce:
    """Helper callable that will fail once on the N'th call"""

    def __init__(self, fail_val, fail_number=1):
        self.call_count = 0
        self.fail_number = fail_number
        self.fail_val = fail_val

    def __call__(self, *_, **__):
        self.call_count += 1
        if self.call_count == self.fail_number:
            log.debug("Failing on call %d with %s", self.call_count, self.fail_val)
            if isinstance(self.fail_val, type) and issubclass(self.fail_val, Exception):
                raise self.fail_val("Raising!")
            return self.fail_val
        return None


class FailForKind:
    """Helper callable that fails calls targeting a single kind"""

    def __init__(self, kind, fail_val):
        self.kind = kind
        self.fail_val = fail_val

    def __call__(self, *args, **kwargs):
        kind = kwargs.get("kind")
        if kind is None and args:
            kind = args[0].get("kind") if isinstance(args[0], dict) else args[0]
        if kind == self.kind:
            return self.fail_val
        return None


class MockDeployManager(DryRunDeployManager):
    """The MockDeployManager wraps a standard DryRunDeployManager and adds
    configuration options to simulate failures in each of its operations.
    """

    def __init__(
        self,
        get_state_fail=False,
        filter_fail=False,
        create_fail=False,
        update_fail=False,
        delete_fail=False,
        set_status_fail=False,
        auto_enable=True,
        resources=None,
        **kwargs,
    ):
        """This DeployManager can be configured to have various failure cases
        and will mock the state of the cluster so that get_object_current_state
        will pull its information from the local dict.
        """
        super().__init__(resources, **kwargs)

        self.get_state_fail = get_state_fail
        self.filter_fail = filter_fail
        self.create_fail = create_fail
        self.update_fail = update_fail
        self.delete_fail = delete_fail
        self.set_status_fail = set_status_fail

        # If auto-enabling, turn the mocks on now
        if auto_enable:
            self.enable_mocks()

    ## Helpers for Tests #######################################################

    def enable_mocks(self):
        """Turn the mocks on"""
        self.get_object_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.get_state_fail, super().get_object_current_state, (False, None)
            )
        )
        self.filter_objects_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.filter_fail, super().filter_objects_current_state, (False, [])
            )
        )
        self.create = mock.Mock(
            side_effect=get_failable_method(
                self.create_fail, super().create, (False, False)
            )
        )
        self.update = mock.Mock(
            side_effect=get_failable_method(
                self.update_fail, super().update, (False, False)
            )
        )
        self.delete_all_of = mock.Mock(
            side_effect=get_failable_method(
                self.delete_fail, super().delete_all_of, (False, False)
            )
        )
        self.set_status = mock.Mock(
            side_effect=get_failable_method(
                self.set_status_fail, super().set_status, (False, False)
            )
        )

    def get_obj(self, kind, name, namespace=None, api_version=None):
        return self.get_object_current_state(kind, name, namespace, api_version)[1]

    def has_obj(self, *args, **kwargs):
        return self.get_obj(*args, **kwargs) is not None

    def get_events(self, namespace=None, reason: Optional[str] = None) -> List[dict]:
        """Get the events recorded in a namespace, optionally for one reason"""
        _, events = DryRunDeployManager.filter_objects_current_state(
            self, kind="Event", namespace=namespace, api_version="v1"
        )
        return [event for event in events if reason in [None, event["reason"]]]


## Reconcile ###################################################################


def run_reconcile(controller, deploy_manager, kind, name, namespace, **kwargs):
    """Fetch the current CR from the cluster and run a full reconcile of it
    through the ReconcileManager
    """
    manifest = deploy_manager.get_obj(
        kind, name, namespace, api_version=constants.API_VERSION
    )
    assert manifest is not None, f"{kind} {namespace}/{name} is not in the cluster"
    return ReconcileManager(deploy_manager=deploy_manager).safe_reconcile(
        controller, manifest, **kwargs
    )
