"""
Tests for the reference tracker
"""

# Third Party
import pytest

# Local
from odlm import constants
from odlm.exceptions import ClusterError
from odlm.references import (
    Referent,
    is_delete_safe,
    list_requests,
    operator_namespace_referents,
    referents,
)
from odlm.test_helpers.helpers import (
    JENKINS_NAMESPACE,
    OPERATOR_NAMESPACE,
    REGISTRY_NAME,
    REGISTRY_NAMESPACE,
    SOME_OTHER_NAMESPACE,
    TEST_NAMESPACE,
    FailForKind,
    MockDeployManager,
    etcd_operator,
    library_config,
    setup_registry,
    setup_request,
)

## Helpers #####################################################################


def make_dm(*requests):
    return MockDeployManager(resources=list(requests))


## referents ###################################################################


def test_referents_across_namespaces():
    """Requests in every namespace are considered"""
    dm = make_dm(
        setup_request(name="a", namespace=TEST_NAMESPACE),
        setup_request(name="b", namespace=SOME_OTHER_NAMESPACE),
        setup_request(name="c", operands=["etcd"]),
    )
    assert referents(dm, "jenkins") == {
        Referent("a", TEST_NAMESPACE),
        Referent("b", SOME_OTHER_NAMESPACE),
    }
    assert len(referents(dm, "etcd")) == 3
    assert referents(dm, "not-there") == set()


def test_referents_registry_scoped():
    """Only references through the given registry count when one is given"""
    dm = make_dm(
        setup_request(name="a"),
        setup_request(name="b", registry="other-registry"),
        setup_request(name="c", registry_namespace="other-namespace"),
    )
    assert referents(
        dm, "etcd", registry=REGISTRY_NAME, registry_namespace=REGISTRY_NAMESPACE
    ) == {Referent("a", TEST_NAMESPACE)}
    assert referents(dm, "etcd", registry="other-registry") == {
        Referent("b", TEST_NAMESPACE)
    }


def test_referents_default_registry_namespace():
    """A request without a registryNamespace refers to its own namespace"""
    dm = make_dm(setup_request(name="a", registry_namespace=None))
    assert referents(dm, "etcd", registry_namespace=TEST_NAMESPACE) == {
        Referent("a", TEST_NAMESPACE)
    }
    assert not referents(dm, "etcd", registry_namespace=REGISTRY_NAMESPACE)


def test_referents_exclude():
    """Excluded requests are left out"""
    dm = make_dm(setup_request(name="a"), setup_request(name="b"))
    assert referents(dm, "etcd", exclude=[Referent("a", TEST_NAMESPACE)]) == {
        Referent("b", TEST_NAMESPACE)
    }


def test_referents_skip_deleting_requests():
    """Requests that are being deleted no longer hold a reference"""
    deleting = setup_request(name="a")
    deleting["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    deleting["metadata"]["finalizers"] = ["finalizers.operandrequest.operator.ibm.com"]
    dm = make_dm(deleting, setup_request(name="b"))
    assert referents(dm, "etcd") == {Referent("b", TEST_NAMESPACE)}


def test_list_requests_failure():
    """A failed listing is a cluster error rather than an empty result"""
    dm = MockDeployManager(filter_fail=True)
    with pytest.raises(ClusterError):
        list_requests(dm)


## is_delete_safe ##############################################################


def test_is_delete_safe_only_referent():
    """The triggering request alone does not block deletion"""
    dm = make_dm(setup_registry(), setup_request(name="a"))
    assert is_delete_safe(dm, "etcd", OPERATOR_NAMESPACE, Referent("a", TEST_NAMESPACE))


def test_is_delete_safe_other_referent():
    """Another request referencing the same operand blocks deletion"""
    dm = make_dm(
        setup_registry(),
        setup_request(name="a"),
        setup_request(name="b", namespace=SOME_OTHER_NAMESPACE, operands=["etcd"]),
    )
    assert not is_delete_safe(
        dm, "etcd", OPERATOR_NAMESPACE, Referent("a", TEST_NAMESPACE)
    )
    assert is_delete_safe(
        dm, "jenkins", JENKINS_NAMESPACE, Referent("a", TEST_NAMESPACE)
    )


def test_is_delete_safe_other_registry_same_operator_namespace():
    """A reference through a different registry whose operator is installed
    in the same namespace blocks deletion
    """
    dm = make_dm(
        setup_registry(),
        setup_registry(namespace=SOME_OTHER_NAMESPACE, operators=[etcd_operator()]),
        setup_request(name="a", operands=["etcd"]),
        setup_request(
            name="b", operands=["etcd"], registry_namespace=SOME_OTHER_NAMESPACE
        ),
    )
    assert operator_namespace_referents(dm, "etcd", OPERATOR_NAMESPACE) == {
        Referent("a", TEST_NAMESPACE),
        Referent("b", TEST_NAMESPACE),
    }
    assert not is_delete_safe(
        dm, "etcd", OPERATOR_NAMESPACE, Referent("a", TEST_NAMESPACE)
    )


def test_is_delete_safe_other_registry_other_operator_namespace():
    """A reference that resolves to an operator in another namespace does not
    block deletion
    """
    dm = make_dm(
        setup_registry(),
        setup_registry(
            namespace=SOME_OTHER_NAMESPACE,
            operators=[etcd_operator(namespace=SOME_OTHER_NAMESPACE)],
        ),
        setup_request(name="a", operands=["etcd"]),
        setup_request(
            name="b", operands=["etcd"], registry_namespace=SOME_OTHER_NAMESPACE
        ),
    )
    assert is_delete_safe(dm, "etcd", OPERATOR_NAMESPACE, Referent("a", TEST_NAMESPACE))
    assert not is_delete_safe(
        dm, "etcd", SOME_OTHER_NAMESPACE, Referent("a", TEST_NAMESPACE)
    )


def test_is_delete_safe_cluster_install_mode():
    """Operators installed in cluster mode share the cluster operator
    namespace regardless of the namespace they declare
    """
    dm = make_dm(
        setup_registry(operators=[etcd_operator(installMode="cluster")]),
        setup_registry(
            namespace=SOME_OTHER_NAMESPACE,
            operators=[
                etcd_operator(namespace=SOME_OTHER_NAMESPACE, installMode="cluster")
            ],
        ),
        setup_request(name="a", operands=["etcd"]),
        setup_request(
            name="b", operands=["etcd"], registry_namespace=SOME_OTHER_NAMESPACE
        ),
    )
    with library_config(cluster_operator_namespace="cluster-operators"):
        assert not is_delete_safe(
            dm, "etcd", "cluster-operators", Referent("a", TEST_NAMESPACE)
        )


def test_is_delete_safe_missing_registry():
    """A reference through a registry that does not exist resolves to no
    operator and does not block deletion
    """
    dm = make_dm(
        setup_registry(),
        setup_request(name="a"),
        setup_request(name="b", registry="other-registry"),
    )
    assert is_delete_safe(dm, "etcd", OPERATOR_NAMESPACE, Referent("a", TEST_NAMESPACE))


def test_is_delete_safe_registry_lookup_failure():
    """A failed registry lookup is a cluster error rather than a safe delete"""
    dm = MockDeployManager(
        resources=[setup_registry(), setup_request(name="a"), setup_request(name="b")],
        get_state_fail=FailForKind(constants.KIND_OPERAND_REGISTRY, (False, None)),
    )
    with pytest.raises(ClusterError):
        is_delete_safe(dm, "etcd", OPERATOR_NAMESPACE, Referent("a", TEST_NAMESPACE))
