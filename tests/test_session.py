"""
Tests for the Session object
"""

# Third Party
import pytest

# First Party
import aconfig

# Local
from odlm.events import EventType
from odlm.exceptions import ClusterError
from odlm.session import Session
from odlm.test_helpers.helpers import (
    SOME_OTHER_NAMESPACE,
    TEST_NAMESPACE,
    MockDeployManager,
    setup_cr,
    setup_request,
)

## Helpers #####################################################################


def make_session(cr=None, **kwargs):
    cr = cr or setup_request()
    dm = kwargs.pop("deploy_manager", None) or MockDeployManager(resources=[cr], **kwargs)
    return Session("test-id", cr, dm)


## Construction ################################################################


def test_session_properties():
    """Properties are read from the CR"""
    session = make_session()
    assert session.id == "test-id"
    assert session.kind == "OperandRequest"
    assert session.name == "test-request"
    assert session.namespace == TEST_NAMESPACE
    assert session.api_version == "operator.ibm.com/v1alpha1"
    assert session.spec["requests"][0]["registry"] == "common-service"
    assert not session.deleting
    assert session.finalizers == []
    assert session.status == {}


def test_session_plain_dict_manifest():
    """A plain dict manifest is converted to a Config"""
    cr = dict(setup_request())
    session = make_session(cr)
    assert isinstance(session.cr_manifest, aconfig.Config)


@pytest.mark.parametrize("missing", ["kind", "apiVersion", "metadata"])
def test_session_invalid_cr(missing):
    """Required sections must be present"""
    cr = setup_request()
    del cr[missing]
    with pytest.raises(AssertionError):
        Session("test-id", cr, MockDeployManager())


## Status ######################################################################


def test_session_initial_status():
    """The status in the cluster is read at construction"""
    cr = setup_request()
    dm = MockDeployManager(resources=[cr])
    dm.set_status(cr.kind, cr.metadata.name, cr.metadata.namespace, {"phase": "Running"})
    session = Session("test-id", cr, dm)
    assert session.status == {"phase": "Running"}


def test_session_set_status_only_on_change():
    """Unchanged statuses are never written"""
    session = make_session()
    dm = session.deploy_manager
    assert session.set_status({"phase": "Running"})
    assert not session.set_status({"phase": "Running"})
    assert dm.set_status.call_count == 1
    assert session.get_status() == {"phase": "Running"}


def test_session_set_status_failure():
    """A failed status write is a cluster error"""
    session = make_session(set_status_fail=True)
    with pytest.raises(ClusterError):
        session.set_status({"phase": "Running"})


def test_session_get_status_failure():
    """A failed status read is a cluster error"""
    with pytest.raises(ClusterError):
        make_session(get_state_fail=True)


## Lookups #####################################################################


def test_session_lookups_default_namespace():
    """Lookups default to the session namespace and None means cluster wide"""
    other = setup_cr(kind="Foo", api_version="v1", name="other", namespace=SOME_OTHER_NAMESPACE)
    local = setup_cr(kind="Foo", api_version="v1", name="local")
    cr = setup_request()
    dm = MockDeployManager(resources=[cr, other, local])
    session = Session("test-id", cr, dm)

    assert session.get_object_current_state("Foo", "local")[1] is not None
    assert session.get_object_current_state("Foo", "other")[1] is None
    assert (
        session.get_object_current_state("Foo", "other", namespace=SOME_OTHER_NAMESPACE)[1]
        is not None
    )
    assert len(session.filter_objects_current_state("Foo")[1]) == 1
    assert len(session.filter_objects_current_state("Foo", namespace=None)[1]) == 2


def test_session_record_event():
    """Events are attached to the session CR"""
    session = make_session()
    assert session.record_event(EventType.NORMAL, "Testing", "msg")
    events = session.deploy_manager.get_events(TEST_NAMESPACE)
    assert events[0]["involvedObject"]["name"] == "test-request"
