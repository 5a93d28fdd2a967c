"""Tests for the DryRunDeployManager

NOTE: The majority of the functionality is thoroughly exercised by the
    controller tests, so the tests here only test elements that are
    particularly delicate and/or not covered elsewhere.
"""

# Third Party
import pytest

# First Party
import aconfig

# Local
from odlm.deploy_manager import DryRunDeployManager
from odlm.deploy_manager.dry_run_deploy_manager import match_selector
from odlm.test_helpers.helpers import SOME_OTHER_NAMESPACE, TEST_NAMESPACE

## Helpers #####################################################################


def make_obj(
    kind="Foo",
    name="foobar",
    namespace=TEST_NAMESPACE,
    api_version="foo.bar/v1",
    spec=None,
    labels=None,
    **kwargs,
):
    metadata = {"name": name, "namespace": namespace}
    metadata["labels"] = labels or {"app": "foobar", "run": "frontend"}
    metadata.update(kwargs)
    return aconfig.Config(
        {
            "apiVersion": api_version,
            "kind": kind,
            "metadata": metadata,
            "spec": spec or {"a": 1},
        },
        override_env_vars=False,
    )


## create / get ################################################################


def test_create_and_get():
    """Created objects get server fields and can be fetched"""
    dm = DryRunDeployManager()
    assert dm.create(make_obj()) == (True, True)
    success, obj = dm.get_object_current_state("Foo", "foobar", TEST_NAMESPACE)
    assert success
    assert obj["spec"] == {"a": 1}
    assert obj["metadata"]["uid"]
    assert obj["metadata"]["resourceVersion"]
    assert obj["metadata"]["generation"] == 1


def test_create_already_exists():
    """Creating an existing object reports that nothing was created"""
    dm = DryRunDeployManager(resources=[make_obj()])
    assert dm.create(make_obj(spec={"a": 2})) == (True, False)
    assert dm.get_object_current_state("Foo", "foobar", TEST_NAMESPACE)[1]["spec"] == {
        "a": 1
    }


def test_get_not_found():
    """Missing objects are not an error"""
    dm = DryRunDeployManager(resources=[make_obj()])
    assert dm.get_object_current_state("Foo", "other", TEST_NAMESPACE) == (True, None)
    assert dm.get_object_current_state("Foo", "foobar", SOME_OTHER_NAMESPACE) == (
        True,
        None,
    )
    assert dm.get_object_current_state(
        "Foo", "foobar", TEST_NAMESPACE, api_version="foo.bar/v2"
    ) == (True, None)


def test_get_returns_copy():
    """Changing a fetched object does not change the cluster"""
    dm = DryRunDeployManager(resources=[make_obj()])
    obj = dm.get_object_current_state("Foo", "foobar", TEST_NAMESPACE)[1]
    obj["spec"]["a"] = 100
    assert dm.get_object_current_state("Foo", "foobar", TEST_NAMESPACE)[1]["spec"] == {
        "a": 1
    }


## update ######################################################################


def test_update_spec_change():
    """A spec change bumps the generation and resourceVersion"""
    dm = DryRunDeployManager(resources=[make_obj()])
    current = dm.get_object_current_state("Foo", "foobar", TEST_NAMESPACE)[1]
    current["spec"] = {"a": 2}
    assert dm.update(current) == (True, True)
    updated = dm.get_object_current_state("Foo", "foobar", TEST_NAMESPACE)[1]
    assert updated["spec"] == {"a": 2}
    assert updated["metadata"]["generation"] == 2
    assert updated["metadata"]["uid"] == current["metadata"]["uid"]
    assert updated["metadata"]["resourceVersion"] != current["metadata"]["resourceVersion"]


def test_update_no_change():
    """An identical update changes nothing"""
    dm = DryRunDeployManager(resources=[make_obj()])
    current = dm.get_object_current_state("Foo", "foobar", TEST_NAMESPACE)[1]
    assert dm.update(current) == (True, False)
    assert (
        dm.get_object_current_state("Foo", "foobar", TEST_NAMESPACE)[1]["metadata"][
            "resourceVersion"
        ]
        == current["metadata"]["resourceVersion"]
    )


def test_update_missing():
    """Updating an object that does not exist fails"""
    dm = DryRunDeployManager()
    assert dm.update(make_obj()) == (False, False)


def test_update_preserves_status():
    """A spec update never writes the status sub-resource"""
    dm = DryRunDeployManager(resources=[make_obj()])
    dm.set_status("Foo", "foobar", TEST_NAMESPACE, {"phase": "Running"})
    current = dm.get_object_current_state("Foo", "foobar", TEST_NAMESPACE)[1]
    current["status"] = {"phase": "Bogus"}
    current["spec"] = {"a": 2}
    dm.update(current)
    updated = dm.get_object_current_state("Foo", "foobar", TEST_NAMESPACE)[1]
    assert updated["status"] == {"phase": "Running"}


def test_update_strict_resource_version():
    """A stale resourceVersion is rejected in strict mode"""
    dm = DryRunDeployManager(resources=[make_obj()], strict_resource_version=True)
    first = dm.get_object_current_state("Foo", "foobar", TEST_NAMESPACE)[1]
    second = dm.get_object_current_state("Foo", "foobar", TEST_NAMESPACE)[1]
    first["spec"] = {"a": 2}
    assert dm.update(first) == (True, True)
    second["spec"] = {"a": 3}
    assert dm.update(second) == (False, False)


## delete_all_of ###############################################################


def test_delete_all_of_selectors():
    """Only objects matching both selectors are deleted"""
    dm = DryRunDeployManager(
        resources=[
            make_obj(name="a", labels={"app": "x"}),
            make_obj(name="b", labels={"app": "x"}),
            make_obj(name="c", labels={"app": "y"}),
            make_obj(name="a", namespace=SOME_OTHER_NAMESPACE, labels={"app": "x"}),
        ]
    )
    assert dm.delete_all_of(
        "Foo", TEST_NAMESPACE, label_selector="app=x", field_selector="metadata.name=a"
    ) == (True, True)
    remaining = dm.filter_objects_current_state("Foo", namespace=None)[1]
    assert sorted(
        (obj["metadata"]["namespace"], obj["metadata"]["name"]) for obj in remaining
    ) == [(SOME_OTHER_NAMESPACE, "a"), (TEST_NAMESPACE, "b"), (TEST_NAMESPACE, "c")]


def test_delete_all_of_nothing_matches():
    """Deleting with no match reports no change"""
    dm = DryRunDeployManager(resources=[make_obj()])
    assert dm.delete_all_of("Foo", TEST_NAMESPACE, label_selector="app=other") == (
        True,
        False,
    )
    assert dm.delete_all_of("Bar", TEST_NAMESPACE) == (True, False)


def test_delete_all_of_with_finalizers():
    """Objects holding finalizers are only marked for deletion"""
    dm = DryRunDeployManager(resources=[make_obj(finalizers=["keep"])])
    assert dm.delete_all_of("Foo", TEST_NAMESPACE) == (True, True)
    obj = dm.get_object_current_state("Foo", "foobar", TEST_NAMESPACE)[1]
    assert obj["metadata"]["deletionTimestamp"]

    obj["metadata"]["finalizers"] = []
    dm.update(obj)
    assert dm.get_object_current_state("Foo", "foobar", TEST_NAMESPACE) == (True, None)


## set_status ##################################################################


def test_set_status():
    """Status writes report whether anything changed"""
    dm = DryRunDeployManager(resources=[make_obj()])
    assert dm.set_status("Foo", "foobar", TEST_NAMESPACE, {"phase": "Init"}) == (
        True,
        True,
    )
    assert dm.set_status("Foo", "foobar", TEST_NAMESPACE, {"phase": "Init"}) == (
        True,
        False,
    )
    assert dm.set_status("Foo", "missing", TEST_NAMESPACE, {"phase": "Init"}) == (
        False,
        False,
    )


## match_selector ##############################################################


@pytest.mark.parametrize(
    ["selector", "expected"],
    [
        ("app=foobar", True),
        ("app==foobar", True),
        ("app!=foobar", False),
        ("app=foobar,run=frontend", True),
        ("app=foobar,run=backend", False),
        ("app in (foobar, other)", True),
        ("app notin (foobar, other)", False),
        ("tier notin (db)", True),
        ("run", True),
        ("!run", False),
        ("!tier", True),
        ("app in (a,b),run", False),
    ],
)
def test_match_selector(selector, expected):
    """Equality, set and existence requirements are all supported"""
    assert match_selector({"app": "foobar", "run": "frontend"}, selector) is expected
