"""
Tests for event recording
"""

# Local
from odlm.events import (
    MAX_MESSAGE_LEN,
    MAX_NAME_LEN,
    EventType,
    make_event,
    record_event,
)
from odlm.test_helpers.helpers import (
    TEST_NAMESPACE,
    MockDeployManager,
    library_config,
    setup_request,
)

## make_event ##################################################################


def test_make_event():
    """The event involves the owner and lives in its namespace"""
    owner = setup_request()
    event = make_event(owner, EventType.WARNING, "NotFound", "x" * 2000)
    assert event["kind"] == "Event"
    assert event["metadata"]["namespace"] == TEST_NAMESPACE
    assert event["metadata"]["name"].startswith("test-request.")
    assert event["involvedObject"]["kind"] == "OperandRequest"
    assert event["involvedObject"]["uid"] == owner["metadata"]["uid"]
    assert event["type"] == "Warning"
    assert len(event["message"]) == MAX_MESSAGE_LEN


def test_make_event_deterministic_names():
    """The same event for the same owner always has the same name and a
    different message gets a different one
    """
    owner = setup_request()
    first = make_event(owner, EventType.NORMAL, "Deleted", "msg")
    second = make_event(owner, EventType.NORMAL, "Deleted", "msg")
    other = make_event(owner, EventType.NORMAL, "Deleted", "other msg")
    assert first["metadata"]["name"] == second["metadata"]["name"]
    assert first["metadata"]["name"] != other["metadata"]["name"]
    assert first["metadata"]["name"].startswith("test-request.deleted.")


def test_make_event_long_owner_name():
    """Long owner names are cut to keep the event name valid"""
    owner = setup_request(name="x" * 300)
    name = make_event(owner, EventType.WARNING, "NotFound", "msg")["metadata"]["name"]
    assert len(name) == MAX_NAME_LEN
    assert name.endswith(".notfound." + name.rsplit(".", 1)[-1])


## record_event ################################################################


def test_record_event():
    """Recorded events are created in the cluster"""
    dm = MockDeployManager()
    assert record_event(dm, setup_request(), EventType.NORMAL, "Deleted", "msg")
    events = dm.get_events(TEST_NAMESPACE)
    assert [event["reason"] for event in events] == ["Deleted"]


def test_record_event_repeated_bumps_count():
    """A repeated event updates the existing object instead of adding one"""
    dm = MockDeployManager()
    owner = setup_request()
    assert record_event(dm, owner, EventType.WARNING, "NotFound", "msg")
    assert record_event(dm, owner, EventType.WARNING, "NotFound", "msg")
    assert record_event(dm, owner, EventType.WARNING, "NotFound", "msg")
    events = dm.get_events(TEST_NAMESPACE)
    assert len(events) == 1
    assert events[0]["count"] == 3
    assert events[0]["lastTimestamp"] >= events[0]["firstTimestamp"]

    assert record_event(dm, owner, EventType.WARNING, "NotFound", "other msg")
    assert len(dm.get_events(TEST_NAMESPACE)) == 2


def test_record_event_bump_failure():
    """A failure to bump an existing event is only logged"""
    dm = MockDeployManager()
    owner = setup_request()
    assert record_event(dm, owner, EventType.WARNING, "NotFound", "msg")
    dm.update_fail = True
    dm.enable_mocks()
    assert not record_event(dm, owner, EventType.WARNING, "NotFound", "msg")
    assert dm.get_events(TEST_NAMESPACE)[0]["count"] == 1


def test_record_event_disabled():
    """Nothing is posted when events are disabled"""
    dm = MockDeployManager()
    with library_config(post_events=False):
        assert not record_event(dm, setup_request(), EventType.NORMAL, "Deleted", "msg")
    assert not dm.get_events(TEST_NAMESPACE)


def test_record_event_failures_are_not_raised():
    """A failure to post an event is only logged"""
    dm = MockDeployManager(create_fail=True)
    assert not record_event(dm, setup_request(), EventType.WARNING, "Oops", "msg")
    dm = MockDeployManager(create_fail=RuntimeError("boom"))
    assert not record_event(dm, setup_request(), EventType.WARNING, "Oops", "msg")
