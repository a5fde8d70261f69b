import threading

import pytest

from ocbmachined.lib.allocator import allocate
from ocbmachined.lib.dataclasses import Node, NodeRole
from ocbmachined.lib.errors import (
    ProvisioningCancelled,
    ProvisioningFailed,
    ProvisioningTimeout,
    TransportFailure,
)
from ocbmachined.lib.poller import (
    ACTION_FAILED,
    ACTION_READY,
    ACTION_RETRY,
    ACTION_WAIT,
    ProvisioningWatch,
    STATE_ERROR,
    STATE_RUNNING,
    STATE_STARTING,
    STATE_STOPPED,
    classify,
    get_state,
    wait_until_ready,
)


NODE = "d52-54-00-01.crowbar.test"


@pytest.fixture
def handle(context, crowbar, key_provider):
    crowbar.add_node(NODE, "system")
    return allocate(context, "docker-1", key_provider)


@pytest.fixture
def sleeps():
    return list()


def run(context, handle, sleeps, cancel=None):
    return wait_until_ready(context, handle, cancel=cancel, sleep=sleeps.append)


@pytest.mark.parametrize(
    "alive, run_state, node_error, expected",
    [
        (False, 0, False, STATE_STOPPED),
        (False, -1, True, STATE_STOPPED),
        (True, 0, False, STATE_RUNNING),
        (True, -1, False, STATE_ERROR),
        (True, 0, True, STATE_ERROR),
        (True, 1, False, STATE_STARTING),
        (True, 4, False, STATE_STARTING),
    ],
)
def test_classify(alive, run_state, node_error, expected):
    node = Node(1, NODE, 2, alive=alive)
    node_role = NodeRole(3, 2, 1, 4, 2000, state=run_state, node_error=node_error)

    assert classify(node, node_role) == expected


def test_classify_missing_role_is_error():
    assert classify(Node(1, NODE, 2, alive=True), None) == STATE_ERROR


def test_get_state_reads_fresh_node(context, crowbar, handle):
    crowbar.script(NODE, ["Starting", "Running", "Stopped"])

    assert get_state(context, NODE) == STATE_STARTING
    assert get_state(context, NODE) == STATE_RUNNING
    assert get_state(context, NODE) == STATE_STOPPED


def test_get_state_without_ready_role(context, crowbar):
    crowbar.add_node(NODE, "system")

    assert get_state(context, NODE) == STATE_ERROR


def test_watch_requires_consecutive_running():
    watch = ProvisioningWatch(90, 3, 2)

    assert watch.observe(STATE_RUNNING) == ACTION_WAIT
    assert watch.observe(STATE_STARTING) == ACTION_WAIT
    assert watch.observe(STATE_RUNNING) == ACTION_WAIT
    assert watch.observe(STATE_RUNNING) == ACTION_READY
    assert watch.ticks == 4


def test_watch_error_budget_strictly_decreases():
    watch = ProvisioningWatch(90, 3, 2)
    seen = list()

    for state in [STATE_ERROR, STATE_STARTING, STATE_ERROR, STATE_RUNNING]:
        watch.observe(state)
        seen.append(watch.errors_left)

    assert seen == [2, 2, 1, 1]
    assert watch.observe(STATE_ERROR) == ACTION_FAILED
    assert watch.errors_left == 0


def test_watch_error_resets_confirmation():
    watch = ProvisioningWatch(90, 3, 2)

    assert watch.observe(STATE_RUNNING) == ACTION_WAIT
    assert watch.observe(STATE_ERROR) == ACTION_RETRY
    assert watch.confirms_left == 2
    assert watch.observe(STATE_RUNNING) == ACTION_WAIT


def test_watch_expires():
    watch = ProvisioningWatch(2, 3, 2)
    watch.observe(STATE_STARTING)
    assert not watch.expired
    watch.observe(STATE_STARTING)
    assert watch.expired


def test_running_twice_is_ready(context, crowbar, handle, sleeps):
    crowbar.script(NODE, ["Running", "Running"])

    outcome = run(context, handle, sleeps)

    assert outcome.result == "ready"
    assert outcome.ticks == 2
    assert outcome.errors_left == 3
    assert sleeps == [10, 10]


def test_single_running_is_not_trusted(context, crowbar, handle, sleeps):
    crowbar.script(NODE, ["Running", "Starting", "Running", "Running"])

    outcome = run(context, handle, sleeps)

    assert outcome.ticks == 4


def test_three_errors_fail(context, crowbar, handle, sleeps):
    crowbar.script(NODE, ["Error", "Error", "Error"])

    with pytest.raises(ProvisioningFailed) as exc:
        run(context, handle, sleeps)

    assert exc.value.node == NODE
    assert exc.value.errors_left == 0
    assert exc.value.ticks_left == 87
    assert len(crowbar.called("retry")) == 2
    assert "error budget left 0" in str(exc.value)


def test_errors_recover_with_retry(context, crowbar, handle, sleeps):
    crowbar.script(NODE, ["Starting", "Error", "Starting", "Error", "Running", "Running"])

    outcome = run(context, handle, sleeps)

    assert outcome.result == "ready"
    assert outcome.errors_left == 1
    assert crowbar.called("retry") == [(NODE,), (NODE,)]


def test_iteration_budget_times_out(config, context, crowbar, handle, sleeps):
    config["polling_iterations"] = 5
    crowbar.script(NODE, ["Starting"] * 5)

    with pytest.raises(ProvisioningTimeout) as exc:
        run(context, handle, sleeps)

    assert exc.value.ticks_left == 0
    assert len(sleeps) == 5


def test_timeout_can_be_accepted(config, context, crowbar, handle, sleeps):
    config["polling_iterations"] = 3
    config["polling_timeout_policy"] = "succeed"
    crowbar.script(NODE, ["Starting", "Running", "Stopped"])

    outcome = run(context, handle, sleeps)

    assert outcome.result == "timeout"
    assert outcome.ticks == 3


def test_transport_failure_aborts(context, crowbar, handle, sleeps, transport_error):
    crowbar.fail("get_node", transport_error)

    with pytest.raises(TransportFailure):
        run(context, handle, sleeps)

    assert len(sleeps) == 1
    assert crowbar.called("retry") == []


def test_cancel_is_checked_between_ticks(context, crowbar, handle):
    cancel = threading.Event()
    crowbar.script(NODE, ["Starting"] * 10)

    def sleep(interval):
        cancel.set()

    with pytest.raises(ProvisioningCancelled) as exc:
        wait_until_ready(context, handle, cancel=cancel, sleep=sleep)

    assert exc.value.ticks_left == 89
