#!/usr/bin/env python3

# poller.py - OpenCrowbar machine daemon lifecycle state tracking
# Part of the OpenCrowbar Machine Daemon (ocbmachined)
#
#    Copyright (C) 2026 The OpenCrowbar Machine Daemon contributors
#
#    This program is free software: you can redistribute it and/or modify
#    it under the terms of the GNU General Public License as published by
#    the Free Software Foundation, version 3.
#
#    This program is distributed in the hope that it will be useful,
#    but WITHOUT ANY WARRANTY; without even the implied warranty of
#    MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
#    GNU General Public License for more details.
#
#    You should have received a copy of the GNU General Public License
#    along with this program.  If not, see <https://www.gnu.org/licenses/>.
#
###############################################################################

from time import sleep as time_sleep
from celery.utils.log import get_task_logger

from ocbmachined.lib.context import ensure_session, READY_STATE
from ocbmachined.lib.dataclasses import PollOutcome
from ocbmachined.lib.errors import (
    NotFound,
    ProvisioningCancelled,
    ProvisioningFailed,
    ProvisioningTimeout,
)


logger = get_task_logger(__name__)


# Machine states
STATE_NONE = "None"
STATE_STARTING = "Starting"
STATE_RUNNING = "Running"
STATE_STOPPED = "Stopped"
STATE_ERROR = "Error"

# NodeRole run states
RUN_STATE_ERROR = -1
RUN_STATE_ACTIVE = 0

# Watch actions
ACTION_WAIT = "wait"
ACTION_RETRY = "retry"
ACTION_READY = "ready"
ACTION_FAILED = "failed"

POLL_INTERVAL = 10
POLL_ITERATIONS = 90
ERROR_BUDGET = 3
CONFIRM_BUDGET = 2


#
# State classification
#
def classify(node, node_role):
    """
    Map a node and its ready-state NodeRole to a machine state
    """
    if not node.alive:
        return STATE_STOPPED
    if node_role is None or node_role.node_error:
        return STATE_ERROR
    if node_role.state == RUN_STATE_ERROR:
        return STATE_ERROR
    if node_role.state == RUN_STATE_ACTIVE:
        return STATE_RUNNING
    return STATE_STARTING


def snapshot(ctx, node_name):
    """
    Fetch a fresh node and classify it; transport failures are raised
    """
    session = ensure_session(ctx)
    node = session.get_node(node_name)
    if not node.alive:
        return node, STATE_STOPPED

    ready_state = ctx.config.get("provision_ready_state", READY_STATE)
    try:
        node_role = session.get_node_role(node, ready_state)
    except NotFound:
        logger.warning(f"Crowbar node {node.name} has no {ready_state} role")
        node_role = None
    return node, classify(node, node_role)


def get_state(ctx, node_name):
    _, state = snapshot(ctx, node_name)
    return state


#
# State machine
#
class ProvisioningWatch:
    """
    Bounded retry policy for a node converging on its ready state

    Fed one observed state per tick. An Error observation spends the error
    budget and asks for a remote retry; Running must be seen confirm_budget
    times in a row before the node counts as ready.
    """

    def __init__(self, iterations, error_budget, confirm_budget):
        self.ticks = 0
        self.ticks_left = iterations
        self.errors_left = error_budget
        self.confirm_budget = confirm_budget
        self.confirms_left = confirm_budget
        self.state = STATE_NONE

    @classmethod
    def from_config(cls, config):
        return cls(
            config.get("polling_iterations", POLL_ITERATIONS),
            config.get("polling_error_budget", ERROR_BUDGET),
            config.get("polling_confirm_budget", CONFIRM_BUDGET),
        )

    @property
    def expired(self):
        return self.ticks_left <= 0

    def observe(self, state):
        self.ticks += 1
        self.ticks_left -= 1
        self.state = state

        if state == STATE_ERROR:
            self.confirms_left = self.confirm_budget
            self.errors_left -= 1
            if self.errors_left <= 0:
                return ACTION_FAILED
            return ACTION_RETRY

        if state == STATE_RUNNING:
            self.confirms_left -= 1
            if self.confirms_left <= 0:
                return ACTION_READY
            return ACTION_WAIT

        self.confirms_left = self.confirm_budget
        return ACTION_WAIT

    def outcome(self, result):
        return PollOutcome(result, self.ticks, self.errors_left, self.confirms_left)


#
# Entry function
#
def wait_until_ready(ctx, handle, cancel=None, sleep=time_sleep):
    """
    Block until the node is confirmed ready, fails, or the tick budget runs out

    cancel is an optional threading.Event checked before every tick.
    """
    config = ctx.config
    session = ensure_session(ctx)
    interval = config.get("polling_interval", POLL_INTERVAL)
    timeout_policy = config.get("polling_timeout_policy", "fail")
    watch = ProvisioningWatch.from_config(config)

    logger.info(
        f"Crowbar preparing node {handle.node} (process may take up to {interval * watch.ticks_left} seconds)"
    )

    while not watch.expired:
        if cancel is not None and cancel.is_set():
            raise ProvisioningCancelled(
                node=handle.node,
                pool=handle.target,
                ticks_left=watch.ticks_left,
                errors_left=watch.errors_left,
                confirms_left=watch.confirms_left,
            )

        logger.debug(f"Crowbar waiting for {handle.node} machine (state {watch.state})")
        sleep(interval)

        node, state = snapshot(ctx, handle.node)
        action = watch.observe(state)

        if action == ACTION_RETRY:
            logger.warning(
                f"Crowbar node {node.name} reported error; retrying ({watch.errors_left} left)"
            )
            session.retry(node)
        elif action == ACTION_FAILED:
            # Error budget is spent; no further retry is requested
            logger.error(f"Crowbar node {node.name} reported error; giving up")
            raise ProvisioningFailed(
                node=node.name,
                pool=handle.target,
                ticks_left=watch.ticks_left,
                errors_left=watch.errors_left,
                confirms_left=watch.confirms_left,
            )
        elif action == ACTION_READY:
            logger.info(f"Crowbar node {node.name} is ready after {watch.ticks} checks")
            return watch.outcome("ready")

    if timeout_policy == "succeed":
        logger.warning(
            f"Crowbar node {handle.node} not confirmed ready after {watch.ticks} checks; continuing"
        )
        return watch.outcome("timeout")

    raise ProvisioningTimeout(
        node=handle.node,
        pool=handle.target,
        ticks_left=watch.ticks_left,
        errors_left=watch.errors_left,
        confirms_left=watch.confirms_left,
    )
