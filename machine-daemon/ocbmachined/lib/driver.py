#!/usr/bin/env python3

# driver.py - OpenCrowbar machine daemon lifecycle driver
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

import ocbmachined.lib.allocator as allocator
import ocbmachined.lib.poller as poller
import ocbmachined.lib.releaser as releaser
import ocbmachined.lib.keys as keys

from ocbmachined.lib.context import DriverContext, ensure_pools, ensure_session, init_node
from ocbmachined.lib.errors import DriverError, NotFound


logger = get_task_logger(__name__)


DOCKER_PORT = 2376

# Desired power action and the fallback used if the node does not offer it
POWER_ACTIONS = {
    "start": ("on", "on"),
    "stop": ("off", "reboot"),
    "restart": ("reboot", "reset"),
    "kill": ("halt", "reboot"),
}


class Driver:
    """
    Lifecycle operations for one machine backed by a Crowbar node
    """

    def __init__(self, config, machine_name, node=None, context=None, sleep=time_sleep):
        self.config = config
        self.machine_name = machine_name
        self.node = node
        self.context = context if context is not None else DriverContext(config)
        self.sleep = sleep

    def driver_name(self):
        return "crowbar"

    def key_provider(self, machine_name):
        return keys.create_key_pair(self.config, machine_name)

    def pre_create_check(self):
        source, _ = ensure_pools(self.context)
        session = ensure_session(self.context)
        candidates = session.list_nodes(source.name)
        if len(candidates) == 0:
            logger.warning(f"No machines in {session.url} deployment {source.name}")
        else:
            logger.debug(
                f"Found {len(candidates)} machines in {session.url} deployment {source.name} (some may not be available)"
            )
        return len(candidates)

    def allocate(self):
        try:
            handle = allocator.allocate(self.context, self.machine_name, self.key_provider)
        except DriverError:
            # A claimed node must stay reachable by remove()
            if self.context.node is not None:
                self.node = self.context.node.name
            raise
        self.node = handle.node
        return handle

    def wait(self, handle, cancel=None):
        return poller.wait_until_ready(self.context, handle, cancel=cancel, sleep=self.sleep)

    def create(self, cancel=None):
        return self.wait(self.allocate(), cancel=cancel)

    def remove(self):
        if self.node is None:
            logger.info(f"Machine {self.machine_name} has no node assigned; nothing to release")
            return
        releaser.release(self.context, self.node)

    def get_state(self):
        if self.node is None:
            return poller.STATE_NONE
        return poller.get_state(self.context, self.node)

    def assigned_node(self):
        if self.node is None:
            raise NotFound(f"Machine {self.machine_name} has no node assigned")
        return init_node(self.context, self.node)

    def power(self, operation):
        desired, fallback = POWER_ACTIONS[operation]
        logger.debug(f"Crowbar {operation} node {self.node}")
        node = self.assigned_node()
        return ensure_session(self.context).set_power(node, desired, fallback)

    def start(self):
        return self.power("start")

    def stop(self):
        return self.power("stop")

    def restart(self):
        return self.power("restart")

    def kill(self):
        return self.power("kill")

    def get_ip(self):
        node = self.assigned_node()
        return allocator.get_address(self.context, node)

    def get_url(self):
        return f"tcp://{self.get_ip()}:{DOCKER_PORT}"

    def get_ssh_hostname(self):
        return self.get_ip()

    def get_ssh_key_path(self):
        return keys.ssh_key_path(self.config, self.machine_name)

    def get_ssh_port(self):
        return 22

    def get_ssh_username(self):
        return "root"
