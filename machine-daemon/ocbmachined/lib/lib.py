#!/usr/bin/env python3

# lib.py - OpenCrowbar machine daemon libraries
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

import os
import contextlib

import ocbmachined.lib.db as db
import ocbmachined.lib.notifications as notifications

from time import sleep as time_sleep
from filelock import FileLock
from celery.utils.log import get_task_logger

from ocbmachined.lib.driver import Driver
from ocbmachined.lib.errors import DriverError, NotFound


logger = get_task_logger(__name__)


#
# Helper functions
#
@contextlib.contextmanager
def machine_lock(config, name):
    """
    Serialize every operation on one machine, across worker processes
    """
    os.makedirs(config["lock_path"], exist_ok=True)
    with FileLock(os.path.join(config["lock_path"], f"{name}.lock")):
        yield


def get_driver(config, name, context=None, sleep=time_sleep):
    machine = db.get_machine(config, name)
    if machine is None:
        raise NotFound(f"No machine named {name}")
    return Driver(config, name, node=machine.node, context=context, sleep=sleep)


#
# Worker Functions - Machine lifecycle (Celery root tasks)
#
def machine_create(config, data, context=None, sleep=time_sleep):
    """
    Allocate a node for a machine and wait for it to become ready
    """
    name = data["name"]
    logger.info(f"Creating machine {name}")

    with machine_lock(config, name):
        machine = db.get_machine(config, name)
        if machine is None:
            machine = db.add_machine(config, name, "allocating")
        elif machine.node is not None:
            logger.warning(f"Machine {name} already holds node {machine.node}; ignoring")
            return machine
        else:
            db.update_machine_state(config, name, "allocating")

        notifications.send_webhook(config, "begin", f"Machine {name}: allocating a Crowbar node")

        driver = Driver(config, name, context=context, sleep=sleep)
        try:
            handle = driver.allocate()
        except DriverError as e:
            if driver.node is not None:
                db.update_machine_node(config, name, driver.node)
            db.update_machine_state(config, name, "failed")
            notifications.send_webhook(config, "failure", f"Machine {name}: allocation failed: {e}")
            raise

        db.update_machine_node(config, name, handle.node)
        db.update_machine_state(config, name, "provisioning")
        notifications.send_webhook(
            config, "info", f"Machine {name}: node {handle.node} assigned, provisioning"
        )

        try:
            outcome = driver.wait(handle)
        except DriverError as e:
            db.update_machine_state(config, name, "failed")
            notifications.send_webhook(config, "failure", f"Machine {name}: provisioning failed: {e}")
            raise

        logger.info(f"Machine {name} finished provisioning: {outcome}")
        machine = db.update_machine_state(config, name, "ready")
        notifications.send_webhook(
            config, "completed", f"Machine {name}: node {handle.node} is {outcome.result}"
        )
        return machine


def machine_remove(config, data, context=None):
    """
    Release the node held by a machine back to the source pool
    """
    name = data["name"]
    logger.info(f"Removing machine {name}")

    with machine_lock(config, name):
        driver = get_driver(config, name, context=context)
        db.update_machine_state(config, name, "releasing")

        try:
            driver.remove()
        except DriverError as e:
            db.update_machine_state(config, name, "failed")
            notifications.send_webhook(config, "failure", f"Machine {name}: release failed: {e}")
            raise

        db.update_machine_node(config, name, None)
        machine = db.update_machine_state(config, name, "released")
        notifications.send_webhook(
            config, "success", f"Machine {name}: node {driver.node} released"
        )
        return machine


def machine_state(config, name, context=None):
    return get_driver(config, name, context=context).get_state()


def machine_address(config, name, context=None):
    driver = get_driver(config, name, context=context)
    return driver.get_ip(), driver.get_url()


def machine_power(config, name, action, context=None):
    """
    Run one of the start/stop/restart/kill power actions against a machine
    """
    with machine_lock(config, name):
        driver = get_driver(config, name, context=context)
        logger.info(f"Machine {name}: requesting power {action}")
        return driver.power(action)
