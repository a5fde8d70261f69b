#!/usr/bin/env python3

# keys.py - OpenCrowbar machine daemon SSH key libraries
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
import paramiko

from subprocess import run
from celery.utils.log import get_task_logger


logger = get_task_logger(__name__)


def ssh_key_path(config, machine_name):
    return os.path.join(config["ssh_store_path"], machine_name, "id_rsa")


def create_key_pair(config, machine_name, bits=2048):
    """
    Generate an RSA key pair for a machine and return the public key line
    """
    private_path = ssh_key_path(config, machine_name)
    public_path = f"{private_path}.pub"
    logger.debug(f"Creating key pair at {public_path}")

    os.makedirs(os.path.dirname(private_path), exist_ok=True)

    key = paramiko.RSAKey.generate(bits)
    key.write_private_key_file(private_path)
    public_key = f"{key.get_name()} {key.get_base64()} docker-machine-{machine_name}"

    with open(public_path, "w") as pfh:
        pfh.write(public_key)
        pfh.write("\n")

    return public_key


def purge_known_host(config, address):
    """
    Remove any cached host key for an address; returns True on success
    """
    known_hosts = os.path.expanduser(
        config.get("ssh_known_hosts", "~/.ssh/known_hosts")
    )
    if not os.path.exists(known_hosts):
        return True

    cmd = ["ssh-keygen", "-f", known_hosts, "-R", address]
    try:
        ret = run(cmd, capture_output=True)
    except OSError as e:
        logger.debug(f"Could not run {cmd[0]}: {e}")
        return False
    return True if ret.returncode == 0 else False
