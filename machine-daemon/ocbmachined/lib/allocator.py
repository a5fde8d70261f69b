#!/usr/bin/env python3

# allocator.py - OpenCrowbar machine daemon node allocation
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

import ipaddress

from celery.utils.log import get_task_logger

import ocbmachined.lib.notifications as notifications
import ocbmachined.lib.keys as keys

from ocbmachined.lib.context import (
    ensure_pools,
    ensure_session,
    INSTALL_OS,
    OS_INSTALL,
    READY_STATE,
)
from ocbmachined.lib.dataclasses import NodeHandle
from ocbmachined.lib.errors import (
    NoEligibleNode,
    RoleBindFailure,
    TransportFailure,
    UnsupportedOS,
    UpdateFailure,
)


logger = get_task_logger(__name__)


OS_INSTALL_ORDER = 1000
READY_STATE_ORDER = 2000


#
# Helper functions
#
def select_candidate(candidates):
    """
    Return the first node that is neither admin nor system and is available
    """
    for candidate in candidates:
        if candidate.eligible:
            return candidate
    return None


def get_address(ctx, node, network="admin"):
    """
    Return the first IPv4 address of a node on a network, without its prefix
    """
    addresses = ensure_session(ctx).get_addresses(node, network)
    logger.debug(f"Crowbar node {node.name} has IP addresses {addresses}")
    for address in addresses:
        interface = ipaddress.ip_interface(address)
        if interface.version == 4:
            return str(interface.ip)
    raise TransportFailure(f"No IPv4 address on network {network}", node=node.name)


def bind_role(ctx, node, role_name, order):
    session = ensure_session(ctx)
    try:
        role = session.get_role(role_name)
        node_role = session.bind_role(ctx.target.id, node.id, role.id, order)
    except TransportFailure as e:
        raise RoleBindFailure(f"{role_name}: {e.error}", node=node.name, pool=ctx.target.name)
    logger.debug(f"Crowbar bound role {role_name} ({role.id}) to {node.name} at order {order}")
    return node_role


def purge_host_key(ctx, node):
    """
    Drop any stale host key for a reused node; failures are reported, not raised
    """
    try:
        address = get_address(ctx, node)
    except TransportFailure as e:
        logger.warning(f"Could not determine address of {node.name} to clean known_hosts: {e}")
        return False

    logger.debug(f"Attempting to remove key for {address} to prevent known_hosts MitM failure")
    if keys.purge_known_host(ctx.config, address):
        return True

    known_hosts = ctx.config.get("ssh_known_hosts", "~/.ssh/known_hosts")
    logger.info(
        f'You may need to cleanup your known_hosts file: "ssh-keygen -f {known_hosts} -R {address}"'
    )
    notifications.send_webhook(
        ctx.config,
        "warning",
        f"Node {node.name}: could not remove stale known_hosts entry for {address}",
    )
    return False


#
# Entry function
#
def allocate(ctx, machine_name, key_provider):
    """
    Claim a node from the source pool for a machine and start provisioning it

    key_provider is called with the machine name and returns the public key to
    inject. The key and the target OS are checked before the node is claimed.
    Once claimed, the node stays in ctx.node even if a later step raises.
    """
    session = ensure_session(ctx)
    ctx.node = None
    source, target = ensure_pools(ctx)
    ready_state = ctx.config.get("provision_ready_state", READY_STATE)
    os_install = ctx.config.get("provision_os_install", OS_INSTALL)
    target_os = ctx.config.get("provision_target_os", INSTALL_OS)

    logger.debug(f"Crowbar allocating (aka creating) {machine_name} using {session.url}")
    candidates = session.list_nodes(source.name)
    node = select_candidate(candidates)
    if node is None:
        logger.error(f"No available machines in {session.url} deployment {source.name}")
        raise NoEligibleNode(pool=source.name, candidates=len(candidates))
    logger.debug(f"Crowbar picked node {node.name} ({node.id})")

    # Checked before the claim so a failure leaves the node in the source pool
    sshkey = key_provider(machine_name)
    if not session.os_available(target_os):
        raise UnsupportedOS(target_os, node=node.name, pool=source.name)

    node.description = f"Docker-Machine {machine_name}"
    node.deployment_id = target.id
    try:
        node = session.update_node(node)
    except TransportFailure as e:
        raise UpdateFailure(e.error, node=node.name, pool=target.name)
    ctx.node = node
    logger.info(
        f"Crowbar assigned node {node.name} from {source.name} to {target.name} ({node.deployment_id})"
    )

    session.propose(node)

    # The install must sort before the ready check
    bind_role(ctx, node, os_install, OS_INSTALL_ORDER)
    bind_role(ctx, node, ready_state, READY_STATE_ORDER)

    session.add_ssh_key(node, 1, sshkey)
    logger.debug(f"Crowbar added public key [{sshkey[:25]}...] to node {node.name}")

    logger.debug(f"Crowbar set {node.name} operating system to {target_os}")
    session.set_node_os(node, target_os)

    session.commit(node)
    node = session.get_node(node.name)
    ctx.node = node
    logger.debug(f"Crowbar node {node.name} Ready State target set to {ready_state}")

    purge_host_key(ctx, node)

    return NodeHandle(
        machine=machine_name,
        node=node.name,
        node_id=node.id,
        source=source.name,
        target=target.name,
        ready_state=ready_state,
    )
