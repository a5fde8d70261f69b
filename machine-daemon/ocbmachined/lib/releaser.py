#!/usr/bin/env python3

# releaser.py - OpenCrowbar machine daemon node release
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

from celery.utils.log import get_task_logger

from ocbmachined.lib.context import (
    ensure_pools,
    ensure_session,
    init_node,
    OS_INSTALL,
    READY_STATE,
)
from ocbmachined.lib.errors import NotFound, ReleaseFailure, TransportFailure


logger = get_task_logger(__name__)


RELEASED_DESCRIPTION = "Released by Docker-Machine"
REMOVED_KEY = "key-removed"


def release_step(node, description, call, *args):
    try:
        call(*args)
    except NotFound as e:
        logger.warning(f"Crowbar node {node.name} {description} skipped: {e}")


def remove_node_role(ctx, node, role_name):
    """
    Delete a NodeRole by role name; returns False if there was none
    """
    session = ensure_session(ctx)
    try:
        node_role = session.get_node_role(node, role_name)
        session.unbind_role(node_role)
    except NotFound:
        logger.debug(f"Crowbar node {node.name} has no {role_name} role to remove")
        return False
    logger.debug(f"Crowbar removed role {role_name} from node {node.name}")
    return True


def release(ctx, node_name):
    """
    Return a node to the source pool and clear what allocation put on it

    Only a failure to hand ownership back is fatal up front; missing roles are
    skipped so that a release can be repeated or run on a half-allocated node.
    """
    session = ensure_session(ctx)
    try:
        node = init_node(ctx, node_name)
        source, target = ensure_pools(ctx)
    except TransportFailure as e:
        raise ReleaseFailure(e.error, node=node_name)

    logger.debug(f"Crowbar releasing node {node.name} back to deployment {source.name}")
    try:
        session.propose(node)
        node.available = True
        node.description = RELEASED_DESCRIPTION
        node.deployment_id = source.id
        node = session.update_node(node)
    except TransportFailure as e:
        raise ReleaseFailure(e.error, node=node.name, pool=source.name)
    ctx.node = node

    role_names = [
        ctx.config.get("provision_ready_state", READY_STATE),
        ctx.config.get("provision_os_install", OS_INSTALL),
    ]
    try:
        release_step(node, "key removal", session.add_ssh_key, node, 1, REMOVED_KEY)
        for role_name in role_names:
            remove_node_role(ctx, node, role_name)

        # now, we want a fresh start
        release_step(node, "redeploy", session.redeploy, node)
        release_step(node, "commit", session.commit, node)
    except TransportFailure as e:
        raise ReleaseFailure(e.error, node=node.name, pool=source.name)

    logger.debug(f"Crowbar started redeploy request for node {node.name}")
