#!/usr/bin/env python3

# context.py - OpenCrowbar machine daemon session and pool resolution
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

from ocbmachined.lib.ocb import OCBSession
from ocbmachined.lib.errors import NotFound, PoolCreateFailure, TransportFailure


logger = get_task_logger(__name__)


SOURCE_POOL = "system"
TARGET_POOL = "docker-machines"
READY_STATE = "docker-ready"
OS_INSTALL = "crowbar-installed-node"
INSTALL_OS = "ubuntu-14.04"
DEFAULT_PASS = "crowbar"
POOL_DESCRIPTION = "Added for Docker Machine"


class DriverContext:
    """
    Holds the Crowbar session and resolved pools for a run of driver operations

    A context is built once by the caller and passed to every operation; the
    session and each pool are resolved at most once per context.
    """

    def __init__(self, config, session_factory=OCBSession):
        self.config = config
        self.session_factory = session_factory
        self.session = None
        self.pools = dict()
        self.node = None

    @property
    def source_name(self):
        return self.config.get("pool_source", SOURCE_POOL)

    @property
    def target_name(self):
        return self.config.get("pool_target", TARGET_POOL)

    @property
    def source(self):
        return self.pools.get("source")

    @property
    def target(self):
        return self.pools.get("target")


#
# Session Manager
#
def ensure_session(ctx):
    """
    Return the context session, creating it on first use
    """
    if ctx.session is not None:
        return ctx.session

    password = ctx.config.get("ocb_password")
    if not password:
        # Legacy behaviour; the well-known default should not be relied on
        logger.warning("Missing password!  Assuming default")
        password = DEFAULT_PASS

    ctx.session = ctx.session_factory(
        ctx.config["ocb_url"],
        ctx.config["ocb_user"],
        password,
        verify=ctx.config.get("ocb_verify_ssl", False),
    )
    logger.debug(f"Started Crowbar session against {ctx.config['ocb_url']}")
    return ctx.session


#
# Pool Resolver
#
def ensure_pool(ctx, name):
    """
    Fetch a deployment by name, creating it if it does not exist
    """
    session = ensure_session(ctx)
    try:
        return session.get_deployment(name)
    except NotFound:
        logger.warning(f"Adding deployment {name} to {ctx.config['ocb_url']}")

    try:
        session.create_deployment(name, POOL_DESCRIPTION)
        return session.get_deployment(name)
    except TransportFailure as e:
        raise PoolCreateFailure(e.error, pool=name)


def ensure_pools(ctx):
    """
    Resolve the source and target deployments once per context
    """
    if ctx.target is None:
        target = ensure_pool(ctx, ctx.target_name)
        ensure_session(ctx).commit(target)
        ctx.pools["target"] = target
    if ctx.source is None:
        ctx.pools["source"] = ensure_pool(ctx, ctx.source_name)
    return ctx.source, ctx.target


def init_node(ctx, name):
    """
    Return the cached node for this context, fetching it on first use
    """
    if ctx.node is None or ctx.node.name != name:
        ctx.node = ensure_session(ctx).get_node(name)
    return ctx.node
