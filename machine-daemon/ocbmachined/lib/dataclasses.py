#!/usr/bin/env python3

# dataclasses.py - OpenCrowbar machine daemon dataclasses
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

from dataclasses import dataclass


@dataclass
class Deployment:
    """
    An instance of a Crowbar Deployment (a pool of nodes)
    """

    id: int
    name: str
    description: str = ""


@dataclass
class Node:
    """
    An instance of a Crowbar Node
    """

    id: int
    name: str
    deployment_id: int
    available: bool = False
    alive: bool = False
    admin: bool = False
    system: bool = False
    description: str = ""
    power: str = ""

    @property
    def eligible(self):
        return not self.admin and not self.system and self.available


@dataclass
class Role:
    """
    An instance of a Crowbar Role
    """

    id: int
    name: str


@dataclass
class NodeRole:
    """
    An instance of a Role bound to a Node within a Deployment
    """

    id: int
    deployment_id: int
    node_id: int
    role_id: int
    order: int
    state: int = 1
    node_error: bool = False


@dataclass
class Machine:
    """
    A local record of a machine and the node it was given
    """

    id: int
    name: str
    node: str
    state: str


@dataclass
class NodeHandle:
    """
    Everything needed to track an allocated node
    """

    machine: str
    node: str
    node_id: int
    source: str
    target: str
    ready_state: str


@dataclass
class PollOutcome:
    """
    The end result of a provisioning wait
    """

    result: str
    ticks: int
    errors_left: int
    confirms_left: int
