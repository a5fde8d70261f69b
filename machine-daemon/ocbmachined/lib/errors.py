#!/usr/bin/env python3

# errors.py - OpenCrowbar machine daemon exceptions
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


class DriverError(Exception):
    """
    Base of all errors raised by the machine driver

    Every error carries an optional node and pool name so that a failure can be
    diagnosed from the message alone.
    """

    short_message = "Driver failure"

    def __init__(self, error=None, node=None, pool=None):
        self.error = error
        self.node = node
        self.pool = pool

    def details(self):
        parts = list()
        if self.node is not None:
            parts.append(f"node {self.node}")
        if self.pool is not None:
            parts.append(f"pool {self.pool}")
        return parts

    def __str__(self):
        message = self.short_message
        if self.error is not None:
            message = f"{message}: {self.error}"
        details = self.details()
        if details:
            message = f"{message} ({', '.join(details)})"
        return str(message)


class TransportFailure(DriverError):
    """
    A remote call failed outside of the classified provisioning states
    """

    short_message = "Crowbar request failed"

    def __init__(self, error=None, node=None, pool=None, status_code=None, url=None):
        super().__init__(error, node=node, pool=pool)
        self.status_code = status_code
        self.url = url

    def details(self):
        parts = super().details()
        if self.url is not None:
            parts.append(f"URL {self.url}")
        if self.status_code is not None:
            parts.append(f"HTTP Code: {self.status_code}")
        return parts


class NotFound(TransportFailure):
    """
    The remote API has no entity by the requested name
    """

    short_message = "Not found"


class AuthFailure(DriverError):
    short_message = "Could not start Crowbar session"


class PoolCreateFailure(DriverError):
    short_message = "Could not create deployment"


class NoEligibleNode(DriverError):
    short_message = "No available machines"

    def __init__(self, error=None, node=None, pool=None, candidates=0):
        super().__init__(error, node=node, pool=pool)
        self.candidates = candidates

    def details(self):
        parts = super().details()
        parts.append(f"{self.candidates} candidates inspected")
        return parts


class UpdateFailure(DriverError):
    short_message = "Could not claim node"


class RoleBindFailure(DriverError):
    short_message = "Could not bind role to node"


class UnsupportedOS(DriverError):
    short_message = "Requested operating system has not been configured in Crowbar"


class ReleaseFailure(DriverError):
    short_message = "Could not release node"


class ProvisioningError(DriverError):
    """
    A provisioning wait ended without a confirmed ready state

    Carries the budgets that were left when the wait ended.
    """

    short_message = "Provisioning failed"

    def __init__(
        self,
        error=None,
        node=None,
        pool=None,
        ticks_left=None,
        errors_left=None,
        confirms_left=None,
    ):
        super().__init__(error, node=node, pool=pool)
        self.ticks_left = ticks_left
        self.errors_left = errors_left
        self.confirms_left = confirms_left

    def details(self):
        parts = super().details()
        if self.ticks_left is not None:
            parts.append(f"ticks left {self.ticks_left}")
        if self.errors_left is not None:
            parts.append(f"error budget left {self.errors_left}")
        if self.confirms_left is not None:
            parts.append(f"confirm budget left {self.confirms_left}")
        return parts


class ProvisioningFailed(ProvisioningError):
    short_message = "Node state reported error"


class ProvisioningTimeout(ProvisioningError):
    short_message = "Node did not become ready in time"


class ProvisioningCancelled(ProvisioningError):
    short_message = "Provisioning wait cancelled"
