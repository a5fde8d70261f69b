#!/usr/bin/env python3

# ocb.py - OpenCrowbar machine daemon Crowbar API libraries
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

# Refs:
# https://github.com/opencrowbar/core/tree/develop/doc/devguide/api

import requests
import urllib3
import json

from time import sleep
from requests.auth import HTTPDigestAuth
from celery.utils.log import get_task_logger

from ocbmachined.lib.dataclasses import Deployment, Node, Role, NodeRole
from ocbmachined.lib.errors import (
    AuthFailure,
    NotFound,
    TransportFailure,
    UnsupportedOS,
)


logger = get_task_logger(__name__)


API_ROOT = "/api/v2"


#
# Helper functions
#
def node_from_json(data):
    return Node(
        data["id"],
        data["name"],
        data.get("deployment_id"),
        available=bool(data.get("available", False)),
        alive=bool(data.get("alive", False)),
        admin=bool(data.get("admin", False)),
        system=bool(data.get("system", False)),
        description=data.get("description") or "",
        power=data.get("power") or "",
    )


def deployment_from_json(data):
    return Deployment(data["id"], data["name"], data.get("description") or "")


def role_from_json(data):
    return Role(data["id"], data["name"])


def node_role_from_json(data):
    return NodeRole(
        data["id"],
        data.get("deployment_id"),
        data.get("node_id"),
        data.get("role_id"),
        data.get("order", 0),
        state=data.get("state", 1),
        node_error=bool(data.get("node_error", False)),
    )


def error_message(response):
    """
    Pull a human-readable message out of a failed Crowbar response
    """
    try:
        body = response.json()
    except (json.decoder.JSONDecodeError, ValueError):
        return response.text.strip() or response.reason
    if isinstance(body, dict):
        return body.get("message") or body.get("error") or str(body)
    return str(body)


#
# Session class
#
class OCBSession:
    """
    An authenticated session against an OpenCrowbar API endpoint

    Implements the small set of Crowbar calls the machine driver needs. A 404
    raises NotFound; any other failed call raises TransportFailure.
    """

    def __init__(self, host, username, password, verify=False, max_tries=5):
        if not verify:
            # Disable urllib3 warnings
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        self.host = host.rstrip("/")
        self.username = username
        self.verify = verify

        self.session = requests.Session()
        self.session.auth = HTTPDigestAuth(username, password)
        self.session.headers.update(
            {"content-type": "application/json", "accept": "application/json"}
        )

        # Perform login
        login_uri = f"{self.host}{API_ROOT}/digest"
        login_response = None

        tries = 1
        while tries <= max_tries:
            logger.debug(f"Trying to log in to Crowbar ({tries}/{max_tries})...")
            try:
                login_response = self.session.head(
                    login_uri, verify=self.verify, timeout=5
                )
                break
            except requests.exceptions.RequestException as e:
                logger.debug(f"Login attempt {tries} failed: {e}")
                sleep(2)
                tries += 1

        if login_response is None:
            raise AuthFailure(f"No response from {self.host} after {max_tries} tries")

        if login_response.status_code in [401, 403]:
            raise AuthFailure(
                f"Login as {username} rejected (HTTP Code: {login_response.status_code})"
            )
        logger.debug(f"Logged in to Crowbar at {self.host} as {username}")

    @property
    def url(self):
        return self.host

    def request(self, method, uri, data=None, params=None):
        url = f"{self.host}{API_ROOT}{uri}"

        if data is not None:
            payload = json.dumps(data)
            logger.debug(f"{method} payload: {payload}")
        else:
            payload = None

        try:
            response = self.session.request(
                method, url, data=payload, params=params, verify=self.verify, timeout=30
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"! Error: {method} request to {url} failed")
            logger.warning(f"! Details: {e}")
            raise TransportFailure(str(e), url=url)

        if response.status_code in [200, 201, 202, 204]:
            try:
                return response.json()
            except (json.decoder.JSONDecodeError, ValueError):
                return dict()

        message = error_message(response)
        if response.status_code == 404:
            logger.debug(f"{method} request to {url} found nothing: {message}")
            raise NotFound(message, status_code=404, url=url)

        logger.warning(f"! Error: {method} request to {url} failed")
        logger.warning(f"! HTTP Code: {response.status_code}")
        logger.warning(f"! Details: {message}")
        raise TransportFailure(message, status_code=response.status_code, url=url)

    def get(self, uri, params=None):
        return self.request("GET", uri, params=params)

    def post(self, uri, data):
        return self.request("POST", uri, data=data)

    def put(self, uri, data=None, params=None):
        return self.request("PUT", uri, data=data, params=params)

    def delete(self, uri):
        return self.request("DELETE", uri)

    #
    # Deployments
    #
    def get_deployment(self, name):
        return deployment_from_json(self.get(f"/deployments/{name}"))

    def create_deployment(self, name, description):
        return deployment_from_json(
            self.post("/deployments", {"name": name, "description": description})
        )

    #
    # Nodes
    #
    def get_node(self, name):
        return node_from_json(self.get(f"/nodes/{name}"))

    def list_nodes(self, deployment_name):
        return [
            node_from_json(n) for n in self.get(f"/deployments/{deployment_name}/nodes")
        ]

    def update_node(self, node):
        payload = {
            "description": node.description,
            "deployment_id": node.deployment_id,
            "available": node.available,
        }
        return node_from_json(self.put(f"/nodes/{node.id}", payload))

    def get_addresses(self, node, network="admin"):
        detail = self.get(f"/nodes/{node.id}/addresses", params={"network": network})
        return detail.get("addresses", [])

    def add_ssh_key(self, node, slot, key):
        payload = {"value": {f"docker-machine-{slot}": key}}
        self.put(f"/nodes/{node.id}/attribs/crowbar-access_keys", payload)

    def os_available(self, os_name):
        detail = self.get("/attribs/provisioner-available-oses")
        return os_name in (detail.get("value") or {})

    def set_node_os(self, node, os_name):
        if not self.os_available(os_name):
            raise UnsupportedOS(os_name, node=node.name)
        self.put(f"/nodes/{node.id}/attribs/provisioner-target_os", {"value": os_name})

    def set_power(self, node, desired, fallback):
        """
        Request a power action, using the fallback if the desired action is not offered
        """
        detail = self.get(f"/nodes/{node.id}/power")
        choices = detail.get("power", [])
        action = desired if desired in choices else fallback
        if action != desired:
            logger.info(
                f"Node {node.name} does not offer power action '{desired}'; using '{action}'"
            )
        self.put(f"/nodes/{node.id}/power", params={"poweraction": action})
        node.power = action
        return action

    def retry(self, node):
        self.put(f"/nodes/{node.id}/retry")

    def redeploy(self, node):
        self.put(f"/nodes/{node.id}/redeploy")

    #
    # Proposals
    #
    def propose(self, entity):
        kind = "deployments" if isinstance(entity, Deployment) else "nodes"
        self.put(f"/{kind}/{entity.id}/propose")

    def commit(self, entity):
        kind = "deployments" if isinstance(entity, Deployment) else "nodes"
        self.put(f"/{kind}/{entity.id}/commit")

    #
    # Roles
    #
    def get_role(self, name):
        return role_from_json(self.get(f"/roles/{name}"))

    def bind_role(self, deployment_id, node_id, role_id, order):
        payload = {
            "deployment_id": deployment_id,
            "node_id": node_id,
            "role_id": role_id,
            "order": order,
        }
        return node_role_from_json(self.post("/node_roles", payload))

    def get_node_role(self, node, role_name):
        return node_role_from_json(self.get(f"/nodes/{node.id}/node_roles/{role_name}"))

    def unbind_role(self, node_role):
        self.delete(f"/node_roles/{node_role.id}")
