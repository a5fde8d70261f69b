"""Shared fixtures: an in-memory Crowbar and a throwaway daemon config."""

import os
import tempfile
from dataclasses import replace

import pytest
import yaml

from ocbmachined.lib.context import DriverContext
from ocbmachined.lib.dataclasses import Deployment, Node, NodeRole, Role
from ocbmachined.lib.errors import NotFound, TransportFailure, UnsupportedOS


# ocbmachined.Daemon loads its configuration at import time
_CONFIG_DIR = tempfile.mkdtemp(prefix="ocbmachined-test-")


def base_document(root):
    return {
        "ocb": {
            "debug": True,
            "crowbar": {"url": "http://crowbar.test:3000", "user": "crowbar", "password": "secret"},
            "database": {"path": os.path.join(root, "ocbmachined.sql")},
            "api": {"address": "127.0.0.1", "port": 9998},
            "queue": {"address": "127.0.0.1", "port": 6379, "path": "/0"},
            "ssh": {"store_path": os.path.join(root, "machines")},
            "locks": {"path": os.path.join(root, "locks")},
            "notifications": {
                "enabled": False,
                "uri": "http://hooks.test/",
                "action": "post",
                "icons": {},
                "body": {"text": "{icon} {message}"},
            },
        }
    }


_CONFIG_FILE = os.path.join(_CONFIG_DIR, "ocbmachined.yaml")
with open(_CONFIG_FILE, "w") as cfh:
    yaml.safe_dump(base_document(_CONFIG_DIR), cfh)
os.environ.setdefault("OCBD_CONFIG_FILE", _CONFIG_FILE)


RUN_STATES = {
    # state name: (alive, run state, node_error)
    "Running": (True, 0, False),
    "Starting": (True, 1, False),
    "Error": (True, -1, False),
    "Stopped": (False, 1, False),
}


class FakeCrowbar:
    """
    In-memory stand-in for OCBSession

    Entities are stored by value; callers always receive copies so that local
    mutation has no effect until update_node is called.
    """

    url = "http://crowbar.test:3000"

    def __init__(self):
        self._ids = 100
        self.deployments = dict()
        self.nodes = dict()
        self.roles = dict()
        self.node_roles = list()
        self.ssh_keys = dict()
        self.os_catalog = {"ubuntu-14.04", "centos-7.1"}
        self.node_os = dict()
        self.addresses = dict()
        self.power_actions = dict()
        self.calls = list()
        self.failures = dict()
        self.scripts = dict()

    # Test helpers
    def next_id(self):
        self._ids += 1
        return self._ids

    def add_deployment(self, name):
        deployment = Deployment(self.next_id(), name, "")
        self.deployments[name] = deployment
        return deployment

    def add_node(self, name, deployment, available=True, admin=False, system=False, alive=True):
        node = Node(
            self.next_id(),
            name,
            self.deployments[deployment].id,
            available=available,
            alive=alive,
            admin=admin,
            system=system,
        )
        self.nodes[name] = node
        self.addresses[name] = ["fd00::5/64", "192.168.124.81/24"]
        self.power_actions[name] = ["on", "off", "reboot", "halt"]
        return node

    def add_role(self, name):
        role = Role(self.next_id(), name)
        self.roles[name] = role
        return role

    def fail(self, method, error):
        self.failures[method] = error

    def script(self, node_name, states):
        self.scripts[node_name] = list(states)

    def roles_for(self, node_name):
        node = self.nodes[node_name]
        return [nr for nr in self.node_roles if nr.node_id == node.id]

    def called(self, method):
        return [args for name, args in self.calls if name == method]

    def _record(self, method, *args):
        self.calls.append((method, args))
        if method in self.failures:
            raise self.failures[method]

    def _apply_script(self, node):
        script = self.scripts.get(node.name)
        if not script:
            return
        alive, run_state, node_error = RUN_STATES[script.pop(0)]
        node.alive = alive
        ready = self.roles.get("docker-ready")
        for nr in self.node_roles:
            if ready is not None and nr.node_id == node.id and nr.role_id == ready.id:
                nr.state = run_state
                nr.node_error = node_error

    # Capability surface
    def get_deployment(self, name):
        self._record("get_deployment", name)
        if name not in self.deployments:
            raise NotFound(f"deployment {name}", status_code=404)
        return replace(self.deployments[name])

    def create_deployment(self, name, description):
        self._record("create_deployment", name, description)
        deployment = self.add_deployment(name)
        deployment.description = description
        return replace(deployment)

    def get_node(self, name):
        self._record("get_node", name)
        if name not in self.nodes:
            raise NotFound(f"node {name}", status_code=404)
        self._apply_script(self.nodes[name])
        return replace(self.nodes[name])

    def list_nodes(self, deployment_name):
        self._record("list_nodes", deployment_name)
        deployment = self.deployments[deployment_name]
        return [replace(n) for n in self.nodes.values() if n.deployment_id == deployment.id]

    def update_node(self, node):
        self._record("update_node", node.name)
        self.nodes[node.name] = replace(node)
        return replace(node)

    def get_addresses(self, node, network="admin"):
        self._record("get_addresses", node.name, network)
        return list(self.addresses[node.name])

    def add_ssh_key(self, node, slot, key):
        self._record("add_ssh_key", node.name, slot, key)
        self.ssh_keys.setdefault(node.name, dict())[slot] = key

    def os_available(self, os_name):
        self._record("os_available", os_name)
        return os_name in self.os_catalog

    def set_node_os(self, node, os_name):
        self._record("set_node_os", node.name, os_name)
        if os_name not in self.os_catalog:
            raise UnsupportedOS(os_name, node=node.name)
        self.node_os[node.name] = os_name

    def set_power(self, node, desired, fallback):
        self._record("set_power", node.name, desired, fallback)
        action = desired if desired in self.power_actions[node.name] else fallback
        self.nodes[node.name].power = action
        return action

    def retry(self, node):
        self._record("retry", node.name)

    def redeploy(self, node):
        self._record("redeploy", node.name)

    def propose(self, entity):
        self._record("propose", entity.name)

    def commit(self, entity):
        self._record("commit", entity.name)

    def get_role(self, name):
        self._record("get_role", name)
        if name not in self.roles:
            raise NotFound(f"role {name}", status_code=404)
        return replace(self.roles[name])

    def bind_role(self, deployment_id, node_id, role_id, order):
        self._record("bind_role", deployment_id, node_id, role_id, order)
        node_role = NodeRole(self.next_id(), deployment_id, node_id, role_id, order)
        self.node_roles.append(node_role)
        return replace(node_role)

    def get_node_role(self, node, role_name):
        self._record("get_node_role", node.name, role_name)
        role = self.roles.get(role_name)
        for nr in self.node_roles:
            if role is not None and nr.node_id == node.id and nr.role_id == role.id:
                return replace(nr)
        raise NotFound(f"{role_name} on {node.name}", status_code=404)

    def unbind_role(self, node_role):
        self._record("unbind_role", node_role.id)
        self.node_roles = [nr for nr in self.node_roles if nr.id != node_role.id]


@pytest.fixture
def config(tmp_path):
    return {
        "debug": True,
        "ocb_url": "http://crowbar.test:3000",
        "ocb_user": "crowbar",
        "ocb_password": "secret",
        "ocb_verify_ssl": False,
        "pool_source": "system",
        "pool_target": "docker-machines",
        "provision_ready_state": "docker-ready",
        "provision_os_install": "crowbar-installed-node",
        "provision_target_os": "ubuntu-14.04",
        "polling_interval": 10,
        "polling_iterations": 90,
        "polling_error_budget": 3,
        "polling_confirm_budget": 2,
        "polling_timeout_policy": "fail",
        "database_path": str(tmp_path / "ocbmachined.sql"),
        "ssh_store_path": str(tmp_path / "machines"),
        "ssh_known_hosts": str(tmp_path / "known_hosts"),
        "lock_path": str(tmp_path / "locks"),
        "notifications_enabled": False,
    }


@pytest.fixture
def crowbar():
    fake = FakeCrowbar()
    fake.add_deployment("system")
    fake.add_role("crowbar-installed-node")
    fake.add_role("docker-ready")
    return fake


@pytest.fixture
def context(config, crowbar):
    ctx = DriverContext(config)
    ctx.session = crowbar
    return ctx


@pytest.fixture
def key_provider():
    def provide(machine_name):
        return f"ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQ docker-machine-{machine_name}"

    return provide


@pytest.fixture
def transport_error():
    return TransportFailure("boom", status_code=500, url="http://crowbar.test:3000/api/v2")


@pytest.fixture
def config_document(tmp_path):
    return base_document(str(tmp_path))
