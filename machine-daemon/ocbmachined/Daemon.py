#!/usr/bin/env python3

# Daemon.py - OpenCrowbar machine HTTP API daemon
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
import yaml
import signal

from sys import argv

import ocbmachined.lib.notifications as notifications
import ocbmachined.lib.db as db

from ocbmachined.lib.context import (
    SOURCE_POOL,
    TARGET_POOL,
    READY_STATE,
    OS_INSTALL,
    INSTALL_OS,
)
from ocbmachined.lib.poller import (
    POLL_INTERVAL,
    POLL_ITERATIONS,
    ERROR_BUDGET,
    CONFIRM_BUDGET,
)

# Daemon version
version = "0.1"

# API version
API_VERSION = 1.0


##########################################################
# Exceptions
##########################################################


class MalformedConfigurationError(Exception):
    """
    An exception when parsing the ocbmachined configuration file
    """

    def __init__(self, error=None):
        self.msg = f"ERROR: Configuration file is malformed: {error}"

    def __str__(self):
        return str(self.msg)


##########################################################
# Configuration Parsing
##########################################################


def get_config_path():
    try:
        return os.environ["OCBD_CONFIG_FILE"]
    except KeyError:
        print('ERROR: The "OCBD_CONFIG_FILE" environment variable must be set.')
        os._exit(1)


def load_config(o_config):
    """
    Flatten a parsed configuration document into the daemon config dictionary
    """
    config = dict()

    # Get the base configuration
    try:
        o_base = o_config["ocb"]
    except (KeyError, TypeError) as k:
        raise MalformedConfigurationError(f"Missing top-level category {k}")

    for key in ["debug"]:
        try:
            config[key] = o_base[key]
        except KeyError as k:
            raise MalformedConfigurationError(f"Missing first-level key {k}")

    # Get the first-level categories
    try:
        o_crowbar = o_base["crowbar"]
        o_database = o_base["database"]
        o_api = o_base["api"]
        o_queue = o_base["queue"]
        o_ssh = o_base["ssh"]
        o_locks = o_base["locks"]
        o_notifications = o_base["notifications"]
    except KeyError as k:
        raise MalformedConfigurationError(f"Missing first-level category {k}")

    # Optional categories fall back to the Crowbar driver defaults
    o_pools = o_base.get("pools") or dict()
    o_provisioning = o_base.get("provisioning") or dict()
    o_polling = o_base.get("polling") or dict()

    # Get the Crowbar configuration
    for key in ["url", "user"]:
        try:
            config[f"ocb_{key}"] = o_crowbar[key]
        except Exception:
            raise MalformedConfigurationError(
                f"Missing second-level key '{key}' under 'crowbar'"
            )
    config["ocb_password"] = o_crowbar.get("password")
    config["ocb_verify_ssl"] = o_crowbar.get("verify_ssl", False)

    # Get the pool configuration
    config["pool_source"] = o_pools.get("source", SOURCE_POOL)
    config["pool_target"] = o_pools.get("target", TARGET_POOL)

    # Get the provisioning configuration
    config["provision_ready_state"] = o_provisioning.get("ready_state", READY_STATE)
    config["provision_os_install"] = o_provisioning.get("os_install", OS_INSTALL)
    config["provision_target_os"] = o_provisioning.get("target_os", INSTALL_OS)

    # Get the polling configuration
    for key, default in [
        ("interval", POLL_INTERVAL),
        ("iterations", POLL_ITERATIONS),
        ("error_budget", ERROR_BUDGET),
        ("confirm_budget", CONFIRM_BUDGET),
    ]:
        try:
            config[f"polling_{key}"] = int(o_polling.get(key, default))
        except (TypeError, ValueError):
            raise MalformedConfigurationError(
                f"Second-level key '{key}' under 'polling' must be an integer"
            )
        if config[f"polling_{key}"] < 1:
            raise MalformedConfigurationError(
                f"Second-level key '{key}' under 'polling' must be at least 1"
            )
    config["polling_timeout_policy"] = o_polling.get("timeout_policy", "fail")
    if config["polling_timeout_policy"] not in ["fail", "succeed"]:
        raise MalformedConfigurationError(
            "Second-level key 'timeout_policy' under 'polling' must be 'fail' or 'succeed'"
        )

    # Get the Database configuration
    for key in ["path"]:
        try:
            config[f"database_{key}"] = o_database[key]
        except Exception:
            raise MalformedConfigurationError(
                f"Missing second-level key '{key}' under 'database'"
            )

    # Get the API configuration
    for key in ["address", "port"]:
        try:
            config[f"api_{key}"] = o_api[key]
        except Exception:
            raise MalformedConfigurationError(
                f"Missing second-level key '{key}' under 'api'"
            )

    # Get the queue configuration
    for key in ["address", "port", "path"]:
        try:
            config[f"queue_{key}"] = o_queue[key]
        except Exception:
            raise MalformedConfigurationError(
                f"Missing second-level key '{key}' under 'queue'"
            )

    # Get the SSH configuration
    for key in ["store_path"]:
        try:
            config[f"ssh_{key}"] = o_ssh[key]
        except Exception:
            raise MalformedConfigurationError(
                f"Missing second-level key '{key}' under 'ssh'"
            )
    config["ssh_known_hosts"] = o_ssh.get("known_hosts", "~/.ssh/known_hosts")

    # Get the lock configuration
    for key in ["path"]:
        try:
            config[f"lock_{key}"] = o_locks[key]
        except Exception:
            raise MalformedConfigurationError(
                f"Missing second-level key '{key}' under 'locks'"
            )

    # Get the Notifications configuration
    for key in ["enabled", "uri", "action", "icons", "body"]:
        try:
            config[f"notifications_{key}"] = o_notifications[key]
        except Exception:
            raise MalformedConfigurationError(
                f"Missing second-level key '{key}' under 'notifications'"
            )

    return config


def read_config():
    ocbmachined_config_file = get_config_path()

    print(f"Loading configuration from file '{ocbmachined_config_file}'")

    # Load the YAML config file
    with open(ocbmachined_config_file, "r") as cfgfile:
        try:
            o_config = yaml.load(cfgfile, Loader=yaml.SafeLoader)
        except Exception as e:
            print(f"ERROR: Failed to parse configuration file: {e}")
            os._exit(1)

    return load_config(o_config)


config = read_config()


##########################################################
# Entrypoint
##########################################################


def entrypoint():
    import ocbmachined.flaskapi as ocbmachined  # noqa: E402

    # Print our startup messages
    print("")
    print("|----------------------------------------------------------|")
    print("| OpenCrowbar Machine API daemon v{0: <24} |".format(version))
    print("| Debug: {0: <49} |".format(str(config["debug"])))
    print("| API version: v{0: <42} |".format(API_VERSION))
    print(
        "| Listen: {0: <48} |".format(
            "{}:{}".format(config["api_address"], config["api_port"])
        )
    )
    print("| Crowbar: {0: <47} |".format(config["ocb_url"]))
    print(
        "| Pools: {0: <49} |".format(
            "{} -> {}".format(config["pool_source"], config["pool_target"])
        )
    )
    print("|----------------------------------------------------------|")
    print("")

    if not config["ocb_password"]:
        print("WARNING: No Crowbar password configured; the default will be used.")

    notifications.send_webhook(config, "info", "Initializing ocbmachined")

    # Initialize the database
    db.init_database(config)

    if "--init-only" in argv:
        print("Successfully initialized ocbmachined; exiting.")
        notifications.send_webhook(config, "completed", "Successfully initialized ocbmachined")
        exit(0)

    def term(signum="", frame=""):
        print("Received TERM, exiting.")
        notifications.send_webhook(config, "info", "Received TERM, exiting ocbmachined")
        exit(0)

    signal.signal(signal.SIGTERM, term)
    signal.signal(signal.SIGINT, term)
    signal.signal(signal.SIGQUIT, term)

    notifications.send_webhook(config, "info", "Starting up ocbmachined")

    # Start Flask
    ocbmachined.app.run(
        config["api_address"],
        config["api_port"],
        use_reloader=False,
        threaded=False,
        processes=4,
    )
