#!/usr/bin/env python3

# flaskapi.py - OpenCrowbar machine daemon HTTP API
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

import flask
import json

from dataclasses import asdict

from ocbmachined.Daemon import config

import ocbmachined.lib.db as db
import ocbmachined.lib.lib as lib

from ocbmachined.lib.driver import POWER_ACTIONS
from ocbmachined.lib.errors import DriverError, NotFound

from flask_restful import Resource, Api
from celery import Celery
from celery.utils.log import get_task_logger


logger = get_task_logger(__name__)


# Create Flask app and set config values
app = flask.Flask(__name__)
blueprint = flask.Blueprint("api", __name__, url_prefix="")
api = Api(blueprint)
app.register_blueprint(blueprint)

app.config[
    "CELERY_BROKER_URL"
] = f"redis://{config['queue_address']}:{config['queue_port']}{config['queue_path']}"

celery = Celery(app.name, broker=app.config["CELERY_BROKER_URL"])
celery.conf.update(app.config)


#
# Celery functions
#
@celery.task(bind=True)
def machine_create(self, data):
    lib.machine_create(config, data)


@celery.task(bind=True)
def machine_remove(self, data):
    lib.machine_remove(config, data)


#
# Helper functions
#
def get_request_data():
    try:
        return json.loads(flask.request.data)
    except Exception as e:
        logger.warning(f"Invalid JSON data: {e}")
        return dict()


#
# API routes
#
class API_Root(Resource):
    def get(self):
        """
        Return basic details of the API
        ---
        tags:
          - root
        responses:
          200:
            description: OK
            schema:
              type: object
              id: Message
              properties:
                message:
                  type: string
                  description: A text message describing the result
                  example: "The foo was successfully maxed"
        """
        return {"message": "ocbmachined API"}, 200


api.add_resource(API_Root, "/")


class API_Machines(Resource):
    def get(self):
        """
        Return all known machines
        ---
        tags:
          - machines
        responses:
          200:
            description: OK
            schema:
              type: array
              items:
                type: object
                id: Machine
                properties:
                  name:
                    type: string
                    description: The machine name.
                  node:
                    type: string
                    description: The Crowbar node assigned to the machine, if any.
                  state:
                    type: string
                    description: The last lifecycle state recorded for the machine.
                    example: "ready"
        """
        return [asdict(m) for m in db.get_machines(config)], 200

    def post(self):
        """
        Queue the creation of a machine from the source pool
        ---
        tags:
          - machines
        consumes:
          - application/json
        parameters:
          - in: body
            name: machine
            schema:
              type: object
              required:
                - name
              properties:
                name:
                  type: string
                  description: The machine name.
                  example: "docker-1"
        responses:
          202:
            description: Accepted
            schema:
              type: object
              id: Message
          400:
            description: Bad request
            schema:
              type: object
              id: Message
        """
        data = get_request_data()
        if not data.get("name"):
            return {"message": "a machine name is required"}, 400
        logger.info(f"Handling create for: {data}")

        task = machine_create.delay({"name": data["name"]})
        logger.debug(task)
        return {"message": f"creating machine {data['name']}"}, 202


api.add_resource(API_Machines, "/machines")


class API_Machine(Resource):
    def get(self, name):
        """
        Return a machine record and its live state
        ---
        tags:
          - machines
        responses:
          200:
            description: OK
            schema:
              type: object
              id: Machine
          404:
            description: Not found
            schema:
              type: object
              id: Message
        """
        machine = db.get_machine(config, name)
        if machine is None:
            return {"message": f"no machine named {name}"}, 404
        detail = asdict(machine)
        try:
            detail["live_state"] = lib.machine_state(config, name)
        except DriverError as e:
            detail["live_state"] = "Error"
            detail["message"] = str(e)
        return detail, 200

    def delete(self, name):
        """
        Queue the release of a machine's node back to the source pool
        ---
        tags:
          - machines
        responses:
          202:
            description: Accepted
            schema:
              type: object
              id: Message
          404:
            description: Not found
            schema:
              type: object
              id: Message
        """
        if db.get_machine(config, name) is None:
            return {"message": f"no machine named {name}"}, 404

        task = machine_remove.delay({"name": name})
        logger.debug(task)
        return {"message": f"removing machine {name}"}, 202


api.add_resource(API_Machine, "/machines/<name>")


class API_Machine_State(Resource):
    def get(self, name):
        """
        Return the live state of a machine
        ---
        tags:
          - machines
        responses:
          200:
            description: OK
            schema:
              type: object
              properties:
                state:
                  type: string
                  description: One of None, Starting, Running, Stopped, Error.
                  example: "Running"
          404:
            description: Not found
        """
        try:
            return {"state": lib.machine_state(config, name)}, 200
        except NotFound as e:
            return {"message": str(e)}, 404
        except DriverError as e:
            return {"state": "Error", "message": str(e)}, 200


api.add_resource(API_Machine_State, "/machines/<name>/state")


class API_Machine_Address(Resource):
    def get(self, name):
        """
        Return the admin address and Docker URL of a machine
        ---
        tags:
          - machines
        responses:
          200:
            description: OK
            schema:
              type: object
              properties:
                ip:
                  type: string
                  example: "192.168.124.81"
                url:
                  type: string
                  example: "tcp://192.168.124.81:2376"
          404:
            description: Not found
          502:
            description: Crowbar request failed
        """
        try:
            ip, url = lib.machine_address(config, name)
        except NotFound as e:
            return {"message": str(e)}, 404
        except DriverError as e:
            return {"message": str(e)}, 502
        return {"ip": ip, "url": url}, 200


api.add_resource(API_Machine_Address, "/machines/<name>/address")


class API_Machine_Power(Resource):
    def post(self, name):
        """
        Run a power action against a machine
        ---
        tags:
          - machines
        consumes:
          - application/json
        parameters:
          - in: body
            name: power
            schema:
              type: object
              required:
                - action
              properties:
                action:
                  type: string
                  description: One of start, stop, restart, kill.
                  example: "restart"
        responses:
          200:
            description: OK
            schema:
              type: object
              id: Message
          400:
            description: Bad request
          404:
            description: Not found
          502:
            description: Crowbar request failed
        """
        action = get_request_data().get("action")
        if action not in POWER_ACTIONS:
            return {"message": f"action must be one of {', '.join(POWER_ACTIONS)}"}, 400
        try:
            sent = lib.machine_power(config, name, action)
        except NotFound as e:
            return {"message": str(e)}, 404
        except DriverError as e:
            return {"message": str(e)}, 502
        return {"message": f"sent power {sent} to machine {name}"}, 200


api.add_resource(API_Machine_Power, "/machines/<name>/power")
