#!/usr/bin/env python3

# db.py - OpenCrowbar machine daemon database libraries
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
import sqlite3
import contextlib

import ocbmachined.lib.notifications as notifications

from ocbmachined.lib.dataclasses import Machine

from celery.utils.log import get_task_logger


logger = get_task_logger(__name__)


#
# Database functions
#
@contextlib.contextmanager
def dbconn(db_path):
    conn = sqlite3.connect(db_path)
    cur = conn.cursor()
    try:
        yield cur
        conn.commit()
    finally:
        conn.close()


def init_database(config):
    db_path = config["database_path"]
    if not os.path.isfile(db_path):
        print("First run: initializing database.")
        notifications.send_webhook(config, "begin", "First run: initializing database")
        # Initializing the database
        with dbconn(db_path) as cur:
            # Table listing all machines and the node each was given
            cur.execute(
                """CREATE TABLE machines
                           (id INTEGER PRIMARY KEY AUTOINCREMENT,
                            name TEXT UNIQUE NOT NULL,
                            node TEXT,
                            state TEXT NOT NULL)"""
            )

        notifications.send_webhook(config, "success", "First run: successfully initialized database")


#
# Machine functions
#
def get_machine(config, name):
    with dbconn(config["database_path"]) as cur:
        cur.execute("""SELECT * FROM machines WHERE name = ?""", (name,))
        rows = cur.fetchall()

    if len(rows) > 0:
        row = rows[0]
    else:
        return None

    return Machine(row[0], row[1], row[2], row[3])


def get_machines(config):
    with dbconn(config["database_path"]) as cur:
        cur.execute("""SELECT * FROM machines ORDER BY id""")
        rows = cur.fetchall()

    return [Machine(row[0], row[1], row[2], row[3]) for row in rows]


def add_machine(config, name, state):
    with dbconn(config["database_path"]) as cur:
        cur.execute(
            """INSERT INTO machines
                        (name, node, state)
                        VALUES
                        (?, ?, ?)""",
            (name, None, state),
        )

    logger.info(f"New machine {name} added")
    return get_machine(config, name)


def update_machine_state(config, name, state):
    with dbconn(config["database_path"]) as cur:
        cur.execute(
            """UPDATE machines
                        SET state = ?
                        WHERE name = ?""",
            (state, name),
        )

    return get_machine(config, name)


def update_machine_node(config, name, node):
    with dbconn(config["database_path"]) as cur:
        cur.execute(
            """UPDATE machines
                        SET node = ?
                        WHERE name = ?""",
            (node, name),
        )

    return get_machine(config, name)
