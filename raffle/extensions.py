from __future__ import annotations

from flask import current_app

from .machine import RaffleStateMachine

MACHINE_KEY = "chainraffle.machine"


def get_machine() -> RaffleStateMachine:
    return current_app.extensions[MACHINE_KEY]
