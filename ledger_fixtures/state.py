# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
from dataclasses import dataclass
from enum import Enum

from ledger_fixtures.options import FixtureConfig


class FixtureState(Enum):
    UNINITIALIZED = "Uninitialized"
    PULLING = "Pulling"
    LAUNCHING = "Launching"
    AWAITING_HEALTHY = "AwaitingHealthy"
    RUNNING = "Running"
    STOPPING = "Stopping"
    STOPPED = "Stopped"
    DESTROYED = "Destroyed"
    FAILED = "Failed"

    def is_terminal(self):
        return self in (FixtureState.DESTROYED, FixtureState.FAILED)


# Forward-only, except for RUNNING -> LAUNCHING (restart). FAILED is
# reachable from every non-terminal state and is added below.
TRANSITIONS = {
    FixtureState.UNINITIALIZED: {FixtureState.PULLING},
    FixtureState.PULLING: {FixtureState.LAUNCHING},
    FixtureState.LAUNCHING: {FixtureState.AWAITING_HEALTHY},
    FixtureState.AWAITING_HEALTHY: {FixtureState.RUNNING},
    FixtureState.RUNNING: {FixtureState.LAUNCHING, FixtureState.STOPPING},
    FixtureState.STOPPING: {FixtureState.STOPPED},
    FixtureState.STOPPED: {FixtureState.PULLING, FixtureState.DESTROYED},
    FixtureState.DESTROYED: set(),
    FixtureState.FAILED: set(),
}
for _state, _targets in TRANSITIONS.items():
    if not _state.is_terminal():
        _targets.add(FixtureState.FAILED)


def can_transition(current, target):
    return target in TRANSITIONS[current]


@dataclass
class FixtureHandle:
    """Live reference to the container of a fixture"""

    container_id: str
    config: FixtureConfig
    state: FixtureState = FixtureState.LAUNCHING

    @property
    def short_id(self):
        return self.container_id[:12]
