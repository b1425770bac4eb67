# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import time

import requests

from ledger_fixtures.errors import HealthCheckTimeout
from ledger_fixtures.options import (
    DEFAULT_HEALTH_CHECK_TIMEOUT_S,
    DEFAULT_POLLING_INTERVAL_S,
)

from loguru import logger as LOG

# Upper bound for a single probe, further capped by the remaining time
DEFAULT_PROBE_TIMEOUT_S = 3


def is_success(status_code):
    return 200 <= status_code < 300


class HealthMonitor:
    def __init__(
        self,
        session=None,
        poll_interval_s=DEFAULT_POLLING_INTERVAL_S,
        probe_timeout_s=DEFAULT_PROBE_TIMEOUT_S,
        clock=time.monotonic,
        sleep=time.sleep,
    ):
        self.session = session or requests.Session()
        self.poll_interval_s = poll_interval_s
        self.probe_timeout_s = probe_timeout_s
        self.clock = clock
        self.sleep = sleep

    def probe(self, url, timeout_s):
        """Issues a single probe. Returns None on success, the error otherwise."""
        try:
            r = self.session.get(url, timeout=timeout_s)
        except requests.exceptions.RequestException as e:
            return e
        if is_success(r.status_code):
            return None
        return f"HTTP {r.status_code}"

    def wait_until_healthy(
        self, url, timeout_s=DEFAULT_HEALTH_CHECK_TIMEOUT_S, image=None
    ):
        """
        Polls ``url`` until it answers with a 2xx status.

        Failed probes are expected while the fixture warms up and are retried.
        The deadline is checked on every iteration, so the total wait exceeds
        ``timeout_s`` by at most one polling interval.

        :raises HealthCheckTimeout: with the last observed error, once
            ``timeout_s`` has elapsed.
        """
        LOG.info(f"Waiting up to {timeout_s}s for {url} to become healthy")
        end_time = self.clock() + timeout_s
        last_error = None
        attempts = 0
        while True:
            remaining = end_time - self.clock()
            if remaining <= 0:
                LOG.error(f"{url} still unhealthy after {attempts} probes: {last_error}")
                raise HealthCheckTimeout(url, timeout_s, last_error, image=image)

            attempts += 1
            error = self.probe(url, min(self.probe_timeout_s, remaining))
            if error is None:
                LOG.success(f"{url} is healthy after {attempts} probes")
                return
            LOG.trace(f"Probe {attempts} of {url} failed: {error}")
            last_error = error

            remaining = end_time - self.clock()
            self.sleep(max(0, min(self.poll_interval_s, remaining)))
