# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
from contextlib import contextmanager

import docker
import requests

from ledger_fixtures.errors import (
    ContainerRemoveFailed,
    ContainerStopFailed,
    FixtureError,
    IllegalStateTransition,
    NothingToDestroy,
    NotRunning,
)
from ledger_fixtures.health import HealthMonitor
from ledger_fixtures.images import ImageProvisioner
from ledger_fixtures.introspection import RuntimeIntrospector
from ledger_fixtures.launcher import FIXTURE_SESSION_ID, ContainerLauncher
from ledger_fixtures.options import DEFAULT_FIXTURE_LABEL, validate_options
from ledger_fixtures.profiles import FABRIC_V1_DEFAULT_CONFIG
from ledger_fixtures.runtime import DockerRuntime
from ledger_fixtures.state import FixtureHandle, FixtureState, can_transition

from loguru import logger as LOG

__all__ = [
    "FixtureHandle",
    "FixtureState",
    "LedgerFixture",
    "ledger_fixture",
    "remove_stale_fixtures",
]


class LedgerFixture:
    """
    Disposable ledger node running in a local container, for use as a test
    fixture.

    The configuration is validated once, here, before anything touches the
    container runtime. A fixture owns at most one container at a time and is
    not safe for overlapping lifecycle calls from several threads.

    :param options: Mapping of :py:class:`ledger_fixtures.options.FixtureConfig`
        fields overriding ``defaults`` (optional).
    :param FixtureConfig defaults: Pinned default configuration. Defaults to
        the Fabric v1 all-in-one profile.
    :param DockerRuntime runtime: Container runtime client, shared by all the
        components of the fixture (optional).
    :param requests.Session session: HTTP session used by health probes (optional).

    :raises InvalidConfig: if ``options`` are invalid.
    """

    def __init__(
        self,
        options=None,
        defaults=FABRIC_V1_DEFAULT_CONFIG,
        runtime=None,
        session=None,
        launch_timeout_s=None,
    ):
        self.config = validate_options(options, defaults)
        self.runtime = runtime or DockerRuntime()
        self.images = ImageProvisioner(self.runtime)
        self.launcher = ContainerLauncher(self.runtime)
        if launch_timeout_s is not None:
            self.launcher.launch_timeout_s = launch_timeout_s
        self.introspector = RuntimeIntrospector(self.runtime)
        self.health = HealthMonitor(
            session=session, poll_interval_s=self.config.poll_interval_s
        )
        self._state = FixtureState.UNINITIALIZED
        self._handle = None

    def __repr__(self):
        return f"LedgerFixture({self.config.image_reference}, {self._state.value})"

    @property
    def state(self):
        return self._state

    @property
    def image_reference(self):
        return self.config.image_reference

    def _transition(self, target):
        if not can_transition(self._state, target):
            raise IllegalStateTransition(self._state, target, image=self.image_reference)
        LOG.debug(f"{self.image_reference}: {self._state.value} -> {target.value}")
        self._state = target
        if self._handle is not None:
            self._handle.state = target

    def _fail(self, e):
        LOG.error(f"{self.image_reference} failed while {self._state.value}: {e}")
        self._transition(FixtureState.FAILED)

    def start(self):
        """
        Pulls the image if needed, launches a new container and waits until
        it is healthy. Starting a running fixture replaces its container.

        On failure the fixture moves to ``Failed``. A container that was
        already created is kept for inspection and should be removed with
        :py:meth:`destroy`.

        :return: :py:class:`FixtureHandle` of the running container.
        """
        restart = self._state == FixtureState.RUNNING
        if not (restart or can_transition(self._state, FixtureState.PULLING)):
            raise IllegalStateTransition(
                self._state, FixtureState.PULLING, image=self.image_reference
            )

        try:
            if not restart:
                self._transition(FixtureState.PULLING)
                self.images.ensure(self.image_reference)

            self._transition(FixtureState.LAUNCHING)
            new_handle = self.launcher.create(self.config, previous=self._handle)
            new_handle.state = self._state
            self._handle = new_handle
            self.launcher.wait(self.launcher.start(new_handle))

            self._transition(FixtureState.AWAITING_HEALTHY)
            self.health.wait_until_healthy(
                self._ops_api_http_host(new_handle),
                self.config.health_check_timeout_s,
                image=self.image_reference,
            )
        except FixtureError as e:
            self._fail(e)
            raise

        self._transition(FixtureState.RUNNING)
        LOG.info(f"{self.image_reference} running in {self._handle.short_id}")
        return self._handle

    def stop(self):
        """Stops the running container, keeping it for :py:meth:`destroy`"""
        if self._handle is None or self._state != FixtureState.RUNNING:
            raise NotRunning(
                f"{self.image_reference} is not running ({self._state.value})",
                image=self.image_reference,
            )
        self._transition(FixtureState.STOPPING)
        try:
            self.launcher.stop(self._handle)
        except ContainerStopFailed as e:
            self._fail(e)
            raise
        self._transition(FixtureState.STOPPED)

    def destroy(self):
        """
        Removes the container for good. A running fixture is stopped first.
        After a failed start, removes whatever container was left behind; the
        fixture then stays ``Failed``.
        """
        if self._handle is None:
            raise NothingToDestroy(
                f"No container found for {self.image_reference}, nothing to destroy",
                image=self.image_reference,
            )

        if self._state == FixtureState.FAILED:
            self.launcher.remove(self._handle, force=True)
            self._handle = None
            return

        if self._state == FixtureState.RUNNING:
            self.stop()
        if self._state != FixtureState.STOPPED:
            raise IllegalStateTransition(
                self._state, FixtureState.DESTROYED, image=self.image_reference
            )
        try:
            self.launcher.remove(self._handle)
        except ContainerRemoveFailed as e:
            self._fail(e)
            raise
        self._transition(FixtureState.DESTROYED)
        self._handle = None

    def _running_handle(self):
        if self._handle is None or self._state != FixtureState.RUNNING:
            raise NotRunning(
                f"{self.image_reference} is not running ({self._state.value})",
                image=self.image_reference,
            )
        return self._handle

    def get_handle(self):
        return self._running_handle()

    def get_public_port(self, internal_port=None):
        """
        Returns the host port publishing ``internal_port`` (by default, the ops
        API port). Host ports are chosen by the runtime, so this is read from
        the live container on every call.
        """
        if internal_port is None:
            internal_port = self.config.ops_api_port
        return self.introspector.resolve_public_port(
            self._running_handle(), internal_port
        )

    def get_container_ip_address(self):
        return self.introspector.resolve_container_ip(self._running_handle())

    def get_container_image_reference(self):
        return self.introspector.resolve_image_reference(self._running_handle())

    def _ops_api_http_host(self, handle):
        port = self.introspector.resolve_public_port(handle, self.config.ops_api_port)
        return f"http://{self.config.public_host}:{port}{self.config.health_check_path}"

    def get_ops_api_http_host(self):
        return self._ops_api_http_host(self._running_handle())

    def wait_for_health_check(self, timeout_s=None):
        if timeout_s is None:
            timeout_s = self.config.health_check_timeout_s
        self.health.wait_until_healthy(
            self.get_ops_api_http_host(), timeout_s, image=self.image_reference
        )


def _teardown(fixture):
    try:
        fixture.destroy()
    except NothingToDestroy:
        pass


@contextmanager
def ledger_fixture(*args, **kwargs):
    """
    Context manager for :py:class:`LedgerFixture`: starts the fixture, and
    stops and destroys its container on exit, whatever happened.

    If the fixture failed to start or the body raised, that error is the one
    propagated; a failing cleanup on top of it is only logged.
    """
    fixture = LedgerFixture(*args, **kwargs)
    try:
        fixture.start()
        yield fixture
    except BaseException:
        try:
            _teardown(fixture)
        except FixtureError as e:
            LOG.warning(f"Cleaning up {fixture.image_reference} failed: {e}")
        raise
    _teardown(fixture)


# Containers in these states hold no running ledger node
STALE_CONTAINER_STATUSES = ["created", "exited", "dead"]


def remove_stale_fixtures(runtime, label=DEFAULT_FIXTURE_LABEL):
    """
    Removes containers left behind by fixtures of earlier, interrupted test
    runs.

    Only containers that are not running and were not created by this process
    are removed, so fixtures running concurrently, here or in other
    processes, are left alone.

    :return: number of containers removed.
    """
    removed = 0
    containers = runtime.list_containers(
        filters={"label": [label], "status": STALE_CONTAINER_STATUSES}, all=True
    )
    for info in containers:
        container_id = info["Id"]
        if (info.get("Labels") or {}).get(label) == FIXTURE_SESSION_ID:
            continue
        try:
            runtime.remove_container(container_id)
            removed += 1
            LOG.info(f"Removed stale container {container_id[:12]} [{info.get('Image')}]")
        except docker.errors.NotFound:
            pass
        except (docker.errors.APIError, requests.exceptions.RequestException) as e:
            LOG.warning(f"Could not remove stale container {container_id[:12]}: {e}")
    return removed
