# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import os
import threading
import uuid
from concurrent.futures import Future, TimeoutError as FutureTimeoutError

import docker
import requests

from ledger_fixtures.errors import (
    ContainerRemoveFailed,
    ContainerStopFailed,
    LaunchFailed,
)
from ledger_fixtures.state import FixtureHandle

from loguru import logger as LOG

# Maximum duration between the start request and the daemon's "start" event
DEFAULT_LAUNCH_TIMEOUT_S = float(os.getenv("LEDGER_FIXTURE_LAUNCH_TIMEOUT_S", "60"))

# Container events after which a freshly created container will never start
FATAL_EVENTS = {"die", "oom", "destroy"}

RUNTIME_ERRORS = (docker.errors.DockerException, requests.exceptions.RequestException)

# Value of the fixture label on every container created by this process
FIXTURE_SESSION_ID = uuid.uuid4().hex


class StartedSignal(Future):
    """
    One-shot future for a launch: resolved exactly once, with the handle on
    the container's "start" event, or with :py:class:`LaunchFailed`.
    """

    def __init__(self, handle):
        super().__init__()
        self.handle = handle
        self._resolve_lock = threading.Lock()

    def resolve(self, result=None, exception=None):
        with self._resolve_lock:
            if self.done():
                return False
            if exception is not None:
                self.set_exception(exception)
            else:
                self.set_result(result)
            return True


def _close_stream(events):
    try:
        events.close()
    except (OSError, AttributeError) + RUNTIME_ERRORS as e:
        LOG.debug(f"Closing event stream: {e}")


class ContainerLauncher:
    def __init__(self, runtime, launch_timeout_s=DEFAULT_LAUNCH_TIMEOUT_S):
        self.runtime = runtime
        self.launch_timeout_s = launch_timeout_s

    def stop(self, handle):
        image = handle.config.image_reference
        try:
            self.runtime.stop_container(handle.container_id)
            LOG.info(f"Stopped container {handle.short_id} [{image}]")
        except docker.errors.NotFound:
            LOG.debug(f"Container {handle.short_id} [{image}] already gone")
        except RUNTIME_ERRORS as e:
            raise ContainerStopFailed(
                f"Stopping container {handle.short_id} [{image}] failed: {e}",
                image=image,
            ) from e

    def remove(self, handle, force=False):
        image = handle.config.image_reference
        try:
            self.runtime.remove_container(handle.container_id, force=force)
            LOG.info(f"Removed container {handle.short_id} [{image}]")
        except docker.errors.NotFound:
            LOG.debug(f"Container {handle.short_id} [{image}] already removed")
        except RUNTIME_ERRORS as e:
            raise ContainerRemoveFailed(
                f"Removing container {handle.short_id} [{image}] failed: {e}",
                image=image,
            ) from e

    def create(self, config, previous=None):
        """
        Creates (but does not start) a container for ``config``, with every
        declared port exposed and published on an ephemeral host port.

        :param FixtureConfig config: Validated fixture configuration.
        :param FixtureHandle previous: Container of an earlier launch of the
            same fixture (optional). It is stopped and removed first.
        :return: :py:class:`FixtureHandle` for the new container.
        """
        image = config.image_reference
        if previous is not None:
            LOG.info(f"Replacing container {previous.short_id} [{image}]")
            try:
                self.stop(previous)
                self.remove(previous)
            except (ContainerStopFailed, ContainerRemoveFailed) as e:
                raise LaunchFailed(
                    f"Could not tear down previous container {previous.short_id}: {e}",
                    image=image,
                    container_id=previous.container_id,
                ) from e

        try:
            container_id = self.runtime.create_container(
                image,
                ports=config.container_ports,
                labels={config.label: FIXTURE_SESSION_ID},
                command=config.command,
                environment=config.environment,
            )
        except RUNTIME_ERRORS as e:
            raise LaunchFailed(
                f"Creating container from {image} failed: {e}", image=image
            ) from e

        handle = FixtureHandle(container_id=container_id, config=config)
        LOG.debug(
            f"Created container {handle.short_id} [{image}] exposing {config.container_ports}"
        )
        return handle

    def start(self, handle):
        """
        Requests the start of a created container.

        Creation and start are distinct points in the lifecycle: the returned
        :py:class:`StartedSignal` only resolves once the daemon reports the
        container as started, not when the start request is acknowledged.
        """
        signal = StartedSignal(handle)
        image = handle.config.image_reference

        # Subscribe before starting, so that the "start" event cannot be missed
        try:
            events = self.runtime.container_events(handle.container_id)
        except RUNTIME_ERRORS as e:
            err = LaunchFailed(
                f"Cannot watch events of container {handle.short_id} [{image}]: {e}",
                image=image,
                container_id=handle.container_id,
            )
            err.__cause__ = e
            signal.resolve(exception=err)
            return signal

        signal.add_done_callback(lambda _: _close_stream(events))
        watcher = threading.Thread(
            target=self._watch_events,
            args=(events, signal),
            name=f"launch-{handle.short_id}",
            daemon=True,
        )
        watcher.start()

        try:
            self.runtime.start_container(handle.container_id)
            LOG.debug(f"Requested start of container {handle.short_id} [{image}]")
        except RUNTIME_ERRORS as e:
            err = LaunchFailed(
                f"Starting container {handle.short_id} [{image}] failed: {e}",
                image=image,
                container_id=handle.container_id,
            )
            err.__cause__ = e
            signal.resolve(exception=err)
        return signal

    def _watch_events(self, events, signal):
        handle = signal.handle
        image = handle.config.image_reference
        try:
            for event in events:
                action = event.get("Action") or event.get("status")
                LOG.trace(f"Container {handle.short_id} event: {action}")
                if action == "start":
                    LOG.info(f"Container {handle.short_id} [{image}] is running")
                    signal.resolve(result=handle)
                    return
                if action in FATAL_EVENTS:
                    attributes = event.get("Actor", {}).get("Attributes", {})
                    signal.resolve(
                        exception=LaunchFailed(
                            f"Container {handle.short_id} [{image}] reported '{action}'"
                            f" before running (exit code: {attributes.get('exitCode')})",
                            image=image,
                            container_id=handle.container_id,
                        )
                    )
                    return
            signal.resolve(
                exception=LaunchFailed(
                    f"Event stream of container {handle.short_id} [{image}] ended before it started",
                    image=image,
                    container_id=handle.container_id,
                )
            )
        except Exception as e:
            # The stream is also closed from the outside once the signal
            # resolves, in which case resolving again is a no-op
            err = LaunchFailed(
                f"Lost event stream of container {handle.short_id} [{image}]: {e}",
                image=image,
                container_id=handle.container_id,
            )
            err.__cause__ = e
            signal.resolve(exception=err)

    def wait(self, signal, timeout_s=None):
        """
        Blocks until ``signal`` resolves, for at most ``timeout_s`` seconds.

        :return: the started :py:class:`FixtureHandle`.
        :raises LaunchFailed: if the container failed to start, or did not
            start in time.
        """
        if timeout_s is None:
            timeout_s = self.launch_timeout_s
        try:
            return signal.result(timeout=timeout_s)
        except FutureTimeoutError:
            handle = signal.handle
            err = LaunchFailed(
                f"Container {handle.short_id} [{handle.config.image_reference}]"
                f" was not reported running within {timeout_s}s",
                image=handle.config.image_reference,
                container_id=handle.container_id,
            )
            if signal.resolve(exception=err):
                raise err from None
            return signal.result()

    def launch(self, config, previous=None):
        """
        Creates and starts a container for ``config``.

        :return: :py:class:`StartedSignal`, see :py:meth:`wait`.
        """
        return self.start(self.create(config, previous=previous))
