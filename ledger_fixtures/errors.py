# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.


class FixtureError(Exception):
    """Base class for every error raised by a ledger fixture."""

    def __init__(self, msg, image=None):
        super().__init__(msg)
        self.image = image


class InvalidConfig(FixtureError, ValueError):
    def __init__(self, field, msg, image=None):
        super().__init__(f"Invalid fixture option '{field}': {msg}", image=image)
        self.field = field


class PullFailed(FixtureError):
    pass


class LaunchFailed(FixtureError):
    def __init__(self, msg, image=None, container_id=None):
        super().__init__(msg, image=image)
        self.container_id = container_id


class HealthCheckTimeout(FixtureError, TimeoutError):
    def __init__(self, url, timeout_s, last_error=None, image=None):
        super().__init__(
            f"Health check of {image or 'fixture'} at {url} timed out after {timeout_s}s"
            f" (last error: {last_error})",
            image=image,
        )
        self.url = url
        self.timeout_s = timeout_s
        self.last_error = last_error


class NotRunning(FixtureError):
    pass


class NothingToDestroy(FixtureError):
    pass


class IllegalStateTransition(FixtureError):
    def __init__(self, current, target, image=None):
        super().__init__(
            f"Fixture [{image}] cannot move from {current.value} to {target.value}",
            image=image,
        )
        self.current = current
        self.target = target


class ContainerStopFailed(FixtureError):
    pass


class ContainerRemoveFailed(FixtureError):
    pass


class IntrospectionError(FixtureError):
    pass


class ContainerNotFound(IntrospectionError):
    def __init__(self, container_id, image=None):
        super().__init__(
            f"Container {container_id} [{image}] is not listed by the runtime",
            image=image,
        )
        self.container_id = container_id


class PortResolutionError(IntrospectionError):
    def __init__(self, msg, port=None, image=None):
        super().__init__(msg, image=image)
        self.port = port


class NoPortsExposed(PortResolutionError):
    pass


class PortNotMapped(PortResolutionError):
    pass


class PortNotPublished(PortResolutionError):
    pass


class PortBoundToLoopbackOnly(PortResolutionError):
    pass


class NetworkResolutionError(IntrospectionError):
    pass


class NotConnectedToAnyNetwork(NetworkResolutionError):
    pass
