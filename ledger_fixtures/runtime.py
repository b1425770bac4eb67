# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import docker
from docker.utils import parse_repository_tag

from loguru import logger as LOG

# Seconds the daemon waits for a container to exit before killing it
DEFAULT_STOP_TIMEOUT_S = 10


class DockerRuntime:
    """
    Container runtime client shared by every component of a fixture (and,
    typically, by every fixture of a test session). Thin wrapper over the
    Docker Engine API: calls raise ``docker.errors`` exceptions, which callers
    translate into fixture errors.

    :param docker.DockerClient client: Existing client (optional). Defaults to
        ``docker.from_env()``, i.e. honours ``DOCKER_HOST`` and friends.
    """

    def __init__(self, client=None):
        self.client = client or docker.from_env()

    @property
    def api(self):
        return self.client.api

    def ping(self):
        return self.api.ping()

    def image_exists(self, image_reference):
        try:
            self.client.images.get(image_reference)
            return True
        except docker.errors.ImageNotFound:
            return False

    def pull_image(self, image_reference):
        """Yields decoded pull progress events as the daemon streams them"""
        repository, tag = parse_repository_tag(image_reference)
        LOG.debug(f"Pulling {repository} [tag: {tag}]")
        return self.api.pull(repository, tag=tag, stream=True, decode=True)

    def create_container(
        self, image_reference, ports, labels=None, command=None, environment=None
    ):
        host_config = self.api.create_host_config(publish_all_ports=True)
        r = self.api.create_container(
            image_reference,
            command=list(command) if command else None,
            ports=list(ports),
            environment=dict(environment) if environment else None,
            labels=labels,
            host_config=host_config,
            detach=True,
        )
        for warning in r.get("Warnings") or []:
            LOG.warning(f"Creating container from {image_reference}: {warning}")
        return r["Id"]

    def container_events(self, container_id):
        """
        Opens the daemon's event stream for a single container. The returned
        stream is iterable and must be closed with ``close()``.
        """
        return self.api.events(
            filters={"type": "container", "container": container_id}, decode=True
        )

    def start_container(self, container_id):
        self.api.start(container_id)

    def list_containers(self, filters, all=False):
        return self.api.containers(all=all, filters=filters)

    def stop_container(self, container_id, timeout=DEFAULT_STOP_TIMEOUT_S):
        self.api.stop(container_id, timeout=timeout)

    def remove_container(self, container_id, force=False):
        self.api.remove_container(container_id, force=force)
