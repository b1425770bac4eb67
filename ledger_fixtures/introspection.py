# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
from dataclasses import dataclass
from typing import Optional

import docker
import requests

from ledger_fixtures.errors import (
    ContainerNotFound,
    IntrospectionError,
    NetworkResolutionError,
    NoPortsExposed,
    NotConnectedToAnyNetwork,
    PortBoundToLoopbackOnly,
    PortNotMapped,
    PortNotPublished,
)

from loguru import logger as LOG

IPV4_ALL_INTERFACES = "0.0.0.0"
IPV6_ALL_INTERFACES = "::"
ALL_INTERFACES = (IPV4_ALL_INTERFACES, IPV6_ALL_INTERFACES)


@dataclass(frozen=True)
class PortMapping:
    container_port: int
    host_port: Optional[int] = None
    host_ip: Optional[str] = None
    protocol: str = "tcp"

    def is_published(self):
        return bool(self.host_port)

    def is_reachable_externally(self):
        return self.host_ip in ALL_INTERFACES

    @staticmethod
    def from_json(json):
        public_port = json.get("PublicPort")
        return PortMapping(
            container_port=int(json["PrivatePort"]),
            host_port=int(public_port) if public_port else None,
            host_ip=json.get("IP") or None,
            protocol=json.get("Type", "tcp"),
        )


class RuntimeIntrospector:
    """
    Answers questions about a live fixture container. Nothing is cached: host
    ports and addresses are assigned by the runtime at start, so every call
    reads them again from the daemon.
    """

    def __init__(self, runtime):
        self.runtime = runtime

    def container_info(self, handle):
        image = handle.config.image_reference
        try:
            containers = self.runtime.list_containers(
                filters={"id": handle.container_id, "ancestor": image}
            )
        except (docker.errors.DockerException, requests.exceptions.RequestException) as e:
            raise IntrospectionError(
                f"Listing container {handle.short_id} [{image}] failed: {e}",
                image=image,
            ) from e
        for info in containers:
            if info.get("Id") == handle.container_id:
                return info
        raise ContainerNotFound(handle.container_id, image=image)

    def list_port_mappings(self, handle):
        info = self.container_info(handle)
        return [PortMapping.from_json(p) for p in info.get("Ports") or []]

    def resolve_public_port(self, handle, internal_port):
        """
        Returns the host port on which ``internal_port`` is published to all
        host interfaces.

        :raises NoPortsExposed: if the container has no port mappings at all.
        :raises PortNotMapped: if nothing maps ``internal_port``.
        :raises PortNotPublished: if ``internal_port`` is mapped without a host port.
        :raises PortBoundToLoopbackOnly: if it is only published on a specific
            (e.g. loopback) address, which clients outside the host could not reach.
        """
        image = handle.config.image_reference
        mappings = self.list_port_mappings(handle)
        if not mappings:
            raise NoPortsExposed(
                f"Container {handle.short_id} [{image}] has no ports exposed or mapped at all",
                port=internal_port,
                image=image,
            )

        candidates = [
            m
            for m in mappings
            if m.container_port == internal_port and m.protocol == "tcp"
        ]
        if not candidates:
            raise PortNotMapped(
                f"No mapping found for port {internal_port} of {handle.short_id} [{image}]",
                port=internal_port,
                image=image,
            )

        published = [m for m in candidates if m.is_published()]
        if not published:
            raise PortNotPublished(
                f"Port {internal_port} of {handle.short_id} [{image}] is mapped but not published",
                port=internal_port,
                image=image,
            )

        reachable = sorted(
            (m for m in published if m.is_reachable_externally()),
            key=lambda m: ALL_INTERFACES.index(m.host_ip),
        )
        if not reachable:
            raise PortBoundToLoopbackOnly(
                f"Port {internal_port} of {handle.short_id} [{image}] is only bound to"
                f" {', '.join(sorted(m.host_ip or '?' for m in published))}",
                port=internal_port,
                image=image,
            )

        host_port = reachable[0].host_port
        LOG.debug(f"Port {internal_port} of {handle.short_id} is published on {host_port}")
        return host_port

    def resolve_container_ip(self, handle):
        """
        Returns the address of the container on the first network it is
        attached to. Fixtures are expected to be single-homed.
        """
        image = handle.config.image_reference
        info = self.container_info(handle)
        networks = (info.get("NetworkSettings") or {}).get("Networks") or {}
        if not networks:
            raise NotConnectedToAnyNetwork(
                f"Container {handle.short_id} [{image}] is not connected to any network",
                image=image,
            )
        network_name, network = next(iter(networks.items()))
        ip_address = network.get("IPAddress")
        if not ip_address:
            raise NetworkResolutionError(
                f"Network {network_name} of {handle.short_id} [{image}] reports no IP address",
                image=image,
            )
        return ip_address

    def resolve_image_reference(self, handle):
        return self.container_info(handle).get("Image")
