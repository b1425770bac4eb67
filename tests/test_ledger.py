# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.

import ipaddress

import docker
import pytest
import requests

from fakes import FakeSession
from ledger_fixtures import (
    FixtureState,
    LedgerFixture,
    ledger_fixture,
    remove_stale_fixtures,
)
from ledger_fixtures.errors import (
    ContainerRemoveFailed,
    ContainerStopFailed,
    HealthCheckTimeout,
    IllegalStateTransition,
    LaunchFailed,
    NothingToDestroy,
    NotRunning,
    PortBoundToLoopbackOnly,
    PullFailed,
)


@pytest.fixture
def fixture(runtime, session, fixture_options):
    return LedgerFixture(fixture_options, runtime=runtime, session=session)


def test_start_query_stop_destroy(fixture, runtime, session):
    handle = fixture.start()
    assert fixture.state == FixtureState.RUNNING
    assert handle.state == FixtureState.RUNNING
    assert ("pull_image", "fixture-node:1.4.8") in runtime.calls

    ip = fixture.get_container_ip_address()
    assert isinstance(ipaddress.ip_address(ip), ipaddress.IPv4Address)

    port = fixture.get_public_port(9443)
    assert 1 <= port <= 65535
    assert port != 9443
    assert fixture.get_public_port() == port
    assert session.requests[-1][0] == f"http://127.0.0.1:{port}/version"
    assert fixture.get_ops_api_http_host() == f"http://127.0.0.1:{port}/version"
    assert fixture.get_container_image_reference() == "fixture-node:1.4.8"

    fixture.stop()
    assert fixture.state == FixtureState.STOPPED
    fixture.destroy()
    assert fixture.state == FixtureState.DESTROYED
    assert runtime.containers == {}

    with pytest.raises(NotRunning):
        fixture.get_public_port(9443)
    with pytest.raises(NotRunning):
        fixture.get_container_ip_address()


def test_cached_image_is_not_pulled(fixture, runtime):
    runtime.images.add("fixture-node:1.4.8")
    fixture.start()
    assert not any(c[0] == "pull_image" for c in runtime.calls)


def test_stop_and_destroy_before_start(fixture, runtime):
    with pytest.raises(NotRunning):
        fixture.stop()
    with pytest.raises(NothingToDestroy):
        fixture.destroy()
    assert fixture.state == FixtureState.UNINITIALIZED
    assert runtime.calls == []


def test_queries_before_start(fixture):
    with pytest.raises(NotRunning):
        fixture.get_public_port()
    with pytest.raises(NotRunning):
        fixture.get_handle()


def test_stop_twice(fixture):
    fixture.start()
    fixture.stop()
    with pytest.raises(NotRunning):
        fixture.stop()
    assert fixture.state == FixtureState.STOPPED


def test_restart_leaves_one_container(fixture, runtime):
    first = fixture.start()
    second = fixture.start()
    assert first.container_id != second.container_id
    assert list(runtime.containers) == [second.container_id]
    assert len(runtime.live_containers()) == 1
    assert fixture.state == FixtureState.RUNNING
    # Restarting a running fixture does not go through the image again
    assert sum(1 for c in runtime.calls if c[0] == "image_exists") == 1


def test_start_after_stop(fixture, runtime):
    first = fixture.start()
    fixture.stop()
    second = fixture.start()
    assert list(runtime.containers) == [second.container_id]
    assert first.container_id not in runtime.containers


def test_destroy_running_fixture(fixture, runtime):
    fixture.start()
    fixture.destroy()
    assert fixture.state == FixtureState.DESTROYED
    assert runtime.containers == {}
    with pytest.raises(NothingToDestroy):
        fixture.destroy()


def test_destroyed_fixture_cannot_start(fixture):
    fixture.start()
    fixture.destroy()
    with pytest.raises(IllegalStateTransition):
        fixture.start()


def test_pull_failure(fixture, runtime):
    runtime.pull_error = docker.errors.APIError("unauthorized: authentication required")
    with pytest.raises(PullFailed):
        fixture.start()
    assert fixture.state == FixtureState.FAILED
    assert not any(c[0] == "create_container" for c in runtime.calls)
    with pytest.raises(NothingToDestroy):
        fixture.destroy()


def test_launch_failure_keeps_container_for_cleanup(fixture, runtime):
    runtime.start_event = "die"
    with pytest.raises(LaunchFailed):
        fixture.start()
    assert fixture.state == FixtureState.FAILED
    assert len(runtime.containers) == 1

    fixture.destroy()
    assert runtime.containers == {}
    assert fixture.state == FixtureState.FAILED
    with pytest.raises(IllegalStateTransition):
        fixture.start()


def test_health_timeout(runtime, fixture_options):
    fixture_options["health_check_timeout_s"] = 0.2
    session = FakeSession(requests.exceptions.ConnectionError("Connection refused"))
    fixture = LedgerFixture(fixture_options, runtime=runtime, session=session)
    with pytest.raises(HealthCheckTimeout) as e:
        fixture.start()
    assert fixture.state == FixtureState.FAILED
    assert e.value.image == "fixture-node:1.4.8"
    assert len(runtime.live_containers()) == 1

    fixture.destroy()
    assert runtime.containers == {}


def test_loopback_only_port_fails_start(runtime, session, fixture_options):
    runtime.host_ips = ("127.0.0.1",)
    fixture = LedgerFixture(fixture_options, runtime=runtime, session=session)
    with pytest.raises(PortBoundToLoopbackOnly):
        fixture.start()
    assert fixture.state == FixtureState.FAILED
    assert session.requests == []


def test_stop_failure(fixture, runtime):
    fixture.start()
    runtime.stop_error = docker.errors.APIError("cannot stop container")
    with pytest.raises(ContainerStopFailed):
        fixture.stop()
    assert fixture.state == FixtureState.FAILED


def test_wait_for_health_check_again(fixture, session):
    fixture.start()
    probes = len(session.requests)
    fixture.wait_for_health_check(timeout_s=1)
    assert len(session.requests) == probes + 1


def test_context_manager_cleans_up(runtime, session, fixture_options):
    with ledger_fixture(fixture_options, runtime=runtime, session=session) as f:
        assert f.state == FixtureState.RUNNING
        assert len(runtime.live_containers()) == 1
    assert f.state == FixtureState.DESTROYED
    assert runtime.containers == {}


def test_context_manager_cleans_up_after_failed_start(runtime, fixture_options):
    runtime.start_event = "die"
    with pytest.raises(LaunchFailed):
        with ledger_fixture(fixture_options, runtime=runtime):
            pass
    assert runtime.containers == {}


def test_context_manager_keeps_start_error_when_cleanup_fails(runtime, fixture_options):
    fixture_options["health_check_timeout_s"] = 0.05
    session = FakeSession(requests.exceptions.ConnectionError("Connection refused"))
    runtime.remove_error = docker.errors.APIError("removal already in progress")
    with pytest.raises(HealthCheckTimeout):
        with ledger_fixture(fixture_options, runtime=runtime, session=session):
            pass
    assert len(runtime.containers) == 1


def test_context_manager_keeps_body_error_when_cleanup_fails(
    runtime, session, fixture_options
):
    with pytest.raises(ValueError, match="assertion in test body"):
        with ledger_fixture(fixture_options, runtime=runtime, session=session):
            runtime.stop_error = docker.errors.APIError("cannot stop container")
            raise ValueError("assertion in test body")


def test_context_manager_reports_cleanup_error_after_clean_body(
    runtime, session, fixture_options
):
    with pytest.raises(ContainerRemoveFailed):
        with ledger_fixture(fixture_options, runtime=runtime, session=session):
            runtime.remove_error = docker.errors.APIError("removal already in progress")


def test_zero_health_check_timeout_is_not_the_default(fixture, session):
    fixture.start()
    probes = len(session.requests)
    with pytest.raises(HealthCheckTimeout):
        fixture.wait_for_health_check(timeout_s=0)
    assert len(session.requests) == probes


def other_session_container(runtime, running):
    container_id = runtime.create_container(
        "fixture-node:1.4.8", ports=[9443], labels={"ledger_fixture": "interrupted-run"}
    )
    if running:
        runtime.start_container(container_id)
    return container_id


def test_remove_stale_fixtures(runtime, fixture_options, session):
    running = LedgerFixture(fixture_options, runtime=runtime, session=session)
    running.start()
    stopped = LedgerFixture(fixture_options, runtime=runtime, session=session)
    stopped.start()
    stopped.stop()
    leftover = other_session_container(runtime, running=False)
    concurrent = other_session_container(runtime, running=True)
    unrelated = runtime.create_container("unrelated:1.0.0", ports=[8080])

    assert remove_stale_fixtures(runtime) == 1

    assert leftover not in runtime.containers
    assert concurrent in runtime.containers
    assert unrelated in runtime.containers
    assert running.get_public_port() > 0
    stopped.destroy()
    assert stopped.state == FixtureState.DESTROYED


def test_repr(fixture):
    assert repr(fixture) == "LedgerFixture(fixture-node:1.4.8, Uninitialized)"
