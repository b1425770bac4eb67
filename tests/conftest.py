# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.

import pytest

from fakes import FakeClock, FakeRuntime, FakeSession
from ledger_fixtures.options import validate_options
from ledger_fixtures.profiles import FABRIC_V1_DEFAULT_CONFIG


def pytest_configure(config):
    config.addinivalue_line("markers", "docker: test requires a Docker daemon")


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def session():
    return FakeSession(200)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fixture_options():
    return {
        "image_name": "fixture-node",
        "image_version": "1.4.8",
        "ops_api_port": 9443,
        "health_check_timeout_s": 1,
        "poll_interval_s": 0.01,
    }


@pytest.fixture
def fixture_config(fixture_options):
    return validate_options(fixture_options, FABRIC_V1_DEFAULT_CONFIG)
