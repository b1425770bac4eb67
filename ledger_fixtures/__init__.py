# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.

from ledger_fixtures.ledger import (  # noqa: F401
    FixtureHandle,
    FixtureState,
    LedgerFixture,
    ledger_fixture,
    remove_stale_fixtures,
)
from ledger_fixtures.options import FixtureConfig, validate_options  # noqa: F401
from ledger_fixtures.runtime import DockerRuntime  # noqa: F401
