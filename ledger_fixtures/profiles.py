# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
from types import MappingProxyType

from ledger_fixtures.options import FixtureConfig

# Hyperledger Fabric v1 all-in-one image: orderer, peer and CA in one container
FABRIC_V1_DEFAULT_CONFIG = FixtureConfig(
    image_name="sownak/cactus-fabric-all-in-one",
    image_version="1.4.8",
    ops_api_port=9443,
    exposed_ports=MappingProxyType(
        {
            "orderer": 7050,
            "peer": 7051,
            "peer_chaincode": 7052,
            "peer_events": 7053,
            "fabric_ca": 7054,
            "supervisord": 9001,
        }
    ),
    health_check_path="/version",
)

# Single-node Hyperledger Besu development network
BESU_DEFAULT_CONFIG = FixtureConfig(
    image_name="hyperledger/besu",
    image_version="21.1.0",
    ops_api_port=8545,
    exposed_ports=MappingProxyType(
        {
            "p2p": 30303,
            "rpc_ws": 8546,
        }
    ),
    health_check_path="/liveness",
    command=(
        "--network=dev",
        "--miner-enabled",
        "--miner-coinbase=0xfe3b557e8fb62b89f4916b721be55ceb828dbd73",
        "--rpc-http-enabled",
        "--rpc-http-host=0.0.0.0",
        "--rpc-ws-enabled",
        "--rpc-ws-host=0.0.0.0",
        "--host-allowlist=*",
    ),
)

PROFILES = MappingProxyType(
    {
        "fabric-v1": FABRIC_V1_DEFAULT_CONFIG,
        "besu": BESU_DEFAULT_CONFIG,
    }
)


def get_profile(name):
    try:
        return PROFILES[name]
    except KeyError:
        raise ValueError(
            f"Unknown ledger profile '{name}', expected one of {', '.join(PROFILES)}"
        ) from None
