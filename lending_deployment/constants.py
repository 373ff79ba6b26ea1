from enum import IntEnum
from pathlib import Path

import lending_deployment

#
# Filesystem
#

DEPLOYMENT_DIR = Path(lending_deployment.__file__).parent
CONSTRUCTOR_PARAMS_DIR = DEPLOYMENT_DIR / "constructor_params"
ARTIFACTS_DIR = DEPLOYMENT_DIR / "artifacts"

#
# Networks
#

LOCAL_NETWORKS = ["local"]

#
# Contracts
#

PROXY_CONTRACT = "TransparentUpgradeableProxy"

# hardhat-deploy style names for the two halves of a proxied deployment
IMPLEMENTATION_SUFFIX = "_Implementation"

#
# Named accounts available as $-variables in parameter files
#

DEPLOYER = "deployer"
TREASURY = "treasury"

#
# Deployment run states
#

class DeploymentStage(IntEnum):
    INIT = 0
    REGISTRIES_DEPLOYED = 1
    CORE_LIBRARIES_LINKED = 2
    CORE_PROXY_DEPLOYED = 3
    HELPERS_DEPLOYED = 4
    TOKENIZATION_IMPLS_DEPLOYED = 5
    ORACLES_WIRED_AND_OWNED = 6
    REWARD_CHAIN_DEPLOYED_AND_WIRED = 7
    RESERVE_BATCH_INITIALIZED = 8
    OWNERSHIP_FINALIZED = 9
    SMOKE_TESTED = 10
    DONE = 11
