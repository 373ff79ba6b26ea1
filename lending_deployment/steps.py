"""
Typed descriptors of the steps of a deployment run.

A plan is an ordered list of these; the orchestrator consumes it in a single
driver loop. Every step carries the stage it belongs to, and string arguments
use the same ``$`` variables as the parameters file.
"""

from typing import NamedTuple, Tuple

from lending_deployment.constants import IMPLEMENTATION_SUFFIX, DeploymentStage
from lending_deployment.wiring import CallSpec, RoleAssignment


class Deploy(NamedTuple):
    stage: DeploymentStage
    name: str
    libraries: Tuple[str, ...] = ()
    # deployed as "<name>_Implementation", to be put behind a proxy by another contract
    implementation: bool = False

    @property
    def deployed_name(self) -> str:
        return f"{self.name}{IMPLEMENTATION_SUFFIX}" if self.implementation else self.name


class DeployProxy(NamedTuple):
    stage: DeploymentStage
    name: str


class AttachProxy(NamedTuple):
    """``provider.setter(implementation)`` creates the proxy; ``provider.getter()`` reports it."""

    stage: DeploymentStage
    name: str
    provider: str
    setter: str
    getter: str

    @property
    def implementation(self) -> str:
        return f"{self.name}{IMPLEMENTATION_SUFFIX}"


class Configure(NamedTuple):
    stage: DeploymentStage
    call: CallSpec


class Assign(NamedTuple):
    stage: DeploymentStage
    assignment: RoleAssignment


class Handoff(NamedTuple):
    stage: DeploymentStage
    assignment: RoleAssignment


class LendOwnership(NamedTuple):
    stage: DeploymentStage
    target: str
    borrower: str
    calls: Tuple[CallSpec, ...]
    hand_back: CallSpec


class InitReserves(NamedTuple):
    stage: DeploymentStage
    target: str
    method: str = "batchInitReserve"


class RunSmokeTest(NamedTuple):
    stage: DeploymentStage
    pool: str
    asset: str
    flash_loan: str
