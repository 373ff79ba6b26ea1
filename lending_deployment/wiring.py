from enum import Enum
from typing import Any, NamedTuple, Tuple

from ape.api import ReceiptAPI

from lending_deployment.context import DeploymentContext
from lending_deployment.params import (
    Transactor,
    VariableContext,
    _process_raw_value,
    _resolve_param,
)


class CallSpec(NamedTuple):
    """A state-mutating call against an already deployed contract."""

    target: str
    method: str
    args: Tuple[Any, ...] = ()


class RoleKind(Enum):
    # role -> setter issued on the target contract
    OWNER = "transferOwnership"
    POOL_ADMIN = "setPoolAdmin"
    EMERGENCY_ADMIN = "setEmergencyAdmin"
    LIQUIDATION_FEE_RECIPIENT = "setLiquidationFeeTo"
    PRICE_ORACLE = "setPriceOracle"
    LENDING_RATE_ORACLE = "setLendingRateOracle"
    MINTER = "setMinters"
    CHEF_INCENTIVES_CONTROLLER = "setChefIncentivesController"

    @property
    def setter(self) -> str:
        return self.value


class RoleAssignment(NamedTuple):
    """Grants ``role`` on ``target`` to ``grantee`` (a minter set takes a list)."""

    target: str
    role: RoleKind
    grantee: Any

    def as_call(self) -> CallSpec:
        return CallSpec(target=self.target, method=self.role.setter, args=(self.grantee,))


class ConfigurationWirer:
    """Issues post-deploy configuration calls one at a time, each confirmed before returning."""

    def __init__(
        self, context: DeploymentContext, transactor: Transactor, variables: VariableContext
    ):
        self.context = context
        self.transactor = transactor
        self.variables = variables

    def apply(self, call: CallSpec) -> ReceiptAPI:
        contract = self.context.contract(call.target)
        args = _process_raw_value(list(call.args), self.variables)
        args = _resolve_param(args, self.context)
        return self.transactor.transact(getattr(contract, call.method), *args)

    def assign(self, assignment: RoleAssignment) -> ReceiptAPI:
        return self.apply(assignment.as_call())
