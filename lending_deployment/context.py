from typing import Any, Dict

from ape.contracts import ContractInstance
from eth_typing import ChecksumAddress

from lending_deployment.constants import DEPLOYER, DeploymentStage
from lending_deployment.errors import UnknownNameError
from lending_deployment.registry import AddressRegistry, DeploymentRecord


class DeploymentContext:
    """
    State of one deployment run, handed to every step explicitly: the address
    registry, the live contract handles behind each record, the named
    accounts and the stage reached so far.
    """

    def __init__(self, accounts: Dict[str, ChecksumAddress], constants: Dict[str, Any] = None):
        if DEPLOYER not in accounts:
            raise ValueError(f"The '{DEPLOYER}' account is required.")
        self.registry = AddressRegistry()
        self.accounts = dict(accounts)
        self.constants = constants or dict()
        self.stage = DeploymentStage.INIT
        self.smoke_report = None
        self._instances: Dict[str, ContractInstance] = dict()

    @property
    def deployer(self) -> ChecksumAddress:
        return self.accounts[DEPLOYER]

    def register(self, record: DeploymentRecord, instance: ContractInstance) -> None:
        self.registry.register(record)
        self._instances[record.name] = instance

    def contract(self, name: str) -> ContractInstance:
        try:
            return self._instances[name]
        except KeyError:
            raise UnknownNameError(f"'{name}' has not been deployed in this run") from None

    def address(self, name: str) -> ChecksumAddress:
        return self.registry.resolve(name).address

    @property
    def instances(self) -> Dict[str, ContractInstance]:
        return dict(self._instances)
