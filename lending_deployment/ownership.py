from contextlib import contextmanager
from typing import Any, Iterator

from ape.api import ReceiptAPI

from lending_deployment.context import DeploymentContext
from lending_deployment.errors import ConfigurationCallError, DeploymentError
from lending_deployment.wiring import CallSpec, ConfigurationWirer, RoleAssignment, RoleKind


class OwnershipHandoff:
    """
    Moves administrative control away from the deploying identity. Every call
    that still needs the deployer's privileges on a contract has to be
    confirmed before that contract is handed off.
    """

    def __init__(self, context: DeploymentContext, wirer: ConfigurationWirer):
        self.context = context
        self.wirer = wirer

    def transfer_ownership(
        self, contract_name: str, new_owner: Any, role: RoleKind = RoleKind.OWNER
    ) -> ReceiptAPI:
        print(f"\nHanding {role.name.lower()} of {contract_name} over to {new_owner}")
        return self.wirer.assign(RoleAssignment(target=contract_name, role=role, grantee=new_owner))

    @contextmanager
    def lend(self, contract_name: str, borrower: Any, hand_back: CallSpec) -> Iterator[None]:
        """
        Temporarily transfers ownership of ``contract_name`` to ``borrower`` so it
        can perform privileged writes. ``hand_back`` (issued by the deployer
        against the borrower) returns ownership to the deployer on every exit path.

        When a borrowed write fails, that failure is the one raised; a hand-back
        failing on top of it is attached to it as ``hand_back_error``.
        """
        self.transfer_ownership(contract_name, borrower)
        try:
            yield
        except Exception as error:
            try:
                self._hand_back(contract_name, hand_back)
            except DeploymentError as hand_back_error:
                print(f"\nWARNING: {hand_back_error}")
                error.hand_back_error = hand_back_error
            raise
        self._hand_back(contract_name, hand_back)

    def _hand_back(self, contract_name: str, hand_back: CallSpec) -> None:
        print(f"\nReturning ownership of {contract_name} to the deployer")
        self.wirer.apply(hand_back)

        owner = self.context.contract(contract_name).owner()
        if owner != self.context.deployer:
            raise ConfigurationCallError(
                step=f"Return of {contract_name} ownership",
                reason=f"owner is {owner}, expected {self.context.deployer}",
            )
