from typing import NamedTuple

from web3 import Web3

from lending_deployment.context import DeploymentContext
from lending_deployment.errors import SmokeTestError
from lending_deployment.params import Transactor

DEFAULT_DEPOSIT_AMOUNT = Web3.to_wei(1000, "ether")
DEFAULT_DEPOSIT_ROUNDS = 2
DEFAULT_FLASH_LOAN_AMOUNT = Web3.to_wei(1000, "ether")


class SmokeTestReport(NamedTuple):
    deposited: int
    reserve_before: int
    reserve_after: int
    flash_loan_before: int
    flash_loan_after: int


class SmokeTest:
    """
    Exercises a freshly deployed market end to end: repeated deposits of a
    mintable underlying asset into the lending pool, then one flash loan
    through a consumer contract.

    The deposits must show up exactly in the reserve's balance. The flash
    loan balances are only reported, since whether the consumer ends up
    unchanged depends on the premium it pays.
    """

    def __init__(
        self,
        transactor: Transactor,
        pool: str,
        asset: str,
        flash_loan: str,
        deposit_amount: int = DEFAULT_DEPOSIT_AMOUNT,
        deposit_rounds: int = DEFAULT_DEPOSIT_ROUNDS,
        flash_loan_amount: int = DEFAULT_FLASH_LOAN_AMOUNT,
    ):
        self.transactor = transactor
        self.pool = pool
        self.asset = asset
        self.flash_loan = flash_loan
        self.deposit_amount = int(deposit_amount)
        self.deposit_rounds = int(deposit_rounds)
        self.flash_loan_amount = int(flash_loan_amount)

    def run(self, context: DeploymentContext) -> SmokeTestReport:
        pool = context.contract(self.pool)
        asset = context.contract(self.asset)
        consumer = context.contract(self.flash_loan)
        deployer = context.deployer

        reserve = pool.getReserveData(asset.address).aTokenAddress
        reserve_before = asset.balanceOf(reserve)
        for _ in range(self.deposit_rounds):
            self.transactor.transact(asset.mint, deployer, self.deposit_amount)
            self.transactor.transact(asset.approve, pool.address, self.deposit_amount)
            self.transactor.transact(
                pool.deposit, asset.address, self.deposit_amount, deployer, 0
            )
        reserve_after = asset.balanceOf(reserve)

        deposited = self.deposit_amount * self.deposit_rounds
        if reserve_after - reserve_before != deposited:
            raise SmokeTestError(
                f"Reserve of {self.asset} grew by {reserve_after - reserve_before}, "
                f"expected {deposited}"
            )
        print(f"Reserve of {self.asset} holds {reserve_after} after depositing {deposited}")

        self.transactor.transact(asset.mint, consumer.address, self.flash_loan_amount)
        flash_loan_before = asset.balanceOf(consumer.address)
        print("BeforeFlashLoan: ", flash_loan_before)
        self.transactor.transact(
            consumer.flashLoanCall, [asset.address], [self.flash_loan_amount]
        )
        flash_loan_after = asset.balanceOf(consumer.address)
        print("AfterFlashLoan: ", flash_loan_after)

        report = SmokeTestReport(
            deposited=deposited,
            reserve_before=reserve_before,
            reserve_after=reserve_after,
            flash_loan_before=flash_loan_before,
            flash_loan_after=flash_loan_after,
        )
        context.smoke_report = report
        return report
