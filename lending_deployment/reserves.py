from typing import Any, Dict, NamedTuple, Tuple

from eth_typing import ChecksumAddress

RESERVE_FIELDS = {
    # parameters file key -> batchInitReserve struct field
    "a_token_impl": "aTokenImpl",
    "stable_debt_token_impl": "stableDebtTokenImpl",
    "variable_debt_token_impl": "variableDebtTokenImpl",
    "decimals": "underlyingAssetDecimals",
    "interest_rate_strategy": "interestRateStrategyAddress",
    "underlying_asset": "underlyingAsset",
    "treasury": "treasury",
    "incentives_controller": "incentivesController",
    "alloc_point": "allocPoint",
    "underlying_asset_name": "underlyingAssetName",
    "a_token_name": "aTokenName",
    "a_token_symbol": "aTokenSymbol",
    "variable_debt_token_name": "variableDebtTokenName",
    "variable_debt_token_symbol": "variableDebtTokenSymbol",
    "stable_debt_token_name": "stableDebtTokenName",
    "stable_debt_token_symbol": "stableDebtTokenSymbol",
    "params": "params",
}


class ReserveInitParams(NamedTuple):
    """One record of the lending pool configurator's batch reserve initialization."""

    aTokenImpl: ChecksumAddress
    stableDebtTokenImpl: ChecksumAddress
    variableDebtTokenImpl: ChecksumAddress
    underlyingAssetDecimals: int
    interestRateStrategyAddress: ChecksumAddress
    underlyingAsset: ChecksumAddress
    treasury: ChecksumAddress
    incentivesController: ChecksumAddress
    allocPoint: int
    underlyingAssetName: str
    aTokenName: str
    aTokenSymbol: str
    variableDebtTokenName: str
    variableDebtTokenSymbol: str
    stableDebtTokenName: str
    stableDebtTokenSymbol: str
    params: bytes

    @classmethod
    def from_resolved(cls, values: Dict[str, Any]) -> "ReserveInitParams":
        unknown = set(values) - set(RESERVE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown reserve parameters: {', '.join(sorted(unknown))}")
        missing = set(RESERVE_FIELDS) - set(values)
        if missing:
            raise ValueError(f"Missing reserve parameters: {', '.join(sorted(missing))}")

        fields = {RESERVE_FIELDS[key]: value for key, value in values.items()}
        params = fields["params"]
        if isinstance(params, str):
            fields["params"] = bytes.fromhex(params[2:] if params.startswith("0x") else params)
        return cls(**fields)

    def as_struct(self) -> Tuple[Any, ...]:
        return tuple(self)
