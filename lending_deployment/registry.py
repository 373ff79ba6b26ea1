import json
from collections import OrderedDict, defaultdict
from enum import Enum
from pathlib import Path
from typing import Any, FrozenSet, Iterator, List, NamedTuple, Optional, Tuple

from eth_typing import ABI, ChecksumAddress
from eth_utils import to_checksum_address

from lending_deployment.errors import DuplicateNameError, UnknownNameError
from lending_deployment.utils import _load_json

ChainId = int
ContractName = str


STANDARD_REGISTRY_JSON_FORMAT = {"indent": 4, "separators": (",", ": ")}


class RecordKind(Enum):
    PLAIN = "plain"
    PROXY_IMPLEMENTATION = "proxy-implementation"
    PROXY_INSTANCE = "proxy-instance"


class DeploymentRecord(NamedTuple):
    """A single deployed unit, created once per logical name and never modified."""

    name: ContractName
    address: ChecksumAddress
    kind: RecordKind
    contract_type: str
    constructor_args: Tuple[Any, ...] = ()
    library_refs: FrozenSet[ContractName] = frozenset()
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None


class InitializerCall(NamedTuple):
    method: str
    args: Tuple[Any, ...] = ()


class ProxyDeployment(NamedTuple):
    """
    The proxied variant of a deployment: an implementation record, the proxy
    record pointing at it, and the one initializer call executed while the
    proxy was created.
    """

    implementation: DeploymentRecord
    proxy: DeploymentRecord
    initializer: InitializerCall


class AddressRegistry:
    """
    Insertion-ordered, append-only mapping of logical contract names to
    their deployment records for a single run.
    """

    def __init__(self):
        self._records: "OrderedDict[ContractName, DeploymentRecord]" = OrderedDict()

    def register(self, record: DeploymentRecord) -> None:
        if record.name in self._records:
            raise DuplicateNameError(f"'{record.name}' is already registered")
        self._records[record.name] = record

    def resolve(self, name: ContractName) -> DeploymentRecord:
        try:
            return self._records[name]
        except KeyError:
            raise UnknownNameError(f"'{name}' has not been deployed in this run") from None

    def records(self) -> List[DeploymentRecord]:
        return list(self._records.values())

    def __contains__(self, name: ContractName) -> bool:
        return name in self._records

    def __iter__(self) -> Iterator[ContractName]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)


#
# Registry artifact
#


class RegistryEntry(NamedTuple):
    """Represents a single entry in a published contract registry."""

    chain_id: ChainId
    name: ContractName
    address: ChecksumAddress
    abi: ABI
    tx_hash: str
    block_number: int
    deployer: str
    kind: str = RecordKind.PLAIN.value


def _get_abi(contract_instance) -> ABI:
    """Returns the ABI of a contract instance."""
    return [entry.model_dump(by_alias=True) for entry in contract_instance.contract_type.abi]


def entries_from_records(
    records: List[DeploymentRecord], instances: dict, chain_id: ChainId, deployer: str
) -> List[RegistryEntry]:
    """Builds registry entries for every record of a finished run."""
    entries = list()
    for record in records:
        entry = RegistryEntry(
            chain_id=chain_id,
            name=record.name,
            address=to_checksum_address(record.address),
            abi=_get_abi(instances[record.name]),
            tx_hash=record.tx_hash or "",
            block_number=record.block_number or 0,
            deployer=deployer,
            kind=record.kind.value,
        )
        entries.append(entry)
    return entries


def read_registry(filepath: Path) -> List[RegistryEntry]:
    data = _load_json(filepath)
    registry_entries = list()
    for chain_id, entries in data.items():
        for contract_name, artifacts in entries.items():
            registry_entry = RegistryEntry(
                chain_id=int(chain_id),
                name=contract_name,
                address=artifacts["address"],
                abi=artifacts["abi"],
                tx_hash=artifacts["tx_hash"],
                block_number=artifacts["block_number"],
                deployer=artifacts["deployer"],
                kind=artifacts.get("kind", RecordKind.PLAIN.value),
            )
            registry_entries.append(registry_entry)
    return registry_entries


def write_registry(entries: List[RegistryEntry], filepath: Path, silent: bool = False) -> Path:
    """Writes a contract registry artifact to a file."""

    if not entries:
        print("No entries provided.")
        return filepath

    entries = sorted(entries, key=lambda entry: (str(entry.chain_id), entry.name))

    data = defaultdict(dict)
    for entry in entries:
        entry_abi = list(entry.abi)
        entry_abi.sort(key=lambda d: (d["type"], d.get("name", "")))

        data[str(entry.chain_id)][entry.name] = {
            "address": entry.address,
            "abi": entry_abi,
            "tx_hash": entry.tx_hash,
            "block_number": int(entry.block_number),
            "deployer": entry.deployer,
            "kind": entry.kind,
        }

    filepath.parent.mkdir(parents=True, exist_ok=True)

    # Merge into an existing artifact unless a chain id would be overwritten
    if filepath.exists():
        if not silent:
            print(f"Updating existing registry at {filepath}.")
        existing_data = _load_json(filepath)

        if any(chain_id in existing_data for chain_id in data):
            filepath = filepath.with_suffix(".unmerged.json")
            if not silent:
                print(
                    "Cannot merge registries with overlapping chain IDs.\n"
                    f"Writing to {filepath} to avoid overwriting existing data."
                )
        else:
            existing_data.update(data)
            data = existing_data
    elif not silent:
        print(f"Creating new registry at {filepath}.")

    with open(filepath, "w") as file:
        json.dump(data, file, **STANDARD_REGISTRY_JSON_FORMAT)

    return filepath
