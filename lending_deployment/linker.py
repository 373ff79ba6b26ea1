import re
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional

from eth_typing import ChecksumAddress
from eth_utils import keccak, remove_0x_prefix
from ethpm_types import ContractType

from lending_deployment.errors import UnknownNameError, UnresolvedLibraryError
from lending_deployment.registry import AddressRegistry

# solc >= 0.5 emits __$<first 34 hex chars of keccak(fully qualified name)>$__,
# older compilers emit the (possibly truncated) library name padded with underscores.
PLACEHOLDER_LENGTH = 40
HASHED_PLACEHOLDER = re.compile(r"__\$[0-9a-fA-F]{34}\$__")
LEGACY_PLACEHOLDER = re.compile(r"__[A-Za-z0-9_.:/$]{36}__")


def _hashed_placeholder(fully_qualified_name: str) -> str:
    return f"__${keccak(text=fully_qualified_name).hex()[:34]}$__"


def _legacy_placeholder(name: str) -> str:
    return f"__{name[:36]}".ljust(PLACEHOLDER_LENGTH - 2, "_") + "__"


def _short_name(library_name: str) -> str:
    """'contracts/libraries/GenericLogic.sol:GenericLogic' -> 'GenericLogic'"""
    return library_name.split(":")[-1]


def link_bytecode(
    bytecode: str,
    libraries: Dict[str, ChecksumAddress],
    link_references: Optional[Iterable] = None,
) -> str:
    """
    Replaces every library placeholder in ``bytecode`` with the address of the
    matching library. ``libraries`` is keyed by library name; names may be
    fully qualified (``path.sol:Name``), in which case hashed placeholders can
    be resolved too.
    """
    linked = remove_0x_prefix(bytecode)
    by_short_name = {_short_name(name): address for name, address in libraries.items()}

    # offset based link references, as reported by the compiler
    for reference in link_references or ():
        address = by_short_name.get(_short_name(reference.name or ""))
        if address is None:
            continue
        address_hex = remove_0x_prefix(address).lower()
        for offset in reference.offsets:
            start = offset * 2
            linked = linked[:start] + address_hex + linked[start + reference.length * 2 :]

    for name, address in libraries.items():
        address_hex = remove_0x_prefix(address).lower()
        linked = linked.replace(_legacy_placeholder(_short_name(name)), address_hex)
        if ":" in name:
            linked = linked.replace(_hashed_placeholder(name), address_hex)

    unresolved = set(HASHED_PLACEHOLDER.findall(linked)) | set(LEGACY_PLACEHOLDER.findall(linked))
    if unresolved:
        raise UnresolvedLibraryError(
            contract_name="bytecode", missing=sorted(p.strip("_") for p in unresolved)
        )

    return f"0x{linked}"


class LibraryLinker:
    """Resolves the libraries a contract links against into deployed addresses."""

    def __init__(self, registry: AddressRegistry):
        self.registry = registry

    def resolve_libraries(
        self, library_names: Iterable[str], contract_name: str = ""
    ) -> "OrderedDict[str, ChecksumAddress]":
        resolved = OrderedDict()
        missing: List[str] = list()
        for library_name in library_names:
            try:
                resolved[library_name] = self.registry.resolve(library_name).address
            except UnknownNameError:
                missing.append(library_name)
        if missing:
            raise UnresolvedLibraryError(contract_name=contract_name, missing=missing)
        return resolved

    @staticmethod
    def link(contract_type: ContractType, libraries: Dict[str, ChecksumAddress]) -> ContractType:
        """Returns a copy of ``contract_type`` with linked deployment bytecode."""
        deployment_bytecode = contract_type.deployment_bytecode
        if deployment_bytecode is None or not deployment_bytecode.bytecode:
            raise ValueError(f"{contract_type.name} has no deployment bytecode to link.")

        try:
            linked = link_bytecode(
                bytecode=deployment_bytecode.bytecode,
                libraries=libraries,
                link_references=deployment_bytecode.link_references,
            )
        except UnresolvedLibraryError as error:
            raise UnresolvedLibraryError(
                contract_name=contract_type.name, missing=error.missing
            ) from None

        linked_bytecode = deployment_bytecode.model_copy(update={"bytecode": linked})
        return contract_type.model_copy(update={"deployment_bytecode": linked_bytecode})
