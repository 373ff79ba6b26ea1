from typing import Dict

from ape.contracts import ContractContainer
from eth_typing import ChecksumAddress

from lending_deployment.linker import LibraryLinker
from lending_deployment.utils import get_contract_container


class ProjectArtifacts:
    """Compiled contract containers from the ape project and its dependencies."""

    def get(self, contract_type: str) -> ContractContainer:
        return get_contract_container(contract_type)

    def linked(
        self, contract_type: str, libraries: Dict[str, ChecksumAddress]
    ) -> ContractContainer:
        container = self.get(contract_type)
        linked_type = LibraryLinker.link(container.contract_type, libraries)
        return ContractContainer(linked_type)
