import typing
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, List, Set

from ape.api import AccountAPI, ReceiptAPI
from ape.cli.choices import select_account
from ape.contracts.base import ContractContainer, ContractInstance, ContractTransactionHandler
from ape.exceptions import ApeException
from ape.utils import ZERO_ADDRESS
from eth_abi.exceptions import EncodingError
from web3.auto import w3

from lending_deployment.artifacts import ProjectArtifacts
from lending_deployment.confirm import _confirm_resolution, _continue
from lending_deployment.constants import DEPLOYER, IMPLEMENTATION_SUFFIX, PROXY_CONTRACT, TREASURY
from lending_deployment.context import DeploymentContext
from lending_deployment.errors import (
    ConfigurationCallError,
    DeploymentRejectedError,
    InitializationError,
    ParametersError,
    RemoteCallError,
)
from lending_deployment.linker import LibraryLinker
from lending_deployment.registry import (
    DeploymentRecord,
    InitializerCall,
    ProxyDeployment,
    RecordKind,
    entries_from_records,
    write_registry,
)
from lending_deployment.reserves import ReserveInitParams
from lending_deployment.utils import verify_contracts

CONTRACT_CONSTRUCTOR_PARAMETER_KEY = "constructor"
CONTRACT_PROXY_PARAMETER_KEY = "proxy"
CONTRACT_TYPE_KEY = "contract_type"
PROXY_INITIALIZER_KEY = "initializer"
ACCOUNT_NAMES = (DEPLOYER, TREASURY)


class VariableContext:
    def __init__(
        self,
        contract_names: List[str],
        contract_name: str,
        constants: typing.Dict[str, Any] = None,
    ):
        self.contract_names = contract_names or list()
        self.contract_name = contract_name
        self.constants = constants or dict()


# Variables


class Variable(ABC):
    VARIABLE_PREFIX = "$"

    @abstractmethod
    def resolve(self, context: DeploymentContext, eager: bool = False) -> Any:
        raise NotImplementedError

    @classmethod
    def is_variable(cls, param: Any) -> bool:
        """Returns True if the param is a variable."""
        result = isinstance(param, str) and param.startswith(cls.VARIABLE_PREFIX)
        return result


class NamedAccount(Variable):
    def __init__(self, account_name: str):
        self.account_name = account_name

    @classmethod
    def is_account(cls, value: str) -> bool:
        """Returns True if the variable names one of the run's accounts."""
        return value in ACCOUNT_NAMES

    def resolve(self, context: DeploymentContext, eager: bool = False) -> Any:
        return context.accounts.get(self.account_name, ZERO_ADDRESS)


class Constant(Variable):
    def __init__(self, constant_name: str, context: VariableContext):
        try:
            self.constant_value = context.constants[constant_name]
        except KeyError:
            raise ParametersError(f"Constant '{constant_name}' not found in deployment file.")

    @classmethod
    def is_constant(cls, value: str) -> bool:
        """Returns True if the variable is a deployment constant."""
        return value.isupper()

    def resolve(self, context: DeploymentContext, eager: bool = False) -> Any:
        return self.constant_value


class ContractName(Variable):
    def __init__(self, contract_name: str, context: VariableContext):
        deployed_name = contract_name
        if contract_name.endswith(IMPLEMENTATION_SUFFIX):
            deployed_name = contract_name[: -len(IMPLEMENTATION_SUFFIX)]
        if deployed_name not in context.contract_names:
            raise ParametersError(f"Contract name {contract_name} not found")

        self.contract_name = contract_name

    def resolve(self, context: DeploymentContext, eager: bool = False) -> Any:
        """Resolves a contract address; proxied contracts resolve to their proxy."""
        if eager and self.contract_name not in context.registry:
            return ZERO_ADDRESS
        return context.address(self.contract_name)


def _resolve_param(value: Any, context: DeploymentContext, eager: bool = False) -> Any:
    """Resolves a single parameter value or a list of parameter values."""
    if isinstance(value, list):
        return [_resolve_param(v, context, eager) for v in value]

    if isinstance(value, Variable):
        return value.resolve(context, eager)

    return value  # literally a value


def _resolve_params(
    parameters: OrderedDict, context: DeploymentContext, eager: bool = False
) -> OrderedDict:
    resolved_parameters = OrderedDict()
    for name, value in parameters.items():
        resolved_parameters[name] = _resolve_param(value, context, eager)

    return resolved_parameters


def _variable_from_value(variable: Any, context: VariableContext) -> Variable:
    variable = variable[len(Variable.VARIABLE_PREFIX) :]
    if NamedAccount.is_account(variable):
        return NamedAccount(variable)
    elif Constant.is_constant(variable):
        return Constant(variable, context)
    else:
        return ContractName(variable, context)


def _process_raw_value(value: Any, variable_context: VariableContext) -> Any:
    if isinstance(value, list):
        return [_process_raw_value(v, variable_context) for v in value]

    if Variable.is_variable(value):
        value = _variable_from_value(value, variable_context)

    return value


def _process_raw_values(values: typing.Dict, variable_context: VariableContext) -> OrderedDict:
    processed_parameters = OrderedDict()
    for name, value in values.items():
        processed_parameters[name] = _process_raw_value(value, variable_context)

    return processed_parameters


def referenced_contracts(value: Any) -> Set[str]:
    """Returns the logical contract names a processed value refers to."""
    if isinstance(value, (list, tuple)):
        return set().union(*(referenced_contracts(v) for v in value))
    if isinstance(value, dict):
        return referenced_contracts(list(value.values()))
    if isinstance(value, ContractName):
        return {value.contract_name}
    return set()


def _get_contract_names(config: typing.Dict) -> List[str]:
    contract_names = list()
    for contract_info in config["contracts"]:
        if isinstance(contract_info, str):
            contract_names.append(contract_info)
        elif isinstance(contract_info, dict):
            contract_names.extend(list(contract_info.keys()))
        else:
            raise ParametersError("Malformed constructor parameters YAML.")

    return contract_names


def _validate_method_args(
    method_abis: List[Any], args: typing.Sequence[Any]
) -> typing.Dict[str, Any]:
    """Validates the transaction arguments against the function ABI."""
    if len(method_abis) == 0:
        raise ParametersError("No method abis provided for validation of args")

    abis_matching_args_length = [abi for abi in method_abis if len(abi.inputs) == len(args)]
    for abi in abis_matching_args_length:
        named_args = OrderedDict()
        for position, (arg, abi_input) in enumerate(zip(args, abi.inputs)):
            # structs only encode against their canonical tuple type
            if not w3.is_encodable(abi_input.canonical_type, arg):
                break
            named_args[abi_input.name or f"arg{position}"] = arg
        else:
            return named_args
    raise ParametersError(
        f"Could not find ABI for '{method_abis[0].name}' with {len(args)} arg(s) and given type(s)"
    )


def _validate_constructor_abi_inputs(
    contract_name: str,
    abi_inputs: List[Any],
    resolved_parameters: OrderedDict,
) -> None:
    """Validates the constructor parameters against the constructor ABI."""
    if len(resolved_parameters) != len(abi_inputs):
        raise ParametersError(
            f"Constructor parameters length mismatch - "
            f"{contract_name} ABI requires {len(abi_inputs)}, Got {len(resolved_parameters)}."
        )

    codex = enumerate(zip(abi_inputs, resolved_parameters.items()), start=0)
    for position, (abi_input, resolved_input) in codex:
        name, value = resolved_input
        if not w3.is_encodable(abi_input.type, value):
            raise ParametersError(
                f"Constructor param name '{name}' at position {position} has a value '{value}' "
                f"whose type does not match expected ABI type '{abi_input.type}'"
            )


class MarketParameters:
    """
    Constructor arguments, proxy initializers and reserve definitions for
    every contract of a lending market, as declared in a parameters file.
    """

    def __init__(
        self,
        constructor_params: OrderedDict,
        initializers: OrderedDict,
        contract_types: typing.Dict[str, str],
        reserves: List[OrderedDict],
        constants: typing.Dict[str, Any],
    ):
        self.constructor_params = constructor_params
        self.initializers = initializers
        self.contract_types = contract_types
        self.raw_reserves = reserves
        self.constants = constants

    @classmethod
    def from_config(cls, config: typing.Dict) -> "MarketParameters":
        """Loads the market parameters from a parsed YAML file."""
        print("Processing contract parameters...")
        if not config.get("contracts"):
            raise ParametersError("Parameters file missing 'contracts' field.")

        contract_names = _get_contract_names(config)
        constants = config.get("constants") or dict()
        constructor_params, initializers, contract_types = OrderedDict(), OrderedDict(), dict()
        for contract_info in config["contracts"]:
            if isinstance(contract_info, str):
                constructor_params[contract_info] = OrderedDict()
                continue
            if len(contract_info) != 1:
                raise ParametersError("Malformed constructor parameters YAML.")

            contract_name = list(contract_info.keys())[0]  # only one entry
            contract_data = contract_info[contract_name] or dict()
            variable_context = VariableContext(
                contract_names=contract_names, constants=constants, contract_name=contract_name
            )
            constructor_params[contract_name] = _process_raw_values(
                contract_data.get(CONTRACT_CONSTRUCTOR_PARAMETER_KEY) or dict(), variable_context
            )
            if CONTRACT_TYPE_KEY in contract_data:
                contract_types[contract_name] = contract_data[CONTRACT_TYPE_KEY]
            if CONTRACT_PROXY_PARAMETER_KEY in contract_data:
                initializers[contract_name] = cls._process_initializer(
                    contract_data[CONTRACT_PROXY_PARAMETER_KEY], variable_context
                )

        reserves_context = VariableContext(
            contract_names=contract_names, constants=constants, contract_name="reserves"
        )
        reserves = [
            _process_raw_values(reserve, reserves_context) for reserve in config.get("reserves", [])
        ]
        return cls(
            constructor_params=constructor_params,
            initializers=initializers,
            contract_types=contract_types,
            reserves=reserves,
            constants=constants,
        )

    @staticmethod
    def _process_initializer(proxy_data, variable_context: VariableContext) -> InitializerCall:
        initializer = (proxy_data or dict()).get(PROXY_INITIALIZER_KEY)
        if not initializer or "method" not in initializer:
            raise ParametersError(
                f"Proxy for {variable_context.contract_name} requires an initializer method."
            )
        args = _process_raw_value(list(initializer.get("args", [])), variable_context)
        return InitializerCall(method=initializer["method"], args=tuple(args))

    @property
    def contract_names(self) -> List[str]:
        return list(self.constructor_params)

    def contract_type(self, contract_name: str) -> str:
        return self.contract_types.get(contract_name, contract_name)

    def needs_proxy(self, contract_name: str) -> bool:
        return contract_name in self.initializers

    def constructor_args(self, contract_name: str, context: DeploymentContext) -> OrderedDict:
        """Resolves the constructor parameters for a single contract."""
        return _resolve_params(self.constructor_params.get(contract_name, OrderedDict()), context)

    def initializer(self, contract_name: str, context: DeploymentContext) -> InitializerCall:
        """Resolves the one-time initializer call of a proxied contract."""
        try:
            initializer = self.initializers[contract_name]
        except KeyError:
            raise ParametersError(f"Unexpected contract to proxy: {contract_name}")
        args = _resolve_param(list(initializer.args), context)
        return InitializerCall(method=initializer.method, args=tuple(args))

    def references(self, contract_name: str) -> Set[str]:
        """Contract names that must be deployed before ``contract_name``."""
        refs = referenced_contracts(self.constructor_params.get(contract_name, OrderedDict()))
        if contract_name in self.initializers:
            refs |= referenced_contracts(list(self.initializers[contract_name].args))
        return refs

    def reserve_references(self) -> Set[str]:
        return referenced_contracts(self.raw_reserves)

    def reserves(self, context: DeploymentContext) -> List[ReserveInitParams]:
        """Resolves the batch initialization records, in declaration order."""
        reserves = list()
        for raw_reserve in self.raw_reserves:
            resolved = _resolve_params(raw_reserve, context)
            if "underlying_asset_name" not in resolved:
                underlying = raw_reserve["underlying_asset"]
                if not isinstance(underlying, ContractName):
                    raise ParametersError(
                        "underlying_asset_name is required for assets deployed outside the run."
                    )
                resolved["underlying_asset_name"] = context.contract(
                    underlying.contract_name
                ).name()
            try:
                reserves.append(ReserveInitParams.from_resolved(resolved))
            except ValueError as error:
                raise ParametersError(str(error)) from error
        return reserves

    def validate(self, artifacts: ProjectArtifacts, context: DeploymentContext) -> None:
        """
        Checks constructor arguments against each contract's constructor ABI,
        and proxy initializer arguments against the initializer method ABI.
        """
        for contract_name, parameters in self.constructor_params.items():
            resolved_parameters = _resolve_params(parameters, context, eager=True)
            contract_container = artifacts.get(self.contract_type(contract_name))
            _validate_constructor_abi_inputs(
                contract_name=contract_name,
                abi_inputs=contract_container.constructor.abi.inputs,
                resolved_parameters=resolved_parameters,
            )

        for contract_name, initializer in self.initializers.items():
            contract_container = artifacts.get(self.contract_type(contract_name))
            method_abis = [
                abi
                for abi in contract_container.contract_type.methods
                if abi.name == initializer.method
            ]
            if not method_abis:
                raise ParametersError(
                    f"Proxy initializer '{initializer.method}' not found in {contract_name} ABI."
                )
            resolved_args = _resolve_param(list(initializer.args), context, eager=True)
            try:
                _validate_method_args(method_abis=method_abis, args=resolved_args)
            except ParametersError as error:
                raise ParametersError(f"Proxy initializer of {contract_name}: {error}") from error


def _revert_reason(error: ApeException) -> str:
    return getattr(error, "revert_message", None) or str(error) or type(error).__name__


def _freeze(value: Any) -> Any:
    """Turns (nested) lists into tuples so records stay immutable."""
    if isinstance(value, list) or type(value) is tuple:
        return tuple(_freeze(v) for v in value)
    return value


class Transactor:
    """
    Represents an ape account plus annotated, confirmed transaction execution.
    """

    def __init__(self, account: typing.Optional[AccountAPI] = None, autosign: bool = False):
        if account is None:
            self._account = select_account()
        else:
            self._account = account
        if autosign:
            print("WARNING: Autosign is enabled. Transactions will be signed automatically.")
        self._autosign = autosign
        self._account.set_autosign(autosign)

    def get_account(self) -> AccountAPI:
        """Returns the transactor account."""
        return self._account

    def transact(self, method: ContractTransactionHandler, *args) -> ReceiptAPI:
        """Submits a state-mutating call and blocks until it is confirmed."""
        method_name = method.abis[0].name if method.abis else str(method)
        step = (
            f"{method.contract.contract_type.name}"
            f"[{method.contract.address[:10]}].{method_name}"
        )
        try:
            named_args = _validate_method_args(method_abis=method.abis, args=args)
        except ParametersError as error:
            raise ParametersError(f"{step}: {error}") from error
        if named_args:
            pretty_args = "\n\t".join(f"{k}={v}" for k, v in named_args.items())
            message = f"\nTransacting {step} with arguments:\n\t{pretty_args}"
        else:
            message = f"\nTransacting {step} with no arguments"
        print(message)
        if not self._autosign:
            _continue()

        try:
            receipt = method(*args, sender=self._account)
        except ApeException as error:
            raise ConfigurationCallError(step=step, reason=_revert_reason(error)) from error
        self._await_confirmation(receipt, step=step, error_class=ConfigurationCallError)
        return receipt

    @staticmethod
    def _await_confirmation(
        receipt: ReceiptAPI, step: str, error_class: typing.Type[RemoteCallError]
    ) -> None:
        try:
            receipt.await_confirmations()
        except ApeException as error:
            raise error_class(step=step, reason=_revert_reason(error)) from error
        if receipt.failed:
            raise error_class(step=step, reason=f"transaction {receipt.txn_hash} failed")


class Deployer(Transactor):
    """
    Represents an ape account plus validated/annotated deployment of plain
    and proxied contracts into a deployment context.
    """

    def __init__(
        self,
        context: DeploymentContext,
        artifacts: typing.Optional[ProjectArtifacts] = None,
        account: typing.Optional[AccountAPI] = None,
        autosign: bool = False,
        verify: bool = False,
    ):
        super().__init__(account, autosign)
        self.context = context
        self.artifacts = artifacts or ProjectArtifacts()
        self.linker = LibraryLinker(context.registry)
        self.verify = verify

    def _get_kwargs(self) -> typing.Dict[str, Any]:
        """Returns the deployment kwargs."""
        return {"publish": self.verify}

    def _deploy_contract(
        self,
        container: ContractContainer,
        resolved_params: OrderedDict,
        step: str,
        error_class: typing.Type[RemoteCallError] = DeploymentRejectedError,
    ) -> ContractInstance:
        contract_name = container.contract_type.name
        if not self._autosign:
            _confirm_resolution(resolved_params, contract_name)
        try:
            instance = self._account.deploy(
                container, *resolved_params.values(), **self._get_kwargs()
            )
        except ApeException as error:
            raise error_class(step=step, reason=_revert_reason(error)) from error
        self._await_confirmation(instance.receipt, step=step, error_class=error_class)
        return instance

    def _register(
        self,
        name: str,
        instance: ContractInstance,
        kind: RecordKind,
        contract_type: str,
        args: typing.Sequence[Any] = (),
        libraries: typing.Iterable[str] = (),
        receipt: typing.Optional[ReceiptAPI] = None,
    ) -> DeploymentRecord:
        record = DeploymentRecord(
            name=name,
            address=instance.address,
            kind=kind,
            contract_type=contract_type,
            constructor_args=_freeze(tuple(args)),
            library_refs=frozenset(libraries),
            tx_hash=receipt.txn_hash if receipt else None,
            block_number=receipt.block_number if receipt else None,
        )
        self.context.register(record, instance)
        print(f"{name}: {instance.address}")
        return record

    def deploy_plain(
        self,
        name: str,
        args: OrderedDict,
        contract_type: typing.Optional[str] = None,
        libraries: typing.Sequence[str] = (),
        kind: RecordKind = RecordKind.PLAIN,
    ) -> DeploymentRecord:
        """Deploys a contract, waits for its confirmation and registers it."""
        contract_type = contract_type or name
        alias = f" (as {contract_type})" if contract_type != name else ""
        print(f"\nDeploying {name}{alias}")

        if libraries:
            addresses = self.linker.resolve_libraries(libraries, contract_name=name)
            print("\tlinked against " + ", ".join(f"{k}={v}" for k, v in addresses.items()))
            container = self.artifacts.linked(contract_type, addresses)
        else:
            container = self.artifacts.get(contract_type)

        instance = self._deploy_contract(container, args, step=f"Deployment of {name}")
        return self._register(
            name=name,
            instance=instance,
            kind=kind,
            contract_type=contract_type,
            args=args.values(),
            libraries=libraries,
            receipt=instance.receipt,
        )

    def deploy_behind_proxy(
        self,
        name: str,
        args: OrderedDict,
        initializer: InitializerCall,
        contract_type: typing.Optional[str] = None,
    ) -> ProxyDeployment:
        """
        Deploys an implementation and a transparent proxy in front of it. The
        initializer is encoded into the proxy constructor, so the proxy is
        initialized exactly once, in the same transaction that creates it.
        """
        contract_type = contract_type or name
        implementation_record = self.deploy_plain(
            name=f"{name}{IMPLEMENTATION_SUFFIX}",
            args=args,
            contract_type=contract_type,
            kind=RecordKind.PROXY_IMPLEMENTATION,
        )
        implementation = self.context.contract(implementation_record.name)
        initialization_step = f"Initialization of {name} through {initializer.method}"
        try:
            initializer_method = getattr(implementation, initializer.method)
            encoded_initializer = initializer_method.encode_input(*initializer.args)
        except (ApeException, AttributeError, EncodingError) as error:
            raise InitializationError(
                step=initialization_step, reason=_revert_reason(error)
            ) from error

        proxy_params = OrderedDict(
            {
                "_logic": implementation.address,
                "initialOwner": self.context.deployer,
                "_data": encoded_initializer,
            }
        )
        print(
            f"\nDeploying {PROXY_CONTRACT} contract to proxy {name}, "
            f"initialized through {initializer.method}."
        )
        proxy_contract = self._deploy_contract(
            self.artifacts.get(PROXY_CONTRACT),
            proxy_params,
            step=initialization_step,
            error_class=InitializationError,
        )
        print(f"\nWrapping {name} into {PROXY_CONTRACT} (as type {contract_type}).")
        instance = self.artifacts.get(contract_type).at(proxy_contract.address)
        proxy_record = self._register(
            name=name,
            instance=instance,
            kind=RecordKind.PROXY_INSTANCE,
            contract_type=contract_type,
            args=proxy_params.values(),
            receipt=proxy_contract.receipt,
        )
        return ProxyDeployment(
            implementation=implementation_record, proxy=proxy_record, initializer=initializer
        )

    def attach_proxy(self, name: str, address: str, contract_type: str) -> DeploymentRecord:
        """Registers a proxy created on-chain by another contract (e.g. an addresses provider)."""
        print(f"\nWrapping {name} proxy at {address} (as type {contract_type}).")
        instance = self.artifacts.get(contract_type).at(address)
        return self._register(
            name=name, instance=instance, kind=RecordKind.PROXY_INSTANCE, contract_type=contract_type
        )

    def finalize(self, registry_filepath, chain_id: int) -> None:
        """
        Publishes the deployments to the registry and optionally to block explorers.
        """
        entries = entries_from_records(
            records=self.context.registry.records(),
            instances=self.context.instances,
            chain_id=chain_id,
            deployer=self.context.deployer,
        )
        output_filepath = write_registry(entries=entries, filepath=registry_filepath)
        print(f"(i) Registry written to {output_filepath}!")
        if self.verify:
            verify_contracts(contracts=list(self.context.instances.values()))
