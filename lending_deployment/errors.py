class DeploymentError(Exception):
    """Base exception for lending market deployment errors."""


class DuplicateNameError(DeploymentError, ValueError):
    """Raised when a logical contract name is registered twice in one run."""


class UnknownNameError(DeploymentError, LookupError):
    """Raised when a logical contract name has not been registered."""


class UnresolvedLibraryError(DeploymentError, ValueError):
    """Raised when a required library was not deployed earlier in the run."""

    def __init__(self, contract_name: str, missing):
        self.contract_name = contract_name
        self.missing = list(missing)
        super().__init__(
            f"Cannot link {contract_name}: unresolved libraries {', '.join(self.missing)}"
        )


class ParametersError(DeploymentError, ValueError):
    """Raised when the deployment parameters file is malformed."""


class PlanError(DeploymentError, ValueError):
    """Raised when the deployment steps violate stage or ownership ordering."""


class RemoteCallError(DeploymentError):
    """Base for failures reported by the network; always fatal to the run."""

    def __init__(self, step: str, reason: str):
        self.step = step
        self.reason = reason
        super().__init__(f"{step} failed: {reason}")


class DeploymentRejectedError(RemoteCallError):
    """Raised when a deployment transaction is rejected or reverted."""


class InitializationError(RemoteCallError):
    """Raised when a proxy could not be created together with its initializer call."""


class ConfigurationCallError(RemoteCallError):
    """Raised when a state-mutating call against a deployed contract fails."""


class SmokeTestError(DeploymentError):
    """Raised when the smoke test observes an inconsistently wired market."""
