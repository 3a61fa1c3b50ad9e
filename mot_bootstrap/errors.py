from __future__ import annotations


class BootstrapError(RuntimeError):
    pass


class ValidationError(BootstrapError):
    """A command-line argument was not recognised."""


class ManifestError(BootstrapError):
    pass


class ProvisioningError(BootstrapError):
    pass


class TransferError(ProvisioningError):
    pass


class ExtractionError(ProvisioningError):
    pass


class InstallError(ProvisioningError):
    pass


class IncompleteStepError(ProvisioningError):
    """The action returned normally but its probe still reports incomplete."""


class StepFailedError(ProvisioningError):
    def __init__(self, step: str, cause: BaseException, completed: tuple[str, ...] = ()) -> None:
        super().__init__(f"step '{step}' failed: {cause}")
        self.step = step
        self.completed = completed  # steps done or skipped before the failure
