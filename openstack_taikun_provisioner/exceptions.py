# SPDX-License-Identifier: AGPL-3.0-or-later


class ProvisioningError(Exception):
    """Base class of all errors that abort a provisioning run."""


class ConfigurationError(ProvisioningError):
    pass


class ApplicationCredentialExistsError(ProvisioningError):
    def __init__(self, name: str, user_name: str):
        super().__init__(
            f"application credential {name} already exists for user {user_name}, "
            "the secret can not be retrieved --> delete it or use another name"
        )
        self.name = name
        self.user_name = user_name


class ExternalCommandError(ProvisioningError):
    def __init__(self, command: str, returncode: int):
        super().__init__(f"'{command}' failed with exit status {returncode}")
        self.command = command
        self.returncode = returncode


class UnexpectedResponseError(ProvisioningError):
    pass


class StepError(ProvisioningError):
    """A provisioning step failed, the run is aborted."""

    def __init__(self, step: str, error: Exception):
        super().__init__(f"{step} - {type(error).__name__}: {error}")
        self.step = step
        self.error = error
