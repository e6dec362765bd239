from __future__ import annotations


class ProvisioningError(RuntimeError):
    """Base class for every failure that terminates the provisioning workflow."""


class ConfigurationInvalid(ProvisioningError):
    """Identity record is missing required fields, or on-disk config is unusable."""


class ConnectivityFailure(ProvisioningError):
    """DNS, HTTPS or endpoint reachability failed."""


class IdentityNotFound(ProvisioningError):
    """No identity record matches this device."""


class IdentityStoreError(ProvisioningError):
    """The identity store could not be opened or queried."""


class MaterializationFailure(ProvisioningError):
    """Writing the configuration bundle to disk failed."""


class InstallationFailure(ProvisioningError):
    """Account, download, service manager or verification step failed."""
