# errors.py


class ScanError(Exception):
    """Base class for errors that abort a scan run."""


class ConfigurationError(ScanError):
    """Missing or malformed scan input. Raised before any probing starts."""


class PrivilegeError(ScanError):
    """The current user lacks the rights needed for link-layer discovery."""


class DiscoveryError(ScanError):
    """The discovery mechanism failed to start or terminated abnormally."""
