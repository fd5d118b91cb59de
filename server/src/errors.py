from __future__ import annotations


class CollectorError(Exception):
    """Base class for operational failures raised by the node monitor."""


class FetchError(CollectorError):
    """The public node directory could not be retrieved or was malformed."""


class ProbeError(CollectorError):
    """A node RPC call failed. Absorbed by the probe into an offline record."""


class PersistenceError(CollectorError):
    """A storage transaction failed and was rolled back."""


class ConfigurationError(CollectorError):
    """Startup configuration is incomplete. Fatal before scheduling begins."""
