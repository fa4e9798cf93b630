"""Error taxonomy for report dispatch.

Only ConfigurationError is fatal to a run. The others are raised and
caught inside the orchestrator, logged, and isolated to the site (or
recipient) they concern.
"""


class DispatchError(Exception):
    """Base class for report dispatch errors."""


class ConfigurationError(DispatchError):
    """Malformed timezone or unparsable reference instant."""


class AssemblyError(DispatchError):
    """The report assembler failed (or timed out) for one site."""


class DeliveryError(DispatchError):
    """The notifier failed (or timed out) for one recipient."""


class LedgerError(DispatchError):
    """Writing a ledger entry failed."""
