"""
Exceptions raised by the compliance layer.

Only integrity-class failures are raised. Validation, authentication, not-found
and expiry outcomes are returned as result objects instead.
"""


class ComplianceError(Exception):
    """Base class for compliance layer errors"""


class SealedPayloadError(ComplianceError, ValueError):
    """A sealed payload is malformed or failed authentication"""


class StorePersistenceError(ComplianceError):
    """The store snapshot could not be written; in-memory state is unchanged"""
