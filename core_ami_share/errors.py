"""Errors raised by the AMI share engine."""


class AmiShareError(Exception):
    """Base class for all errors raised by this package."""


class ConfigError(AmiShareError):
    """The configuration file could not be read, rendered, parsed or validated."""


class AuthFailure(AmiShareError):
    """A session could not be established or a role could not be assumed."""


class SessionNotInitialized(AuthFailure):
    """A role-assumed session was requested before the master session was created."""


class IdentityMismatch(AmiShareError):
    """The identity reported by AWS does not match the configured account."""


class ProviderFailure(AmiShareError):
    """A remote EC2 call (listing, tagging, attribute modification) failed."""


class PlanWriteError(AmiShareError):
    """The plan file could not be written."""


class Cancelled(AmiShareError):
    """Execution was stopped by a cancellation request."""
