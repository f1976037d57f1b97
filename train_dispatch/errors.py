"""
Error classes for train-dispatch.

Every failure raised by a component carries the HTTP status the request
handler answers with. Components raise, the controller maps:
- 400: the caller sent something malformed
- 404: nothing to do (no route, no work units)
- 500: infrastructure trouble the caller cannot fix
"""


class DispatchError(Exception):
    """Base exception for train-dispatch."""
    status_code = 500


class ValidationError(DispatchError):
    """Malformed request body or configuration."""
    status_code = 400


class ConfigValidationError(ValidationError):
    """Training configuration failed validation after the default merge."""
    pass


class NotFoundError(DispatchError):
    status_code = 404


class NoUnitsFound(NotFoundError):
    """Discovery returned no work units to transfer."""
    pass


class ConfigurationError(DispatchError):
    """The service itself is misconfigured (missing node id, bad timeouts)."""
    pass


class NodeNotFound(DispatchError):
    """The node is absent from the compute platform inventory."""
    pass


class NodeStateError(DispatchError):
    """The node is in a state the readiness driver does not handle."""
    pass


class NodeReadyTimeout(DispatchError):
    """The node did not reach running within the attempt/time ceiling."""
    pass


class ComputeUnavailable(DispatchError):
    """The compute control plane rejected or failed a call."""
    pass


class ChannelUnavailable(DispatchError):
    """The execution channel rejected or failed the submission."""
    pass


class PayloadTooLarge(DispatchError):
    """The command batch exceeds the execution channel payload limit."""
    pass


class StorageUnavailable(DispatchError):
    pass


class SecretUnavailable(DispatchError):
    pass
