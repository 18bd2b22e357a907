"""Domain-specific errors for hapticctl."""


class HapticError(Exception):
    """Base error for hapticctl."""


class CommandParseError(HapticError):
    """Raised when a command line cannot be parsed."""


class RuleParseError(HapticError):
    """Raised when an alias rule line is malformed."""


class ConfigLoadError(HapticError):
    """Raised when reading configuration sources fails."""


class ConfigValidationError(HapticError):
    """Raised when a config file does not conform to schema or semantics."""


class ProtocolError(HapticError):
    """Raised when an inbound protocol frame cannot be decoded."""


class UnexpectedAcknowledgementError(ProtocolError):
    """Raised when the server acknowledges a request id that is not in flight."""


class CapabilityError(HapticError):
    """Raised when a device lacks the capability a command requires."""


class SessionClosedError(HapticError):
    """Raised when a closed session is asked to do more work."""


class TransportError(HapticError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised on WebSocket connect failures."""


class TransportClosedError(TransportError):
    """Raised when the WebSocket connection closes abnormally."""
