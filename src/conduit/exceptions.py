"""
Custom exceptions for the Conduit synchronization engine.
"""

class ConduitException(Exception):
    """Base exception for all application-specific errors."""
    pass

class InputError(ConduitException):
    """Missing or malformed request arguments."""
    pass

class NotFoundError(ConduitException):
    """A referenced synchronization, mapping or contract does not exist."""
    pass

class ConfigurationError(ConduitException):
    """Error related to synchronization or connector configuration."""
    pass

class MappingError(ConduitException):
    """Malformed mapping definition or input that is not an object."""
    pass

class ExecutionError(ConduitException):
    """Error during a synchronization run."""
    pass

class PersistenceError(ConduitException):
    """The definition or contract store is unavailable."""
    pass

class ConnectorError(ConduitException):
    """Error related to a source or target connector."""
    pass

# Connector failures the orchestrator distinguishes between
class SourceUnavailable(ConnectorError):
    """The source system could not be read."""
    pass

class TargetUnavailable(ConnectorError):
    """The target system could not be reached."""
    pass

class TargetRejected(ConnectorError):
    """The target system refused an object (validation failure)."""
    pass
