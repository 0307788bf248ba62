class RelayError(Exception):
    """Base class for errors reported back to the originating connection.

    Every subclass carries a stable ``code`` that clients can switch on.
    """
    code = 'RELAY_ERROR'
    retryable = False

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'code': self.code, 'message': self.message, 'retryable': self.retryable}


class PolicyViolation(RelayError):
    """Raised when the sender is not permitted to address the receiver."""
    code = 'POLICY_VIOLATION'


class PersistenceFailure(RelayError):
    """Raised when a durable read or write fails."""
    code = 'PERSISTENCE_FAILURE'
    retryable = True


class UploadFailed(RelayError):
    """Raised when the object store rejects or fails an attachment upload."""
    code = 'UPLOAD_FAILED'
    retryable = True


class UnknownIdentity(RelayError):
    """Raised when an identity is not present in the presence directory."""
    code = 'UNKNOWN_IDENTITY'


class StaleConnection(RelayError):
    """Raised when an event arrives on a superseded connection handle."""
    code = 'STALE_CONNECTION'


class InvalidPayload(RelayError):
    """Raised when inbound event data is malformed."""
    code = 'INVALID_PAYLOAD'
