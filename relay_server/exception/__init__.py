from relay_server.exception.RelayError import (
    RelayError, PolicyViolation, PersistenceFailure, UploadFailed,
    UnknownIdentity, StaleConnection, InvalidPayload
)

__all__ = [
    'RelayError', 'PolicyViolation', 'PersistenceFailure', 'UploadFailed',
    'UnknownIdentity', 'StaleConnection', 'InvalidPayload'
]
