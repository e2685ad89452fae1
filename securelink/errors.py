"""
Error taxonomy for SecureLink.

Every failure that crosses a public boundary is one of these classes, so
callers can tell an attacker (AuthenticationFailure) apart from ordinary
network reordering (ReplayRejected) or a programming mistake
(ValidationFailure, SessionNotEstablished).
"""


class SecureLinkError(Exception):
    """Base class for all SecureLink errors."""
    pass


class KeyAgreementFailure(SecureLinkError):
    """Raised when key generation, ECDH or key derivation fails."""
    pass


class ValidationFailure(SecureLinkError, ValueError):
    """Raised when a caller passes a key, nonce or buffer of the wrong shape."""
    pass


class DecryptionFailure(SecureLinkError):
    """Raised when AEAD decryption fails for a reason other than validation."""
    pass


class AuthenticationFailure(DecryptionFailure):
    """
    Raised when the AEAD tag does not verify.

    Treat as a potential active attacker. Never retry with the same frame.
    When raised by decode, ``sequence`` holds the frame's sequence number,
    whose replay-window slot stays consumed.
    """

    def __init__(self, message: str = "Authentication tag mismatch", sequence: int = None):
        self.sequence = sequence
        super().__init__(message)


class MalformedCiphertext(DecryptionFailure):
    """Raised when ciphertext and tag cannot form a valid AEAD input."""
    pass


class ReplayRejected(SecureLinkError):
    """Raised when a frame's sequence number is stale or already seen."""

    def __init__(self, sequence: int, message: str = None):
        self.sequence = sequence
        super().__init__(message or f"Sequence {sequence} rejected by replay window")


class MalformedFrame(SecureLinkError):
    """Raised when a frame or payload fails parsing or bounds checks."""
    pass


class SessionNotEstablished(SecureLinkError):
    """Raised when an operation needs keys the session does not have."""
    pass


class SessionExpired(SessionNotEstablished):
    """Raised when a session has been swept, closed or exhausted its sequence space."""
    pass


class UnknownSession(SessionNotEstablished):
    """Raised when a frame names a session id that is not in the registry."""

    def __init__(self, session_id: int):
        self.session_id = session_id
        super().__init__(f"No session with id {session_id}")


class ConfigError(SecureLinkError):
    """Raised when configuration cannot be loaded or is invalid."""
    pass


class TransportError(SecureLinkError):
    """Raised when transport operations fail."""
    pass
