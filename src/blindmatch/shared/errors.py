"""
Error taxonomy for the matching protocol.

Every error signals a caller-side contract violation. None of them are
retried; a session that hits one must abort without returning partial results.
"""


class MatchingError(Exception):
    """Base class for all protocol errors."""


class EncodingError(MatchingError, ValueError):
    """Raw attributes (or an integer) cannot be represented in W bits."""


class KeyMaterialError(MatchingError):
    """Key material is malformed, of the wrong kind, or sized for another width."""


class KeyMismatchError(KeyMaterialError):
    """Key material belongs to a different key pair than the ciphertext."""


class WidthMismatchError(MatchingError, ValueError):
    """Two operands declare different bit widths."""


class DecryptionError(MatchingError):
    """A ciphertext cannot be decrypted consistently under the given key."""


class UnknownTargetError(MatchingError, LookupError):
    """A requested target id is not registered with the service."""
