"""
Opaque ciphertext handles.

EncryptedProfile and MetricResult expose only their declared widths and the
fingerprint of the key pair they belong to. The ciphertexts themselves are
reachable only from ``blindmatch.shared.backend``.
"""
from typing import Any, List

from blindmatch.shared.utils import result_bit_width


class EncryptedProfile:
    """
    Encrypted W-bit profile.

    Each bit is held twice: once as the encrypted bit and once as its
    encrypted complement, so that XOR against a cleartext bit stays linear.
    """

    __slots__ = ("_ones", "_zeros", "_width", "_fingerprint")

    def __init__(self, ones: List[Any], zeros: List[Any], width: int, fingerprint: str):
        if len(ones) != width or len(zeros) != width:
            raise ValueError("Encrypted rails must both hold exactly `width` ciphertexts")
        self._ones = tuple(ones)
        self._zeros = tuple(zeros)
        self._width = width
        self._fingerprint = fingerprint

    @property
    def width(self) -> int:
        return self._width

    @property
    def key_fingerprint(self) -> str:
        return self._fingerprint

    def __repr__(self) -> str:
        return f"EncryptedProfile(width={self._width}, key={self._fingerprint[:12]})"


class MetricResult:
    """Encrypted count in [0, W] produced by the matching service."""

    __slots__ = ("_ciphertext", "_metric", "_width", "_fingerprint")

    def __init__(self, ciphertext: Any, metric: str, width: int, fingerprint: str):
        self._ciphertext = ciphertext
        self._metric = metric
        self._width = width
        self._fingerprint = fingerprint

    @property
    def metric(self) -> str:
        return self._metric

    @property
    def width(self) -> int:
        """Width W of the profiles the result was computed from."""
        return self._width

    @property
    def result_bits(self) -> int:
        """Numeric width of the result, ceil(log2(W + 1)) bits."""
        return result_bit_width(self._width)

    @property
    def key_fingerprint(self) -> str:
        return self._fingerprint

    def __repr__(self) -> str:
        return (
            f"MetricResult(metric={self._metric!r}, width={self._width}, "
            f"key={self._fingerprint[:12]})"
        )
