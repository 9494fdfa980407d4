"""
Key capabilities for the matching protocol.

The two key types are deliberately unrelated classes:

- DecryptionKey: private. Decrypts results. Never leaves the profile
  owner's device.
- EvaluationKey: public. Lets the matching service compute over ciphertexts.
  Derived from a DecryptionKey; there is no way back.
"""
import hashlib
import json
from pathlib import Path
from typing import Optional, Union

from lightphe import LightPHE

from blindmatch.shared.errors import KeyMaterialError

ALGORITHM = "Paillier"
DEFAULT_KEY_SIZE = 2048  # bits


def key_fingerprint(public_key: dict) -> str:
    """Stable identifier of a key pair, computed from its public half."""
    canonical = json.dumps(public_key, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _check_width(width: int) -> int:
    if not isinstance(width, int) or isinstance(width, bool) or width <= 0:
        raise KeyMaterialError(f"Key width must be a positive integer, got {width!r}")
    return width


def _check_public_key(public_key: dict) -> dict:
    if not isinstance(public_key, dict):
        raise KeyMaterialError("Public key must be a dict")
    # Accept both {"public_key": {...}} and the bare inner dict
    if "public_key" in public_key:
        public_key = public_key["public_key"]
    n = public_key.get("n") if isinstance(public_key, dict) else None
    if not isinstance(n, int) or n <= 1:
        raise KeyMaterialError("Public key is missing a valid modulus 'n'")
    return dict(public_key)


class EvaluationKey:
    """
    Public evaluation capability.

    Holds only public material: enough to combine ciphertexts and to encrypt
    constants, never enough to decrypt.
    """

    def __init__(self, public_key: dict, width: int, key_size: int = DEFAULT_KEY_SIZE):
        """
        Initialize evaluation key.

        Args:
            public_key: Paillier public key dict (``{"n": ..., "g": ...}``)
            width: Profile width W the key pair was generated for
            key_size: Paillier modulus size in bits

        Raises:
            KeyMaterialError: If the public key or width is malformed
        """
        self._public_key = _check_public_key(public_key)
        self._width = _check_width(width)
        self._key_size = key_size
        self._fingerprint = key_fingerprint(self._public_key)
        self._cs = LightPHE(
            algorithm_name=ALGORITHM,
            keys={"public_key": self._public_key},
            key_size=key_size,
        )

    @property
    def width(self) -> int:
        return self._width

    @property
    def key_size(self) -> int:
        return self._key_size

    @property
    def fingerprint(self) -> str:
        return self._fingerprint

    @property
    def public_key(self) -> dict:
        """Copy of the public key, safe to send to the matching service."""
        return {"public_key": dict(self._public_key)}

    def encrypt_constant(self, value: int):
        """Fresh encryption of a public constant (used to re-randomise results)."""
        return self._cs.encrypt(value)

    def export(self, path: Union[str, Path]) -> None:
        """Write public key and width to a JSON file."""
        payload = {
            "algorithm": ALGORITHM,
            "width": self._width,
            "key_size": self._key_size,
            "keys": self.public_key,
        }
        Path(path).write_text(json.dumps(payload))

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "EvaluationKey":
        payload = _read_key_file(path)
        return cls(
            payload["keys"],
            width=payload["width"],
            key_size=payload.get("key_size", DEFAULT_KEY_SIZE),
        )

    def __reduce__(self):
        return (EvaluationKey, (self.public_key, self._width, self._key_size))

    def __repr__(self) -> str:
        return f"EvaluationKey(width={self._width}, fingerprint={self._fingerprint[:12]})"


class DecryptionKey:
    """
    Private decryption capability of the profile owner.

    Can derive the matching EvaluationKey; nothing derives a DecryptionKey
    from public material.
    """

    def __init__(self, keys: dict, width: int, key_size: int = DEFAULT_KEY_SIZE):
        """
        Initialize decryption key.

        Args:
            keys: Full LightPHE key dict with ``public_key`` and ``private_key``
            width: Profile width W this key pair serves
            key_size: Paillier modulus size in bits

        Raises:
            KeyMaterialError: If private material is missing or malformed
        """
        if not isinstance(keys, dict) or not keys.get("private_key"):
            raise KeyMaterialError("Decryption key requires private key material")

        public_key = _check_public_key(keys.get("public_key") or {})
        self._width = _check_width(width)
        self._key_size = key_size
        self._fingerprint = key_fingerprint(public_key)
        self._cs = LightPHE(
            algorithm_name=ALGORITHM,
            keys={"public_key": public_key, "private_key": keys["private_key"]},
            key_size=key_size,
        )
        self._evaluation_key: Optional[EvaluationKey] = None

    @property
    def width(self) -> int:
        return self._width

    @property
    def fingerprint(self) -> str:
        return self._fingerprint

    @property
    def evaluation_key(self) -> EvaluationKey:
        """The public evaluation key of this key pair."""
        if self._evaluation_key is None:
            public_key = self._cs.cs.keys["public_key"]
            self._evaluation_key = EvaluationKey(
                {"public_key": public_key}, width=self._width, key_size=self._key_size
            )
        return self._evaluation_key

    def decrypt_value(self, ciphertext) -> int:
        return self._cs.decrypt(ciphertext)

    def export(self, path: Union[str, Path]) -> None:
        """Write the full key pair (including private key) to a JSON file."""
        payload = {
            "algorithm": ALGORITHM,
            "width": self._width,
            "key_size": self._key_size,
            "keys": self._cs.cs.keys.copy(),
        }
        Path(path).write_text(json.dumps(payload))

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "DecryptionKey":
        payload = _read_key_file(path)
        return cls(
            payload["keys"],
            width=payload["width"],
            key_size=payload.get("key_size", DEFAULT_KEY_SIZE),
        )

    def __reduce__(self):
        # Private material stays in process; keys are exported explicitly.
        raise TypeError("DecryptionKey cannot be pickled")

    def __repr__(self) -> str:
        return f"DecryptionKey(width={self._width}, fingerprint={self._fingerprint[:12]})"


def _read_key_file(path: Union[str, Path]) -> dict:
    try:
        payload = json.loads(Path(path).read_text())
    except (OSError, ValueError) as e:
        raise KeyMaterialError(f"Cannot read key file {path}: {e}") from e

    if payload.get("algorithm") != ALGORITHM or "keys" not in payload or "width" not in payload:
        raise KeyMaterialError(f"Key file {path} is not a {ALGORITHM} key file")
    return payload
