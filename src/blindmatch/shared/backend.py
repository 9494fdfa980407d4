"""
Paillier arithmetic backend built on LightPHE.

Paillier is additively homomorphic: ciphertexts can be added together and
multiplied by cleartext integers. That is enough for both metrics because the
target profile is cleartext on the evaluator side:

    u XOR t = u * (1 - t) + (1 - u) * t
    u AND t = u * t
    popcount(v) = v_0 + v_1 + ... + v_{W-1}

Profiles are encrypted in dual-rail form (each bit and its complement), so
every circuit below is a fixed sequence of scalar multiplications and
additions. Nothing branches on, or looks at, an encrypted value.
"""
import logging
from typing import Any, List, Sequence, Tuple

from lightphe import LightPHE

from blindmatch.shared.ciphertext import EncryptedProfile, MetricResult
from blindmatch.shared.errors import (
    DecryptionError,
    KeyMaterialError,
    KeyMismatchError,
    WidthMismatchError,
)
from blindmatch.shared.keys import ALGORITHM, DEFAULT_KEY_SIZE, DecryptionKey, EvaluationKey
from blindmatch.shared.profile import Profile
from blindmatch.shared.utils import result_bit_width

logger = logging.getLogger(__name__)


def keygen(width: int, key_size: int = DEFAULT_KEY_SIZE) -> Tuple[DecryptionKey, EvaluationKey]:
    """
    Generate a fresh key pair for profiles of the given width.

    Returns:
        Tuple of (decryption key, evaluation key)
    """
    cs = LightPHE(algorithm_name=ALGORITHM, key_size=key_size)
    decryption_key = DecryptionKey(cs.cs.keys.copy(), width=width, key_size=key_size)
    logger.debug("Generated %d-bit %s key pair for width %d", key_size, ALGORITHM, width)
    return decryption_key, decryption_key.evaluation_key


def _require_decryption_key(key: Any) -> DecryptionKey:
    if not isinstance(key, DecryptionKey):
        raise KeyMaterialError(
            f"Expected a DecryptionKey, got {type(key).__name__}"
        )
    return key


def _require_evaluation_key(key: Any) -> EvaluationKey:
    if not isinstance(key, EvaluationKey):
        raise KeyMaterialError(
            f"Expected an EvaluationKey, got {type(key).__name__}"
        )
    return key


def check_operands(
    encrypted: EncryptedProfile,
    target: Profile,
    evaluation_key: EvaluationKey,
) -> None:
    """
    Validate an evaluator call before any ciphertext is touched.

    Raises:
        KeyMaterialError: If evaluation_key is not an EvaluationKey
        WidthMismatchError: If target, ciphertext and key widths disagree
        KeyMismatchError: If the ciphertext was made under another key pair
    """
    _require_evaluation_key(evaluation_key)
    if not isinstance(encrypted, EncryptedProfile):
        raise TypeError(f"Expected an EncryptedProfile, got {type(encrypted).__name__}")
    if encrypted.width != target.width:
        raise WidthMismatchError(
            f"Encrypted profile is {encrypted.width} bits, target is {target.width} bits"
        )
    if evaluation_key.width != encrypted.width:
        raise WidthMismatchError(
            f"Evaluation key serves {evaluation_key.width}-bit profiles, "
            f"encrypted profile is {encrypted.width} bits"
        )
    if encrypted.key_fingerprint != evaluation_key.fingerprint:
        raise KeyMismatchError(
            "Encrypted profile and evaluation key come from different key pairs"
        )


def encrypt(profile: Profile, decryption_key: DecryptionKey) -> EncryptedProfile:
    """
    Encrypt a profile bit by bit.

    Encryption only needs the public half, so ciphertexts are produced by the
    evaluation key's cryptosystem and never carry private material.

    Raises:
        KeyMaterialError: If the key is not a DecryptionKey or serves another width
    """
    _require_decryption_key(decryption_key)
    if decryption_key.width != profile.width:
        raise KeyMaterialError(
            f"Key pair serves {decryption_key.width}-bit profiles, "
            f"profile is {profile.width} bits"
        )

    public = decryption_key.evaluation_key
    bits = profile.bits.tolist()
    ones = [public.encrypt_constant(int(b)) for b in bits]
    zeros = [public.encrypt_constant(1 - int(b)) for b in bits]
    return EncryptedProfile(ones, zeros, profile.width, decryption_key.fingerprint)


def xor_plain(
    encrypted: EncryptedProfile,
    target: Profile,
    evaluation_key: EvaluationKey,
) -> EncryptedProfile:
    """Bitwise XOR of an encrypted profile with a cleartext profile."""
    check_operands(encrypted, target, evaluation_key)

    ones: List[Any] = []
    zeros: List[Any] = []
    for one, zero, t in zip(encrypted._ones, encrypted._zeros, target.bits.tolist()):
        t = int(t)
        ones.append(one * (1 - t) + zero * t)
        zeros.append(one * t + zero * (1 - t))
    return EncryptedProfile(ones, zeros, encrypted.width, encrypted.key_fingerprint)


def and_plain(
    encrypted: EncryptedProfile,
    target: Profile,
    evaluation_key: EvaluationKey,
) -> EncryptedProfile:
    """Bitwise AND of an encrypted profile with a cleartext profile."""
    check_operands(encrypted, target, evaluation_key)

    ones: List[Any] = []
    zeros: List[Any] = []
    for one, zero, t in zip(encrypted._ones, encrypted._zeros, target.bits.tolist()):
        t = int(t)
        ones.append(one * t)
        # 1 - u*t == (1 - u) + u * (1 - t)
        zeros.append(zero + one * (1 - t))
    return EncryptedProfile(ones, zeros, encrypted.width, encrypted.key_fingerprint)


def _tree_sum(ciphertexts: Sequence[Any]) -> Any:
    """
    Add ciphertexts with a balanced binary adder tree.

    The tree's shape depends only on len(ciphertexts).
    """
    level = list(ciphertexts)
    while len(level) > 1:
        paired = [level[i] + level[i + 1] for i in range(0, len(level) - 1, 2)]
        if len(level) % 2:
            paired.append(level[-1])
        level = paired
    return level[0]


def popcount(
    encrypted: EncryptedProfile,
    evaluation_key: EvaluationKey,
    metric: str = "popcount",
) -> MetricResult:
    """Encrypted number of set bits over all W positions."""
    _require_evaluation_key(evaluation_key)
    if encrypted.key_fingerprint != evaluation_key.fingerprint:
        raise KeyMismatchError(
            "Encrypted profile and evaluation key come from different key pairs"
        )

    total = _tree_sum(encrypted._ones)
    return MetricResult(total, metric, encrypted.width, encrypted.key_fingerprint)


def rerandomise(result: MetricResult, evaluation_key: EvaluationKey) -> MetricResult:
    """Add a fresh encryption of zero so the result hides how it was computed."""
    _require_evaluation_key(evaluation_key)
    if result.key_fingerprint != evaluation_key.fingerprint:
        raise KeyMismatchError("Result and evaluation key come from different key pairs")

    fresh = result._ciphertext + evaluation_key.encrypt_constant(0)
    return MetricResult(fresh, result.metric, result.width, result.key_fingerprint)


def _check_decryption(handle: Any, decryption_key: DecryptionKey) -> None:
    _require_decryption_key(decryption_key)
    if handle.key_fingerprint != decryption_key.fingerprint:
        raise KeyMismatchError(
            "Ciphertext was produced under a different key pair"
        )
    if handle.width != decryption_key.width:
        raise DecryptionError(
            f"Ciphertext declares width {handle.width}, "
            f"key pair serves {decryption_key.width}-bit profiles"
        )


def decrypt_result(result: MetricResult, decryption_key: DecryptionKey) -> int:
    """
    Decrypt a metric result to an integer in [0, W].

    Raises:
        KeyMismatchError: If the result belongs to another key pair
        DecryptionError: If widths disagree or the plaintext is out of range
    """
    _check_decryption(result, decryption_key)
    if result.result_bits != result_bit_width(decryption_key.width):
        raise DecryptionError(
            f"Result is {result.result_bits} bits wide, expected "
            f"{result_bit_width(decryption_key.width)}"
        )

    value = int(decryption_key.decrypt_value(result._ciphertext))
    if not 0 <= value <= decryption_key.width:
        raise DecryptionError(
            f"Decrypted {result.metric} {value} is outside [0, {decryption_key.width}]"
        )
    return value


def decrypt_profile(encrypted: EncryptedProfile, decryption_key: DecryptionKey) -> Profile:
    """Decrypt a whole encrypted profile (owner-side verification)."""
    _check_decryption(encrypted, decryption_key)

    bits = [int(decryption_key.decrypt_value(c)) for c in encrypted._ones]
    if any(b not in (0, 1) for b in bits):
        raise DecryptionError("Encrypted profile decrypts to non-binary values")
    return Profile(bits)
