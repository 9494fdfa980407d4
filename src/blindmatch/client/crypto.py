"""
Client-side key management and result decryption using LightPHE Paillier.

Everything in this module runs on the profile owner's device.
"""
import logging
import multiprocessing as mp
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Tuple

from blindmatch.shared import backend
from blindmatch.shared.ciphertext import EncryptedProfile, MetricResult
from blindmatch.shared.errors import KeyMaterialError
from blindmatch.shared.keys import DEFAULT_KEY_SIZE, DecryptionKey, EvaluationKey
from blindmatch.shared.profile import Profile

logger = logging.getLogger(__name__)


class KeyAuthority:
    """
    Generates the profile owner's key pair.

    The decryption key stays with the caller; only the evaluation key is
    meant to be handed to the matching service.
    """

    DEFAULT_KEY_SIZE = DEFAULT_KEY_SIZE  # bits
    DEFAULT_WIDTH = 128

    def __init__(self, key_size: int = DEFAULT_KEY_SIZE, width: int = DEFAULT_WIDTH):
        """
        Initialize key authority.

        Args:
            key_size: Paillier key size in bits (2048 recommended for security)
            width: Canonical profile width W for this deployment
        """
        self.key_size = key_size
        self.width = width

    def generate(self) -> Tuple[DecryptionKey, EvaluationKey]:
        """
        Generate a fresh key pair.

        Returns:
            Tuple of (decryption key, evaluation key)
        """
        decryption_key, evaluation_key = backend.keygen(self.width, key_size=self.key_size)
        logger.info(
            "Generated key pair %s for %d-bit profiles",
            decryption_key.fingerprint[:12],
            self.width,
        )
        return decryption_key, evaluation_key


class ResultDecryptor:
    """
    Turns encrypted metrics back into integers.

    The only place where matching results become cleartext.
    """

    def __init__(self, decryption_key: DecryptionKey):
        if not isinstance(decryption_key, DecryptionKey):
            raise KeyMaterialError(
                f"Decryptor needs a DecryptionKey, got {type(decryption_key).__name__}"
            )
        self.decryption_key = decryption_key

    @property
    def width(self) -> int:
        return self.decryption_key.width

    def decrypt(self, metric_result: MetricResult) -> int:
        """
        Decrypt a single metric.

        Args:
            metric_result: Encrypted distance or overlap from the service

        Returns:
            Integer in [0, W]

        Raises:
            KeyMismatchError: If the result was computed under another key pair
            DecryptionError: If the result's width disagrees with the key
        """
        return backend.decrypt_result(metric_result, self.decryption_key)

    def decrypt_results(
        self,
        metric_results: List[MetricResult],
        parallel: bool = False,
        num_workers: Optional[int] = None,
    ) -> List[int]:
        """
        Decrypt multiple metrics.

        Args:
            metric_results: Encrypted results
            parallel: Use parallel decryption (ThreadPoolExecutor)
            num_workers: Number of workers (defaults to CPU count)

        Returns:
            Decrypted values in input order
        """
        if not parallel or len(metric_results) <= 4:
            return [self.decrypt(r) for r in metric_results]

        # Big-integer pow() releases the GIL, so threads help here
        if num_workers is None:
            num_workers = min(mp.cpu_count(), len(metric_results))

        with ThreadPoolExecutor(max_workers=num_workers) as executor:
            return list(executor.map(self.decrypt, metric_results))

    def decrypt_profile(self, encrypted_profile: EncryptedProfile) -> Profile:
        """Recover the profile behind an EncryptedProfile (for verification)."""
        return backend.decrypt_profile(encrypted_profile, self.decryption_key)


def decrypt(metric_result: MetricResult, decryption_key: DecryptionKey) -> int:
    """Functional form of ResultDecryptor.decrypt."""
    return ResultDecryptor(decryption_key).decrypt(metric_result)
