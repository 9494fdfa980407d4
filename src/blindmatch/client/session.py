"""
Client-side matching orchestration.

Coordinates the full matching flow:
1. Encrypt the user profile
2. Send it to the matching service (via function call or API)
3. Receive encrypted metrics
4. Decrypt and rank targets
"""
from typing import Callable, Dict, List, Optional, Tuple

from blindmatch.client.crypto import ResultDecryptor
from blindmatch.client.encoder import ProfileEncoder
from blindmatch.shared.instrumentation import Timer
from blindmatch.shared.keys import DecryptionKey
from blindmatch.shared.profile import Profile
from blindmatch.shared.protocol import MatchResult
from blindmatch.shared.utils import plaintext_hamming_distance, plaintext_overlap_score


class MatchingSession:
    """
    One user session: a key pair, an encoder and a decryptor.

    The decryption key never leaves this object; only the encrypted profile
    is handed to the service function.
    """

    def __init__(self, decryption_key: DecryptionKey, encoder: Optional[ProfileEncoder] = None):
        """
        Initialize session.

        Args:
            decryption_key: The owner's private key
            encoder: Profile encoder (defaults to one of the key's width)
        """
        self.decryption_key = decryption_key
        self.encoder = encoder or ProfileEncoder(decryption_key.width)
        self.decryptor = ResultDecryptor(decryption_key)

    @property
    def evaluation_key(self):
        """Public key to register with the matching service."""
        return self.decryption_key.evaluation_key

    def match(
        self,
        profile: Profile,
        server_match_fn: Callable,
        verbose: bool = False,
    ) -> Tuple[List[MatchResult], dict]:
        """
        Match a profile against the service's targets.

        The service never sees the profile or the metric values.

        Args:
            profile: Cleartext user profile
            server_match_fn: Function that scores the encrypted profile
                             Signature: (encrypted_profile) -> (outcomes, time_ms)
            verbose: Print timing information

        Returns:
            Tuple of (results ranked best first, timing info)

        Raises:
            MatchingError: Any contract violation aborts the whole session
        """
        timing = {}

        # Step 1: Encrypt profile
        if verbose:
            print("Step 1: Encrypting profile...")
        with Timer() as t:
            encrypted = self.encoder.encrypt(profile, self.decryption_key)
        timing["encrypt_ms"] = t.elapsed_ms
        if verbose:
            print(f"  Encryption took {t.elapsed_ms:.2f}ms")

        # Step 2: Service computes encrypted metrics
        if verbose:
            print("Step 2: Service computing encrypted metrics...")
        outcomes, server_time_ms = server_match_fn(encrypted)
        timing["server_compute_ms"] = server_time_ms
        if verbose:
            print(f"  Service computation took {server_time_ms:.2f}ms")

        # Step 3: Decrypt metrics; any failure discards everything
        if verbose:
            print("Step 3: Decrypting metrics...")
        with Timer() as t:
            results = []
            for outcome in outcomes:
                results.append(MatchResult(
                    target_id=outcome.target_id,
                    distance=self.decryptor.decrypt(outcome.distance),
                    overlap=self.decryptor.decrypt(outcome.overlap),
                    target_popcount=outcome.target_popcount,
                ))
        timing["decrypt_ms"] = t.elapsed_ms
        if verbose:
            print(f"  Decryption took {t.elapsed_ms:.2f}ms")

        # Step 4: Rank: most shared attributes first, then closest profile
        results.sort(key=lambda r: (-r.overlap, r.distance, r.target_id))
        for rank, result in enumerate(results):
            result.rank = rank + 1

        timing["total_ms"] = sum([
            timing["encrypt_ms"],
            timing["server_compute_ms"],
            timing["decrypt_ms"],
        ])

        if verbose:
            print(f"\nTotal time: {timing['total_ms']:.2f}ms")

        return results, timing

    def verify_accuracy(
        self,
        profile: Profile,
        targets: Dict[str, Profile],
        results: List[MatchResult],
    ) -> dict:
        """
        Compare decrypted metrics with plaintext metrics.

        For testing/validation only - in production, the client never has
        the advertiser's targets.

        Returns:
            Accuracy metrics
        """
        mismatches = []
        for result in results:
            target = targets[result.target_id]
            expected = (
                plaintext_hamming_distance(profile, target),
                plaintext_overlap_score(profile, target),
            )
            if (result.distance, result.overlap) != expected:
                mismatches.append(result.target_id)

        return {
            "num_results": len(results),
            "num_mismatches": len(mismatches),
            "mismatched_ids": mismatches,
            "exact": not mismatches,
        }

