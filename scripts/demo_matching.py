#!/usr/bin/env python3
"""
Demo: encrypted ad matching, end to end.

1. The user's device generates a key pair
2. The user profile is encrypted on-device
3. The matching service computes Hamming distance and overlap score
   against the advertiser's cleartext target, timing every stage
4. The user's device decrypts the two metrics
"""
import sys
import argparse
import logging
from pathlib import Path

# Add src to path for development
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from blindmatch.client.crypto import KeyAuthority, ResultDecryptor
from blindmatch.client.encoder import ProfileEncoder
from blindmatch.server.evaluator import MatchingEvaluator
from blindmatch.shared.instrumentation import StageRecorder, Timer
from blindmatch.shared.profile import Profile
from blindmatch.shared.utils import plaintext_hamming_distance, plaintext_overlap_score


def run_demo(width: int = 256, key_size: int = 2048, verbose: bool = True) -> dict:
    """
    Match a dummy user profile against a dummy advertiser target.

    Both profiles are two equal halves: 0x00FF repeated for the user and
    0xAAAA repeated for the target.
    """
    if width % 2:
        raise ValueError("Demo width must be even (two halves)")
    half = width // 2

    # Key generation: the decryption key stays on the user's device,
    # the evaluation key goes to the matching service
    print("=" * 60)
    print(f"Encrypted ad matching demo ({width}-bit profiles)")
    print("=" * 60)
    with Timer() as t:
        decryption_key, evaluation_key = KeyAuthority(key_size=key_size, width=width).generate()
    print(f"Key generation: {t.elapsed_ms:.0f}ms")

    user_profile = Profile.from_words([0x00FF, 0x00FF], half)
    target_profile = Profile.from_words([0xAAAA, 0xAAAA], half)

    encoder = ProfileEncoder(width)
    with Timer() as t:
        encrypted_user = encoder.encrypt(user_profile, decryption_key)
    print(f"Encryption: {t.elapsed_ms:.0f}ms")

    # Service side: evaluation key only
    evaluator = MatchingEvaluator(evaluation_key)
    recorder = StageRecorder()

    encrypted_distance = evaluator.distance(encrypted_user, target_profile, recorder)
    print(f"Hamming Distance: {recorder.total_ms():.2f}ms")
    for stage in recorder.stages:
        print(f"  {stage.label} operation: {stage.elapsed_ms:.2f}ms")

    recorder.clear()
    encrypted_score = evaluator.overlap(encrypted_user, target_profile, recorder)
    print(f"Overlap Score: {recorder.total_ms():.2f}ms")
    for stage in recorder.stages:
        print(f"  {stage.label} operation: {stage.elapsed_ms:.2f}ms")

    # Decrypting on the user's side
    decryptor = ResultDecryptor(decryption_key)
    distance = decryptor.decrypt(encrypted_distance)
    score = decryptor.decrypt(encrypted_score)
    print(f"Distance: {distance}")
    print(f"Score: {score}")

    if verbose:
        expected_distance = plaintext_hamming_distance(user_profile, target_profile)
        expected_score = plaintext_overlap_score(user_profile, target_profile)
        print(f"Plaintext check: distance={expected_distance}, score={expected_score}")

    print("Done!")
    return {"distance": distance, "overlap": score}


def main():
    parser = argparse.ArgumentParser(description="Encrypted ad matching demo")
    parser.add_argument(
        "--width",
        type=int,
        default=256,
        help="Profile width in bits (two equal halves)",
    )
    parser.add_argument(
        "--key-size",
        type=int,
        default=2048,
        choices=[1024, 2048],
        help="Paillier key size in bits",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log every homomorphic stage",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    run_demo(width=args.width, key_size=args.key_size)


if __name__ == "__main__":
    main()
