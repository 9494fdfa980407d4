#!/usr/bin/env python3
"""
Benchmark encrypted matching performance.

This script measures, per profile width:
1. Key generation time
2. Profile encryption time
3. Encrypted Hamming distance and overlap score time (XOR/AND + popcount)
4. Result decryption time
5. Sequential vs threaded matching against many targets
"""
import sys
import argparse
import multiprocessing as mp
from pathlib import Path
from typing import List
import numpy as np

# Add src to path for development
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from blindmatch.client.crypto import KeyAuthority, ResultDecryptor
from blindmatch.client.encoder import ProfileEncoder
from blindmatch.server.evaluator import MatchingEvaluator, create_mock_targets
from blindmatch.shared.instrumentation import StageRecorder, Timer
from blindmatch.shared.protocol import BenchmarkResult
from blindmatch.shared.utils import generate_random_profiles


def _result(operation: str, width: int, times: List[float], notes: str = "") -> BenchmarkResult:
    avg_time = float(np.mean(times))
    return BenchmarkResult(
        operation=operation,
        width=width,
        num_operations=len(times),
        total_time_seconds=sum(times),
        avg_time_per_op_ms=avg_time * 1000,
        throughput_ops_per_sec=1 / avg_time if avg_time > 0 else 0,
        notes=notes,
    )


def benchmark_key_generation(width: int, key_size: int, num_trials: int = 3) -> BenchmarkResult:
    """Benchmark Paillier key generation."""
    times = []
    for i in range(num_trials):
        print(f"  Key generation trial {i+1}/{num_trials}...")
        with Timer() as t:
            KeyAuthority(key_size=key_size, width=width).generate()
        times.append(t.elapsed)
    return _result("key_generation", width, times, notes=f"key_size={key_size} bits")


def benchmark_width(width: int, key_size: int, num_trials: int = 3) -> List[BenchmarkResult]:
    """Benchmark encryption, both metrics and decryption at one width."""
    decryption_key, evaluation_key = KeyAuthority(key_size=key_size, width=width).generate()
    encoder = ProfileEncoder(width)
    evaluator = MatchingEvaluator(evaluation_key)
    decryptor = ResultDecryptor(decryption_key)

    users = generate_random_profiles(num_trials, width, seed=7)
    targets = generate_random_profiles(num_trials, width, density=0.25, seed=8)

    encrypt_times, distance_times, overlap_times, decrypt_times = [], [], [], []
    recorder = StageRecorder()
    for i, (user, target) in enumerate(zip(users, targets)):
        with Timer() as t:
            encrypted = encoder.encrypt(user, decryption_key)
        encrypt_times.append(t.elapsed)

        with Timer() as t:
            distance = evaluator.distance(encrypted, target, recorder)
        distance_times.append(t.elapsed)

        with Timer() as t:
            overlap = evaluator.overlap(encrypted, target, recorder)
        overlap_times.append(t.elapsed)

        with Timer() as t:
            decryptor.decrypt(distance)
            decryptor.decrypt(overlap)
        decrypt_times.append(t.elapsed / 2)

        print(f"  Trial {i+1}/{num_trials}: distance {distance_times[-1]*1000:.1f}ms, "
              f"overlap {overlap_times[-1]*1000:.1f}ms")

    stage_notes = ", ".join(
        f"{label}={ms / num_trials:.2f}ms" for label, ms in recorder.as_dict().items()
    )
    return [
        _result("profile_encryption", width, encrypt_times, notes=f"{2 * width} ciphertexts"),
        _result("hamming_distance", width, distance_times, notes=stage_notes),
        _result("overlap_score", width, overlap_times),
        _result("result_decryption", width, decrypt_times),
    ]


def benchmark_parallel(width: int, key_size: int, num_targets: int, num_workers: int) -> None:
    """Compare sequential and threaded matching against a target store."""
    decryption_key, evaluation_key = KeyAuthority(key_size=key_size, width=width).generate()
    store = create_mock_targets(num_targets, width, seed=42)
    evaluator = MatchingEvaluator(evaluation_key, store)
    user = generate_random_profiles(1, width, seed=999)[0]
    encrypted = ProfileEncoder(width).encrypt(user, decryption_key)

    _, sequential_ms = evaluator.score_targets(encrypted)
    _, parallel_ms = evaluator.score_targets_parallel(encrypted, num_workers=num_workers)

    print(f"  Sequential: {sequential_ms:.0f}ms for {num_targets} targets")
    print(f"  Parallel ({num_workers} workers): {parallel_ms:.0f}ms")
    if parallel_ms > 0:
        print(f"  Speedup: {sequential_ms / parallel_ms:.2f}x")


def run_full_benchmark(
    widths: List[int] = [32, 128, 256],
    key_size: int = 2048,
    num_targets: int = 20,
    num_workers: int = None,
) -> List[BenchmarkResult]:
    """Run complete benchmark suite."""
    print("=" * 60)
    print("Blindmatch: Encrypted Matching Benchmark")
    print("=" * 60)

    if num_workers is None:
        num_workers = mp.cpu_count()

    results = []

    print("\n[1/3] Benchmarking key generation...")
    keygen_result = benchmark_key_generation(widths[0], key_size)
    results.append(keygen_result)
    print(keygen_result)

    for width in widths:
        print(f"\n{'='*60}")
        print(f"Testing width: {width}")
        print("=" * 60)

        print(f"\n[2/3] Benchmarking {width}-bit matching...")
        for r in benchmark_width(width, key_size):
            results.append(r)
            print(r)

    print(f"\n[3/3] Benchmarking parallel matching ({widths[-1]}-bit, {num_targets} targets)...")
    benchmark_parallel(widths[-1], key_size, num_targets, num_workers)

    print("\n" + "=" * 60)
    print("SUMMARY")
    print("=" * 60)
    for r in results:
        if r.operation in ("hamming_distance", "overlap_score"):
            print(f"  {r.width:4d}-bit {r.operation:18s}: {r.avg_time_per_op_ms:8.2f}ms")

    return results


def main():
    parser = argparse.ArgumentParser(description="Benchmark encrypted profile matching")
    parser.add_argument(
        "--widths",
        type=int,
        nargs="+",
        default=[32, 128, 256],
        help="Profile widths to test",
    )
    parser.add_argument(
        "--key-size",
        type=int,
        default=2048,
        choices=[1024, 2048],
        help="Paillier key size in bits",
    )
    parser.add_argument(
        "--num-targets",
        type=int,
        default=20,
        help="Number of advertiser targets for the parallel test",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker threads for the parallel test (default: CPU count)",
    )
    parser.add_argument(
        "--quick",
        action="store_true",
        help="Quick mode: 32-bit profiles, 1024-bit keys, 5 targets",
    )

    args = parser.parse_args()

    if args.quick:
        run_full_benchmark(widths=[32], key_size=1024, num_targets=5, num_workers=args.workers)
    else:
        run_full_benchmark(
            widths=args.widths,
            key_size=args.key_size,
            num_targets=args.num_targets,
            num_workers=args.workers,
        )


if __name__ == "__main__":
    main()
