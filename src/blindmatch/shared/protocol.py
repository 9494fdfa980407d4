"""
Protocol definitions for client-service communication.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from blindmatch.shared.ciphertext import EncryptedProfile, MetricResult

HAMMING_DISTANCE = "hamming_distance"
OVERLAP_SCORE = "overlap_score"


class ProfileWidth(Enum):
    """Canonical profile widths."""
    W32 = 32
    W64 = 64
    W128 = 128     # Default deployment width
    W256 = 256     # Two 128-bit halves


@dataclass
class MatchingConfig:
    """Deployment settings shared by the scripts and the matching service."""
    width: int = ProfileWidth.W128.value
    num_workers: Optional[int] = None
    rerandomise: bool = True
    record_stages: bool = False


@dataclass
class BenchmarkResult:
    """Results from a benchmark run."""
    operation: str
    width: int
    num_operations: int
    total_time_seconds: float
    avg_time_per_op_ms: float
    throughput_ops_per_sec: float
    notes: str = ""

    def __str__(self) -> str:
        return (
            f"Benchmark: {self.operation}\n"
            f"  Width: {self.width}\n"
            f"  Operations: {self.num_operations}\n"
            f"  Total time: {self.total_time_seconds:.3f}s\n"
            f"  Avg per op: {self.avg_time_per_op_ms:.3f}ms\n"
            f"  Throughput: {self.throughput_ops_per_sec:.2f} ops/s\n"
            f"  Notes: {self.notes}"
        )


@dataclass
class MatchOutcome:
    """Encrypted metrics for one target, as returned by the evaluator."""
    target_id: str
    distance: MetricResult
    overlap: MetricResult
    target_popcount: int = 0


@dataclass
class MatchRequest:
    """A single matching job: one encrypted profile against some targets."""
    request_id: str
    encrypted_profile: EncryptedProfile
    target_ids: Optional[List[str]] = None


@dataclass
class MatchResponse:
    """Evaluator response for one MatchRequest."""
    request_id: str
    outcomes: List[MatchOutcome] = field(default_factory=list)
    server_time_ms: float = 0.0
    stage_ms: Dict[str, float] = field(default_factory=dict)


@dataclass
class MatchResult:
    """Decrypted metrics for one target."""
    target_id: str
    distance: int
    overlap: int
    target_popcount: int
    rank: int = 0

    @property
    def is_full_overlap(self) -> bool:
        """True when the user has every attribute the target asks for."""
        return self.overlap == self.target_popcount
