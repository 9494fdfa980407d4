"""Shared types, errors and protocol definitions."""
from blindmatch.shared.ciphertext import EncryptedProfile, MetricResult
from blindmatch.shared.errors import (
    DecryptionError,
    EncodingError,
    KeyMaterialError,
    KeyMismatchError,
    MatchingError,
    UnknownTargetError,
    WidthMismatchError,
)
from blindmatch.shared.instrumentation import StageRecorder, Timer, measure
from blindmatch.shared.keys import DecryptionKey, EvaluationKey
from blindmatch.shared.profile import CategoryEncoder, Profile
from blindmatch.shared.protocol import (
    BenchmarkResult,
    MatchingConfig,
    MatchOutcome,
    MatchRequest,
    MatchResponse,
    MatchResult,
    ProfileWidth,
)
from blindmatch.shared.utils import (
    generate_random_profiles,
    plaintext_hamming_distance,
    plaintext_overlap_score,
)

__all__ = [
    "EncryptedProfile",
    "MetricResult",
    "DecryptionError",
    "EncodingError",
    "KeyMaterialError",
    "KeyMismatchError",
    "MatchingError",
    "UnknownTargetError",
    "WidthMismatchError",
    "StageRecorder",
    "Timer",
    "measure",
    "DecryptionKey",
    "EvaluationKey",
    "CategoryEncoder",
    "Profile",
    "BenchmarkResult",
    "MatchingConfig",
    "MatchOutcome",
    "MatchRequest",
    "MatchResponse",
    "MatchResult",
    "ProfileWidth",
    "generate_random_profiles",
    "plaintext_hamming_distance",
    "plaintext_overlap_score",
]
