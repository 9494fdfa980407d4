"""
Shared utility functions.
"""
import numpy as np
from typing import List, Optional

from blindmatch.shared.profile import Profile, require_same_width


def generate_random_profiles(
    num_profiles: int,
    width: int,
    density: float = 0.5,
    seed: Optional[int] = None,
) -> List[Profile]:
    """
    Generate random profiles for testing.

    Args:
        num_profiles: Number of profiles to generate
        width: Bit width of each profile
        density: Probability that any single bit is set
        seed: Random seed for reproducibility

    Returns:
        List of Profile instances
    """
    rng = np.random.default_rng(seed)
    bits = (rng.random((num_profiles, width)) < density).astype(np.uint8)
    return [Profile(row) for row in bits]


def plaintext_hamming_distance(user: Profile, target: Profile) -> int:
    """Hamming distance in plaintext (for verification)."""
    require_same_width(user, target)
    return int(np.count_nonzero(user.bits ^ target.bits))


def plaintext_overlap_score(user: Profile, target: Profile) -> int:
    """Overlap score in plaintext (for verification)."""
    require_same_width(user, target)
    return int(np.count_nonzero(user.bits & target.bits))


def result_bit_width(width: int) -> int:
    """Bits needed to hold any count in [0, width], i.e. ceil(log2(width + 1))."""
    return int(width).bit_length()
