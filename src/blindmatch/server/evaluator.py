"""
Server-side matching evaluator.

The evaluator scores an encrypted user profile against cleartext advertiser
targets without seeing:
- The user profile (it's encrypted)
- The metric values (results are encrypted)

It holds only the public evaluation key. Independent targets and requests can
be evaluated in parallel; the evaluation key is read-only and shared.
"""
import logging
import multiprocessing as mp
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from blindmatch.shared import backend
from blindmatch.shared.ciphertext import EncryptedProfile, MetricResult
from blindmatch.shared.errors import KeyMaterialError, UnknownTargetError, WidthMismatchError
from blindmatch.shared.instrumentation import StageRecorder, Timer
from blindmatch.shared.keys import EvaluationKey
from blindmatch.shared.profile import Profile
from blindmatch.shared.protocol import (
    HAMMING_DISTANCE,
    OVERLAP_SCORE,
    MatchOutcome,
    MatchRequest,
    MatchResponse,
)
from blindmatch.shared.utils import generate_random_profiles

logger = logging.getLogger(__name__)


@dataclass
class TargetStore:
    """
    In-memory store of advertiser target profiles.

    All targets share one width; a target of any other width is rejected when
    it is added, not when it is matched.
    """
    width: int
    targets: Dict[str, Profile] = field(default_factory=dict)

    def __post_init__(self):
        for target_id, profile in self.targets.items():
            self._check(target_id, profile)

    def _check(self, target_id: str, profile: Profile) -> None:
        if profile.width != self.width:
            raise WidthMismatchError(
                f"Target {target_id} is {profile.width} bits, store holds {self.width}-bit targets"
            )

    def __len__(self) -> int:
        return len(self.targets)

    def add(self, target_id: str, profile: Profile) -> None:
        self._check(target_id, profile)
        self.targets[target_id] = profile

    def get_targets_by_ids(self, ids: List[str]) -> List[Tuple[str, Profile]]:
        """Get targets for given IDs, in request order."""
        missing = [id_ for id_ in ids if id_ not in self.targets]
        if missing:
            raise UnknownTargetError(f"Unknown target ids: {missing}")
        return [(id_, self.targets[id_]) for id_ in ids]

    def get_all_targets(self) -> List[Tuple[str, Profile]]:
        return list(self.targets.items())


class MatchingEvaluator:
    """
    Homomorphic matching over an encrypted profile.

    Both metrics are pure functions of (encrypted profile, target, evaluation
    key). The only state is the evaluation key and an optional target store.
    """

    def __init__(
        self,
        evaluation_key: EvaluationKey,
        target_store: Optional[TargetStore] = None,
        rerandomise: bool = True,
    ):
        """
        Initialize evaluator.

        Args:
            evaluation_key: Public evaluation key of the profile owner
            target_store: Advertiser targets for batch scoring
            rerandomise: Add a fresh encryption of zero to every result

        Raises:
            KeyMaterialError: If given anything other than an EvaluationKey
        """
        if not isinstance(evaluation_key, EvaluationKey):
            raise KeyMaterialError(
                f"Evaluator accepts only an EvaluationKey, got {type(evaluation_key).__name__}"
            )
        self.evaluation_key = evaluation_key
        self.target_store = target_store
        self.rerandomise = rerandomise

    def _finish(self, result: MetricResult, recorder: Optional[StageRecorder]) -> MetricResult:
        if not self.rerandomise:
            return result
        if recorder is None:
            return backend.rerandomise(result, self.evaluation_key)
        return recorder.run("rerandomise", lambda: backend.rerandomise(result, self.evaluation_key))

    def distance(
        self,
        encrypted_user: EncryptedProfile,
        target: Profile,
        recorder: Optional[StageRecorder] = None,
    ) -> MetricResult:
        """
        Hamming distance: popcount(user XOR target), encrypted.

        Args:
            encrypted_user: Encrypted user profile
            target: Cleartext target profile of the same width
            recorder: Optional stage timer

        Returns:
            Encrypted count in [0, W]
        """
        key = self.evaluation_key
        backend.check_operands(encrypted_user, target, key)

        if recorder is None:
            xored = backend.xor_plain(encrypted_user, target, key)
            result = backend.popcount(xored, key, metric=HAMMING_DISTANCE)
        else:
            xored = recorder.run("xor", lambda: backend.xor_plain(encrypted_user, target, key))
            result = recorder.run(
                "popcount", lambda: backend.popcount(xored, key, metric=HAMMING_DISTANCE)
            )
        return self._finish(result, recorder)

    def overlap(
        self,
        encrypted_user: EncryptedProfile,
        target: Profile,
        recorder: Optional[StageRecorder] = None,
    ) -> MetricResult:
        """
        Overlap score: popcount(user AND target), encrypted.

        Equals popcount(target) exactly when the user has every bit the
        target sets.
        """
        key = self.evaluation_key
        backend.check_operands(encrypted_user, target, key)

        if recorder is None:
            anded = backend.and_plain(encrypted_user, target, key)
            result = backend.popcount(anded, key, metric=OVERLAP_SCORE)
        else:
            anded = recorder.run("and", lambda: backend.and_plain(encrypted_user, target, key))
            result = recorder.run(
                "popcount", lambda: backend.popcount(anded, key, metric=OVERLAP_SCORE)
            )
        return self._finish(result, recorder)

    def match(
        self,
        encrypted_user: EncryptedProfile,
        target: Profile,
        target_id: str = "target",
        recorder: Optional[StageRecorder] = None,
    ) -> MatchOutcome:
        """Compute both metrics against one target."""
        return MatchOutcome(
            target_id=target_id,
            distance=self.distance(encrypted_user, target, recorder),
            overlap=self.overlap(encrypted_user, target, recorder),
            target_popcount=target.popcount(),
        )

    def _select_targets(self, target_ids: Optional[List[str]]) -> List[Tuple[str, Profile]]:
        if self.target_store is None:
            raise ValueError("Evaluator has no target store")
        if target_ids:
            return self.target_store.get_targets_by_ids(target_ids)
        return self.target_store.get_all_targets()

    def score_targets(
        self,
        encrypted_user: EncryptedProfile,
        target_ids: Optional[List[str]] = None,
        recorder: Optional[StageRecorder] = None,
        verbose: bool = False,
    ) -> Tuple[List[MatchOutcome], float]:
        """
        Match an encrypted profile against stored targets.

        Args:
            encrypted_user: Encrypted user profile
            target_ids: Subset of targets to score (all when None)
            recorder: Optional stage timer
            verbose: Print progress

        Returns:
            Tuple of (outcomes, time_ms)
        """
        targets = self._select_targets(target_ids)

        outcomes = []
        with Timer() as t:
            for i, (target_id, target) in enumerate(targets):
                outcomes.append(self.match(encrypted_user, target, target_id, recorder))

                if verbose and (i + 1) % 10 == 0:
                    print(f"  Matched {i+1}/{len(targets)} targets...")

        logger.debug("Scored %d targets in %.1fms", len(outcomes), t.elapsed_ms)
        return outcomes, t.elapsed_ms

    def score_targets_parallel(
        self,
        encrypted_user: EncryptedProfile,
        target_ids: Optional[List[str]] = None,
        num_workers: Optional[int] = None,
        verbose: bool = False,
    ) -> Tuple[List[MatchOutcome], float]:
        """
        Match against stored targets using a ThreadPoolExecutor.

        Outcomes keep the order of the selected targets.
        """
        targets = self._select_targets(target_ids)

        if num_workers is None:
            num_workers = mp.cpu_count()

        if verbose:
            print(f"  Matching {len(targets)} targets with {num_workers} workers...")

        def match_one(item: Tuple[str, Profile]) -> MatchOutcome:
            target_id, target = item
            return self.match(encrypted_user, target, target_id)

        with Timer() as t:
            with ThreadPoolExecutor(max_workers=num_workers) as executor:
                outcomes = list(executor.map(match_one, targets))

        if verbose:
            print(f"  Completed in {t.elapsed_ms:.0f}ms")

        return outcomes, t.elapsed_ms

    def evaluate(self, request: MatchRequest, record_stages: bool = False) -> MatchResponse:
        """
        Serve one MatchRequest.

        Contract violations propagate; a failed request never yields partial
        outcomes.
        """
        recorder = StageRecorder() if record_stages else None
        outcomes, time_ms = self.score_targets(
            request.encrypted_profile, request.target_ids, recorder=recorder
        )
        return MatchResponse(
            request_id=request.request_id,
            outcomes=outcomes,
            server_time_ms=time_ms,
            stage_ms=recorder.as_dict() if recorder else {},
        )


def _evaluate_chunk(args) -> List[MatchResponse]:
    """Evaluate a chunk of requests with a worker-local evaluator."""
    public_key, width, key_size, targets, rerandomise, requests = args
    evaluation_key = EvaluationKey(public_key, width=width, key_size=key_size)
    store = TargetStore(width=width, targets=targets)
    evaluator = MatchingEvaluator(evaluation_key, store, rerandomise=rerandomise)
    return [evaluator.evaluate(request) for request in requests]


def evaluate_batch_multiprocess(
    evaluator: MatchingEvaluator,
    requests: List[MatchRequest],
    num_workers: Optional[int] = None,
    chunk_size: Optional[int] = None,
) -> List[MatchResponse]:
    """
    Evaluate independent requests across processes.

    Each worker rebuilds the evaluation key from its public material, so no
    process ever needs anything private.

    Returns:
        Responses in request order
    """
    if evaluator.target_store is None:
        raise ValueError("Evaluator has no target store")
    if not requests:
        return []

    if num_workers is None:
        num_workers = mp.cpu_count()
    if chunk_size is None:
        chunk_size = max(1, len(requests) // num_workers)

    key = evaluator.evaluation_key
    targets = dict(evaluator.target_store.targets)
    chunks: List[Any] = []
    for i in range(0, len(requests), chunk_size):
        chunks.append((
            key.public_key,
            key.width,
            key.key_size,
            targets,
            evaluator.rerandomise,
            requests[i:i + chunk_size],
        ))

    with ProcessPoolExecutor(max_workers=num_workers) as executor:
        chunk_results = list(executor.map(_evaluate_chunk, chunks))

    return [response for chunk in chunk_results for response in chunk]


def create_mock_targets(
    num_targets: int,
    width: int,
    density: float = 0.25,
    seed: Optional[int] = None,
) -> TargetStore:
    """
    Create a mock target store for testing.

    Args:
        num_targets: Number of advertiser targets
        width: Profile width
        density: Fraction of bits set per target
        seed: Random seed

    Returns:
        TargetStore instance
    """
    profiles = generate_random_profiles(num_targets, width, density=density, seed=seed)
    targets = {f"ad_{i:06d}": p for i, p in enumerate(profiles)}
    return TargetStore(width=width, targets=targets)
