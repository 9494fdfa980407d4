"""Tests for the encrypted Hamming distance and overlap score."""
import pytest

from blindmatch.client.crypto import ResultDecryptor
from blindmatch.client.encoder import ProfileEncoder
from blindmatch.server.evaluator import MatchingEvaluator
from blindmatch.shared import backend
from blindmatch.shared.errors import KeyMaterialError, KeyMismatchError, WidthMismatchError
from blindmatch.shared.instrumentation import StageRecorder, measure
from blindmatch.shared.profile import Profile
from blindmatch.shared.protocol import HAMMING_DISTANCE, OVERLAP_SCORE
from blindmatch.shared.utils import (
    generate_random_profiles,
    plaintext_hamming_distance,
    plaintext_overlap_score,
)


def _encrypt(profile, keys):
    decryption_key, _ = keys
    return ProfileEncoder(profile.width).encrypt(profile, decryption_key)


class TestScenarios:
    """End-to-end scenarios with known answers."""

    def test_scenario_32_bit(self, keys_32):
        decryption_key, evaluation_key = keys_32
        user = Profile.from_int(0x000000FF, 32)
        target = Profile.from_int(0x0000AAAA, 32)

        evaluator = MatchingEvaluator(evaluation_key)
        encrypted = _encrypt(user, keys_32)
        decryptor = ResultDecryptor(decryption_key)

        assert decryptor.decrypt(evaluator.distance(encrypted, target)) == 8
        assert decryptor.decrypt(evaluator.overlap(encrypted, target)) == 4

    def test_scenario_128_bit_halves(self, keys_128):
        decryption_key, evaluation_key = keys_128
        user = Profile.from_words([0x00FF, 0x00FF], 64)
        target = Profile.from_words([0xAAAA, 0xAAAA], 64)

        evaluator = MatchingEvaluator(evaluation_key)
        outcome = evaluator.match(_encrypt(user, keys_128), target, target_id="ad")
        decryptor = ResultDecryptor(decryption_key)

        assert outcome.target_id == "ad"
        assert outcome.target_popcount == 16
        assert decryptor.decrypt(outcome.distance) == 16
        assert decryptor.decrypt(outcome.overlap) == 8

    def test_result_metadata(self, keys_32):
        _, evaluation_key = keys_32
        evaluator = MatchingEvaluator(evaluation_key)
        target = Profile.from_int(0xAAAA, 32)
        encrypted = _encrypt(Profile.from_int(0xFF, 32), keys_32)

        distance = evaluator.distance(encrypted, target)
        overlap = evaluator.overlap(encrypted, target)
        assert distance.metric == HAMMING_DISTANCE
        assert overlap.metric == OVERLAP_SCORE
        assert distance.width == 32
        assert distance.result_bits == 6
        assert distance.key_fingerprint == evaluation_key.fingerprint


class TestMetricProperties:
    """Properties that must hold for all profile pairs."""

    PAIRS = list(zip(
        generate_random_profiles(4, 32, seed=11),
        generate_random_profiles(4, 32, density=0.3, seed=12),
    ))

    @pytest.mark.parametrize("user,target", PAIRS)
    def test_distance_counts_differing_bits(self, keys_32, user, target):
        decryption_key, evaluation_key = keys_32
        result = MatchingEvaluator(evaluation_key).distance(_encrypt(user, keys_32), target)
        value = ResultDecryptor(decryption_key).decrypt(result)
        assert value == plaintext_hamming_distance(user, target)
        assert 0 <= value <= 32

    @pytest.mark.parametrize("user,target", PAIRS)
    def test_overlap_counts_shared_bits(self, keys_32, user, target):
        decryption_key, evaluation_key = keys_32
        result = MatchingEvaluator(evaluation_key).overlap(_encrypt(user, keys_32), target)
        value = ResultDecryptor(decryption_key).decrypt(result)
        assert value == plaintext_overlap_score(user, target)
        assert value <= target.popcount()
        assert value <= user.popcount()

    def test_distance_is_symmetric(self, keys_32):
        decryption_key, evaluation_key = keys_32
        evaluator = MatchingEvaluator(evaluation_key)
        decryptor = ResultDecryptor(decryption_key)
        u, t = self.PAIRS[0]

        forward = decryptor.decrypt(evaluator.distance(_encrypt(u, keys_32), t))
        backward = decryptor.decrypt(evaluator.distance(_encrypt(t, keys_32), u))
        assert forward == backward

    @pytest.mark.parametrize("value", [0x00000000, 0xFFFFFFFF, 0x12345678])
    def test_identity(self, keys_32, value):
        decryption_key, evaluation_key = keys_32
        user = Profile.from_int(value, 32)
        result = MatchingEvaluator(evaluation_key).distance(_encrypt(user, keys_32), user)
        assert ResultDecryptor(decryption_key).decrypt(result) == 0

    @pytest.mark.parametrize("value", [0x00000000, 0xFFFFFFFF, 0x12345678])
    def test_complement(self, keys_32, value):
        decryption_key, evaluation_key = keys_32
        user = Profile.from_int(value, 32)
        result = MatchingEvaluator(evaluation_key).distance(_encrypt(user, keys_32), user.invert())
        assert ResultDecryptor(decryption_key).decrypt(result) == 32

    def test_full_overlap_when_user_is_superset(self, keys_32):
        decryption_key, evaluation_key = keys_32
        target = Profile.from_int(0x0000AAAA, 32)
        user = Profile.from_int(0x0000AAAA | 0x00FF0000, 32)
        result = MatchingEvaluator(evaluation_key).overlap(_encrypt(user, keys_32), target)
        assert ResultDecryptor(decryption_key).decrypt(result) == target.popcount()

    def test_zero_target_without_rerandomisation(self, keys_32):
        decryption_key, evaluation_key = keys_32
        user = Profile.from_int(0xFFFF, 32)
        evaluator = MatchingEvaluator(evaluation_key, rerandomise=False)
        result = evaluator.overlap(_encrypt(user, keys_32), Profile.from_int(0, 32))
        assert ResultDecryptor(decryption_key).decrypt(result) == 0


class TestBackendCircuits:
    """The intermediate XOR/AND vectors decrypt to the bitwise results."""

    def test_xor_plain(self, keys_32):
        decryption_key, evaluation_key = keys_32
        user = Profile.from_int(0x0F0F0F0F, 32)
        target = Profile.from_int(0x00FF00FF, 32)
        xored = backend.xor_plain(_encrypt(user, keys_32), target, evaluation_key)
        decrypted = ResultDecryptor(decryption_key).decrypt_profile(xored)
        assert decrypted.to_int() == 0x0F0F0F0F ^ 0x00FF00FF

    def test_and_plain(self, keys_32):
        decryption_key, evaluation_key = keys_32
        user = Profile.from_int(0x0F0F0F0F, 32)
        target = Profile.from_int(0x00FF00FF, 32)
        anded = backend.and_plain(_encrypt(user, keys_32), target, evaluation_key)
        decrypted = ResultDecryptor(decryption_key).decrypt_profile(anded)
        assert decrypted.to_int() == 0x0F0F0F0F & 0x00FF00FF

    def test_and_keeps_complement_rail(self, keys_32):
        """Chaining XOR after AND still needs a valid complement rail."""
        decryption_key, evaluation_key = keys_32
        user = Profile.from_int(0x0000FFFF, 32)
        mask = Profile.from_int(0x00FF00FF, 32)
        other = Profile.from_int(0x0F0F0F0F, 32)

        anded = backend.and_plain(_encrypt(user, keys_32), mask, evaluation_key)
        chained = backend.xor_plain(anded, other, evaluation_key)
        decrypted = ResultDecryptor(decryption_key).decrypt_profile(chained)
        assert decrypted.to_int() == (0x0000FFFF & 0x00FF00FF) ^ 0x0F0F0F0F

    @pytest.mark.parametrize("count", [1, 2, 3, 7, 8])
    def test_tree_sum_handles_any_length(self, count):
        assert backend._tree_sum(list(range(1, count + 1))) == count * (count + 1) // 2


class TestContractViolations:
    """Width and key mismatches fail explicitly."""

    def test_width_mismatch(self, keys_32):
        _, evaluation_key = keys_32
        evaluator = MatchingEvaluator(evaluation_key)
        encrypted = _encrypt(Profile.from_int(0xFF, 32), keys_32)

        with pytest.raises(WidthMismatchError, match="32 bits, target is 64 bits"):
            evaluator.distance(encrypted, Profile.from_int(0xFF, 64))
        with pytest.raises(WidthMismatchError):
            evaluator.overlap(encrypted, Profile.from_int(0xFF, 16))

    def test_evaluation_key_width_mismatch(self, keys_32, keys_128):
        _, evaluation_key_128 = keys_128
        encrypted = _encrypt(Profile.from_int(0xFF, 32), keys_32)
        with pytest.raises(WidthMismatchError, match="serves 128-bit"):
            MatchingEvaluator(evaluation_key_128).distance(encrypted, Profile.from_int(1, 32))

    def test_key_mismatch(self, keys_32, other_keys_32):
        _, other_evaluation_key = other_keys_32
        encrypted = _encrypt(Profile.from_int(0xFF, 32), keys_32)
        with pytest.raises(KeyMismatchError):
            MatchingEvaluator(other_evaluation_key).overlap(encrypted, Profile.from_int(1, 32))

    def test_evaluator_refuses_decryption_key(self, keys_32):
        decryption_key, _ = keys_32
        with pytest.raises(KeyMaterialError, match="only an EvaluationKey"):
            MatchingEvaluator(decryption_key)


class TestInstrumentation:
    """Timing hooks never change results or errors."""

    def test_measure_returns_result_and_duration(self):
        result, elapsed = measure("sum", lambda: sum(range(100)))
        assert result == 4950
        assert elapsed >= 0

    def test_measure_propagates_errors(self):
        def fail():
            raise WidthMismatchError("boom")

        with pytest.raises(WidthMismatchError, match="boom"):
            measure("fail", fail)

    def test_recorder_captures_stages(self, keys_32):
        decryption_key, evaluation_key = keys_32
        evaluator = MatchingEvaluator(evaluation_key)
        recorder = StageRecorder()
        user = Profile.from_int(0xFF, 32)
        target = Profile.from_int(0xAAAA, 32)

        outcome = evaluator.match(_encrypt(user, keys_32), target, recorder=recorder)

        labels = [s.label for s in recorder.stages]
        assert labels == ["xor", "popcount", "rerandomise", "and", "popcount", "rerandomise"]
        assert set(recorder.as_dict()) == {"xor", "and", "popcount", "rerandomise"}
        assert recorder.total_ms() >= recorder.total_ms("popcount")

        decryptor = ResultDecryptor(decryption_key)
        assert decryptor.decrypt(outcome.distance) == 8
        assert decryptor.decrypt(outcome.overlap) == 4

    def test_recorder_does_not_swallow_errors(self, keys_32):
        _, evaluation_key = keys_32
        recorder = StageRecorder()
        encrypted = _encrypt(Profile.from_int(0xFF, 32), keys_32)
        with pytest.raises(WidthMismatchError):
            MatchingEvaluator(evaluation_key).distance(
                encrypted, Profile.from_int(1, 8), recorder
            )
        assert recorder.stages == []
