"""Integration tests for the full matching pipeline."""
import dataclasses
import inspect

import pytest
from fastapi.testclient import TestClient

from blindmatch.client.crypto import ResultDecryptor
from blindmatch.client.session import MatchingSession
from blindmatch.server.api import (
    create_app,
    deserialize_encrypted,
    match_profile,
    serialize_encrypted,
)
from blindmatch.server.evaluator import (
    MatchingEvaluator,
    TargetStore,
    create_mock_targets,
    evaluate_batch_multiprocess,
)
from blindmatch.shared.errors import KeyMismatchError, UnknownTargetError, WidthMismatchError
from blindmatch.shared.profile import Profile
from blindmatch.shared.protocol import MatchRequest
from blindmatch.shared.utils import (
    generate_random_profiles,
    plaintext_hamming_distance,
    plaintext_overlap_score,
)


class TestTargetStore:
    """Test the advertiser target store."""

    def test_rejects_other_widths(self):
        store = TargetStore(width=32)
        with pytest.raises(WidthMismatchError):
            store.add("ad", Profile.from_int(1, 64))

    def test_select_by_ids(self):
        store = create_mock_targets(5, 32, seed=1)
        selected = store.get_targets_by_ids(["ad_000003", "ad_000001"])
        assert [target_id for target_id, _ in selected] == ["ad_000003", "ad_000001"]

    def test_unknown_ids_raise(self):
        store = create_mock_targets(5, 32, seed=1)
        with pytest.raises(UnknownTargetError, match="missing"):
            store.get_targets_by_ids(["ad_000001", "missing"])


class TestMatchingSession:
    """Test the client-side flow against an in-process evaluator."""

    def test_session_ranks_targets(self, keys_32):
        decryption_key, evaluation_key = keys_32
        store = create_mock_targets(6, 32, seed=42)
        evaluator = MatchingEvaluator(evaluation_key, store)
        session = MatchingSession(decryption_key)

        user = generate_random_profiles(1, 32, seed=123)[0]
        results, timing = session.match(user, evaluator.score_targets)

        assert len(results) == 6
        assert [r.rank for r in results] == [1, 2, 3, 4, 5, 6]
        overlaps = [r.overlap for r in results]
        assert overlaps == sorted(overlaps, reverse=True)

        accuracy = session.verify_accuracy(user, store.targets, results)
        assert accuracy["exact"]

        assert "encrypt_ms" in timing
        assert "server_compute_ms" in timing
        assert "decrypt_ms" in timing
        assert timing["total_ms"] > 0

    def test_session_aborts_on_foreign_results(self, keys_32, other_keys_32):
        """A session never returns partial results."""
        decryption_key, _ = keys_32
        other_decryption_key, other_evaluation_key = other_keys_32
        store = create_mock_targets(3, 32, seed=1)

        def foreign_service(encrypted):
            # Re-encrypt under another key pair to simulate a mis-provisioned service
            profile = ResultDecryptor(decryption_key).decrypt_profile(encrypted)
            foreign = MatchingSession(other_decryption_key).encoder.encrypt(
                profile, other_decryption_key
            )
            return MatchingEvaluator(other_evaluation_key, store).score_targets(foreign)

        with pytest.raises(KeyMismatchError):
            MatchingSession(decryption_key).match(Profile.from_int(0xFF, 32), foreign_service)

    def test_full_overlap_flag(self, keys_32):
        decryption_key, evaluation_key = keys_32
        target = Profile.from_int(0x0000AAAA, 32)
        store = TargetStore(width=32, targets={"ad": target})
        session = MatchingSession(decryption_key)

        results, _ = session.match(
            Profile.from_int(0xFFFFAAAA, 32),
            MatchingEvaluator(evaluation_key, store).score_targets,
        )
        assert results[0].is_full_overlap


class TestParallelEvaluation:
    """Independent targets and requests evaluate in parallel."""

    def test_threaded_matches_sequential(self, keys_32):
        decryption_key, evaluation_key = keys_32
        store = create_mock_targets(8, 32, seed=5)
        evaluator = MatchingEvaluator(evaluation_key, store)
        user = generate_random_profiles(1, 32, seed=6)[0]
        encrypted = MatchingSession(decryption_key).encoder.encrypt(user, decryption_key)

        outcomes, time_ms = evaluator.score_targets_parallel(encrypted, num_workers=4)
        decryptor = ResultDecryptor(decryption_key)

        assert [o.target_id for o in outcomes] == list(store.targets)
        for outcome in outcomes:
            target = store.targets[outcome.target_id]
            assert decryptor.decrypt(outcome.distance) == plaintext_hamming_distance(user, target)
            assert decryptor.decrypt(outcome.overlap) == plaintext_overlap_score(user, target)
        assert time_ms > 0

    def test_unknown_target_fails_whole_request(self, keys_32):
        decryption_key, evaluation_key = keys_32
        evaluator = MatchingEvaluator(evaluation_key, create_mock_targets(3, 32, seed=5))
        encrypted = MatchingSession(decryption_key).encoder.encrypt(
            Profile.from_int(0xFF, 32), decryption_key
        )

        with pytest.raises(UnknownTargetError):
            evaluator.score_targets(encrypted, ["ad_000000", "missing"])
        with pytest.raises(UnknownTargetError):
            evaluator.score_targets_parallel(encrypted, ["ad_000000", "missing"], num_workers=2)

    def test_multiprocess_batch(self, keys_32):
        decryption_key, evaluation_key = keys_32
        store = create_mock_targets(3, 32, seed=9)
        evaluator = MatchingEvaluator(evaluation_key, store)
        session = MatchingSession(decryption_key)

        users = generate_random_profiles(3, 32, seed=10)
        requests = [
            MatchRequest(request_id=f"req_{i}", encrypted_profile=session.encoder.encrypt(u, decryption_key))
            for i, u in enumerate(users)
        ]

        responses = evaluate_batch_multiprocess(evaluator, requests, num_workers=2)
        decryptor = ResultDecryptor(decryption_key)

        assert [r.request_id for r in responses] == ["req_0", "req_1", "req_2"]
        for user, response in zip(users, responses):
            for outcome in response.outcomes:
                target = store.targets[outcome.target_id]
                assert decryptor.decrypt(outcome.overlap) == plaintext_overlap_score(user, target)

    def test_evaluate_records_stages(self, keys_32):
        decryption_key, evaluation_key = keys_32
        store = create_mock_targets(2, 32, seed=3)
        evaluator = MatchingEvaluator(evaluation_key, store)
        encrypted = MatchingSession(decryption_key).encoder.encrypt(
            Profile.from_int(0xF0F0, 32), decryption_key
        )

        response = evaluator.evaluate(
            MatchRequest(request_id="r", encrypted_profile=encrypted, target_ids=["ad_000001"]),
            record_stages=True,
        )
        assert [o.target_id for o in response.outcomes] == ["ad_000001"]
        assert set(response.stage_ms) == {"xor", "and", "popcount", "rerandomise"}
        assert {f.name for f in dataclasses.fields(response)} == {
            "request_id", "outcomes", "server_time_ms", "stage_ms"
        }


class TestMatchingService:
    """Test the FastAPI matching service end to end."""

    @pytest.fixture
    def client(self):
        with TestClient(create_app(num_targets=3, width=32, seed=7)) as client:
            yield client

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["num_targets"] == 3
        assert body["width"] == 32
        assert body["registered_clients"] == 0

    def test_match_roundtrip(self, client, keys_32):
        decryption_key, evaluation_key = keys_32

        response = client.post("/keys", json={
            "client_id": "alice",
            "public_key": evaluation_key.public_key,
            "width": 32,
            "key_size": evaluation_key.key_size,
        })
        assert response.status_code == 200
        assert response.json()["fingerprint"] == evaluation_key.fingerprint

        response = client.post("/targets", json={"target_id": "sneakers", "profile_hex": "0x0000AAAA"})
        assert response.status_code == 200
        assert response.json()["popcount"] == 8

        session = MatchingSession(decryption_key)
        encrypted = session.encoder.encrypt(Profile.from_int(0x000000FF, 32), decryption_key)
        response = client.post("/match", json={
            "client_id": "alice",
            "encrypted_profile_b64": serialize_encrypted(encrypted),
            "target_ids": ["sneakers"],
            "record_stages": True,
        })
        assert response.status_code == 200
        body = response.json()
        assert body["num_results"] == 1
        assert "popcount" in body["stage_ms"]

        outcome = body["outcomes"][0]
        decryptor = ResultDecryptor(decryption_key)
        assert decryptor.decrypt(deserialize_encrypted(outcome["distance_b64"])) == 8
        assert decryptor.decrypt(deserialize_encrypted(outcome["overlap_b64"])) == 4

    def test_unregistered_client(self, client, keys_32):
        decryption_key, _ = keys_32
        encrypted = MatchingSession(decryption_key).encoder.encrypt(
            Profile.from_int(1, 32), decryption_key
        )
        response = client.post("/match", json={
            "client_id": "nobody",
            "encrypted_profile_b64": serialize_encrypted(encrypted),
        })
        assert response.status_code == 400

    def test_key_width_must_match_service(self, client, keys_128):
        _, evaluation_key = keys_128
        response = client.post("/keys", json={
            "client_id": "bob",
            "public_key": evaluation_key.public_key,
            "width": 128,
        })
        assert response.status_code == 400

    def test_foreign_profile_is_rejected(self, client, keys_32, other_keys_32):
        _, evaluation_key = keys_32
        other_decryption_key, _ = other_keys_32
        client.post("/keys", json={
            "client_id": "alice",
            "public_key": evaluation_key.public_key,
            "width": 32,
        })

        foreign = MatchingSession(other_decryption_key).encoder.encrypt(
            Profile.from_int(1, 32), other_decryption_key
        )
        response = client.post("/match", json={
            "client_id": "alice",
            "encrypted_profile_b64": serialize_encrypted(foreign),
        })
        assert response.status_code == 400
        assert "KeyMismatchError" in response.json()["detail"]

    def test_target_too_wide(self, client):
        response = client.post("/targets", json={"target_id": "x", "profile_hex": "0x1FFFFFFFF"})
        assert response.status_code == 400

    def test_unknown_target_id(self, client, keys_32):
        decryption_key, evaluation_key = keys_32
        client.post("/keys", json={
            "client_id": "alice",
            "public_key": evaluation_key.public_key,
            "width": 32,
        })
        encrypted = MatchingSession(decryption_key).encoder.encrypt(
            Profile.from_int(1, 32), decryption_key
        )
        response = client.post("/match", json={
            "client_id": "alice",
            "encrypted_profile_b64": serialize_encrypted(encrypted),
            "target_ids": ["ad_000000", "missing"],
        })
        assert response.status_code == 400
        assert "UnknownTargetError" in response.json()["detail"]

    def test_match_runs_in_threadpool(self):
        # Scoring is CPU-bound; a sync endpoint keeps it off the event loop
        assert not inspect.iscoroutinefunction(match_profile)
