"""Shared fixtures: key generation dominates test time, so pairs are reused."""
import pytest

from blindmatch.client.crypto import KeyAuthority

TEST_KEY_SIZE = 1024  # Use smaller keys for faster tests


@pytest.fixture(scope="session")
def keys_32():
    return KeyAuthority(key_size=TEST_KEY_SIZE, width=32).generate()


@pytest.fixture(scope="session")
def other_keys_32():
    """A second, unrelated key pair of the same width."""
    return KeyAuthority(key_size=TEST_KEY_SIZE, width=32).generate()


@pytest.fixture(scope="session")
def keys_128():
    return KeyAuthority(key_size=TEST_KEY_SIZE, width=128).generate()
