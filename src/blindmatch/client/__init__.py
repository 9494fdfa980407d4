"""Client-side components: keys, encoding, decryption."""
from blindmatch.client.crypto import KeyAuthority, ResultDecryptor
from blindmatch.client.encoder import ProfileEncoder
from blindmatch.client.session import MatchingSession

__all__ = ["KeyAuthority", "ResultDecryptor", "ProfileEncoder", "MatchingSession"]
