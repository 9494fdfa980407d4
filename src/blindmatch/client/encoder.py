"""
Profile encoding and encryption on the profile owner's device.
"""
from typing import Iterable, Optional, Sequence

from blindmatch.shared import backend
from blindmatch.shared.ciphertext import EncryptedProfile
from blindmatch.shared.errors import EncodingError
from blindmatch.shared.keys import DecryptionKey
from blindmatch.shared.profile import CategoryEncoder, Profile


class ProfileEncoder:
    """
    Encodes raw attributes into a Profile and encrypts it.

    Never talks to the matching service; the caller decides what to send.
    """

    def __init__(self, width: int, categories: Optional[Sequence[str]] = None):
        """
        Initialize encoder.

        Args:
            width: Canonical profile width W
            categories: Ordered public vocabulary, one bit per category

        Raises:
            EncodingError: If the vocabulary does not fit in W bits
        """
        self.width = width
        self.category_encoder = (
            CategoryEncoder(categories, width) if categories is not None else None
        )

    def encode(self, raw_attributes: Iterable[str]) -> Profile:
        """Map raw attributes to a Profile of width W."""
        if self.category_encoder is None:
            raise EncodingError("Encoder was built without a category vocabulary")
        return self.category_encoder.encode(raw_attributes)

    def encode_int(self, value: int) -> Profile:
        """Wrap an already bit-packed integer as a Profile of width W."""
        return Profile.from_int(value, self.width)

    def encrypt(self, profile: Profile, decryption_key: DecryptionKey) -> EncryptedProfile:
        """
        Encrypt a profile under the owner's key pair.

        Raises:
            EncodingError: If the profile's width is not W
            KeyMaterialError: If the key is malformed or serves another width
        """
        if profile.width != self.width:
            raise EncodingError(
                f"Profile is {profile.width} bits, encoder width is {self.width}"
            )
        return backend.encrypt(profile, decryption_key)

    def encode_and_encrypt(
        self,
        raw_attributes: Iterable[str],
        decryption_key: DecryptionKey,
    ) -> EncryptedProfile:
        return self.encrypt(self.encode(raw_attributes), decryption_key)
