"""
Cleartext bit-vector profiles and the public attribute encoding.

A profile is an ordered, fixed-width sequence of bits. Bit 0 is the least
significant bit of the profile's integer form. Both the user and the
advertiser encode their attributes with the same public vocabulary, so the
bit positions mean the same thing on either side.
"""
from typing import Iterable, List, Sequence, Union

import numpy as np

from blindmatch.shared.errors import EncodingError, WidthMismatchError


class Profile:
    """
    Immutable fixed-width bit vector.

    The width is part of the value: profiles of different widths are never
    equal and never combined implicitly.
    """

    __slots__ = ("_bits",)

    def __init__(self, bits: Union[Sequence[int], np.ndarray]):
        arr = np.array(bits, dtype=np.int64)
        if arr.ndim != 1 or arr.size == 0:
            raise EncodingError("Profile must be a non-empty 1-D bit sequence")
        if np.any((arr != 0) & (arr != 1)):
            raise EncodingError("Profile bits must be 0 or 1")

        arr = arr.astype(np.uint8)
        arr.flags.writeable = False
        self._bits = arr

    @classmethod
    def from_bits(cls, bits: Union[Sequence[int], np.ndarray]) -> "Profile":
        """Build a profile from bits ordered least significant first."""
        return cls(bits)

    @classmethod
    def from_int(cls, value: int, width: int) -> "Profile":
        """
        Build a profile from a non-negative integer.

        Args:
            value: Integer whose binary form is the profile
            width: Declared bit width W

        Raises:
            EncodingError: If value is negative or needs more than W bits
        """
        if width <= 0:
            raise EncodingError(f"Width must be positive, got {width}")
        if value < 0:
            raise EncodingError(f"Profile value must be non-negative, got {value}")
        if value.bit_length() > width:
            raise EncodingError(
                f"Value needs {value.bit_length()} bits, profile width is {width}"
            )
        return cls([(value >> i) & 1 for i in range(width)])

    @classmethod
    def from_words(cls, words: Sequence[int], word_bits: int) -> "Profile":
        """
        Concatenate fixed-size words into one profile, most significant word first.

        ``Profile.from_words([0x00FF, 0x00FF], 64)`` is a 128-bit profile whose
        upper and lower halves are both 0x00FF.
        """
        if not words:
            raise EncodingError("At least one word is required")

        value = 0
        for word in words:
            if word < 0 or word.bit_length() > word_bits:
                raise EncodingError(f"Word {word:#x} does not fit in {word_bits} bits")
            value = (value << word_bits) | word
        return cls.from_int(value, word_bits * len(words))

    @property
    def width(self) -> int:
        return int(self._bits.size)

    @property
    def bits(self) -> np.ndarray:
        """Read-only view of the bits, least significant first."""
        return self._bits

    def to_int(self) -> int:
        value = 0
        for bit in reversed(self._bits.tolist()):
            value = (value << 1) | bit
        return value

    def to_hex(self) -> str:
        digits = (self.width + 3) // 4
        return f"0x{self.to_int():0{digits}x}"

    def popcount(self) -> int:
        return int(self._bits.sum())

    def invert(self) -> "Profile":
        """Bitwise complement at the same width."""
        return Profile(1 - self._bits.astype(np.int64))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Profile):
            return NotImplemented
        return self.width == other.width and bool(np.array_equal(self._bits, other._bits))

    def __hash__(self) -> int:
        return hash((self.width, self.to_int()))

    def __reduce__(self):
        return (Profile, (self._bits.tolist(),))

    def __repr__(self) -> str:
        return f"Profile(width={self.width}, value={self.to_hex()})"


def require_same_width(left: Profile, right: Profile) -> int:
    """Return the shared width, or raise if the profiles differ."""
    if left.width != right.width:
        raise WidthMismatchError(
            f"Profile widths differ: {left.width} vs {right.width}"
        )
    return left.width


class CategoryEncoder:
    """
    Deterministic, public mapping from interest categories to bit positions.

    Category ``categories[i]`` is represented by bit ``i``. The vocabulary is
    shared by the profile owner and the advertiser.
    """

    def __init__(self, categories: Sequence[str], width: int):
        """
        Initialize encoder.

        Args:
            categories: Ordered category vocabulary
            width: Canonical profile width W

        Raises:
            EncodingError: If the vocabulary has duplicates or more than W entries
        """
        if width <= 0:
            raise EncodingError(f"Width must be positive, got {width}")
        if len(set(categories)) != len(categories):
            raise EncodingError("Category vocabulary contains duplicates")
        if len(categories) > width:
            raise EncodingError(
                f"{len(categories)} categories cannot be mapped into {width} bits"
            )

        self.width = width
        self.categories: List[str] = list(categories)
        self._slots = {category: i for i, category in enumerate(self.categories)}

    def encode(self, raw_attributes: Iterable[str]) -> Profile:
        """
        Map a set of attributes to a profile.

        Raises:
            EncodingError: If an attribute has no slot in the vocabulary
        """
        bits = np.zeros(self.width, dtype=np.uint8)
        for attribute in raw_attributes:
            slot = self._slots.get(attribute)
            if slot is None:
                raise EncodingError(f"Attribute {attribute!r} has no bit slot")
            bits[slot] = 1
        return Profile(bits)

    def decode(self, profile: Profile) -> List[str]:
        """Categories whose bits are set, in vocabulary order."""
        if profile.width != self.width:
            raise WidthMismatchError(
                f"Encoder width is {self.width}, profile width is {profile.width}"
            )

        decoded = []
        for i, category in enumerate(self.categories):
            if profile.bits[i]:
                decoded.append(category)

        # Bits beyond the vocabulary are never produced by encode()
        if profile.bits[len(self.categories):].any():
            raise EncodingError("Profile sets bits outside the category vocabulary")
        return decoded
