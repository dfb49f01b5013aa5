"""MD5 message digest (RFC 1321) from integer and bit operations.

The pipeline is strictly forward: the message is padded to a multiple of
64 bytes, decoded into blocks of sixteen little-endian 32-bit words, and
each block is folded into the running digest state by 64 compression
steps (4 rounds of 16). The final registers are emitted little-endian,
which is the byte-swapped, canonical presentation order.

The engine can also stop after 1-3 rounds per block. That variant is not
MD5; it is used by the CNF model in md5_cnf for reduced-round experiments.
"""
import enum
import itertools
import math
from collections import namedtuple

MASK = 0xffffffff


def rotate_left(x, n):
    """Rotate the 32-bit word x left by n bits."""
    x = x & MASK
    return ((x << n) | (x >> (32 - n))) & MASK


def swap_bytes(x):
    """Reverse the byte order of a 32-bit word."""
    return int.from_bytes(x.to_bytes(4, 'little'), 'big')


def F(x, y, z):
    return (x & y) | (~x & MASK & z)


def G(x, y, z):
    return (x & z) | (y & ~z & MASK)


def H(x, y, z):
    return x ^ y ^ z


def I(x, y, z):
    return y ^ (x | (~z & MASK))


class Round(enum.Enum):
    """One of the four 16-step rounds of the compression function.

    Each round carries its own boolean function, message word schedule
    and slice of rotation amounts.
    """
    ROUND1 = 1
    ROUND2 = 2
    ROUND3 = 3
    ROUND4 = 4

    @classmethod
    def for_step(cls, i):
        """Return the round that step i (0 <= i < 64) belongs to."""
        assert 0 <= i < 64, "step index out of range: %d" % i
        return _ROUNDS[i // 16]

    @property
    def steps(self):
        return range(16 * (self.value - 1), 16 * self.value)

    @property
    def shifts(self):
        return _SHIFTS[self]

    def function(self, x, y, z):
        return _FUNCTIONS[self](x, y, z)

    def message_index(self, i):
        """Index of the block word consumed by step i of this round."""
        return _MESSAGE_INDEX[self](i)


_ROUNDS = tuple(Round)

_FUNCTIONS = {
    Round.ROUND1: F,
    Round.ROUND2: G,
    Round.ROUND3: H,
    Round.ROUND4: I,
}

_MESSAGE_INDEX = {
    Round.ROUND1: lambda i: i % 16,
    Round.ROUND2: lambda i: (5 * i + 1) % 16,
    Round.ROUND3: lambda i: (3 * i + 5) % 16,
    Round.ROUND4: lambda i: (7 * i) % 16,
}

_SHIFTS = {
    Round.ROUND1: (7, 12, 17, 22),
    Round.ROUND2: (5, 9, 14, 20),
    Round.ROUND3: (4, 11, 16, 23),
    Round.ROUND4: (6, 10, 15, 21),
}

# Sine-derived additive constants, floor(2^32 * |sin(i + 1)|).
T = tuple(int(4294967296 * abs(math.sin(i + 1))) & MASK for i in range(64))

# Per-step left-rotation amounts, each round's four shifts cycled four times.
S = tuple(s for rnd in _ROUNDS for s in rnd.shifts * 4)


def pad(message):
    """Return message padded to a multiple of 64 bytes.

    Appends 0x80, zero bytes up to 56 mod 64, then the original length in
    bits as a 64-bit little-endian integer. A message of 56 bytes or more
    past the last boundary spills into an extra block.
    """
    num_bits = len(message) * 8
    assert num_bits < 1 << 64, "message too long for the 64-bit length field"
    wrapped_bits = (num_bits + 64 + 512) // 512 * 512 - 64
    padded = bytearray(message)
    padded.append(0x80)
    padded.extend(bytes(wrapped_bits // 8 - len(padded)))
    padded.extend(num_bits.to_bytes(8, 'little'))
    return bytes(padded)


def decode_words(padded):
    """Yield the little-endian 32-bit words of padded."""
    assert len(padded) % 4 == 0, "buffer is not a whole number of words"
    for i in range(0, len(padded), 4):
        yield int.from_bytes(padded[i:i + 4], 'little')


def decode_blocks(padded):
    """Yield padded as consecutive blocks of 16 words."""
    assert len(padded) % 64 == 0, "buffer is not a whole number of blocks"
    words = decode_words(padded)
    for _ in range(len(padded) // 64):
        yield tuple(itertools.islice(words, 16))


class DigestState(namedtuple('DigestState', 'a b c d')):
    """The four 32-bit registers A, B, C, D."""
    __slots__ = ()

    @classmethod
    def initial(cls):
        return cls(0x67452301, 0xefcdab89, 0x98badcfe, 0x10325476)

    def combine(self, other):
        """Register-wise sum modulo 2^32."""
        return DigestState(*((x + y) & MASK for x, y in zip(self, other)))

    def to_digest(self):
        """Return the 16-byte digest: each register byte-swapped, in order."""
        return b''.join(swap_bytes(x).to_bytes(4, 'big') for x in self)


def compress_step(state, i, block):
    """Advance the working state by compression step i over block.

    Computes B + ((A + f(B, C, D) + X[g] + T[i]) <<< S[i]) as the new B,
    then shifts the registers so A <- D, D <- C, C <- B.
    """
    rnd = Round.for_step(i)
    a, b, c, d = state
    e = (a + rnd.function(b, c, d) + block[rnd.message_index(i)] + T[i]) & MASK
    b_new = (b + rotate_left(e, S[i])) & MASK
    return DigestState(d, b_new, b, c)


class MD5:
    """Block processor carrying the running digest state.

    num_rounds selects how many of the four rounds are applied to each
    block; only num_rounds=4 computes MD5.
    """

    def __init__(self, num_rounds=4):
        assert num_rounds in [1, 2, 3, 4]
        self.num_rounds = num_rounds
        self.state = DigestState.initial()

    def process_block(self, block):
        """Fold one 16-word block into the running state."""
        assert len(block) == 16
        working = self.state
        for i in range(16 * self.num_rounds):
            working = compress_step(working, i, block)
        self.state = self.state.combine(working)

    def update_padded(self, padded):
        """Process every block of an already padded buffer, in order."""
        for block in decode_blocks(padded):
            self.process_block(block)

    def digest(self):
        return self.state.to_digest()


def digest(message, num_rounds=4):
    """Return the 16-byte MD5 digest of message."""
    if isinstance(message, str):
        raise TypeError("digest() takes bytes, not str")
    md5 = MD5(num_rounds)
    md5.update_padded(pad(message))
    return md5.digest()


def hexdigest(message, num_rounds=4):
    """Return the digest of message as 32 lowercase hex characters."""
    return digest(message, num_rounds).hex()
