"""CNF encoding of the MD5 block processor using PySAT.

MD5Formula models every compression step over a padded buffer as
clauses and asks a SAT solver for a satisfying assignment. Message bits
can be fixed to a given buffer, left free or forced to flip, and the
final digest can be constrained, which makes the formula usable both to
cross-check md5.MD5 and to search for reduced-round preimages.

Bit vectors are lists of solver variables, least significant bit first.
"""
import logging

from pysat.solvers import Solver

from md5 import MASK, S, T, DigestState, Round

logger = logging.getLogger(__name__)


class MD5Formula:
    """Builder that encodes MD5 over a padded buffer and solves it.

    Parameters
    - padded: bytes whose length is a multiple of 64. Every message bit is
              constrained to its value here unless listed below.
    - free_bits: bit indices left unconstrained. Bit k is bit k % 8
              (from the least significant) of byte k // 8.
    - flipped_bits: bit indices forced to the opposite of their value.
              Must not overlap free_bits; every index must address a bit
              of padded.
    - target_digest: optional 16-byte digest the final state must produce.
    - num_rounds: rounds per block, 1-4.
    """

    def __init__(self, padded, free_bits=(), flipped_bits=(), target_digest=None,
                 num_rounds=4, solver_name='g4'):
        assert len(padded) % 64 == 0
        assert num_rounds in [1, 2, 3, 4]
        assert target_digest is None or len(target_digest) == 16
        free_bits = set(free_bits)
        flipped_bits = set(flipped_bits)
        assert free_bits.isdisjoint(flipped_bits), "a bit cannot be both free and flipped"
        assert all(0 <= k < len(padded) * 8 for k in free_bits | flipped_bits), \
            "bit index out of range"
        self.solver = Solver(name=solver_name)
        self.var_idx = 1
        self.num_rounds = num_rounds
        self.target_digest = target_digest
        self.encoded = False
        self.message = [self._init_number(8) for _ in range(len(padded))]
        for i, byte in enumerate(padded):
            for j, bit_var in enumerate(self.message[i]):
                k = i * 8 + j
                if k in free_bits:
                    continue
                value = (byte >> j) & 1
                if k in flipped_bits:
                    value ^= 1
                self.solver.add_clause([bit_var if value else -bit_var])
        self.state = [self._add_constant(self._init_number(32), x)
                      for x in DigestState.initial()]

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self.solver.delete()

    def interrupt(self):
        """Stop a solve() running in another thread."""
        self.solver.interrupt()

    def _init_number(self, num_bits):
        """Allocate num_bits fresh variables."""
        num = list(range(self.var_idx, self.var_idx + num_bits))
        self.var_idx += num_bits
        return num

    def _init_bit(self):
        bit_var = self.var_idx
        self.var_idx += 1
        return bit_var

    def _word(self, block_idx, word_idx):
        """Variables of message word word_idx in block block_idx."""
        start = block_idx * 64 + word_idx * 4
        return [v for byte in self.message[start:start + 4] for v in byte]

    def _add_constant(self, bits, constant):
        assert 0 <= constant < 2 ** len(bits)
        for i, bit_var in enumerate(bits):
            self.solver.add_clause([bit_var if (constant >> i) & 1 else -bit_var])
        return bits

    def _add_or(self, a, b, c=None):
        """c = a | b, bitwise. Returns c (allocated if None)."""
        assert len(a) == len(b)
        c = self._output(a, c)
        for x, y, z in zip(a, b, c):
            self.solver.add_clause([x, y, -z])
            self.solver.add_clause([-x, z])
            self.solver.add_clause([-y, z])
        return c

    def _add_and(self, a, b, c=None):
        """c = a & b, bitwise."""
        assert len(a) == len(b)
        c = self._output(a, c)
        for x, y, z in zip(a, b, c):
            self.solver.add_clause([-x, -y, z])
            self.solver.add_clause([x, -z])
            self.solver.add_clause([y, -z])
        return c

    def _add_xor(self, a, b, c=None):
        """c = a ^ b, bitwise."""
        assert len(a) == len(b)
        c = self._output(a, c)
        for x, y, z in zip(a, b, c):
            self.solver.add_clause([-x, -y, -z])
            self.solver.add_clause([x, y, -z])
            self.solver.add_clause([x, -y, z])
            self.solver.add_clause([-x, y, z])
        return c

    def _add_not(self, a, b=None):
        """b = ~a, bitwise."""
        b = self._output(a, b)
        for x, y in zip(a, b):
            self.solver.add_clause([-x, -y])
            self.solver.add_clause([x, y])
        return b

    def _add_sum(self, a, b, c=None):
        """c = a + b modulo 2^len(a), as a ripple-carry adder."""
        assert len(a) == len(b)
        c = self._output(a, c)
        carry = None
        for i, (x, y, z) in enumerate(zip(a, b, c)):
            if carry is None:
                self._add_xor([x], [y], [z])
            else:
                xy = self._add_xor([x], [y])
                self._add_xor(xy, [carry], [z])
            if i == len(a) - 1:
                break
            if carry is None:
                carry = self._add_and([x], [y])[0]
            else:
                generate = self._add_and([x], [y])
                propagate = self._add_and(xy, [carry])
                carry = self._add_or(generate, propagate)[0]
        return c

    @staticmethod
    def _rotate_left(a, n):
        """Rotate-left by n; only rewires variables."""
        n %= len(a)
        return a[len(a) - n:] + a[:len(a) - n]

    def _output(self, a, c):
        if c is None:
            return self._init_number(len(a))
        assert len(a) == len(c)
        return c

    def add_round_function(self, rnd, b, c, d):
        """CNF version of the boolean function of round rnd."""
        if rnd is Round.ROUND1:
            return self._add_or(self._add_and(b, c), self._add_and(self._add_not(b), d))
        if rnd is Round.ROUND2:
            return self._add_or(self._add_and(b, d), self._add_and(c, self._add_not(d)))
        if rnd is Round.ROUND3:
            return self._add_xor(self._add_xor(b, c), d)
        return self._add_xor(c, self._add_or(b, self._add_not(d)))

    def add_step(self, state, i, block_idx):
        """One compression step i on state (a, b, c, d)."""
        rnd = Round.for_step(i)
        a, b, c, d = state
        f = self.add_round_function(rnd, b, c, d)
        x = self._word(block_idx, rnd.message_index(i))
        k = self._add_constant(self._init_number(32), T[i])
        e = self._add_sum(self._add_sum(a, f), self._add_sum(x, k))
        b_new = self._add_sum(self._rotate_left(e, S[i]), b)
        return [d, b_new, b, c]

    def add_block(self, block_idx):
        """Encode all steps of one block and chain the state."""
        working = self.state
        for i in range(16 * self.num_rounds):
            working = self.add_step(working, i, block_idx)
        self.state = [self._add_sum(x, y) for x, y in zip(self.state, working)]

    def encode(self):
        """Encode every block and the target digest, once."""
        if self.encoded:
            return
        for block_idx in range(len(self.message) // 64):
            self.add_block(block_idx)
        if self.target_digest is not None:
            for i, bits in enumerate(self.state):
                word = int.from_bytes(self.target_digest[i * 4:i * 4 + 4], 'little')
                self._add_constant(bits, word)
        self.encoded = True

    def solve(self):
        """Encode the formula if needed and solve it.

        Returns (False, None) if unsatisfiable or interrupted, otherwise
        (True, (message_bytes, digest_bytes)). Repeated calls solve the
        same formula.
        """
        self.encode()
        logger.debug("solving %d blocks, %d rounds: %d vars, %d clauses",
                     len(self.message) // 64, self.num_rounds,
                     self.solver.nof_vars(), self.solver.nof_clauses())
        sat = self.solver.solve_limited(expect_interrupt=True)
        if not sat:
            logger.info("no assignment found (result: %s)", sat)
            return False, None
        return True, self.process_solution(self.solver.get_model())

    @staticmethod
    def solution_to_int(model, bits):
        """Read an LSB-first bit vector from a solver model."""
        value = 0
        for i, bit_var in enumerate(bits):
            if model[bit_var - 1] > 0:
                value |= 1 << i
        return value

    def process_solution(self, model):
        """Extract (message_bytes, digest_bytes) from a satisfying model."""
        message = bytes(self.solution_to_int(model, byte) for byte in self.message)
        registers = [self.solution_to_int(model, bits) & MASK for bits in self.state]
        return message, DigestState(*registers).to_digest()
