import unittest
from threading import Timer

from md5 import MD5, digest, pad
from md5_cnf import MD5Formula


def reduced_digest(padded, num_rounds):
    md5 = MD5(num_rounds)
    md5.update_padded(padded)
    return md5.digest()


class TestMD5FormulaGates(unittest.TestCase):
    def setUp(self):
        self.formula = MD5Formula(pad(b"Hello, World!"))
        self.solver = self.formula.solver

    def tearDown(self):
        self.formula.close()

    def value(self, bits):
        return MD5Formula.solution_to_int(self.solver.get_model(), bits)

    def test_add_constant_sets_bits_lsb_first(self):
        bits = self.formula._init_number(4)
        self.formula._add_constant(bits, 0b1010)
        self.assertTrue(self.solver.solve())
        model = self.solver.get_model()
        self.assertEqual([model[v - 1] > 0 for v in bits], [False, True, False, True])

    def test_add_or_truth_table(self):
        a, b, c = self.formula._init_bit(), self.formula._init_bit(), self.formula._init_bit()
        self.formula._add_or([a], [b], [c])
        for a_val in (False, True):
            for b_val in (False, True):
                for c_val in (False, True):
                    assumps = [a if a_val else -a, b if b_val else -b, c if c_val else -c]
                    sat = self.solver.solve(assumptions=assumps)
                    self.assertEqual(sat, (a_val or b_val) == c_val)

    def test_add_and_truth_table(self):
        a, b, c = self.formula._init_bit(), self.formula._init_bit(), self.formula._init_bit()
        self.formula._add_and([a], [b], [c])
        for a_val in (False, True):
            for b_val in (False, True):
                for c_val in (False, True):
                    assumps = [a if a_val else -a, b if b_val else -b, c if c_val else -c]
                    sat = self.solver.solve(assumptions=assumps)
                    self.assertEqual(sat, (a_val and b_val) == c_val)

    def test_add_xor_truth_table(self):
        a, b, c = self.formula._init_bit(), self.formula._init_bit(), self.formula._init_bit()
        self.formula._add_xor([a], [b], [c])
        for a_val in (False, True):
            for b_val in (False, True):
                for c_val in (False, True):
                    assumps = [a if a_val else -a, b if b_val else -b, c if c_val else -c]
                    sat = self.solver.solve(assumptions=assumps)
                    self.assertEqual(sat, (a_val ^ b_val) == c_val)

    def test_add_not_truth_table(self):
        a, b = self.formula._init_bit(), self.formula._init_bit()
        self.formula._add_not([a], [b])
        for a_val in (False, True):
            for b_val in (False, True):
                assumps = [a if a_val else -a, b if b_val else -b]
                sat = self.solver.solve(assumptions=assumps)
                self.assertEqual(sat, b_val == (not a_val))

    def test_add_sum_wraps(self):
        a = self.formula._add_constant(self.formula._init_number(4), 0b1110)
        b = self.formula._add_constant(self.formula._init_number(4), 0b1101)
        c = self.formula._add_sum(a, b)
        self.assertTrue(self.solver.solve())
        self.assertEqual(self.value(c), (0b1110 + 0b1101) % 16)

    def test_add_sum_32_bit(self):
        a = self.formula._add_constant(self.formula._init_number(32), 0xffffffff)
        b = self.formula._add_constant(self.formula._init_number(32), 0x12345678)
        c = self.formula._add_sum(a, b)
        self.assertTrue(self.solver.solve())
        self.assertEqual(self.value(c), 0x12345677)

    def test_rotate_left(self):
        a = self.formula._add_constant(self.formula._init_number(4), 0b1101)
        b = MD5Formula._rotate_left(a, 2)
        self.assertTrue(self.solver.solve())
        self.assertEqual(self.value(b), 0b0111)


class TestMD5FormulaSolve(unittest.TestCase):

    def test_fixed_message_matches_engine(self):
        padded = pad(b"Hello, World!")
        with MD5Formula(padded) as formula:
            sat, (message, result) = formula.solve()
        self.assertTrue(sat)
        self.assertEqual(message, padded)
        self.assertEqual(result, digest(b"Hello, World!"))

    def test_two_blocks_one_round(self):
        padded = pad(b"x" * 70)
        with MD5Formula(padded, num_rounds=1) as formula:
            sat, (message, result) = formula.solve()
        self.assertTrue(sat)
        self.assertEqual(message, padded)
        self.assertEqual(result, reduced_digest(padded, 1))

    def test_wrong_target_is_unsat(self):
        padded = pad(b"abc")
        target = bytearray(digest(b"abc"))
        target[0] ^= 1
        with MD5Formula(padded, target_digest=bytes(target)) as formula:
            self.assertEqual(formula.solve(), (False, None))

    def test_flipped_bit_changes_message(self):
        padded = pad(b"abc")
        with MD5Formula(padded, flipped_bits=[0]) as formula:
            sat, (message, result) = formula.solve()
        self.assertTrue(sat)
        self.assertEqual(message, b"`bc" + padded[3:])
        self.assertEqual(result, digest(b"`bc"))

    def test_solve_twice_gives_same_result(self):
        padded = pad(b"abc")
        with MD5Formula(padded) as formula:
            first = formula.solve()
            second = formula.solve()
        self.assertEqual(first, second)
        self.assertEqual(second[1][1], digest(b"abc"))

    def test_solve_twice_with_target(self):
        padded = pad(b"abc")
        with MD5Formula(padded, target_digest=digest(b"abc")) as formula:
            self.assertTrue(formula.solve()[0])
            sat, (message, result) = formula.solve()
        self.assertTrue(sat)
        self.assertEqual(message, padded)
        self.assertEqual(result, digest(b"abc"))

    def test_interrupted_solve_returns_unsat(self):
        padded = pad(b"interrupt me, please")
        target = bytes(16)
        with MD5Formula(padded, free_bits=range(128), target_digest=target) as formula:
            formula.encode()
            timer = Timer(0.5, formula.interrupt)
            timer.start()
            try:
                result = formula.solve()
            finally:
                timer.cancel()
        self.assertEqual(result, (False, None))

    def test_free_and_flipped_bits_must_not_overlap(self):
        with self.assertRaises(AssertionError):
            MD5Formula(pad(b"abc"), free_bits=[3], flipped_bits=[3, 4])

    def test_bit_index_out_of_range(self):
        with self.assertRaises(AssertionError):
            MD5Formula(pad(b"abc"), free_bits=[512])
        with self.assertRaises(AssertionError):
            MD5Formula(pad(b"abc"), flipped_bits=[-1])

    def test_reduced_round_preimage_with_free_bits(self):
        padded = pad(b"preimage")
        target = reduced_digest(padded, 1)
        with MD5Formula(padded, free_bits=range(8), target_digest=target,
                        num_rounds=1) as formula:
            sat, (message, result) = formula.solve()
        self.assertTrue(sat)
        self.assertEqual(result, target)
        self.assertEqual(message[1:], padded[1:])
        self.assertEqual(reduced_digest(message, 1), target)


if __name__ == "__main__":
    unittest.main(verbosity=1)
