import unittest

from interfaces.discord.handlers import MESSAGE_LIMIT, _chunk_lines


class ChunkLinesTests(unittest.TestCase):
    def test_short_listing_is_a_single_message(self):
        self.assertEqual(_chunk_lines(["a", "b", "c"]), ["a\nb\nc"])

    def test_many_positions_are_split_under_the_message_limit(self):
        lines = [f"{i:032x}: 100.00 (30d, locked until 2026-01-01 00:00 UTC), earned 0.1234" for i in range(60)]

        messages = _chunk_lines(lines)

        self.assertGreater(len(messages), 1)
        self.assertTrue(all(len(m) <= MESSAGE_LIMIT for m in messages))
        self.assertEqual("\n".join(messages).split("\n"), lines)

    def test_oversized_line_is_truncated(self):
        [message] = _chunk_lines(["x" * (MESSAGE_LIMIT + 50)])
        self.assertEqual(len(message), MESSAGE_LIMIT)


if __name__ == "__main__":
    unittest.main()
