"""
Unit tests for project_lock.py

Tests cover:
- Non-blocking acquire / release per project id
- Independent projects do not block each other
- Only one of many concurrent acquirers wins
"""

import threading
import unittest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


class TestInMemoryProjectLock(unittest.TestCase):

    def setUp(self):
        from project_lock import InMemoryProjectLock

        self.lock = InMemoryProjectLock()

    def test_acquire_release(self):
        self.assertTrue(self.lock.try_acquire("P1"))
        self.assertTrue(self.lock.is_locked("P1"))
        self.assertFalse(self.lock.try_acquire("P1"))
        self.lock.release("P1")
        self.assertFalse(self.lock.is_locked("P1"))
        self.assertTrue(self.lock.try_acquire("P1"))

    def test_projects_are_independent(self):
        self.assertTrue(self.lock.try_acquire("P1"))
        self.assertTrue(self.lock.try_acquire("P2"))

    def test_release_unheld_is_noop(self):
        self.lock.release("never-acquired")
        self.assertFalse(self.lock.is_locked("never-acquired"))

    def test_single_winner_under_contention(self):
        winners = []
        barrier = threading.Barrier(20)

        def contender():
            barrier.wait()
            if self.lock.try_acquire("P1"):
                winners.append(threading.get_ident())

        threads = [threading.Thread(target=contender) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(winners), 1)


if __name__ == "__main__":
    unittest.main()
