# tests/test_refinement_queue.py

"""Tests for the single-flight refinement queue."""

import asyncio
import unittest

from src.services.refinement_queue import RefinementQueue


class TestRefinementQueue(unittest.IsolatedAsyncioTestCase):

    async def test_single_flight_per_snapshot(self) -> None:
        """A second submit for a running snapshot is refused."""
        queue = RefinementQueue()
        gate = asyncio.Event()
        runs: list[str] = []

        async def job() -> None:
            runs.append("run")
            await gate.wait()

        self.assertTrue(queue.submit("s1", job))
        self.assertFalse(queue.submit("s1", job))
        self.assertTrue(queue.is_in_flight("s1"))
        self.assertTrue(queue.submit("s2", job))

        gate.set()
        await queue.drain()

        self.assertEqual(len(runs), 2)
        self.assertFalse(queue.is_in_flight("s1"))
        self.assertEqual(
            sorted(j.snapshot_id for j in queue.history), ["s1", "s2"]
        )
        self.assertTrue(all(j.status == "done" for j in queue.history))

    async def test_resubmit_after_completion(self) -> None:
        """A finished snapshot can be queued again."""
        queue = RefinementQueue()

        async def job() -> None:
            return None

        queue.submit("s1", job)
        await queue.drain()
        self.assertTrue(queue.submit("s1", job))
        await queue.drain()
        self.assertEqual(len(queue.history), 2)

    async def test_failure_logged_not_raised(self) -> None:
        """Job errors are logged and recorded, never raised."""
        queue = RefinementQueue(clock=lambda: 42.0)
        attempts = 0

        async def job() -> None:
            nonlocal attempts
            attempts += 1
            raise RuntimeError("calibration store offline")

        with self.assertLogs("pageone.refinement", level="ERROR") as logs:
            queue.submit("s1", job)
            await queue.drain()

        self.assertEqual(attempts, 1)
        self.assertIn("Refinement of s1 failed", logs.output[0])
        self.assertEqual(queue.history[0].status, "failed")
        self.assertEqual(queue.history[0].started_at, 42.0)


if __name__ == "__main__":
    unittest.main()
