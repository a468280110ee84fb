"""Unit tests for centralized scan state transitions."""

import unittest

from shelfwarden.core.scan_state import ScanStateManager


class ScanStateManagerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.manager = ScanStateManager()

    async def test_register_transitions_to_running(self) -> None:
        started = await self.manager.register(rule_id=1, scan_id=10)

        self.assertIsNotNone(started)
        self.assertTrue(started.is_running)
        self.assertEqual(started.scan_id, 10)
        self.assertEqual(started.items_scanned, 0)
        self.assertIsNotNone(started.started_at)
        self.assertFalse(await self.manager.is_cancel_requested(rule_id=1))

    async def test_duplicate_register_is_rejected(self) -> None:
        first = await self.manager.register(rule_id=1, scan_id=10)
        second = await self.manager.register(rule_id=1, scan_id=11)

        self.assertIsNotNone(first)
        self.assertIsNone(second)
        self.assertEqual((await self.manager.get_progress(rule_id=1)).scan_id, 10)

    async def test_request_cancel_when_running(self) -> None:
        await self.manager.register(rule_id=1, scan_id=10)

        progress = await self.manager.request_cancel(rule_id=1)

        self.assertIsNotNone(progress)
        self.assertTrue(progress.cancel_requested)
        self.assertTrue(await self.manager.is_cancel_requested(rule_id=1))

    async def test_request_cancel_when_idle_is_ignored(self) -> None:
        self.assertIsNone(await self.manager.request_cancel(rule_id=1))
        self.assertFalse(await self.manager.is_cancel_requested(rule_id=1))

    async def test_progress_updates_and_finish(self) -> None:
        await self.manager.register(rule_id=1, scan_id=10)
        await self.manager.update_progress(
            rule_id=1, pages_fetched=2, items_scanned=400, items_flagged=7
        )

        progress = await self.manager.get_progress(rule_id=1)
        self.assertEqual(progress.pages_fetched, 2)
        self.assertEqual(progress.items_scanned, 400)
        self.assertEqual(progress.items_flagged, 7)

        await self.manager.request_cancel(rule_id=1)
        finished = await self.manager.finish(rule_id=1)
        self.assertFalse(finished.is_running)
        self.assertFalse(finished.cancel_requested)
        self.assertEqual(finished.items_flagged, 7)
        self.assertFalse(await self.manager.is_cancel_requested(rule_id=1))

    async def test_register_after_finish_starts_fresh(self) -> None:
        await self.manager.register(rule_id=1, scan_id=10)
        await self.manager.update_progress(rule_id=1, items_scanned=50)
        await self.manager.finish(rule_id=1)

        again = await self.manager.register(rule_id=1, scan_id=11)

        self.assertEqual(again.scan_id, 11)
        self.assertEqual(again.items_scanned, 0)

    async def test_returned_progress_is_a_copy(self) -> None:
        await self.manager.register(rule_id=1, scan_id=10)

        snapshot = await self.manager.get_progress(rule_id=1)
        snapshot.items_scanned = 999

        self.assertEqual((await self.manager.get_progress(rule_id=1)).items_scanned, 0)

    async def test_rule_states_are_isolated(self) -> None:
        await self.manager.register(rule_id=1, scan_id=10)

        rule_two = await self.manager.get_progress(rule_id=2)
        self.assertFalse(rule_two.is_running)

        await self.manager.request_cancel(rule_id=1)
        self.assertTrue(await self.manager.is_cancel_requested(rule_id=1))
        self.assertFalse(await self.manager.is_cancel_requested(rule_id=2))


if __name__ == "__main__":
    unittest.main()
