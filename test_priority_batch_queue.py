import asyncio
import unittest
from unittest.mock import AsyncMock, call, patch

from fake_membership import FakeMembership, fast_settings
from rolebatch.controllers.priority_queue import PriorityBatchQueue
from rolebatch.controllers.queue_handlers import build_default_handlers
from rolebatch.core.retry import BackoffRetrier
from rolebatch.models.mutation import Direction, MutationRequest, OperationKind, OperationResult, QueueKey

GRANTS = QueueKey(OperationKind.TAG_GRANT, "g1")


class _RecordingHandler:
    def __init__(self):
        self.batches = []

    async def __call__(self, key, batch):
        self.batches.append([r.principal_id for r in batch])
        return [OperationResult(r.principal_id, True) for r in batch]


def _request(principal_id, priority=0, caller_id=None):
    return MutationRequest(principal_id=principal_id, tag="VIP", priority=priority, caller_id=caller_id)


class TestPriorityBatchQueue(unittest.TestCase):
    def test_drains_in_priority_order_with_fifo_ties(self):
        async def run():
            handler = _RecordingHandler()
            queue = PriorityBatchQueue(
                {OperationKind.TAG_GRANT: handler},
                settings=fast_settings(batch_sizes={"tagGrant": 10}),
            )

            for pid, priority in [("a", 1), ("b", 5), ("c", 1), ("d", 3)]:
                self.assertTrue(await queue.enqueue(GRANTS, _request(pid, priority)))
            await queue.wait_idle(GRANTS)

            self.assertEqual(handler.batches, [["b", "d", "a", "c"]])

        asyncio.run(run())

    def test_slices_batches_and_pauses_between_them(self):
        async def run():
            handler = _RecordingHandler()
            queue = PriorityBatchQueue(
                {OperationKind.TAG_GRANT: handler},
                settings=fast_settings(batch_sizes={"tagGrant": 2}, batch_delays_ms={"tagGrant": 100}),
            )

            with patch("rolebatch.controllers.priority_queue.delay", new_callable=AsyncMock) as delay_mock:
                for pid in "abcde":
                    await queue.enqueue(GRANTS, _request(pid))
                await queue.wait_idle()

            self.assertEqual(handler.batches, [["a", "b"], ["c", "d"], ["e"]])
            self.assertEqual(delay_mock.await_args_list, [call(100), call(100)])

        asyncio.run(run())

    def test_default_mutation_batch_size_is_five(self):
        async def run():
            handler = _RecordingHandler()
            queue = PriorityBatchQueue({OperationKind.TAG_GRANT: handler}, settings=fast_settings())

            for i in range(7):
                await queue.enqueue(GRANTS, _request(f"u{i}"))
            await queue.wait_idle()

            self.assertEqual([len(b) for b in handler.batches], [5, 2])

        asyncio.run(run())

    def test_priority_function_ranks_callers(self):
        async def run():
            handler = _RecordingHandler()
            priorities = {"core-member": 10, "regular": 1}

            async def priority_fn(caller_id):
                return priorities[caller_id]

            queue = PriorityBatchQueue(
                {OperationKind.TAG_GRANT: handler},
                settings=fast_settings(batch_sizes={"tagGrant": 10}),
                priority_fn=priority_fn,
            )

            await queue.enqueue(GRANTS, _request("a", caller_id="regular"))
            await queue.enqueue(GRANTS, _request("b", caller_id="core-member"))
            await queue.enqueue(GRANTS, _request("c", caller_id="unknown"))
            await queue.wait_idle()

            # Unknown caller: priority function raised, falls back to 0.
            self.assertEqual(handler.batches, [["b", "a", "c"]])

        asyncio.run(run())

    def test_explicit_priority_skips_priority_function(self):
        async def run():
            priority_fn = AsyncMock(return_value=1)
            queue = PriorityBatchQueue(
                {OperationKind.TAG_GRANT: _RecordingHandler()},
                settings=fast_settings(),
                priority_fn=priority_fn,
            )

            await queue.enqueue(GRANTS, _request("a", priority=7))
            await queue.enqueue(GRANTS, _request("b"))
            await queue.wait_idle()

            priority_fn.assert_awaited_once_with("b")

        asyncio.run(run())

    def test_in_flight_batch_is_not_preempted(self):
        async def run():
            started = asyncio.Event()
            release = asyncio.Event()
            order = []

            async def handler(key, batch):
                order.extend(r.principal_id for r in batch)
                if not started.is_set():
                    started.set()
                    await release.wait()
                return [OperationResult(r.principal_id, True) for r in batch]

            queue = PriorityBatchQueue(
                {OperationKind.TAG_GRANT: handler},
                settings=fast_settings(batch_sizes={"tagGrant": 1}),
            )

            await queue.enqueue(GRANTS, _request("a", 1))
            await queue.enqueue(GRANTS, _request("b", 1))
            await started.wait()
            await queue.enqueue(GRANTS, _request("urgent", 9))
            release.set()
            await queue.wait_idle()

            self.assertEqual(order, ["a", "urgent", "b"])

        asyncio.run(run())

    def test_one_drain_loop_per_key_and_restart_after_idle(self):
        async def run():
            handler = _RecordingHandler()
            queue = PriorityBatchQueue(
                {OperationKind.TAG_GRANT: handler, OperationKind.TAG_REVOKE: handler},
                settings=fast_settings(),
            )
            revokes = QueueKey(OperationKind.TAG_REVOKE, "g1")

            await queue.enqueue(GRANTS, _request("a"))
            first_task = queue._keys[GRANTS].task
            await queue.enqueue(GRANTS, _request("b"))
            self.assertIs(queue._keys[GRANTS].task, first_task)

            await queue.enqueue(revokes, _request("c"))
            self.assertIsNot(queue._keys[revokes].task, first_task)
            self.assertTrue(queue.is_draining(GRANTS))
            self.assertTrue(queue.is_draining(revokes))

            await queue.wait_idle()
            self.assertFalse(queue.is_draining(GRANTS))

            await queue.enqueue(GRANTS, _request("d"))
            await queue.wait_idle(GRANTS)

            self.assertEqual(sorted(handler.batches), [["a", "b"], ["c"], ["d"]])

        asyncio.run(run())

    def test_handler_error_does_not_stop_the_drain_loop(self):
        async def run():
            handler = AsyncMock(
                side_effect=[
                    RuntimeError("gateway closed"),
                    [OperationResult("c", True), OperationResult("d", False, "Missing Access")],
                ]
            )
            queue = PriorityBatchQueue(
                {OperationKind.TAG_GRANT: handler},
                settings=fast_settings(batch_sizes={"tagGrant": 2}),
            )

            for pid in "abcd":
                await queue.enqueue(GRANTS, _request(pid))
            with self.assertLogs("rolebatch.queue", level="ERROR"):
                await queue.wait_idle()

            self.assertEqual(handler.await_count, 2)
            self.assertEqual(
                queue.get_stats(),
                {"tagGrant:g1": {"queued": 0, "processing": False, "processed": 4, "failed": 3}},
            )

        asyncio.run(run())

    def test_clear_drops_queued_items(self):
        async def run():
            handler = _RecordingHandler()
            queue = PriorityBatchQueue({OperationKind.TAG_GRANT: handler}, settings=fast_settings())

            await queue.enqueue(GRANTS, _request("a"))
            self.assertEqual(queue.get_stats()["tagGrant:g1"]["queued"], 1)
            queue.clear()
            await queue.wait_idle()

            self.assertEqual(handler.batches, [])

        asyncio.run(run())

    def test_kind_must_match_the_queue_key(self):
        async def run():
            handler = _RecordingHandler()
            queue = PriorityBatchQueue(
                {OperationKind.TAG_GRANT: handler, OperationKind.TAG_REVOKE: handler},
                settings=fast_settings(),
            )
            revoke = MutationRequest("u1", "VIP", Direction.REVOKE)

            with self.assertRaises(ValueError):
                await queue.enqueue(GRANTS, revoke, OperationKind.TAG_REVOKE)
            self.assertEqual(queue.get_stats(), {})

            self.assertTrue(await queue.enqueue(GRANTS, _request("u2"), OperationKind.TAG_GRANT))
            await queue.wait_idle()
            self.assertEqual(handler.batches, [["u2"]])

        asyncio.run(run())

    def test_mutation_handler_refuses_items_of_the_other_direction(self):
        async def run():
            fake = FakeMembership({"u1": {"VIP"}, "u2": set()})
            handlers = build_default_handlers(fake, fake, BackoffRetrier(fast_settings()))
            queue = PriorityBatchQueue(handlers, settings=fast_settings())

            await queue.enqueue(GRANTS, MutationRequest("u1", "VIP", Direction.REVOKE))
            with self.assertLogs("rolebatch.queue", level="ERROR"):
                await queue.wait_idle()
            await queue.enqueue(GRANTS, MutationRequest("u2", "VIP", Direction.GRANT))
            await queue.wait_idle()

            self.assertEqual(fake.calls, ["grant"])
            self.assertEqual(fake.grant_mock.await_args_list[0].args[1], [("u2", "VIP")])
            self.assertEqual(fake.tags["u1"], {"VIP"})
            self.assertEqual(queue.get_stats()["tagGrant:g1"]["failed"], 1)

        asyncio.run(run())

    def test_unknown_kind_is_rejected(self):
        async def run():
            queue = PriorityBatchQueue({OperationKind.TAG_GRANT: _RecordingHandler()}, settings=fast_settings())
            with self.assertRaises(ValueError):
                await queue.enqueue(QueueKey(OperationKind.PRINCIPAL_FETCH, "g1"), _request("a"))

        asyncio.run(run())


if __name__ == "__main__":
    unittest.main()
