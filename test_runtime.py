import asyncio
import unittest
from unittest.mock import AsyncMock, patch

from fake_membership import FakeMembership, fast_settings
from rolebatch import BatchRuntime
from rolebatch.core.events import ChunkStarted
from rolebatch.models.mutation import OperationResult


class TestBatchRuntime(unittest.TestCase):
    def test_queued_grants_and_revokes_reach_the_mutation_service(self):
        async def run():
            fake = FakeMembership({"u1": set(), "u2": {"VIP"}})
            runtime = BatchRuntime(fake, fake, settings=fast_settings())

            self.assertTrue(await runtime.grant_tag("g1", "u1", "VIP"))
            self.assertTrue(await runtime.revoke_tag("g1", "u2", "VIP", priority=3))
            await runtime.wait_idle()

            self.assertEqual(fake.tags, {"u1": {"VIP"}, "u2": set()})
            self.assertEqual(fake.grant_mock.await_args_list[0].args, ("g1", [("u1", "VIP")], "Queued tag operation"))
            stats = runtime.get_stats()
            self.assertEqual(stats["tagGrant:g1"]["processed"], 1)
            self.assertEqual(stats["tagRevoke:g1"]["failed"], 0)

        asyncio.run(run())

    def test_queued_fetch_failures_are_counted(self):
        async def run():
            fake = FakeMembership({"u1": set()}, missing={"ghost"})
            runtime = BatchRuntime(fake, fake, settings=fast_settings())

            await runtime.fetch_principal("g1", "u1")
            await runtime.fetch_principal("g1", "ghost")
            await runtime.wait_idle()

            self.assertEqual(
                runtime.get_stats()["principalFetch:g1"],
                {"queued": 0, "processing": False, "processed": 2, "failed": 1},
            )

        asyncio.run(run())

    def test_queued_rate_limit_is_retried_with_shared_retrier(self):
        async def run():
            fake = FakeMembership({"u1": set()})
            fake.grant_mock.side_effect = [
                [OperationResult("u1", False, "rate limit exceeded")],
                [OperationResult("u1", True)],
            ]
            runtime = BatchRuntime(fake, fake, settings=fast_settings())

            await runtime.grant_tag("g1", "u1", "VIP")
            await runtime.wait_idle()

            self.assertEqual(fake.grant_mock.await_count, 2)
            self.assertEqual(runtime.get_stats()["tagGrant:g1"]["failed"], 0)

        asyncio.run(run())

    def test_missing_tag_is_rejected_before_queueing(self):
        async def run():
            fake = FakeMembership()
            runtime = BatchRuntime(fake, fake, settings=fast_settings())

            with self.assertRaises(ValueError):
                await runtime.grant_tag("g1", "u1", "")
            self.assertEqual(runtime.get_stats(), {})

        asyncio.run(run())

    def test_priority_function_orders_queued_work(self):
        async def run():
            fake = FakeMembership({"a": set(), "b": set()})
            priority_fn = AsyncMock(side_effect=lambda caller: 10 if caller == "core" else 1)
            runtime = BatchRuntime(fake, fake, settings=fast_settings(), priority_fn=priority_fn)

            await runtime.grant_tag("g1", "a", "VIP", caller_id="regular")
            await runtime.grant_tag("g1", "b", "VIP", caller_id="core")
            await runtime.wait_idle()

            self.assertEqual(fake.grant_mock.await_args_list[0].args[1], [("b", "VIP"), ("a", "VIP")])

        asyncio.run(run())

    def test_execute_role_operation_runs_through_chunked_executor(self):
        async def run():
            ids = [f"u{i}" for i in range(30)]
            fake = FakeMembership({pid: set() for pid in ids})
            settings = fast_settings(large_operation_threshold=10, chunk_size=10)
            runtime = BatchRuntime(fake, fake, settings=settings)
            events = []
            runtime.events.subscribe(events.append)

            with patch("rolebatch.controllers.chunked_executor.delay", new_callable=AsyncMock) as delay_mock:
                summary = await runtime.execute_role_operation("g1", ids, "VIP", "grant", "season start")

            self.assertEqual(summary.success_count, 30)
            self.assertEqual(fake.grant_mock.await_count, 3)
            self.assertEqual(delay_mock.await_count, 2)
            self.assertEqual([e.chunk for e in events if isinstance(e, ChunkStarted)], [1, 2, 3])

        asyncio.run(run())

    def test_attach_logging_routes_events_to_run_logger(self):
        async def run():
            ids = [f"u{i}" for i in range(4)]
            fake = FakeMembership({pid: set() for pid in ids})
            runtime = BatchRuntime(fake, fake, settings=fast_settings(large_operation_threshold=2, chunk_size=2))
            unsubscribe = runtime.attach_logging()

            with patch("rolebatch.controllers.chunked_executor.delay", new_callable=AsyncMock):
                with self.assertLogs("rolebatch.runs", level="INFO") as logs:
                    await runtime.execute_role_operation("g1", ids, "VIP", "grant")

            self.assertTrue(any("ChunkCompleted" in line for line in logs.output))

            unsubscribe()
            with patch("rolebatch.controllers.chunked_executor.delay", new_callable=AsyncMock):
                with self.assertLogs("rolebatch.runs", level="INFO") as logs:
                    await runtime.execute_role_operation("g1", ids, "VIP", "revoke")
            self.assertFalse(any("ChunkCompleted" in line for line in logs.output))

        asyncio.run(run())


if __name__ == "__main__":
    unittest.main()
