import asyncio

from courier.core.settings import Settings
from courier.runtime import CourierRuntime
from courier.scheduler.builtin import JobName


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, DATABASE_URL="sqlite+pysqlite:///:memory:", **overrides)


def test_build_wires_components_and_builtin_jobs(adapter, clock):
    runtime = CourierRuntime.build(_settings(QUEUE_CONCURRENCY="4"), adapter=adapter, clock=clock)

    assert runtime.queue.concurrency_limit == 4
    assert runtime.queue.adapter is adapter
    assert {job.id for job in runtime.scheduler.get_jobs()} == {name.value for name in JobName}
    assert runtime.admin.queue is runtime.queue
    runtime.engine.dispose()


def test_start_and_stop(adapter, clock):
    runtime = CourierRuntime.build(_settings(), adapter=adapter, clock=clock)

    async def scenario():
        await runtime.start()
        health = runtime.health()
        await runtime.stop()
        return health

    health = asyncio.run(scenario())

    assert health == {"status": "ok", "queue_running": True, "scheduler_running": True, "error": None}
    assert runtime.queue.is_running is False
    assert runtime.scheduler.is_running is False
    runtime.engine.dispose()


def test_configuration_error_leaves_subsystem_stopped(adapter, clock):
    adapter.config_error = "RESEND_API_KEY is not configured"
    runtime = CourierRuntime.build(_settings(), adapter=adapter, clock=clock)

    asyncio.run(runtime.start())

    assert runtime.health()["status"] == "degraded"
    assert runtime.startup_error == "RESEND_API_KEY is not configured"
    assert runtime.scheduler.is_running is False
    runtime.engine.dispose()


def test_builtin_job_batches_flow_into_queue(adapter, clock):
    from courier.queue.models import Notification, Recipient

    def builder():
        return [
            Notification(
                type="inventory_reminder",
                recipient=Recipient("store@example.com"),
                subject="Inventory count due",
                body_html="<p>Please submit</p>",
            )
        ]

    runtime = CourierRuntime.build(
        _settings(), adapter=adapter, clock=clock, batch_builders={JobName.MONTHLY_REMINDERS: builder}
    )

    async def scenario():
        run = await runtime.scheduler.run_manually(JobName.MONTHLY_REMINDERS.value)
        await runtime.queue.tick()
        await runtime.queue.join()
        return run

    run = asyncio.run(scenario())

    assert run.success is True
    assert adapter.calls == ["store@example.com"]
    assert runtime.queue.get_stats()["total_sent"] == 1
    runtime.engine.dispose()
