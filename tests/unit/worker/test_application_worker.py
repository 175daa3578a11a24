"""
Tests for the per-application worker state machine.

Tests config caching, authentication, file lifecycle and the
serialized processing loop.
"""

import asyncio
import shutil
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from logsink.config import WorkerSettings
from logsink.core.config_store import ConfigStore
from logsink.core.exceptions import LogFileError
from logsink.core.worker import ApplicationWorker, FlushCommand
from logsink.models.log_item import StatusKind


@pytest.fixture
def make_worker(config_store: ConfigStore, log_root: Path, worker_settings: WorkerSettings, clock):
    """Build a worker on the fake clock."""

    def _make(appname: str = "demo", settings: WorkerSettings = None) -> ApplicationWorker:
        worker = ApplicationWorker(
            appname=appname,
            config_store=config_store,
            log_root=log_root,
            settings=settings or worker_settings,
            clock=clock,
        )
        return worker

    return _make


class TestEndToEnd:
    """The basic request outcomes."""

    @pytest.mark.asyncio
    async def test_valid_batch_is_written(self, make_worker, make_request, demo_config, log_root, read_log_lines) -> None:
        """Correct token appends one line with a servertime."""
        worker = make_worker("demo")

        result = await worker.handle(make_request("demo", "abc", ["hello"]))
        await worker.logfile.close()

        assert result.status is StatusKind.OK
        assert result.message == "OK"
        lines = read_log_lines(log_root / "demo")
        assert len(lines) == 1
        assert lines[0]["message"] == "hello"
        assert lines[0]["servertime"] == "2026-10-19T08:00:00.000Z"

    @pytest.mark.asyncio
    async def test_wrong_token(self, make_worker, make_request, demo_config, log_root) -> None:
        """Wrong token is UNAUTHORIZED and no log file is created."""
        worker = make_worker("demo")

        result = await worker.handle(make_request("demo", "wrong", ["hello"]))

        assert result.status is StatusKind.UNAUTHORIZED
        assert result.message == "Invalid token"
        assert not worker.logfile.is_open
        assert list((log_root / "demo").glob("*.log")) == []

    @pytest.mark.asyncio
    async def test_empty_secret_never_matches(self, make_worker, make_request, write_config) -> None:
        write_config("nosecret", app="No Secret")
        worker = make_worker("nosecret")

        result = await worker.handle(make_request("nosecret", "", ["hello"]))

        assert result.status is StatusKind.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_missing_config(self, make_worker, make_request, log_root) -> None:
        """No config record is NOT_FOUND and touches no files."""
        worker = make_worker("ghost")

        result = await worker.handle(make_request("ghost", "abc", ["hello"]))

        assert result.status is StatusKind.NOT_FOUND
        assert result.message == "Logger not configured"
        assert worker.configured is False
        assert list(log_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_custom_dir(self, make_worker, make_request, write_config, log_root, read_log_lines) -> None:
        write_config("demo", dir="frontend", secret="abc")
        worker = make_worker("demo")

        await worker.handle(make_request("demo", "abc", ["hello"]))
        await worker.logfile.close()

        assert len(read_log_lines(log_root / "frontend")) == 1
        assert not (log_root / "demo").exists()


class TestConfigCache:
    """Config is read at most once per cache interval."""

    @pytest.mark.asyncio
    async def test_cached_within_interval(self, make_worker, make_request, write_config, clock) -> None:
        """A changed record is not seen until the interval elapses."""
        write_config("demo", secret="abc")
        worker = make_worker("demo")

        with patch.object(worker.config_store, "load", wraps=worker.config_store.load) as spy:
            assert (await worker.handle(make_request("demo", "abc"))).status is StatusKind.OK

            write_config("demo", secret="new")
            clock.advance(59)
            assert (await worker.handle(make_request("demo", "abc"))).status is StatusKind.OK
            assert spy.call_count == 1

            clock.advance(1)
            assert (await worker.handle(make_request("demo", "abc"))).status is StatusKind.UNAUTHORIZED
            assert (await worker.handle(make_request("demo", "new"))).status is StatusKind.OK
            assert spy.call_count == 2

    @pytest.mark.asyncio
    async def test_lost_config_keeps_cached_value(self, make_worker, make_request, demo_config, clock) -> None:
        """Failed reload marks unconfigured but keeps the last good config."""
        worker = make_worker("demo")
        await worker.handle(make_request("demo", "abc"))

        demo_config.unlink()
        clock.advance(60)
        result = await worker.handle(make_request("demo", "abc"))

        assert result.status is StatusKind.NOT_FOUND
        assert worker.configured is False
        assert worker.config is not None
        assert worker.config.secret == "abc"

    @pytest.mark.asyncio
    async def test_unparseable_config(self, make_worker, make_request, config_dir) -> None:
        (config_dir / "broken.json").write_text("{not json")
        worker = make_worker("broken")

        result = await worker.handle(make_request("broken", "abc", ["hello"]))

        assert result.status is StatusKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_dir_change_closes_open_file(self, make_worker, make_request, write_config, clock, log_root, read_log_lines) -> None:
        """A new dir closes the current file and writes go to the new dir."""
        write_config("demo", dir="one", secret="abc")
        worker = make_worker("demo")
        await worker.handle(make_request("demo", "abc", ["first"]))
        assert worker.logfile.is_open

        write_config("demo", dir="two", secret="abc")
        clock.advance(60)
        await worker.handle(make_request("demo", "abc", ["second"]))
        await worker.logfile.close()

        assert [line["message"] for line in read_log_lines(log_root / "one")] == ["first"]
        assert [line["message"] for line in read_log_lines(log_root / "two")] == ["second"]

    @pytest.mark.asyncio
    async def test_obstructed_directory(self, make_worker, make_request, write_config, clock, log_root) -> None:
        """
        A file where the log dir should be keeps the app NOT_FOUND until it
        is removed and the cache interval elapses.
        """
        write_config("flaky", secret="abc")
        obstruction = log_root / "flaky"
        obstruction.write_text("in the way")
        worker = make_worker("flaky")

        first = await worker.handle(make_request("flaky", "abc", ["hello"]))
        assert first.status is StatusKind.NOT_FOUND
        assert worker.configured is False

        obstruction.unlink()
        clock.advance(30)
        second = await worker.handle(make_request("flaky", "abc", ["hello"]))
        assert second.status is StatusKind.NOT_FOUND

        clock.advance(30)
        third = await worker.handle(make_request("flaky", "abc", ["hello"]))
        assert third.status is StatusKind.OK
        assert (log_root / "flaky").is_dir()
        await worker.logfile.close()


class TestFileLifecycle:
    """Rotation, flushing and error-triggered reopen."""

    @pytest.mark.asyncio
    async def test_empty_batch_does_no_file_io(self, make_worker, make_request, demo_config, log_root) -> None:
        """Zero items succeed without opening a file."""
        worker = make_worker("demo")

        with patch.object(worker.logfile, "open", new_callable=AsyncMock) as mock_open:
            result = await worker.handle(make_request("demo", "abc", []))

        assert result.status is StatusKind.OK
        mock_open.assert_not_awaited()
        assert not worker.logfile.is_open
        assert list((log_root / "demo").glob("*.log")) == []

    @pytest.mark.asyncio
    async def test_items_written_in_order(self, make_worker, make_request, demo_config, log_root, read_log_lines) -> None:
        worker = make_worker("demo")

        await worker.handle(make_request("demo", "abc", ["one", "two", "three"]))
        await worker.logfile.close()

        assert [line["message"] for line in read_log_lines(log_root / "demo")] == ["one", "two", "three"]

    @pytest.mark.asyncio
    async def test_rotation_opens_new_file(self, make_worker, make_request, demo_config, clock, log_root) -> None:
        """After 24h the old file is closed and the next write opens a new one."""
        worker = make_worker("demo")
        await worker.handle(make_request("demo", "abc", ["day one"]))
        first_path = worker.logfile.path

        clock.advance(24 * 3600)
        await worker.handle(make_request("demo", "abc", ["day two"]))
        second_path = worker.logfile.path
        await worker.logfile.close()

        assert first_path != second_path
        assert first_path.read_text().count("\n") == 1
        assert "day one" in first_path.read_text()
        assert "day two" in second_path.read_text()
        assert len(list((log_root / "demo").glob("*.log"))) == 2

    @pytest.mark.asyncio
    async def test_no_rotation_before_interval(self, make_worker, make_request, demo_config, clock) -> None:
        worker = make_worker("demo")
        await worker.handle(make_request("demo", "abc", ["one"]))
        first_path = worker.logfile.path

        clock.advance(23 * 3600)
        await worker.handle(make_request("demo", "abc", ["two"]))

        assert worker.logfile.path == first_path
        await worker.logfile.close()

    @pytest.mark.asyncio
    async def test_flush_after_interval(self, make_worker, make_request, demo_config, clock) -> None:
        """Dirty data is fsynced by the first request 30s after the write."""
        worker = make_worker("demo")
        await worker.handle(make_request("demo", "abc", ["hello"]))
        assert worker.logfile.needs_flush is True

        clock.advance(29)
        await worker.handle(make_request("demo", "abc", []))
        assert worker.logfile.needs_flush is True

        clock.advance(1)
        await worker.handle(make_request("demo", "abc", []))
        assert worker.logfile.needs_flush is False
        assert worker.logfile.is_open
        await worker.logfile.close()

    @pytest.mark.asyncio
    async def test_open_failure(self, make_worker, make_request, demo_config) -> None:
        """A failing open is INTERNAL_ERROR and consumes no items."""
        worker = make_worker("demo")
        failing_open = AsyncMock(side_effect=LogFileError("Could not create logfile"))

        with patch.object(worker.logfile, "open", failing_open):
            result = await worker.handle(make_request("demo", "abc", ["hello"]))

        assert result.status is StatusKind.INTERNAL_ERROR
        assert result.message == "Could not create logfile"

    @pytest.mark.asyncio
    async def test_deleted_log_dir_is_recreated(self, make_worker, make_request, demo_config, log_root, read_log_lines) -> None:
        worker = make_worker("demo")
        await worker.handle(make_request("demo", "abc", []))
        shutil.rmtree(log_root / "demo")

        result = await worker.handle(make_request("demo", "abc", ["hello"]))
        await worker.logfile.close()

        assert result.status is StatusKind.OK
        assert len(read_log_lines(log_root / "demo")) == 1

    @pytest.mark.asyncio
    async def test_mid_batch_failure(self, make_worker, make_request, demo_config, log_root, read_log_lines) -> None:
        """
        The first failing item aborts the batch; earlier items stay written
        and the next batch opens a fresh handle.
        """
        worker = make_worker("demo")
        real_write = worker.logfile.write_item
        calls = 0

        async def flaky_write(item):
            nonlocal calls
            calls += 1
            if calls == 2:
                real_file = worker.logfile._file
                await real_file.close()
                broken = MagicMock()
                broken.write = AsyncMock(side_effect=OSError("No space left on device"))
                broken.close = AsyncMock()
                worker.logfile._file = broken
            await real_write(item)

        with patch.object(worker.logfile, "write_item", flaky_write):
            result = await worker.handle(make_request("demo", "abc", ["one", "two", "three"]))

        assert result.status is StatusKind.INTERNAL_ERROR
        assert result.message == "Could not write logfile"
        assert not worker.logfile.is_open
        assert [line["message"] for line in read_log_lines(log_root / "demo")] == ["one"]

        retry = await worker.handle(make_request("demo", "abc", ["four"]))
        await worker.logfile.close()

        assert retry.status is StatusKind.OK
        assert [line["message"] for line in read_log_lines(log_root / "demo")] == ["one", "four"]


class TestProcessingLoop:
    """The worker task processes its queue one message at a time."""

    @pytest.mark.asyncio
    async def test_requests_processed_in_order(self, config_store, log_root, demo_config, make_request, read_log_lines) -> None:
        """Concurrently queued requests produce sequential, ordered writes."""
        worker = ApplicationWorker("demo", config_store, log_root, WorkerSettings())
        worker.start()

        requests = [make_request("demo", "abc", [f"message {i}"]) for i in range(20)]
        await asyncio.gather(*(worker.enqueue(request) for request in requests))
        results = await asyncio.gather(*(request.reply for request in requests))
        await worker.stop()

        assert all(result.status is StatusKind.OK for result in results)
        lines = read_log_lines(log_root / "demo")
        assert [line["message"] for line in lines] == [f"message {i}" for i in range(20)]
        servertimes = [line["servertime"] for line in lines]
        assert servertimes == sorted(servertimes)

    @pytest.mark.asyncio
    async def test_stop_closes_file(self, config_store, log_root, demo_config, make_request) -> None:
        worker = ApplicationWorker("demo", config_store, log_root, WorkerSettings())
        worker.start()
        request = make_request("demo", "abc", ["hello"])
        await worker.enqueue(request)
        await request.reply

        await worker.stop()

        assert not worker.running
        assert not worker.logfile.is_open

    @pytest.mark.asyncio
    async def test_flush_command(self, config_store, log_root, demo_config, make_request) -> None:
        """A FlushCommand fsyncs dirty data immediately."""
        worker = ApplicationWorker("demo", config_store, log_root, WorkerSettings())
        worker.start()
        request = make_request("demo", "abc", ["hello"])
        await worker.enqueue(request)
        await request.reply

        reply = asyncio.get_running_loop().create_future()
        await worker.enqueue(FlushCommand(reply=reply))

        assert await reply is True
        assert worker.logfile.needs_flush is False
        await worker.stop()

    @pytest.mark.asyncio
    async def test_idle_housekeeping_flushes(self, config_store, log_root, demo_config, make_request) -> None:
        """An idle worker fsyncs dirty data without further requests."""
        settings = WorkerSettings(flush_interval_seconds=0.05)
        worker = ApplicationWorker("demo", config_store, log_root, settings)
        worker.start()
        request = make_request("demo", "abc", ["hello"])
        await worker.enqueue(request)
        await request.reply

        for _ in range(50):
            if not worker.logfile.needs_flush:
                break
            await asyncio.sleep(0.05)

        assert worker.logfile.needs_flush is False
        await worker.stop()

    @pytest.mark.asyncio
    async def test_abandoned_caller(self, config_store, log_root, demo_config, make_request, read_log_lines) -> None:
        """A cancelled reply is dropped and the worker keeps going."""
        worker = ApplicationWorker("demo", config_store, log_root, WorkerSettings())
        worker.start()

        abandoned = make_request("demo", "abc", ["nobody waits"])
        abandoned.reply.cancel()
        follow_up = make_request("demo", "abc", ["next"])
        await worker.enqueue(abandoned)
        await worker.enqueue(follow_up)

        assert (await follow_up.reply).status is StatusKind.OK
        await worker.stop()
        assert [line["message"] for line in read_log_lines(log_root / "demo")] == ["nobody waits", "next"]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, config_store, log_root, demo_config, make_request) -> None:
        """A bug in one batch becomes INTERNAL_ERROR; the loop survives."""
        worker = ApplicationWorker("demo", config_store, log_root, WorkerSettings())
        worker.start()

        with patch.object(worker, "_refresh_config", AsyncMock(side_effect=RuntimeError("boom"))):
            failing = make_request("demo", "abc", ["hello"])
            await worker.enqueue(failing)
            assert (await failing.reply).status is StatusKind.INTERNAL_ERROR

        ok = make_request("demo", "abc", ["hello"])
        await worker.enqueue(ok)
        assert (await ok.reply).status is StatusKind.OK
        await worker.stop()

    @pytest.mark.asyncio
    async def test_housekeeping_error_keeps_loop_alive(self, config_store, log_root, demo_config, make_request) -> None:
        """A failing idle tick is logged and the worker keeps serving."""
        settings = WorkerSettings(flush_interval_seconds=0.02)
        worker = ApplicationWorker("demo", config_store, log_root, settings)

        with patch.object(worker, "_housekeeping", AsyncMock(side_effect=RuntimeError("boom"))) as tick:
            worker.start()
            await asyncio.sleep(0.1)

            assert tick.await_count >= 2
            assert worker.running

            request = make_request("demo", "abc", ["hello"])
            await worker.enqueue(request)
            assert (await request.reply).status is StatusKind.OK

        await worker.stop()

    @pytest.mark.asyncio
    async def test_stop_answers_requests_left_in_dead_queue(self, config_store, log_root, demo_config, make_request) -> None:
        worker = ApplicationWorker("demo", config_store, log_root, WorkerSettings())
        request = make_request("demo", "abc", ["hello"])
        await worker.enqueue(request)

        await worker.stop()

        assert request.reply.done()
        assert request.reply.result().status is StatusKind.INTERNAL_ERROR


class TestMetricsLabels:
    """Label cardinality stays bounded by configured apps."""

    @pytest.mark.asyncio
    async def test_unconfigured_app_uses_shared_label(self, make_worker, make_request) -> None:
        worker = make_worker("ghost")
        worker.metrics = MagicMock()

        await worker.handle(make_request("ghost", "abc", ["hello"]))

        worker.metrics.record_batch.assert_called_once_with("unknown", "not_found", 1, 0)
        worker.metrics.record_config_reload.assert_called_once_with("unknown", "config_not_found")

    @pytest.mark.asyncio
    async def test_configured_app_uses_appname(self, make_worker, make_request, demo_config) -> None:
        worker = make_worker("demo")
        worker.metrics = MagicMock()

        await worker.handle(make_request("demo", "abc", []))

        worker.metrics.record_batch.assert_called_once_with("demo", "ok", 0, 0)
