"""Tests for the queue listener loop."""

import asyncio

import pytest

from src.experiment import ExperimentRunner
from src.listener import DEFAULT_POLL_INTERVAL, QueueListener
from src.messaging import InMemoryQueue


@pytest.fixture
def queue() -> InMemoryQueue:
    return InMemoryQueue()


@pytest.fixture
def listener(queue, storage, small_config) -> QueueListener:
    return QueueListener(queue, ExperimentRunner(storage, small_config), storage)


class TestRunOnce:
    """Tests for handling a single message."""

    def test_empty_queue(self, listener: QueueListener) -> None:
        assert asyncio.run(listener.run_once()) is False
        assert listener.messages_processed == 0

    def test_successful_message_is_deleted(
        self, listener: QueueListener, queue: InMemoryQueue, storage, request_message: dict
    ) -> None:
        del request_message["ScalarEncoderAQI"]
        del request_message["DateTimeDataRow"]
        queue.send(request_message)

        assert asyncio.run(listener.run_once()) is True

        assert queue.approximate_count == 0
        assert listener.messages_processed == 1
        (result,) = storage.results
        assert result.experiment_id == "exp-42"
        assert result.test_name == "SDR to Bitmap"

    def test_message_without_experiment_id(
        self, listener: QueueListener, queue: InMemoryQueue, storage
    ) -> None:
        """A missing ExperimentId is replaced by a timestamp id."""
        queue.send({"InputFile": "runccproject", "Value1": "5"})

        asyncio.run(listener.run_once())

        assert queue.approximate_count == 0
        (result,) = storage.results
        assert result.experiment_id.isdigit()
        assert len(result.experiment_id) == 17

    def test_stage_failures_still_delete(
        self, listener: QueueListener, queue: InMemoryQueue, storage
    ) -> None:
        """Failed stages are part of the result; the message is still consumed."""
        queue.send({"ExperimentId": "e", "InputFile": "f", "DateTimeDataRow": "missing.json"})

        asyncio.run(listener.run_once())

        assert queue.approximate_count == 0
        assert storage.results[0].failed_stages

    @pytest.mark.parametrize(
        "body",
        [b"{not json", b'{"Name": "no id"}', b"\xff\xfe", b"[]"],
    )
    def test_malformed_message_is_left_in_queue(
        self, listener: QueueListener, queue: InMemoryQueue, storage, body: bytes
    ) -> None:
        queue.send(body)

        assert asyncio.run(listener.run_once()) is True

        assert queue.approximate_count == 1
        assert listener.messages_failed == 1
        assert storage.results == []

    def test_malformed_message_is_redelivered(
        self, listener: QueueListener, queue: InMemoryQueue
    ) -> None:
        queue.send(b"{not json")

        async def scenario() -> None:
            await listener.run_once()
            queue.release_unacknowledged()
            await listener.run_once()

        asyncio.run(scenario())
        assert listener.messages_failed == 2
        assert queue.approximate_count == 1

    def test_receive_error_is_logged(
        self, storage, small_config, caplog: pytest.LogCaptureFixture
    ) -> None:
        class BrokenQueue:
            async def receive_message(self):
                raise OSError("connection reset")

            async def delete_message(self, message_id, pop_receipt):
                raise AssertionError("not reached")

        listener = QueueListener(BrokenQueue(), ExperimentRunner(storage, small_config), storage)
        assert asyncio.run(listener.run_once()) is False
        assert "connection reset" in caplog.text


class TestRun:
    """Tests for the polling loop."""

    def test_default_poll_interval(self, listener: QueueListener) -> None:
        assert listener.poll_interval == DEFAULT_POLL_INTERVAL == 0.5

    def test_sleeps_between_empty_polls(
        self, listener: QueueListener, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        delays: list[float] = []
        stop_event = None

        async def fake_sleep(delay: float) -> None:
            delays.append(delay)
            if len(delays) == 3:
                stop_event.set()

        monkeypatch.setattr("src.listener.asyncio.sleep", fake_sleep)

        async def scenario() -> None:
            nonlocal stop_event
            stop_event = asyncio.Event()
            await listener.run(stop_event)

        asyncio.run(scenario())
        assert delays == [0.5, 0.5, 0.5]

    def test_drains_queue_then_stops(
        self,
        listener: QueueListener,
        queue: InMemoryQueue,
        storage,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        for index in range(3):
            queue.send({"ExperimentId": f"e{index}", "InputFile": "f", "Value1": str(index)})
        stop_event = None

        async def fake_sleep(delay: float) -> None:
            stop_event.set()

        monkeypatch.setattr("src.listener.asyncio.sleep", fake_sleep)

        async def scenario() -> None:
            nonlocal stop_event
            stop_event = asyncio.Event()
            await listener.run(stop_event)

        asyncio.run(scenario())
        assert [result.experiment_id for result in storage.results] == ["e0", "e1", "e2"]
        assert queue.approximate_count == 0

    def test_in_flight_message_completes_after_stop(
        self, queue: InMemoryQueue, storage, small_config
    ) -> None:
        """Setting the stop event mid-message does not abandon the message."""

        class StoppingRunner(ExperimentRunner):
            async def process(self, request):
                stop_event.set()
                return await super().process(request)

        stop_event = None
        listener = QueueListener(queue, StoppingRunner(storage, small_config), storage)
        queue.send({"ExperimentId": "e", "InputFile": "f", "Value1": "9"})
        queue.send({"ExperimentId": "never", "InputFile": "f"})

        async def scenario() -> None:
            nonlocal stop_event
            stop_event = asyncio.Event()
            await listener.run(stop_event)

        asyncio.run(scenario())
        assert [result.experiment_id for result in storage.results] == ["e"]
        assert queue.approximate_count == 1

    def test_stop_before_start(self, listener: QueueListener, queue: InMemoryQueue) -> None:
        queue.send({"ExperimentId": "e", "InputFile": "f"})

        async def scenario() -> None:
            stop_event = asyncio.Event()
            stop_event.set()
            await listener.run(stop_event)

        asyncio.run(scenario())
        assert listener.messages_processed == 0
        assert queue.approximate_count == 1
