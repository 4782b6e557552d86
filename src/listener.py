"""Queue listener module.

:class:`QueueListener` is the worker's main loop. It receives one message
at a time, runs the experiment it describes, uploads the result record
and only then deletes the message. Any failure leaves the message in the
queue, where the platform's visibility timeout makes it reappear; there
is no retry counter or dead-letter queue.

Cancellation is cooperative: the stop event is checked between messages,
so a message that is already being processed always runs to completion.
"""

import asyncio
import logging

from src.experiment import ExperimentRunner
from src.messaging import QueueClient, QueueMessage
from src.models import ExperimentRequest
from src.storage import StorageGateway

logger = logging.getLogger(__name__)

# Pause between polls of an empty queue, in seconds.
DEFAULT_POLL_INTERVAL: float = 0.5


class QueueListener:
    """Polls a queue and processes experiment requests sequentially."""

    def __init__(
        self,
        queue: QueueClient,
        runner: ExperimentRunner,
        storage: StorageGateway,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.queue = queue
        self.runner = runner
        self.storage = storage
        self.poll_interval = poll_interval
        self.messages_processed = 0
        self.messages_failed = 0

    async def run(self, stop_event: asyncio.Event) -> None:
        """Process messages until *stop_event* is set."""
        logger.info("Listening for experiment requests")
        while not stop_event.is_set():
            handled = await self.run_once()
            if not handled:
                await asyncio.sleep(self.poll_interval)

        logger.info(
            "Stop requested. Exiting the listener loop (%d processed, %d failed)",
            self.messages_processed,
            self.messages_failed,
        )

    async def run_once(self) -> bool:
        """Receive and handle at most one message.

        Returns:
            True if a message was received (whether or not it succeeded),
            False if the queue was empty or could not be read
        """
        try:
            message = await self.queue.receive_message()
        except Exception as exc:
            logger.error("Receiving from the queue failed: %s", exc)
            return False

        if message is None:
            logger.debug("Queue empty...")
            return False

        if await self._handle(message):
            self.messages_processed += 1
        else:
            self.messages_failed += 1
        return True

    async def _handle(self, message: QueueMessage) -> bool:
        """Process one message; returns True once it has been deleted."""
        try:
            text = message.body.decode("utf-8")
            logger.info(
                "Received message %s (delivery %d): %s",
                message.message_id,
                message.dequeue_count,
                text,
            )
            request = ExperimentRequest.from_json(text)
            result = await self.runner.process(request)
            await self.storage.upload_experiment_result(result)
            await self.queue.delete_message(message.message_id, message.pop_receipt)
        except Exception:
            logger.exception(
                "Processing message %s failed; leaving it for redelivery", message.message_id
            )
            return False

        logger.info("Message %s processed and deleted", message.message_id)
        return True
