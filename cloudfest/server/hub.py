import asyncio
from typing import Dict
from .models import Notification
from ..utils.logger import setup_logger

logger = setup_logger('cloudfest.hub')

class Hub:
    """Notification fan-out hub for live subscribers.

    Each connected subscriber has a dedicated asyncio Queue. The hub is
    itself a ChatAuthority listener: every committed notification is put on
    every registered queue.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop = None):
        """Initialize notification hub.

        Attributes:
            queues (Dict[str, asyncio.Queue]): Maps subscriber ids to their queues
            loop: Event loop owning the queues; notifications published from
                another thread are handed over to it
        """
        self.queues: Dict[str, asyncio.Queue] = {}
        self.loop = loop
        logger.info("Notification Hub initialized")

    def register_queue(self, subscriber_id: str) -> asyncio.Queue:
        """Register a new notification queue for a subscriber.

        Args:
            subscriber_id (str): Id of the subscriber (one per open stream)

        Returns:
            asyncio.Queue: New queue for the subscriber's notifications
        """
        if self.loop is None:
            self.loop = asyncio.get_running_loop()
        q = asyncio.Queue()
        self.queues[subscriber_id] = q
        logger.info(f"Registered queue for subscriber {subscriber_id}")
        logger.debug(f"Active subscribers: {list(self.queues.keys())}")
        return q

    def remove_queue(self, subscriber_id: str):
        self.queues.pop(subscriber_id, None)
        logger.info(f"Removed queue for subscriber {subscriber_id}")
        logger.debug(f"Remaining subscribers: {list(self.queues.keys())}")

    def __call__(self, note: Notification):
        self.publish(note)

    def publish(self, note: Notification) -> int:
        """Put a notification on every subscriber queue.

        Returns:
            int: Number of subscribers the notification was queued for
        """
        queues = list(self.queues.values())
        if not queues:
            logger.debug(f"No subscribers for {note.name}")
            return 0
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        for q in queues:
            if running is self.loop:
                q.put_nowait(note)
            else:
                self.loop.call_soon_threadsafe(q.put_nowait, note)
        logger.debug(f"Queued {note.name} for {len(queues)} subscribers")
        return len(queues)
