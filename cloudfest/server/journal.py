import json, os
from typing import List
from .models import Notification, notification_from_dict
from ..utils.logger import setup_logger

logger = setup_logger('cloudfest.journal')

class EventJournal:
    """Off-system index of emitted notifications in JSONL format.

    Subscribe an instance to a ChatAuthority and every committed notification
    is appended as one JSON line.
    """

    def __init__(self, path: str):
        """Initialize the journal.

        Args:
            path (str): Path to JSONL file storing notifications

        Side Effects:
            - Creates directory structure if not exists
        """
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self.path = path

    def __call__(self, note: Notification):
        self.append(note)

    def append(self, note: Notification):
        """Append one notification to the journal file.

        Side Effects:
            - Appends, flushes and fsyncs one line
        """
        line = json.dumps(note.to_dict(), ensure_ascii=False)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n"); f.flush(); os.fsync(f.fileno())
        logger.debug(f"Journaled {note.name}")

    def load(self) -> List[Notification]:
        """Read back every recorded notification, oldest first."""
        if not os.path.exists(self.path):
            return []
        notes = []
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                if not line.strip(): continue
                notes.append(notification_from_dict(json.loads(line)))
        return notes
