"""
Durable storage for the poll state record.
"""

import asyncio
import logging
import os
import tempfile
from typing import Optional

from otp_relay.domain.errors import PersistenceError
from otp_relay.domain.poll_state import PollState

logger = logging.getLogger(__name__)


class StateStore:
    """
    JSON file holding the single PollState record.

    Writes are serialized: one in flight at a time, later ones wait.
    """

    def __init__(self, path: str):
        self.path = path
        self._write_lock = asyncio.Lock()

    def load(self, capacity: Optional[int] = None) -> PollState:
        """
        Load state, falling back to a fresh record if absent or corrupt.

        Args:
            capacity: Fingerprint cache limit to enforce on the loaded record
        """
        if not os.path.exists(self.path):
            logger.info(f"No state file at {self.path}, creating new state")
            return PollState()

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                state = PollState.model_validate_json(f.read())
        # ValidationError and UnicodeDecodeError are both ValueError
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load state file {self.path}, starting fresh: {e}")
            return PollState()

        if capacity is not None:
            dropped = state.trim(capacity)
            if dropped:
                logger.info(f"Trimmed {dropped} cached fingerprints over capacity {capacity}")

        logger.info(
            f"Loaded state from {self.path} "
            f"(last seen: {state.last_seen_timestamp}, cache: {len(state.recent_fingerprints)})"
        )
        return state

    async def save(self, state: PollState) -> None:
        """
        Overwrite the state file with the given record.

        Raises:
            PersistenceError: If the file could not be written
        """
        # Snapshot before waiting so later mutations are not half-written
        payload = state.model_dump_json(indent=2)

        async with self._write_lock:
            try:
                await asyncio.to_thread(self._write, payload)
            except OSError as e:
                raise PersistenceError(f"Failed to save state to {self.path}: {e}") from e

    def _write(self, payload: str) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(prefix=".state-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
