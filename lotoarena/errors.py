from typing import Optional


class ArenaError(Exception):
    """Base exception for the agent arena."""
    pass


class DataFormatError(ArenaError):
    """Malformed draw row or draw value."""
    pass


class FeedIndexError(ArenaError, IndexError):
    """Draw feed accessed out of range."""
    pass


class SnapshotError(ArenaError):
    """Snapshot could not be restored."""
    pass


class DeserializationError(SnapshotError):
    """Snapshot payload is unreadable or lacks a model definition."""
    pass


class ShapeMismatchError(SnapshotError):
    """Weight arrays do not fit the restored model architecture."""
    pass


class TrainingError(ArenaError):
    """A single agent's fit step failed; its previous weights were kept."""

    def __init__(self, message: str, agent_id: Optional[int] = None, tick_index: Optional[int] = None):
        self.agent_id = agent_id
        self.tick_index = tick_index
        super().__init__(f"{message} (agent={agent_id}, tick={tick_index})")


class SimulationError(ArenaError):
    """Core simulation invariant broken; the run must stop."""
    pass
