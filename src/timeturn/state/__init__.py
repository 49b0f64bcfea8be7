from timeturn.state.debounce import DebouncedWriter
from timeturn.state.store import StateStore, TimeturnStateError

__all__ = ["DebouncedWriter", "StateStore", "TimeturnStateError"]
