from .orchestrator import Orchestrator
from .watcher import FileWatcher

__all__ = ["Orchestrator", "FileWatcher"]
