from .coordinator import Panel, PanelHandle, PresentationCoordinator
from .types import PanelKind, PanelSink, PresentationPolicy, RevealKind

__all__ = [
    "Panel",
    "PanelHandle",
    "PanelKind",
    "PanelSink",
    "PresentationCoordinator",
    "PresentationPolicy",
    "RevealKind",
]
