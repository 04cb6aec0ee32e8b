from dataclasses import dataclass
from enum import Enum
from typing import Callable


class RevealKind(str, Enum):
    ALWAYS = "always"
    SILENT = "silent"
    NEVER = "never"


class PanelKind(str, Enum):
    SHARED = "shared"
    DEDICATED = "dedicated"
    NEW = "new"


@dataclass(frozen=True)
class PresentationPolicy:
    echo: bool = True
    reveal: RevealKind = RevealKind.ALWAYS
    focus: bool = False
    panel: PanelKind = PanelKind.SHARED
    clear: bool = False
    show_reuse_message: bool = False


# (panel name, line without trailing newline)
PanelSink = Callable[[str, str], None]
