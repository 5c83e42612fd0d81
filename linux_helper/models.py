"""Value types passed between the monitor, capture, channels and popup."""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional


class ControlKind(str, Enum):
    BUTTON = "button"
    KEY = "key"


@dataclass(frozen=True)
class ActivationControl:
    """The physical input bound to activation: a pointer button or a key/chord."""
    name: str
    kind: ControlKind
    button: Optional[int] = None
    key: Optional[str] = None


@dataclass(frozen=True)
class CapturedFrame:
    """An encoded screenshot plus its metadata. The file stays on disk."""
    data_url: str
    filename: str
    filepath: str
    size: int
    timestamp: datetime


@dataclass(frozen=True)
class ScreenBounds:
    x: int
    y: int
    width: int
    height: int

    def contains(self, px: int, py: int) -> bool:
        return (self.x <= px < self.x + self.width
                and self.y <= py < self.y + self.height)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ScreenBounds":
        return cls(
            x=int(data.get("x", 0)),
            y=int(data.get("y", 0)),
            width=int(data["width"]),
            height=int(data["height"]),
        )


@dataclass(frozen=True)
class PointerPosition:
    """Pointer in global display coordinates, with the display under it if known."""
    x: int
    y: int
    screen: Optional[ScreenBounds] = None

    def to_dict(self) -> dict:
        data = {"x": self.x, "y": self.y}
        if self.screen is not None:
            data["screen"] = self.screen.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PointerPosition":
        screen = data.get("screen")
        return cls(
            x=int(data["x"]),
            y=int(data["y"]),
            screen=ScreenBounds.from_dict(screen) if screen else None,
        )


@dataclass(frozen=True)
class ActivationEvent:
    frame: CapturedFrame
    position: PointerPosition


class InteractionState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    AWAITING = "awaiting-second-activation"


class PopupStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class Suggestion:
    title: str
    command: str
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "Suggestion":
        return cls(
            title=str(data.get("title", "")),
            command=str(data.get("command", "")),
            description=str(data.get("description", "")),
        )


@dataclass
class Analysis:
    """What the analysis boundary hands back for one screenshot."""
    summary: str
    suggestions: list = field(default_factory=list)  # list[Suggestion]


# Fields a directive may set on PopupViewState
VIEW_FIELDS = ("status", "title", "content", "suggestions", "error")


@dataclass
class PopupViewState:
    status: PopupStatus = PopupStatus.IDLE
    title: str = ""
    content: str = ""
    suggestions: list = field(default_factory=list)  # list[Suggestion]
    error: Optional[str] = None

    def merge(self, data: dict) -> None:
        """Apply the recognised fields of a partial update in place."""
        for name in VIEW_FIELDS:
            if name not in data:
                continue
            value = data[name]
            if name == "status":
                value = PopupStatus(value)
            elif name == "suggestions":
                value = [s if isinstance(s, Suggestion) else Suggestion.from_dict(s)
                         for s in (value or [])]
            setattr(self, name, value)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "title": self.title,
            "content": self.content,
            "suggestions": [asdict(s) for s in self.suggestions],
            "error": self.error,
        }
