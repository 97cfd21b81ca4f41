"""Story request and result types."""
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class StoryRequest:
    title: str
    genre: str
    text_prompt_addendum: str = ""
    image_prompt_addendum: str = ""
    scene_count: int = 1
    tone: str = ""
    model: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.scene_count, bool) or not isinstance(self.scene_count, int):
            raise ValueError(f"scene_count must be an integer, got {self.scene_count!r}")
        if self.scene_count < 1:
            raise ValueError(f"scene_count must be positive, got {self.scene_count}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoryRequest":
        return cls(
            title=str(data.get("title") or ""),
            genre=str(data.get("genre") or ""),
            text_prompt_addendum=str(data.get("text_prompt_addendum") or ""),
            image_prompt_addendum=str(data.get("image_prompt_addendum") or ""),
            scene_count=int(data.get("scene_count") or 0),
            tone=str(data.get("tone") or ""),
            model=(str(data["model"]).strip() or None) if data.get("model") else None,
        )


@dataclass(frozen=True)
class Scene:
    index: int
    text: str
    image_path: str = ""

    @property
    def has_image(self) -> bool:
        return bool(self.image_path)


@dataclass(frozen=True)
class StoryResult:
    title: str
    scenes: Tuple[Scene, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "scenes": [asdict(scene) for scene in self.scenes]}


def new_submission_handle() -> str:
    """Fresh filename prefix used to find an image job's output on disk."""
    return uuid.uuid4().hex

