"""Story orchestrator: one text + image job per scene, strictly in order."""
import os
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from agents.common import LLMClient
from agents.storyteller.agent import run as storyteller_run

from .admission_gate import AdmissionGate
from .blocking_runner import BlockingTaskRunner
from .cancellation import CancelToken
from .errors import format_exception
from .image_generator import ImageGenerator
from .models import Scene, StoryRequest, StoryResult
from .run_logger import LoggerLike, RunLogger
from .scene_text import image_prompt_for, strip_image_prompt
from .settings import build_config, load_section
from .text_normalizer import extract_text

DAY_SEC = 86400.0


@dataclass
class StoryConfig:
    negative_prompt: str = "Bad anatomy, Low quality, incorrect object placements"
    image_width: int = 1024
    image_height: int = 1024
    text_timeout_sec: float = 30 * DAY_SEC
    image_timeout_sec: float = 40 * DAY_SEC
    max_concurrent_jobs: int = 1


_ENV = {
    "negative_prompt": "STORY_NEGATIVE_PROMPT",
    "text_timeout_sec": "STORY_TEXT_TIMEOUT_SEC",
    "image_timeout_sec": "STORY_IMAGE_TIMEOUT_SEC",
    "max_concurrent_jobs": "STORY_MAX_CONCURRENT_JOBS",
}


def load_story_config(path: Optional[str] = None) -> StoryConfig:
    return build_config(StoryConfig, load_section("story", path), _ENV)


class ImageBackend(Protocol):
    def generate(
        self,
        prompt: str,
        negative_prompt: str,
        width: int,
        height: int,
        token: Optional[CancelToken] = None,
        logger: Optional[LoggerLike] = None,
    ) -> str:
        ...


class StoryOrchestrator:
    def __init__(
        self,
        config: Optional[StoryConfig] = None,
        llm: Optional[LLMClient] = None,
        images: Optional[ImageBackend] = None,
        data_root: Optional[str] = None,
        echo: bool = False,
    ) -> None:
        self.config = config or load_story_config()
        self.llm = llm or LLMClient()
        self.images = images or ImageGenerator()
        self.data_root = data_root or os.getenv("DATA_ROOT", "data")
        self.echo = echo
        self.gate = AdmissionGate(self.config.max_concurrent_jobs)
        self.runner = BlockingTaskRunner()
        self._root = CancelToken()

    def generate(self, request: StoryRequest) -> StoryResult:
        """Produce exactly ``request.scene_count`` scenes; failed ones become fallbacks."""
        story_id = _make_story_id(request.title)
        logger = RunLogger(os.path.join(self.data_root, "runs", story_id), echo=self.echo)
        logger.save_step("request", asdict(request))
        logger.log(f"story '{request.title}' started with {request.scene_count} scenes")

        scenes = []
        for index in range(1, request.scene_count + 1):
            scenes.append(self._scene_or_fallback(request, index, logger))

        result = StoryResult(title=request.title, scenes=tuple(scenes))
        story_path = logger.write_json("story.json", result.to_dict())
        fallbacks = sum(1 for scene in result.scenes if not scene.image_path)
        logger.save_step(
            "story",
            {"status": "completed", "scene_count": len(result.scenes), "fallbacks": fallbacks, "path": story_path},
        )
        logger.log(f"story '{request.title}' finished ({fallbacks} scenes without image)")
        return result

    def shutdown(self) -> None:
        self._root.cancel("orchestrator shutdown")
        self.runner.shutdown()

    def _scene_or_fallback(self, request: StoryRequest, index: int, logger: RunLogger) -> Scene:
        try:
            scene = self._generate_scene(request, index, logger)
        except Exception as err:
            reason = format_exception(err)
            logger.log(f"fallback scene {index} (reason: {reason})")
            logger.save_step(f"scene-{index}", {"status": "fallback", "image_path": "", "error": reason})
            return Scene(index=index, text=f"Error generating scene {index}: {reason}", image_path="")
        logger.save_step(f"scene-{index}", {"status": "completed", "image_path": scene.image_path})
        return scene

    def _generate_scene(self, request: StoryRequest, index: int, logger: RunLogger) -> Scene:
        scene_token = self._root.child()
        try:
            logger.log(f"waiting for admission for scene {index}")
            with self.gate.permit(scene_token):
                logger.log(f"admission acquired for scene {index}")
                try:
                    return self._run_scene(request, index, scene_token, logger)
                finally:
                    logger.log(f"admission released for scene {index}")
        finally:
            self._root.detach(scene_token)

    def _run_scene(self, request: StoryRequest, index: int, token: CancelToken, logger: RunLogger) -> Scene:
        scene_input = {
            "scene_index": index,
            "scene_count": request.scene_count,
            "genre": request.genre,
            "tone": request.tone,
            "addendum": request.text_prompt_addendum,
            "model": request.model,
            # Earlier scenes are not fed back into the prompt.
            "context": "",
        }
        text_deadline = time.monotonic() + self.config.text_timeout_sec
        raw = self.runner.run(
            lambda text_token: storyteller_run(
                scene_input,
                llm=self.llm,
                token=text_token,
                timeout=text_deadline - time.monotonic(),
            ),
            timeout=self.config.text_timeout_sec,
            token=token,
            label="text generation",
        )
        logger.log(f"LLM response received for scene {index}")
        text = self._normalize(raw, index, logger)

        image_prompt = image_prompt_for(text, request.image_prompt_addendum)
        logger.log(f"starting image generation for scene {index} (prompt length {len(image_prompt)})")
        image_path = self.runner.run(
            lambda image_token: self.images.generate(
                image_prompt,
                self.config.negative_prompt,
                self.config.image_width,
                self.config.image_height,
                token=image_token,
                logger=logger,
            ),
            timeout=self.config.image_timeout_sec,
            token=token,
            label="image generation",
        )
        logger.log(f"image generation complete for scene {index} -> {image_path}")
        return Scene(index=index, text=strip_image_prompt(text), image_path=image_path)

    def _normalize(self, raw: Any, index: int, logger: RunLogger) -> str:
        try:
            return extract_text(raw)
        except Exception as err:
            logger.log(f"could not read LLM text for scene {index}: {format_exception(err)}")
            return ""


def _slug(value: str) -> str:
    cleaned = "".join(ch.lower() if ch.isalnum() else "-" for ch in (value or ""))
    while "--" in cleaned:
        cleaned = cleaned.replace("--", "-")
    return cleaned.strip("-")[:40]


def _make_story_id(title: str) -> str:
    stamp = datetime.now(timezone.utc).strftime("story-%Y%m%d-%H%M%S-%f")
    slug = _slug(title)
    return f"{stamp}-{slug}" if slug else stamp
