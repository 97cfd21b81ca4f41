"""
Story service wrapper: plain dict in, plain dict out.
Served over MCP by mcp_server.py.
"""
from typing import Any, Dict, Optional

from orchestrator.models import StoryRequest
from orchestrator.pipeline import StoryOrchestrator


class StoryService:
    def __init__(self, orchestrator: Optional[StoryOrchestrator] = None) -> None:
        self._orchestrator = orchestrator

    @property
    def orchestrator(self) -> StoryOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = StoryOrchestrator()
        return self._orchestrator

    def story_generate(
        self,
        title: str,
        genre: str,
        text_prompt_addendum: str = "",
        image_prompt_addendum: str = "",
        scene_count: int = 1,
        tone: str = "",
        model: Optional[str] = None,
    ) -> Dict[str, Any]:
        request = StoryRequest.from_dict(
            {
                "title": title,
                "genre": genre,
                "text_prompt_addendum": text_prompt_addendum,
                "image_prompt_addendum": image_prompt_addendum,
                "scene_count": scene_count,
                "tone": tone,
                "model": model,
            }
        )
        return self.orchestrator.generate(request).to_dict()

    def shutdown(self) -> None:
        if self._orchestrator is not None:
            self._orchestrator.shutdown()
