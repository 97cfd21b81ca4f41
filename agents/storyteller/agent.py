"""Storyteller agent: write one scene of a multi-scene story."""
from typing import Any, Dict, Optional

from agents.common import LLMClient
from orchestrator.cancellation import CancelToken


PROMPT = """
IMPORTANT:
You write a single scene on your own. Do **not** ask the user any questions. If information is missing, stay consistent with everything known about the story so far.
Make sure the scene can be continued by the next scene (unless it is the last one) and do not repeat yourself.
**Be creative and bring variety into the story.**
Write scene {scene_index} of {scene_count} in the genre {genre} with a '{tone}' tone.
The story so far: {context}

***All scenes combined must form one coherent, continuous story.***
For each scene create an image that visualizes it: output **exactly one single line** starting with `IMAGE_PROMPT: ` followed by an English image prompt that reflects the genre and tone.

ONLY produce the scene and the optional single IMAGE_PROMPT line. Never answer with questions or TODO lists.
Please also take the following into account:
{addendum}
""".strip()


def build_prompt(
    scene_index: int,
    scene_count: int,
    genre: str,
    tone: str,
    addendum: str = "",
    context: str = "",
) -> str:
    return PROMPT.format(
        scene_index=scene_index,
        scene_count=scene_count,
        genre=(genre or "").strip(),
        tone=(tone or "").strip(),
        context=context,
        addendum=(addendum or "").strip(),
    )


def run(
    input_data: Dict[str, Any],
    llm: Optional[LLMClient] = None,
    token: Optional[CancelToken] = None,
    timeout: Optional[float] = None,
) -> Any:
    """Prompt the model for one scene and return its raw response.

    ``timeout`` bounds the HTTP call; the request is not sent once ``token``
    is cancelled.
    """
    llm = llm or LLMClient()
    prompt = build_prompt(
        scene_index=int(input_data["scene_index"]),
        scene_count=int(input_data["scene_count"]),
        genre=str(input_data.get("genre") or ""),
        tone=str(input_data.get("tone") or ""),
        addendum=str(input_data.get("addendum") or ""),
        context=str(input_data.get("context") or ""),
    )
    if token is not None:
        token.raise_if_cancelled()
    return llm.complete(prompt, model=input_data.get("model"), timeout=timeout)
