"""IMAGE_PROMPT directive handling for generated scene text."""
import re
from typing import List, Optional

# The marker may follow prose on the same line and may carry markdown
# decoration, e.g. "**IMAGE_PROMPT:** ...". The directive runs to end of line.
IMAGE_PROMPT_PATTERN = re.compile(
    r"[*_`]*IMAGE_PROMPT[*_`]*:[*_`]*[ \t]*(?P<prompt>\S.*?)[ \t*_`]*$",
    re.IGNORECASE | re.MULTILINE,
)
_MARKER = re.compile(r"[ \t>#*_`-]*IMAGE_PROMPT[*_`]*:[^\r\n]*", re.IGNORECASE)


def find_image_prompt(text: str) -> Optional[str]:
    match = IMAGE_PROMPT_PATTERN.search(text or "")
    if match is None:
        return None
    prompt = match.group("prompt").strip()
    return prompt or None


def image_prompt_for(text: str, image_prompt_addendum: str) -> str:
    """Directive from the text, or the addendum followed by the whole text."""
    prompt = find_image_prompt(text)
    if prompt is not None:
        return prompt
    return (image_prompt_addendum or "") + (text or "")


def strip_image_prompt(text: str) -> str:
    """Remove every directive from its marker to end of line; drop lines left empty."""
    kept: List[str] = []
    for line in (text or "").splitlines():
        if _MARKER.search(line):
            line = _MARKER.sub("", line).rstrip()
            if not line.strip():
                continue
        kept.append(line)
    return "\n".join(kept).strip()
