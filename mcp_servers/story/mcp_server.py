"""MCP server entrypoint for story generation."""
import os
from typing import Any, Dict, Optional

import anyio.to_thread
from mcp.server.fastmcp import FastMCP

from .server import StoryService


host = os.getenv("MCP_HOST", "127.0.0.1")
port = int(os.getenv("MCP_PORT", "8000"))
path = os.getenv("MCP_PATH", "/mcp").rstrip("/")
sse_path = f"{path}/sse"
message_path = f"{path}/messages/"

mcp = FastMCP(
    "mcp-story",
    json_response=True,
    host=host,
    port=port,
    sse_path=sse_path,
    message_path=message_path,
)
service = StoryService()


@mcp.tool()
async def story_generate(
    title: str,
    genre: str,
    text_prompt_addendum: str = "",
    image_prompt_addendum: str = "",
    scene_count: int = 1,
    tone: str = "",
    model: Optional[str] = None,
) -> Dict[str, Any]:
    """Generate an illustrated story; scenes that fail come back with an empty image_path."""
    return await anyio.to_thread.run_sync(
        lambda: service.story_generate(
            title=title,
            genre=genre,
            text_prompt_addendum=text_prompt_addendum,
            image_prompt_addendum=image_prompt_addendum,
            scene_count=scene_count,
            tone=tone,
            model=model,
        )
    )


def main() -> None:
    transport = os.getenv("MCP_TRANSPORT", "stdio")
    try:
        mcp.run(transport=transport)
    finally:
        service.shutdown()


if __name__ == "__main__":
    main()
