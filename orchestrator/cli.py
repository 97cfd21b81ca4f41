"""CLI entrypoint for story generation runs."""
import argparse
import json
import os
from typing import Any, Dict

from .models import StoryRequest
from .pipeline import StoryOrchestrator


def run_story(args: argparse.Namespace) -> Dict[str, Any]:
    request = StoryRequest(
        title=args.title,
        genre=args.genre,
        text_prompt_addendum=args.text_prompt,
        image_prompt_addendum=args.image_prompt,
        scene_count=args.scenes,
        tone=args.tone,
        model=args.model,
    )
    orch = StoryOrchestrator(data_root=args.data_root, echo=not args.quiet)
    try:
        result = orch.generate(request)
    finally:
        orch.shutdown()

    story = result.to_dict()
    out_path = os.path.abspath(args.output)
    out_dir = os.path.dirname(out_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(story, f, ensure_ascii=False, indent=2)

    print(out_path)
    for scene in result.scenes:
        status = scene.image_path if scene.has_image else "(no image)"
        print(f"scene {scene.index}: {status}")
    return story


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate an illustrated multi-scene story")
    parser.add_argument("--title", required=True)
    parser.add_argument("--genre", required=True)
    parser.add_argument("--tone", default="")
    parser.add_argument("--scenes", type=int, default=3)
    parser.add_argument("--text-prompt", default="", help="Extra instructions appended to every scene prompt")
    parser.add_argument("--image-prompt", default="", help="Prefix used when the model gives no IMAGE_PROMPT line")
    parser.add_argument("--model", default=None, help="Text model name; defaults to the configured model")
    parser.add_argument("--data-root", default=os.getenv("DATA_ROOT", "data"))
    parser.add_argument("--output", default=os.path.join("Story", "story.json"))
    parser.add_argument("--quiet", action="store_true", help="Do not echo the run log to stdout")
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    if args.scenes < 1:
        parser.error("--scenes must be a positive integer")
    run_story(args)


if __name__ == "__main__":
    main()
