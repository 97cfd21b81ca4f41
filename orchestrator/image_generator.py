"""Submit a txt2img job to ComfyUI and wait for the resulting file."""
import random
from typing import Any, Dict, Optional

from .artifact_poller import ArtifactPoller, Submission, extract_output_path
from .cancellation import CancelToken
from .comfyui_client import (
    ComfyUIClient,
    ComfyUIConfig,
    build_txt2img_workflow,
    load_comfyui_config,
    load_workflow_template,
)
from .errors import BackendUnavailable, MalformedResponse, format_exception
from .models import new_submission_handle
from .run_logger import LoggerLike, NullLogger

JOB_ID_KEYS = ("id", "job_id", "uuid", "prompt_id")


class ImageGenerator:
    def __init__(
        self,
        config: Optional[ComfyUIConfig] = None,
        client: Optional[ComfyUIClient] = None,
        poller: Optional[ArtifactPoller] = None,
    ) -> None:
        self.config = config or (client.config if client is not None else load_comfyui_config())
        self.client = client or ComfyUIClient(self.config)
        self.poller = poller or ArtifactPoller(self.client, self.config)

    def generate(
        self,
        prompt: str,
        negative_prompt: str,
        width: int,
        height: int,
        token: Optional[CancelToken] = None,
        logger: Optional[LoggerLike] = None,
    ) -> str:
        """Run one image job and return the artifact path."""
        token = token or CancelToken()
        logger = logger or NullLogger()
        handle = new_submission_handle()
        logger.log(f"generating image {width}x{height} handle={handle} prompt={prompt[:200]!r}")

        template = load_workflow_template(self.config.workflow_json_path)
        workflow = build_txt2img_workflow(
            template,
            checkpoint_name=self.config.checkpoint_name,
            prompt_text=prompt,
            negative_text=negative_prompt,
            width=width,
            height=height,
            seed=random.randrange(2**31 - 1),
            filename_prefix=handle,
        )
        self.poller.prepare_output_dir(logger)
        token.raise_if_cancelled()

        logger.log(f"posting workflow to ComfyUI (/prompt) handle={handle}")
        try:
            submit_resp = self.client.submit_workflow(workflow, client_id=handle)
        except (BackendUnavailable, MalformedResponse) as exc:
            # The job may already be queued; its file still carries the handle.
            logger.log(f"submit failed for handle={handle}, polling output dir anyway: {format_exception(exc)}")
            submit_resp = {}

        if "outputs" in submit_resp:
            path = extract_output_path(submit_resp["outputs"], self.config.output_dir)
            if path:
                logger.log(f"ComfyUI returned outputs immediately for handle={handle} -> {path}")
                return path

        submission = Submission(handle=handle, backend_job_id=backend_job_id(submit_resp))
        logger.log(f"polling for image handle={handle} job_id={submission.backend_job_id}")
        return self.poller.poll(submission, token=token, logger=logger)


def backend_job_id(payload: Dict[str, Any]) -> Optional[str]:
    for key in JOB_ID_KEYS:
        value = payload.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None
