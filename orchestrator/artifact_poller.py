"""Discover generated images via the job-status channel or the output directory.

Each poll iteration first asks the backend history endpoint about the job
(when a backend job id is known) and, failing that, scans the shared output
directory for files named with the submission handle as prefix. A file found
on disk is only accepted once its size has stopped changing.

History payloads differ between backend versions, so the recognised shapes
live in a registry; ``comfyui.history_shapes`` selects which are tried and in
what order, and ``register_history_shape`` adds new ones.
"""
from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

from .cancellation import CancelToken
from .comfyui_client import ComfyUIConfig
from .errors import GenerationTimeout, ResourceUnavailable, format_exception
from .run_logger import LoggerLike, NullLogger

_PROGRESS_LOG_EVERY = 25


@dataclass(frozen=True)
class Submission:
    handle: str
    backend_job_id: Optional[str] = None


class HistorySource(Protocol):
    def history(self, prompt_id: str) -> Any:
        ...


HistoryShape = Callable[[Any, Submission, str], Optional[str]]


def extract_output_path(outputs: Any, output_dir: str = "") -> Optional[str]:
    """Pull the first usable file reference out of an ``outputs`` value."""
    if isinstance(outputs, list):
        for out in outputs:
            if not isinstance(out, dict):
                continue
            for key in ("path", "file"):
                value = out.get(key)
                if isinstance(value, str) and value.strip():
                    return value
            image = out.get("image")
            if isinstance(image, dict):
                value = image.get("path")
                if isinstance(value, str) and value.strip():
                    return value
        return None
    if isinstance(outputs, dict):
        value = outputs.get("path")
        if isinstance(value, str) and value.strip():
            return value
        # ComfyUI native: {node_id: {"images": [{"filename", "subfolder", "type"}]}}.
        # Only "output" images live in the output dir; "temp" previews do not.
        for node_out in outputs.values():
            if not isinstance(node_out, dict):
                continue
            images = node_out.get("images")
            if not isinstance(images, list):
                continue
            for image in images:
                if not isinstance(image, dict) or not image.get("filename"):
                    continue
                if image.get("type", "output") != "output":
                    continue
                return os.path.abspath(
                    os.path.join(output_dir, str(image.get("subfolder") or ""), str(image["filename"]))
                )
    return None


def _shape_outputs(payload: Any, submission: Submission, output_dir: str) -> Optional[str]:
    if isinstance(payload, dict) and "outputs" in payload:
        return extract_output_path(payload["outputs"], output_dir)
    return None


def _shape_executions(payload: Any, submission: Submission, output_dir: str) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    executions = payload.get("executions")
    if not isinstance(executions, list):
        return None
    for execution in executions:
        if isinstance(execution, dict) and "outputs" in execution:
            path = extract_output_path(execution["outputs"], output_dir)
            if path:
                return path
    return None


def _shape_keyed(payload: Any, submission: Submission, output_dir: str) -> Optional[str]:
    if not isinstance(payload, dict) or not submission.backend_job_id:
        return None
    node = payload.get(submission.backend_job_id)
    if isinstance(node, dict) and "outputs" in node:
        return extract_output_path(node["outputs"], output_dir)
    return None


_HISTORY_SHAPES: Dict[str, HistoryShape] = {
    "outputs": _shape_outputs,
    "executions": _shape_executions,
    "keyed": _shape_keyed,
}


def register_history_shape(name: str, extractor: HistoryShape) -> None:
    _HISTORY_SHAPES[name] = extractor


class ArtifactPoller:
    def __init__(self, source: HistorySource, config: ComfyUIConfig) -> None:
        unknown = [name for name in config.history_shapes if name not in _HISTORY_SHAPES]
        if unknown:
            raise ValueError(f"unknown history shapes configured: {unknown}")
        self.source = source
        self.config = config

    def prepare_output_dir(self, logger: Optional[LoggerLike] = None) -> None:
        logger = logger or NullLogger()
        folder = self.config.output_dir
        if not os.path.isdir(folder):
            logger.log(f"output dir does not exist: {folder} (will attempt to create)")
            try:
                os.makedirs(folder, exist_ok=True)
                logger.log(f"output dir created: {folder}")
            except OSError as exc:
                err = ResourceUnavailable(f"cannot create output dir {folder}: {exc}")
                logger.log(format_exception(err))
                return
        if not os.access(folder, os.R_OK):
            logger.log(format_exception(ResourceUnavailable(f"output dir is not readable: {folder}")))

    def poll(
        self,
        submission: Submission,
        token: Optional[CancelToken] = None,
        logger: Optional[LoggerLike] = None,
    ) -> str:
        """Block until the artifact is found; raise GenerationTimeout or Cancelled."""
        token = token or CancelToken()
        logger = logger or NullLogger()
        interval = float(self.config.poll_interval_sec)
        max_wait = float(self.config.max_wait_sec)
        start = time.monotonic()
        attempt = 0
        while True:
            token.raise_if_cancelled()
            elapsed = time.monotonic() - start
            if elapsed >= max_wait:
                raise GenerationTimeout(
                    f"Timeout waiting for image generation result "
                    f"(handle={submission.handle}, job_id={submission.backend_job_id})",
                    label="image generation",
                    submission_handle=submission.handle,
                    backend_job_id=submission.backend_job_id,
                )
            attempt += 1
            if attempt == 1 or attempt % _PROGRESS_LOG_EVERY == 0:
                logger.log(
                    f"poll attempt #{attempt} handle={submission.handle} "
                    f"job_id={submission.backend_job_id} elapsed={elapsed:.1f}s"
                )

            path = self._query_history(submission, attempt, logger)
            if path:
                logger.log(f"found image via history for job_id={submission.backend_job_id} -> {path}")
                return path

            for candidate in self._scan_output_dir(submission.handle, attempt, logger):
                if self._is_stable(candidate, token):
                    logger.log(f"found image file for handle={submission.handle} -> {candidate}")
                    return candidate
                logger.log(f"candidate still being written, retrying later: {candidate}")

            remaining = max_wait - (time.monotonic() - start)
            token.sleep(min(interval, max(remaining, 0.0)))

    def _query_history(self, submission: Submission, attempt: int, logger: LoggerLike) -> Optional[str]:
        if not submission.backend_job_id:
            return None
        try:
            payload = self.source.history(submission.backend_job_id)
        except Exception as exc:
            logger.log(
                f"history query failed for job_id={submission.backend_job_id} "
                f"(attempt {attempt}): {format_exception(exc)}"
            )
            return None
        return self.extract(payload, submission)

    def extract(self, payload: Any, submission: Submission) -> Optional[str]:
        if not payload:
            return None
        for name in self.config.history_shapes:
            path = _HISTORY_SHAPES[name](payload, submission, self.config.output_dir)
            if path:
                return path
        return None

    def _scan_output_dir(self, handle: str, attempt: int, logger: LoggerLike) -> List[str]:
        folder = self.config.output_dir
        try:
            names = os.listdir(folder)
        except OSError as exc:
            if attempt == 1 or attempt % _PROGRESS_LOG_EVERY == 0:
                logger.log(format_exception(ResourceUnavailable(f"cannot list output dir {folder}: {exc}")))
            return []
        extensions = tuple(ext.lower() for ext in self.config.image_extensions)
        matches = [
            name
            for name in names
            if name.startswith(handle) and (not extensions or name.lower().endswith(extensions))
        ]
        return [os.path.abspath(os.path.join(folder, name)) for name in sorted(matches)]

    def _is_stable(self, path: str, token: CancelToken) -> bool:
        samples = max(2, int(self.config.stability_samples))
        prev = -1
        for i in range(samples):
            try:
                size = os.path.getsize(path)
            except OSError:
                return False
            if size > 0 and size == prev:
                return True
            prev = size
            if i < samples - 1:
                token.sleep(float(self.config.stability_delay_sec))
        return False
