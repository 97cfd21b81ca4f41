"""Minimal ComfyUI HTTP client."""
from __future__ import annotations

import json
import os
import socket
import urllib.error
import urllib.parse
import urllib.request
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import BackendUnavailable, MalformedResponse
from .settings import BASE_DIR, build_config, load_section


@dataclass
class ComfyUIConfig:
    host: str = "127.0.0.1"
    port: int = 8188
    submit_timeout_sec: float = 20.0
    history_timeout_sec: float = 15.0
    poll_interval_sec: float = 0.8
    max_wait_sec: float = 600.0
    stability_samples: int = 6
    stability_delay_sec: float = 0.1
    output_dir: str = "ComfyUI/output"
    checkpoint_name: str = "Juggernaut-XI-byRunDiffusion.safetensors"
    workflow_json_path: str = os.path.join(BASE_DIR, "workflows", "comfy", "story_scene_sdxl.json")
    image_extensions: List[str] = field(default_factory=lambda: [".png"])
    history_shapes: List[str] = field(default_factory=lambda: ["outputs", "executions", "keyed"])

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


_ENV = {
    "host": "COMFYUI_HOST",
    "port": "COMFYUI_PORT",
    "output_dir": "COMFYUI_OUTPUT_DIR",
    "checkpoint_name": "COMFYUI_CHECKPOINT",
    "workflow_json_path": "COMFYUI_WORKFLOW_PATH",
    "poll_interval_sec": "COMFYUI_POLL_INTERVAL_SEC",
    "max_wait_sec": "COMFYUI_MAX_WAIT_SEC",
}


def load_comfyui_config(path: Optional[str] = None) -> ComfyUIConfig:
    return build_config(ComfyUIConfig, load_section("comfyui", path), _ENV)


class ComfyUIClient:
    def __init__(self, config: Optional[ComfyUIConfig] = None) -> None:
        self.config = config or load_comfyui_config()
        self.base_url = self.config.base_url

    def submit_workflow(self, workflow_dict: Dict[str, Any], client_id: str = "") -> Dict[str, Any]:
        """POST /prompt and return the raw response payload."""
        body: Dict[str, Any] = {"prompt": workflow_dict}
        if client_id:
            body["client_id"] = client_id
        payload = self._request_json(
            f"{self.base_url}/prompt",
            data=json.dumps(body).encode("utf-8"),
            timeout=self.config.submit_timeout_sec,
        )
        if not isinstance(payload, dict):
            raise MalformedResponse(f"ComfyUI /prompt returned {type(payload).__name__}, expected object")
        return payload

    def history(self, prompt_id: str) -> Any:
        """GET /history/{prompt_id}; the payload shape depends on the backend version."""
        if not prompt_id:
            raise ValueError("ComfyUI history query needs a prompt_id")
        url = f"{self.base_url}/history/{urllib.parse.quote(prompt_id)}"
        return self._request_json(url, timeout=self.config.history_timeout_sec)

    def _request_json(self, url: str, data: Optional[bytes] = None, timeout: float = 10.0) -> Any:
        headers = {"Content-Type": "application/json"} if data is not None else {}
        req = urllib.request.Request(url, data=data, headers=headers, method="POST" if data is not None else "GET")
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                raw = resp.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="ignore")
            raise BackendUnavailable(f"ComfyUI HTTP {exc.code} {exc.reason}: {body[:500]}") from exc
        except (urllib.error.URLError, socket.timeout, ConnectionError) as exc:
            raise BackendUnavailable(f"ComfyUI connection failed for {url}: {exc}") from exc
        try:
            return json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as exc:
            raise MalformedResponse(f"ComfyUI returned non-JSON body from {url}: {raw[:200]!r}") from exc


def load_workflow_template(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        raise RuntimeError(f"ComfyUI workflow template missing: {path}")
    with open(path, "r", encoding="utf-8") as f:
        workflow = json.load(f)
    if not isinstance(workflow, dict):
        raise RuntimeError("ComfyUI workflow template must be a JSON object")
    return workflow


def build_txt2img_workflow(
    template: Dict[str, Any],
    *,
    checkpoint_name: str,
    prompt_text: str,
    negative_text: str,
    width: int,
    height: int,
    seed: int,
    filename_prefix: str,
) -> Dict[str, Any]:
    workflow = deepcopy(template)
    ckpt_node = _find_first_node_by_class_type(workflow, "CheckpointLoaderSimple", occurrence=1)
    pos_node = _find_first_node_by_class_type(workflow, "CLIPTextEncode", occurrence=1)
    neg_node = _find_first_node_by_class_type(workflow, "CLIPTextEncode", occurrence=2)
    latent_node = _find_first_node_by_class_type(workflow, "EmptyLatentImage", occurrence=1)
    ks_node = _find_first_node_by_class_type(workflow, "KSampler", occurrence=1)
    save_node = _find_first_node_by_class_type(workflow, "SaveImage", occurrence=1)
    if pos_node is None or latent_node is None or ks_node is None or save_node is None:
        raise RuntimeError(
            "ComfyUI workflow patch failed: required nodes not found "
            "(CLIPTextEncode, EmptyLatentImage, KSampler, SaveImage)"
        )

    if ckpt_node is not None and checkpoint_name:
        _patch_node_input(ckpt_node, "ckpt_name", checkpoint_name)
    _patch_node_input(pos_node, "text", sanitize_prompt(prompt_text))
    if neg_node is not None and negative_text and negative_text.strip():
        _patch_node_input(neg_node, "text", sanitize_prompt(negative_text))
    _patch_node_input(latent_node, "width", int(width))
    _patch_node_input(latent_node, "height", int(height))
    _patch_node_input(ks_node, "seed", int(seed))
    _patch_node_input(save_node, "filename_prefix", filename_prefix)
    return workflow


def sanitize_prompt(text: str) -> str:
    return (text or "").replace('"', "'").replace("\\", "")


def _find_first_node_by_class_type(
    workflow: Dict[str, Any],
    class_type: str,
    *,
    occurrence: int,
) -> Optional[Dict[str, Any]]:
    count = 0
    for _, node in workflow.items():
        if not isinstance(node, dict):
            continue
        if str(node.get("class_type") or "") == class_type:
            count += 1
            if count == occurrence:
                return node
    return None


def _patch_node_input(node: Dict[str, Any], key: str, value: Any) -> None:
    inputs = node.get("inputs")
    if not isinstance(inputs, dict):
        raise RuntimeError(f"ComfyUI workflow patch failed: node missing inputs for key={key}")
    inputs[key] = value
