from __future__ import annotations

import json
import urllib.error
import urllib.request

import pytest

from orchestrator.comfyui_client import (
    ComfyUIClient,
    ComfyUIConfig,
    build_txt2img_workflow,
    load_workflow_template,
)
from orchestrator.errors import BackendUnavailable, MalformedResponse


class _FakeResponse:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, *exc) -> bool:
        return False


def _template():
    return load_workflow_template(ComfyUIConfig().workflow_json_path)


def test_build_workflow_patches_nodes_without_touching_template():
    template = _template()
    workflow = build_txt2img_workflow(
        template,
        checkpoint_name="model.safetensors",
        prompt_text='a "dark" castle \\ at dusk',
        negative_text="blurry",
        width=768,
        height=512,
        seed=1234,
        filename_prefix="handle-1",
    )

    assert workflow["4"]["inputs"]["ckpt_name"] == "model.safetensors"
    assert workflow["6"]["inputs"]["text"] == "a 'dark' castle  at dusk"
    assert workflow["7"]["inputs"]["text"] == "blurry"
    assert workflow["5"]["inputs"]["width"] == 768
    assert workflow["5"]["inputs"]["height"] == 512
    assert workflow["3"]["inputs"]["seed"] == 1234
    assert workflow["9"]["inputs"]["filename_prefix"] == "handle-1"
    assert template["9"]["inputs"]["filename_prefix"] == "story"


def test_blank_negative_prompt_keeps_template_text():
    template = _template()
    template["7"]["inputs"]["text"] = "template negative"
    workflow = build_txt2img_workflow(
        template,
        checkpoint_name="",
        prompt_text="castle",
        negative_text="   ",
        width=64,
        height=64,
        seed=1,
        filename_prefix="h",
    )
    assert workflow["7"]["inputs"]["text"] == "template negative"
    assert workflow["4"]["inputs"]["ckpt_name"] == template["4"]["inputs"]["ckpt_name"]


def test_build_workflow_requires_core_nodes():
    with pytest.raises(RuntimeError):
        build_txt2img_workflow(
            {"1": {"class_type": "KSampler", "inputs": {}}},
            checkpoint_name="m",
            prompt_text="p",
            negative_text="",
            width=1,
            height=1,
            seed=1,
            filename_prefix="h",
        )


def test_submit_posts_prompt_and_returns_payload(monkeypatch):
    seen = {}

    def fake_urlopen(req, timeout=None):
        seen["url"] = req.full_url
        seen["method"] = req.get_method()
        seen["body"] = json.loads(req.data.decode("utf-8"))
        seen["timeout"] = timeout
        return _FakeResponse(b'{"prompt_id": "p-1", "number": 3}')

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    client = ComfyUIClient(ComfyUIConfig(host="comfy", port=9999, submit_timeout_sec=7))

    payload = client.submit_workflow({"9": {"class_type": "SaveImage", "inputs": {}}}, client_id="h")

    assert payload == {"prompt_id": "p-1", "number": 3}
    assert seen["url"] == "http://comfy:9999/prompt"
    assert seen["method"] == "POST"
    assert seen["body"]["client_id"] == "h"
    assert "9" in seen["body"]["prompt"]
    assert seen["timeout"] == 7


def test_history_quotes_prompt_id(monkeypatch):
    seen = {}

    def fake_urlopen(req, timeout=None):
        seen["url"] = req.full_url
        seen["method"] = req.get_method()
        return _FakeResponse(b"{}")

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    client = ComfyUIClient(ComfyUIConfig())

    assert client.history("a b/c") == {}
    assert seen["url"].endswith("/history/a%20b/c")
    assert seen["method"] == "GET"


def test_transport_errors_become_backend_unavailable(monkeypatch):
    def fail(*_args, **_kwargs):
        raise urllib.error.URLError("connection refused")

    monkeypatch.setattr(urllib.request, "urlopen", fail)
    with pytest.raises(BackendUnavailable):
        ComfyUIClient(ComfyUIConfig()).submit_workflow({})


def test_non_json_body_is_malformed(monkeypatch):
    monkeypatch.setattr(urllib.request, "urlopen", lambda req, timeout=None: _FakeResponse(b"<html>"))
    with pytest.raises(MalformedResponse):
        ComfyUIClient(ComfyUIConfig()).history("p-1")
