from __future__ import annotations

import os
import threading

import pytest

from orchestrator.comfyui_client import ComfyUIConfig
from orchestrator.errors import BackendUnavailable, GenerationTimeout
from orchestrator.image_generator import ImageGenerator, backend_job_id


class FakeComfy:
    def __init__(self, config: ComfyUIConfig, submit_payload=None, history_payload=None, write_file=False) -> None:
        self.config = config
        self.submit_payload = submit_payload if submit_payload is not None else {}
        self.history_payload = history_payload if history_payload is not None else {}
        self.write_file = write_file
        self.workflows: list[dict] = []
        self.history_calls = 0

    def submit_workflow(self, workflow, client_id=""):
        self.workflows.append(workflow)
        if self.write_file:
            prefix = workflow["9"]["inputs"]["filename_prefix"]
            with open(os.path.join(self.config.output_dir, f"{prefix}_00001_.png"), "wb") as f:
                f.write(b"png")
        return self.submit_payload

    def history(self, prompt_id):
        self.history_calls += 1
        return self.history_payload


def _config(tmp_path) -> ComfyUIConfig:
    return ComfyUIConfig(
        output_dir=str(tmp_path / "out"),
        poll_interval_sec=0.05,
        max_wait_sec=2.0,
        stability_delay_sec=0.02,
        checkpoint_name="ckpt.safetensors",
    )


def test_inline_outputs_skip_polling(tmp_path):
    cfg = _config(tmp_path)
    fake = FakeComfy(cfg, submit_payload={"outputs": [{"path": "/done/a.png"}], "prompt_id": "p"})
    gen = ImageGenerator(config=cfg, client=fake)

    assert gen.generate("castle", "ugly", 512, 512) == "/done/a.png"
    assert fake.history_calls == 0


def test_job_id_drives_history_polling(tmp_path):
    cfg = _config(tmp_path)
    history = {"p-7": {"outputs": {"9": {"images": [{"filename": "x.png", "subfolder": "sub"}]}}}}
    fake = FakeComfy(cfg, submit_payload={"prompt_id": "p-7"}, history_payload=history)
    gen = ImageGenerator(config=cfg, client=fake)

    path = gen.generate("castle", "", 512, 512)

    assert path == os.path.join(cfg.output_dir, "sub", "x.png")
    assert fake.history_calls >= 1


def test_file_named_with_handle_is_found_without_job_id(tmp_path):
    cfg = _config(tmp_path)
    fake = FakeComfy(cfg, submit_payload={}, write_file=True)
    gen = ImageGenerator(config=cfg, client=fake)

    path = gen.generate("castle", "blurry", 640, 480)

    workflow = fake.workflows[0]
    prefix = workflow["9"]["inputs"]["filename_prefix"]
    assert os.path.basename(path).startswith(prefix)
    assert workflow["5"]["inputs"]["width"] == 640
    assert workflow["5"]["inputs"]["height"] == 480
    assert workflow["4"]["inputs"]["ckpt_name"] == "ckpt.safetensors"
    assert workflow["7"]["inputs"]["text"] == "blurry"


def test_each_job_gets_a_fresh_handle(tmp_path):
    cfg = _config(tmp_path)
    fake = FakeComfy(cfg, submit_payload={}, write_file=True)
    gen = ImageGenerator(config=cfg, client=fake)
    gen.generate("a", "", 64, 64)
    gen.generate("b", "", 64, 64)
    prefixes = {wf["9"]["inputs"]["filename_prefix"] for wf in fake.workflows}
    assert len(prefixes) == 2


def test_submit_failure_keeps_polling_by_handle(tmp_path):
    cfg = _config(tmp_path)

    class SlowToAnswer(FakeComfy):
        def submit_workflow(self, workflow, client_id=""):
            prefix = workflow["9"]["inputs"]["filename_prefix"]
            path = os.path.join(self.config.output_dir, f"{prefix}_00001_.png")

            def write_later() -> None:
                with open(path, "wb") as f:
                    f.write(b"png")

            threading.Timer(0.3, write_later).start()
            raise BackendUnavailable("ComfyUI connection failed: timed out")

    fake = SlowToAnswer(cfg)
    path = ImageGenerator(config=cfg, client=fake).generate("castle", "", 64, 64)

    assert os.path.basename(path).endswith("_00001_.png")
    assert fake.history_calls == 0


def test_submit_failure_still_times_out_without_file(tmp_path):
    cfg = _config(tmp_path)
    cfg.max_wait_sec = 0.3

    class Down(FakeComfy):
        def submit_workflow(self, workflow, client_id=""):
            raise BackendUnavailable("ComfyUI connection failed")

    with pytest.raises(GenerationTimeout) as info:
        ImageGenerator(config=cfg, client=Down(cfg)).generate("castle", "", 64, 64)
    assert info.value.backend_job_id is None
    assert info.value.submission_handle


def test_backend_job_id_key_priority():
    assert backend_job_id({"id": 5, "prompt_id": "p"}) == "5"
    assert backend_job_id({"uuid": "  ", "prompt_id": "p"}) == "p"
    assert backend_job_id({"job_id": None}) is None
    assert backend_job_id({}) is None
