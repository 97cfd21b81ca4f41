from __future__ import annotations

import pytest

from agents.common import load_llm_config
from orchestrator.comfyui_client import load_comfyui_config
from orchestrator.pipeline import load_story_config
from orchestrator.settings import load_section


def _write(tmp_path, text: str) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_missing_file_gives_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("COMFYUI_PORT", raising=False)
    monkeypatch.delenv("COMFYUI_HOST", raising=False)
    cfg = load_comfyui_config(str(tmp_path / "missing.yaml"))
    assert cfg.port == 8188
    assert cfg.history_shapes == ["outputs", "executions", "keyed"]


def test_yaml_section_overrides_defaults(tmp_path, monkeypatch):
    for var in ("STORY_IMAGE_TIMEOUT_SEC", "STORY_MAX_CONCURRENT_JOBS", "STORY_NEGATIVE_PROMPT"):
        monkeypatch.delenv(var, raising=False)
    path = _write(
        tmp_path,
        "story:\n  image_timeout_sec: 12\n  max_concurrent_jobs: 2\n  negative_prompt: blurry\n",
    )
    cfg = load_story_config(path)
    assert cfg.image_timeout_sec == 12.0
    assert isinstance(cfg.image_timeout_sec, float)
    assert cfg.max_concurrent_jobs == 2
    assert cfg.negative_prompt == "blurry"
    assert cfg.image_width == 1024


def test_env_overrides_yaml(tmp_path, monkeypatch):
    path = _write(tmp_path, "llm:\n  model: from-yaml\n  temperature: 0.2\n")
    monkeypatch.setenv("LLM_MODEL", "from-env")
    monkeypatch.delenv("LLM_TEMPERATURE", raising=False)
    cfg = load_llm_config(path)
    assert cfg.model == "from-env"
    assert cfg.temperature == 0.2


def test_list_option_from_env(tmp_path, monkeypatch):
    monkeypatch.setenv("COMFYUI_PORT", "9000")
    cfg = load_comfyui_config(_write(tmp_path, "comfyui:\n  image_extensions: ['.png', '.webp']\n"))
    assert cfg.port == 9000
    assert cfg.image_extensions == [".png", ".webp"]


def test_invalid_value_is_rejected(tmp_path, monkeypatch):
    monkeypatch.setenv("STORY_MAX_CONCURRENT_JOBS", "many")
    with pytest.raises(ValueError):
        load_story_config(str(tmp_path / "missing.yaml"))


def test_non_mapping_file_is_rejected(tmp_path):
    with pytest.raises(ValueError):
        load_section("story", _write(tmp_path, "- just\n- a list\n"))


def test_config_path_env(tmp_path, monkeypatch):
    path = _write(tmp_path, "story:\n  image_width: 512\n")
    monkeypatch.setenv("STORY_CONFIG_PATH", path)
    assert load_section("story") == {"image_width": 512}
