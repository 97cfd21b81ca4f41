"""Per-run logging and artifact capture for observability.

Writes never raise: the first ``OSError`` is reported on stderr and later
writes for the run are skipped, so a broken run directory cannot fail a story.
"""
import json
import os
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Protocol


class LoggerLike(Protocol):
    def log(self, message: str) -> None:
        ...


class NullLogger:
    def log(self, message: str) -> None:
        return None


class RunLogger:
    def __init__(self, run_dir: str, echo: bool = False) -> None:
        self.run_dir = run_dir
        self.log_path = os.path.join(self.run_dir, "run.log")
        self.manifest_path = os.path.join(self.run_dir, "run_manifest.json")
        self.echo = echo
        self.disabled = False
        self._lock = threading.Lock()
        self.manifest: Dict[str, Any] = {}
        try:
            os.makedirs(self.run_dir, exist_ok=True)
        except OSError as exc:
            self._disable(exc)
        if os.path.exists(self.manifest_path):
            try:
                with open(self.manifest_path, "r", encoding="utf-8") as f:
                    self.manifest = json.load(f)
            except (OSError, json.JSONDecodeError):
                self.manifest = {}
        if not self.manifest:
            self.manifest = {
                "run_id": os.path.basename(run_dir),
                "started_at": _now(),
                "steps": {},
            }
        else:
            self.manifest.setdefault("run_id", os.path.basename(run_dir))
            self.manifest.setdefault("steps", {})

    def log(self, message: str) -> None:
        line = f"[{_now()}] {message}"
        with self._lock:
            if not self.disabled:
                try:
                    with open(self.log_path, "a", encoding="utf-8") as f:
                        f.write(line + "\n")
                except OSError as exc:
                    self._disable(exc)
        if self.echo:
            print(line, flush=True)

    def save_step(self, step: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.manifest["steps"].setdefault(step, {}).update(payload)
            self._flush()

    def write_json(self, name: str, data: Any) -> str:
        """Write ``data`` into the run dir; returns the path, or "" if it could not be written."""
        path = os.path.join(self.run_dir, name)
        with self._lock:
            if self.disabled:
                return ""
            try:
                with open(path, "w", encoding="utf-8") as f:
                    json.dump(data, f, ensure_ascii=False, indent=2)
            except OSError as exc:
                self._disable(exc)
                return ""
        return path

    def _flush(self) -> None:
        self.manifest["updated_at"] = _now()
        if self.disabled:
            return
        try:
            with open(self.manifest_path, "w", encoding="utf-8") as f:
                json.dump(self.manifest, f, ensure_ascii=True, indent=2)
        except OSError as exc:
            self._disable(exc)

    def _disable(self, exc: OSError) -> None:
        if not self.disabled:
            self.disabled = True
            print(f"run log disabled for {self.run_dir}: {exc}", file=sys.stderr, flush=True)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
