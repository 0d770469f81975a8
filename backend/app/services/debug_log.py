from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any, Literal, Optional

DebugKind = Literal["request", "response", "error"]

MAX_ENTRIES = 100
MAX_DEPTH = 10
MAX_ITEMS = 100
MAX_KEYS = 50

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")


def _looks_like_base64_blob(value: str) -> bool:
    # Long runs of base64 are image or audio payloads, not something to read.
    return len(value) > 10000 and _BASE64_RE.match(value) is not None


def _kb(size: int) -> int:
    return round(size / 1024)


def safe_debug_object(obj: Any, depth: int = 0, max_depth: int = MAX_DEPTH, _seen: Optional[set[int]] = None) -> Any:
    """JSON-safe copy of `obj` with depth, size and cycle limits."""

    if depth >= max_depth:
        return "[Max depth reached]"
    if obj is None or isinstance(obj, (bool, int, float)):
        return obj
    if isinstance(obj, str):
        if obj.startswith("data:image/"):
            return f"[Base64 Image Data: {_kb(len(obj))}KB]"
        if _looks_like_base64_blob(obj):
            return f"[Base64 Data: {_kb(len(obj))}KB]"
        return obj
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return f"[Binary Data: {_kb(len(obj))}KB]"
    if callable(obj):
        return "[Function]"

    seen = _seen if _seen is not None else set()
    if id(obj) in seen:
        return "[Circular Reference]"
    seen.add(id(obj))
    try:
        if hasattr(obj, "model_dump"):
            obj = obj.model_dump()
        if isinstance(obj, dict):
            out: dict[str, Any] = {}
            for i, (key, value) in enumerate(obj.items()):
                if i >= MAX_KEYS:
                    out["..."] = "[More properties truncated]"
                    break
                out[str(key)] = safe_debug_object(value, depth + 1, max_depth, seen)
            return out
        if isinstance(obj, (list, tuple, set)):
            values = list(obj)
            items = [safe_debug_object(v, depth + 1, max_depth, seen) for v in values[:MAX_ITEMS]]
            if len(values) > MAX_ITEMS:
                items.append(f"[... {len(values) - MAX_ITEMS} more items]")
            return items
        return repr(obj)
    finally:
        seen.discard(id(obj))


class DebugLog:
    """In-memory record of provider traffic, newest first."""

    def __init__(self, enabled: bool = True, pretty: bool = True, max_entries: int = MAX_ENTRIES) -> None:
        self.enabled = enabled
        self.pretty = pretty
        self.max_entries = max_entries
        self._entries: list[dict[str, Any]] = []

    def configure(self, *, enabled: bool, pretty: bool) -> None:
        self.enabled = enabled
        self.pretty = pretty

    @property
    def entries(self) -> list[dict[str, Any]]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def record(self, kind: DebugKind, provider: str, model: str, payload: dict[str, Any]) -> None:
        if not self.enabled:
            return
        data = dict(payload)
        if "duration" in data and isinstance(data["duration"], (int, float)):
            # Stored in milliseconds, displayed in seconds.
            data["duration"] = f"{data['duration'] / 1000:.1f}"
        entry = {
            "timestamp": datetime.now().astimezone().strftime("%m/%d/%Y, %H:%M:%S %Z"),
            "type": kind,
            "provider": provider,
            "model": model,
            **safe_debug_object(data),
        }
        self._entries.insert(0, entry)
        del self._entries[self.max_entries :]

    def format(self, obj: Any) -> str:
        if obj is None:
            return ""
        safe = safe_debug_object(obj)
        if not self.pretty:
            return json.dumps(safe, ensure_ascii=False, default=str)
        text = json.dumps(safe, indent=2, ensure_ascii=False, default=str)
        return text.replace("\\n", "\n").replace("\\t", "\t")

    def render(self) -> list[str]:
        return [self.format(e) for e in self._entries]
