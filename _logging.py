# _logging.py
# Structured console logger for the scrobbler, with an optional JSON-lines file sink.
from __future__ import annotations
import sys, datetime, json, threading
from typing import Any, Optional, TextIO, Mapping, Dict

RESET = "\033[0m"
DIM = "\033[90m"
RED = "\033[91m"
GREEN = "\033[92m"
YELLOW = "\033[33m"
BLUE = "\033[94m"

LEVELS = {"silent": 60, "error": 40, "warn": 30, "info": 20, "debug": 10}


class Logger:
    def __init__(
        self,
        stream: TextIO = sys.stdout,
        level: str = "info",
        use_color: bool = True,
        show_time: bool = True,
        time_fmt: str = "%Y-%m-%d %H:%M:%S",
        tag_color_map: Optional[dict[str, str]] = None,
        *,
        _context: Optional[Dict[str, Any]] = None,
        _name: Optional[str] = None,
        _shared: Optional[Dict[str, Any]] = None,
    ):
        self.stream = stream
        self.use_color = use_color
        self.show_time = show_time
        self.time_fmt = time_fmt
        self.tag_color_map = tag_color_map or {
            "DEBUG": YELLOW,
            "INFO": BLUE,
            "WARN": YELLOW,
            "ERROR": RED,
            "SUCCESS": GREEN,
        }
        self._context: Dict[str, Any] = dict(_context or {})
        if _name:
            self._context.setdefault("module", _name)
        # level, json sink and lock are shared between a logger and its children
        self._shared: Dict[str, Any] = _shared if _shared is not None else {
            "level_no": LEVELS.get(level, 20),
            "json_stream": None,
            "lock": threading.Lock(),
        }

    # Configuration
    @property
    def level_no(self) -> int:
        return int(self._shared["level_no"])

    def set_level(self, level: str) -> None:
        self._shared["level_no"] = LEVELS.get(str(level or "").lower(), self.level_no)

    def enable_color(self, on: bool = True) -> None:
        self.use_color = on

    def enable_time(self, on: bool = True) -> None:
        self.show_time = on

    def enable_json(self, file_path: str) -> None:
        with self._shared["lock"]:
            old = self._shared.get("json_stream")
            if old is not None:
                old.close()
            self._shared["json_stream"] = open(file_path, "a", encoding="utf-8")

    def is_enabled(self, level: str) -> bool:
        return LEVELS.get(level, 20) >= self.level_no

    # Context
    def set_context(self, **ctx: Any) -> None:
        self._context.update(ctx)

    def get_context(self) -> Dict[str, Any]:
        return dict(self._context)

    def bind(self, **ctx: Any) -> "Logger":
        new_ctx = dict(self._context); new_ctx.update(ctx)
        return Logger(
            stream=self.stream,
            use_color=self.use_color,
            show_time=self.show_time,
            time_fmt=self.time_fmt,
            tag_color_map=dict(self.tag_color_map),
            _context=new_ctx,
            _name=new_ctx.get("module"),
            _shared=self._shared,
        )

    def child(self, name: str) -> "Logger":
        return self.bind(module=name)

    @property
    def level_name(self) -> str:
        for k, v in LEVELS.items():
            if v == self.level_no:
                return k
        return "info"

    # Formatting
    def _fmt_text(self, display_level: str, *parts: Any) -> str:
        mod = (self._context.get("module") or "").strip()
        lvl = display_level
        msg = " ".join(str(p) for p in parts)

        col = self.tag_color_map.get(lvl) or self.tag_color_map.get(lvl.upper()) if self.use_color else None
        lvl_disp = f"{col}{lvl}{RESET}" if col else lvl
        head = f"[{mod}]" if mod else ""
        line = f"{head} {lvl_disp} {msg}".strip()

        if self.show_time:
            ts = datetime.datetime.now().strftime(self.time_fmt)
            prefix = f"{DIM}[{ts}]{RESET}" if self.use_color else f"[{ts}]"
            return f"{prefix} {line}"
        return line

    def _write_sinks(self, display_level: str, message_text: str, *, msg: str, extra: Optional[Mapping[str, Any]]) -> None:
        with self._shared["lock"]:
            self.stream.write(message_text + "\n")
            self.stream.flush()
            js = self._shared.get("json_stream")
            if js:
                payload = {
                    "ts": datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
                    "level": display_level,
                    "msg": msg,
                    "ctx": self._context or {},
                }
                if extra:
                    payload["extra"] = dict(extra)
                js.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
                js.flush()

    def _emit(self, severity: str, display_level: str, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        if not self.is_enabled(severity):
            return
        s = self._fmt_text(display_level, *parts)
        self._write_sinks(display_level, s, msg=" ".join(str(p) for p in parts), extra=extra)

    # Public API
    def debug(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("debug", "DEBUG", *parts, extra=extra)

    def info(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("info", "INFO", *parts, extra=extra)

    def warn(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("warn", "WARN", *parts, extra=extra)

    def warning(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self.warn(*parts, extra=extra)

    def error(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("error", "ERROR", *parts, extra=extra)

    def success(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("info", "SUCCESS", *parts, extra=extra)

    # Callable adapter: logger("text", level="INFO", module="SCROBBLE")
    def __call__(
        self,
        message: str,
        *,
        level: str = "INFO",
        module: Optional[str] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        target = self.bind(module=module) if module else self
        lvl_lc = (level or "INFO").lower()

        if lvl_lc == "debug":
            target.debug(message, extra=extra)
        elif lvl_lc in ("warn", "warning"):
            target.warn(message, extra=extra)
        elif lvl_lc == "error":
            target.error(message, extra=extra)
        elif lvl_lc == "success":
            target.success(message, extra=extra)
        else:
            target.info(message, extra=extra)

# default instance
log = Logger()

__all__ = ["Logger", "log", "LEVELS", "RESET", "DIM", "RED", "GREEN", "YELLOW", "BLUE"]
