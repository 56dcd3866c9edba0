"""Middleware serving process and system metrics as a page or as JSON."""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

import psutil

from ctxware.monitorpage import Config, config_default
from ctxware.web import APPLICATION_JSON, Ctx, HTTPError

TEXT_HTML_UTF8 = "text/html; charset=utf-8"

_PSUTIL_ERRORS = (psutil.Error, OSError)


@dataclass
class Stats:
    """A snapshot of process and system metrics."""

    pid_cpu: float = 0.0
    pid_ram: int = 0
    pid_conns: int = 0
    os_cpu: float = 0.0
    os_ram: int = 0
    os_total_ram: int = 0
    os_load_avg: float = 0.0
    os_conns: int = 0

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {
            "pid": {"cpu": self.pid_cpu, "ram": self.pid_ram, "conns": self.pid_conns},
            "os": {
                "cpu": self.os_cpu,
                "ram": self.os_ram,
                "total_ram": self.os_total_ram,
                "load_avg": self.os_load_avg,
                "conns": self.os_conns,
            },
        }


_lock = threading.Lock()
_latest = Stats()
_start_lock = threading.Lock()
_started = False


def _process_connections(process: Any) -> list[Any]:
    method = getattr(process, "net_connections", None) or process.connections
    return method(kind="tcp")


def update_statistics(process: Any, numcpu: int) -> Stats:
    """Refresh the shared metrics; a metric that cannot be read keeps its last value."""
    updates: dict[str, Any] = {}
    try:
        updates["pid_cpu"] = process.cpu_percent(interval=None) / numcpu
    except _PSUTIL_ERRORS:
        pass
    try:
        updates["os_cpu"] = float(psutil.cpu_percent(interval=None))
    except _PSUTIL_ERRORS:
        pass
    try:
        updates["pid_ram"] = process.memory_info().rss
    except _PSUTIL_ERRORS:
        pass
    try:
        memory = psutil.virtual_memory()
        updates["os_ram"] = memory.used
        updates["os_total_ram"] = memory.total
    except _PSUTIL_ERRORS:
        pass
    try:
        updates["os_load_avg"] = psutil.getloadavg()[0]
    except _PSUTIL_ERRORS:
        pass
    try:
        updates["pid_conns"] = len(_process_connections(process))
    except _PSUTIL_ERRORS:
        pass
    try:
        updates["os_conns"] = len(psutil.net_connections(kind="tcp"))
    except _PSUTIL_ERRORS:
        pass

    global _latest
    with _lock:
        _latest = replace(_latest, **updates)
        return replace(_latest)


def _snapshot() -> Stats:
    with _lock:
        return replace(_latest)


def _refresh_forever(process: Any, numcpu: int, interval: float) -> None:
    while True:
        time.sleep(interval)
        update_statistics(process, numcpu)


def _start_collector(refresh: float) -> None:
    global _started
    with _start_lock:
        if _started:
            return
        _started = True
        try:
            process = psutil.Process(os.getpid())
        except _PSUTIL_ERRORS:
            return
        numcpu = psutil.cpu_count() or 1
        update_statistics(process, numcpu)
        thread = threading.Thread(
            target=_refresh_forever, args=(process, numcpu, refresh), name="monitor-stats", daemon=True
        )
        thread.start()


def new(config: Optional[Config] = None) -> Callable[[Ctx], Any]:
    """Create the monitor middleware; only GET is served, other methods fail with 405."""
    cfg = config_default(config)
    _start_collector(cfg.refresh)

    def handler(ctx: Ctx) -> Any:
        if cfg.next is not None and cfg.next(ctx):
            return ctx.next()
        if ctx.method != "GET":
            raise HTTPError(405)
        if ctx.get("Accept") == APPLICATION_JSON or cfg.api_only:
            ctx.status(200).json(_snapshot().to_dict())
            return None
        ctx.set("Content-Type", TEXT_HTML_UTF8)
        ctx.status(200).send_string(cfg.index)
        return None

    return handler