"""Middleware that rejects requests while the machine is under load."""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

import psutil

from ctxware.web import Ctx, HTTPError


class CPUPercentGetter(Protocol):
    def percent(self, interval: float, percpu: bool) -> list[float]: ...


class LoadCriteria(ABC):
    """A load metric and the rule deciding when to shed load."""

    @abstractmethod
    def metric(self) -> float:
        """Return the current load metric."""

    @abstractmethod
    def should_shed(self, metric: float) -> bool:
        """Return True when a request should be rejected at this load."""


class DefaultCPUPercentGetter:
    """Reads system CPU usage."""

    def percent(self, interval: float, percpu: bool) -> list[float]:
        value = psutil.cpu_percent(interval=interval, percpu=percpu)
        return list(value) if isinstance(value, list) else [float(value)]


@dataclass
class CPULoadCriteria(LoadCriteria):
    """CPU usage as load; thresholds are fractions, the metric is a percentage."""

    lower_threshold: float = 0.90
    upper_threshold: float = 0.95
    interval: float = 10.0
    getter: CPUPercentGetter = field(default_factory=DefaultCPUPercentGetter)

    def metric(self) -> float:
        percentages = self.getter.percent(self.interval, False)
        return percentages[0] if percentages else 0.0

    def should_shed(self, metric: float) -> bool:
        if metric > self.upper_threshold * 100:
            return True
        if metric > self.lower_threshold * 100:
            rejection_probability = (metric - self.lower_threshold * 100) / (
                self.upper_threshold - self.lower_threshold
            )
            return random.random() * 100 < rejection_probability
        return False


@dataclass
class Config:
    """Settings of the load-shedding middleware."""

    next: Optional[Callable[[Ctx], bool]] = None
    criteria: LoadCriteria = field(default_factory=CPULoadCriteria)


CONFIG_DEFAULT = Config()


def new(config: Optional[Config] = None) -> Callable[[Ctx], Any]:
    """Create the middleware; shed requests fail with a 503 HTTPError."""
    cfg = config if config is not None else CONFIG_DEFAULT

    def handler(ctx: Ctx) -> Any:
        if cfg.next is not None and cfg.next(ctx):
            return ctx.next()
        try:
            metric = cfg.criteria.metric()
        except Exception:
            # Without a metric the request is allowed through.
            return ctx.next()
        if cfg.criteria.should_shed(metric):
            raise HTTPError(503)
        return ctx.next()

    return handler