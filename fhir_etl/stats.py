from contextlib import contextmanager
from datetime import timedelta
import time
from typing import Any, Generator

import statsd
from statsd.client.timer import Timer

from fhir_etl.config import ConfigStats


class Stats:
    def timing(self, key: str, value: int) -> None:
        raise NotImplementedError

    def inc(self, key: str, count: int = 1, rate: int = 1) -> None:
        raise NotImplementedError

    def gauge(self, key: str, value: int, delta: bool = False) -> None:
        raise NotImplementedError

    def timer(self, key: str) -> Timer:
        raise NotImplementedError


class NoopStats(Stats):
    def timing(self, key: str, value: int) -> None:
        pass

    def inc(self, key: str, count: int = 1, rate: int = 1) -> None:
        pass

    def gauge(self, key: str, value: int, delta: bool = False) -> None:
        pass

    def timer(self, key: str) -> Timer:
        @contextmanager
        def noop_context_manager() -> Generator[Any, Any, Any]:
            yield

        return noop_context_manager()  # type: ignore


class MemoryClient:
    """
    Keeps metrics in a dict instead of sending them. Used when stats are enabled
    without a statsd host, and by the tests.
    """

    def __init__(self) -> None:
        self.memory: dict[str, Any] = {}

    def timer(self, stat: str, rate: int = 1) -> Timer:
        return Timer(self, stat, rate)

    def timing(self, stat: str, delta: timedelta | float, rate: int = 1) -> None:
        if isinstance(delta, timedelta):
            delta = delta.total_seconds() * 1000.0
        self.memory.setdefault(stat, []).append(delta)

    def incr(self, stat: str, count: int = 1, rate: int = 1) -> None:
        self.memory[stat] = self.memory.get(stat, 0) + count

    def gauge(self, stat: str, value: int, rate: int = 1, delta: bool = False) -> None:
        self.memory.setdefault(stat, []).append({"value": value, "timestamp": time.time()})

    def get_memory(self) -> dict[str, Any]:
        return self.memory


class Statsd(Stats):
    def __init__(self, client: statsd.StatsClient | MemoryClient, prefix: str | None = None):
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}.{key}" if self.prefix else key

    def timing(self, key: str, value: int) -> None:
        self.client.timing(self._key(key), value)

    def inc(self, key: str, count: int = 1, rate: int = 1) -> None:
        self.client.incr(self._key(key), count, rate)

    def gauge(self, key: str, value: int, delta: bool = False) -> None:
        self.client.gauge(self._key(key), value, delta=delta)

    def timer(self, key: str) -> Timer:
        return self.client.timer(self._key(key))


_STATS: Stats = NoopStats()


def setup_stats(config: ConfigStats) -> None:
    if config.enabled is False:
        return
    in_memory = config.host is None or config.host == ""
    client = (
        MemoryClient()
        if in_memory
        else statsd.StatsClient(config.host, config.port or 8125)
    )
    global _STATS
    _STATS = Statsd(client, prefix=config.module_name)


def reset_stats() -> None:
    global _STATS
    _STATS = NoopStats()


def get_stats() -> Stats:
    return _STATS
