"""Load generation against a cache or an HTTP endpoint, with latency statistics."""

from __future__ import annotations

import gc
import logging
import threading
import time
import tracemalloc
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

try:
    import resource
except ImportError:  # not available on every platform
    resource = None  # type: ignore[assignment]

_HTTP_TIMEOUT = 5.0


class _Cache(Protocol):
    def set(self, key: str, value: bytes) -> Any: ...
    def get(self, key: str) -> Any: ...


@dataclass
class BenchmarkConfig:
    """How a benchmark is run; all durations are in seconds."""

    concurrency: int = 100
    duration: float = 30.0
    request_interval: float = 0.01
    warmup_duration: float = 5.0
    verbose: bool = False

    def __post_init__(self) -> None:
        if self.request_interval <= 0:
            raise ValueError(f"request interval must be positive: {self.request_interval}")


def default_benchmark_config() -> BenchmarkConfig:
    """The configuration used when nothing else is given."""
    return BenchmarkConfig(
        concurrency=100,
        duration=30.0,
        request_interval=0.01,
        warmup_duration=5.0,
        verbose=False,
    )


@dataclass(frozen=True)
class MemoryStats:
    """Memory figures of the running process, in bytes."""

    alloc: int = 0
    total_alloc: int = 0
    sys: int = 0
    num_gc: int = 0


@dataclass
class BenchmarkResult:
    """Counters and latency figures of one benchmark run; times are in seconds."""

    config: BenchmarkConfig
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: float = 0.0
    total_requests: int = 0
    success_requests: int = 0
    failed_requests: int = 0
    qps: float = 0.0
    avg_response_time: float = 0.0
    min_response_time: float = 0.0
    max_response_time: float = 0.0
    p50_response_time: float = 0.0
    p95_response_time: float = 0.0
    p99_response_time: float = 0.0
    memory_stats: MemoryStats = field(default_factory=MemoryStats)
    cpu_usage: float = 0.0
    errors: dict[str, int] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_error(self, message: str) -> None:
        """Count one failed request caused by ``message``."""
        with self._lock:
            self.failed_requests += 1
            self.errors[message] = self.errors.get(message, 0) + 1

    def _record_success(self) -> None:
        with self._lock:
            self.success_requests += 1

    def _next_request(self) -> int:
        with self._lock:
            self.total_requests += 1
            return self.total_requests

    def _current_total(self) -> int:
        with self._lock:
            return self.total_requests


def _memory_stats() -> MemoryStats:
    alloc = total_alloc = 0
    if tracemalloc.is_tracing():
        alloc, total_alloc = tracemalloc.get_traced_memory()
    sys_bytes = 0
    if resource is not None:
        sys_bytes = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss * 1024
    num_gc = sum(generation["collections"] for generation in gc.get_stats())
    return MemoryStats(alloc=alloc, total_alloc=total_alloc, sys=sys_bytes, num_gc=num_gc)


def calculate_stats(result: BenchmarkResult, response_times: Sequence[float]) -> None:
    """Fill in totals, QPS, latency percentiles and memory figures; no samples leaves it as is."""
    if not response_times:
        return

    result.total_requests = result.success_requests + result.failed_requests
    if result.duration > 0:
        result.qps = result.total_requests / result.duration

    result.min_response_time = min(response_times)
    result.max_response_time = max(response_times)
    result.avg_response_time = sum(response_times) / len(response_times)

    ordered = sorted(response_times)
    count = len(ordered)
    for attr, fraction in (
        ("p50_response_time", 0.5),
        ("p95_response_time", 0.95),
        ("p99_response_time", 0.99),
    ):
        index = int(count * fraction)
        if index < count:
            setattr(result, attr, ordered[index])

    result.memory_stats = _memory_stats()


def _format_duration(seconds: float) -> str:
    return f"{seconds * 1000:.3f}ms"


class _Samples:
    def __init__(self) -> None:
        self._times: list[float] = []
        self._lock = threading.Lock()

    def add(self, elapsed: float) -> None:
        with self._lock:
            self._times.append(elapsed)

    def snapshot(self) -> list[float]:
        with self._lock:
            return list(self._times)


def _run_threads(count: int, target: Callable[[int], None]) -> None:
    threads = [threading.Thread(target=target, args=(i,), daemon=True) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()


class BenchmarkRunner:
    """Runs timed benchmarks with a fixed number of concurrent workers."""

    def __init__(self, config: BenchmarkConfig, logger: Optional[logging.Logger] = None) -> None:
        self._config = config
        self._log = logger or logging.getLogger(__name__)

    def run_cache_benchmark(self, cache: _Cache) -> BenchmarkResult:
        """Drive mixed reads and writes against ``cache`` for the configured duration."""
        self._log.info(
            "cache benchmark starting concurrency=%d duration=%s",
            self._config.concurrency, self._config.duration,
        )
        result = BenchmarkResult(config=self._config, start_time=datetime.now(timezone.utc))
        started = time.monotonic()

        if self._config.warmup_duration > 0:
            self._log.info("cache warmup starting duration=%s", self._config.warmup_duration)
            self._warmup_cache(cache, self._config.warmup_duration)
            self._log.info("cache warmup finished")

        deadline = time.monotonic() + self._config.duration
        samples = _Samples()
        _run_threads(
            self._config.concurrency,
            lambda worker_id: self._cache_worker(deadline, cache, result, samples, worker_id),
        )
        self._finish(result, started, samples)
        self._log.info(
            "cache benchmark finished total_requests=%d qps=%.2f avg=%s p95=%s",
            result.total_requests, result.qps,
            _format_duration(result.avg_response_time),
            _format_duration(result.p95_response_time),
        )
        return result

    def run_http_benchmark(self, url: str) -> BenchmarkResult:
        """Send GET requests to ``url`` for the configured duration."""
        self._log.info(
            "HTTP benchmark starting url=%s concurrency=%d duration=%s",
            url, self._config.concurrency, self._config.duration,
        )
        result = BenchmarkResult(config=self._config, start_time=datetime.now(timezone.utc))
        started = time.monotonic()

        if self._config.warmup_duration > 0:
            self._log.info("HTTP warmup starting duration=%s", self._config.warmup_duration)
            self._warmup_http(url, self._config.warmup_duration)
            self._log.info("HTTP warmup finished")

        deadline = time.monotonic() + self._config.duration
        samples = _Samples()
        _run_threads(
            self._config.concurrency,
            lambda worker_id: self._http_worker(deadline, url, result, samples),
        )
        self._finish(result, started, samples)
        self._log.info(
            "HTTP benchmark finished total_requests=%d qps=%.2f avg=%s p95=%s",
            result.total_requests, result.qps,
            _format_duration(result.avg_response_time),
            _format_duration(result.p95_response_time),
        )
        return result

    @staticmethod
    def _finish(result: BenchmarkResult, started: float, samples: _Samples) -> None:
        result.end_time = datetime.now(timezone.utc)
        result.duration = time.monotonic() - started
        calculate_stats(result, samples.snapshot())

    def _tick(self, deadline: float, body: Callable[[], None]) -> None:
        """Call ``body`` once per interval until ``deadline``, dropping missed ticks."""
        interval = self._config.request_interval
        next_tick = time.monotonic() + interval
        while True:
            if next_tick >= deadline:
                time.sleep(max(0.0, deadline - time.monotonic()))
                return
            delay = next_tick - time.monotonic()
            if delay > 0:
                time.sleep(delay)
            body()
            now = time.monotonic()
            next_tick += interval
            if next_tick <= now:
                next_tick = now + interval

    def _cache_worker(
        self,
        deadline: float,
        cache: _Cache,
        result: BenchmarkResult,
        samples: _Samples,
        worker_id: int,
    ) -> None:
        def request() -> None:
            start = time.perf_counter()
            key = f"bench_key_{worker_id}_{result._next_request()}"
            value = f"bench_value_{worker_id}_{time.time_ns()}".encode()
            error: Optional[Exception] = None
            try:
                if result._current_total() % 2 == 0:
                    cache.set(key, value)
                else:
                    cache.get(key)
            except Exception as exc:
                error = exc
            samples.add(time.perf_counter() - start)

            if error is not None:
                result.record_error(str(error))
                if self._config.verbose:
                    self._log.warning("cache operation failed key=%s error=%s", key, error)
            else:
                result._record_success()

        self._tick(deadline, request)

    def _http_worker(
        self, deadline: float, url: str, result: BenchmarkResult, samples: _Samples
    ) -> None:
        def request() -> None:
            start = time.perf_counter()
            try:
                http_request = urllib.request.Request(url, method="GET")
            except ValueError as exc:
                result.record_error(str(exc))
                return

            timeout = min(_HTTP_TIMEOUT, max(deadline - time.monotonic(), 0.001))
            try:
                with urllib.request.urlopen(http_request, timeout=timeout) as response:
                    status = response.status
            except urllib.error.HTTPError as exc:
                samples.add(time.perf_counter() - start)
                exc.close()
                result.record_error(f"HTTP {exc.code}")
                return
            except Exception as exc:
                samples.add(time.perf_counter() - start)
                result.record_error(str(exc))
                if self._config.verbose:
                    self._log.warning("HTTP request failed url=%s error=%s", url, exc)
                return

            samples.add(time.perf_counter() - start)
            if 200 <= status < 400:
                result._record_success()
            else:
                result.record_error(f"HTTP {status}")

        self._tick(deadline, request)

    def _warmup_cache(self, cache: _Cache, duration: float) -> None:
        deadline = time.monotonic() + duration

        def worker(worker_id: int) -> None:
            def write() -> None:
                key = f"warmup_key_{worker_id}_{time.time_ns()}"
                value = f"warmup_value_{time.time_ns()}".encode()
                try:
                    cache.set(key, value)
                except Exception:
                    pass

            self._tick(deadline, write)

        _run_threads(self._config.concurrency // 4, worker)

    def _warmup_http(self, url: str, duration: float) -> None:
        deadline = time.monotonic() + duration

        def request() -> None:
            timeout = min(_HTTP_TIMEOUT, max(deadline - time.monotonic(), 0.001))
            try:
                with urllib.request.urlopen(url, timeout=timeout):
                    pass
            except Exception:
                pass

        self._tick(deadline, request)


class StressTestRunner(ABC):
    """One kind of load that a stress test drives until a deadline."""

    @abstractmethod
    def run(self, deadline: float, result: BenchmarkResult) -> None:
        """Generate load until ``deadline`` (a ``time.monotonic`` value), filling ``result``."""

    @abstractmethod
    def name(self) -> str:
        """A unique name for this runner in reports."""


class StressTest:
    """Runs several stress test runners side by side in the background."""

    def __init__(self, config: BenchmarkConfig, logger: Optional[logging.Logger] = None) -> None:
        self._config = config
        self._log = logger or logging.getLogger(__name__)
        self._runners: list[StressTestRunner] = []
        self._running = False
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._results: dict[str, BenchmarkResult] = {}

    def add_runner(self, runner: StressTestRunner) -> None:
        with self._lock:
            self._runners.append(runner)

    def start(self) -> None:
        """Launch all runners in the background; raises if already running."""
        with self._lock:
            if self._running:
                raise RuntimeError("stress test is already running")
            self._running = True
            self._stop = threading.Event()
            self._results = {}
            runners = list(self._runners)
            self._thread = threading.Thread(target=self._run, args=(runners,), daemon=True)
            self._thread.start()
        self._log.info(
            "stress test started runners=%d concurrency=%d duration=%s",
            len(runners), self._config.concurrency, self._config.duration,
        )

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._stop.set()
        self._log.info("stress test stopped")

    def wait(self, timeout: Optional[float] = None) -> dict[str, BenchmarkResult]:
        """Wait for the run to finish and return the results by runner name."""
        with self._lock:
            thread = self._thread
        if thread is None:
            raise RuntimeError("stress test has not been started")
        thread.join(timeout)
        if thread.is_alive():
            raise TimeoutError("stress test did not finish in time")
        with self._lock:
            return dict(self._results)

    def _run(self, runners: list[StressTestRunner]) -> None:
        deadline = time.monotonic() + self._config.duration

        def drive(runner: StressTestRunner) -> None:
            result = BenchmarkResult(config=self._config, start_time=datetime.now(timezone.utc))
            started = time.monotonic()
            try:
                runner.run(deadline, result)
            except Exception as exc:
                self._log.error("stress test runner failed runner=%s error=%s", runner.name(), exc)
                return
            result.end_time = datetime.now(timezone.utc)
            result.duration = time.monotonic() - started
            with self._lock:
                self._results[runner.name()] = result
            self._log.info(
                "stress test runner finished runner=%s total_requests=%d qps=%.2f avg=%s",
                runner.name(), result.total_requests, result.qps,
                _format_duration(result.avg_response_time),
            )

        threads = [threading.Thread(target=drive, args=(r,), daemon=True) for r in runners]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        with self._lock:
            results = dict(self._results)
        self.generate_report(results)

    def generate_report(self, results: Mapping[str, BenchmarkResult]) -> list[str]:
        """Log a summary of ``results`` and return its lines."""
        lines = ["=== stress test report ==="]
        total_requests = 0
        total_qps = 0.0
        for name, result in results.items():
            lines.extend(
                [
                    f"runner: {name}",
                    f"  total requests: {result.total_requests}",
                    f"  successful requests: {result.success_requests}",
                    f"  failed requests: {result.failed_requests}",
                    f"  QPS: {result.qps:.2f}",
                    f"  average response time: {_format_duration(result.avg_response_time)}",
                    f"  P95 response time: {_format_duration(result.p95_response_time)}",
                    f"  memory usage: {result.memory_stats.alloc // 1024 // 1024} MB",
                ]
            )
            total_requests += result.total_requests
            total_qps += result.qps

        if results:
            lines.extend(
                [
                    "=== summary ===",
                    f"total requests: {total_requests}",
                    f"average QPS: {total_qps / len(results):.2f}",
                ]
            )

        for line in lines:
            self._log.info("%s", line)
        return lines