"""Concurrent, rate-limited, retrying fetch orchestration for declarations."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from billofmaterial.adapters.base import PackageNotFoundError, ProviderError
from billofmaterial.adapters.npm import NpmDownloadsProvider, NpmRegistryProvider
from billofmaterial.analyzers.bundlephobia import BundlephobiaProvider
from billofmaterial.analyzers.cache import ResponseCache
from billofmaterial.analyzers.normalizer import (
    UNAVAILABLE,
    ProviderResults,
    fetch_failed,
    normalize,
    outdated_entry,
    resolve_version,
)
from billofmaterial.analyzers.osv import OSVProvider
from billofmaterial.analyzers.scorer import Scorer
from billofmaterial.analyzers.snyk import SnykAdvisorProvider
from billofmaterial.models.schemas import (
    DependencyDeclaration,
    DependencyRecord,
    KnownUnknown,
    OutdatedPackage,
    SBOMConfig,
)
from billofmaterial.monitoring.metrics import FetchMetrics
from billofmaterial.monitoring.progress import ProgressChannel

logger = logging.getLogger(__name__)


def _is_retryable(error: BaseException) -> bool:
    # A 404 will not change on retry
    if isinstance(error, PackageNotFoundError):
        return False
    return isinstance(error, (ProviderError, httpx.HTTPError))


@dataclass
class AnalysisResult:
    """Settled outcome of every declaration in one batch."""

    records: list[DependencyRecord] = field(default_factory=list)
    known_unknowns: list[KnownUnknown] = field(default_factory=list)
    outdated: dict[str, OutdatedPackage] = field(default_factory=dict)


class FetchOrchestrator:
    """Fans out upstream calls for a batch of declarations.

    One orchestrator serves one analysis run. Every upstream call, from every
    declaration, passes through a single shared semaphore sized by
    ``max_concurrent_requests``. Failed calls are retried with a linear
    backoff (attempt *k* waits *k* x ``retry_delay``) outside the semaphore,
    and a call that fails every attempt yields ``UNAVAILABLE``.

    Usage:
        async with FetchOrchestrator(config) as orchestrator:
            result = await orchestrator.analyze(declarations)
    """

    def __init__(
        self,
        config: SBOMConfig | None = None,
        client: httpx.AsyncClient | None = None,
        cache: ResponseCache | None = None,
        scorer: Scorer | None = None,
        registry: NpmRegistryProvider | None = None,
        security: SnykAdvisorProvider | None = None,
        bundles: BundlephobiaProvider | None = None,
        downloads: NpmDownloadsProvider | None = None,
        vulnerabilities: OSVProvider | None = None,
        now: datetime | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Run configuration. Defaults to ``SBOMConfig()``.
            client: Optional shared httpx client for the default providers.
                When omitted, entering the orchestrator as an async context
                manager creates one and closes it on exit.
            cache: Optional response cache. Created from the config when
                ``cache_enabled`` is set and none is given.
            scorer: Risk scorer applied to every normalized record.
            registry, security, bundles, downloads, vulnerabilities:
                Provider overrides; defaults talk to the public services.
            now: Reference time for publish-age calculations.
        """
        self.config = config or SBOMConfig()
        if cache is None and self.config.cache_enabled:
            cache = ResponseCache(ttl_seconds=self.config.cache_duration / 1000)
        self.cache = cache
        self.scorer = scorer or Scorer(security_threshold=self.config.security_score_threshold)
        self.metrics = FetchMetrics()
        self._now = now
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_requests)
        self._client = client
        self._owns_client = False
        self._overrides = {
            "registry": registry,
            "security": security,
            "bundles": bundles,
            "downloads": downloads,
            "vulnerabilities": vulnerabilities,
        }
        self._build_providers(client)

    def _build_providers(self, client: httpx.AsyncClient | None) -> None:
        timeout = self.config.request_timeout
        o = self._overrides
        self.registry = o["registry"] or NpmRegistryProvider(client=client, timeout=timeout)
        self.security = o["security"] or SnykAdvisorProvider(client=client, timeout=timeout)
        self.bundles = o["bundles"] or BundlephobiaProvider(client=client, timeout=timeout)
        self.downloads = o["downloads"] or NpmDownloadsProvider(client=client, timeout=timeout)
        self.vulnerabilities = o["vulnerabilities"] or OSVProvider(client=client, timeout=timeout)

    async def __aenter__(self) -> "FetchOrchestrator":
        """Set up a shared HTTP client if none was supplied."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.config.request_timeout, follow_redirects=True
            )
            self._owns_client = True
            self._build_providers(self._client)
        return self

    async def __aexit__(self, *args) -> None:
        """Close the HTTP client if this orchestrator created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
            self._owns_client = False

    @asynccontextmanager
    async def _gate(self):
        """Hold one slot of the shared concurrency budget."""
        async with self._semaphore:
            self.metrics.acquire()
            try:
                yield
            finally:
                self.metrics.release()

    def _before_sleep(self, provider: str, package: str) -> Callable[[RetryCallState], None]:
        def log_retry(retry_state: RetryCallState) -> None:
            self.metrics.retries += 1
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.debug(
                f"{provider} failed for {package} "
                f"(attempt {retry_state.attempt_number}): {error}; retrying"
            )

        return log_retry

    async def _call(
        self,
        provider: str,
        package: str,
        key: tuple,
        fetch: Callable[[], Awaitable[Any]],
        errors: dict[str, str],
    ) -> Any:
        """Run one upstream call under the gate with retries.

        Returns the provider's value, or ``UNAVAILABLE`` once every attempt
        has failed. The last error message is stored in ``errors``.
        """
        cache_key = (provider, *key)
        if self.cache is not None:
            found, cached = await self.cache.get(cache_key)
            if found:
                self.metrics.cache_hits += 1
                return cached

        delay = self.config.retry_delay / 1000
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.retry_attempts),
            wait=wait_incrementing(start=delay, increment=delay),
            retry=retry_if_exception(_is_retryable),
            before_sleep=self._before_sleep(provider, package),
            reraise=True,
        )

        value = UNAVAILABLE
        try:
            async for attempt in retrying:
                with attempt:
                    async with self._gate():
                        value = await fetch()
        except (ProviderError, httpx.HTTPError) as e:
            logger.warning(f"{provider} unavailable for {package}: {e}")
            errors[provider] = str(e)
            self.metrics.record_failure(package, provider, str(e))
            return UNAVAILABLE

        if self.cache is not None:
            await self.cache.set(cache_key, value)
        return value

    async def fetch(self, declaration: DependencyDeclaration) -> ProviderResults:
        """Issue every upstream call for one declaration concurrently."""
        name = declaration.name
        version = resolve_version(declaration.version_range)
        errors: dict[str, str] = {}

        calls: dict[str, Awaitable[Any]] = {
            "metadata": self._call(
                "registry", name, (name,), lambda: self.registry.fetch_metadata(name), errors
            ),
            "security_score": self._call(
                "security", name, (name,), lambda: self.security.fetch_security_score(name), errors
            ),
            "downloads": self._call(
                "downloads", name, (name,), lambda: self.downloads.fetch_weekly_downloads(name), errors
            ),
        }
        if self.config.include_bundle_size and not name.startswith("@types/"):
            calls["bundle_size"] = self._call(
                "bundle",
                name,
                (name, version),
                lambda: self.bundles.fetch_bundle_size(name, version),
                errors,
            )
        if self.config.include_vulnerabilities:
            calls["vulnerabilities"] = self._call(
                "vulnerabilities",
                name,
                (name, version),
                lambda: self.vulnerabilities.fetch_vulnerabilities(name, version, "npm"),
                errors,
            )

        values = await asyncio.gather(*calls.values())
        return ProviderResults(**dict(zip(calls, values)), errors=errors)

    async def analyze_declaration(
        self, declaration: DependencyDeclaration
    ) -> DependencyRecord | KnownUnknown:
        """Fetch, normalize and score one declaration."""
        results = await self.fetch(declaration)
        outcome = normalize(
            declaration,
            results,
            include_transitive=self.config.include_transitive_deps,
            now=self._now,
        )
        if isinstance(outcome, DependencyRecord):
            outcome = self.scorer.score_record(outcome)
        return outcome

    async def analyze(
        self,
        declarations: list[DependencyDeclaration],
        timeout: float | None = None,
        progress: ProgressChannel | None = None,
    ) -> AnalysisResult:
        """Analyze a batch of declarations in parallel.

        Every declaration settles as either a record or a known unknown
        before this returns. Records are sorted by ascending risk score
        (riskiest first); ties keep declaration order.

        Args:
            declarations: Declarations to analyze.
            timeout: Optional wall-clock budget in seconds. Declarations
                still unresolved when it expires are cancelled and recorded
                as ``fetch_failed`` known unknowns.
            progress: Optional channel receiving one event per settled
                declaration.

        Returns:
            AnalysisResult with records, known unknowns and outdated map.
        """
        total = len(declarations)
        self.metrics.total_declarations += total
        tasks = {
            asyncio.create_task(self.analyze_declaration(d), name=f"analyze:{d.name}"): d
            for d in declarations
        }

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None
        pending = set(tasks)
        completed = 0

        try:
            while pending:
                remaining = None
                if deadline is not None:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        break
                done, pending = await asyncio.wait(
                    pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    completed += 1
                    self.metrics.completed_declarations += 1
                    if progress is not None:
                        progress.emit(f"Analyzed {tasks[task].name}", completed, total)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        if pending:
            logger.warning(f"Analysis aborted with {len(pending)} of {total} declarations unresolved")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        result = AnalysisResult()
        for task, declaration in tasks.items():
            if task in pending:
                result.known_unknowns.append(
                    fetch_failed(declaration, "Analysis aborted before the dependency was resolved")
                )
                continue
            outcome = task.result()
            if isinstance(outcome, KnownUnknown):
                result.known_unknowns.append(outcome)
                continue
            result.records.append(outcome)
            entry = outdated_entry(outcome)
            if entry is not None:
                result.outdated.setdefault(outcome.name, entry)

        result.records.sort(key=lambda r: r.risk.score if r.risk else 100)
        logger.info(
            f"Analyzed {len(result.records)} dependencies "
            f"({len(result.known_unknowns)} unresolved, {self.metrics.requests} requests)"
        )
        return result
