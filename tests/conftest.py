"""Pytest configuration and shared fixtures."""

import asyncio
import base64
import hashlib
import json
from collections import Counter
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from billofmaterial.analyzers.pipeline import FetchOrchestrator
from billofmaterial.models.schemas import (
    DependencyRecord,
    DistHashes,
    RiskAssessment,
    SBOMConfig,
    Supplier,
)
from billofmaterial.analyzers.scorer import risk_level_for

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def sri(payload: bytes) -> str:
    """SRI string for a payload, as the registry publishes it."""
    return "sha512-" + base64.b64encode(hashlib.sha512(payload).digest()).decode()


def make_packument(
    name: str,
    version: str = "1.0.0",
    latest: str | None = None,
    days_ago: int = 10,
    license: str = "MIT",
    deprecated: str | None = None,
    dependencies: dict | None = None,
    extra_versions: int = 0,
    with_dist: bool = True,
    author: dict | str | None = None,
) -> dict:
    """Minimal registry packument for one package."""
    latest = latest or version
    modified = (NOW - timedelta(days=days_ago)).strftime("%Y-%m-%dT%H:%M:%S.000Z")
    versions = {}
    for v in {version, latest}:
        data = {
            "name": name,
            "version": v,
            "dependencies": dependencies or {},
        }
        if with_dist:
            data["dist"] = {
                "integrity": sri(f"{name}@{v}".encode()),
                "shasum": hashlib.sha1(f"{name}@{v}".encode()).hexdigest(),
            }
        if deprecated and v == version:
            data["deprecated"] = deprecated
        versions[v] = data
    for i in range(extra_versions):
        versions[f"0.0.{i}"] = {"name": name, "version": f"0.0.{i}"}

    packument = {
        "name": name,
        "description": f"The {name} package",
        "license": license,
        "homepage": f"https://example.com/{name}",
        "dist-tags": {"latest": latest},
        "time": {"created": "2015-01-01T00:00:00.000Z", "modified": modified},
        "versions": versions,
    }
    if author is not None:
        packument["author"] = author
    return packument


class FakeUpstream:
    """In-memory stand-in for every upstream service, served via MockTransport."""

    def __init__(self) -> None:
        self.packuments: dict[str, dict] = {}
        self.scores: dict[str, int] = {}
        self.downloads: dict[str, int] = {}
        self.bundles: dict[str, tuple[int, int]] = {}
        self.vulns: dict[str, list[dict]] = {}
        # (service, name) -> number of leading calls answered with HTTP 500
        self.failures: dict[tuple[str, str], int] = {}
        self.delays: dict[str, float] = {}
        self.delay = 0.0
        self.calls: Counter = Counter()
        self.in_flight = 0
        self.peak = 0

    def add(self, name: str, score: int | None = 90, downloads: int | None = 2_000_000,
            bundle: tuple[int, int] | None = None, vulns: list[dict] | None = None, **packument) -> None:
        self.packuments[name] = make_packument(name, **packument)
        if score is not None:
            self.scores[name] = score
        if downloads is not None:
            self.downloads[name] = downloads
        if bundle is not None:
            self.bundles[name] = bundle
        if vulns:
            self.vulns[name] = vulns

    def fail(self, service: str, name: str, times: int = 1000) -> None:
        self.failures[(service, name)] = times

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            service, name = self._identify(request)
            delay = self.delays.get(name, self.delay)
            if delay:
                await asyncio.sleep(delay)
            self.calls[(service, name)] += 1
            remaining = self.failures.get((service, name), 0)
            if remaining:
                self.failures[(service, name)] = remaining - 1
                return httpx.Response(500, text="upstream error")
            return self._respond(service, name, request)
        finally:
            self.in_flight -= 1

    def _identify(self, request: httpx.Request) -> tuple[str, str]:
        host = request.url.host
        path = request.url.path
        if host == "registry.npmjs.org":
            return "registry", path.lstrip("/")
        if host == "api.npmjs.org":
            return "downloads", path.split("/last-week/", 1)[1]
        if host == "snyk.io":
            return "security", path.split("/npm-package/", 1)[1]
        if host == "bundlephobia.com":
            return "bundle", request.url.params["package"].rsplit("@", 1)[0]
        if host == "api.osv.dev":
            return "vulnerabilities", json.loads(request.content)["package"]["name"]
        raise AssertionError(f"unexpected request {request.url}")

    def _respond(self, service: str, name: str, request: httpx.Request) -> httpx.Response:
        if service == "registry":
            if name not in self.packuments:
                return httpx.Response(404, json={"error": "Not found"})
            return httpx.Response(200, json=self.packuments[name])
        if service == "downloads":
            if name not in self.downloads:
                return httpx.Response(404, json={"error": "package not found"})
            return httpx.Response(200, json={"downloads": self.downloads[name], "package": name})
        if service == "security":
            if name not in self.scores:
                return httpx.Response(404, text="not found")
            html = f'<div class="number"><span>{self.scores[name]}</span></div>'
            return httpx.Response(200, text=html)
        if service == "bundle":
            if name not in self.bundles:
                return httpx.Response(404, json={"error": {"code": "PackageNotFoundError"}})
            size, gzip = self.bundles[name]
            return httpx.Response(200, json={"size": size, "gzip": gzip})
        if service == "vulnerabilities":
            return httpx.Response(200, json={"vulns": self.vulns[name]} if name in self.vulns else {})
        raise AssertionError(service)

    def count(self, service: str, name: str) -> int:
        return self.calls[(service, name)]


@pytest.fixture
def now() -> datetime:
    """Fixed reference time for publish-age calculations."""
    return NOW


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
async def client(upstream):
    """httpx client routed to the fake upstream."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler)) as http:
        yield http


@pytest.fixture
def config() -> SBOMConfig:
    """Default config without backoff delays."""
    return SBOMConfig(retry_delay=0)


@pytest.fixture
def make_orchestrator(client, config, now):
    """Factory for orchestrators wired to the fake upstream."""

    def factory(**overrides) -> FetchOrchestrator:
        run_config = config.model_copy(update=overrides)
        return FetchOrchestrator(run_config, client=client, now=now)

    return factory


@pytest.fixture
def make_record():
    """Factory for scored records with sensible healthy defaults."""

    def factory(name: str = "pkg", score: int | None = None, **fields) -> DependencyRecord:
        defaults = {
            "version": "1.0.0",
            "version_range": "^1.0.0",
            "latest_version": fields.get("version", "1.0.0"),
            "license": "MIT",
            "security_score": 90,
            "maintenance_score": 100,
            "popularity_score": 100,
            "days_since_update": 10,
            "last_publish_date": "2024-05-22",
            "hashes": DistHashes(integrity=sri(name.encode())),
            "supplier": Supplier(name="Jane Doe", email="jane@example.com"),
        }
        defaults.update(fields)
        record = DependencyRecord(name=name, **defaults)
        if score is not None:
            record.risk = RiskAssessment(score=score, risk_level=risk_level_for(score), factors=[])
        return record

    return factory
