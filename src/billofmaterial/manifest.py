"""Package manifest parsing and monorepo workspace discovery."""

import json
import logging
import re
from typing import Any, NamedTuple

import yaml
from pydantic import BaseModel, Field

from billofmaterial.models.schemas import DependencyDeclaration, ProjectInfo

logger = logging.getLogger(__name__)

ROOT_MANIFEST = "package.json"
WORKSPACE_DESCRIPTORS = ("pnpm-workspace.yaml", "pnpm-workspace.yml")


class ManifestError(ValueError):
    """Raised when the root manifest is missing or cannot be parsed."""


class SourceFile(NamedTuple):
    """An auxiliary project file, addressed by its path relative to the root."""

    path: str
    content: str


class PackageManifest(BaseModel):
    """The parts of a package.json the engine reads."""

    name: str | None = None
    version: str | None = None
    license: str | None = None
    description: str | None = None
    homepage: str | None = None
    repository_url: str | None = None
    private: bool = False
    dependencies: dict[str, str] = Field(default_factory=dict)
    dev_dependencies: dict[str, str] = Field(default_factory=dict)
    workspaces: list[str] = Field(default_factory=list)
    lerna_packages: list[str] = Field(default_factory=list)
    has_lerna: bool = False

    def project_info(self) -> ProjectInfo:
        return ProjectInfo(
            name=self.name or "project",
            version=self.version or "1.0.0",
            license=self.license,
            description=self.description,
            homepage=self.homepage,
            repository_url=self.repository_url,
        )


def _dependency_map(data: dict, key: str) -> dict[str, str]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ManifestError(f"'{key}' must be an object")
    deps = {}
    for name, version_range in value.items():
        if not isinstance(version_range, str):
            raise ManifestError(f"'{key}.{name}' must be a version string")
        deps[str(name)] = version_range
    return deps


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def _repository_url(repository: Any) -> str | None:
    if isinstance(repository, str):
        return repository or None
    if isinstance(repository, dict) and isinstance(repository.get("url"), str):
        return repository["url"] or None
    return None


def _license(value: Any) -> str | None:
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict) and isinstance(value.get("type"), str):
        return value["type"]
    return None


def parse_manifest(content: str | bytes | dict | None) -> PackageManifest:
    """Parse a package.json given as text or an already-decoded object.

    Raises:
        ManifestError: If the manifest is missing, not JSON, or malformed.
    """
    if content is None:
        raise ManifestError("No package.json provided")

    if isinstance(content, (str, bytes)):
        try:
            data = json.loads(content)
        except ValueError as e:
            raise ManifestError(f"package.json is not valid JSON: {e}") from e
    else:
        data = content

    if not isinstance(data, dict):
        raise ManifestError("package.json must contain a JSON object")

    workspaces = data.get("workspaces")
    if isinstance(workspaces, dict):
        workspaces = workspaces.get("packages")

    lerna = data.get("lerna")

    def text(key: str) -> str | None:
        value = data.get(key)
        return value if isinstance(value, str) and value else None

    return PackageManifest(
        name=text("name"),
        version=text("version"),
        license=_license(data.get("license")),
        description=text("description"),
        homepage=text("homepage"),
        repository_url=_repository_url(data.get("repository")),
        private=data.get("private") is True,
        dependencies=_dependency_map(data, "dependencies"),
        dev_dependencies=_dependency_map(data, "devDependencies"),
        workspaces=_string_list(workspaces),
        lerna_packages=_string_list(lerna.get("packages")) if isinstance(lerna, dict) else [],
        has_lerna=lerna is not None,
    )


def workspace_descriptor(files: list[SourceFile]) -> str | None:
    """Content of a root pnpm workspace file, if one was supplied."""
    for file in files:
        if file.path in WORKSPACE_DESCRIPTORS:
            return file.content
    return None


def _pnpm_patterns(workspace_yaml: str | None) -> list[str] | None:
    """Packages list from a pnpm workspace file, or None when absent or invalid."""
    if not workspace_yaml:
        return None
    try:
        parsed = yaml.safe_load(workspace_yaml)
    except yaml.YAMLError as e:
        logger.warning(f"Ignoring unparsable pnpm workspace file: {e}")
        return None
    if isinstance(parsed, dict) and isinstance(parsed.get("packages"), list):
        return _string_list(parsed["packages"])
    return None


def detect_monorepo(manifest: PackageManifest, workspace_yaml: str | None = None) -> bool:
    """A project is a monorepo when it declares workspaces by any supported means."""
    if manifest.workspaces:
        return True
    if _pnpm_patterns(workspace_yaml) is not None:
        return True
    return manifest.private and manifest.has_lerna


def workspace_patterns(manifest: PackageManifest, workspace_yaml: str | None = None) -> list[str]:
    """Workspace globs from package.json, pnpm and lerna, deduplicated in order."""
    patterns = [*manifest.workspaces, *(_pnpm_patterns(workspace_yaml) or []), *manifest.lerna_packages]
    return list(dict.fromkeys(patterns))


def pattern_to_regex(pattern: str) -> re.Pattern:
    """Compile a workspace glob: ``*`` is one path segment, ``**`` any depth."""
    pattern = pattern.strip()
    if pattern.startswith("./"):
        pattern = pattern[2:]
    pattern = pattern.rstrip("/")
    parts = []
    for chunk in re.split(r"(\*\*|\*)", pattern):
        if chunk == "**":
            parts.append(".+")
        elif chunk == "*":
            parts.append("[^/]+")
        else:
            parts.append(re.escape(chunk))
    return re.compile(f"^{''.join(parts)}$")


def find_member_manifests(
    files: list[SourceFile], patterns: list[str]
) -> list[tuple[str, PackageManifest]]:
    """Parse every workspace member manifest among the supplied files.

    A member is a ``package.json`` (other than the root one) whose directory
    matches an include pattern and no ``!``-prefixed exclude pattern.
    Unparsable members are skipped with a warning.
    """
    includes = [pattern_to_regex(p) for p in patterns if not p.startswith("!")]
    excludes = [pattern_to_regex(p[1:]) for p in patterns if p.startswith("!")]
    if not includes:
        return []

    members = []
    for file in files:
        path = file.path[2:] if file.path.startswith("./") else file.path
        if path == ROOT_MANIFEST or not path.endswith("/" + ROOT_MANIFEST):
            continue
        if "node_modules/" in path:
            continue
        directory = path[: -len("/" + ROOT_MANIFEST)]
        if not any(r.match(directory) for r in includes):
            continue
        if any(r.match(directory) for r in excludes):
            continue
        try:
            members.append((path, parse_manifest(file.content)))
        except ManifestError as e:
            logger.warning(f"Skipping workspace member {path}: {e}")
    return members


def declarations_for(manifest: PackageManifest, include_dev: bool = True) -> list[DependencyDeclaration]:
    """Production declarations followed by dev declarations, in manifest order."""
    declarations = [
        DependencyDeclaration(name=name, version_range=version_range)
        for name, version_range in manifest.dependencies.items()
    ]
    if include_dev:
        declarations += [
            DependencyDeclaration(name=name, version_range=version_range, is_dev=True)
            for name, version_range in manifest.dev_dependencies.items()
        ]
    return declarations
