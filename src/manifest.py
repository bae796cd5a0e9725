"""Manifest loading and decoding for atomic apply.

Manifests are YAML or JSON streams of Kubernetes-style resources. Each
non-empty document becomes one DesiredObject; `kind: List` documents are
expanded into their items. Sources can be:
- Files (.yaml, .yml, .json)
- Directories (optionally walked recursively)
- Glob patterns
- '-' for standard input
- http(s) URLs
"""

import copy
import glob
import logging
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Iterable, Optional, TextIO

import requests
import yaml

from errors import ManifestParseError

logger = logging.getLogger(__name__)

MANIFEST_EXTENSIONS = ('.yaml', '.yml', '.json')

URL_FETCH_TIMEOUT = 30


def split_api_version(api_version: str) -> tuple[str, str]:
    """Split 'apps/v1' into ('apps', 'v1'); core 'v1' yields ('', 'v1')."""
    if '/' in api_version:
        group, version = api_version.split('/', 1)
        return group, version
    return '', api_version


@dataclass(frozen=True, order=True)
class ResourceIdentity:
    """Aggregation key for a resource: (group, kind, namespace, name).

    namespace is '' for cluster-scoped resources.
    """
    group: str
    kind: str
    namespace: str
    name: str

    @classmethod
    def from_object(cls, obj: dict, namespaced: bool = True) -> 'ResourceIdentity':
        """Derive identity from a live or desired object dict."""
        metadata = obj.get('metadata') or {}
        group, _ = split_api_version(obj.get('apiVersion', ''))
        return cls(
            group=group,
            kind=obj.get('kind', ''),
            namespace=(metadata.get('namespace') or '') if namespaced else '',
            name=metadata.get('name', ''),
        )

    @property
    def group_kind(self) -> str:
        return f"{self.kind}.{self.group}" if self.group else self.kind

    @property
    def cluster_scoped(self) -> bool:
        return not self.namespace

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.group_kind} {self.namespace}/{self.name}"
        return f"{self.group_kind} {self.name}"


@dataclass(frozen=True)
class DesiredObject:
    """A desired resource decoded from a manifest.

    Immutable once created; derive modified copies with with_namespace().

    Attributes:
        body: The full manifest document (apiVersion, kind, metadata, ...)
        source: Where the document came from (file path, URL, '<stdin>')
    """
    body: dict
    source: str = field(default='', compare=False)

    @property
    def api_version(self) -> str:
        return self.body.get('apiVersion', '')

    @property
    def kind(self) -> str:
        return self.body.get('kind', '')

    @property
    def group(self) -> str:
        return split_api_version(self.api_version)[0]

    @property
    def version(self) -> str:
        return split_api_version(self.api_version)[1]

    @property
    def metadata(self) -> dict:
        return self.body.get('metadata') or {}

    @property
    def name(self) -> str:
        return self.metadata.get('name', '')

    @property
    def namespace(self) -> str:
        return self.metadata.get('namespace') or ''

    def with_namespace(self, namespace: str) -> 'DesiredObject':
        """Return a copy whose metadata.namespace is set to `namespace`."""
        body = copy.deepcopy(self.body)
        body.setdefault('metadata', {})['namespace'] = namespace
        return replace(self, body=body)

    def identity(self, namespaced: bool = True) -> ResourceIdentity:
        return ResourceIdentity.from_object(self.body, namespaced=namespaced)

    def to_dict(self) -> dict:
        """Deep copy of the manifest document."""
        return copy.deepcopy(self.body)

    def __str__(self) -> str:
        return f"{self.kind}/{self.name}"


def _validate_document(doc: Any, source: str, index: int) -> dict:
    """Check a decoded document is an addressable resource."""
    where = f"{source} (document {index + 1})"
    if not isinstance(doc, dict):
        raise ManifestParseError(
            f"document must be a mapping, got {type(doc).__name__}", where)
    for key in ('apiVersion', 'kind'):
        value = doc.get(key)
        if not isinstance(value, str) or not value:
            raise ManifestParseError(f"Object '{key}' is missing", where)
    metadata = doc.get('metadata')
    if not isinstance(metadata, dict) or not metadata.get('name'):
        raise ManifestParseError("Object 'metadata.name' is missing", where)
    return doc


def _expand_list(doc: dict, source: str, index: int) -> list[dict]:
    """Expand `kind: List` (or *List with items) into member documents."""
    items = doc.get('items')
    if not isinstance(items, list):
        raise ManifestParseError(f"{doc['kind']} has no items list",
                                 f"{source} (document {index + 1})")
    return [_validate_document(item, source, index) for item in items if item]


class _ManifestYAMLLoader(yaml.SafeLoader):
    """SafeLoader that keeps timestamp-like scalars as strings.

    Object bodies are re-serialized as JSON, which has no date type.
    """


_TIMESTAMP_TAG = 'tag:yaml.org,2002:timestamp'

_ManifestYAMLLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != _TIMESTAMP_TAG]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
_ManifestYAMLLoader.add_constructor(_TIMESTAMP_TAG, yaml.SafeLoader.construct_yaml_str)


def parse_manifests(text: str, source: str = '<string>') -> list[DesiredObject]:
    """Decode a YAML/JSON stream into DesiredObjects.

    Empty documents (blank, comments only, bare '---') are dropped.
    A malformed document fails the whole read.

    Args:
        text: Manifest stream contents
        source: Label used in error messages

    Returns:
        DesiredObjects in document order

    Raises:
        ManifestParseError: If any document is invalid
    """
    try:
        documents = list(yaml.load_all(text, Loader=_ManifestYAMLLoader))
    except yaml.YAMLError as e:
        raise ManifestParseError(f"invalid YAML/JSON: {e}", source)

    objects: list[DesiredObject] = []
    for index, doc in enumerate(documents):
        if doc is None or doc == {}:
            continue
        if (isinstance(doc, dict) and isinstance(doc.get('kind'), str)
                and doc['kind'].endswith('List') and 'items' in doc):
            members = _expand_list(doc, source, index)
        else:
            members = [_validate_document(doc, source, index)]
        objects.extend(DesiredObject(body=member, source=source) for member in members)

    logger.debug(f"Decoded {len(objects)} object(s) from {source}")
    return objects


def is_url(value: str) -> bool:
    return value.startswith('http://') or value.startswith('https://')


class ManifestLoader:
    """Resolves -f arguments into DesiredObjects.

    Example:
        loader = ManifestLoader(recursive=True)
        objects = loader.load(['./manifests', 'https://example.com/app.yaml'])
    """

    def __init__(self, recursive: bool = False, stdin: Optional[TextIO] = None,
                 session: Optional[requests.Session] = None):
        """Initialize loader.

        Args:
            recursive: Walk directories recursively
            stdin: Stream read for '-' (default: sys.stdin)
            session: requests session for URL sources
        """
        self.recursive = recursive
        self.stdin = stdin
        self.session = session or requests.Session()

    def resolve_files(self, filenames: Iterable[str]) -> list[str]:
        """Expand filenames into an ordered list of concrete sources.

        Directories list their manifest files sorted by path; glob patterns
        expand sorted. URLs and '-' pass through untouched.

        Raises:
            ManifestParseError: If a path does not exist or a pattern matches nothing
        """
        resolved: list[str] = []
        for name in filenames:
            if name == '-' or is_url(name):
                resolved.append(name)
                continue

            path = Path(name)
            if path.is_dir():
                resolved.extend(self._list_directory(path))
            elif path.is_file():
                resolved.append(str(path))
            elif glob.has_magic(name):
                matches = sorted(glob.glob(name, recursive=self.recursive))
                if not matches:
                    raise ManifestParseError(f"pattern matched no files: {name}")
                for match in matches:
                    match_path = Path(match)
                    if match_path.is_dir():
                        resolved.extend(self._list_directory(match_path))
                    else:
                        resolved.append(match)
            else:
                raise ManifestParseError(f"path does not exist: {name}")
        return resolved

    def _list_directory(self, directory: Path) -> list[str]:
        pattern = '**/*' if self.recursive else '*'
        return [
            str(p) for p in sorted(directory.glob(pattern))
            if p.is_file() and p.suffix in MANIFEST_EXTENSIONS
        ]

    def read_source(self, source: str) -> str:
        """Read raw manifest text from a file path, URL, or '-'."""
        if source == '-':
            stream = self.stdin if self.stdin is not None else sys.stdin
            try:
                return stream.read()
            except UnicodeDecodeError as e:
                raise ManifestParseError(f"cannot read stdin: {e}", source)

        if is_url(source):
            logger.debug(f"Fetching manifest from {source}")
            try:
                resp = self.session.get(source, timeout=URL_FETCH_TIMEOUT)
                resp.raise_for_status()
            except requests.exceptions.RequestException as e:
                raise ManifestParseError(f"cannot fetch manifest: {e}", source)
            return resp.text

        try:
            with open(source, encoding='utf-8') as f:
                return f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise ManifestParseError(f"cannot read file: {e}", source)

    def load(self, filenames: Iterable[str]) -> list[DesiredObject]:
        """Load every document from every source, in argument order.

        Raises:
            ManifestParseError: On unreadable sources or malformed documents
        """
        filenames = list(filenames)
        if not filenames:
            raise ManifestParseError("at least one --filename/-f must be specified")
        if '-' in filenames and len(filenames) > 1:
            raise ManifestParseError("'-' (stdin) cannot be combined with other filenames")

        objects: list[DesiredObject] = []
        for source in self.resolve_files(filenames):
            label = '<stdin>' if source == '-' else source
            objects.extend(parse_manifests(self.read_source(source), source=label))
        logger.info(f"Loaded {len(objects)} object(s) from {len(filenames)} source(s)")
        return objects
