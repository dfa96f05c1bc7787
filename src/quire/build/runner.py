"""Build runner — resolve, assemble and render targets with per-format isolation."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from quire.build.artifacts import ArtifactStore
from quire.build.assembler import assemble
from quire.build.converter import PandocConverter
from quire.build.fingerprint import Fingerprint, compute_render_fingerprint
from quire.build.fragments import FragmentStore
from quire.build.manifest import ManifestResolver
from quire.build.renderers import get_renderer, render
from quire.core.errors import QuireError, RenderFailure
from quire.core.logging import QuireLogger, Verbosity
from quire.core.models import AssembledDocument, Artifact, Book, FormatConfig

logger = logging.getLogger(__name__)


@dataclass
class FormatResult:
    """Outcome of one format for one target."""

    format_id: str
    artifact: Artifact | None = None
    error: RenderFailure | None = None
    cached: bool = False
    path: Path | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.artifact is not None


@dataclass
class TargetBuildResult:
    """Per-format results for one target, or the error that stopped it."""

    target: str
    source_digest: str = ""
    fragment_count: int = 0
    results: dict[str, FormatResult] = field(default_factory=dict)
    error: QuireError | None = None
    time_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None and all(r.ok for r in self.results.values())

    @property
    def artifacts(self) -> list[Artifact]:
        return [r.artifact for r in self.results.values() if r.artifact is not None]


@dataclass
class BuildResult:
    """Summary of a build invocation."""

    targets: list[TargetBuildResult] = field(default_factory=list)
    total_time: float = 0.0
    run_log: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return all(t.ok for t in self.targets)

    @property
    def built(self) -> int:
        return sum(1 for t in self.targets for r in t.results.values() if r.ok and not r.cached)

    @property
    def cached(self) -> int:
        return sum(1 for t in self.targets for r in t.results.values() if r.cached)

    @property
    def failed(self) -> int:
        return sum(1 for t in self.targets for r in t.results.values() if not r.ok) + sum(
            1 for t in self.targets if t.error is not None
        )


def resolver_for(book: Book) -> ManifestResolver:
    store = FragmentStore(book.source_dir)
    return ManifestResolver(store, book.manifest_dir or book.source_dir)


def prepare_document(book: Book, target: str, version: str | None = None) -> AssembledDocument:
    """Resolve a target's manifest and assemble it. Raises on any manifest error."""
    fragments = resolver_for(book).resolve(target)
    return assemble(fragments, book.target_metadata(target, version))


def render_formats(
    document: AssembledDocument,
    configs: Sequence[FormatConfig],
    concurrency: int = 4,
    converter: PandocConverter | None = None,
    run_logger: QuireLogger | None = None,
) -> dict[str, Artifact | RenderFailure]:
    """Render each format independently, in parallel.

    A failure in one format never prevents the others from completing.
    Returns results keyed by format id, in the order of `configs`.
    """
    if not configs:
        return {}

    def _render_one(config: FormatConfig) -> Artifact:
        start = run_logger.format_start(document.target, config.format_id) if run_logger else 0.0
        artifact = render(document, config, converter)
        if run_logger is not None:
            run_logger.format_finish(
                document.target, config.format_id, artifact.content_hash, artifact.size, start,
            )
        return artifact

    results: dict[str, Artifact | RenderFailure] = {}
    workers = max(1, min(concurrency, len(configs)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {config.format_id: pool.submit(_render_one, config) for config in configs}
        for format_id, future in futures.items():
            try:
                results[format_id] = future.result()
            except RenderFailure as e:
                results[format_id] = e
            except Exception as e:
                results[format_id] = RenderFailure(format_id, e)
            if isinstance(results[format_id], RenderFailure) and run_logger is not None:
                run_logger.format_failed(document.target, format_id, str(results[format_id].cause))
    return results


def build_target(
    book: Book,
    target: str,
    format_ids: Sequence[str],
    store: ArtifactStore,
    *,
    converter: PandocConverter | None = None,
    concurrency: int = 4,
    force: bool = False,
    version: str | None = None,
    run_logger: QuireLogger | None = None,
) -> TargetBuildResult:
    """Resolve, assemble and render one target, reusing cached artifacts."""
    start = time.time()
    result = TargetBuildResult(target=target)

    try:
        document = prepare_document(book, target, version)
    except QuireError as e:
        logger.error("Target %s failed before rendering: %s", target, e)
        result.error = e
        result.time_seconds = time.time() - start
        return result

    result.source_digest = document.source_digest
    result.fragment_count = len(document.sections)
    if run_logger is not None:
        run_logger.target_resolved(target, len(document.sections))
        run_logger.target_assembled(target, document.source_digest)

    pending: list[FormatConfig] = []
    fingerprints: dict[str, Fingerprint] = {}
    for format_id in format_ids:
        config = book.format_config(format_id)
        try:
            renderer = get_renderer(format_id, converter)
        except ValueError as e:
            result.results[format_id] = FormatResult(format_id, error=RenderFailure(format_id, e))
            if run_logger is not None:
                run_logger.format_failed(target, format_id, str(e))
            continue

        fingerprint = compute_render_fingerprint(document.source_digest, config, renderer.renderer_id)
        fingerprints[format_id] = fingerprint
        if force:
            cached, reasons = None, ["forced"]
        else:
            cached, reasons = store.find_cached(target, format_id, fingerprint)
        if cached is not None:
            result.results[format_id] = FormatResult(
                format_id, artifact=cached, cached=True, path=store.path_for(target, format_id),
            )
            if run_logger is not None:
                run_logger.format_cached(target, format_id, cached.content_hash)
        else:
            if run_logger is not None:
                run_logger.format_invalidated(target, format_id, reasons)
            result.results[format_id] = FormatResult(format_id)
            pending.append(config)

    rendered = render_formats(document, pending, concurrency, converter, run_logger)
    for format_id, outcome in rendered.items():
        if isinstance(outcome, RenderFailure):
            result.results[format_id] = FormatResult(format_id, error=outcome)
            continue
        path = store.save_artifact(outcome, fingerprints[format_id])
        result.results[format_id] = FormatResult(format_id, artifact=outcome, path=path)

    result.time_seconds = time.time() - start
    return result


def run(
    book: Book,
    targets: Sequence[str],
    format_ids: Sequence[str],
    *,
    build_dir: str | Path | None = None,
    converter: PandocConverter | None = None,
    concurrency: int = 4,
    force: bool = False,
    version: str | None = None,
    verbosity: int = 0,
    run_logger: QuireLogger | None = None,
) -> BuildResult:
    """Build every requested (target, format) pair.

    Targets are independent and build concurrently; formats within a target
    render concurrently up to `concurrency` workers.
    """
    start = time.time()
    build_path = Path(build_dir or book.build_dir)
    store = ArtifactStore(build_path)
    own_logger = run_logger is None
    if run_logger is None:
        run_logger = QuireLogger(
            verbosity=Verbosity(min(verbosity, Verbosity.DEBUG)),
            build_dir=build_path,
        )
    run_logger.run_start("build", targets=list(targets), formats=list(format_ids))

    with ThreadPoolExecutor(max_workers=max(1, len(targets))) as pool:
        futures = [
            pool.submit(
                build_target,
                book,
                target,
                format_ids,
                store,
                converter=converter,
                concurrency=concurrency,
                force=force,
                version=version,
                run_logger=run_logger,
            )
            for target in targets
        ]
        target_results = [f.result() for f in futures]

    result = BuildResult(targets=target_results, total_time=time.time() - start)
    if own_logger:
        run_logger.run_finish()
    else:
        run_logger.run_log.finalize()
    result.run_log = run_logger.run_log.to_dict()
    return result
