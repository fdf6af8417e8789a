import argparse
import sys
from pathlib import Path
from typing import Any, Callable, Sequence

from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

import config
from ingestion.collection_admin import collection_stats, delete_document, list_documents
from ingestion.environment import EnvironmentManager, configure_logging
from ingestion.errors import (
    DiscoveryError,
    DocumentNotFoundError,
    EmbeddingServiceUnavailable,
    ManifestStoreError,
)
from ingestion.file_scanner import DirectoryScanner
from ingestion.pipeline import print_summary, run_ingestion
from ingestion.recovery import render_status, reset_errors, reset_stuck, status_report
from types_models import IngestionSettings
from utils.ollama_status import ensure_embedding_model_available

EXIT_OK = 0
EXIT_ROOT_UNREADABLE = 1
EXIT_INVALID_CONFIG = 2
EXIT_MANIFEST_FAILURE = 3
EXIT_EMBEDDING_UNAVAILABLE = 4

_VECTOR_STORE_ERRORS = (ResponseHandlingException, UnexpectedResponse)


def validate_input_path(folder_path: str) -> Path:
    """Validate the input path to prevent accidentally ingesting dangerous locations.

    Raises:
        DiscoveryError: the path is missing, not a directory, a filesystem
            root, the home directory, or a parent of it.
    """
    path = Path(folder_path).expanduser().resolve()

    if not path.exists():
        raise DiscoveryError(f"Path does not exist: {folder_path}")

    if not path.is_dir():
        raise DiscoveryError(f"Path is not a directory: {folder_path}")

    if path.parent == path:
        raise DiscoveryError(
            f"Cannot ingest filesystem root directory: {path}. Please specify a document folder."
        )

    home = Path.home().resolve()
    if path == home:
        raise DiscoveryError(
            f"Cannot ingest home directory: {path}. Please specify a document folder."
        )

    try:
        _ = home.relative_to(path)
    except ValueError:
        # path is not a parent of home - this is fine
        return path
    raise DiscoveryError(f"Path {path} contains your home directory")


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {number}")
    return number


def _build_settings(args: argparse.Namespace) -> IngestionSettings:
    overrides: dict[str, Any] = {}
    if getattr(args, "manifest", None):
        overrides["manifest_path"] = Path(args.manifest)
    if getattr(args, "concurrency", None) is not None:
        overrides["concurrency"] = args.concurrency
    if getattr(args, "extensions", None):
        overrides["accepted_extensions"] = args.extensions
    if getattr(args, "collection", None):
        overrides["collection_name"] = args.collection
    return IngestionSettings(**overrides)


def _cmd_run(args: argparse.Namespace, env: EnvironmentManager) -> int:
    root = validate_input_path(args.root)
    _ = env.open_store()
    if config.EMBED_BACKEND == "ollama" and not args.skip_preflight:
        status = ensure_embedding_model_available(config.OLLAMA_BASE_URL, config.EMBED_MODEL)
        print(f"✅ Ollama reachable at {status.base_url}; model '{config.EMBED_MODEL}' installed")

    ctx = env.initialize()
    print(f"🔎 Scanning: {root}")
    scan, report = run_ingestion(
        root, ctx, recurse=not args.no_recurse, verbose=args.verbose
    )
    print_summary(report, scan)
    return EXIT_OK


def _cmd_scan(args: argparse.Namespace, env: EnvironmentManager) -> int:
    root = validate_input_path(args.root)
    store = env.open_store()
    scanner = DirectoryScanner(store, skip_files=env.settings.skip_files)
    result = scanner.scan(root, env.settings.accepted_extensions, recurse=not args.no_recurse)
    print(
        f"📂 Discovered {result['discovered']} files "
        + f"({result['newly_queued']} new, {result['already_known']} already known)"
    )
    if result["unreadable_dirs"]:
        print(f"⚠️  Unreadable directories: {result['unreadable_dirs']}")
    return EXIT_OK


def _cmd_status(args: argparse.Namespace, env: EnvironmentManager) -> int:
    report = status_report(env.open_store(), error_limit=args.errors)
    print(render_status(report))
    return EXIT_OK


def _cmd_reset(args: argparse.Namespace, env: EnvironmentManager) -> int:
    store = env.open_store()
    requeued = reset_errors(store)
    print(f"🔄 Requeued {requeued} errored file(s)")
    if args.stuck:
        stuck = reset_stuck(store)
        print(f"🔄 Requeued {stuck} file(s) stuck in processing")
    return EXIT_OK


def _cmd_collection_stats(args: argparse.Namespace, env: EnvironmentManager) -> int:
    stats = collection_stats(env.vector_store(), sample_size=args.sample_size)
    print(f"📊 Collection: {stats.collection_name}")
    if not stats.exists:
        print("   (collection does not exist yet)")
        return EXIT_OK
    print(f"   Vectors: {stats.total_vectors}")
    if stats.unique_sources_estimated:
        print(
            f"   Unique sources: ~{stats.unique_sources} "
            + f"(estimated from a sample of {stats.sample_size} points)"
        )
    else:
        print(f"   Unique sources: {stats.unique_sources}")
    return EXIT_OK


def _cmd_list_documents(args: argparse.Namespace, env: EnvironmentManager) -> int:
    listing = list_documents(env.vector_store())
    for doc in listing.documents:
        print(f"• {doc.title} ({doc.chunks} chunks) - {doc.source}")
    print(f"📚 {len(listing.documents)} documents, {listing.total_chunks} chunks")
    if listing.truncated:
        print("⚠️  Listing stopped at the pagination safety limit; results may be incomplete")
    return EXIT_OK


def _cmd_delete_document(args: argparse.Namespace, env: EnvironmentManager) -> int:
    deleted = delete_document(env.vector_store(), args.source)
    print(f"🗑️  Deleted {deleted} chunks for {args.source}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bulk-ingest",
        description="Bulk ingest a document folder -> embeddings -> Qdrant, tracked in a SQLite manifest",
    )
    _ = parser.add_argument(
        "--manifest",
        type=str,
        help=f"Path of the manifest database (default: {config.MANIFEST_DB})",
    )
    _ = parser.add_argument(
        "--verbose",
        action="store_true",
        help="Print additional diagnostics about each ingestion stage.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Scan a folder, then drain the queue")
    _ = run.add_argument("root", help="Root folder of documents to process (e.g., './docs')")
    _ = run.add_argument("--concurrency", type=int, help="Files processed in parallel")
    _ = run.add_argument(
        "--extensions",
        type=str,
        help="Comma-separated list of file extensions to process (e.g., 'pdf,txt').",
    )
    _ = run.add_argument("--collection", type=str, help="Target Qdrant collection")
    _ = run.add_argument(
        "--no-recurse",
        action="store_true",
        help="Only process files in the root folder, skip subdirectories",
    )
    _ = run.add_argument(
        "--skip-preflight",
        action="store_true",
        help="Do not check that the Ollama embedding model is installed",
    )
    run.set_defaults(handler=_cmd_run)

    scan = sub.add_parser("scan", help="Register files in the manifest without processing them")
    _ = scan.add_argument("root", help="Root folder of documents to register")
    _ = scan.add_argument("--extensions", type=str, help="Comma-separated file extensions")
    _ = scan.add_argument("--no-recurse", action="store_true", help="Skip subdirectories")
    scan.set_defaults(handler=_cmd_scan)

    status = sub.add_parser("status", help="Show manifest counts, recent errors and pending files")
    _ = status.add_argument("--errors", type=int, default=5, help="Recent errors to show")
    status.set_defaults(handler=_cmd_status)

    reset = sub.add_parser("reset", help="Requeue errored files")
    _ = reset.add_argument(
        "--stuck",
        action="store_true",
        help="Also requeue files left in processing by an interrupted run",
    )
    reset.set_defaults(handler=_cmd_reset)

    stats = sub.add_parser("collection-stats", help="Vector store statistics")
    _ = stats.add_argument("--collection", type=str, help="Qdrant collection to inspect")
    _ = stats.add_argument("--sample-size", type=_positive_int, default=1000, help="Points sampled for the source estimate")
    stats.set_defaults(handler=_cmd_collection_stats)

    listing = sub.add_parser("list-documents", help="List every source stored in the collection")
    _ = listing.add_argument("--collection", type=str, help="Qdrant collection to inspect")
    listing.set_defaults(handler=_cmd_list_documents)

    delete = sub.add_parser("delete-document", help="Delete every vector of one source")
    _ = delete.add_argument("source", help="Source path as stored in the collection")
    _ = delete.add_argument("--collection", type=str, help="Qdrant collection to modify")
    delete.set_defaults(handler=_cmd_delete_document)

    return parser


def main(
    argv: Sequence[str] | None = None,
    *,
    env_factory: Callable[[IngestionSettings], EnvironmentManager] = EnvironmentManager,
) -> int:
    """CLI entry point for the ingestion pipeline. Returns the process exit code."""
    reconfigure = getattr(sys.stdout, "reconfigure", None)
    if reconfigure is not None:
        reconfigure(encoding="utf-8", errors="replace")

    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    configure_logging(verbose=args.verbose)

    try:
        settings = _build_settings(args)
    except ValueError as exc:
        print(f"❌ Invalid configuration: {exc}")
        return EXIT_INVALID_CONFIG

    env = env_factory(settings)
    handler: Callable[[argparse.Namespace, EnvironmentManager], int] = args.handler
    try:
        return handler(args, env)
    except DiscoveryError as exc:
        print(f"❌ Error: {exc}")
        return EXIT_ROOT_UNREADABLE
    except ManifestStoreError as exc:
        print(f"❌ Manifest failure: {exc}")
        return EXIT_MANIFEST_FAILURE
    except EmbeddingServiceUnavailable as exc:
        print(f"❌ Embedding service unavailable: {exc}")
        return EXIT_EMBEDDING_UNAVAILABLE
    except DocumentNotFoundError as exc:
        print(f"❌ {exc}")
        return 1
    except _VECTOR_STORE_ERRORS as exc:
        print(f"❌ Vector store request failed: {exc}")
        return 1
    finally:
        env.close()


__all__ = [
    "EXIT_EMBEDDING_UNAVAILABLE",
    "EXIT_INVALID_CONFIG",
    "EXIT_MANIFEST_FAILURE",
    "EXIT_OK",
    "EXIT_ROOT_UNREADABLE",
    "build_parser",
    "main",
    "validate_input_path",
]

