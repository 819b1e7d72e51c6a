"""Command-line entry point for fgm.

Usage::

    fgm files get <key-or-url>
    fgm files tree <key-or-url> --depth 2
    fgm files versions <key-or-url> --limit 5
    fgm files list --team <team-id> | --project <project-id>
    fgm components list --team <team-id>
    fgm export <key-or-url> --node 1:2 --node 1:3 --format svg -o out/
    fgm cache warmup <key-or-url> --include-images
    fgm cache status
    fgm cache clear --all | --file <key>

Global flags (before the subcommand): ``--no-cache`` keeps the cache in
memory only, ``--json`` prints machine-readable output, ``--verbose`` turns
on debug logging, ``--config`` points at a YAML config file.

Every handler is an async function returning an exit code.  Errors from the
API layer are mapped to one-line messages in :func:`run`; a rate-limit
failure is reported differently from "not found" so users know to wait.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from fgm.api.client import FigmaClient
from fgm.api.url import FigmaUrl
from fgm.config.loader import load_settings
from fgm.config.settings import Settings
from fgm.main import build_cache, build_client, setup_logging
from fgm.models.figma import Node
from fgm.providers.cache.disk_cache import sanitize_key
from fgm.providers.cache.tiered_cache import FigmaCache
from fgm.utils.concurrency import DEFAULT_CONCURRENCY, parallel_fetch
from fgm.utils.errors import (
    APIError,
    APIRequestError,
    AuthenticationError,
    FgmError,
    RateLimitExceededError,
)

# The images endpoint accepts many IDs per call; keep batches moderate.
_EXPORT_BATCH_SIZE = 50
_WARMUP_BATCH_PAUSE = 0.3


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def _emit_json(value: Any) -> None:
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True)
    print(json.dumps(value, indent=2, default=str))


def _status(args: argparse.Namespace, message: str) -> None:
    """Progress/status text: stderr, suppressed in JSON mode."""
    if not args.json:
        print(message, file=sys.stderr)


def _backoff_printer(args: argparse.Namespace):  # noqa: ANN202
    def _report(wait_s: float, attempt: int, max_retries: int) -> None:
        _status(
            args,
            f"Rate limited. Waiting {wait_s:.1f}s before retry ({attempt}/{max_retries})...",
        )

    return _report


# ---------------------------------------------------------------------------
# files
# ---------------------------------------------------------------------------


async def _handle_files_get(args: argparse.Namespace, client: FigmaClient) -> int:
    file_key = FigmaUrl.parse(args.file).file_key
    file = await client.get_file_cached(file_key, force_refresh=args.refresh)
    if args.json:
        _emit_json(file)
        return 0
    print(f"File: {file.name}")
    print(f"  Last modified: {file.last_modified}")
    print(f"  Version: {file.version}")
    print(f"  Components: {len(file.components)}")
    print(f"  Styles: {len(file.styles)}")
    return 0


def _print_node(node: Node, depth: int, max_depth: int) -> None:
    print(f"{'  ' * depth}{node.name} ({node.node_type}) [{node.id}]")
    if depth < max_depth:
        for child in node.children or []:
            _print_node(child, depth + 1, max_depth)


async def _handle_files_tree(args: argparse.Namespace, client: FigmaClient) -> int:
    file_key = FigmaUrl.parse(args.file).file_key
    file = await client.get_file(file_key)
    if args.json:
        _emit_json(file.document)
        return 0
    doc = file.document
    print(f"Node tree for: {file.name}")
    print(f"{doc.name} ({doc.node_type}) [{doc.id}]")
    if args.depth > 0:
        for child in doc.children or []:
            _print_node(child, 1, args.depth)
    return 0


async def _handle_files_versions(args: argparse.Namespace, client: FigmaClient) -> int:
    file_key = FigmaUrl.parse(args.file).file_key
    versions = (await client.get_versions(file_key)).versions[: args.limit]
    if args.json:
        _emit_json([v.model_dump(mode="json", by_alias=True) for v in versions])
        return 0
    print("Version history:")
    for i, version in enumerate(versions, start=1):
        label = version.label or "(no label)"
        user = version.user.handle if version.user else "unknown"
        print(f"  {i}. {version.id} - {label} by {user}")
        print(f"     Created: {version.created_at}")
        if version.description:
            print(f"     {version.description}")
    return 0


async def _handle_files_meta(args: argparse.Namespace, client: FigmaClient) -> int:
    file_key = FigmaUrl.parse(args.file).file_key
    _emit_json(await client.get_file_meta(file_key))
    return 0


async def _handle_files_nodes(args: argparse.Namespace, client: FigmaClient) -> int:
    file_key = FigmaUrl.parse(args.file).file_key
    _emit_json(await client.get_nodes(file_key, args.ids))
    return 0


async def _handle_files_list(args: argparse.Namespace, client: FigmaClient) -> int:
    if args.project:
        files = await client.get_project_files(args.project)
        if args.json:
            _emit_json(files)
            return 0
        print(f"Files in project {args.project}:")
        for f in files.files:
            print(f"  {f.key} - {f.name}")
        return 0
    if args.team:
        projects = await client.get_team_projects(args.team)
        if args.json:
            _emit_json(projects)
            return 0
        print(f"Projects in team {args.team}:")
        for p in projects.projects:
            print(f"  {p.id} - {p.name}")
        return 0
    print("Please specify --project or --team", file=sys.stderr)
    return 1


# ---------------------------------------------------------------------------
# components
# ---------------------------------------------------------------------------


def _library_items(payload: dict[str, Any], section: str) -> list[dict[str, Any]]:
    meta = payload.get("meta") or {}
    items = meta.get(section) if isinstance(meta, dict) else None
    return items if isinstance(items, list) else []


async def _handle_components_list(args: argparse.Namespace, client: FigmaClient) -> int:
    payload = await client.get_team_components(args.team)
    if args.json:
        _emit_json(payload)
        return 0
    items = _library_items(payload, "components")
    print(f"Components in team {args.team}: {len(items)}")
    for item in items:
        print(f"  {item.get('key', '?')} - {item.get('name', '')}")
    return 0


async def _handle_components_styles(args: argparse.Namespace, client: FigmaClient) -> int:
    payload = await client.get_team_styles(args.team)
    if args.json:
        _emit_json(payload)
        return 0
    items = _library_items(payload, "styles")
    print(f"Styles in team {args.team}: {len(items)}")
    for item in items:
        print(f"  {item.get('key', '?')} - {item.get('name', '')} ({item.get('style_type', '')})")
    return 0


async def _handle_components_get(args: argparse.Namespace, client: FigmaClient) -> int:
    _emit_json(await client.get_component(args.key))
    return 0


# ---------------------------------------------------------------------------
# export
# ---------------------------------------------------------------------------


def _batches(items: list[str], size: int) -> list[list[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


async def _handle_export(args: argparse.Namespace, client: FigmaClient) -> int:
    parsed = FigmaUrl.parse(args.file)
    node_ids: list[str] = list(args.node or [])
    if not node_ids and parsed.node_id:
        node_ids = [parsed.node_id]
    if not node_ids:
        file = await client.get_file(parsed.file_key)
        node_ids = file.document.frame_ids()
    if not node_ids:
        print("Nothing to export: no nodes given and no top-level frames found", file=sys.stderr)
        return 1

    urls: dict[str, str] = {}
    missing: list[str] = []
    for batch in _batches(node_ids, _EXPORT_BATCH_SIZE):
        response = await client.export_images(parsed.file_key, batch, args.format, args.scale)
        if response.err:
            print(f"Export error: {response.err}", file=sys.stderr)
            return 1
        for node_id in batch:
            url = response.images.get(node_id)
            if url:
                urls[node_id] = url
            else:
                missing.append(node_id)

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    async def _download(node_id: str, url: str) -> Path:
        data = await client.download_image(url)
        target = output_dir / f"{sanitize_key(node_id)}.{args.format}"
        await asyncio.to_thread(target.write_bytes, data)
        return target

    calls = [{"node_id": node_id, "url": url} for node_id, url in urls.items()]
    results = await parallel_fetch(
        _download, calls, error_msg="image_download_failed", limit=args.concurrency
    )

    written = [str(path) for _, path in results]
    failed = len(calls) - len(results) + len(missing)
    if args.json:
        _emit_json({"written": written, "missing": missing, "failed": failed})
    else:
        for path in written:
            print(path)
        for node_id in missing:
            print(f"No image rendered for node {node_id}", file=sys.stderr)
        _status(args, f"Exported {len(written)}/{len(node_ids)} images to {output_dir}")
    return 0 if failed == 0 else 1


# ---------------------------------------------------------------------------
# cache
# ---------------------------------------------------------------------------


async def _handle_cache_warmup(
    args: argparse.Namespace, client: FigmaClient, app_settings: Settings
) -> int:
    """Prefetch the file document, versions and optionally frame image URLs."""
    file_key = FigmaUrl.parse(args.file).file_key
    _status(args, f"Warming cache for file: {file_key}")

    file = await client.get_file(file_key)
    await client.get_versions(file_key)

    node_ids = file.document.all_node_ids()
    frame_ids = file.document.frame_ids()
    _status(args, f"  Found {len(node_ids)} total nodes, {len(frame_ids)} top-level frames")

    if args.include_images and frame_ids:
        _status(args, "  Prefetching image URLs...")
        for batch in _batches(frame_ids, _EXPORT_BATCH_SIZE):
            try:
                await client.export_images(
                    file_key, batch, app_settings.export_format, app_settings.export_scale
                )
            except APIError as exc:
                _status(args, f"  Skipped a batch of {len(batch)} frames: {exc}")
            await asyncio.sleep(_WARMUP_BATCH_PAUSE)

    stats = client.cache_stats()
    if args.json:
        _emit_json({"file": file.name, "stats": stats.model_dump(mode="json")})
        return 0
    print("Cache warmed successfully:")
    print(f"  File: {file.name}")
    print(f"  Memory entries: {stats.memory_entries}")
    print(f"  Disk entries: {stats.disk_entries}")
    if stats.disk_path:
        print(f"  Cache location: {stats.disk_path}")
    return 0


def _handle_cache_status(args: argparse.Namespace, cache: FigmaCache) -> int:
    stats = cache.stats()
    if args.json:
        payload = stats.model_dump(mode="json")
        payload["disk_usage_bytes"] = cache.disk_usage_bytes()
        _emit_json(payload)
        return 0
    print("Cache Status:")
    print(f"  Memory entries: {stats.memory_entries}")
    print(f"  Memory size: {stats.memory_weighted_size} bytes")
    print(f"  Disk caching: {'enabled' if stats.disk_enabled else 'disabled'}")
    print(f"  Disk entries: {stats.disk_entries}")
    if stats.disk_path:
        print(f"  Cache location: {stats.disk_path}")
        print(f"  Disk usage: {cache.disk_usage_bytes() // 1024} KB")
    return 0


def _handle_cache_clear(args: argparse.Namespace, cache: FigmaCache) -> int:
    if args.all:
        cache.clear()
        print("All caches cleared")
        return 0
    if args.file:
        file_key = FigmaUrl.parse(args.file).file_key
        cache.invalidate_file(file_key)
        print(f"Cache cleared for file: {file_key}")
        return 0
    print(
        "Specify --all to clear entire cache or --file <key> to clear specific file\n\n"
        "Examples:\n"
        "  fgm cache clear --all\n"
        "  fgm cache clear --file abc123",
        file=sys.stderr,
    )
    return 1


# ---------------------------------------------------------------------------
# Parser and dispatch
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the fgm CLI."""
    parser = argparse.ArgumentParser(
        prog="fgm",
        description="Command-line client for the Figma REST API.",
    )
    parser.add_argument("--no-cache", action="store_true", help="Do not use the disk cache")
    parser.add_argument("--json", action="store_true", help="Print JSON output")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--config", default=None, help="Path to a YAML config file")

    commands = parser.add_subparsers(dest="command")

    # -- files --
    files = commands.add_parser("files", help="Inspect files, projects and versions")
    files_sub = files.add_subparsers(dest="action", required=True)

    get_p = files_sub.add_parser("get", help="Show file metadata")
    get_p.add_argument("file", help="File key or Figma URL")
    get_p.add_argument("--refresh", action="store_true", help="Bypass the cache")

    tree_p = files_sub.add_parser("tree", help="Print the node tree")
    tree_p.add_argument("file", help="File key or Figma URL")
    tree_p.add_argument("--depth", type=int, default=2)

    versions_p = files_sub.add_parser("versions", help="Show version history")
    versions_p.add_argument("file", help="File key or Figma URL")
    versions_p.add_argument("--limit", type=int, default=10)

    meta_p = files_sub.add_parser("meta", help="Show light file metadata (JSON)")
    meta_p.add_argument("file", help="File key or Figma URL")

    nodes_p = files_sub.add_parser("nodes", help="Fetch specific nodes (JSON)")
    nodes_p.add_argument("file", help="File key or Figma URL")
    nodes_p.add_argument("ids", nargs="+", help="Node IDs, e.g. 1:2")

    list_p = files_sub.add_parser("list", help="List team projects or project files")
    list_p.add_argument("--team", default=None)
    list_p.add_argument("--project", default=None)

    # -- components --
    components = commands.add_parser("components", help="Browse team libraries")
    components_sub = components.add_subparsers(dest="action", required=True)
    comp_list = components_sub.add_parser("list", help="List published components")
    comp_list.add_argument("--team", required=True)
    comp_styles = components_sub.add_parser("styles", help="List published styles")
    comp_styles.add_argument("--team", required=True)
    comp_get = components_sub.add_parser("get", help="Show one component (JSON)")
    comp_get.add_argument("key")

    # -- export --
    export = commands.add_parser("export", help="Export nodes as images")
    export.add_argument("file", help="File key or Figma URL")
    export.add_argument("--node", action="append", help="Node ID (repeatable)")
    export.add_argument("--format", default=None, choices=["png", "jpg", "svg", "pdf"])
    export.add_argument("--scale", type=float, default=None)
    export.add_argument("--output-dir", "-o", default=".")
    export.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY)

    # -- cache --
    cache = commands.add_parser("cache", help="Warm up, inspect or clear the cache")
    cache_sub = cache.add_subparsers(dest="action", required=True)
    warmup = cache_sub.add_parser("warmup", help="Prefetch everything for a file")
    warmup.add_argument("file", help="File key or Figma URL")
    warmup.add_argument("--include-images", action="store_true")
    cache_sub.add_parser("status", help="Show cache statistics")
    clear = cache_sub.add_parser("clear", help="Clear cached data")
    clear.add_argument("--all", action="store_true")
    clear.add_argument("--file", default=None)

    return parser


_CLIENT_HANDLERS = {
    ("files", "get"): _handle_files_get,
    ("files", "tree"): _handle_files_tree,
    ("files", "versions"): _handle_files_versions,
    ("files", "meta"): _handle_files_meta,
    ("files", "nodes"): _handle_files_nodes,
    ("files", "list"): _handle_files_list,
    ("components", "list"): _handle_components_list,
    ("components", "styles"): _handle_components_styles,
    ("components", "get"): _handle_components_get,
    ("export", None): _handle_export,
}


async def _run_with_client(args: argparse.Namespace, app_settings: Settings) -> int:
    cache = build_cache(app_settings, use_disk=not args.no_cache)
    async with build_client(
        app_settings, cache=cache, on_backoff=_backoff_printer(args)
    ) as client:
        if args.command == "cache":
            return await _handle_cache_warmup(args, client, app_settings)
        if args.command == "export":
            args.format = args.format or app_settings.export_format
            args.scale = args.scale if args.scale is not None else app_settings.export_scale
        handler = _CLIENT_HANDLERS[(args.command, getattr(args, "action", None))]
        return await handler(args, client)


def run(argv: list[str] | None = None) -> int:
    """Parse *argv*, dispatch, and return the exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    try:
        app_settings = load_settings(
            args.config, log_level="DEBUG" if args.verbose else None
        )
        setup_logging(app_settings)

        if args.command == "cache" and args.action in ("status", "clear"):
            cache = build_cache(app_settings, use_disk=not args.no_cache)
            if args.action == "status":
                return _handle_cache_status(args, cache)
            return _handle_cache_clear(args, cache)

        return asyncio.run(_run_with_client(args, app_settings))
    except RateLimitExceededError as exc:
        print(
            f"Error: {exc.message} (gave up after {exc.retries} retries)",
            file=sys.stderr,
        )
    except APIError as exc:
        if exc.is_not_found:
            print("Error: not found (check the file key or ID)", file=sys.stderr)
        elif exc.status_code in (401, 403):
            print("Error: access denied; check your Figma token", file=sys.stderr)
        else:
            print(f"Error: {exc.message}", file=sys.stderr)
    except AuthenticationError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
    except APIRequestError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
    except FgmError as exc:
        print(f"Error: {exc}", file=sys.stderr)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
    return 1


def main() -> None:
    """Console-script entry point."""
    sys.exit(run())


if __name__ == "__main__":
    main()
