"""gls: fuzzy-pick a GitLab project from a local cache, then open or clone it.

Usage:
  gls                      pick from all cached projects (stored contexts apply)
  gls identity             start the picker with the query "identity"
  gls --context acme/be    store a context prefix and filter by it
  gls --all                ignore stored contexts for this run
  gls --clearcontext       forget stored context prefixes
  gls --reset              clear the cache and rebuild it
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from gls.actions import clone_project, open_url
from gls.config import Settings, load_settings, split_csv
from gls.db.connection import close_connection, open_connection
from gls.db.refresh_engine import RefreshEngine, RefreshHandle
from gls.db.sqlite_migrations import run_migrations
from gls.db.store import CacheStore
from gls.errors import GlsError
from gls.picker import pick
from gls.progress import ProgressBar
from gls.remote.client import GitLabClient
from gls.selection import SelectionView

logger = logging.getLogger("gls.cli")

LOG_FORMAT = "[%(levelname)s] %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gls",
        description="Interactive GitLab project search backed by a local SQLite cache.",
        epilog="Press Enter to open the project in a browser, Tab to clone it.",
    )
    parser.add_argument("query", nargs="*", help="initial picker query")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    parser.add_argument("--log", action="store_true", help="enable info logging")
    parser.add_argument("--reset", action="store_true", help="clear the data store and rebuild the cache")
    parser.add_argument(
        "--context",
        default=None,
        help="comma-separated full path prefixes; stored and reused in future runs",
    )
    parser.add_argument("--clearcontext", action="store_true", help="clear all stored context filters")
    parser.add_argument("--all", action="store_true", help="disable context filtering for this run")
    return parser


def log_level_for(args: argparse.Namespace, settings: Settings | None = None) -> int:
    if args.debug or (settings is not None and settings.debug):
        return logging.DEBUG
    if args.log or (settings is not None and settings.log_info):
        return logging.INFO
    return logging.WARNING


def configure_logging(level: int) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr, force=True)
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


def force_info_logging() -> None:
    root = logging.getLogger()
    if root.level > logging.INFO:
        root.setLevel(logging.INFO)


def _progress_bar() -> ProgressBar:
    return ProgressBar(enabled=logging.getLogger().isEnabledFor(logging.INFO))


def resolve_contexts(args: argparse.Namespace, requested: list[str], stored: list[str]) -> list[str]:
    """--all wins, then prefixes given on the command line, then stored ones."""
    if args.all:
        logger.info("Context filtering disabled for this run (--all flag)")
        return []
    active = requested or stored
    if active:
        logger.info("Using context filters: %s", ", ".join(active))
    return active


async def _rebuild(engine: RefreshEngine, store: CacheStore) -> int:
    force_info_logging()
    await store.clear_all()
    logger.info("Rebuilding data store...")
    try:
        await engine.refresh(_progress_bar(), trigger="reset")
    except GlsError as exc:
        logger.error("Data store rebuild failed: %s", exc)
        return 1
    logger.info("Data store rebuild completed.")
    return 0


async def _await_background(handle: Optional[RefreshHandle]) -> None:
    if handle is None:
        return
    if not handle.done():
        logger.info("Waiting for background refresh to finish...")
    result = await handle.wait()
    if not result.ok:
        logger.warning("Background refresh failed.")


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    db = await open_connection(settings.db_path)
    try:
        await run_migrations(db)
        store = CacheStore(db)

        if args.reset:
            async with GitLabClient.from_settings(settings) as client:
                return await _rebuild(RefreshEngine.from_settings(settings, store, client), store)

        if args.clearcontext:
            await store.clear_context_prefixes()
            return 0

        async with GitLabClient.from_settings(settings) as client:
            engine = RefreshEngine.from_settings(settings, store, client)

            requested = split_csv(args.context)
            if requested:
                await store.add_context_prefixes(requested)
            contexts = resolve_contexts(args, requested, await store.list_context_prefixes())

            if await store.count_projects() == 0:
                force_info_logging()
            decision = await engine.begin(_progress_bar())
            logger.debug("Refresh decision: %s", decision.state)

            try:
                selection = await SelectionView(store).build(contexts, " ".join(args.query))
                picked = await pick(selection)
                if picked is None:
                    logger.info("No project selected.")
                else:
                    logger.info("Selected: %s (action=%s)", picked.project.full_path, picked.action)
                    if picked.action == "clone":
                        if not await clone_project(settings, picked.project):
                            return 1
                    else:
                        open_url(picked.project.web_url)
            finally:
                await _await_background(decision.handle)
        return 0
    finally:
        await close_connection(db)


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(log_level_for(args))
    try:
        settings = load_settings()
        configure_logging(log_level_for(args, settings))
        return asyncio.run(_run(args, settings))
    except GlsError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
