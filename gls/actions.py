"""Actions on a picked project: open in the browser, or clone and run a post-clone command."""
from __future__ import annotations

import asyncio
import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from gls.config import Settings, expand_path
from gls.errors import ConfigError
from gls.models import PickCandidate

logger = logging.getLogger("gls.actions")


def opener_command(url: str, platform: str = sys.platform) -> list[str] | None:
    if platform == "darwin":
        return ["open", url]
    if platform.startswith("linux"):
        return ["xdg-open", url]
    if platform == "win32":
        return ["explorer.exe", url]
    return None


def open_url(url: str) -> None:
    command = opener_command(url)
    if command is None:
        print(url)
        return
    try:
        subprocess.Popen(command, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    except OSError as exc:
        logger.warning("Could not launch %s (%s); printing URL instead.", command[0], exc)
        print(url)


def ssh_clone_url(base_url: str, full_path: str) -> str:
    """git@host:path.git, or ssh://host:port/path.git when the base URL carries a port."""
    host = urlparse(base_url).netloc
    if not host:
        raise ConfigError(f"Cannot derive clone host from base URL {base_url!r}")
    if ":" in host:
        return f"ssh://{host}/{full_path}.git"
    return f"git@{host}:{full_path}.git"


def project_checkout_dir(clone_dir: str, project: PickCandidate) -> Path:
    name = project.full_path.rsplit("/", 1)[-1] or project.name
    return Path(expand_path(clone_dir)) / name


async def run_post_clone_action(project_dir: Path, action: Optional[str]) -> Optional[int]:
    command = (action or "").strip()
    if not command:
        return None
    logger.info("Running post-clone action in %s: %s", project_dir, command)
    shell = os.environ.get("SHELL") or "/bin/sh"
    proc = await asyncio.create_subprocess_exec(shell, "-lc", command, cwd=str(project_dir))
    code = await proc.wait()
    if code == 0:
        logger.info("Post-clone action completed successfully.")
    else:
        logger.warning("Post-clone action exited with code %s", code)
    return code


async def clone_project(settings: Settings, project: PickCandidate) -> bool:
    """Clone over SSH into the clone directory; an existing checkout is reused."""
    if not settings.clone_dir:
        raise ConfigError("Clone directory not configured. Set GITLAB_CLONE_DIRECTORY to use clone action.")

    target_dir = Path(expand_path(settings.clone_dir))
    project_dir = project_checkout_dir(settings.clone_dir, project)

    if project_dir.exists():
        logger.info("Repository already exists at %s; skipping clone.", project_dir)
        await run_post_clone_action(project_dir, settings.post_clone_action)
        return True

    clone_url = ssh_clone_url(settings.base_url, project.full_path)
    target_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Cloning (SSH) %s -> %s", project.full_path, target_dir)
    proc = await asyncio.create_subprocess_exec("git", "clone", clone_url, cwd=str(target_dir))
    code = await proc.wait()
    if code != 0:
        logger.error("Clone failed with exit code %s", code)
        return False
    logger.info("Clone completed successfully.")
    await run_post_clone_action(project_dir, settings.post_clone_action)
    return True
