"""Project detection, git helpers and dependency installation."""

from __future__ import annotations

import json
import logging as py_logging
import subprocess
from pathlib import Path

from devharbor.errors import DevHarborError, ExitCode
from devharbor.models import Project, ProjectKind, ProjectStatus

logger = py_logging.getLogger(__name__)

# Checked in order; the first marker present wins.
KIND_MARKERS = (
    ("package.json", ProjectKind.NODE),
    ("requirements.txt", ProjectKind.PYTHON),
    ("Cargo.toml", ProjectKind.RUST),
    ("go.mod", ProjectKind.GO),
    ("docker-compose.yml", ProjectKind.DOCKER),
)

INSTALL_COMMANDS = {
    ProjectKind.NODE: ["npm", "install"],
    ProjectKind.PYTHON: ["pip", "install", "-r", "requirements.txt"],
    ProjectKind.RUST: ["cargo", "build"],
    ProjectKind.GO: ["go", "mod", "download"],
    ProjectKind.DOCKER: ["docker-compose", "up", "--no-start"],
}

UNKNOWN_BRANCH = "unknown"


def _run_git(repo: str | Path, args: list[str], runner: callable) -> subprocess.CompletedProcess:
    return runner(["git", "-C", str(repo), *args], capture_output=True, text=True, check=False)


def detect_project_kind(path: str | Path) -> ProjectKind:
    project_dir = Path(path)
    try:
        names = {entry.name for entry in project_dir.iterdir()}
    except OSError as exc:
        logger.warning("Project detection failed path=%s error=%s", project_dir, exc)
        return ProjectKind.UNKNOWN
    for marker, kind in KIND_MARKERS:
        if marker in names:
            logger.debug("Detected project kind path=%s kind=%s marker=%s", project_dir, kind.value, marker)
            return kind
    return ProjectKind.OTHER


def list_scripts(project: Project) -> dict[str, str]:
    if project.kind != ProjectKind.NODE:
        return {}
    package_json = Path(project.path) / "package.json"
    if not package_json.is_file():
        return {}
    try:
        pkg = json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.error("Failed to parse package.json path=%s error=%s", package_json, exc)
        return {}
    scripts = pkg.get("scripts") if isinstance(pkg, dict) else None
    if not isinstance(scripts, dict):
        return {}
    return {str(name): str(command) for name, command in scripts.items()}


def repo_name_from_url(url: str) -> str:
    tail = url.rstrip("/").rsplit("/", 1)[-1].rsplit(":", 1)[-1]
    if tail.endswith(".git"):
        tail = tail[: -len(".git")]
    if not tail:
        raise DevHarborError(
            f"Cannot derive a project name from URL: {url}",
            code=ExitCode.VALIDATION_ERROR,
            hint="Use a repository URL such as https://github.com/org/repo.git.",
        )
    return tail


def clone_project(
    url: str,
    target_dir: str | Path,
    runner: callable = subprocess.run,
) -> Project:
    """Clone ``url`` under ``target_dir`` and return the new (undetected) project."""
    url = url.strip()
    if not url:
        raise DevHarborError(
            "Repository URL cannot be empty.",
            code=ExitCode.VALIDATION_ERROR,
            hint="Provide a git URL to clone.",
        )
    name = repo_name_from_url(url)
    target = Path(target_dir).expanduser()
    try:
        target.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise DevHarborError(
            f"Failed to create directory: {target}",
            code=ExitCode.RUNTIME_ERROR,
            hint=str(exc),
        ) from exc

    destination = target / name
    logger.info("Cloning repository url=%s destination=%s", url, destination)
    result = runner(
        ["git", "clone", url, str(destination)],
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        logger.error("Clone failed url=%s stderr=%s", url, stderr)
        raise DevHarborError(
            f"Failed to clone {url}",
            code=ExitCode.GIT_ERROR,
            hint=stderr or "Check the URL and your git credentials.",
        )
    return Project(
        path=str(destination),
        name=name,
        kind=ProjectKind.UNKNOWN,
        origin=url,
        status=ProjectStatus.STOPPED,
    )


def pull_project(project: Project, runner: callable = subprocess.run) -> str:
    logger.info("Pulling project path=%s", project.path)
    result = _run_git(project.path, ["pull"], runner)
    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        logger.error("Pull failed path=%s stderr=%s", project.path, stderr)
        raise DevHarborError(
            f"Failed to update {project.name}",
            code=ExitCode.GIT_ERROR,
            hint=stderr or "Run `git pull` manually to inspect repository state.",
        )
    return result.stdout or ""


def current_branch(project: Project, runner: callable = subprocess.run) -> str:
    try:
        result = _run_git(project.path, ["rev-parse", "--abbrev-ref", "HEAD"], runner)
    except OSError as exc:
        logger.debug("Branch lookup failed path=%s error=%s", project.path, exc)
        return UNKNOWN_BRANCH
    if result.returncode != 0:
        return UNKNOWN_BRANCH
    return (result.stdout or "").strip() or UNKNOWN_BRANCH


def install_command(kind: ProjectKind) -> list[str] | None:
    command = INSTALL_COMMANDS.get(kind)
    return list(command) if command is not None else None


def install_dependencies(project: Project, runner: callable = subprocess.run) -> str:
    command = install_command(project.kind)
    if command is None:
        logger.info("No install command path=%s kind=%s", project.path, project.kind.value)
        return "No install command for this type"
    logger.info("Installing dependencies path=%s command=%s", project.path, " ".join(command))
    try:
        result = runner(command, cwd=project.path, capture_output=True, text=True, check=False)
    except OSError as exc:
        raise DevHarborError(
            f"Failed to run {' '.join(command)}",
            code=ExitCode.RUNTIME_ERROR,
            hint=str(exc),
        ) from exc
    if result.returncode != 0:
        logger.warning(
            "Install finished with errors path=%s code=%s stderr=%s",
            project.path,
            result.returncode,
            (result.stderr or "").strip(),
        )
    return result.stdout or ""
