"""Evidence collection from a repository checkout.

Reads manifests, a depth-bounded directory tree, key source and test files,
README and root-level files, and documentation directories. Each piece is
returned as (relative path, content) so the pipeline can label it in the
context. A file that cannot be read is skipped on its own; it never fails
the step that asked for it.
"""

import logging
import os
from collections.abc import Iterator
from pathlib import Path

from lorekeeper.config import AnalysisConfig

logger = logging.getLogger(__name__)

# Package manifests, in the order they are offered to the model
MANIFEST_FILES = [
    "Cargo.toml",
    "package.json",
    "pyproject.toml",
    "setup.py",
    "setup.cfg",
    "requirements.txt",
    "go.mod",
    "pom.xml",
    "build.gradle",
    "build.gradle.kts",
    "Gemfile",
    "composer.json",
    "CMakeLists.txt",
]

README_FILES = ["README.md", "README.rst", "README.txt", "README"]

# Root-level files that describe how the project is built, run and licensed
ROOT_FILES = [
    "LICENSE",
    "LICENSE.md",
    "LICENSE.txt",
    "Makefile",
    "Dockerfile",
    "docker-compose.yml",
    "docker-compose.yaml",
    ".env.example",
    ".github/workflows/ci.yml",
    ".github/workflows/ci.yaml",
    ".gitlab-ci.yml",
    "tox.ini",
    "rust-toolchain.toml",
    ".nvmrc",
]

# File names (substring match) that usually hold entry points or module roots
KEY_FILE_PATTERNS = [
    "main.rs",
    "lib.rs",
    "mod.rs",
    "main.py",
    "__init__.py",
    "__main__.py",
    "cli.py",
    "index.js",
    "index.ts",
    "app.js",
    "app.py",
    "server.js",
    "Main.java",
    "Application.java",
    "main.go",
]

DOC_DIRS = ["docs", "doc", "documentation"]
DOC_EXTENSIONS = {".md", ".rst", ".txt", ".adoc"}

# Root-level documents outside doc directories
ROOT_DOC_FILES = ["ARCHITECTURE.md", "CONTRIBUTING.md", "CHANGELOG.md", "DESIGN.md", "HACKING.md"]

TEST_DIR_NAMES = {"tests", "test", "spec", "__tests__", "testing"}


class EvidenceProvider:
    """Collects textual evidence about one repository.

    Attributes:
        repo_path: Repository root
        config: File selection limits
    """

    def __init__(self, repo_path: Path, config: AnalysisConfig | None = None) -> None:
        self.repo_path = repo_path.resolve()
        self.config = config or AnalysisConfig()

    @property
    def repository_name(self) -> str:
        return self.repo_path.name

    # =========================================================================
    # File access
    # =========================================================================

    def read_file(self, relative: str | Path) -> str | None:
        """Read one file relative to the repository root.

        Missing, excluded, oversized, unreadable or non-UTF-8 files yield None.
        """
        path = self.repo_path / relative
        if path.name in self.config.exclude_files:
            return None

        try:
            if not path.is_file():
                return None
            size = path.stat().st_size
            if size > self.config.max_file_size:
                logger.debug("Skipping %s (too large: %d bytes)", relative, size)
                return None
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.debug("Skipping %s: %s", relative, e)
            return None

    def _collect(self, relatives: list[str]) -> list[tuple[str, str]]:
        collected = []
        for relative in relatives:
            content = self.read_file(relative)
            if content is not None:
                collected.append((relative, content))
        return collected

    def _is_excluded_dir(self, name: str) -> bool:
        return name in self.config.exclude_dirs

    def iter_files(self, max_depth: int | None = None) -> Iterator[Path]:
        """Yield repository files in sorted walk order, relative to the root.

        Excluded directories are pruned; directories deeper than max_depth are
        not entered.
        """
        depth_limit = max_depth if max_depth is not None else self.config.max_depth

        for dirpath, dirnames, filenames in os.walk(self.repo_path, onerror=self._walk_error):
            current = Path(dirpath)
            relative_dir = current.relative_to(self.repo_path)
            depth = len(relative_dir.parts)

            if depth + 1 >= depth_limit:
                dirnames[:] = []
            else:
                dirnames[:] = sorted(d for d in dirnames if not self._is_excluded_dir(d))

            for filename in sorted(filenames):
                if filename in self.config.exclude_files:
                    continue
                yield relative_dir / filename

    def _walk_error(self, error: OSError) -> None:
        logger.debug("Cannot read directory %s: %s", error.filename, error)

    # =========================================================================
    # Evidence
    # =========================================================================

    def manifests(self) -> list[tuple[str, str]]:
        """Return the package manifests present at the repository root."""
        return self._collect(MANIFEST_FILES)

    def readme_files(self) -> list[tuple[str, str]]:
        return self._collect(README_FILES)

    def root_files(self) -> list[tuple[str, str]]:
        """Return root-level configuration, CI and license files."""
        return self._collect(ROOT_FILES)

    def directory_tree(self, max_depth: int | None = None) -> str:
        """Render the directory structure as an indented tree.

        Args:
            max_depth: Levels shown below the root (defaults to config.max_depth)

        Returns:
            Tree text, one entry per line, directories before their children
        """
        depth_limit = max_depth if max_depth is not None else self.config.max_depth
        lines = [f"{self.repository_name}/"]
        self._render_tree(self.repo_path, "", 0, depth_limit, lines)
        return "\n".join(lines) + "\n"

    def _render_tree(
        self,
        directory: Path,
        prefix: str,
        depth: int,
        depth_limit: int,
        lines: list[str],
    ) -> None:
        if depth >= depth_limit:
            return

        try:
            entries = sorted(directory.iterdir(), key=lambda p: p.name)
        except OSError as e:
            logger.debug("Cannot list %s: %s", directory, e)
            return

        visible = []
        for entry in entries:
            if entry.is_dir():
                if not self._is_excluded_dir(entry.name):
                    visible.append(entry)
            elif entry.name not in self.config.exclude_files:
                visible.append(entry)

        for index, entry in enumerate(visible):
            is_last = index == len(visible) - 1
            connector = "└── " if is_last else "├── "
            is_dir = entry.is_dir()
            lines.append(f"{prefix}{connector}{entry.name}{'/' if is_dir else ''}")
            if is_dir:
                extension = "    " if is_last else "│   "
                self._render_tree(entry, prefix + extension, depth + 1, depth_limit, lines)

    def _has_source_extension(self, path: Path) -> bool:
        return path.suffix.lstrip(".").lower() in self.config.include_extensions

    def key_source_paths(self) -> list[Path]:
        """Return paths of entry points and module roots, in walk order."""
        found = []
        for path in self.iter_files():
            if any(pattern in path.name for pattern in KEY_FILE_PATTERNS):
                found.append(path)
                if len(found) >= self.config.max_source_files:
                    break
        return found

    def key_source_files(self) -> list[tuple[str, str]]:
        return self._collect([path.as_posix() for path in self.key_source_paths()])

    def test_paths(self) -> list[Path]:
        """Return paths of test files, in walk order."""
        found = []
        for path in self.iter_files():
            if not self._has_source_extension(path):
                continue
            in_test_dir = any(part in TEST_DIR_NAMES for part in path.parts[:-1])
            stem = path.stem.lower()
            named_as_test = (
                stem.startswith("test_")
                or stem.endswith("_test")
                or stem.endswith(".test")
                or stem.endswith(".spec")
            )
            if in_test_dir or named_as_test:
                found.append(path)
                if len(found) >= self.config.max_source_files:
                    break
        return found

    def test_files(self) -> list[tuple[str, str]]:
        return self._collect([path.as_posix() for path in self.test_paths()])

    def documentation_paths(self) -> list[Path]:
        """Return documentation files: doc directories first, then root documents."""
        found: list[Path] = []
        if any((self.repo_path / doc_dir).is_dir() for doc_dir in DOC_DIRS):
            for path in self.iter_files():
                if (
                    len(path.parts) > 1
                    and path.parts[0] in DOC_DIRS
                    and path.suffix.lower() in DOC_EXTENSIONS
                ):
                    found.append(path)

        for name in ROOT_DOC_FILES:
            if (self.repo_path / name).is_file():
                found.append(Path(name))

        return found[: self.config.max_source_files]

    def documentation_files(self) -> list[tuple[str, str]]:
        return self._collect([path.as_posix() for path in self.documentation_paths()])

    def has_documentation(self) -> bool:
        """True if at least one documentation file can actually be read."""
        return bool(self.documentation_files())
