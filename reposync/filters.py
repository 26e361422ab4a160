"""Path filtering for repository tree listings.

Candidate paths pass through exclude patterns first (the default excludes
plus any configured for the repository), then through the include patterns
when a repository declares them. Exclusion always wins.

Patterns are matched one path segment at a time with ``fnmatch``: ``**``
spans zero or more directories, ``*`` and ``?`` never cross ``/`` and
wildcards match dotfiles. Every pattern is anchored at the repository root,
so ``*.md`` matches ``README.md`` but not ``docs/guide.md``, ``src/*``
matches ``src/app.py`` but not ``src/deep/nested.py``, and a bare ``src``
matches only a file named ``src``.
"""

from __future__ import annotations

import dataclasses
import fnmatch
import functools
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc

DEFAULT_EXCLUDE_PATTERNS: tuple[str, ...] = (
    # Hidden files and directories
    ".*",
    "**/.*",
    "**/.*/**",
    # Build and dependency directories
    "**/node_modules/**",
    "**/dist/**",
    "**/build/**",
    "**/target/**",
    "**/out/**",
    "**/output/**",
    "**/bin/**",
    "**/obj/**",
    # Lockfiles
    "**/package-lock.json",
    "**/yarn.lock",
    "**/pnpm-lock.yaml",
    "**/composer.lock",
    "**/Gemfile.lock",
    "**/poetry.lock",
    "**/Cargo.lock",
    # Minified and bundled assets
    "**/*.min.js",
    "**/*.min.css",
    "**/*.bundle.js",
    "**/*.bundle.css",
    "**/*.chunk.js",
    "**/*.chunk.css",
    # Binary formats
    "**/*.jpg",
    "**/*.jpeg",
    "**/*.png",
    "**/*.gif",
    "**/*.webp",
    "**/*.ico",
    "**/*.pdf",
    "**/*.zip",
    "**/*.tar",
    "**/*.gz",
    "**/*.tgz",
    "**/*.7z",
    "**/*.rar",
    "**/*.mp3",
    "**/*.wav",
    "**/*.mp4",
    "**/*.webm",
    "**/*.ttf",
    "**/*.otf",
    "**/*.woff",
    "**/*.woff2",
    # Boilerplate
    "**/LICENSE",
    "**/CHANGELOG.md",
    "**/CONTRIBUTING.md",
    "**/AUTHORS",
    "**/CODEOWNERS",
)


def _normalise_path(path: str) -> str:
    """Drop leading slashes; backslashes are ordinary name characters in git."""
    return path.lstrip("/")


def _split(value: str) -> tuple[str, ...]:
    return tuple(segment for segment in value.split("/") if segment)


def _match_segments(pattern: tuple[str, ...], path: tuple[str, ...]) -> bool:
    if not pattern:
        return not path
    head, rest = pattern[0], pattern[1:]
    if head == "**":
        return any(_match_segments(rest, path[i:]) for i in range(len(path) + 1))
    if not path:
        return False
    return fnmatch.fnmatchcase(path[0], head) and _match_segments(rest, path[1:])


@dataclasses.dataclass(frozen=True, slots=True)
class CompiledPatterns:
    """Glob patterns pre-split into path segments."""

    patterns: tuple[tuple[str, ...], ...]

    def match_file(self, path: str) -> bool:
        """Return True when any pattern matches the whole of ``path``."""
        segments = _split(path)
        if not segments:
            return False
        return any(_match_segments(p, segments) for p in self.patterns)


@functools.lru_cache(maxsize=256)
def compile_patterns(patterns: tuple[str, ...]) -> CompiledPatterns:
    """Compile glob patterns into a reusable matcher.

    Blank entries are ignored. Results are cached per pattern tuple because
    the same repository configuration is filtered on every sync.
    """
    split = (_split(p.strip()) for p in patterns if p and p.strip())
    return CompiledPatterns(patterns=tuple(s for s in split if s))


@dataclasses.dataclass(frozen=True, slots=True)
class PathFilter:
    """Compiled include/exclude filter for one repository."""

    exclude: CompiledPatterns
    include: CompiledPatterns | None = None

    @classmethod
    def build(
        cls,
        include_patterns: cabc.Iterable[str] | None = None,
        exclude_patterns: cabc.Iterable[str] | None = None,
    ) -> PathFilter:
        """Compile a filter; default excludes always apply."""
        excludes = (*(exclude_patterns or ()), *DEFAULT_EXCLUDE_PATTERNS)
        includes = tuple(include_patterns or ())
        return cls(
            exclude=compile_patterns(excludes),
            include=compile_patterns(includes) if includes else None,
        )

    def allows(self, path: str) -> bool:
        """Return True when ``path`` survives exclude-then-include filtering."""
        normalised = _normalise_path(path)
        if not normalised.strip():
            return False
        if self.exclude.match_file(normalised):
            return False
        if self.include is None:
            return True
        return self.include.match_file(normalised)


def should_include_file(
    path: str,
    include_patterns: cabc.Iterable[str] | None = None,
    exclude_patterns: cabc.Iterable[str] | None = None,
) -> bool:
    """Return whether ``path`` should be ingested under the given patterns."""
    return PathFilter.build(include_patterns, exclude_patterns).allows(path)


__all__ = [
    "DEFAULT_EXCLUDE_PATTERNS",
    "CompiledPatterns",
    "PathFilter",
    "compile_patterns",
    "should_include_file",
]
