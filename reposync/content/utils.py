"""Content classification and addressing helpers.

Provides MIME type inference, binary detection by extension and by content
sniffing, git-compatible blob hashing, and the storage key layout used by
every blob backend.
"""

from __future__ import annotations

import hashlib
from pathlib import PurePosixPath

DEFAULT_MIME_TYPE = "application/octet-stream"

MIME_TYPES: dict[str, str] = {
    # Text
    "txt": "text/plain",
    "md": "text/markdown",
    "markdown": "text/markdown",
    "html": "text/html",
    "htm": "text/html",
    "css": "text/css",
    "csv": "text/csv",
    "xml": "text/xml",
    # Source code
    "js": "application/javascript",
    "mjs": "application/javascript",
    "cjs": "application/javascript",
    "jsx": "application/javascript",
    "ts": "application/typescript",
    "tsx": "application/typescript",
    "json": "application/json",
    "py": "text/x-python",
    "rb": "text/x-ruby",
    "java": "text/x-java",
    "c": "text/x-c",
    "cpp": "text/x-c++",
    "h": "text/x-c",
    "hpp": "text/x-c++",
    "cs": "text/x-csharp",
    "go": "text/x-go",
    "rs": "text/x-rust",
    "php": "text/x-php",
    "swift": "text/x-swift",
    "kt": "text/x-kotlin",
    "scala": "text/x-scala",
    "pl": "text/x-perl",
    "sh": "text/x-shellscript",
    "bash": "text/x-shellscript",
    "zsh": "text/x-shellscript",
    "fish": "text/x-shellscript",
    "sql": "text/x-sql",
    "graphql": "text/x-graphql",
    "yaml": "text/yaml",
    "yml": "text/yaml",
    "toml": "text/toml",
    # Images
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "ico": "image/x-icon",
    # Documents
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": (
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    ),
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": (
        "application/vnd.openxmlformats-officedocument.presentationml.presentation"
    ),
    # Archives
    "zip": "application/zip",
    "tar": "application/x-tar",
    "gz": "application/gzip",
    "tgz": "application/gzip",
    "7z": "application/x-7z-compressed",
    "rar": "application/x-rar-compressed",
    # Audio
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
    # Video
    "mp4": "video/mp4",
    "webm": "video/webm",
    "avi": "video/x-msvideo",
    "mov": "video/quicktime",
    # Fonts
    "ttf": "font/ttf",
    "otf": "font/otf",
    "woff": "font/woff",
    "woff2": "font/woff2",
    "wasm": "application/wasm",
}

BINARY_EXTENSIONS: frozenset[str] = frozenset(
    {
        # Images
        "jpg", "jpeg", "png", "gif", "webp", "ico", "bmp", "tiff", "tif",
        # Documents
        "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx",
        # Archives
        "zip", "tar", "gz", "tgz", "7z", "rar", "bz2", "xz",
        # Audio
        "mp3", "wav", "ogg", "flac", "aac", "m4a",
        # Video
        "mp4", "webm", "avi", "mov", "mkv", "flv", "wmv",
        # Fonts
        "ttf", "otf", "woff", "woff2", "eot",
        # Compiled and disk images
        "exe", "dll", "so", "dylib", "bin", "dat", "db", "sqlite", "class",
        "jar", "war", "ear", "pyc", "pyo", "o", "obj", "a", "lib", "out",
        "wasm", "iso", "img", "dmg", "pkg",
    }
)  # fmt: skip

_MAGIC_NUMBERS: tuple[bytes, ...] = (
    b"\x89PNG",
    b"\xff\xd8\xff",
    b"GIF8",
    b"%PDF",
    b"PK\x03\x04",
)
_SNIFF_BYTES = 1000
_BINARY_RATIO = 0.1


def _extension(path: str) -> str:
    return PurePosixPath(path).suffix.lstrip(".").lower()


def get_mime_type(path: str) -> str:
    """Return the MIME type inferred from ``path``'s extension."""
    return MIME_TYPES.get(_extension(path), DEFAULT_MIME_TYPE)


def is_binary_file(path: str) -> bool:
    """Return True when ``path``'s extension denotes a binary format."""
    return _extension(path) in BINARY_EXTENSIONS


def is_binary_content(content: bytes) -> bool:
    """Sniff ``content`` for binary signatures.

    Content is binary when it starts with a PNG, JPEG, GIF, PDF or ZIP
    signature, or when more than 10% of the first 1000 bytes are NUL bytes
    or non-whitespace control characters.
    """
    if content.startswith(_MAGIC_NUMBERS):
        return True
    sample = content[:_SNIFF_BYTES]
    if not sample:
        return False
    nulls = sample.count(0)
    controls = sum(1 for byte in sample if byte < 9 or 13 < byte < 32) - nulls
    threshold = len(sample) * _BINARY_RATIO
    return nulls > threshold or controls > threshold


def git_blob_sha(content: bytes) -> str:
    """Return the git object id of ``content`` as a blob.

    Using git's ``blob <size>\\0`` framing means hashes computed here agree
    with the ``sha`` values the origin reports in tree listings.
    """
    header = f"blob {len(content)}\0".encode()
    return hashlib.sha1(header + content, usedforsecurity=False).hexdigest()


def blob_key(sha: str) -> str:
    """Return the storage key for the blob with hash ``sha``."""
    return f"blobs/{sha[0:2]}/{sha[2:4]}/{sha}"


__all__ = [
    "BINARY_EXTENSIONS",
    "DEFAULT_MIME_TYPE",
    "MIME_TYPES",
    "blob_key",
    "get_mime_type",
    "git_blob_sha",
    "is_binary_content",
    "is_binary_file",
]
