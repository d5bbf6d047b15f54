"""Digest and layer archive helpers."""

from __future__ import annotations

import gzip
import hashlib
import os
import tarfile
import zlib
from pathlib import Path
from typing import BinaryIO

import structlog

from .errors import CorruptArchiveError

__all__ = [
    "digest_of_bytes",
    "digest_of_decompressed_tar",
    "digest_of_file",
    "digest_of_stream",
    "pack_directory_as_layer",
]

logger = structlog.get_logger(__name__)

_CHUNK_SIZE = 65536


def digest_of_bytes(data: bytes) -> str:
    """Return 'sha256:<hex>' digest for *data*."""
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def digest_of_stream(stream: BinaryIO) -> str:
    """Return 'sha256:<hex>' digest of everything readable from *stream*."""
    h = hashlib.sha256()
    for chunk in iter(lambda: stream.read(_CHUNK_SIZE), b""):
        h.update(chunk)
    return f"sha256:{h.hexdigest()}"


def digest_of_file(path: str | Path) -> str:
    """Return 'sha256:<hex>' digest for the file at *path*."""
    with open(path, "rb") as fh:
        return digest_of_stream(fh)


def digest_of_decompressed_tar(source: str | Path | BinaryIO) -> str:
    """
    Return the digest of the decompressed content of a gzip file or stream.

    *source* is a path or an open binary reader; a reader is left open. This
    is the layer's diff-id. Raises ``CorruptArchiveError`` when the content
    is not a valid gzip stream.
    """
    if isinstance(source, (str, Path)):
        name = str(source)
    else:
        name = str(getattr(source, "name", "<stream>"))
    try:
        if isinstance(source, (str, Path)):
            with gzip.open(source, "rb") as fh:
                return digest_of_stream(fh)
        with gzip.GzipFile(fileobj=source, mode="rb") as fh:
            return digest_of_stream(fh)
    except (OSError, EOFError, zlib.error) as exc:
        raise CorruptArchiveError(name, str(exc)) from exc


def pack_directory_as_layer(
    source_dir: str | Path, entry_name: str, destination_dir: str | Path
) -> Path:
    """
    Pack ``source_dir/entry_name`` into ``destination_dir/<entry_name>-layer.tar.gz``.

    Archive member names are relative to *source_dir* (the layer root), so
    ``layer/app/opt/x`` is stored as ``app/opt/x``. Symlinks are stored as
    links; absolute targets pointing inside *source_dir* are rebased onto the
    image root. The walk is lexically sorted and header timestamps/ownership
    are normalised so identical trees give byte-identical blobs.
    """
    source = Path(source_dir)
    root = source / entry_name
    if not root.is_dir():
        raise NotADirectoryError(f"{str(root)!r} is not a directory.")

    blob_path = Path(destination_dir) / f"{entry_name}-layer.tar.gz"
    with open(blob_path, "wb") as raw:
        # mtime=0 and no filename keep the gzip header stable
        with gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0) as gz:
            with tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
                for path in _walk_sorted(root):
                    _add_member(tar, path, source)

    logger.debug("layer_packed", layer=entry_name, path=str(blob_path))
    return blob_path


def _walk_sorted(root: Path) -> list[Path]:
    """Depth-first, lexically ordered; symlinked directories are not followed."""
    paths = [root]
    if root.is_dir() and not root.is_symlink():
        for child in sorted(root.iterdir(), key=lambda p: p.name):
            paths.extend(_walk_sorted(child))
    return paths


def _add_member(tar: tarfile.TarFile, path: Path, source: Path) -> None:
    arcname = path.relative_to(source).as_posix()
    info = tar.gettarinfo(str(path), arcname=arcname)
    if info is None:
        # sockets and other special files have no tar representation
        logger.warning("layer_entry_skipped", path=str(path))
        return
    info.mtime = 0
    info.uid = info.gid = 0
    info.uname = info.gname = ""

    if info.issym():
        info.linkname = _rebase_link(path, source)
        tar.addfile(info)
    elif info.isfile():
        with open(path, "rb") as fh:
            tar.addfile(info, fh)
    else:
        tar.addfile(info)


def _rebase_link(path: Path, source: Path) -> str:
    """Keep relative link targets; map absolute targets inside *source* onto ``/``."""
    target = os.readlink(path)
    if not os.path.isabs(target):
        return target
    try:
        inside = Path(target).relative_to(source.resolve())
    except ValueError:
        try:
            inside = Path(target).relative_to(source)
        except ValueError:
            return target
    return "/" + inside.as_posix()
