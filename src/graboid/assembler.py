"""
Deterministic image archive assembly.

Packages a verified config blob and verified layer blobs into a tarball that
`docker load` understands. Identical inputs produce byte-identical archives:
entries are written in a fixed order (config, layers in manifest order,
manifest.json) with canonical USTAR headers and fixed compression settings.
"""
from __future__ import annotations

import gzip
import io
import json
import logging
import os
import tarfile
import tempfile
from pathlib import Path
from typing import IO, List, Sequence, Tuple, Union

import zstandard as zstd

from .digest import DigestVerifier
from .errors import ImageIOError
from .models import ArchiveIndexEntry, VerifiedBlob

__all__ = ["assemble", "archive_suffix", "build_index", "COMPRESSIONS"]

logger = logging.getLogger(__name__)

# compression name -> archive suffix
COMPRESSIONS = {
    "gzip": ".tar.gz",
    "zstd": ".tar.zst",
    "none": ".tar",
}

INDEX_NAME = "manifest.json"

# (archive name, source) where source is a blob on disk, in-memory bytes, or None for a directory
_Entry = Tuple[str, Union[VerifiedBlob, bytes, None]]


def archive_suffix(compression: str) -> str:
    """File suffix for a compression format."""
    try:
        return COMPRESSIONS[compression]
    except KeyError:
        raise ValueError(
            f"Invalid compression '{compression}'. Use one of: {', '.join(COMPRESSIONS)}"
        ) from None


def _config_name(config: VerifiedBlob) -> str:
    return f"{config.descriptor.hex}.json"


def _layer_name(layer: VerifiedBlob) -> str:
    return f"{layer.descriptor.hex}/layer.tar"


def build_index(config: VerifiedBlob, layers: Sequence[VerifiedBlob], repo_tag: str) -> bytes:
    """
    Serialize the manifest.json index read by `docker load`.

    Layers are listed in manifest order, repeats included.
    """
    entry = ArchiveIndexEntry(
        config=_config_name(config),
        repo_tags=[repo_tag],
        layers=[_layer_name(layer) for layer in layers],
    )
    return json.dumps([entry.model_dump(by_alias=True)], separators=(",", ":")).encode()


def _check_inputs(config: VerifiedBlob, layers: Sequence[VerifiedBlob]) -> None:
    """
    Reject anything that did not come out of the blob fetcher intact.

    Content is re-checked against each digest while the archive is written.

    Raises:
        ValueError: On a non-verified input, missing file or size mismatch
    """
    for blob in [config, *layers]:
        if not isinstance(blob, VerifiedBlob):
            raise ValueError(f"Refusing to assemble unverified input: {blob!r}")
        path = blob.path
        if not path.is_file():
            raise ValueError(f"Verified blob file is missing: {path}")
        size = path.stat().st_size
        if size != blob.descriptor.size:
            raise ValueError(
                f"Blob {blob.descriptor.digest} changed on disk: "
                f"expected {blob.descriptor.size} bytes, found {size}"
            )


def _plan_entries(config: VerifiedBlob, layers: Sequence[VerifiedBlob], index: bytes) -> List[_Entry]:
    entries: List[_Entry] = [(_config_name(config), config)]
    seen = set()
    for layer in layers:
        if layer.descriptor.digest in seen:
            continue
        seen.add(layer.descriptor.digest)
        entries.append((f"{layer.descriptor.hex}/", None))
        entries.append((_layer_name(layer), layer))
    entries.append((INDEX_NAME, index))
    return entries


def assemble(config: VerifiedBlob, layers: Sequence[VerifiedBlob], repo_tag: str,
             out_path: Union[str, Path], *, compression: str = "gzip",
             zstd_level: int = 19) -> Path:
    """
    Write an image archive from verified blobs.

    The archive is written to a temp file next to out_path and renamed into
    place, so out_path never holds a partial archive.

    Args:
        config: Verified config blob
        layers: Verified layer blobs in manifest order
        repo_tag: "repository:tag" label recorded in manifest.json
        out_path: Final archive path
        compression: "gzip", "zstd" or "none"
        zstd_level: Zstandard level when compression="zstd"

    Returns:
        Path of the written archive

    Raises:
        ValueError: Invalid compression or unverified/missing inputs
        IntegrityError: A blob file no longer matches its digest
        ImageIOError: Writing the archive failed
    """
    archive_suffix(compression)
    _check_inputs(config, layers)

    out_path = Path(out_path).resolve()
    index = build_index(config, layers, repo_tag)
    entries = _plan_entries(config, layers, index)

    temp_path = None
    try:
        out_path.parent.mkdir(parents=True, exist_ok=True)
        temp_fd, temp_name = tempfile.mkstemp(
            suffix='.tmp',
            dir=out_path.parent,
            prefix=out_path.name + '.'
        )
        temp_path = Path(temp_name)

        with os.fdopen(temp_fd, 'wb') as f:
            if compression == "gzip":
                _write_gzip_archive(f, entries)
            elif compression == "zstd":
                _write_zst_archive(f, entries, zstd_level)
            else:
                _write_tar(f, entries)

        # Atomic rename to final path
        os.replace(temp_path, out_path)
        temp_path = None
    except OSError as e:
        raise ImageIOError(f"Failed to write archive {out_path}: {e}", str(out_path)) from e
    finally:
        if temp_path is not None:
            try:
                temp_path.unlink()
            except FileNotFoundError:
                pass

    logger.info(f"Wrote {out_path} ({len(entries)} entries)")
    return out_path


def _write_tar(f: IO[bytes], entries: List[_Entry]) -> None:
    with tarfile.open(fileobj=f, mode='w', format=tarfile.USTAR_FORMAT) as tar:
        for arcname, source in entries:
            _add_entry(tar, arcname, source)


def _write_gzip_archive(f: IO[bytes], entries: List[_Entry]) -> None:
    """gzip with fixed header fields (no name, mtime 0)."""
    with gzip.GzipFile(filename="", mode='wb', fileobj=f, mtime=0) as gz:
        _write_tar(gz, entries)


def _write_zst_archive(f: IO[bytes], entries: List[_Entry], zstd_level: int) -> None:
    compressor = zstd.ZstdCompressor(
        level=zstd_level,
        write_content_size=True,
        write_checksum=True
    )
    with compressor.stream_writer(f, closefd=False) as zstd_writer:
        _write_tar(zstd_writer, entries)


class _VerifyingReader:
    """File wrapper that hashes everything tarfile reads through it."""

    def __init__(self, f: IO[bytes], verifier: DigestVerifier):
        self._f = f
        self._verifier = verifier

    def read(self, size: int = -1) -> bytes:
        chunk = self._f.read(size)
        self._verifier.update(chunk)
        return chunk


def _add_entry(tar: tarfile.TarFile, arcname: str, source: Union[VerifiedBlob, bytes, None]) -> None:
    tarinfo = tarfile.TarInfo(arcname)
    if source is None:
        tarinfo.type = tarfile.DIRTYPE
        _apply_canonical_headers(tarinfo)
        tar.addfile(tarinfo)
    elif isinstance(source, bytes):
        tarinfo.size = len(source)
        _apply_canonical_headers(tarinfo)
        tar.addfile(tarinfo, io.BytesIO(source))
    else:
        # Content is re-hashed as it is copied
        tarinfo.size = source.descriptor.size
        _apply_canonical_headers(tarinfo)
        verifier = DigestVerifier(source.descriptor.digest, source.descriptor.size)
        with open(source.path, 'rb') as entry_file:
            tar.addfile(tarinfo, _VerifyingReader(entry_file, verifier))
        verifier.verify()


def _apply_canonical_headers(tarinfo: tarfile.TarInfo) -> None:
    """
    Apply canonical tar headers for deterministic output.

    Args:
        tarinfo: Tar info object to canonicalize
    """
    tarinfo.uid = 0
    tarinfo.gid = 0
    tarinfo.uname = ""
    tarinfo.gname = ""
    tarinfo.mtime = 0
    tarinfo.mode = 0o755 if tarinfo.isdir() else 0o644
