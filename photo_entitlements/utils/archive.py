"""Store-only zip bundles of repeated copies of one asset.

Bundles are produced on the fly: each copy is read from disk in chunks and
written through zipfile into a sink that is drained after every write, so
peak memory is one chunk regardless of the number of copies.

Because entries are stored (no compression) and written to a non-seekable
sink, the archive layout is fully determined by the file size and the entry
names, which lets the exact Content-Length be computed before streaming:

    per entry:  local header (30 + name) + data + data descriptor (16)
                central directory record (46 + name)
    once:       end of central directory record (22)

ZIP64 is disabled; bundles must stay below ZIP64_LIMIT.
"""

import io
import zipfile
from pathlib import Path
from typing import Iterator

LOCAL_HEADER_SIZE = 30
DATA_DESCRIPTOR_SIZE = 16
CENTRAL_DIRECTORY_HEADER_SIZE = 46
END_OF_CENTRAL_DIRECTORY_SIZE = 22


class ArchiveTooLargeError(ValueError):
    """Raised when a bundle would need ZIP64 extensions."""

    pass


def stored_archive_size(file_size: int, entry_names: list[str]) -> int:
    """Exact byte size of a store-only bundle streamed by StoredCopiesArchive.

    Args:
        file_size: Size of the source asset in bytes
        entry_names: Names of the entries (one per copy)

    Returns:
        Total archive size in bytes
    """
    total = END_OF_CENTRAL_DIRECTORY_SIZE
    for name in entry_names:
        name_length = len(name.encode("utf-8"))
        total += LOCAL_HEADER_SIZE + name_length + file_size + DATA_DESCRIPTOR_SIZE
        total += CENTRAL_DIRECTORY_HEADER_SIZE + name_length
    return total


class _ChunkSink(io.RawIOBase):
    """Write-only, non-seekable buffer drained by the streaming generator."""

    def __init__(self):
        super().__init__()
        self._chunks: list[bytes] = []

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        if data:
            self._chunks.append(bytes(data))
        return len(data)

    def drain(self) -> list[bytes]:
        chunks, self._chunks = self._chunks, []
        return chunks


class StoredCopiesArchive:
    """A zip archive holding several identical copies of one file.

    Iterating yields the archive bytes in order. The object can be iterated
    once per download; each iteration re-reads the source file.
    """

    def __init__(self, source: Path, entry_names: list[str], chunk_size: int = 64 * 1024):
        """Prepare a bundle.

        Args:
            source: Asset file to copy into the bundle
            entry_names: Names of the copies inside the archive
            chunk_size: Read size in bytes

        Raises:
            OSError: If the source cannot be stat'ed
            ArchiveTooLargeError: If the bundle would exceed ZIP64_LIMIT
        """
        self.source = source
        self.entry_names = list(entry_names)
        self._chunk_size = chunk_size
        self.file_size = source.stat().st_size
        self.content_length = stored_archive_size(self.file_size, self.entry_names)
        if len(self.entry_names) > zipfile.ZIP_FILECOUNT_LIMIT:
            raise ArchiveTooLargeError(
                f"Bundle of {len(self.entry_names)} copies exceeds the zip entry limit"
            )
        if self.content_length > zipfile.ZIP64_LIMIT:
            raise ArchiveTooLargeError(
                f"Bundle of {len(self.entry_names)} copies of {source.name} "
                f"({self.content_length} bytes) exceeds the zip size limit"
            )

    def __iter__(self) -> Iterator[bytes]:
        sink = _ChunkSink()
        with zipfile.ZipFile(sink, mode="w", compression=zipfile.ZIP_STORED, allowZip64=False) as bundle:
            for name in self.entry_names:
                zinfo = zipfile.ZipInfo.from_file(self.source, name, strict_timestamps=False)
                zinfo.compress_type = zipfile.ZIP_STORED
                with open(self.source, "rb") as src, bundle.open(zinfo, mode="w") as dest:
                    while True:
                        chunk = src.read(self._chunk_size)
                        if not chunk:
                            break
                        dest.write(chunk)
                        yield from sink.drain()
                yield from sink.drain()
        yield from sink.drain()

    def __repr__(self) -> str:
        return (
            f"StoredCopiesArchive(source={self.source.name}, copies={len(self.entry_names)}, "
            f"bytes={self.content_length})"
        )
