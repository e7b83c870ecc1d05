"""
Second pass: rebuild the scan offset index and the sha1 checksum of an mzXML
file, then install the result over the original file.
"""

import hashlib
import logging
import os
import re
import shutil
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

from .errors import DuplicateScanNumber, FinalizeError, MissingIndexMarker, MzXMLIOError
from .line_reader import BinaryTextReader

logger = logging.getLogger(__name__)

# <scan num="1234" ...> or <scan msLevel="2" num="1234" .../>
SCAN_OFFSET_PATTERN = re.compile(rb'<scan\s(?:[^>]*?\s)?num="([0-9]+)"')

INDEX_MARKER = b'<index name="scan">'
INDEX_INDENT = b"  "

HASH_CHUNK_SIZE = 1024 * 1024

# (opener, closer) of markup whose content is never indexed
SKIPPED_MARKUP = ((b"<!--", b"-->"), (b"<?", b"?>"), (b"<![CDATA[", b"]]>"))

Span = Tuple[int, int]


def skipped_spans(text: bytes, closer: Optional[bytes] = None) -> Tuple[List[Span], Optional[bytes]]:
    """
    Finds the parts of a line that lie inside comments, processing
    instructions and CDATA sections.

    ``closer`` is the terminator still awaited from markup opened on an earlier
    line. Returns the (start, end) spans and the terminator still awaited at
    the end of this line, or None.
    """
    spans: List[Span] = []
    position = 0
    while True:
        if closer is None:
            start = -1
            for opener, candidate in SKIPPED_MARKUP:
                found = text.find(opener, position)
                if found >= 0 and (start < 0 or found < start):
                    start, closer, search_from = found, candidate, found + len(opener)
            if start < 0:
                return spans, None
        else:
            start = search_from = position

        end = text.find(closer, search_from)
        if end < 0:
            spans.append((start, len(text)))
            return spans, closer
        spans.append((start, end + len(closer)))
        position = end + len(closer)
        closer = None


def _in_spans(offset: int, spans: List[Span]) -> bool:
    return any(start <= offset < end for start, end in spans)


class ScanOffsetMap:
    """New scan number -> byte offset of its <scan tag."""

    def __init__(self):
        self._offsets: Dict[int, int] = {}

    def add(self, scan_nr: int, offset: int) -> None:
        if scan_nr in self._offsets:
            raise DuplicateScanNumber(f"Scan number {scan_nr} appears more than once")
        self._offsets[scan_nr] = offset

    def get(self, scan_nr: int) -> Optional[int]:
        return self._offsets.get(scan_nr)

    def items(self) -> Iterator[Tuple[int, int]]:
        return iter(sorted(self._offsets.items()))

    def as_dict(self) -> Dict[int, int]:
        return dict(self.items())

    def __contains__(self, scan_nr: object) -> bool:
        return scan_nr in self._offsets

    def __len__(self) -> int:
        return len(self._offsets)


def sha1_of_file(file_path: Union[str, Path], end: Optional[int] = None, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """
    Lowercase hex sha1 of the first ``end`` bytes of a file (the whole file if None).
    """
    sha1 = hashlib.sha1()
    remaining = end
    try:
        with open(file_path, "rb") as f:
            while remaining is None or remaining > 0:
                size = chunk_size if remaining is None else min(chunk_size, remaining)
                chunk = f.read(size)
                if not chunk:
                    break
                sha1.update(chunk)
                if remaining is not None:
                    remaining -= len(chunk)
    except OSError as exc:
        raise MzXMLIOError(f"Unable to read {file_path}: {exc}") from exc
    return sha1.hexdigest()


class IndexRebuilder:
    """
    Copies an mzXML file up to its scan index, then writes a fresh index,
    indexOffset and sha1 in place of the old trailer.
    """

    def __init__(self, chunk_size: int = HASH_CHUNK_SIZE):
        self.chunk_size = chunk_size

    def reindex(self, intermediate_path: Union[str, Path], final_path: Union[str, Path]) -> ScanOffsetMap:
        intermediate_path = Path(intermediate_path)
        final_path = Path(final_path)
        offsets = ScanOffsetMap()
        terminator = b"\n"
        index_offset = None
        open_markup = None

        logger.info(f"Indexing {intermediate_path}...")
        try:
            with BinaryTextReader(intermediate_path) as reader, open(final_path, "wb") as out:
                for line in reader:
                    spans, open_markup = skipped_spans(line.text, open_markup)
                    for match in SCAN_OFFSET_PATTERN.finditer(line.text):
                        if _in_spans(match.start(), spans):
                            continue
                        offsets.add(int(match.group(1)), line.offset + match.start())

                    stripped = line.text.lstrip()
                    marker_at = len(line.text) - len(stripped)
                    if stripped.startswith(INDEX_MARKER) and not _in_spans(marker_at, spans):
                        terminator = line.terminator or terminator
                        # The new block starts at the same line, indented by INDEX_INDENT
                        index_offset = line.offset + len(INDEX_INDENT)
                        out.write(self._index_block(offsets, index_offset, terminator))
                        break

                    out.write(line.text + line.terminator)
        except OSError as exc:
            raise MzXMLIOError(f"Unable to write {final_path}: {exc}") from exc

        if index_offset is None:
            raise MissingIndexMarker(
                f"{intermediate_path} has no {INDEX_MARKER.decode('ascii')} line; it cannot be reindexed"
            )

        # Everything written so far, up to and including "<sha1>", is covered by the checksum
        digest = sha1_of_file(final_path, chunk_size=self.chunk_size)
        try:
            with open(final_path, "ab") as out:
                out.write(digest.encode("ascii") + b"</sha1>" + terminator)
                out.write(b"</mzXML>" + terminator)
        except OSError as exc:
            raise MzXMLIOError(f"Unable to append the checksum to {final_path}: {exc}") from exc

        logger.info(f"Indexed {len(offsets)} scans; index at byte {index_offset}, sha1 {digest}")
        return offsets

    @staticmethod
    def _index_block(offsets: ScanOffsetMap, index_offset: int, terminator: bytes) -> bytes:
        parts = [INDEX_INDENT + INDEX_MARKER + terminator]
        for scan_nr, offset in offsets.items():
            parts.append(f'    <offset id="{scan_nr}">{offset}</offset>'.encode("ascii") + terminator)
        parts.append(INDEX_INDENT + b"</index>" + terminator)
        parts.append(INDEX_INDENT + f"<indexOffset>{index_offset}</indexOffset>".encode("ascii") + terminator)
        parts.append(INDEX_INDENT + b"<sha1>")
        return b"".join(parts)


def original_sibling_path(file_path: Union[str, Path], suffix: str = "_original") -> Path:
    """dir/Dataset.mzXML -> dir/Dataset_original.mzXML"""
    file_path = Path(file_path)
    return file_path.with_name(f"{file_path.stem}{suffix}{file_path.suffix}")


def finalize(
    target_path: Union[str, Path],
    final_path: Union[str, Path],
    original_suffix: str = "_original",
    overwrite: bool = False,
) -> Path:
    """
    Renames target_path to its _original sibling, then moves final_path to target_path.

    The two steps are not one atomic operation. If the second fails the error
    says so; neither file is removed. Returns the path of the preserved original.
    """
    target_path = Path(target_path)
    final_path = Path(final_path)
    original_path = original_sibling_path(target_path, original_suffix)

    if original_path.exists() and not overwrite:
        raise FinalizeError(f"Cannot preserve {target_path}: {original_path} already exists")

    try:
        os.replace(target_path, original_path)
    except OSError as exc:
        logger.error(f"Unable to rename {target_path} to {original_path}; {target_path} is unchanged")
        raise FinalizeError(f"Error renaming {target_path} to {original_path}: {exc}") from exc

    try:
        shutil.move(str(final_path), str(target_path))
    except OSError as exc:
        logger.error(
            f"Renamed {target_path} to {original_path} but could not move {final_path} into its place; "
            f"move it manually to finish"
        )
        raise FinalizeError(f"Error replacing {target_path} with the indexed version: {exc}") from exc

    logger.info(f"Replaced {target_path}; original kept as {original_path.name}")
    return original_path
