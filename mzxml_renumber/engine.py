"""
Renumber the scans of an mzXML file in place.

    result = renumber_mzxml("Dataset.mzXML")

Pass 1 writes Dataset.mzXML.renumbered with scans numbered 1..N, pass 2
writes Dataset.mzXML.indexed with a rebuilt index and sha1, and finally
Dataset.mzXML becomes Dataset_original.mzXML and the indexed file takes its
place. Callers decide whether a file needs renumbering; this module doesn't
look at scan gaps.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .config import RenumberSettings
from .errors import FinalizeError, MzXMLIOError, RenumberError, VerificationError
from .mzxml import LazyMzXmlReader
from .reindex import IndexRebuilder, ScanOffsetMap, finalize, original_sibling_path
from .renumber import ScanNumberMap, ScanRenumberer

logger = logging.getLogger(__name__)


@dataclass
class RenumberResult:
    path: Path
    original_path: Path
    scan_map: ScanNumberMap
    scan_offsets: ScanOffsetMap

    @property
    def scan_count(self) -> int:
        return len(self.scan_map)


def renumber_mzxml(mzxml_path: Union[str, Path], settings: Optional[RenumberSettings] = None) -> RenumberResult:
    settings = settings or RenumberSettings()
    target_path = Path(mzxml_path)
    if not target_path.is_file():
        raise MzXMLIOError(f"mzXML file not found: {target_path}")

    original_path = original_sibling_path(target_path, settings.original_suffix)
    if original_path.exists() and not settings.overwrite_original:
        raise FinalizeError(f"Cannot preserve {target_path}: {original_path} already exists")

    intermediate_path = target_path.with_name(target_path.name + settings.intermediate_suffix)
    final_path = target_path.with_name(target_path.name + settings.indexed_suffix)

    try:
        rewrite = ScanRenumberer(settings).rewrite(target_path, intermediate_path)
        scan_offsets = IndexRebuilder(settings.read_chunk_size).reindex(intermediate_path, final_path)
        if settings.verify_output:
            verify_rebuilt_file(final_path, len(rewrite.scan_map), settings.read_chunk_size)
    except RenumberError:
        if not settings.keep_intermediate:
            _remove_files(intermediate_path, final_path)
        raise

    original_path = finalize(target_path, final_path, settings.original_suffix, settings.overwrite_original)
    if not settings.keep_intermediate:
        _remove_files(intermediate_path)

    return RenumberResult(target_path, original_path, rewrite.scan_map, scan_offsets)


def verify_rebuilt_file(file_path: Union[str, Path], scan_count: int, chunk_size: int = 1024 * 1024) -> None:
    """
    Checks that a rebuilt file holds scans 1..scan_count at the indexed offsets
    and that its sha1 matches its content.
    """
    reader = LazyMzXmlReader(file_path, chunk_size)

    if not reader.verify_checksum():
        raise VerificationError(f"sha1 stored in {file_path} does not match its content")

    expected = list(range(1, scan_count + 1))
    if sorted(reader.scan_index) != expected:
        raise VerificationError(
            f"Index in {file_path} holds {len(reader.scan_index)} scans; expected scans 1 to {scan_count}"
        )

    mismatched = reader.verify_index()
    if mismatched:
        raise VerificationError(f"Index offsets in {file_path} are wrong for scans {mismatched[:10]}")


def _remove_files(*paths: Path) -> None:
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning(f"Unable to delete {path}: {exc}")
