"""
mzXML random-access reader built on the scan offset index.
"""

import logging
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Tuple, Union
import re

from lxml import etree

from .errors import MzXMLIOError
from .reindex import SCAN_OFFSET_PATTERN, sha1_of_file
from .renumber import sniff_prolog

logger = logging.getLogger(__name__)

INDEX_OFFSET_PATTERN = re.compile(rb"<indexOffset>\s*([0-9]+)\s*</indexOffset>")
OFFSET_ENTRY_PATTERN = re.compile(rb'<offset\s+id="([0-9]+)"\s*>\s*([0-9]+)\s*</offset>')
SHA1_PATTERN = re.compile(rb"<sha1>\s*([0-9A-Fa-f]*)\s*</sha1>")

# indexOffset and sha1 both sit in the last few lines of the file
TRAILER_SIZE = 1024


class LazyMzXmlReader:
    """
    Reads scans from an mzXML file on demand using the byte offsets in its index.
    Does NOT load the entire file into memory.
    """

    def __init__(self, file_path: Union[str, Path], chunk_size: int = 1024 * 1024):
        self.file_path = Path(file_path)
        if not self.file_path.is_file():
            raise MzXMLIOError(f"File not found: {self.file_path}")

        self.chunk_size = chunk_size
        self.encoding = sniff_prolog(self.file_path)[0].encoding
        self.index_offset: Optional[int] = None
        self.scan_index: Dict[int, int] = {}  # scan_nr -> byte_offset
        self._build_index()

    def _build_index(self):
        """
        Builds a map of scan numbers to file offsets.
        Uses the index named by <indexOffset> when the file has one;
        otherwise scans the whole file for <scan tags.
        """
        logger.info(f"Indexing {self.file_path}...")

        _, tail = self._read_tail()
        match = INDEX_OFFSET_PATTERN.search(tail)
        if match:
            self.index_offset = int(match.group(1))
            self.scan_index = self._read_offset_index(self.index_offset)

        if not self.scan_index:
            logger.info(f"No usable scan index in {self.file_path.name}; scanning for <scan tags")
            self.scan_index = self._scan_for_offsets()

        logger.info(f"Indexed {len(self.scan_index)} scans.")

    def _read_tail(self) -> Tuple[int, bytes]:
        with open(self.file_path, "rb") as f:
            f.seek(0, 2)
            start = max(0, f.tell() - TRAILER_SIZE)
            f.seek(start)
            return start, f.read()

    def _read_offset_index(self, index_offset: int) -> Dict[int, int]:
        with open(self.file_path, "rb") as f:
            f.seek(index_offset)
            index_xml = b""
            while True:
                chunk = f.read(self.chunk_size)
                if not chunk:
                    break
                index_xml += chunk
                if b"</index>" in index_xml:
                    index_xml = index_xml[:index_xml.find(b"</index>")]
                    break

        if not index_xml.startswith(b"<index"):
            logger.warning(f"indexOffset {index_offset} in {self.file_path.name} does not point at an <index> element")
            return {}

        return {int(scan_nr): int(offset) for scan_nr, offset in OFFSET_ENTRY_PATTERN.findall(index_xml)}

    def _scan_for_offsets(self) -> Dict[int, int]:
        scan_index: Dict[int, int] = {}
        with open(self.file_path, "rb") as f:
            # Keep a small overlap so tags split across chunks are still found
            overlap = 1024

            offset = 0
            buffer = b""

            while True:
                new_data = f.read(self.chunk_size)
                if not new_data:
                    break

                data_to_search = buffer + new_data
                for match in SCAN_OFFSET_PATTERN.finditer(data_to_search):
                    abs_pos = offset - len(buffer) + match.start()
                    scan_index.setdefault(int(match.group(1)), abs_pos)

                offset += len(new_data)
                buffer = new_data[-overlap:]

        return scan_index

    def get_scan(self, scan_nr: int) -> Optional[Dict[str, str]]:
        """
        Returns the attributes of a scan's start tag, or None if the scan is
        not indexed or its offset does not point at a <scan tag.
        """
        if scan_nr not in self.scan_index:
            return None

        with open(self.file_path, "rb") as f:
            return self._scan_attributes_at(f, self.scan_index[scan_nr])

    def verify_index(self) -> List[int]:
        """
        Returns the scan numbers whose offsets do not land on <scan num="N">.
        """
        mismatched = []
        with open(self.file_path, "rb") as f:
            for scan_nr, offset in sorted(self.scan_index.items()):
                attributes = self._scan_attributes_at(f, offset)
                if attributes is None or attributes.get("num") != str(scan_nr):
                    mismatched.append(scan_nr)
        return mismatched

    def stored_checksum(self) -> Optional[str]:
        _, tail = self._read_tail()
        match = SHA1_PATTERN.search(tail)
        if match is None:
            return None
        return match.group(1).decode("ascii").lower()

    def compute_checksum(self) -> Optional[str]:
        """sha1 of the file from its start through the <sha1> opening tag."""
        start, tail = self._read_tail()
        position = tail.rfind(b"<sha1>")
        if position < 0:
            return None
        return sha1_of_file(self.file_path, end=start + position + len(b"<sha1>"), chunk_size=self.chunk_size)

    def verify_checksum(self) -> bool:
        stored = self.stored_checksum()
        return bool(stored) and stored == self.compute_checksum()

    def _scan_attributes_at(self, f: BinaryIO, offset: int) -> Optional[Dict[str, str]]:
        f.seek(offset)
        start_tag = b""
        while b">" not in start_tag:
            chunk = f.read(4096)
            if not chunk:
                return None
            start_tag += chunk
        start_tag = start_tag[:start_tag.find(b">") + 1]

        if not SCAN_OFFSET_PATTERN.match(start_tag):
            return None
        return self._parse_scan_tag(start_tag)

    def _parse_scan_tag(self, xml_bytes: bytes) -> Optional[Dict[str, str]]:
        """
        Parses a lone <scan ...> start tag.
        """
        if not xml_bytes.endswith(b"/>"):
            xml_bytes = xml_bytes[:-1] + b"/>"

        parser = etree.XMLParser(recover=True, encoding=self.encoding)
        root = etree.fromstring(xml_bytes, parser)
        if root is None:
            return None

        return {etree.QName(name).localname: value for name, value in root.attrib.items()}
