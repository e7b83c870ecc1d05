"""
First pass: stream an mzXML document and renumber its scans 1, 2, 3, ...

The document is parsed with an lxml parser target, so nothing is built in
memory besides the queue of nodes produced by the chunk currently being fed.
The trailing index and checksum are copied unchanged; IndexRebuilder fixes
them in the second pass.
"""

import codecs
import logging
import re
from collections import deque
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Deque, Dict, Iterator, List, Optional, Tuple, Union

from lxml import etree

from .config import RenumberSettings
from .errors import (
    DuplicateScanNumber,
    MalformedScanNumber,
    MzXMLIOError,
    UnsupportedDocumentType,
    XmlParseError,
)
from .nodes import (
    Comment,
    DocumentType,
    ElementEnd,
    ElementStart,
    Node,
    ProcessingInstruction,
    Text,
    Whitespace,
    XmlDeclaration,
    XmlNodeWriter,
)

logger = logging.getLogger(__name__)

SCAN_ELEMENT = "scan"
SCAN_NUMBER_ATTRIBUTE = "num"
PRECURSOR_MZ_ELEMENT = "precursorMz"
PRECURSOR_SCAN_ATTRIBUTE = "precursorScanNum"

XML_NAMESPACE = "http://www.w3.org/XML/1998/namespace"

_XML_DECLARATION = re.compile(rb"^\s*<\?xml\s+([^?]*)\?>")
_PSEUDO_ATTRIBUTE = re.compile(rb"""([A-Za-z_]+)\s*=\s*["']([^"']*)["']""")
_SCAN_NUMBER = re.compile(r"\s*([0-9]+)\s*")

# how far into the file the DOCTYPE declaration is looked for
PROLOG_SCAN_LIMIT = 1024 * 1024


class ScanNumberMap:
    """
    Original scan number -> new scan number.

    New numbers are handed out 1, 2, 3, ... in the order original numbers are
    assigned, which is document order during a rewrite.
    """

    def __init__(self):
        self._numbers: Dict[int, int] = {}

    def assign(self, old_num: int) -> int:
        if old_num in self._numbers:
            raise DuplicateScanNumber(f"Scan number {old_num} is used by more than one scan element")
        new_num = len(self._numbers) + 1
        self._numbers[old_num] = new_num
        return new_num

    def get(self, old_num: int) -> Optional[int]:
        return self._numbers.get(old_num)

    def items(self):
        return self._numbers.items()

    def as_dict(self) -> Dict[int, int]:
        return dict(self._numbers)

    def __contains__(self, old_num: object) -> bool:
        return old_num in self._numbers

    def __len__(self) -> int:
        return len(self._numbers)


@dataclass
class RewriteResult:
    intermediate_path: Path
    scan_map: ScanNumberMap


def parse_scan_number(value: str, element: str, attribute: str) -> int:
    match = _SCAN_NUMBER.fullmatch(value)
    if match is None:
        raise MalformedScanNumber(
            f"The {element} node does not have an integer value for the {attribute} attribute: {value!r}"
        )
    return int(match.group(1))


def sniff_prolog(file_path: Union[str, Path], default_encoding: str = "ISO-8859-1") -> Tuple[XmlDeclaration, str]:
    """
    Reads the XML declaration and the line terminator from the head of a file.

    Returns the declaration to write at the top of the rewritten document
    (encoding falls back to ``default_encoding``) and either ``"\\r\\n"`` or
    ``"\\n"``.
    """
    try:
        with open(file_path, "rb") as f:
            head = f.read(4096)
    except OSError as exc:
        raise MzXMLIOError(f"Unable to read {file_path}: {exc}") from exc

    if head.startswith(codecs.BOM_UTF8):
        head = head[len(codecs.BOM_UTF8):]

    first_newline = head.find(b"\n")
    newline = "\r\n" if first_newline > 0 and head[first_newline - 1:first_newline] == b"\r" else "\n"

    pseudo_attributes: Dict[str, str] = {}
    match = _XML_DECLARATION.match(head)
    if match:
        for name, value in _PSEUDO_ATTRIBUTE.findall(match.group(1)):
            pseudo_attributes[name.decode("ascii")] = value.decode("ascii", errors="replace")

    encoding = pseudo_attributes.get("encoding") or default_encoding
    try:
        codecs.lookup(encoding)
    except LookupError as exc:
        raise XmlParseError(f"{file_path} declares an unsupported encoding: {encoding}") from exc

    declaration = XmlDeclaration(
        version=pseudo_attributes.get("version", "1.0"),
        encoding=encoding,
        standalone=pseudo_attributes.get("standalone"),
    )
    return declaration, newline


def _markup_end(data: bytes, start: int) -> int:
    """Offset just past the ``>`` that closes the DOCTYPE starting at ``start``, or -1."""
    quote = None
    depth = 0
    i = start + len(b"<!DOCTYPE")
    while i < len(data):
        char = data[i:i + 1]
        if quote:
            if char == quote:
                quote = None
        elif data.startswith(b"<!--", i):
            end = data.find(b"-->", i + 4)
            if end < 0:
                return -1
            i = end + 3
            continue
        elif data.startswith(b"<?", i):
            end = data.find(b"?>", i + 2)
            if end < 0:
                return -1
            i = end + 2
            continue
        elif char in (b'"', b"'"):
            quote = char
        elif char == b"[":
            depth += 1
        elif char == b"]":
            depth -= 1
        elif char == b">" and depth == 0:
            return i + 1
        i += 1
    return -1


def sniff_doctype(file_path: Union[str, Path], encoding: str = "ISO-8859-1") -> Optional[str]:
    """
    Returns the DOCTYPE declaration exactly as written in the file, internal
    subset included, or None when the prolog has none.
    """
    try:
        with open(file_path, "rb") as f:
            head = f.read(PROLOG_SCAN_LIMIT)
    except OSError as exc:
        raise MzXMLIOError(f"Unable to read {file_path}: {exc}") from exc

    if head.startswith(codecs.BOM_UTF8):
        head = head[len(codecs.BOM_UTF8):]

    position = 0
    while True:
        start = head.find(b"<", position)
        if start < 0:
            return None
        if head.startswith(b"<!DOCTYPE", start):
            break
        if head.startswith(b"<?", start):
            end, closer = head.find(b"?>", start + 2), b"?>"
        elif head.startswith(b"<!--", start):
            end, closer = head.find(b"-->", start + 4), b"-->"
        else:
            # first element reached
            return None
        if end < 0:
            return None
        position = end + len(closer)

    end = _markup_end(head, start)
    if end < 0:
        raise XmlParseError(
            f"{file_path}: the DOCTYPE declaration is not closed within the first {PROLOG_SCAN_LIMIT} bytes"
        )
    return head[start:end].decode(encoding)


class _NodeCollector:
    """lxml parser target that queues node variants in document order."""

    def __init__(self):
        self.nodes: Deque[Node] = deque()
        self._text: List[str] = []
        self._pending_namespaces: List[Tuple[str, str]] = []
        self._scopes: List[Dict[str, str]] = [{"xml": XML_NAMESPACE}]

    def start_ns(self, prefix, uri):
        self._pending_namespaces.append((prefix or "", uri))

    def start(self, tag, attrib):
        self._flush_text()
        scope = dict(self._scopes[-1])
        scope.update(self._pending_namespaces)
        self._scopes.append(scope)

        attributes = tuple(
            (self._qualify(name, scope, is_attribute=True), value) for name, value in attrib.items()
        )
        self.nodes.append(ElementStart(self._qualify(tag, scope), attributes, tuple(self._pending_namespaces)))
        self._pending_namespaces = []

    def end(self, tag):
        self._flush_text()
        scope = self._scopes.pop()
        self.nodes.append(ElementEnd(self._qualify(tag, scope)))

    def data(self, data):
        self._text.append(data)

    def comment(self, text):
        self._flush_text()
        self.nodes.append(Comment(text or ""))

    def pi(self, target, data=None):
        self._flush_text()
        self.nodes.append(ProcessingInstruction(target, data or ""))

    def doctype(self, name, pubid, system):
        self.nodes.append(DocumentType(name, pubid, system))

    def close(self):
        self._flush_text()

    def _flush_text(self):
        if not self._text:
            return
        value = "".join(self._text)
        self._text = []
        if value.strip():
            self.nodes.append(Text(value))
        else:
            self.nodes.append(Whitespace(value))

    @staticmethod
    def _qualify(name: str, scope: Dict[str, str], is_attribute: bool = False) -> str:
        # lxml reports {uri}local; map it back to the prefix in scope
        if not name.startswith("{"):
            return name
        uri, _, local = name[1:].partition("}")
        prefixes = [prefix for prefix, bound in scope.items() if bound == uri]
        if not is_attribute and "" in prefixes:
            return local
        prefixes = [prefix for prefix in prefixes if prefix]
        if not prefixes:
            return local
        return f"{prefixes[-1]}:{local}"


def iter_nodes(file_path: Union[str, Path], chunk_size: int = 1024 * 1024) -> Iterator[Node]:
    """
    Yields the nodes of an XML file in document order.

    The XML declaration is not part of the stream; see sniff_prolog.
    """
    collector = _NodeCollector()
    parser = etree.XMLParser(target=collector, huge_tree=True, no_network=True)
    try:
        with open(file_path, "rb") as f:
            while True:
                chunk = f.read(chunk_size)
                if not chunk:
                    break
                parser.feed(chunk)
                while collector.nodes:
                    yield collector.nodes.popleft()
        parser.close()
    except etree.XMLSyntaxError as exc:
        raise XmlParseError(f"{file_path} is not well-formed XML: {exc}") from exc
    except OSError as exc:
        raise MzXMLIOError(f"Unable to read {file_path}: {exc}") from exc

    while collector.nodes:
        yield collector.nodes.popleft()


class ScanRenumberer:
    """
    Rewrites an mzXML file with contiguous scan numbers.

    Every scan element, nested or not, gets the next number in document order;
    precursorMz/@precursorScanNum values are remapped to the new numbers. All
    other nodes are written back unchanged.
    """

    def __init__(self, settings: Optional[RenumberSettings] = None):
        self.settings = settings or RenumberSettings()

    def rewrite(self, source_path: Union[str, Path], intermediate_path: Union[str, Path]) -> RewriteResult:
        source_path = Path(source_path)
        intermediate_path = Path(intermediate_path)
        if not source_path.is_file():
            raise MzXMLIOError(f"File not found: {source_path}")

        declaration, newline = sniff_prolog(source_path, self.settings.default_encoding)
        doctype = sniff_doctype(source_path, declaration.encoding)
        if doctype and "<!ENTITY" in doctype:
            raise UnsupportedDocumentType(
                f"{source_path} declares entities in its DOCTYPE; entity expansion is not supported"
            )
        scan_map = ScanNumberMap()

        logger.info(f"Renumbering scans in {source_path}...")
        logger.debug(f"Writing renumbered document to {intermediate_path}")
        try:
            with open(intermediate_path, "wb") as out:
                writer = XmlNodeWriter(out, declaration.encoding, newline)
                writer.write(declaration)
                for node in iter_nodes(source_path, self.settings.read_chunk_size):
                    if isinstance(node, ElementStart):
                        if node.name == SCAN_ELEMENT:
                            node = self._renumber_scan(node, scan_map)
                        elif node.name == PRECURSOR_MZ_ELEMENT:
                            node = self._remap_precursor(node, scan_map)
                    elif isinstance(node, DocumentType) and doctype:
                        node = replace(node, raw=doctype)
                    writer.write(node)
        except OSError as exc:
            raise MzXMLIOError(f"Unable to write {intermediate_path}: {exc}") from exc

        logger.info(f"Renumbered {len(scan_map)} scans.")
        return RewriteResult(intermediate_path, scan_map)

    def _renumber_scan(self, node: ElementStart, scan_map: ScanNumberMap) -> ElementStart:
        if node.get(SCAN_NUMBER_ATTRIBUTE) is None:
            raise MalformedScanNumber(f"The {SCAN_ELEMENT} node does not have a {SCAN_NUMBER_ATTRIBUTE} attribute")

        attributes = []
        for name, value in node.attributes:
            if name == SCAN_NUMBER_ATTRIBUTE:
                old_num = parse_scan_number(value, SCAN_ELEMENT, SCAN_NUMBER_ATTRIBUTE)
                value = str(scan_map.assign(old_num))
            attributes.append((name, value))
        return replace(node, attributes=tuple(attributes))

    def _remap_precursor(self, node: ElementStart, scan_map: ScanNumberMap) -> ElementStart:
        attributes = []
        for name, value in node.attributes:
            if name == PRECURSOR_SCAN_ATTRIBUTE:
                old_num = parse_scan_number(value, PRECURSOR_MZ_ELEMENT, PRECURSOR_SCAN_ATTRIBUTE)
                new_num = scan_map.get(old_num)
                if new_num is not None:
                    value = str(new_num)
                else:
                    policy = self.settings.unmapped_precursor
                    if policy == "fail":
                        raise MalformedScanNumber(
                            f"{PRECURSOR_SCAN_ATTRIBUTE} {old_num} does not refer to an earlier scan"
                        )
                    if policy == "omit":
                        logger.warning(
                            f"{PRECURSOR_SCAN_ATTRIBUTE} {old_num} does not refer to an earlier scan; dropping it"
                        )
                        continue
                    logger.warning(
                        f"{PRECURSOR_SCAN_ATTRIBUTE} {old_num} does not refer to an earlier scan; keeping the old value"
                    )
            attributes.append((name, value))
        return replace(node, attributes=tuple(attributes))
