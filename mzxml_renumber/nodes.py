"""
XML node kinds used when streaming a document through the renumberer.

Each node carries only what is needed to write it back out; XmlNodeWriter
turns a sequence of them into bytes.
"""

from dataclasses import dataclass
from typing import BinaryIO, Optional, Tuple, Union


@dataclass(frozen=True)
class XmlDeclaration:
    version: str = "1.0"
    encoding: Optional[str] = None
    standalone: Optional[str] = None


@dataclass(frozen=True)
class DocumentType:
    name: str
    public_id: Optional[str] = None
    system_id: Optional[str] = None
    # the declaration as it appeared in the source, internal subset included
    raw: Optional[str] = None


@dataclass(frozen=True)
class ElementStart:
    name: str
    attributes: Tuple[Tuple[str, str], ...] = ()
    # (prefix, uri) pairs declared on this element; prefix "" is the default namespace
    namespaces: Tuple[Tuple[str, str], ...] = ()

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        for attr_name, value in self.attributes:
            if attr_name == name:
                return value
        return default


@dataclass(frozen=True)
class ElementEnd:
    name: str


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class Whitespace:
    value: str


@dataclass(frozen=True)
class Comment:
    value: str


@dataclass(frozen=True)
class ProcessingInstruction:
    target: str
    data: str = ""


@dataclass(frozen=True)
class EntityReference:
    name: str


Node = Union[
    XmlDeclaration,
    DocumentType,
    ElementStart,
    ElementEnd,
    Text,
    Whitespace,
    Comment,
    ProcessingInstruction,
    EntityReference,
]


def escape_text(value: str) -> str:
    return (
        value.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace("\r", "&#13;")
    )


def escape_attribute(value: str) -> str:
    return (
        escape_text(value)
        .replace('"', "&quot;")
        .replace("\n", "&#10;")
        .replace("\t", "&#9;")
    )


class XmlNodeWriter:
    """
    Serializes nodes to a binary stream.

    A start tag is left open until the next node arrives so that an element
    with no content is written as ``<name .../>``. Every attribute of a start
    tag goes on the same line as the tag name. Newlines inside character data,
    comments and processing instructions are written with ``newline``, and each
    top-level node is followed by it.
    """

    def __init__(self, stream: BinaryIO, encoding: str = "ISO-8859-1", newline: str = "\n"):
        self._stream = stream
        self.encoding = encoding
        self.newline = newline
        self._depth = 0
        self._tag_open = False

    def write(self, node: Node) -> None:
        if self._tag_open:
            self._tag_open = False
            if isinstance(node, ElementEnd):
                self._depth -= 1
                self._emit("/>")
                self._end_top_level()
                return
            self._emit(">")

        if isinstance(node, ElementStart):
            parts = [f"<{node.name}"]
            for prefix, uri in node.namespaces:
                name = f"xmlns:{prefix}" if prefix else "xmlns"
                parts.append(f' {name}="{escape_attribute(uri)}"')
            for name, value in node.attributes:
                parts.append(f' {name}="{escape_attribute(value)}"')
            self._emit("".join(parts))
            self._depth += 1
            self._tag_open = True
        elif isinstance(node, ElementEnd):
            self._depth -= 1
            self._emit(f"</{node.name}>")
            self._end_top_level()
        elif isinstance(node, Text):
            self._emit(self._newlines(escape_text(node.value)))
        elif isinstance(node, Whitespace):
            self._emit(self._newlines(node.value))
        elif isinstance(node, Comment):
            self._emit(f"<!--{self._newlines(node.value)}-->")
            self._end_top_level()
        elif isinstance(node, ProcessingInstruction):
            if node.data:
                self._emit(f"<?{node.target} {self._newlines(node.data)}?>")
            else:
                self._emit(f"<?{node.target}?>")
            self._end_top_level()
        elif isinstance(node, EntityReference):
            self._emit(f"&{node.name};")
        elif isinstance(node, XmlDeclaration):
            declaration = f'<?xml version="{node.version}"'
            if node.encoding:
                declaration += f' encoding="{node.encoding}"'
            if node.standalone:
                declaration += f' standalone="{node.standalone}"'
            self._emit(declaration + "?>")
            self._end_top_level()
        elif isinstance(node, DocumentType):
            if node.raw:
                doctype = node.raw
            elif node.public_id:
                doctype = f'<!DOCTYPE {node.name} PUBLIC "{node.public_id}" "{node.system_id or ""}">'
            elif node.system_id:
                doctype = f'<!DOCTYPE {node.name} SYSTEM "{node.system_id}">'
            else:
                doctype = f"<!DOCTYPE {node.name}>"
            self._emit(doctype)
            self._end_top_level()
        else:
            raise TypeError(f"Unsupported node type: {type(node).__name__}")

    def _newlines(self, value: str) -> str:
        if self.newline == "\n":
            return value
        return value.replace("\n", self.newline)

    def _end_top_level(self) -> None:
        if self._depth == 0:
            self._emit(self.newline)

    def _emit(self, value: str) -> None:
        self._stream.write(value.encode(self.encoding, errors="xmlcharrefreplace"))
