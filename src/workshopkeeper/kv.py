from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Mapping, Sequence

from .errors import ManifestIOError, ParseError

_ESCAPES = {"\\": "\\", '"': '"', "n": "\n", "t": "\t"}
_UNESCAPES = {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\t": "\\t"}
_BARE_STOP = set('{}"')


class KVDocument:
    """
    A node of a Valve KeyValues document (the format of Steam's .acf/.vdf files).

    A node is either a scalar string or an ordered mapping of keys to child nodes,
    never both. Key order is insertion order and survives parse -> mutate -> serialize.
    Keys are compared case-sensitively.
    """

    __slots__ = ("_scalar", "_children")

    def __init__(self, value: str | Mapping[str, "KVDocument"] | None = None) -> None:
        if isinstance(value, str):
            self._scalar: str | None = value
            self._children: dict[str, KVDocument] | None = None
            return
        children: dict[str, KVDocument] = {}
        for key, child in (value or {}).items():
            if not isinstance(key, str) or not isinstance(child, KVDocument):
                raise TypeError("Object nodes map str keys to KVDocument values.")
            children[key] = child
        self._scalar = None
        self._children = children

    @classmethod
    def scalar(cls, value: str) -> "KVDocument":
        return cls(value)

    @classmethod
    def object(cls, items: Mapping[str, "KVDocument"] | None = None) -> "KVDocument":
        return cls(items or {})

    @property
    def is_scalar(self) -> bool:
        return self._scalar is not None

    @property
    def is_object(self) -> bool:
        return self._children is not None

    @property
    def value(self) -> str | None:
        return self._scalar

    def keys(self) -> list[str]:
        if self._children is None:
            return []
        return list(self._children)

    def items(self) -> list[tuple[str, "KVDocument"]]:
        if self._children is None:
            return []
        return list(self._children.items())

    def get(self, path: str | Sequence[str]) -> "KVDocument | None":
        if isinstance(path, str):
            path = (path,)
        node: KVDocument | None = self
        for key in path:
            if node is None or node._children is None:
                return None
            node = node._children.get(key)
        return node

    def text(self, path: str | Sequence[str], default: str | None = None) -> str | None:
        node = self.get(path)
        if node is None or node._scalar is None:
            return default
        return node._scalar

    def set(self, key: str, value: "KVDocument | str") -> None:
        if self._children is None:
            raise TypeError("Cannot add keys to a scalar node.")
        if isinstance(value, str):
            value = KVDocument(value)
        self._children[key] = value

    def remove(self, key: str) -> bool:
        if self._children is None or key not in self._children:
            return False
        del self._children[key]
        return True

    @property
    def root(self) -> tuple[str, "KVDocument"] | None:
        # Steam files hold exactly one top-level entry ("AppState", "AppWorkshop", ...).
        if not self._children:
            return None
        key = next(iter(self._children))
        return key, self._children[key]

    def serialize(self) -> str:
        if self._children is None:
            raise TypeError("Only object nodes can be serialized as a document.")
        out: list[str] = []
        _write_object(self, 0, out)
        return "".join(out)

    def to_python(self) -> Any:
        if self._children is None:
            return self._scalar
        return {k: v.to_python() for k, v in self._children.items()}

    def __contains__(self, key: object) -> bool:
        return self._children is not None and key in self._children

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._children) if self._children is not None else 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KVDocument):
            return NotImplemented
        if self._children is None or other._children is None:
            return self._scalar == other._scalar and self._children is other._children
        return list(self._children.items()) == list(other._children.items())

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        if self._children is None:
            return f"KVDocument({self._scalar!r})"
        return f"KVDocument(<object keys={self.keys()!r}>)"


@dataclass(frozen=True)
class _Token:
    kind: str  # "str" | "{" | "}" | "cond"
    text: str
    line: int


def _tokenize(text: str, source: str | Path | None) -> Iterator[_Token]:
    i = 0
    n = len(text)
    line = 1
    while i < n:
        c = text[i]
        if c == "\n":
            line += 1
            i += 1
            continue
        if c.isspace():
            i += 1
            continue
        if c == "/" and text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
            continue
        if c in "{}":
            yield _Token(c, c, line)
            i += 1
            continue
        if c == "[":
            end = text.find("]", i)
            if end == -1:
                raise ParseError("Unterminated conditional '['.", line=line, source=source)
            yield _Token("cond", text[i + 1 : end], line)
            i = end + 1
            continue
        if c == '"':
            start_line = line
            buf: list[str] = []
            i += 1
            while True:
                if i >= n:
                    raise ParseError("Unterminated quoted string.", line=start_line, source=source)
                c = text[i]
                if c == '"':
                    i += 1
                    break
                if c == "\\" and i + 1 < n and text[i + 1] in _ESCAPES:
                    buf.append(_ESCAPES[text[i + 1]])
                    i += 2
                    continue
                if c == "\n":
                    line += 1
                buf.append(c)
                i += 1
            yield _Token("str", "".join(buf), start_line)
            continue

        start = i
        while i < n and not text[i].isspace() and text[i] not in _BARE_STOP:
            i += 1
        yield _Token("str", text[start:i], line)


def parse(text: str, *, source: str | Path | None = None) -> KVDocument:
    """
    Parse KeyValues text into an object node holding the document's top-level entries.

    Raises ParseError on unbalanced braces, unterminated strings or a key without a value.
    Platform conditionals such as ``[$WIN32]`` are skipped. A repeated key keeps its
    first position and takes the last value.
    """
    if text.startswith("\ufeff"):
        text = text[1:]

    root = KVDocument.object()
    current = root
    stack: list[tuple[KVDocument, int]] = []
    pending: _Token | None = None

    for tok in _tokenize(text, source):
        if tok.kind == "cond":
            continue
        if pending is None:
            if tok.kind == "str":
                pending = tok
            elif tok.kind == "}":
                if not stack:
                    raise ParseError("Unbalanced braces: unexpected '}'.", line=tok.line, source=source)
                current, _ = stack.pop()
            else:
                raise ParseError("Expected a key before '{'.", line=tok.line, source=source)
            continue

        if tok.kind == "str":
            current.set(pending.text, KVDocument(tok.text))
        elif tok.kind == "{":
            child = KVDocument.object()
            current.set(pending.text, child)
            stack.append((current, tok.line))
            current = child
        else:
            raise ParseError(f"Key {pending.text!r} has no value.", line=tok.line, source=source)
        pending = None

    if pending is not None:
        raise ParseError(f"Key {pending.text!r} has no value.", line=pending.line, source=source)
    if stack:
        _, opened_at = stack[-1]
        raise ParseError(f"Unbalanced braces: '{{' opened on line {opened_at} is never closed.", source=source)
    return root


def read_text(path: Path) -> str:
    # newline="" keeps carriage returns inside values and CRLF layouts intact.
    try:
        with open(path, encoding="utf-8", newline="") as f:
            return f.read()
    except UnicodeDecodeError as e:
        raise ParseError(f"File is not valid UTF-8: {e.reason} at byte {e.start}.", source=path) from e
    except OSError as e:
        raise ManifestIOError(f"Could not read {path}: {e}") from e


def load(path: Path) -> KVDocument:
    return parse(read_text(path), source=path)


def _quote(s: str) -> str:
    return '"' + "".join(_UNESCAPES.get(c, c) for c in s) + '"'


def _write_object(node: KVDocument, depth: int, out: list[str]) -> None:
    indent = "\t" * depth
    for key, child in node.items():
        if child.is_scalar:
            out.append(f"{indent}{_quote(key)}\t\t{_quote(child.value or '')}\n")
            continue
        out.append(f"{indent}{_quote(key)}\n{indent}{{\n")
        _write_object(child, depth + 1, out)
        out.append(f"{indent}}}\n")
