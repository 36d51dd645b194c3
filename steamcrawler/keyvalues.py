"""Valve key-value text format (VDF / ACF).

Decoding is tolerant: manifests are routinely caught half-written by a
running Steam client, so an input that ends inside an open block yields the
partial tree with ``Status.TRUNCATED`` instead of an error, and anything after
the first completed outermost block is ignored.
"""
from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import vdf

from .errors import MalformedFormat, TruncatedInput
from .models import KeyValueNode
from .utils import read_text, timed_read_text

log = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r'''
    (?P<ws>\s+)
  | (?P<comment>//[^\n]*)
  | "(?P<quoted>(?:\\.|[^\\"])*)"
  | (?P<open>\{)
  | (?P<close>\})
  | (?P<cond>\[[^\]\n]*\])
  | (?P<bare>[^\s"{}]+)
''', re.VERBOSE | re.DOTALL)

_UNESCAPE = {
    "n": "\n", "t": "\t", "v": "\v", "b": "\b", "r": "\r", "f": "\f",
    "a": "\a", "\\": "\\", "?": "?", '"': '"', "'": "'",
}
_ESCAPE_RE = re.compile(r"\\(.)", re.DOTALL)


class Status(enum.Enum):
    COMPLETE = "complete"
    TRUNCATED = "truncated"
    MALFORMED = "malformed"


@dataclass
class DecodeResult:
    status: Status
    tree: Dict[str, KeyValueNode] = field(default_factory=dict)
    error: Optional[MalformedFormat] = None
    warning: Optional[TruncatedInput] = None

    @property
    def ok(self) -> bool:
        return self.status is not Status.MALFORMED

    @property
    def truncated(self) -> bool:
        return self.status is Status.TRUNCATED


def _unescape(body: str) -> str:
    if "\\" not in body:
        return body
    return _ESCAPE_RE.sub(lambda m: _UNESCAPE.get(m.group(1), m.group(0)), body)


def _error(text: str, message: str, offset: int) -> MalformedFormat:
    line = text.count("\n", 0, offset) + 1
    column = offset - (text.rfind("\n", 0, offset) + 1) + 1
    return MalformedFormat(message, offset=offset, line=line, column=column)


def decode(text: str) -> DecodeResult:
    """Decode key-value text into a tree of dicts and strings.

    Duplicate keys keep the position of their first appearance and the value
    of their last. Never raises for bad input; inspect ``result.status``.
    """
    if text.startswith("\ufeff"):
        text = text[1:]

    root: Dict[str, KeyValueNode] = {}
    stack: List[Dict[str, KeyValueNode]] = [root]
    key: Optional[str] = None
    pos = 0
    end = len(text)

    def truncated() -> DecodeResult:
        depth = len(stack) - 1
        return DecodeResult(Status.TRUNCATED, root,
                            warning=TruncatedInput(f"input ended inside {depth} open block(s)"))

    def fail(message: str, offset: int) -> DecodeResult:
        return DecodeResult(Status.MALFORMED, root, _error(text, message, offset))

    while pos < end:
        m = _TOKEN_RE.match(text, pos)
        if m is None:
            # only an unmatched quote can get here
            if len(stack) > 1:
                return truncated()
            return fail("unterminated quoted string", pos)
        start, pos = m.start(), m.end()
        kind = m.lastgroup

        if kind in ("ws", "comment", "cond"):
            continue

        if kind in ("quoted", "bare"):
            value = _unescape(m.group("quoted")) if kind == "quoted" else m.group("bare")
            if key is None:
                key = value
            else:
                stack[-1][key] = value
                key = None
        elif kind == "open":
            if key is None:
                return fail("block without a key", start)
            child: Dict[str, KeyValueNode] = {}
            stack[-1][key] = child
            stack.append(child)
            key = None
        else:
            if key is not None:
                return fail(f"key {key!r} has no value", start)
            if len(stack) == 1:
                return fail("unbalanced closing brace", start)
            stack.pop()
            if len(stack) == 1:
                if text[pos:].strip():
                    log.debug(f"Ignoring trailing data after offset {pos}")
                return DecodeResult(Status.COMPLETE, root)

    if len(stack) > 1:
        return truncated()
    if key is not None:
        return fail(f"key {key!r} has no value", end)
    return DecodeResult(Status.COMPLETE, root)


def loads(text: str) -> Dict[str, KeyValueNode]:
    """Strict variant of decode(): raises MalformedFormat, accepts truncation."""
    result = decode(text)
    if result.error is not None:
        raise result.error
    return result.tree


def dumps(tree: Dict[str, KeyValueNode], pretty: bool = True) -> str:
    return vdf.dumps(tree, pretty=pretty)


def read_file(path: Path, timeout: Optional[float] = None,
              retries: int = 1, delay: float = 0.25) -> DecodeResult:
    """Read and decode a manifest. OSError/TimeoutError from the read propagate."""
    if timeout is None:
        text = read_text(path, retries=retries, delay=delay)
    else:
        text = timed_read_text(path, timeout, retries=retries, delay=delay)
    return decode(text)
