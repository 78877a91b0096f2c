"""Structured batch markup: intermediate representation, serializer and parser.

A composed batch travels between stages as an XML-like text blob::

    <batch timestamp="..." entries="3">
    <change timestamp="...">
    <error_signal>still getting the same error</error_signal>
    </change>
    <delay time="12s" />
    <change timestamp="...">
    <confusion_signal>i dont understand <deleted>why</deleted></confusion_signal>
    </change>
    <context url="example.com/lesson/4" />
    <behavior type="frequent_errors" count="3" />
    </batch>

Stages never build or scrape that text with string concatenation and ad hoc
regexes.  ``BatchDocument`` holds the batch as a list of typed segments,
``render()`` serializes it, and ``parse()`` tokenizes text (including
hand-written or partial markup) back into segments.  User text is
entity-escaped on render, so typed content can never forge a tag.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

logger = logging.getLogger(__name__)


class ContentTag(str, Enum):
    """Inline tags wrapping a change, in the order the composer applies them."""

    REPETITIVE = "repetitive"
    ERROR_SIGNAL = "error_signal"
    CONFUSION_SIGNAL = "confusion_signal"
    SEARCH_ACTIVITY = "search_activity"
    MATHEMATICAL_CONTENT = "mathematical_content"
    INCORRECT_ANSWER_SIGNAL = "incorrect_answer_signal"


class BehaviorType(str, Enum):
    CONTEXT_SWITCHING = "context_switching"
    RAPID_CHANGES = "rapid_changes"
    PROLONGED_FOCUS = "prolonged_focus"
    FREQUENT_ERRORS = "frequent_errors"


class FragmentKind(str, Enum):
    TEXT = "text"
    DELETED = "deleted"
    CHANGED = "changed"


@dataclass(frozen=True)
class Fragment:
    """A run of diff content: inserted text, a deletion, or a replacement."""

    kind: FragmentKind
    text: str = ""
    old: str = ""
    new: str = ""

    @property
    def plain_text(self) -> str:
        if self.kind is FragmentKind.CHANGED:
            return f"{self.old} {self.new}"
        return self.text

    def render(self) -> str:
        if self.kind is FragmentKind.DELETED:
            return f"<deleted>{_escape_text(self.text)}</deleted>"
        if self.kind is FragmentKind.CHANGED:
            return (
                f'<changed from="{_escape_attr(self.old)}"'
                f' to="{_escape_attr(self.new)}" />'
            )
        return _escape_text(self.text)


@dataclass(frozen=True)
class ChangeSegment:
    fragments: tuple[Fragment, ...]
    tags: tuple[ContentTag, ...] = ()
    timestamp: str | None = None

    @property
    def plain_text(self) -> str:
        return "".join(f.plain_text for f in self.fragments)

    def has(self, tag: ContentTag) -> bool:
        return tag in self.tags

    def render(self) -> str:
        inner = "".join(f.render() for f in self.fragments)
        for tag in self.tags:
            inner = f"<{tag.value}>{inner}</{tag.value}>"
        if self.timestamp:
            opening = f'<change timestamp="{_escape_attr(self.timestamp)}">'
        else:
            opening = "<change>"
        return f"{opening}\n{inner}\n</change>"


@dataclass(frozen=True)
class DelaySegment:
    seconds: int

    def render(self) -> str:
        return f'<delay time="{self.seconds}s" />'


@dataclass(frozen=True)
class ContextSegment:
    url: str

    def render(self) -> str:
        return f'<context url="{_escape_attr(self.url)}" />'


@dataclass(frozen=True)
class BehaviorSegment:
    type: BehaviorType
    count: int | None = None
    duration: int | None = None

    def render(self) -> str:
        attrs = f'type="{self.type.value}"'
        if self.count is not None:
            attrs += f' count="{self.count}"'
        if self.duration is not None:
            attrs += f' duration="{self.duration}s"'
        return f"<behavior {attrs} />"


Segment = Union[ChangeSegment, DelaySegment, ContextSegment, BehaviorSegment]


@dataclass
class BatchDocument:
    """Typed view of one batch; segments keep chronological entry order."""

    segments: list[Segment] = field(default_factory=list)
    timestamp: str | None = None
    entries: int | None = None

    # ---- queries ----

    @property
    def changes(self) -> list[ChangeSegment]:
        return [s for s in self.segments if isinstance(s, ChangeSegment)]

    @property
    def delays(self) -> list[DelaySegment]:
        return [s for s in self.segments if isinstance(s, DelaySegment)]

    @property
    def behaviors(self) -> list[BehaviorSegment]:
        return [s for s in self.segments if isinstance(s, BehaviorSegment)]

    @property
    def context(self) -> ContextSegment | None:
        for segment in self.segments:
            if isinstance(segment, ContextSegment):
                return segment
        return None

    def has_tag(self, tag: ContentTag) -> bool:
        return any(change.has(tag) for change in self.changes)

    def behavior(self, behavior_type: BehaviorType) -> BehaviorSegment | None:
        for segment in self.behaviors:
            if segment.type is behavior_type:
                return segment
        return None

    def plain_text(self) -> str:
        """All change content without markup, one change per line."""
        return "\n".join(change.plain_text for change in self.changes)

    # ---- serialization ----

    def render(self) -> str:
        attrs = ""
        if self.timestamp is not None:
            attrs += f' timestamp="{_escape_attr(self.timestamp)}"'
        if self.entries is not None:
            attrs += f' entries="{self.entries}"'
        lines = [f"<batch{attrs}>"]
        lines.extend(segment.render() for segment in self.segments)
        lines.append("</batch>")
        return "\n".join(lines)

    @classmethod
    def parse(cls, text: str) -> BatchDocument:
        return _Parser(text).parse()


# ---------------------------------------------------------------------------
# Diff marker normalization
# ---------------------------------------------------------------------------

_MARKER_RE = re.compile(
    r'\[DELETED:\s*(?P<deleted>[^\]]+)\]'
    r'|\[CHANGED:\s*"(?P<old>[^"]+)"\s*→\s*"(?P<new>[^"]+)"\]'
)


def parse_diff_markers(diff: str) -> tuple[Fragment, ...]:
    """Split a capture diff into text, deletion and replacement fragments."""
    fragments: list[Fragment] = []
    pos = 0
    for match in _MARKER_RE.finditer(diff):
        if match.start() > pos:
            fragments.append(Fragment(FragmentKind.TEXT, diff[pos:match.start()]))
        if match.group("deleted") is not None:
            fragments.append(Fragment(FragmentKind.DELETED, match.group("deleted")))
        else:
            fragments.append(
                Fragment(
                    FragmentKind.CHANGED,
                    old=match.group("old"),
                    new=match.group("new"),
                )
            )
        pos = match.end()
    if pos < len(diff):
        fragments.append(Fragment(FragmentKind.TEXT, diff[pos:]))
    return tuple(fragments)


# ---------------------------------------------------------------------------
# Tokenizer / parser
# ---------------------------------------------------------------------------

_TAG_RE = re.compile(
    r"<(?P<close>/)?(?P<name>[a-z_]+)"
    r'(?P<attrs>(?:\s+[a-z_]+="[^"]*")*)\s*(?P<self>/)?>'
)
_ATTR_RE = re.compile(r'([a-z_]+)="([^"]*)"')
_NUMBER_RE = re.compile(r"\d+")

_CONTENT_TAGS = {tag.value: tag for tag in ContentTag}
_BLOCK_TAGS = {"batch", "change", "delay", "context", "behavior"}
_INLINE_TAGS = {"deleted", "changed"}


@dataclass(frozen=True)
class _Token:
    kind: str  # "text" | "open" | "close" | "empty"
    name: str = ""
    attrs: dict[str, str] = field(default_factory=dict)
    text: str = ""


def _tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    for match in _TAG_RE.finditer(text):
        name = match.group("name")
        known = name in _BLOCK_TAGS or name in _INLINE_TAGS or name in _CONTENT_TAGS
        if not known:
            # unknown tag-like text stays text
            continue
        if match.start() > pos:
            tokens.append(_Token("text", text=text[pos:match.start()]))
        attrs = {
            k: html.unescape(v) for k, v in _ATTR_RE.findall(match.group("attrs"))
        }
        if match.group("close"):
            tokens.append(_Token("close", name=name))
        elif match.group("self"):
            tokens.append(_Token("empty", name=name, attrs=attrs))
        else:
            tokens.append(_Token("open", name=name, attrs=attrs))
        pos = match.end()
    if pos < len(text):
        tokens.append(_Token("text", text=text[pos:]))
    return tokens


def _int_attr(attrs: dict[str, str], key: str) -> int | None:
    match = _NUMBER_RE.search(attrs.get(key, ""))
    return int(match.group()) if match else None


class _Parser:
    """Single pass over the token stream.

    Lenient by construction: the ``<batch>`` wrapper is optional, loose text
    outside ``<change>`` becomes an implicit change, and stray closing tags
    are ignored.
    """

    def __init__(self, text: str) -> None:
        self._tokens = _tokenize(text or "")
        self._doc = BatchDocument()
        # open change state
        self._in_change = False
        self._change_ts: str | None = None
        self._fragments: list[Fragment] = []
        self._tags: list[ContentTag] = []
        self._deleted: list[str] | None = None

    def parse(self) -> BatchDocument:
        for token in self._tokens:
            if token.kind == "text":
                self._on_text(token.text)
            elif token.kind == "open":
                self._on_open(token)
            elif token.kind == "close":
                self._on_close(token)
            else:
                self._on_empty(token)
        self._flush_change()
        return self._doc

    def _on_text(self, raw: str) -> None:
        text = html.unescape(raw)
        if self._deleted is not None:
            self._deleted.append(text)
            return
        if not self._in_change:
            if not text.strip():
                return
            self._in_change = True
            text = text.strip("\n")
        elif not self._fragments:
            text = text.lstrip("\n")
        if text:
            self._fragments.append(Fragment(FragmentKind.TEXT, text))

    def _on_open(self, token: _Token) -> None:
        name = token.name
        if name == "batch":
            self._flush_change()
            self._doc.timestamp = token.attrs.get("timestamp")
            self._doc.entries = _int_attr(token.attrs, "entries")
        elif name == "change":
            self._flush_change()
            self._in_change = True
            self._change_ts = token.attrs.get("timestamp")
        elif name == "deleted":
            self._in_change = True
            self._deleted = []
        elif name in _CONTENT_TAGS:
            self._in_change = True
            tag = _CONTENT_TAGS[name]
            if tag not in self._tags:
                self._tags.append(tag)
        else:
            logger.debug("Ignoring open tag <%s> with no content", name)

    def _on_close(self, token: _Token) -> None:
        if token.name == "deleted" and self._deleted is not None:
            self._fragments.append(
                Fragment(FragmentKind.DELETED, "".join(self._deleted))
            )
            self._deleted = None
        elif token.name in ("change", "batch"):
            self._flush_change()

    def _on_empty(self, token: _Token) -> None:
        name = token.name
        attrs = token.attrs
        if name == "changed":
            self._in_change = True
            self._fragments.append(
                Fragment(
                    FragmentKind.CHANGED,
                    old=attrs.get("from", ""),
                    new=attrs.get("to", ""),
                )
            )
            return
        self._flush_change()
        if name == "delay":
            seconds = _int_attr(attrs, "time")
            if seconds is not None:
                self._doc.segments.append(DelaySegment(seconds))
        elif name == "context":
            self._doc.segments.append(ContextSegment(attrs.get("url", "")))
        elif name == "behavior":
            try:
                behavior_type = BehaviorType(attrs.get("type", ""))
            except ValueError:
                logger.debug("Unknown behavior type %r", attrs.get("type"))
                return
            self._doc.segments.append(
                BehaviorSegment(
                    behavior_type,
                    count=_int_attr(attrs, "count"),
                    duration=_int_attr(attrs, "duration"),
                )
            )

    def _flush_change(self) -> None:
        if self._deleted is not None:
            self._fragments.append(
                Fragment(FragmentKind.DELETED, "".join(self._deleted))
            )
            self._deleted = None
        if self._in_change:
            fragments = list(self._fragments)
            if fragments and fragments[-1].kind is FragmentKind.TEXT:
                last = fragments[-1]
                trimmed = last.text.rstrip("\n")
                fragments[-1] = Fragment(FragmentKind.TEXT, trimmed)
                if not trimmed:
                    fragments.pop()
            if fragments or self._tags:
                # tags were seen outermost first; store application order
                self._doc.segments.append(
                    ChangeSegment(
                        fragments=tuple(fragments),
                        tags=tuple(reversed(self._tags)),
                        timestamp=self._change_ts,
                    )
                )
        self._in_change = False
        self._change_ts = None
        self._fragments = []
        self._tags = []


def _escape_text(text: str) -> str:
    return html.escape(text, quote=False)


def _escape_attr(text: str) -> str:
    return html.escape(text, quote=True)
