# trans_gate/chunking.py
"""
本模块负责把超长文本切分为可独立翻译、保持顺序的片段。

切分保证：所有片段按顺序拼接后与原文逐字节相同；切点永远不会落在
占位符内部，标记文本中也不会落在标签内部。切点按优先级选择：
标记文本为 块级闭合标签 > 任意标签边界 > 句末 > 空白 > 硬切；
纯文本为 段落 > 句末 > 空白 > 硬切。
"""

import bisect
import re
from dataclasses import dataclass

from trans_gate.protection import PLACEHOLDER_PATTERN

MIN_CHUNK_SIZE = 200
LIST_CHUNK_LIMIT = 500

_OPEN_TAG_RE = re.compile(r"<[a-zA-Z][\w-]*(?:\s[^<>]*)?/?>")
_CLOSE_TAG_RE = re.compile(r"</[a-zA-Z][\w-]*\s*>")
_ANY_TAG_RE = re.compile(r"</?[a-zA-Z][^<>]*>")
_LIST_RE = re.compile(r"<(?:ul|ol)\b", re.IGNORECASE)
_BLOCK_CLOSE_RE = re.compile(
    r"</(?:p|div|li|ul|ol|h[1-6]|section|article|table|tr|thead|tbody|blockquote"
    r"|header|footer|nav|aside|figure|dl|dd|dt)\s*>",
    re.IGNORECASE,
)
_PARAGRAPH_RE = re.compile(r"\n\s*\n")
_SENTENCE_RE = re.compile(r"[.!?;][\"'”’)\]]*\s+|[。！？；]\s*")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class Chunk:
    index: int
    text: str
    boundary_hint: str  # 该片段结尾处的切点类型；最后一个片段为 "end"


def is_likely_markup(text: str) -> bool:
    """同时出现开始标签与闭合标签时，才认为文本是标记文本。"""
    if not text or "<" not in text:
        return False
    return bool(_OPEN_TAG_RE.search(text)) and bool(_CLOSE_TAG_RE.search(text))


def _forbidden_spans(text: str, markup: bool) -> list[tuple[int, int]]:
    """占位符（以及标记文本中的标签）所占区间，合并为互不重叠的有序列表。"""
    spans = [m.span() for m in PLACEHOLDER_PATTERN.finditer(text)]
    if markup:
        spans.extend(m.span() for m in _ANY_TAG_RE.finditer(text))
    spans.sort()
    merged: list[tuple[int, int]] = []
    for s, e in spans:
        if merged and s < merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], e))
        else:
            merged.append((s, e))
    return merged


class _Splitter:
    def __init__(self, text: str, limit: int, markup: bool):
        self.text = text
        self.limit = limit
        self.spans = _forbidden_spans(text, markup)
        self._starts = [s for s, _ in self.spans]
        if markup:
            self.kinds = [("block", _BLOCK_CLOSE_RE), ("tag", _ANY_TAG_RE)]
        else:
            self.kinds = [("paragraph", _PARAGRAPH_RE)]
        self.kinds += [("sentence", _SENTENCE_RE), ("whitespace", _WHITESPACE_RE)]

    def _containing(self, pos: int) -> tuple[int, int] | None:
        i = bisect.bisect_left(self._starts, pos) - 1
        if i >= 0:
            s, e = self.spans[i]
            if s < pos < e:
                return s, e
        return None

    def _last_boundary(self, regex: re.Pattern[str], start: int, end: int) -> int | None:
        floor = start + self.limit // 4
        best = None
        for m in regex.finditer(self.text, start, end):
            p = m.end()
            if floor < p <= end and self._containing(p) is None:
                best = p
        return best

    def cut(self, start: int) -> tuple[int, str]:
        end = start + self.limit
        for hint, regex in self.kinds:
            p = self._last_boundary(regex, start, end)
            if p is not None:
                return p, hint
        span = self._containing(end)
        if span is not None:
            # 硬切不得落入占位符或标签；区间起点在本片段之前时只能越过它
            end = span[0] if span[0] > start else span[1]
        return end, "hard"


def chunk(text: str, max_size: int) -> list[Chunk]:
    """
    将 `text` 切分为有序片段，片段文本顺序拼接后等于原文。

    `max_size` 低于 MIN_CHUNK_SIZE 时按 MIN_CHUNK_SIZE 处理；含列表的标记文本
    上限收紧到 LIST_CHUNK_LIMIT。只有为了不拆开占位符或标签时，片段才会超出上限。
    """
    if not text:
        return []
    limit = max(int(max_size), MIN_CHUNK_SIZE)
    markup = is_likely_markup(text)
    if markup and _LIST_RE.search(text):
        limit = min(limit, LIST_CHUNK_LIMIT)

    chunks: list[Chunk] = []
    splitter = _Splitter(text, limit, markup)
    start = 0
    while len(text) - start > limit:
        end, hint = splitter.cut(start)
        if end >= len(text):
            break
        chunks.append(Chunk(len(chunks), text[start:end], hint))
        start = end
    chunks.append(Chunk(len(chunks), text[start:], "end"))
    return chunks
