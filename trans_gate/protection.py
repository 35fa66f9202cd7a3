# trans_gate/protection.py
"""
本模块实现可逆的“保护编解码”：在把文本发往远端端点前，把不可翻译的子串
（HTML 代码块、媒体标签、URL、样式与属性值、模板变量、品牌词）替换为
不透明的占位符，并在收到译文后把它们还原。

往返是无损的：对任意输入 `t`，`restore(*protect(t)) == t`。
为此，占位符前缀在每次请求时都会避开原文中已经出现的前缀；被保护的原文
里永远不含占位符，所以还原只需单次替换。

若远端端点篡改或丢失了某个占位符，该占位符不会被“猜测”还原：
未知的令牌原样保留，丢失的令牌可通过 `ProtectionMap.missing_in()` 查询。
"""

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from trans_gate.exceptions import ProtectionError

DEFAULT_PREFIX = "__PROTECTED_"

# 策略层在占位符无法完整还原时返回的哨兵值，由质量门识别并替换。
PROTECTION_FAILED = "__PROTECTION_FAILED__"

# 匹配任意前缀变体生成的占位符，用于统计与残留检测。
PLACEHOLDER_PATTERN = re.compile(r"__PROTECTED\d*_[A-Z]+_\d+__")

_BLOCK_RE = re.compile(
    r"(?P<comment><!--.*?-->)"
    r"|<(?P<tag>script|style|pre|code|textarea)\b[^>]*>.*?</(?P=tag)\s*>",
    re.IGNORECASE | re.DOTALL,
)
_MEDIA_RE = re.compile(
    r"<(?:img|source|track|br|hr|input|meta|link|iframe|embed|wbr)\b[^<>]*>",
    re.IGNORECASE,
)
_TAG_RE = re.compile(r"<[a-zA-Z][^<>]*>")
_ATTR_RE = re.compile(
    r"(?P<lead>\s(?P<name>href|src|srcset|style|class|id|data-[\w-]+|aria-[\w-]+)"
    r"\s*=\s*)(?P<quote>[\"'])(?P<value>.*?)(?P=quote)",
    re.IGNORECASE | re.DOTALL,
)
_URL_RE = re.compile(r"https?://[^\s<>\"']*[^\s<>\"'.,;:!?)\]]")
_VAR_RE = re.compile(r"\{\{.*?\}\}|\{%.*?%\}|%?\{[A-Za-z_][\w.]*\}")

_ATTR_KINDS = {"href": "URL", "src": "URL", "srcset": "URL", "style": "STYLE"}


@dataclass
class ProtectionMap:
    """单次请求的占位符映射：令牌 -> 原始子串。还原后即可丢弃。"""

    prefix: str = DEFAULT_PREFIX
    tokens: dict[str, str] = field(default_factory=dict)

    def add(self, kind: str, original: str) -> str:
        token = f"{self.prefix}{kind}_{len(self.tokens)}__"
        self.tokens[token] = original
        return token

    @property
    def pattern(self) -> re.Pattern[str]:
        return re.compile(re.escape(self.prefix) + r"[A-Z]+_\d+__")

    def missing_in(self, text: str) -> list[str]:
        """返回在 `text` 中找不到的令牌（按生成顺序）。"""
        present = set(self.pattern.findall(text))
        return [token for token in self.tokens if token not in present]


def _choose_prefix(text: str) -> str:
    if DEFAULT_PREFIX not in text:
        return DEFAULT_PREFIX
    n = 1
    while f"__PROTECTED{n}_" in text:
        n += 1
    return f"__PROTECTED{n}_"


def _sub_outside_tokens(
    pattern: re.Pattern[str],
    text: str,
    repl: Callable[[re.Match[str]], str],
    token_re: re.Pattern[str],
) -> str:
    """只在已有占位符之外的片段上执行替换。"""
    parts: list[str] = []
    pos = 0
    for m in token_re.finditer(text):
        parts.append(pattern.sub(repl, text[pos : m.start()]))
        parts.append(m.group(0))
        pos = m.end()
    parts.append(pattern.sub(repl, text[pos:]))
    return "".join(parts)


def brand_pattern(terms: Iterable[str]) -> re.Pattern[str] | None:
    """构造品牌词匹配：不区分大小写，两侧不得紧邻单词字符。"""
    cleaned = sorted({t.strip() for t in terms if t and t.strip()}, key=len, reverse=True)
    if not cleaned:
        return None
    alternation = "|".join(re.escape(t) for t in cleaned)
    return re.compile(rf"(?<!\w)(?:{alternation})(?!\w)", re.IGNORECASE)


class ProtectionCodec:
    """按固定顺序执行多轮保护，后一轮只作用于前一轮占位符之外的文本。"""

    def __init__(self, brand_terms: Iterable[str] = ()):
        self._brand_re = brand_pattern(brand_terms)

    def protect(self, text: str) -> tuple[str, ProtectionMap]:
        pmap = ProtectionMap(prefix=_choose_prefix(text))
        if not text:
            return text, pmap
        token_re = pmap.pattern

        def block(m: re.Match[str]) -> str:
            return pmap.add("COMMENT" if m.group("comment") else "BLOCK", m.group(0))

        def attrs_in_tag(m: re.Match[str]) -> str:
            def one(am: re.Match[str]) -> str:
                value = am.group("value")
                if not value:
                    return am.group(0)
                kind = _ATTR_KINDS.get(am.group("name").lower(), "ATTR")
                quote = am.group("quote")
                return f"{am.group('lead')}{quote}{pmap.add(kind, value)}{quote}"

            return _ATTR_RE.sub(one, m.group(0))

        masked = _BLOCK_RE.sub(block, text)
        masked = _sub_outside_tokens(
            _MEDIA_RE, masked, lambda m: pmap.add("MEDIA", m.group(0)), token_re
        )
        masked = _sub_outside_tokens(_TAG_RE, masked, attrs_in_tag, token_re)
        masked = _sub_outside_tokens(
            _URL_RE, masked, lambda m: pmap.add("URL", m.group(0)), token_re
        )
        masked = _sub_outside_tokens(
            _VAR_RE, masked, lambda m: pmap.add("VAR", m.group(0)), token_re
        )
        if self._brand_re is not None:
            masked = _sub_outside_tokens(
                self._brand_re, masked, lambda m: pmap.add("BRAND", m.group(0)), token_re
            )
        return masked, pmap

    def restore(self, text: str, pmap: ProtectionMap, *, strict: bool = False) -> str:
        """
        还原占位符。

        未知令牌原样保留（失败即关闭）。`strict=True` 时若有令牌丢失，
        抛出 `ProtectionError` 而不是返回部分还原的文本。
        """
        if not pmap.tokens:
            return text
        if strict:
            missing = pmap.missing_in(text)
            if missing:
                raise ProtectionError(missing)
        return pmap.pattern.sub(lambda m: pmap.tokens.get(m.group(0), m.group(0)), text)


_default_codec = ProtectionCodec()


def protect(text: str) -> tuple[str, ProtectionMap]:
    """使用不含品牌词的默认编解码器保护文本。"""
    return _default_codec.protect(text)


def restore(text: str, pmap: ProtectionMap, *, strict: bool = False) -> str:
    return _default_codec.restore(text, pmap, strict=strict)


def count_placeholders(text: str) -> int:
    return len(PLACEHOLDER_PATTERN.findall(text))
