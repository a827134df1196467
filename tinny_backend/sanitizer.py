"""Allowlist HTML sanitizer built on BeautifulSoup.

Unknown tags are unwrapped (their sanitized children are kept), script-bearing
elements are rewritten into inert containers, and URL attributes are checked
against a scheme allowlist. Output re-sanitizes to itself.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Mapping

from bs4 import BeautifulSoup
from bs4.element import Doctype, NavigableString, PreformattedString, Tag

from .config import (
    ALLOWED_ATTRIBUTES,
    ALLOWED_SCHEMES,
    ALLOWED_SCHEMES_BY_TAG,
    ALLOWED_TAGS,
    TRANSFORM_TAGS,
    URL_ATTRIBUTES,
)
from .errors import SanitizationError

logger = logging.getLogger(__name__)

_SCHEME_RE = re.compile(r"^([a-zA-Z][a-zA-Z0-9.+\-]*):")
_URL_NOISE_RE = re.compile(r"[\x00-\x20\x7f]+")
_URL_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)

# Elements whose text content is code, not fallback markup.
_DROP_CONTENT_ON_TRANSFORM = frozenset({"script"})


class _InlineDoctype(Doctype):
    # bs4 appends a newline after a doctype; re-parsing would turn it into text.
    SUFFIX = ">"


@dataclass(frozen=True)
class SanitizerPolicy:
    allowed_tags: frozenset = ALLOWED_TAGS
    allowed_attributes: Mapping[str, frozenset] = field(default_factory=lambda: dict(ALLOWED_ATTRIBUTES))
    allowed_schemes: frozenset = ALLOWED_SCHEMES
    allowed_schemes_by_tag: Mapping[str, frozenset] = field(default_factory=lambda: dict(ALLOWED_SCHEMES_BY_TAG))
    url_attributes: frozenset = URL_ATTRIBUTES
    transform_tags: Mapping[str, str] = field(default_factory=lambda: dict(TRANSFORM_TAGS))

    def attributes_for(self, tag_name: str) -> frozenset:
        wildcard = self.allowed_attributes.get("*", frozenset())
        return wildcard | self.allowed_attributes.get(tag_name, frozenset())

    def schemes_for(self, tag_name: str) -> frozenset:
        return self.allowed_schemes_by_tag.get(tag_name, self.allowed_schemes)


def is_allowed_url(value: str, schemes: frozenset) -> bool:
    """Relative URLs pass; absolute ones need an allowed scheme.

    Whitespace and control characters are dropped before looking for the
    scheme so that ``java\\tscript:`` is still recognised.
    """
    cleaned = _URL_NOISE_RE.sub("", _URL_COMMENT_RE.sub("", value or ""))
    match = _SCHEME_RE.match(cleaned)
    if not match:
        return True
    return match.group(1).lower() in schemes


class HtmlSanitizer:
    def __init__(self, policy: SanitizerPolicy | None = None) -> None:
        self.policy = policy or SanitizerPolicy()

    def sanitize(self, raw_html: str) -> str:
        try:
            soup = BeautifulSoup(raw_html or "", "html.parser")
            self._clean(soup)
            return soup.decode(formatter="minimal")
        except SanitizationError:
            raise
        except Exception as exc:
            logger.exception("HTML sanitization failed")
            raise SanitizationError("sanitize_failed", "Failed to sanitize HTML content") from exc

    def _clean(self, soup: BeautifulSoup) -> None:
        # Worklist instead of recursion: uploaded pages can nest arbitrarily deep.
        work = list(soup.contents)
        while work:
            node = work.pop()
            if node.parent is None:
                continue

            if isinstance(node, PreformattedString):
                # Comments, CDATA, processing instructions, declarations.
                if isinstance(node, Doctype) and str(node).strip().lower() == "html":
                    node.replace_with(_InlineDoctype(str(node)))
                    continue
                node.extract()
                continue

            if isinstance(node, NavigableString) or not isinstance(node, Tag):
                continue

            name = (node.name or "").lower()
            target = self.policy.transform_tags.get(name)
            if target is not None:
                node = self._transform(soup, node, name, target)
                self._filter_attributes(node)
                work.extend(node.contents)
            elif name in self.policy.allowed_tags:
                self._filter_attributes(node)
                work.extend(node.contents)
            else:
                children = list(node.contents)
                node.unwrap()
                work.extend(children)

    def _transform(self, soup: BeautifulSoup, node: Tag, name: str, target: str) -> Tag:
        # A fresh tag keeps the builder's void-element bookkeeping right for the
        # new name (<embed> is void, <div> is not).
        replacement = soup.new_tag(target)
        replacement.attrs = dict(node.attrs)
        if name not in _DROP_CONTENT_ON_TRANSFORM:
            for child in list(node.contents):
                replacement.append(child.extract())
        node.replace_with(replacement)
        return replacement

    def _filter_attributes(self, tag: Tag) -> None:
        allowed = self.policy.attributes_for(tag.name)
        schemes = self.policy.schemes_for(tag.name)
        for attr in list(tag.attrs):
            if attr.lower() not in allowed:
                del tag[attr]
                continue
            if attr.lower() in self.policy.url_attributes:
                value = tag[attr]
                if isinstance(value, list):
                    value = " ".join(value)
                if not is_allowed_url(str(value), schemes):
                    del tag[attr]


_default_sanitizer = HtmlSanitizer()


def sanitize_html(raw_html: str) -> str:
    return _default_sanitizer.sanitize(raw_html)
