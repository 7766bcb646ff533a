"""Methods-section extraction from JATS full-text article XML.

The PMC efetch endpoint returns ``<pmc-articleset>`` documents whose articles
mix text with inline markup (``<italic>``, ``<xref>``, ``<sub>``...). Rather
than building a tree, these helpers scan the raw markup with balanced-tag
matching so that text ordering inside mixed content is kept exactly as
written.
"""

from __future__ import annotations

import re

METHODS_SEC_TYPES = frozenset(
    {
        "methods",
        "materials|methods",
        "materials-methods",
        "materials and methods",
        "material|methods",
        "subjects|methods",
    }
)

METHODS_TITLE_PATTERNS = tuple(
    re.compile(pattern, flags=re.IGNORECASE)
    for pattern in (
        r"^materials?\s*(and|&)\s*methods?\s*$",
        r"^methods?\s*$",
        r"^experimental\s*(procedures?|methods?|section|details?)?\s*$",
        r"^star[\s★]\s*methods?\s*$",
        r"^online\s*methods?\s*$",
        r"^study\s*design(\s*(and|&)\s*methods?)?\s*$",
        r"^patients?\s*(and|&)\s*methods?\s*$",
        r"^subjects?\s*(and|&)\s*methods?\s*$",
    )
)

_ARTICLE_OPEN = "<article"
_BODY_OPEN = re.compile(r"<body[\s>]")
_BODY_CLOSE = "</body>"
_SEC_OPEN = re.compile(r"<sec[\s>]")
_SEC_TYPE = re.compile(r"^<sec[^>]+sec-type\s*=\s*[\"']([^\"']*)[\"']", flags=re.IGNORECASE)
_TITLE = re.compile(r"<title[^>]*>(.*?)</title>", flags=re.IGNORECASE | re.DOTALL)
_PMCID = re.compile(
    r"<article-id[^>]+pub-id-type\s*=\s*[\"']pmc(?:id)?[\"'][^>]*>\s*(?:PMC)?(\d+)\s*</article-id>",
    flags=re.IGNORECASE,
)

_BLOCK_CLOSE = re.compile(
    r"</(?:p|sec|title|list-item|list|table-wrap|caption|fn|def)>", flags=re.IGNORECASE
)
_LINE_BREAK = re.compile(r"<br\s*/?>", flags=re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]+>")
_ENTITY = re.compile(r"&(?:(amp|lt|gt|quot|apos)|#[xX]([0-9a-fA-F]+)|#(\d+));")
_NAMED_ENTITIES = {"amp": "&", "lt": "<", "gt": ">", "quot": '"', "apos": "'"}
_HORIZONTAL_WS = re.compile(r"[ \t]+")
_WS_AROUND_NEWLINE = re.compile(r"[ \t]*\n[ \t]*")
_BLANK_LINES = re.compile(r"\n{2,}")


def _is_tag_boundary(char: str) -> bool:
    return char.isspace() or char in ">/"


def extract_balanced_element(xml: str, start: int, tag_name: str) -> str | None:
    """Return the element opening at ``start`` including nested same-name children.

    ``None`` means the markup never balanced: either the text ran out or more
    closing tags than opening ones were seen.
    """
    open_tag = f"<{tag_name}"
    close_tag = f"</{tag_name}>"
    depth = 0
    index = start
    length = len(xml)

    while index < length:
        next_open = xml.find(open_tag, index)
        next_close = xml.find(close_tag, index)
        if next_open == -1 and next_close == -1:
            return None

        if next_open != -1 and (next_close == -1 or next_open < next_close):
            after = next_open + len(open_tag)
            if after < length and _is_tag_boundary(xml[after]):
                tag_end = xml.find(">", next_open)
                if tag_end == -1:
                    return None
                if xml[tag_end - 1] == "/":
                    # self-closing, depth unchanged
                    if depth == 0:
                        return xml[start : tag_end + 1]
                    index = tag_end + 1
                    continue
                depth += 1
                index = tag_end + 1
            else:
                # prefix collision such as <section> while balancing <sec>
                index = after
        else:
            depth -= 1
            if depth == 0:
                return xml[start : next_close + len(close_tag)]
            if depth < 0:
                return None
            index = next_close + len(close_tag)

    return None


def extract_article_xmls(xml: str) -> list[str]:
    """Split an efetch response into individual ``<article>`` documents."""
    articles: list[str] = []
    search_from = 0
    while search_from < len(xml):
        start = xml.find(_ARTICLE_OPEN, search_from)
        if start == -1:
            break
        after = start + len(_ARTICLE_OPEN)
        if after < len(xml) and _is_tag_boundary(xml[after]):
            article = extract_balanced_element(xml, start, "article")
            if article:
                articles.append(article)
                search_from = start + len(article)
                continue
        search_from = after
    return articles


def extract_pmcid(article_xml: str) -> str | None:
    """Read the article's own PMCID from its front matter."""
    match = _PMCID.search(article_xml)
    if match:
        return f"PMC{match.group(1)}"
    return None


def extract_methods_text(article_xml: str) -> str:
    """Plain text of the article's Methods section, or ``""`` when there is none."""
    section = find_methods_section_xml(article_xml)
    if not section:
        return ""
    return strip_xml_tags(section)


def find_methods_section_xml(article_xml: str) -> str | None:
    """Locate the first top-level body section that is a Methods section.

    Nested sections are skipped wholesale so that, say, a "Statistical
    methods" subsection under Results never wins over the real one.
    """
    body_match = _BODY_OPEN.search(article_xml)
    if body_match is None:
        return None
    body_start = body_match.start()
    body_end = article_xml.find(_BODY_CLOSE, body_start)
    if body_end == -1:
        return None
    body_xml = article_xml[body_start : body_end + len(_BODY_CLOSE)]

    position = body_xml.find(">") + 1
    while True:
        sec_match = _SEC_OPEN.search(body_xml, position)
        if sec_match is None:
            return None
        section = extract_balanced_element(body_xml, sec_match.start(), "sec")
        if section is None:
            position = sec_match.end()
            continue

        if _is_methods_sec_type(section):
            return section
        title = extract_first_title(section)
        if title and any(pattern.match(title) for pattern in METHODS_TITLE_PATTERNS):
            return section

        position = sec_match.start() + len(section)


def _is_methods_sec_type(section_xml: str) -> bool:
    match = _SEC_TYPE.match(section_xml)
    if not match:
        return False
    return match.group(1).strip().lower() in METHODS_SEC_TYPES


def extract_first_title(section_xml: str) -> str | None:
    """Title text belonging to the section itself, not to a nested subsection."""
    after_open = section_xml.find(">") + 1
    nested = _SEC_OPEN.search(section_xml, after_open)
    search_area = section_xml[: nested.start()] if nested else section_xml
    match = _TITLE.search(search_area)
    if not match:
        return None
    text = _ANY_TAG.sub("", match.group(1))
    return decode_entities(text).strip()


def decode_entities(text: str) -> str:
    """Decode the five XML named entities plus decimal and hex references in one pass."""

    def _replace(match: re.Match[str]) -> str:
        named, hex_code, dec_code = match.groups()
        if named:
            return _NAMED_ENTITIES[named]
        code = int(hex_code, 16) if hex_code else int(dec_code)
        try:
            return chr(code)
        except (ValueError, OverflowError):
            return match.group(0)

    return _ENTITY.sub(_replace, text)


def strip_xml_tags(xml: str) -> str:
    """Flatten section markup to plain text, keeping paragraph breaks."""
    text = _BLOCK_CLOSE.sub("\n\n", xml)
    text = _LINE_BREAK.sub("\n", text)
    text = _ANY_TAG.sub(" ", text)
    text = decode_entities(text)
    text = _HORIZONTAL_WS.sub(" ", text)
    text = _WS_AROUND_NEWLINE.sub("\n", text)
    text = _BLANK_LINES.sub("\n\n", text)
    return text.strip()
