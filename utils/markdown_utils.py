import html

import markdown
from markdown.extensions import Extension
from markdown.inlinepatterns import InlineProcessor
from markdown.treeprocessors import Treeprocessor
from urllib.parse import urlsplit
from xml.etree.ElementTree import Element

# r/python, u/someone; not inside a longer path or word
COMMUNITY_LINK_RE = r"(?<![\w/])(r|u)/([A-Za-z0-9_-]{3,21})"

SAFE_SCHEMES = ("http", "https", "mailto")


def is_safe_url(url: str) -> bool:
    """Relative links and http(s)/mailto only."""
    # Attribute entities are kept as written and decoded by the browser
    url = html.unescape(url)
    # Browsers ignore leading whitespace and control characters
    url = url.lstrip("".join(chr(c) for c in range(33)))
    try:
        scheme = urlsplit(url).scheme.lower()
    except ValueError:
        return False
    return not scheme or scheme in SAFE_SCHEMES


class CommunityLinkProcessor(InlineProcessor):
    def handleMatch(self, m, data):
        """Turn `r/name` and `u/name` into relative links."""
        el = Element("a", {"href": f"/{m.group(1)}/{m.group(2)}"})
        el.text = f"{m.group(1)}/{m.group(2)}"
        return el, m.start(0), m.end(0)


class CustomMarkdownProcessor(Treeprocessor):
    def run(self, root):
        """Post-process Markdown-generated HTML"""
        self.wrap_tables(root)
        self.mark_external_links(root)

    def wrap_tables(self, root):
        """Wrap <table> elements inside a scroll container."""
        tables = list(root.iter("table"))
        for table in tables:
            parent = self.find_parent(root, table)
            if parent is not None:
                index = list(parent).index(table)
                parent.remove(table)
                wrapper = Element("div", {"class": "md-table"})
                wrapper.append(table)
                parent.insert(index, wrapper)

    def mark_external_links(self, root):
        """User-submitted absolute links get rel=nofollow; unsafe schemes are dropped."""
        unescape = self.md.treeprocessors["unescape"].unescape
        for el in root.iter():
            for attr in ("href", "src"):
                value = el.get(attr)
                # Backslash escapes are still placeholders at this stage
                if value is not None and not is_safe_url(unescape(value)):
                    del el.attrib[attr]
        for link in root.iter("a"):
            href = link.get("href", "")
            if href.startswith(("http://", "https://")):
                link.set("rel", "nofollow ugc noopener")
                link.set("target", "_blank")

    def find_parent(self, root, child):
        """Finds the parent of an XML element."""
        for parent in root.iter():
            if child in list(parent):
                return parent
        return None


class CustomMarkdownExtension(Extension):
    def extendMarkdown(self, md):
        # Raw HTML from users is rendered as text
        md.preprocessors.deregister("html_block")
        md.inlinePatterns.deregister("html")
        md.inlinePatterns.register(CommunityLinkProcessor(COMMUNITY_LINK_RE, md), "community_link", 15)
        md.treeprocessors.register(CustomMarkdownProcessor(md), "custom_markdown", 15)


def convert_markdown(md_text: str) -> str:
    """Convert post/comment Markdown to HTML with custom processing."""
    if not md_text:
        return ""
    extensions = [
        "tables",
        "fenced_code",
        "sane_lists",
        CustomMarkdownExtension(),
    ]
    return markdown.markdown(md_text, extensions=extensions)
