import re
from enum import Enum
from typing import Optional

from bs4 import BeautifulSoup, Comment
from markdownify import ATX, BACKSLASH, markdownify


class TextFormat(Enum):
    HTML = "html"
    MARKDOWN = "markdown"

    @classmethod
    def from_string(cls, value: Optional[str]) -> "TextFormat":
        if not value:
            return cls.HTML
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Unknown text format '{value}'. Expected one of: {', '.join(f.value for f in cls)}")


class HTMLConverter:
    def __init__(self, config=None):
        """
        Converts chapter HTML as scraped from a site into the archive's text format.
        Config might be used in the future to customize cleaning rules.
        """
        self.config = config if config else {}
        self.default_tags_to_remove = ['script', 'style', 'link', 'meta', 'noscript', 'form', 'iframe', 'button', 'input']
        self.default_attributes_to_remove = [
            'style', 'onclick', 'onerror', 'onload', 'onmouseover', 'onmouseout',
            'data-reactid', 'data-testid',
            'jsaction', 'jscontroller', 'jsmodel', 'jsname',
        ]

    def clean_html(self, raw_html: str) -> BeautifulSoup:
        """Removes scripts, styles and event/tracking attributes, keeping the markup otherwise intact."""
        soup = BeautifulSoup(raw_html or "", 'html.parser')

        for tag_name in self.default_tags_to_remove:
            for tag in soup.find_all(tag_name):
                tag.decompose()

        for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
            comment.extract()

        for tag in soup.find_all(True):
            for attr in [a for a in tag.attrs if a in self.default_attributes_to_remove]:
                del tag[attr]

        return soup

    def convert(self, raw_html: str, text_format: TextFormat = TextFormat.HTML) -> str:
        soup = self.clean_html(raw_html)
        if text_format == TextFormat.HTML:
            return str(soup).strip()
        return self._to_markdown(soup)

    def _to_markdown(self, soup: BeautifulSoup) -> str:
        text = markdownify(str(soup), heading_style=ATX, bullets="-", newline_style=BACKSLASH)
        # markdownify leaves a blank line around every block element
        text = re.sub(r'[ \t]+\n', '\n', text)
        text = re.sub(r'\n{3,}', '\n\n', text)
        return text.strip()
