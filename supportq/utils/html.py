"""HTML-to-text conversion for email bodies.

Support requests sent from web forms and some mail clients arrive as
HTML-only messages with no text/plain part. The proposer works on plain
text, so block structure is turned into line breaks and list items into
"- " bullets before the markup is dropped.
"""

from __future__ import annotations

import re

from bs4 import BeautifulSoup

_HEADINGS = ["h1", "h2", "h3", "h4", "h5", "h6"]


def html_to_text(html: str) -> str:
    """Convert an HTML email body to plain text.

    <br> becomes a newline, paragraphs and headings end with a blank line,
    divs end with a newline, <li> starts a "- " bullet. Entities are
    decoded and runs of 3+ newlines collapse to one blank line.
    """
    if not html:
        return ""

    soup = BeautifulSoup(html, "html.parser")

    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for li in soup.find_all("li"):
        li.insert_before("\n- ")
    for block in soup.find_all(["p", *_HEADINGS]):
        block.append("\n\n")
    for div in soup.find_all("div"):
        div.append("\n")

    text = soup.get_text().replace("\xa0", " ")
    lines = [re.sub(r"[ \t]+", " ", line).strip() for line in text.splitlines()]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()
