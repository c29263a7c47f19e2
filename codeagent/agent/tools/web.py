"""URL fetch tool."""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from codeagent.agent.tools.base import Tool
from codeagent.session.models import ToolOutcome

DEFAULT_MAX_LENGTH = 10000
USER_AGENT = "Mozilla/5.0 (compatible; CodeAgent/1.0)"


class UrlFetchTool(Tool):
    """Fetch a web page and return readable text."""

    def __init__(
        self,
        max_length: int = DEFAULT_MAX_LENGTH,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._max_length = max_length
        self._timeout_s = timeout_s
        self._transport = transport

    @property
    def name(self) -> str:
        return "url_fetch"

    @property
    def description(self) -> str:
        return (
            "Fetch and extract content from web pages. Automatically converts HTML to readable text or "
            "markdown format. Useful for reading documentation, articles, and web content."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "URL to fetch content from"},
                "format": {
                    "type": "string",
                    "enum": ["text", "markdown", "raw"],
                    "description": "Output format (default: text)",
                },
                "max_length": {
                    "type": "integer",
                    "minimum": 1,
                    "description": f"Maximum content length in characters (default: {self._max_length})",
                },
            },
            "required": ["url"],
        }

    async def execute(
        self,
        *,
        url: str,
        format: str = "text",
        max_length: int | None = None,
        **kwargs: Any,
    ) -> ToolOutcome:
        if not url.startswith(("http://", "https://")):
            return ToolOutcome.failure(f"Unsupported URL scheme: {url}")

        limit = max_length or self._max_length
        logger.debug("url_fetch.start url={} format={}", url, format)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_s,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
                transport=self._transport,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            return ToolOutcome.failure(
                f"HTTP request failed with status: {e.response.status_code}",
                output={"url": url},
            )
        except httpx.HTTPError as e:
            logger.warning("url_fetch.failed url={} error={}", url, e)
            return ToolOutcome.failure(f"Failed to fetch URL: {e}", output={"url": url})

        body = response.text
        if "text/html" in response.headers.get("content-type", "") and format != "raw":
            body = html_to_text(body, base_url=url, keep_links=format == "markdown")

        if len(body) > limit:
            body = (
                body[:limit]
                + f"...\n\n[Content truncated: {len(body)} chars total, showing first {limit} chars]"
            )

        return ToolOutcome.success(
            {"url": url, "content": body, "format": format},
            f"Fetched content from {url} ({format} format)",
            detail=body,
        )


def html_to_text(html: str, base_url: str | None = None, keep_links: bool = False) -> str:
    """Extract human-readable text from raw HTML."""
    soup = BeautifulSoup(html, "html.parser")

    for tag in soup(["script", "style", "noscript", "template", "svg", "canvas"]):
        tag.decompose()

    if keep_links:
        for anchor in soup.find_all("a"):
            href = (anchor.get("href") or "").strip()
            if not href:
                continue
            label = anchor.get_text(" ", strip=True)
            absolute = urljoin(base_url, href) if base_url else href
            anchor.replace_with(f"[{label}]({absolute})" if label else absolute)

    title = soup.title.string.strip() if soup.title and soup.title.string else ""

    lines: list[str] = []
    for line in soup.get_text(separator="\n").splitlines():
        cleaned = re.sub(r"\s+", " ", line).strip()
        if cleaned:
            lines.append(cleaned)

    text = "\n".join(lines)
    if title and not text.startswith(title):
        return f"{title}\n\n{text}" if text else title
    return text
