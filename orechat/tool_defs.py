# orechat/tool_defs.py
import json
import logging
from datetime import datetime
from typing import Dict, List
from urllib.parse import parse_qs, urljoin, urlparse

import httpx
from bs4 import BeautifulSoup
from pydantic import ValidationError

from orechat.data_models import (
    ParameterSchema,
    PropertySchema,
    SearchResult,
    Tool,
    WebReaderArgs,
    WebSearchArgs,
)

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/142.0.0.0 Safari/537.36"
)
DUCKDUCKGO_HTML_URL = "https://html.duckduckgo.com/html/"
SEARCH_MAX_RESULTS = 10


def _http_client() -> httpx.Client:
    # One client per invocation; nothing is pooled between tool calls.
    return httpx.Client(follow_redirects=True)


def describe_error(exc: Exception) -> str:
    """Error text handed back to the model as ordinary tool output."""
    return f"{type(exc).__name__}: {exc}"


def current_time(_arguments: str) -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


def _unwrap_duckduckgo_link(href: str) -> str:
    """DuckDuckGo wraps result links as /l/?uddg=<target>; return the target."""
    absolute = urljoin(DUCKDUCKGO_HTML_URL, href)
    parsed = urlparse(absolute)
    if parsed.path.startswith("/l/"):
        target = parse_qs(parsed.query).get("uddg")
        if target:
            return target[0]
    return absolute


def parse_search_results(html: str, max_results: int = SEARCH_MAX_RESULTS) -> List[SearchResult]:
    soup = BeautifulSoup(html, "html.parser")
    results: List[SearchResult] = []
    for block in soup.select(".result"):
        if len(results) >= max_results:
            break
        classes = block.get("class") or []
        if "result--ad" in classes:
            continue
        anchor = block.select_one("a.result__a")
        if anchor is None or not anchor.get("href"):
            continue
        snippet = block.select_one(".result__snippet")
        results.append(SearchResult(
            title=anchor.get_text(" ", strip=True),
            link=_unwrap_duckduckgo_link(anchor["href"]),
            snippet=snippet.get_text(" ", strip=True) if snippet else "",
        ))
    return results


def web_search(arguments: str) -> str:
    # NOTE: scrapes DuckDuckGo's HTML page; the markup is not a stable API.
    try:
        params = WebSearchArgs.model_validate_json(arguments)
    except ValidationError as e:
        return str(e)

    try:
        with _http_client() as client:
            response = client.post(
                DUCKDUCKGO_HTML_URL,
                data={"q": params.keyword},
                headers={"User-Agent": USER_AGENT},
            )
            response.raise_for_status()
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.info(f"webSearch failed for {params.keyword!r}: {e}")
        return describe_error(e)

    results = parse_search_results(response.text)
    return json.dumps([r.model_dump() for r in results], ensure_ascii=False)


def web_reader(arguments: str) -> str:
    try:
        params = WebReaderArgs.model_validate_json(arguments)
    except ValidationError as e:
        return str(e)

    try:
        with _http_client() as client:
            response = client.get(params.url, headers={"User-Agent": USER_AGENT})
            return response.text
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.info(f"WebReader failed for {params.url!r}: {e}")
        return describe_error(e)


TOOLS = (
    Tool(
        name="currentTime",
        description="Get the current date and time with timezone in a human-readable format.",
        handler=current_time,
    ),
    Tool(
        name="webSearch",
        description="Search the web for a keyword and return the top results as JSON (title, link, snippet).",
        parameters=ParameterSchema(
            properties={
                "keyword": PropertySchema(type="string", description="web search keyword."),
            },
            required=["keyword"],
        ),
        handler=web_search,
    ),
    Tool(
        name="WebReader",
        description="Reads and returns the content from the specified URL",
        parameters=ParameterSchema(
            properties={
                "url": PropertySchema(type="string", description="URL of the page to retrieve"),
            },
            required=["url"],
        ),
        handler=web_reader,
    ),
)

TOOLS_BY_NAME: Dict[str, Tool] = {tool.name: tool for tool in TOOLS}


def tools_for_litellm(tools=TOOLS) -> List[Dict]:
    return [tool.to_litellm() for tool in tools]


def execute_tool(name: str, arguments: str, tools_by_name: Dict[str, Tool] = TOOLS_BY_NAME) -> str:
    """
    Runs the named tool with its raw JSON argument string and returns the result text.
    Never raises: failures come back as text the model can read.
    """
    tool = tools_by_name.get(name)
    if tool is None:
        return f"Unknown function: {name}"
    try:
        return tool.handler(arguments)
    except Exception as e:
        logger.exception(f"Tool {name} raised")
        return f"Error executing {name}: {str(e)}"
