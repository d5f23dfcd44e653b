"""
Page query data from a static site build.

The build writes the result of each page's query to
`<public>/page-data/<page path>/page-data.json` as {"result": {"data": ...}}.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import orjson

from query_snapshot.errors.errors import BuildOutputError

PAGE_DATA_DIR = "page-data"
PAGE_DATA_FILE = "page-data.json"


def page_data_file(page_path: str, public_dir: Path = Path("public")) -> Path:
    """Return the page data file of `page_path`, checking it exists."""
    root = Path(public_dir) / PAGE_DATA_DIR
    path = root / page_path.strip("/") / PAGE_DATA_FILE

    if path.exists():
        return path
    if not root.is_dir():
        raise BuildOutputError(
            f"Expected the directory {root} to exist, but it did not. Have you run the build?",
            path=str(root),
            component="page_data",
        )
    known = sorted(p.name for p in root.iterdir() if p.is_dir())
    raise BuildOutputError(
        f'The page path "{page_path}" page query data was requested for is unknown. '
        f"Known paths: {', '.join(known)}",
        path=str(path),
        component="page_data",
        details={"known_paths": known},
    )


def page_data_to_query_data(page_data: Any, page_path: str) -> Any:
    """Extract result.data from the page data the build stored for a page."""
    result = page_data.get("result") if isinstance(page_data, dict) else None
    if isinstance(result, dict) and result.get("data"):
        return result["data"]
    if result:
        raise BuildOutputError(
            f"The page query for {page_path} was not available. "
            "The query was probably invalid. Check the output of the build.",
            component="page_data",
        )
    keys = list(page_data) if isinstance(page_data, dict) else []
    raise BuildOutputError(
        f"Expected the page data for {page_path} to contain the key result.data, "
        f"but it did not. Top-level keys: {', '.join(keys)}.",
        component="page_data",
        details={"keys": keys},
    )


def get_page_query_data(page_path: str, public_dir: Path = Path("public")) -> Any:
    """Return the result of the page query of `page_path`. Assumes the build has run."""
    path = page_data_file(page_path, public_dir)
    try:
        page_data = orjson.loads(path.read_bytes())
    except orjson.JSONDecodeError as e:
        raise BuildOutputError(
            f"Page data for {page_path} is not valid JSON: {e}",
            path=str(path),
            component="page_data",
        ) from e
    return page_data_to_query_data(page_data, page_path)


async def get_page_query_data_async(page_path: str, public_dir: Path = Path("public")) -> Any:
    return await asyncio.to_thread(get_page_query_data, page_path, public_dir)
