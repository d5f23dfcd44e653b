"""
Static query data from a static site build.

Components declare their static query with `graphql(...)`, naming their own
component path. At build time the index of static query components
({id: {"componentPath": ..., "hash": ...}}) is stored with
`store_static_queries`; in tests `use_static_query` resolves a query to the
result file `<public>/static/d/<hash>.json` the build wrote for it.

Reads are synchronous because the hooks calling them are.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import orjson

from query_snapshot.errors.errors import BuildOutputError

DEFAULT_INDEX_FILE = Path(".testing-static-queries.json")


@dataclass(frozen=True)
class StaticQuery:
    """A static query and the component that declares it."""

    query_string: str
    component_path: str


def graphql(query_string: str, *, component_path: str) -> StaticQuery:
    if not component_path:
        raise ValueError("component_path must be a non-empty string")
    return StaticQuery(query_string=query_string, component_path=str(component_path))


def store_static_queries(
    components: Mapping[str, Mapping[str, Any]], path: Path = DEFAULT_INDEX_FILE
) -> None:
    """Write the static query component index."""
    Path(path).write_bytes(orjson.dumps(dict(components), option=orjson.OPT_SORT_KEYS))


def read_static_queries(path: Path = DEFAULT_INDEX_FILE) -> dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise BuildOutputError(
            "Could not find stored static queries. Have you run the build with "
            "static query storage configured?",
            path=str(path),
            component="static_queries",
        )
    return orjson.loads(path.read_bytes())


def query_hash_for_component(component_path: str, index: Mapping[str, Any]) -> str:
    components = list(index.values())
    for component in components:
        if component.get("componentPath") == component_path:
            return component["hash"]

    known = [str(c.get("componentPath")) for c in components]
    raise BuildOutputError(
        f"While getting static query data: Did not find component {component_path}, only: "
        + "\n".join(known)
        + "\nDo you need to re-run the build?",
        component="static_queries",
        details={"component_path": component_path},
    )


def get_query_result(
    query_hash: str, public_dir: Path = Path("public"), index_path: Path = DEFAULT_INDEX_FILE
) -> dict[str, Any]:
    path = Path(public_dir) / "static" / "d" / f"{query_hash}.json"
    if not path.exists():
        raise BuildOutputError(
            f"Cannot find {path}. The stored query data seem to be out of sync with the "
            f"build. Delete {index_path}, clean and rebuild.",
            path=str(path),
            component="static_queries",
        )
    return orjson.loads(path.read_bytes())


def use_static_query(
    query: StaticQuery,
    *,
    public_dir: Path = Path("public"),
    index_path: Path = DEFAULT_INDEX_FILE,
) -> Any:
    """Return the data of a static query from the build output."""
    if not isinstance(query, StaticQuery):
        raise TypeError(f"use_static_query expects a StaticQuery object. Got: {query!r}")

    query_hash = query_hash_for_component(query.component_path, read_static_queries(index_path))
    return get_query_result(query_hash, public_dir, index_path).get("data")
