"""CLI entry point: python -m tsconsole <command>

Connection settings come from the ``TYPESENSE_*`` environment variables
(see :meth:`tsconsole.config.ClientConfig.from_env`).
"""

import argparse
import dataclasses
import json
import logging
import sys

from tsconsole.client import IMPORT_ACTIONS, TypesenseClient
from tsconsole.config import ClientConfig
from tsconsole.logging import bind_request_id, configure_logging
from tsconsole.models import SearchParameters, TypesenseError
from tsconsole.results import SearchPage
from tsconsole.search import SelectedFacets, build_search_parameters


def _parse_facet(raw: str) -> tuple[str, str]:
    field_name, sep, value = raw.partition("=")
    if not sep or not field_name:
        raise argparse.ArgumentTypeError(f"expected FIELD=VALUE, got {raw!r}")
    return field_name, value


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tsconsole",
        description="Query and administer a Typesense cluster",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable DEBUG-level logging to stderr"
    )
    parser.add_argument(
        "--json-log", action="store_true", help="Emit JSON log lines (default: text)"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("health", help="Check node liveness")
    sub.add_parser("collections", help="List collections")
    sub.add_parser("stats", help="Show server stats")

    collection = sub.add_parser("collection", help="Show one collection schema")
    collection.add_argument("name")

    search = sub.add_parser("search", help="Search a collection")
    search.add_argument("collection")
    search.add_argument("query", nargs="?", default="", help="Free-text query")
    search.add_argument("--query-by", default="", help="Comma-separated fields to search")
    search.add_argument("--filter", default=None, help="Base filter_by expression")
    search.add_argument("--facet-by", default=None, help="Comma-separated facet fields")
    search.add_argument(
        "--facet",
        type=_parse_facet,
        action="append",
        default=[],
        metavar="FIELD=VALUE",
        help="Restrict to a facet value (repeatable)",
    )
    search.add_argument("--sort-by", default=None)
    search.add_argument("--page", type=int, default=1)
    search.add_argument("--per-page", type=int, default=10)

    imp = sub.add_parser("import", help="Bulk import a JSONL file")
    imp.add_argument("collection")
    imp.add_argument("file", type=argparse.FileType("r"), help="JSONL file, '-' for stdin")
    imp.add_argument("--action", choices=IMPORT_ACTIONS, default="upsert")

    return parser


def _run(args: argparse.Namespace, client: TypesenseClient) -> object:
    if args.command == "health":
        return {"ok": client.health()}
    if args.command == "collections":
        return [c.to_dict() for c in client.list_collections()]
    if args.command == "stats":
        return client.stats()
    if args.command == "collection":
        return client.get_collection(args.name).to_dict()
    if args.command == "import":
        with args.file as source:
            documents = [json.loads(line) for line in source if line.strip()]
        results = client.import_documents(args.collection, documents, action=args.action)
        return [dataclasses.asdict(r) for r in results]

    selected = SelectedFacets()
    for field_name, value in args.facet:
        selected.select(field_name, value)
    params = build_search_parameters(
        args.collection,
        SearchParameters(
            q=args.query,
            query_by=args.query_by,
            filter_by=args.filter,
            facet_by=args.facet_by,
            sort_by=args.sort_by,
            page=args.page,
            per_page=args.per_page,
        ),
        selected,
    )
    page = SearchPage.from_response(client.search(args.collection, params))
    return {
        "summary": page.summary,
        "total_pages": page.total_pages,
        "filter_by": params.filter_by,
        **dataclasses.asdict(page),
    }


def main() -> None:
    args = _build_parser().parse_args()

    level = logging.DEBUG if args.verbose else logging.WARNING
    configure_logging(level=level, json_format=args.json_log)
    bind_request_id()

    try:
        with TypesenseClient(ClientConfig.from_env()) as client:
            output = _run(args, client)
    except (TypesenseError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(output, indent=2, default=str))


if __name__ == "__main__":
    main()
