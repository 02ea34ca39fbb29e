"""CLI entry point: python main.py serve --port 8000"""

import argparse
import sys

from pmsy.access.registry import PolicyConfigurationError
from pmsy.settings import get_settings


def _serve(args) -> int:
    import uvicorn

    from pmsy.api.app import create_app

    uvicorn.run(create_app(), host=args.host, port=args.port)
    return 0


def _check_policies(args) -> int:
    from pmsy.api.app import load_registry

    settings = get_settings()
    try:
        registry = load_registry(settings)
    except (PolicyConfigurationError, OSError) as exc:
        print(f"Policy configuration invalid: {exc}", file=sys.stderr)
        return 1

    print("=" * 60)
    print(f"POLICIES ({settings.policy_file or 'built-in'})")
    print("=" * 60)
    for table in sorted(registry):
        entry = registry.lookup(table)
        membership = entry.membership
        print(
            f"  {table:<22} admin={','.join(sorted(entry.admin_roles)):<8} "
            f"owner={entry.owner_column or '-':<12} "
            f"member={membership.join_table + '.' + membership.record_column if membership else '-'}"
        )
    print(f"\n{len(registry)} tables; any other table is admin-only")
    return 0


def _create_schema(args) -> int:
    from pmsy.db import Base, get_sync_engine

    Base.metadata.create_all(get_sync_engine())
    print("Schema created")
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="PMSY - project management REST backend"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    serve.set_defaults(handler=_serve)

    check = commands.add_parser("check-policies", help="Validate and print the access policies")
    check.set_defaults(handler=_check_policies)

    schema = commands.add_parser(
        "create-schema", help="Create the core tables directly (development only)"
    )
    schema.set_defaults(handler=_create_schema)

    args = parser.parse_args()
    sys.exit(args.handler(args))


if __name__ == "__main__":
    main()
