from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Optional

from .constants import ENV_LOG_LEVEL
from .container import BoardContainer
from .errors import BoardError
from .logging_utils import configure_logging
from .report import format_task_detail


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _ctx(args: argparse.Namespace) -> BoardContainer:
    return BoardContainer(_resolve_project_dir(args.project_dir))


def _emit(payload: Any) -> int:
    sys.stdout.write(json.dumps(payload, indent=2) + '\n')
    return 0


def _ensure_labels(args: argparse.Namespace) -> int:
    created = _ctx(args).sync.ensure_labels(args.team, args.actor)
    return _emit({'created': created})


def _import(args: argparse.Namespace) -> int:
    result = _ctx(args).sync.import_all_from_external(args.team, args.actor)
    return _emit(result.to_dict())


def _export(args: argparse.Namespace) -> int:
    result = _ctx(args).sync.export_all_to_external(args.team, args.actor)
    return _emit(result.to_dict())


def _push(args: argparse.Namespace) -> int:
    mapping = _ctx(args).sync.sync_to_external(args.task_id, args.actor)
    return _emit({'mapping': mapping.to_dict()})


def _conflicts(args: argparse.Namespace) -> int:
    mappings = _ctx(args).sync.list_conflicts(args.team)
    return _emit({'conflicts': [m.to_dict() for m in mappings]})


def _show(args: argparse.Namespace) -> int:
    detail = _ctx(args).workflow.get_task_detail(args.task_id)
    if args.json:
        return _emit(detail)
    sys.stdout.write(format_task_detail(detail))
    return 0


def _server(args: argparse.Namespace) -> int:
    import uvicorn

    from .server import create_app

    app = create_app(project_dir=_resolve_project_dir(args.project_dir))
    uvicorn.run(app, host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Team board: consensus task lifecycle with GitHub issue sync')
    parser.add_argument('--project-dir', default=None, help='Directory holding .teamboard/ (default: current working directory)')
    parser.add_argument('--log-level', default=os.getenv(ENV_LOG_LEVEL, 'INFO'), help='Log level (default: INFO)')
    subparsers = parser.add_subparsers(dest='command', required=True)

    server = subparsers.add_parser('server', help='Start the web server')
    server.add_argument('--host', default='127.0.0.1')
    server.add_argument('--port', default=8000, type=int)
    server.add_argument('--reload', action='store_true')
    server.set_defaults(func=_server)

    labels = subparsers.add_parser('ensure-labels', help='Create missing status/priority labels in the team repository')
    labels.add_argument('--team', required=True)
    labels.add_argument('--actor', required=True, help='Member whose GitHub token is used')
    labels.set_defaults(func=_ensure_labels)

    imp = subparsers.add_parser('import', help='Import every unlinked issue of the team repository')
    imp.add_argument('--team', required=True)
    imp.add_argument('--actor', required=True)
    imp.set_defaults(func=_import)

    exp = subparsers.add_parser('export', help='Open an issue for every unlinked task of the team')
    exp.add_argument('--team', required=True)
    exp.add_argument('--actor', required=True)
    exp.set_defaults(func=_export)

    push = subparsers.add_parser('push', help='Push one task to its linked issue')
    push.add_argument('task_id')
    push.add_argument('--actor', required=True)
    push.set_defaults(func=_push)

    show = subparsers.add_parser('show', help='Show a task with its consensus and sync state')
    show.add_argument('task_id')
    show.add_argument('--json', action='store_true', help='Print the raw detail as JSON')
    show.set_defaults(func=_show)

    conflicts = subparsers.add_parser('conflicts', help='List mappings waiting for conflict resolution')
    conflicts.add_argument('--team', required=True)
    conflicts.set_defaults(func=_conflicts)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    try:
        return int(args.func(args))
    except BoardError as exc:
        sys.stderr.write(f"{type(exc).__name__}: {exc.message}\n")
        return 1


if __name__ == '__main__':
    raise SystemExit(main())
