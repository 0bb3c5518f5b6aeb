import argparse
import sys
from typing import List, Optional

from bqremote.backend.services.builtin_functions import build_default_registry
from bqremote.backend.services.deployment import (
    DEFAULT_ENTRY_POINT,
    DEFAULT_RUNTIME,
    DeploymentTarget,
    build_connection_command,
    build_create_function_ddl,
    build_functions_deploy_command,
    build_run_deploy_command,
    context_from_json,
    format_command,
)
from bqremote.backend.services.errors import UnknownFunctionError


def _add_target_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("service_name", help="デプロイするサービス名")
    parser.add_argument("--region", default="asia-northeast1")
    parser.add_argument("--project", default=None)
    parser.add_argument("--source", default=".")
    parser.add_argument(
        "--allow-unauthenticated",
        action="store_true",
        help="未認証の呼び出しを許可する (BigQuery 連携では通常不要)",
    )
    parser.add_argument("--memory", default=None)
    parser.add_argument("--timeout", default=None)
    parser.add_argument("--max-instances", type=int, default=None)


def _target_from_args(args: argparse.Namespace) -> DeploymentTarget:
    return DeploymentTarget(
        service_name=args.service_name,
        region=args.region,
        project=args.project,
        runtime=getattr(args, "runtime", DEFAULT_RUNTIME),
        entry_point=getattr(args, "entry_point", DEFAULT_ENTRY_POINT),
        source=args.source,
        allow_unauthenticated=args.allow_unauthenticated,
        memory=args.memory,
        timeout=args.timeout,
        max_instances=args.max_instances,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="BigQuery リモート関数のデプロイ用コマンド / DDL を生成します"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    functions_parser = subparsers.add_parser(
        "functions", help="gcloud functions deploy コマンドを出力"
    )
    _add_target_arguments(functions_parser)
    functions_parser.add_argument("--runtime", default=DEFAULT_RUNTIME)
    functions_parser.add_argument("--entry-point", default=DEFAULT_ENTRY_POINT)

    run_parser = subparsers.add_parser("run", help="gcloud run deploy コマンドを出力")
    _add_target_arguments(run_parser)

    connection_parser = subparsers.add_parser(
        "connection", help="bq mk --connection コマンドを出力"
    )
    connection_parser.add_argument("connection_id")
    connection_parser.add_argument("--location", default="asia-northeast1")
    connection_parser.add_argument("--project", default=None)

    ddl_parser = subparsers.add_parser("ddl", help="CREATE FUNCTION 文を出力")
    ddl_parser.add_argument("function", help="登録済みの関数名")
    ddl_parser.add_argument("--dataset", required=True, help="project.dataset")
    ddl_parser.add_argument(
        "--connection", required=True, help="project.location.connection_id"
    )
    ddl_parser.add_argument("--endpoint", required=True)
    ddl_parser.add_argument("--sql-name", default=None)
    ddl_parser.add_argument("--arg-count", type=int, default=None)
    ddl_parser.add_argument("--max-batching-rows", type=int, default=None)
    ddl_parser.add_argument(
        "--context",
        default=None,
        help='user_defined_context を JSON で指定 (例: {"function": "add_integers"})',
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "functions":
            print(format_command(build_functions_deploy_command(_target_from_args(args))))
        elif args.command == "run":
            print(format_command(build_run_deploy_command(_target_from_args(args))))
        elif args.command == "connection":
            print(
                format_command(
                    build_connection_command(
                        args.connection_id, location=args.location, project=args.project
                    )
                )
            )
        else:
            function = build_default_registry().get(args.function)
            print(
                build_create_function_ddl(
                    function,
                    dataset=args.dataset,
                    connection=args.connection,
                    endpoint=args.endpoint,
                    sql_name=args.sql_name,
                    arg_count=args.arg_count,
                    max_batching_rows=args.max_batching_rows,
                    user_defined_context=context_from_json(args.context),
                )
            )
    except (ValueError, UnknownFunctionError) as exc:
        print(f"❌ {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
