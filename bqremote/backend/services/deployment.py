"""Build the gcloud / bq commands and DDL needed to publish a remote function.

Nothing here talks to Google Cloud; the results are meant to be printed,
reviewed and run by hand (or pasted into the BigQuery console).
"""

from __future__ import annotations

import json
import re
import shlex
from dataclasses import dataclass
from typing import List, Mapping, Optional

from .registry import RemoteFunction

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_PROJECT_ID = re.compile(r"^[a-z][a-z0-9-]{4,28}[a-z0-9]$")
_SERVICE_NAME = re.compile(r"^[a-z]([a-z0-9-]{0,61}[a-z0-9])?$")

DEFAULT_RUNTIME = "python312"
DEFAULT_ENTRY_POINT = "remote_function_handler"


@dataclass
class DeploymentTarget:
    service_name: str
    region: str = "asia-northeast1"
    project: Optional[str] = None
    runtime: str = DEFAULT_RUNTIME
    entry_point: str = DEFAULT_ENTRY_POINT
    source: str = "."
    allow_unauthenticated: bool = False
    memory: Optional[str] = None
    timeout: Optional[str] = None
    max_instances: Optional[int] = None

    def validate(self) -> None:
        if not _SERVICE_NAME.match(self.service_name):
            raise ValueError(f"invalid service name: {self.service_name!r}")
        if self.project is not None and not _PROJECT_ID.match(self.project):
            raise ValueError(f"invalid project id: {self.project!r}")
        if self.max_instances is not None and self.max_instances < 1:
            raise ValueError("max_instances must be a positive integer")


def _common_flags(target: DeploymentTarget) -> List[str]:
    flags = [f"--region={target.region}"]
    if target.project:
        flags.append(f"--project={target.project}")
    if target.allow_unauthenticated:
        flags.append("--allow-unauthenticated")
    else:
        flags.append("--no-allow-unauthenticated")
    if target.memory:
        flags.append(f"--memory={target.memory}")
    if target.timeout:
        flags.append(f"--timeout={target.timeout}")
    if target.max_instances is not None:
        flags.append(f"--max-instances={target.max_instances}")
    return flags


def build_functions_deploy_command(target: DeploymentTarget) -> List[str]:
    target.validate()
    return [
        "gcloud",
        "functions",
        "deploy",
        target.service_name,
        "--gen2",
        f"--runtime={target.runtime}",
        f"--source={target.source}",
        f"--entry-point={target.entry_point}",
        "--trigger-http",
        *_common_flags(target),
    ]


def build_run_deploy_command(target: DeploymentTarget) -> List[str]:
    target.validate()
    return [
        "gcloud",
        "run",
        "deploy",
        target.service_name,
        f"--source={target.source}",
        *_common_flags(target),
    ]


def build_connection_command(
    connection_id: str, location: str = "asia-northeast1", project: Optional[str] = None
) -> List[str]:
    if not _IDENTIFIER.match(connection_id):
        raise ValueError(f"invalid connection id: {connection_id!r}")
    command = [
        "bq",
        "mk",
        "--connection",
        f"--location={location}",
        "--connection_type=CLOUD_RESOURCE",
    ]
    if project:
        command.append(f"--project_id={project}")
    command.append(connection_id)
    return command


def format_command(command: List[str]) -> str:
    return " ".join(shlex.quote(part) for part in command)


def _quote_sql_string(value: str) -> str:
    escaped = (
        value.replace("\\", "\\\\")
        .replace("'", "\\'")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return f"'{escaped}'"


def _check_path(path: str, kind: str, parts: int) -> str:
    pieces = path.split(".")
    if len(pieces) > parts or not all(pieces):
        raise ValueError(f"invalid {kind}: {path!r}")
    for piece in pieces:
        if not re.match(r"^[A-Za-z0-9_-]+$", piece):
            raise ValueError(f"invalid {kind}: {path!r}")
    return path


def build_create_function_ddl(
    function: RemoteFunction,
    *,
    dataset: str,
    connection: str,
    endpoint: str,
    sql_name: Optional[str] = None,
    arg_count: Optional[int] = None,
    max_batching_rows: Optional[int] = None,
    user_defined_context: Optional[Mapping[str, str]] = None,
) -> str:
    """Render CREATE OR REPLACE FUNCTION ... REMOTE WITH CONNECTION ..."""

    _check_path(dataset, "dataset", 2)
    _check_path(connection, "connection", 3)
    name = sql_name or function.name
    if not _IDENTIFIER.match(name):
        raise ValueError(f"invalid function name: {name!r}")
    if not endpoint.startswith("https://"):
        raise ValueError("endpoint must be an https:// URL")
    if max_batching_rows is not None and max_batching_rows < 1:
        raise ValueError("max_batching_rows must be a positive integer")
    arg_types = list(function.arg_types)
    if arg_count is not None:
        if not function.variadic and arg_count != len(arg_types):
            raise ValueError(f"{function.name} takes exactly {len(arg_types)} arguments")
        if arg_count < len(arg_types):
            raise ValueError(f"{function.name} takes at least {len(arg_types)} arguments")
        # SQL 側の引数は固定長なので、可変長の最後の型を必要な数だけ並べる
        arg_types += [arg_types[-1]] * (arg_count - len(arg_types))

    params = ", ".join(
        f"x{index} {arg_type.value}" for index, arg_type in enumerate(arg_types)
    )
    options = [f"endpoint = {_quote_sql_string(endpoint)}"]
    if user_defined_context:
        entries = ", ".join(
            f"({_quote_sql_string(str(key))}, {_quote_sql_string(str(value))})"
            for key, value in user_defined_context.items()
        )
        options.append(f"user_defined_context = [{entries}]")
    if max_batching_rows is not None:
        options.append(f"max_batching_rows = {max_batching_rows}")

    lines = [
        f"CREATE OR REPLACE FUNCTION `{dataset}.{name}`({params})",
        f"RETURNS {function.return_type.value}",
        f"REMOTE WITH CONNECTION `{connection}`",
        "OPTIONS (",
        ",\n".join(f"  {option}" for option in options),
        ")",
    ]
    return "\n".join(lines)


def context_from_json(raw: Optional[str]) -> Optional[dict]:
    if not raw:
        return None
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("user_defined_context must be a JSON object")
    return {str(key): str(value) for key, value in data.items()}
