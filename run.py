import asyncio
import json
import os
import sys
from typing import Dict, List, Optional, Tuple
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from agentforge.builder import BuildRequest, BuildService, CollectingSink
from agentforge.errors import BuildError
from agentforge.generation import FixtureGenerator
from agentforge.logger import log

EXIT_CODES = {"complete": 0, "error": 2, "timeout": 3}
OPERATIONS = {"create", "update", "extend", "resume"}


def _parse_cli_args(args: List[str]) -> Tuple[Dict[str, object], List[str]]:
    """Parse CLI-style ``--key value`` pairs and return remaining positional args."""

    cli_params: Dict[str, object] = {}
    residual: List[str] = []

    i = 0
    while i < len(args):
        token = args[i]
        if token.startswith("--") and len(token) > 2:
            key = token[2:].strip().replace("-", "_")
            value: object = True
            if i + 1 < len(args) and not args[i + 1].startswith("--"):
                value = args[i + 1]
                i += 2
            else:
                i += 1
            cli_params[key] = value
        else:
            residual.append(token)
            i += 1

    return cli_params, residual


def _print_usage() -> None:
    usage = (
        "Usage:\n"
        "  python run.py build --command \"<request>\" [--operation create|update|extend|resume]\n"
        "                      [--document-id <id>] [--context-file <document.json>]\n"
        "                      [--fixtures <phase_outputs.json>] [--events]\n"
    )
    print(usage.strip())


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8") as handle:
        return handle.read()


def _make_generator(fixtures_path: Optional[str]):
    if fixtures_path:
        return FixtureGenerator(json.loads(_read_text(fixtures_path)))
    from agentforge.generation.openai_generator import OpenAIGenerator

    return OpenAIGenerator()


def main(argv: list[str] | None = None) -> int:
    args = argv if argv is not None else sys.argv[1:]
    if not args or args[0] != "build":
        _print_usage()
        return 1

    cli_params, residual = _parse_cli_args(args[1:])
    if residual:
        print(f"[build error] Unexpected arguments: {' '.join(residual)}", file=sys.stderr)
        return 1

    for key in ("command", "operation", "document_id", "context_file", "fixtures"):
        if cli_params.get(key) is True:
            print(f"[build error] --{key.replace('_', '-')} flag requires a value.", file=sys.stderr)
            return 1

    operation = str(cli_params.get("operation") or "create")
    if operation not in OPERATIONS:
        print(f"[build error] Unknown operation '{operation}'.", file=sys.stderr)
        return 1

    try:
        context = _read_text(str(cli_params["context_file"])) if "context_file" in cli_params else None
        generator = _make_generator(cli_params.get("fixtures"))
    except (OSError, ValueError) as exc:
        print(f"[build error] {exc}", file=sys.stderr)
        return 1

    request = BuildRequest(
        command=str(cli_params.get("command") or ""),
        operation=operation,
        context=context,
        document_id=cli_params.get("document_id"),
    )
    sink = CollectingSink()
    log("[build] starting", operation=operation, document_id=request.document_id)

    try:
        result = asyncio.run(BuildService(generator).build(request, sink=sink))
    except BuildError as exc:
        print(f"[build error] {type(exc).__name__}: {exc}", file=sys.stderr)
        return 2

    output = result.to_wire()
    if cli_params.get("events"):
        output["events"] = [event.to_wire() for event in sink.events]
    print(json.dumps(output, indent=2))
    return EXIT_CODES.get(result.status, 2)


if __name__ == "__main__":
    sys.exit(main())
