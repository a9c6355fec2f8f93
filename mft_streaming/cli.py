"""Command line interface for mft_streaming."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from contextlib import ExitStack
from pathlib import Path
from typing import List, Optional, Sequence

from rich.logging import RichHandler
from rich.markup import escape

from . import __version__
from .cli_progress import (
    TransferProgressDisplay,
    render_configuration_summary,
    render_results,
    _echo,
)
from .config import ConfigError, UploadConfig, load_env_file
from .errors import TransferError
from .models import CompletionPolicy, UploadRequest
from .orchestrator import BatchSummary, StreamingClient
from .services.token_provider import TokenProvider


class CLIError(RuntimeError):
    """Raised when CLI validation/execution fails."""


def _setup_logging(debug: bool, silent: bool, log_level: Optional[str]) -> str:
    """
    Configure logging.

    Default behavior is silent unless --debug or --log-level is provided.
    Returns a string describing effective mode.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    logging.disable(logging.NOTSET)

    if silent or (not debug and not log_level):
        logging.disable(logging.CRITICAL)
        root_logger.setLevel(logging.CRITICAL + 1)
        return "silent"

    if debug:
        level = logging.DEBUG
    else:
        level = getattr(logging, log_level.upper(), logging.INFO)

    handler = RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_time=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    return logging.getLevelName(level)


def _resolve_default_env_file() -> Optional[Path]:
    default_env = Path(".env")
    return default_env if default_env.exists() and default_env.is_file() else None


def _mask(value: Optional[str]) -> str:
    return "***" if value else "(missing)"


def _build_requests(
    files: Sequence[Path],
    name: Optional[str],
    business_type_id: int,
    tenant_id: Optional[str],
    stack: ExitStack,
) -> List[UploadRequest]:
    if name and len(files) != 1:
        raise CLIError("--name can only be used with a single file")

    requests = []
    for path in files:
        if not path.is_file():
            raise CLIError(f"not a file: {path}")
        try:
            stream = stack.enter_context(path.open("rb"))
        except OSError as exc:
            raise CLIError(f"could not open {path}: {exc}") from exc
        requests.append(
            UploadRequest(
                name=name or path.name,
                business_type_id=business_type_id,
                content=stream,
                tenant_id=tenant_id,
            )
        )
    return requests


async def _run_token_check(config: UploadConfig) -> int:
    if not config.has_credentials:
        raise CLIError("MFT_CLIENT_ID and MFT_CLIENT_SECRET must be set")

    async with TokenProvider.from_config(config) as provider:
        credential = await provider.get_token()

    _echo(
        f"[green]Token issued[/green] for client {escape(config.client_id)} "
        f"(valid {credential.expires_in:.0f}s)"
    )
    return 0


async def _run_upload(
    files: Sequence[Path],
    name: Optional[str],
    business_type_id: int,
    tenant_id: Optional[str],
    policy: CompletionPolicy,
    config: UploadConfig,
) -> int:
    if not config.base_url:
        raise CLIError("MFT_BASE_URL environment variable is not set")

    display = TransferProgressDisplay()
    with ExitStack() as stack:
        requests = _build_requests(files, name, business_type_id, tenant_id, stack)

        async with StreamingClient(config) as client:
            client.orchestrator.on_transfer_start(display.on_transfer_start)
            client.orchestrator.on_transfer_complete(display.on_transfer_complete)
            client.orchestrator.on_transfer_fail(display.on_transfer_fail)

            if policy is CompletionPolicy.RACE:
                batch = await client.upload_many(requests, policy=policy)
                async for outcome in batch:
                    _echo(f"[bold]First completed:[/bold] {escape(outcome.request.name)}")
                    break
                outcomes = await batch.drain()
            else:
                outcomes = await client.upload_many(requests, policy=policy)

    summary = BatchSummary.from_outcomes(outcomes)
    render_results(summary)
    return 0 if summary.all_success else 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mft-upload",
        description="Upload files to the managed file-transfer backend.",
    )
    parser.add_argument("files", nargs="*", type=Path, help="Files to upload")
    parser.add_argument("-n", "--name", default=None, help="Remote file name (single file only)")
    parser.add_argument(
        "-b",
        "--business-type",
        type=int,
        default=0,
        help="Business type id the files are uploaded to (default: 0)",
    )
    parser.add_argument(
        "-t",
        "--tenant",
        default=None,
        help="Tenant id, only needed for multi-tenant tokens (default from MFT_TENANT_ID)",
    )
    parser.add_argument(
        "-p",
        "--policy",
        choices=[p.value for p in CompletionPolicy],
        default=CompletionPolicy.ALL.value,
        help="all: wait for every file; race: report the first finished file first",
    )
    parser.add_argument(
        "--token-only",
        action="store_true",
        help="Only retrieve a token from the identity endpoint",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from this .env file",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logs")
    parser.add_argument("--silent", action="store_true", help="Only print errors")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Explicit log level (DEBUG/INFO/WARNING/ERROR)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"mft-upload {__version__}",
    )
    return parser


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    used_env_file = args.env_file or _resolve_default_env_file()
    if used_env_file is not None:
        try:
            load_env_file(Path(used_env_file))
        except ConfigError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1

    effective_log_mode = _setup_logging(
        debug=args.debug,
        silent=args.silent,
        log_level=args.log_level,
    )

    if not args.files and not args.token_only:
        parser.print_help()
        return 0

    try:
        config = UploadConfig.from_env()
    except ConfigError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    tenant_id = args.tenant or config.tenant_id
    policy = CompletionPolicy(args.policy)
    render_configuration_summary(
        {
            "Files": ", ".join(str(f) for f in args.files) or "-",
            "Business Type": args.business_type,
            "Tenant": tenant_id or "-",
            "Policy": policy.value,
            "Upload API": config.base_url or "(missing)",
            "Identity API": config.authority_url,
            "Client Id": config.client_id or "(missing)",
            "Client Secret": _mask(config.client_secret),
            "Env File": str(used_env_file) if used_env_file else "-",
            "Logging": effective_log_mode,
        }
    )

    try:
        if args.token_only:
            return asyncio.run(_run_token_check(config))
        return asyncio.run(
            _run_upload(
                files=[Path(f).expanduser() for f in args.files],
                name=args.name,
                business_type_id=args.business_type,
                tenant_id=tenant_id,
                policy=policy,
                config=config,
            )
        )
    except (CLIError, TransferError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return 130


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
