from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import timedelta
from typing import Any

from timekeeper import db
from timekeeper.config import settings
from timekeeper.logging_config import configure_logging
from timekeeper.services import Services, build_services
from timekeeper.sync.results import SyncOptions


def _positive_int(raw: str) -> int:
  try:
    value = int(raw)
  except ValueError:
    raise argparse.ArgumentTypeError(f"invalid int value: {raw!r}") from None
  if value < 1:
    raise argparse.ArgumentTypeError("must be at least 1")
  return value


def _add_option_args(p: argparse.ArgumentParser) -> None:
  p.add_argument("--force", action="store_true", help="sync every active integration regardless of age")
  p.add_argument("--max-age-minutes", type=int, default=None)
  p.add_argument("--concurrency", type=_positive_int, default=None, help="max simultaneous syncs per provider")
  p.add_argument("--skip-test", action="store_true", help="skip the connection pre-test")
  p.add_argument("--timeout", type=float, default=None, help="per-integration timeout in seconds (0 disables)")


def _options(args: argparse.Namespace, *, selection: bool = False) -> SyncOptions:
  kwargs: dict[str, Any] = {"force_sync": args.force, "skip_test_connection": args.skip_test}
  if args.max_age_minutes is not None:
    kwargs["max_age"] = timedelta(minutes=args.max_age_minutes)
  if args.concurrency is not None:
    kwargs["concurrent_syncs"] = args.concurrency
  if args.timeout is not None:
    kwargs["sync_timeout"] = timedelta(seconds=args.timeout) if args.timeout > 0 else None
  if selection:
    return SyncOptions.for_selection(**kwargs)
  return SyncOptions(**kwargs)


def build_parser() -> argparse.ArgumentParser:
  parser = argparse.ArgumentParser(prog="timekeeper-sync", description="Sync tasks with GitHub and Azure DevOps")
  parser.add_argument("--log-level", default=None)
  sub = parser.add_subparsers(dest="command", required=True)

  _add_option_args(sub.add_parser("smart", help="sync integrations that are due"))
  sub.add_parser("emergency", help="serial sync of everything older than 5 minutes, with connection tests")
  p = sub.add_parser("provider", help="sync all active integrations of one provider")
  p.add_argument("provider")
  _add_option_args(p)
  p = sub.add_parser("integrations", help="sync the given integration ids")
  p.add_argument("ids", nargs="+")
  _add_option_args(p)
  sub.add_parser("status", help="list integrations and active counts per provider")
  return parser


async def _run(args: argparse.Namespace, services: Services) -> tuple[bool, dict[str, Any]]:
  orchestrator = services.orchestrator
  if args.command == "smart":
    result = await orchestrator.run_smart_sync(_options(args))
  elif args.command == "emergency":
    result = await orchestrator.run_emergency_sync()
  elif args.command == "provider":
    result = await orchestrator.sync_provider(args.provider, _options(args))
  elif args.command == "integrations":
    result = await orchestrator.sync_specific_integrations(args.ids, _options(args, selection=True))
  else:
    svc = services.integration_service
    return True, {
      "providers": await svc.provider_statistics(),
      "integrations": [
        {
          "id": i.id,
          "provider": i.provider,
          "organizationUrl": i.organization_url,
          "projectName": i.project_name,
          "isActive": i.is_active,
          "lastSyncAt": i.last_sync_at,
        }
        for i in await svc.list_integrations()
      ],
    }
  return result.success, result.to_dict()


async def _main_async(args: argparse.Namespace) -> tuple[bool, dict[str, Any]]:
  if settings.auto_create_schema:
    await db.init_models()
  try:
    return await _run(args, build_services(db.SessionLocal))
  finally:
    await db.engine.dispose()


def main(argv: list[str] | None = None) -> int:
  args = build_parser().parse_args(argv)
  configure_logging(args.log_level)
  ok, payload = asyncio.run(_main_async(args))
  sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")
  return 0 if ok else 1


if __name__ == "__main__":
  raise SystemExit(main())
