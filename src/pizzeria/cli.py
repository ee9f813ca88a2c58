"""
Pizzeria controller CLI.

Usage:
    pizzeria run [--namespace NS] [--kubeconfig PATH] [--context NAME] [--log-level LEVEL] [--workers N]
    pizzeria reconcile NAMESPACE/NAME [--namespace NS] [--kubeconfig PATH] [--context NAME] [--log-level LEVEL]
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Sequence

import pydantic
import structlog

from pizzeria.config import Settings, get_settings
from pizzeria.core.errors import ConfigurationError, ExitCode, main_with_error_handling
from pizzeria.domain.models import ObjectKey
from pizzeria.logging import configure_logging
from pizzeria.manager import Manager

logger = structlog.get_logger()


def _common_options() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--log-level", help="Log level (default: PIZZERIA_LOG_LEVEL or INFO)")
    common.add_argument("--namespace", help="Namespace to manage (default: all)")
    common.add_argument("--kubeconfig", help="Path to kubeconfig file")
    common.add_argument("--context", dest="kube_context", help="Kubeconfig context")
    return common


def build_parser() -> argparse.ArgumentParser:
    common = _common_options()
    parser = argparse.ArgumentParser(prog="pizzeria", description="Pizza order controller")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run", parents=[common], help="Run the controller until interrupted"
    )
    run_parser.add_argument("--workers", type=int, help="Concurrent reconcile workers")

    reconcile_parser = subparsers.add_parser(
        "reconcile", parents=[common], help="Reconcile a single order once"
    )
    reconcile_parser.add_argument("order", help="Order to reconcile, as NAMESPACE/NAME")

    return parser


def _load_settings() -> Settings:
    try:
        return get_settings()
    except pydantic.ValidationError as exc:
        raise ConfigurationError(f"invalid settings: {exc}") from exc


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    update = {
        name: value
        for name in ("log_level", "namespace", "kubeconfig", "kube_context", "workers")
        if (value := getattr(args, name, None)) is not None
    }
    return settings.model_copy(update=update) if update else settings


@main_with_error_handling()
def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = _apply_overrides(_load_settings(), args)
    configure_logging(settings.log_level)

    if args.command == "reconcile" and settings.store_backend == "memory":
        # A fresh in-memory store holds no orders, so there is nothing to reconcile.
        raise ConfigurationError(
            "one-shot reconcile needs the kubernetes store backend",
            details={"store_backend": settings.store_backend},
        )

    manager = Manager(settings)

    if args.command == "run":
        asyncio.run(manager.run())
        return ExitCode.SUCCESS

    try:
        key = ObjectKey.parse(args.order)
    except ValueError as exc:
        logger.error("invalid_order_key", error=str(exc))
        return ExitCode.VALIDATION_ERROR

    result = asyncio.run(manager.reconcile(key))
    logger.info("reconcile_finished", order=str(key), requeue=result.requeue, requeue_after=result.requeue_after)
    return ExitCode.SUCCESS


if __name__ == "__main__":
    raise SystemExit(main())
