#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Main entry point for the discipline catalog sync engine.

Runs a synchronization in the foreground and offers a few catalog helpers
for operators.
"""

import argparse
import getpass
import json
import signal
import sys

from catalog_sync.core.config import load_settings
from catalog_sync.core.credentials import CredentialConfig, load_credentials, save_local_credentials
from catalog_sync.core.error_handler import setup_global_exception_handler
from catalog_sync.core.logger import setup_logging
from catalog_sync.core.models import RunStatus
from catalog_sync.core.portal_integration import get_sync_service
from catalog_sync.data.database import get_db

logger = setup_logging()


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync UERJ disciplines from Aluno Online into the catalog.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("sync", help="Run a synchronization now and wait for it")
    subparsers.add_parser("status", help="Show the last run summary")
    subparsers.add_parser("list", help="Print the catalog as JSON")

    show = subparsers.add_parser("show", help="Print one discipline as JSON")
    show.add_argument("discipline_id")

    whatsapp = subparsers.add_parser("set-whatsapp", help="Set the WhatsApp group link of a class")
    whatsapp.add_argument("discipline_id")
    whatsapp.add_argument("class_number")
    whatsapp.add_argument("link", help="Group link; pass an empty string to clear it")

    subparsers.add_parser("save-credentials", help="Store portal credentials in the local credentials file")
    return parser


def run_sync(store, settings) -> int:
    credentials = load_credentials()
    service = get_sync_service(credentials, store, settings)

    def handle_signal(signum, frame):
        logger.warning(f"Received signal {signum}, cancelling sync")
        service.cancel()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    run = service.run_now()
    if run is None:
        print("A discipline sync is already running.")
        return 1

    print(run.summary())
    return 0 if run.status == RunStatus.COMPLETED else 1


def print_json(data):
    print(json.dumps(data, ensure_ascii=False, indent=2))


def main(argv=None) -> int:
    setup_global_exception_handler()

    args = build_argument_parser().parse_args(argv)
    settings = load_settings()

    if args.command == "save-credentials":
        matricula = input("Matrícula: ").strip()
        senha = getpass.getpass("Senha: ")
        path = save_local_credentials(CredentialConfig(matricula=matricula, senha=senha))
        print(f"Credentials saved to {path}")
        return 0

    store = get_db(settings.database_path)

    if args.command == "sync":
        return run_sync(store, settings)

    if args.command == "status":
        latest = store.get_latest_sync_run()
        if latest is None:
            print("No sync has run yet.")
            return 1
        print_json(latest)
        return 0

    if args.command == "list":
        print_json([d.to_dict() for d in store.get_all_disciplines()])
        return 0

    if args.command == "show":
        discipline = store.get_discipline_by_id(args.discipline_id)
        if discipline is None:
            print(f"Discipline {args.discipline_id} not found")
            return 1
        print_json(discipline.to_dict())
        return 0

    if args.command == "set-whatsapp":
        if not store.update_whatsapp_group(args.discipline_id, args.class_number, args.link):
            print("Discipline or class not found")
            return 1
        print(f"WhatsApp group for class {args.class_number} updated successfully")
        return 0

    return 2


if __name__ == "__main__":
    sys.exit(main())
