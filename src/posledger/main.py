from __future__ import annotations

import argparse
import logging
import sys

from posledger.application.container import build_container
from posledger.application.session import PosSession
from posledger.config import AppConfig, get_app_paths
from posledger.domain.errors import AppError
from posledger.logging_config import setup_logging

log = logging.getLogger(__name__)


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="posledger", description="Store inventory ledger maintenance.")
    parser.add_argument("--db", help="SQLite database path (defaults to the app data directory)")
    parser.add_argument("--user", default="owner", help="Identity used for the operation")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("export", help="Write a JSON backup")
    p.add_argument("path")
    p = sub.add_parser("import", help="Merge a JSON backup into the database")
    p.add_argument("path")
    p = sub.add_parser("report", help="Write an Excel report of sales and the stock ledger")
    p.add_argument("path")
    sub.add_parser("products", help="List products")
    sub.add_parser("verify", help="Check every product's stock against its ledger")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    paths = get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO)

    app = build_container(args.db or paths.db_path, config=AppConfig.from_env())
    session = PosSession(app)
    session.login(args.user)
    try:
        if args.command == "export":
            print(app.data.export_to_file(args.path))
        elif args.command == "import":
            app.data.import_file(args.path)
            print("Import complete.")
        elif args.command == "report":
            print(app.reporting.export_report_excel(args.path))
        elif args.command == "products":
            for p in app.catalog.list_products():
                print(f"{p.sku:<14} {p.name:<32} {p.stock:>6} {p.price:>12,.0f}")
        elif args.command == "verify":
            bad = app.ledger.discrepancies()
            for product_id, stock, balance in bad:
                print(f"{product_id}: stock={stock} ledger={balance}")
            if bad:
                return 1
            print("Ledger consistent.")
        return 0
    except AppError as e:
        log.warning("cli_failed command=%s error=%s", args.command, e)
        print(f"Error: {e}", file=sys.stderr)
        return 2
    finally:
        session.logout()


if __name__ == "__main__":
    sys.exit(main())
