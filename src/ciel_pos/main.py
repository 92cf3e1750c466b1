from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from ciel_pos.application.container import build_container
from ciel_pos.config import get_app_paths
from ciel_pos.domain.errors import AppError
from ciel_pos.logging_config import setup_logging

log = logging.getLogger(__name__)


def _print_dashboard(container, args) -> None:
    summary = container.reporting.get_dashboard_summary(args.days, args.months)
    k = summary.kpi
    print(f"Today        qty {k.today_qty:>6}   net revenue {k.today_net_revenue:>12.2f}")
    print(f"This month   gross profit {k.month_gross_profit:>12.2f}   expense {k.month_expense:>12.2f}")
    print(f"             net profit   {k.month_net_profit:>12.2f}   avg basket {k.month_avg_basket:>9.2f}")
    print()
    print(f"{'Day':<12}{'Qty':>6}{'Revenue':>14}{'Profit':>14}{'Basket':>12}")
    for d in summary.daily:
        print(f"{d.day:<12}{d.net_qty:>6}{d.net_revenue:>14.2f}{d.gross_profit:>14.2f}{d.avg_basket:>12.2f}")
    print()
    print(f"{'Month':<10}{'Qty':>6}{'Revenue':>14}{'Profit':>14}{'Expense':>12}{'Net':>14}")
    for m in summary.monthly:
        print(
            f"{m.period:<10}{m.net_qty:>6}{m.net_revenue:>14.2f}{m.gross_profit:>14.2f}"
            f"{m.expense:>12.2f}{m.net_profit:>14.2f}"
        )


def _print_cash_report(container, args) -> None:
    rows = container.reporting.get_cash_report(args.days)
    print(f"{'Day':<12}{'Cash':>12}{'Card':>12}{'Cash ref.':>12}{'Card ref.':>12}{'Net':>12}")
    for r in rows:
        print(
            f"{r.day:<12}{r.cash_sales:>12.2f}{r.card_sales:>12.2f}"
            f"{r.cash_refunds:>12.2f}{r.card_refunds:>12.2f}{r.net_total:>12.2f}"
        )


def _export(container, args) -> None:
    if args.kind == "dashboard":
        container.reporting.export_dashboard_excel(str(args.path), args.days, args.months)
    else:
        container.reporting.export_cash_report_excel(str(args.path), args.days)
    print(f"Exported {args.kind} to {args.path}")


def _backup(container, args) -> None:
    print(container.backup.create_backup())


def _restore(container, args) -> None:
    container.backup.restore_backup(args.path)
    print(f"Restored {args.path}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ciel-pos",
        description="Ciel POS ledger reports and maintenance.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "examples:\n"
            "  ciel-pos dashboard --days 14 --months 6\n"
            "  ciel-pos cash-report --days 7\n"
            "  ciel-pos export dashboard report.xlsx\n"
            "  ciel-pos backup\n"
        ),
    )
    parser.add_argument(
        "--db", type=Path, default=None,
        help="Database file (default: the per-user application data directory)",
    )
    parser.add_argument(
        "--verbose", action="store_true",
        help="Log at DEBUG level",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("dashboard", help="Show KPIs and the daily/monthly series")
    p.add_argument("--days", type=int, default=30)
    p.add_argument("--months", type=int, default=12)
    p.set_defaults(func=_print_dashboard)

    p = sub.add_parser("cash-report", help="Show cash and card totals per day")
    p.add_argument("--days", type=int, default=30)
    p.set_defaults(func=_print_cash_report)

    p = sub.add_parser("export", help="Write a report to an Excel workbook")
    p.add_argument("kind", choices=["dashboard", "cash-report"])
    p.add_argument("path", type=Path)
    p.add_argument("--days", type=int, default=30)
    p.add_argument("--months", type=int, default=12)
    p.set_defaults(func=_export)

    p = sub.add_parser("backup", help="Take a backup of the database")
    p.set_defaults(func=_backup)

    p = sub.add_parser("restore", help="Restore a backup from the backups directory")
    p.add_argument("path", type=Path)
    p.set_defaults(func=_restore)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.db:
        # an explicit database keeps its logs and backups beside it
        db_path = args.db
        logs_dir = db_path.parent / "logs"
        backup_dir = db_path.parent / "backups"
    else:
        paths = get_app_paths()
        db_path, logs_dir, backup_dir = paths.db_path, paths.logs_dir, paths.backups_dir

    setup_logging(logs_dir, level=logging.DEBUG if args.verbose else logging.INFO)
    container = build_container(db_path, backup_dir=backup_dir)

    try:
        args.func(container, args)
    except AppError as e:
        log.error("command_failed command=%s error=%s", args.command, e)
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
