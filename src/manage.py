"""Ordering management CLI.

Schema management plus the operational reports staff run from cron or a
shell: payments stuck with the provider and rentals that are overdue.

Usage:
    python src/manage.py setup-db          # Create all tables
    python src/manage.py drop-db           # Drop all tables
    python src/manage.py stale-payments    # Orders awaiting payment past the window
    python src/manage.py overdue-rentals   # Rentals not returned by their end date
"""

import argparse
import sys


def _domain():
    from ordering.domain import ordering

    ordering.init()
    return ordering


def setup_database():
    from ordering.utils.db import setup_db

    domain = _domain()
    print("Creating ordering database schema...")
    setup_db(domain)
    print("Done.")


def drop_database():
    from ordering.utils.db import drop_db

    domain = _domain()
    print("Dropping ordering database schema...")
    drop_db(domain)
    print("Done.")


def report_stale_payments():
    from ordering import queries

    with _domain().domain_context():
        stale = queries.stale_payments()
        for order in stale:
            print(f"{order.order_number}\t{order.payment_reference}\t{order.pricing.total:.2f}\t{order.updated_at}")
        print(f"{len(stale)} order(s) awaiting payment past the window.")


def report_overdue_rentals():
    from ordering import queries

    with _domain().domain_context():
        overdue = queries.overdue_rentals()
        for order in overdue:
            end = max(item.rental.end_date for item in order.rental_items)
            print(f"{order.order_number}\t{order.customer_id}\t{order.status}\tdue {end.isoformat()}")
        print(f"{len(overdue)} overdue rental(s).")


_COMMANDS = {
    "setup-db": setup_database,
    "drop-db": drop_database,
    "stale-payments": report_stale_payments,
    "overdue-rentals": report_overdue_rentals,
}


def main():
    parser = argparse.ArgumentParser(description="Ordering management")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")
    subparsers.add_parser("stale-payments", help="List orders awaiting payment past the window")
    subparsers.add_parser("overdue-rentals", help="List rentals not returned by their end date")

    args = parser.parse_args()

    command = _COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        sys.exit(1)
    command()


if __name__ == "__main__":
    main()
