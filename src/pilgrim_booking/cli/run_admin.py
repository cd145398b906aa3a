from __future__ import annotations

import argparse
import logging

from pilgrim_booking.config.logging_setup import configure_logging
from pilgrim_booking.config.settings import settings
from pilgrim_booking.db.engine import create_all_tables, get_session
from pilgrim_booking.db.enums import BookingStatus, PaymentStatus, UserRole
from pilgrim_booking.db.repositories.bookings import BookingRepository
from pilgrim_booking.db.repositories.packages import PackageRepository
from pilgrim_booking.services.collaborators import ActorContext
from pilgrim_booking.services.field_governance import (
    DEFAULT_FIELD_CONFIG,
    LOCKED_FIELDS,
    FieldGovernanceRegistry,
)
from pilgrim_booking.services.pricing import quote_agent_price
from pilgrim_booking.services.runtime import lifecycle_service, ping_db

logger = logging.getLogger(__name__)

ADMIN_CLI_USER = "admin-cli"


def _parse_flag(value: str | None) -> bool | None:
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered in {"true", "yes", "1", "on"}:
        return True
    if lowered in {"false", "no", "0", "off"}:
        return False
    raise argparse.ArgumentTypeError(f"Expected true/false, got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pilgrim-admin")
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("ping", help="Check the database connection.")

    sub.add_parser("init-db", help="Create tables and seed default field settings.")

    sub.add_parser("fields-list", help="Show every booking form field and its settings.")

    p_set = sub.add_parser("fields-set", help="Update one booking form field (last write wins).")
    p_set.add_argument("key")
    p_set.add_argument("--enabled", type=_parse_flag, default=None)
    p_set.add_argument("--required", type=_parse_flag, default=None)
    p_set.add_argument("--label", default=None)
    p_set.add_argument("--placeholder", default=None)

    p_quote = sub.add_parser("quote", help="Price a booking (or a retail amount for an agent).")
    p_quote.add_argument("--booking-id", default=None)
    p_quote.add_argument("--retail", default=None)
    p_quote.add_argument("--commission-type", default="percentage")
    p_quote.add_argument("--rate", default="0")
    p_quote.add_argument("--package-discount", default=None)

    p_verify = sub.add_parser("verify-payment", help="Verify or reject a pending payment.")
    p_verify.add_argument("payment_id")
    p_verify.add_argument("--reject", action="store_true")
    p_verify.add_argument("--admin-id", default=ADMIN_CLI_USER)

    p_status = sub.add_parser("set-status", help="Move a booking to another status.")
    p_status.add_argument("booking_id")
    p_status.add_argument("status", choices=[s.value for s in BookingStatus])
    p_status.add_argument(
        "--i-understand-this-cancels",
        action="store_true",
        help="Required to cancel a booking. Cancellation cannot be undone.",
    )

    return parser


def main(argv: list[str] | None = None) -> None:
    """
    What it does:
    - Admin entrypoint for the booking engine: connectivity check, schema setup, field governance,
      pricing quotes, payment verification and booking status changes.

    Behavior:
    - Every command runs inside one get_session() scope (commit on success).
    - Domain errors propagate, so the process exits non-zero with the message.
    - Cancelling a booking refuses to run without --i-understand-this-cancels.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level or settings.log_level)
    logger.debug("Running command %s", args.cmd)

    if args.cmd == "quote" and args.booking_id is None:
        if args.retail is None:
            parser.error("quote needs --booking-id or --retail")
        quote = quote_agent_price(
            args.retail,
            commission_type=args.commission_type,
            rate=args.rate,
            package_agent_discount=args.package_discount,
        )
        print(f"retail={quote.retail} wholesale={quote.wholesale} savings={quote.savings}")
        return

    if args.cmd == "set-status" and args.status == BookingStatus.CANCELLED:
        if not args.i_understand_this_cancels:
            raise RuntimeError("Refusing to cancel without --i-understand-this-cancels")

    if args.cmd == "ping":
        result = ping_db()
        print(result.message)
        if not result.ok:
            raise SystemExit(1)
        return

    if args.cmd == "init-db":
        create_all_tables()
        with get_session() as session:
            created = FieldGovernanceRegistry(session).seed_defaults()
        print(f"OK: tables ready, {created} field setting(s) seeded")
        return

    lifecycle = lifecycle_service()

    with get_session() as session:
        if args.cmd == "fields-list":
            snapshot = FieldGovernanceRegistry(session).snapshot()
            keys = sorted({*LOCKED_FIELDS, *DEFAULT_FIELD_CONFIG, *snapshot.overrides})
            for key in keys:
                config = snapshot.get(key)
                print(
                    f"{config.key}\tenabled={config.enabled}\trequired={config.is_required}"
                    f"\tsection={config.section}\tlabel={config.label}"
                )
            return

        if args.cmd == "fields-set":
            patch = {}
            for name in ("enabled", "required"):
                flag = getattr(args, name)
                if flag is not None:
                    patch[name] = flag
            if args.label is not None:
                patch["label"] = args.label
            if args.placeholder is not None:
                patch["placeholder"] = args.placeholder
            config = FieldGovernanceRegistry(session).set(args.key, **patch)
            print(f"OK: {config.key} enabled={config.enabled} required={config.is_required}")
            return

        if args.cmd == "quote":
            booking = BookingRepository(session).get(args.booking_id)
            amount = lifecycle.quote_booking_amount(session, booking)
            package = PackageRepository(session).get(booking.package_id)
            print(f"booking={booking.reference} retail={package.price} amount={amount}")
            return

        if args.cmd == "verify-payment":
            actor = ActorContext(user_id=args.admin_id, role=UserRole.ADMIN)
            outcome = PaymentStatus.REJECTED if args.reject else PaymentStatus.VERIFIED
            payment = lifecycle.verify_payment(
                session=session, payment_id=args.payment_id, outcome=outcome, actor=actor
            )
            print(f"OK: payment={payment.id} status={payment.status}")
            return

        if args.cmd == "set-status":
            booking = lifecycle.set_booking_status(
                session=session, booking_id=args.booking_id, new_status=args.status
            )
            print(f"OK: booking={booking.reference} status={booking.status}")
            return


if __name__ == "__main__":
    main()
