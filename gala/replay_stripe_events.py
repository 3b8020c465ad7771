import argparse
import logging

from gala.config import settings
from gala.db import SessionLocal
from gala.services.webhook_service import StripeEventState, replay_failed_events


def replay(limit: int) -> tuple[int, int]:
    with SessionLocal() as db:
        outcomes = replay_failed_events(db, limit=limit)
    processed = sum(1 for outcome in outcomes if outcome.state == StripeEventState.PROCESSED)
    failed = sum(1 for outcome in outcomes if outcome.state == StripeEventState.FAILED)
    return processed, failed


def main() -> None:
    parser = argparse.ArgumentParser(description='Re-dispatch webhook events that were logged but not processed.')
    parser.add_argument(
        '--limit',
        type=int,
        default=100,
        help='Maximum number of ledger rows to replay, oldest first.',
    )
    args = parser.parse_args()
    logging.basicConfig(level=settings.log_level.upper())

    processed, failed = replay(args.limit)
    print(f'Webhook replay complete: processed={processed}, still_failing={failed}')


if __name__ == '__main__':
    main()
