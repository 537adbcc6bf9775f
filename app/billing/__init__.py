"""
Credit ledger and billing reconciliation engine.

This app handles:
- Append-only credit ledger with a cached per-account balance
- Reservations for in-flight AI usage (reserve -> commit/release/expire)
- Payment provider webhooks, applied exactly once
- Recurring subscription credit grants, once per billing cycle
- Reconciliation against the provider's order list
- Usage analytics derived from the ledger

Usage:
    from billing.ledger import ledger
    from billing.services import ReservationService

    account = ledger.open_account(owner_id=str(user.pk))
    reservation = ReservationService.reserve(account.id, estimated_amount=6)
    ReservationService.commit(reservation.id, actual_amount=4)
"""
