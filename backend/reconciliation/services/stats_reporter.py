"""
Stats Reporter

Operational aggregates over payment records. Amounts leave as major units.
"""

from typing import Optional

from database.reconciliation_models import ReconciliationStatus
from reconciliation.models import ReconciliationStats
from reconciliation.normalizers import as_utc, to_major_units
from reconciliation.services.stores import ReconciliationStore

SECONDS_PER_HOUR = 3600.0


class StatsReporter:

    def __init__(self, store: ReconciliationStore):
        self.store = store

    async def get_stats(self) -> ReconciliationStats:
        """
        Counts and amounts per status, plus mean time-to-match.

        "Matched" counts MATCHED records only; VERIFIED and DISPUTED appear
        in by_status.
        """
        totals = await self.store.payment_totals_by_status()

        total_count = sum(count for count, _ in totals.values())
        total_cents = sum(cents for _, cents in totals.values())
        matched_count, matched_cents = totals.get(ReconciliationStatus.MATCHED, (0, 0))
        unmatched_count, unmatched_cents = totals.get(ReconciliationStatus.UNMATCHED, (0, 0))

        return ReconciliationStats(
            total_payments=total_count,
            matched_payments=matched_count,
            unmatched_payments=unmatched_count,
            total_amount=to_major_units(total_cents),
            matched_amount=to_major_units(matched_cents),
            unmatched_amount=to_major_units(unmatched_cents),
            average_match_time_hours=await self._average_match_time_hours() or 0.0,
            by_status={status.value: totals.get(status, (0, 0))[0] for status in ReconciliationStatus},
        )

    async def _average_match_time_hours(self) -> Optional[float]:
        pairs = await self.store.list_match_timestamps()
        if not pairs:
            return None

        total_seconds = sum(
            (as_utc(matched_at) - as_utc(created_at)).total_seconds()
            for created_at, matched_at in pairs
        )
        return total_seconds / len(pairs) / SECONDS_PER_HOUR
