"""
Per-account transfer advisory.

For one month, works out how much each income-receiving account can
safely have moved out of it: income minus the obligations linked to the
account, minus an even share of the unlinked (shared) obligations, minus
a safety margin of 10% of income. The numbers are advisory only.
"""

import logging
from collections import defaultdict
from typing import Dict, List

from budget_types import (
    AccountTransferSuggestion,
    Envelope,
    IncomeSource,
    IncomeSourceDetail,
    ObligationDetail,
    TransferStatus,
    TransferSuggestionsResponse,
)
from exceptions import DivisionGuard
from obligation_catalog import ObligationCatalog
from utils import month_from_parts, round_money

logger = logging.getLogger(__name__)

# Fraction of an account's income kept back from any suggested transfer
SAFETY_MARGIN_RATE = 0.10

SHARED_SPLIT_NOTE = (
    "Obligations without a linked account are split evenly across the {count} "
    "account(s) receiving income this month, regardless of how much each receives."
)


def split_evenly(total: float, account_count: int) -> float:
    """
    Share of a shared total carried by each account.

    Raises:
        DivisionGuard: If there are no accounts to split across
    """
    if account_count <= 0:
        raise DivisionGuard(
            "Shared obligations cannot be split across zero accounts",
            details={"shared_total": total}
        )
    return total / account_count


def transfer_status(surplus: float, suggested_transfer: float) -> TransferStatus:
    """Classify an account from its surplus and suggested transfer."""
    if suggested_transfer > 0:
        return TransferStatus.TRANSFERABLE
    if surplus >= 0:
        return TransferStatus.TIGHT
    return TransferStatus.INSUFFICIENT


def _obligation_detail(envelope: Envelope, account_share: float, direct: bool) -> ObligationDetail:
    return ObligationDetail(
        plan_id=envelope.id,
        name=envelope.name,
        monthly_contribution=envelope.monthly_contribution,
        priority=envelope.priority,
        is_directly_assigned=direct,
        account_share=round_money(account_share)
    )


class TransferAdvisor:
    """
    Computes transfer suggestions from the catalog's plans.

    Only active income sources linked to an account are considered;
    envelopes count when they are active in the requested month.
    """

    def __init__(self, catalog: ObligationCatalog, budget_safe_only: bool = False):
        """
        Initialize the transfer advisor.

        Args:
            catalog: ObligationCatalog providing income sources and envelopes
            budget_safe_only: Default for ignoring uncertain income
        """
        self.catalog = catalog
        self.budget_safe_only = budget_safe_only
        logger.info("Transfer advisor initialized")

    def _income_by_account(
        self,
        sources: List[IncomeSource],
        month_number: int
    ) -> Dict[int, List[IncomeSourceDetail]]:
        grouped: Dict[int, List[IncomeSourceDetail]] = defaultdict(list)
        for source in sources:
            if source.linked_account_id is None:
                logger.debug("Income source %s has no linked account; skipping", source.id)
                continue
            amount = source.amount_for_month(month_number)
            if amount <= 0:
                continue
            grouped[source.linked_account_id].append(IncomeSourceDetail(
                plan_id=source.id,
                name=source.name,
                amount_for_month=amount,
                reliability=source.reliability
            ))
        return grouped

    def compute_transfer_suggestions(
        self,
        year: int,
        month: int,
        budget_safe_only: bool | None = None
    ) -> TransferSuggestionsResponse:
        """
        Compute one transfer suggestion per income-receiving account.

        Args:
            year: Calendar year
            month: Month number (1-12)
            budget_safe_only: Count only guaranteed and expected income;
                defaults to the advisor's setting

        Returns:
            TransferSuggestionsResponse; accounts is empty when no account
            receives income in the month

        Raises:
            ValidationError: If month is outside 1-12
            UpstreamUnavailable: If the catalog cannot be read
        """
        month_start = month_from_parts(year, month)
        safe_only = self.budget_safe_only if budget_safe_only is None else budget_safe_only

        sources = self.catalog.list_income_sources()
        if safe_only:
            sources = [source for source in sources if source.reliability.is_budget_safe]
        income_by_account = self._income_by_account(sources, month_start.month)

        envelopes = [env for env in self.catalog.list_envelopes() if env.is_active_in(month_start)]
        shared = [env for env in envelopes if env.linked_account_id is None]
        shared_total = round_money(sum(env.monthly_contribution for env in shared))

        account_count = len(income_by_account)
        if account_count == 0:
            logger.info("No account receives income in %04d-%02d; nothing to advise", year, month)
            return TransferSuggestionsResponse(
                year=year,
                month=month,
                accounts=[],
                unassigned_total=shared_total,
                distinct_income_account_count=0,
                share_per_account=0.0
            )

        share = split_evenly(shared_total, account_count)
        names = self.catalog.get_account_names(income_by_account.keys())

        suggestions: List[AccountTransferSuggestion] = []
        for account_id in sorted(income_by_account):
            income_sources = income_by_account[account_id]
            direct = [env for env in envelopes if env.linked_account_id == account_id]

            total_income = round_money(sum(detail.amount_for_month for detail in income_sources))
            direct_total = round_money(sum(env.monthly_contribution for env in direct))
            shared_share = round_money(share)
            surplus = round_money(total_income - direct_total - shared_share)
            safety_margin = round_money(total_income * SAFETY_MARGIN_RATE)
            suggested = round_money(max(0.0, surplus - safety_margin))

            account_name = names.get(account_id)
            if account_name is None:
                logger.warning("Account %s not found in catalog; using placeholder name", account_id)
                account_name = f"Account {account_id}"

            suggestions.append(AccountTransferSuggestion(
                account_id=account_id,
                account_name=account_name,
                total_income=total_income,
                income_sources=income_sources,
                direct_obligations=direct_total,
                direct_obligation_details=[
                    _obligation_detail(env, env.monthly_contribution, True) for env in direct
                ],
                shared_obligations=shared_share,
                shared_obligation_details=[
                    _obligation_detail(env, env.monthly_contribution / account_count, False) for env in shared
                ],
                total_obligations=round_money(direct_total + shared_share),
                surplus=surplus,
                safety_margin=safety_margin,
                suggested_transfer=suggested,
                status=transfer_status(surplus, suggested)
            ))

        logger.info(
            "Transfer suggestions for %04d-%02d: %d account(s), shared %s split %s each",
            year, month, account_count, shared_total, round_money(share)
        )
        return TransferSuggestionsResponse(
            year=year,
            month=month,
            accounts=suggestions,
            unassigned_total=shared_total,
            distinct_income_account_count=account_count,
            share_per_account=round_money(share),
            note=SHARED_SPLIT_NOTE.format(count=account_count)
        )
