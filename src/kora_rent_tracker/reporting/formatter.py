"""Plain-text rendering of registries and reclaim reports."""

from __future__ import annotations

from typing import TYPE_CHECKING

from kora_rent_tracker.config import LAMPORTS_PER_SOL
from kora_rent_tracker.tracker.models import AccountStatus

if TYPE_CHECKING:
    from kora_rent_tracker.reclaim.models import ReclaimReport
    from kora_rent_tracker.storage.registry import SponsorshipRegistry


def truncate_address(address: str, chars: int = 4) -> str:
    """Truncate a base58 address to ABCD...WXYZ format."""
    if len(address) < chars * 2 + 3:
        return address
    return f"{address[:chars]}...{address[-chars:]}"


def format_sol(lamports: int, decimals: int = 6) -> str:
    """Format lamports as a SOL amount."""
    return f"{lamports / LAMPORTS_PER_SOL:,.{decimals}f} SOL"


def format_report_summary(report: ReclaimReport) -> str:
    mode = "DRY RUN" if report.dry_run else "LIVE"
    lines = [
        f"Reclaim run {report.run_id} ({mode})",
        f"  Operator:  {truncate_address(report.operator)}",
        f"  Treasury:  {truncate_address(report.treasury)}",
        f"  Analyzed:  {report.accounts_analyzed}",
        f"  Validated: {report.accounts_validated}",
        f"  Reclaimed: {report.accounts_reclaimed}",
        f"  Skipped:   {report.accounts_skipped}",
        f"  Failed:    {report.accounts_failed}",
        f"  Total:     {format_sol(report.total_lamports_reclaimed)}"
        + (" (simulated)" if report.dry_run else ""),
    ]
    if report.treasury_balance_before is not None and report.treasury_balance_after is not None:
        lines.append(
            f"  Treasury balance: {format_sol(report.treasury_balance_before)} -> "
            f"{format_sol(report.treasury_balance_after)}"
        )
    for skipped in report.skipped:
        lines.append(
            f"  - skip {truncate_address(skipped.address)} "
            f"[{skipped.risk_level.value}] {skipped.reason}"
        )
    for error in report.errors:
        lines.append(f"  ! fail {truncate_address(error.address)}: {error.error}")
    return "\n".join(lines)


def format_registry_summary(registry: SponsorshipRegistry) -> str:
    """Status overview of a registry."""
    metrics = registry.metrics
    counts = {status: len(registry.accounts_by_status(status)) for status in AccountStatus}
    lines = [
        f"Sponsorship registry for {registry.operator}",
        f"  Tracked accounts:  {len(registry)}",
        f"    active {counts[AccountStatus.ACTIVE]}, empty {counts[AccountStatus.EMPTY]}, "
        f"closed {counts[AccountStatus.CLOSED]}, unknown {counts[AccountStatus.UNKNOWN]}",
        f"  Transactions seen: {registry.total_transactions_processed}",
        f"  Lifetime sponsored: {metrics.total_accounts_sponsored} accounts, "
        f"{format_sol(metrics.total_rent_locked)} locked",
        f"  Lifetime reclaimed: {format_sol(metrics.total_rent_reclaimed)}, "
        f"{metrics.total_accounts_closed} accounts closed",
        f"  Last updated: {registry.last_updated.isoformat()}",
    ]
    return "\n".join(lines)
