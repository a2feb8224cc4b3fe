"""Escrow breakdown calculator.

Turns the base cost of a service into the full monetary breakdown stored on
an escrow: urgent surcharge, platform commission, tax on that commission,
artisan payout and the advance a verified artisan may receive up front.

Computation order (each term from the unrounded previous one):
    surcharge -> total -> commission -> tax -> payout -> advance -> remaining

Amounts stay in full float precision here. Rounding is a display concern,
see EscrowCalculation.rounded().
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace

# Tax is levied on the platform commission, not on the total.
TAX_RATE = 0.18
VERIFIED_ADVANCE_RATE = 0.5
UNVERIFIED_ADVANCE_RATE = 0.0
DEFAULT_COMMISSION_PERCENT = 10.0


@dataclass(frozen=True)
class EscrowCalculation:
    """Immutable snapshot of an escrow breakdown.

    Never patched field by field: a new amount means a new calculation.
    """

    base_amount: float
    urgent_surcharge_percent: float
    urgent_surcharge: float
    total_amount: float
    commission_percent: float
    commission_amount: float
    tax_amount: float
    artisan_payout: float
    advance_percent: float
    advance_amount: float
    remaining_amount: float

    @property
    def is_verified(self) -> bool:
        return self.advance_percent > 0

    def to_dict(self) -> dict[str, float]:
        return asdict(self)

    def rounded(self, digits: int = 2) -> EscrowCalculation:
        """Copy with every amount rounded to ``digits`` (currency subunit)."""
        return replace(
            self,
            base_amount=round(self.base_amount, digits),
            urgent_surcharge=round(self.urgent_surcharge, digits),
            total_amount=round(self.total_amount, digits),
            commission_amount=round(self.commission_amount, digits),
            tax_amount=round(self.tax_amount, digits),
            artisan_payout=round(self.artisan_payout, digits),
            advance_amount=round(self.advance_amount, digits),
            remaining_amount=round(self.remaining_amount, digits),
        )


def calculate_escrow(
    base_amount: float,
    urgent_surcharge_percent: float = 0,
    commission_percent: float = DEFAULT_COMMISSION_PERCENT,
    is_verified: bool = False,
) -> EscrowCalculation:
    """Compute the full escrow breakdown for a service.

    Pure and total: no validation, no exceptions for numeric input. Callers
    must reject a negative ``base_amount`` before calling.

    Args:
        base_amount: Service cost before surcharge.
        urgent_surcharge_percent: Surcharge for urgent jobs, in percent.
        commission_percent: Platform commission on the total, in percent.
        is_verified: Verified artisans receive an advance on their payout.

    Returns:
        The EscrowCalculation for these inputs.
    """
    urgent_surcharge = base_amount * (urgent_surcharge_percent / 100)
    total_amount = base_amount + urgent_surcharge
    commission_amount = total_amount * (commission_percent / 100)
    tax_amount = commission_amount * TAX_RATE
    artisan_payout = total_amount - commission_amount - tax_amount

    advance_rate = VERIFIED_ADVANCE_RATE if is_verified else UNVERIFIED_ADVANCE_RATE
    advance_percent = advance_rate * 100
    advance_amount = artisan_payout * advance_rate if is_verified else 0.0
    remaining_amount = artisan_payout - advance_amount

    return EscrowCalculation(
        base_amount=base_amount,
        urgent_surcharge_percent=urgent_surcharge_percent,
        urgent_surcharge=urgent_surcharge,
        total_amount=total_amount,
        commission_percent=commission_percent,
        commission_amount=commission_amount,
        tax_amount=tax_amount,
        artisan_payout=artisan_payout,
        advance_percent=advance_percent,
        advance_amount=advance_amount,
        remaining_amount=remaining_amount,
    )
