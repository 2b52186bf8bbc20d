import logging
from decimal import Decimal

from txflow.errors import AffordabilityError
from txflow.models import CanonicalOperation, LedgerContext

log = logging.getLogger("txflow.afford")


class AffordabilityChecker:
    """Local reserve guard, run before signing.

    Failing here means nothing was sent. That is a different outcome from the
    ledger rejecting the same operation for lack of funds, and is reported as
    AffordabilityError rather than a LedgerRejection.
    """

    def is_affordable(self, ctx: LedgerContext, fee: int, value_moved: int, *, new_objects: int = 0) -> bool:
        """True when the account keeps at least its reserve after `fee` and `value_moved` drops leave it.

        Landing exactly on the reserve is affordable.
        """
        remaining = ctx.account.balance - fee - value_moved
        return remaining >= ctx.required_reserve(new_objects)

    def check(self, op: CanonicalOperation, ctx: LedgerContext) -> None:
        fee, moved = op.fee, op.native_value_moved
        if not self.is_affordable(ctx, fee, moved, new_objects=op.new_objects):
            reserve = ctx.required_reserve(op.new_objects)
            needed = fee + moved + reserve
            log.info("Insufficient XRP for %s: balance=%s needed=%s", op.account, ctx.account.balance, needed)
            raise AffordabilityError(
                f"Insufficient XRP balance: have {ctx.account.balance} drops, need {needed} "
                f"(fee {fee}, amount {moved}, reserve {reserve})",
                required=needed,
                available=ctx.account.balance,
            )

        issued = op.issued_value_moved
        if issued is None or issued["issuer"] == op.account:
            return
        currency, issuer, value = issued["currency"], issued["issuer"], Decimal(issued["value"])
        line = ctx.trust_line(issuer, currency)
        if line is None:
            raise AffordabilityError(f"No {currency} trust line to {issuer}", required=str(value), available="0")
        if line.balance < value:
            raise AffordabilityError(
                f"Insufficient {currency} balance: have {line.balance}, need {value}",
                required=str(value),
                available=str(line.balance),
            )
