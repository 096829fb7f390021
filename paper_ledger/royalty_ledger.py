import logging
from typing import Dict, List, Optional, Sequence, Tuple

from .config import MAX_FEE_BASIS_POINTS
from .errors import (
    ArityMismatch,
    FeeTooHigh,
    FeeTransferFailed,
    InvalidAddress,
    InvalidAmount,
    InvalidRecipient,
    NotFound,
    NotOwner,
    NothingToWithdraw,
    PayoutFailed,
    TransferFailed,
)
from .models import RoyaltyEntry, RoyaltyPayment, Withdrawal, is_null_principal, normalize_principal
from .origin import OriginProtocol
from .roles import RoleStore
from .store import LedgerState, LedgerStore
from .transfers import TransferGateway

logger = logging.getLogger(__name__)

BASIS_POINTS = 10000


def _is_amount(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_amount(value) -> None:
    if not _is_amount(value) or value <= 0:
        raise InvalidAmount(f"royalty amount must be a positive integer, got {value!r}")


class RoyaltyLedger:
    """Royalty payments, researcher balances and the fee split / withdrawal protocol."""

    def __init__(
        self,
        store: LedgerStore,
        roles: RoleStore,
        origin: OriginProtocol,
        transfers: TransferGateway,
    ):
        self._store = store
        self._roles = roles
        self._origin = origin
        self._transfers = transfers

    @property
    def fee_basis_points(self) -> int:
        return self._store.state.fee_basis_points

    @property
    def treasury(self) -> Optional[str]:
        return self._store.state.treasury

    def calculate_fee(self, gross_amount: int, fee_basis_points: Optional[int] = None) -> Tuple[int, int]:
        """Split ``gross_amount`` into ``(fee, net)``; the fee rounds down."""
        if fee_basis_points is None:
            fee_basis_points = self.fee_basis_points
        fee = gross_amount * fee_basis_points // BASIS_POINTS
        return fee, gross_amount - fee

    # Payments

    def pay_royalty(self, paper_id: int, researcher: str, reason: str, gross_amount: int, payer: str) -> int:
        entry = RoyaltyEntry.model_construct(
            paper_id=paper_id, researcher=researcher or "", reason=reason, amount=gross_amount,
        )
        payment = self._settle([entry], payer, memo=f"fee for paper {paper_id}")[0]
        logger.info(
            "Royalty %d: %d (net) to %s for paper %d, fee %d",
            payment.id, payment.amount, payment.researcher, payment.paper_id, payment.fee,
        )
        return payment.id

    def batch_pay_royalties(
        self,
        entries: Sequence[RoyaltyEntry],
        payer: str,
        total_funds: Optional[int] = None,
    ) -> List[int]:
        """Pay every entry or none of them; ``total_funds`` must match the entry sum."""
        for entry in entries:
            _check_amount(entry.amount)
        expected = sum(entry.amount for entry in entries)
        if total_funds is not None and total_funds != expected:
            raise InvalidAmount(f"supplied funds {total_funds} do not match the batch total {expected}")

        payments = self._settle(entries, payer, memo=f"fees for {len(entries)} royalty payments")
        logger.info("Batch of %d royalties paid by %s, total %d", len(payments), payer, expected)
        return [payment.id for payment in payments]

    def batch_pay_royalty_columns(
        self,
        paper_ids: Sequence[int],
        researchers: Sequence[str],
        reasons: Sequence[str],
        amounts: Sequence[int],
        payer: str,
        total_funds: Optional[int] = None,
    ) -> List[int]:
        lengths = {len(paper_ids), len(researchers), len(reasons), len(amounts)}
        if len(lengths) != 1:
            raise ArityMismatch(
                f"column lengths differ: paper_ids={len(paper_ids)} researchers={len(researchers)} "
                f"reasons={len(reasons)} amounts={len(amounts)}"
            )
        entries = [
            RoyaltyEntry.model_construct(paper_id=p, researcher=r or "", reason=why, amount=a)
            for p, r, why, a in zip(paper_ids, researchers, reasons, amounts)
        ]
        return self.batch_pay_royalties(entries, payer, total_funds)

    def _settle(self, entries: Sequence[RoyaltyEntry], payer: str, memo: str) -> List[RoyaltyPayment]:
        """Validate every entry, then record, notify the origin service and move the fees last.

        Nothing leaves the ledger until all entries passed validation and every
        ledger write and origin notification succeeded; the treasury receives
        the summed fee in a single transfer.
        """
        with self._store.transaction() as state:
            recipients = [self._check_entry(entry) for entry in entries]
            payments = [
                self._record(state, entry, researcher, payer) for entry, researcher in zip(entries, recipients)
            ]
            total_fee = sum(payment.fee for payment in payments)
            if total_fee > 0 and state.treasury:
                try:
                    self._transfers.transfer(state.treasury, total_fee, memo=memo)
                except TransferFailed as exc:
                    logger.error("Fee transfer of %d to treasury %s failed: %s", total_fee, state.treasury, exc)
                    raise FeeTransferFailed(f"fee transfer to treasury failed: {exc.detail}") from exc
        return payments

    def _check_entry(self, entry: RoyaltyEntry) -> str:
        _check_amount(entry.amount)
        if is_null_principal(entry.researcher):
            raise InvalidRecipient("royalty recipient cannot be the null principal")
        researcher = normalize_principal(entry.researcher)
        if not self._origin.verify_ownership(entry.paper_id, researcher):
            raise NotOwner(f"{researcher} is not the attested owner of paper {entry.paper_id}")
        return researcher

    def _record(self, state: LedgerState, entry: RoyaltyEntry, researcher: str, payer: str) -> RoyaltyPayment:
        fee, net = self.calculate_fee(entry.amount, state.fee_basis_points)
        state.balances[researcher] = state.balances.get(researcher, 0) + net

        payment_id = state.next_id("payment_counter")
        payment = RoyaltyPayment(
            id=payment_id,
            paper_id=entry.paper_id,
            researcher=researcher,
            amount=net,
            gross_amount=entry.amount,
            fee=fee,
            payer=normalize_principal(payer),
            reason=entry.reason,
        )
        state.payments[payment_id] = payment
        state.payments_by_paper.setdefault(entry.paper_id, []).append(payment_id)
        state.payments_by_researcher.setdefault(researcher, []).append(payment_id)

        self._origin.record_royalty_payment(entry.paper_id, researcher, net)
        state.emit(
            "RoyaltyPaid",
            payment_id=payment_id,
            paper_id=entry.paper_id,
            researcher=researcher,
            amount=net,
            fee=fee,
        )
        return payment

    def withdraw_royalties(self, caller: str) -> int:
        """Pay out the caller's whole balance and reset it to zero."""
        caller = normalize_principal(caller)
        with self._store.transaction() as state:
            amount = state.balances.get(caller, 0)
            if amount <= 0:
                raise NothingToWithdraw(f"{caller or '<anonymous>'} has no royalties to withdraw")
            state.balances[caller] = 0
            withdrawal = Withdrawal(id=state.next_id("withdrawal_counter"), researcher=caller, amount=amount)
            state.withdrawals.append(withdrawal)
            state.emit("RoyaltyWithdrawn", researcher=caller, amount=amount, withdrawal_id=withdrawal.id)
            try:
                self._transfers.transfer(caller, amount, memo="royalty withdrawal")
            except TransferFailed as exc:
                logger.error("Payout of %d to %s failed: %s", amount, caller, exc)
                raise PayoutFailed(f"payout to {caller} failed: {exc.detail}") from exc
        logger.info("%s withdrew %d", caller, amount)
        return amount

    # Administration

    def update_fee_basis_points(self, new_value: int, caller: str) -> None:
        with self._store.transaction() as state:
            self._roles.require_admin(caller)
            if not _is_amount(new_value) or new_value < 0:
                raise InvalidAmount(f"fee must be a non-negative integer, got {new_value!r}")
            if new_value > MAX_FEE_BASIS_POINTS:
                raise FeeTooHigh(f"fee {new_value} exceeds {MAX_FEE_BASIS_POINTS} basis points")
            old_value = state.fee_basis_points
            state.fee_basis_points = new_value
            state.emit("FeeUpdated", old_value=old_value, new_value=new_value)
        logger.info("Fee changed from %d to %d basis points", old_value, new_value)

    def update_treasury(self, new_principal: str, caller: str) -> None:
        with self._store.transaction() as state:
            self._roles.require_admin(caller)
            if is_null_principal(new_principal):
                raise InvalidAddress("treasury cannot be the null principal")
            old_treasury = state.treasury
            state.treasury = normalize_principal(new_principal)
            state.emit("TreasuryUpdated", old_treasury=old_treasury, new_treasury=state.treasury)
        logger.info("Treasury changed from %s to %s", old_treasury, new_principal)

    # Queries

    def get_balance(self, principal: str) -> int:
        return self._store.state.balances.get(normalize_principal(principal), 0)

    def get_payment_details(self, payment_id: int) -> RoyaltyPayment:
        payment = self._store.state.payments.get(payment_id)
        if payment is None:
            raise NotFound(f"payment {payment_id} does not exist")
        return payment.model_copy()

    def get_payments_for_paper(self, paper_id: int) -> List[int]:
        return list(self._store.state.payments_by_paper.get(paper_id, []))

    def get_payments_for_researcher(self, principal: str) -> List[int]:
        return list(self._store.state.payments_by_researcher.get(normalize_principal(principal), []))

    def get_total_royalties_for_paper(self, paper_id: int) -> int:
        state = self._store.state
        return sum(state.payments[payment_id].amount for payment_id in state.payments_by_paper.get(paper_id, []))

    def get_withdrawals(self, principal: Optional[str] = None) -> List[Withdrawal]:
        withdrawals = self._store.state.withdrawals
        if principal is None:
            return list(withdrawals)
        principal = normalize_principal(principal)
        return [w for w in withdrawals if w.researcher == principal]

    def get_ledger_stats(self) -> Dict:
        state = self._store.state
        payments = state.payments.values()
        return {
            'total_payments': len(state.payments),
            'total_paid': sum(p.amount for p in payments),
            'total_fees': sum(p.fee for p in payments),
            'total_withdrawn': sum(w.amount for w in state.withdrawals),
            'outstanding_balance': sum(state.balances.values()),
            'total_researchers': len(state.payments_by_researcher),
            'fee_basis_points': state.fee_basis_points,
            'treasury': state.treasury,
        }
