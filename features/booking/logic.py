"""
Booking service: the only entry point the UI (or any other front end) calls.

Every operation runs in the caller's session. Referenced rows are loaded
through ``core.data_manager`` and turned into value objects before the pricing,
accessory, discount and routing functions see them. The session is committed
once per operation; collaborators (audit, rendering, codes) run after that
commit and cannot fail the operation. A failed operation is rolled back and
still leaves a FAILED audit entry.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core import data_manager, models
from core.exceptions import (
    BookingError, BookingNotFoundError, DuplicateChassisNumberError, InvalidFieldError, MissingFieldError,
    OtpAlreadyConsumedError, OtpVerificationError, ReferenceNotFoundError
)
from core.models import AuditOutcome, BookingStatus, DiscountType, DocumentStatus, PaymentType
from features.booking import lifecycle
from features.booking.accessories import bundle_accessories
from features.booking.collaborators import BookingCollaborators, safe_call
from features.booking.config import get_rto_amount, normalize_chassis_number
from features.booking.discounts import BookingTotals, apply_discounts, compute_totals, total_discount
from features.booking.permissions import authorize, authorize_chassis_allocation
from features.booking.pricing import (
    base_amount, get_accessories_floor, hypothecation_charge, resolve_price_components
)
from features.booking.routing import (
    UserAssignment, assign_responsible_user, ensure_exchange_allowed, resolve_channel
)
from features.booking.validation import (
    normalize_choice, parse_money, validate_create_payload, validate_gstin, validate_update_payload,
    validate_vehicle_selection
)
from features.booking.values import (
    AccessoryBundle, AccessoryLine, CashPayment, Discount, ExchangeDetails, FinancePayment, Payment,
    PriceComponent, SalesEntity, UserRef, payment_from_dict
)
from utils import as_ist, get_current_ist_time, to_money

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PricingResult:
    components: Tuple[PriceComponent, ...]
    bundle: AccessoryBundle
    discounts: Tuple[Discount, ...]
    totals: BookingTotals
    rto_amount: Decimal
    hypothecation_charges: Decimal
    base_amount: Decimal


@contextmanager
def _unit_of_work(db: Session, collaborators: BookingCollaborators, action: str, entity_id, user_id):
    try:
        yield
    except Exception as e:
        db.rollback()
        if isinstance(e, BookingError):
            log.warning("%s failed for %s: %s", action, entity_id or "new booking", e)
        else:
            log.exception("%s failed for %s", action, entity_id or "new booking")
        safe_call(f"audit {action} FAILED", collaborators.audit.record,
                  action, entity_id, user_id, AuditOutcome.FAILED, error=str(e))
        raise


def _audit_success(collaborators: BookingCollaborators, action: str, booking: models.Booking, user_id,
                   details: Optional[Dict[str, Any]] = None) -> None:
    payload = {'booking_number': booking.booking_number, 'status': booking.status}
    payload.update(details or {})
    safe_call(f"audit {action}", collaborators.audit.record,
              action, booking.id, user_id, AuditOutcome.SUCCESS, details=payload)


# --- REFERENCE RESOLUTION ---

def _resolve_entity(db: Session, branch_id, subdealer_id) -> SalesEntity:
    entity = resolve_channel(branch_id, subdealer_id)
    if entity.entity_type == 'branch':
        branch = db.query(models.Branch).filter(models.Branch.Branch_ID == entity.entity_id).first()
        if branch is None or not branch.is_active:
            raise ReferenceNotFoundError('branch', entity.entity_id)
    else:
        subdealer = db.query(models.Subdealer).filter(models.Subdealer.id == entity.entity_id).first()
        if subdealer is None or not subdealer.is_active:
            raise ReferenceNotFoundError('subdealer', entity.entity_id)
    return entity


def _entity_of(booking: models.Booking) -> SalesEntity:
    if booking.booking_type == models.BookingType.SUBDEALER.value:
        return SalesEntity('subdealer', booking.subdealer_id)
    return SalesEntity('branch', booking.branch_id)


def _assign_user(db: Session, entity: SalesEntity, actor: UserRef, requested_executive_id) -> UserAssignment:
    if entity.entity_type == 'subdealer':
        return assign_responsible_user(entity, actor.id, data_manager.get_subdealer_user_refs(db, entity.entity_id))
    requested = data_manager.get_user_by_id(db, requested_executive_id)
    return assign_responsible_user(
        entity, actor.id,
        requested_executive_id=requested_executive_id,
        requested_executive=data_manager.to_user_ref(requested) if requested else None,
    )


# --- PRICING ---

def _manual_discount(raw: Optional[Dict[str, Any]], now: datetime) -> Optional[Discount]:
    if not raw:
        return None
    if not isinstance(raw, dict):
        raise InvalidFieldError('discount', "Discount must be an object with type and value")
    try:
        discount_type = DiscountType(normalize_choice(raw.get('type'), DiscountType.FIXED.value))
    except ValueError:
        raise InvalidFieldError('discount.type', f"Invalid discount type: {raw.get('type')}")
    amount = parse_money('discount.value', raw.get('value'))
    if amount < 0:
        raise InvalidFieldError('discount.value', "Discount cannot be negative")
    if amount == 0:
        return None
    if discount_type == DiscountType.PERCENTAGE and amount > 100:
        raise InvalidFieldError('discount.value', "Percentage discount cannot exceed 100")
    return Discount(amount=amount, type=discount_type, applied_on=now)


def _discount_instructions(model: models.VehicleModel, manual: Optional[Discount], now: datetime
                           ) -> Tuple[Discount, ...]:
    """Model discount first, then the manually entered one."""
    instructions = []
    model_discount = to_money(model.model_discount)
    if model_discount > 0:
        instructions.append(Discount(
            amount=model_discount,
            type=DiscountType.FIXED,
            is_model_discount=True,
            applied_on=now,
            approval_note='Model discount',
        ))
    if manual is not None:
        instructions.append(manual)
    return tuple(instructions)


def _price_booking(db: Session, entity: SalesEntity, model: models.VehicleModel, rto_type: str, hpa: bool,
                   optional_ids: Sequence, accessory_ids: Sequence, manual: Optional[Discount],
                   now: datetime) -> PricingResult:
    headers = data_manager.get_headers_for_model_type(db, model.type)
    matrix = data_manager.get_price_matrix(db, model.id)

    components = resolve_price_components(headers, matrix, entity, optional_ids, hpa)
    floor = get_accessories_floor(headers, matrix, entity)
    bundle = bundle_accessories(accessory_ids, data_manager.get_accessory_catalog(db), model.id, floor)

    discounts = _discount_instructions(model, manual, now)
    discounted = apply_discounts(components, discounts)
    rto_amount = get_rto_amount(rto_type)

    return PricingResult(
        components=discounted,
        bundle=bundle,
        discounts=discounts,
        totals=compute_totals(discounted, bundle.total, rto_amount),
        rto_amount=rto_amount,
        hypothecation_charges=hypothecation_charge(discounted),
        base_amount=base_amount(components),
    )


def _build_payment(db: Session, raw: Dict[str, Any], entity: SalesEntity, base: Decimal) -> Payment:
    if normalize_choice(raw.get('type')) != PaymentType.FINANCE.value:
        return CashPayment()

    financer_id = raw.get('financer_id')
    if data_manager.get_finance_provider(db, financer_id) is None:
        raise ReferenceNotFoundError('financer', financer_id)

    gc_applicable = bool(raw.get('gc_applicable'))
    gc_amount = Decimal("0.00")
    if gc_applicable:
        rate = data_manager.get_financer_rate(db, financer_id, entity)
        if rate is None:
            raise ReferenceNotFoundError(
                'financer rate', financer_id, "No active GC rate found for this financer and sales entity"
            )
        gc_amount = to_money(base * Decimal(str(rate.gc_rate)) / Decimal(100))

    return FinancePayment(
        financer_id=int(financer_id),
        scheme=raw.get('scheme'),
        emi_plan=raw.get('emi_plan'),
        gc_applicable=gc_applicable,
        gc_amount=gc_amount,
    )


def _payment_payload_of(booking: models.Booking) -> Dict[str, Any]:
    stored = payment_from_dict(booking.payment)
    if isinstance(stored, CashPayment):
        return {'type': PaymentType.CASH.value}
    return {
        'type': PaymentType.FINANCE.value,
        'financer_id': stored.financer_id,
        'scheme': stored.scheme,
        'emi_plan': stored.emi_plan,
        'gc_applicable': stored.gc_applicable,
    }


# --- EXCHANGE ---

def _consume_broker_otp(db: Session, broker: models.Broker, otp: Optional[str], now: datetime) -> None:
    """Verify-then-clear. The clear is a conditional update so a concurrent use of the same OTP loses."""
    if not otp:
        raise OtpVerificationError("OTP is required for this broker")
    if not broker.otp:
        raise OtpAlreadyConsumedError(broker.id)
    if str(broker.otp) != str(otp):
        raise OtpVerificationError("Invalid OTP")
    if broker.otp_expires_at is None or as_ist(broker.otp_expires_at) < now:
        raise OtpVerificationError("OTP has expired")

    cleared = db.query(models.Broker).filter(
        models.Broker.id == broker.id,
        models.Broker.otp == str(otp),
    ).update({models.Broker.otp: None, models.Broker.otp_expires_at: None}, synchronize_session=False)
    if cleared != 1:
        raise OtpAlreadyConsumedError(broker.id)


def _build_exchange(db: Session, raw: Dict[str, Any], now: datetime) -> ExchangeDetails:
    broker_id = raw.get('broker_id')
    if broker_id in (None, ""):
        raise MissingFieldError(['exchange.broker_id'], ["Broker is required for exchange"])
    broker = data_manager.get_broker(db, broker_id, lock=True)
    if broker is None:
        raise ReferenceNotFoundError('broker', broker_id)

    verified = False
    if broker.otp_required:
        _consume_broker_otp(db, broker, raw.get('otp'), now)
        verified = True

    return ExchangeDetails(
        broker_id=broker.id,
        price=parse_money('exchange.exchange_price', raw.get('exchange_price')),
        vehicle_number=raw.get('vehicle_number'),
        chassis_number=raw.get('chassis_number'),
        otp_verified=verified,
    )


def _selected_accessory_ids(raw) -> list:
    if isinstance(raw, dict):
        return list(raw.get('selected') or [])
    return list(raw or [])


def _after_commit_documents(db: Session, booking: models.Booking, collaborators: BookingCollaborators) -> None:
    code = safe_call("generate booking code", collaborators.codes.generate, booking.id)
    path = safe_call("render booking form", collaborators.renderer.render, booking_snapshot(booking))
    if code is None and path is None:
        return
    if code is not None:
        booking.qr_code = code
    if path is not None:
        booking.form_path = path
    try:
        db.commit()
    except Exception:
        db.rollback()
        log.exception("Could not store documents for booking %s", booking.booking_number)


# --- OPERATIONS ---

def create_booking(db: Session, payload: Dict[str, Any], actor: UserRef,
                   collaborators: Optional[BookingCollaborators] = None) -> Dict[str, Any]:
    collaborators = collaborators or BookingCollaborators()
    now = get_current_ist_time()

    with _unit_of_work(db, collaborators, 'CREATE', None, actor.id):
        authorize(actor.roles, BookingStatus.PENDING_APPROVAL)
        validate_create_payload(payload)

        entity = _resolve_entity(db, payload.get('branch'), payload.get('subdealer'))
        model = data_manager.get_vehicle_model(db, payload['model_id'])
        validate_vehicle_selection(model, payload['model_id'], payload['model_color'], payload['customer_type'])

        exchange_raw = payload.get('exchange') or {}
        is_exchange = bool(exchange_raw.get('is_exchange'))
        ensure_exchange_allowed(entity, is_exchange)

        assignment = _assign_user(db, entity, actor, payload.get('sales_executive'))

        hpa = bool(payload.get('hpa'))
        optional_ids = list(payload.get('optional_components') or [])
        pricing = _price_booking(
            db, entity, model, payload['rto_type'], hpa, optional_ids,
            _selected_accessory_ids(payload.get('accessories')),
            _manual_discount(payload.get('discount'), now), now,
        )
        payment = _build_payment(db, payload['payment'], entity, pricing.base_amount)
        exchange = _build_exchange(db, exchange_raw, now) if is_exchange else None

        booking_number, _ = data_manager.next_booking_number(db)
        booking = models.Booking(
            booking_number=booking_number,
            created_by=actor.id,
            booking_type=entity.booking_type.value,
            branch_id=entity.entity_id if entity.entity_type == 'branch' else None,
            subdealer_id=entity.entity_id if entity.entity_type == 'subdealer' else None,
            sales_executive_id=assignment.sales_executive_id,
            subdealer_user_id=assignment.subdealer_user_id,
            model_id=model.id,
            color_id=int(payload['model_color']),
            customer_type=payload['customer_type'],
            rto=payload['rto_type'],
            gstin=payload.get('gstin') or '',
            customer_details=dict(payload['customer_details']),
            hpa=hpa,
            optional_components=[str(i) for i in optional_ids],
            exchange_details=exchange.to_dict() if exchange else None,
            payment=payment.to_dict(),
            status=BookingStatus.PENDING_APPROVAL.value,
            chassis_number_history=[],
            created_at=now,
        )
        lifecycle.apply_pricing(
            booking, pricing.components, pricing.bundle, pricing.discounts, pricing.totals,
            pricing.rto_amount, pricing.hypothecation_charges,
        )
        db.add(booking)
        db.commit()

    db.refresh(booking)
    log.info("Booking %s created by user %s (%s %s, total %s)", booking.booking_number, actor.id,
             booking.booking_type, entity.entity_id, booking.total_amount)
    _after_commit_documents(db, booking, collaborators)
    _audit_success(collaborators, 'CREATE', booking, actor.id)
    return booking_snapshot(booking)


def update_booking(db: Session, booking_id: int, changes: Dict[str, Any], actor: UserRef,
                   collaborators: Optional[BookingCollaborators] = None) -> Dict[str, Any]:
    """
    Applies changes to an editable booking and recomputes every derived value
    (components, accessories, discounts, payment GC and totals) from scratch.
    """
    collaborators = collaborators or BookingCollaborators()
    now = get_current_ist_time()

    with _unit_of_work(db, collaborators, 'UPDATE', booking_id, actor.id):
        authorize(actor.roles, BookingStatus.PENDING_APPROVAL)
        booking = data_manager.get_booking(db, booking_id, lock=True)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        lifecycle.ensure_editable(booking)
        validate_update_payload(changes)

        model_id = changes.get('model_id', booking.model_id)
        color_id = changes.get('model_color', booking.color_id)
        customer_type = changes.get('customer_type', booking.customer_type)
        rto_type = changes.get('rto_type', booking.rto)
        gstin = changes.get('gstin', booking.gstin)
        hpa = bool(changes.get('hpa', booking.hpa))
        optional_ids = list(changes.get('optional_components', booking.optional_components or []))

        model = data_manager.get_vehicle_model(db, model_id)
        validate_vehicle_selection(model, model_id, color_id, customer_type)
        validate_gstin(customer_type, gstin)

        if 'accessories' in changes:
            accessory_ids = _selected_accessory_ids(changes['accessories'])
        else:
            accessory_ids = [
                line.accessory_id for line in map(AccessoryLine.from_dict, booking.accessories or [])
                if not line.is_balance_line
            ]

        if 'discount' in changes:
            manual = _manual_discount(changes['discount'], now)
        else:
            previous = [d for d in lifecycle.load_discounts(booking) if not d.is_model_discount]
            manual = Discount(amount=previous[-1].amount, type=previous[-1].type, applied_on=now) if previous else None

        entity = _entity_of(booking)
        pricing = _price_booking(db, entity, model, rto_type, hpa, optional_ids, accessory_ids, manual, now)
        payment = _build_payment(db, changes.get('payment', _payment_payload_of(booking)), entity,
                                 pricing.base_amount)

        booking.model_id = model.id
        booking.color_id = int(color_id)
        booking.customer_type = customer_type
        booking.rto = rto_type
        booking.gstin = gstin or ''
        booking.hpa = hpa
        booking.optional_components = [str(i) for i in optional_ids]
        if 'customer_details' in changes:
            booking.customer_details = dict(changes['customer_details'])
        booking.payment = payment.to_dict()
        lifecycle.apply_pricing(
            booking, pricing.components, pricing.bundle, pricing.discounts, pricing.totals,
            pricing.rto_amount, pricing.hypothecation_charges,
        )
        db.commit()

    db.refresh(booking)
    log.info("Booking %s updated by user %s", booking.booking_number, actor.id)
    _audit_success(collaborators, 'UPDATE', booking, actor.id, {'fields': sorted(changes)})
    return booking_snapshot(booking)


def _change_status(db: Session, booking_id: int, actor: UserRef, target: BookingStatus, action: str,
                   apply, collaborators: Optional[BookingCollaborators]) -> Dict[str, Any]:
    collaborators = collaborators or BookingCollaborators()
    with _unit_of_work(db, collaborators, action, booking_id, actor.id):
        authorize(actor.roles, target)
        booking = data_manager.get_booking(db, booking_id, lock=True)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        apply(booking)
        db.commit()

    db.refresh(booking)
    _audit_success(collaborators, action, booking, actor.id, {'note': booking.status_note})
    return booking_snapshot(booking)


def approve_booking(db: Session, booking_id: int, actor: UserRef, note: Optional[str] = None,
                    collaborators: Optional[BookingCollaborators] = None) -> Dict[str, Any]:
    return _change_status(db, booking_id, actor, BookingStatus.APPROVED, 'APPROVE',
                          lambda b: lifecycle.approve(b, actor.id, note), collaborators)


def reject_booking(db: Session, booking_id: int, actor: UserRef, note: Optional[str] = None,
                   collaborators: Optional[BookingCollaborators] = None) -> Dict[str, Any]:
    return _change_status(db, booking_id, actor, BookingStatus.REJECTED, 'REJECT',
                          lambda b: lifecycle.reject(b, actor.id, note), collaborators)


def complete_booking(db: Session, booking_id: int, actor: UserRef,
                     collaborators: Optional[BookingCollaborators] = None) -> Dict[str, Any]:
    return _change_status(db, booking_id, actor, BookingStatus.COMPLETED, 'COMPLETE',
                          lifecycle.complete, collaborators)


def cancel_booking(db: Session, booking_id: int, actor: UserRef, reason: Optional[str] = None,
                   collaborators: Optional[BookingCollaborators] = None) -> Dict[str, Any]:
    return _change_status(db, booking_id, actor, BookingStatus.CANCELLED, 'CANCEL',
                          lambda b: lifecycle.cancel(b, reason), collaborators)


def allocate_chassis_number(db: Session, booking_id: int, payload: Dict[str, Any], actor: UserRef,
                            collaborators: Optional[BookingCollaborators] = None) -> Dict[str, Any]:
    """
    Allocates or changes the chassis number. Uniqueness is checked up front and
    again by the database constraint when the change is flushed.
    """
    collaborators = collaborators or BookingCollaborators()
    now = get_current_ist_time()

    with _unit_of_work(db, collaborators, 'ALLOCATE_CHASSIS', booking_id, actor.id):
        authorize_chassis_allocation(actor.roles)
        booking = data_manager.get_booking(db, booking_id, lock=True)
        if booking is None:
            raise BookingNotFoundError(booking_id)

        number = lifecycle.validate_chassis_number(payload.get('chassis_number'))
        if data_manager.find_booking_by_chassis(db, number, exclude_id=booking.id) is not None:
            raise DuplicateChassisNumberError(number)

        claim = None
        if payload.get('has_claim'):
            claim = lifecycle.build_claim(
                payload.get('price_claim'), payload.get('description'),
                payload.get('documents') or [], actor.id, now,
            )

        is_initial = lifecycle.allocate_chassis(booking, number, actor.id, payload.get('reason'), claim, now)
        try:
            db.flush()
        except IntegrityError:
            raise DuplicateChassisNumberError(number)
        db.commit()

    db.refresh(booking)
    _audit_success(collaborators, 'ALLOCATE_CHASSIS', booking, actor.id,
                   {'chassis_number': number, 'initial': is_initial})
    return booking_snapshot(booking)


# --- QUERIES ---

def get_booking_by_chassis_number(db: Session, chassis_number: str) -> Dict[str, Any]:
    number = normalize_chassis_number(chassis_number)
    booking = data_manager.find_booking_by_chassis(db, number)
    if booking is None:
        raise BookingNotFoundError(number)
    return booking_snapshot(booking)


def check_ready_for_delivery(db: Session, booking_id: int,
                             collaborators: Optional[BookingCollaborators] = None) -> Dict[str, Any]:
    collaborators = collaborators or BookingCollaborators()
    booking = data_manager.get_booking(db, booking_id)
    if booking is None:
        raise BookingNotFoundError(booking_id)

    statuses = collaborators.document_status.lookup(booking)
    missing = []
    if booking.status != BookingStatus.APPROVED.value:
        missing.append("Booking is not approved")
    if statuses.get('kyc') != DocumentStatus.APPROVED.value:
        missing.append("KYC is not approved")
    if (booking.payment or {}).get('type') == PaymentType.FINANCE.value \
            and statuses.get('finance_letter') != DocumentStatus.APPROVED.value:
        missing.append("Finance letter is not approved")

    return {
        'booking_number': booking.booking_number,
        'ready': not missing,
        'missing': missing,
        'documents': statuses,
    }


def booking_snapshot(booking: models.Booking) -> Dict[str, Any]:
    """Plain dict view of the aggregate; money values are Decimals."""
    components = lifecycle.load_components(booking)
    return {
        'id': booking.id,
        'booking_number': booking.booking_number,
        'booking_type': booking.booking_type,
        'branch_id': booking.branch_id,
        'subdealer_id': booking.subdealer_id,
        'sales_executive_id': booking.sales_executive_id,
        'subdealer_user_id': booking.subdealer_user_id,
        'model_id': booking.model_id,
        'model_name': booking.model.model_name if booking.model else None,
        'color_id': booking.color_id,
        'color_name': booking.color.name if booking.color else None,
        'customer_type': booking.customer_type,
        'rto': booking.rto,
        'gstin': booking.gstin,
        'customer_details': dict(booking.customer_details or {}),
        'hpa': booking.hpa,
        'optional_components': list(booking.optional_components or []),
        'price_components': list(booking.price_components or []),
        'accessories': list(booking.accessories or []),
        'accessories_total': to_money(booking.accessories_total),
        'rto_amount': to_money(booking.rto_amount),
        'hypothecation_charges': to_money(booking.hypothecation_charges),
        'discounts': list(booking.discounts or []),
        'total_amount': to_money(booking.total_amount),
        'total_discount': total_discount(components),
        'discounted_amount': to_money(booking.discounted_amount),
        'exchange_details': booking.exchange_details,
        'payment': dict(booking.payment or {}),
        'status': booking.status,
        'status_note': booking.status_note,
        'approved_by': booking.approved_by,
        'approved_at': booking.approved_at,
        'chassis_number': booking.chassis_number,
        'chassis_number_change_allowed': booking.chassis_number_change_allowed,
        'chassis_number_history': list(booking.chassis_number_history or []),
        'claim_details': booking.claim_details,
        'kyc_status': booking.kyc_status,
        'finance_letter_status': booking.finance_letter_status,
        'insurance_status': booking.insurance_status,
        'qr_code': booking.qr_code,
        'form_path': booking.form_path,
        'created_by': booking.created_by,
        'created_at': booking.created_at,
    }
