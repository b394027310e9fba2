import os
from decimal import Decimal

import pytest

from core import data_manager, models
from core.exceptions import (
    AmbiguousChannelError, BookingLockedError, BookingNotFoundError, ChassisAllocationError,
    DiscountCapExceededError, DuplicateChassisNumberError, ExchangeNotAllowedError, InvalidFieldError,
    InvalidSalesExecutiveError, InvalidTransitionError, MissingFieldError, NoSubdealerUserError,
    OtpAlreadyConsumedError, OtpVerificationError, PermissionDeniedError, ReferenceNotFoundError
)
from core.models import AuditOutcome, BookingStatus, DocumentStatus
from features.booking import logic
from features.booking.collaborators import BookingCollaborators
from features.booking.config import HYPOTHECATION_HEADER_KEY

CHASSIS_A = "ME4JF50A1K1234567"
CHASSIS_B = "ME4JF50A1K7654321"


def audit_rows(db, status=None):
    query = db.query(models.AuditLog).order_by(models.AuditLog.id)
    if status:
        query = query.filter(models.AuditLog.status == status.value)
    return query.all()


def components_by_key(snapshot):
    return {c['header_key']: c for c in snapshot['price_components']}


# --- Creation ---

def test_create_branch_booking(db, actors, booking_payload, collaborators):
    snapshot = logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)

    assert snapshot['booking_number'] == "BK000001"
    assert snapshot['status'] == BookingStatus.PENDING_APPROVAL.value
    assert snapshot['booking_type'] == 'BRANCH'
    assert snapshot['sales_executive_id'] == actors['exec1'].id
    assert snapshot['subdealer_user_id'] is None

    comps = components_by_key(snapshot)
    assert comps['TAX']['discounted_value'] == "600.00"
    assert comps['REG']['discounted_value'] == "500.00"
    assert comps[HYPOTHECATION_HEADER_KEY]['discounted_value'] == "0.00"

    assert snapshot['accessories_total'] == Decimal("1200.00")
    assert snapshot['accessories'][-1] == {'accessory': None, 'name': None, 'price': "400.00", 'discount': "0.00"}
    assert snapshot['total_amount'] == Decimal("2300.00")
    assert snapshot['total_discount'] == Decimal("400.00")
    assert snapshot['discounted_amount'] == Decimal("1900.00")
    assert snapshot['discounts'][0]['approval_status'] == 'PENDING'


def test_totals_invariants_hold(db, actors, booking_payload, collaborators):
    snapshot = logic.create_booking(db, booking_payload(hpa=True, rto_type='BH', optional_components=[4]),
                                    actors['exec1'], collaborators)
    component_sum = sum(Decimal(c['discounted_value']) for c in snapshot['price_components'])
    assert component_sum + snapshot['accessories_total'] + snapshot['rto_amount'] == snapshot['total_amount']
    assert snapshot['total_amount'] - snapshot['total_discount'] == snapshot['discounted_amount']
    assert sum(Decimal(a['price']) for a in snapshot['accessories']) == snapshot['accessories_total']
    assert snapshot['rto_amount'] == Decimal("5000.00")
    assert snapshot['hypothecation_charges'] == Decimal("300.00")


def test_booking_numbers_increase(db, actors, booking_payload, collaborators):
    first = logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)
    second = logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)
    assert (first['booking_number'], second['booking_number']) == ("BK000001", "BK000002")


def test_after_commit_documents(db, actors, booking_payload, collaborators):
    snapshot = logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)
    assert snapshot['qr_code'].startswith(f"BKQR-{snapshot['id']}-")
    assert os.path.exists(snapshot['form_path'])


def test_collaborator_failure_does_not_fail_creation(db, actors, booking_payload, collaborators):
    class BrokenRenderer:
        def render(self, snapshot):
            raise IOError("disk full")

    collaborators.renderer = BrokenRenderer()
    snapshot = logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)
    assert snapshot['form_path'] is None
    assert snapshot['qr_code'] is not None
    assert db.query(models.Booking).count() == 1


def test_create_records_success_audit(db, actors, booking_payload, collaborators):
    snapshot = logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)
    rows = audit_rows(db)
    assert [(r.action, r.status, r.entity_id) for r in rows] == [('CREATE', 'SUCCESS', str(snapshot['id']))]
    assert rows[0].details['booking_number'] == "BK000001"


def test_failed_create_records_failed_audit(db, actors, booking_payload, collaborators):
    with pytest.raises(AmbiguousChannelError):
        logic.create_booking(db, booking_payload(subdealer=1), actors['exec1'], collaborators)
    failed = audit_rows(db, AuditOutcome.FAILED)
    assert len(failed) == 1
    assert "Cannot select both" in failed[0].error
    assert db.query(models.Booking).count() == 0


def test_missing_fields(db, actors, booking_payload, collaborators):
    payload = booking_payload()
    del payload['model_color']
    payload['payment'] = None
    with pytest.raises(MissingFieldError) as exc:
        logic.create_booking(db, payload, actors['exec1'], collaborators)
    assert exc.value.fields == ['model_color', 'payment']


@pytest.mark.parametrize("overrides, error", [
    ({'customer_type': 'B2X'}, InvalidFieldError),
    ({'rto_type': 'KA'}, InvalidFieldError),
    ({'customer_details': {'salutation': 'Sir', 'name': 'A', 'mobile1': '1'}}, InvalidFieldError),
    ({'customer_type': 'B2B', 'gstin': ''}, MissingFieldError),
    ({'customer_type': 'CSD'}, InvalidFieldError),
    ({'model_color': 2}, ReferenceNotFoundError),
    ({'model_id': 3}, ReferenceNotFoundError),
    ({'model_id': 99}, ReferenceNotFoundError),
    ({'branch': 'BR09'}, ReferenceNotFoundError),
    ({'accessories': {'selected': [{'id': 3}]}}, ReferenceNotFoundError),
    ({'discount': {'type': 'BOGUS', 'value': 5}}, InvalidFieldError),
    ({'discount': {'type': 'FIXED', 'value': 'abc'}}, InvalidFieldError),
    ({'discount': {'type': 'FIXED', 'value': 'NaN'}}, InvalidFieldError),
    ({'discount': '400'}, InvalidFieldError),
    ({'branch': None, 'subdealer': 'abc'}, InvalidFieldError),
    ({'exchange': {'is_exchange': True, 'broker_id': 2, 'exchange_price': 'lots'}}, InvalidFieldError),
])
def test_create_validation_errors(db, actors, booking_payload, collaborators, overrides, error):
    with pytest.raises(error):
        logic.create_booking(db, booking_payload(**overrides), actors['exec1'], collaborators)
    assert db.query(models.Booking).count() == 0


def test_malformed_amount_is_a_field_error(db, actors, booking_payload, collaborators):
    with pytest.raises(InvalidFieldError) as exc:
        logic.create_booking(db, booking_payload(discount={'type': 'FIXED', 'value': 'abc'}),
                             actors['exec1'], collaborators)
    assert exc.value.field == 'discount.value'
    assert exc.value.http_status == 400
    assert audit_rows(db, AuditOutcome.FAILED)[0].action == 'CREATE'


def test_enum_inputs_are_case_insensitive(db, actors, booking_payload, collaborators):
    payload = booking_payload(
        discount={'type': 'percentage', 'value': 10},
        payment={'type': 'finance', 'financer_id': 1, 'gc_applicable': True},
    )
    snapshot = logic.create_booking(db, payload, actors['exec1'], collaborators)
    # 10% of the 1500 eligible TAX + REG total
    assert snapshot['total_discount'] == Decimal("150.00")
    assert snapshot['payment']['type'] == 'FINANCE'
    assert snapshot['payment']['gc_amount'] == "30.00"


def test_b2b_with_gstin(db, actors, booking_payload, collaborators):
    snapshot = logic.create_booking(db, booking_payload(customer_type='B2B', gstin='27ABCDE1234F1Z5'),
                                    actors['exec1'], collaborators)
    assert snapshot['gstin'] == '27ABCDE1234F1Z5'


def test_model_discount_applied_before_manual(db, actors, booking_payload, collaborators):
    model = db.get(models.VehicleModel, 1)
    model.model_discount = Decimal("100")
    db.commit()

    snapshot = logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)
    assert [d['is_model_discount'] for d in snapshot['discounts']] == [True, False]
    assert components_by_key(snapshot)['TAX']['discounted_value'] == "500.00"
    assert snapshot['total_discount'] == Decimal("500.00")


def test_stacked_discounts_respect_cap(db, actors, booking_payload, collaborators):
    model = db.get(models.VehicleModel, 1)
    model.model_discount = Decimal("900")
    db.commit()

    with pytest.raises(DiscountCapExceededError) as exc:
        logic.create_booking(db, booking_payload(discount={"type": "FIXED", "value": 100}),
                             actors["exec1"], collaborators)
    assert exc.value.headers == ["TAX"]


def test_named_sales_executive(db, catalog, actors, booking_payload, collaborators):
    payload = booking_payload(sales_executive=catalog['user_ids']['exec1'])
    snapshot = logic.create_booking(db, payload, actors['manager'], collaborators)
    assert snapshot['sales_executive_id'] == catalog['user_ids']['exec1']
    assert snapshot['created_by'] == actors['manager'].id


@pytest.mark.parametrize("executive", ['exec2', 'inactive_exec'])
def test_invalid_sales_executive(db, catalog, actors, booking_payload, collaborators, executive):
    payload = booking_payload(sales_executive=catalog['user_ids'][executive])
    with pytest.raises(InvalidSalesExecutiveError):
        logic.create_booking(db, payload, actors['manager'], collaborators)


def test_subdealer_booking(db, catalog, actors, booking_payload, collaborators):
    payload = booking_payload(branch=None, subdealer=1, accessories={'selected': []}, discount=None)
    snapshot = logic.create_booking(db, payload, actors['sub_user'], collaborators)
    assert snapshot['booking_type'] == 'SUBDEALER'
    assert snapshot['subdealer_user_id'] == catalog['user_ids']['sub_user']
    assert snapshot['sales_executive_id'] is None
    assert components_by_key(snapshot)['TAX']['original_value'] == "900.00"


def test_subdealer_without_user(db, actors, booking_payload, collaborators):
    with pytest.raises(NoSubdealerUserError):
        logic.create_booking(db, booking_payload(branch=None, subdealer=2), actors['admin'], collaborators)


def test_subdealer_exchange_forbidden(db, actors, booking_payload, collaborators):
    payload = booking_payload(branch=None, subdealer=1, exchange={'is_exchange': True, 'broker_id': 2})
    with pytest.raises(ExchangeNotAllowedError):
        logic.create_booking(db, payload, actors['sub_user'], collaborators)


# --- Payment ---

def test_finance_gc_amount(db, actors, booking_payload, collaborators):
    payload = booking_payload(payment={'type': 'FINANCE', 'financer_id': 1, 'scheme': 'Low EMI',
                                       'gc_applicable': True})
    snapshot = logic.create_booking(db, payload, actors['exec1'], collaborators)
    # 2% of the 1500 undiscounted component base
    assert snapshot['payment'] == {
        'type': 'FINANCE', 'financer': 1, 'scheme': 'Low EMI', 'emi_plan': None,
        'gc_applicable': True, 'gc_amount': "30.00",
    }


def test_finance_without_rate(db, actors, booking_payload, collaborators):
    payload = booking_payload(payment={'type': 'FINANCE', 'financer_id': 2, 'gc_applicable': True})
    with pytest.raises(ReferenceNotFoundError):
        logic.create_booking(db, payload, actors['exec1'], collaborators)


def test_finance_unknown_financer(db, actors, booking_payload, collaborators):
    payload = booking_payload(payment={'type': 'FINANCE', 'financer_id': 42})
    with pytest.raises(ReferenceNotFoundError):
        logic.create_booking(db, payload, actors['exec1'], collaborators)


# --- Exchange ---

def exchange(broker_id, otp=None):
    return {'is_exchange': True, 'broker_id': broker_id, 'exchange_price': 15000,
            'vehicle_number': 'MH12AB1234', 'chassis_number': 'OLDCHASSIS', 'otp': otp}


def test_exchange_otp_is_consumed(db, actors, booking_payload, collaborators):
    snapshot = logic.create_booking(db, booking_payload(exchange=exchange(1, '123456')),
                                    actors['exec1'], collaborators)
    assert snapshot['exchange_details']['otp_verified'] is True
    assert snapshot['exchange_details']['price'] == "15000.00"

    broker = db.get(models.Broker, 1)
    db.refresh(broker)
    assert broker.otp is None

    with pytest.raises(OtpAlreadyConsumedError):
        logic.create_booking(db, booking_payload(exchange=exchange(1, '123456')), actors['exec1'], collaborators)


def test_exchange_otp_mismatch(db, actors, booking_payload, collaborators):
    with pytest.raises(OtpVerificationError):
        logic.create_booking(db, booking_payload(exchange=exchange(1, '000000')), actors['exec1'], collaborators)
    assert db.get(models.Broker, 1).otp == '123456'


def test_exchange_otp_expired(db, actors, booking_payload, collaborators):
    with pytest.raises(OtpVerificationError) as exc:
        logic.create_booking(db, booking_payload(exchange=exchange(3, '999999')), actors['exec1'], collaborators)
    assert "expired" in exc.value.message


def test_exchange_without_otp_requirement(db, actors, booking_payload, collaborators):
    snapshot = logic.create_booking(db, booking_payload(exchange=exchange(2)), actors['exec1'], collaborators)
    assert snapshot['exchange_details']['otp_verified'] is False


def test_exchange_requires_broker(db, actors, booking_payload, collaborators):
    with pytest.raises(MissingFieldError):
        logic.create_booking(db, booking_payload(exchange=exchange(None)), actors['exec1'], collaborators)


# --- Update ---

def test_update_recomputes_everything(db, actors, booking_payload, collaborators):
    created = logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)
    updated = logic.update_booking(db, created['id'], {
        'hpa': True,
        'accessories': {'selected': [{'id': 1}]},
        'discount': {'type': 'FIXED', 'value': 1000},
    }, actors['exec1'], collaborators)

    comps = components_by_key(updated)
    assert comps['TAX']['discounted_value'] == "50.00"
    assert comps['REG']['discounted_value'] == "450.00"
    assert comps[HYPOTHECATION_HEADER_KEY]['discounted_value'] == "300.00"
    assert updated['accessories_total'] == Decimal("1200.00")
    assert updated['accessories'][-1]['price'] == "700.00"
    assert updated['total_amount'] == Decimal("2000.00")
    assert updated['discounted_amount'] == Decimal("1000.00")
    assert [r.action for r in audit_rows(db)] == ['CREATE', 'UPDATE']


def test_update_keeps_previous_discount(db, actors, booking_payload, collaborators):
    created = logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)
    updated = logic.update_booking(db, created['id'], {'rto_type': 'CRTM'}, actors['exec1'], collaborators)
    assert updated['total_discount'] == Decimal("400.00")
    assert updated['rto_amount'] == Decimal("4500.00")


def test_update_keeps_stored_finance_payment(db, actors, booking_payload, collaborators):
    payload = booking_payload(payment={'type': 'FINANCE', 'financer_id': 1, 'scheme': 'Low EMI',
                                       'gc_applicable': True})
    created = logic.create_booking(db, payload, actors['exec1'], collaborators)
    updated = logic.update_booking(db, created['id'], {'hpa': True}, actors['exec1'], collaborators)
    assert updated['payment']['type'] == 'FINANCE'
    assert updated['payment']['scheme'] == 'Low EMI'
    # HPA joins the GC base: 2% of 1800
    assert updated['payment']['gc_amount'] == "36.00"


def test_update_locked_after_approval(db, actors, booking_payload, collaborators):
    created = logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)
    logic.approve_booking(db, created['id'], actors['manager'], collaborators=collaborators)
    with pytest.raises(BookingLockedError):
        logic.update_booking(db, created['id'], {'hpa': True}, actors['exec1'], collaborators)
    assert audit_rows(db, AuditOutcome.FAILED)[-1].action == 'UPDATE'


def test_update_rejects_unknown_fields(db, actors, booking_payload, collaborators):
    created = logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)
    with pytest.raises(InvalidFieldError):
        logic.update_booking(db, created['id'], {'status': 'APPROVED'}, actors['exec1'], collaborators)


def test_update_missing_booking(db, actors, collaborators):
    with pytest.raises(BookingNotFoundError) as exc:
        logic.update_booking(db, 404, {'hpa': True}, actors['exec1'], collaborators)
    assert exc.value.http_status == 404


# --- Status changes ---

def test_approval_flow(db, actors, booking_payload, collaborators):
    created = logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)
    approved = logic.approve_booking(db, created['id'], actors['manager'], "OK", collaborators)
    assert approved['status'] == 'APPROVED'
    assert approved['approved_by'] == actors['manager'].id
    assert approved['approved_at'] is not None
    assert all(d['approval_status'] == 'APPROVED' for d in approved['discounts'])

    completed = logic.complete_booking(db, created['id'], actors['manager'], collaborators)
    assert completed['status'] == 'COMPLETED'


def test_sales_executive_cannot_approve(db, actors, booking_payload, collaborators):
    created = logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)
    with pytest.raises(PermissionDeniedError):
        logic.approve_booking(db, created['id'], actors['exec1'], collaborators=collaborators)
    assert db.get(models.Booking, created['id']).status == 'PENDING_APPROVAL'


def test_reject_then_edit(db, actors, booking_payload, collaborators):
    created = logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)
    rejected = logic.reject_booking(db, created['id'], actors['manager'], "Too much discount", collaborators)
    assert rejected['status_note'] == "Too much discount"
    assert rejected['discounts'][0]['approval_status'] == 'REJECTED'

    edited = logic.update_booking(db, created['id'], {'discount': {'type': 'FIXED', 'value': 100}},
                                  actors['exec1'], collaborators)
    assert edited['status'] == 'REJECTED'
    assert edited['discounts'][0]['approval_status'] == 'PENDING'

    with pytest.raises(InvalidTransitionError):
        logic.approve_booking(db, created['id'], actors['manager'], collaborators=collaborators)


def test_cancel(db, actors, booking_payload, collaborators):
    created = logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)
    cancelled = logic.cancel_booking(db, created['id'], actors['exec1'], "Customer withdrew", collaborators)
    assert cancelled['status'] == 'CANCELLED'
    assert cancelled['status_note'] == "Customer withdrew"
    with pytest.raises(InvalidTransitionError):
        logic.cancel_booking(db, created['id'], actors['exec1'], collaborators=collaborators)


# --- Chassis ---

@pytest.fixture
def approved_booking(db, actors, booking_payload, collaborators):
    created = logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)
    return logic.approve_booking(db, created['id'], actors['manager'], collaborators=collaborators)


def test_chassis_allocation_and_lookup(db, actors, approved_booking, collaborators):
    snapshot = logic.allocate_chassis_number(db, approved_booking['id'], {'chassis_number': CHASSIS_A.lower()},
                                             actors['manager'], collaborators)
    assert snapshot['chassis_number'] == CHASSIS_A
    assert snapshot['chassis_number_change_allowed'] is True

    found = logic.get_booking_by_chassis_number(db, f" {CHASSIS_A.lower()} ")
    assert found['booking_number'] == approved_booking['booking_number']

    with pytest.raises(BookingNotFoundError):
        logic.get_booking_by_chassis_number(db, CHASSIS_B)


def test_chassis_reallocation(db, actors, approved_booking, collaborators):
    booking_id = approved_booking['id']
    logic.allocate_chassis_number(db, booking_id, {'chassis_number': CHASSIS_A}, actors['manager'], collaborators)

    with pytest.raises(ChassisAllocationError):
        logic.allocate_chassis_number(db, booking_id, {'chassis_number': CHASSIS_B}, actors['manager'],
                                      collaborators)

    snapshot = logic.allocate_chassis_number(db, booking_id, {
        'chassis_number': CHASSIS_B, 'reason': 'Wrong unit picked',
        'has_claim': True, 'price_claim': 2500, 'description': 'Transit damage',
    }, actors['manager'], collaborators)
    assert snapshot['chassis_number'] == CHASSIS_B
    assert snapshot['chassis_number_history'][0]['number'] == CHASSIS_A
    assert snapshot['claim_details']['price_claim'] == "2500.00"


def test_duplicate_chassis_across_bookings(db, actors, booking_payload, approved_booking, collaborators):
    logic.allocate_chassis_number(db, approved_booking['id'], {'chassis_number': CHASSIS_A},
                                  actors['manager'], collaborators)
    other = logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)
    with pytest.raises(DuplicateChassisNumberError) as exc:
        logic.allocate_chassis_number(db, other['id'], {'chassis_number': CHASSIS_A},
                                      actors['manager'], collaborators)
    assert exc.value.chassis_number == CHASSIS_A


def test_duplicate_chassis_caught_by_constraint(db, actors, booking_payload, approved_booking, collaborators,
                                                monkeypatch):
    logic.allocate_chassis_number(db, approved_booking['id'], {'chassis_number': CHASSIS_A},
                                  actors['manager'], collaborators)
    other = logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)

    # another writer got in between the check and the write
    monkeypatch.setattr(logic.data_manager, 'find_booking_by_chassis', lambda *a, **k: None)
    with pytest.raises(DuplicateChassisNumberError):
        logic.allocate_chassis_number(db, other['id'], {'chassis_number': CHASSIS_A},
                                      actors['manager'], collaborators)
    assert db.get(models.Booking, other['id']).chassis_number is None


def test_chassis_allocation_needs_manager(db, actors, approved_booking, collaborators):
    with pytest.raises(PermissionDeniedError):
        logic.allocate_chassis_number(db, approved_booking['id'], {'chassis_number': CHASSIS_A},
                                      actors['exec1'], collaborators)


@pytest.mark.parametrize("claim, field", [
    ({'price_claim': 'abc', 'description': 'Dent'}, 'price_claim'),
    ({'price_claim': 100, 'description': 'Dent',
      'documents': [{'path': '/claims/a.jpg', 'originalName': 'a.jpg'}]}, 'documents'),
    ({'price_claim': 100, 'description': 'Dent',
      'documents': [{'path': '/claims/a.jpg', 'original_name': 'a.jpg', 'size': 'big'}]}, 'documents'),
])
def test_malformed_claim_is_a_field_error(db, actors, approved_booking, collaborators, claim, field):
    payload = {'chassis_number': CHASSIS_A, 'has_claim': True, **claim}
    with pytest.raises(InvalidFieldError) as exc:
        logic.allocate_chassis_number(db, approved_booking['id'], payload, actors['manager'], collaborators)
    assert exc.value.field == field
    assert db.get(models.Booking, approved_booking['id']).chassis_number is None


# --- Visibility and history ---

def test_booking_lists_are_scoped_to_access(db, actors, booking_payload, collaborators):
    logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)
    logic.create_booking(db, booking_payload(branch=None, subdealer=1, accessories={'selected': []}, discount=None),
                         actors['sub_user'], collaborators)
    pending = BookingStatus.PENDING_APPROVAL.value

    assert [b.booking_type for b in data_manager.get_bookings(db, pending, [], subdealer_id=1)] == ['SUBDEALER']
    assert [b.booking_type for b in data_manager.get_bookings(db, pending, ['BR01'])] == ['BRANCH']
    assert len(data_manager.get_bookings(db, pending, ['ALL'])) == 2
    assert data_manager.get_bookings(db, pending, []) == []
    assert data_manager.get_bookings(db, pending, None) == []
    assert data_manager.get_bookings(db, pending, [], subdealer_id=2) == []


def test_audit_history_per_booking(db, actors, booking_payload, collaborators):
    created = logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)
    logic.approve_booking(db, created['id'], actors['manager'], collaborators=collaborators)
    with pytest.raises(BookingLockedError):
        logic.update_booking(db, created['id'], {'hpa': True}, actors['exec1'], collaborators)
    logic.create_booking(db, booking_payload(), actors['exec1'], collaborators)

    entries = data_manager.get_audit_entries(db, created['id'])
    assert [(e.action, e.status) for e in entries] == [
        ('UPDATE', 'FAILED'), ('APPROVE', 'SUCCESS'), ('CREATE', 'SUCCESS'),
    ]
    assert len(data_manager.get_audit_entries(db, limit=2)) == 2


# --- Delivery readiness ---

def test_ready_for_delivery(db, actors, booking_payload, collaborators):
    payload = booking_payload(payment={'type': 'FINANCE', 'financer_id': 1})
    created = logic.create_booking(db, payload, actors['exec1'], collaborators)

    readiness = logic.check_ready_for_delivery(db, created['id'], collaborators)
    assert readiness['ready'] is False
    assert len(readiness['missing']) == 3

    logic.approve_booking(db, created['id'], actors['manager'], collaborators=collaborators)
    booking = db.get(models.Booking, created['id'])
    booking.kyc_status = DocumentStatus.APPROVED.value
    db.commit()
    assert logic.check_ready_for_delivery(db, created['id'], collaborators)['missing'] == [
        "Finance letter is not approved"
    ]

    booking.finance_letter_status = DocumentStatus.APPROVED.value
    db.commit()
    assert logic.check_ready_for_delivery(db, created['id'], collaborators)['ready'] is True


def test_default_collaborators_are_constructible():
    collaborators = BookingCollaborators()
    assert collaborators.codes.generate(1).startswith("BKQR-1-")
