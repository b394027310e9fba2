from enum import Enum as PyEnum
from sqlalchemy import (
    Boolean, Column, Integer, String, Float, ForeignKey, DateTime, UniqueConstraint,
    Index, Numeric, JSON, Table, Text
)
from sqlalchemy.orm import relationship
from datetime import datetime
import hashlib
import os
from utils import IST_TIMEZONE
from core.database import Base


def _now_ist():
    return datetime.now(IST_TIMEZONE)


# --- ENUMS (Centralized) ---

class UserRole(str, PyEnum):
    SALES_EXECUTIVE = "SALES_EXECUTIVE"
    SUBDEALER = "SUBDEALER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"


class BookingType(str, PyEnum):
    BRANCH = "BRANCH"
    SUBDEALER = "SUBDEALER"


class BookingStatus(str, PyEnum):
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class CustomerType(str, PyEnum):
    B2B = "B2B"
    B2C = "B2C"
    CSD = "CSD"


class RtoType(str, PyEnum):
    MH = "MH"
    BH = "BH"
    CRTM = "CRTM"


class ModelType(str, PyEnum):
    EV = "EV"
    ICE = "ICE"
    CSD = "CSD"


class DiscountType(str, PyEnum):
    FIXED = "FIXED"
    PERCENTAGE = "PERCENTAGE"


class ApprovalStatus(str, PyEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PaymentType(str, PyEnum):
    CASH = "CASH"
    FINANCE = "FINANCE"


class DocumentStatus(str, PyEnum):
    NOT_SUBMITTED = "NOT_SUBMITTED"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class InsuranceStatus(str, PyEnum):
    AWAITING = "AWAITING"
    COMPLETED = "COMPLETED"
    LATER = "LATER"


class AuditOutcome(str, PyEnum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


# --- 1. SALES ENTITIES ---

class Branch(Base):
    __tablename__ = "branches"

    Branch_ID = Column(String(10), primary_key=True, index=True)
    Branch_Name = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    users = relationship("User", back_populates="branch")
    bookings = relationship("Booking", back_populates="branch")


class Subdealer(Base):
    __tablename__ = "subdealers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)
    is_active = Column(Boolean, default=True, nullable=False)

    users = relationship("User", back_populates="subdealer")
    bookings = relationship("Booking", back_populates="subdealer")


class SequenceCounter(Base):
    """Named monotonically increasing counters (booking numbers)."""
    __tablename__ = "sequence_counters"

    name = Column(String(50), primary_key=True)
    last_number = Column(Integer, default=0, nullable=False)


# --- 2. UNIVERSAL VEHICLE & ACCESSORY DATA ---

model_colors = Table(
    "model_colors",
    Base.metadata,
    Column("model_id", Integer, ForeignKey("vehicle_models.id"), primary_key=True),
    Column("color_id", Integer, ForeignKey("colors.id"), primary_key=True),
)

accessory_models = Table(
    "accessory_models",
    Base.metadata,
    Column("accessory_id", Integer, ForeignKey("accessories.id"), primary_key=True),
    Column("model_id", Integer, ForeignKey("vehicle_models.id"), primary_key=True),
)


class Color(Base):
    __tablename__ = "colors"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    code = Column(String(20))


class VehicleModel(Base):
    __tablename__ = "vehicle_models"
    id = Column(Integer, primary_key=True, index=True)
    model_name = Column(String(100), nullable=False, unique=True)
    type = Column(String(10), nullable=False, default=ModelType.ICE.value)
    status = Column(String(10), nullable=False, default="active")
    model_discount = Column(Numeric(12, 2), default=0)

    colors = relationship("Color", secondary=model_colors)
    prices = relationship("ModelPrice", back_populates="model")


class PriceHeader(Base):
    """A named charge category of the price matrix (tax, registration, accessories total...)."""
    __tablename__ = "price_headers"
    id = Column(Integer, primary_key=True, index=True)
    header_key = Column(String(100), nullable=False)
    type = Column(String(10), nullable=False)
    priority = Column(Integer, nullable=False, default=0)
    is_mandatory = Column(Boolean, default=False, nullable=False)
    is_discount = Column(Boolean, default=False, nullable=False)
    gst_rate = Column(Float, default=0.0)


class ModelPrice(Base):
    __tablename__ = "model_prices"
    __table_args__ = (
        Index('idx_model_price_lookup', 'model_id', 'header_id'),
    )
    id = Column(Integer, primary_key=True, index=True)
    model_id = Column(Integer, ForeignKey("vehicle_models.id"), nullable=False)
    header_id = Column(Integer, ForeignKey("price_headers.id"), nullable=False)
    branch_id = Column(String(10), ForeignKey("branches.Branch_ID"), nullable=True)
    subdealer_id = Column(Integer, ForeignKey("subdealers.id"), nullable=True)
    value = Column(Numeric(12, 2), nullable=False)
    price_metadata = Column(JSON, nullable=True)

    model = relationship("VehicleModel", back_populates="prices")
    header = relationship("PriceHeader")


class Accessory(Base):
    __tablename__ = "accessories"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)
    part_number = Column(String(50))
    price = Column(Numeric(12, 2), nullable=False)
    status = Column(String(10), nullable=False, default="active")

    applicable_models = relationship("VehicleModel", secondary=accessory_models)


# --- 3. EXCHANGE & FINANCE PARTNERS ---

class Broker(Base):
    __tablename__ = "brokers"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    mobile = Column(String(20))
    otp_required = Column(Boolean, default=False, nullable=False)
    otp = Column(String(10), nullable=True)
    otp_expires_at = Column(DateTime, nullable=True)


class FinanceProvider(Base):
    __tablename__ = "finance_providers"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)
    is_active = Column(Boolean, default=True, nullable=False)


class FinancerRate(Base):
    __tablename__ = "financer_rates"
    id = Column(Integer, primary_key=True, index=True)
    finance_provider_id = Column(Integer, ForeignKey("finance_providers.id"), nullable=False)
    branch_id = Column(String(10), ForeignKey("branches.Branch_ID"), nullable=True)
    subdealer_id = Column(Integer, ForeignKey("subdealers.id"), nullable=True)
    gc_rate = Column(Float, nullable=False, default=0.0)
    is_active = Column(Boolean, default=True, nullable=False)


# --- 4. BOOKING AGGREGATE ---

class Booking(Base):
    """
    The booking aggregate. Price components, accessory lines, discounts and the
    chassis history are stored inline as JSON arrays and are always replaced
    wholesale, never patched element by element.
    """
    __tablename__ = "bookings"
    __table_args__ = (
        UniqueConstraint('chassis_number', name='uq_booking_chassis_number'),
        Index('idx_booking_status', 'status'),
    )

    id = Column(Integer, primary_key=True, index=True)
    booking_number = Column(String(20), unique=True, index=True, nullable=False)
    created_at = Column(DateTime, default=_now_ist)
    updated_at = Column(DateTime, default=_now_ist, onupdate=_now_ist)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Channel
    booking_type = Column(String(10), nullable=False)
    branch_id = Column(String(10), ForeignKey("branches.Branch_ID"), nullable=True)
    subdealer_id = Column(Integer, ForeignKey("subdealers.id"), nullable=True)
    sales_executive_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    subdealer_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Selection
    model_id = Column(Integer, ForeignKey("vehicle_models.id"), nullable=False)
    color_id = Column(Integer, ForeignKey("colors.id"), nullable=False)
    customer_type = Column(String(5), nullable=False)
    rto = Column(String(5), nullable=False)
    gstin = Column(String(20), default="")
    customer_details = Column(JSON, nullable=False)

    # Pricing
    hpa = Column(Boolean, default=False, nullable=False)
    optional_components = Column(JSON, default=list)
    price_components = Column(JSON, default=list)
    accessories = Column(JSON, default=list)
    accessories_total = Column(Numeric(12, 2), default=0)
    rto_amount = Column(Numeric(12, 2), default=0)
    hypothecation_charges = Column(Numeric(12, 2), default=0)
    discounts = Column(JSON, default=list)
    total_amount = Column(Numeric(12, 2), default=0)
    discounted_amount = Column(Numeric(12, 2), default=0)

    # Exchange & payment
    exchange_details = Column(JSON, nullable=True)
    payment = Column(JSON, nullable=False)

    # Lifecycle
    status = Column(String(30), nullable=False, default=BookingStatus.PENDING_APPROVAL.value)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    status_note = Column(String(255), nullable=True)
    chassis_number = Column(String(17), nullable=True, index=True)
    chassis_number_change_allowed = Column(Boolean, default=False, nullable=False)
    chassis_number_history = Column(JSON, default=list)
    claim_details = Column(JSON, nullable=True)

    # Document state owned by external workflows
    kyc_status = Column(String(20), default=DocumentStatus.NOT_SUBMITTED.value, nullable=False)
    finance_letter_status = Column(String(20), default=DocumentStatus.NOT_SUBMITTED.value, nullable=False)
    insurance_status = Column(String(20), default=InsuranceStatus.AWAITING.value, nullable=False)

    qr_code = Column(String(255), nullable=True)
    form_path = Column(String(255), nullable=True)

    branch = relationship("Branch", back_populates="bookings")
    subdealer = relationship("Subdealer", back_populates="bookings")
    model = relationship("VehicleModel")
    color = relationship("Color")
    sales_executive = relationship("User", foreign_keys=[sales_executive_id])
    subdealer_user = relationship("User", foreign_keys=[subdealer_user_id])


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, index=True)
    created_at = Column(DateTime, default=_now_ist)
    action = Column(String(30), nullable=False)
    entity = Column(String(30), nullable=False, default="Booking")
    entity_id = Column(String(50), nullable=True)
    user_id = Column(Integer, nullable=True)
    status = Column(String(10), nullable=False)
    details = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)


# --- 5. USER AUTHENTICATION ---

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, index=True, nullable=False)
    full_name = Column(String(100))
    hashed_password = Column(String(255), nullable=False)
    salt = Column(String(64), nullable=False)
    role = Column(String(255), nullable=False, default=UserRole.SALES_EXECUTIVE.value)
    status = Column(String(10), nullable=False, default="ACTIVE")
    Branch_ID = Column(String(10), ForeignKey("branches.Branch_ID"), nullable=True)
    subdealer_id = Column(Integer, ForeignKey("subdealers.id"), nullable=True)

    branch = relationship("Branch", back_populates="users")
    subdealer = relationship("Subdealer", back_populates="users")

    @property
    def roles(self) -> list:
        raw = self.role or ""
        return [r.strip() for r in raw.split(",") if r.strip()]

    @property
    def is_active(self) -> bool:
        return self.status == "ACTIVE"

    def verify_password(self, plain_password: str) -> bool:
        try:
            salt_bytes = bytes.fromhex(self.salt)
        except ValueError:
            return False
        check_hash_bytes = hashlib.pbkdf2_hmac(
            'sha256', plain_password.encode('utf-8'), salt_bytes, 100000
        )
        return check_hash_bytes.hex() == self.hashed_password

    @staticmethod
    def hash_password(plain_password: str) -> tuple:
        salt_bytes = os.urandom(32)
        hash_bytes = hashlib.pbkdf2_hmac(
            'sha256', plain_password.encode('utf-8'), salt_bytes, 100000
        )
        return hash_bytes.hex(), salt_bytes.hex()
