from marketplace.extensions import db
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime
from decimal import Decimal
from sqlalchemy import CheckConstraint, UniqueConstraint
import enum
import json


class UserRole(enum.Enum):
    BUYER = 'buyer'
    SELLER = 'seller'
    ADMIN = 'admin'


class QuoteStatus(enum.Enum):
    REQUESTED = 'requested'
    SENT = 'sent'
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'
    EXPIRED = 'expired'
    SUPERSEDED = 'superseded'


class DesignContext(enum.Enum):
    PRODUCT = 'product'
    QUOTE = 'quote'


class DesignApprovalStatus(enum.Enum):
    PENDING = 'pending'
    UNDER_REVIEW = 'under_review'
    CHANGES_REQUESTED = 'changes_requested'
    RESUBMITTED = 'resubmitted'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class OrderStatus(enum.Enum):
    PENDING_PAYMENT = 'pending_payment'
    PAID = 'paid'
    PROCESSING = 'processing'
    SHIPPED = 'shipped'
    DELIVERED = 'delivered'
    CANCELLED = 'cancelled'


class BookingStatus(enum.Enum):
    PENDING_CONFIRMATION = 'pending_confirmation'
    CONFIRMED = 'confirmed'
    PENDING_PAYMENT = 'pending_payment'
    PAID = 'paid'
    ONGOING = 'ongoing'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class CheckoutSessionStatus(enum.Enum):
    PENDING_PAYMENT = 'pending_payment'
    PAID = 'paid'
    CANCELLED = 'cancelled'


class PaymentMethod(enum.Enum):
    BANK_TRANSFER = 'bank_transfer'
    IPG = 'ipg'


class TransactionType(enum.Enum):
    ORDER = 'order'
    BOOKING = 'booking'
    BOOST = 'boost'


class TransactionStatus(enum.Enum):
    PENDING = 'pending'
    ESCROW = 'escrow'
    # Boost payments skip escrow.
    PAID = 'paid'
    RELEASED = 'released'
    REFUNDED = 'refunded'


class ShipmentStatus(enum.Enum):
    PENDING = 'pending'
    PICKED_UP = 'picked_up'
    IN_TRANSIT = 'in_transit'
    DELIVERED = 'delivered'
    CANCELLED = 'cancelled'


class CarrierPaymentStatus(enum.Enum):
    UNPAID = 'unpaid'
    PAID = 'paid'


class ReturnStatus(enum.Enum):
    REQUESTED = 'requested'
    UNDER_REVIEW = 'under_review'
    SELLER_APPROVED = 'seller_approved'
    SELLER_REJECTED = 'seller_rejected'
    ADMIN_APPROVED = 'admin_approved'
    ADMIN_REJECTED = 'admin_rejected'
    REFUNDED = 'refunded'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class SellerReturnStatus(enum.Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class ReturnReason(enum.Enum):
    DEFECTIVE = 'defective'
    WRONG_ITEM = 'wrong_item'
    NOT_AS_DESCRIBED = 'not_as_described'
    DAMAGED = 'damaged'
    CHANGED_MIND = 'changed_mind'
    OTHER = 'other'


class BoostPurchaseStatus(enum.Enum):
    PENDING = 'pending'
    PAID = 'paid'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    username = db.Column(
        db.String(100),
        unique=True,
        nullable=True,
        index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(
        db.Enum(UserRole),
        nullable=False,
        default=UserRole.BUYER)
    # Percent of each sale kept by the platform (sellers only).
    commission_rate = db.Column(
        db.Numeric(5, 2),
        nullable=False,
        default=Decimal('20.00'))
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def __repr__(self):
        return f'<User {self.email} role={self.role}>'


class ShippingAddress(db.Model):
    __tablename__ = 'shipping_addresses'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    recipient_name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(20), nullable=False)
    address_line = db.Column(db.Text, nullable=False)
    city = db.Column(db.String(100), nullable=False)
    postal_code = db.Column(db.String(20), nullable=True)
    country = db.Column(db.String(2), nullable=False, default='LK')
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    def __repr__(self):
        return f'<ShippingAddress {self.id} for user {self.user_id}>'


class Product(db.Model):
    __tablename__ = 'products'

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    requires_quote = db.Column(db.Boolean, default=False, nullable=False)
    requires_design_approval = db.Column(
        db.Boolean, default=False, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    seller = db.relationship('User', foreign_keys=[seller_id])
    variants = db.relationship(
        'ProductVariant',
        backref='product',
        lazy='dynamic',
        cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Product {self.name}>'


class ProductVariant(db.Model):
    __tablename__ = 'product_variants'

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'products.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    name = db.Column(db.String(200), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    # Shipping weight in kg.
    weight_kg = db.Column(db.Numeric(8, 3), nullable=True)
    inventory = db.Column(db.Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint('price >= 0', name='check_variant_price_non_negative'),
    )

    def __repr__(self):
        return f'<ProductVariant {self.id} product={self.product_id}>'


class Service(db.Model):
    __tablename__ = 'services'

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    requires_quote = db.Column(db.Boolean, default=False, nullable=False)
    requires_design_approval = db.Column(
        db.Boolean, default=False, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    seller = db.relationship('User', foreign_keys=[seller_id])
    packages = db.relationship(
        'ServicePackage',
        backref='service',
        lazy='dynamic',
        cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Service {self.name}>'


class ServicePackage(db.Model):
    __tablename__ = 'service_packages'

    id = db.Column(db.Integer, primary_key=True)
    service_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'services.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    name = db.Column(db.String(200), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    duration_hours = db.Column(db.Integer, nullable=True)

    def __repr__(self):
        return f'<ServicePackage {self.id} service={self.service_id}>'


class Conversation(db.Model):
    __tablename__ = 'conversations'

    id = db.Column(db.Integer, primary_key=True)
    buyer_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    seller_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'products.id',
            ondelete='SET NULL'),
        nullable=True)
    service_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'services.id',
            ondelete='SET NULL'),
        nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    buyer = db.relationship('User', foreign_keys=[buyer_id])
    seller = db.relationship('User', foreign_keys=[seller_id])

    def __repr__(self):
        return (
            f"<Conversation {self.id} buyer={self.buyer_id} "
            f"seller={self.seller_id}>"
        )


class Quote(db.Model):
    __tablename__ = 'quotes'

    id = db.Column(db.Integer, primary_key=True)
    conversation_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'conversations.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    buyer_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=False,
        index=True)
    seller_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=False,
        index=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey('products.id'),
        nullable=True)
    variant_id = db.Column(
        db.Integer,
        db.ForeignKey('product_variants.id'),
        nullable=True)
    service_id = db.Column(
        db.Integer,
        db.ForeignKey('services.id'),
        nullable=True)
    package_id = db.Column(
        db.Integer,
        db.ForeignKey('service_packages.id'),
        nullable=True)
    design_approval_id = db.Column(
        db.Integer,
        db.ForeignKey('design_approvals.id'),
        nullable=True)
    status = db.Column(
        db.Enum(QuoteStatus),
        default=QuoteStatus.REQUESTED,
        nullable=False,
        index=True)
    # Null until the seller sends a price.
    quoted_price = db.Column(db.Numeric(10, 2), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    specifications = db.Column(db.Text, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True)
    accepted_at = db.Column(db.DateTime, nullable=True)
    rejected_at = db.Column(db.DateTime, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    __table_args__ = (
        CheckConstraint('quantity > 0', name='check_quote_quantity_positive'),
        CheckConstraint(
            '(product_id IS NULL) <> (service_id IS NULL)',
            name='check_quote_single_item'),
    )

    conversation = db.relationship('Conversation', backref='quotes')
    design_approval = db.relationship(
        'DesignApproval',
        foreign_keys=[design_approval_id])

    def is_expired(self, now=None):
        if self.expires_at is None:
            return False
        return (now or datetime.utcnow()) > self.expires_at

    def __repr__(self):
        return f'<Quote {self.id} status={self.status}>'


class DesignApproval(db.Model):
    __tablename__ = 'design_approvals'

    id = db.Column(db.Integer, primary_key=True)
    conversation_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'conversations.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    buyer_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=False,
        index=True)
    seller_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=False,
        index=True)
    context = db.Column(
        db.Enum(DesignContext),
        default=DesignContext.PRODUCT,
        nullable=False)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey('products.id'),
        nullable=True)
    variant_id = db.Column(
        db.Integer,
        db.ForeignKey('product_variants.id'),
        nullable=True)
    service_id = db.Column(
        db.Integer,
        db.ForeignKey('services.id'),
        nullable=True)
    package_id = db.Column(
        db.Integer,
        db.ForeignKey('service_packages.id'),
        nullable=True)
    quote_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'quotes.id',
            use_alter=True,
            name='fk_design_approvals_quote_id'),
        nullable=True)
    # Ordered list of {url, name, size, mime_type}.
    files_json = db.Column(db.Text, nullable=False, default='[]')
    buyer_notes = db.Column(db.Text, nullable=True)
    seller_notes = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.Enum(DesignApprovalStatus),
        default=DesignApprovalStatus.PENDING,
        nullable=False,
        index=True)
    copied_from_id = db.Column(
        db.Integer,
        db.ForeignKey('design_approvals.id'),
        nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    __table_args__ = (
        CheckConstraint(
            '(product_id IS NULL) <> (service_id IS NULL)',
            name='check_design_single_item'),
        CheckConstraint(
            "context <> 'QUOTE' OR "
            "(variant_id IS NULL AND package_id IS NULL)",
            name='check_quote_design_has_no_variant'),
    )

    conversation = db.relationship('Conversation', backref='design_approvals')
    quote = db.relationship('Quote', foreign_keys=[quote_id])

    @property
    def files(self):
        return json.loads(self.files_json or '[]')

    @files.setter
    def files(self, value):
        self.files_json = json.dumps(list(value or []), ensure_ascii=False)

    def __repr__(self):
        return f'<DesignApproval {self.id} status={self.status}>'


class CartItem(db.Model):
    __tablename__ = 'cart_items'

    id = db.Column(db.Integer, primary_key=True)
    buyer_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    variant_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'product_variants.id',
            ondelete='CASCADE'),
        nullable=False)
    quote_id = db.Column(
        db.Integer,
        db.ForeignKey('quotes.id'),
        nullable=True)
    design_approval_id = db.Column(
        db.Integer,
        db.ForeignKey('design_approvals.id'),
        nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    __table_args__ = (
        CheckConstraint('quantity > 0', name='check_quantity_positive'),
        UniqueConstraint(
            'buyer_id',
            'variant_id',
            name='uq_cart_buyer_variant'),
    )

    variant = db.relationship('ProductVariant')
    quote = db.relationship('Quote')

    def __repr__(self):
        return (
            f"<CartItem {self.id} buyer={self.buyer_id} "
            f"variant={self.variant_id} qty={self.quantity}>"
        )


class BankAccount(db.Model):
    __tablename__ = 'bank_accounts'

    id = db.Column(db.Integer, primary_key=True)
    bank_name = db.Column(db.String(100), nullable=False)
    account_name = db.Column(db.String(100), nullable=False)
    account_number = db.Column(db.String(50), nullable=False)
    branch = db.Column(db.String(100), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_public = db.Column(db.Boolean, default=True, nullable=False)

    def __repr__(self):
        return f'<BankAccount {self.bank_name} {self.account_number}>'


class CheckoutSession(db.Model):
    __tablename__ = 'checkout_sessions'

    id = db.Column(db.Integer, primary_key=True)
    buyer_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    # Opaque reference handed to the payment gateway.
    payment_reference = db.Column(
        db.String(64),
        unique=True,
        nullable=False,
        index=True)
    payment_method = db.Column(db.Enum(PaymentMethod), nullable=False)
    shipping_cost = db.Column(
        db.Numeric(10, 2),
        nullable=False,
        default=Decimal('0.00'))
    total_amount = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(
        db.Enum(CheckoutSessionStatus),
        default=CheckoutSessionStatus.PENDING_PAYMENT,
        nullable=False)
    notes = db.Column(db.Text, nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    orders = db.relationship(
        'Order',
        backref='checkout_session',
        lazy='dynamic')

    def __repr__(self):
        return f'<CheckoutSession {self.id} status={self.status}>'


class Order(db.Model):
    __tablename__ = 'orders'

    id = db.Column(db.Integer, primary_key=True)
    checkout_session_id = db.Column(
        db.Integer,
        db.ForeignKey('checkout_sessions.id'),
        nullable=True,
        index=True)
    buyer_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=False,
        index=True)
    seller_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=False,
        index=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey('products.id'),
        nullable=False)
    variant_id = db.Column(
        db.Integer,
        db.ForeignKey('product_variants.id'),
        nullable=False)
    quote_id = db.Column(
        db.Integer,
        db.ForeignKey('quotes.id'),
        nullable=True)
    design_approval_id = db.Column(
        db.Integer,
        db.ForeignKey('design_approvals.id'),
        nullable=True)
    shipping_address_id = db.Column(
        db.Integer,
        db.ForeignKey('shipping_addresses.id'),
        nullable=True)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    # unit_price * quantity; shipping is tracked separately.
    total_amount = db.Column(db.Numeric(10, 2), nullable=False)
    shipping_cost = db.Column(
        db.Numeric(10, 2),
        nullable=False,
        default=Decimal('0.00'))
    product_weight = db.Column(db.Numeric(8, 3), nullable=True)
    status = db.Column(
        db.Enum(OrderStatus),
        default=OrderStatus.PENDING_PAYMENT,
        nullable=False,
        index=True)
    ready_to_ship = db.Column(db.Boolean, default=False, nullable=False)
    consolidated_shipment_id = db.Column(
        db.Integer,
        db.ForeignKey('consolidated_shipments.id'),
        nullable=True,
        index=True)
    tracking_number = db.Column(db.String(100), nullable=True)
    return_attempt_count = db.Column(db.Integer, default=0, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)
    shipped_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    __table_args__ = (
        CheckConstraint('quantity > 0', name='check_order_quantity_positive'),
        CheckConstraint(
            'shipping_cost >= 0',
            name='check_order_shipping_non_negative'),
    )

    buyer = db.relationship('User', foreign_keys=[buyer_id])
    seller = db.relationship('User', foreign_keys=[seller_id])
    product = db.relationship('Product')
    variant = db.relationship('ProductVariant')
    transactions = db.relationship(
        'Transaction',
        backref='order',
        lazy='dynamic')

    def __repr__(self):
        return f'<Order {self.id} status={self.status}>'


class Booking(db.Model):
    __tablename__ = 'bookings'

    id = db.Column(db.Integer, primary_key=True)
    buyer_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=False,
        index=True)
    seller_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=False,
        index=True)
    service_id = db.Column(
        db.Integer,
        db.ForeignKey('services.id'),
        nullable=False)
    package_id = db.Column(
        db.Integer,
        db.ForeignKey('service_packages.id'),
        nullable=False)
    quote_id = db.Column(
        db.Integer,
        db.ForeignKey('quotes.id'),
        nullable=True)
    design_approval_id = db.Column(
        db.Integer,
        db.ForeignKey('design_approvals.id'),
        nullable=True)
    payment_reference = db.Column(
        db.String(64),
        unique=True,
        nullable=False,
        index=True)
    scheduled_at = db.Column(db.DateTime, nullable=True)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    total_amount = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(
        db.Enum(BookingStatus),
        default=BookingStatus.PENDING_CONFIRMATION,
        nullable=False,
        index=True)
    return_attempt_count = db.Column(db.Integer, default=0, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    __table_args__ = (
        CheckConstraint(
            'quantity > 0',
            name='check_booking_quantity_positive'),
    )

    buyer = db.relationship('User', foreign_keys=[buyer_id])
    seller = db.relationship('User', foreign_keys=[seller_id])
    service = db.relationship('Service')
    package = db.relationship('ServicePackage')
    transactions = db.relationship(
        'Transaction',
        backref='booking',
        lazy='dynamic')

    def __repr__(self):
        return f'<Booking {self.id} status={self.status}>'


class BoostPackage(db.Model):
    __tablename__ = 'boost_packages'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    duration_days = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    def __repr__(self):
        return f'<BoostPackage {self.name}>'


class BoostPurchase(db.Model):
    __tablename__ = 'boost_purchases'

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=False,
        index=True)
    package_id = db.Column(
        db.Integer,
        db.ForeignKey('boost_packages.id'),
        nullable=False)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey('products.id'),
        nullable=True)
    service_id = db.Column(
        db.Integer,
        db.ForeignKey('services.id'),
        nullable=True)
    boosted_item_id = db.Column(
        db.Integer,
        db.ForeignKey('boosted_items.id'),
        nullable=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    payment_reference = db.Column(
        db.String(64),
        unique=True,
        nullable=False,
        index=True)
    status = db.Column(
        db.Enum(BoostPurchaseStatus),
        default=BoostPurchaseStatus.PENDING,
        nullable=False)
    paid_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    package = db.relationship('BoostPackage')
    transactions = db.relationship(
        'Transaction',
        backref='boost_purchase',
        lazy='dynamic')

    def __repr__(self):
        return f'<BoostPurchase {self.id} status={self.status}>'


class BoostedItem(db.Model):
    __tablename__ = 'boosted_items'

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey('products.id'),
        nullable=True,
        index=True)
    service_id = db.Column(
        db.Integer,
        db.ForeignKey('services.id'),
        nullable=True,
        index=True)
    starts_at = db.Column(db.DateTime, nullable=False)
    ends_at = db.Column(db.DateTime, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    def __repr__(self):
        return f'<BoostedItem {self.id} active={self.is_active}>'


class Transaction(db.Model):
    __tablename__ = 'transactions'

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.Enum(TransactionType), nullable=False)
    order_id = db.Column(
        db.Integer,
        db.ForeignKey('orders.id'),
        nullable=True,
        index=True)
    booking_id = db.Column(
        db.Integer,
        db.ForeignKey('bookings.id'),
        nullable=True,
        index=True)
    boost_purchase_id = db.Column(
        db.Integer,
        db.ForeignKey('boost_purchases.id'),
        nullable=True,
        index=True)
    # Payer
    buyer_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=False,
        index=True)
    # Payee; null when the platform keeps the whole amount.
    seller_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=True,
        index=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    commission_rate = db.Column(
        db.Numeric(5, 2),
        nullable=False,
        default=Decimal('0.00'))
    commission_amount = db.Column(
        db.Numeric(10, 2),
        nullable=False,
        default=Decimal('0.00'))
    seller_payout = db.Column(db.Numeric(10, 2), nullable=False)
    payment_method = db.Column(db.Enum(PaymentMethod), nullable=True)
    bank_account_id = db.Column(
        db.Integer,
        db.ForeignKey('bank_accounts.id'),
        nullable=True)
    payment_slip_url = db.Column(db.String(500), nullable=True)
    status = db.Column(
        db.Enum(TransactionStatus),
        default=TransactionStatus.PENDING,
        nullable=False,
        index=True)
    refunded_amount = db.Column(db.Numeric(10, 2), nullable=True)
    commission_reversed_amount = db.Column(db.Numeric(10, 2), nullable=True)
    escrow_at = db.Column(db.DateTime, nullable=True)
    released_at = db.Column(db.DateTime, nullable=True)
    refunded_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    __table_args__ = (
        CheckConstraint('amount >= 0', name='check_transaction_amount'),
        CheckConstraint(
            '(CASE WHEN order_id IS NULL THEN 0 ELSE 1 END) + '
            '(CASE WHEN booking_id IS NULL THEN 0 ELSE 1 END) + '
            '(CASE WHEN boost_purchase_id IS NULL THEN 0 ELSE 1 END) = 1',
            name='check_transaction_single_parent'),
    )

    bank_account = db.relationship('BankAccount')

    def __repr__(self):
        return f'<Transaction {self.id} type={self.type} status={self.status}>'


class ConsolidatedShipment(db.Model):
    __tablename__ = 'consolidated_shipments'

    id = db.Column(db.Integer, primary_key=True)
    buyer_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=False,
        index=True)
    shipping_address_id = db.Column(
        db.Integer,
        db.ForeignKey('shipping_addresses.id'),
        nullable=True)
    order_count = db.Column(db.Integer, nullable=False)
    total_weight = db.Column(db.Numeric(10, 3), nullable=False)
    # Shipping charged to buyers, summed over member orders.
    total_shipping_cost = db.Column(db.Numeric(10, 2), nullable=False)
    carrier_awb = db.Column(db.String(100), nullable=True, index=True)
    carrier_label_url = db.Column(db.String(500), nullable=True)
    carrier_cost = db.Column(db.Numeric(10, 2), nullable=True)
    carrier_error = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.Enum(ShipmentStatus),
        default=ShipmentStatus.PENDING,
        nullable=False)
    carrier_payment_status = db.Column(
        db.Enum(CarrierPaymentStatus),
        default=CarrierPaymentStatus.UNPAID,
        nullable=False)
    carrier_paid_at = db.Column(db.DateTime, nullable=True)
    override_incomplete = db.Column(db.Boolean, default=False, nullable=False)
    override_reason = db.Column(db.Text, nullable=True)
    created_by = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    orders = db.relationship(
        'Order',
        backref='consolidated_shipment',
        lazy='dynamic')

    def __repr__(self):
        return f'<ConsolidatedShipment {self.id} status={self.status}>'


class ReturnRequest(db.Model):
    __tablename__ = 'return_requests'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer,
        db.ForeignKey('orders.id'),
        nullable=True,
        index=True)
    booking_id = db.Column(
        db.Integer,
        db.ForeignKey('bookings.id'),
        nullable=True,
        index=True)
    buyer_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=False,
        index=True)
    seller_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=False,
        index=True)
    reason = db.Column(db.Enum(ReturnReason), nullable=False)
    description = db.Column(db.Text, nullable=True)
    evidence_json = db.Column(db.Text, nullable=True)
    requested_refund_amount = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(
        db.Enum(ReturnStatus),
        default=ReturnStatus.REQUESTED,
        nullable=False,
        index=True)
    seller_status = db.Column(
        db.Enum(SellerReturnStatus),
        default=SellerReturnStatus.PENDING,
        nullable=False)
    seller_response = db.Column(db.Text, nullable=True)
    seller_proposed_amount = db.Column(db.Numeric(10, 2), nullable=True)
    seller_responded_at = db.Column(db.DateTime, nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)
    # Admin decision went against the seller's recommendation.
    admin_override = db.Column(db.Boolean, default=False, nullable=False)
    approved_refund_amount = db.Column(db.Numeric(10, 2), nullable=True)
    commission_reversed_amount = db.Column(db.Numeric(10, 2), nullable=True)
    reviewed_by = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=True)
    under_review_at = db.Column(db.DateTime, nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True)
    refunded_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    __table_args__ = (
        CheckConstraint(
            '(order_id IS NULL) <> (booking_id IS NULL)',
            name='check_return_single_parent'),
    )

    order = db.relationship('Order', backref='return_requests')
    booking = db.relationship('Booking', backref='return_requests')

    @property
    def evidence_urls(self):
        return json.loads(self.evidence_json) if self.evidence_json else []

    def __repr__(self):
        return f'<ReturnRequest {self.id} status={self.status}>'


class Notification(db.Model):
    __tablename__ = 'notifications'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    type = db.Column(db.String(50), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    metadata_json = db.Column(db.Text, nullable=True)
    is_read = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    def get_metadata(self):
        if self.metadata_json:
            return json.loads(self.metadata_json)
        return {}

    def __repr__(self):
        return f'<Notification {self.id} type={self.type}>'


class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True)
    actor_role = db.Column(db.String(20), nullable=False)
    # e.g., QUOTE_SEND, ESCROW_RELEASE
    action = db.Column(db.String(100), nullable=False)
    # ORDER, QUOTE, RETURN_REQUEST, etc.
    target_type = db.Column(db.String(50), nullable=True)
    target_id = db.Column(db.Integer, nullable=True)
    ip = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    payload_json = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True)

    actor = db.relationship('User', foreign_keys=[actor_id])

    def set_payload(self, data):
        self.payload_json = json.dumps(data, ensure_ascii=False, default=str)

    def get_payload(self):
        if self.payload_json:
            return json.loads(self.payload_json)
        return {}

    def __repr__(self):
        return f'<AuditLog {self.id} action={self.action}>'
