"""Cart and checkout.

A checkout turns the whole cart into one CheckoutSession, one Order per
cart line and one pending Transaction per Order. Everything, including
clearing the cart, is written by a single commit; any failure leaves the
cart untouched and creates nothing.
"""
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from flask import current_app
from marketplace.extensions import db
from marketplace.errors import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    RequirementNotMetError,
    ValidationError,
)
from marketplace.models import (
    BankAccount,
    Booking,
    BookingStatus,
    CartItem,
    CheckoutSession,
    CheckoutSessionStatus,
    Order,
    OrderStatus,
    PaymentMethod,
    ProductVariant,
    Quote,
    QuoteStatus,
    ServicePackage,
    ShippingAddress,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)
from marketplace.services.audit_service import actor_fields, log_audit
from marketplace.services.notification_service import notify
from marketplace.services.payment_gateway import (
    build_redirect,
    new_payment_reference,
)
from marketplace.services.purchase_requirements import (
    QUOTE_EXPIRED,
    QUOTE_MISSING,
    QUOTE_QUANTITY_MISMATCH,
    quote_reason,
    can_purchase,
    require_purchase,
)
from marketplace.services.unit_of_work import lock, unit_of_work
from marketplace.utils import commission_split, money, parse_money, parse_quantity
import logging

logger = logging.getLogger(__name__)


class CheckoutResult:
    def __init__(self, session, orders, redirect=None):
        self.session = session
        self.orders = orders
        self.redirect = redirect


class _Line:
    def __init__(self, cart_item, variant, quote, unit_price, design_id):
        self.cart_item = cart_item
        self.variant = variant
        self.product = variant.product
        self.quote = quote
        self.unit_price = unit_price
        self.quantity = cart_item.quantity
        self.total = money(unit_price * cart_item.quantity)
        self.design_id = design_id
        default_weight = current_app.config['DEFAULT_ITEM_WEIGHT_KG']
        self.unit_weight = Decimal(str(variant.weight_kg or default_weight))
        self.weight = self.unit_weight * self.quantity


def _require_buyer(principal):
    if not principal.is_buyer:
        raise ForbiddenError('Only buyers can do that')


def _parse_payment_method(value):
    try:
        return PaymentMethod(value)
    except ValueError:
        raise ValidationError(
            "payment_method must be 'bank_transfer' or 'ipg'",
            field='payment_method')


def _bank_transfer_account(bank_account_id, payment_slip_url):
    if not bank_account_id:
        raise ValidationError(
            'A bank account is required for bank transfers',
            field='bank_account_id')
    if not payment_slip_url:
        raise ValidationError(
            'A payment slip is required for bank transfers',
            field='payment_slip_url')
    account = db.session.get(BankAccount, bank_account_id)
    if account is None or not account.is_active or not account.is_public:
        raise ValidationError(
            'Selected bank account is not available',
            field='bank_account_id')
    return account


def distribute_shipping(shipping_cost, weights):
    """Split the checkout shipping charge across lines by weight.

    A single line takes the whole charge. With several lines each share is
    rounded on its own, so the shares may differ from the total by a cent.
    """
    shipping_cost = money(shipping_cost)
    if not weights:
        return []
    if len(weights) == 1:
        return [shipping_cost]
    total_weight = sum(weights)
    if total_weight <= 0:
        return [money(shipping_cost / len(weights)) for _ in weights]
    return [money(shipping_cost * w / total_weight) for w in weights]


def _seller_rate(seller_id, cache):
    if seller_id not in cache:
        seller = db.session.get(User, seller_id)
        rate = seller.commission_rate if seller else None
        cache[seller_id] = Decimal(str(
            rate if rate is not None
            else current_app.config['DEFAULT_COMMISSION_RATE']))
    return cache[seller_id]


def list_cart(principal):
    return (
        CartItem.query
        .filter_by(buyer_id=principal.id)
        .order_by(CartItem.id)
        .all()
    )


def add_to_cart(principal, variant_id, quantity=1):
    _require_buyer(principal)
    quantity = parse_quantity(quantity)
    variant = db.session.get(ProductVariant, variant_id)
    if variant is None or not variant.product.is_active:
        raise NotFoundError('Variant', variant_id)

    if variant.product.requires_quote:
        raise ValidationError(
            'Quoted items are added to the cart by accepting the quote')

    item = CartItem.query.filter_by(
        buyer_id=principal.id, variant_id=variant.id).first()
    if item is not None and item.quote_id:
        raise ValidationError(
            'This line comes from an accepted quote; its quantity is fixed')
    new_quantity = quantity + (item.quantity if item else 0)

    check = require_purchase(
        principal.id,
        message=f'{variant.product.name} cannot be added to the cart',
        product_id=variant.product_id,
        variant_id=variant.id,
        quantity=new_quantity)

    with unit_of_work():
        if item is None:
            item = CartItem(
                buyer_id=principal.id,
                variant_id=variant.id,
                quantity=new_quantity,
                design_approval_id=check.design.id if check.design else None)
            db.session.add(item)
        else:
            item.quantity = new_quantity
    return item


def remove_cart_item(principal, cart_item_id):
    item = db.session.get(CartItem, cart_item_id)
    if item is None or item.buyer_id != principal.id:
        raise NotFoundError('Cart item', cart_item_id)
    with unit_of_work():
        db.session.delete(item)


def _verified_quote(
        principal, quote_id, quantity, now, variant_id=None, package_id=None):
    """Re-read a quote inside the checkout transaction and make sure it
    still backs the purchase."""
    quote = lock(Quote, quote_id, 'Quote')
    if quote.buyer_id != principal.id:
        raise ForbiddenError('Quote does not belong to this buyer')
    if quote.variant_id != variant_id or quote.package_id != package_id:
        raise ValidationError(
            f'Quote #{quote.id} is for a different item', field='quote_id')
    if quote.status != QuoteStatus.ACCEPTED:
        raise RequirementNotMetError(
            f'Quote #{quote.id} is no longer accepted',
            reasons=[quote_reason(quote, now) or QUOTE_MISSING])
    if quote.is_expired(now):
        raise RequirementNotMetError(
            f'Quote #{quote.id} has expired', reasons=[QUOTE_EXPIRED])
    if quote.quantity != quantity:
        raise RequirementNotMetError(
            f'Quantity does not match quote #{quote.id}',
            reasons=[QUOTE_QUANTITY_MISMATCH])
    return quote


def _load_line(principal, cart_item, now):
    variant = lock(ProductVariant, cart_item.variant_id, 'Variant')
    if not variant.product.is_active:
        raise RequirementNotMetError(
            f'{variant.product.name} is no longer available',
            reasons=['item_not_found'])

    quote = None
    unit_price = money(variant.price)
    if cart_item.quote_id:
        quote = _verified_quote(
            principal, cart_item.quote_id, cart_item.quantity, now,
            variant_id=variant.id)
        unit_price = money(quote.quoted_price)
    elif variant.product.requires_quote:
        raise RequirementNotMetError(
            f'{variant.product.name} needs an accepted quote',
            reasons=[QUOTE_MISSING])

    check = can_purchase(
        principal.id,
        product_id=variant.product_id,
        variant_id=variant.id,
        quantity=cart_item.quantity,
        quote_id=cart_item.quote_id,
        now=now)
    if not check.allowed:
        raise RequirementNotMetError(
            f'{variant.product.name} cannot be purchased yet',
            reasons=check.reasons)

    design_id = (
        cart_item.design_approval_id
        or (quote.design_approval_id if quote else None)
        or (check.design.id if check.design else None)
    )
    return _Line(cart_item, variant, quote, unit_price, design_id)


def checkout(
        principal,
        payment_method,
        shipping_address_id,
        shipping_cost=0,
        bank_account_id=None,
        payment_slip_url=None,
        notes=None):
    _require_buyer(principal)
    method = _parse_payment_method(payment_method)
    shipping_cost = parse_money(shipping_cost, 'shipping_cost', allow_zero=True)
    now = datetime.utcnow()

    with unit_of_work() as uow:
        address = db.session.get(ShippingAddress, shipping_address_id)
        if address is None or address.user_id != principal.id:
            raise NotFoundError('Shipping address', shipping_address_id)
        bank_account = None
        if method == PaymentMethod.BANK_TRANSFER:
            bank_account = _bank_transfer_account(
                bank_account_id, payment_slip_url)

        cart_items = (
            CartItem.query
            .filter_by(buyer_id=principal.id)
            .order_by(CartItem.id)
            .with_for_update()
            .all()
        )
        if not cart_items:
            raise ValidationError('Cart is empty')

        lines = [_load_line(principal, item, now) for item in cart_items]

        by_seller = OrderedDict()
        for line in lines:
            by_seller.setdefault(line.product.seller_id, []).append(line)

        shares = distribute_shipping(
            shipping_cost, [line.weight for line in lines])
        subtotal = sum((line.total for line in lines), Decimal('0.00'))
        session = uow.add(CheckoutSession(
            buyer_id=principal.id,
            payment_reference=new_payment_reference('CS'),
            payment_method=method,
            shipping_cost=shipping_cost,
            total_amount=money(subtotal + shipping_cost),
            status=CheckoutSessionStatus.PENDING_PAYMENT,
            notes=notes,
        ))
        uow.flush()

        rates = {}
        orders = []
        for line, share in zip(lines, shares):
            order = uow.add(Order(
                checkout_session_id=session.id,
                buyer_id=principal.id,
                seller_id=line.product.seller_id,
                product_id=line.product.id,
                variant_id=line.variant.id,
                quote_id=line.quote.id if line.quote else None,
                design_approval_id=line.design_id,
                shipping_address_id=address.id,
                unit_price=line.unit_price,
                quantity=line.quantity,
                total_amount=line.total,
                shipping_cost=share,
                product_weight=line.unit_weight,
                status=OrderStatus.PENDING_PAYMENT,
                notes=notes,
            ))
            uow.flush()

            rate = _seller_rate(order.seller_id, rates)
            commission, payout = commission_split(line.total, rate)
            uow.add(Transaction(
                type=TransactionType.ORDER,
                order_id=order.id,
                buyer_id=principal.id,
                seller_id=order.seller_id,
                amount=line.total,
                commission_rate=rate,
                commission_amount=commission,
                seller_payout=payout,
                payment_method=method,
                bank_account_id=bank_account.id if bank_account else None,
                payment_slip_url=payment_slip_url,
                status=TransactionStatus.PENDING,
            ))
            orders.append(order)

        CartItem.query.filter_by(buyer_id=principal.id).delete(
            synchronize_session='fetch')

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='ORDER_CHECKOUT',
            target_type='CHECKOUT_SESSION',
            target_id=session.id,
            payload={
                'orders': [o.id for o in orders],
                'sellers': list(by_seller.keys()),
                'total_amount': session.total_amount,
                'payment_method': method.value,
            },
            commit=False)
        for seller_id, seller_lines in by_seller.items():
            uow.after_commit(
                notify,
                seller_id,
                'order_created',
                'New order',
                f'You received {len(seller_lines)} new order line(s).',
                {'checkout_session_id': session.id})

    logger.info(
        "Checkout session %s created %s orders for buyer %s (total %s)",
        session.id, len(orders), principal.id, session.total_amount)

    redirect = None
    if method == PaymentMethod.IPG:
        redirect = build_redirect(
            session.payment_reference, session.total_amount)
    return CheckoutResult(session, orders, redirect)


def book_service(
        principal,
        package_id,
        payment_method,
        quantity=1,
        quote_id=None,
        scheduled_at=None,
        bank_account_id=None,
        payment_slip_url=None,
        notes=None):
    """Create one Booking and its pending Transaction."""
    _require_buyer(principal)
    method = _parse_payment_method(payment_method)
    quantity = parse_quantity(quantity)
    now = datetime.utcnow()

    with unit_of_work() as uow:
        package = lock(ServicePackage, package_id, 'Package')
        service = package.service
        bank_account = None
        if method == PaymentMethod.BANK_TRANSFER:
            bank_account = _bank_transfer_account(
                bank_account_id, payment_slip_url)

        quote = None
        unit_price = money(package.price)
        if quote_id:
            quote = _verified_quote(
                principal, quote_id, quantity, now, package_id=package.id)
            unit_price = money(quote.quoted_price)

        check = can_purchase(
            principal.id,
            service_id=service.id,
            package_id=package.id,
            quantity=quantity,
            quote_id=quote_id,
            now=now)
        if not check.allowed:
            raise RequirementNotMetError(
                f'{service.name} cannot be booked yet', reasons=check.reasons)

        total = money(unit_price * quantity)
        booking = uow.add(Booking(
            buyer_id=principal.id,
            seller_id=service.seller_id,
            service_id=service.id,
            package_id=package.id,
            quote_id=quote.id if quote else None,
            design_approval_id=check.design.id if check.design else None,
            payment_reference=new_payment_reference('BK'),
            scheduled_at=scheduled_at,
            unit_price=unit_price,
            quantity=quantity,
            total_amount=total,
            status=BookingStatus.PENDING_CONFIRMATION,
            notes=notes,
        ))
        uow.flush()

        rate = _seller_rate(service.seller_id, {})
        commission, payout = commission_split(total, rate)
        uow.add(Transaction(
            type=TransactionType.BOOKING,
            booking_id=booking.id,
            buyer_id=principal.id,
            seller_id=service.seller_id,
            amount=total,
            commission_rate=rate,
            commission_amount=commission,
            seller_payout=payout,
            payment_method=method,
            bank_account_id=bank_account.id if bank_account else None,
            payment_slip_url=payment_slip_url,
            status=TransactionStatus.PENDING,
        ))

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='BOOKING_CREATE',
            target_type='BOOKING',
            target_id=booking.id,
            payload={'total_amount': total, 'quote_id': quote_id},
            commit=False)
        uow.after_commit(
            notify,
            service.seller_id,
            'booking_created',
            'New booking',
            f'You received a booking for {service.name}.',
            {'booking_id': booking.id})

    logger.info("Booking %s created for buyer %s", booking.id, principal.id)
    return booking


def booking_payment_redirect(principal, booking_id):
    booking = db.session.get(Booking, booking_id)
    if booking is None or booking.buyer_id != principal.id:
        raise NotFoundError('Booking', booking_id)
    if booking.status != BookingStatus.PENDING_PAYMENT:
        raise InvalidTransitionError(
            'Booking is not awaiting payment',
            current_status=booking.status)
    return build_redirect(booking.payment_reference, booking.total_amount)
