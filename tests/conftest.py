"""
Shared fixtures for the marketplace engine tests.

Every test gets a fresh in-memory database, a fake carrier client and a
small set of users. Flow helpers (checkout, payment webhook, ready to ship)
drive orders through the real services so tests start from realistic state.
"""
import logging
from decimal import Decimal

import pytest
from flask import g

from marketplace import create_app
from marketplace.config import TestConfig
from marketplace.extensions import db
from marketplace.middleware import Principal
from marketplace.models import (
    BankAccount,
    BoostPackage,
    Conversation,
    Product,
    ProductVariant,
    Service,
    ServicePackage,
    ShippingAddress,
    User,
    UserRole,
)
from marketplace.services import checkout as checkout_service
from marketplace.services import escrow
from marketplace.services import orders as order_service
from marketplace.services.carrier import CarrierError, CarrierShipment

logger = logging.getLogger(__name__)

WEBHOOK_SECRET = 'test-webhook-secret'

FILES = [{
    'url': 'https://files.example.com/designs/front.png',
    'name': 'front.png',
    'size': 2048,
    'mime_type': 'image/png',
}]


class FakeCarrier:
    """In-process carrier: records requests, optionally fails."""

    def __init__(self):
        self.requests = []
        self.fail_with = None
        self._counter = 0
        # Called after a successful booking, e.g. to change orders mid-flight.
        self.on_booked = None

    def create_shipment(self, shipment_request):
        self.requests.append(shipment_request)
        if self.fail_with:
            raise CarrierError(self.fail_with)
        self._counter += 1
        awb = f'AWB{self._counter:06d}'
        if self.on_booked is not None:
            self.on_booked()
        return CarrierShipment(
            awb_id=awb,
            label_url=f'https://carrier.example.com/labels/{awb}.pdf',
            cost=Decimal('12.50'))


class Factory:
    def __init__(self):
        self._seq = 0

    def _next(self):
        self._seq += 1
        return self._seq

    def user(self, role=UserRole.BUYER, commission_rate=None):
        n = self._next()
        user = User(
            email=f'{role.value}{n}@example.com',
            username=f'{role.value}{n}',
            role=role)
        if commission_rate is not None:
            user.commission_rate = Decimal(commission_rate)
        user.set_password('secret123')
        db.session.add(user)
        db.session.commit()
        return user

    def product(
            self,
            seller,
            price='10.00',
            weight='1.000',
            requires_quote=False,
            requires_design=False,
            variants=1):
        n = self._next()
        product = Product(
            seller_id=seller.id,
            name=f'Product {n}',
            requires_quote=requires_quote,
            requires_design_approval=requires_design)
        db.session.add(product)
        db.session.flush()
        for i in range(variants):
            db.session.add(ProductVariant(
                product_id=product.id,
                name=f'Variant {i + 1}',
                price=Decimal(price),
                weight_kg=Decimal(weight) if weight else None,
                inventory=100))
        db.session.commit()
        return product

    @staticmethod
    def variants(product):
        return product.variants.order_by(ProductVariant.id).all()

    def service(
            self,
            seller,
            price='100.00',
            requires_quote=False,
            requires_design=False):
        n = self._next()
        service = Service(
            seller_id=seller.id,
            name=f'Service {n}',
            requires_quote=requires_quote,
            requires_design_approval=requires_design)
        db.session.add(service)
        db.session.flush()
        db.session.add(ServicePackage(
            service_id=service.id,
            name='Standard',
            price=Decimal(price),
            duration_hours=4))
        db.session.commit()
        return service

    @staticmethod
    def package(service):
        return service.packages.order_by(ServicePackage.id).first()

    def conversation(self, buyer, seller, product=None, service=None):
        conversation = Conversation(
            buyer_id=buyer.id,
            seller_id=seller.id,
            product_id=product.id if product else None,
            service_id=service.id if service else None)
        db.session.add(conversation)
        db.session.commit()
        return conversation

    def address(self, buyer):
        address = ShippingAddress(
            user_id=buyer.id,
            recipient_name='Test Buyer',
            phone='+94770000000',
            address_line='12 Galle Road',
            city='Colombo',
            postal_code='00300')
        db.session.add(address)
        db.session.commit()
        return address

    def bank_account(self):
        account = BankAccount(
            bank_name='Commercial Bank',
            account_name='Marketplace Escrow',
            account_number='1000123456')
        db.session.add(account)
        db.session.commit()
        return account

    def boost_package(self, price='5.00', days=7):
        package = BoostPackage(
            name=f'Boost {self._next()}',
            price=Decimal(price),
            duration_days=days)
        db.session.add(package)
        db.session.commit()
        return package


@pytest.fixture
def app(tmp_path):
    class _Config(TestConfig):
        LOG_FILE = str(tmp_path / 'test.log')

    app = create_app(_Config)
    app.extensions['carrier_client'] = FakeCarrier()
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def carrier(app):
    return app.extensions['carrier_client']


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client):
    def _login(user):
        # Requests share the fixture's app context; drop the cached user.
        g.pop('_login_user', None)
        with client.session_transaction() as sess:
            sess['_user_id'] = str(user.id)
            sess['_fresh'] = True
        return client
    return _login


@pytest.fixture
def factory(app):
    return Factory()


@pytest.fixture
def admin(factory):
    return factory.user(UserRole.ADMIN)


@pytest.fixture
def seller(factory):
    return factory.user(UserRole.SELLER)


@pytest.fixture
def other_seller(factory):
    return factory.user(UserRole.SELLER, commission_rate='10.00')


@pytest.fixture
def buyer(factory):
    return factory.user(UserRole.BUYER)


@pytest.fixture
def as_principal():
    return Principal.from_user


@pytest.fixture
def place_order(factory):
    """Cart the given (variant, quantity) lines and check out."""
    def _place(
            buyer,
            lines,
            address=None,
            shipping_cost='0.00',
            payment_method='ipg'):
        principal = Principal.from_user(buyer)
        address = address or factory.address(buyer)
        for variant, quantity in lines:
            checkout_service.add_to_cart(principal, variant.id, quantity)
        return checkout_service.checkout(
            principal,
            payment_method,
            address.id,
            shipping_cost=shipping_cost)
    return _place


@pytest.fixture
def pay():
    """Deliver a SUCCESS gateway callback for a payment reference."""
    def _pay(reference, amount=None):
        payload = {'reference': reference, 'status': 'SUCCESS'}
        if amount is not None:
            payload['amount'] = str(amount)
        return escrow.handle_payment_webhook(payload, WEBHOOK_SECRET)
    return _pay


@pytest.fixture
def make_ready():
    """Seller moves a paid order to processing and flags it ready."""
    def _ready(order):
        seller = Principal.from_user(db.session.get(User, order.seller_id))
        order_service.update_order_status(seller, order.id, 'processing')
        return order_service.mark_ready_to_ship(seller, order.id)
    return _ready


@pytest.fixture
def paid_orders(buyer, seller, factory, place_order, pay):
    """Three paid orders from a single checkout session, one seller."""
    product = factory.product(seller, price='25.00', weight='0.500',
                              variants=3)
    variants = factory.variants(product)
    result = place_order(
        buyer, [(v, 2) for v in variants], shipping_cost='9.00')
    pay(result.session.payment_reference)
    return result
