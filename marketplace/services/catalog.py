from marketplace.extensions import db
from marketplace.errors import ForbiddenError, NotFoundError, ValidationError
from marketplace.models import (
    Conversation,
    Product,
    ProductVariant,
    Service,
    ServicePackage,
)


class ItemRef:
    """A resolved (product, variant) or (service, package) pair."""

    def __init__(self, item, option=None):
        self.item = item
        self.option = option

    @property
    def is_product(self):
        return isinstance(self.item, Product)

    @property
    def kind(self):
        return 'product' if self.is_product else 'service'

    @property
    def seller_id(self):
        return self.item.seller_id

    @property
    def requires_quote(self):
        return bool(self.item.requires_quote)

    @property
    def requires_design(self):
        return bool(self.item.requires_design_approval)

    @property
    def product_id(self):
        return self.item.id if self.is_product else None

    @property
    def service_id(self):
        return None if self.is_product else self.item.id

    @property
    def variant_id(self):
        if self.is_product and self.option is not None:
            return self.option.id
        return None

    @property
    def package_id(self):
        if not self.is_product and self.option is not None:
            return self.option.id
        return None

    def scope_filter(self, model):
        """SQL criteria matching rows of ``model`` with this exact scope."""
        criteria = []
        for column, value in (
                ('product_id', self.product_id),
                ('service_id', self.service_id),
                ('variant_id', self.variant_id),
                ('package_id', self.package_id)):
            attr = getattr(model, column)
            criteria.append(attr.is_(None) if value is None else attr == value)
        return criteria

    def matches(self, row):
        return (
            row.product_id == self.product_id
            and row.service_id == self.service_id
            and row.variant_id == self.variant_id
            and row.package_id == self.package_id
        )

    def single_variant(self):
        """The only variant of a product, or None."""
        if not self.is_product:
            return None
        variants = self.item.variants.limit(2).all()
        return variants[0] if len(variants) == 1 else None

    def with_option(self, option):
        return ItemRef(self.item, option)


def resolve_item(
        product_id=None,
        service_id=None,
        variant_id=None,
        package_id=None):
    if bool(product_id) == bool(service_id):
        raise ValidationError(
            'Exactly one of product_id or service_id is required',
            field='product_id')

    if product_id:
        if package_id:
            raise ValidationError(
                'A package cannot be used with a product', field='package_id')
        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFoundError('Product', product_id)
        variant = None
        if variant_id:
            variant = db.session.get(ProductVariant, variant_id)
            if variant is None or variant.product_id != product.id:
                raise ValidationError(
                    'Variant does not belong to this product',
                    field='variant_id')
        return ItemRef(product, variant)

    if variant_id:
        raise ValidationError(
            'A variant cannot be used with a service', field='variant_id')
    service = db.session.get(Service, service_id)
    if service is None:
        raise NotFoundError('Service', service_id)
    package = None
    if package_id:
        package = db.session.get(ServicePackage, package_id)
        if package is None or package.service_id != service.id:
            raise ValidationError(
                'Package does not belong to this service',
                field='package_id')
    return ItemRef(service, package)


def get_conversation(conversation_id):
    conversation = db.session.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFoundError('Conversation', conversation_id)
    return conversation


def conversation_for_buyer(principal, conversation_id):
    conversation = get_conversation(conversation_id)
    if conversation.buyer_id != principal.id:
        raise ForbiddenError('Only the buyer of this conversation can do that')
    return conversation


def conversation_for_seller(principal, conversation_id):
    conversation = get_conversation(conversation_id)
    if conversation.seller_id != principal.id:
        raise ForbiddenError(
            'Only the seller of this conversation can do that')
    return conversation


def ensure_item_in_conversation(conversation, ref):
    if ref.seller_id != conversation.seller_id:
        raise ForbiddenError(
            "Item does not belong to this conversation's seller")
