from decimal import Decimal

from marketplace import create_app
from marketplace.extensions import db
from marketplace.models import (
    BankAccount,
    BoostPackage,
    Product,
    ProductVariant,
    Service,
    ServicePackage,
    ShippingAddress,
    User,
    UserRole,
)

app = create_app()

with app.app_context():
    db.create_all()

    # Create admin account (if not exists)
    admin_email = "admin@example.com"
    admin = User.query.filter_by(email=admin_email).first()
    if not admin:
        admin = User(email=admin_email, username="admin", role=UserRole.ADMIN)
        admin.set_password("admin123")
        db.session.add(admin)
        print(f"Created admin account: {admin_email} / admin123")

    sellers_data = [
        {
            "email": "seller1@example.com",
            "username": "printworks",
            "commission_rate": Decimal("20.00"),
            "products": [
                {
                    "name": "Custom Printed T-Shirt",
                    "description": "Cotton tee printed with your artwork",
                    "requires_design_approval": True,
                    "variants": [
                        ("Small", Decimal("15.00"), Decimal("0.200")),
                        ("Medium", Decimal("15.00"), Decimal("0.250")),
                        ("Large", Decimal("17.50"), Decimal("0.300")),
                    ],
                },
                {
                    "name": "Bulk Event Banners",
                    "description": "Large-format banners priced per order",
                    "requires_quote": True,
                    "variants": [
                        ("Standard", Decimal("120.00"), Decimal("2.500")),
                    ],
                },
            ],
            "services": [],
        },
        {
            "email": "seller2@example.com",
            "username": "studio",
            "commission_rate": Decimal("15.00"),
            "products": [
                {
                    "name": "Ceramic Mug",
                    "description": "11oz white ceramic mug",
                    "variants": [
                        ("White", Decimal("9.50"), Decimal("0.400")),
                    ],
                },
            ],
            "services": [
                {
                    "name": "Event Photography",
                    "description": "On-site photography with edited photos",
                    "requires_quote": True,
                    "packages": [
                        ("Half day", Decimal("250.00"), 4),
                        ("Full day", Decimal("450.00"), 8),
                    ],
                },
            ],
        },
    ]

    for seller_data in sellers_data:
        seller = User.query.filter_by(email=seller_data["email"]).first()
        if seller:
            print(f"Seller already exists: {seller_data['email']}")
            continue

        seller = User(
            email=seller_data["email"],
            username=seller_data["username"],
            role=UserRole.SELLER,
            commission_rate=seller_data["commission_rate"],
        )
        seller.set_password("seller123")
        db.session.add(seller)
        db.session.flush()
        print(f"Created seller: {seller_data['email']} / seller123")

        for product_data in seller_data["products"]:
            product = Product(
                seller_id=seller.id,
                name=product_data["name"],
                description=product_data["description"],
                requires_quote=product_data.get("requires_quote", False),
                requires_design_approval=product_data.get(
                    "requires_design_approval", False),
            )
            db.session.add(product)
            db.session.flush()
            for name, price, weight in product_data["variants"]:
                db.session.add(ProductVariant(
                    product_id=product.id,
                    name=name,
                    price=price,
                    weight_kg=weight,
                    inventory=100,
                ))
            print(f"  Created product: {product_data['name']}")

        for service_data in seller_data["services"]:
            service = Service(
                seller_id=seller.id,
                name=service_data["name"],
                description=service_data["description"],
                requires_quote=service_data.get("requires_quote", False),
            )
            db.session.add(service)
            db.session.flush()
            for name, price, hours in service_data["packages"]:
                db.session.add(ServicePackage(
                    service_id=service.id,
                    name=name,
                    price=price,
                    duration_hours=hours,
                ))
            print(f"  Created service: {service_data['name']}")

    buyer_email = "buyer@example.com"
    buyer = User.query.filter_by(email=buyer_email).first()
    if not buyer:
        buyer = User(email=buyer_email, username="buyer", role=UserRole.BUYER)
        buyer.set_password("buyer123")
        db.session.add(buyer)
        db.session.flush()
        db.session.add(ShippingAddress(
            user_id=buyer.id,
            recipient_name="Test Buyer",
            phone="+94770000000",
            address_line="12 Galle Road",
            city="Colombo",
            postal_code="00300",
        ))
        print(f"Created buyer account: {buyer_email} / buyer123")

    if not BankAccount.query.first():
        db.session.add(BankAccount(
            bank_name="Commercial Bank",
            account_name="Marketplace Escrow",
            account_number="1000123456",
            branch="Colombo 03",
        ))
        print("Created escrow bank account")

    boost_packages = [
        ("Weekly boost", Decimal("5.00"), 7),
        ("Monthly boost", Decimal("15.00"), 30),
    ]
    for name, price, days in boost_packages:
        if not BoostPackage.query.filter_by(name=name).first():
            db.session.add(
                BoostPackage(name=name, price=price, duration_days=days))
            print(f"Created boost package: {name}")

    db.session.commit()
    print("\nSeed data loaded.")
