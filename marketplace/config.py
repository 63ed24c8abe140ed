import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or (
        'dev-secret-key-change-in-production'
    )
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or (
        'sqlite:///marketplace.db'
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_FILE = os.environ.get('LOG_FILE', 'app.log')

    # Platform commission (percent of the line amount).
    DEFAULT_COMMISSION_RATE = Decimal(
        os.environ.get('DEFAULT_COMMISSION_RATE', '20.00'))

    QUOTE_DEFAULT_EXPIRY_DAYS = int(
        os.environ.get('QUOTE_DEFAULT_EXPIRY_DAYS', 7))

    # Returns
    MAX_RETURN_ATTEMPTS = int(os.environ.get('MAX_RETURN_ATTEMPTS', 3))
    RETURN_SELLER_RESPONSE_MIN_LENGTH = 10

    # Shipping weight used when a variant has none recorded (kg).
    DEFAULT_ITEM_WEIGHT_KG = Decimal(
        os.environ.get('DEFAULT_ITEM_WEIGHT_KG', '1.0'))

    # Online payment gateway
    PAYMENT_GATEWAY_URL = os.environ.get(
        'PAYMENT_GATEWAY_URL', 'https://pay.example.com/checkout')
    PAYMENT_WEBHOOK_SECRET = os.environ.get('PAYMENT_WEBHOOK_SECRET', '')

    # Carrier
    CARRIER_ENABLED = (
        os.environ.get('CARRIER_ENABLED', 'false').lower() == 'true'
    )
    CARRIER_API_URL = os.environ.get('CARRIER_API_URL', '')
    CARRIER_API_KEY = os.environ.get('CARRIER_API_KEY', '')
    CARRIER_TIMEOUT_SECONDS = int(
        os.environ.get('CARRIER_TIMEOUT_SECONDS', 15))

    # Accept legacy product-context designs stored without a variant
    # when the product has exactly one variant.
    LEGACY_SINGLE_VARIANT_DESIGN_FALLBACK = (
        os.environ.get(
            'LEGACY_SINGLE_VARIANT_DESIGN_FALLBACK',
            'true').lower() == 'true'
    )


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    PAYMENT_WEBHOOK_SECRET = 'test-webhook-secret'
    CARRIER_ENABLED = False
    LOG_FILE = os.environ.get('TEST_LOG_FILE', 'test.log')
