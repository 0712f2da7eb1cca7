import os

basedir = os.path.abspath(os.path.dirname(__file__))


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'change-me-stokvel-secret-key'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'instance', 'stokvel.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Ledger rules
    MIN_CONTRIBUTION = 50
    MIN_LOAN_AMOUNT = 100
    LOAN_REQUEST_MAX_RETRIES = 3

    # Group defaults
    DEFAULT_INTEREST_RATE = 30
    DEFAULT_OVERDUE_INTEREST_RATE = 60
    DEFAULT_LOAN_PERCENTAGE_LIMIT = 50
    DEFAULT_LOAN_REPAYMENT_DAYS = 30

    NOTIFICATION_PAGE_SIZE = 20
    PAYMENT_GATEWAY_SECRET = os.environ.get('PAYMENT_GATEWAY_SECRET')

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    PAYMENT_GATEWAY_SECRET = 'gateway-test-secret'
    LOG_LEVEL = 'WARNING'
