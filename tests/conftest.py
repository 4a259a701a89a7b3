"""
Pytest configuration and fixtures for marketplace tests.

Fixtures are reusable test data/objects that tests can use.
Think of them as "test helpers" that set up common scenarios.
"""
import os
import tempfile
from io import BytesIO

# Configure the app through its environment before it is imported.
# Empty values stop a local .env from switching on S3, email or OAuth.
_db_fd, _db_path = tempfile.mkstemp(suffix='.db')
os.environ['DATABASE_URL'] = f'sqlite:///{_db_path}'
os.environ['UPLOAD_FOLDER'] = tempfile.mkdtemp()
os.environ['RATELIMIT_ENABLED'] = 'false'
os.environ['CAMPUS_EMAIL_DOMAIN'] = 'thapar.edu'
for _key in ('RESEND_API_KEY', 'AWS_S3_BUCKET', 'GOOGLE_CLIENT_ID', 'GOOGLE_CLIENT_SECRET'):
    os.environ[_key] = ''

import pytest
from PIL import Image
from werkzeug.security import generate_password_hash

import app as app_module
from app import app, db, limiter
from models import User, Product, ProductImage, Chat, Message, Transaction


@pytest.fixture(scope='function')
def client():
    """
    Create a test client for the application.

    This fixture:
    - Uses a temporary SQLite database file
    - Sets up test configuration (CSRF and rate limiting off)
    - Creates all database tables
    - Yields a test client you can use to make requests
    - Drops everything after the test

    Every request gets its own app context, so check database state
    inside `with client.application.app_context():`.
    """
    app.config['TESTING'] = True
    app.config['WTF_CSRF_ENABLED'] = False
    app.config['SECRET_KEY'] = 'test-secret-key'
    app.config['SERVER_NAME'] = 'localhost'
    limiter.enabled = False

    with app.app_context():
        db.create_all()

    yield app.test_client()

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def no_email():
    """Keep tests from reaching Resend unless a test opts in."""
    app_module.resend.api_key = None
    yield
    app_module.resend.api_key = None


def _create_user(email, full_name, password, **kwargs):
    with app.app_context():
        user = User(
            email=email,
            password_hash=generate_password_hash(password),
            full_name=full_name,
            **kwargs
        )
        db.session.add(user)
        db.session.commit()
        # Access attributes to ensure they're loaded before session closes
        # This prevents DetachedInstanceError when accessing these later
        _ = user.id, user.email, user.full_name, user.role, user.phone, user.hostel_block, user.is_banned
        return user


@pytest.fixture
def test_user(client):
    """
    A buyer with a complete profile.
    Email: student@thapar.edu
    Password: testpass123
    """
    return _create_user('student@thapar.edu', 'Test Student', 'testpass123',
                        phone='9876543210', hostel_block='Hostel A')


@pytest.fixture
def seller_user(client):
    """
    A seller with a complete profile.
    Email: seller@thapar.edu
    Password: sellerpass123
    """
    return _create_user('seller@thapar.edu', 'Test Seller', 'sellerpass123',
                        phone='9123456789', hostel_block='Hostel J', role='seller')


@pytest.fixture
def incomplete_user(client):
    """A freshly registered user with no phone or hostel block."""
    return _create_user('newbie@thapar.edu', 'New Student', 'newbiepass123')


@pytest.fixture
def test_admin_user(client):
    """
    An admin user.
    Email: admin@thapar.edu
    Password: adminpass123
    """
    return _create_user('admin@thapar.edu', 'Admin User', 'adminpass123',
                        phone='9000000000', hostel_block='Admin Block', role='admin')


@pytest.fixture
def test_product(client, seller_user):
    """An available listing owned by seller_user, with one stored photo."""
    with app.app_context():
        product = Product(
            seller_id=seller_user.id,
            title='Casio FX-991 Calculator',
            description='Scientific calculator, barely used, with cover',
            price=1500,
            category='Electronics',
            condition='like-new',
            status='available',
        )
        product.photos.append(ProductImage(photo_url='test.jpg', position=0))
        db.session.add(product)
        db.session.commit()
        _ = product.id, product.seller_id, product.title, product.price, product.status, product.views
        return product


@pytest.fixture
def test_chat(client, test_product, test_user):
    """A conversation between test_user (buyer) and the seller of test_product."""
    with app.app_context():
        chat = Chat(product_id=test_product.id, buyer_id=test_user.id, seller_id=test_product.seller_id)
        db.session.add(chat)
        db.session.commit()
        _ = chat.id, chat.product_id, chat.buyer_id, chat.seller_id
        return chat


@pytest.fixture
def pending_transaction(client, test_chat, test_product, test_user):
    """A pending cash-on-delivery purchase of test_product by test_user."""
    with app.app_context():
        txn = Transaction(
            product_id=test_product.id,
            buyer_id=test_user.id,
            seller_id=test_product.seller_id,
            chat_id=test_chat.id,
            amount=test_product.price,
            payment_method='cod',
            payment_status='pending',
            meeting_location='Near Library',
        )
        db.session.add(txn)
        db.session.flush()
        db.session.add(Message(chat_id=test_chat.id, sender_id=test_user.id,
                               content='Purchase initiated!', message_type='transaction',
                               transaction_id=txn.id))
        db.session.commit()
        _ = txn.id, txn.chat_id, txn.payment_status, txn.amount
        return txn


def _login(client, user):
    """Put user's id in the session, the way Flask-Login stores it."""
    with client.session_transaction() as sess:
        sess['_user_id'] = str(user.id)
        sess['_fresh'] = True
    return client


@pytest.fixture
def login_as():
    """Log a client in as any user: login_as(client, user)"""
    return _login


@pytest.fixture
def authenticated_client(client, test_user):
    """Client logged in as test_user (a buyer)."""
    return _login(client, test_user)


@pytest.fixture
def seller_client(client, seller_user):
    """Client logged in as seller_user."""
    return _login(client, seller_user)


@pytest.fixture
def admin_client(client, test_admin_user):
    """Client logged in as the admin user."""
    return _login(client, test_admin_user)


@pytest.fixture
def image_file():
    """Factory for an in-memory PNG upload: image_file('photo.png')"""
    def make(filename='photo.png', size=(64, 48), color=(200, 30, 30)):
        buf = BytesIO()
        Image.new('RGB', size, color).save(buf, 'PNG')
        buf.seek(0)
        return (buf, filename, 'image/png')
    return make
