"""
Unit tests for database models.

These test that the database models work correctly.
Run: pytest tests/test_models.py -v
"""
import pytest
from sqlalchemy.exc import IntegrityError
from app import db
from models import User, Product, ProductImage, Wishlist, Chat, Message, Transaction, Feedback


@pytest.mark.unit
class TestUserModel:
    """Test User model"""

    def test_create_user(self, client):
        """Test creating a user in the database"""
        with client.application.app_context():
            user = User(
                email='test@thapar.edu',
                password_hash='hashed_password',
                full_name='Test User'
            )
            db.session.add(user)
            db.session.commit()

            # Check user was created with correct values
            assert user.id is not None
            assert user.email == 'test@thapar.edu'
            # Check defaults
            assert user.role == 'buyer'
            assert user.is_admin == False
            assert user.is_banned == False
            assert user.reputation_score == 0.0
            assert user.created_at is not None

    def test_user_email_unique(self, client, test_user):
        """Test that email addresses must be unique"""
        with client.application.app_context():
            db.session.add(User(email=test_user.email, password_hash='hash'))
            with pytest.raises(IntegrityError):
                db.session.commit()

    def test_profile_completeness(self, client):
        user = User(email='x@thapar.edu', full_name='X')
        assert user.is_profile_complete == False
        user.phone = '9876543210'
        assert user.is_profile_complete == False
        user.hostel_block = 'Hostel C'
        assert user.is_profile_complete == True

    def test_banned_user_is_inactive(self, client):
        user = User(email='x@thapar.edu', is_banned=False)
        assert user.is_active
        user.is_banned = True
        assert not user.is_active

    def test_display_name_falls_back_to_email(self, client):
        user = User(email='rahul.k@thapar.edu')
        assert user.display_name == 'rahul.k'
        assert user.initial == 'R'
        user.full_name = 'anita Sharma'
        assert user.display_name == 'anita Sharma'
        assert user.initial == 'A'

    def test_user_products_relationship(self, client, test_product, seller_user):
        with client.application.app_context():
            seller = db.session.get(User, seller_user.id)
            assert [p.id for p in seller.products] == [test_product.id]
            assert db.session.get(Product, test_product.id).seller.id == seller.id


@pytest.mark.unit
class TestProductModel:
    """Test Product model"""

    def test_product_defaults(self, client, seller_user):
        with client.application.app_context():
            product = Product(seller_id=seller_user.id, title='Kettle', description='1.5L electric',
                              price=600, category='Other')
            db.session.add(product)
            db.session.commit()
            assert product.status == 'available'
            assert product.condition == 'good'
            assert product.views == 0
            assert product.is_available
            assert product.images == []
            assert product.cover_image is None

    def test_images_follow_position(self, client, test_product):
        with client.application.app_context():
            product = db.session.get(Product, test_product.id)
            product.photos.append(ProductImage(photo_url='side.jpg', position=2))
            product.photos.append(ProductImage(photo_url='back.jpg', position=1))
            db.session.commit()
            db.session.expire_all()

            product = db.session.get(Product, test_product.id)
            assert product.images == ['test.jpg', 'back.jpg', 'side.jpg']
            assert product.cover_image == 'test.jpg'

    def test_clearing_photos_deletes_rows(self, client, test_product):
        with client.application.app_context():
            product = db.session.get(Product, test_product.id)
            product.photos.clear()
            db.session.commit()
            assert ProductImage.query.count() == 0


@pytest.mark.unit
class TestUniqueness:
    """Test the one-row-per-pair constraints"""

    def test_wishlist_unique_per_user_and_product(self, client, test_user, test_product):
        with client.application.app_context():
            db.session.add(Wishlist(user_id=test_user.id, product_id=test_product.id))
            db.session.commit()
            db.session.add(Wishlist(user_id=test_user.id, product_id=test_product.id))
            with pytest.raises(IntegrityError):
                db.session.commit()

    def test_chat_unique_per_product_and_buyer(self, client, test_chat):
        with client.application.app_context():
            db.session.add(Chat(product_id=test_chat.product_id, buyer_id=test_chat.buyer_id,
                                seller_id=test_chat.seller_id))
            with pytest.raises(IntegrityError):
                db.session.commit()

    def test_feedback_unique_per_transaction(self, client, pending_transaction):
        with client.application.app_context():
            for rating in (5, 1):
                db.session.add(Feedback(transaction_id=pending_transaction.id,
                                        buyer_id=pending_transaction.buyer_id,
                                        seller_id=pending_transaction.seller_id, rating=rating))
            with pytest.raises(IntegrityError):
                db.session.commit()


@pytest.mark.unit
class TestChatModel:
    """Test Chat and Message models"""

    def test_participants(self, client, test_chat, test_user, seller_user, test_admin_user):
        with client.application.app_context():
            chat = db.session.get(Chat, test_chat.id)
            buyer = db.session.get(User, test_user.id)
            seller = db.session.get(User, seller_user.id)
            outsider = db.session.get(User, test_admin_user.id)

            assert chat.has_participant(buyer)
            assert chat.has_participant(seller)
            assert not chat.has_participant(outsider)
            assert chat.other_participant(buyer).id == seller.id
            assert chat.other_participant(seller).id == buyer.id

    def test_message_to_dict(self, client, pending_transaction):
        with client.application.app_context():
            message = Message.query.filter_by(transaction_id=pending_transaction.id).one()
            data = message.to_dict()
            assert data['chat_id'] == pending_transaction.chat_id
            assert data['message_type'] == 'transaction'
            assert data['transaction_id'] == pending_transaction.id
            assert data['is_read'] is False
            assert data['created_at'] is not None

    def test_messages_ordered_oldest_first(self, client, test_chat):
        with client.application.app_context():
            for text in ('one', 'two', 'three'):
                db.session.add(Message(chat_id=test_chat.id, sender_id=test_chat.buyer_id, content=text))
                db.session.commit()
            chat = db.session.get(Chat, test_chat.id)
            assert [m.content for m in chat.messages] == ['one', 'two', 'three']


@pytest.mark.unit
class TestTransactionModel:
    """Test Transaction model"""

    def test_transaction_defaults(self, client, test_product, test_user):
        with client.application.app_context():
            txn = Transaction(product_id=test_product.id, buyer_id=test_user.id,
                              seller_id=test_product.seller_id, amount=1500)
            db.session.add(txn)
            db.session.commit()
            assert txn.payment_method == 'cod'
            assert txn.payment_status == 'pending'
            assert txn.delivery_status == 'pending'
            assert txn.is_pending
            assert txn.completed_at is None

    def test_feedback_relationship(self, client, pending_transaction):
        with client.application.app_context():
            db.session.add(Feedback(transaction_id=pending_transaction.id,
                                    buyer_id=pending_transaction.buyer_id,
                                    seller_id=pending_transaction.seller_id,
                                    rating=4, comment='Good'))
            db.session.commit()
            txn = db.session.get(Transaction, pending_transaction.id)
            assert txn.feedback.rating == 4
            assert txn.feedback.buyer.id == pending_transaction.buyer_id
