from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from datetime import datetime

db = SQLAlchemy()

class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=True)
    full_name = db.Column(db.String(100), nullable=True)

    # PROFILE (required before listing or buying)
    phone = db.Column(db.String(20), nullable=True)
    hostel_block = db.Column(db.String(50), nullable=True)
    avatar_url = db.Column(db.String(300), nullable=True)

    # ROLE: 'buyer' (default), 'seller' (has listed something), 'admin'
    role = db.Column(db.String(20), default='buyer')
    reputation_score = db.Column(db.Float, default=0.0)
    is_banned = db.Column(db.Boolean, default=False)

    # OAUTH (Google, etc.)
    oauth_provider = db.Column(db.String(20), nullable=True)
    oauth_id = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    products = db.relationship('Product', backref='seller', lazy=True)

    @property
    def is_admin(self):
        return self.role == 'admin'

    @property
    def is_active(self):
        # Flask-Login refuses to log in inactive users
        return not self.is_banned

    @property
    def is_profile_complete(self):
        """True once name, phone and hostel block are all filled in."""
        return bool(self.full_name and self.phone and self.hostel_block)

    @property
    def display_name(self):
        return self.full_name or self.email.split('@')[0]

    @property
    def initial(self):
        return self.display_name[:1].upper()


class Product(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    title = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=False)
    price = db.Column(db.Float, nullable=False)
    category = db.Column(db.String(50), nullable=False)
    condition = db.Column(db.String(20), nullable=False, default='good')
    status = db.Column(db.String(20), default='available')  # 'available', 'sold', 'removed'
    views = db.Column(db.Integer, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    sold_at = db.Column(db.DateTime, nullable=True)

    photos = db.relationship('ProductImage', backref='product', lazy=True,
                             order_by='ProductImage.position', cascade='all, delete-orphan')

    @property
    def images(self):
        """Stored photo keys, cover first."""
        return [p.photo_url for p in self.photos]

    @property
    def cover_image(self):
        return self.photos[0].photo_url if self.photos else None

    @property
    def is_available(self):
        return self.status == 'available'


class ProductImage(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=False)
    photo_url = db.Column(db.String(200), nullable=False)
    position = db.Column(db.Integer, default=0)


class Wishlist(db.Model):
    __table_args__ = (db.UniqueConstraint('user_id', 'product_id', name='uq_wishlist_user_product'),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    product = db.relationship('Product')


class Chat(db.Model):
    """One conversation per (product, buyer) pair."""
    __table_args__ = (db.UniqueConstraint('product_id', 'buyer_id', name='uq_chat_product_buyer'),)

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=False)
    buyer_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    seller_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    last_message = db.Column(db.Text, nullable=True)
    last_message_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    product = db.relationship('Product')
    buyer = db.relationship('User', foreign_keys=[buyer_id])
    seller = db.relationship('User', foreign_keys=[seller_id])
    messages = db.relationship('Message', backref='chat', lazy=True,
                               order_by='Message.created_at', cascade='all, delete-orphan')

    def has_participant(self, user):
        return user.id in (self.buyer_id, self.seller_id)

    def other_participant(self, user):
        return self.seller if user.id == self.buyer_id else self.buyer


class Message(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    chat_id = db.Column(db.Integer, db.ForeignKey('chat.id'), nullable=False, index=True)
    sender_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    content = db.Column(db.Text, nullable=False)
    message_type = db.Column(db.String(30), default='text')  # 'text', 'transaction', 'transaction_update'
    transaction_id = db.Column(db.Integer, db.ForeignKey('transaction.id'), nullable=True)
    is_read = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    sender = db.relationship('User')

    def to_dict(self):
        return {
            'id': self.id,
            'chat_id': self.chat_id,
            'sender_id': self.sender_id,
            'content': self.content,
            'message_type': self.message_type,
            'transaction_id': self.transaction_id,
            'is_read': self.is_read,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Transaction(db.Model):
    """Cash-on-delivery purchase, settled in person at meeting_location."""
    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=False)
    buyer_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    seller_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    chat_id = db.Column(db.Integer, db.ForeignKey('chat.id'), nullable=True)
    amount = db.Column(db.Float, nullable=False)
    payment_method = db.Column(db.String(20), default='cod')
    payment_status = db.Column(db.String(20), default='pending')  # 'pending', 'completed', 'failed'
    delivery_status = db.Column(db.String(20), default='pending')  # 'pending', 'completed'
    meeting_location = db.Column(db.String(200), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)

    product = db.relationship('Product')
    buyer = db.relationship('User', foreign_keys=[buyer_id])
    seller = db.relationship('User', foreign_keys=[seller_id])
    feedback = db.relationship('Feedback', backref='transaction', uselist=False)

    @property
    def is_pending(self):
        return self.payment_status == 'pending'


class Feedback(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey('transaction.id'), unique=True, nullable=False)
    buyer_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    seller_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    rating = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    buyer = db.relationship('User', foreign_keys=[buyer_id])


class Report(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    reporter_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    reported_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=True)
    reason = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), default='pending')  # 'pending', 'reviewed', 'resolved'
    admin_notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    resolved_at = db.Column(db.DateTime, nullable=True)

    reporter = db.relationship('User', foreign_keys=[reporter_id])
    reported_user = db.relationship('User', foreign_keys=[reported_user_id])
    product = db.relationship('Product')


class AdminEmail(db.Model):
    """Emails pre-approved for the admin role. Applied when user signs up."""
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
