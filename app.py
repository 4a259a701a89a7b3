import os
import logging
import re
import html as html_module
from dotenv import load_dotenv
load_dotenv()  # Load .env for local dev (hosting platform uses env vars directly)

import resend
from datetime import datetime
from functools import wraps
from flask import Flask, render_template, request, redirect, url_for, flash, send_from_directory, jsonify, abort
from werkzeug.utils import secure_filename
from flask_login import LoginManager, login_user, logout_user, login_required, current_user
from werkzeug.security import generate_password_hash, check_password_hash
from flask_migrate import Migrate
from flask_wtf.csrf import CSRFProtect
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from sqlalchemy.orm import joinedload, selectinload
from sqlalchemy import or_, func

# Import Models
from models import db, User, Product, ProductImage, Wishlist, Chat, Message, Transaction, Feedback, Report, AdminEmail

from storage import (
    init_storage, get_storage_instance, save_product_photos, replace_product_photos, PhotoError
)

# Import Constants
from constants import (
    CAMPUS_NAME, DEFAULT_CAMPUS_EMAIL_DOMAIN, CURRENCY_SYMBOL, HOSTEL_BLOCKS,
    CATEGORIES, CONDITIONS, CONDITION_VALUES, DEFAULT_CONDITION,
    SORT_OPTIONS, DEFAULT_SORT, PAYMENT_METHOD_COD,
    REPORT_REASONS, REPORT_ADMIN_STATUSES, MAX_UPLOAD_SIZE, ALLOWED_EXTENSIONS, ALLOWED_MIME_TYPES,
    MAX_IMAGES_PER_PRODUCT, MIN_PRICE, MAX_PRICE, MIN_RATING, MAX_RATING,
    MAX_TITLE_LENGTH, MAX_DESCRIPTION_LENGTH, MAX_MESSAGE_LENGTH,
    MAX_MEETING_LOCATION_LENGTH, MAX_COMMENT_LENGTH, MAX_REPORT_DESCRIPTION_LENGTH,
    MAX_EMAIL_LENGTH, MAX_NAME_LENGTH, MAX_HOSTEL_BLOCK_LENGTH, MIN_PASSWORD_LENGTH,
    PRODUCTS_PER_PAGE, SOLD_CAROUSEL_SIZE,
    RATE_LIMIT_LOGIN, RATE_LIMIT_REGISTER, RATE_LIMIT_MESSAGES
)

# Configure Logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# --- APP CONFIGURATION ---
app = Flask(__name__)

# SECURITY: This secret key enables sessions.
# In production, set this as an Environment Variable called 'SECRET_KEY'.
app.secret_key = os.environ.get('SECRET_KEY', 'dev_key_for_local_use')

# 1. DATABASE CONFIGURATION
db_url = os.environ.get('DATABASE_URL')
if db_url:
    # Fix for SQLAlchemy: some hosts give 'postgres://', but SQLAlchemy needs 'postgresql://'
    if db_url.startswith("postgres://"):
        db_url = db_url.replace("postgres://", "postgresql://", 1)
    app.config['SQLALCHEMY_DATABASE_URI'] = db_url
else:
    # Local fallback
    app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///marketplace.db'

app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['MAX_CONTENT_LENGTH'] = MAX_UPLOAD_SIZE * MAX_IMAGES_PER_PRODUCT

# 2. STORAGE CONFIGURATION
app.config['UPLOAD_FOLDER'] = os.environ.get('UPLOAD_FOLDER', 'static/uploads')
os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

# 3. CAMPUS CONFIGURATION: only addresses on this domain may sign up or log in
app.config['CAMPUS_EMAIL_DOMAIN'] = os.environ.get('CAMPUS_EMAIL_DOMAIN', DEFAULT_CAMPUS_EMAIL_DOMAIN).lower().lstrip('@')

app.config['RATELIMIT_ENABLED'] = os.environ.get('RATELIMIT_ENABLED', 'true').lower() == 'true'

# Initialize DB & Migrations
db.init_app(app)
migrate = Migrate(app, db)

# CSRF Protection (JSON endpoints send the token in the X-CSRFToken header)
csrf = CSRFProtect(app)

# Rate Limiting
limiter = Limiter(
    key_func=get_remote_address,
    app=app,
    default_limits=["2000 per day", "500 per hour"],
    storage_uri="memory://"
)

init_storage(app)

# --- EXTERNAL SERVICES CONFIGURATION ---

# RESEND (EMAIL)
resend.api_key = os.environ.get('RESEND_API_KEY')

# GOOGLE OAUTH (optional - Sign in with Google, campus accounts only)
oauth = None
_google_client_id = os.environ.get('GOOGLE_CLIENT_ID')
_google_client_secret = os.environ.get('GOOGLE_CLIENT_SECRET')
if _google_client_id and _google_client_secret:
    app.config['GOOGLE_CLIENT_ID'] = _google_client_id
    app.config['GOOGLE_CLIENT_SECRET'] = _google_client_secret
    from authlib.integrations.flask_client import OAuth
    oauth = OAuth(app)
    oauth.register(
        name='google',
        server_metadata_url='https://accounts.google.com/.well-known/openid-configuration',
        client_kwargs={'scope': 'openid email profile'}
    )
    logger.info("Google OAuth enabled")
else:
    logger.info("Google OAuth disabled (set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET to enable)")

# LOGIN MANAGER
login_manager = LoginManager()
login_manager.init_app(app)
login_manager.login_view = 'login'
login_manager.login_message = "Please log in to continue."

@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


def get_user_dashboard():
    """Helper function to determine where user should be redirected"""
    if current_user.is_authenticated and current_user.is_admin:
        return url_for('admin_panel')
    return url_for('profile')


def _safe_next(default):
    """Return the posted/queried 'next' path if it is a local path, else default."""
    target = request.form.get('next') or request.args.get('next')
    if target and target.startswith('/') and not target.startswith('//'):
        return target
    return default


def admin_required(f):
    """Restrict a view to logged-in admins."""
    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not current_user.is_admin:
            logger.warning(f"Non-admin user {current_user.id} tried to access {request.path}")
            flash("Access denied.", "error")
            return redirect(url_for('index'))
        return f(*args, **kwargs)
    return decorated


@app.before_request
def block_banned_users():
    """Sessions of users banned after logging in are ended on their next request."""
    # is_authenticated follows is_active, which is already False for banned users
    if not current_user.is_anonymous and current_user.is_banned:
        logger.info(f"Logging out banned user {current_user.id}")
        logout_user()
        flash("Your account has been suspended. Contact the marketplace admins.", "error")
        return redirect(url_for('login'))


@app.context_processor
def inject_globals():
    """Make shared values available to all templates"""
    unread = 0
    if current_user.is_authenticated:
        unread = _unread_count_for(current_user)
    return dict(
        campus_name=CAMPUS_NAME,
        currency=CURRENCY_SYMBOL,
        categories=CATEGORIES,
        conditions=CONDITIONS,
        condition_labels=dict(CONDITIONS),
        sort_options=SORT_OPTIONS,
        hostel_blocks=HOSTEL_BLOCKS,
        report_reasons=REPORT_REASONS,
        unread_messages=unread,
        google_oauth_enabled=bool(oauth)
    )


@app.template_filter('photo_url')
def photo_url_filter(key):
    """Turn a stored photo key into a URL (absolute URLs pass through)."""
    if not key:
        return url_for('static', filename='img/no-image.svg')
    if key.startswith('http://') or key.startswith('https://'):
        return key
    return get_storage_instance().get_photo_url(key)


@app.template_filter('inr')
def inr_filter(amount):
    """Format an amount in rupees: 1500 -> ₹1,500, 99.5 -> ₹99.50"""
    if amount is None:
        return ''
    if float(amount).is_integer():
        return f"{CURRENCY_SYMBOL}{int(amount):,}"
    return f"{CURRENCY_SYMBOL}{amount:,.2f}"


# --- EMAIL HELPERS ---

def html_to_text(html_content):
    """Convert HTML email content to plain text version"""
    text = re.sub(r'<[^>]+>', '', html_content)
    text = html_module.unescape(text)
    text = re.sub(r'\n\s*\n', '\n\n', text)
    return text.strip()


def wrap_email_template(html_content):
    """Wrap email content in the shared HTML layout with footer."""
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="margin: 0; padding: 0; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; background-color: #f8fafc;">
    <table role="presentation" style="width: 100%; border-collapse: collapse;">
        <tr>
            <td style="padding: 20px 0;">
                <table role="presentation" style="width: 100%; max-width: 600px; margin: 0 auto; background-color: #ffffff; border-radius: 8px;">
                    <tr>
                        <td style="padding: 24px;">
                            {html_content}
                            <div style="margin-top: 40px; padding-top: 20px; border-top: 1px solid #e2e8f0; font-size: 0.85rem; color: #64748b;">
                                <p style="margin: 0;">{CAMPUS_NAME} Marketplace</p>
                            </div>
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
</body>
</html>"""


def send_email(to_email, subject, html_content, from_email=None):
    """
    Sends a transactional email using Resend.

    Returns:
        bool: True if email sent successfully, False otherwise
    """
    if not resend.api_key:
        logger.warning(f"Skipping email to {to_email}: RESEND_API_KEY not set.")
        return False

    default_from = os.environ.get('RESEND_FROM_EMAIL', 'Thapar Marketplace <team@thaparmarketplace.in>')
    email_data = {
        "from": from_email or default_from,
        "to": to_email,
        "subject": subject,
        "html": wrap_email_template(html_content),
        "text": html_to_text(html_content)
    }

    try:
        resend.Emails.send(email_data)
        logger.info(f"Email sent to {to_email}: {subject}")
        return True
    except Exception as e:
        # Log error but don't crash the route
        logger.error(f"Failed to send email to {to_email}: {e}", exc_info=True)
        return False


def _purchase_request_email_html(txn):
    esc = html_module.escape
    return f"""
    <div style="font-family: sans-serif; max-width: 500px;">
        <h2 style="color: #1d4ed8;">New purchase request</h2>
        <p><strong>{esc(txn.buyer.display_name)}</strong> wants to buy <strong>{esc(txn.product.title)}</strong>.</p>
        <div style="background: #eff6ff; border: 1px solid #bfdbfe; border-radius: 8px; padding: 16px; margin: 20px 0;">
            <p style="margin: 0 0 8px;"><strong>Amount:</strong> {inr_filter(txn.amount)}</p>
            <p style="margin: 0 0 8px;"><strong>Payment:</strong> Cash on Delivery</p>
            <p style="margin: 0;"><strong>Meeting location:</strong> {esc(txn.meeting_location or '-')}</p>
        </div>
        <p>Open the chat to arrange the handover, then confirm once you have been paid.</p>
        <p><a href="{url_for('chat_view', chat_id=txn.chat_id, _external=True)}" style="background: #1d4ed8; color: white; padding: 12px 24px; text-decoration: none; border-radius: 8px; display: inline-block;">Open Chat</a></p>
    </div>
    """


def _purchase_confirmed_email_html(txn):
    esc = html_module.escape
    return f"""
    <div style="font-family: sans-serif; max-width: 500px;">
        <h2 style="color: #166534;">Purchase complete</h2>
        <p>{esc(txn.seller.display_name)} has confirmed your cash payment of {inr_filter(txn.amount)} for <strong>{esc(txn.product.title)}</strong>.</p>
        <p>How did it go? Leave a rating for the seller from your profile.</p>
        <p><a href="{url_for('profile', _external=True)}" style="background: #166534; color: white; padding: 12px 24px; text-decoration: none; border-radius: 8px; display: inline-block;">Rate the Seller</a></p>
    </div>
    """


def _new_chat_email_html(chat, message):
    esc = html_module.escape
    return f"""
    <div style="font-family: sans-serif; max-width: 500px;">
        <h2 style="color: #1d4ed8;">New message about {esc(chat.product.title)}</h2>
        <p><strong>{esc(message.sender.display_name)}</strong> wrote:</p>
        <blockquote style="border-left: 3px solid #bfdbfe; margin: 0; padding-left: 12px;">{esc(message.content)}</blockquote>
        <p><a href="{url_for('chat_view', chat_id=chat.id, _external=True)}">Reply in chat</a></p>
    </div>
    """


# --- VALIDATION HELPERS ---

def validate_email(email):
    """Validate email format"""
    if not email or len(email) > MAX_EMAIL_LENGTH:
        return False
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return bool(re.match(pattern, email))


def is_campus_email(email):
    """True if the address belongs to the configured campus domain."""
    if not validate_email(email):
        return False
    return email.lower().endswith('@' + app.config['CAMPUS_EMAIL_DOMAIN'])


def validate_phone(phone):
    """
    Validate Indian mobile number: 10 digits starting with 6-9.
    Accepts +91 / 91 / 0 prefixes and common separators.
    Returns (True, normalized_digits) or (False, error_message).
    """
    if not phone or not phone.strip():
        return False, "Please provide a phone number."
    digits = re.sub(r'\D', '', phone.strip())
    if len(digits) == 12 and digits.startswith('91'):
        digits = digits[2:]
    elif len(digits) == 11 and digits.startswith('0'):
        digits = digits[1:]
    if len(digits) != 10 or digits[0] not in '6789':
        return False, "Please enter a valid 10-digit mobile number."
    return True, digits


def validate_file_upload(file):
    """Validate uploaded file: size, extension, and MIME type"""
    if not file or not file.filename:
        return False, "No file provided"

    file.seek(0, os.SEEK_END)
    file_size = file.tell()
    file.seek(0)

    if file_size > MAX_UPLOAD_SIZE:
        return False, f"File size exceeds {MAX_UPLOAD_SIZE / (1024*1024):.1f}MB limit"

    filename = secure_filename(file.filename)
    if not filename:
        return False, "Invalid filename"

    ext = filename.rsplit('.', 1)[1].lower() if '.' in filename else ''
    if ext not in ALLOWED_EXTENSIONS:
        return False, f"File type not allowed. Allowed types: {', '.join(sorted(ALLOWED_EXTENSIONS))}"

    mime_type = file.content_type
    if mime_type and mime_type.lower() not in ALLOWED_MIME_TYPES:
        return False, "Invalid file type"

    return True, None


def validate_price(price):
    """Validate price is within acceptable range"""
    try:
        price_float = float(price)
        if price_float < MIN_PRICE or price_float > MAX_PRICE:
            return False, f"Price must be between {CURRENCY_SYMBOL}{MIN_PRICE:,} and {CURRENCY_SYMBOL}{MAX_PRICE:,}"
        return True, round(price_float, 2)
    except (ValueError, TypeError):
        return False, "Invalid price format"


def validate_rating(rating):
    """Validate star rating"""
    try:
        rating_int = int(rating)
        if rating_int < MIN_RATING or rating_int > MAX_RATING:
            return False, f"Rating must be between {MIN_RATING} and {MAX_RATING}"
        return True, rating_int
    except (ValueError, TypeError):
        return False, "Invalid rating value"


def validate_product_form(form):
    """
    Validate the listing form.
    Returns (errors, data): errors maps field name to message, data holds cleaned values.
    """
    errors = {}
    data = {
        'title': form.get('title', '').strip(),
        'description': form.get('description', '').strip(),
        'category': form.get('category', '').strip(),
        'condition': form.get('condition', DEFAULT_CONDITION).strip(),
    }

    if not data['title']:
        errors['title'] = "Title is required"
    elif len(data['title']) > MAX_TITLE_LENGTH:
        errors['title'] = f"Title is too long (max {MAX_TITLE_LENGTH} characters)"

    if not data['description']:
        errors['description'] = "Description is required"
    elif len(data['description']) > MAX_DESCRIPTION_LENGTH:
        errors['description'] = f"Description is too long (max {MAX_DESCRIPTION_LENGTH} characters)"

    price_valid, price_result = validate_price(form.get('price', ''))
    if price_valid:
        data['price'] = price_result
    else:
        errors['price'] = f"Valid price is required. {price_result}"

    if data['category'] not in CATEGORIES:
        errors['category'] = "Category is required"

    if data['condition'] not in CONDITION_VALUES:
        errors['condition'] = "Condition is required"

    return errors, data


# --- ERROR HANDLERS ---

@app.errorhandler(404)
def not_found_error(error):
    logger.warning(f"404 error: {request.url}")
    if request.path.startswith('/api/'):
        return jsonify({'error': 'Not found'}), 404
    return render_template('error.html',
                         error_code=404,
                         error_message="Page not found"), 404


@app.errorhandler(403)
def forbidden_error(error):
    logger.warning(f"403 error: {request.url}")
    if request.path.startswith('/api/'):
        return jsonify({'error': 'Forbidden'}), 403
    return render_template('error.html',
                         error_code=403,
                         error_message="You don't have access to this page."), 403


@app.errorhandler(500)
def internal_error(error):
    logger.error(f"500 error: {error}", exc_info=True)
    db.session.rollback()
    return render_template('error.html',
                         error_code=500,
                         error_message="An internal error occurred. Please try again later."), 500


@app.errorhandler(413)
def request_entity_too_large(error):
    logger.warning("413 error: Upload too large")
    flash(f"Upload is too large. Maximum size is {MAX_UPLOAD_SIZE // (1024 * 1024)}MB per image.", "error")
    return redirect(request.url)


# =========================================================
# SECTION 1: MARKETPLACE DOMAIN HELPERS
# =========================================================

def _unread_count_for(user):
    """Number of unread messages sent to user across all their chats."""
    return (Message.query
            .join(Chat, Message.chat_id == Chat.id)
            .filter(or_(Chat.buyer_id == user.id, Chat.seller_id == user.id))
            .filter(Message.sender_id != user.id, Message.is_read == False)  # noqa: E712
            .count())


def _store_product_images(product, files, replace=False):
    """
    Validate every upload, then store them as product's photos.
    With replace=True they become the whole gallery. Returns (ok, error_message).
    """
    for file in files:
        is_valid, error_msg = validate_file_upload(file)
        if not is_valid:
            return False, error_msg

    try:
        if replace:
            keys = replace_product_photos(product.id, product.images, files)
            # delete-orphan cascade removes the old rows
            product.photos.clear()
        else:
            keys = save_product_photos(product.id, files)
    except PhotoError as img_error:
        logger.warning(f"Rejected images for product {product.id}: {img_error}")
        return False, "Error processing image. Please try a different photo."

    start = len(product.photos)
    for offset, key in enumerate(keys):
        product.photos.append(ProductImage(photo_url=key, position=start + offset))
    return True, None


def get_or_create_chat(product, buyer):
    """Return the (product, buyer) chat, creating it on first contact."""
    chat = Chat.query.filter_by(product_id=product.id, buyer_id=buyer.id).first()
    if chat:
        return chat, False
    chat = Chat(product_id=product.id, buyer_id=buyer.id, seller_id=product.seller_id)
    db.session.add(chat)
    db.session.flush()
    logger.info(f"Chat {chat.id} opened for product {product.id} by buyer {buyer.id}")
    return chat, True


def post_message(chat, sender, content, message_type='text', transaction=None):
    """Append a message to chat and bump the chat's last-message preview. Caller commits."""
    message = Message(
        chat_id=chat.id,
        sender_id=sender.id,
        content=content,
        message_type=message_type,
        transaction_id=transaction.id if transaction else None,
    )
    db.session.add(message)
    chat.last_message = content
    chat.last_message_at = datetime.utcnow()
    return message


def latest_transaction(chat):
    return (Transaction.query
            .filter_by(chat_id=chat.id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .first())


def decline_pending_transactions(product, reason, exclude_id=None):
    """Mark every other pending purchase request for product as failed and tell those buyers."""
    pending = Transaction.query.filter_by(product_id=product.id, payment_status='pending').all()
    for txn in pending:
        if txn.id == exclude_id:
            continue
        txn.payment_status = 'failed'
        if txn.chat_id:
            chat = db.session.get(Chat, txn.chat_id)
            post_message(chat, product.seller, reason, message_type='transaction_update', transaction=txn)
        logger.info(f"Transaction {txn.id} declined: {reason}")


def mark_product_sold(product, exclude_transaction_id=None):
    product.status = 'sold'
    product.sold_at = datetime.utcnow()
    decline_pending_transactions(
        product,
        "This item has been sold. Your purchase request was cancelled.",
        exclude_id=exclude_transaction_id,
    )


def recalculate_reputation(seller_id):
    """Seller reputation is the mean of every rating they have received."""
    avg = db.session.query(func.avg(Feedback.rating)).filter(Feedback.seller_id == seller_id).scalar()
    seller = db.session.get(User, seller_id)
    seller.reputation_score = round(float(avg), 2) if avg is not None else 0.0
    return seller.reputation_score


def transaction_to_dict(txn):
    if not txn:
        return None
    return {
        'id': txn.id,
        'product_id': txn.product_id,
        'amount': txn.amount,
        'payment_method': txn.payment_method,
        'payment_status': txn.payment_status,
        'delivery_status': txn.delivery_status,
        'meeting_location': txn.meeting_location,
        'created_at': txn.created_at.isoformat() if txn.created_at else None,
        'completed_at': txn.completed_at.isoformat() if txn.completed_at else None,
    }


# =========================================================
# SECTION 2: BROWSING & LISTINGS
# =========================================================

@app.route('/')
def index():
    """Browse available listings with search, category filter, sorting and pagination"""
    search_query = request.args.get('search', '').strip()
    category = request.args.get('category', 'all')
    sort_by = request.args.get('sort', DEFAULT_SORT)
    page = request.args.get('page', 1, type=int)

    query = Product.query.options(
        joinedload(Product.seller),
        selectinload(Product.photos)
    ).filter(Product.status == 'available')

    if category and category != 'all' and category in CATEGORIES:
        query = query.filter(Product.category == category)

    if search_query:
        search_pattern = f"%{search_query}%"
        query = query.filter(
            or_(
                Product.title.ilike(search_pattern),
                Product.description.ilike(search_pattern)
            )
        )

    if sort_by == 'price-low':
        query = query.order_by(Product.price.asc(), Product.id.asc())
    elif sort_by == 'price-high':
        query = query.order_by(Product.price.desc(), Product.id.asc())
    elif sort_by == 'popular':
        query = query.order_by(Product.views.desc(), Product.created_at.desc())
    else:
        sort_by = DEFAULT_SORT
        query = query.order_by(Product.created_at.desc(), Product.id.desc())

    pagination = query.paginate(page=page, per_page=PRODUCTS_PER_PAGE, error_out=False)

    wishlisted_ids = set()
    if current_user.is_authenticated:
        wishlisted_ids = {w.product_id for w in Wishlist.query.filter_by(user_id=current_user.id).all()}

    recently_sold = (Transaction.query
                     .options(joinedload(Transaction.product))
                     .filter(Transaction.payment_status == 'completed')
                     .order_by(Transaction.completed_at.desc())
                     .limit(SOLD_CAROUSEL_SIZE)
                     .all())

    return render_template('index.html',
                         products=pagination.items,
                         pagination=pagination,
                         search_query=search_query,
                         active_category=category,
                         sort_by=sort_by,
                         wishlisted_ids=wishlisted_ids,
                         recently_sold=[t for t in recently_sold if t.product])


@app.route('/product/<int:product_id>')
def product_detail(product_id):
    product = Product.query.get_or_404(product_id)
    viewer = current_user if current_user.is_authenticated else None
    is_owner = viewer is not None and viewer.id == product.seller_id

    if product.status == 'removed' and not (is_owner or (viewer and viewer.is_admin)):
        abort(404)

    if not is_owner:
        product.views = (product.views or 0) + 1
        db.session.commit()

    is_wishlisted = False
    existing_chat = None
    pending_txn = None
    if viewer and not is_owner:
        is_wishlisted = Wishlist.query.filter_by(user_id=viewer.id, product_id=product.id).first() is not None
        existing_chat = Chat.query.filter_by(product_id=product.id, buyer_id=viewer.id).first()
        pending_txn = Transaction.query.filter_by(
            product_id=product.id, buyer_id=viewer.id, payment_status='pending').first()

    return render_template('product.html',
                         product=product,
                         seller=product.seller,
                         is_owner=is_owner,
                         is_wishlisted=is_wishlisted,
                         existing_chat=existing_chat,
                         pending_txn=pending_txn)


@app.route('/uploads/<filename>')
def uploaded_file(filename):
    return send_from_directory(app.config['UPLOAD_FOLDER'], filename)


@app.route('/product/new', methods=['GET', 'POST'])
@login_required
def create_product():
    if not current_user.is_profile_complete:
        flash("Please complete your profile before creating a listing. Add your phone number and hostel block in your profile.", "error")
        return redirect(url_for('profile'))

    if request.method == 'POST':
        errors, data = validate_product_form(request.form)
        files = [f for f in request.files.getlist('images') if f and f.filename]
        if not files:
            errors['images'] = "Image is required"
        elif len(files) > MAX_IMAGES_PER_PRODUCT:
            errors['images'] = f"You can upload at most {MAX_IMAGES_PER_PRODUCT} images"

        if errors:
            flash("Please fill in all required fields", "error")
            return render_template('product_form.html', product=None, form=request.form, errors=errors)

        product = Product(seller_id=current_user.id, status='available', views=0, **data)
        db.session.add(product)
        db.session.flush()

        ok, error_msg = _store_product_images(product, files)
        if not ok:
            db.session.rollback()
            flash(f"File upload error: {error_msg}", "error")
            return render_template('product_form.html', product=None, form=request.form, errors={'images': error_msg})

        if current_user.role == 'buyer':
            current_user.role = 'seller'
        db.session.commit()
        logger.info(f"Product {product.id} listed by user {current_user.id}")
        flash("Your item is live!", "success")
        return redirect(url_for('product_detail', product_id=product.id))

    return render_template('product_form.html', product=None, form={}, errors={})


@app.route('/product/<int:product_id>/edit', methods=['GET', 'POST'])
@login_required
def edit_product(product_id):
    product = Product.query.get_or_404(product_id)

    if product.seller_id != current_user.id and not current_user.is_admin:
        flash("You cannot edit this item.", "error")
        return redirect(url_for('product_detail', product_id=product.id))

    if product.status != 'available':
        flash("Only available listings can be edited.", "error")
        return redirect(url_for('product_detail', product_id=product.id))

    if request.method == 'POST':
        errors, data = validate_product_form(request.form)
        files = [f for f in request.files.getlist('images') if f and f.filename]
        if len(files) > MAX_IMAGES_PER_PRODUCT:
            errors['images'] = f"You can upload at most {MAX_IMAGES_PER_PRODUCT} images"

        if errors:
            flash("Please fill in all required fields", "error")
            return render_template('product_form.html', product=product, form=request.form, errors=errors)

        for field, value in data.items():
            setattr(product, field, value)

        # New uploads replace the existing gallery
        if files:
            ok, error_msg = _store_product_images(product, files, replace=True)
            if not ok:
                db.session.rollback()
                flash(f"File upload error: {error_msg}", "error")
                return redirect(url_for('edit_product', product_id=product_id))

        db.session.commit()
        logger.info(f"Product {product.id} updated by user {current_user.id}")
        flash("Listing updated successfully!", "success")
        return redirect(url_for('product_detail', product_id=product.id))

    return render_template('product_form.html', product=product, form={}, errors={})


@app.route('/product/<int:product_id>/sold', methods=['POST'])
@login_required
def mark_product_sold_route(product_id):
    product = Product.query.get_or_404(product_id)
    if product.seller_id != current_user.id:
        flash("Only the seller can mark this item as sold.", "error")
        return redirect(url_for('product_detail', product_id=product.id))
    if product.status != 'available':
        flash("This item is not available.", "error")
        return redirect(url_for('product_detail', product_id=product.id))

    mark_product_sold(product)
    db.session.commit()
    logger.info(f"Product {product.id} marked sold by seller {current_user.id}")
    flash("Marked as sold.", "success")
    return redirect(_safe_next(url_for('profile')))


@app.route('/product/<int:product_id>/delete', methods=['POST'])
@login_required
def remove_product(product_id):
    """Soft-delete a listing. Transactions and chats keep pointing at it."""
    product = Product.query.get_or_404(product_id)
    if product.seller_id != current_user.id and not current_user.is_admin:
        flash("You cannot delete this item.", "error")
        return redirect(url_for('product_detail', product_id=product.id))
    if product.status == 'removed':
        flash("This listing was already removed.", "info")
        return redirect(get_user_dashboard())

    product.status = 'removed'
    decline_pending_transactions(product, "This listing was removed. Your purchase request was cancelled.")
    db.session.commit()
    logger.info(f"Product {product.id} removed by user {current_user.id}")
    flash("Listing deleted.", "success")
    return redirect(_safe_next(get_user_dashboard()))


# =========================================================
# SECTION 3: WISHLIST
# =========================================================

def _toggle_wishlist(product):
    """Returns (wishlisted_now, error_message)."""
    if product.seller_id == current_user.id:
        return None, "You cannot save your own listing."
    entry = Wishlist.query.filter_by(user_id=current_user.id, product_id=product.id).first()
    if entry:
        db.session.delete(entry)
        db.session.commit()
        return False, None
    if not product.is_available:
        return None, "This item is no longer available."
    db.session.add(Wishlist(user_id=current_user.id, product_id=product.id))
    db.session.commit()
    return True, None


@app.route('/wishlist')
@login_required
def wishlist():
    entries = (Wishlist.query
               .options(joinedload(Wishlist.product))
               .join(Product, Wishlist.product_id == Product.id)
               .filter(Wishlist.user_id == current_user.id, Product.status != 'removed')
               .order_by(Wishlist.created_at.desc())
               .all())
    return render_template('wishlist.html', entries=entries)


@app.route('/wishlist/<int:product_id>/toggle', methods=['POST'])
@login_required
def toggle_wishlist(product_id):
    product = Product.query.get_or_404(product_id)
    wishlisted, error = _toggle_wishlist(product)
    if error:
        flash(error, "error")
    else:
        flash("Saved to your wishlist." if wishlisted else "Removed from your wishlist.", "success")
    return redirect(_safe_next(url_for('product_detail', product_id=product.id)))


@app.route('/api/wishlist/<int:product_id>/toggle', methods=['POST'])
@login_required
def api_toggle_wishlist(product_id):
    product = Product.query.get_or_404(product_id)
    wishlisted, error = _toggle_wishlist(product)
    if error:
        return jsonify({'error': error}), 400
    return jsonify({'product_id': product.id, 'wishlisted': wishlisted})


# =========================================================
# SECTION 4: CHAT
# =========================================================

def _get_chat_for_participant(chat_id):
    chat = Chat.query.get_or_404(chat_id)
    if not chat.has_participant(current_user):
        logger.warning(f"User {current_user.id} denied access to chat {chat.id}")
        abort(403)
    return chat


def _mark_incoming_read(chat):
    updated = (Message.query
               .filter(Message.chat_id == chat.id,
                       Message.sender_id != current_user.id,
                       Message.is_read == False)  # noqa: E712
               .update({'is_read': True}, synchronize_session=False))
    if updated:
        db.session.commit()
    return updated


def _send_chat_message(chat, content):
    """Validate and post a text message. Returns (message, error_message)."""
    content = (content or '').strip()
    if not content:
        return None, "Message cannot be empty."
    if len(content) > MAX_MESSAGE_LENGTH:
        return None, f"Message is too long (max {MAX_MESSAGE_LENGTH} characters)."

    first_message = Message.query.filter_by(chat_id=chat.id).count() == 0
    message = post_message(chat, current_user, content)
    db.session.commit()
    logger.info(f"Message {message.id} sent in chat {chat.id} by user {current_user.id}")

    # Only the opening message of a conversation triggers an email
    if first_message:
        recipient = chat.other_participant(current_user)
        send_email(recipient.email, f"New message about {chat.product.title}", _new_chat_email_html(chat, message))
    return message, None


@app.route('/product/<int:product_id>/chat', methods=['POST'])
@login_required
def start_chat(product_id):
    product = Product.query.get_or_404(product_id)
    if product.seller_id == current_user.id:
        flash("This is your own listing.", "error")
        return redirect(url_for('product_detail', product_id=product.id))
    if product.status == 'removed':
        abort(404)

    chat, created = get_or_create_chat(product, current_user)
    db.session.commit()
    return redirect(url_for('chat_view', chat_id=chat.id))


@app.route('/chats')
@login_required
def chat_list():
    chats = (Chat.query
             .options(joinedload(Chat.product), joinedload(Chat.buyer), joinedload(Chat.seller))
             .filter(or_(Chat.buyer_id == current_user.id, Chat.seller_id == current_user.id))
             .order_by(Chat.last_message_at.is_(None), Chat.last_message_at.desc(), Chat.created_at.desc())
             .all())

    unread_by_chat = {}
    if chats:
        rows = (db.session.query(Message.chat_id, func.count(Message.id))
                .filter(Message.chat_id.in_([c.id for c in chats]),
                        Message.sender_id != current_user.id,
                        Message.is_read == False)  # noqa: E712
                .group_by(Message.chat_id)
                .all())
        unread_by_chat = dict(rows)

    return render_template('chats.html', chats=chats, unread_by_chat=unread_by_chat, active_chat=None)


@app.route('/chats/<int:chat_id>')
@login_required
def chat_view(chat_id):
    chat = _get_chat_for_participant(chat_id)
    _mark_incoming_read(chat)

    messages = Message.query.filter_by(chat_id=chat.id).order_by(Message.created_at.asc(), Message.id.asc()).all()
    transaction = latest_transaction(chat)
    is_seller = chat.seller_id == current_user.id
    can_buy = (not is_seller
               and chat.product.is_available
               and (transaction is None or transaction.payment_status == 'failed'))

    return render_template('chat.html',
                         chat=chat,
                         messages=messages,
                         other_user=chat.other_participant(current_user),
                         product=chat.product,
                         transaction=transaction,
                         is_seller=is_seller,
                         can_buy=can_buy)


@app.route('/chats/<int:chat_id>/messages', methods=['POST'])
@login_required
@limiter.limit(RATE_LIMIT_MESSAGES)
def send_message(chat_id):
    chat = _get_chat_for_participant(chat_id)
    message, error = _send_chat_message(chat, request.form.get('content'))
    if error:
        flash(error, "error")
    return redirect(url_for('chat_view', chat_id=chat.id))


@app.route('/api/chats/<int:chat_id>/messages', methods=['GET'])
@login_required
@limiter.exempt
def api_poll_messages(chat_id):
    """Messages newer than ?after=<message id>, for the chat window to re-fetch on an interval."""
    chat = _get_chat_for_participant(chat_id)
    after = request.args.get('after', 0, type=int)
    messages = (Message.query
                .filter(Message.chat_id == chat.id, Message.id > after)
                .order_by(Message.created_at.asc(), Message.id.asc())
                .all())
    _mark_incoming_read(chat)
    return jsonify({
        'chat_id': chat.id,
        'messages': [m.to_dict() for m in messages],
        'transaction': transaction_to_dict(latest_transaction(chat)),
    })


@app.route('/api/chats/<int:chat_id>/messages', methods=['POST'])
@login_required
@limiter.limit(RATE_LIMIT_MESSAGES)
def api_send_message(chat_id):
    chat = _get_chat_for_participant(chat_id)
    payload = request.get_json(silent=True) or {}
    message, error = _send_chat_message(chat, payload.get('content'))
    if error:
        return jsonify({'error': error}), 400
    return jsonify({'message': message.to_dict()}), 201


@app.route('/api/chats/unread')
@login_required
@limiter.exempt
def api_unread_count():
    return jsonify({'unread': _unread_count_for(current_user)})


# =========================================================
# SECTION 5: CASH-ON-DELIVERY TRANSACTIONS
# =========================================================

@app.route('/product/<int:product_id>/buy', methods=['GET', 'POST'])
@login_required
def buy_product(product_id):
    product = Product.query.get_or_404(product_id)

    if product.seller_id == current_user.id:
        flash("You cannot buy your own listing.", "error")
        return redirect(url_for('product_detail', product_id=product.id))

    if not product.is_available:
        flash("Sorry, this item is no longer available.", "error")
        return redirect(url_for('index'))

    if not current_user.is_profile_complete:
        flash("Please complete your profile (add phone number and hostel block) before making a purchase.", "error")
        return redirect(url_for('profile'))

    existing = Transaction.query.filter_by(
        product_id=product.id, buyer_id=current_user.id, payment_status='pending').first()
    if existing:
        flash("You already have a pending purchase request for this item.", "info")
        if existing.chat_id:
            return redirect(url_for('chat_view', chat_id=existing.chat_id))
        return redirect(url_for('product_detail', product_id=product.id))

    if request.method == 'POST':
        meeting_location = request.form.get('meeting_location', '').strip()
        if not meeting_location:
            flash("Please enter a meeting location on campus.", "error")
            return render_template('buy.html', product=product)
        if len(meeting_location) > MAX_MEETING_LOCATION_LENGTH:
            flash(f"Meeting location is too long (max {MAX_MEETING_LOCATION_LENGTH} characters).", "error")
            return render_template('buy.html', product=product)

        try:
            chat, _ = get_or_create_chat(product, current_user)
            txn = Transaction(
                product_id=product.id,
                buyer_id=current_user.id,
                seller_id=product.seller_id,
                chat_id=chat.id,
                amount=product.price,
                payment_method=PAYMENT_METHOD_COD,
                payment_status='pending',
                delivery_status='pending',
                meeting_location=meeting_location,
            )
            db.session.add(txn)
            db.session.flush()

            summary = (f"Purchase initiated!\n"
                       f"Amount: {inr_filter(txn.amount)}\n"
                       f"Payment Method: Cash on Delivery\n"
                       f"Meeting Location: {meeting_location}\n\n"
                       f"Waiting for seller to confirm.")
            post_message(chat, current_user, summary, message_type='transaction', transaction=txn)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to create transaction for product {product.id}: {e}", exc_info=True)
            flash("Sorry, purchase cannot be made now. Please try again later.", "error")
            return render_template('buy.html', product=product)

        logger.info(f"Transaction {txn.id} created: buyer {current_user.id} -> product {product.id}")
        send_email(product.seller.email, f"Purchase request: {product.title}", _purchase_request_email_html(txn))
        flash("Purchase request sent! Arrange the handover with the seller in chat.", "success")
        return redirect(url_for('chat_view', chat_id=chat.id))

    return render_template('buy.html', product=product)


@app.route('/transaction/<int:transaction_id>/confirm', methods=['POST'])
@login_required
def confirm_transaction(transaction_id):
    """Seller confirms the cash was received (and by default marks the item sold)."""
    txn = Transaction.query.get_or_404(transaction_id)
    if txn.seller_id != current_user.id:
        flash("Only the seller can confirm payment.", "error")
        return redirect(get_user_dashboard())
    if not txn.is_pending:
        flash("This transaction is no longer pending.", "error")
        return redirect(_safe_next(get_user_dashboard()))

    mark_as_sold = request.form.get('mark_as_sold', 'true').lower() in ('true', '1', 'on', 'yes')

    txn.payment_status = 'completed'
    txn.delivery_status = 'completed'
    txn.completed_at = datetime.utcnow()

    if mark_as_sold and txn.product.is_available:
        mark_product_sold(txn.product, exclude_transaction_id=txn.id)
        update = "Payment has been confirmed. The item has been marked as sold."
    else:
        update = "Payment has been confirmed."

    if txn.chat_id:
        chat = db.session.get(Chat, txn.chat_id)
        post_message(chat, current_user, update, message_type='transaction_update', transaction=txn)
    db.session.commit()
    logger.info(f"Transaction {txn.id} confirmed by seller {current_user.id} (mark_as_sold={mark_as_sold})")

    send_email(txn.buyer.email, f"Purchase complete: {txn.product.title}", _purchase_confirmed_email_html(txn))
    flash("Payment confirmed.", "success")
    default = url_for('chat_view', chat_id=txn.chat_id) if txn.chat_id else url_for('profile')
    return redirect(_safe_next(default))


@app.route('/transaction/<int:transaction_id>/cancel', methods=['POST'])
@login_required
def cancel_transaction(transaction_id):
    txn = Transaction.query.get_or_404(transaction_id)
    if current_user.id not in (txn.buyer_id, txn.seller_id):
        flash("Access denied.", "error")
        return redirect(get_user_dashboard())
    if not txn.is_pending:
        flash("This transaction is no longer pending.", "error")
        return redirect(_safe_next(get_user_dashboard()))

    txn.payment_status = 'failed'
    side = 'seller' if current_user.id == txn.seller_id else 'buyer'
    if txn.chat_id:
        chat = db.session.get(Chat, txn.chat_id)
        post_message(chat, current_user, f"Purchase request cancelled by the {side}.",
                     message_type='transaction_update', transaction=txn)
    db.session.commit()
    logger.info(f"Transaction {txn.id} cancelled by {side} {current_user.id}")
    flash("Purchase request cancelled.", "success")
    default = url_for('chat_view', chat_id=txn.chat_id) if txn.chat_id else url_for('profile')
    return redirect(_safe_next(default))


@app.route('/transaction/<int:transaction_id>/feedback', methods=['POST'])
@login_required
def leave_feedback(transaction_id):
    txn = Transaction.query.get_or_404(transaction_id)
    if txn.buyer_id != current_user.id:
        flash("Only the buyer can review this purchase.", "error")
        return redirect(url_for('profile'))
    if txn.payment_status != 'completed':
        flash("You can only review completed purchases.", "error")
        return redirect(url_for('profile'))
    if Feedback.query.filter_by(transaction_id=txn.id).first():
        flash("You have already reviewed this purchase.", "error")
        return redirect(url_for('profile'))

    rating_valid, rating = validate_rating(request.form.get('rating'))
    if not rating_valid:
        flash(rating, "error")
        return redirect(url_for('profile'))

    comment = request.form.get('comment', '').strip()
    if len(comment) > MAX_COMMENT_LENGTH:
        flash(f"Comment is too long (max {MAX_COMMENT_LENGTH} characters).", "error")
        return redirect(url_for('profile'))

    db.session.add(Feedback(
        transaction_id=txn.id,
        buyer_id=current_user.id,
        seller_id=txn.seller_id,
        rating=rating,
        comment=comment or None,
    ))
    db.session.flush()
    score = recalculate_reputation(txn.seller_id)
    db.session.commit()
    logger.info(f"Feedback for transaction {txn.id}: {rating} stars, seller {txn.seller_id} now {score}")
    flash("Thanks for your review!", "success")
    return redirect(url_for('profile'))


# =========================================================
# SECTION 6: PROFILES
# =========================================================

@app.route('/profile')
@login_required
def profile():
    my_products = (Product.query
                   .filter(Product.seller_id == current_user.id, Product.status != 'removed')
                   .order_by(Product.created_at.desc())
                   .all())
    purchases = (Transaction.query
                 .options(joinedload(Transaction.product), joinedload(Transaction.seller))
                 .filter_by(buyer_id=current_user.id, payment_status='completed')
                 .order_by(Transaction.created_at.desc())
                 .all())
    pending_purchases = (Transaction.query
                         .filter_by(buyer_id=current_user.id, payment_status='pending')
                         .order_by(Transaction.created_at.desc())
                         .all())
    pending_sales = (Transaction.query
                     .options(joinedload(Transaction.product), joinedload(Transaction.buyer))
                     .filter_by(seller_id=current_user.id, payment_status='pending')
                     .order_by(Transaction.created_at.desc())
                     .all())
    reviews = (Feedback.query
               .filter_by(seller_id=current_user.id)
               .order_by(Feedback.created_at.desc())
               .all())
    reviewed_ids = {f.transaction_id for f in Feedback.query.filter_by(buyer_id=current_user.id).all()}

    return render_template('profile.html',
                         user=current_user,
                         my_products=my_products,
                         purchases=purchases,
                         pending_purchases=pending_purchases,
                         pending_sales=pending_sales,
                         reviews=reviews,
                         reviewed_ids=reviewed_ids)


@app.route('/profile/update', methods=['POST'])
@login_required
def update_profile():
    full_name = request.form.get('full_name', '').strip()
    phone = request.form.get('phone', '').strip()
    hostel_block = request.form.get('hostel_block', '').strip()
    avatar_url = request.form.get('avatar_url', '').strip()

    if not full_name or len(full_name) > MAX_NAME_LENGTH:
        flash(f"Name is required (max {MAX_NAME_LENGTH} characters).", "error")
        return redirect(url_for('profile'))

    phone_valid, phone_result = validate_phone(phone)
    if not phone_valid:
        flash(phone_result, "error")
        return redirect(url_for('profile'))

    if not hostel_block or len(hostel_block) > MAX_HOSTEL_BLOCK_LENGTH:
        flash("Please select your hostel block.", "error")
        return redirect(url_for('profile'))

    if avatar_url and not avatar_url.startswith(('http://', 'https://')):
        flash("Avatar must be a link to an image.", "error")
        return redirect(url_for('profile'))

    current_user.full_name = full_name
    current_user.phone = phone_result
    current_user.hostel_block = hostel_block
    current_user.avatar_url = avatar_url or None
    current_user.updated_at = datetime.utcnow()
    db.session.commit()
    logger.info(f"Profile updated for user {current_user.id}")
    flash("Profile saved.", "success")
    return redirect(url_for('profile'))


@app.route('/user/<int:user_id>')
def public_profile(user_id):
    user = User.query.get_or_404(user_id)
    products = (Product.query
                .filter_by(seller_id=user.id, status='available')
                .order_by(Product.created_at.desc())
                .all())
    reviews = (Feedback.query
               .filter_by(seller_id=user.id)
               .order_by(Feedback.created_at.desc())
               .all())
    return render_template('public_profile.html', user=user, products=products, reviews=reviews)


# =========================================================
# SECTION 7: REPORTS & ADMIN
# =========================================================

@app.route('/report', methods=['POST'])
@login_required
def report():
    product_id = request.form.get('product_id', type=int)
    reported_user_id = request.form.get('reported_user_id', type=int)
    reason = request.form.get('reason', '').strip()
    description = request.form.get('description', '').strip()

    product = db.session.get(Product, product_id) if product_id else None
    if product_id and not product:
        abort(404)
    if product and not reported_user_id:
        reported_user_id = product.seller_id
    if reported_user_id and not db.session.get(User, reported_user_id):
        abort(404)

    fallback = url_for('product_detail', product_id=product.id) if product else url_for('index')

    if not product and not reported_user_id:
        flash("Choose a listing or user to report.", "error")
        return redirect(_safe_next(fallback))
    if reported_user_id == current_user.id:
        flash("You cannot report yourself or your own listing.", "error")
        return redirect(_safe_next(fallback))
    if reason not in REPORT_REASONS:
        flash("Please choose a reason for the report.", "error")
        return redirect(_safe_next(fallback))
    if len(description) > MAX_REPORT_DESCRIPTION_LENGTH:
        flash(f"Description is too long (max {MAX_REPORT_DESCRIPTION_LENGTH} characters).", "error")
        return redirect(_safe_next(fallback))

    db.session.add(Report(
        reporter_id=current_user.id,
        reported_user_id=reported_user_id,
        product_id=product.id if product else None,
        reason=reason,
        description=description or None,
    ))
    db.session.commit()
    logger.info(f"Report filed by user {current_user.id} (product={product_id}, user={reported_user_id})")
    flash("Thanks, our admins will review your report.", "success")
    return redirect(_safe_next(fallback))


@app.route('/admin')
@admin_required
def admin_panel():
    stats = {
        'total_users': User.query.count(),
        'total_products': Product.query.count(),
        'pending_reports': Report.query.filter_by(status='pending').count(),
        'completed_transactions': Transaction.query.filter_by(payment_status='completed').count(),
    }
    reports = (Report.query
               .options(joinedload(Report.reporter), joinedload(Report.reported_user), joinedload(Report.product))
               .order_by(Report.created_at.desc())
               .all())
    users = User.query.order_by(User.created_at.desc()).all()
    return render_template('admin.html', stats=stats, reports=reports, users=users)


@app.route('/admin/user/<int:user_id>/ban', methods=['POST'])
@admin_required
def admin_ban_user(user_id):
    user = User.query.get_or_404(user_id)
    should_ban = request.form.get('action', 'ban') == 'ban'

    if user.id == current_user.id:
        flash("You cannot ban your own account.", "error")
        return redirect(url_for('admin_panel'))
    if user.is_admin and should_ban:
        flash("Admins cannot be banned.", "error")
        return redirect(url_for('admin_panel'))

    user.is_banned = should_ban
    db.session.commit()
    logger.info(f"User {user.id} {'banned' if should_ban else 'unbanned'} by admin {current_user.id}")
    flash(f"{user.email} has been {'banned' if should_ban else 'unbanned'}.", "success")
    return redirect(url_for('admin_panel') + '#users')


@app.route('/admin/report/<int:report_id>/status', methods=['POST'])
@admin_required
def admin_update_report(report_id):
    report_row = Report.query.get_or_404(report_id)
    status = request.form.get('status', 'resolved')
    if status not in REPORT_ADMIN_STATUSES:
        flash("Invalid report status.", "error")
        return redirect(url_for('admin_panel'))

    report_row.status = status
    notes = request.form.get('admin_notes', '').strip()
    if notes:
        report_row.admin_notes = notes
    if status == 'resolved':
        report_row.resolved_at = datetime.utcnow()
    db.session.commit()
    logger.info(f"Report {report_row.id} marked {status} by admin {current_user.id}")
    flash(f"Report marked {status}.", "success")
    return redirect(url_for('admin_panel') + '#reports')


# =========================================================
# SECTION 8: AUTH
# =========================================================

def _apply_preassigned_role(user):
    if AdminEmail.query.filter_by(email=user.email.lower()).first():
        user.role = 'admin'


@app.route('/register', methods=['GET', 'POST'])
@limiter.limit(RATE_LIMIT_REGISTER, methods=['POST'])
def register():
    if current_user.is_authenticated:
        return redirect(get_user_dashboard())

    if request.method == 'POST':
        email = request.form.get('email', '').strip().lower()
        password = request.form.get('password', '')
        full_name = request.form.get('full_name', '').strip()

        if not email or not validate_email(email):
            flash("Please provide a valid email address.", "error")
            return render_template('register.html', prefill_email=email, prefill_full_name=full_name)

        if not is_campus_email(email):
            flash(f"Only {CAMPUS_NAME} email addresses (@{app.config['CAMPUS_EMAIL_DOMAIN']}) are allowed.", "error")
            return render_template('register.html', prefill_email=email, prefill_full_name=full_name)

        if not password or len(password) < MIN_PASSWORD_LENGTH:
            flash(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.", "error")
            return render_template('register.html', prefill_email=email, prefill_full_name=full_name)

        if not full_name or len(full_name) > MAX_NAME_LENGTH:
            flash(f"Please enter your name (max {MAX_NAME_LENGTH} characters).", "error")
            return render_template('register.html', prefill_email=email, prefill_full_name=full_name)

        if User.query.filter(func.lower(User.email) == email).first():
            flash("An account with this email already exists. Please log in.", "error")
            return redirect(url_for('login', email=email))

        new_user = User(email=email, full_name=full_name, password_hash=generate_password_hash(password))
        _apply_preassigned_role(new_user)
        db.session.add(new_user)
        db.session.commit()
        login_user(new_user)
        logger.info(f"New user registered: {email}")

        try:
            welcome_content = f"""
            <div style="font-family: sans-serif; max-width: 500px;">
                <h2 style="color: #1d4ed8;">Welcome to the {CAMPUS_NAME} Marketplace!</h2>
                <p>Hi {html_module.escape(full_name)},</p>
                <p>Your account is ready. Add your phone number and hostel block to start buying and selling.</p>
                <p><a href="{url_for('profile', _external=True)}" style="background: #1d4ed8; color: white; padding: 12px 24px; text-decoration: none; border-radius: 8px; display: inline-block;">Complete Profile</a></p>
            </div>
            """
            send_email(email, f"Welcome to the {CAMPUS_NAME} Marketplace!", welcome_content)
        except Exception as email_error:
            # Don't fail registration if email fails
            logger.warning(f"Failed to send welcome email: {email_error}")

        flash("Account created! Complete your profile to start buying and selling.", "success")
        return redirect(url_for('profile'))

    return render_template('register.html', prefill_email='', prefill_full_name='')


@app.route('/login', methods=['GET', 'POST'])
@limiter.limit(RATE_LIMIT_LOGIN, methods=['POST'])
def login():
    if current_user.is_authenticated:
        return redirect(get_user_dashboard())

    prefill_email = request.args.get('email', '')

    if request.method == 'POST':
        email = request.form.get('email', '').strip().lower()
        password = request.form.get('password', '')

        if not email or not validate_email(email):
            flash("Please provide a valid email address.", "error")
            return render_template('login.html', prefill_email=email)

        if not is_campus_email(email):
            flash(f"Only {CAMPUS_NAME} email addresses (@{app.config['CAMPUS_EMAIL_DOMAIN']}) are allowed.", "error")
            return render_template('login.html', prefill_email=email)

        if not password:
            flash("Please enter your password.", "error")
            return render_template('login.html', prefill_email=email)

        user = User.query.filter(func.lower(User.email) == email).first()
        if not user or not user.password_hash or not check_password_hash(user.password_hash, password):
            flash("Invalid email or password. Please try again.", "error")
            return render_template('login.html', prefill_email=email)

        if user.is_banned:
            logger.warning(f"Banned user {user.id} tried to log in")
            flash("Your account has been suspended. Contact the marketplace admins.", "error")
            return render_template('login.html', prefill_email=email)

        login_user(user)
        logger.info(f"User {user.id} logged in")
        return redirect(_safe_next(get_user_dashboard()))

    return render_template('login.html', prefill_email=prefill_email)


@app.route('/logout')
@login_required
def logout():
    logout_user()
    return redirect(url_for('index'))


@app.route('/auth/google')
def auth_google():
    """Initiate Google OAuth flow, hinting the campus domain."""
    if not oauth:
        flash("Sign in with Google is not configured. Please use email to create an account.", "error")
        return redirect(url_for('register'))
    redirect_uri = url_for('auth_google_callback', _external=True)
    return oauth.google.authorize_redirect(redirect_uri, hd=app.config['CAMPUS_EMAIL_DOMAIN'])


@app.route('/auth/google/callback')
def auth_google_callback():
    """Handle Google OAuth callback - create or log in user."""
    if not oauth:
        flash("Sign in with Google is not configured.", "error")
        return redirect(url_for('login'))
    try:
        token = oauth.google.authorize_access_token()
    except Exception as e:
        logger.warning(f"Google OAuth error: {e}", exc_info=True)
        flash("Sign in with Google failed. Please try again or use email.", "error")
        return redirect(url_for('login'))
    userinfo = token.get('userinfo')
    if not userinfo:
        flash("Could not get your Google profile. Please try again.", "error")
        return redirect(url_for('login'))
    email = (userinfo.get('email') or '').strip().lower()
    name = (userinfo.get('name') or '').strip()[:MAX_NAME_LENGTH]
    oauth_id = userinfo.get('sub')
    if not is_campus_email(email):
        flash(f"Only {CAMPUS_NAME} email addresses (@{app.config['CAMPUS_EMAIL_DOMAIN']}) are allowed.", "error")
        return redirect(url_for('login'))

    user = User.query.filter(func.lower(User.email) == email).first()
    if user:
        if user.is_banned:
            flash("Your account has been suspended. Contact the marketplace admins.", "error")
            return redirect(url_for('login'))
        if not user.oauth_provider or not user.oauth_id:
            user.oauth_provider = 'google'
            user.oauth_id = oauth_id
            if name and not user.full_name:
                user.full_name = name
            db.session.commit()
        login_user(user)
        flash("Welcome back!", "success")
        return redirect(get_user_dashboard())

    new_user = User(email=email, full_name=name or None, oauth_provider='google', oauth_id=oauth_id)
    _apply_preassigned_role(new_user)
    db.session.add(new_user)
    db.session.commit()
    login_user(new_user)
    logger.info(f"New user registered via Google: {email}")
    flash("Account created! Complete your profile to start buying and selling.", "success")
    return redirect(url_for('profile'))


@app.route('/health')
@limiter.exempt
def health_check():
    """Health check endpoint for monitoring and load balancers"""
    try:
        db.session.execute(db.text('SELECT 1'))
        storage = get_storage_instance()
        health_status = {
            'status': 'healthy',
            'database': 'connected',
            'storage': 's3' if storage and storage.is_s3() else 'local',
            'timestamp': datetime.utcnow().isoformat()
        }
        if resend.api_key:
            health_status['resend'] = 'configured'
        return jsonify(health_status), 200
    except Exception as e:
        logger.error(f"Health check failed: {e}", exc_info=True)
        return jsonify({
            'status': 'unhealthy',
            'error': str(e),
            'timestamp': datetime.utcnow().isoformat()
        }), 503


if __name__ == '__main__':
    with app.app_context():
        # Only create DB if it doesn't exist (Local SQLite check)
        # In production, we use migrations.
        if 'DATABASE_URL' not in os.environ:
            db.create_all()
    app.run(debug=os.environ.get('FLASK_DEBUG', 'false').lower() == 'true')
