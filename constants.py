"""
Application-wide constants for Thapar Marketplace
"""

# Campus Configuration
CAMPUS_NAME = 'Thapar University'
DEFAULT_CAMPUS_EMAIL_DOMAIN = 'thapar.edu'
CURRENCY_SYMBOL = '₹'

# Hostel blocks shown in the profile form (free text is still accepted)
HOSTEL_BLOCKS = [
    'Hostel A', 'Hostel B', 'Hostel C', 'Hostel D', 'Hostel E',
    'Hostel G', 'Hostel H', 'Hostel I', 'Hostel J', 'Hostel K',
    'Hostel L', 'Hostel M', 'Hostel N', 'Hostel O', 'Hostel PG',
    'Day Scholar',
]

# Listing Configuration
CATEGORIES = [
    'Electronics',
    'Books',
    'Furniture',
    'Clothing',
    'Sports',
    'Musical Instruments',
    'Lab Equipment',
    'Other',
]

CONDITIONS = [
    ('new', 'New'),
    ('like-new', 'Like New'),
    ('good', 'Good'),
    ('fair', 'Fair'),
    ('poor', 'Poor'),
]
CONDITION_VALUES = {value for value, _ in CONDITIONS}
DEFAULT_CONDITION = 'good'

# Browse sort options: value -> label
SORT_OPTIONS = [
    ('newest', 'Newest First'),
    ('price-low', 'Price: Low to High'),
    ('price-high', 'Price: High to Low'),
    ('popular', 'Most Viewed'),
]
DEFAULT_SORT = 'newest'

# Transactions (cash on delivery only)
PAYMENT_METHOD_COD = 'cod'
PAYMENT_STATUSES = ('pending', 'completed', 'failed')

# Reports
REPORT_REASONS = [
    'Fraud or scam',
    'Prohibited item',
    'Misleading listing',
    'Harassment',
    'No-show at meeting',
    'Other',
]
REPORT_STATUSES = ('pending', 'reviewed', 'resolved')
# Statuses an admin can move a report to
REPORT_ADMIN_STATUSES = REPORT_STATUSES[1:]

# File Upload Configuration
MAX_UPLOAD_SIZE = 10 * 1024 * 1024  # 10MB
ALLOWED_EXTENSIONS = {'jpg', 'jpeg', 'png', 'webp'}
ALLOWED_MIME_TYPES = {'image/jpeg', 'image/png', 'image/jpg', 'image/webp'}

# Image Processing Configuration
IMAGE_QUALITY = 80  # JPEG quality (0-100)
MAX_IMAGE_DIMENSION = 2000  # Longest side in pixels
MAX_IMAGES_PER_PRODUCT = 5

# Input Validation
MIN_PRICE = 1
MAX_PRICE = 1000000
MIN_RATING = 1
MAX_RATING = 5
MAX_TITLE_LENGTH = 120
MAX_DESCRIPTION_LENGTH = 2000
MAX_MESSAGE_LENGTH = 2000
MAX_MEETING_LOCATION_LENGTH = 200
MAX_COMMENT_LENGTH = 1000
MAX_REPORT_DESCRIPTION_LENGTH = 1000
MAX_EMAIL_LENGTH = 120
MAX_NAME_LENGTH = 100
MAX_HOSTEL_BLOCK_LENGTH = 50
MIN_PASSWORD_LENGTH = 6

# Pagination
PRODUCTS_PER_PAGE = 24
SOLD_CAROUSEL_SIZE = 10

# Rate Limiting (requests per time period)
RATE_LIMIT_LOGIN = "5 per minute"
RATE_LIMIT_REGISTER = "3 per hour"
RATE_LIMIT_MESSAGES = "30 per minute"
