from sqlalchemy import inspect

from app import app, db, get_storage_instance
from models import ProductImage

# This script deletes the old database and creates a fresh one
# matching your current code. Locally stored listing photos go too.
with app.app_context():
    storage = get_storage_instance()
    if not storage.is_s3() and inspect(db.engine).has_table('product_image'):
        for photo in ProductImage.query.all():
            storage.delete_photo(photo.photo_url)
    db.drop_all()   # Deletes everything
    db.create_all() # Creates fresh tables with the new columns
    print("✅ Database has been reset! You can now sign up.")
