from werkzeug.security import generate_password_hash

from app import app, db
from models import User, Product

# This script populates your DB with a demo seller and a few listings
# so the browse page has something on it. Listings are added without
# photos; upload some through the edit page if you want covers.
DEMO_PASSWORD = "demo123"

with app.app_context():
    domain = app.config['CAMPUS_EMAIL_DOMAIN']

    sellers = [
        {"email": f"demo.seller@{domain}", "full_name": "Demo Seller",
         "phone": "9876500001", "hostel_block": "Hostel J"},
        {"email": f"demo.senior@{domain}", "full_name": "Graduating Senior",
         "phone": "9876500002", "hostel_block": "Hostel PG"},
    ]

    listings = [
        (0, "Casio FX-991EX Calculator", "Allowed in all exams. Comes with cover.", 900, "Electronics", "like-new"),
        (0, "Engineering Mathematics by B.S. Grewal", "44th edition, some highlighting.", 350, "Books", "good"),
        (0, "Study Table with Drawer", "Fits hostel rooms. Pick up from Hostel J.", 1800, "Furniture", "fair"),
        (1, "Lab Coat (M)", "Used for one semester of chemistry labs.", 200, "Lab Equipment", "good"),
        (1, "Yonex Badminton Racket", "Strung last month.", 1200, "Sports", "like-new"),
        (1, "Acoustic Guitar", "Beginner friendly, with bag and capo.", 3500, "Musical Instruments", "good"),
    ]

    users = []
    for data in sellers:
        user = User.query.filter_by(email=data["email"]).first()
        if not user:
            user = User(password_hash=generate_password_hash(DEMO_PASSWORD), role='seller', **data)
            db.session.add(user)
            db.session.flush()
        users.append(user)

    added = 0
    for seller_index, title, description, price, category, condition in listings:
        seller = users[seller_index]
        exists = Product.query.filter_by(seller_id=seller.id, title=title).first()
        if not exists:
            db.session.add(Product(
                seller_id=seller.id,
                title=title,
                description=description,
                price=price,
                category=category,
                condition=condition,
            ))
            added += 1

    db.session.commit()
    print(f"✅ Seeded {added} listings! Demo sellers log in with password '{DEMO_PASSWORD}'.")
