#!/usr/bin/env python3
"""
Set a user as admin by email. Works for users who haven't signed up yet (pre-assignment).

Usage:
  FLASK_APP=app python set_admin.py your@thapar.edu
  FLASK_APP=app python set_admin.py your@thapar.edu --revoke

If the user exists: grants admin immediately.
If the user doesn't exist: pre-assigns so they get admin when they sign up.
"""
import argparse

if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Grant or revoke admin access by email')
    parser.add_argument('email', help='Email address')
    parser.add_argument('--revoke', action='store_true',
                        help='Remove admin access (and any pre-assignment) instead of granting it')
    args = parser.parse_args()

    email_lower = args.email.strip().lower()

    from app import app, db
    from models import User, AdminEmail
    from sqlalchemy import func

    with app.app_context():
        user = User.query.filter(func.lower(User.email) == email_lower).first()
        pending = AdminEmail.query.filter_by(email=email_lower).first()

        if args.revoke:
            if pending:
                db.session.delete(pending)
            if user and user.is_admin:
                # Admins who have listed something keep their seller role
                user.role = 'seller' if user.products else 'buyer'
            db.session.commit()
            print(f"Done! {email_lower} is no longer an admin.")
        elif user:
            user.role = 'admin'
            db.session.commit()
            print(f"Done! {email_lower} is now an admin.")
        elif pending:
            print(f"{email_lower} is already pre-assigned and will be an admin when they sign up.")
        else:
            db.session.add(AdminEmail(email=email_lower))
            db.session.commit()
            print(f"Pre-assigned! {email_lower} will be an admin when they sign up.")
