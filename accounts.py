import logging

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from errors import DuplicateAccount, InvalidCredential, NotFound, OwnerNotFound, StoreError, ValidationError
from models import User, db

logger = logging.getLogger(__name__)


def _require(value, name):
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    return value


def find_by_email(email):
    """Case-insensitive lookup; the oldest account wins if several match."""
    if not email:
        return None
    stmt = (
        db.select(User)
        .where(func.lower(User.email) == email.strip().lower())
        .order_by(User.created_at)
    )
    return db.session.execute(stmt).scalars().first()


def _email_taken(email):
    if current_app.config.get("EMAIL_CASE_SENSITIVE_SIGNUP"):
        stmt = db.select(User.id).filter_by(email=email)
        return db.session.execute(stmt).first() is not None
    return find_by_email(email) is not None


def register(email: str, secret: str) -> str:
    email = _require(email, "Email").strip()
    secret = _require(secret, "Password")

    if _email_taken(email):
        raise DuplicateAccount()

    user = User(email=email, password_hash=generate_password_hash(secret))
    try:
        db.session.add(user)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateAccount()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Error registering user %s", email)
        raise StoreError("Error registering user")

    logger.info("Registered user %s", user.id)
    return user.id


def authenticate(email: str, secret: str) -> str:
    email = _require(email, "Email")
    secret = _require(secret, "Password")

    user = find_by_email(email)
    if user is None:
        logger.warning("Sign-in for unknown email")
        raise NotFound("Invalid email or password")
    if not check_password_hash(user.password_hash, secret):
        logger.warning("Invalid password for user %s", user.id)
        raise InvalidCredential()
    return user.id


def resolve_owner(identifier) -> User:
    """Resolve an email address or a user id to its User."""
    if not isinstance(identifier, str) or not identifier.strip():
        raise ValidationError("email or userId is required")
    identifier = identifier.strip()
    if "@" in identifier:
        user = find_by_email(identifier)
    else:
        user = db.session.get(User, identifier)
    if user is None:
        raise OwnerNotFound()
    return user
