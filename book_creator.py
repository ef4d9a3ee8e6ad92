import os
import secrets
from collections import namedtuple
from datetime import datetime, timedelta, timezone
from functools import wraps

import click
from flask import Flask, abort, jsonify, make_response, request
from flask_sqlalchemy import SQLAlchemy
from itsdangerous import BadSignature, URLSafeTimedSerializer
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException
from werkzeug.security import check_password_hash, generate_password_hash

from field_updates import UpdateError, apply_updates, field, flag, identifier, parse_new, parse_updates, raw_text, text
from reader_nav import (
    PositionError,
    ReadingPosition,
    first_position,
    has_next,
    has_previous,
    next_order,
    next_position,
    parse_order,
    previous_position,
)


db = SQLAlchemy()

SESSION_COOKIE = "admin_session"
DEFAULT_HOME_MESSAGE_KEY = "default_home_message"


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Admin(db.Model):
    __tablename__ = "admins"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)


class AdminSession(db.Model):
    __tablename__ = "admin_sessions"

    id = db.Column(db.Integer, primary_key=True)
    admin_id = db.Column(db.Integer, db.ForeignKey("admins.id", ondelete="CASCADE"), nullable=False, index=True)
    session_token = db.Column(db.String(255), unique=True, nullable=False, index=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    device_info = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    last_activity_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)


class LoginAttempt(db.Model):
    __tablename__ = "login_attempts"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(120), nullable=True, index=True)
    ip_address = db.Column(db.String(64), nullable=False, index=True)
    attempted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    successful = db.Column(db.Boolean, nullable=False, default=False)


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    admin_id = db.Column(db.Integer, db.ForeignKey("admins.id"), nullable=False)
    action = db.Column(db.String(255), nullable=False)
    ip_address = db.Column(db.String(64), nullable=True)
    device_info = db.Column(db.String(512), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)


class Author(db.Model):
    __tablename__ = "authors"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    bio = db.Column(db.Text, nullable=True)
    role = db.Column(db.String(120), nullable=True)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    book_links = db.relationship("BookAuthor", back_populates="author")


class Book(db.Model):
    __tablename__ = "books"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False, index=True)
    isbn = db.Column(db.String(32), nullable=True)
    description = db.Column(db.Text, nullable=True)
    cover_art = db.Column(db.String(500), nullable=True)
    is_published = db.Column(db.Boolean, nullable=False, default=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    book_links = db.relationship("BookAuthor", back_populates="book", cascade="all, delete-orphan")
    chapters = db.relationship(
        "Chapter", back_populates="book", cascade="all, delete-orphan", order_by="Chapter.order"
    )


class BookAuthor(db.Model):
    __tablename__ = "book_authors"
    __table_args__ = (db.UniqueConstraint("book_id", "author_id", name="uq_book_author"),)

    id = db.Column(db.Integer, primary_key=True)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = db.Column(db.Integer, db.ForeignKey("authors.id"), nullable=False, index=True)

    book = db.relationship("Book", back_populates="book_links")
    author = db.relationship("Author", back_populates="book_links")


class Chapter(db.Model):
    __tablename__ = "chapters"

    id = db.Column(db.Integer, primary_key=True)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id", ondelete="CASCADE"), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    order = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    book = db.relationship("Book", back_populates="chapters")
    pages = db.relationship("Page", back_populates="chapter", cascade="all, delete-orphan", order_by="Page.order")


class Page(db.Model):
    __tablename__ = "pages"

    id = db.Column(db.Integer, primary_key=True)
    chapter_id = db.Column(db.Integer, db.ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=True)
    content = db.Column(db.Text, nullable=False)
    order = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    chapter = db.relationship("Chapter", back_populates="pages")


class Settings(db.Model):
    __tablename__ = "settings"

    id = db.Column(db.Integer, primary_key=True)
    site_title = db.Column(db.String(255), nullable=True)
    logo = db.Column(db.String(500), nullable=True)
    home_content = db.Column(db.Text, nullable=True)
    meta_title = db.Column(db.String(255), nullable=True)
    meta_description = db.Column(db.Text, nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class SiteSetting(db.Model):
    __tablename__ = "site_settings"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(120), nullable=False, unique=True, index=True)
    value = db.Column(db.Text, nullable=True)
    description = db.Column(db.String(255), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


# Handed to every protected view as its first argument.
AuthContext = namedtuple("AuthContext", ["admin", "session"])


AUTHOR_FIELDS = {
    "name": field("name", nullable=False, coerce=text),
    "bio": field("bio", coerce=raw_text),
    "role": field("role"),
    "description": field("description", coerce=raw_text),
}

BOOK_FIELDS = {
    "title": field("title", nullable=False, coerce=text),
    "isbn": field("isbn"),
    "description": field("description", coerce=raw_text),
    "cover_art": field("cover_art"),
    "is_published": field("is_published", nullable=False, coerce=flag),
}

CHAPTER_FIELDS = {
    "title": field("title", nullable=False, coerce=text),
    "description": field("description", coerce=raw_text),
    "order": field("order", nullable=False, coerce=parse_order),
    "book_id": field("book_id", nullable=False, coerce=identifier),
}

PAGE_FIELDS = {
    "title": field("title"),
    "content": field("content", nullable=False, coerce=raw_text),
    "order": field("order", nullable=False, coerce=parse_order),
    "chapter_id": field("chapter_id", nullable=False, coerce=identifier),
}

SETTINGS_FIELDS = {
    "site_title": field("site_title"),
    "logo": field("logo"),
    "home_content": field("home_content", coerce=raw_text),
    "meta_title": field("meta_title"),
    "meta_description": field("meta_description", coerce=raw_text),
}


def create_app(test_config=None):
    app = Flask(__name__)
    app.config["SQLALCHEMY_DATABASE_URI"] = os.getenv("DATABASE_URL", "sqlite:///book_creator.db")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", secrets.token_hex(32))
    app.config["SESSION_IDLE_MINUTES"] = int(os.getenv("SESSION_IDLE_MINUTES", "1440"))
    app.config["SESSION_MAX_AGE_HOURS"] = int(os.getenv("SESSION_MAX_AGE_HOURS", "168"))
    app.config["SESSION_COOKIE_SECURE"] = os.getenv("SESSION_COOKIE_SECURE", "true").lower() == "true"
    app.config["LOGIN_RATE_LIMIT_WINDOW_MINUTES"] = int(os.getenv("LOGIN_RATE_LIMIT_WINDOW_MINUTES", "15"))
    app.config["LOGIN_RATE_LIMIT_MAX_ATTEMPTS"] = int(os.getenv("LOGIN_RATE_LIMIT_MAX_ATTEMPTS", "5"))
    app.config["ADMIN_PASSWORD_MIN_LENGTH"] = int(os.getenv("ADMIN_PASSWORD_MIN_LENGTH", "8"))
    app.config["LOG_LEVEL"] = os.getenv("LOG_LEVEL", "INFO").upper()
    app.config["DEFAULT_HOME_MESSAGE"] = os.getenv(
        "DEFAULT_HOME_MESSAGE",
        "Welcome to Book Creator. No books have been published yet.",
    )
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    db.init_app(app)

    with app.app_context():
        db.create_all()

    serializer = URLSafeTimedSerializer(app.config["SECRET_KEY"], salt="admin-session")

    def set_setting(key, value, description=None):
        row = SiteSetting.query.filter_by(key=key).first()
        if not row:
            row = SiteSetting(key=key, value=value, description=description)
            db.session.add(row)
        else:
            row.value = value
        db.session.commit()
        return row

    def get_setting(key, default=None):
        row = SiteSetting.query.filter_by(key=key).first()
        if not row:
            return default
        return row.value

    def get_client_ip():
        forwarded = request.headers.get("X-Forwarded-For")
        return forwarded.split(",")[0].strip() if forwarded else (request.remote_addr or "unknown")

    def log_admin_action(ctx, action):
        db.session.add(
            AuditLog(
                admin_id=ctx.admin.id,
                action=action,
                ip_address=get_client_ip(),
                device_info=request.user_agent.string or None,
            )
        )
        db.session.commit()

    def token_expiry(minutes):
        return utcnow() + timedelta(minutes=minutes)

    def issue_session(admin):
        raw = secrets.token_urlsafe(48)
        session = AdminSession(
            admin_id=admin.id,
            session_token=raw,
            expires_at=token_expiry(app.config["SESSION_IDLE_MINUTES"]),
            device_info=request.user_agent.string or None,
            ip_address=get_client_ip(),
            last_activity_at=utcnow(),
        )
        db.session.add(session)
        db.session.commit()
        return serializer.dumps(raw)

    def login_blocked(username):
        window_start = utcnow() - timedelta(minutes=app.config["LOGIN_RATE_LIMIT_WINDOW_MINUTES"])
        attempts = LoginAttempt.query.filter(
            LoginAttempt.successful.is_(False),
            LoginAttempt.attempted_at >= window_start,
            (LoginAttempt.username == username) | (LoginAttempt.ip_address == get_client_ip()),
        ).count()
        return attempts >= app.config["LOGIN_RATE_LIMIT_MAX_ATTEMPTS"]

    def record_login_attempt(username, success):
        db.session.add(LoginAttempt(username=username, ip_address=get_client_ip(), successful=success))
        db.session.commit()

    def presented_token():
        header = request.headers.get("Authorization", "")
        if header.startswith("Bearer "):
            return header[len("Bearer "):].strip()
        return request.cookies.get(SESSION_COOKIE)

    def resolve_auth():
        signed = presented_token()
        if not signed:
            return None
        try:
            raw = serializer.loads(signed, max_age=app.config["SESSION_MAX_AGE_HOURS"] * 3600)
        except BadSignature:
            return None
        session = AdminSession.query.filter_by(session_token=raw).first()
        if not session:
            return None
        if as_utc(session.expires_at) < utcnow():
            db.session.delete(session)
            db.session.commit()
            return None
        admin = db.session.get(Admin, session.admin_id)
        if not admin:
            return None
        session.last_activity_at = utcnow()
        session.expires_at = token_expiry(app.config["SESSION_IDLE_MINUTES"])
        db.session.commit()
        return AuthContext(admin, session)

    def require_admin(fn):
        @wraps(fn)
        def wrapped(*args, **kwargs):
            ctx = resolve_auth()
            if not ctx:
                return jsonify({"error": "Unauthorized"}), 401
            return fn(ctx, *args, **kwargs)

        return wrapped

    def as_data():
        data = request.get_json(silent=True)
        if data is None:
            return request.form
        if not isinstance(data, dict):
            abort(400, description="Request body must be a JSON object")
        return data

    def author_to_dict(author):
        return {
            "id": author.id,
            "name": author.name,
            "bio": author.bio,
            "role": author.role,
            "description": author.description,
            "book_count": len(author.book_links),
            "created_at": author.created_at.isoformat(),
            "updated_at": author.updated_at.isoformat(),
        }

    def page_to_dict(page, include_parents=False):
        payload = {
            "id": page.id,
            "chapter_id": page.chapter_id,
            "title": page.title,
            "content": page.content,
            "order": page.order,
            "created_at": page.created_at.isoformat(),
            "updated_at": page.updated_at.isoformat(),
        }
        if include_parents:
            payload["chapter"] = {
                "title": page.chapter.title,
                "book": {"id": page.chapter.book_id, "title": page.chapter.book.title},
            }
        return payload

    def chapter_to_dict(chapter, include_pages=False):
        payload = {
            "id": chapter.id,
            "book_id": chapter.book_id,
            "book": {"title": chapter.book.title},
            "title": chapter.title,
            "description": chapter.description,
            "order": chapter.order,
            "page_count": len(chapter.pages),
            "created_at": chapter.created_at.isoformat(),
            "updated_at": chapter.updated_at.isoformat(),
        }
        if include_pages:
            payload["pages"] = [page_to_dict(p) for p in chapter.pages]
        return payload

    def book_to_dict(book, include_chapters=False, include_pages=False):
        payload = {
            "id": book.id,
            "title": book.title,
            "isbn": book.isbn,
            "description": book.description,
            "cover_art": book.cover_art,
            "is_published": book.is_published,
            "authors": [
                {"id": link.author.id, "name": link.author.name, "role": link.author.role}
                for link in book.book_links
            ],
            "chapter_count": len(book.chapters),
            "created_at": book.created_at.isoformat(),
            "updated_at": book.updated_at.isoformat(),
        }
        if include_chapters:
            payload["chapters"] = [chapter_to_dict(c, include_pages=include_pages) for c in book.chapters]
        return payload

    def settings_to_dict(settings):
        return {
            "id": settings.id,
            "site_title": settings.site_title,
            "logo": settings.logo,
            "home_content": settings.home_content,
            "meta_title": settings.meta_title,
            "meta_description": settings.meta_description,
            "updated_at": settings.updated_at.isoformat(),
        }

    def parse_author_ids(raw):
        if not isinstance(raw, list):
            raise UpdateError("author_ids must be a list")
        ids = []
        for value in raw:
            author_id = identifier(value)
            if author_id not in ids:
                ids.append(author_id)
        if ids and Author.query.filter(Author.id.in_(ids)).count() != len(ids):
            raise UpdateError("Invalid author_ids")
        return ids

    def sync_book_authors(book, author_ids):
        wanted = set(author_ids)
        for link in list(book.book_links):
            if link.author_id not in wanted:
                book.book_links.remove(link)
        linked = {link.author_id for link in book.book_links}
        for author_id in author_ids:
            if author_id not in linked:
                book.book_links.append(BookAuthor(author_id=author_id))

    def chapter_orders(book_id, exclude_id=None):
        query = db.session.query(Chapter.order).filter(Chapter.book_id == book_id)
        if exclude_id is not None:
            query = query.filter(Chapter.id != exclude_id)
        return [order for (order,) in query.all()]

    def page_orders(chapter_id, exclude_id=None):
        query = db.session.query(Page.order).filter(Page.chapter_id == chapter_id)
        if exclude_id is not None:
            query = query.filter(Page.id != exclude_id)
        return [order for (order,) in query.all()]

    def get_settings_row():
        settings = Settings.query.order_by(Settings.id.asc()).first()
        if not settings:
            settings = Settings()
            db.session.add(settings)
            db.session.commit()
        return settings

    @app.after_request
    def add_security_headers(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return jsonify({"error": exc.description}), exc.code

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(exc):
        db.session.rollback()
        app.logger.exception("Database error on %s %s", request.method, request.path)
        return jsonify({"error": "Internal server error"}), 500

    @app.get("/health")
    def health():
        return jsonify({"status": "ok"})

    # Auth

    @app.get("/auth/exists")
    def admin_exists():
        return jsonify({"admin_exists": Admin.query.first() is not None})

    @app.post("/auth/init")
    def init_admin():
        if Admin.query.first() is not None:
            return jsonify({"error": "Admin already exists"}), 400
        data = as_data()
        username = str(data.get("username") or "").strip()
        password = str(data.get("password") or "")
        if not username or not password:
            return jsonify({"error": "Username and password are required"}), 400
        if len(password) < app.config["ADMIN_PASSWORD_MIN_LENGTH"]:
            return jsonify({"error": "Admin password does not meet strength requirements"}), 400
        admin = Admin(username=username, password_hash=generate_password_hash(password))
        db.session.add(admin)
        db.session.commit()
        app.logger.info("Created initial admin %s", admin.username)
        return jsonify({"message": "Admin created", "admin": {"id": admin.id, "username": admin.username}}), 201

    @app.post("/auth/login")
    def login():
        data = as_data()
        username = str(data.get("username") or "").strip()
        password = str(data.get("password") or "")
        if not username or not password:
            return jsonify({"error": "Username and password are required"}), 400
        if login_blocked(username):
            app.logger.warning("Login rate limited for %s from %s", username, get_client_ip())
            return jsonify({"error": "Too many login attempts. Try later."}), 429

        admin = Admin.query.filter_by(username=username).first()
        if not admin or not check_password_hash(admin.password_hash, password):
            record_login_attempt(username, False)
            return jsonify({"error": "Invalid credentials"}), 401

        token = issue_session(admin)
        record_login_attempt(username, True)
        log_admin_action(AuthContext(admin, None), "admin_login")
        resp = make_response(
            jsonify({"message": "Logged in", "token": token, "admin": {"id": admin.id, "username": admin.username}})
        )
        resp.set_cookie(
            SESSION_COOKIE,
            token,
            httponly=True,
            secure=app.config["SESSION_COOKIE_SECURE"],
            samesite="Lax",
            max_age=app.config["SESSION_MAX_AGE_HOURS"] * 3600,
        )
        return resp

    @app.get("/auth/check")
    def check_auth():
        ctx = resolve_auth()
        if not ctx:
            return jsonify({"authenticated": False}), 401
        return jsonify({"authenticated": True, "username": ctx.admin.username})

    @app.post("/auth/logout")
    def logout():
        ctx = resolve_auth()
        if ctx:
            db.session.delete(ctx.session)
            db.session.commit()
        resp = make_response(jsonify({"message": "Logged out"}))
        resp.delete_cookie(SESSION_COOKIE)
        return resp

    @app.get("/admin/audit-logs")
    @require_admin
    def admin_audit_logs(ctx):
        logs = AuditLog.query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(100).all()
        return jsonify(
            [
                {
                    "admin_id": log.admin_id,
                    "action": log.action,
                    "ip_address": log.ip_address,
                    "device_info": log.device_info,
                    "created_at": log.created_at.isoformat(),
                }
                for log in logs
            ]
        )

    # Authors

    @app.get("/authors")
    @require_admin
    def list_authors(ctx):
        authors = Author.query.order_by(Author.name.asc()).all()
        return jsonify([author_to_dict(a) for a in authors])

    @app.post("/authors")
    @require_admin
    def create_author(ctx):
        try:
            values = parse_new(as_data(), AUTHOR_FIELDS, required=("name",), missing="Name is required")
        except UpdateError as exc:
            return jsonify({"error": str(exc)}), 400
        author = Author(**values)
        db.session.add(author)
        db.session.commit()
        log_admin_action(ctx, f"author_create:{author.id}")
        return jsonify(author_to_dict(author)), 201

    @app.get("/authors/<int:author_id>")
    @require_admin
    def get_author(ctx, author_id):
        author = db.get_or_404(Author, author_id, description="Author not found")
        return jsonify(author_to_dict(author))

    @app.patch("/authors/<int:author_id>")
    @require_admin
    def update_author(ctx, author_id):
        author = db.get_or_404(Author, author_id, description="Author not found")
        try:
            updates = parse_updates(as_data(), AUTHOR_FIELDS)
        except UpdateError as exc:
            return jsonify({"error": str(exc)}), 400
        apply_updates(author, updates)
        db.session.commit()
        log_admin_action(ctx, f"author_update:{author.id}")
        return jsonify(author_to_dict(author))

    @app.delete("/authors/<int:author_id>")
    @require_admin
    def delete_author(ctx, author_id):
        author = db.get_or_404(Author, author_id, description="Author not found")
        if BookAuthor.query.filter_by(author_id=author.id).count() > 0:
            return jsonify({"error": "Cannot delete author with existing books"}), 400
        db.session.delete(author)
        db.session.commit()
        log_admin_action(ctx, f"author_delete:{author_id}")
        return jsonify({"message": "Author deleted"})

    # Books

    @app.get("/books")
    @require_admin
    def list_books(ctx):
        books = Book.query.order_by(Book.created_at.desc(), Book.id.desc()).all()
        return jsonify([book_to_dict(b) for b in books])

    @app.post("/books")
    @require_admin
    def create_book(ctx):
        data = as_data()
        try:
            values = parse_new(data, BOOK_FIELDS, required=("title",), missing="Title is required")
            author_ids = parse_author_ids(data.get("author_ids") or [])
        except (UpdateError, ValueError) as exc:
            return jsonify({"error": str(exc)}), 400

        values.setdefault("is_published", False)
        book = Book(**values)
        sync_book_authors(book, author_ids)
        db.session.add(book)
        db.session.commit()
        log_admin_action(ctx, f"book_create:{book.id}")
        return jsonify(book_to_dict(book)), 201

    @app.get("/books/<int:book_id>")
    @require_admin
    def get_book(ctx, book_id):
        book = db.get_or_404(Book, book_id, description="Book not found")
        return jsonify(book_to_dict(book, include_chapters=True, include_pages=True))

    @app.patch("/books/<int:book_id>")
    @require_admin
    def update_book(ctx, book_id):
        book = db.get_or_404(Book, book_id, description="Book not found")
        data = as_data()
        try:
            updates = parse_updates(data, BOOK_FIELDS)
            author_ids = None
            if "author_ids" in data:
                author_ids = parse_author_ids(data.get("author_ids") or [])
        except (UpdateError, ValueError) as exc:
            return jsonify({"error": str(exc)}), 400

        apply_updates(book, updates)
        if author_ids is not None:
            sync_book_authors(book, author_ids)
        db.session.commit()
        log_admin_action(ctx, f"book_update:{book.id}")
        return jsonify(book_to_dict(book))

    @app.delete("/books/<int:book_id>")
    @require_admin
    def delete_book(ctx, book_id):
        book = db.get_or_404(Book, book_id, description="Book not found")
        db.session.delete(book)
        db.session.commit()
        app.logger.info("Deleted book %s with its chapters and pages", book_id)
        log_admin_action(ctx, f"book_delete:{book_id}")
        return jsonify({"message": "Book deleted"})

    @app.get("/books/public")
    def list_public_books():
        books = Book.query.filter_by(is_published=True).order_by(Book.updated_at.desc(), Book.id.desc()).all()
        return jsonify([book_to_dict(b) for b in books])

    @app.get("/books/public/<int:book_id>")
    def public_book_detail(book_id):
        book = Book.query.filter_by(id=book_id, is_published=True).first()
        if not book:
            return jsonify({"error": "Book not found"}), 404
        return jsonify(book_to_dict(book, include_chapters=True))

    @app.get("/books/public/<int:book_id>/read")
    def read_book(book_id):
        book = Book.query.filter_by(id=book_id, is_published=True).first()
        if not book:
            return jsonify({"error": "Book not found"}), 404
        chapters = book.chapters
        page_counts = [len(c.pages) for c in chapters]
        move = (request.args.get("move") or "").strip().lower()
        if move not in ("", "next", "prev"):
            return jsonify({"error": "move must be next or prev"}), 400

        chapter_index = request.args.get("chapter", type=int)
        page_index = request.args.get("page", type=int)
        if ("chapter" in request.args and chapter_index is None) or ("page" in request.args and page_index is None):
            return jsonify({"error": "chapter and page must be integers"}), 400
        if page_index is not None and chapter_index is None:
            return jsonify({"error": "page requires chapter"}), 400
        if chapter_index is None:
            position = first_position(page_counts)
        else:
            position = ReadingPosition(chapter_index, page_index or 0)

        payload = {
            "book": {"id": book.id, "title": book.title},
            "total_chapters": len(chapters),
            "position": None,
            "chapter": None,
            "page": None,
            "has_next": False,
            "has_previous": False,
        }
        if position is None:
            return jsonify(payload)

        try:
            if move == "next":
                position = next_position(page_counts, position)
            elif move == "prev":
                position = previous_position(page_counts, position)
            payload["has_next"] = has_next(page_counts, position)
            payload["has_previous"] = has_previous(page_counts, position)
        except PositionError as exc:
            return jsonify({"error": str(exc)}), 400

        chapter = chapters[position.chapter_index]
        payload["position"] = {"chapter_index": position.chapter_index, "page_index": position.page_index}
        payload["chapter"] = {
            "id": chapter.id,
            "title": chapter.title,
            "order": chapter.order,
            "page_count": len(chapter.pages),
        }
        if chapter.pages:
            payload["page"] = page_to_dict(chapter.pages[position.page_index])
        return jsonify(payload)

    # Chapters

    @app.get("/chapters")
    @require_admin
    def list_chapters(ctx):
        query = Chapter.query
        book_id = request.args.get("book_id", type=int)
        if book_id is not None:
            query = query.filter_by(book_id=book_id)
        chapters = query.order_by(Chapter.book_id.asc(), Chapter.order.asc()).all()
        return jsonify([chapter_to_dict(c) for c in chapters])

    @app.post("/chapters")
    @require_admin
    def create_chapter(ctx):
        try:
            values = parse_new(
                as_data(), CHAPTER_FIELDS, required=("title", "book_id"), missing="Title and book_id are required"
            )
        except UpdateError as exc:
            return jsonify({"error": str(exc)}), 400

        book = db.session.get(Book, values["book_id"])
        if not book:
            return jsonify({"error": "Book not found"}), 404
        siblings = chapter_orders(book.id)
        order = values.get("order")
        if order is None:
            values["order"] = next_order(siblings)
        elif order in siblings:
            return jsonify({"error": f"Order {order} is already used in this book"}), 409

        chapter = Chapter(**values)
        db.session.add(chapter)
        db.session.commit()
        log_admin_action(ctx, f"chapter_create:{chapter.id}")
        return jsonify(chapter_to_dict(chapter)), 201

    @app.get("/chapters/<int:chapter_id>")
    @require_admin
    def get_chapter(ctx, chapter_id):
        chapter = db.get_or_404(Chapter, chapter_id, description="Chapter not found")
        return jsonify(chapter_to_dict(chapter, include_pages=True))

    @app.patch("/chapters/<int:chapter_id>")
    @require_admin
    def update_chapter(ctx, chapter_id):
        chapter = db.get_or_404(Chapter, chapter_id, description="Chapter not found")
        try:
            updates = parse_updates(as_data(), CHAPTER_FIELDS)
        except UpdateError as exc:
            return jsonify({"error": str(exc)}), 400

        target_book_id = chapter.book_id
        moving = updates["book_id"].is_set and updates["book_id"].value != chapter.book_id
        if moving:
            target_book_id = updates["book_id"].value
            if not db.session.get(Book, target_book_id):
                return jsonify({"error": "Book not found"}), 404
        siblings = chapter_orders(target_book_id, exclude_id=chapter.id)
        if updates["order"].is_set:
            if updates["order"].value in siblings:
                return jsonify({"error": f"Order {updates['order'].value} is already used in this book"}), 409
        elif moving:
            chapter.order = next_order(siblings)

        apply_updates(chapter, updates)
        db.session.commit()
        log_admin_action(ctx, f"chapter_update:{chapter.id}")
        return jsonify(chapter_to_dict(chapter, include_pages=True))

    @app.delete("/chapters/<int:chapter_id>")
    @require_admin
    def delete_chapter(ctx, chapter_id):
        chapter = db.get_or_404(Chapter, chapter_id, description="Chapter not found")
        db.session.delete(chapter)
        db.session.commit()
        log_admin_action(ctx, f"chapter_delete:{chapter_id}")
        return jsonify({"message": "Chapter deleted"})

    @app.get("/chapters/public/<int:chapter_id>")
    def public_chapter(chapter_id):
        chapter = db.session.get(Chapter, chapter_id)
        if not chapter or not chapter.book.is_published:
            return jsonify({"error": "Chapter not found"}), 404
        return jsonify(chapter_to_dict(chapter, include_pages=True))

    # Pages

    @app.get("/pages")
    @require_admin
    def list_pages(ctx):
        query = Page.query
        chapter_id = request.args.get("chapter_id", type=int)
        if chapter_id is not None:
            query = query.filter_by(chapter_id=chapter_id)
        pages = query.order_by(Page.chapter_id.asc(), Page.order.asc()).all()
        return jsonify([page_to_dict(p, include_parents=True) for p in pages])

    @app.post("/pages")
    @require_admin
    def create_page(ctx):
        try:
            values = parse_new(
                as_data(), PAGE_FIELDS, required=("content", "chapter_id"), missing="Content and chapter_id are required"
            )
        except UpdateError as exc:
            return jsonify({"error": str(exc)}), 400

        chapter = db.session.get(Chapter, values["chapter_id"])
        if not chapter:
            return jsonify({"error": "Chapter not found"}), 404
        siblings = page_orders(chapter.id)
        order = values.get("order")
        if order is None:
            values["order"] = next_order(siblings)
        elif order in siblings:
            return jsonify({"error": f"Order {order} is already used in this chapter"}), 409

        page = Page(**values)
        db.session.add(page)
        db.session.commit()
        log_admin_action(ctx, f"page_create:{page.id}")
        return jsonify(page_to_dict(page, include_parents=True)), 201

    @app.get("/pages/<int:page_id>")
    @require_admin
    def get_page(ctx, page_id):
        page = db.get_or_404(Page, page_id, description="Page not found")
        return jsonify(page_to_dict(page, include_parents=True))

    @app.patch("/pages/<int:page_id>")
    @require_admin
    def update_page(ctx, page_id):
        page = db.get_or_404(Page, page_id, description="Page not found")
        try:
            updates = parse_updates(as_data(), PAGE_FIELDS)
        except UpdateError as exc:
            return jsonify({"error": str(exc)}), 400

        target_chapter_id = page.chapter_id
        moving = updates["chapter_id"].is_set and updates["chapter_id"].value != page.chapter_id
        if moving:
            target_chapter_id = updates["chapter_id"].value
            if not db.session.get(Chapter, target_chapter_id):
                return jsonify({"error": "Chapter not found"}), 404
        siblings = page_orders(target_chapter_id, exclude_id=page.id)
        if updates["order"].is_set:
            if updates["order"].value in siblings:
                return jsonify({"error": f"Order {updates['order'].value} is already used in this chapter"}), 409
        elif moving:
            page.order = next_order(siblings)

        apply_updates(page, updates)
        db.session.commit()
        log_admin_action(ctx, f"page_update:{page.id}")
        return jsonify(page_to_dict(page, include_parents=True))

    @app.delete("/pages/<int:page_id>")
    @require_admin
    def delete_page(ctx, page_id):
        page = db.get_or_404(Page, page_id, description="Page not found")
        db.session.delete(page)
        db.session.commit()
        log_admin_action(ctx, f"page_delete:{page_id}")
        return jsonify({"message": "Page deleted"})

    # Settings

    @app.get("/settings")
    @require_admin
    def get_settings(ctx):
        return jsonify(settings_to_dict(get_settings_row()))

    @app.patch("/settings")
    @require_admin
    def update_settings(ctx):
        settings = get_settings_row()
        try:
            updates = parse_updates(as_data(), SETTINGS_FIELDS)
        except UpdateError as exc:
            return jsonify({"error": str(exc)}), 400
        apply_updates(settings, updates)
        db.session.commit()
        log_admin_action(ctx, "settings_update")
        return jsonify(settings_to_dict(settings))

    @app.get("/site-settings")
    def get_site_settings():
        message = get_setting(DEFAULT_HOME_MESSAGE_KEY, app.config["DEFAULT_HOME_MESSAGE"])
        return jsonify({"default_home_message": message})

    @app.patch("/site-settings")
    @require_admin
    def update_site_settings(ctx):
        data = as_data()
        message = data.get("default_home_message")
        if message is None:
            return jsonify({"error": "default_home_message is required"}), 400
        row = set_setting(
            DEFAULT_HOME_MESSAGE_KEY,
            str(message),
            description="Message shown on the homepage when no books are published",
        )
        log_admin_action(ctx, "site_settings_update")
        return jsonify({"default_home_message": row.value})

    @app.cli.command("seed")
    @click.option("--username", default="admin", show_default=True, help="Username for the first admin.")
    @click.option("--password", envvar="ADMIN_PASSWORD", default=None, help="Password for the first admin.")
    def seed(username, password):
        """Create the first admin, sample authors and the default home message."""
        if Admin.query.first() is not None:
            click.echo("[SEED] admin already present")
        elif not password:
            click.echo("[SEED] admin skipped, pass --password or set ADMIN_PASSWORD", err=True)
        else:
            db.session.add(Admin(username=username, password_hash=generate_password_hash(password)))
            db.session.commit()
            click.echo(f"[SEED] admin ok created {username}")

        if Author.query.first() is None:
            db.session.add_all(
                [
                    Author(name="John Doe", role="Lead Author", description="Experienced technology writer"),
                    Author(name="Jane Smith", role="Editor", description="Professional editor"),
                ]
            )
            db.session.commit()
            click.echo("[SEED] authors ok created 2")
        else:
            click.echo("[SEED] authors already present")

        if get_setting(DEFAULT_HOME_MESSAGE_KEY) is None:
            set_setting(
                DEFAULT_HOME_MESSAGE_KEY,
                app.config["DEFAULT_HOME_MESSAGE"],
                description="Message shown on the homepage when no books are published",
            )
            click.echo("[SEED] site settings ok")
        else:
            click.echo("[SEED] site settings already present")

    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=5000, debug=True)
