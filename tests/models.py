from flask_sqlalchemy import SQLAlchemy

from sacrud import SACRUDBase

db = SQLAlchemy()

memberships = db.Table(
    "memberships",
    db.Column("author_id", db.Integer, db.ForeignKey("authors.id"), primary_key=True),
    db.Column("project_id", db.Integer, db.ForeignKey("projects.id"), primary_key=True),
    db.Column("role", db.String),
)


class Author(SACRUDBase, db.Model):
    __tablename__ = "authors"
    _s_scopes = {"default": {"exclude": ["password"]}, "full": {}}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String, nullable=False)
    email = db.Column(db.String, unique=True, info={"validate": {"is_email": True}})
    password = db.Column(db.String)
    books = db.relationship("Book", back_populates="author", order_by="Book.id")
    profile = db.relationship("Profile", back_populates="author", uselist=False)
    projects = db.relationship("Project", secondary=memberships, back_populates="members", order_by="Project.id")


class Book(SACRUDBase, db.Model):
    __tablename__ = "books"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String, nullable=False)
    genre = db.Column(db.String, info={"validate": {"is_in": ["novel", "essay"]}})
    author_id = db.Column(db.Integer, db.ForeignKey("authors.id"))
    author = db.relationship("Author", back_populates="books")


class Profile(SACRUDBase, db.Model):
    __tablename__ = "profiles"

    id = db.Column(db.Integer, primary_key=True)
    bio = db.Column(db.String)
    author_id = db.Column(db.Integer, db.ForeignKey("authors.id"))
    author = db.relationship("Author", back_populates="profile")


class Project(SACRUDBase, db.Model):
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String, nullable=False)
    members = db.relationship("Author", secondary=memberships, back_populates="projects", order_by="Author.id")


class Tenant(SACRUDBase, db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.String, primary_key=True)
    name = db.Column(db.String, nullable=False)
