from types import SimpleNamespace

import pytest
from flask import Flask

from sacrud import SACRUD
from sacrud.registry import registry

from models import Author, Book, Profile, Project, db


@pytest.fixture
def app():
    app = Flask(__name__)
    app.config["SQLALCHEMY_DATABASE_URI"] = "sqlite://"
    db.init_app(app)
    SACRUD(app, app_db=db)
    with app.app_context():
        db.create_all()
        registry.configure()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def library(app):
    """
    Ann wrote Dune, Emma and Essays and works on Alpha, Bob wrote another Dune
    """
    alpha, beta, gamma = Project(name="Alpha"), Project(name="Beta"), Project(name="Gamma")
    ann = Author(name="Ann", email="ann@library.org", password="secret", projects=[alpha])
    ann.books = [Book(title="Dune", genre="novel"), Book(title="Emma", genre="novel"), Book(title="Essays", genre="essay")]
    ann.profile = Profile(bio="Writes a lot")
    bob = Author(name="Bob", email="bob@library.org", password="hunter2")
    bob.books = [Book(title="Dune", genre="novel")]
    db.session.add_all([ann, bob, beta, gamma])
    db.session.commit()
    return SimpleNamespace(ann=ann.id, bob=bob.id, alpha=alpha.id, beta=beta.id, gamma=gamma.id)
