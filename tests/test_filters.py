import pytest

from sacrud import SACRUD
from sacrud.filters import LIST, READ, QueryTranslator
from sacrud.include import AssociationGraphResolver
from sacrud.repository import CrudRepository

from models import Author, Book


@pytest.fixture
def translator() -> QueryTranslator:
    resolver = AssociationGraphResolver()
    return QueryTranslator(Author, {None: resolver.resolve("all", Author), LIST: []}, resolver)


def test_parse_attribute(translator: QueryTranslator) -> None:
    assert translator.parse_attribute("name", "Ann") == ("name", "Ann")
    assert translator.parse_attribute("name", "null") == ("name", None)
    assert translator.parse_attribute("name$ne", "true") == ("name", {"ne": True})
    assert translator.parse_attribute("id$in", "1,2,null") == ("id", {"in": ["1", "2", None]})
    assert translator.parse_attribute("id$between", [1, 5]) == ("id", {"between": [1, 5]})
    assert translator.parse_attribute("name$startsWith", "A") == ("name", {"startsWith": "A"})


def test_unknown_operators_are_dropped(translator: QueryTranslator) -> None:
    assert translator.parse_attribute("name$raw", "1; DROP TABLE authors") is None
    spec, _ = translator.translate({"name$raw": "x", "id$gte": "2"})
    assert spec.where == {"id": {"gte": "2"}}


def test_same_attribute_predicates(translator: QueryTranslator) -> None:
    spec, _ = translator.translate({"id$gte": 1, "id$lt": 5})
    assert spec.where == {"id": {"gte": 1, "lt": 5}}

    spec, _ = translator.translate({"name": "Ann", "name$ne": "Bob"})
    assert spec.where == {"name": {"and": ["Ann", {"ne": "Bob"}]}}


def test_unknown_attributes_are_ignored(translator: QueryTranslator) -> None:
    spec, filtered = translator.translate({"nope": 1, "books.nope": 2, "nope.title": 3, "books.author.nope": 4})
    assert spec.where == {}
    assert spec.include == []
    assert not filtered


def test_to_many_filter_sets_the_flag(translator: QueryTranslator) -> None:
    spec, filtered = translator.translate({"books.title": "Dune"})
    assert filtered
    (books,) = spec.include
    assert books.required
    assert not books.fetch_separately
    assert books.where == {"title": "Dune"}


def test_many_to_one_filter_does_not_set_the_flag() -> None:
    translator = QueryTranslator(Book, {None: []})
    spec, filtered = translator.translate({"author.name$like": "A%"})
    assert not filtered
    (author,) = spec.include
    assert author.required
    assert author.where == {"name": {"like": "A%"}}


def test_nested_filter_requires_the_parents(translator: QueryTranslator) -> None:
    spec, filtered = translator.translate({"books.author.name": "Ann"})
    assert filtered
    (books,) = spec.include
    assert books.required
    assert books.where is None
    (author,) = books.children
    assert author.required
    assert author.where == {"name": "Ann"}


def test_filter_attaches_to_the_included_node(translator: QueryTranslator) -> None:
    spec, _ = translator.translate({"projects.name": "Alpha"}, action=READ)
    nodes = {node.name: node for node in spec.include}
    assert sorted(nodes) == ["books", "profile", "projects"]
    assert nodes["projects"].required
    assert not nodes["books"].required


def test_order_and_pagination(translator: QueryTranslator) -> None:
    spec, _ = translator.translate({}, {"order": "-name,id,bogus", "limit": "10", "offset": "x"})
    assert spec.order == [("name", "DESC"), ("id", "ASC")]
    assert spec.limit == 10
    assert spec.offset is None

    spec, _ = translator.translate({}, {"order": "-name", "limit": "10"}, READ)
    assert spec.order == []
    assert spec.limit is None


def test_default_list_limit(translator: QueryTranslator, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(SACRUD, "LIST_LIMIT", 25)
    spec, _ = translator.translate({})
    assert spec.limit == 25


def test_translate_is_idempotent(translator: QueryTranslator) -> None:
    query = {"books.title": "Dune", "name$ne": "Bob"}
    first = translator.translate(query, action=READ)
    second = translator.translate(query, action=READ)
    assert first == second
    assert not any(node.required for node in translator.includes[None])
    assert all(node.where is None for node in translator.includes[None])


def test_per_call_include(translator: QueryTranslator) -> None:
    spec, _ = translator.translate({}, {"include": ["profile"]}, READ)
    assert [node.name for node in spec.include] == ["profile"]


OPERATOR_CASES = [
    (lambda ids: {"title": "Emma"}, ["Emma"]),
    (lambda ids: {"title$eq": "Emma"}, ["Emma"]),
    (lambda ids: {"title$ne": "Dune"}, ["Emma", "Essays", "Untitled"]),
    (lambda ids: {"genre": "null"}, ["Untitled"]),
    (lambda ids: {"genre$is": "null"}, ["Untitled"]),
    (lambda ids: {"genre$not": "null"}, ["Dune", "Dune", "Emma", "Essays"]),
    (lambda ids: {"title$or": "Emma,Essays"}, ["Emma", "Essays"]),
    (lambda ids: {"author_id$gt": ids.ann}, ["Dune"]),
    (lambda ids: {"author_id$gte": ids.ann}, ["Dune", "Dune", "Emma", "Essays"]),
    (lambda ids: {"author_id$lt": ids.bob}, ["Dune", "Emma", "Essays"]),
    (lambda ids: {"author_id$lte": ids.ann}, ["Dune", "Emma", "Essays"]),
    (lambda ids: {"author_id$between": f"{ids.ann},{ids.ann}"}, ["Dune", "Emma", "Essays"]),
    (lambda ids: {"author_id$notBetween": [ids.ann, ids.ann]}, ["Dune"]),
    (lambda ids: {"title$in": "Emma,Essays"}, ["Emma", "Essays"]),
    (lambda ids: {"title$notIn": "Dune,Untitled"}, ["Emma", "Essays"]),
    (lambda ids: {"title$like": "E%"}, ["Emma", "Essays"]),
    (lambda ids: {"title$notLike": "E%"}, ["Dune", "Dune", "Untitled"]),
    (lambda ids: {"title$startsWith": "Es"}, ["Essays"]),
    (lambda ids: {"title$startsWith": "E%"}, []),
    (lambda ids: {"title$endsWith": "ma"}, ["Emma"]),
    (lambda ids: {"title$substring": "ss"}, ["Essays"]),
    (lambda ids: {"title$substring": "_"}, []),
    (lambda ids: {"title$iLike": "e%"}, ["Emma", "Essays"]),
    (lambda ids: {"title$notILike": "e%"}, ["Dune", "Dune", "Untitled"]),
    (lambda ids: {"title$regexp": "^E"}, ["Emma", "Essays"]),
    (lambda ids: {"title$notRegexp": "^E"}, ["Dune", "Dune", "Untitled"]),
    (lambda ids: {"title$iRegexp": "^e"}, ["Emma", "Essays"]),
    (lambda ids: {"title$notIRegexp": "^e"}, ["Dune", "Dune", "Untitled"]),
    (lambda ids: {"title$like": "%", "title$notLike": "D%"}, ["Emma", "Essays", "Untitled"]),
    (lambda ids: {"title$unknown": "Dune"}, ["Dune", "Dune", "Emma", "Essays", "Untitled"]),
]


@pytest.mark.parametrize("query, expected", OPERATOR_CASES)
def test_operators(app, library, query, expected) -> None:
    books = CrudRepository(Book, include=[])
    books.create({"title": "Untitled"})
    assert sorted(book["title"] for book in books.list(query(library))) == expected
