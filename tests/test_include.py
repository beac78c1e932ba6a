import pytest

from sacrud.errors import ConfigurationError
from sacrud.include import AssociationGraphResolver, DottedPath, Named, Wildcard, merge_predicates, parse_include
from sacrud.registry import AssociationKind

from models import Author, Book


@pytest.fixture
def resolver() -> AssociationGraphResolver:
    return AssociationGraphResolver()


def _names(nodes) -> list:
    return sorted(node.name for node in nodes)


def test_parse_include_variants() -> None:
    assert parse_include(["all", "books", "books.author", {"all": True}]) == [
        Wildcard(),
        Named("books"),
        DottedPath(("books", "author")),
        Wildcard(),
    ]


def test_parse_include_rejects_unknown_shapes() -> None:
    with pytest.raises(ConfigurationError):
        parse_include([42])
    with pytest.raises(ConfigurationError):
        parse_include([{"association": "books", "limit": 3}])
    with pytest.raises(ConfigurationError):
        parse_include([{"include": ["author"]}])


def test_wildcard_yields_one_node_per_association(resolver: AssociationGraphResolver) -> None:
    assert _names(resolver.resolve("all", Author)) == ["books", "profile", "projects"]
    assert _names(resolver.resolve(["all", "books", {"model": "Profile"}], Author)) == ["books", "profile", "projects"]


def test_only_one_to_many_is_fetched_separately(resolver: AssociationGraphResolver) -> None:
    nodes = {node.name: node for node in resolver.resolve("all", Author)}
    assert nodes["books"].edge.kind is AssociationKind.ONE_TO_MANY
    assert nodes["books"].fetch_separately
    assert not nodes["profile"].fetch_separately
    assert not nodes["projects"].fetch_separately
    assert not any(node.required for node in nodes.values())


def test_dotted_path(resolver: AssociationGraphResolver) -> None:
    (books,) = resolver.resolve("books.author", Author)
    assert books.name == "books"
    assert [child.name for child in books.children] == ["author"]
    assert books.children[0].edge.kind is AssociationKind.MANY_TO_ONE

    (books,) = resolver.resolve("books.all", Author)
    assert [child.name for child in books.children] == ["author"]


def test_unresolvable_path_is_a_configuration_error(resolver: AssociationGraphResolver) -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        resolver.resolve("books.publisher", Author)
    assert "Association publisher does not exist in model Book" in exc_info.value.message

    with pytest.raises(ConfigurationError):
        resolver.resolve("nope", Author)
    with pytest.raises(ConfigurationError):
        resolver.resolve("books.all.author", Author)


def test_structured_includes(resolver: AssociationGraphResolver) -> None:
    (node,) = resolver.resolve({"model": Book, "include": ["author"]}, Author)
    assert node.name == "books"
    assert [child.name for child in node.children] == ["author"]

    (node,) = resolver.resolve({"as": "projects"}, Author)
    assert node.name == "projects"

    with pytest.raises(ConfigurationError):
        resolver.resolve({"model": "Tenant"}, Author)


def test_aggregation_merges_predicates(resolver: AssociationGraphResolver) -> None:
    (books,) = resolver.resolve(
        ["books", {"association": "books", "where": {"title": "Dune"}}, "books.author"],
        Author,
    )
    assert books.required
    assert not books.fetch_separately
    assert books.where == {"title": "Dune"}
    assert [child.name for child in books.children] == ["author"]

    (books,) = resolver.resolve(
        [{"association": "books", "where": {"title": "Dune"}}, {"association": "books", "where": {"title": {"ne": "Emma"}}}],
        Author,
    )
    assert books.where == {"title": {"and": ["Dune", {"ne": "Emma"}]}}


def test_aggregation_without_predicates_keeps_first(resolver: AssociationGraphResolver) -> None:
    (books,) = resolver.resolve(["books", "books"], Author)
    assert not books.required
    assert books.fetch_separately
    assert books.where is None


def test_merge_predicates() -> None:
    assert merge_predicates({"id": {"gt": 1}}, {"id": {"lt": 5}}) == {"id": {"gt": 1, "lt": 5}}
    assert merge_predicates({"id": {"gt": 1}}, {"id": {"gt": 3}}) == {"id": {"and": [{"gt": 1}, {"gt": 3}]}}
    assert merge_predicates({"id": 1}, {"name": "Ann"}) == {"id": 1, "name": "Ann"}
    left = {"id": {"and": [1, 2]}}
    assert merge_predicates(left, {"id": 3}) == {"id": {"and": [1, 2, 3]}}
    assert left == {"id": {"and": [1, 2]}}


def test_copies_do_not_share_state(resolver: AssociationGraphResolver) -> None:
    (books,) = resolver.resolve("books.author", Author)
    clone = books.copy()
    clone.attach({"title": "Dune"})
    clone.children[0].attach({"name": "Ann"})
    assert books.where is None
    assert not books.required
    assert books.children[0].where is None
