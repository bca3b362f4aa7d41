from __future__ import annotations

import asyncio
import datetime

import pytest

from graphdoc import Document, DocumentPathError, IdGenerator, UsageError

TEST_NS = "http://example.org/test#"


def persisted(model, data):
    """Document as it would come back from a query."""
    return Document(model, data, is_new=False)


# ──────────────────────────────────────────────────────────────────────
# Identity and attribute access
# ──────────────────────────────────────────────────────────────────────


def test_identity(models):
    by_id = models.person.create_document({"_id": 7, "familyName": "Lyu"})
    by_uri = models.person.create_document({"_uri": ":lester"})
    fresh = models.person.create_document()

    assert by_id.identifier == "7"
    assert by_id.uri == TEST_NS + "person_7"
    assert by_uri.uri == TEST_NS + "lester"
    assert by_uri.identifier is None
    assert fresh.uri is None
    assert fresh.is_new and by_id.is_new
    assert not persisted(models.person, {"_id": "1"}).is_new


def test_attribute_access(models):
    doc = models.person.create_document({"familyName": "Lyu"})

    assert doc.familyName == "Lyu"
    assert doc.givenName is None
    with pytest.raises(AttributeError):
        doc.unknownField

    doc.givenName = "Lester"
    assert doc.data == {"familyName": "Lyu", "givenName": "Lester"}
    del doc.givenName
    assert doc.givenName is None
    with pytest.raises(AttributeError):
        del doc.givenName


@pytest.mark.asyncio
async def test_generate_uri_mints_once(models):
    doc = models.person.create_document()
    uri = await doc.generate_uri()

    assert uri == TEST_NS + "person_1"
    assert await doc.generate_id() == "1"
    assert (await models.person.create_document().generate_id()) == "2"
    assert (await models.phone.create_document().generate_id()) == "1"


@pytest.mark.asyncio
async def test_concurrent_generate_id_shares_one_request(store, models):
    class SlowGenerator(IdGenerator):
        pattern = r"\d+"

        def __init__(self):
            self.calls = 0

        async def next_id(self, counter_name: str) -> str:
            self.calls += 1
            await asyncio.sleep(0)
            return str(100 + self.calls)

    store.id_generator = SlowGenerator()
    doc = models.person.create_document()
    first, second = await asyncio.gather(doc.generate_uri(), doc.generate_uri())

    assert first == second == TEST_NS + "person_101"
    assert store.id_generator.calls == 1


@pytest.mark.asyncio
async def test_explicit_uri_is_never_replaced(models):
    doc = models.person.create_document(uri=TEST_NS + "alice")
    assert await doc.generate_uri() == TEST_NS + "alice"
    assert doc.identifier is None


# ──────────────────────────────────────────────────────────────────────
# Dotted paths
# ──────────────────────────────────────────────────────────────────────


def test_get_and_set_paths(models):
    phone = persisted(models.phone, {"_id": "1", "number": "555"})
    person = persisted(models.person, {"_id": "1", "phone": phone, "nicknames": ["Les"]})
    account = persisted(models.account, {"_id": "1", "person": person})

    assert account.get("person.phone.number") == "555"
    assert account.get("person.nicknames.0") == "Les"
    assert account.get("person.givenName") is None

    account.set("person.phone.number", "777")
    assert phone.number == "777"
    account.set("person.nicknames.0", "L")
    assert person.nicknames == ["L"]


def test_path_errors(models):
    person = persisted(models.person, {"_id": "1", "nicknames": ["Les"]})
    account = persisted(models.account, {"_id": "1", "person": person})

    with pytest.raises(DocumentPathError):
        account.get("person.phone.number")
    with pytest.raises(DocumentPathError):
        account.get("person.nicknames.5")
    with pytest.raises(DocumentPathError):
        account.get("person.nicknames.first")
    with pytest.raises(DocumentPathError):
        account.get("username.length")
    with pytest.raises(KeyError):
        account.set("person.phone.number", "1")


def test_populated_assignment_is_not_a_modification(models):
    account = persisted(models.account, {"_id": "1", "person": TEST_NS + "person_1"})
    person = persisted(models.person, {"_id": "1", "familyName": "Lyu"})

    account.set("person", person, populated=True)

    assert account.person is person
    assert not account.is_modified


# ──────────────────────────────────────────────────────────────────────
# Modification tracking
# ──────────────────────────────────────────────────────────────────────


def test_scalar_modifications(models):
    doc = persisted(models.person, {"_id": "1", "familyName": "Lyu", "nicknames": []})
    assert not doc.check_modified()

    doc.familyName = "Lyu"
    assert not doc.is_modified

    doc.givenName = "Lester"
    doc.nicknames = None
    assert doc.check_modified()
    assert doc.modified_fields == {"givenName"}

    doc.familyName = None
    assert doc.check_modified()
    assert doc.modified_fields == {"givenName", "familyName"}


def test_deleting_a_field_is_a_modification(models):
    doc = persisted(models.person, {"_id": "1", "familyName": "Lyu"})
    del doc.familyName
    assert doc.check_modified()
    assert doc.modified_fields == {"familyName"}


def test_mark_modified(models):
    doc = persisted(models.person, {"_id": "1", "familyName": "Lyu"})
    doc.mark_modified("familyName")
    assert doc.check_modified()
    assert doc.modified_fields == {"familyName"}


def test_nested_document_modifications(models):
    person = persisted(models.person, {"_id": "1", "familyName": "Lyu"})
    account = persisted(models.account, {"_id": "1", "person": person})
    assert not account.is_modified

    person.givenName = "Lester"
    assert account.check_modified()
    assert account.modified_fields == {"person"}

    other = persisted(models.person, {"_id": "2"})
    fresh = persisted(models.account, {"_id": "2", "person": other})
    fresh.person = persisted(models.person, {"_id": "3"})
    assert fresh.check_modified()

    fresh.person = TEST_NS + "person_2"
    assert fresh.check_modified()


def test_assigning_a_mapping_merges_into_the_nested_document(models):
    person = persisted(models.person, {"_id": "1", "familyName": "Lyu", "givenName": "Lester"})
    account = persisted(models.account, {"_id": "1", "person": person})

    account.person = {"familyName": "Smith"}

    assert account.check_modified()
    assert account.person is person
    assert person.familyName == "Smith"
    assert person.givenName == "Lester"


def test_array_modifications(models):
    doc = persisted(models.person, {"_id": "1", "nicknames": ["a", "b"]})

    doc.nicknames = ["a", "b"]
    assert not doc.check_modified()
    doc.nicknames = ["b", "a"]
    assert doc.check_modified()
    doc.nicknames = ["a", "b", "c"]
    assert doc.check_modified()
    doc.nicknames = []
    assert doc.check_modified()


def test_reordering_document_arrays_is_not_detected(models):
    """
    Document elements are compared positionally only through their own
    modifications, so swapping two unmodified documents goes unnoticed.
    """
    first = persisted(models.person, {"_id": "1", "familyName": "A"})
    second = persisted(models.person, {"_id": "2", "familyName": "B"})
    organization = persisted(models.organization, {"_id": "1", "contacts": [first, second]})

    organization.contacts = [second, first]
    assert not organization.check_modified()

    second.familyName = "C"
    assert organization.check_modified()
    assert organization.modified_fields == {"contacts"}


def test_mapping_in_document_array_is_merged(models):
    first = persisted(models.person, {"_id": "1", "familyName": "A"})
    organization = persisted(models.organization, {"_id": "1", "contacts": [first]})

    organization.contacts = [{"givenName": "Ann"}]

    assert organization.check_modified()
    assert organization.contacts[0] is first
    assert first.givenName == "Ann"


# ──────────────────────────────────────────────────────────────────────
# Conversion
# ──────────────────────────────────────────────────────────────────────


def test_to_dict(models):
    born = datetime.datetime(1990, 5, 1, tzinfo=datetime.timezone.utc)
    person = persisted(models.person, {"_id": "1", "familyName": "Lyu", "birthDate": born})
    account = persisted(models.account, {"_id": "3", "person": person, "username": "lester"})

    assert account.to_dict() == {
        "_uri": TEST_NS + "account_3",
        "_id": "3",
        "person": {
            "_uri": TEST_NS + "person_1",
            "_id": "1",
            "familyName": "Lyu",
            "birthDate": "1990-05-01T00:00:00+00:00",
        },
        "username": "lester",
    }


def test_to_dict_is_cycle_safe(store):
    node = store.define_model(
        {"name": str, "next": "owl:NamedIndividual"}, name="node", rdf_types=[":Node"]
    )
    first = persisted(node, {"_id": "1", "name": "a"})
    second = persisted(node, {"_id": "2", "name": "b", "next": first})
    first.next = second

    result = first.to_dict()
    assert result["next"]["next"] == TEST_NS + "node_1"


def test_to_dict_expands_shared_documents_every_time(models):
    person = persisted(models.person, {"_id": "1", "familyName": "Lyu"})
    organization = persisted(
        models.organization, {"_id": "1", "contacts": [person], "members": [person]}
    )

    result = organization.to_dict()
    assert result["contacts"][0]["familyName"] == "Lyu"
    assert result["members"][0]["familyName"] == "Lyu"


def test_shallow_copy(models):
    person = persisted(models.person, {"_id": "1", "familyName": "Lyu", "nicknames": ["L"]})
    copy = person.shallow_copy()

    assert copy is not person
    assert copy.uri == person.uri
    assert not copy.is_new
    assert copy.nicknames is person.nicknames
    copy.familyName = "Smith"
    assert person.familyName == "Lyu"


@pytest.mark.asyncio
async def test_populating_a_new_document_is_rejected(models):
    account = models.account.create_document({"person": TEST_NS + "person_1"})
    with pytest.raises(UsageError):
        await account.populate("person")
