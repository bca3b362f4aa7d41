from __future__ import annotations

import datetime

import pytest

from graphdoc import ConfigurationError, ReferenceSyntaxError, TransportError, ValueCodecError

TEST_NS = "http://example.org/test#"
UTC = datetime.timezone.utc


@pytest.mark.asyncio
async def test_create_find_and_delete_people(models):
    """Save two people, find both, delete one by URI."""
    lester = await models.person.create_document(
        {"familyName": "Lyu", "givenName": "Lester", "gender": "Male"}
    ).save()
    await models.person.create_document({"familyName": "Lee", "givenName": "Ann"}).save()

    assert len(await models.person.find({})) == 2

    deleted = await models.person.find_by_uri_and_delete(lester.uri)
    assert deleted.familyName == "Lyu"
    remaining = await models.person.find({})
    assert [doc.familyName for doc in remaining] == ["Lee"]


@pytest.mark.asyncio
async def test_first_save_is_a_single_insert(endpoint, models):
    doc = models.person.create_document({"familyName": "Lyu", "age": 30})
    await doc.save()

    assert len(endpoint.updates) == 1
    statement = endpoint.updates[0]
    assert "DELETE WHERE" not in statement
    assert statement.count("INSERT DATA") == 1
    assert f"<{TEST_NS}person_1> rdf:type owl:NamedIndividual, cids:Person." in statement
    assert f"<{TEST_NS}person_1> :has_familyName \"Lyu\"." in statement
    assert f"<{TEST_NS}person_1> :has_age 30." in statement
    assert not doc.is_new
    assert doc.modified_fields == set()


@pytest.mark.asyncio
async def test_values_round_trip(models):
    born = datetime.datetime(1990, 5, 1, 12, 30, tzinfo=UTC)
    doc = await models.person.create_document(
        {
            "familyName": 'O"Neil\nSenior',
            "age": 41,
            "birthDate": born,
            "active": False,
            "nicknames": ["Nell", "Oni"],
        }
    ).save()

    found = await models.person.find_by_id(doc.identifier)

    assert found.uri == doc.uri
    assert found.identifier == "1"
    assert found.familyName == 'O"Neil\nSenior'
    assert found.age == 41
    assert found.birthDate == born
    assert found.active is False
    assert sorted(found.nicknames) == ["Nell", "Oni"]
    assert not found.is_modified


@pytest.mark.asyncio
async def test_saving_an_unmodified_document_sends_nothing(endpoint, models):
    doc = await models.person.create_document({"familyName": "Lyu"}).save()
    await doc.save()
    found = await models.person.find_by_id(doc.identifier)
    await found.save()

    assert len(endpoint.updates) == 1
    assert await found.generate_save_query() is None


@pytest.mark.asyncio
async def test_update_replaces_only_modified_fields(endpoint, models):
    doc = await models.person.create_document({"familyName": "Lyu", "givenName": "L"}).save()
    endpoint.reset()

    doc.givenName = "Lester"
    await doc.save()

    statement = endpoint.updates[0]
    assert f"DELETE WHERE {{\n\t<{doc.uri}> :has_givenName ?o0.\n}}" in statement
    assert ":has_familyName" not in statement
    found = await models.person.find_by_id(doc.identifier)
    assert (found.familyName, found.givenName) == ("Lyu", "Lester")


@pytest.mark.asyncio
async def test_clearing_fields(endpoint, models):
    doc = await models.person.create_document(
        {"familyName": "Lyu", "nicknames": ["L"]}
    ).save()
    endpoint.reset()
    doc.familyName = None
    doc.nicknames = []
    await doc.save()

    statement = endpoint.updates[0]
    assert statement.count("DELETE WHERE") == 2
    assert statement.endswith("INSERT DATA {\n\t\n}")

    found = await models.person.find_by_id(doc.identifier)
    assert found.familyName is None
    assert found.nicknames is None


@pytest.mark.asyncio
async def test_booleans_survive_false(models):
    doc = await models.person.create_document({"active": True}).save()
    doc.active = False
    await doc.save()

    found = await models.person.find_one({"active": False})
    assert found is not None and found.uri == doc.uri


@pytest.mark.asyncio
async def test_empty_model(store):
    marker = store.define_model({}, name="marker", rdf_types=[":Marker"])
    doc = await marker.create_document().save()

    found = await marker.find({})
    assert [d.uri for d in found] == [doc.uri]
    assert found[0].data == {}


# ──────────────────────────────────────────────────────────────────────
# Nested documents
# ──────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_nested_mapping_is_saved_in_one_statement(endpoint, models):
    account = models.account.create_document(
        {"username": "lester", "person": {"familyName": "Lyu", "phone": {"number": "555"}}}
    )
    await account.save()

    assert len(endpoint.updates) == 1
    person = account.person
    assert not person.is_new
    assert not person.phone.is_new

    found = await models.account.find({}, populates=["person.phone"])
    assert found[0].person.familyName == "Lyu"
    assert found[0].person.phone.number == "555"


@pytest.mark.asyncio
async def test_double_save_does_not_duplicate_nested_documents(endpoint, models):
    account = models.account.create_document({"person": {"familyName": "Lyu"}})
    await account.save()
    await account.save()

    assert len(endpoint.updates) == 1
    assert len(await models.person.find({})) == 1


@pytest.mark.asyncio
async def test_nested_mapping_adopts_the_previous_uri(models):
    account = await models.account.create_document({"person": {"familyName": "Lyu"}}).save()
    person_uri = account.person.uri

    found = await models.account.find_by_id(account.identifier)
    assert found.person == person_uri
    found.person = {"familyName": "Smith"}
    await found.save()

    people = await models.person.find({})
    assert [p.uri for p in people] == [person_uri]
    assert people[0].familyName == "Smith"


@pytest.mark.asyncio
async def test_cascade_delete_when_unlinked(models):
    account = await models.account.create_document({"person": {"familyName": "Lyu"}}).save()
    person_uri = account.person.uri

    account.person = None
    await account.save()

    assert await models.person.find_by_uri(person_uri) is None
    found = await models.account.find_by_id(account.identifier)
    assert found.person is None


@pytest.mark.asyncio
async def test_cascade_delete_of_unpopulated_reference(models):
    await models.account.create_document({"person": {"familyName": "Lyu"}}).save()
    found = await models.account.find_one({})
    person_uri = found.person

    found.person = None
    await found.save()

    assert await models.person.find_by_uri(person_uri) is None


@pytest.mark.asyncio
async def test_non_cascade_unlink_keeps_the_target(models):
    organization = await models.organization.create_document(
        {"name": "EIL", "members": [{"familyName": "Lyu"}]}
    ).save()
    member_uri = organization.members[0].uri

    organization.members = None
    await organization.save()

    assert await models.person.find_by_uri(member_uri) is not None


@pytest.mark.asyncio
async def test_emptying_a_cascade_array_deletes_every_element(models):
    organization = await models.organization.create_document(
        {"name": "EIL", "contacts": [{"familyName": "A"}, {"familyName": "B"}]}
    ).save()
    assert len(await models.person.find({})) == 2

    organization.contacts = []
    await organization.save()

    assert len(await models.person.find({})) == 0


@pytest.mark.asyncio
async def test_shrinking_a_cascade_array_prunes_orphans(models):
    organization = await models.organization.create_document(
        {"name": "EIL", "contacts": [{"familyName": "A"}, {"familyName": "B"}]}
    ).save()
    first, second = organization.contacts

    organization.contacts = [first]
    await organization.save()

    assert await models.person.find_by_uri(first.uri) is not None
    assert await models.person.find_by_uri(second.uri) is None
    found = await models.organization.find_by_id(organization.identifier)
    assert found.contacts == [first.uri]


@pytest.mark.asyncio
async def test_prepending_to_a_cascade_array_keeps_existing_elements(models):
    organization = await models.organization.create_document(
        {"name": "EIL", "contacts": [{"familyName": "A"}, {"familyName": "B"}]}
    ).save()
    first, second = organization.contacts

    organization.contacts = [{"familyName": "NEW"}, first, second]
    await organization.save()

    added = organization.contacts[0]
    assert added.uri not in (first.uri, second.uri)
    assert sorted(p.familyName for p in await models.person.find({})) == ["A", "B", "NEW"]
    found = await models.organization.find_by_id(organization.identifier)
    assert sorted(found.contacts) == sorted([added.uri, first.uri, second.uri])


@pytest.mark.asyncio
async def test_shrinking_a_non_cascade_array_only_unlinks(models):
    organization = await models.organization.create_document(
        {"name": "EIL", "members": [{"familyName": "A"}, {"familyName": "B"}]}
    ).save()
    first, second = organization.members

    organization.members = [first]
    await organization.save()

    assert await models.person.find_by_uri(second.uri) is not None
    found = await models.organization.find_by_id(organization.identifier)
    assert found.members == [first.uri]


@pytest.mark.asyncio
async def test_linking_existing_references_by_uri(models):
    person = await models.person.create_document({"familyName": "Lyu"}).save()
    account = await models.account.create_document(
        {"person": person.uri, "username": "lester"}
    ).save()

    found = await models.account.find_by_id(account.identifier, populates="person")
    assert found.person.familyName == "Lyu"


@pytest.mark.asyncio
async def test_save_many_sends_one_statement(endpoint, models):
    docs = [models.person.create_document({"familyName": name}) for name in ("A", "B", "C")]
    await models.person.save_many(docs)

    assert len(endpoint.updates) == 1
    assert all(not doc.is_new for doc in docs)
    assert len(await models.person.find({})) == 3


# ──────────────────────────────────────────────────────────────────────
# Failures
# ──────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_malformed_reference_aborts_before_any_statement(endpoint, models):
    account = models.account.create_document({"person": "not a reference"})
    with pytest.raises(ReferenceSyntaxError):
        await account.save()
    assert endpoint.updates == []


@pytest.mark.asyncio
async def test_wrong_value_kind_aborts_before_any_statement(endpoint, models):
    with pytest.raises(ValueCodecError):
        await models.person.create_document({"age": "old"}).save()
    with pytest.raises(ValueCodecError):
        await models.person.create_document({"nicknames": "Les"}).save()
    with pytest.raises(ValueCodecError):
        await models.account.create_document({"person": 42}).save()
    assert endpoint.updates == []


@pytest.mark.asyncio
async def test_unknown_field_is_a_configuration_error(endpoint, models):
    with pytest.raises(ConfigurationError):
        await models.person.create_document({"nickname": "Les"}).save()
    assert endpoint.updates == []


@pytest.mark.asyncio
async def test_transport_failure_keeps_pending_changes(endpoint, models):
    doc = models.person.create_document({"familyName": "Lyu"})
    endpoint.fail_updates = True

    with pytest.raises(TransportError) as info:
        await doc.save()

    assert info.value.operation == "send_update"
    assert isinstance(info.value.cause, RuntimeError)
    assert doc.is_new
    assert "familyName" in doc.modified_fields

    endpoint.fail_updates = False
    await doc.save()

    assert doc.identifier == "1"
    found = await models.person.find({})
    assert [d.familyName for d in found] == ["Lyu"]
