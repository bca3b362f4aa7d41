import datetime
from types import SimpleNamespace

import pytest

from graphdoc import DeletePolicy, Reference


@pytest.fixture(scope="function")
def models(store) -> SimpleNamespace:
    """
    person ──phone (cascade)──▶ phone
    account ──person (cascade)──▶ person
    organization ──contacts (cascade, array)──▶ person
                 ──members (array)──▶ person
    """
    person = store.define_model(
        {
            "familyName": str,
            "givenName": str,
            "gender": str,
            "age": int,
            "birthDate": datetime.datetime,
            "active": bool,
            "nicknames": [str],
            "phone": {"type": Reference("phone"), "on_delete": DeletePolicy.CASCADE},
        },
        name="person",
        rdf_types=["cids:Person"],
    )
    phone = store.define_model(
        {"number": str, "countryCode": int},
        name="phone",
        rdf_types=[":PhoneNumber"],
    )
    account = store.define_model(
        {
            "person": {"type": person, "on_delete": DeletePolicy.CASCADE},
            "username": str,
        },
        name="account",
        rdf_types=[":Account"],
    )
    organization = store.define_model(
        {
            "name": str,
            "contacts": {"type": [person], "on_delete": DeletePolicy.CASCADE},
            "members": [person],
        },
        name="organization",
        rdf_types=["cids:Organization"],
    )
    return SimpleNamespace(
        person=person, phone=phone, account=account, organization=organization
    )
