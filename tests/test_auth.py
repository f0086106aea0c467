from __future__ import annotations

import pytest

from psico import config
from psico.auth_security import (
    check_password,
    create_access_token,
    decode_token,
    hash_password,
    practitioner_id_from_token,
    verify_password,
)
from psico.auth_service import (
    authenticate,
    change_password,
    get_practitioner,
    register_practitioner,
    update_profile,
)
from psico.errors import NotFoundError, ValidationError


class TestSecurity:
    def test_password_hash_roundtrip(self):
        h = hash_password("segreta")
        assert h != "segreta"
        assert verify_password("segreta", h)
        assert not verify_password("sbagliata", h)

    def test_token_carries_practitioner_and_claims(self):
        token = create_access_token("pr-1", claims={"username": "lic.gomez", "name": "Laura Gómez"})
        payload = decode_token(token)
        assert payload["sub"] == "pr-1"
        assert payload["name"] == "Laura Gómez"
        assert payload["exp"] > payload["iat"]

    def test_claims_cannot_override_subject(self):
        token = create_access_token("pr-1", claims={"sub": "altro"})
        assert practitioner_id_from_token(token) == "pr-1"

    def test_expired_token(self):
        token = create_access_token("pr-1", expires_minutes=-1)
        assert practitioner_id_from_token(token) is None

    def test_garbage_token(self):
        assert practitioner_id_from_token("non.un.token") is None

    @pytest.mark.parametrize("password", ["", None, "12345"])
    def test_short_password(self, password):
        with pytest.raises(ValidationError):
            check_password(password)

    def test_min_length_from_config(self, monkeypatch):
        monkeypatch.setattr(config, "PASSWORD_MIN_LENGTH", 10)
        with pytest.raises(ValidationError):
            check_password("segreta")


class TestRegistration:
    def test_register_and_authenticate(self):
        pid = register_practitioner("  Lic.Gomez ", "segreta", " Laura Gómez ", license_number="MN 12345")

        p = authenticate("lic.gomez", "segreta")

        assert p is not None and p.id == pid
        stored = get_practitioner(pid)
        assert stored.username == "lic.gomez"
        assert stored.full_name == "Laura Gómez"
        assert stored.license_number == "MN 12345"
        assert stored.phone is None

    def test_wrong_credentials(self):
        register_practitioner("lic.gomez", "segreta", "Laura Gómez")
        assert authenticate("lic.gomez", "altro!") is None
        assert authenticate("nessuno", "segreta") is None

    def test_duplicate_username(self):
        register_practitioner("lic.gomez", "segreta", "Laura Gómez")
        with pytest.raises(ValidationError):
            register_practitioner("LIC.GOMEZ", "altra-password", "Altra")

    @pytest.mark.parametrize(
        "username, password, full_name",
        [("", "segreta", "Laura"), ("   ", "segreta", "Laura"), ("lic", "corta", "Laura"), ("lic", "segreta", "  ")],
    )
    def test_required_fields(self, username, password, full_name):
        with pytest.raises(ValidationError):
            register_practitioner(username, password, full_name)


class TestProfile:
    @pytest.fixture
    def practitioner_id(self):
        return register_practitioner("lic.gomez", "segreta", "Laura Gómez", phone="11 5555-0000")

    def test_update_profile(self, practitioner_id):
        out = update_profile(practitioner_id, full_name="Laura B. Gómez", license_number="MP 987", phone="  ")

        assert out["full_name"] == "Laura B. Gómez"
        assert out["license_number"] == "MP 987"
        assert out["phone"] is None

    def test_name_stays_required(self, practitioner_id):
        with pytest.raises(ValidationError):
            update_profile(practitioner_id, full_name="")
        assert get_practitioner(practitioner_id).full_name == "Laura Gómez"

    def test_username_not_editable(self, practitioner_id):
        with pytest.raises(ValidationError):
            update_profile(practitioner_id, username="altro")

    def test_unknown_practitioner(self):
        with pytest.raises(NotFoundError):
            update_profile("missing", phone="1")

    def test_change_password(self, practitioner_id):
        change_password(practitioner_id, "segreta", "nuova-segreta")

        assert authenticate("lic.gomez", "segreta") is None
        assert authenticate("lic.gomez", "nuova-segreta") is not None

    def test_change_password_checks_current(self, practitioner_id):
        with pytest.raises(ValidationError):
            change_password(practitioner_id, "sbagliata", "nuova-segreta")
        assert authenticate("lic.gomez", "segreta") is not None
