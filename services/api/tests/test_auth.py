"""
Tests for login matching and role capabilities.

Run with: pytest tests/test_auth.py -v
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.auth import Capability, authenticate, can_edit_entry, capabilities_for, hash_password, local_login
from models.converters import role_from_sheet
from models.user import Role, User


USERS = [
    User(id="1", login="Ivan", name="Ivan P.", role=Role.EMPLOYEE, password="secret"),
    User(id="2", login="boss", name="Owner", role=Role.OWNER, password=hash_password("hunter2")),
]


class TestAuthenticate:
    """Tests for authenticate."""

    def test_cleartext(self):
        assert authenticate(USERS, "Ivan", "secret").id == "1"

    def test_login_case_insensitive(self):
        assert authenticate(USERS, "  iVAN ", "secret").id == "1"

    def test_hashed_password(self):
        assert authenticate(USERS, "boss", "hunter2").id == "2"

    def test_hash_accepted_case_insensitively(self):
        users = [User(login="a", password=hash_password("x").upper())]
        assert authenticate(users, "a", "x") is not None

    def test_wrong_password(self):
        assert authenticate(USERS, "Ivan", "nope") is None

    def test_unknown_login(self):
        assert authenticate(USERS, "ghost", "secret") is None

    def test_blank_input(self):
        assert authenticate(USERS, "", "secret") is None
        assert authenticate(USERS, "Ivan", "   ") is None

    def test_hash_password(self):
        assert hash_password("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


class TestRoles:
    """Role labels and the capability table."""

    def test_sheet_labels(self):
        assert role_from_sheet("Власник") == Role.OWNER
        assert role_from_sheet("Сотрудник") == Role.EMPLOYEE
        assert role_from_sheet("Бухгалтер") == Role.ADMIN
        assert role_from_sheet("") == Role.ADMIN

    def test_owner(self):
        caps = capabilities_for(Role.OWNER)
        assert Capability.VIEW_ANALYTICS in caps
        assert Capability.RECORD_SHIFTS not in caps

    def test_employee(self):
        caps = capabilities_for(Role.EMPLOYEE)
        assert Capability.RECORD_SHIFTS in caps
        assert Capability.VIEW_ANALYTICS not in caps

    def test_can_edit_entry(self):
        employee = USERS[0]
        admin = User(login="adm", name="Admin", role=Role.ADMIN)
        assert can_edit_entry(employee, "Ivan P.")
        assert not can_edit_entry(employee, "Somebody else")
        assert can_edit_entry(admin, "Somebody else")
        assert not can_edit_entry(USERS[1], "Owner")


class TestLocalLogin:
    """Sessions when no Users sheet is configured."""

    def test_any_login_without_password(self):
        user = local_login(" Ivan ", "x", Role.EMPLOYEE)
        assert user.login == "Ivan"
        assert user.name == "Ivan"
        assert user.role == Role.EMPLOYEE

    def test_blank_login_refused(self):
        assert local_login("  ", "x", Role.EMPLOYEE) is None

    def test_configured_password_must_match(self):
        assert local_login("ivan", "wrong", Role.ADMIN, "shop") is None
        assert local_login("ivan", "shop", Role.ADMIN, "shop").role == Role.ADMIN
        assert local_login("ivan", "shop", Role.ADMIN, hash_password("shop")) is not None
