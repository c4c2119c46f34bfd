"""Tests for named body variants and the active-body pointer."""

import pytest

from apiman.core import NotFound, RequestRecord, ValidationError
from tests.conftest import write_json


@pytest.fixture
def create_user(workspace):
    """Directory-layout request with two body variants."""
    request_dir = workspace.requests_dir / "users" / "create"
    request_dir.mkdir(parents=True)
    workspace.save_request(
        "users/create",
        RequestRecord(method="POST", url="/users", body='{"role": "inline"}'),
    )
    write_json(request_dir / "admin.json", {"role": "admin"})
    write_json(request_dir / "guest.json", {"role": "guest"})
    return "users/create"


class TestListBodies:
    def test_lists_variants_excluding_record(self, workspace, create_user):
        names, active = workspace.list_bodies(create_user)
        assert names == ["admin", "guest"]
        assert active == ""

    def test_flat_request_has_no_variants(self, workspace):
        assert workspace.list_bodies("users/get-users") == ([], "")

    def test_reports_active(self, workspace, create_user):
        workspace.set_active_body(create_user, "guest")
        assert workspace.list_bodies(create_user) == (["admin", "guest"], "guest")

    def test_missing_request(self, workspace):
        with pytest.raises(NotFound):
            workspace.list_bodies("users/nope")


class TestSetActiveBody:
    def test_persists(self, workspace, create_user):
        workspace.set_active_body(create_user, "admin")
        assert workspace.load_request(create_user).active_body == "admin"
        record_file = workspace.requests_dir / "users" / "create" / "request.json"
        assert '"activeBody": "admin"' in record_file.read_text()

    def test_missing_variant_is_validation_error(self, workspace, create_user):
        with pytest.raises(ValidationError):
            workspace.set_active_body(create_user, "superuser")
        assert workspace.load_request(create_user).active_body == ""

    def test_record_file_is_not_a_variant(self, workspace, create_user):
        with pytest.raises(ValidationError):
            workspace.set_active_body(create_user, "request")

    def test_flat_request_has_nothing_to_activate(self, workspace):
        with pytest.raises(ValidationError):
            workspace.set_active_body("users/get-users", "admin")


class TestRemoveBody:
    def test_removing_active_clears_pointer(self, workspace, create_user):
        workspace.set_active_body(create_user, "admin")
        workspace.remove_body(create_user, "admin")
        assert not (workspace.requests_dir / "users" / "create" / "admin.json").exists()
        assert workspace.load_request(create_user).active_body == ""

    def test_removing_inactive_keeps_pointer(self, workspace, create_user):
        workspace.set_active_body(create_user, "admin")
        workspace.remove_body(create_user, "guest")
        assert workspace.load_request(create_user).active_body == "admin"
        assert workspace.list_bodies(create_user)[0] == ["admin"]

    def test_missing_variant(self, workspace, create_user):
        with pytest.raises(NotFound):
            workspace.remove_body(create_user, "ghost")


class TestSaveBody:
    def test_moves_flat_record_into_directory(self, workspace):
        path = workspace.save_body("users/get-users", "filtered", '{"limit": 5}')
        users = workspace.requests_dir / "users"
        assert path == users / "get-users" / "filtered.json"
        assert (users / "get-users" / "request.json").is_file()
        assert not (users / "get-users.json").exists()
        assert workspace.load_request("users/get-users").url == "/users"
        assert workspace.list_bodies("users/get-users") == (["filtered"], "")
        # variants never show up as requests
        assert workspace.list_requests() == {"users": ["users/get-users"]}

    def test_reserved_name(self, workspace):
        with pytest.raises(ValidationError):
            workspace.save_body("users/get-users", "request", "{}")
