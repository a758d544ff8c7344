"""Tests for the role key grammar and namespace helpers."""

import pytest

from gatekeeper.core.exceptions import InvalidAction, MalformedRoleKey
from gatekeeper.permissions.role_key import (
    GLOBAL_ADMIN_KEY,
    GLOBAL_CREATE_INVITE_KEY,
    RoleKey,
    broadcast_role,
    build_role_key,
    channel_role,
    check_action,
    global_role,
    parse_role_key,
    reporting_role,
)


class TestParse:
    """Parsing canonical strings."""

    def test_two_segments(self):
        key = RoleKey.parse("reporting:create")
        assert key.namespace == "reporting"
        assert key.subject is None
        assert key.action == "create"

    def test_three_segments(self):
        key = parse_role_key("channel:42:post")
        assert key == RoleKey("channel", "42", "post")

    def test_action_with_hyphen(self):
        assert RoleKey.parse(GLOBAL_CREATE_INVITE_KEY).action == "create-invite"

    @pytest.mark.parametrize("raw", ["", "admin", "a:b:c:d", "channel::read", ":read", "global:"])
    def test_malformed(self, raw):
        with pytest.raises(MalformedRoleKey) as exc_info:
            RoleKey.parse(raw)
        assert exc_info.value.raw == raw

    def test_non_string_rejected(self):
        with pytest.raises(MalformedRoleKey):
            RoleKey.parse(42)

    def test_direct_construction_validates_segments(self):
        with pytest.raises(MalformedRoleKey):
            RoleKey("channel", "1:2", "read")
        with pytest.raises(MalformedRoleKey):
            RoleKey("", None, "read")


class TestBuild:
    """String form and round trip."""

    @pytest.mark.parametrize(
        "namespace,subject,action",
        [
            ("global", None, "admin"),
            ("channel", "7", "read"),
            ("reporting", None, "assign"),
            ("mentor", "abc-123", "view"),
        ],
    )
    def test_parse_inverts_build(self, namespace, subject, action):
        parsed = RoleKey.parse(build_role_key(namespace, subject, action))
        assert (parsed.namespace, parsed.subject, parsed.action) == (namespace, subject, action)

    def test_str_is_canonical_form(self):
        assert str(RoleKey("channel", "9", "admin")) == "channel:9:admin"
        assert RoleKey("global", None, "admin").key == GLOBAL_ADMIN_KEY

    def test_with_action_keeps_scope(self):
        key = RoleKey.parse("channel:3:read").with_action("admin")
        assert key.key == "channel:3:admin"

    def test_coerce_passes_through_instances(self):
        key = RoleKey.parse("broadcast:create")
        assert RoleKey.coerce(key) is key
        assert RoleKey.coerce("broadcast:create") == key

    def test_hashable(self):
        assert len({RoleKey.parse("channel:1:read"), RoleKey("channel", "1", "read")}) == 1


class TestNamespaceHelpers:
    """Constructors validate the action for their namespace."""

    def test_channel_role(self):
        assert channel_role("post", 42).key == "channel:42:post"

    def test_channel_role_rejects_unknown_action(self):
        with pytest.raises(InvalidAction) as exc_info:
            channel_role("delete", 1)
        assert "delete" in exc_info.value.message

    def test_reporting_and_broadcast(self):
        assert reporting_role("assign").key == "reporting:assign"
        assert broadcast_role("create").key == "broadcast:create"
        with pytest.raises(InvalidAction):
            broadcast_role("read")

    def test_global_role(self):
        assert global_role("admin").key == GLOBAL_ADMIN_KEY
        with pytest.raises(InvalidAction):
            global_role("read")

    def test_check_action_known_namespace(self):
        assert check_action("reporting:read") == RoleKey("reporting", None, "read")
        with pytest.raises(InvalidAction):
            check_action("reporting:publish")

    def test_check_action_open_namespace(self):
        assert check_action("mentor:5:view").key == "mentor:5:view"
