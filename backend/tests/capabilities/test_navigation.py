import pytest

from clinic_plans.models.user import Role
from clinic_plans.services.capabilities import (
    NAVIGATION,
    ROLE_CAPABILITIES,
    Mode,
    NavNode,
    filter_navigation,
    is_visible,
)


def _keys(nodes):
    return {node.key: [child.key for child in node.children] for node in nodes}


def test_all_mode_needs_every_capability():
    node = NavNode(key="x", label="X", required=frozenset({"a", "b"}))
    assert is_visible(node, {"a", "b", "c"})
    assert not is_visible(node, {"a"})


def test_any_mode_needs_one_capability():
    node = NavNode(key="x", label="X", required=frozenset({"a", "b"}), mode=Mode.any)
    assert is_visible(node, {"b"})
    assert not is_visible(node, {"c"})


def test_unrestricted_node_is_always_visible():
    assert is_visible(NavNode(key="x", label="X"), set())


def test_group_without_visible_children_is_dropped():
    group = NavNode(
        key="g",
        label="Group",
        children=(NavNode(key="g.child", label="Child", path="/c", required=frozenset({"a"})),),
    )
    assert filter_navigation([group], set()) == []


@pytest.mark.parametrize(
    ("role", "expected"),
    [
        (Role.reception, {"plans": ["plans.list"], "scheduling": []}),
        (Role.dentist, {"plans": ["plans.list", "plans.new"], "scheduling": []}),
        (Role.nurse, {"plans": ["plans.list"]}),
        (Role.senior_admin, {"plans": ["plans.list", "plans.review"], "scheduling": []}),
        (
            Role.superadmin,
            {
                "plans": ["plans.list", "plans.new", "plans.review"],
                "scheduling": [],
                "admin": ["admin.users"],
            },
        ),
    ],
)
def test_navigation_per_role(role, expected):
    assert _keys(filter_navigation(NAVIGATION, ROLE_CAPABILITIES[role])) == expected


def test_navigation_endpoint_reflects_role(client, seed, headers_for):
    res = client.get("/capabilities/navigation", headers=headers_for(seed.reception))
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["role"] == "reception"
    assert "appointments.book" in body["capabilities"]
    assert [item["key"] for item in body["items"]] == ["plans", "scheduling"]
    assert body["items"][1]["mode"] == "ANY"


def test_navigation_requires_login(client):
    assert client.get("/capabilities/navigation").status_code == 401


def test_capability_list_is_admin_only(client, seed, auth_headers, headers_for):
    res = client.get("/capabilities", headers=auth_headers)
    assert res.status_code == 200, res.text
    assert "treatment_plans.approve" in {cap["code"] for cap in res.json()}

    res = client.get("/capabilities", headers=headers_for(seed.reception))
    assert res.status_code == 403
