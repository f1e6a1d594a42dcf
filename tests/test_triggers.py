"""Trigger registry, event filters and firing."""

import pytest

from services.triggers.filters import (
    build_filter,
    build_keyword_filter,
    build_message_filter,
    build_tag_filter,
)

from conftest import OTHER_TEAM_ID, TEAM_ID, edge, make_flow, node


def tag_flow(trigger_type="message_received", trigger_config=None, team_id=TEAM_ID, **kwargs):
    return make_flow(
        [node("t", "trigger"), node("tag", "add_tag", tags=["engaged"])],
        [edge("t", "tag")],
        trigger_type=trigger_type,
        trigger_config=trigger_config,
        team_id=team_id,
        **kwargs,
    )


# =============================================================================
# FILTERS
# =============================================================================

@pytest.mark.parametrize("match_type,message,expected", [
    ("exact", "PRICE", True),
    ("exact", "price please", False),
    ("starts_with", "Price please", True),
    ("ends_with", "what is the price", True),
    ("contains", "the PRICE list", True),
    ("contains", "hello", False),
])
def test_keyword_filter(match_type, message, expected):
    matches = build_keyword_filter({"keywords": ["price"], "matchType": match_type})
    assert matches({"message": message}) is expected


def test_keyword_filter_defaults():
    assert build_keyword_filter({"keywords": ["Stop"]})({"message": "please STOP now"}) is True
    assert build_keyword_filter({})({"message": "anything"}) is True
    assert build_keyword_filter({"keywords": ["stop"]})({}) is False


def test_tag_filter():
    matches = build_tag_filter({"tags": ["vip", "lead"]})
    assert matches({"tagName": "vip"}) is True
    assert matches({"tagName": "churned"}) is False
    assert build_tag_filter({})({"tagName": "anything"}) is True


def test_message_filter():
    matches = build_message_filter({"messageTypes": ["text"], "accountId": "wa-1"})
    assert matches({"messageType": "text", "accountId": "wa-1"}) is True
    assert matches({"messageType": "image", "accountId": "wa-1"}) is False
    assert matches({"messageType": "text", "accountId": "wa-2"}) is False
    assert build_message_filter({})({"messageType": "audio"}) is True


def test_unfiltered_trigger_types_accept_everything():
    assert build_filter("contact_created", {"anything": 1})({}) is True


# =============================================================================
# REGISTRY
# =============================================================================

def test_registration_is_idempotent(engine):
    registry = engine.registry
    registry.register("flow-1", TEAM_ID, "message_received")
    registry.register("flow-1", TEAM_ID, "message_received", {"accountId": "wa-1"})

    assert registry.count() == 1
    assert registry.get("message_received")[0].config == {"accountId": "wa-1"}

    # Re-registering under another trigger type moves the flow
    registry.register("flow-1", TEAM_ID, "tag_added")
    assert registry.get("message_received") == []
    assert [r.flow_id for r in registry.get("tag_added")] == ["flow-1"]


def test_unregister(engine):
    registry = engine.registry
    registry.register("flow-1", TEAM_ID, "tag_added")
    registry.register("flow-2", TEAM_ID, "tag_added")

    assert registry.unregister("flow-1", "message_received") is False
    assert registry.unregister("flow-1") is True
    assert registry.unregister("flow-1") is False
    assert [r.flow_id for r in registry.get("tag_added")] == ["flow-2"]
    assert registry.all() == {"tag_added": registry.get("tag_added")}


async def test_initialize_loads_active_flows(engine):
    active = engine.store.add_flow(tag_flow())
    engine.store.add_flow(tag_flow(is_active=False))
    engine.registry.register("stale-flow", TEAM_ID, "manual")

    assert await engine.registry.initialize() == 1
    assert engine.registry.initialized
    assert [r.flow_id for r in engine.registry.get("message_received")] == [active.id]
    assert engine.registry.get("manual") == []


# =============================================================================
# FIRING
# =============================================================================

async def test_fire_starts_matching_flows(engine):
    flow = engine.store.add_flow(tag_flow(trigger_type="keyword_match",
                                          trigger_config={"keywords": ["demo"], "matchType": "contains"}))
    engine.registry.register(flow.id, flow.team_id, flow.trigger_type, flow.trigger_config)

    started = await engine.firing.fire("keyword_match", {
        "teamId": TEAM_ID, "contactId": "contact-1", "message": "Can I get a DEMO?",
        "conversationId": "conv-1",
    })
    skipped = await engine.firing.fire("keyword_match", {
        "teamId": TEAM_ID, "contactId": "contact-1", "message": "hello",
    })

    assert len(started) == 1
    assert skipped == []
    assert started[0].conversation_id == "conv-1"
    assert started[0].variables["trigger"]["message"] == "Can I get a DEMO?"

    await engine.run_until_idle()
    assert engine.contacts.contacts["contact-1"]["tags"] == ["engaged"]


async def test_fire_is_tenant_isolated(engine):
    ours = engine.store.add_flow(tag_flow())
    theirs = engine.store.add_flow(tag_flow(team_id=OTHER_TEAM_ID))
    await engine.registry.initialize()

    started = await engine.firing.fire("message_received", {"teamId": TEAM_ID, "contactId": "contact-1"})

    assert [e.flow_id for e in started] == [ours.id]
    assert theirs.id not in {e.flow_id for e in started}


async def test_one_failing_flow_does_not_block_others(engine):
    broken = engine.store.add_flow(tag_flow())
    healthy = engine.store.add_flow(tag_flow())
    await engine.registry.initialize()
    del engine.store.flows[broken.id]

    started = await engine.firing.fire("message_received", {"teamId": TEAM_ID, "contactId": "contact-1"})

    assert [e.flow_id for e in started] == [healthy.id]


async def test_fire_without_registrations(engine):
    assert await engine.firing.fire("webhook", {"teamId": TEAM_ID}) == []


async def test_campaign_completed_without_contact_starts_nothing(engine):
    flow = engine.store.add_flow(tag_flow(trigger_type="campaign_completed"))
    await engine.registry.initialize()

    started = await engine.firing.on_campaign_completed({"id": "camp-1", "team_id": TEAM_ID, "name": "Spring"})

    assert started == []
    assert engine.store.executions == {}
    assert engine.registry.get("campaign_completed")[0].flow_id == flow.id


async def test_message_received_helper(engine):
    engine.store.add_flow(tag_flow(trigger_config={"messageTypes": ["text"]}))
    await engine.registry.initialize()
    contact = engine.contacts.contacts["contact-1"]

    started = await engine.firing.on_message_received(
        {"id": "m-1", "content": "hi", "type": "text"},
        contact,
        {"id": "conv-9", "account_id": "wa-1"},
    )
    ignored = await engine.firing.on_message_received(
        {"id": "m-2", "content": "", "type": "image"}, contact, {"id": "conv-9"},
    )

    assert len(started) == 1
    assert ignored == []
    trigger = started[0].variables["trigger"]
    assert trigger["messageId"] == "m-1"
    assert trigger["accountId"] == "wa-1"
    assert started[0].conversation_id == "conv-9"


async def test_tag_helpers(engine):
    added = engine.store.add_flow(tag_flow(trigger_type="tag_added", trigger_config={"tags": ["vip"]}))
    removed = engine.store.add_flow(tag_flow(trigger_type="tag_removed"))
    await engine.registry.initialize()
    contact = engine.contacts.contacts["contact-1"]

    assert [e.flow_id for e in await engine.firing.on_tag_added(contact, "vip")] == [added.id]
    assert await engine.firing.on_tag_added(contact, "lead") == []
    assert [e.flow_id for e in await engine.firing.on_tag_removed(contact, "lead")] == [removed.id]


async def test_contact_helpers(engine):
    created = engine.store.add_flow(tag_flow(trigger_type="contact_created"))
    updated = engine.store.add_flow(tag_flow(trigger_type="contact_updated"))
    await engine.registry.initialize()
    contact = engine.contacts.contacts["contact-1"]

    on_create = await engine.firing.on_contact_created({**contact, "source": "import"})
    on_update = await engine.firing.on_contact_updated(contact, {"email": "new@example.com"})

    assert on_create[0].flow_id == created.id
    assert on_create[0].variables["trigger"]["source"] == "import"
    assert on_update[0].flow_id == updated.id
    assert on_update[0].variables["trigger"]["changes"] == {"email": "new@example.com"}
