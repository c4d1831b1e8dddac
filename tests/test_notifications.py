import json

import httpx
import pytest
import pytest_asyncio

from loan_channel.core.exceptions import NotFoundError
from loan_channel.database.models.notification_model import Notification
from loan_channel.database.models.user_model import Role
from loan_channel.services.loan_service import loan_application_service
from loan_channel.services.notification_service import NotificationService
from loan_channel.services.target_service import target_service


@pytest_asyncio.fixture
async def submitted(factory):
    admin = await factory.admin()
    asm = await factory.member(Role.ASM, admin)
    rm = await factory.member(Role.RM, asm)
    partner = await factory.member(Role.PARTNER, rm)
    application = await loan_application_service.create_application(
        partner_id=partner.id, loan_type="BUSINESS", customer_profile=factory.profile("customer")
    )
    application, event = await loan_application_service.submit(application.id, partner.id)
    return {"admin": admin, "rm": rm, "partner": partner, "application": application, "event": event}


def recording_transport(status_code=200):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code, json={"ok": status_code < 400})

    return httpx.MockTransport(handler), requests


@pytest.mark.asyncio
async def test_application_event_stored_once_per_recipient(submitted):
    notifier = NotificationService()
    event = submitted["event"]

    stored = await notifier.publish_application_event(event)
    again = await notifier.publish_application_event(event)

    assert len(stored) == len(event.recipients) == 4
    assert [n.id for n in again] == [n.id for n in stored]
    assert await Notification.find_all().count() == 4
    assert await Notification.find({"user_id": submitted["partner"].id}).count() == 0
    rm_inbox = await notifier.list_notifications(submitted["rm"].id)
    assert rm_inbox[0].data["to_status"] == "SUBMITTED"
    assert submitted["application"].app_no in rm_inbox[0].message


@pytest.mark.asyncio
async def test_webhook_receives_event(submitted):
    transport, requests = recording_transport()
    notifier = NotificationService(webhook_url="https://hooks.example.com/events", transport=transport)

    await notifier.publish_application_event(submitted["event"])

    assert len(requests) == 1
    body = json.loads(requests[0].content)
    assert body["event"] == "application.status_changed"
    assert body["data"]["app_no"] == submitted["application"].app_no
    assert body["data"]["to_status"] == "SUBMITTED"


@pytest.mark.asyncio
async def test_webhook_failure_keeps_stored_notifications(submitted):
    transport, requests = recording_transport(status_code=503)
    notifier = NotificationService(webhook_url="https://hooks.example.com/events", transport=transport)

    stored = await notifier.publish_application_event(submitted["event"])

    assert len(requests) == 1
    assert len(stored) == 4
    assert await Notification.find_all().count() == 4


@pytest.mark.asyncio
async def test_target_updates_skip_the_actor(factory):
    admin = await factory.admin()
    asms = await factory.members(Role.ASM, admin, 2)
    targets = await target_service.assign_bulk(6, 2025, 5000, admin.id)
    notifier = NotificationService()

    stored = await notifier.publish_target_updates(targets, actor_id=asms[0].id)

    assert [n.user_id for n in stored] == [asms[1].id]
    assert "June 2025" in stored[0].message


@pytest.mark.asyncio
async def test_mark_read_only_for_owner(submitted):
    notifier = NotificationService()
    stored = await notifier.publish_application_event(submitted["event"])
    mine = next(n for n in stored if n.user_id == submitted["rm"].id)

    with pytest.raises(NotFoundError):
        await notifier.mark_read(submitted["admin"].id, mine.id)

    updated = await notifier.mark_read(submitted["rm"].id, mine.id)
    assert updated.read is True
    assert await notifier.list_notifications(submitted["rm"].id, unread_only=True) == []
