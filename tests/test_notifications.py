from decimal import Decimal

import pytest

from community_vault import models
from community_vault.errors import NotConfiguredError, NotFound
from community_vault.mailer import EmailSender
from community_vault.notifications import NotificationDispatcher, mark_read

from .conftest import FakeSendGrid


def test_purchase_notification_is_stored_and_emailed(db, make_user):
    creator = make_user(email="creator@example.com")
    sendgrid = FakeSendGrid()
    dispatcher = NotificationDispatcher(EmailSender(from_email="vault@example.com", client=sendgrid))

    note = dispatcher.notify_purchase(db, creator.id, "Sam", "Masterclass", Decimal("25"), "USD")

    assert note.payload == {"purchaserName": "Sam", "fileTitle": "Masterclass", "amount": 25.0, "currency": "USD"}
    assert note.read_at is None
    message = sendgrid.sent[0].get()
    assert message["subject"].endswith("Sam purchased Masterclass")
    assert message["personalizations"][0]["to"][0]["email"] == "creator@example.com"
    assert "25.00 USD" in message["content"][0]["value"]


def test_email_is_skipped_without_address_or_provider(db, make_user):
    no_email = make_user()
    sendgrid = FakeSendGrid()
    dispatcher = NotificationDispatcher(EmailSender(from_email="vault@example.com", client=sendgrid))
    dispatcher.notify_new_content(db, no_email.id, "Lesson", "Education", "Dr. Green")
    assert sendgrid.sent == []

    with_email = make_user(email="viewer@example.com")
    unconfigured = NotificationDispatcher(EmailSender())
    note = unconfigured.notify_new_content(db, with_email.id, "Lesson", "Education", "Dr. Green")
    assert note.id is not None


def test_email_failure_is_swallowed(db, make_user):
    user = make_user(email="viewer@example.com")
    dispatcher = NotificationDispatcher(EmailSender(from_email="vault@example.com", client=FakeSendGrid(fail=True)))

    note = dispatcher.notify_new_content(db, user.id, "Lesson", "Education", "Dr. Green")

    assert db.get(models.Notification, note.id) is not None


def test_unconfigured_sender_refuses_direct_sends():
    with pytest.raises(NotConfiguredError):
        EmailSender().send("someone@example.com", "Hi", "<p>Hi</p>")


def test_email_body_escapes_user_text(db, make_user):
    creator = make_user(email="creator@example.com")
    sendgrid = FakeSendGrid()
    dispatcher = NotificationDispatcher(EmailSender(from_email="vault@example.com", client=sendgrid))

    dispatcher.notify_purchase(db, creator.id, "<script>", "Notes", Decimal("1"), "USD")

    assert "<script>" not in sendgrid.sent[0].get()["content"][0]["value"]


def test_list_and_mark_read_via_api(db, make_user, client_for):
    user = make_user()
    dispatcher = NotificationDispatcher(EmailSender())
    note = dispatcher.notify_new_content(db, user.id, "Lesson", "Education", "Dr. Green")
    api = client_for(user)

    listed = api.get("/notifications").json()
    assert [n["id"] for n in listed] == [note.id]
    assert listed[0]["type"] == "NEW_CONTENT"
    assert listed[0]["read_at"] is None

    marked = api.patch("/notifications", json={"notification_id": note.id})
    assert marked.status_code == 200
    assert marked.json()["read_at"] is not None


def test_mark_read_is_owner_scoped(db, make_user, client_for):
    owner, other = make_user(), make_user()
    note = NotificationDispatcher(EmailSender()).notify_new_content(db, owner.id, "Lesson", "Education", "Dr. Green")

    response = client_for(other).patch("/notifications", json={"notification_id": note.id})

    assert response.status_code == 404
    db.expire_all()
    assert db.get(models.Notification, note.id).read_at is None
    with pytest.raises(NotFound):
        mark_read(db, other.id, note.id)
