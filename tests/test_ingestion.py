import io

import pytest
from pypdf import PdfWriter

from community_vault import models
from community_vault.ai import parse_summary
from community_vault.database import SessionLocal
from community_vault.ingestion import decode_text, extract_pdf_text
from community_vault.utils import calculate_hash

from .conftest import upload_payload


def _blank_pdf() -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=72, height=72)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def test_text_upload_is_summarized_embedded_and_indexed(make_user, client_for, upload, vector_index, openai_client):
    creator = make_user()
    key = upload(creator, b"Photosynthesis converts light into chemical energy.")

    response = client_for(creator).post("/upload/complete", json=upload_payload(key))

    assert response.status_code == 201
    body = response.json()
    assert body["summary"] == "A short summary."
    assert body["key_points"] == ["one", "two"]
    assert body["storage_url"] == f"/uploads/{key}"
    assert body["total_views"] == 0
    assert body["transcript"] is None

    record = vector_index.records[(creator.id, body["id"])]
    assert record["metadata"]["title"] == "Study notes"
    assert record["metadata"]["content"].startswith("Photosynthesis")
    assert "Photosynthesis" in openai_client.embedding_inputs[0]


def test_duplicate_bytes_conflict_with_existing_file_id(make_user, client_for, upload, db):
    creator = make_user()
    api = client_for(creator)
    first = api.post("/upload/complete", json=upload_payload(upload(creator, b"same bytes", "a.txt")))

    second = api.post(
        "/upload/complete",
        json=upload_payload(upload(creator, b"same bytes", "b.txt"), title="Another title"),
    )

    assert second.status_code == 409
    assert second.json()["file_id"] == first.json()["id"]
    assert db.query(models.File).count() == 1


def test_concurrent_upload_of_same_bytes_conflicts_with_the_first_commit(
    make_user, client_for, upload, services, monkeypatch, db,
):
    creator = make_user()
    owner_id = creator.id
    data = b"uploaded from two tabs at once"
    key = upload(creator, data)
    summarize = services.ai.summarize_content
    winner = {}

    def summarize_while_other_request_commits(*args):
        # The other request passes the checksum lookup too and commits first
        other = SessionLocal()
        try:
            file = models.File(
                owner_id=owner_id,
                title="First copy",
                description="",
                category="Education",
                type=models.FileType.TEXT,
                storage_key=key,
                storage_url=f"/uploads/{key}",
                checksum=calculate_hash(data),
            )
            other.add(file)
            other.commit()
            winner["id"] = file.id
        finally:
            other.close()
        return summarize(*args)

    monkeypatch.setattr(services.ai, "summarize_content", summarize_while_other_request_commits)

    response = client_for(creator).post("/upload/complete", json=upload_payload(key))

    assert response.status_code == 409
    assert response.json()["file_id"] == winner["id"]
    db.expire_all()
    assert db.query(models.File).count() == 1



def test_same_bytes_from_different_owners_are_both_stored(make_user, client_for, upload, db):
    alice, bob = make_user(), make_user()

    assert client_for(alice).post(
        "/upload/complete", json=upload_payload(upload(alice, b"shared handout", "a.txt"))
    ).status_code == 201
    assert client_for(bob).post(
        "/upload/complete", json=upload_payload(upload(bob, b"shared handout", "b.txt"))
    ).status_code == 201
    assert db.query(models.File).count() == 2


def test_video_upload_stores_transcript(make_user, client_for, upload, openai_client):
    creator = make_user()
    key = upload(creator, b"\x00\x00\x00\x18ftypmp42", "lecture.mp4")

    response = client_for(creator).post(
        "/upload/complete",
        json=upload_payload(key, filename="lecture.mp4", type="VIDEO"),
    )

    assert response.status_code == 201
    assert response.json()["transcript"] == "spoken words from the video"
    assert openai_client.transcriptions[0][0] == "lecture.mp4"


def test_pdf_upload_extracts_text(make_user, client_for, upload):
    creator = make_user()
    key = upload(creator, _blank_pdf(), "slides.pdf")

    response = client_for(creator).post(
        "/upload/complete",
        json=upload_payload(key, filename="slides.pdf", type="PDF"),
    )

    assert response.status_code == 201
    assert response.json()["type"] == "PDF"


def test_malformed_summary_degrades_to_raw_text(make_user, client_for, upload, openai_client):
    openai_client.summary_reply = "Just prose, no JSON here."
    creator = make_user()

    response = client_for(creator).post("/upload/complete", json=upload_payload(upload(creator, b"notes")))

    assert response.status_code == 201
    assert response.json()["summary"] == "Just prose, no JSON here."
    assert response.json()["key_points"] == []


def test_premium_upload_requires_positive_price(make_user, client_for, upload, db):
    creator = make_user()

    response = client_for(creator).post(
        "/upload/complete",
        json=upload_payload(upload(creator, b"paid notes"), is_premium=True, price=0),
    )

    assert response.status_code == 400
    assert "price" in response.json()["errors"]
    assert db.query(models.File).count() == 0


def test_upload_validation_errors(make_user, client_for, upload):
    creator = make_user()

    response = client_for(creator).post(
        "/upload/complete",
        json=upload_payload(upload(creator, b"notes"), title="x", description="short"),
    )

    assert response.status_code == 400
    errors = response.json()["errors"]
    assert "title" in errors
    assert "description" in errors


def test_missing_object_is_not_found(make_user, client_for):
    creator = make_user()

    response = client_for(creator).post("/upload/complete", json=upload_payload(f"{creator.id}/missing.txt"))

    assert response.status_code == 404


def test_upload_into_someone_elses_project_is_forbidden(make_user, client_for, upload):
    owner, intruder = make_user(), make_user()
    project = client_for(owner).post("/projects", json={"name": "Biology"}).json()

    response = client_for(intruder).post(
        "/upload/complete",
        json=upload_payload(upload(intruder, b"notes"), project_id=project["id"]),
    )

    assert response.status_code == 403


def test_completing_another_users_upload_is_forbidden(make_user, client_for, upload, db):
    alice, bob = make_user(), make_user()
    key = upload(alice, b"alice premium handout")

    response = client_for(bob).post("/upload/complete", json=upload_payload(key))

    assert response.status_code == 403
    assert db.query(models.File).count() == 0


def test_project_summary_is_rolled_up_after_upload(make_user, client_for, upload):
    creator = make_user()
    api = client_for(creator)
    project = api.post("/projects", json={"name": "Biology"}).json()

    api.post("/upload/complete", json=upload_payload(upload(creator, b"cells"), project_id=project["id"]))

    detail = api.get(f"/projects/{project['id']}").json()
    assert detail["summary"] == "Project overview."
    assert detail["file_count"] == 1
    assert detail["files"][0]["project"]["name"] == "Biology"


def test_new_content_is_broadcast_to_other_members(make_user, client_for, upload, db, sendgrid_client):
    creator = make_user(name="Dr. Green")
    viewer = make_user(role=models.UserRole.VIEWER, email="viewer@example.com")
    make_user(role=models.UserRole.ADMIN)

    client_for(creator).post("/upload/complete", json=upload_payload(upload(creator, b"new lesson")))

    notes = db.query(models.Notification).all()
    assert [n.user_id for n in notes] == [viewer.id]
    assert notes[0].type == models.NotificationType.NEW_CONTENT
    assert notes[0].payload == {"fileTitle": "Study notes", "category": "Education", "creatorName": "Dr. Green"}
    assert len(sendgrid_client.sent) == 1


def test_vector_failure_after_commit_surfaces_as_server_error(make_user, client_for, upload, vector_index, db):
    creator = make_user()
    vector_index.fail_upsert = True

    response = client_for(creator).post("/upload/complete", json=upload_payload(upload(creator, b"notes")))

    assert response.status_code == 500
    # The row was already committed when the index call failed
    assert db.query(models.File).count() == 1


def test_decode_text_replaces_invalid_bytes():
    assert decode_text(b"caf\xc3\xa9 \xff") == "caf\u00e9 \ufffd"


def test_blank_pdf_has_no_text():
    assert extract_pdf_text(_blank_pdf()).strip() == ""


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"keyPoints": ["a"]}', '{"summary": "s"}'])
def test_parse_summary_degrades(raw):
    parsed = parse_summary(raw)

    assert parsed.summary == raw
    assert parsed.key_points == []


def test_parse_summary_project_rollup_allows_missing_key_points():
    parsed = parse_summary('{"summary": "overview"}', require_key_points=False)

    assert parsed.summary == "overview"
    assert parsed.key_points == []
