import io

from conftest import make_png
from models import StoryStatus

STORY = {
    "userId": "user-1",
    "title": "Luna",
    "outline": "A girl befriends the moon at night.",
    "readingLevel": "grade1",
}


def create_story(client, **overrides):
    resp = client.post("/stories", json={**STORY, **overrides})
    assert resp.status_code == 201
    return resp.get_json()["storyId"]


def generate(client, story_id):
    resp = client.post(f"/stories/{story_id}/generate")
    assert resp.status_code == 200
    return resp.get_json()


def first_page(client, story_id):
    return client.get(f"/stories/{story_id}").get_json()["pages"][0]


def test_health(client):
    assert client.get("/health").get_json()["status"] == "ok"


def test_create_and_fetch_story(client):
    story_id = create_story(client, metadata={"tone": "gentle"})
    body = client.get(f"/stories/{story_id}").get_json()
    assert body["story"]["title"] == "Luna"
    assert body["story"]["status"] == "draft"
    assert body["story"]["metadata"] == {"tone": "gentle"}
    assert body["pages"] == []


def test_create_story_validation(client):
    resp = client.post("/stories", json={**STORY, "outline": "too short"})
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["error"] == "Validation failed"
    assert body["details"][0]["loc"] == ["outline"]

    assert client.post("/stories", json={**STORY, "readingLevel": "grade9"}).status_code == 400
    assert client.post("/stories", json={**STORY, "title": ""}).status_code == 400
    assert client.post("/stories", data="not json").status_code == 400


def test_list_stories(client):
    create_story(client)
    create_story(client, userId="user-2")
    assert client.get("/stories").status_code == 400
    stories = client.get("/stories?userId=user-1").get_json()["stories"]
    assert [s["userId"] for s in stories] == ["user-1"]


def test_unknown_story_is_404(client):
    assert client.get("/stories/missing").status_code == 404
    assert client.patch("/stories/missing", json={"title": "x"}).status_code == 404
    assert client.delete("/stories/missing").status_code == 404
    assert client.post("/stories/missing/generate").status_code == 404


def test_patch_story(client):
    story_id = create_story(client)
    resp = client.patch(f"/stories/{story_id}", json={"title": "Luna's Night", "bogus": 1})
    assert resp.get_json() == {"success": True}
    assert client.get(f"/stories/{story_id}").get_json()["story"]["title"] == "Luna's Night"

    # a draft story has no pages to finish
    assert client.patch(f"/stories/{story_id}", json={"status": "complete"}).status_code == 409

    generate(client, story_id)
    assert client.patch(f"/stories/{story_id}", json={"status": "complete"}).status_code == 200
    assert client.patch(f"/stories/{story_id}", json={"status": "purchased"}).status_code == 200
    assert client.get(f"/stories/{story_id}").get_json()["story"]["status"] == "purchased"


def test_patch_cannot_set_generation_statuses(client):
    story_id = create_story(client)
    for status in ("draft", "generating", "editing"):
        resp = client.patch(f"/stories/{story_id}", json={"status": status})
        assert resp.status_code == 400
    assert client.get(f"/stories/{story_id}").get_json()["story"]["status"] == "draft"
    assert client.get(f"/stories/{story_id}").get_json()["pages"] == []


def test_patch_cannot_release_a_running_generation(client, db):
    story_id = create_story(client)
    db.update_story(story_id, status=StoryStatus.GENERATING)

    assert client.patch(f"/stories/{story_id}", json={"status": "draft"}).status_code == 400
    assert client.patch(f"/stories/{story_id}", json={"status": "complete"}).status_code == 409

    assert client.post(f"/stories/{story_id}/generate").status_code == 409
    assert db.get_story_jobs(story_id) == []
    assert db.get_story(story_id).status == StoryStatus.GENERATING


def test_delete_story(client, auth_headers, storage):
    story_id = create_story(client)
    generate(client, story_id)
    page = first_page(client, story_id)
    image_url = client.post(f"/stories/{story_id}/pages/{page['id']}/generate-image",
                            headers=auth_headers).get_json()["imageUrl"]
    file_path = image_url.replace("http://test.local/files/", "")
    assert storage.read(file_path) is not None

    assert client.delete(f"/stories/{story_id}").get_json() == {"success": True}
    assert client.get(f"/stories/{story_id}").status_code == 404
    assert storage.read(file_path) is None


def test_generate_story(client):
    story_id = create_story(client)
    body = generate(client, story_id)
    assert body["success"] is True
    assert body["pageCount"] == 3

    story = client.get(f"/stories/{story_id}").get_json()
    assert story["story"]["status"] == "editing"
    assert [p["pageNumber"] for p in story["pages"]] == [1, 2, 3]

    job = client.get(f"/jobs/{body['jobId']}").get_json()["job"]
    assert job["status"] == "completed"


def test_generate_while_generating_is_409(client, db):
    story_id = create_story(client)
    db.update_story(story_id, status=StoryStatus.GENERATING)
    resp = client.post(f"/stories/{story_id}/generate")
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "Story is already being generated"


def test_generate_failure_is_500(client, text_client):
    text_client.response = "   "
    story_id = create_story(client)
    resp = client.post(f"/stories/{story_id}/generate")
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "Failed to generate story", "details": "No pages generated from AI response"}


def test_patch_page(client):
    story_id = create_story(client)
    generate(client, story_id)
    page = first_page(client, story_id)
    url = f"/stories/{story_id}/pages/{page['id']}"

    resp = client.patch(url, json={"currentText": "Luna looked way up.", "visualNotes": "starry sky"})
    assert resp.status_code == 200
    updated = resp.get_json()["page"]
    assert updated["currentText"] == "Luna looked way up."
    assert updated["originalText"] == "Luna looked up."

    assert client.patch(url, json={"isLocked": True}).status_code == 200
    assert client.patch(url, json={"currentText": "Changed again."}).status_code == 409
    assert client.patch(f"/stories/{story_id}/pages/missing", json={"isLocked": True}).status_code == 404


def test_image_routes_require_bearer(client):
    story_id = create_story(client)
    generate(client, story_id)
    page = first_page(client, story_id)
    resp = client.post(f"/stories/{story_id}/pages/{page['id']}/generate-image")
    assert resp.status_code == 401
    assert resp.get_json() == {"error": "Unauthorized"}
    assert client.post(f"/stories/{story_id}/export-pdf").status_code == 401


def test_image_routes_check_ownership(client):
    story_id = create_story(client)
    generate(client, story_id)
    page = first_page(client, story_id)
    resp = client.post(f"/stories/{story_id}/pages/{page['id']}/generate-image",
                       headers={"Authorization": "Bearer intruder"})
    assert resp.status_code == 403


def test_generate_page_image(client, auth_headers):
    story_id = create_story(client)
    generate(client, story_id)
    page = first_page(client, story_id)

    resp = client.post(f"/stories/{story_id}/pages/{page['id']}/generate-image", headers=auth_headers)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["imageUrl"].startswith("http://test.local/files/stories/")

    page = first_page(client, story_id)
    assert page["imageStatus"] == "generated"
    assert page["imageUrl"] == body["imageUrl"]

    served = client.get(body["imageUrl"].replace("http://test.local", ""))
    assert served.status_code == 200
    assert served.data == make_png()


def test_generate_missing_images(client, auth_headers):
    story_id = create_story(client)
    generate(client, story_id)
    body = client.post(f"/stories/{story_id}/generate-images", headers=auth_headers).get_json()
    assert body["success"] is True
    assert [r["pageNumber"] for r in body["results"]] == [1, 2, 3]


def test_upload_page_image(client, auth_headers):
    story_id = create_story(client)
    generate(client, story_id)
    page = first_page(client, story_id)
    url = f"/stories/{story_id}/pages/{page['id']}/image"

    resp = client.post(url, headers=auth_headers, content_type="multipart/form-data",
                       data={"image": (io.BytesIO(make_png(400, 400)), "drawing.png")})
    assert resp.status_code == 201
    assert first_page(client, story_id)["imageStatus"] == "uploaded"

    resp = client.post(url, headers=auth_headers, content_type="multipart/form-data",
                       data={"image": (io.BytesIO(b"text"), "notes.txt")})
    assert resp.status_code == 400
    assert client.post(url, headers=auth_headers, data={}).status_code == 400


def test_export_pdf(client, auth_headers):
    story_id = create_story(client)
    generate(client, story_id)

    resp = client.post(f"/stories/{story_id}/export-pdf", headers=auth_headers)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Please generate at least one image before exporting to PDF."

    page = first_page(client, story_id)
    client.post(f"/stories/{story_id}/pages/{page['id']}/generate-image", headers=auth_headers)
    resp = client.post(f"/stories/{story_id}/export-pdf", headers=auth_headers)
    assert resp.status_code == 200
    pdf_url = resp.get_json()["pdfUrl"]
    assert client.get(pdf_url.replace("http://test.local", "")).data.startswith(b"%PDF")


def test_unknown_job_is_404(client):
    assert client.get("/jobs/missing").status_code == 404


def test_unknown_route_is_json_404(client):
    resp = client.get("/nope")
    assert resp.status_code == 404
    assert "error" in resp.get_json()
