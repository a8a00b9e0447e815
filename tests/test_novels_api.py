import pytest

from conftest import make_admin


def create_novel(client, headers, title="The Long Road", **fields):
    r = client.post("/api/novels", headers=headers, json={"title": title, **fields})
    assert r.status_code == 201, r.text
    return r.json()["data"]


def add_chapter(client, headers, novel_id, title="Beginnings", content="one two three", **fields):
    r = client.post(f"/api/chapters/novels/{novel_id}", headers=headers,
                    json={"chapter_title": title, "content": content, **fields})
    assert r.status_code == 201, r.text
    return r.json()["data"]


def test_create_novel_defaults_and_duplicate(client, alice):
    user_id, headers = alice
    novel = create_novel(client, headers)
    assert novel["author_id"] == user_id
    assert novel["author_name"] == "alice"
    assert novel["status"] == "DRAFT"
    assert novel["chapter_count"] == 0

    r = client.post("/api/novels", headers=headers, json={"title": "The Long Road"})
    assert r.status_code == 409


def test_create_novel_requires_auth(client):
    assert client.post("/api/novels", json={"title": "Anonymous"}).status_code == 401


def test_list_and_search(client, alice):
    _, headers = alice
    create_novel(client, headers, "Dragon Gate", status="ONGOING", categories=["fantasy"])
    create_novel(client, headers, "City Lights", status="COMPLETED", categories=["romance"])

    r = client.get("/api/novels", params={"status": "COMPLETED"})
    page = r.json()["data"]
    assert page["totalElements"] == 1
    assert page["content"][0]["title"] == "City Lights"

    r = client.post("/api/novels/search", json={"query": "dragon"})
    assert [n["title"] for n in r.json()["data"]["content"]] == ["Dragon Gate"]

    r = client.post("/api/novels/search", json={"categories": ["romance", "fantasy"], "size": 1})
    page = r.json()["data"]
    assert page["totalElements"] == 2
    assert page["totalPages"] == 2
    assert len(page["content"]) == 1


def test_top_lists_exclude_drafts(client, mongo, alice):
    _, headers = alice
    draft = create_novel(client, headers, "Hidden Draft")
    live = create_novel(client, headers, "Popular", status="ONGOING")
    mongo["novel"].update_many({}, {"$set": {"view_count": 5}})

    ids = [n["id"] for n in client.get("/api/novels/top/view-count").json()["data"]]
    assert live["id"] in ids
    assert draft["id"] not in ids


def test_only_owner_or_admin_can_edit(client, mongo, alice, bob):
    _, alice_headers = alice
    bob_id, bob_headers = bob
    novel = create_novel(client, alice_headers)

    assert client.put(f"/api/novels/{novel['id']}", headers=bob_headers, json={"title": "Mine"}).status_code == 403

    make_admin(mongo, bob_id)
    r = client.put(f"/api/novels/{novel['id']}", headers=bob_headers, json={"status": "ONGOING"})
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "ONGOING"


def test_chapters_are_numbered_and_counted(client, alice):
    _, headers = alice
    novel = create_novel(client, headers)
    first = add_chapter(client, headers, novel["id"], content="a b c d")
    second = add_chapter(client, headers, novel["id"], "Middle", "e f")
    assert (first["chapter_number"], second["chapter_number"]) == (1, 2)
    assert first["word_count"] == 4

    r = client.post(f"/api/chapters/novels/{novel['id']}", headers=headers,
                    json={"chapter_title": "Dup", "content": "x", "chapter_number": 2})
    assert r.status_code == 409

    refreshed = client.get(f"/api/novels/{novel['id']}").json()["data"]
    assert refreshed["chapter_count"] == 2
    assert refreshed["word_count"] == 6

    listed = client.get(f"/api/chapters/novels/{novel['id']}").json()["data"]
    assert [c["chapter_title"] for c in listed] == ["Beginnings", "Middle"]

    client.delete(f"/api/chapters/{first['id']}", headers=headers)
    refreshed = client.get(f"/api/novels/{novel['id']}").json()["data"]
    assert refreshed["chapter_count"] == 1
    assert refreshed["word_count"] == 2


def test_update_chapter_content_adjusts_word_count(client, alice):
    _, headers = alice
    novel = create_novel(client, headers)
    chapter = add_chapter(client, headers, novel["id"], content="one two")
    r = client.put(f"/api/chapters/novels/{novel['id']}/{chapter['id']}", headers=headers,
                   json={"content": "one two three four five"})
    assert r.json()["data"]["word_count"] == 5
    assert client.get(f"/api/novels/{novel['id']}").json()["data"]["word_count"] == 5


def test_update_chapter_rejects_null_content(client, alice):
    _, headers = alice
    novel = create_novel(client, headers)
    chapter = add_chapter(client, headers, novel["id"], content="one two")
    r = client.put(f"/api/chapters/novels/{novel['id']}/{chapter['id']}", headers=headers,
                   json={"content": None})
    assert r.status_code == 400
    assert any(e.startswith("content") for e in r.json()["errors"])
    assert client.get(f"/api/novels/{novel['id']}").json()["data"]["word_count"] == 2


def test_increment_view_counts_chapter_and_novel(client, alice):
    _, headers = alice
    novel = create_novel(client, headers)
    chapter = add_chapter(client, headers, novel["id"])
    client.post(f"/api/chapters/{chapter['id']}/increment-view")
    r = client.post(f"/api/chapters/{chapter['id']}/increment-view")
    assert r.json()["data"]["view_count"] == 2
    assert client.get(f"/api/novels/{novel['id']}").json()["data"]["view_count"] == 2


def test_new_chapter_notifies_followers(client, alice, bob):
    _, alice_headers = alice
    bob_id, bob_headers = bob
    novel = create_novel(client, alice_headers, status="ONGOING")

    r = client.post(f"/api/interactions/users/{bob_id}/novels/{novel['id']}/follow", headers=bob_headers)
    assert r.json()["data"]["has_following"] is True
    add_chapter(client, alice_headers, novel["id"], "Arrival")

    page = client.get(f"/api/notifications/users/{bob_id}", headers=bob_headers,
                      params={"unread_only": True}).json()["data"]
    assert page["totalElements"] == 1
    note = page["content"][0]
    assert note["type"] == "NEW_CHAPTER"
    assert "Arrival" in note["message"]

    assert client.post(f"/api/notifications/users/{bob_id}/read-all", headers=bob_headers).json()["data"] == 1
    page = client.get(f"/api/notifications/users/{bob_id}", headers=bob_headers,
                      params={"unread_only": True}).json()["data"]
    assert page["totalElements"] == 0


def test_delete_novel_cascades(client, mongo, alice):
    _, headers = alice
    novel = create_novel(client, headers)
    add_chapter(client, headers, novel["id"])
    client.post("/api/comments", headers=headers, json={"novel_id": novel["id"], "content": "first!"})

    assert client.delete(f"/api/novels/{novel['id']}", headers=headers).status_code == 200
    assert client.get(f"/api/novels/{novel['id']}").status_code == 404
    assert mongo["chapter"].count_documents({"novel_id": novel["id"]}) == 0
    assert mongo["comment"].count_documents({"novel_id": novel["id"]}) == 0


def test_rate_novel_keeps_running_average(client, alice):
    _, headers = alice
    novel = create_novel(client, headers)
    client.post(f"/api/novels/{novel['id']}/rating", headers=headers, json={"rating": 5})
    r = client.post(f"/api/novels/{novel['id']}/rating", headers=headers, json={"rating": 2})
    data = r.json()["data"]
    assert data["rating_count"] == 2
    assert data["rating"] == pytest.approx(3.5)

    assert client.post(f"/api/novels/{novel['id']}/rating", headers=headers, json={"rating": 9}).status_code == 400


def test_reviews_update_novel_rating(client, alice, bob):
    _, alice_headers = alice
    bob_id, bob_headers = bob
    novel = create_novel(client, alice_headers)
    ratings = {"writing_quality": 5, "stability_of_updates": 4, "story_development": 5,
               "character_design": 3, "world_background": 3}

    r = client.post("/api/reviews", headers=bob_headers,
                    json={"novel_id": novel["id"], "review_text": "solid world building", **ratings})
    assert r.status_code == 201
    review = r.json()["data"]
    assert review["overall_rating"] == pytest.approx(4.0)
    assert review["word_count"] == 3

    again = client.post("/api/reviews", headers=bob_headers,
                        json={"novel_id": novel["id"], "review_text": "again", **ratings})
    assert again.status_code == 409

    assert client.get(f"/api/reviews/novels/{novel['id']}/average-rating").json()["data"] == pytest.approx(4.0)
    assert client.get(f"/api/novels/{novel['id']}").json()["data"]["rating_count"] == 1

    r = client.delete(f"/api/reviews/users/{bob_id}/novels/{novel['id']}", headers=bob_headers)
    assert r.status_code == 200
    assert client.get(f"/api/reviews/novels/{novel['id']}/average-rating").json()["data"] is None
    assert client.get(f"/api/novels/{novel['id']}").json()["data"]["rating"] == 0.0


def test_comment_replies_and_notifications(client, alice, bob):
    alice_id, alice_headers = alice
    _, bob_headers = bob
    novel = create_novel(client, alice_headers)

    parent = client.post("/api/comments", headers=alice_headers,
                         json={"novel_id": novel["id"], "content": "What did you think?"}).json()["data"]
    r = client.post(f"/api/comments/{parent['id']}/reply", headers=bob_headers, json={"content": "Loved it"})
    assert r.status_code == 201

    top = client.get(f"/api/comments/novel/{novel['id']}").json()["data"]
    assert top["totalElements"] == 1
    assert top["content"][0]["reply_count"] == 1
    replies = client.get(f"/api/comments/{parent['id']}/replies").json()["data"]
    assert [c["content"] for c in replies] == ["Loved it"]

    notes = client.get(f"/api/notifications/users/{alice_id}", headers=alice_headers).json()["data"]
    assert notes["content"][0]["type"] == "COMMENT_REPLY"

    assert client.put(f"/api/comments/{parent['id']}", headers=bob_headers, json={"content": "hijack"}).status_code == 403


def test_interactions_toggle_and_progress(client, alice):
    user_id, headers = alice
    novel = create_novel(client, headers)
    base = f"/api/interactions/users/{user_id}/novels/{novel['id']}"

    fresh = client.get(base, headers=headers).json()["data"]
    assert fresh["has_following"] is False
    assert fresh["in_wishlist"] is False

    client.post(f"{base}/follow", headers=headers)
    assert client.get(f"/api/novels/{novel['id']}").json()["data"]["follow_count"] == 1
    assert client.get(f"/api/interactions/novels/{novel['id']}/follow-count").json()["data"] == 1
    client.post(f"{base}/follow", headers=headers)
    assert client.get(f"/api/novels/{novel['id']}").json()["data"]["follow_count"] == 0

    assert client.post(f"{base}/wishlist", headers=headers).json()["data"]["in_wishlist"] is True
    assert len(client.get(f"/api/interactions/users/{user_id}/wishlist", headers=headers).json()["data"]) == 1

    r = client.post(f"{base}/read", headers=headers, json={"chapter_id": "c1", "chapter_number": 3})
    progress = r.json()["data"]
    assert progress["current_chapter_number"] == 3
    assert progress["total_chapter_reads"] == 1


def test_interactions_of_other_users_are_forbidden(client, alice, bob):
    _, alice_headers = alice
    bob_id, _ = bob
    novel = create_novel(client, alice_headers)
    r = client.get(f"/api/interactions/users/{bob_id}/novels/{novel['id']}", headers=alice_headers)
    assert r.status_code == 403


def test_images_are_soft_deleted(client, alice):
    user_id, headers = alice
    body = {"original_filename": "me.png", "content_type": "image/png", "file_size": 1024,
            "storage_key": "avatars/me.png", "owner_id": user_id, "owner_type": "USER"}
    image = client.post("/api/images", headers=headers, json=body).json()["data"]
    assert client.get(f"/api/images/owners/USER/{user_id}").json()["data"][0]["id"] == image["id"]

    assert client.delete(f"/api/images/{image['id']}", headers=headers).status_code == 200
    assert client.get(f"/api/images/{image['id']}").status_code == 404
    assert client.get(f"/api/images/owners/USER/{user_id}").json()["data"] == []

    bad = {**body, "content_type": "text/plain"}
    assert client.post("/api/images", headers=headers, json=bad).status_code == 400


def test_admin_stats(client, mongo, alice):
    user_id, headers = alice
    create_novel(client, headers, "Draft One")
    create_novel(client, headers, "Live One", status="ONGOING")
    assert client.get("/api/admin/stats", headers=headers).status_code == 403

    make_admin(mongo, user_id)
    stats = client.get("/api/admin/stats", headers=headers).json()["data"]
    assert stats["user"] == 1
    assert stats["novel"] == 2
    assert stats["published_novels"] == 1


def test_update_novel_rejects_null_title(client, alice):
    _, headers = alice
    novel = create_novel(client, headers, "Dragon Gate")
    r = client.put(f"/api/novels/{novel['id']}", headers=headers, json={"title": None})
    assert r.status_code == 400
    assert any(e.startswith("title") for e in r.json()["errors"])
    assert client.get(f"/api/novels/{novel['id']}").json()["data"]["title"] == "Dragon Gate"

    r = client.put(f"/api/novels/{novel['id']}", headers=headers, json={"cover_image": None})
    assert r.status_code == 200


def test_update_interaction_rejects_null_flags(client, alice):
    user_id, headers = alice
    novel = create_novel(client, headers)
    base = f"/api/interactions/users/{user_id}/novels/{novel['id']}"
    assert client.put(base, headers=headers, json={"has_following": None}).status_code == 400
    assert client.get(f"/api/novels/{novel['id']}").json()["data"]["follow_count"] == 0
