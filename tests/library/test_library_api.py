from datetime import datetime

from tests.library.base import LibraryApiBase

from app.models.author import Author
from app.models.book import Book
from app.models.event import Event


class LibraryListApiTests(LibraryApiBase):
    def test_books_list_is_public_and_paginated(self):
        self._seed_books()
        response = self.client.get("/api/library/books", params={"sort": "year", "dir": "desc", "page": 2, "pageSize": 5})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([row["title"] for row in body["rows"]], ["Book 08", "Book 05", "Book 06", "Book 03", "Book 04"])
        self.assertEqual(body["total"], 12)
        self.assertEqual(body["total_pages"], 3)
        self.assertEqual(body["page"], 2)
        self.assertEqual(body["page_size"], 5)
        self.assertEqual(body["query_string"], "?sort=year&dir=desc&pageSize=5")
        self.assertEqual(body["prev"], "?sort=year&dir=desc&pageSize=5&page=1")
        self.assertEqual(body["next"], "?sort=year&dir=desc&pageSize=5&page=3")
        self.assertEqual(body["rows"][0]["author_name"], "Elin Pelin")
        self.assertEqual(body["sort_links"]["year"], "?sort=year&dir=asc&pageSize=5&page=1")
        self.assertEqual(body["sort_links"]["title"], "?sort=title&dir=asc&pageSize=5&page=1")
        self.assertEqual(body["state_fields"]["state_page"], "2")
        self.assertEqual(body["filters"]["sort"], "year")

    def test_malformed_params_never_fail(self):
        self._seed_books()
        response = self.client.get(
            "/api/library/books",
            params={"page": "-1", "pageSize": "9999", "sort": "nope", "dir": "x", "yearFrom": "abc", "authorId": "z"},
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["page"], 1)
        self.assertEqual(body["page_size"], 50)
        self.assertEqual(body["filters"]["sort"], "title")
        self.assertEqual(body["total"], 12)

    def test_out_of_range_integers_drop_the_filter(self):
        self._seed_books()
        huge = "99999999999999999999999"
        for key in ("yearFrom", "yearTo", "authorId", "page", "pageSize"):
            response = self.client.get("/api/library/books", params={key: huge})
            self.assertEqual(response.status_code, 200, key)
            self.assertEqual(response.json()["total"], 12, key)

    def test_last_representable_day_as_event_upper_bound(self):
        self._seed_event("Reading", datetime(2025, 5, 1, 18, 0))
        response = self.client.get("/api/library/events", params={"to": "9999-12-31"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual([r["title"] for r in response.json()["rows"]], ["Reading"])

    def test_page_past_the_end(self):
        self._seed_books()
        body = self.client.get("/api/library/books", params={"page": 40}).json()
        self.assertEqual(body["rows"], [])
        self.assertEqual(body["total"], 12)
        self.assertEqual(body["total_pages"], 2)
        self.assertIsNone(body["next"])

    def test_events_list_has_member_counts(self):
        m1, m2 = self._seed_members(2)
        self._seed_event("Reading", datetime(2025, 5, 1, 18, 0), [m1, m2])
        self._seed_event("Signing", datetime(2025, 5, 2, 18, 0))
        body = self.client.get("/api/library/events", params={"sort": "count", "dir": "desc"}).json()
        self.assertEqual([(r["title"], r["member_count"]) for r in body["rows"]], [("Reading", 2), ("Signing", 0)])

    def test_unknown_table_is_404(self):
        response = self.client.get("/api/library/shelves")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["detail"], "Table not found")

    def test_meta_lists(self):
        response = self.client.get("/api/library/meta/lists")
        self.assertEqual(response.status_code, 200)
        tables = {item["table"]: item for item in response.json()["tables"]}
        self.assertEqual(set(tables), {"authors", "books", "members", "events"})
        self.assertEqual(tables["books"]["default_sort"], {"column": "title", "dir": "asc"})
        self.assertEqual(tables["books"]["filter_keys"], ["q", "authorId", "yearFrom", "yearTo"])
        self.assertEqual(tables["events"]["filter_keys"], ["q", "from", "to"])
        self.assertEqual(tables["books"]["page_size"], {"default": 10, "min": 5, "max": 50})
        self.assertEqual(tables["books"]["state_prefix"], "state_")


class LibraryDetailApiTests(LibraryApiBase):
    def test_author_detail_lists_books(self):
        ivan_id, _ = self._seed_books()
        body = self.client.get(f"/api/library/authors/{ivan_id}").json()
        self.assertEqual(body["name"], "Ivan Vazov")
        self.assertEqual(len(body["books"]), 6)
        self.assertEqual(body["books"][0]["title"], "Book 01")

    def test_event_detail_splits_members(self):
        m1, m2, m3 = self._seed_members(3)
        event_id = self._seed_event("Reading", datetime(2025, 5, 1, 18, 0), [m2])
        body = self.client.get(f"/api/library/events/{event_id}").json()
        self.assertEqual(body["member_ids"], [m2])
        self.assertEqual([m["id"] for m in body["members"]], [m2])
        self.assertEqual([m["id"] for m in body["available_members"]], [m1, m3])

    def test_missing_or_malformed_id_is_404(self):
        self.assertEqual(self.client.get("/api/library/books/999").status_code, 404)
        self.assertEqual(self.client.get("/api/library/books/abc").status_code, 404)
        self.assertEqual(self.client.get("/api/library/books/99999999999999999999").status_code, 404)


class LibraryWriteApiTests(LibraryApiBase):
    def test_writes_require_token(self):
        response = self.client.post("/api/library/authors", json={"name": "Nobody"})
        self.assertEqual(response.status_code, 401)

    def test_writes_require_writer_role(self):
        response = self.client.post("/api/library/authors", json={"name": "Nobody"}, headers=self._auth_headers("READER"))
        self.assertEqual(response.status_code, 403)

    def test_invalid_token_is_401(self):
        response = self.client.post(
            "/api/library/authors", json={"name": "Nobody"}, headers={"Authorization": "Bearer not-a-token"}
        )
        self.assertEqual(response.status_code, 401)

    def test_create_book_returns_redirect_to_echoed_list_state(self):
        ivan_id, _ = self._seed_books()
        response = self.client.post(
            "/api/library/books",
            json={
                "title": "Under the Yoke",
                "isbn": "  ",
                "year": 1894,
                "author_id": ivan_id,
                "state_q": "yoke",
                "state_sort": "year",
                "state_dir": "desc",
                "state_pageSize": "5",
                "state_page": "2",
            },
            headers=self._auth_headers(),
        )
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["row"]["title"], "Under the Yoke")
        self.assertIsNone(body["row"]["isbn"])
        self.assertEqual(body["message"], "Book created.")
        self.assertEqual(body["redirect_to"], "/api/library/books?q=yoke&sort=year&dir=desc&pageSize=5&page=2")
        self.assertEqual(response.headers.get("cache-control"), "no-store")

    def test_create_book_with_missing_author_is_400(self):
        response = self.client.post(
            "/api/library/books",
            json={"title": "Orphan", "year": 2000, "author_id": 404},
            headers=self._auth_headers(),
        )
        self.assertEqual(response.status_code, 400)

    def test_unknown_and_invalid_fields_are_400(self):
        headers = self._auth_headers()
        response = self.client.post("/api/library/authors", json={"name": "X", "shelf": 3}, headers=headers)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], "Unknown fields: shelf")
        response = self.client.post(
            "/api/library/members", json={"full_name": "Ann", "email": "not-an-email"}, headers=headers
        )
        self.assertEqual(response.status_code, 400)

    def test_update_author_without_state_redirects_to_default_list(self):
        ivan_id, _ = self._seed_books()
        response = self.client.patch(
            f"/api/library/authors/{ivan_id}", json={"name": "Ivan Minchov Vazov"}, headers=self._auth_headers()
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["row"]["name"], "Ivan Minchov Vazov")
        self.assertEqual(body["message"], "Author updated.")
        self.assertEqual(body["redirect_to"], "/api/library/authors?sort=name&dir=asc&pageSize=10")

    def test_empty_update_is_400(self):
        ivan_id, _ = self._seed_books()
        response = self.client.patch(f"/api/library/authors/{ivan_id}", json={}, headers=self._auth_headers())
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], "No fields to update")

    def test_delete_author_with_books_is_refused(self):
        ivan_id, _ = self._seed_books()
        response = self.client.request(
            "DELETE",
            f"/api/library/authors/{ivan_id}",
            json={"state_sort": "name", "state_dir": "desc"},
            headers=self._auth_headers(),
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("related books", response.json()["detail"])
        with self.SessionLocal() as db:
            self.assertIsNotNone(db.get(Author, ivan_id))
            self.assertEqual(db.query(Book).count(), 12)

    def test_delete_author_without_books(self):
        with self.SessionLocal() as db:
            author = Author(name="Unpublished")
            db.add(author)
            db.commit()
            author_id = author.id
        response = self.client.request(
            "DELETE",
            f"/api/library/authors/{author_id}",
            json={"state_sort": "name", "state_dir": "desc", "state_id": str(author_id)},
            headers=self._auth_headers("ADMIN"),
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["message"], "Author deleted.")
        self.assertEqual(body["redirect_to"], "/api/library/authors?sort=name&dir=desc&pageSize=10")
        with self.SessionLocal() as db:
            self.assertIsNone(db.get(Author, author_id))

    def test_delete_missing_record_is_404(self):
        response = self.client.delete("/api/library/authors/999", headers=self._auth_headers())
        self.assertEqual(response.status_code, 404)

    def test_delete_enrolled_member_is_refused(self):
        m1, = self._seed_members(1)
        self._seed_event("Reading", datetime(2025, 5, 1, 18, 0), [m1])
        response = self.client.delete(f"/api/library/members/{m1}", headers=self._auth_headers())
        self.assertEqual(response.status_code, 400)

    def test_delete_event_removes_its_roster(self):
        m1, m2 = self._seed_members(2)
        event_id = self._seed_event("Reading", datetime(2025, 5, 1, 18, 0), [m1, m2])
        response = self.client.delete(f"/api/library/events/{event_id}", headers=self._auth_headers())
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self._roster(event_id), set())


class EventRosterApiTests(LibraryApiBase):
    def test_create_event_with_members(self):
        m1, m2 = self._seed_members(2)
        response = self.client.post(
            "/api/library/events",
            json={"title": "Launch", "start_at": "2025-06-01T18:00:00", "member_ids": [m2, m1, m1]},
            headers=self._auth_headers(),
        )
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["row"]["member_ids"], [m1, m2])
        self.assertEqual(body["row"]["version"], 1)

    def test_create_event_with_unknown_member_writes_nothing(self):
        response = self.client.post(
            "/api/library/events",
            json={"title": "Launch", "start_at": "2025-06-01T18:00:00", "member_ids": [77]},
            headers=self._auth_headers(),
        )
        self.assertEqual(response.status_code, 400)
        with self.SessionLocal() as db:
            self.assertEqual(db.query(Event).count(), 0)

    def test_patch_event_reconciles_roster(self):
        m1, m2, m3, m4 = self._seed_members(4)
        event_id = self._seed_event("Reading", datetime(2025, 5, 1, 18, 0), [m1, m2, m3])
        response = self.client.patch(
            f"/api/library/events/{event_id}",
            json={"title": "Evening reading", "member_ids": [m2, m3, m4], "version": 1},
            headers=self._auth_headers(),
        )
        self.assertEqual(response.status_code, 200)
        row = response.json()["row"]
        self.assertEqual(row["title"], "Evening reading")
        self.assertEqual(row["roster_change"], {"added": [m4], "removed": [m1]})
        self.assertEqual(row["version"], 2)
        self.assertEqual(self._roster(event_id), {m2, m3, m4})

    def test_patch_without_member_ids_keeps_roster(self):
        m1, = self._seed_members(1)
        event_id = self._seed_event("Reading", datetime(2025, 5, 1, 18, 0), [m1])
        response = self.client.patch(
            f"/api/library/events/{event_id}", json={"description": "Bring a book"}, headers=self._auth_headers()
        )
        self.assertEqual(response.status_code, 200)
        self.assertNotIn("roster_change", response.json()["row"])
        self.assertEqual(self._roster(event_id), {m1})

    def test_patch_with_stale_version_is_409(self):
        m1, = self._seed_members(1)
        event_id = self._seed_event("Reading", datetime(2025, 5, 1, 18, 0))
        headers = self._auth_headers()
        first = self.client.put(f"/api/library/events/{event_id}/members", json={"member_ids": [m1], "version": 1}, headers=headers)
        self.assertEqual(first.status_code, 200)
        stale = self.client.patch(
            f"/api/library/events/{event_id}", json={"member_ids": [], "version": 1}, headers=headers
        )
        self.assertEqual(stale.status_code, 409)
        self.assertEqual(self._roster(event_id), {m1})

    def test_put_members(self):
        m1, m2, m3, m4 = self._seed_members(4)
        event_id = self._seed_event("Reading", datetime(2025, 5, 1, 18, 0), [m1, m2, m3])
        response = self.client.put(
            f"/api/library/events/{event_id}/members",
            json={"member_ids": [m2, m3, m4]},
            headers=self._auth_headers(),
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["added"], [m4])
        self.assertEqual(body["removed"], [m1])
        self.assertEqual(body["message"], "1 member(s) added, 1 member(s) removed.")
        self.assertEqual(body["redirect_to"], f"/api/library/events/{event_id}")

        again = self.client.put(
            f"/api/library/events/{event_id}/members",
            json={"member_ids": [m4, m3, m2]},
            headers=self._auth_headers(),
        ).json()
        self.assertEqual(again["added"], [])
        self.assertEqual(again["removed"], [])
        self.assertEqual(again["message"], "Roster unchanged.")

    def test_put_members_with_invalid_ids_is_400(self):
        event_id = self._seed_event("Reading", datetime(2025, 5, 1, 18, 0))
        headers = self._auth_headers()
        for body in ({"member_ids": ["abc"]}, {"member_ids": [2**63]}, {"member_ids": "1,2"}, {"member_ids": [], "seats": 3}):
            response = self.client.put(f"/api/library/events/{event_id}/members", json=body, headers=headers)
            self.assertEqual(response.status_code, 400, body)
        self.assertEqual(self._roster(event_id), set())

    def test_huge_path_ids_are_404(self):
        event_id = self._seed_event("Reading", datetime(2025, 5, 1, 18, 0))
        huge = "99999999999999999999"
        headers = self._auth_headers()
        self.assertEqual(self.client.post(f"/api/library/events/{event_id}/members/{huge}", headers=headers).status_code, 404)
        self.assertEqual(self.client.delete(f"/api/library/events/{event_id}/members/{huge}", headers=headers).status_code, 404)
        self.assertEqual(self.client.put(f"/api/library/events/{huge}/members", json={"member_ids": []}, headers=headers).status_code, 404)

    def test_put_members_on_missing_event_is_404(self):
        response = self.client.put("/api/library/events/999/members", json={"member_ids": []}, headers=self._auth_headers())
        self.assertEqual(response.status_code, 404)

    def test_put_members_requires_writer(self):
        event_id = self._seed_event("Reading", datetime(2025, 5, 1, 18, 0))
        response = self.client.put(f"/api/library/events/{event_id}/members", json={"member_ids": []})
        self.assertEqual(response.status_code, 401)

    def test_add_and_remove_single_member(self):
        m1, = self._seed_members(1)
        event_id = self._seed_event("Reading", datetime(2025, 5, 1, 18, 0))
        headers = self._auth_headers()
        added = self.client.post(f"/api/library/events/{event_id}/members/{m1}", headers=headers).json()
        self.assertEqual(added["changed"], True)
        self.assertEqual(added["message"], "Member added.")
        repeat = self.client.post(f"/api/library/events/{event_id}/members/{m1}", headers=headers).json()
        self.assertEqual(repeat["changed"], False)
        removed = self.client.delete(f"/api/library/events/{event_id}/members/{m1}", headers=headers).json()
        self.assertEqual(removed["changed"], True)
        self.assertEqual(self._roster(event_id), set())
