"""Tests for user CRUD endpoints."""
from fakeredis import FakeAsyncRedis
from httpx import AsyncClient
from uuid6 import uuid7

from core import cache_keys
from schemas.user import UserQuery


async def query_keys(fake_redis: FakeAsyncRedis) -> list[bytes]:
    return [key async for key in fake_redis.scan_iter(match="users:query:*")]


async def test__create_then_read__database_then_cache(
    client: AsyncClient, user_payload: dict, fake_redis: FakeAsyncRedis,
) -> None:
    """End-to-end: create, read twice, update, list by filter, delete."""
    response = await client.post("/users", json=user_payload)
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    user = body["data"]
    assert user["firstName"] == "Ada"
    assert user["isActive"] is True
    user_id = user["id"]

    first = await client.get(f"/users/{user_id}")
    assert first.status_code == 200
    assert first.json()["source"] == "database"

    second = await client.get(f"/users/{user_id}")
    assert second.json()["source"] == "cache"
    assert second.json()["data"] == first.json()["data"]
    assert second.json()["responseTime"].endswith("ms")

    updated = await client.put(f"/users/{user_id}", json={"occupation": "Analyst"})
    assert updated.status_code == 200
    assert updated.json()["data"]["occupation"] == "Analyst"
    assert updated.json()["data"]["email"] == "ada@example.com"

    after_update = await client.get(f"/users/{user_id}")
    assert after_update.json()["source"] == "database"
    assert after_update.json()["data"]["occupation"] == "Analyst"

    listing = await client.get("/users", params={"search": "lovelace"})
    assert listing.status_code == 200
    assert [u["id"] for u in listing.json()["data"]] == [user_id]

    deleted = await client.delete(f"/users/{user_id}")
    assert deleted.status_code == 200
    assert deleted.json() == {"success": True, "message": "User deleted successfully"}

    missing = await client.get(f"/users/{user_id}")
    assert missing.status_code == 404
    assert missing.json() == {"success": False, "message": "User not found"}
    assert await fake_redis.exists(f"user:{user_id}") == 0
    assert await query_keys(fake_redis) == []


class TestCreateUser:
    """POST /users."""

    async def test__missing_required_field(self, client: AsyncClient) -> None:
        response = await client.post("/users", json={"firstName": "Ada", "email": "a@b.com"})

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "message": "First name, last name, and email are required",
        }

    async def test__duplicate_email(self, client: AsyncClient, user_payload: dict) -> None:
        await client.post("/users", json=user_payload)

        response = await client.post("/users", json={**user_payload, "firstName": "Augusta"})

        assert response.status_code == 400
        assert response.json()["message"] == "Email already exists"

    async def test__malformed_body_is_400(self, client: AsyncClient) -> None:
        response = await client.post(
            "/users",
            json={"firstName": "Ada", "lastName": "Lovelace", "email": "nope", "dob": "someday"},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "Validation failed"
        fields = {error["field"] for error in body["errors"]}
        assert fields == {"email", "dob"}

    async def test__create_invalidates_listings(
        self, client: AsyncClient, user_payload: dict, fake_redis: FakeAsyncRedis,
    ) -> None:
        await client.get("/users")
        await client.get("/users", params={"city": "London"})
        await client.get("/users/all")
        assert len(await query_keys(fake_redis)) == 2

        await client.post("/users", json=user_payload)

        assert await query_keys(fake_redis) == []
        assert await fake_redis.exists("users:all") == 0
        listing = await client.get("/users", params={"city": "London"})
        assert listing.json()["source"] == "database"
        assert listing.json()["pagination"]["totalUsers"] == 1


class TestUpdateUser:
    """PUT /users/{id}."""

    async def test__partial_update_keeps_other_fields(
        self, client: AsyncClient, user_payload: dict,
    ) -> None:
        user_id = (await client.post("/users", json=user_payload)).json()["data"]["id"]

        response = await client.put(f"/users/{user_id}", json={"city": "Paris"})

        data = response.json()["data"]
        assert data["city"] == "Paris"
        assert data["country"] == "UK"
        assert data["occupation"] == "Mathematician"

    async def test__null_clears_optional_field(
        self, client: AsyncClient, user_payload: dict,
    ) -> None:
        user_id = (await client.post("/users", json=user_payload)).json()["data"]["id"]

        response = await client.put(f"/users/{user_id}", json={"occupation": None})

        assert response.status_code == 200
        assert response.json()["data"]["occupation"] is None

    async def test__clearing_required_field_is_400(
        self, client: AsyncClient, user_payload: dict,
    ) -> None:
        user_id = (await client.post("/users", json=user_payload)).json()["data"]["id"]

        response = await client.put(f"/users/{user_id}", json={"email": ""})

        assert response.status_code == 400
        assert response.json()["success"] is False

    async def test__unknown_id_is_404(self, client: AsyncClient) -> None:
        response = await client.put(f"/users/{uuid7()}", json={"city": "Paris"})

        assert response.status_code == 404
        assert response.json()["message"] == "User not found"


class TestReadUser:
    """GET /users/{id}."""

    async def test__unknown_id_is_404_and_not_cached(
        self, client: AsyncClient, fake_redis: FakeAsyncRedis,
    ) -> None:
        missing = uuid7()

        for _ in range(2):
            response = await client.get(f"/users/{missing}")
            assert response.status_code == 404

        assert await fake_redis.exists(f"user:{missing}") == 0

    async def test__malformed_id_is_404(self, client: AsyncClient) -> None:
        response = await client.get("/users/not-a-uuid")

        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "User not found"}

    async def test__delete_unknown_id_is_404(self, client: AsyncClient) -> None:
        response = await client.delete(f"/users/{uuid7()}")

        assert response.status_code == 404


class TestListUsers:
    """GET /users and GET /users/all."""

    async def _create_people(self, client: AsyncClient) -> None:
        people = [
            {"firstName": "Ada", "lastName": "Lovelace", "email": "ada@example.com",
             "city": "London"},
            {"firstName": "Alan", "lastName": "Turing", "email": "alan@example.com",
             "city": "London", "isActive": False},
            {"firstName": "Grace", "lastName": "Hopper", "email": "grace@example.com",
             "city": "New York"},
        ]
        for person in people:
            assert (await client.post("/users", json=person)).status_code == 201

    async def test__envelope_shape(self, client: AsyncClient) -> None:
        await self._create_people(client)

        response = await client.get(
            "/users", params={"limit": "2", "sortBy": "firstName", "sortOrder": "asc"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert [u["firstName"] for u in body["data"]] == ["Ada", "Alan"]
        assert body["pagination"] == {
            "currentPage": 1,
            "totalPages": 2,
            "totalUsers": 3,
            "usersPerPage": 2,
            "hasNextPage": True,
            "hasPrevPage": False,
            "nextPage": 2,
            "prevPage": None,
        }
        assert body["filters"] == {}
        assert body["sorting"] == {"sortBy": "firstName", "sortOrder": "asc"}
        assert body["source"] == "database"

    async def test__filters_reported_and_applied(self, client: AsyncClient) -> None:
        await self._create_people(client)

        response = await client.get("/users", params={"city": "london", "isActive": "true"})

        body = response.json()
        assert [u["firstName"] for u in body["data"]] == ["Ada"]
        assert body["filters"] == {"city": "london", "isActive": True}

    async def test__equivalent_queries_hit_same_entry(self, client: AsyncClient) -> None:
        await self._create_people(client)

        first = await client.get("/users?city=London&page=1")
        second = await client.get("/users?page=1&state=&city=%20London%20")

        assert first.json()["source"] == "database"
        assert second.json()["source"] == "cache"
        assert second.json()["data"] == first.json()["data"]

    async def test__lenient_params_never_400(self, client: AsyncClient) -> None:
        await self._create_people(client)

        response = await client.get(
            "/users", params={"page": "-1", "limit": "1000", "sortBy": "password"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["pagination"]["currentPage"] == 1
        assert body["pagination"]["usersPerPage"] == 100
        assert body["sorting"] == {"sortBy": "createdAt", "sortOrder": "desc"}
        assert [u["firstName"] for u in body["data"]] == ["Grace", "Alan", "Ada"]

    async def test__all_users_cached(self, client: AsyncClient) -> None:
        await self._create_people(client)

        first = await client.get("/users/all")
        second = await client.get("/users/all")

        assert first.json()["source"] == "database"
        assert first.json()["count"] == 3
        assert second.json()["source"] == "cache"
        assert second.json()["data"] == first.json()["data"]


class TestStaleCacheEntries:
    """Entries that decode as JSON but no longer fit the response are reloaded."""

    async def test__wrong_shape_user_entry(
        self, client: AsyncClient, user_payload: dict, fake_redis: FakeAsyncRedis,
    ) -> None:
        user_id = (await client.post("/users", json=user_payload)).json()["data"]["id"]
        await fake_redis.setex(f"user:{user_id}", 600, '{"id": "stale-format"}')

        response = await client.get(f"/users/{user_id}")

        assert response.status_code == 200
        assert response.json()["source"] == "database"
        assert response.json()["data"]["email"] == "ada@example.com"
        again = await client.get(f"/users/{user_id}")
        assert again.json()["source"] == "cache"

    async def test__wrong_shape_query_entry(
        self, client: AsyncClient, user_payload: dict, fake_redis: FakeAsyncRedis,
    ) -> None:
        await client.post("/users", json=user_payload)
        key = cache_keys.query_key(UserQuery.from_params().cache_params())
        await fake_redis.setex(key, 120, "[]")

        response = await client.get("/users")

        assert response.status_code == 200
        body = response.json()
        assert body["source"] == "database"
        assert body["pagination"]["totalUsers"] == 1

    async def test__wrong_shape_collection_entry(
        self, client: AsyncClient, user_payload: dict, fake_redis: FakeAsyncRedis,
    ) -> None:
        await client.post("/users", json=user_payload)
        await fake_redis.setex("users:all", 300, '[{"id": 1}]')

        response = await client.get("/users/all")

        assert response.status_code == 200
        assert response.json()["source"] == "database"
        assert response.json()["count"] == 1
