"""HTTP API tests."""

import pytest
from fastapi.testclient import TestClient

from recall_cli import db as db_module
from recall_cli.errors import StoreError
from recall_cli.web import create_app


@pytest.fixture
def client(temp_db_path: str) -> TestClient:
    return TestClient(create_app(temp_db_path))


@pytest.fixture
def seeded(temp_db_path: str, add) -> str:
    for i in range(3):
        add("a", 100, command_text=f"git commit -m {i}", timestamp=100 + i,
            git_repo="api", exit_code=0)
    add("a", 100, command_text="cargo test", timestamp=200, git_repo="web", exit_code=1)
    add("b", 500, command_text="git pull", timestamp=500, git_repo="api")
    return temp_db_path


class TestSessions:

    def test_lists_overviews_newest_first(self, client: TestClient, seeded: str) -> None:
        response = client.get("/api/sessions")
        assert response.status_code == 200

        sessions = response.json()["sessions"]
        assert [s["id"] for s in sessions] == ["b", "a"]
        assert sessions[1]["command_count"] == 4
        assert sessions[1]["failure_count"] == 1
        assert sessions[1]["repos"] == ["api", "web"]

    def test_limit_and_offset(self, client: TestClient, seeded: str) -> None:
        response = client.get("/api/sessions", params={"limit": 1, "offset": 1})
        assert [s["id"] for s in response.json()["sessions"]] == ["a"]


class TestCommands:

    def test_session_commands_ascending(self, client: TestClient, seeded: str) -> None:
        response = client.get("/api/commands", params={"session_id": "a"})
        timestamps = [c["timestamp"] for c in response.json()["commands"]]
        assert timestamps == [100, 101, 102, 200]

    def test_recent_commands_newest_first(self, client: TestClient, seeded: str) -> None:
        response = client.get("/api/commands", params={"limit": 2})
        texts = [c["command_text"] for c in response.json()["commands"]]
        assert texts == ["git pull", "cargo test"]


class TestSearch:

    def test_results_carry_rank(self, client: TestClient, seeded: str) -> None:
        response = client.get("/api/search", params={"q": "git"})
        assert response.status_code == 200

        results = response.json()["results"]
        assert len(results) == 4
        assert all("rank" in r for r in results)
        ranks = [r["rank"] for r in results]
        assert ranks == sorted(ranks)

    def test_filters(self, client: TestClient, seeded: str) -> None:
        response = client.get("/api/search", params={"q": "cargo OR git", "failed": "true"})
        assert [r["command_text"] for r in response.json()["results"]] == ["cargo test"]

        response = client.get("/api/search", params={"q": "git", "repo": "web"})
        assert response.json()["results"] == []

    def test_malformed_query_is_empty(self, client: TestClient, seeded: str) -> None:
        response = client.get("/api/search", params={"q": '"oops'})
        assert response.status_code == 200
        assert response.json() == {"results": []}

    def test_query_is_required(self, client: TestClient) -> None:
        assert client.get("/api/search").status_code == 422


class TestStatsAndGraph:

    def test_stats(self, client: TestClient, seeded: str) -> None:
        stats = client.get("/api/stats").json()
        assert stats["sessions"] == 2
        assert stats["commands"] == 5
        assert stats["failures"] == 1
        assert stats["repo_names"] == ["api", "web"]

    def test_graph_nodes_and_edges(self, client: TestClient, seeded: str) -> None:
        graph = client.get("/api/graph").json()

        node_ids = {n["id"] for n in graph["nodes"]}
        # git used 4 times (kept); cargo once (dropped).
        assert node_ids == {"api", "web", "tool:git"}

        repo_repo = [e for e in graph["edges"] if e["type"] == "repo-repo"]
        assert repo_repo == [
            {"type": "repo-repo", "source": "api", "target": "web", "shared_sessions": 1}
        ]


class TestErrors:

    def test_store_failure_is_a_generic_500(
        self, temp_db_path: str, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def broken(self):
            raise StoreError("database disk image is malformed")

        monkeypatch.setattr(db_module.Store, "stats", broken)
        client = TestClient(create_app(temp_db_path), raise_server_exceptions=False)

        response = client.get("/api/stats")

        assert response.status_code == 500
        assert response.json() == {"detail": "internal server error"}
        assert "malformed" not in response.text
