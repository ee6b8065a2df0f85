from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from gitglass.web import create_app


@pytest.fixture
def client(config, synced):
    return TestClient(create_app(config))


def test_repo_list(client):
    response = client.get("/")
    assert response.status_code == 200
    assert '<a href="/demo/">Demo</a>' in response.text


def test_repo_index(client, remote):
    response = client.get("/demo/")
    assert response.status_code == 200
    assert remote.merge[:7] in response.text
    assert "Merge branch" in response.text
    assert "feature" in response.text
    assert "v1" in response.text
    assert f"/demo/commit/{remote.merge}/contents/" in response.text


def test_unknown_repo_is_404(client):
    response = client.get("/nope/")
    assert response.status_code == 404
    assert response.text == "not found"


def test_commit_page(client, remote):
    response = client.get(f"/demo/commit/{remote.second}/")
    assert response.status_code == 200
    assert "Say goodbye" in response.text
    assert "+2" in response.text
    assert "-1" in response.text
    assert "there" in response.text


def test_commit_page_rejects_malformed_id(client):
    response = client.get("/demo/commit/not-a-hash/")
    assert response.status_code == 400
    assert response.text == "invalid input"


def test_unknown_commit_is_404(client):
    assert client.get(f"/demo/commit/{'f' * 40}/").status_code == 404


def test_raw_diff(client, remote):
    response = client.get(f"/demo/commit/{remote.second}/diff")
    assert response.status_code == 200
    assert response.headers["content-type"] == "text/plain; charset=utf-8"
    assert "+print('bye')\n" in response.text


def test_tree_listing(client, remote):
    response = client.get(f"/demo/commit/{remote.merge}/contents/")
    assert response.status_code == 200
    base = f"/demo/commit/{remote.merge}/contents"
    assert f'<a href="{base}/src/">src/</a>' in response.text
    assert f'<a href="{base}/README.md">README.md</a>' in response.text


def test_root_listing_without_slash_links_absolutely(client, remote):
    response = client.get(f"/demo/commit/{remote.merge}/contents", follow_redirects=False)
    assert response.status_code == 200
    base = f"/demo/commit/{remote.merge}/contents"
    assert f'<a href="{base}/src/">src/</a>' in response.text


def test_subdirectory_links_include_directory(client, remote):
    response = client.get(f"/demo/commit/{remote.merge}/contents/src/")
    assert response.status_code == 200
    assert f'<a href="/demo/commit/{remote.merge}/contents/src/app.py">app.py</a>' in response.text


def test_directory_redirect_keeps_query(client, remote):
    response = client.get(
        f"/demo/commit/{remote.merge}/contents/src?view=1", follow_redirects=False
    )
    assert response.status_code == 307
    assert response.headers["location"] == f"/demo/commit/{remote.merge}/contents/src/?view=1"


def test_text_file_is_rendered(client, remote):
    response = client.get(f"/demo/commit/{remote.merge}/contents/src/app.py")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert "bye" in response.text


def test_binary_file_is_served_raw(client, remote):
    response = client.get(f"/demo/commit/{remote.merge}/contents/logo.png")
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    assert response.content.startswith(b"\x89PNG")


def test_missing_file_is_404(client, remote):
    response = client.get(f"/demo/commit/{remote.merge}/contents/README.md/")
    assert response.status_code == 404


def test_unsynced_repo_is_404(config):
    client = TestClient(create_app(config))
    assert client.get("/demo/").status_code == 404
