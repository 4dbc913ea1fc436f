import asyncio
import base64
from pathlib import Path

from fastapi.testclient import TestClient

from preview_agent.api.app import create_app
from preview_agent.models.project import ProjectStatus
from tests.support.agent_helpers import (
    make_agent,
    read_access_logs,
    read_record,
    write_project_config,
)

AUTH = {
    "default_policy": "basic",
    "allowed_ips": ["192.168.1.0/24"],
    "tokens": ["ci-token"],
    "basic_auth": ["admin:secret"],
    "rules": [
        {"match": "public-*", "policy": "allow"},
        {"match": "locked.*", "policy": "deny"},
    ],
}


def _basic(credentials: str) -> str:
    return "Basic " + base64.b64encode(credentials.encode("utf-8")).decode("ascii")


def _headers(host: str, **extra: str) -> dict[str, str]:
    return {"x-forwarded-host": host, **extra}


def test_valid_basic_credentials_are_allowed_and_tracked(tmp_path: Path) -> None:
    agent = make_agent(tmp_path, ["alpha"], auth=AUTH)

    with TestClient(create_app(agent, run_loops=False)) as client:
        response = client.get(
            "/__auth__",
            headers=_headers(
                "alpha.preview.test",
                authorization=_basic("admin:secret"),
                **{"x-forwarded-uri": "/admin", "user-agent": "pytest-agent"},
            ),
        )

    assert response.status_code == 200
    assert response.content == b""
    record = asyncio.run(read_record(agent.config.db_path, "alpha"))
    assert record is not None
    assert record.status is ProjectStatus.RUNNING
    logs = asyncio.run(read_access_logs(agent.config.db_path, "alpha"))
    assert [(entry.path, entry.user_agent) for entry in logs] == [("/admin", "pytest-agent")]


def test_missing_credentials_get_basic_challenge(tmp_path: Path) -> None:
    agent = make_agent(tmp_path, ["alpha"], auth=AUTH)

    with TestClient(create_app(agent, run_loops=False)) as client:
        response = client.get("/__auth__", headers=_headers("alpha.preview.test"))

    assert response.status_code == 401
    assert response.text == "Unauthorized"
    assert response.headers["www-authenticate"] == 'Basic realm="Preview"'
    assert asyncio.run(read_record(agent.config.db_path, "alpha")) is None


def test_bearer_token_is_allowed(tmp_path: Path) -> None:
    agent = make_agent(tmp_path, ["alpha"], auth=AUTH)

    with TestClient(create_app(agent, run_loops=False)) as client:
        response = client.post(
            "/__auth__/any/path",
            headers=_headers("alpha.preview.test", authorization="Bearer ci-token"),
        )

    assert response.status_code == 200


def test_allowlisted_forwarded_ip_is_allowed(tmp_path: Path) -> None:
    agent = make_agent(tmp_path, ["alpha"], auth=AUTH)

    with TestClient(create_app(agent, run_loops=False)) as client:
        forwarded = client.get(
            "/__auth__",
            headers=_headers("alpha.preview.test", **{"x-forwarded-for": "192.168.1.7, 10.0.0.1"}),
        )
        outside = client.get(
            "/__auth__",
            headers=_headers("alpha.preview.test", **{"x-forwarded-for": "192.168.2.7"}),
        )

    assert forwarded.status_code == 200
    assert outside.status_code == 401


def test_connecting_ip_header_wins_over_forwarded_for(tmp_path: Path) -> None:
    agent = make_agent(tmp_path, ["alpha"], auth=AUTH)

    with TestClient(create_app(agent, run_loops=False)) as client:
        response = client.get(
            "/__auth__",
            headers=_headers(
                "alpha.preview.test",
                **{"cf-connecting-ip": "203.0.113.9", "x-forwarded-for": "192.168.1.7"},
            ),
        )

    assert response.status_code == 401


def test_hostname_rules(tmp_path: Path) -> None:
    agent = make_agent(tmp_path, ["public-docs", "locked"], auth=AUTH)

    with TestClient(create_app(agent, run_loops=False)) as client:
        public = client.get("/__auth__", headers=_headers("public-docs.preview.test"))
        locked = client.get(
            "/__auth__",
            headers=_headers("locked.preview.test", authorization=_basic("admin:secret")),
        )

    assert public.status_code == 200
    assert locked.status_code == 401


def test_project_auth_override(tmp_path: Path) -> None:
    write_project_config(tmp_path, "alpha", "auth_policy: allow\n")
    agent = make_agent(tmp_path, ["alpha", "beta"], auth=AUTH)

    with TestClient(create_app(agent, run_loops=False)) as client:
        alpha = client.get("/__auth__", headers=_headers("alpha.preview.test"))
        beta = client.get("/__auth__", headers=_headers("beta.preview.test"))

    assert alpha.status_code == 200
    assert beta.status_code == 401


def test_host_header_is_used_without_forwarded_host(tmp_path: Path) -> None:
    agent = make_agent(tmp_path, ["alpha"], auth={"default_policy": "allow"})

    with TestClient(create_app(agent, run_loops=False)) as client:
        response = client.get("/__auth__", headers={"host": "Alpha.Preview.Test:443"})

    assert response.status_code == 200
    record = asyncio.run(read_record(agent.config.db_path, "alpha"))
    assert record is not None
