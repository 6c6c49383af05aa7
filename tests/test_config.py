from utils.config import load_cfg, service_settings


def test_defaults_without_config():
    s = service_settings({})
    assert s.stream == "orders"
    assert s.group == "order-durable"
    assert s.ack_wait_ms == 60_000
    assert s.store_timeout_sec == 5.0
    assert s.identifier_field == "order_uid"
    assert s.http_port == 8080


def test_yaml_with_env_refs(tmp_path, monkeypatch):
    monkeypatch.setenv("MY_PG", "postgres://u:p@db:5432/orders")
    monkeypatch.delenv("PG_DSN", raising=False)
    monkeypatch.delenv("HTTP_PORT", raising=False)
    monkeypatch.delenv("UNSET_REDIS", raising=False)
    monkeypatch.delenv("REDIS_DSN", raising=False)
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(
        "store:\n"
        "  dsn: ${MY_PG}\n"
        "  timeout_sec: 2\n"
        "channel:\n"
        "  dsn: ${UNSET_REDIS:-redis://cache:6379/1}\n"
        "  ack_wait_ms: 30000\n"
        "http:\n"
        "  port: 9000\n",
        encoding="utf-8",
    )
    s = service_settings(load_cfg(str(cfg_file)))
    assert s.store_dsn == "postgres://u:p@db:5432/orders"
    assert s.store_timeout_sec == 2.0
    assert s.redis_dsn == "redis://cache:6379/1"
    assert s.ack_wait_ms == 30000
    assert s.http_port == 9000


def test_env_overrides_yaml(monkeypatch):
    monkeypatch.setenv("PG_DSN", "postgres://env/db")
    monkeypatch.setenv("ACK_WAIT_MS", "1000")
    monkeypatch.setenv("CONCURRENCY", "0")
    s = service_settings({"store": {"dsn": "postgres://yaml/db"}, "channel": {"ack_wait_ms": 5}})
    assert s.store_dsn == "postgres://env/db"
    assert s.ack_wait_ms == 1000
    assert s.concurrency == 1
