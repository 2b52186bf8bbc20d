import os
import tomllib
from pathlib import Path

import txflow.constants as C

pkg_root = Path(__file__).parent
config_file = Path(os.getenv("TXFLOW_CONFIG", pkg_root / "config.toml"))


def load_config(path: Path = config_file) -> dict:
    """Read config.toml and fill in defaults for anything it leaves out."""
    cfg = tomllib.loads(Path(path).read_text())

    rippled = cfg.setdefault("rippled", {})
    rippled["url"] = os.getenv("RPC_URL", rippled.get("url", "http://localhost:5005"))

    to = cfg.setdefault("timeout", {})
    to.setdefault("rpc", C.RPC_TIMEOUT)
    to.setdefault("submit", C.SUBMIT_TIMEOUT)
    to.setdefault("poll", C.POLL_INTERVAL)
    to.setdefault("startup", 60)

    ledger = cfg.setdefault("ledger", {})
    ledger.setdefault("last_ledger_offset", C.LAST_LEDGER_OFFSET)
    ledger.setdefault("max_fee_drops", C.MAX_FEE_DROPS)

    cache = cfg.setdefault("cache", {})
    cache.setdefault("ttl", C.CACHE_TTL)
    cache.setdefault("maxsize", C.CACHE_MAXSIZE)

    service = cfg.setdefault("service", {})
    service.setdefault("host", "0.0.0.0")
    service.setdefault("port", 8000)

    cfg.setdefault("keys", {})
    return cfg


cfg = load_config()
