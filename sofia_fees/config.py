import os
from dotenv import load_dotenv

load_dotenv()

def get_env_for_chain(base_key: str, chain_id: str):
    """
    Prefer CHAIN_ID-suffixed env (e.g. RPC_URL_1155) over generic (RPC_URL).
    Return None if neither is set.
    """
    return os.getenv(f"{base_key}_{chain_id}") or os.getenv(base_key)

def _int_env(base_key: str, chain_id: str, default: int) -> int:
    raw = get_env_for_chain(base_key, chain_id)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise RuntimeError(f"{base_key} (or {base_key}_{chain_id}) must be an integer, got {raw!r}.")

def _float_env(base_key: str, chain_id: str, default: float) -> float:
    raw = get_env_for_chain(base_key, chain_id)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        raise RuntimeError(f"{base_key} (or {base_key}_{chain_id}) must be a number, got {raw!r}.")

# Select network (string, Intuition mainnet by default)
CHAIN_ID = os.getenv("CHAIN_ID", "1155").strip()

# EL RPC
RPC_URL = get_env_for_chain("RPC_URL", CHAIN_ID) or "https://rpc.intuition.systems"
RPC_TIMEOUT = _float_env("RPC_TIMEOUT", CHAIN_ID, 60.0)

# Fee proxy contract
SOFIA_PROXY_ADDRESS = (
    get_env_for_chain("SOFIA_PROXY_ADDRESS", CHAIN_ID)
    or "0x26F81d723Ad1648194FAA4b7E235105Fd1212c6c"
)
# Block at which the proxy was deployed; the first scan starts here
DEPLOY_BLOCK = _int_env("DEPLOY_BLOCK", CHAIN_ID, 0)

# eth_getLogs window; nodes reject unbounded ranges
BLOCK_CHUNK = _int_env("BLOCK_CHUNK", CHAIN_ID, 50_000)

# Seconds between dashboard refreshes
REFRESH_INTERVAL = _float_env("REFRESH_INTERVAL", CHAIN_ID, 30.0)

# Optional JSON file for resolved block timestamps (unset = in-memory only)
TIMESTAMP_CACHE_PATH = get_env_for_chain("TIMESTAMP_CACHE_PATH", CHAIN_ID)

# Request queue tuning
RPC_MIN_DELAY_MS = _int_env("RPC_MIN_DELAY_MS", CHAIN_ID, 500)
RPC_BASE_BACKOFF_MS = _int_env("RPC_BASE_BACKOFF_MS", CHAIN_ID, 2_000)
RPC_MAX_BACKOFF_MS = _int_env("RPC_MAX_BACKOFF_MS", CHAIN_ID, 30_000)
RPC_BACKOFF_MULTIPLIER = _float_env("RPC_BACKOFF_MULTIPLIER", CHAIN_ID, 2.0)
RPC_MAX_RETRIES = _int_env("RPC_MAX_RETRIES", CHAIN_ID, 4)
