DEFAULT_CONFIG = {
    "inter_item_delay": "10",
    "backoff_base": "20",
    "max_retries": "3",
    "retention_days": "30",
    "extract_timeout_seconds": "120",
    "capacity_kb": "0",           # 0 = unlimited
}

ALLOWED_CONFIG_KEYS = set(DEFAULT_CONFIG.keys())
