"""
Automated smoke test for invoicectl
-----------------------------------
Validates:
1. Database and config seeding
2. Config updates
3. Record listing, status changes and retention purge

Run:
    python test.py
"""

import json
import os
import subprocess
import sys
import tempfile

HERE = os.path.dirname(os.path.abspath(__file__))


def run(cmd, env) -> str:
    """Run CLI command and return stdout."""
    print(f"\n$ invoicectl {' '.join(cmd)}")
    res = subprocess.run(
        [sys.executable, "-m", "invoicectl.cli", *cmd],
        capture_output=True, text=True, env=env, cwd=HERE,
    )
    if res.returncode != 0:
        print(res.stderr)
        raise RuntimeError(f"Command failed: {cmd}")
    print(res.stdout.strip())
    return res.stdout.strip()


def test_basic_flow():
    with tempfile.TemporaryDirectory() as tmp:
        db = os.path.join(tmp, "invoices.db")
        env = dict(os.environ, INVOICECTL_DB=db)

        # Check config
        cfg = json.loads(run(["config", "get"], env))
        assert cfg["retention_days"] == "30"
        assert os.path.exists(db), "Database not created!"

        #  Verify config set
        run(["config", "set", "backoff_base", "30s"], env)
        assert json.loads(run(["config", "get"], env))["backoff_base"] == "30"

        # Empty history
        assert run(["records", "list"], env) == "No records."
        assert "Evicted 0" in run(["records", "purge"], env)

    print("\n All tests executed successfully.")


if __name__ == "__main__":
    test_basic_flow()
