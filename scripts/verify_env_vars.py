import os
import re
from pathlib import Path

from dotenv import dotenv_values

ROOT = Path(__file__).resolve().parents[1]

PRODUCTION_VARS = [
    "CLICKUP_API_TOKEN",
    "CLICKUP_WEBHOOK_SECRET",
    "CONTENT_GENERATION_URL",
    "DATABASE_URL",
    "SERVICE_TOKEN",
    "SHADE_API_KEY",
    "SHADE_DRIVE_ID",
]


def find_env_vars():
    """Find all environment variables declared as settings aliases."""
    env_vars = set()
    for py_file in (ROOT / "copyflow").rglob("*.py"):
        content = py_file.read_text(encoding="utf-8", errors="ignore")
        env_vars.update(re.findall(r'alias=["\']([A-Z0-9_]+)["\']', content))
    return sorted(env_vars)


def verify_environment(env_file=ROOT / ".env"):
    configured = {k: v for k, v in dotenv_values(env_file).items() if v}
    configured.update({k: v for k, v in os.environ.items() if v})

    code_vars = set(find_env_vars())
    missing_required = [v for v in PRODUCTION_VARS if v not in configured]
    undeclared = sorted(set(PRODUCTION_VARS) - code_vars)
    unset_optional = sorted(code_vars - set(configured) - set(PRODUCTION_VARS))

    print("=== ENV VAR VERIFICATION ===")
    print(f"Settings declare: {len(code_vars)} vars")
    print(f"Configured in {env_file.name} or environment: {len(set(configured) & code_vars)}")
    print("")
    if missing_required:
        print(f"MISSING FOR PRODUCTION ({len(missing_required)}):")
        for v in missing_required:
            print(f"  - {v}")
    else:
        print("All production vars are set.")
    if undeclared:
        print("")
        print(f"NOT DECLARED IN SETTINGS ({len(undeclared)}):")
        for v in undeclared:
            print(f"  - {v}")
    print("")
    if unset_optional:
        print(f"USING DEFAULTS ({len(unset_optional)}):")
        for v in unset_optional:
            print(f"  - {v}")
    return not missing_required


if __name__ == "__main__":
    raise SystemExit(0 if verify_environment() else 1)
