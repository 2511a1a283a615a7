#!/usr/bin/env python3
"""
Setup Verification Script

Checks configuration, the OpenDental API and the Anthropic key before the
scheduling agent is started.

Usage:
    python scripts/verify_setup.py
"""

import asyncio
import os
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Load environment variables
from dotenv import load_dotenv
load_dotenv()


def print_header(title: str) -> None:
    """Print section header."""
    print(f"\n{'='*60}")
    print(f" {title}")
    print(f"{'='*60}")


def print_result(name: str, success: bool, message: str = "") -> None:
    """Print check result."""
    status = "[PASS]" if success else "[FAIL]"
    color = "\033[92m" if success else "\033[91m"
    reset = "\033[0m"
    msg = f" - {message}" if message else ""
    print(f"  {color}{status}{reset} {name}{msg}")


def mask(value: str) -> str:
    return f"{value[:8]}...{value[-4:]}" if len(value) > 12 else "***"


def check_env_file() -> bool:
    """Check if .env file exists."""
    env_path = project_root / ".env"
    exists = env_path.exists()
    if not exists:
        print_result(".env file", False, "File not found. Copy .env.example to .env")
    else:
        print_result(".env file", True, "Found")
    return exists


def check_required_vars() -> dict[str, bool]:
    """Check required environment variables."""
    results = {}

    required = [
        ("OPENDENTAL_API_KEY", "Required for the OpenDental API"),
        ("ANTHROPIC_API_KEY", "Required for intent and slot extraction"),
    ]

    for var, description in required:
        value = os.getenv(var, "")

        if not value:
            print_result(var, False, f"Not set - {description}")
            results[var] = False
        elif value in ("your-api-key-here", "ODFHIR devkey/custkey"):
            print_result(var, False, "Still using placeholder value")
            results[var] = False
        else:
            print_result(var, True, f"Set ({mask(value)})")
            results[var] = True

    return results


def check_optional_vars() -> None:
    """Show effective optional settings."""
    from app.config import get_settings

    settings = get_settings()
    optional = [
        ("APP_ENV", settings.app_env),
        ("OPENDENTAL_API_BASE_URL", settings.opendental_api_base_url),
        ("OFFICE_TIMEZONE", settings.office_timezone or "(server local time)"),
        ("OFFICE_CONTEXT_TTL_SECONDS", settings.office_context_ttl_seconds),
        ("LOOKAHEAD_DAYS", settings.lookahead_days),
        ("MAX_WORKFLOW_STEPS", settings.max_workflow_steps),
        ("CLAUDE_INTENT_MODEL", settings.claude_intent_model),
    ]

    for var, value in optional:
        print_result(var, True, f"{value}")


async def check_opendental() -> bool:
    """Verify the OpenDental API answers with providers and operatories."""
    from app.core.scheduling.errors import GatewayUnavailable
    from app.core.scheduling.gateway import OpenDentalGateway

    try:
        async with OpenDentalGateway() as gateway:
            providers = await gateway.list_providers()
            operatories = await gateway.list_operatories()

        active = [p for p in providers if p.is_active]
        print_result(
            "OpenDental API",
            True,
            f"{len(active)} active providers, {len(operatories)} operatories",
        )
        if not active:
            print_result("Providers", False, "No active providers; bookings will use defaults")
        return True

    except GatewayUnavailable as e:
        print_result("OpenDental API", False, str(e)[:60])
        return False


async def check_anthropic() -> bool:
    """Verify Anthropic API key works."""
    from app.infra.claude import ClaudeClient, ClaudeClientError

    client = ClaudeClient()
    try:
        await client.generate(prompt="Hi", max_tokens=10, use_fallback_on_error=False)
        print_result("Anthropic API", True, "Key validated successfully")
        return True

    except ClaudeClientError as e:
        error_msg = str(e)
        if "rate" in error_msg.lower():
            print_result("Anthropic API", True, "Key valid (rate limited)")
            return True
        print_result("Anthropic API", False, error_msg[:50])
        return False

    finally:
        await client.close()


def check_dependencies() -> bool:
    """Check if required Python packages are installed."""
    required_packages = [
        "fastapi",
        "uvicorn",
        "pydantic",
        "pydantic_settings",
        "httpx",
        "anthropic",
    ]

    missing = []
    for package in required_packages:
        try:
            __import__(package)
        except ImportError:
            missing.append(package)

    if missing:
        print_result("Python packages", False, f"Missing: {', '.join(missing)}")
        return False
    else:
        print_result("Python packages", True, "All required packages installed")
        return True


async def main():
    """Run all verification checks."""
    print("\n" + "="*60)
    print(" Dental Scheduling Agent - Setup Verification")
    print("="*60)

    critical_failed = False

    print_header("Environment File")
    check_env_file()

    print_header("Python Dependencies")
    if not check_dependencies():
        print("\n  Install with: pip install -e .\n")
        return 1

    print_header("Required Environment Variables")
    var_results = check_required_vars()
    if not all(var_results.values()):
        critical_failed = True

    print_header("Effective Settings")
    check_optional_vars()

    print_header("Service Connections")

    if var_results.get("OPENDENTAL_API_KEY"):
        if not await check_opendental():
            critical_failed = True
    else:
        print_result("OpenDental API", False, "Skipped - OPENDENTAL_API_KEY not set")

    if var_results.get("ANTHROPIC_API_KEY"):
        if not await check_anthropic():
            critical_failed = True
    else:
        print_result("Anthropic API", False, "Skipped - ANTHROPIC_API_KEY not set")

    print_header("Summary")

    if critical_failed:
        print("\n  \033[91mCRITICAL: Some required checks failed.\033[0m")
        print("  Please fix the issues above before running the application.")
        print()
        return 1

    print("\n  \033[92mAll checks passed!\033[0m")
    print("  You can start the application with:")
    print("    uvicorn app.main:app --reload")
    print()
    return 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
