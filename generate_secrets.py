#!/usr/bin/env python3
"""
Generate the CRON_SECRET used to protect settlement and sync endpoints
"""

import secrets


def generate_secrets():
    print("🔐 Generating secrets for NHL Pick'em...")
    print("=" * 50)

    print(f"CRON_SECRET={secrets.token_urlsafe(32)}")

    print("=" * 50)
    print("📝 Copy this value to your .env file and to your cron caller")
    print("   (send it as 'Authorization: Bearer <secret>')")
    print("⚠️  Keep it secure and never commit it to version control!")


if __name__ == "__main__":
    generate_secrets()
