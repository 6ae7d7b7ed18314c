#!/usr/bin/env python3
"""
Operator Authentication Helper

Use it to:
1. Generate the bcrypt hash for OPERATOR_PASSWORD_HASH
2. Login and get a JWT token
3. Check the token against an operator endpoint

Usage:
    python operator_auth.py hash-password <password>
    python operator_auth.py login <username> <password>
    python operator_auth.py test-jwt [token]
"""

import os
import sys
from typing import Optional

import httpx

from auditlog.auth import get_password_hash

API_BASE = os.environ.get("AUDIT_API_BASE", "http://localhost:8000")
TOKEN_FILE = "operator_token.txt"


def hash_password(password: str) -> None:
    """Print a bcrypt hash suitable for the OPERATOR_PASSWORD_HASH setting."""
    print(get_password_hash(password))


def login(username: str, password: str) -> Optional[str]:
    """
    Login and store the JWT token.

    Returns:
        The access token, or None on failure
    """
    print(f"\nLogging in as '{username}'...")

    resp = httpx.post(
        f"{API_BASE}/v1/auth/login",
        json={"username": username, "password": password},
        timeout=10
    )

    if resp.status_code != 200:
        print(f"Login failed: {resp.status_code}")
        print(f"   {resp.text}")
        return None

    data = resp.json()
    with open(TOKEN_FILE, "w") as f:
        f.write(data["access_token"])

    print("Login successful")
    print(f"   Expires in: {data['expires_in']} seconds")
    print(f"   Token saved to {TOKEN_FILE}")
    return data["access_token"]


def test_jwt(token: Optional[str] = None) -> None:
    """Call /v1/auth/me with the stored (or given) token."""
    if not token:
        try:
            with open(TOKEN_FILE, "r") as f:
                token = f.read().strip()
        except FileNotFoundError:
            print("No token found. Run 'login' first.")
            return

    resp = httpx.get(
        f"{API_BASE}/v1/auth/me",
        headers={"Authorization": f"Bearer {token}"},
        timeout=10
    )

    if resp.status_code == 200:
        user = resp.json()
        print(f"Authenticated as {user['username']} ({user['role']})")
    else:
        print(f"Failed: {resp.status_code} {resp.text}")


def main():
    if len(sys.argv) < 2:
        print(__doc__)
        return

    cmd = sys.argv[1].lower()

    if cmd == "hash-password":
        if len(sys.argv) < 3:
            print("Usage: operator_auth.py hash-password <password>")
            return
        hash_password(sys.argv[2])

    elif cmd == "login":
        if len(sys.argv) < 4:
            print("Usage: operator_auth.py login <username> <password>")
            return
        login(sys.argv[2], sys.argv[3])

    elif cmd == "test-jwt":
        token = sys.argv[2] if len(sys.argv) > 2 else None
        test_jwt(token)

    else:
        print(f"Unknown command: {cmd}")


if __name__ == "__main__":
    main()
