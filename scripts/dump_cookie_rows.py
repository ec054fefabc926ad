import argparse
from pathlib import Path

from cookie_recovery.errors import CookieRecoveryError
from cookie_recovery.utils.cookie_db import read_raw_cookies
from cookie_recovery.utils.domains import filter_by_domain


def main() -> None:
    parser = argparse.ArgumentParser(description="Dump raw Chromium cookie rows for inspection (never plaintext).")
    parser.add_argument("--cookies", default="Cookies", help="Path to the cookies SQLite DB.")
    parser.add_argument("--domain", default=None, help="Only rows matching this domain.")
    parser.add_argument("--names", default="", help="Comma separated cookie names to dump (default: all).")
    args = parser.parse_args()

    cookies_path = Path(args.cookies).resolve()
    if not cookies_path.exists():
        raise SystemExit(f"Cookies file not found: {cookies_path}")

    try:
        rows = read_raw_cookies(str(cookies_path))
    except CookieRecoveryError as e:
        raise SystemExit(str(e))

    if args.domain:
        rows = filter_by_domain(rows, args.domain)
    names = {name.strip() for name in args.names.split(",") if name.strip()}
    if names:
        rows = [row for row in rows if row.name in names]

    if not rows:
        print("No matching cookies.")
        return

    for row in rows:
        print("-" * 80)
        print(f"Name: {row.name}")
        print(f"Host: {row.domain}")
        print(f"Path: {row.path}")
        print(f"Expires: {row.expires}")
        print(f"Secure / HttpOnly / SameSite: {row.secure} / {row.http_only} / {row.same_site}")
        print(f"Value length: {len(row.value)}")
        print(f"Encrypted length: {len(row.encrypted_value)}")
        print(f"Version prefix: {row.encrypted_value[:3]!r}")
        print(f"Encrypted hex: {row.encrypted_value[:60].hex()}...")


if __name__ == "__main__":
    main()
