import argparse
import dataclasses

from cookie_recovery.config import ExtractionSettings, is_debug_mode, load_config
from cookie_recovery.errors import ExtractionFailed
from cookie_recovery.extractor import get_cookies_for_domain
from cookie_recovery.logger import setup_logging
from cookie_recovery.models import ExtractionEvent


def print_event(event: ExtractionEvent) -> None:
    print(f"   [{event.kind.value}] {event.message}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Recover decrypted cookies for a domain from a local browser.")
    parser.add_argument("domain", help="Domain or URL, e.g. https://www.example.com/")
    parser.add_argument("--config", default=None, help="Path to config.conf.")
    parser.add_argument("--browser", default=None, help="Override [Browser] name.")
    parser.add_argument("--profile", default=None, help="Override [Browser] profile.")
    parser.add_argument("--debug-protocol", action="store_true", help="Prefer the remote debugging protocol.")
    parser.add_argument("--auto-launch", action="store_true", help="Allow closing and relaunching the browser.")
    parser.add_argument("--show-values", action="store_true", help="Print value previews instead of lengths.")
    args = parser.parse_args()

    config = load_config(args.config)
    setup_logging(is_debug_mode(config))
    settings = ExtractionSettings.from_config(config)
    overrides = {key: value for key, value in (("browser", args.browser), ("profile", args.profile)) if value}
    if overrides:
        settings = dataclasses.replace(settings, **overrides)

    try:
        cookies = get_cookies_for_domain(
            args.domain,
            want_debug=args.debug_protocol,
            allow_auto_launch=args.auto_launch,
            settings=settings,
            on_event=print_event,
        )
    except ExtractionFailed as e:
        raise SystemExit(f"\n{e}")

    if not cookies:
        print("No cookies found for this domain.")
        return

    for cookie in cookies:
        if args.show_values:
            shown = (cookie.value[:60] + "...") if len(cookie.value) > 60 else cookie.value
        else:
            shown = f"<{len(cookie.value)} chars>"
        print(f"{cookie.domain}\t{cookie.path}\t{cookie.name}: {shown}")


if __name__ == "__main__":
    main()
