import argparse

from cookie_recovery.utils.browser import list_profiles
from cookie_recovery.utils.platforms import BROWSER_FAMILIES, current_platform, get_browser_family


def main() -> None:
    parser = argparse.ArgumentParser(description="List the profiles of a Chromium-based browser.")
    parser.add_argument("--browser", default="edge", help=f"One of: {', '.join(BROWSER_FAMILIES)}")
    args = parser.parse_args()

    try:
        family = get_browser_family(args.browser)
    except ValueError as e:
        raise SystemExit(str(e))

    user_data = current_platform().user_data_dir(family)
    if not user_data.exists():
        print(f"{family.display_name} User Data directory not found at: {user_data}")
        return

    print(f"Checking {family.display_name} User Data at: {user_data}")
    profiles = list_profiles(user_data)
    if not profiles:
        print("No profiles found.")
        return

    print(f"\nFound the following {family.display_name} profiles:")
    print("-" * 63)
    print(f"{'Profile Name (In Browser)':<30} | {'Folder Name (Use in config)':<30}")
    print("-" * 63)
    for folder_name, profile_name in profiles:
        print(f"{profile_name:<30} | {folder_name:<30}")
    print("-" * 63)


if __name__ == "__main__":
    main()
