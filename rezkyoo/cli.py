"""Command-line interface for RezKyoo - HTTP client for the server API."""

import datetime as dt
import logging
import sys
import time
from typing import Any

import httpx

from rezkyoo.config import get_config, setup_logging

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 2.5
CUISINES = ["any", "steakhouse", "italian", "seafood", "asian", "mexican", "vegetarian"]

OUTCOME_LABELS = {
    "available": "Table available",
    "alternative_offered": "Offered another time",
    "credit_card_required": "Available, credit card required to hold",
    "left_message": "Left a voicemail",
    "opt_out": "Asked not to be called again",
    "no_reservation_line": "No reservation line",
    "machine_detected": "Answering machine, skipped",
    "other": "Unclear answer",
}


def merge_status(restaurants: list[dict[str, Any]], items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Attach live call data to the restaurants of a search response.

    Args:
        restaurants: Restaurants returned when the page was dialed
        items: Call items from the status endpoint

    Returns:
        One entry per restaurant, with "status" and "result" when a call exists
    """
    by_place = {item.get("placeId"): item for item in items}
    merged = []
    for restaurant in restaurants:
        live = by_place.get(restaurant.get("place_id") or restaurant.get("id"))
        entry = dict(restaurant)
        if live:
            entry.update(status=live.get("status"), result=live.get("result"), raw=live.get("raw"))
        merged.append(entry)
    return merged


def format_call_line(entry: dict[str, Any]) -> str:
    """One line describing a restaurant and where its call stands."""
    rating = entry.get("rating")
    header = f"{entry.get('name', 'Unknown')}"
    if rating is not None:
        header += f" ({rating}★, {entry.get('user_ratings_total', 0)} reviews)"

    status = entry.get("status")
    result = entry.get("result") or {}
    if status == "failed":
        return f"{header}: call failed - {result.get('summary', '')}".rstrip(" -")
    if status != "completed":
        return f"{header}: {status or 'pending'}..."

    outcome = result.get("outcome", "other")
    line = f"{header}: {OUTCOME_LABELS.get(outcome, outcome)}"
    if outcome == "alternative_offered" and result.get("alternative_time"):
        line += f" ({result['alternative_time']})"
    if result.get("summary"):
        line += f" - {result['summary']}"
    return line


class RezkyooCLI:
    """Command-line interface for RezKyoo - HTTP client."""

    def __init__(self) -> None:
        """Initialize the CLI."""
        self.config = get_config()
        setup_logging(self.config)
        logger.info("RezKyoo CLI initialized as HTTP client")

    def _ask(self, label: str, default: str = "") -> str:
        suffix = f" [{default}]" if default else ""
        answer = input(f"{label}{suffix}: ").strip()
        return answer or default

    def _prompt_search(self) -> dict[str, Any]:
        """Ask the user for a search."""
        print("\n" + "=" * 60)
        print("REZKYOO - Find a table by phone")
        print("=" * 60 + "\n")

        location = self._ask("Location", "near me")
        party_size = int(self._ask("Party size", "2"))
        date = self._ask("Date (YYYY-MM-DD)", dt.date.today().isoformat())
        asap = self._ask("Next available table? (y/n)", "n").lower().startswith("y")
        body: dict[str, Any] = {
            "location": location,
            "party_size": party_size,
            "date": date,
            "intent": "next_available" if asap else "specific_time",
        }
        if not asap:
            body["time"] = self._ask("Time (HH:MM)", "19:00")

        cuisine = self._ask(f"Cuisine ({', '.join(CUISINES)})", "any")
        notes = self._ask("Anything specific? (optional)")
        body["cuisine"] = cuisine
        if notes:
            body["craving"] = {"notes": notes}
        return body

    def _post(self, client: httpx.Client, path: str, body: dict[str, Any]) -> dict[str, Any] | None:
        response = client.post(f"{self.config.server_url}{path}", json=body)
        if response.status_code == 200:
            return response.json()

        is_json = response.headers.get("content-type", "").startswith("application/json")
        message = (response.json() if is_json else {}).get("message", response.text)
        print(f"\n⚠ {message}")
        return None

    def _poll(self, client: httpx.Client, page: dict[str, Any]) -> dict[str, Any] | None:
        """Poll a batch until every call has finished, printing changes."""
        batch_id = page["batchId"]
        print(f"\nCalling {len(page['restaurants'])} restaurants (batch {batch_id})...")
        if page.get("mapUrl"):
            print(f"Map: {page['mapUrl']}")

        last_lines: list[str] = []
        while True:
            response = client.get(f"{self.config.server_url}/status/{batch_id}")
            if response.status_code != 200:
                print("\n⚠ Could not retrieve batch status.")
                return None

            status = response.json()
            lines = [format_call_line(e) for e in merge_status(page["restaurants"], status["items"])]
            if lines != last_lines:
                print("\n" + "-" * 60)
                for line in lines:
                    print(f"  {line}")
                last_lines = lines

            if status["status"] == "completed":
                print("\n✓ All calls are complete.")
                return status
            time.sleep(POLL_INTERVAL_SECONDS)

    def run(self) -> None:
        """Run the CLI application."""
        try:
            body = self._prompt_search()
            with httpx.Client(timeout=120.0) as client:
                page = self._post(client, "/restaurants/search_and_call", body)
                while page:
                    status = self._poll(client, page)
                    if not status or not status.get("hasMore"):
                        break
                    if self._ask("Call more restaurants? (y/n)", "n").lower() != "y":
                        break
                    page = self._post(
                        client, "/restaurants/search_more", {"batchId": page["batchId"]}
                    )

        except KeyboardInterrupt:
            print("\n\nExiting RezKyoo. Goodbye!")
        except ValueError as e:
            print(f"\n⚠ Invalid input: {e}")
        except httpx.ConnectError:
            logger.exception("Cannot connect to server")
            print(f"\n⚠ Cannot connect to server at {self.config.server_url}")
            print("Make sure the server is running:")
            print("  rezkyoo-server")
        except httpx.TimeoutException:
            logger.exception("Request timed out")
            print("\n⚠ Request timed out. Please check the server logs.")


def main() -> None:
    """Main entry point for the CLI."""
    try:
        get_config()
    except Exception as e:
        print(f"Configuration error: {e}")
        print("\nPlease set the required environment variables.")
        print("Create a .env file with at minimum:")
        print("  OPENAI_API_KEY=your_key_here")
        sys.exit(1)

    cli = RezkyooCLI()
    cli.run()


if __name__ == "__main__":
    main()
