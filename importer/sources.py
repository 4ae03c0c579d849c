"""
The batch sources for each kind of job
"""

import datetime
from logging import getLogger

from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from gamebox.logging import GameboxLogger
from gamebox.models import Game, GameSession, Screenshot
from importer.client import Page, RAWGClient
from importer.config import importer_setting
from importer.downloads import AssetFetcher, screenshot_paths
from importer.engine import BatchSource, ItemOutcome
from importer.exceptions import ConfigurationError, RateLimitExceeded
from importer.models import ImportType
from importer.scoring import recalculate_session

logger = getLogger(__name__)
structured_logger = GameboxLogger.get_logger(__name__)


def first_name(entries):
    for entry in entries or []:
        if entry.get("name"):
            return entry["name"]
    return ""


def release_year(released):
    if not released:
        return None
    try:
        return int(released[:4])
    except ValueError:
        return None


class CatalogImportSource(BatchSource):
    """
    Walks the RAWG game listing, best rated first, and adds every game which
    is not in the catalog yet together with its first few screenshots.

    A game is skipped when its slug already exists or when it has no
    screenshots at all, since it could never be used in a round.
    """

    import_type = ImportType.FULL_IMPORT
    batch_fatal_errors = (RateLimitExceeded,)
    ordering = "-rating"

    def __init__(self, client=None, fetcher=None):
        self.client = client or RAWGClient.from_settings()
        self.fetcher = fetcher or AssetFetcher.from_settings()

    def default_options(self):
        return {
            "min_metacritic": importer_setting("DEFAULT_MIN_METACRITIC"),
            "screenshots_per_game": importer_setting("DEFAULT_SCREENSHOTS_PER_GAME"),
            "page_size": importer_setting("PAGE_SIZE"),
        }

    def listing_filters(self, progress):
        return {"min_metacritic": progress.options.get("min_metacritic")}

    def count_available(self, progress):
        return self.client.count_games(**self.listing_filters(progress))

    def fetch_page(self, progress, page):
        data = self.client.list_games(
            page=page,
            page_size=self.page_size(progress),
            ordering=self.ordering,
            **self.listing_filters(progress),
        )
        return Page.from_response(data)

    def item_key(self, item):
        return item.get("slug") or str(item.get("id"))

    def game_fields(self, item, details):
        return {
            "name": item["name"],
            "slug": item["slug"],
            "release_year": release_year(item.get("released")),
            "developer": first_name(details.get("developers")),
            "publisher": first_name(details.get("publishers")),
            "genres": [genre["name"] for genre in item.get("genres") or []],
            "platforms": [
                entry["platform"]["name"] for entry in item.get("platforms") or []
            ],
            "cover_image_url": item.get("background_image") or "",
            "metacritic": details.get("metacritic") or item.get("metacritic"),
            "rawg_id": item.get("id"),
        }

    def process_item(self, progress, item):
        """
        Fetch the game's details and screenshots, then write the game and its
        screenshots in one transaction. Nothing upstream is requested while
        the transaction is open.
        """
        slug = item["slug"]
        if Game.objects.filter(slug=slug).exists():
            return ItemOutcome.skipped("already in catalog")

        screenshots = self.client.list_screenshots(item["id"]).get("results") or []
        if not screenshots:
            return ItemOutcome.skipped("no screenshots")

        details = self.client.get_game(item["id"])

        limit = progress.options.get("screenshots_per_game") or importer_setting(
            "DEFAULT_SCREENSHOTS_PER_GAME"
        )
        stored = []
        failed = 0
        for index, screenshot in enumerate(screenshots[:limit], start=1):
            destination, public_url = screenshot_paths(slug, index)
            if not self.fetcher.fetch(screenshot["image"], destination):
                failed += 1
                structured_logger.warning(
                    "Screenshot could not be downloaded.",
                    event_code="screenshot_download_failed",
                    reason=f"Download of {screenshot['image']} failed",
                    reason_code="download_failed",
                    progress=progress,
                    game_slug=slug,
                    screenshot_index=index,
                )
                continue
            stored.append((index, public_url, screenshot))

        with transaction.atomic():
            game = Game.objects.create(**self.game_fields(item, details))
            Screenshot.objects.bulk_create(
                Screenshot(
                    game=game,
                    image_url=public_url,
                    difficulty=(index - 1) % 3 + 1,
                    width=screenshot.get("width"),
                    height=screenshot.get("height"),
                )
                for index, public_url, screenshot in stored
            )

        structured_logger.info(
            "Game imported.",
            event_code="game_imported",
            progress=progress,
            game=game,
            screenshots=len(stored),
        )
        return ItemOutcome.imported(
            assets_downloaded=len(stored), asset_failures=failed
        )


class NewReleaseSyncSource(CatalogImportSource):
    """
    Adds games released in the last few months, newest first. The date range
    is fixed when the job starts so every batch walks the same listing.
    """

    import_type = ImportType.SYNC_NEW_RELEASES
    ordering = "-released"

    def default_options(self):
        months_back = importer_setting("SYNC_MONTHS_BACK")
        return {**super().default_options(), "months_back": months_back}

    def build_options(self, **options):
        merged = super().build_options(**options)
        if not merged.get("dates"):
            merged["dates"] = release_window(merged["months_back"])
        return merged

    def listing_filters(self, progress):
        return {**super().listing_filters(progress), "dates": progress.options["dates"]}

    def game_fields(self, item, details):
        return {**super().game_fields(item, details), "last_synced_at": timezone.now()}


def release_window(months_back, today=None):
    """The RAWG ``dates`` filter covering the last ``months_back`` months"""
    today = today or timezone.localdate()
    month = today.month - months_back
    year = today.year
    while month < 1:
        month += 12
        year -= 1
    # Clamp to the last day of the target month, e.g. 31 August -> 28 February
    day = today.day
    while True:
        try:
            start = datetime.date(year, month, day)
            break
        except ValueError:
            day -= 1
    return f"{start.isoformat()},{today.isoformat()}"


def parse_boundary(value, name):
    if not value:
        return None
    try:
        parsed = parse_datetime(value) or datetime.datetime.fromisoformat(value)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid {name}: {value}") from exc
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


class ScoreRecalculationSource(BatchSource):
    """
    Rescores completed game sessions with the current scoring rules.

    Pages are as large as a batch, so a batch always ends on a page boundary
    and a dry run walks exactly the records a real run would. A dry run
    counts the sessions it would change without writing anything.
    """

    import_type = ImportType.RECALCULATE_SCORES

    def default_options(self):
        return {"dry_run": False}

    def build_options(self, **options):
        merged = super().build_options(**options)
        for name in ("start_date", "end_date"):
            boundary = parse_boundary(merged.get(name), name)
            if boundary is not None:
                merged[name] = boundary.isoformat()
        return merged

    def sessions(self, progress):
        queryset = GameSession.objects.filter(is_completed=True)
        start = parse_boundary(progress.options.get("start_date"), "start_date")
        end = parse_boundary(progress.options.get("end_date"), "end_date")
        if start is not None:
            queryset = queryset.filter(started_at__gte=start)
        if end is not None:
            queryset = queryset.filter(started_at__lte=end)
        return queryset.order_by("started_at", "pk")

    def page_size(self, progress):
        return progress.batch_size

    def count_available(self, progress):
        return self.sessions(progress).count()

    def fetch_page(self, progress, page):
        size = self.page_size(progress)
        offset = (page - 1) * size
        rows = list(self.sessions(progress)[offset : offset + size + 1])
        return Page(rows[:size], has_next=len(rows) > size)

    def item_key(self, session):
        return f"session-{session.pk}"

    def process_item(self, progress, session):
        result = recalculate_session(session, dry_run=progress.dry_run)
        if not result.changed:
            return ItemOutcome.skipped("score unchanged")
        return ItemOutcome.imported(
            reason="would update" if progress.dry_run else "updated",
            score_delta=result.delta,
        )


SOURCES = {
    ImportType.FULL_IMPORT.value: CatalogImportSource,
    ImportType.SYNC_NEW_RELEASES.value: NewReleaseSyncSource,
    ImportType.RECALCULATE_SCORES.value: ScoreRecalculationSource,
}


def source_for(import_type):
    try:
        source_class = SOURCES[import_type]
    except KeyError:
        raise ConfigurationError(f"Unknown import type: {import_type}") from None
    return source_class()
