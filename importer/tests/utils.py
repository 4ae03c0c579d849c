import io

from PIL import Image

from gamebox.models import Game, GameSession, Guess
from importer.exceptions import UpstreamError
from importer.models import ImportProgress, ImportStatus, ImportType
from importer.sources import CatalogImportSource

SCREENSHOT_URL = "https://media.rawg.io/media/screenshots"


def create_progress(
    *,
    import_type=ImportType.FULL_IMPORT,
    status=ImportStatus.IN_PROGRESS,
    batch_size=100,
    options=None,
    **kwargs,
):
    if options is None:
        options = {"page_size": 40, "screenshots_per_game": 3, "min_metacritic": 70}
    progress = ImportProgress(
        import_type=import_type,
        status=status,
        batch_size=batch_size,
        options=options,
        **kwargs,
    )
    progress.save()
    return progress


def create_game(*, name="Portal 2", slug="portal-2", **kwargs):
    game = Game(name=name, slug=slug, **kwargs)
    game.save()
    return game


def create_session(*, guesses=(), is_completed=True, total_score=0, **kwargs):
    # guesses is a sequence of dicts of Guess field values
    session = GameSession(is_completed=is_completed, total_score=total_score, **kwargs)
    session.save()
    for guess in guesses:
        Guess.objects.create(session=session, **guess)
    return session


def image_bytes(image_format="JPEG", size=(8, 6)):
    buffer = io.BytesIO()
    Image.new("RGB", size, color=(40, 90, 160)).save(buffer, format=image_format)
    return buffer.getvalue()


def listing_entry(index):
    return {
        "id": index,
        "slug": f"game-{index}",
        "name": f"Game {index}",
        "released": "2015-05-19",
        "background_image": f"https://media.rawg.io/media/games/{index}.jpg",
        "metacritic": 80,
        "genres": [{"id": 4, "name": "Action"}, {"id": 5, "name": "RPG"}],
        "platforms": [{"platform": {"id": 4, "name": "PC"}}],
    }


class FakeRAWGClient:
    """
    In-memory stand-in for RAWGClient serving ``total`` numbered games, so
    engine tests do not need HTTP mocks for every request.
    """

    def __init__(
        self,
        total=0,
        screenshots_per_game=3,
        failing_details=(),
        without_screenshots=(),
    ):
        self.games = [listing_entry(index) for index in range(1, total + 1)]
        self.screenshots_per_game = screenshots_per_game
        self.failing_details = set(failing_details)
        self.without_screenshots = set(without_screenshots)
        self.pages_requested = []

    def count_games(self, min_metacritic=None, dates=None):
        return len(self.games)

    def list_games(
        self, page=1, page_size=40, ordering="-rating", min_metacritic=None, dates=None
    ):
        self.pages_requested.append(page)
        start = (page - 1) * page_size
        has_next = start + page_size < len(self.games)
        return {
            "count": len(self.games),
            "next": f"https://api.rawg.io/api/games?page={page + 1}"
            if has_next
            else None,
            "results": self.games[start : start + page_size],
        }

    def list_screenshots(self, game_id):
        if game_id in self.without_screenshots:
            return {"count": 0, "results": []}
        return {
            "count": self.screenshots_per_game,
            "results": [
                {
                    "id": game_id * 100 + number,
                    "image": f"{SCREENSHOT_URL}/{game_id}-{number}.jpg",
                    "width": 1920,
                    "height": 1080,
                }
                for number in range(1, self.screenshots_per_game + 1)
            ],
        }

    def get_game(self, game_id):
        if game_id in self.failing_details:
            raise UpstreamError(
                "RAWG API error: 500 Internal Server Error", status_code=500
            )
        return {
            "id": game_id,
            "metacritic": 85,
            "developers": [{"name": "Valve Software"}],
            "publishers": [{"name": "Electronic Arts"}, {"name": "Valve"}],
        }


class FakeFetcher:
    def __init__(self, failing_urls=()):
        self.failing_urls = set(failing_urls)
        self.fetched = []

    def fetch(self, url, destination):
        self.fetched.append((url, destination))
        return url not in self.failing_urls


def catalog_source(total=0, **client_kwargs):
    return CatalogImportSource(
        client=FakeRAWGClient(total=total, **client_kwargs), fetcher=FakeFetcher()
    )
