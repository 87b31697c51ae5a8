from dataclasses import dataclass

from app.config import Settings
from app.db import MongoDB


@dataclass(frozen=True)
class AppContext:
    """
    Process-wide state handed to every route group.

    Built once at startup; the database handle inside it is the only
    resource shared between requests.
    """

    settings: Settings
    db: MongoDB

    @classmethod
    def from_settings(cls, settings: Settings) -> "AppContext":
        return cls(
            settings=settings,
            db=MongoDB(settings.mongodb_uri, settings.mongodb_db),
        )
