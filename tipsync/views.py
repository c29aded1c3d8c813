"""
Per-screen state objects.

Each screen kind has one state class and one constructor function,
registered in VIEW_FACTORIES. Screens ask create_view() for their state
instead of building it from the repositories themselves.
"""

from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional, Union

from .errors import Result
from .live import LiveQuery
from .types import Author, Tip, User

if TYPE_CHECKING:
    from .app import TipsApp


class ViewKind(str, Enum):
    HOME = "home"
    PROFILE = "profile"


class HomeView:
    """All tips, optionally filtered to one author."""

    def __init__(self, app: "TipsApp"):
        self._tips = app.tips
        self._all = app.tips.observe_active()
        self.selected_author_id: Optional[str] = None

    def filter_by_author(self, author_id: Optional[str]) -> None:
        self.selected_author_id = author_id or None

    def clear_filter(self) -> None:
        self.selected_author_id = None

    @property
    def is_filter_active(self) -> bool:
        return self.selected_author_id is not None

    @property
    def tips(self) -> list[Tip]:
        tips = self._all.value
        if self.selected_author_id is None:
            return tips
        return [t for t in tips if t.author_id == self.selected_author_id]

    @property
    def authors(self) -> list[Author]:
        return self._tips.list_authors()

    @property
    def selected_author(self) -> Optional[Author]:
        if self.selected_author_id is None:
            return None
        for author in self.authors:
            if author.id == self.selected_author_id:
                return author
        return None

    def live_tips(self) -> LiveQuery:
        return self._all

    def sync(self) -> Result:
        return self._tips.trigger_sync()


class ProfileView:
    """The current user and the tips they wrote."""

    def __init__(self, app: "TipsApp"):
        self._users = app.users
        self._tips = app.tips

    @property
    def user(self) -> Optional[User]:
        return self._users.get_current_user_profile()

    @property
    def tips(self) -> list[Tip]:
        user = self.user
        if user is None:
            return []
        return self._tips.observe_by_author(user.id).value

    def refresh_count(self) -> Result:
        return self._users.refresh_tips_count()


View = Union[HomeView, ProfileView]

VIEW_FACTORIES: dict[ViewKind, Callable[["TipsApp"], View]] = {
    ViewKind.HOME: HomeView,
    ViewKind.PROFILE: ProfileView,
}


def create_view(kind: ViewKind, app: "TipsApp") -> View:
    """Build the state object for a screen kind."""
    try:
        factory = VIEW_FACTORIES[ViewKind(kind)]
    except (KeyError, ValueError):
        raise ValueError(f"Unknown view kind: {kind!r}") from None
    return factory(app)
