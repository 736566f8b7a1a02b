from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from app.client.navigation import PUBLIC_ROUTES, NavigationResolver


class RenderKind(str, Enum):
    SKELETON = 'skeleton'
    CHILDREN = 'children'
    NOTHING = 'nothing'


@dataclass(frozen=True)
class Skeleton:
    name: str
    show_header: bool = False


@dataclass(frozen=True)
class GuardOutcome:
    render: RenderKind
    redirect: Optional[str] = None
    skeleton: Optional[Skeleton] = None


def skeleton_for_path(path: str) -> Skeleton:
    if path == '/dashboard':
        return Skeleton('dashboard')
    if path == '/charts':
        return Skeleton('charts')
    if path in PUBLIC_ROUTES:
        return Skeleton('page', show_header=False)
    if path.startswith('/profile'):
        return Skeleton('profile')
    return Skeleton('page', show_header=True)


class RouteGuard:
    """Applies the navigation decision for every page render"""

    def __init__(self, resolver: NavigationResolver):
        self.resolver = resolver

    def render(self, path: str, query: Optional[Mapping[str, str]] = None) -> GuardOutcome:
        redirect = self.resolver.redirect_if_needed(path, query)

        if self.resolver.is_loading:
            return GuardOutcome(RenderKind.SKELETON, redirect=redirect, skeleton=skeleton_for_path(path))

        if self.resolver.should_show_page(path, query):
            return GuardOutcome(RenderKind.CHILDREN, redirect=redirect)

        # Redirect in flight
        return GuardOutcome(RenderKind.NOTHING, redirect=redirect)
