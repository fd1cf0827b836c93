from __future__ import annotations

import os
from enum import Enum

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, PackageLoader, TemplateError, select_autoescape

from .runtime import RouteSnapshot


class PageKind(str, Enum):
    LOADING = "loadingPage.html"
    ERROR = "errorPage.html"


class PageRenderError(Exception):
    pass


class PageRenderer:
    """Renders the loading and error pages.

    Templates in ``template_dir`` override the bundled ones file by file.
    """

    def __init__(self, template_dir: str | None = None):
        loaders = []
        if template_dir and os.path.isdir(template_dir):
            loaders.append(FileSystemLoader(template_dir))
        loaders.append(PackageLoader("wakegate", "templates"))
        self.env = Environment(loader=ChoiceLoader(loaders), autoescape=select_autoescape(["html"]))

    @staticmethod
    def context(snap: RouteSnapshot) -> dict[str, object]:
        return {
            "route_id": snap.route_id,
            "timeout_minutes": snap.inactivity_timeout_minutes,
            "current_retries": snap.current_retries,
            "max_retries": snap.max_retries,
        }

    def render(self, kind: PageKind, snap: RouteSnapshot) -> str:
        try:
            return self.env.get_template(kind.value).render(**self.context(snap))
        except TemplateError as e:
            raise PageRenderError(f"Could not render {kind.value}: {e}") from e
