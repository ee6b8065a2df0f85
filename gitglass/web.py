from __future__ import annotations

import logging
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates

from gitglass.config import GitglassConfig
from gitglass.errors import GitglassError, InvalidInput, NotFound, RenderError
from gitglass.highlight import highlight
from gitglass.mirror import open_mirror
from gitglass.models import Redirect, TreeListing
from gitglass.renderer import commit_detail, list_recent_commits, raw_diff, resolve_path


logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"


def add_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFound)
    async def not_found_handler(_, exc: NotFound):
        logger.debug("Not found: %s", exc)
        return PlainTextResponse("not found", status_code=404)

    @app.exception_handler(InvalidInput)
    async def invalid_input_handler(_, exc: InvalidInput):
        logger.debug("Invalid input: %s", exc)
        return PlainTextResponse("invalid input", status_code=400)

    @app.exception_handler(RenderError)
    async def render_error_handler(_, exc: RenderError):
        logger.error("Render error: %s", exc, exc_info=exc)
        return PlainTextResponse("internal server error", status_code=500)

    @app.exception_handler(GitglassError)
    async def generic_error_handler(_, exc: GitglassError):
        logger.error("Unhandled gitglass error: %s", exc, exc_info=exc)
        return PlainTextResponse("internal server error", status_code=500)


def request_target(request: Request) -> str:
    """Path and query string of the request exactly as the client sent them."""
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else request.url.path
    query = request.scope.get("query_string", b"").decode("latin-1")
    return f"{path}?{query}" if query else path


def create_app(config: GitglassConfig) -> FastAPI:
    app = FastAPI(title="gitglass", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.config = config
    templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
    add_error_handlers(app)

    @app.get("/", response_class=HTMLResponse)
    def repo_list(request: Request):
        repos = [
            {"slug": slug, "title": repo.title, "upstream_url": repo.url}
            for slug, repo in sorted(config.repos.items())
        ]
        return templates.TemplateResponse(request, "repo_list.html", {"repos": repos})

    @app.get("/{slug}/", response_class=HTMLResponse)
    def repo_index(request: Request, slug: str):
        with open_mirror(config, slug) as mirror:
            commits = list_recent_commits(mirror)
            context = {
                "slug": slug,
                "repo": mirror.config,
                "head": mirror.head_id(),
                "branches": sorted(mirror.branches().items()),
                "tags": sorted(mirror.tags().items()),
                "recent_commits": commits,
            }
        return templates.TemplateResponse(request, "repo_index.html", context)

    @app.get("/{slug}/commit/{commit_id}/", response_class=HTMLResponse)
    def commit(request: Request, slug: str, commit_id: str):
        with open_mirror(config, slug) as mirror:
            summary, diff = commit_detail(mirror, commit_id)
            context = {
                "slug": slug,
                "repo": mirror.config,
                "commit": summary,
                "diff": highlight("patch", diff.decorated()),
            }
        return templates.TemplateResponse(request, "commit.html", context)

    @app.get("/{slug}/commit/{commit_id}/diff")
    def commit_raw(slug: str, commit_id: str):
        with open_mirror(config, slug) as mirror:
            text = raw_diff(mirror, commit_id)
        return PlainTextResponse(text, media_type="text/plain; charset=utf-8")

    @app.get("/{slug}/commit/{commit_id}/contents{tree_path:path}")
    def commit_tree(request: Request, slug: str, commit_id: str, tree_path: str):
        with open_mirror(config, slug) as mirror:
            result = resolve_path(mirror, commit_id, tree_path, request_target(request))

        if isinstance(result, Redirect):
            return RedirectResponse(result.location, status_code=307)
        context = {"slug": slug, "repo": config.repos[slug], "commit_id": result.commit_id}
        if isinstance(result, TreeListing):
            context.update({"path": result.path, "files": result.entries})
            return templates.TemplateResponse(request, "tree.html", context)
        if result.is_binary:
            return Response(result.content, media_type=result.mime_type)
        context.update({"path": result.path, "content": result.markup})
        return templates.TemplateResponse(request, "file.html", context)

    return app
