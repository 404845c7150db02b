import traceback
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from shodh import auth, config
from shodh.backend import Backend, create_backend
from shodh.grader import Grader, RandomGrader
from shodh.routers import contest
from shodh.utils import setup_logging

logger = setup_logging(__name__)

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))


def create_app(backend: Backend = None, grader: Grader = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.backend is None:
            app.state.backend = create_backend()
        seed_engine = getattr(app.state.backend, "engine", None)
        if config.SEED_DEMO and seed_engine is not None:
            from shodh.db import seed_problems
            seed_problems(seed_engine)
        logger.info("Using %s", type(app.state.backend).__name__)
        yield

    app = FastAPI(title="Shodh-a-Code", lifespan=lifespan)
    app.state.backend = backend
    app.state.grader = grader or RandomGrader()

    app.include_router(auth.router)
    app.include_router(contest.router)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Global exception: %s\n%s", exc, traceback.format_exc())
        return HTMLResponse(f"Internal Server Error: {str(exc)}", status_code=500)

    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request, session=Depends(auth.get_current_session)):
        if session is not None:
            return RedirectResponse(url=f"/contest/{config.DEFAULT_CONTEST_ID}", status_code=303)
        return templates.TemplateResponse(request, "index.html", {})

    return app


app = create_app()


def run():
    import uvicorn

    uvicorn.run("shodh.main:app", host=config.HOST, port=config.PORT, log_level="info")


if __name__ == "__main__":
    run()
