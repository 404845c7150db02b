import json
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from shodh import config
from shodh.auth import COOKIE_NAME, FLASH_COOKIE, get_backend, read_flash
from shodh.backend import Backend
from shodh.contest import ContestView
from shodh.utils import setup_logging

logger = setup_logging(__name__)

router = APIRouter(prefix="/contest", tags=["contest"])
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))


@router.get("/{contest_id}", response_class=HTMLResponse)
async def contest_page(contest_id: str, request: Request, backend: Backend = Depends(get_backend)):
    notifications = []
    view = ContestView(
        backend,
        contest_id,
        request.cookies.get(COOKIE_NAME),
        navigate=lambda path: None,
        notify=notifications.append,
        grader=request.app.state.grader,
    )
    try:
        mounted = await view.mount(poll=False)
    finally:
        await view.unmount()
    if not mounted:
        return RedirectResponse(url=view.redirected_to or config.AUTH_PATH, status_code=303)

    flash = read_flash(request)
    if flash is not None:
        notifications.insert(0, flash)
    response = templates.TemplateResponse(request, "contest.html", {
        "state": view.snapshot(),
        "notifications": notifications,
        "languages": config.LANGUAGES,
        "default_language": config.DEFAULT_LANGUAGE,
        "poll_interval": config.POLL_INTERVAL_SECONDS,
    })
    if FLASH_COOKIE in request.cookies:
        response.delete_cookie(key=FLASH_COOKIE)
    return response


class LiveChannel:
    """Pushes a ContestView's state, toasts and redirects down one WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.closed = False

    async def send(self, message: dict):
        if self.closed:
            return
        await self.websocket.send_json(jsonable_encoder(message))

    async def navigate(self, path: str):
        await self.send({"type": "navigate", "to": path})
        await self.close()

    async def notify(self, notification):
        await self.send({"type": "notification", **notification.to_dict()})

    async def state(self, view: ContestView):
        await self.send({"type": "state", "state": view.snapshot()})

    async def close(self):
        if not self.closed:
            self.closed = True
            await self.websocket.close()


async def _receive_message(websocket: WebSocket) -> Optional[dict]:
    text = await websocket.receive_text()
    try:
        message = json.loads(text)
    except ValueError:
        return None
    return message if isinstance(message, dict) else None


@router.websocket("/{contest_id}/live")
async def contest_live(websocket: WebSocket, contest_id: str):
    await websocket.accept()
    channel = LiveChannel(websocket)
    app = websocket.app
    view = ContestView(
        app.state.backend,
        contest_id,
        websocket.cookies.get(COOKIE_NAME),
        navigate=channel.navigate,
        notify=channel.notify,
        on_change=channel.state,
        grader=app.state.grader,
    )
    try:
        if not await view.mount():
            return
        while not channel.closed:
            message = await _receive_message(websocket)
            if message is None:
                await channel.send({"type": "error", "detail": "messages must be JSON objects"})
                continue
            kind = message.get("type")
            if kind == "select":
                view.select_problem(message.get("problem_id"))
                await channel.state(view)
            elif kind == "submit":
                await view.submit(
                    str(message.get("code") or ""), str(message.get("language") or config.DEFAULT_LANGUAGE)
                )
                await channel.state(view)
            elif kind == "signout":
                await view.sign_out()
            else:
                await channel.send({"type": "error", "detail": f"unknown message type {kind!r}"})
    except WebSocketDisconnect:
        logger.info("Live view for contest %s disconnected", contest_id)
    finally:
        await view.unmount()
