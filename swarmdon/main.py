import asyncio
from contextlib import asynccontextmanager
from urllib.parse import urlsplit

from fastapi import Depends, FastAPI, Form, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse, Response
from starlette.middleware.sessions import SessionMiddleware

from swarmdon import config
from swarmdon.adapter import normalize_push
from swarmdon.errors import NotFoundError, SwarmdonError, UpstreamError, ValidationError
from swarmdon.logger import logger
from swarmdon.poller import poll_loop
from swarmdon.relay import relay_push
from swarmdon.state import AppState
from swarmdon.store import account_key

HOME_PAGE = """<!doctype html>
<html>
  <head><title>Swarmdon</title></head>
  <body>
    <h1>Swarmdon</h1>
    <p>Post your Swarm checkins to Mastodon.</p>
    <form method="post" action="/">
      <input name="instance_url" placeholder="mastodon.social" required>
      <button type="submit">Connect</button>
    </form>
  </body>
</html>
"""


@asynccontextmanager
async def lifespan(app: FastAPI):
    state = getattr(app.state, "swarmdon", None)
    if state is None:
        state = AppState.from_config()
        app.state.swarmdon = state
    logger.info(f"Push endpoint: {config.BASE_URL}/swarm/push")

    task = None
    if config.POLLING_ENABLED:
        task = asyncio.create_task(poll_loop(state, config.POLL_INTERVAL_SECONDS))
    yield
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    await state.aclose()


app = FastAPI(title="Swarmdon", lifespan=lifespan)
app.add_middleware(
    SessionMiddleware,
    secret_key=config.SESSION_SECRET,
    max_age=7 * 24 * 3600,
    https_only=config.BASE_URL.startswith("https:"),
)


def get_state(request: Request) -> AppState:
    return request.app.state.swarmdon


@app.exception_handler(SwarmdonError)
async def swarmdon_error_handler(request: Request, exc: SwarmdonError):
    logger.warning(f"{request.url.path}: {exc}")
    return PlainTextResponse(str(exc), status_code=400)


@app.get("/health")
async def health(state: AppState = Depends(get_state)):
    return {
        "status": "ok",
        "accounts": len(await asyncio.to_thread(state.db.get_users)),
        "polling": config.POLLING_ENABLED,
    }


@app.post("/swarm/push")
async def handle_push(
    checkin: str = Form(""),
    secret: str = Form(""),
    state: AppState = Depends(get_state),
):
    # Always answer 200 with an empty body so Swarm never retries.
    logger.debug(f"Received push event: {checkin[:200]}")
    try:
        event = normalize_push(checkin, secret, config.SWARM_PUSH_SECRET)
        result = await relay_push(state, event)
    except ValidationError as e:
        logger.warning(f"Rejected push: {e}")
    except NotFoundError as e:
        logger.warning(f"Push for unknown account: {e}")
    except Exception as e:
        logger.error(f"Unable to relay push: {e!r}")
    else:
        logger.info(f"Push for checkin {event.id} {result.outcome.value}")
    return Response(status_code=200)


# ---------------------------------------------------------------------------
# Account linking
# ---------------------------------------------------------------------------

def normalize_instance_url(raw: str) -> str:
    raw = raw.strip()
    if "://" not in raw:
        raw = f"https://{raw}"
    parts = urlsplit(raw)
    if parts.scheme != "https" or not parts.hostname:
        raise ValidationError("instance_url must be an https URL")
    return f"https://{parts.netloc}"


@app.get("/", response_class=HTMLResponse)
async def get_home():
    return HOME_PAGE


@app.post("/")
async def post_home(
    request: Request,
    instance_url: str = Form(...),
    state: AppState = Depends(get_state),
):
    instance_url = normalize_instance_url(instance_url)
    registration = state.db.get_registration(instance_url)
    if registration is None:
        registration = await state.mastodon.register(
            instance_url, config.CLIENT_NAME, f"{config.BASE_URL}/mastodon/callback"
        )
        state.db.save_registration(registration)
        logger.info(f"Registered app on {instance_url}")

    request.session["instance_url"] = instance_url
    return RedirectResponse(state.mastodon.authorize_url(registration), status_code=303)


@app.get("/mastodon/callback")
async def get_mastodon_callback(
    request: Request,
    code: str = "",
    state: AppState = Depends(get_state),
):
    if not code:
        raise ValidationError("missing code")
    instance_url = request.session.get("instance_url")
    if not instance_url:
        raise ValidationError("missing instance_url cookie")
    registration = state.db.get_registration(instance_url)
    if registration is None:
        raise NotFoundError("missing registration")

    credential = await state.mastodon.complete(registration, code)
    mastodon_id = await state.mastodon.verify_credentials(credential)
    key = account_key(instance_url, mastodon_id)

    account = state.db.get_user(key)
    if account is None:
        state.db.create_user(instance_url, mastodon_id, credential)
        logger.info(f"Created account {key}")
    elif account.mastodon.token != credential.token:
        account.mastodon = credential
        state.db.put_user(key, account)

    request.session["user"] = key
    return RedirectResponse("/swarm", status_code=303)


def _session_user(request: Request, state: AppState) -> str:
    key = request.session.get("user")
    if not key:
        raise ValidationError("missing user cookie")
    if state.db.get_user(key) is None:
        raise NotFoundError("invalid user")
    return key


@app.get("/swarm")
async def get_swarm(request: Request, state: AppState = Depends(get_state)):
    _session_user(request, state)
    return RedirectResponse(state.swarm.get_authenticate_url(), status_code=303)


@app.get("/swarm/callback", response_class=PlainTextResponse)
async def get_swarm_callback(
    request: Request,
    code: str = "",
    state: AppState = Depends(get_state),
):
    if not code:
        raise ValidationError("missing code")
    key = _session_user(request, state)

    token = await state.swarm.get_access_token(code)
    swarm_user = await state.swarm.get_me(token)
    if not swarm_user.id:
        raise UpstreamError("Swarm returned a user without an id")
    state.db.link_swarm(key, swarm_user.id, token)
    logger.info(f"Linked Swarm user {swarm_user.id} to {key}")
    return "done!"
