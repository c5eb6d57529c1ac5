import time
import asyncio
import logging
from uuid import uuid4
from typing import Optional, List, Dict, Any

from fastapi import FastAPI, Request, Depends, Response, HTTPException
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from itsdangerous import BadSignature, TimestampSigner
from pydantic import BaseModel, Field, constr

import settings
from auth_context import AuthContext
from auth_local import LocalAuth, protected_role, sweep_sessions
from funnel_config import FunnelConfigStore, FunnelConfig, analytics_summary
from funnel_flow import FunnelFlow, FIRST_PAGE_URL
from identity import IdentityService, IdentityError, PENDING, DENIED
from pages import (
    render_ad_page,
    render_download_page,
    render_login,
    render_loading,
    render_message,
    render_console,
    render_user_dashboard,
)
from remote_data import ShortLinks, UserDataAPI, UserManagement, DataAccessError, ShortCodeTaken
from storage import Database, KeyValueStore, SHARED_SCOPE, session_scope

settings.setup_logging()
logger = logging.getLogger(__name__)

db = Database(settings.DB_PATH)
logger.info(f"DB_PATH={settings.DB_PATH}")

funnel_store = FunnelConfigStore(KeyValueStore(db, SHARED_SCOPE))
identity = IdentityService(db)
short_links = ShortLinks(db)
user_data = UserDataAPI(db, short_links)
user_management = UserManagement(db)
client_signer = TimestampSigner(settings.SECRET_KEY, salt="client-id")

LOGIN_ATTEMPTS: Dict[str, List[float]] = {}
LOGIN_LOCK = asyncio.Lock()
BACKGROUND_TASKS: List[asyncio.Task] = []

NO_STORE = {"Cache-Control": "no-store, no-cache, must-revalidate, max-age=0", "Pragma": "no-cache", "Expires": "0"}
CONSOLE_HOME = {"admin": "/admin", "developer": "/developer"}

app = FastAPI(docs_url=None, redoc_url=None)
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global Error: {exc}", exc_info=True)
    if isinstance(exc, HTTPException):
        if request.url.path.startswith("/api/"):
            return JSONResponse({"error": getattr(exc, "detail", "Error")}, status_code=exc.status_code)
        return HTMLResponse(content=f"<h1>{getattr(exc, 'detail', 'Error')}</h1>", status_code=exc.status_code)
    if request.url.path.startswith("/api/"):
        return JSONResponse({"error": "Internal Server Error"}, status_code=500)
    return HTMLResponse(content="<h1>System Error</h1>", status_code=500)


@app.middleware("http")
async def client_identity(request: Request, call_next):
    raw = request.cookies.get(settings.CLIENT_COOKIE)
    client_id = None
    if raw:
        try:
            client_id = client_signer.unsign(raw).decode()
        except BadSignature:
            client_id = None
    is_new = client_id is None
    if is_new:
        client_id = uuid4().hex
    request.state.client_id = client_id
    response = await call_next(request)
    if is_new:
        response.set_cookie(
            settings.CLIENT_COOKIE,
            client_signer.sign(client_id).decode(),
            httponly=True,
            secure=settings.COOKIE_SECURE,
            max_age=settings.CLIENT_COOKIE_MAX_AGE,
            samesite="lax",
            path="/",
        )
    return response


class LoginPayload(BaseModel):
    username: str = ""
    password: str = ""


class AdPayload(BaseModel):
    title: constr(min_length=1)
    image_url: constr(min_length=1)
    link_url: constr(min_length=1)
    assigned_page: int


class AdUpdatePayload(BaseModel):
    id: str
    title: Optional[str] = None
    image_url: Optional[str] = None
    link_url: Optional[str] = None
    assigned_page: Optional[int] = None


class AdDeletePayload(BaseModel):
    id: str


class SettingsPayload(BaseModel):
    countdowns: Dict[int, int] = {}
    software_name: Optional[str] = None
    download_url: Optional[str] = None


class ConfigSavePayload(BaseModel):
    config: Dict[str, Any]
    version: Optional[int] = None


class ImportPayload(BaseModel):
    text: str


class ShortLinkPayload(BaseModel):
    url: str
    short_code: Optional[str] = None


class DeletePayload(BaseModel):
    id: int


class RolePayload(BaseModel):
    user_id: int
    role: str


class UserDataUpdatePayload(BaseModel):
    user_id: int
    updates: Dict[str, Any]


class SignUpPayload(BaseModel):
    email: str = ""
    password: str = ""
    username: Optional[str] = None


class SignInPayload(BaseModel):
    email: str = ""
    password: str = ""


class UserAd(BaseModel):
    id: str
    title: str
    imageUrl: str = ""
    targetUrl: str = ""
    isActive: bool = True
    createdAt: str = ""


class UserAdsPayload(BaseModel):
    ads: List[UserAd]


class CountdownPayload(BaseModel):
    countdown: int


class UserAnalyticsPayload(BaseModel):
    totalClicks: int = 0
    totalViews: int = 0
    popularLinks: List[Dict[str, Any]] = Field(default_factory=list)
    adPerformance: List[Dict[str, Any]] = Field(default_factory=list)


async def session_sweep_task():
    while True:
        await asyncio.sleep(settings.SESSION_SWEEP_SECONDS)
        try:
            await sweep_sessions(db)
        except Exception as e:
            logger.error(f"Session sweep error: {e}")


@app.on_event("startup")
async def startup():
    await db.init_db()
    BACKGROUND_TASKS.append(asyncio.create_task(session_sweep_task()))


@app.on_event("shutdown")
async def shutdown():
    for task in BACKGROUND_TASKS:
        task.cancel()
    BACKGROUND_TASKS.clear()


def _get_client_ip(request: Request) -> str:
    return (
        request.headers.get("CF-Connecting-IP")
        or request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
        or (request.client.host if request.client else "127.0.0.1")
        or "127.0.0.1"
    )


def local_auth(request: Request) -> LocalAuth:
    return LocalAuth.for_client(db, request.state.client_id)


def funnel_flow(request: Request) -> FunnelFlow:
    return FunnelFlow(funnel_store, KeyValueStore(db, session_scope(request.state.client_id)))


def _user_token(request: Request) -> str:
    return request.headers.get("x-token") or request.cookies.get(settings.USER_SESSION_COOKIE) or ""


async def console_context(request: Request) -> AuthContext:
    auth = local_auth(request)
    ctx = await auth.context()
    if ctx.authenticated:
        await auth.update_last_activity()
    return ctx


async def user_context(request: Request) -> AuthContext:
    decision, ctx = await identity.check(_user_token(request), "user")
    if decision == PENDING:
        raise HTTPException(status_code=503, detail="Session is still loading, retry shortly")
    return ctx


def _console_denied(ctx: AuthContext, *roles: str) -> Optional[JSONResponse]:
    if not ctx.authenticated:
        return JSONResponse({"error": "Unauthorized"}, 401)
    if not any(ctx.can(r) for r in roles):
        return JSONResponse({"error": "Forbidden"}, 403)
    return None


def _user_denied(ctx: AuthContext, role: str = "user") -> Optional[JSONResponse]:
    if not ctx.authenticated:
        return JSONResponse({"error": "Unauthorized"}, 401)
    if not ctx.can(role):
        return JSONResponse({"error": "Forbidden"}, 403)
    return None


def _parse_page_id(raw: str) -> Optional[int]:
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


def _config_payload(config: FunnelConfig) -> Dict[str, Any]:
    return config.model_dump(by_alias=True)


# ---------------------------------------------------------------- funnel


@app.get("/")
async def root_redirect():
    return RedirectResponse(FIRST_PAGE_URL, status_code=302)


@app.get("/ad/{page_id}")
async def ad_page(page_id: str, request: Request):
    pid = _parse_page_id(page_id)
    page = await funnel_flow(request).enter_page(pid) if pid is not None else None
    if page is None:
        return RedirectResponse(FIRST_PAGE_URL, status_code=302)
    return HTMLResponse(render_ad_page(page, page.countdown), headers=NO_STORE)


@app.get("/ad/{page_id}/click/{ad_id}")
async def ad_click(page_id: str, ad_id: str, request: Request):
    pid = _parse_page_id(page_id)
    target = await funnel_flow(request).click_ad(pid, ad_id) if pid is not None else None
    if not target:
        return RedirectResponse(FIRST_PAGE_URL if pid is None else f"/ad/{pid}", status_code=302)
    return RedirectResponse(target, status_code=302)


@app.post("/ad/{page_id}/next")
async def ad_next(page_id: str, request: Request):
    pid = _parse_page_id(page_id)
    if pid is None:
        return RedirectResponse(FIRST_PAGE_URL, status_code=303)
    url, remaining = await funnel_flow(request).next_step(pid)
    if url is None:
        return HTMLResponse(
            render_message("Please Wait", f"{remaining} seconds remaining before you can continue.", f"/ad/{pid}", "Back"),
            status_code=425,
        )
    return RedirectResponse(url, status_code=303)


@app.get("/api/funnel/{page_id}/status")
async def funnel_status(page_id: str, request: Request):
    pid = _parse_page_id(page_id)
    flow = funnel_flow(request)
    timer = await flow.countdown(pid) if pid is not None else None
    if timer is None:
        return JSONResponse({"error": "Unknown page"}, 404)
    url, _ = await flow.next_step(pid)
    return {
        "page": pid,
        "countdown": timer.seconds,
        "remaining": timer.remaining,
        "complete": timer.complete,
        "progress": round(timer.progress, 2),
        "next": url,
    }


@app.get("/download")
async def download_page(request: Request):
    config = await funnel_flow(request).enter_download()
    return HTMLResponse(render_download_page(config), headers=NO_STORE)


@app.post("/download")
async def download_start(request: Request):
    url = await funnel_flow(request).download()
    return RedirectResponse(url, status_code=303)


@app.get("/s/{code}")
async def short_link_redirect(code: str):
    destination = await short_links.resolve_short_link(code)
    if not destination:
        return HTMLResponse(render_message("Error", "Short link not found"), status_code=404)
    return RedirectResponse(destination, status_code=302)


# ---------------------------------------------------------------- hardcoded consoles


@app.get("/login")
async def login_page(request: Request):
    auth = local_auth(request)
    if await auth.is_authenticated():
        role = await auth.get_user_role()
        if role in CONSOLE_HOME:
            return RedirectResponse(CONSOLE_HOME[role], status_code=302)
    await auth.clear_all_cache()
    return HTMLResponse(render_login("/api/auth/login", "Admin Login"), headers=NO_STORE)


@app.post("/api/auth/login")
async def api_login(payload: LoginPayload, request: Request):
    ip_addr = _get_client_ip(request)
    now_ts = time.time()
    async with LOGIN_LOCK:
        arr = [ts for ts in LOGIN_ATTEMPTS.get(ip_addr, []) if now_ts - ts < settings.LOGIN_WINDOW]
        if len(arr) >= settings.LOGIN_MAX_ATTEMPTS:
            return JSONResponse({"error": "Too many attempts, try again later"}, 429)
        LOGIN_ATTEMPTS[ip_addr] = arr

    user = await local_auth(request).login(payload.username, payload.password)
    if not user:
        async with LOGIN_LOCK:
            arr = [ts for ts in LOGIN_ATTEMPTS.get(ip_addr, []) if now_ts - ts < settings.LOGIN_WINDOW]
            arr.append(now_ts)
            LOGIN_ATTEMPTS[ip_addr] = arr
        return JSONResponse({"error": "Invalid username or password"}, 401)

    async with LOGIN_LOCK:
        LOGIN_ATTEMPTS.pop(ip_addr, None)
    return {"status": "ok", "user": user, "redirect": CONSOLE_HOME.get(user["role"], "/login")}


@app.post("/api/auth/logout")
async def api_logout(request: Request):
    await local_auth(request).logout()
    return {"status": "ok"}


@app.get("/api/auth/check")
async def check_auth(request: Request):
    auth = local_auth(request)
    if not await auth.is_authenticated():
        return {"status": "guest"}
    return {"status": "authenticated", "user": await auth.get_current_user()}


@app.post("/logout")
async def logout_form(request: Request):
    await local_auth(request).logout()
    return RedirectResponse("/login", status_code=303)


async def _console_page(request: Request, title: str):
    role = protected_role(request.url.path)
    auth = local_auth(request)
    if not await auth.is_authenticated():
        return RedirectResponse("/login", status_code=302)
    if not await auth.has_role(role):
        logger.info(f"Role {await auth.get_user_role()} not allowed on {request.url.path}")
        await auth.logout()
        return RedirectResponse("/login", status_code=302)
    await auth.update_last_activity()
    record = await auth.get_current_user() or {}
    config = await funnel_store.load()
    body = render_console(title, str(record.get("username") or ""), analytics_summary(config), config, await short_links.list_short_links())
    return HTMLResponse(body, headers=NO_STORE)


@app.get("/admin")
async def admin_dashboard(request: Request):
    return await _console_page(request, "Admin Dashboard")


@app.get("/developer")
async def developer_dashboard(request: Request):
    return await _console_page(request, "Developer Dashboard")


@app.get("/api/admin/config")
async def get_config(ctx: AuthContext = Depends(console_context)):
    denied = _console_denied(ctx, "admin", "developer")
    if denied:
        return denied
    config, version = await funnel_store.load_versioned()
    return {"config": _config_payload(config), "version": version}


@app.post("/api/admin/config/save")
async def save_config(payload: ConfigSavePayload, ctx: AuthContext = Depends(console_context)):
    denied = _console_denied(ctx, "admin", "developer")
    if denied:
        return denied
    try:
        config = FunnelConfig.model_validate(payload.config)
    except ValueError as e:
        return JSONResponse({"error": f"Invalid configuration: {e}"}, 400)
    if not await funnel_store.save(config, payload.version):
        return JSONResponse({"error": "Configuration changed since it was loaded"}, 409)
    return {"status": "ok"}


@app.get("/api/admin/config/export")
async def export_config(ctx: AuthContext = Depends(console_context)):
    denied = _console_denied(ctx, "admin", "developer")
    if denied:
        return denied
    return Response(
        content=await funnel_store.export(),
        media_type="application/json",
        headers={"Content-Disposition": f"attachment; filename=ad-funnel-config-{int(time.time())}.json"},
    )


@app.post("/api/admin/config/import")
async def import_config(payload: ImportPayload, ctx: AuthContext = Depends(console_context)):
    denied = _console_denied(ctx, "admin", "developer")
    if denied:
        return denied
    if not await funnel_store.import_config(payload.text):
        return JSONResponse({"error": "Failed to import configuration. Please check the JSON format."}, 400)
    return {"status": "ok"}


@app.post("/api/admin/config/reset")
async def reset_config(ctx: AuthContext = Depends(console_context)):
    denied = _console_denied(ctx, "admin", "developer")
    if denied:
        return denied
    await funnel_store.reset()
    return {"status": "ok"}


@app.get("/api/admin/ads")
async def list_ads(ctx: AuthContext = Depends(console_context)):
    denied = _console_denied(ctx, "admin", "developer")
    if denied:
        return denied
    return [a.model_dump(by_alias=True) for a in await funnel_store.list_ads()]


@app.post("/api/admin/ad/add")
async def add_ad(payload: AdPayload, ctx: AuthContext = Depends(console_context)):
    denied = _console_denied(ctx, "admin", "developer")
    if denied:
        return denied
    try:
        ad = await funnel_store.add_ad(payload.title, payload.image_url, payload.link_url, payload.assigned_page)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, 400)
    return ad.model_dump(by_alias=True)


@app.post("/api/admin/ad/update")
async def update_ad(payload: AdUpdatePayload, ctx: AuthContext = Depends(console_context)):
    denied = _console_denied(ctx, "admin", "developer")
    if denied:
        return denied
    try:
        ad = await funnel_store.update_ad(
            payload.id,
            title=payload.title,
            image_url=payload.image_url,
            link_url=payload.link_url,
            assigned_page=payload.assigned_page,
        )
    except ValueError as e:
        return JSONResponse({"error": str(e)}, 400)
    if ad is None:
        return JSONResponse({"error": "Ad not found"}, 404)
    return ad.model_dump(by_alias=True)


@app.post("/api/admin/ad/delete")
async def delete_ad(payload: AdDeletePayload, ctx: AuthContext = Depends(console_context)):
    denied = _console_denied(ctx, "admin", "developer")
    if denied:
        return denied
    if not await funnel_store.delete_ad(payload.id):
        return JSONResponse({"error": "Ad not found"}, 404)
    return {"status": "ok"}


@app.post("/api/admin/settings")
async def update_settings(payload: SettingsPayload, ctx: AuthContext = Depends(console_context)):
    denied = _console_denied(ctx, "admin", "developer")
    if denied:
        return denied
    try:
        config = await funnel_store.update_settings(payload.countdowns, payload.software_name, payload.download_url)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, 400)
    return _config_payload(config)


@app.get("/api/admin/analytics")
async def get_analytics(ctx: AuthContext = Depends(console_context)):
    denied = _console_denied(ctx, "admin", "developer")
    if denied:
        return denied
    return analytics_summary(await funnel_store.load())


@app.get("/api/admin/links")
async def admin_list_links(ctx: AuthContext = Depends(console_context)):
    denied = _console_denied(ctx, "admin", "developer")
    if denied:
        return denied
    return await short_links.list_short_links()


@app.post("/api/admin/link/add")
async def admin_add_link(payload: ShortLinkPayload, ctx: AuthContext = Depends(console_context)):
    denied = _console_denied(ctx, "admin", "developer")
    if denied:
        return denied
    try:
        return await short_links.create_short_link(payload.url, payload.short_code)
    except ShortCodeTaken as e:
        return JSONResponse({"error": str(e)}, 409)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, 400)
    except DataAccessError as e:
        return JSONResponse({"error": str(e)}, 500)


@app.post("/api/admin/link/delete")
async def admin_delete_link(payload: DeletePayload, ctx: AuthContext = Depends(console_context)):
    denied = _console_denied(ctx, "admin", "developer")
    if denied:
        return denied
    try:
        if not await short_links.delete_short_link(payload.id):
            return JSONResponse({"error": "Not found"}, 404)
    except DataAccessError as e:
        return JSONResponse({"error": str(e)}, 500)
    return {"status": "ok"}


@app.get("/api/admin/users")
async def console_list_users(ctx: AuthContext = Depends(console_context)):
    denied = _console_denied(ctx, "developer")
    if denied:
        return denied
    try:
        return await user_management.list_users()
    except DataAccessError as e:
        return JSONResponse({"error": str(e)}, 500)


@app.post("/api/admin/user/role")
async def console_set_role(payload: RolePayload, ctx: AuthContext = Depends(console_context)):
    denied = _console_denied(ctx, "developer")
    if denied:
        return denied
    try:
        await user_management.set_user_role(payload.user_id, payload.role)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, 400)
    except DataAccessError as e:
        return JSONResponse({"error": str(e)}, 500)
    return {"status": "ok"}


# ---------------------------------------------------------------- end-user console


@app.get("/user/login")
async def user_login_page():
    return HTMLResponse(render_login("/api/user/signin", "Sign In", signup_action="/api/user/signup"), headers=NO_STORE)


@app.get("/user/dashboard")
async def user_dashboard(request: Request):
    decision, ctx = await identity.check(_user_token(request), "user")
    if decision == PENDING:
        return HTMLResponse(render_loading("/user/dashboard"), headers=NO_STORE)
    if decision == DENIED:
        resp = RedirectResponse("/user/login", status_code=302)
        resp.delete_cookie(settings.USER_SESSION_COOKIE, path="/")
        return resp
    try:
        data = await user_data.get_or_create_user_data(ctx.user_id)
    except DataAccessError:
        data = {"ads": [], "short_links": [], "countdown": 0, "analytics": {}}
    return HTMLResponse(render_user_dashboard({"username": ctx.principal}, ctx.role or "user", data), headers=NO_STORE)


@app.post("/user/logout")
async def user_logout_form():
    resp = RedirectResponse("/user/login", status_code=303)
    resp.delete_cookie(settings.USER_SESSION_COOKIE, path="/")
    return resp


@app.post("/api/user/signup")
async def api_signup(payload: SignUpPayload):
    try:
        user = await identity.sign_up(payload.email, payload.password, payload.username)
    except IdentityError as e:
        return JSONResponse({"error": str(e)}, 400)
    return {"status": "ok", "user": user}


@app.post("/api/user/signin")
async def api_signin(payload: SignInPayload, response: Response):
    token = await identity.sign_in(payload.email, payload.password)
    if not token:
        return JSONResponse({"error": "Invalid login credentials"}, 401)
    response.set_cookie(
        settings.USER_SESSION_COOKIE,
        token,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        max_age=86400 * settings.USER_SESSION_DAYS,
        samesite="lax",
        path="/",
    )
    return {"status": "ok", "token": token, "redirect": "/user/dashboard"}


@app.post("/api/user/logout")
async def api_user_logout(response: Response):
    response.delete_cookie(settings.USER_SESSION_COOKIE, path="/")
    return {"status": "ok"}


@app.get("/api/user/session")
async def user_session(ctx: AuthContext = Depends(user_context)):
    if not ctx.authenticated:
        return {"status": "guest"}
    return {"status": "authenticated", "email": ctx.principal, "role": ctx.role, "user_id": ctx.user_id}


@app.get("/api/user/data")
async def get_user_data(ctx: AuthContext = Depends(user_context)):
    denied = _user_denied(ctx)
    if denied:
        return denied
    try:
        return await user_data.get_or_create_user_data(ctx.user_id)
    except DataAccessError as e:
        return JSONResponse({"error": str(e)}, 500)


@app.post("/api/user/ads")
async def update_user_ads(payload: UserAdsPayload, ctx: AuthContext = Depends(user_context)):
    denied = _user_denied(ctx)
    if denied:
        return denied
    try:
        await user_data.get_or_create_user_data(ctx.user_id)
        await user_data.update_ads(ctx.user_id, [a.model_dump() for a in payload.ads])
    except DataAccessError as e:
        return JSONResponse({"error": str(e)}, 500)
    return {"status": "ok"}


@app.post("/api/user/countdown")
async def update_user_countdown(payload: CountdownPayload, ctx: AuthContext = Depends(user_context)):
    denied = _user_denied(ctx)
    if denied:
        return denied
    try:
        await user_data.get_or_create_user_data(ctx.user_id)
        await user_data.update_countdown(ctx.user_id, payload.countdown)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, 400)
    except DataAccessError as e:
        return JSONResponse({"error": str(e)}, 500)
    return {"status": "ok"}


@app.get("/api/user/links")
async def list_user_links(ctx: AuthContext = Depends(user_context)):
    denied = _user_denied(ctx)
    if denied:
        return denied
    return await short_links.list_short_links(ctx.user_id)


@app.post("/api/user/link/add")
async def add_user_link(payload: ShortLinkPayload, ctx: AuthContext = Depends(user_context)):
    denied = _user_denied(ctx)
    if denied:
        return denied
    try:
        return await user_data.add_short_link(ctx.user_id, payload.url, payload.short_code)
    except ShortCodeTaken as e:
        return JSONResponse({"error": str(e)}, 409)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, 400)
    except DataAccessError as e:
        return JSONResponse({"error": str(e)}, 500)


@app.post("/api/user/link/delete")
async def delete_user_link(payload: DeletePayload, ctx: AuthContext = Depends(user_context)):
    denied = _user_denied(ctx)
    if denied:
        return denied
    try:
        if not await user_data.delete_short_link(ctx.user_id, payload.id):
            return JSONResponse({"error": "Not found"}, 404)
    except DataAccessError as e:
        return JSONResponse({"error": str(e)}, 500)
    return {"status": "ok"}


@app.post("/api/user/analytics")
async def update_user_analytics(payload: UserAnalyticsPayload, ctx: AuthContext = Depends(user_context)):
    denied = _user_denied(ctx)
    if denied:
        return denied
    try:
        await user_data.get_or_create_user_data(ctx.user_id)
        await user_data.update_analytics(ctx.user_id, payload.model_dump())
    except DataAccessError as e:
        return JSONResponse({"error": str(e)}, 500)
    return {"status": "ok"}


@app.post("/api/user/data/delete")
async def delete_user_data(ctx: AuthContext = Depends(user_context)):
    denied = _user_denied(ctx)
    if denied:
        return denied
    try:
        await user_data.delete_user_data(ctx.user_id)
    except DataAccessError as e:
        return JSONResponse({"error": str(e)}, 500)
    return {"status": "ok"}


@app.get("/api/user/admin/users")
async def user_admin_list_users(ctx: AuthContext = Depends(user_context)):
    denied = _user_denied(ctx, "developer")
    if denied:
        return denied
    try:
        return await user_management.list_users()
    except DataAccessError as e:
        return JSONResponse({"error": str(e)}, 500)


@app.get("/api/user/admin/all_data")
async def user_admin_all_data(ctx: AuthContext = Depends(user_context)):
    denied = _user_denied(ctx, "developer")
    if denied:
        return denied
    try:
        return await user_data.get_all_users_data()
    except DataAccessError as e:
        return JSONResponse({"error": str(e)}, 500)


@app.post("/api/user/admin/role")
async def user_admin_set_role(payload: RolePayload, ctx: AuthContext = Depends(user_context)):
    denied = _user_denied(ctx, "developer")
    if denied:
        return denied
    try:
        await user_management.set_user_role(payload.user_id, payload.role)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, 400)
    except DataAccessError as e:
        return JSONResponse({"error": str(e)}, 500)
    return {"status": "ok"}


@app.post("/api/user/admin/user_data")
async def user_admin_update_data(payload: UserDataUpdatePayload, ctx: AuthContext = Depends(user_context)):
    denied = _user_denied(ctx, "developer")
    if denied:
        return denied
    try:
        await user_data.update_user_data_by_user_id(payload.user_id, payload.updates)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, 400)
    except DataAccessError as e:
        return JSONResponse({"error": str(e)}, 404)
    return {"status": "ok"}
