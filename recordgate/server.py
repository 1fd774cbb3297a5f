from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

import httpx
from fastapi import Depends, FastAPI, Form, HTTPException, Query, Request
from fastapi.responses import (
    HTMLResponse, ORJSONResponse, RedirectResponse, Response,
)
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.middleware.sessions import SessionMiddleware
from starlette.status import HTTP_303_SEE_OTHER

from .backend import BackendError, BackendNotConfigured, SupabaseClient
from .config import (
    Settings, get_settings, SESSION_SECRET, LOG_LEVEL,
    PAGE_SIZE_OPTIONS, DEFAULT_PAGE_SIZE,
)
from .gateway import GatewayError, GatewayNotConfigured, new_gateway
from .helpers import (
    build_receipt, email_in, is_valid_email, parse_amount, to_minor_units,
)
from .students import (
    CLASS_OPTIONS, SEMESTER_OPTIONS, StudentQuery, has_next_page,
    normalize_page_size, redact, reveal, to_csv,
)

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

HERE = os.path.dirname(os.path.abspath(__file__))
templates = Jinja2Templates(directory=os.path.join(HERE, "templates"))

OAUTH_PROVIDERS = ("google", "github", "gitlab", "azure")
MAX_SELECTION = 50
# the session lives in a cookie; keep it small
MAX_SESSION_ORDERS = 10
MAX_SESSION_UNLOCKED = 100

app = FastAPI(
    title="recordgate",
    default_response_class=ORJSONResponse,
)
app.mount("/static", StaticFiles(directory=os.path.join(HERE, "static")),
          name="static")
app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET,
                   same_site="lax")


def get_http(request: Request) -> httpx.AsyncClient:
    http = getattr(request.app.state, "http", None)
    if http is None:
        raise RuntimeError("HTTP client not initialized")
    return http


def get_backend(
    settings: Settings = Depends(get_settings),
    http: httpx.AsyncClient = Depends(get_http),
) -> SupabaseClient:
    return SupabaseClient.from_settings(http, settings)


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _say_hello():
    settings = get_settings()
    print('\n' * 2)
    print('=' * 50)
    print('recordgate is starting up...')
    print(f'   - Payment gateway: {settings.payment_gateway}')
    print(f'   - Backend: {settings.supabase_url or "NOT CONFIGURED"}')
    print(f'   - Admins: {len(settings.admin_emails)}')
    print('=' * 50)
    print('\n' * 2)


@app.on_event("startup")
async def _http_client_start():
    app.state.http = httpx.AsyncClient(
        timeout=get_settings().http_timeout,
        limits=httpx.Limits(
            max_connections=100, max_keepalive_connections=20
        ),
    )


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None


@app.exception_handler(BackendNotConfigured)
async def _backend_not_configured(request: Request, exc: BackendNotConfigured):
    return ORJSONResponse({"error": str(exc)}, status_code=500)


@app.exception_handler(BackendError)
async def _backend_failed(request: Request, exc: BackendError):
    return ORJSONResponse({"error": exc.message}, status_code=502)


# ----------------------------
# Session helpers
# ----------------------------
def session_user(request: Request) -> Optional[Dict[str, Any]]:
    return request.session.get("user")


def is_admin(request: Request, settings: Settings) -> bool:
    user = session_user(request) or {}
    return email_in(user.get("email"), settings.admin_emails)


def require_admin(request: Request, settings: Settings) -> None:
    if not is_admin(request, settings):
        raise HTTPException(status_code=403, detail="admins only")


def store_user(request: Request, data: Dict[str, Any]) -> Dict[str, Any]:
    # GoTrue returns {access_token, user: {...}} for sessions and the bare
    # user object from /user
    user = data.get("user") or data
    request.session["user"] = {
        "id": user.get("id"),
        "email": user.get("email"),
        "access_token": data.get("access_token"),
    }
    return request.session["user"]


def remember_order(request: Request, order_id: str, student_id: str,
                   amount: Any) -> None:
    orders = dict(request.session.get("orders", {}))
    orders[order_id] = {"student_id": str(student_id), "amount": amount}
    request.session["orders"] = dict(
        list(orders.items())[-MAX_SESSION_ORDERS:]
    )


def session_order(request: Request, order_id: str) -> Optional[Dict]:
    return request.session.get("orders", {}).get(order_id)


def is_unlocked(request: Request, student_id: str) -> bool:
    return str(student_id) in request.session.get("unlocked", [])


def mark_unlocked(request: Request, student_ids: List[Any]) -> None:
    unlocked = list(request.session.get("unlocked", []))
    for sid in map(str, student_ids):
        if sid in unlocked:
            unlocked.remove(sid)
        unlocked.append(sid)
    request.session["unlocked"] = unlocked[-MAX_SESSION_UNLOCKED:]


def _selection(payload: Dict[str, Any]) -> List[str]:
    ids = payload.get("studentIds")
    if not isinstance(ids, list) or not ids:
        raise HTTPException(400, detail="studentIds must be a non-empty list")
    return [str(i) for i in ids[:MAX_SELECTION]]


# ----------------------------
# Dashboard
# ----------------------------
@app.get("/", response_class=HTMLResponse)
async def dashboard_page(
    request: Request,
    search: str = "",
    cls: str = Query("", alias="class"),
    semester: str = "",
    missing_photo: bool = False,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    settings: Settings = Depends(get_settings),
    http: httpx.AsyncClient = Depends(get_http),
):
    problem = settings.backend_problem()
    if problem:
        return templates.TemplateResponse(
            request, "config_error.html", {"problem": problem},
            status_code=500,
        )

    page = max(1, page)
    page_size = normalize_page_size(page_size)
    query = StudentQuery(search=search, cls=cls, semester=semester,
                         missing_photo=missing_photo)
    error = None
    backend = SupabaseClient.from_settings(http, settings)
    try:
        rows, total = await backend.query_students(query, page, page_size)
    except BackendError as e:
        rows, total, error = [], 0, e.message

    user = session_user(request)
    admin = is_admin(request, settings)
    return templates.TemplateResponse(
        request,
        "dashboard.html",
        {
            "students": [redact(r) for r in rows],
            "total": total,
            "page": page,
            "page_size": page_size,
            "has_prev": page > 1,
            "has_next": has_next_page(page, page_size, total),
            "query": query,
            "class_options": CLASS_OPTIONS,
            "semester_options": SEMESTER_OPTIONS,
            "page_size_options": PAGE_SIZE_OPTIONS,
            "user": user,
            "is_admin": admin,
            "price": f"{settings.unlock_price:g}",
            "error": error,
            "client_config": {
                "signedIn": user is not None,
                "isAdmin": admin,
                "email": (user or {}).get("email"),
                "gateway": settings.payment_gateway,
                "keyId": settings.razorpay_key_id,
                "price": settings.unlock_price,
            },
        },
    )


# ----------------------------
# API: students
# ----------------------------
@app.get("/api/students")
async def list_students(
    search: str = "",
    cls: str = Query("", alias="class"),
    semester: str = "",
    missing_photo: bool = False,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    backend: SupabaseClient = Depends(get_backend),
):
    page = max(1, page)
    page_size = normalize_page_size(page_size)
    query = StudentQuery(search=search, cls=cls, semester=semester,
                         missing_photo=missing_photo)
    rows, total = await backend.query_students(query, page, page_size)
    return {
        "items": [redact(r) for r in rows],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@app.get("/api/students/{student_id}")
async def student_detail(
    student_id: str,
    request: Request,
    settings: Settings = Depends(get_settings),
    backend: SupabaseClient = Depends(get_backend),
):
    if not (is_admin(request, settings) or is_unlocked(request, student_id)):
        if session_user(request) is None:
            raise HTTPException(401, detail="sign in to unlock details")
        raise HTTPException(402, detail="payment required")
    student = await backend.get_student(student_id)
    if not student:
        raise HTTPException(404, detail="student not found")
    return {"student": reveal(student)}


# ----------------------------
# API: payment-gated unlock
# ----------------------------
@app.post("/api/create-order")
async def create_order(
    request: Request,
    settings: Settings = Depends(get_settings),
    http: httpx.AsyncClient = Depends(get_http),
):
    try:
        body = await request.json()
        if not isinstance(body, dict):
            raise ValueError("request body must be a JSON object")
        amount = parse_amount(body.get("amount"), settings.unlock_price)
        student_id = body.get("studentId") or "unknown"

        gateway = new_gateway(settings)
        order = await gateway.create_order(
            http, to_minor_units(amount), build_receipt(student_id)
        )
    except GatewayNotConfigured as e:
        return ORJSONResponse({"error": str(e)}, status_code=500)
    except GatewayError as e:
        return ORJSONResponse(
            {"error": str(e), "details": e.details}, status_code=e.status
        )
    except Exception as e:
        logger.exception("order creation failed")
        return ORJSONResponse(
            {"error": str(e) or type(e).__name__}, status_code=500
        )

    if isinstance(order, dict) and order.get("id"):
        remember_order(request, order["id"], student_id, order.get("amount"))
    return {"order": order}


@app.post("/api/verify-payment")
async def verify_payment(
    request: Request,
    settings: Settings = Depends(get_settings),
):
    try:
        body = await request.json()
        if not isinstance(body, dict):
            raise ValueError("request body must be a JSON object")
        order_id = str(body.get("razorpay_order_id") or "")
        payment_id = str(body.get("razorpay_payment_id") or "")
        ok = new_gateway(settings).verify_signature(
            order_id, payment_id, body.get("razorpay_signature")
        )
    except GatewayNotConfigured as e:
        return ORJSONResponse({"ok": False, "error": str(e)}, status_code=500)
    except Exception as e:
        logger.exception("payment verification failed")
        return ORJSONResponse(
            {"ok": False, "error": str(e) or type(e).__name__},
            status_code=500,
        )

    if not ok:
        logger.warning("invalid payment signature for order %s", order_id)
        return ORJSONResponse(
            {"ok": False, "error": "invalid signature"}, status_code=400
        )

    order = session_order(request, order_id)
    if order:
        mark_unlocked(request, [order["student_id"]])
    return {"ok": True}


# ----------------------------
# API: admin bypass
# ----------------------------
@app.post("/api/admin/unlock")
async def admin_unlock(
    payload: dict,
    request: Request,
    settings: Settings = Depends(get_settings),
    backend: SupabaseClient = Depends(get_backend),
):
    require_admin(request, settings)
    students = await backend.get_students(_selection(payload))
    mark_unlocked(request, [s.get("student_id") for s in students])
    return {"students": [reveal(s) for s in students]}


@app.post("/api/admin/export")
async def admin_export(
    payload: dict,
    request: Request,
    settings: Settings = Depends(get_settings),
    backend: SupabaseClient = Depends(get_backend),
):
    require_admin(request, settings)
    students = await backend.get_students(_selection(payload))
    return Response(
        content=to_csv(students),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="students.csv"'},
    )


# ----------------------------
# Auth (delegated to the backend)
# ----------------------------
def _login_page(request: Request, mode: str, error: Optional[str] = None,
                message: Optional[str] = None, status_code: int = 200):
    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "mode": mode,
            "error": error,
            "message": message,
            "providers": OAUTH_PROVIDERS[:1],
        },
        status_code=status_code,
    )


@app.get("/login", response_class=HTMLResponse)
async def login_page(request: Request, mode: str = "login"):
    return _login_page(request, "signup" if mode == "signup" else "login")


@app.post("/auth/login", response_class=HTMLResponse)
async def auth_login(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    settings: Settings = Depends(get_settings),
    http: httpx.AsyncClient = Depends(get_http),
):
    if not is_valid_email(email):
        return _login_page(request, "login", status_code=400,
                           error="Enter a valid email address.")
    backend = SupabaseClient.from_settings(http, settings)
    try:
        data = await backend.sign_in_with_password(email.strip(), password)
    except BackendError as e:
        return _login_page(request, "login", status_code=400,
                           error=f"Sign in error: {e.message}")
    store_user(request, data)
    return RedirectResponse(url="/", status_code=HTTP_303_SEE_OTHER)


@app.post("/auth/signup", response_class=HTMLResponse)
async def auth_signup(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    settings: Settings = Depends(get_settings),
    http: httpx.AsyncClient = Depends(get_http),
):
    if not is_valid_email(email):
        return _login_page(request, "signup", status_code=400,
                           error="Enter a valid email address.")
    backend = SupabaseClient.from_settings(http, settings)
    try:
        data = await backend.sign_up(email.strip(), password)
    except BackendError as e:
        return _login_page(request, "signup", status_code=400,
                           error=f"Sign up error: {e.message}")
    if data.get("access_token"):
        store_user(request, data)
        return RedirectResponse(url="/", status_code=HTTP_303_SEE_OTHER)
    return _login_page(
        request, "login",
        message="Sign up successful. Check your email to confirm "
                "(if email confirmation is enabled).",
    )


@app.get("/auth/logout")
async def auth_logout(
    request: Request,
    settings: Settings = Depends(get_settings),
    http: httpx.AsyncClient = Depends(get_http),
):
    token = (session_user(request) or {}).get("access_token")
    if token and not settings.backend_problem():
        try:
            await SupabaseClient.from_settings(http, settings).sign_out(token)
        except (BackendError, httpx.HTTPError) as e:
            logger.warning("remote sign out failed: %s", e)
    request.session.clear()
    return RedirectResponse(url="/", status_code=HTTP_303_SEE_OTHER)


@app.get("/auth/oauth/{provider}")
async def auth_oauth(
    provider: str,
    request: Request,
    backend: SupabaseClient = Depends(get_backend),
    settings: Settings = Depends(get_settings),
):
    if provider not in OAUTH_PROVIDERS:
        raise HTTPException(404, detail="unknown provider")
    base = (settings.public_base_url or str(request.base_url)).rstrip("/")
    return RedirectResponse(
        url=backend.authorize_url(provider, f"{base}/auth/callback"),
        status_code=HTTP_303_SEE_OTHER,
    )


@app.get("/auth/callback", response_class=HTMLResponse)
async def auth_callback(request: Request):
    # tokens arrive in the URL fragment, which only the browser can read
    return templates.TemplateResponse(request, "oauth_callback.html", {})


@app.post("/auth/session")
async def auth_session(
    payload: dict,
    request: Request,
    backend: SupabaseClient = Depends(get_backend),
):
    token = payload.get("access_token")
    if not token:
        raise HTTPException(400, detail="access_token is required")
    try:
        user = await backend.get_user(token)
    except BackendError:
        raise HTTPException(401, detail="invalid access token")
    user = store_user(request, {"access_token": token, "user": user})
    return {"ok": True, "email": user["email"]}


# ----------------------------
# MockPay UI (local checkout stand-in)
# ----------------------------
def _mock_order(request: Request, order_id: str,
                settings: Settings) -> Dict[str, Any]:
    order = session_order(request, order_id)
    if settings.payment_gateway != "mock" or not order:
        raise HTTPException(404, detail="order not found")
    return order


@app.get("/mockpay/{order_id}", response_class=HTMLResponse)
async def mockpay_screen(
    request: Request, order_id: str,
    settings: Settings = Depends(get_settings),
):
    order = _mock_order(request, order_id, settings)
    amount = order.get("amount") or 0
    return templates.TemplateResponse(request, "mockpay.html", {
        "order_id": order_id,
        "student_id": order["student_id"],
        "amount": f"{int(amount) / 100:.2f}",
        "currency": settings.currency,
    })


@app.post("/mockpay/{order_id}/pay")
async def mockpay_pay(
    request: Request, order_id: str,
    settings: Settings = Depends(get_settings),
):
    _mock_order(request, order_id, settings)
    try:
        return new_gateway(settings).sign_payment(order_id)
    except GatewayNotConfigured as e:
        return ORJSONResponse({"error": str(e)}, status_code=500)


@app.get("/healthz")
async def healthz(settings: Settings = Depends(get_settings)):
    return {"ok": True, "gateway": settings.payment_gateway}
