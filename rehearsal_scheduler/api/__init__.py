"""
rehearsal_scheduler.api
=======================

JSON API for the rehearsal scheduler, built with FastAPI.

Clients authenticate with a bearer access token obtained from
``/api/auth/register`` or ``/api/auth/login`` (an OAuth2 password form
where ``username`` is the email address).  Access tokens are short lived;
``/api/auth/refresh`` trades a refresh token for a new pair.

Every expected failure is raised by the service layer as a
:class:`~rehearsal_scheduler.errors.SchedulerError` and rendered here as
``{"error": message}`` (plus ``"field"`` for validation errors) with the
status code the error class declares.

Configuration comes from environment variables: ``DATABASE_URL`` (see
``rehearsal_scheduler.db.database``), ``JWT_SECRET`` / ``JWT_EXPIRE`` /
``REFRESH_TOKEN_SECRET`` / ``REFRESH_TOKEN_EXPIRE`` (see
``rehearsal_scheduler.auth``), ``CORS_ORIGINS`` (comma separated) and
``LOG_LEVEL``.
"""

import datetime
import logging
import os
from http import HTTPStatus
from typing import Optional

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from rehearsal_scheduler import services
from rehearsal_scheduler.auth import issue_tokens
from rehearsal_scheduler.db import get_db, init_db
from rehearsal_scheduler.errors import AuthenticationError, SchedulerError
from rehearsal_scheduler.schemas import Document, User
from rehearsal_scheduler.validation import field_error

logging.basicConfig(level=os.environ.get('LOG_LEVEL', 'INFO').upper())
logger = logging.getLogger(__name__)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get('CORS_ORIGINS', 'http://localhost:3000').split(',')
    if origin.strip()
]

app = FastAPI(title="Rehearsal Scheduler API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


# Request bodies ---------------------------------------------------------

class RefreshRequest(Document):
    refresh_token: str


class PasswordChange(Document):
    old_password: str
    new_password: str


class ForgotPasswordRequest(Document):
    email: str


class ResetPasswordRequest(Document):
    password: str


class BandCreate(Document):
    name: str


class MemberCreate(Document):
    user_id: int
    role: str = 'member'


class RoleUpdate(Document):
    role: str


class RSVPRequest(Document):
    status: str
    response: Optional[str] = None


class CancelRequest(Document):
    reason: Optional[str] = None


# Errors -----------------------------------------------------------------

@app.exception_handler(SchedulerError)
async def scheduler_error_handler(request: Request, exc: SchedulerError):
    return JSONResponse(status_code=int(exc.status), content=exc.to_dict())


REQUEST_LOCATIONS = ('body', 'query', 'path', 'header', 'cookie')


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # Same body as payload validation errors, minus FastAPI's location prefix
    error = dict(exc.errors()[0])
    loc = tuple(error.get('loc') or ())
    if loc and loc[0] in REQUEST_LOCATIONS:
        loc = loc[1:]
    failure = field_error({**error, 'loc': loc})
    return JSONResponse(status_code=int(failure.status), content=failure.to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Internal server error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        content={'error': 'Internal server error'},
    )


# Dependencies -----------------------------------------------------------

def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    if not token:
        raise AuthenticationError('Missing token')
    return services.current_user(db, token)


def _auth_response(user: User, tokens: dict) -> dict:
    return {'user': user.to_document(), **tokens}


# Authentication ---------------------------------------------------------

@app.post("/api/auth/register", status_code=HTTPStatus.CREATED)
def register(payload: dict = Body(...), db: Session = Depends(get_db)):
    user, tokens = services.register_user(db, payload)
    return _auth_response(user, tokens)


@app.post("/api/auth/login")
def login(form: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    user, tokens = services.authenticate(db, form.username, form.password)
    # OAuth2 clients expect access_token/token_type at the top level
    return {**_auth_response(user, tokens), 'access_token': tokens['accessToken'], 'token_type': 'bearer'}


@app.post("/api/auth/refresh")
def refresh(body: RefreshRequest, db: Session = Depends(get_db)):
    return services.refresh_tokens(db, body.refresh_token)


@app.get("/api/auth/me")
def me(user: User = Depends(get_current_user)):
    return user.to_document()


@app.put("/api/auth/me")
def update_me(payload: dict = Body(...), user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return services.update_profile(db, user.id, payload).to_document()


@app.put("/api/auth/password")
def update_password(body: PasswordChange, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    services.change_password(db, user.id, body.old_password, body.new_password)
    return {'message': 'Password updated'}


@app.post("/api/auth/forgot-password", status_code=HTTPStatus.ACCEPTED)
def forgot_password(body: ForgotPasswordRequest, db: Session = Depends(get_db)):
    # The token itself is delivered out of band; the answer never reveals
    # whether the address is registered.
    services.request_password_reset(db, body.email)
    return {'message': 'If the address is registered, a reset link has been sent'}


@app.put("/api/auth/reset-password/{token}")
def reset_password(token: str, body: ResetPasswordRequest, db: Session = Depends(get_db)):
    user = services.reset_password(db, token, body.password)
    return _auth_response(user, issue_tokens(user.id))


# Bands ------------------------------------------------------------------

@app.post("/api/bands", status_code=HTTPStatus.CREATED)
def create_band(body: BandCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return services.create_band(db, body.name, user.id).to_document()


@app.get("/api/bands/{band_id}")
def get_band(band_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return services.get_band(db, band_id, user.id).to_document()


@app.post("/api/bands/{band_id}/members", status_code=HTTPStatus.CREATED)
def add_band_member(
    band_id: int,
    body: MemberCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return services.add_band_member(db, band_id, user.id, body.user_id, body.role).to_document()


@app.put("/api/bands/{band_id}/members/{member_id}")
def set_member_role(
    band_id: int,
    member_id: int,
    body: RoleUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return services.set_member_role(db, band_id, user.id, member_id, body.role).to_document()


@app.get("/api/bands/{band_id}/rehearsals")
def list_band_rehearsals(
    band_id: int,
    start: Optional[datetime.datetime] = None,
    end: Optional[datetime.datetime] = None,
    include_cancelled: bool = True,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rehearsals = services.list_band_rehearsals(db, band_id, user.id, start, end, include_cancelled)
    return [services.rehearsal_view(r) for r in rehearsals]


# Rehearsals -------------------------------------------------------------

@app.post("/api/rehearsals", status_code=HTTPStatus.CREATED)
def create_rehearsal(payload: dict = Body(...), user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return services.rehearsal_view(services.save_rehearsal(db, payload, user.id))


@app.get("/api/rehearsals/{rehearsal_id}")
def get_rehearsal(rehearsal_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return services.rehearsal_view(services.get_rehearsal(db, rehearsal_id, user.id))


@app.put("/api/rehearsals/{rehearsal_id}")
def update_rehearsal(
    rehearsal_id: int,
    payload: dict = Body(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return services.rehearsal_view(services.save_rehearsal(db, payload, user.id, rehearsal_id))


@app.post("/api/rehearsals/{rehearsal_id}/cancel")
def cancel_rehearsal(
    rehearsal_id: int,
    body: Optional[CancelRequest] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return services.rehearsal_view(services.cancel_rehearsal(db, rehearsal_id, user.id, body.reason if body else None))


@app.post("/api/rehearsals/{rehearsal_id}/rsvp")
def rsvp(
    rehearsal_id: int,
    body: RSVPRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rehearsal = services.record_rsvp(db, rehearsal_id, user.id, body.status, body.response)
    return services.rehearsal_view(rehearsal)


@app.get("/api/rehearsals/{rehearsal_id}/attendance")
def attendance(rehearsal_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return services.attendance_summary(db, rehearsal_id, user.id)


@app.get("/api/rehearsals/{rehearsal_id}/occurrences")
def occurrences(
    rehearsal_id: int,
    limit: Optional[int] = Query(None, ge=1),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return [o.to_dict() for o in services.list_occurrences(db, rehearsal_id, user.id, limit)]


#############################
# Server entry point
#############################

def run_server(host: str = '0.0.0.0', port: int = 5000):
    import uvicorn

    init_db()
    logger.info("Rehearsal scheduler running on http://%s:%s", host, port)
    uvicorn.run(app, host=host, port=port, log_level=os.environ.get('LOG_LEVEL', 'info').lower())
